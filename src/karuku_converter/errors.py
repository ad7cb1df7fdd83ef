"""変換キューで使う例外と、ユーザー向けエラーメッセージの生成。"""

from __future__ import annotations

from typing import Optional

from PIL import Image, UnidentifiedImageError


class ConversionStepError(Exception):
    """デコード・リサイズ・エンコードの各段階で発生するエラーの基底クラス"""

    step = "unknown"


class DecodeError(ConversionStepError):
    """入力バイト列を画像として解釈できない"""

    step = "decode"


class ResizeError(ConversionStepError):
    """目標サイズが不正"""

    step = "resize"


class EncodeError(ConversionStepError):
    """エンコーダが画像または品質値を受け付けない"""

    step = "encode"


class ConversionFailed(Exception):
    """キュー境界で集約された変換失敗。

    Attributes:
        item_id: 失敗したアイテムのID
        cause: 元になった例外
    """

    def __init__(self, item_id: str, cause: BaseException):
        self.item_id = item_id
        self.cause = cause
        super().__init__(f"変換に失敗しました ({item_id}): {describe_error(cause)}")

    @property
    def step(self) -> str:
        return getattr(self.cause, "step", "unknown")


class ResourceError(RuntimeError):
    """バイトハンドルの所有権に関する不整合"""


class DoubleReleaseError(ResourceError):
    pass


class HandleReleasedError(ResourceError):
    pass


class BatchAlreadyRunningError(RuntimeError):
    """一括変換の実行中に別の一括変換が要求された"""


def describe_error(error: BaseException) -> str:
    """
    例外から日本語のエラーメッセージを生成します

    Args:
        error: 例外オブジェクト

    Returns:
        str: 日本語エラーメッセージ
    """
    error_msg = str(error)

    if isinstance(error, ConversionFailed):
        return describe_error(error.cause)
    if isinstance(error, DecodeError):
        return f"画像として読み込めません: {error_msg}"
    if isinstance(error, ResizeError):
        return f"リサイズできません: {error_msg}"
    if isinstance(error, EncodeError):
        return f"エンコードに失敗しました: {error_msg}"

    if isinstance(error, UnidentifiedImageError):
        return f"画像ファイルとして認識できません: {error_msg}"
    if isinstance(error, Image.DecompressionBombError):
        return f"画像が大きすぎます（圧縮爆弾の可能性）: {error_msg}"
    if isinstance(error, MemoryError):
        return "メモリ不足エラー: 画像が大きすぎるか、使用可能なメモリが不足しています"
    if isinstance(error, PermissionError):
        return f"アクセス権限がありません: {error_msg}"
    if isinstance(error, FileNotFoundError):
        return f"ファイルが見つかりません: {error_msg}"
    if isinstance(error, OSError):
        if error.errno == 28:  # ENOSPC
            return "ディスク容量が不足しています"
        return f"システムエラー: {error_msg}"
    if isinstance(error, ValueError):
        return f"無効な値: {error_msg}"

    return f"{type(error).__name__}: {error_msg}"


def failure_step(error: Optional[BaseException]) -> str:
    """失敗した段階名を返す（decode / resize / encode / unknown）"""
    if error is None:
        return ""
    if isinstance(error, ConversionFailed):
        return error.step
    return getattr(error, "step", "unknown")
