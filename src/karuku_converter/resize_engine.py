"""縦横比を維持したリサイズ計算とリサンプリング。"""

from __future__ import annotations

from typing import Optional, Tuple, Union

from loguru import logger
from PIL import Image

from karuku_converter.codec import PixelBuffer
from karuku_converter.errors import ResizeError

RESAMPLE_FILTER = Image.Resampling.LANCZOS

# 出力画像の一辺の上限（px）
MAX_OUTPUT_DIMENSION = 10000


def parse_target_width(value: Union[int, float, str, None]) -> Optional[int]:
    """
    目標幅の入力値を解釈します

    空文字・数値以外・0以下は「リサイズなし」として None を返します。

    Args:
        value: 入力値（整数、数値文字列、None）

    Returns:
        Optional[int]: 正の整数、またはリサイズなしを表す None
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        try:
            value = float(value)
        except ValueError:
            return None

    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):  # NaN/∞ check
            return None
        value = int(value)

    if not isinstance(value, int) or value <= 0:
        return None
    return value


def compute_target_size(
    src_width: int,
    src_height: int,
    requested_width: Union[int, float, str, None],
) -> Tuple[int, int]:
    """
    出力サイズを計算します（高さは幅から比率で決まる）

    Args:
        src_width: 元画像の幅
        src_height: 元画像の高さ
        requested_width: 目標幅。無効値ならリサイズなし

    Returns:
        Tuple[int, int]: (幅, 高さ)

    Raises:
        ResizeError: 元サイズが不正、計算後の高さが0以下、または上限超過
    """
    if src_width <= 0 or src_height <= 0:
        raise ResizeError(f"元画像のサイズが不正です: {src_width}x{src_height}")

    width = parse_target_width(requested_width)
    if width is None:
        return src_width, src_height

    height = round(width * src_height / src_width)
    if height <= 0:
        raise ResizeError(
            f"目標幅 {width}px では高さが0以下になります (元: {src_width}x{src_height})"
        )
    if width > MAX_OUTPUT_DIMENSION or height > MAX_OUTPUT_DIMENSION:
        raise ResizeError(
            f"出力サイズ {width}x{height} は上限 {MAX_OUTPUT_DIMENSION}px を超えています"
        )
    return width, height


def resample(buffer: PixelBuffer, width: int, height: int) -> PixelBuffer:
    """指定サイズへリサンプリングする。切り抜きや余白追加は行わない。"""
    if width <= 0 or height <= 0:
        raise ResizeError(f"無効な出力サイズ: {width}x{height}")
    if (width, height) == buffer.size:
        return buffer
    if width > MAX_OUTPUT_DIMENSION or height > MAX_OUTPUT_DIMENSION:
        raise ResizeError(f"出力サイズが上限を超えています: {width}x{height}")

    logger.debug(f"リサイズ: {buffer.width}x{buffer.height} -> {width}x{height}")
    image = buffer.image
    if image.mode == "P":
        # パレット画像はそのままでは補間できない
        image = image.convert("RGBA" if "transparency" in image.info else "RGB")
    try:
        resized = image.resize((width, height), RESAMPLE_FILTER)
    except (ValueError, MemoryError) as e:
        raise ResizeError(f"リサイズに失敗しました: {e}") from e
    return PixelBuffer(image=resized)
