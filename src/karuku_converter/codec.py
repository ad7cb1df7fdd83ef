"""画像バイト列のデコードとエンコードを担うコーデックアダプター。

Pillow を唯一のバックエンドとし、出力形式ごとのエンコーダ設定を集約する。
"""

from __future__ import annotations

from dataclasses import dataclass
import io
from typing import Any, Dict, Literal

from loguru import logger
from PIL import Image, UnidentifiedImageError, features

try:
    import pillow_avif  # noqa: F401
except ImportError:
    pass

from karuku_converter.errors import DecodeError, EncodeError

OutputFormat = Literal["webp", "jpeg", "png", "avif"]

DEFAULT_OUTPUT_FORMAT: OutputFormat = "webp"
DEFAULT_QUALITY = 0.8
DEFAULT_WEBP_METHOD = 6

_FORMAT_EXTENSIONS: Dict[str, str] = {
    "jpeg": "jpg",
    "png": "png",
    "webp": "webp",
    "avif": "avif",
}


@dataclass(frozen=True)
class PixelBuffer:
    """デコード済みの画素データ"""

    image: Image.Image

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    @property
    def size(self) -> tuple[int, int]:
        return self.image.size

    @property
    def mode(self) -> str:
        return self.image.mode


def decode(data: bytes) -> PixelBuffer:
    """
    エンコード済みの画像バイト列を画素データに変換します

    Args:
        data: 入力画像のバイト列

    Returns:
        PixelBuffer: 読み込み済みの画素データ

    Raises:
        DecodeError: 空・破損・未対応の入力
    """
    if not data:
        raise DecodeError("入力データが空です")

    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            # 元ストリームから切り離すためコピーを保持する
            decoded = img.copy()
    except Image.DecompressionBombError as e:
        raise DecodeError(f"画像が大きすぎます: {e}") from e
    except UnidentifiedImageError as e:
        raise DecodeError("画像形式を認識できません") from e
    except (OSError, SyntaxError, ValueError) as e:
        raise DecodeError(f"画像データが破損しています: {e}") from e

    if decoded.width <= 0 or decoded.height <= 0:
        raise DecodeError(f"画像サイズが不正です: {decoded.size}")

    logger.debug(f"デコード完了: {decoded.size[0]}x{decoded.size[1]} mode={decoded.mode}")
    return PixelBuffer(image=decoded)


def encode(
    buffer: PixelBuffer,
    output_format: str = DEFAULT_OUTPUT_FORMAT,
    quality: float = DEFAULT_QUALITY,
    webp_method: int = DEFAULT_WEBP_METHOD,
) -> bytes:
    """
    画素データを指定形式のバイト列にエンコードします

    Args:
        buffer: 画素データ
        output_format: 出力形式 ('webp', 'jpeg', 'png', 'avif')
        quality: 品質 (0.0-1.0)
        webp_method: WebPの圧縮メソッド (0-6)

    Returns:
        bytes: エンコード結果

    Raises:
        EncodeError: 形式・品質・画素データのいずれかが受け付けられない
    """
    fmt = normalize_format(output_format)
    if fmt not in supported_output_formats():
        raise EncodeError(f"この環境では出力形式 {fmt} を利用できません")

    save_kwargs = build_encoder_save_kwargs(fmt, quality, webp_method=webp_method)
    save_img = _prepare_for_format(buffer.image, fmt)

    output = io.BytesIO()
    try:
        save_img.save(output, **save_kwargs)
    except (OSError, ValueError, KeyError) as e:
        raise EncodeError(f"{fmt} へのエンコードに失敗しました: {e}") from e

    encoded = output.getvalue()
    if not encoded:
        raise EncodeError("エンコード結果が空です")
    logger.debug(f"エンコード完了: format={fmt} bytes={len(encoded)}")
    return encoded


def normalize_format(output_format: str) -> str:
    fmt = (output_format or DEFAULT_OUTPUT_FORMAT).strip().lower()
    if fmt == "jpg":
        return "jpeg"
    return fmt


def encoder_quality(quality: float) -> int:
    """0.0-1.0 の品質値を Pillow の 0-100 に変換する。範囲外は EncodeError。"""
    try:
        value = float(quality)
    except (TypeError, ValueError) as e:
        raise EncodeError(f"品質値が数値ではありません: {quality!r}") from e
    if value != value or not 0.0 <= value <= 1.0:
        raise EncodeError(f"品質値は0から1の範囲で指定してください: {quality!r}")
    return int(round(value * 100))


def build_encoder_save_kwargs(
    output_format: str,
    quality: float,
    webp_method: int = DEFAULT_WEBP_METHOD,
) -> Dict[str, Any]:
    """出力形式に応じたエンコーダ設定を返す。"""
    fmt = normalize_format(output_format)
    pillow_quality = encoder_quality(quality)

    if fmt == "webp":
        return {
            "format": "WEBP",
            "quality": pillow_quality,
            "method": max(0, min(6, int(webp_method))),
            "lossless": False,
        }
    if fmt == "jpeg":
        return {
            "format": "JPEG",
            "quality": min(pillow_quality, 95),
            "optimize": True,
            "progressive": True,
        }
    if fmt == "png":
        # PNGはロスレス。品質値を圧縮レベルへ変換する。
        compress_level = int(round((100 - pillow_quality) / 100 * 9))
        return {
            "format": "PNG",
            "optimize": True,
            "compress_level": max(0, min(9, compress_level)),
        }
    if fmt == "avif":
        return {
            "format": "AVIF",
            "quality": pillow_quality,
            "speed": 6,
        }
    raise EncodeError(f"サポートされていない出力形式: {output_format}")


def supported_output_formats() -> list[str]:
    """実行環境で利用可能な出力形式を返す。"""
    formats = ["jpeg", "png"]
    if _feature_enabled("webp") or _registered_format("WEBP"):
        formats.append("webp")
    if _feature_enabled("avif") or _registered_format("AVIF"):
        formats.append("avif")
    return formats


def extension_for(output_format: str) -> str:
    """出力形式に対応する拡張子（ドットなし）"""
    fmt = normalize_format(output_format)
    try:
        return _FORMAT_EXTENSIONS[fmt]
    except KeyError:
        raise EncodeError(f"サポートされていない出力形式: {output_format}") from None


def _prepare_for_format(image: Image.Image, fmt: str) -> Image.Image:
    if fmt in {"jpeg", "avif"} and image.mode in {"RGBA", "LA", "P", "PA"}:
        # 透過を持つ画像は白背景へ合成して保存する
        rgba = image.convert("RGBA")
        background = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
        background.alpha_composite(rgba)
        return background.convert("RGB")
    if fmt == "jpeg" and image.mode not in {"RGB", "L"}:
        return image.convert("RGB")
    if fmt == "webp" and image.mode not in {"RGB", "RGBA", "L"}:
        return image.convert("RGBA" if "A" in image.getbands() or image.mode == "P" else "RGB")
    return image


def _feature_enabled(feature_name: str) -> bool:
    try:
        return bool(features.check(feature_name))
    except Exception:
        return False


def _registered_format(name: str) -> bool:
    try:
        return any(v.upper() == name for v in Image.registered_extensions().values())
    except Exception:
        return False
