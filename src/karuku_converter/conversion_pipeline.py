"""デコード → リサイズ → エンコードの変換パイプライン。"""

from __future__ import annotations

from dataclasses import dataclass
import time
from typing import Optional

from loguru import logger

from karuku_converter import codec
from karuku_converter.errors import ConversionStepError, EncodeError
from karuku_converter.models import EncodedImage
from karuku_converter.resize_engine import compute_target_size, resample


@dataclass(frozen=True)
class EncodeOptions:
    output_format: str = codec.DEFAULT_OUTPUT_FORMAT
    quality: float = codec.DEFAULT_QUALITY
    webp_method: int = codec.DEFAULT_WEBP_METHOD


def convert_bytes(
    data: bytes,
    target_width: Optional[int] = None,
    options: Optional[EncodeOptions] = None,
) -> EncodedImage:
    """
    画像バイト列を変換します

    Args:
        data: 入力画像のバイト列
        target_width: 目標幅（None ならリサイズなし）
        options: エンコード設定

    Returns:
        EncodedImage: 変換結果

    Raises:
        ConversionStepError: いずれかの段階で失敗した場合
    """
    opts = options or EncodeOptions()
    start_time = time.perf_counter()

    buffer = codec.decode(data)
    width, height = compute_target_size(buffer.width, buffer.height, target_width)
    resized = resample(buffer, width, height)
    try:
        encoded = codec.encode(
            resized,
            output_format=opts.output_format,
            quality=opts.quality,
            webp_method=opts.webp_method,
        )
    except ConversionStepError:
        raise
    except Exception as e:
        raise EncodeError(str(e)) from e

    elapsed = time.perf_counter() - start_time
    logger.debug(
        f"変換完了: {buffer.width}x{buffer.height} -> {width}x{height} "
        f"{len(data)} -> {len(encoded)} bytes ({elapsed:.3f}s)"
    )
    return EncodedImage(
        data=encoded,
        width=width,
        height=height,
        output_format=codec.normalize_format(opts.output_format),
        extension=codec.extension_for(opts.output_format),
    )


class ImageConverter:
    """設定を保持した変換関数。キューに差し込んで使う。"""

    def __init__(self, options: Optional[EncodeOptions] = None):
        self.options = options or EncodeOptions()

    def __call__(self, data: bytes, target_width: Optional[int]) -> EncodedImage:
        return convert_bytes(data, target_width, self.options)
