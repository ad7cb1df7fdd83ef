#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
pytest設定ファイル
共通のフィクスチャやテスト設定を定義
"""

import io
import threading
from typing import Callable, List, Optional

import pytest
from PIL import Image

from karuku_converter.conversion_queue import ConversionQueue
from karuku_converter.errors import DecodeError
from karuku_converter.models import EncodedImage
from karuku_converter.resource_registry import ResourceRegistry


def encode_image(img: Image.Image, fmt: str = "PNG", **kwargs) -> bytes:
    buffer = io.BytesIO()
    img.save(buffer, format=fmt, **kwargs)
    return buffer.getvalue()


def make_photo(width: int, height: int) -> Image.Image:
    """写真に近い（グラデーション＋ノイズの）RGB画像を作る"""
    gradient = Image.linear_gradient("L").resize((width, height))
    noise = Image.effect_noise((width, height), 24)
    mirrored = gradient.transpose(Image.Transpose.FLIP_LEFT_RIGHT)
    return Image.merge("RGB", (gradient, noise, mirrored))


class FakeConverter:
    """呼び出し記録と失敗注入ができる変換関数"""

    def __init__(self):
        self.calls: List[tuple] = []
        self.fail_next = 0
        self.error_factory: Callable[[], Exception] = lambda: DecodeError("壊れた画像")
        self.before_return: Optional[Callable[[bytes], None]] = None

    def __call__(self, data: bytes, target_width: Optional[int]) -> EncodedImage:
        self.calls.append((data, target_width))
        if self.before_return is not None:
            self.before_return(data)
        if self.fail_next > 0:
            self.fail_next -= 1
            raise self.error_factory()
        payload = b"converted:" + data + f":{len(self.calls)}".encode()
        width = target_width or 100
        return EncodedImage(
            data=payload,
            width=width,
            height=width // 2,
            output_format="webp",
            extension="webp",
        )


class BlockingConverter(FakeConverter):
    """release() されるまで変換を止める変換関数"""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self._gate = threading.Event()

    def release(self):
        self._gate.set()

    def __call__(self, data, target_width):
        self.entered.set()
        assert self._gate.wait(timeout=10), "変換がブロックされたままです"
        return super().__call__(data, target_width)


@pytest.fixture
def registry():
    return ResourceRegistry()


@pytest.fixture
def fake_converter():
    return FakeConverter()


@pytest.fixture
def queue(fake_converter, registry):
    """失敗注入可能な変換関数を使うキュー"""
    counter = iter(range(1, 10_000))
    return ConversionQueue(
        converter=fake_converter,
        registry=registry,
        id_factory=lambda: f"img{next(counter)}",
    )


@pytest.fixture
def sample_images():
    """様々なフォーマットのサンプル画像バイト列"""
    return {
        "jpeg": encode_image(Image.new("RGB", (640, 480), color=(255, 0, 0)), "JPEG", quality=95),
        "png": encode_image(Image.new("RGBA", (320, 200), color=(0, 255, 0, 128)), "PNG"),
        "gif": encode_image(Image.new("P", (120, 90), color=0), "GIF"),
        "portrait": encode_image(Image.new("RGB", (300, 500), color=(255, 255, 0)), "JPEG"),
        "grayscale": encode_image(Image.new("L", (64, 64), color=128), "PNG"),
    }
