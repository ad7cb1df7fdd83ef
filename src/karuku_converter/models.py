"""変換キューのデータモデル。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional, Tuple

from karuku_converter.errors import ConversionFailed
from karuku_converter.resource_registry import ByteHandle

ItemStatus = Literal["pending", "converting", "done"]

STATUS_PENDING: ItemStatus = "pending"
STATUS_CONVERTING: ItemStatus = "converting"
STATUS_DONE: ItemStatus = "done"

SkipReason = Literal["not-found", "already-converting", "removed"]


@dataclass
class ImageItem:
    """キュー内の1枚の画像と、その変換状態"""

    item_id: str
    original: ByteHandle
    source_name: str = ""
    converted: Optional[ByteHandle] = None
    status: ItemStatus = STATUS_PENDING
    output_format: str = ""
    extension: str = ""
    converted_size: Optional[Tuple[int, int]] = None
    last_error: Optional[str] = None

    @property
    def has_converted_output(self) -> bool:
        return self.converted is not None

    def snapshot(self) -> "ItemSnapshot":
        return ItemSnapshot(
            item_id=self.item_id,
            source_name=self.source_name,
            status=self.status,
            has_converted_output=self.has_converted_output,
            original_bytes=self.original.size,
            converted_bytes=self.converted.size if self.converted is not None else None,
            converted_size=self.converted_size,
            extension=self.extension,
            last_error=self.last_error,
        )


@dataclass(frozen=True)
class ItemSnapshot:
    """状態問い合わせ用の読み取り専用ビュー"""

    item_id: str
    source_name: str
    status: ItemStatus
    has_converted_output: bool
    original_bytes: int
    converted_bytes: Optional[int] = None
    converted_size: Optional[Tuple[int, int]] = None
    extension: str = ""
    last_error: Optional[str] = None

    @property
    def reduction_rate(self) -> Optional[float]:
        """削減率（%）"""
        if self.converted_bytes is None or self.original_bytes == 0:
            return None
        return (1 - self.converted_bytes / self.original_bytes) * 100


@dataclass(frozen=True)
class EncodedImage:
    """変換パイプラインの出力"""

    data: bytes
    width: int
    height: int
    output_format: str
    extension: str


@dataclass(frozen=True)
class ConversionOutcome:
    """convert_one の結果"""

    item_id: str
    success: bool
    status: Optional[ItemStatus] = None
    error: Optional[ConversionFailed] = None
    skipped_reason: Optional[SkipReason] = None
    output_size: Optional[Tuple[int, int]] = None
    output_bytes: Optional[int] = None

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None

    def __bool__(self) -> bool:
        return self.success


@dataclass(frozen=True)
class ExportEntry:
    """エクスポート対象（変換済みバイト列と推奨ファイル名）"""

    item_id: str
    filename: str
    data: bytes
    source_name: str = ""
