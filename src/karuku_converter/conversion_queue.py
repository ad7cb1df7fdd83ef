"""
変換キューモジュール

画像アイテムの追加・削除・選択と、1件ずつの変換（状態遷移）を管理します。

状態遷移:
    pending → converting → done
    converting → pending  （失敗時、以前の変換結果がない場合）
    converting → done     （失敗時、以前の変換結果が残っている場合）
"""

from __future__ import annotations

import threading
import uuid
from typing import Callable, Iterable, List, Optional, Tuple, Union

from loguru import logger

from karuku_converter import codec
from karuku_converter.conversion_pipeline import ImageConverter
from karuku_converter.errors import ConversionFailed, describe_error
from karuku_converter.models import (
    STATUS_CONVERTING,
    STATUS_DONE,
    STATUS_PENDING,
    ConversionOutcome,
    EncodedImage,
    ExportEntry,
    ImageItem,
    ItemSnapshot,
)
from karuku_converter.resize_engine import parse_target_width
from karuku_converter.resource_registry import ResourceRegistry

Converter = Callable[[bytes, Optional[int]], EncodedImage]
TargetWidth = Union[int, str, None]

_UNSET = object()


class ConversionQueue:
    """順序付きの画像アイテム列と、その変換状態を管理するキュー"""

    def __init__(
        self,
        converter: Optional[Converter] = None,
        registry: Optional[ResourceRegistry] = None,
        target_width: TargetWidth = None,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        """
        Args:
            converter: バイト列と目標幅から EncodedImage を作る変換関数
            registry: バイトハンドルのレジストリ
            target_width: 初期の目標幅（無効値ならリサイズなし）
            id_factory: アイテムID生成関数
        """
        self.converter: Converter = converter or ImageConverter()
        self.registry = registry or ResourceRegistry()
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)
        self._items: List[ImageItem] = []
        self._selected_id: Optional[str] = None
        self._target_width = parse_target_width(target_width)
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # 設定
    # ------------------------------------------------------------------

    @property
    def target_width(self) -> Optional[int]:
        return self._target_width

    def set_target_width(self, value: TargetWidth) -> Optional[int]:
        """目標幅を設定する。以降の変換すべてに適用される。"""
        with self._lock:
            self._target_width = parse_target_width(value)
            logger.debug(f"目標幅を変更: {self._target_width}")
            return self._target_width

    # ------------------------------------------------------------------
    # 追加・削除・選択
    # ------------------------------------------------------------------

    def add(self, data: bytes, source_name: str = "") -> str:
        """画像バイト列を pending 状態で末尾に追加し、IDを返す"""
        with self._lock:
            item_id = self._new_id()
            handle = self.registry.acquire(data, label=f"{item_id}:original")
            self._items.append(
                ImageItem(item_id=item_id, original=handle, source_name=source_name or "")
            )
        logger.debug(f"アイテム追加: {item_id} {source_name} ({handle.size} bytes)")
        return item_id

    def add_many(self, sources: Iterable[Tuple[bytes, str]]) -> List[str]:
        """(バイト列, ファイル名) の組をまとめて追加する"""
        return [self.add(data, source_name) for data, source_name in sources]

    def remove(self, item_id: str) -> None:
        """
        アイテムを削除し、保持しているハンドルを解放します

        選択中のアイテムを削除した場合は、同じ位置に繰り上がったアイテム、
        なければ先頭、それもなければ選択なしになります。
        未知のIDは何もしません。
        """
        with self._lock:
            index = self._index_of(item_id)
            if index is None:
                return
            item = self._items.pop(index)
            self.registry.release(item.original)
            self.registry.release_if_live(item.converted)
            item.converted = None

            if self._selected_id == item_id:
                if self._items:
                    next_item = self._items[index] if index < len(self._items) else self._items[0]
                    self._selected_id = next_item.item_id
                else:
                    self._selected_id = None

        if item.status == STATUS_CONVERTING:
            logger.info(f"変換中のアイテムを削除しました（結果は破棄されます）: {item_id}")
        else:
            logger.debug(f"アイテム削除: {item_id}")

    def clear(self) -> None:
        """全アイテムを削除する"""
        with self._lock:
            for item_id in [item.item_id for item in self._items]:
                self.remove(item_id)
            self._selected_id = None

    def select(self, item_id: Optional[str]) -> None:
        """選択アイテムを設定する。None で選択解除、未知のIDは無視"""
        with self._lock:
            if item_id is None:
                self._selected_id = None
            elif self._find(item_id) is not None:
                self._selected_id = item_id

    @property
    def selected_id(self) -> Optional[str]:
        with self._lock:
            if self._selected_id is not None and self._find(self._selected_id) is None:
                return None
            return self._selected_id

    # ------------------------------------------------------------------
    # 変換
    # ------------------------------------------------------------------

    def convert_one(self, item_id: str, target_width: TargetWidth = _UNSET) -> ConversionOutcome:  # type: ignore[assignment]
        """
        1件のアイテムを変換します

        Args:
            item_id: 対象アイテムのID
            target_width: 目標幅。省略時はキューの設定値

        Returns:
            ConversionOutcome: 変換結果。失敗時は error に ConversionFailed が入る
        """
        with self._lock:
            item = self._find(item_id)
            if item is None:
                logger.debug(f"変換対象が見つかりません: {item_id}")
                return ConversionOutcome(item_id=item_id, success=False, skipped_reason="not-found")
            if item.status == STATUS_CONVERTING:
                logger.warning(f"既に変換中のため要求を無視しました: {item_id}")
                return ConversionOutcome(
                    item_id=item_id,
                    success=False,
                    status=STATUS_CONVERTING,
                    skipped_reason="already-converting",
                )
            width = self._target_width if target_width is _UNSET else parse_target_width(target_width)
            source = self.registry.read(item.original)
            item.status = STATUS_CONVERTING

        logger.debug(f"変換開始: {item_id} width={width}")
        try:
            encoded = self.converter(source, width)
        except Exception as e:
            return self._finish_failure(item, e)
        except BaseException:
            # 中断時も converting のまま残さない
            with self._lock:
                if self._find(item_id) is item:
                    item.status = STATUS_DONE if item.converted is not None else STATUS_PENDING
            raise
        return self._finish_success(item, encoded)

    def _finish_success(self, item: ImageItem, encoded: EncodedImage) -> ConversionOutcome:
        with self._lock:
            if self._find(item.item_id) is not item:
                logger.info(f"削除済みアイテムの変換結果を破棄しました: {item.item_id}")
                return ConversionOutcome(item_id=item.item_id, success=False, skipped_reason="removed")

            new_handle = self.registry.acquire(encoded.data, label=f"{item.item_id}:converted")
            self.registry.release_if_live(item.converted)
            item.converted = new_handle
            item.output_format = encoded.output_format
            item.extension = encoded.extension
            item.converted_size = (encoded.width, encoded.height)
            item.last_error = None
            item.status = STATUS_DONE

        logger.info(
            f"変換完了: {item.source_name or item.item_id} → {encoded.width}x{encoded.height} "
            f"({new_handle.size} bytes)"
        )
        return ConversionOutcome(
            item_id=item.item_id,
            success=True,
            status=STATUS_DONE,
            output_size=(encoded.width, encoded.height),
            output_bytes=new_handle.size,
        )

    def _finish_failure(self, item: ImageItem, error: Exception) -> ConversionOutcome:
        failure = ConversionFailed(item.item_id, error)
        with self._lock:
            if self._find(item.item_id) is not item:
                logger.info(f"削除済みアイテムの変換が失敗しました（無視）: {item.item_id}")
                return ConversionOutcome(
                    item_id=item.item_id,
                    success=False,
                    error=failure,
                    skipped_reason="removed",
                )
            # 以前の変換結果があれば done のまま残す
            item.status = STATUS_DONE if item.converted is not None else STATUS_PENDING
            item.last_error = describe_error(error)
            status = item.status

        logger.warning(f"変換失敗: {item.source_name or item.item_id}: {item.last_error}")
        return ConversionOutcome(item_id=item.item_id, success=False, status=status, error=failure)

    # ------------------------------------------------------------------
    # 問い合わせ・エクスポート
    # ------------------------------------------------------------------

    def get_status(self, item_id: str) -> Optional[ItemSnapshot]:
        with self._lock:
            item = self._find(item_id)
            return item.snapshot() if item is not None else None

    def snapshots(self) -> List[ItemSnapshot]:
        with self._lock:
            return [item.snapshot() for item in self._items]

    def item_ids(self) -> List[str]:
        with self._lock:
            return [item.item_id for item in self._items]

    def pending_ids(self) -> List[str]:
        with self._lock:
            return [item.item_id for item in self._items if item.status == STATUS_PENDING]

    @property
    def pending_count(self) -> int:
        with self._lock:
            return sum(1 for item in self._items if item.status == STATUS_PENDING)

    @property
    def converted_count(self) -> int:
        with self._lock:
            return sum(1 for item in self._items if item.converted is not None)

    def get_converted_bytes(self, item_id: str) -> Optional[bytes]:
        """変換済みバイト列を返す。未変換・未知のIDなら None"""
        with self._lock:
            item = self._find(item_id)
            if item is None or item.converted is None:
                return None
            return self.registry.read(item.converted)

    def suggested_filename(self, item_id: str) -> Optional[str]:
        """エクスポート用のファイル名 converted-<id>.<ext> を返す"""
        with self._lock:
            item = self._find(item_id)
            if item is None:
                return None
            extension = item.extension or self._default_extension()
            return f"converted-{item.item_id}.{extension}"

    def exports(self) -> List[ExportEntry]:
        """done 状態のアイテムのバイト列とファイル名をキュー順に返す

        再変換中のアイテムは、以前の結果を持っていても含めない。
        """
        with self._lock:
            return [
                ExportEntry(
                    item_id=item.item_id,
                    filename=f"converted-{item.item_id}.{item.extension}",
                    data=self.registry.read(item.converted),
                    source_name=item.source_name,
                )
                for item in self._items
                if item.status == STATUS_DONE and item.converted is not None
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, item_id: object) -> bool:
        with self._lock:
            return isinstance(item_id, str) and self._find(item_id) is not None

    # ------------------------------------------------------------------

    def _find(self, item_id: str) -> Optional[ImageItem]:
        for item in self._items:
            if item.item_id == item_id:
                return item
        return None

    def _index_of(self, item_id: str) -> Optional[int]:
        for index, item in enumerate(self._items):
            if item.item_id == item_id:
                return index
        return None

    def _new_id(self) -> str:
        item_id = self._id_factory()
        while self._find(item_id) is not None:
            item_id = self._id_factory()
        return item_id

    def _default_extension(self) -> str:
        options = getattr(self.converter, "options", None)
        output_format = getattr(options, "output_format", codec.DEFAULT_OUTPUT_FORMAT)
        return codec.extension_for(output_format)
