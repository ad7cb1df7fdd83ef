"""
一括変換の進捗トラッキングのためのユーティリティモジュール
"""
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from loguru import logger


@dataclass
class ProgressItem:
    """進捗アイテム"""
    item_id: str
    name: str = ""
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    status: str = "pending"  # pending, processing, completed, failed, skipped
    error_message: Optional[str] = None

    def start(self):
        """処理開始"""
        self.start_time = datetime.now()
        self.status = "processing"

    def complete(self):
        """処理完了"""
        self.end_time = datetime.now()
        self.status = "completed"

    def fail(self, error_message: str):
        """処理失敗"""
        self.end_time = datetime.now()
        self.status = "failed"
        self.error_message = error_message


@dataclass
class BatchProgress:
    """バッチ処理の進捗"""
    total_items: int
    completed_items: int = 0
    failed_items: int = 0
    skipped_items: int = 0
    items: List[ProgressItem] = field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    cancelled: bool = False

    @property
    def processed_items(self) -> int:
        """処理済みアイテム数"""
        return self.completed_items + self.failed_items + self.skipped_items

    @property
    def overall_progress(self) -> float:
        """全体の進捗率"""
        if self.total_items == 0:
            return 0.0
        return (self.processed_items / self.total_items) * 100

    @property
    def elapsed_time(self) -> Optional[timedelta]:
        """経過時間"""
        if not self.start_time:
            return None
        end = self.end_time or datetime.now()
        return end - self.start_time

    @property
    def estimated_remaining_time(self) -> Optional[timedelta]:
        """残り時間の推定"""
        if not self.start_time or self.processed_items == 0:
            return None

        elapsed = self.elapsed_time
        if not elapsed or elapsed.total_seconds() == 0:
            return None

        rate = self.processed_items / elapsed.total_seconds()
        remaining_items = self.total_items - self.processed_items
        return timedelta(seconds=remaining_items / rate)


class ProgressTracker:
    """進捗トラッカー"""

    EVENTS = ("on_start", "on_update", "on_item_complete", "on_item_fail", "on_complete", "on_cancel")

    def __init__(self):
        self.batch_progress: Optional[BatchProgress] = None
        self.callbacks: Dict[str, List[Callable]] = {event: [] for event in self.EVENTS}
        self._lock = threading.RLock()

    def register_callback(self, event: str, callback: Callable):
        """コールバックを登録"""
        if event not in self.callbacks:
            raise ValueError(f"未知のイベントです: {event}")
        self.callbacks[event].append(callback)

    def start_batch(self, total_items: int):
        """バッチ処理を開始"""
        with self._lock:
            self.batch_progress = BatchProgress(
                total_items=total_items,
                start_time=datetime.now()
            )
            self._trigger_callbacks('on_start', self.batch_progress)

    def start_item(self, item_id: str, name: str = "") -> ProgressItem:
        """アイテムの処理を開始"""
        with self._lock:
            if not self.batch_progress:
                raise RuntimeError("バッチ処理が開始されていません")

            item = ProgressItem(item_id=item_id, name=name)
            item.start()
            self.batch_progress.items.append(item)
            self._trigger_callbacks('on_update', self.batch_progress, item)
            return item

    def complete_item(self, item: ProgressItem):
        """アイテムの処理を完了"""
        with self._lock:
            item.complete()
            if self.batch_progress:
                self.batch_progress.completed_items += 1
            self._trigger_callbacks('on_item_complete', item)
            self._trigger_callbacks('on_update', self.batch_progress, item)

    def fail_item(self, item: ProgressItem, error_message: str):
        """アイテムの処理を失敗"""
        with self._lock:
            item.fail(error_message)
            if self.batch_progress:
                self.batch_progress.failed_items += 1
            self._trigger_callbacks('on_item_fail', item, error_message)
            self._trigger_callbacks('on_update', self.batch_progress, item)

    def skip_item(self, item_id: str, reason: str):
        """アイテムをスキップ"""
        with self._lock:
            if self.batch_progress:
                self.batch_progress.skipped_items += 1
                item = ProgressItem(item_id=item_id, status="skipped", error_message=reason)
                self.batch_progress.items.append(item)
                self._trigger_callbacks('on_update', self.batch_progress, item)

    def skip_started_item(self, item: ProgressItem, reason: str):
        """開始済みのアイテムをスキップ扱いにする"""
        with self._lock:
            item.end_time = datetime.now()
            item.status = "skipped"
            item.error_message = reason
            if self.batch_progress:
                self.batch_progress.skipped_items += 1
            self._trigger_callbacks('on_update', self.batch_progress, item)

    def complete_batch(self):
        """バッチ処理を完了"""
        with self._lock:
            if self.batch_progress:
                self.batch_progress.end_time = datetime.now()
                self._trigger_callbacks('on_complete', self.batch_progress)

    def cancel_batch(self):
        """バッチ処理をキャンセル"""
        with self._lock:
            if self.batch_progress:
                self.batch_progress.end_time = datetime.now()
                self.batch_progress.cancelled = True
                self._trigger_callbacks('on_cancel', self.batch_progress)

    def get_status_text(self) -> str:
        """ステータステキストを取得"""
        with self._lock:
            if not self.batch_progress:
                return "待機中"

            bp = self.batch_progress
            status_parts = [
                f"進捗: {bp.processed_items}/{bp.total_items} ({bp.overall_progress:.1f}%)",
                f"成功: {bp.completed_items}",
                f"失敗: {bp.failed_items}",
                f"スキップ: {bp.skipped_items}"
            ]

            if bp.elapsed_time:
                status_parts.append(f"経過: {self._format_timedelta(bp.elapsed_time)}")

            if bp.estimated_remaining_time and bp.end_time is None:
                status_parts.append(f"残り: {self._format_timedelta(bp.estimated_remaining_time)}")

            return " | ".join(status_parts)

    @staticmethod
    def _format_timedelta(td: timedelta) -> str:
        """timedelta を読みやすい形式に変換"""
        total_seconds = int(td.total_seconds())
        hours = total_seconds // 3600
        minutes = (total_seconds % 3600) // 60
        seconds = total_seconds % 60

        if hours > 0:
            return f"{hours}時間{minutes}分"
        elif minutes > 0:
            return f"{minutes}分{seconds}秒"
        else:
            return f"{seconds}秒"

    def _trigger_callbacks(self, event: str, *args):
        """コールバックをトリガー"""
        for callback in self.callbacks.get(event, []):
            try:
                callback(*args)
            except Exception as e:
                logger.error(f"コールバックエラー ({event}): {e}")
