"""
一括変換ドライバーモジュール

呼び出し時点の pending アイテムを記録し、キュー順に1件ずつ変換します。
1件の失敗でバッチは中断しません。
"""

from __future__ import annotations

from dataclasses import dataclass, field
import threading
from typing import Callable, List, Optional

from loguru import logger

from karuku_converter.conversion_queue import _UNSET, ConversionQueue, TargetWidth
from karuku_converter.errors import BatchAlreadyRunningError, describe_error
from karuku_converter.models import ConversionOutcome
from karuku_converter.progress_tracker import ProgressTracker


@dataclass
class BatchReport:
    """一括変換の結果"""

    item_ids: List[str] = field(default_factory=list)
    outcomes: List[ConversionOutcome] = field(default_factory=list)
    cancelled: bool = False

    @property
    def total(self) -> int:
        return len(self.item_ids)

    @property
    def converted_ids(self) -> List[str]:
        return [o.item_id for o in self.outcomes if o.success]

    @property
    def failed_ids(self) -> List[str]:
        return [o.item_id for o in self.outcomes if not o.success and not o.skipped]

    @property
    def skipped_ids(self) -> List[str]:
        return [o.item_id for o in self.outcomes if o.skipped]

    @property
    def success(self) -> bool:
        return not self.failed_ids and not self.cancelled


class BatchDriver:
    """キューの pending アイテムを順番に変換するドライバー"""

    def __init__(self, queue: ConversionQueue, tracker: Optional[ProgressTracker] = None):
        self.queue = queue
        self.tracker = tracker or ProgressTracker()
        self._run_lock = threading.Lock()
        self._cancel_requested = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last_report: Optional[BatchReport] = None

    def convert_all(
        self,
        target_width: TargetWidth = _UNSET,  # type: ignore[assignment]
        cancel_check: Optional[Callable[[], bool]] = None,
    ) -> BatchReport:
        """
        呼び出し時点の pending アイテムをすべて変換します

        Args:
            target_width: 目標幅。省略時はキューの設定値
            cancel_check: 各アイテムの前に呼ばれるキャンセル判定関数

        Returns:
            BatchReport: 各アイテムの結果

        Raises:
            BatchAlreadyRunningError: 別の一括変換が実行中
        """
        if not self._run_lock.acquire(blocking=False):
            raise BatchAlreadyRunningError("一括変換は既に実行中です")
        try:
            return self._run(target_width, cancel_check)
        finally:
            self._cancel_requested.clear()
            self._run_lock.release()

    def _run(self, target_width, cancel_check) -> BatchReport:
        pending_ids = self.queue.pending_ids()
        report = BatchReport(item_ids=list(pending_ids))
        self._last_report = report
        self.tracker.start_batch(len(pending_ids))
        logger.info(f"一括変換を開始: {len(pending_ids)} 件")

        for item_id in pending_ids:
            if self._cancel_requested.is_set() or (cancel_check and cancel_check()):
                report.cancelled = True
                self.tracker.cancel_batch()
                logger.info("一括変換がキャンセルされました")
                return report

            snapshot = self.queue.get_status(item_id)
            if snapshot is None:
                report.outcomes.append(
                    ConversionOutcome(item_id=item_id, success=False, skipped_reason="not-found")
                )
                self.tracker.skip_item(item_id, "削除済み")
                continue

            progress_item = self.tracker.start_item(item_id, snapshot.source_name)
            outcome = self.queue.convert_one(item_id, target_width)
            report.outcomes.append(outcome)

            if outcome.success:
                self.tracker.complete_item(progress_item)
            elif outcome.error is not None:
                self.tracker.fail_item(progress_item, describe_error(outcome.error))
            else:
                # 変換中に削除された、または別経路で変換中だった
                self.tracker.skip_started_item(progress_item, outcome.skipped_reason or "")

        self.tracker.complete_batch()
        logger.info(
            f"一括変換が終了: 成功 {len(report.converted_ids)} / 失敗 {len(report.failed_ids)}"
            f" / スキップ {len(report.skipped_ids)}"
        )
        return report

    def cancel(self) -> None:
        """次のアイテムに進む前に停止する（変換中のアイテムは中断しない）"""
        if self.is_running():
            self._cancel_requested.set()

    def start(
        self,
        target_width: TargetWidth = _UNSET,  # type: ignore[assignment]
        on_finished: Optional[Callable[[BatchReport], None]] = None,
    ) -> threading.Thread:
        """一括変換をバックグラウンドスレッドで開始する"""
        if self.is_running():
            raise BatchAlreadyRunningError("一括変換は既に実行中です")
        self._cancel_requested.clear()
        self._last_report = None

        def worker():
            try:
                report = self.convert_all(target_width)
            except Exception as e:
                logger.exception(f"一括変換スレッドでエラーが発生しました: {e}")
                self._last_report = None
                return
            if on_finished:
                on_finished(report)

        self._thread = threading.Thread(target=worker, name="karuku-batch", daemon=True)
        self._thread.start()
        return self._thread

    def wait(self, timeout: Optional[float] = None) -> Optional[BatchReport]:
        """バックグラウンド実行の終了を待ち、最後の結果を返す（失敗時は None）"""
        if self._thread is not None:
            self._thread.join(timeout)
        return self._last_report

    def is_running(self) -> bool:
        """処理中かどうか"""
        if self._run_lock.locked():
            return True
        return self._thread is not None and self._thread.is_alive()
