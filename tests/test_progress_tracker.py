import pytest

from karuku_converter.progress_tracker import ProgressTracker


def test_status_text_before_start() -> None:
    assert ProgressTracker().get_status_text() == "待機中"


def test_counts_and_item_states() -> None:
    tracker = ProgressTracker()
    tracker.start_batch(3)

    ok = tracker.start_item("a", "a.jpg")
    tracker.complete_item(ok)
    ng = tracker.start_item("b", "b.jpg")
    tracker.fail_item(ng, "壊れた画像")
    tracker.skip_item("c", "削除済み")
    tracker.complete_batch()

    bp = tracker.batch_progress
    assert (bp.completed_items, bp.failed_items, bp.skipped_items) == (1, 1, 1)
    assert bp.overall_progress == 100.0
    assert [item.status for item in bp.items] == ["completed", "failed", "skipped"]
    assert ng.error_message == "壊れた画像"
    assert ok.start_time is not None and ok.end_time is not None
    assert "進捗: 3/3 (100.0%)" in tracker.get_status_text()


def test_skip_started_item() -> None:
    tracker = ProgressTracker()
    tracker.start_batch(1)
    item = tracker.start_item("a")

    tracker.skip_started_item(item, "removed")

    assert item.status == "skipped"
    assert item.error_message == "removed"
    assert tracker.batch_progress.skipped_items == 1


def test_start_item_requires_batch() -> None:
    with pytest.raises(RuntimeError):
        ProgressTracker().start_item("a")


def test_register_unknown_event_raises() -> None:
    with pytest.raises(ValueError):
        ProgressTracker().register_callback("on_unknown", lambda: None)


def test_callback_error_does_not_break_tracking() -> None:
    tracker = ProgressTracker()

    def broken(_bp):
        raise RuntimeError("boom")

    tracker.register_callback("on_cancel", broken)
    tracker.start_batch(2)
    tracker.cancel_batch()

    assert tracker.batch_progress.cancelled
    assert tracker.batch_progress.end_time is not None
