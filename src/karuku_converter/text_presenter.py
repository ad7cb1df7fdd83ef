"""Pure text builders for queue status labels."""

from __future__ import annotations

from typing import Optional


def format_file_size(size_in_bytes: int) -> str:
    """ファイルサイズを読みやすい形式に変換します（例: 1.2 MB）"""
    size = float(size_in_bytes)
    for unit in ["B", "KB", "MB", "GB"]:
        if size < 1024.0 or unit == "GB":
            break
        size /= 1024.0
    return f"{size:.1f} {unit}"


def build_queue_status_text(*, pending_count: int, total_count: int) -> str:
    """Build status line under the queue."""
    if total_count == 0:
        return ""
    if pending_count > 0:
        return f"{pending_count} 件待機中"
    return "すべて完了"


def build_convert_button_text(target_width: Optional[int]) -> str:
    """Build the label of the batch button."""
    return "すべてリサイズ" if target_width else "すべて変換"


def build_item_result_text(
    *,
    source_name: str,
    original_bytes: int,
    converted_bytes: Optional[int],
    last_error: Optional[str] = None,
) -> str:
    """Build one line describing an item's conversion result."""
    if converted_bytes is None:
        if last_error:
            return f"{source_name}: 失敗 ({last_error})"
        return f"{source_name}: 未変換"
    if original_bytes > 0:
        reduction = (1 - converted_bytes / original_bytes) * 100
        return (
            f"{source_name}: {format_file_size(original_bytes)} → "
            f"{format_file_size(converted_bytes)} ({-reduction:+.1f}%)"
        )
    return f"{source_name}: {format_file_size(converted_bytes)}"


def build_batch_summary_text(*, converted: int, failed: int, skipped: int = 0, cancelled: bool = False) -> str:
    """Build the message shown after a batch finishes."""
    if cancelled:
        return f"⏹ 一括変換を中止しました（完了 {converted} 件）"
    if failed == 0:
        message = f"✅ 全{converted}件の変換が完了しました"
    else:
        message = f"⚠️ {converted}件変換完了、{failed}件失敗"
    if skipped:
        message += f"（スキップ {skipped} 件）"
    return message
