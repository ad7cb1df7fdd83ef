"""変換済みバイト列をファイルへ書き出すエクスポート処理。

一時ファイルへ書き込んでから置換し、途中で壊れた出力ファイルを残さない。
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
import time
from typing import Iterable, List, Optional, Tuple
import uuid

from loguru import logger

from karuku_converter.models import ExportEntry


@dataclass(frozen=True)
class ExportResult:
    item_id: str
    output_path: Path
    success: bool
    bytes_written: int = 0
    error: Optional[str] = None
    error_category: Optional[str] = None
    retryable: bool = False


def _build_temp_save_path(target_path: Path) -> Path:
    """同一ディレクトリ内の一時保存パスを作る。"""
    base_name = target_path.name or "karuku_output"
    token = f"{os.getpid()}_{time.time_ns()}_{uuid.uuid4().hex[:10]}"
    return target_path.with_name(f".{base_name}.{token}.tmp")


def _analyze_file_error(error: BaseException) -> Tuple[str, bool]:
    """ファイル保存に使えるエラー分類 (error_category, retryable) を返す。"""
    if not isinstance(error, OSError):
        return "unknown", False

    win_error = getattr(error, "winerror", None)
    if os.name == "nt" and win_error:
        code = int(win_error)
        if code in {32, 33}:
            return "sharing_violation", True
        if code == 206:
            return "path_too_long", False
        if code == 5:
            return "permission_denied", False

    errno = getattr(error, "errno", None)
    if errno in {28, 122, 112}:
        return "no_space", False
    if errno in {13, 5, 30}:
        return "permission_denied", False
    if errno == 2:
        return "not_found", False
    if errno == 36:
        return "path_too_long", False
    return "unknown", False


def write_bytes_atomic(data: bytes, final_path: Path) -> None:
    """一時ファイル→置換で保存する。"""
    tmp_path = _build_temp_save_path(final_path)
    try:
        with tmp_path.open("wb") as fh:
            fh.write(data)
        os.replace(str(tmp_path), str(final_path))
    finally:
        if tmp_path.exists():
            try:
                tmp_path.unlink()
            except OSError:
                logger.warning(f"一時保存ファイルの削除に失敗: {tmp_path}")


def write_exports(entries: Iterable[ExportEntry], dest_dir: Path) -> List[ExportResult]:
    """
    エクスポート対象を出力フォルダーに書き出します

    Args:
        entries: ConversionQueue.exports() の結果
        dest_dir: 出力フォルダー

    Returns:
        List[ExportResult]: ファイルごとの結果
    """
    dest_dir = Path(dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)

    results: List[ExportResult] = []
    for entry in entries:
        output_path = dest_dir / entry.filename
        try:
            write_bytes_atomic(entry.data, output_path)
        except OSError as e:
            category, retryable = _analyze_file_error(e)
            logger.error(f"書き出しに失敗しました: {output_path}: {e}")
            results.append(
                ExportResult(
                    item_id=entry.item_id,
                    output_path=output_path,
                    success=False,
                    error=str(e),
                    error_category=category,
                    retryable=retryable,
                )
            )
            continue

        logger.info(f"✔ {entry.source_name or entry.item_id} → {output_path.name}")
        results.append(
            ExportResult(
                item_id=entry.item_id,
                output_path=output_path,
                success=True,
                bytes_written=len(entry.data),
            )
        )
    return results
