"""ログ設定と、一括変換ごとの実行ログ（ログファイル + サマリーJSON）の管理。

1回の一括変換を「実行」と呼び、batch_<run_id>.log と batch_<run_id>_summary.json
を組で保存・削除する。
"""

from __future__ import annotations

from collections import defaultdict
import json
import os
import re
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from loguru import logger

from karuku_converter.batch_driver import BatchReport
from karuku_converter.errors import describe_error, failure_step

LOG_DIR_ENV_VAR = "KARUKU_LOG_DIR"
DEFAULT_KEEP_DAYS = 30
DEFAULT_KEEP_RUNS = 50
_APP_DIR_NAME = "karukuconvert"
_RUN_ID_FORMAT = "%Y%m%d_%H%M%S"
_RUN_FILE_PATTERN = re.compile(r"^batch_(\d{8}_\d{6})(?:\.log|_summary\.json)$")


@dataclass(frozen=True)
class RunLogArtifacts:
    """1回の一括変換で書き出すファイルの組"""

    run_id: str
    log_dir: Path

    @property
    def run_log_path(self) -> Path:
        return self.log_dir / f"batch_{self.run_id}.log"

    @property
    def summary_path(self) -> Path:
        return self.log_dir / f"batch_{self.run_id}_summary.json"


def setup_logging(
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    log_file: Optional[Union[str, Path]] = None,
) -> None:
    """ロギングの設定を行います"""
    logger.remove()  # デフォルト設定を削除
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{function}</cyan>: <white>{message}</white>",
        colorize=True,
        level=console_level,
    )
    if log_file is not None:
        logger.add(
            str(log_file),
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {function}: {message}",
            rotation="1 day",
            level=file_level,
            encoding="utf-8",
        )


def get_default_log_dir(
    *,
    os_name: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> Path:
    """実行ログの保存先。KARUKU_LOG_DIR > OS標準の状態ディレクトリ"""
    resolved_env = os.environ if env is None else env
    override = resolved_env.get(LOG_DIR_ENV_VAR)
    if override:
        return Path(override)

    resolved_home = home or Path.home()
    if (os_name or os.name) == "nt":
        app_data = resolved_env.get("LOCALAPPDATA") or resolved_env.get("APPDATA")
        if app_data:
            return Path(app_data) / "KarukuConvert" / "logs"
        return resolved_home / f".{_APP_DIR_NAME}" / "logs"

    state_home = resolved_env.get("XDG_STATE_HOME")
    base = Path(state_home) if state_home else resolved_home / ".local" / "state"
    return base / _APP_DIR_NAME / "logs"


def start_batch_run(
    *,
    keep_days: int = DEFAULT_KEEP_DAYS,
    keep_runs: int = DEFAULT_KEEP_RUNS,
    now: Optional[datetime] = None,
) -> RunLogArtifacts:
    """ログフォルダーを用意し、古い実行を整理してから新しい実行のパスを返す"""
    now_dt = now or datetime.now()
    log_dir = get_default_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    prune_batch_runs(log_dir, keep_days=keep_days, keep_runs=keep_runs, now=now_dt)
    return RunLogArtifacts(run_id=now_dt.strftime(_RUN_ID_FORMAT), log_dir=log_dir)


def prune_batch_runs(
    log_dir: Path,
    *,
    keep_days: int = DEFAULT_KEEP_DAYS,
    keep_runs: int = DEFAULT_KEEP_RUNS,
    now: Optional[datetime] = None,
) -> List[str]:
    """
    保持期間外、または新しい順で keep_runs 件を超える実行を削除します

    経過日数は run_id の日時で判定し、ログとサマリーはまとめて削除します。

    Returns:
        List[str]: 削除した run_id（新しい順）
    """
    runs = _collect_runs(log_dir)
    cutoff = (now or datetime.now()) - timedelta(days=max(0, keep_days))

    removed: List[str] = []
    for index, run_id in enumerate(sorted(runs, reverse=True)):
        started_at = datetime.strptime(run_id, _RUN_ID_FORMAT)
        within_count = keep_runs <= 0 or index < keep_runs
        if within_count and started_at >= cutoff:
            continue
        for path in runs[run_id]:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"古い実行ログを削除できません: {path}: {e}")
        removed.append(run_id)

    if removed:
        logger.debug(f"古い実行ログを削除しました: {len(removed)} 件")
    return removed


def build_run_items(report: BatchReport, source_names: Mapping[str, str]) -> List[Dict[str, Any]]:
    """一括変換の各アイテムの結果をサマリー用の辞書に変換する"""
    outcomes = {outcome.item_id: outcome for outcome in report.outcomes}
    items: List[Dict[str, Any]] = []
    for item_id in report.item_ids:
        entry: Dict[str, Any] = {"item_id": item_id, "source": source_names.get(item_id, "")}
        outcome = outcomes.get(item_id)
        if outcome is None:
            # キャンセルで未処理のまま終わった
            entry["result"] = "not-run"
        elif outcome.success:
            entry["result"] = "converted"
            if outcome.output_size:
                entry["size"] = list(outcome.output_size)
            entry["bytes"] = outcome.output_bytes
        elif outcome.skipped:
            entry["result"] = "skipped"
            entry["reason"] = outcome.skipped_reason
        else:
            entry["result"] = "failed"
            entry["step"] = failure_step(outcome.error)
            entry["error"] = describe_error(outcome.error) if outcome.error is not None else ""
        items.append(entry)
    return items


def write_run_summary(summary_path: Path, payload: Dict[str, Any]) -> None:
    """summary JSON をアトミックに保存する。"""
    summary_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = summary_path.with_suffix(f"{summary_path.suffix}.tmp")
    with tmp_path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, ensure_ascii=False, indent=2)
    tmp_path.replace(summary_path)


def _collect_runs(log_dir: Path) -> Dict[str, List[Path]]:
    runs: Dict[str, List[Path]] = defaultdict(list)
    try:
        candidates = list(log_dir.iterdir())
    except OSError:
        return {}
    for path in candidates:
        match = _RUN_FILE_PATTERN.match(path.name)
        if match is None or not path.is_file():
            continue
        try:
            datetime.strptime(match.group(1), _RUN_ID_FORMAT)
        except ValueError:
            continue
        runs[match.group(1)].append(path)
    return runs
