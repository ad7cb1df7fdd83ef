"""
コマンドラインインターフェース

画像ファイルをキューに読み込み、一括変換して出力フォルダーに書き出します。
"""

from __future__ import annotations

import argparse
import json
import sys
import time
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence

from loguru import logger

from karuku_converter import codec
from karuku_converter.batch_driver import BatchDriver
from karuku_converter.conversion_pipeline import ImageConverter
from karuku_converter.conversion_queue import ConversionQueue
from karuku_converter.errors import describe_error
from karuku_converter.export_writer import write_exports
from karuku_converter.runtime_logging import build_run_items, setup_logging, start_batch_run, write_run_summary
from karuku_converter.settings_store import ConversionSettings, SettingsStore, apply_env_overrides
from karuku_converter.text_presenter import build_batch_summary_text

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp", ".bmp", ".gif", ".tiff", ".tif", ".avif")


def _build_arg_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI use."""
    p = argparse.ArgumentParser(
        prog="karuku-convert",
        description="画像を一括で WebP などに変換するコマンドラインツール",
    )
    p.add_argument("inputs", nargs="+", help="入力画像ファイルまたはフォルダー")
    p.add_argument("-d", "--dest", required=True, help="出力フォルダー")
    p.add_argument("-w", "--width", default=None, help="変換後の幅(px)。省略時はリサイズなし")
    p.add_argument("-q", "--quality", type=float, default=None, help="品質 (0.0-1.0)")
    p.add_argument(
        "-f",
        "--format",
        type=codec.normalize_format,
        choices=codec.supported_output_formats(),
        default=None,
        help="出力形式 (jpg は jpeg として扱う)",
    )
    p.add_argument("-r", "--recursive", action="store_true", help="フォルダーを再帰的に探索する")
    p.add_argument("--save-settings", action="store_true", help="指定したオプションを既定値として保存する")
    p.add_argument("--json", action="store_true", help="結果のサマリーをJSONで標準出力に出す")
    p.add_argument("--verbose", "-v", action="count", default=0, help="詳細ログを増やす (重ね掛け可)")
    return p


def discover_image_files(inputs: Iterable[str], recursive: bool = False) -> List[Path]:
    """入力パスから画像ファイルを列挙する（重複は除外し、指定順を保つ）"""
    found: List[Path] = []
    seen = set()
    for raw in inputs:
        path = Path(raw)
        if path.is_dir():
            pattern = "**/*" if recursive else "*"
            candidates = sorted(
                p for p in path.glob(pattern) if p.is_file() and p.suffix.lower() in IMAGE_EXTENSIONS
            )
        else:
            # 明示指定されたファイルは拡張子に関係なく読み込む
            candidates = [path]
        for candidate in candidates:
            key = str(candidate.resolve()) if candidate.exists() else str(candidate)
            if key in seen:
                continue
            seen.add(key)
            found.append(candidate)
    return found


def _resolve_settings(args: argparse.Namespace, store: SettingsStore) -> ConversionSettings:
    base = apply_env_overrides(store.load())
    values = base.to_dict()
    if args.width is not None:
        values["target_width"] = args.width
    if args.quality is not None:
        values["quality"] = args.quality
    if args.format is not None:
        values["output_format"] = args.format
    return ConversionSettings.from_mapping(values)


def _build_cli_summary(
    *,
    status: str,
    dest: Path,
    settings: ConversionSettings,
    total_files: int,
    converted_count: int,
    failed_files: Sequence[str],
    written_files: Sequence[str],
    elapsed_seconds: float,
    message: str,
    items: Sequence[dict[str, Any]] = (),
) -> dict[str, Any]:
    return {
        "status": status,
        "dest": str(dest),
        "options": {
            "width": settings.target_width,
            "format": settings.output_format,
            "quality": settings.quality,
        },
        "total_files": total_files,
        "converted_count": converted_count,
        "failed_count": len(failed_files),
        "failed_files": list(failed_files),
        "written_files": list(written_files),
        "elapsed_seconds": round(elapsed_seconds, 3),
        "message": message,
        "items": list(items),
    }


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI を実行し、終了コードを返す"""
    parser = _build_arg_parser()
    args = parser.parse_args(argv)

    console_level = "INFO"
    if args.verbose == 1:
        console_level = "DEBUG"
    elif args.verbose >= 2:
        console_level = "TRACE"

    artifacts = None
    try:
        artifacts = start_batch_run()
    except OSError as e:
        # ログ保存先が使えなくてもコンソール出力で続行する
        print(f"ログフォルダーを作成できません: {e}", file=sys.stderr)
    setup_logging(
        console_level=console_level,
        log_file=artifacts.run_log_path if artifacts else None,
    )

    store = SettingsStore()
    settings = _resolve_settings(args, store)
    if args.save_settings:
        store.save(settings)
        logger.info(f"設定を保存しました: {store.settings_path}")

    dest_dir = Path(args.dest)
    start_time = time.perf_counter()

    queue = ConversionQueue(
        converter=ImageConverter(settings.encode_options()),
        target_width=settings.target_width,
    )
    failed_files: List[str] = []
    names = {}
    for path in discover_image_files(args.inputs, recursive=args.recursive):
        try:
            data = path.read_bytes()
        except OSError as e:
            logger.error(f"❌ {path.name}: {describe_error(e)}")
            failed_files.append(str(path))
            continue
        item_id = queue.add(data, source_name=path.name)
        names[item_id] = str(path)

    total_files = len(names) + len(failed_files)
    if total_files == 0:
        logger.warning("画像が見つかりませんでした")
        return 0

    report = BatchDriver(queue).convert_all()
    failed_files.extend(names[item_id] for item_id in report.failed_ids)

    export_results = write_exports(queue.exports(), dest_dir)
    failed_files.extend(names[r.item_id] for r in export_results if not r.success)
    written_files = [str(r.output_path) for r in export_results if r.success]
    queue.clear()

    message = build_batch_summary_text(
        converted=len(report.converted_ids),
        failed=len(failed_files),
        skipped=len(report.skipped_ids),
    )
    summary = _build_cli_summary(
        status="success" if not failed_files else "partial_failure",
        dest=dest_dir,
        settings=settings,
        total_files=total_files,
        converted_count=len(written_files),
        failed_files=failed_files,
        written_files=written_files,
        elapsed_seconds=time.perf_counter() - start_time,
        message=message,
        items=build_run_items(report, names),
    )
    if artifacts:
        try:
            write_run_summary(artifacts.summary_path, summary)
        except OSError as e:
            logger.warning(f"サマリーを保存できません: {e}")

    if args.json:
        print(json.dumps(summary, ensure_ascii=False, indent=2))
    elif failed_files:
        logger.warning(message)
    else:
        logger.success(message)

    return 1 if failed_files else 0


if __name__ == "__main__":
    sys.exit(main())
