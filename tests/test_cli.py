from __future__ import annotations

import json
from pathlib import Path

import pytest
from loguru import logger
from PIL import Image

from conftest import encode_image, make_photo
from karuku_converter import cli
from karuku_converter.settings_store import ConversionSettings


@pytest.fixture
def isolated_env(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("KARUKU_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.delenv("KARUKU_CONVERT_WIDTH", raising=False)
    yield tmp_path
    logger.remove()


def test_cli_parser_defaults() -> None:
    args = cli._build_arg_parser().parse_args(["in.jpg", "-d", "out"])
    assert args.inputs == ["in.jpg"]
    assert args.width is None
    assert args.recursive is False
    assert args.json is False


def test_cli_parser_rejects_unknown_format() -> None:
    with pytest.raises(SystemExit):
        cli._build_arg_parser().parse_args(["in.jpg", "-d", "out", "-f", "tga"])


@pytest.mark.parametrize("value", ["jpg", "JPG", "jpeg"])
def test_cli_parser_accepts_jpg_alias(value: str) -> None:
    args = cli._build_arg_parser().parse_args(["in.jpg", "-d", "out", "-f", value])
    assert args.format == "jpeg"


def test_discover_image_files(tmp_path: Path) -> None:
    (tmp_path / "a").mkdir()
    (tmp_path / "a" / "img.jpg").write_bytes(b"x")
    (tmp_path / "root.png").write_bytes(b"x")
    (tmp_path / "notes.txt").write_bytes(b"x")

    flat = cli.discover_image_files([str(tmp_path)])
    assert [p.name for p in flat] == ["root.png"]

    nested = cli.discover_image_files([str(tmp_path)], recursive=True)
    assert {p.relative_to(tmp_path).as_posix() for p in nested} == {"a/img.jpg", "root.png"}


def test_discover_image_files_deduplicates(tmp_path: Path) -> None:
    image = tmp_path / "root.png"
    image.write_bytes(b"x")

    found = cli.discover_image_files([str(image), str(tmp_path)])
    assert found == [image]


def test_build_cli_summary_shape() -> None:
    summary = cli._build_cli_summary(
        status="success",
        dest=Path("output"),
        settings=ConversionSettings(target_width=800),
        total_files=2,
        converted_count=2,
        failed_files=[],
        written_files=["output/converted-a.webp", "output/converted-b.webp"],
        elapsed_seconds=1.23456,
        message="ok",
    )

    assert summary["dest"] == "output"
    assert summary["options"] == {"width": 800, "format": "webp", "quality": 0.8}
    assert summary["failed_count"] == 0
    assert summary["elapsed_seconds"] == 1.235
    assert summary["items"] == []


def test_main_converts_and_writes_files(isolated_env: Path, capsys) -> None:
    src = isolated_env / "src"
    src.mkdir()
    (src / "photo.jpg").write_bytes(encode_image(make_photo(400, 300), "JPEG"))
    (src / "icon.png").write_bytes(encode_image(Image.new("RGBA", (64, 64), (0, 0, 255, 128))))
    dest = isolated_env / "out"

    code = cli.main([str(src), "-d", str(dest), "-w", "200", "--json"])

    assert code == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["status"] == "success"
    assert summary["converted_count"] == 2
    outputs = sorted(dest.glob("converted-*.webp"))
    assert len(outputs) == 2
    for path in outputs:
        with Image.open(path) as img:
            assert img.format == "WEBP"
            assert img.width == 200
    assert [item["result"] for item in summary["items"]] == ["converted", "converted"]
    saved = list((isolated_env / "logs").glob("batch_*_summary.json"))
    assert len(saved) == 1
    assert json.loads(saved[0].read_text(encoding="utf-8"))["items"] == summary["items"]


def test_main_reports_broken_input(isolated_env: Path, capsys) -> None:
    broken = isolated_env / "broken.jpg"
    broken.write_bytes(b"not an image")
    good = isolated_env / "good.png"
    good.write_bytes(encode_image(Image.new("RGB", (10, 10))))

    code = cli.main([str(broken), str(good), "-d", str(isolated_env / "out"), "--json"])

    assert code == 1
    summary = json.loads(capsys.readouterr().out)
    assert summary["status"] == "partial_failure"
    assert summary["failed_files"] == [str(broken)]
    assert summary["converted_count"] == 1
    failed = [item for item in summary["items"] if item["result"] == "failed"]
    assert failed[0]["source"] == str(broken)
    assert failed[0]["step"] == "decode"


def test_main_without_images_returns_zero(isolated_env: Path) -> None:
    empty = isolated_env / "empty"
    empty.mkdir()
    assert cli.main([str(empty), "-d", str(isolated_env / "out")]) == 0


def test_main_save_settings(isolated_env: Path) -> None:
    image = isolated_env / "a.png"
    image.write_bytes(encode_image(Image.new("RGB", (20, 10))))

    cli.main([str(image), "-d", str(isolated_env / "out"), "-w", "10", "-f", "png", "--save-settings"])

    saved = json.loads((isolated_env / "config" / "karukuconvert" / "settings.json").read_text(encoding="utf-8"))
    assert saved["target_width"] == 10
    assert saved["output_format"] == "png"
    assert len(list((isolated_env / "out").glob("converted-*.png"))) == 1
