from __future__ import annotations

import json
from pathlib import Path

from karuku_converter.settings_store import (
    SCHEMA_VERSION,
    ConversionSettings,
    SettingsStore,
    apply_env_overrides,
    default_settings,
)


def test_load_returns_defaults_when_no_settings_file(tmp_path: Path) -> None:
    settings_path = tmp_path / "settings.json"
    store = SettingsStore(settings_path=settings_path)

    loaded = store.load()

    assert loaded == ConversionSettings()
    assert loaded.output_format == "webp"
    assert loaded.quality == 0.8
    assert not settings_path.exists()


def test_save_and_load_roundtrip(tmp_path: Path) -> None:
    settings_path = tmp_path / "nested" / "settings.json"
    store = SettingsStore(settings_path=settings_path)

    store.save(ConversionSettings(target_width=800, output_format="jpg", quality=0.7))
    loaded = store.load()

    assert loaded.target_width == 800
    assert loaded.output_format == "jpeg"
    assert loaded.quality == 0.7

    raw = json.loads(settings_path.read_text(encoding="utf-8"))
    assert raw["schema_version"] == SCHEMA_VERSION
    assert raw["target_width"] == 800


def test_load_broken_file_falls_back_to_defaults(tmp_path: Path) -> None:
    settings_path = tmp_path / "settings.json"
    settings_path.write_text("{not json", encoding="utf-8")

    assert SettingsStore(settings_path=settings_path).load() == ConversionSettings()


def test_from_mapping_normalizes_invalid_values() -> None:
    settings = ConversionSettings.from_mapping(
        {"target_width": "abc", "output_format": "tga", "quality": "2.0", "webp_method": 42}
    )

    assert settings.target_width is None
    assert settings.output_format == "webp"
    assert settings.quality == 0.8
    assert settings.webp_method == 6


def test_default_settings_has_empty_width() -> None:
    defaults = default_settings()
    assert defaults["target_width"] == ""
    assert defaults["schema_version"] == SCHEMA_VERSION


def test_apply_env_overrides_width() -> None:
    base = ConversionSettings(target_width=640, quality=0.5)

    assert apply_env_overrides(base, env={"KARUKU_CONVERT_WIDTH": "1280"}).target_width == 1280
    assert apply_env_overrides(base, env={"KARUKU_CONVERT_WIDTH": ""}).target_width is None
    assert apply_env_overrides(base, env={}) is base


def test_encode_options_carries_settings() -> None:
    options = ConversionSettings(output_format="png", quality=0.3).encode_options()
    assert options.output_format == "png"
    assert options.quality == 0.3
