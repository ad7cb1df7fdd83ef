"""変換設定の読み込みと永続化。"""

from __future__ import annotations

from dataclasses import asdict, dataclass
import json
import os
from pathlib import Path
from typing import Any, Mapping, Optional

from loguru import logger

from karuku_converter import codec
from karuku_converter.conversion_pipeline import EncodeOptions
from karuku_converter.resize_engine import parse_target_width

SCHEMA_VERSION = 1
_SETTINGS_FILENAME = "settings.json"
_APP_DIR_NAME = "KarukuConvert"
WIDTH_ENV_VAR = "KARUKU_CONVERT_WIDTH"


@dataclass(frozen=True)
class ConversionSettings:
    target_width: Optional[int] = None
    output_format: str = codec.DEFAULT_OUTPUT_FORMAT
    quality: float = codec.DEFAULT_QUALITY
    webp_method: int = codec.DEFAULT_WEBP_METHOD

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "ConversionSettings":
        """生の設定値を正規化する。不正な値はデフォルトに戻す。"""
        defaults = cls()

        output_format = codec.normalize_format(str(values.get("output_format") or defaults.output_format))
        if output_format not in {"webp", "jpeg", "png", "avif"}:
            output_format = defaults.output_format

        try:
            quality = float(values.get("quality", defaults.quality))
        except (TypeError, ValueError):
            quality = defaults.quality
        if quality != quality or not 0.0 <= quality <= 1.0:
            quality = defaults.quality

        try:
            webp_method = max(0, min(6, int(values.get("webp_method", defaults.webp_method))))
        except (TypeError, ValueError):
            webp_method = defaults.webp_method

        return cls(
            target_width=parse_target_width(values.get("target_width")),
            output_format=output_format,
            quality=quality,
            webp_method=webp_method,
        )

    def encode_options(self) -> EncodeOptions:
        return EncodeOptions(
            output_format=self.output_format,
            quality=self.quality,
            webp_method=self.webp_method,
        )

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["target_width"] = "" if self.target_width is None else self.target_width
        return payload


def default_settings() -> dict[str, Any]:
    """設定のデフォルト値を返す。"""
    payload = ConversionSettings().to_dict()
    payload["schema_version"] = SCHEMA_VERSION
    return payload


def apply_env_overrides(
    settings: ConversionSettings,
    env: Optional[Mapping[str, str]] = None,
) -> ConversionSettings:
    """環境変数による上書きを反映する。"""
    resolved_env = os.environ if env is None else env
    raw_width = resolved_env.get(WIDTH_ENV_VAR)
    if raw_width is None:
        return settings
    values = settings.to_dict()
    values["target_width"] = raw_width
    return ConversionSettings.from_mapping(values)


class SettingsStore:
    """変換設定のロード/保存を行う。"""

    def __init__(self, settings_path: Optional[Path] = None) -> None:
        self.settings_path = settings_path or self._build_default_settings_path()

    def load(self) -> ConversionSettings:
        """設定を読み込む。ファイルがない・壊れている場合はデフォルト。"""
        values = default_settings()
        loaded = self._read_json(self.settings_path)
        if loaded is not None:
            values.update(loaded)
        return ConversionSettings.from_mapping(values)

    def save(self, settings: ConversionSettings) -> None:
        """設定を保存する。"""
        payload = default_settings()
        payload.update(settings.to_dict())
        payload["schema_version"] = SCHEMA_VERSION

        self.settings_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.settings_path.with_suffix(f"{self.settings_path.suffix}.tmp")
        with tmp_path.open("w", encoding="utf-8") as fh:
            json.dump(payload, fh, ensure_ascii=False, indent=2)
        tmp_path.replace(self.settings_path)

    @staticmethod
    def _read_json(path: Path) -> Optional[dict[str, Any]]:
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as e:
            logger.warning(f"設定ファイルを読み込めません（デフォルトを使用）: {path}: {e}")
            return None
        if not isinstance(data, dict):
            return None
        return data

    @staticmethod
    def _build_default_settings_path() -> Path:
        if os.name == "nt":
            app_data = os.environ.get("APPDATA")
            if app_data:
                return Path(app_data) / _APP_DIR_NAME / _SETTINGS_FILENAME
            return Path.home() / ".karukuconvert" / _SETTINGS_FILENAME

        config_home = os.environ.get("XDG_CONFIG_HOME")
        if config_home:
            return Path(config_home) / "karukuconvert" / _SETTINGS_FILENAME
        return Path.home() / ".config" / "karukuconvert" / _SETTINGS_FILENAME
