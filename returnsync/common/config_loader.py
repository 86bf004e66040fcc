"""Configuration loading and validation."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from returnsync.common.errors import ConfigError
from returnsync.common.fs import read_yaml
from returnsync.common.schema import validate_app_config

CONFIG_FILENAME = "returnsync.yml"


@dataclass(frozen=True)
class AppConfig:
    api: dict
    crawler: dict
    enricher: dict
    auth: dict
    dates: dict
    warehouses: dict[str, str]


def _deep_merge(base: Any, overlay: Any) -> Any:
    if isinstance(base, dict) and isinstance(overlay, dict):
        merged = dict(base)
        for key, value in overlay.items():
            if key in merged:
                merged[key] = _deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged
    return overlay


def _load_yaml_with_overlay(path: Path, overlay_path: Path | None) -> dict:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    base = read_yaml(path)
    if overlay_path is None or not overlay_path.exists():
        return base
    overlay = read_yaml(overlay_path)
    if overlay is None:
        return base
    return _deep_merge(base, overlay)


def load_config(
    config_dir: Path,
    *,
    allow_unknown: bool = False,
    overlay_config_dir: Path | None = None,
) -> AppConfig:
    overlay_path = None
    if overlay_config_dir is not None:
        overlay_path = overlay_config_dir / CONFIG_FILENAME
    raw = _load_yaml_with_overlay(config_dir / CONFIG_FILENAME, overlay_path)
    cfg = validate_app_config(raw, allow_unknown=allow_unknown)
    return AppConfig(
        api=cfg["api"],
        crawler=cfg["crawler"],
        enricher=cfg["enricher"],
        auth=cfg["auth"],
        dates=cfg["dates"],
        warehouses=cfg["warehouses"],
    )
