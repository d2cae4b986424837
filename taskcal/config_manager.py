from __future__ import annotations

import copy
import os
import threading
from pathlib import Path
from typing import Any

import yaml

from taskcal.fileio import atomic_write_text
from taskcal.models import AppConfig, default_app_config

MASK = "***"

# (section, key) pairs never returned in clear text by the admin API.
SECRET_FIELDS = (("caldav", "password"),)


def merge_settings(base: dict[str, Any], changes: dict[str, Any]) -> dict[str, Any]:
    """Return ``base`` with ``changes`` applied; nested sections merge key by key."""
    merged = copy.deepcopy(base)
    for key, value in changes.items():
        section = merged.get(key)
        merged[key] = merge_settings(section, value) if isinstance(value, dict) and isinstance(section, dict) else value
    return merged


def render_config(config: AppConfig) -> str:
    return yaml.safe_dump(config.to_dict(), sort_keys=False, allow_unicode=True, default_flow_style=False)


class ConfigManager:
    """YAML-backed application config, created with defaults on first use."""

    def __init__(self, config_path: str | os.PathLike[str]) -> None:
        self.config_path = Path(config_path)
        self._lock = threading.RLock()
        if not self.config_path.exists():
            self.save(default_app_config())

    def load(self) -> AppConfig:
        with self._lock:
            raw = yaml.safe_load(self.config_path.read_text(encoding="utf-8"))
        return AppConfig.from_dict(raw or {})

    def save(self, config: AppConfig) -> None:
        with self._lock:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            atomic_write_text(self.config_path, render_config(config))

    def update(self, changes: dict[str, Any]) -> AppConfig:
        with self._lock:
            config = AppConfig.from_dict(merge_settings(self.load().to_dict(), changes))
            self.save(config)
        return config

    def masked(self) -> dict[str, Any]:
        data = self.load().to_dict()
        for section, key in SECRET_FIELDS:
            if data.get(section, {}).get(key):
                data[section][key] = MASK
        return data
