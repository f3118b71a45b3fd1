"""Lightweight persistence for user-configurable settings."""

from __future__ import annotations

from dataclasses import asdict, dataclass
import json
import logging
from pathlib import Path
from typing import Any

LOG = logging.getLogger(__name__)

DEFAULT_SNAPSHOT_DIR = Path(__file__).resolve().parent / "config" / "snapshots"
CONFIG_PATH = Path(__file__).resolve().parent / "config" / "app_settings.json"
DEFAULT_MEMORY_BASE = 0x80000000
DEFAULT_POLL_INTERVAL_MS = 100


@dataclass
class AppConfig:
    snapshot_dir: str = str(DEFAULT_SNAPSHOT_DIR)
    game_id: str = "default"
    autosave: bool = False
    autosave_path: str | None = None
    symbol_map_path: str = ""
    memory_image_path: str = ""
    memory_base: int = DEFAULT_MEMORY_BASE
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    ignore_apploader: bool = False


class ConfigManager:
    def __init__(self, path: Path | None = None) -> None:
        self.path = path or CONFIG_PATH
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def load(self) -> AppConfig:
        if not self.path.exists():
            return self._save_default()

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            LOG.warning("Settings file %s is corrupt; restoring defaults", self.path)
            return self._save_default()
        if not isinstance(data, dict):
            LOG.warning("Settings file %s does not hold an object; restoring defaults", self.path)
            return self._save_default()

        merged: dict[str, Any] = asdict(AppConfig())
        merged.update({k: v for k, v in data.items() if k in merged})
        config = AppConfig(**merged)
        if not isinstance(config.game_id, str) or not config.game_id:
            config.game_id = "default"
        if not isinstance(config.poll_interval_ms, int) or config.poll_interval_ms <= 0:
            config.poll_interval_ms = DEFAULT_POLL_INTERVAL_MS
        if not isinstance(config.memory_base, int) or not 0 <= config.memory_base <= 0xFFFFFFFF or config.memory_base % 4:
            LOG.warning("Ignoring invalid memory base %r", config.memory_base)
            config.memory_base = DEFAULT_MEMORY_BASE
        config.autosave = bool(config.autosave)
        config.ignore_apploader = bool(config.ignore_apploader)
        return config

    def save(self, config: AppConfig) -> None:
        self.path.write_text(json.dumps(asdict(config), indent=2), encoding="utf-8")

    def _save_default(self) -> AppConfig:
        config = AppConfig()
        self.save(config)
        return config
