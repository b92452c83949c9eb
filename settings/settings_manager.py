"""
Settings Manager with pluggable persistence.

Supports nested key access via dot notation (e.g., "providers.gemini.api_key").
Where settings live is decided by a storage adapter:

- JsonFileStorage: settings.json in %APPDATA%/ComfyArchitect (Windows)
  or ~/.config/ComfyArchitect (Linux/macOS), or any given directory
- MemoryStorage: nothing touches disk (tests, one-shot CLI runs)

A SettingsManager is created once at startup and passed to whoever needs it.
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from core.signals import Signal

logger = logging.getLogger("settings")


# ==================== Storage Adapters ====================

class MemoryStorage:
    """Keeps the settings document in memory only."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data = copy.deepcopy(initial) if initial else None

    def load(self) -> Optional[Dict[str, Any]]:
        return copy.deepcopy(self._data) if self._data is not None else None

    def save(self, data: Dict[str, Any]):
        self._data = copy.deepcopy(data)

    def describe(self) -> str:
        return "memory"


class JsonFileStorage:
    """Persists the settings document as a JSON file."""

    def __init__(self, path: Optional[Path] = None, app_name: str = "ComfyArchitect"):
        self.path = Path(path) if path else self.default_path(app_name)

    @staticmethod
    def default_path(app_name: str) -> Path:
        """Platform-appropriate settings file location."""
        override = os.environ.get("COMFY_ARCHITECT_SETTINGS_DIR")
        if override:
            settings_dir = Path(override)
        elif os.name == "nt":  # Windows
            base = os.environ.get("APPDATA", os.path.expanduser("~"))
            settings_dir = Path(base) / app_name
        else:  # macOS/Linux
            base = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
            settings_dir = Path(base) / app_name
        return settings_dir / "settings.json"

    def load(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load settings from {self.path}: {e}")
            return None

    def save(self, data: Dict[str, Any]):
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
        except OSError as e:
            logger.warning(f"Failed to save settings to {self.path}: {e}")

    def describe(self) -> str:
        return str(self.path)


# ==================== Manager ====================

class SettingsManager:
    """
    Manages application settings over a storage adapter.
    Supports nested keys via dot notation (e.g., "providers.local_llm.model")
    """

    DEFAULT_SETTINGS = {
        "providers": {
            "active": "local",  # "local" (streaming backend) or "gemini"
            "workflow_backend": {
                "base_url": "http://localhost:8000",
                "retries": 3,
            },
            "ollama": {
                "base_url": "http://localhost:11434",
                "model": "llama3.1:8b",
                "keep_alive": "5m",
                "temperature": 0.2,
            },
            "local_llm": {
                "base_url": "http://localhost:1234",
                "model": "local-model",
                "temperature": 0.2,
            },
            "gemini": {
                "api_key": "",
                "model": "gemini-2.5-flash",
            },
        },
        "generation": {
            "format": "graph",  # "graph" or "api"
            "system_prompt_template": "",  # Empty = built-in template
            "inventory": {},
        },
        "server": {
            "host": "127.0.0.1",
            "port": 8000,
            "debug_log_dir": "",  # Empty = no request debug log
        },
        "logging": {
            "level": "INFO",
        },
    }

    def __init__(self, storage=None):
        """
        Args:
            storage: Persistence adapter (JsonFileStorage by default)
        """
        self.storage = storage if storage is not None else JsonFileStorage()
        self.on_settings_changed = Signal("settings_changed")

        self._settings: Dict[str, Any] = copy.deepcopy(self.DEFAULT_SETTINGS)
        stored = self.storage.load()
        if isinstance(stored, dict):
            _merge_into(self._settings, stored)
        logger.debug(f"Settings loaded from {self.storage.describe()}")

    def _save(self):
        self.storage.save(self._settings)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Dot-notation lookup, e.g. get("providers.ollama.model").
        Returns default when any part of the path is missing.
        """
        found, value = _lookup(self._settings, key)
        return value if found else default

    def set(self, key: str, value: Any, save: bool = True):
        """Dot-notation assignment; missing sections are created."""
        *parents, leaf = key.split(".")
        node = self._settings
        for part in parents:
            child = node.get(part)
            if not isinstance(child, dict):
                child = node[part] = {}
            node = child

        changed = node.get(leaf) != value
        node[leaf] = value
        if save:
            self._save()
        if changed:
            self.on_settings_changed.emit(key, value)

    def get_section(self, section: str) -> Dict[str, Any]:
        """Copy of a nested section ({} if absent)."""
        value = self.get(section)
        return copy.deepcopy(value) if isinstance(value, dict) else {}

    def set_section(self, section: str, values: Dict[str, Any], save: bool = True):
        for name, value in values.items():
            self.set(f"{section}.{name}", value, save=False)
        if save:
            self._save()

    def get_all(self) -> Dict[str, Any]:
        return copy.deepcopy(self._settings)

    def reset_to_defaults(self, section: Optional[str] = None):
        """Reset one section, or everything, to defaults."""
        if not section:
            self._settings = copy.deepcopy(self.DEFAULT_SETTINGS)
            self._save()
            self.on_settings_changed.emit("*", None)
            return

        found, default = _lookup(self.DEFAULT_SETTINGS, section)
        if found:
            self.set(section, copy.deepcopy(default))


def _lookup(tree: Dict[str, Any], key: str) -> Tuple[bool, Any]:
    node: Any = tree
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            return False, None
        node = node[part]
    return True, node


def _merge_into(target: Dict[str, Any], overrides: Dict[str, Any]):
    """Recursive merge; stored values win, unknown keys are kept."""
    for name, value in overrides.items():
        current = target.get(name)
        if isinstance(current, dict) and isinstance(value, dict):
            _merge_into(current, value)
        else:
            target[name] = copy.deepcopy(value)
