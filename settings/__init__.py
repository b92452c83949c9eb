"""
ComfyArchitect Settings Package

Manages application configuration over a pluggable storage adapter.
"""

from .settings_manager import SettingsManager, JsonFileStorage, MemoryStorage

__all__ = ["SettingsManager", "JsonFileStorage", "MemoryStorage"]
