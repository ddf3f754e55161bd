"""
Settings Manager with JSON persistence.

Supports nested key access via dot notation (e.g., "comfy.base_url")
and automatic persistence to %APPDATA%/ComfyAgent/settings.json (Windows)
or ~/.config/ComfyAgent/settings.json (Linux/macOS).
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from comfy_agent.core.signals import Signal

logger = logging.getLogger("comfy_agent.settings")

BASE_URL_ENV = "COMFY_AGENT_BASE_URL"
DEFAULT_BASE_URL = "http://127.0.0.1:8188"


class SettingsManager:
    """
    Manages comfy-agent settings with JSON persistence.
    Supports nested keys via dot notation (e.g., "run.poll_interval_ms")
    """

    DEFAULT_SETTINGS = {
        "comfy": {
            "base_url": DEFAULT_BASE_URL,
            "request_timeout": 30,
            # GET retries apply to network failures and 5xx responses only
            "get_retries": 2,
            "retry_delay_ms": 300,
            "history_retries": 2,
            "history_retry_delay_ms": 500,
            "listing_retries": 1,
        },
        "run": {
            "poll_interval_ms": 1000,
            "timeout_seconds": 300,
            "channel_ready_timeout_ms": 500,
            "stream_progress": True,
        },
    }

    def __init__(self, app_name: str = "ComfyAgent", settings_dir: Optional[str] = None):
        """
        Initialize settings manager.

        Args:
            app_name: Application name for settings directory
            settings_dir: Override settings directory (useful for tests and portable mode)
        """
        self.app_name = app_name
        self._settings: Dict[str, Any] = {}
        self._settings_dir = settings_dir
        self._settings_path = self._get_settings_path()

        self.on_settings_changed = Signal()

        self._load()

    def _get_settings_path(self) -> Path:
        """Get platform-appropriate settings file path."""
        if self._settings_dir:
            settings_dir = Path(self._settings_dir)
        elif os.name == "nt":
            base = os.environ.get("APPDATA", os.path.expanduser("~"))
            settings_dir = Path(base) / self.app_name
        else:
            base = os.path.expanduser("~/.config")
            settings_dir = Path(base) / self.app_name
        return settings_dir / "settings.json"

    def _load(self):
        """Load settings from file, merging with defaults."""
        self._settings = self._deep_copy(self.DEFAULT_SETTINGS)

        if self._settings_path.exists():
            try:
                with open(self._settings_path, "r", encoding="utf-8") as f:
                    loaded = json.load(f)
                if isinstance(loaded, dict):
                    self._deep_merge(self._settings, loaded)
                else:
                    logger.warning(f"Ignoring settings file {self._settings_path}: not a JSON object")
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to load settings from {self._settings_path}: {e}")

    def _save(self):
        """Persist settings to disk."""
        try:
            self._settings_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._settings_path, "w", encoding="utf-8") as f:
                json.dump(self._settings, f, indent=2, ensure_ascii=False)
        except OSError as e:
            logger.warning(f"Failed to save settings to {self._settings_path}: {e}")

    def _deep_copy(self, obj: Any) -> Any:
        """Create a deep copy of nested dicts/lists."""
        if isinstance(obj, dict):
            return {k: self._deep_copy(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [self._deep_copy(item) for item in obj]
        return obj

    def _deep_merge(self, base: dict, override: dict):
        """Recursively merge override into base."""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get setting value using dot notation.

        Example:
            get("comfy.base_url")
            get("run.timeout_seconds", 300)
        """
        value = self._settings
        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def set(self, key: str, value: Any, save: bool = True):
        """
        Set setting value using dot notation.

        Example:
            set("comfy.base_url", "http://gpu-box:8188")
        """
        keys = key.split(".")
        target = self._settings

        for k in keys[:-1]:
            if k not in target or not isinstance(target[k], dict):
                target[k] = {}
            target = target[k]

        old_value = target.get(keys[-1])
        target[keys[-1]] = value

        if save:
            self._save()

        if old_value != value:
            self.on_settings_changed.emit(key, value)

    def get_section(self, section: str) -> Dict[str, Any]:
        """Get an entire settings section, e.g. get_section("run")."""
        value = self.get(section, {})
        return self._deep_copy(value) if isinstance(value, dict) else {}

    def get_all(self) -> Dict[str, Any]:
        """Get the complete settings dictionary (deep copy)."""
        return self._deep_copy(self._settings)

    def reset_to_defaults(self, key: Optional[str] = None):
        """
        Reset settings to defaults and persist.

        Args:
            key: If provided, only reset that section or key. Otherwise reset all.
        """
        if key:
            default_value = self.default_for(key)
            if default_value is not None:
                self.set(key, self._deep_copy(default_value))
            return
        self._settings = self._deep_copy(self.DEFAULT_SETTINGS)
        self._save()
        self.on_settings_changed.emit("*", None)

    def default_for(self, key: str) -> Any:
        """Built-in default for a dotted key, or None when the key is unknown."""
        value = self.DEFAULT_SETTINGS
        for k in key.split("."):
            if not isinstance(value, dict) or k not in value:
                return None
            value = value[k]
        return value

    @property
    def settings_path(self) -> Path:
        """Get the settings file path."""
        return self._settings_path


def decide_base_url(explicit: Optional[str] = None,
                    settings: Optional[SettingsManager] = None,
                    env: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """
    Pick the ComfyUI base URL and report where it came from.

    Precedence: explicit flag, environment variable, settings file, built-in default.
    Returns {"source": ..., "value": ...}.
    """
    env = os.environ if env is None else env
    if explicit:
        return {"source": "--base-url", "value": explicit}
    if env.get(BASE_URL_ENV):
        return {"source": BASE_URL_ENV, "value": env[BASE_URL_ENV]}
    if settings is not None:
        configured = settings.get("comfy.base_url")
        if configured and configured != DEFAULT_BASE_URL:
            return {"source": "settings", "value": configured}
    return {"source": "default", "value": DEFAULT_BASE_URL}
