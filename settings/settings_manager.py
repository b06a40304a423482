"""
Settings Manager with JSON persistence.

Supports nested key access via dot notation (e.g., "builder.default_checkpoint")
and persistence to %APPDATA%/ComfyGraph/settings.json (Windows) or
~/.config/ComfyGraph/settings.json (Linux/macOS). COMFY_GRAPH_SETTINGS_DIR
overrides the directory.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger("settings")

SETTINGS_DIR_ENV = "COMFY_GRAPH_SETTINGS_DIR"

ChangeListener = Callable[[str, Any], None]


class SettingsManager:
    """
    Application settings backed by a JSON file.
    Nested keys use dot notation (e.g., "server.port").
    """

    DEFAULT_SETTINGS = {
        "builder": {
            "default_checkpoint": "v1-5-pruned-emaonly.safetensors",
            "default_negative_prompt": "blurry, low quality, distorted",
            "default_reference_image": "reference_image.png",
            "default_upscale_model": "RealESRGAN_x4plus.pth",
            "default_controlnet_template": "control_v11p_sd15_{type}.pth",
            "add_save_node": False,
            "filename_prefix": "ComfyUI",
            # Rebuild with a single sample step when the built graph is invalid
            "fallback_to_minimal": True,
        },
        "server": {
            "host": "127.0.0.1",
            "port": 8010,
        },
        "logging": {
            "level": "INFO",
        },
    }

    def __init__(self, app_name: str = "ComfyGraph", settings_dir: Optional[str] = None):
        """
        Args:
            app_name: Application name for the settings directory
            settings_dir: Override settings directory (portable mode, tests)
        """
        self.app_name = app_name
        self._settings: Dict[str, Any] = {}
        self._settings_dir = settings_dir or os.environ.get(SETTINGS_DIR_ENV)
        self._settings_path = self._get_settings_path()
        self._listeners: List[ChangeListener] = []

        self._load()

    def _get_settings_path(self) -> Path:
        if self._settings_dir:
            settings_dir = Path(self._settings_dir)
        elif os.name == "nt":
            base = os.environ.get("APPDATA", os.path.expanduser("~"))
            settings_dir = Path(base) / self.app_name
        else:
            settings_dir = Path(os.path.expanduser("~/.config")) / self.app_name

        settings_dir.mkdir(parents=True, exist_ok=True)
        return settings_dir / "settings.json"

    def _load(self):
        """Load settings from file on top of the defaults."""
        self._settings = self._deep_copy(self.DEFAULT_SETTINGS)

        if self._settings_path.exists():
            try:
                with open(self._settings_path, "r", encoding="utf-8") as f:
                    self._deep_merge(self._settings, json.load(f))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Failed to load settings from {self._settings_path}: {e}")

    def _save(self):
        try:
            with open(self._settings_path, "w", encoding="utf-8") as f:
                json.dump(self._settings, f, indent=2, ensure_ascii=False)
        except OSError as e:
            logger.warning(f"Failed to save settings to {self._settings_path}: {e}")

    def _deep_copy(self, obj: Any) -> Any:
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

    def add_listener(self, listener: ChangeListener):
        """Register a callback(key, value) run after a setting changes."""
        self._listeners.append(listener)

    def _notify(self, key: str, value: Any):
        for listener in list(self._listeners):
            listener(key, value)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get setting value using dot notation.

        Example:
            get("builder.default_checkpoint")
            get("server.port", 8010)
        """
        value = self._settings
        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def set(self, key: str, value: Any, save: bool = True):
        """Set a value using dot notation, creating intermediate sections."""
        keys = key.split(".")
        target = self._settings
        for k in keys[:-1]:
            if not isinstance(target.get(k), dict):
                target[k] = {}
            target = target[k]

        old_value = target.get(keys[-1])
        target[keys[-1]] = value

        if save:
            self._save()
        if old_value != value:
            logger.debug(f"Setting changed: {key}")
            self._notify(key, value)

    def get_section(self, section: str) -> Dict[str, Any]:
        value = self.get(section, {})
        return value if isinstance(value, dict) else {}

    def set_section(self, section: str, values: Dict[str, Any], save: bool = True):
        """
        Set multiple values in a section.

        Example:
            set_section("builder", {"add_save_node": True, "filename_prefix": "fox"})
        """
        for key, value in values.items():
            self.set(f"{section}.{key}", value, save=False)
        if save:
            self._save()

    def get_all(self) -> Dict[str, Any]:
        return self._deep_copy(self._settings)

    def reset_to_defaults(self, section: Optional[str] = None):
        """Reset one section (or everything) to DEFAULT_SETTINGS."""
        if section:
            default_value = self._navigate_defaults(section)
            if default_value is not None:
                self.set(section, self._deep_copy(default_value))
        else:
            self._settings = self._deep_copy(self.DEFAULT_SETTINGS)
            self._save()
            self._notify("*", None)

    def _navigate_defaults(self, key: str) -> Any:
        value = self.DEFAULT_SETTINGS
        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return None
        return value

    @property
    def settings_path(self) -> Path:
        return self._settings_path

    @property
    def settings_dir(self) -> Path:
        return self._settings_path.parent
