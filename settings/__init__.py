"""
Settings Package

Builder and server configuration with JSON persistence.
"""

from .settings_manager import SettingsManager

__all__ = ["SettingsManager"]
