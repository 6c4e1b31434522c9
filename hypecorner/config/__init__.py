"""Configuration management package."""

from .settings import Config, load_config, save_config
from .defaults import DEFAULT_CONFIG
from .types import (
    RecognizerSettings, SmoothingSettings, CaptureSettings, WatchSettings, SelectionSettings,
)

__all__ = [
    "Config", "load_config", "save_config", "DEFAULT_CONFIG",
    "RecognizerSettings", "SmoothingSettings", "CaptureSettings", "WatchSettings",
    "SelectionSettings",
]
