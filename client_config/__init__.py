"""Connector configuration: environment-backed settings and YAML files."""

from .config_yaml import load_settings, load_yaml, merge_configs, save_settings_to_yaml
from .settings import (
    ClientSettings,
    RateLimitSettings,
    RetrySettings,
    StreamSettings,
)

__all__ = [
    "ClientSettings",
    "RateLimitSettings",
    "RetrySettings",
    "StreamSettings",
    "load_settings",
    "load_yaml",
    "merge_configs",
    "save_settings_to_yaml",
]
