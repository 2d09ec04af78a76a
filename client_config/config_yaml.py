"""
YAML Configuration File Support

Loads connector settings from a YAML file and layers them over the
environment:

    environment / .env  <  YAML file  <  explicit overrides

Example file::

    rest_url: https://testnet.binance.vision
    recv_window: 10000
    retry:
      max_attempts: 6
    streams:
      heartbeat_interval: 15
"""

from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .settings import ClientSettings

# Never written back to disk
SECRET_FIELDS = ("api_key", "api_secret")


def load_yaml(file_path: Union[str, Path]) -> Dict[str, Any]:
    """
    Read a YAML mapping.

    Raises:
        FileNotFoundError: If file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If the document is not a mapping
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Config file not found: {file_path}")

    with open(file_path, "r") as f:
        data = yaml.safe_load(f)

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("Invalid config file: must be a YAML dictionary")
    return data


def merge_configs(base_config: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """
    Recursively merge ``overrides`` into ``base_config``.

    ``None`` override values are ignored so unset CLI flags keep file values.
    """
    merged = dict(base_config)
    for key, value in overrides.items():
        if value is None:
            continue
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_configs(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(
    file_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> ClientSettings:
    """Build ``ClientSettings`` from environment, optional YAML file and overrides."""
    base = ClientSettings().model_dump()
    if file_path is not None:
        base = merge_configs(base, load_yaml(file_path))
    if overrides:
        base = merge_configs(base, overrides)
    return ClientSettings(**base)


def save_settings_to_yaml(settings: ClientSettings, file_path: Union[str, Path]) -> None:
    """Write non-secret settings to ``file_path``."""
    data = settings.model_dump(mode="json", exclude=set(SECRET_FIELDS))
    with open(file_path, "w") as f:
        yaml.safe_dump(
            data,
            f,
            default_flow_style=False,
            sort_keys=False,
            allow_unicode=True,
            indent=2,
        )
