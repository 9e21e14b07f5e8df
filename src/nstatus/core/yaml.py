"""YAML configuration loading.

Configuration files are parsed with ``yaml.safe_load`` so untrusted content
can never instantiate Python objects. Used by the ``from_yaml`` factories of
[Pool][nstatus.core.pool.Pool],
[CacheStore][nstatus.core.cache_store.CacheStore] and
[BaseService][nstatus.core.base_service.BaseService].

Examples:
    ```python
    from nstatus.core.yaml import load_yaml

    config = load_yaml("~/.config/nstatus/session.yaml")
    ```
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError


def load_yaml(config_path: str | Path) -> dict[str, Any]:
    """Load and parse a YAML configuration file.

    ``~`` is expanded. An empty file yields an empty dict.

    Args:
        config_path: Path to the YAML file.

    Returns:
        Parsed configuration as a nested dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If the file is not valid YAML or its top level
            is not a mapping.
    """
    path = Path(config_path).expanduser()
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"invalid YAML in {path}", operation="load_yaml", cause=e
        ) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"top level of {path} must be a mapping, got {type(data).__name__}",
            operation="load_yaml",
        )
    return data
