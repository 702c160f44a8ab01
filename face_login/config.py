"""
Configuration Management Module

This module provides a centralized way to load and access configuration
settings from the config.yaml file. It uses the Singleton pattern to ensure
only one configuration instance exists throughout the application.

Values from the file are merged over DEFAULT_CONFIG, so a config.yaml only
needs to list the settings it changes.

Usage:
    from face_login.config import get_config
    config = get_config()
    threshold = config["matching"]["threshold"]
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

# Environment variable pointing at an explicit config file
CONFIG_ENV_VAR = "FACE_LOGIN_CONFIG"

DEFAULT_CONFIG: Dict[str, Any] = {
    "matching": {
        "threshold": 0.55,
    },
    "storage": {
        "backend": "sqlite",
        "db_path": "storage/face_login.sqlite",
        "key": "face_descriptor",
    },
    "embedding": {
        "backend": "auto",
        "model": "buffalo_l",
        "device": "cpu",
        "embedding_dim": 512,
    },
    "api": {
        "base_url": "http://localhost:8000",
    },
    "logging": {
        "level": "INFO",
    },
}

# Store the singleton instance (module-level variable)
_config_instance: Optional[Dict[str, Any]] = None


def get_project_root() -> Path:
    """
    Find the project root directory.

    The project root is identified by the presence of a config.yaml file.
    This function walks up the directory tree from this file's location
    until it finds one.

    Returns:
        Path: The absolute path to the project root directory.

    Raises:
        FileNotFoundError: If config.yaml cannot be found in any parent directory.
    """
    current_dir = Path(__file__).resolve().parent

    while current_dir != current_dir.parent:
        if (current_dir / "config.yaml").exists():
            return current_dir
        current_dir = current_dir.parent

    raise FileNotFoundError(
        "Could not find config.yaml in any parent directory. "
        f"Set {CONFIG_ENV_VAR} to point at a configuration file."
    )


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into a copy of base."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Optional path to the config file. If not provided, the
                     FACE_LOGIN_CONFIG environment variable is checked, then
                     config.yaml in the project root. When no default file
                     exists the built-in defaults are returned.

    Returns:
        Dict containing all configuration values.

    Raises:
        FileNotFoundError: If an explicitly requested config file doesn't exist.
        yaml.YAMLError: If the config file contains invalid YAML.
    """
    if config_path is None:
        config_path = os.environ.get(CONFIG_ENV_VAR)

    if config_path is None:
        try:
            path = get_project_root() / "config.yaml"
        except FileNotFoundError:
            logger.warning("No config.yaml found, using built-in defaults")
            return copy.deepcopy(DEFAULT_CONFIG)
    else:
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        loaded = yaml.safe_load(f) or {}

    logger.debug(f"Loaded configuration from {path}")
    return _merge(DEFAULT_CONFIG, loaded)


def get_config(reload: bool = False) -> Dict[str, Any]:
    """
    Get the configuration singleton.

    Args:
        reload: If True, forces reloading the configuration from disk.
                Useful for testing or if the config file has changed.

    Returns:
        Dict containing all configuration values.
    """
    global _config_instance

    if _config_instance is None or reload:
        _config_instance = load_config()

    return _config_instance


def get_section(section_name: str) -> Dict[str, Any]:
    """
    Get a specific section from the configuration.

    Args:
        section_name: Name of the configuration section
                      (e.g., "matching", "storage", "embedding")

    Returns:
        Dict containing the section's configuration values.

    Raises:
        KeyError: If the section doesn't exist in the configuration.
    """
    config = get_config()

    if section_name not in config:
        raise KeyError(
            f"Configuration section '{section_name}' not found. "
            f"Available sections: {list(config.keys())}"
        )

    return config[section_name]


def get_matching_config() -> Dict[str, Any]:
    """Get matching (threshold) configuration."""
    return get_section("matching")


def get_storage_config() -> Dict[str, Any]:
    """Get template storage configuration."""
    return get_section("storage")


def get_embedding_config() -> Dict[str, Any]:
    """Get embedding provider configuration."""
    return get_section("embedding")


def get_api_config() -> Dict[str, Any]:
    """Get API configuration."""
    return get_section("api")


def get_server_config() -> Dict[str, Any]:
    """
    Get server configuration for the API.

    Returns:
        Dict with host and port for the API server.
    """
    base_url = get_api_config().get("base_url", "http://localhost:8000")

    host = "0.0.0.0"
    port = 8000

    try:
        url_part = base_url.split("//")[-1]  # Remove http:// or https://
        if ":" in url_part:
            host_part, port_str = url_part.rsplit(":", 1)
            port = int(port_str.rstrip("/"))
            if host_part != "localhost":
                host = host_part
    except (ValueError, IndexError):
        logger.warning(f"Could not parse api.base_url '{base_url}', using {host}:{port}")

    return {"host": host, "port": port}


def resolve_path(path: str) -> Path:
    """
    Resolve a configured path.

    Relative paths are taken relative to the project root when a config.yaml
    can be found, and relative to the current directory otherwise.
    """
    p = Path(path)
    if p.is_absolute():
        return p
    try:
        return get_project_root() / p
    except FileNotFoundError:
        return Path.cwd() / p
