"""Configuration utilities for the fieldsync CLI.

This module provides shared configuration functions used across CLI commands.
"""

from __future__ import annotations

import json
from pathlib import Path

from fieldsync.core.config import EngineConfig, RemoteConfig
from fieldsync.core.storage import SQLiteStore

STORE_FILENAME = "queue.db"


def get_config_dir() -> Path:
    """Get the configuration directory for fieldsync.

    Returns:
        Path to ~/.fieldsync.
    """
    return Path.home() / ".fieldsync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, str]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, str]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))


def open_store() -> SQLiteStore:
    """Open the durable store holding the queues."""
    return SQLiteStore(get_config_dir() / STORE_FILENAME)


def engine_config(config: dict[str, str]) -> EngineConfig:
    """Build the engine configuration from the CLI config."""
    return EngineConfig(
        device_id=config.get("device_id") or None,
        root_path=config.get("root_path", ""),
    )


def remote_config(config: dict[str, str]) -> RemoteConfig | None:
    """Build the remote store configuration, or None if not configured."""
    if not config.get("database_url"):
        return None
    return RemoteConfig(
        database_url=config["database_url"],
        auth_token=config.get("auth_token") or None,
    )
