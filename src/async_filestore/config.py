"""
Configuration management for async_filestore.

Settings are pydantic models, loaded once per environment and frozen
afterwards. The environment is taken from ``FILESTORE_ENV`` (default
``development``); values from ``config/filestore.<env>.json`` override the
defaults when that file exists.

Example:
    # Using the environment
    config = load_config()
    store = create_datastore(config)

    # Or passing values directly
    store = create_datastore({"database": {"path": "data", "autosave_interval": 1000}})
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

ENV_VARIABLE = "FILESTORE_ENV"
DEFAULT_ENV = "development"
DEFAULT_CONFIG_DIR = "config"

Environment = Literal["production", "development", "test", "qa"]


class DatabaseConfig(BaseModel):
    """Where and how database files are stored."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str = Field(
        default="workspace",
        description="Directory holding one <name>.db file per database.",
    )
    default_name: str = Field(
        default="default",
        description="Database name used when connect() is called without one.",
    )
    autosave: bool = True
    autosave_interval: int = Field(
        default=5000, gt=0, description="Milliseconds between autosave ticks."
    )
    serialization_method: Literal["normal", "pretty"] = "normal"

    def file_path(self, name: Optional[str] = None) -> Path:
        return Path(self.path).resolve() / f"{name or self.default_name}.db"


class FileStoreConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    env: Environment = DEFAULT_ENV
    connect_with_collection: bool = False
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)


def load_config(
    env: Optional[str] = None, config_dir: Union[str, Path] = DEFAULT_CONFIG_DIR
) -> FileStoreConfig:
    """
    Load configuration for ``env`` (or ``$FILESTORE_ENV``).

    Raises:
        pydantic.ValidationError: If the file or environment holds invalid values.
        json.JSONDecodeError: If the environment file is not valid JSON.
    """
    env = env or os.getenv(ENV_VARIABLE, DEFAULT_ENV)
    values: Dict[str, Any] = {"env": env}

    config_file = Path(config_dir) / f"filestore.{env}.json"
    if config_file.is_file():
        with config_file.open(encoding="utf-8") as f:
            values.update(json.load(f))
        logger.debug(f"Loaded configuration from {config_file}")
    else:
        logger.debug(f"No configuration file at {config_file}, using defaults")

    return FileStoreConfig.model_validate(values)


def resolve_config(
    config: Union[FileStoreConfig, Dict[str, Any], None],
) -> FileStoreConfig:
    """Accept a config model, a plain mapping, or None (load from the environment)."""
    if config is None:
        return load_config()
    if isinstance(config, FileStoreConfig):
        return config
    return FileStoreConfig.model_validate(config)
