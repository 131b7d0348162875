"""
Registry configuration.

Settings come from a YAML file, with defaults when the file is missing.
Environment variables (optionally from a .env file) override the file:

- FEEDSTORE_ROOT        storage root directory
- FEEDSTORE_INDEX_PATH  alias index file (default: {root}/db/index.duckdb)
- FEEDSTORE_LOG_LEVEL   DEBUG, INFO, WARNING or ERROR
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import structlog
import yaml

logger = structlog.get_logger(__name__)

DEFAULT_CONFIG_PATH = "config/feedstore.yaml"


@dataclass
class RegistryConfig:
    """Settings for one registry instance."""
    storage_root: str = "data/feeds"
    index_path: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict) -> "RegistryConfig":
        storage = data.get("storage") or {}
        return cls(
            storage_root=storage.get("root", cls.storage_root),
            index_path=storage.get("index"),
            log_level=data.get("log_level", cls.log_level),
        )

    def with_env(self) -> "RegistryConfig":
        """Copy of this config with environment overrides applied."""
        return RegistryConfig(
            storage_root=os.environ.get("FEEDSTORE_ROOT", self.storage_root),
            index_path=os.environ.get("FEEDSTORE_INDEX_PATH", self.index_path),
            log_level=os.environ.get("FEEDSTORE_LOG_LEVEL", self.log_level),
        )


def load_config(path: str = DEFAULT_CONFIG_PATH) -> RegistryConfig:
    """Load configuration from a YAML file, then apply the environment."""
    config_path = Path(path)

    if not config_path.exists():
        logger.warning("config_not_found_using_defaults", path=path)
        return RegistryConfig().with_env()

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    logger.info("config_loaded", path=path)
    return RegistryConfig.from_dict(data).with_env()
