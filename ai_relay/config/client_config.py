"""
Client configuration loading and management.

The config is stored as YAML and contains:
- API key (with env var expansion)
- Retry, timeout and idempotency settings
- Routing priority and conflict handling
"""

from pathlib import Path
from typing import Optional

import yaml

from .schemas import ClientConfig, parse_config


CONFIG_FILENAME = "config.yaml"


class ClientConfigManager:
    """
    Manages the on-disk client configuration.

    Usage:
        manager = ClientConfigManager(config_dir)
        config = manager.load()  # Returns ClientConfig
        manager.save(config)     # Persists to disk
    """

    def __init__(self, config_dir: Path, filename: str = CONFIG_FILENAME):
        self.config_dir = Path(config_dir).expanduser().resolve()
        self.config_path = self.config_dir / filename

    def exists(self) -> bool:
        return self.config_path.exists()

    def load(self) -> ClientConfig:
        """
        Load config from disk.

        Returns ClientConfig with defaults if the file doesn't exist.

        Raises:
            InvalidConfiguration: If the file content fails validation
        """
        if not self.config_path.exists():
            return ClientConfig()

        with open(self.config_path, "r") as f:
            data = yaml.safe_load(f) or {}

        return parse_config(ClientConfig, data)

    def save(self, config: ClientConfig) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)

        data = config.model_dump(exclude_none=True)

        with open(self.config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def update(self, updates: dict) -> ClientConfig:
        """
        Update specific fields in the config.

        Args:
            updates: Dict of fields to update (can be nested)

        Returns:
            Updated ClientConfig
        """
        data = self.load().model_dump()
        _deep_merge(data, updates)

        new_config = parse_config(ClientConfig, data)
        self.save(new_config)
        return new_config


def _deep_merge(base: dict, updates: dict) -> None:
    for key, value in updates.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def load_client_config(config_dir: Optional[Path] = None) -> ClientConfig:
    if config_dir is None:
        return ClientConfig()
    return ClientConfigManager(config_dir).load()
