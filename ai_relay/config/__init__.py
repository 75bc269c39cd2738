"""
Configuration management for the relay client.

Sources:
- YAML file: {config_dir}/config.yaml
- Environment: AI_* variables, with .env loaded through python-dotenv

Usage:
    from ai_relay.config import ClientConfigManager, load_config_from_env

    config = ClientConfigManager(config_dir).load()
    config = load_config_from_env()
"""

from .schemas import (
    RetryConfig,
    RoutingConfig,
    ResponsesConfig,
    StreamingConfig,
    ConnectionPoolConfig,
    ClientConfig,
    parse_config,
    resolve_env_vars,
)

from .client_config import (
    ClientConfigManager,
    load_client_config,
)

from .env import load_config_from_env


__all__ = [
    # Schemas
    "RetryConfig",
    "RoutingConfig",
    "ResponsesConfig",
    "StreamingConfig",
    "ConnectionPoolConfig",
    "ClientConfig",
    "parse_config",
    "resolve_env_vars",
    # Loading
    "ClientConfigManager",
    "load_client_config",
    "load_config_from_env",
]
