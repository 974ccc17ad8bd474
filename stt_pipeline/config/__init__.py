"""Configuration loader utilities."""

from .loader import (
    DEFAULT_CONFIG_PATH,
    DEFAULT_MODEL_CONFIG_PATH,
    ServerConfig,
    derive_model_key,
    load_config,
)

__all__ = [
    "ServerConfig",
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_MODEL_CONFIG_PATH",
    "derive_model_key",
    "load_config",
]
