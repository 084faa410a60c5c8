"""
Configuration module for finproxy
"""

from .settings import (
    Config,
    UpstreamConfig,
    RetryConfig,
    CacheConfig,
    SystemConfig,
    get_config,
    reset_config
)

__all__ = [
    "Config",
    "UpstreamConfig",
    "RetryConfig",
    "CacheConfig",
    "SystemConfig",
    "get_config",
    "reset_config"
]
