"""
Configuration Module
====================

Validated configuration for the ArangoDB cluster client.

Key Components:
- BaseConfig: Abstract configuration foundation with Pydantic validation
- ClientConfig: Coordinator URLs, credentials, balancing and retry settings
- resolve_client_config: Explicit values layered over ARANGO_* environment values
"""

from .client_config import DEFAULT_URL, ClientConfig, resolve_client_config
from .config_base import BaseConfig, ConfigError, ConfigValidationError

__all__ = [
    'BaseConfig',
    'ClientConfig',
    'ConfigError',
    'ConfigValidationError',
    'DEFAULT_URL',
    'resolve_client_config',
]
