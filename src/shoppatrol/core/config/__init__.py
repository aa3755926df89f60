"""Configuration loading and validation."""

from .models import (
    AppConfig,
    DatabaseConfig,
    LoggingConfig,
    SessionConfig,
    DEFAULT_RESTRICTED_KEYWORDS,
    clean_credential,
)
from .loader import ConfigError, load_app_config, validate_app_config_file

__all__ = [
    "AppConfig",
    "DatabaseConfig",
    "LoggingConfig",
    "SessionConfig",
    "DEFAULT_RESTRICTED_KEYWORDS",
    "clean_credential",
    "ConfigError",
    "load_app_config",
    "validate_app_config_file",
]
