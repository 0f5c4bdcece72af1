"""
Configuration package for the pickup tracker.

This package provides configuration management with pydantic-based
validation, environment-specific settings, and logging setup.

Usage:
    from pickup_tracker.config import get_settings

    settings = get_settings()
    print(f"Stops need {settings.stop_min_duration_minutes} minutes")

    # Health check
    is_valid, health = validate_config()

    # Force reload configuration
    clear_config_cache()
    settings = get_settings()
"""

from .settings import (
    BaseConfig,
    DevelopmentConfig,
    TestingConfig,
    ProductionConfig,
    Environment,
    LogLevel,
    ConfigurationError,
    configure_logging,
    get_settings,
    clear_config_cache,
    validate_config
)

__all__ = [
    "BaseConfig",
    "DevelopmentConfig",
    "TestingConfig",
    "ProductionConfig",
    "Environment",
    "LogLevel",
    "ConfigurationError",
    "configure_logging",
    "get_settings",
    "clear_config_cache",
    "validate_config"
]
