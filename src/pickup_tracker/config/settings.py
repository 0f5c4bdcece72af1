"""
Configuration module for the pickup tracker.

This module provides configuration management with:
- Pydantic-based validation and type checking
- Environment-specific configurations
- Cached settings with explicit reload and health checks
- Logging setup shared by the library and the command line
"""

import os
import logging
from functools import lru_cache
from typing import Optional, Dict, Any, Tuple
from enum import Enum

import structlog
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv


class Environment(str, Enum):
    """Application environment types."""
    DEVELOPMENT = "development"
    TESTING = "testing"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging level options."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""
    pass


class BaseConfig(BaseSettings):
    """Base configuration with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_assignment=True,
        extra="ignore",
    )

    # Environment
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment"
    )

    # Application
    app_name: str = Field(
        default="Pickup Tracker",
        description="Application name"
    )

    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )

    debug: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Logging
    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level"
    )

    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format"
    )

    log_json: bool = Field(
        default=False,
        description="Render structured log events as JSON"
    )

    # Stop extraction
    stop_radius_meters: float = Field(
        default=75.0,
        gt=0.0,
        le=1000.0,
        description="Pings within this distance of a dwell centroid belong to the dwell"
    )

    stop_min_duration_minutes: float = Field(
        default=3.0,
        gt=0.0,
        description="Minimum dwell duration reported as a stop"
    )

    school_match_radius_meters: float = Field(
        default=100.0,
        gt=0.0,
        le=5000.0,
        description="Maximum distance between a stop and the school it is matched to"
    )

    # Statistics
    recent_window_days: int = Field(
        default=7,
        ge=1,
        description="Routes completed within this many days count as recent"
    )

    on_time_threshold_minutes: int = Field(
        default=60,
        ge=1,
        description="Completed routes at or under this duration are on time"
    )

    # Missed-school monitoring
    near_school_radius_km: float = Field(
        default=1.0,
        gt=0.0,
        description="Driver within this distance counts as at the school"
    )

    default_alert_threshold_minutes: int = Field(
        default=10,
        ge=0,
        description="Minutes before expected arrival to start alerting when a route school sets none"
    )

    # Export
    export_date_format: str = Field(
        default="%Y-%m-%d",
        description="strftime format of dates in download file names"
    )

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        """Require the message placeholder so log lines are never empty."""
        if "%(message)s" not in v:
            raise ValueError("log_format must contain %(message)s")
        return v

    @model_validator(mode="after")
    def validate_radii(self):
        """Stop dwell radius must not exceed the school match radius."""
        if self.stop_radius_meters > self.school_match_radius_meters:
            raise ValueError(
                "stop_radius_meters must be less than or equal to school_match_radius_meters"
            )
        return self

    def get_logging_config(self) -> Dict[str, Any]:
        """Get logging configuration dictionary."""
        return {
            "level": self.log_level.value,
            "format": self.log_format,
            "json": self.log_json,
        }

    def get_engine_config(self) -> Dict[str, Any]:
        """Get the thresholds used by the route summary engine."""
        return {
            "stop_radius_meters": self.stop_radius_meters,
            "stop_min_duration_minutes": self.stop_min_duration_minutes,
            "school_match_radius_meters": self.school_match_radius_meters,
            "recent_window_days": self.recent_window_days,
            "on_time_threshold_minutes": self.on_time_threshold_minutes,
            "near_school_radius_km": self.near_school_radius_km,
            "default_alert_threshold_minutes": self.default_alert_threshold_minutes,
        }

    def health_check(self) -> Dict[str, Any]:
        """Perform configuration health check."""
        health = {
            "status": "healthy",
            "environment": self.environment.value,
            "version": self.app_version,
            "checks": {}
        }

        health["checks"]["thresholds"] = {
            "status": "configured",
            **self.get_engine_config()
        }

        if self.stop_min_duration_minutes < 1:
            health["checks"]["thresholds"]["status"] = "unusual"
            health["status"] = "degraded"

        if self.environment == Environment.PRODUCTION and self.debug:
            health["checks"]["debug"] = {"status": "enabled in production"}
            health["status"] = "degraded"

        return health


class DevelopmentConfig(BaseConfig):
    """Development environment configuration."""

    environment: Environment = Environment.DEVELOPMENT
    debug: bool = True
    log_level: LogLevel = LogLevel.DEBUG


class TestingConfig(BaseConfig):
    """Testing environment configuration."""

    # Not a test class
    __test__ = False

    environment: Environment = Environment.TESTING
    debug: bool = True
    log_level: LogLevel = LogLevel.WARNING


class ProductionConfig(BaseConfig):
    """Production environment configuration."""

    environment: Environment = Environment.PRODUCTION
    debug: bool = False
    log_level: LogLevel = LogLevel.INFO
    log_json: bool = True


# Configuration mapping
CONFIG_MAPPING = {
    Environment.DEVELOPMENT: DevelopmentConfig,
    Environment.TESTING: TestingConfig,
    Environment.PRODUCTION: ProductionConfig,
}


def _load_environment_file() -> None:
    """Load environment variables from .env file."""
    env_file = os.path.join(os.getcwd(), ".env")
    if os.path.exists(env_file):
        load_dotenv(env_file)


def _get_environment() -> Environment:
    """Get current environment from environment variable."""
    env_str = os.getenv("ENVIRONMENT", "development").lower()

    try:
        return Environment(env_str)
    except ValueError:
        logging.warning(f"Invalid environment '{env_str}', defaulting to development")
        return Environment.DEVELOPMENT


def _create_config(environment: Optional[Environment] = None) -> BaseConfig:
    """Create configuration instance for specified environment."""
    if environment is None:
        environment = _get_environment()

    config_class = CONFIG_MAPPING.get(environment, DevelopmentConfig)

    try:
        return config_class()
    except Exception as e:
        raise ConfigurationError(f"Failed to create configuration: {e}")


def configure_logging(config: BaseConfig) -> None:
    """Route structlog through stdlib logging at the configured level."""
    level = getattr(logging, config.log_level.value)
    logging.basicConfig(level=level, format=config.log_format)

    renderer = (
        structlog.processors.JSONRenderer()
        if config.log_json
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


@lru_cache(maxsize=4)
def get_settings(environment: Optional[Environment] = None) -> BaseConfig:
    """
    Get application settings with caching.

    Args:
        environment: Specific environment to load (optional)

    Returns:
        BaseConfig: Configuration instance

    Raises:
        ConfigurationError: If configuration validation fails
    """
    _load_environment_file()

    try:
        config = _create_config(environment)
    except ConfigurationError as e:
        logging.error(f"Configuration loading failed: {e}")
        raise

    configure_logging(config)
    structlog.get_logger(__name__).info(
        "Configuration loaded", environment=config.environment.value
    )
    return config


def clear_config_cache() -> None:
    """Clear configuration cache so the next get_settings() reloads."""
    get_settings.cache_clear()
    logging.info("Configuration cache cleared")


def validate_config(config: Optional[BaseConfig] = None) -> Tuple[bool, Dict[str, Any]]:
    """
    Validate configuration and return health status.

    Args:
        config: Configuration to validate (uses current if None)

    Returns:
        Tuple[bool, Dict]: (is_valid, health_report)
    """
    if config is None:
        try:
            config = get_settings()
        except ConfigurationError as e:
            return False, {"error": str(e), "status": "invalid"}

    health_report = config.health_check()
    is_healthy = health_report["status"] in ["healthy", "degraded"]
    return is_healthy, health_report


# Export commonly used functions and classes
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
