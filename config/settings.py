"""
Configuration management for the rural bus backend.

This module provides centralized configuration loading and validation using Pydantic settings.
All secrets are loaded from environment variables or .env files.

Environment-specific files (.env.development, .env.staging, .env.production)
are layered over the base .env file; the ENVIRONMENT variable picks which one.
"""

import os
from enum import Enum
from pathlib import Path
from typing import Optional, List, Tuple

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Supported deployment environments."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class StoreBackend(str, Enum):
    """Supported backend stores for bus, route, schedule and key records."""
    MEMORY = "memory"
    ELASTICSEARCH = "elasticsearch"


def _detect_environment() -> Environment:
    """
    Detect the current environment from the ENVIRONMENT variable.

    Returns:
        Environment: The detected environment, defaults to DEVELOPMENT if not set.
    """
    env_value = os.environ.get("ENVIRONMENT", "development").lower().strip()
    try:
        return Environment(env_value)
    except ValueError:
        return Environment.DEVELOPMENT


def _get_env_files(environment: Environment) -> Tuple[str, ...]:
    """
    Get the list of .env files to load for the given environment.

    Files are loaded in order, with later files overriding earlier ones.

    Args:
        environment: The target environment.

    Returns:
        Tuple of .env file paths to load.
    """
    env_file_map = {
        Environment.DEVELOPMENT: ".env.development",
        Environment.STAGING: ".env.staging",
        Environment.PRODUCTION: ".env.production",
    }

    env_specific_file = env_file_map.get(environment, ".env.development")

    return (".env", env_specific_file)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    The application will fail to start if required fields are missing or invalid.
    Which fields are required depends on the chosen store backend.
    """

    # Environment
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Deployment environment (development, staging, production)"
    )

    # Store Configuration
    store_backend: StoreBackend = Field(
        default=StoreBackend.MEMORY,
        description="Backend store for bus records: 'memory' or 'elasticsearch'"
    )
    elastic_endpoint: Optional[str] = Field(
        default=None,
        description="Elasticsearch endpoint URL"
    )
    elastic_api_key: Optional[str] = Field(
        default=None,
        description="Elasticsearch API key for authentication"
    )
    elastic_index_prefix: str = Field(
        default="",
        description="Prefix applied to every index name (e.g. 'staging_')"
    )
    seed_demo_data: bool = Field(
        default=True,
        description="Load demo routes, buses and schedules into the in-memory store"
    )
    default_location_label: str = Field(
        default="Unknown Location",
        description="Label stored when a position report carries none"
    )

    # Real-time Configuration
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis URL for relaying change events between processes"
    )
    realtime_channel: str = Field(
        default="ruralbus:changes",
        description="Redis pub/sub channel used by the change relay"
    )
    realtime_queue_size: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Maximum buffered events per subscriber"
    )
    websocket_heartbeat_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Idle interval after which a heartbeat is sent to WebSocket clients"
    )

    # Rate Limiting Configuration
    rate_limit_enabled: bool = Field(
        default=True,
        description="Enforce per-IP rate limits"
    )
    rate_limit_requests_per_minute: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Maximum API requests per minute per IP"
    )
    rate_limit_ingest_requests_per_minute: int = Field(
        default=120,
        ge=1,
        le=10000,
        description="Maximum location reports per minute per IP"
    )

    # Simulator Configuration
    simulator_enabled: bool = Field(
        default=False,
        description="Start the location simulator at application start-up"
    )
    simulator_interval_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Seconds between simulator ticks"
    )
    simulator_max_concurrency: int = Field(
        default=10,
        ge=1,
        le=500,
        description="Maximum in-flight simulated reports"
    )
    simulator_ingest_url: Optional[str] = Field(
        default=None,
        description="Full URL of the ingest endpoint; the app itself when unset"
    )
    simulator_api_key_template: str = Field(
        default="simulation_key_{bus_id}",
        description="Template producing the API key the simulator sends for a bus"
    )
    simulator_center_latitude: float = Field(default=40.7128, ge=-90, le=90)
    simulator_center_longitude: float = Field(default=-74.0060, ge=-180, le=180)
    simulator_spread_degrees: float = Field(
        default=0.1,
        gt=0,
        le=10,
        description="Width of the square around the centre that positions are drawn from"
    )
    simulator_request_timeout: float = Field(default=10.0, gt=0)

    # Observability Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    otel_endpoint: Optional[str] = Field(
        default=None,
        description="OpenTelemetry collector endpoint URL"
    )
    otel_service_name: str = Field(
        default="ruralbus-backend",
        description="Service name for OpenTelemetry traces"
    )
    health_check_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Timeout in seconds for each dependency health check"
    )

    # CORS Configuration
    cors_origins: List[str] = Field(
        default=["http://localhost:5173"],
        description="Allowed CORS origins for the browsing API"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("elastic_endpoint")
    @classmethod
    def validate_elastic_endpoint(cls, v: Optional[str]) -> Optional[str]:
        """Validate that elastic_endpoint, when given, is an HTTP/HTTPS URL."""
        if v is None:
            return v
        v = v.strip().strip('"')
        if not v:
            return None
        if not (v.startswith("http://") or v.startswith("https://")):
            raise ValueError("elastic_endpoint must be a valid HTTP/HTTPS URL")
        return v

    @field_validator("elastic_api_key")
    @classmethod
    def validate_elastic_api_key(cls, v: Optional[str]) -> Optional[str]:
        """Strip quotes and whitespace; an empty key counts as unset."""
        if v is None:
            return v
        v = v.strip().strip('"')
        return v or None

    @field_validator("simulator_api_key_template")
    @classmethod
    def validate_api_key_template(cls, v: str) -> str:
        """The template must be formattable with a bus_id."""
        try:
            v.format(bus_id="probe")
        except (KeyError, IndexError, ValueError) as e:
            raise ValueError(f"simulator_api_key_template is not a valid template: {e}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that log_level is a valid logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v = v.strip().upper()
        if v not in valid_levels:
            raise ValueError(f"log_level must be one of: {', '.join(sorted(valid_levels))}")
        return v

    @field_validator("cors_origins")
    @classmethod
    def validate_cors_origins(cls, v: List[str]) -> List[str]:
        """
        Validate CORS origins format and reject wildcard patterns.

        The ingest endpoint has its own permissive policy; the browsing API
        only answers configured frontends.
        """
        validated_origins = []
        for origin in v:
            origin = origin.strip()
            if origin == "*" or "*" in origin:
                raise ValueError(
                    f"Wildcard patterns are not allowed in CORS origins: {origin}. "
                    "Specify exact frontend domains for security."
                )
            if not (origin.startswith("http://") or origin.startswith("https://")):
                raise ValueError(
                    f"Invalid CORS origin format: {origin}. "
                    "Must start with http:// or https://"
                )
            validated_origins.append(origin)
        return validated_origins

    @model_validator(mode="after")
    def validate_store_config(self) -> "Settings":
        """Validate that the chosen store backend is fully configured."""
        if self.store_backend == StoreBackend.ELASTICSEARCH:
            missing = [
                name for name in ("elastic_endpoint", "elastic_api_key")
                if not getattr(self, name)
            ]
            if missing:
                raise ValueError(
                    f"{', '.join(missing)} required when store_backend is 'elasticsearch'"
                )
        elif self.environment == Environment.PRODUCTION:
            raise ValueError(
                "store_backend 'memory' is not allowed in production"
            )
        return self


class ConfigurationError(Exception):
    """Exception raised when configuration validation fails."""

    def __init__(self, message: str, missing_fields: Optional[List[str]] = None,
                 invalid_fields: Optional[dict] = None):
        self.message = message
        self.missing_fields = missing_fields or []
        self.invalid_fields = invalid_fields or {}
        super().__init__(self.format_error_message())

    def format_error_message(self) -> str:
        """Format a descriptive error message listing all issues."""
        parts = [self.message]

        if self.missing_fields:
            parts.append(f"\nMissing required fields: {', '.join(self.missing_fields)}")

        if self.invalid_fields:
            invalid_parts = [f"  - {field}: {error}" for field, error in self.invalid_fields.items()]
            parts.append("\nInvalid field values:\n" + "\n".join(invalid_parts))

        return "".join(parts)


def create_settings_for_environment(environment: Optional[Environment] = None) -> Settings:
    """
    Factory function to create Settings for a specific environment.

    Args:
        environment: Optional environment override. If not provided, detected from
                    ENVIRONMENT variable.

    Returns:
        Settings: Validated settings for the specified environment.

    Raises:
        ConfigurationError: If required settings are missing or invalid.
    """
    if environment is None:
        environment = _detect_environment()

    env_files = _get_env_files(environment)
    existing_env_files = [f for f in env_files if Path(f).exists()]

    # pydantic-settings tolerates missing files
    if not existing_env_files:
        existing_env_files = list(env_files)

    try:
        class EnvironmentSettings(Settings):
            model_config = SettingsConfigDict(
                env_file=tuple(existing_env_files),
                env_file_encoding="utf-8",
                case_sensitive=False,
                extra="ignore"
            )

        return EnvironmentSettings()
    except Exception as e:
        missing_fields = []
        invalid_fields = {}

        if hasattr(e, 'errors'):
            for error in e.errors():
                field_name = '.'.join(str(loc) for loc in error.get('loc', [])) or "settings"
                error_type = error.get('type', '')
                error_msg = error.get('msg', str(error))

                if error_type == 'missing':
                    missing_fields.append(field_name)
                else:
                    invalid_fields[field_name] = error_msg

        raise ConfigurationError(
            f"Failed to load configuration for environment '{environment.value}'",
            missing_fields=missing_fields,
            invalid_fields=invalid_fields
        ) from e


# Global settings cache
_settings_cache: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the application settings singleton.

    Settings are loaded once and cached for subsequent calls.

    Returns:
        Settings: The validated application settings.

    Raises:
        ConfigurationError: If required settings are missing or invalid.
    """
    global _settings_cache

    if _settings_cache is None:
        _settings_cache = create_settings_for_environment()

    return _settings_cache


def clear_settings_cache() -> None:
    """
    Clear the settings cache.

    This is primarily useful for testing to allow reloading settings
    with different environment variables.
    """
    global _settings_cache
    _settings_cache = None


def validate_startup(settings: Optional[Settings] = None) -> None:
    """
    Validate all required settings at application startup.

    Raises:
        ConfigurationError: If any required settings are missing or invalid.
    """
    settings = settings or get_settings()

    validation_errors = {}

    if settings.simulator_ingest_url and not (
        settings.simulator_ingest_url.startswith("http://")
        or settings.simulator_ingest_url.startswith("https://")
    ):
        validation_errors["simulator_ingest_url"] = (
            f"Invalid URL: {settings.simulator_ingest_url}. Must start with http:// or https://"
        )

    if settings.redis_url and not (
        settings.redis_url.startswith("redis://") or settings.redis_url.startswith("rediss://")
    ):
        validation_errors["redis_url"] = (
            f"Invalid Redis URL: {settings.redis_url}. Must start with redis:// or rediss://"
        )

    # In production, ensure CORS origins are explicitly configured (not just localhost)
    if settings.environment == Environment.PRODUCTION:
        localhost_only = all(
            "localhost" in origin or "127.0.0.1" in origin
            for origin in settings.cors_origins
        )
        if localhost_only:
            validation_errors["cors_origins"] = (
                "Production environment requires non-localhost CORS origins. "
                "Configure your production frontend domain(s)."
            )

    if validation_errors:
        raise ConfigurationError(
            "Configuration validation failed during startup",
            invalid_fields=validation_errors
        )

