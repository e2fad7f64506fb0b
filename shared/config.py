"""
Shared configuration management for the Weather Gateway.
"""

from typing import Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_WEATHER_API_URL = (
    "https://weather.visualcrossing.com/VisualCrossingWebServices/rest/services/timeline"
)


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Environment
    env: str = Field(default="local", validation_alias="WEATHER_ENV")
    log_level: str = Field(default="info", validation_alias="WEATHER_LOG_LEVEL")

    # Cache store
    redis_url: str = Field(default="redis://localhost:6379/0", validation_alias="WEATHER_REDIS_URL")
    cache_ttl_seconds: int = Field(default=43200, ge=1, validation_alias="WEATHER_CACHE_TTL")

    # Upstream weather provider
    weather_api_url: str = Field(default=DEFAULT_WEATHER_API_URL, validation_alias="WEATHER_API_URL")
    weather_api_key: SecretStr = Field(default=SecretStr(""), validation_alias="WEATHER_API_KEY")
    weather_api_timeout: float = Field(default=10.0, gt=0, validation_alias="WEATHER_API_TIMEOUT")

    # Rate limiting
    rate_limit_capacity: int = Field(default=100, ge=1, validation_alias="RATE_LIMIT_CAPACITY")
    rate_limit_refill_tokens: int = Field(default=100, ge=1, validation_alias="RATE_LIMIT_REFILL_TOKENS")
    rate_limit_refill_duration: int = Field(default=60, ge=1, validation_alias="RATE_LIMIT_REFILL_DURATION")
    rate_limit_sweep_interval: int = Field(default=300, ge=0, validation_alias="RATE_LIMIT_SWEEP_INTERVAL")


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int = Field(default=8080, validation_alias="WEATHER_PORT")
    host: str = Field(default="0.0.0.0", validation_alias="WEATHER_HOST")

    def __init__(self, service_name: str, port: Optional[int] = None, **kwargs):
        # An explicit port wins over WEATHER_PORT
        if port is not None:
            kwargs["port"] = port
        super().__init__(service_name=service_name, **kwargs)


def get_config(service_name: str, port: Optional[int] = None, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name, port, **overrides)
