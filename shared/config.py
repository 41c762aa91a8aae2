"""
Shared configuration management for the Armory Gateway.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="ARMORY_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")
    redis_connect_timeout_seconds: float = Field(default=5.0)
    redis_socket_timeout_seconds: float = Field(default=5.0)

    # Sessions (OAuth state cookie)
    session_key: str = Field(default="change-me")
    session_https_only: bool = Field(default=False)

    # Header that must be present on administrative requests
    admin_header: str = Field(default="X-Armory-Anonymous-Authority")

    # Battle.net
    bnet_client_id: str = Field(default="")
    bnet_client_secret: str = Field(default="")
    bnet_redirect_url: str = Field(default="http://localhost:9090/api/auth/battlenet/callback")
    bnet_oauth_url: str = Field(default="https://oauth.battle.net")
    bnet_api_url: str = Field(default="https://{region}.api.blizzard.com")

    # Warcraft Logs
    wl_client_id: str = Field(default="")
    wl_client_secret: str = Field(default="")
    wl_api_url: str = Field(default="https://www.warcraftlogs.com/api/v2/client")
    wl_token_url: str = Field(default="https://www.warcraftlogs.com/oauth/token")

    # Raider.IO
    rio_api_url: str = Field(default="https://raider.io/api/v1")

    # Rate limiting
    bnet_requests_per_second: int = Field(default=100)
    bnet_requests_per_hour: int = Field(default=36000)
    rio_requests_per_minute: int = Field(default=300)
    wl_points_per_hour: int = Field(default=3600)

    # Timeouts
    upstream_timeout_seconds: float = Field(default=10.0)
    token_check_timeout_seconds: float = Field(default=30.0)

    # Response cache TTLs
    character_cache_ttl_seconds: int = Field(default=300)
    reference_cache_ttl_seconds: int = Field(default=12 * 60 * 60)

    # Warm the Warcraft Logs reference data on startup
    warm_reference_data: bool = Field(default=True)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
