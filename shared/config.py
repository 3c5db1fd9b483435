"""
Shared configuration management for the scoped ACL engine.
"""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="ACL_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local", description="Deployment environment")
    log_level: str = Field(default="info", description="Log level for structlog output")


class ACLConfig(BaseConfig):
    """Authorization engine configuration."""

    service_name: str = Field(default="acl", description="Logger and metrics prefix")

    # Users holding this role pass every check; unset disables the bypass
    super_role: Optional[str] = Field(default=None, description="Super role identifier")

    cache_compiled_rules: bool = Field(default=True, description="Memoize compiled rules per scope")
    max_cached_scopes: int = Field(default=1024, ge=1, description="Compiled rules kept before eviction")

    # Prometheus exporter port; unset keeps metrics in-process
    metrics_port: Optional[int] = Field(default=None, description="Port for the metrics endpoint")

    # Status raised by the web guard when a denial callback does not end the request
    deny_status_code: int = Field(default=401, description="HTTP status for denied requests")

    @field_validator("super_role")
    @classmethod
    def _blank_super_role_is_unset(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value

    @field_validator("deny_status_code")
    @classmethod
    def _deny_status_is_client_error(cls, value: int) -> int:
        if value not in (401, 403):
            raise ValueError("deny_status_code must be 401 or 403")
        return value


def get_config(**overrides) -> ACLConfig:
    """Get configuration for the ACL engine."""
    return ACLConfig(**overrides)
