"""Configuration contract for accesscore.

Pydantic-validated settings shared by the resolver, cache, tenant alias
resolver, gate and gRPC interceptor. Services embed ``AccessConfig`` in
their own configuration instead of reading the environment directly.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .permissions.constants import Hierarchy


class LogLevel(str, Enum):
    """Standard log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EnforcementMode(str, Enum):
    """Three-state enforcement toggle for the gRPC interceptor.

    - ``off``: no checks, only caller-identity logging.
    - ``warn``: evaluate the gate, log denials as WARNING, but allow through.
    - ``enforce``: evaluate the gate, deny on failure (production).
    """

    OFF = "off"
    WARN = "warn"
    ENFORCE = "enforce"


class AccessConfig(BaseModel):
    """Settings for the authorization engine.

    RULE: All settings come through this model. ``load_config_from_env`` is
    the only place that reads environment variables.
    """

    # Logging
    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level for the service",
    )
    log_json: bool = Field(
        default=False,
        description="Use JSON log format (default: plain text)",
    )
    service_name: Optional[str] = Field(
        default=None,
        description="Service name used in interceptor log lines",
    )

    # Permission cache
    cache_max_entries: int = Field(
        default=10_000,
        ge=1,
        description="Maximum cached permission contexts before LRU eviction",
    )
    cache_ttl_seconds: float = Field(
        default=300.0,
        ge=0,
        description="Max age of a cached context; 0 disables the age check",
    )

    # Tenant alias resolution
    tenant_alias_ttl_seconds: float = Field(
        default=3600.0,
        ge=0,
        description="Max age of a cached tenant/school alias; 0 disables the age check",
    )

    # Gate
    enforcement: EnforcementMode = Field(
        default=EnforcementMode.WARN,
        description="Interceptor enforcement mode: off | warn | enforce",
    )
    default_hierarchy: int = Field(
        default=Hierarchy.NONE,
        description="Hierarchy reported for principals without any role",
    )

    # Backing store
    database_url: Optional[str] = Field(
        default=None,
        description="SQLAlchemy async URL (e.g. postgresql+asyncpg://...)",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str | LogLevel) -> LogLevel:
        """Convert string to LogLevel enum."""
        if isinstance(v, LogLevel):
            return v
        if isinstance(v, str):
            try:
                return LogLevel[v.upper()]
            except KeyError:
                raise ValueError(f"Invalid log level: {v}. Must be one of {[e.value for e in LogLevel]}")
        raise ValueError(f"Log level must be string or LogLevel enum, got {type(v)}")

    @field_validator("enforcement", mode="before")
    @classmethod
    def validate_enforcement(cls, v: str | EnforcementMode) -> EnforcementMode:
        """Accept case-insensitive strings."""
        if isinstance(v, EnforcementMode):
            return v
        if isinstance(v, str):
            try:
                return EnforcementMode(v.strip().lower())
            except ValueError:
                raise ValueError(f"Invalid enforcement mode: {v}. Must be one of off, warn, enforce")
        raise ValueError(f"Enforcement must be string or EnforcementMode enum, got {type(v)}")

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: Optional[str]) -> Optional[str]:
        """Require an async SQLAlchemy driver."""
        if v is None:
            return v
        scheme = v.split("://", 1)[0]
        if "+" not in scheme:
            raise ValueError("database_url must name an async driver (e.g. postgresql+asyncpg://, sqlite+aiosqlite://)")
        return v

    model_config = {
        "extra": "forbid",
    }


_TRUTHY = ("true", "1", "yes", "on")


def load_config_from_env() -> AccessConfig:
    """Load configuration from environment variables.

    Environment variables:
    - LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - LOG_JSON: Use JSON log format (true/false, default: false)
    - SERVICE_NAME: Service name for log lines
    - ACCESS_CACHE_MAX_ENTRIES: Permission cache capacity
    - ACCESS_CACHE_TTL_SECONDS: Permission cache max age (0 = no age check)
    - ACCESS_TENANT_ALIAS_TTL_SECONDS: Tenant alias cache max age
    - SECURITY_ENFORCEMENT: off | warn | enforce
    - ACCESS_DEFAULT_HIERARCHY: Hierarchy for principals without roles
    - DATABASE_URL: SQLAlchemy async URL

    Returns:
        AccessConfig instance with values from environment or defaults.
    """
    import os

    return AccessConfig(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_json=os.getenv("LOG_JSON", "false").lower() in _TRUTHY,
        service_name=os.getenv("SERVICE_NAME"),
        cache_max_entries=int(os.getenv("ACCESS_CACHE_MAX_ENTRIES", "10000")),
        cache_ttl_seconds=float(os.getenv("ACCESS_CACHE_TTL_SECONDS", "300")),
        tenant_alias_ttl_seconds=float(os.getenv("ACCESS_TENANT_ALIAS_TTL_SECONDS", "3600")),
        enforcement=os.getenv("SECURITY_ENFORCEMENT", "warn"),
        default_hierarchy=int(os.getenv("ACCESS_DEFAULT_HIERARCHY", str(Hierarchy.NONE))),
        database_url=os.getenv("DATABASE_URL"),
    )


__all__ = [
    "AccessConfig",
    "EnforcementMode",
    "LogLevel",
    "load_config_from_env",
]
