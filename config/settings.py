"""
Configuration management using pydantic-settings.

Hierarchical configuration with environment variable support.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CollectorSettings(BaseSettings):
    """Polling and cache behaviour shared by all collectors."""

    model_config = SettingsConfigDict(env_prefix="COLLECTOR_")

    default_interval: float = Field(
        default=60.0,
        gt=0,
        description="Poll interval (seconds) for declarations without an explicit interval",
    )
    poll_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound (seconds) for a single poll; capped below the collector interval",
    )
    pull_through: bool = Field(
        default=False,
        description="Poll synchronously when a query misses the cache",
    )
    max_staleness: float | None = Field(
        default=None,
        gt=0,
        description="Stop serving cached values older than this many seconds",
    )


class ZMONSettings(BaseSettings):
    """ZMON / KairosDB connection settings."""

    model_config = SettingsConfigDict(env_prefix="ZMON_")

    url: str = Field(default="http://localhost:8083")
    token: str | None = Field(default=None, description="Bearer token for the KairosDB proxy")
    timeout: float = Field(default=30.0, ge=0.1)


class PrometheusSettings(BaseSettings):
    """Prometheus connection settings."""

    model_config = SettingsConfigDict(env_prefix="PROMETHEUS_")

    url: str = Field(default="http://localhost:9090")
    query_timeout: float = Field(default=30.0, ge=0.1)


class KubernetesSettings(BaseSettings):
    """Kubernetes connection settings."""

    model_config = SettingsConfigDict(env_prefix="KUBERNETES_")

    in_cluster: bool = Field(default=False)
    config_path: str | None = Field(default=None)
    discovery_enabled: bool = Field(default=True)
    discovery_interval: float = Field(
        default=30.0,
        ge=1.0,
        description="Seconds between HorizontalPodAutoscaler listings",
    )


class AppSettings(BaseSettings):
    """Application-level settings."""

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    env: Literal["development", "staging", "production"] = Field(default="development")
    debug: bool = Field(default=False)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="json")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8443, ge=1, le=65535)

    # Nested settings
    collector: CollectorSettings = Field(default_factory=CollectorSettings)
    zmon: ZMONSettings = Field(default_factory=ZMONSettings)
    prometheus: PrometheusSettings = Field(default_factory=PrometheusSettings)
    kubernetes: KubernetesSettings = Field(default_factory=KubernetesSettings)

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        return v.upper() if isinstance(v, str) else v


@lru_cache
def get_settings() -> AppSettings:
    """Get cached application settings."""
    return AppSettings()
