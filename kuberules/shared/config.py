"""
Shared configuration management for kuberules.
"""

from typing import Dict, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_NAMESPACE = "default"


class StoreConfig(BaseSettings):
    """Scope and connection settings shared by adapters and synchronizers."""

    model_config = SettingsConfigDict(
        env_prefix="KUBERULES_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Scope
    namespace: str = Field(default=DEFAULT_NAMESPACE)
    labels: Dict[str, str] = Field(default_factory=dict)

    # Connection
    kubeconfig: Optional[str] = Field(default=None)
    context: Optional[str] = Field(default=None)
    server: Optional[str] = Field(default=None)
    token: Optional[str] = Field(default=None)
    verify_tls: bool = Field(default=True)
    request_timeout: float = Field(default=30.0)

    # Logging
    log_level: str = Field(default="info")
    log_format: str = Field(default="json")

    def effective_namespace(self) -> str:
        """Namespace with the default applied."""
        return self.namespace or DEFAULT_NAMESPACE


class SynchronizerConfig(StoreConfig):
    """Synchronizer-specific configuration."""

    sync_timeout: float = Field(default=30.0)
    watch_timeout_seconds: int = Field(default=300)
    skip_disable_auto: bool = Field(default=False)
    watch_max_attempts: int = Field(default=5)
    watch_base_delay: float = Field(default=1.0)


class ConverterConfig(StoreConfig):
    """Conversion tool configuration; logs go to stderr in console form."""

    log_level: str = Field(default="warning")
    log_format: str = Field(default="console")


def get_config(**overrides) -> StoreConfig:
    """Get store configuration from the environment."""
    return StoreConfig(**overrides)


def get_synchronizer_config(**overrides) -> SynchronizerConfig:
    """Get synchronizer configuration from the environment."""
    return SynchronizerConfig(**overrides)


def get_converter_config(**overrides) -> ConverterConfig:
    """Get conversion tool configuration from the environment."""
    return ConverterConfig(**overrides)
