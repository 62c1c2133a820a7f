"""
Configuration management for warden using Pydantic v2.
"""

import json
import logging
from pathlib import Path
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = Path("/etc/warden/config.json")


class NotaryConfig(BaseModel):
    """Connection parameters for the Notary trust service."""

    model_config = ConfigDict(frozen=True)

    url: str = Field(..., description="Base URL of the Notary server")
    timeout: float = Field(default=10.0, gt=0, description="Client timeout in seconds")


class ServiceConfig(BaseModel):
    """Read-only configuration shared by all image validation calls."""

    model_config = ConfigDict(frozen=True)

    notary_config: NotaryConfig
    allowed_registries: Tuple[str, ...] = ()

    @field_validator("allowed_registries", mode="before")
    @classmethod
    def drop_empty_prefixes(cls, v):
        # An empty prefix would exempt every image from verification
        if isinstance(v, (list, tuple)):
            return tuple(item for item in v if item)
        return v


class WebhookConfig(BaseModel):
    """Desired-state parameters for the webhook registrations."""

    model_config = ConfigDict(frozen=True)

    ca_bundle: bytes
    service_namespace: str
    service_name: str


class ServerConfig(BaseSettings):
    # Server configuration
    bind_address: str = Field(default="0.0.0.0")
    port: int = Field(default=8443, ge=1, le=65535)

    # TLS configuration
    tls_cert_path: Optional[Path] = Field(default=None, alias="TLS_CERT_PATH")
    tls_key_path: Optional[Path] = Field(default=None, alias="TLS_KEY_PATH")
    require_tls: bool = Field(default=False, alias="REQUIRE_TLS")

    # Debug mode
    debug: bool = Field(default=False, alias="DEBUG")

    model_config = SettingsConfigDict(
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("tls_cert_path", "tls_key_path", mode="after")
    @classmethod
    def validate_paths(cls, v: Optional[Path]) -> Optional[Path]:
        """Validate that paths exist if specified."""
        if v and not v.exists():
            raise ValueError(f"Path does not exist: {v}")
        return v


class WardenConfig(ServerConfig):
    """Main configuration for the warden admission service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Notary configuration
    notary_url: str = Field(
        default="https://signing.repositories.cloud.sap", alias="NOTARY_URL"
    )
    notary_timeout: float = Field(default=10.0, alias="NOTARY_TIMEOUT", gt=0)

    # Registries exempt from trust verification - expects JSON array from environment
    allowed_registries: List[str] = Field(
        default_factory=list,
        alias="ALLOWED_REGISTRIES",
        description="JSON array of repository prefixes exempt from verification",
    )

    # Upper bound for a single admission decision, must stay below the webhook timeout
    admission_timeout: float = Field(default=10.0, alias="ADMISSION_TIMEOUT", gt=0, lt=15)

    # Webhook registration
    manage_webhooks: bool = Field(default=False, alias="MANAGE_WEBHOOKS")
    webhook_service_name: str = Field(default="warden-admission", alias="WEBHOOK_SERVICE_NAME")
    webhook_service_namespace: str = Field(
        default="kyma-system", alias="WEBHOOK_SERVICE_NAMESPACE"
    )
    webhook_ca_bundle_path: Optional[Path] = Field(default=None, alias="WEBHOOK_CA_BUNDLE_PATH")
    reconcile_interval: int = Field(default=60, alias="RECONCILE_INTERVAL", ge=1)

    # Metrics configuration
    metrics_enabled: bool = Field(default=True, alias="METRICS_ENABLED")

    # Config file support
    config_file: Optional[Path] = Field(default=None, alias="CONFIG_FILE")

    @field_validator("notary_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    def __init__(self, **kwargs):
        """Initialize config with support for config file."""
        config_file_path = kwargs.get("config_file") or kwargs.get("CONFIG_FILE")
        if not config_file_path:
            config_file_path = DEFAULT_CONFIG_FILE

        file_config = {}
        if config_file_path and Path(config_file_path).exists():
            with open(config_file_path, "r") as f:
                file_config = json.load(f)
            logger.info("Loaded configuration file %s", config_file_path)

        # kwargs take precedence over file
        merged_config = {**file_config, **kwargs}

        super().__init__(**merged_config)

    def service_config(self) -> ServiceConfig:
        """Build the immutable image validation configuration."""
        return ServiceConfig(
            notary_config=NotaryConfig(url=self.notary_url, timeout=self.notary_timeout),
            allowed_registries=self.allowed_registries,
        )

    def webhook_config(self) -> WebhookConfig:
        """Build the webhook registration parameters, reading the CA bundle from disk."""
        if not self.webhook_ca_bundle_path:
            raise ValueError("WEBHOOK_CA_BUNDLE_PATH is required to manage webhook configurations")

        return WebhookConfig(
            ca_bundle=self.webhook_ca_bundle_path.read_bytes(),
            service_namespace=self.webhook_service_namespace,
            service_name=self.webhook_service_name,
        )

    def export_json(self) -> str:
        """Export configuration as JSON."""
        return self.model_dump_json(indent=2, exclude_unset=False)


def load_config(**kwargs) -> WardenConfig:
    """Load configuration with environment variables and optional overrides."""
    return WardenConfig(**kwargs)
