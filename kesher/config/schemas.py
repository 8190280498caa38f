"""
Configuration Schemas for Kesher.

Pydantic models for process settings and persisted instance metadata.

Security:
    Gateway tokens and connection URLs use SecretStr to prevent accidental
    logging. Access the value with `.get_secret_value()`; only the metadata
    store ever does.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field, SecretStr

from ..webhooks.models import Webhook


def _utc_now() -> datetime:
    """Get current UTC time with timezone awareness."""
    return datetime.now(UTC)


class GatewaySettings(BaseModel):
    """Addressing for one account on the remote gateway."""

    instance_id: str = Field(..., description="Gateway-side instance id")
    token: SecretStr = Field(..., description="Gateway instance token")
    client_token: SecretStr | None = Field(None, description="Per-instance Client-Token override")


class InstanceRecord(BaseModel):
    """
    Persisted instance metadata.

    Stored in the metadata store ('instances' collection for MongoDB).
    """

    instance_id: str = Field(..., description="Unique instance identifier")
    family: str = Field("embedded", description="Transport family")
    gateway: GatewaySettings | None = None
    webhooks: list[Webhook] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    class Config:
        extra = "ignore"

    def touch(self) -> None:
        self.updated_at = _utc_now()

    def to_document(self) -> dict[str, Any]:
        """Serialize for storage, revealing secrets."""
        doc = self.model_dump(mode="python")
        if self.gateway is not None:
            doc["gateway"]["token"] = self.gateway.token.get_secret_value()
            client_token = self.gateway.client_token
            doc["gateway"]["client_token"] = (
                client_token.get_secret_value() if client_token else None
            )
        return doc

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> InstanceRecord:
        data = {k: v for k, v in doc.items() if k != "_id"}
        return cls.model_validate(data)


class AppSettings(BaseModel):
    """
    Application settings model.

    Security:
        Tokens and connection URLs use SecretStr to prevent accidental
        logging. Access secret values with: settings.redis_url.get_secret_value()
    """

    # Service identity
    service_name: str = "kesher"
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # Reconnect policy (seconds)
    reconnect_base_delay: float = Field(30.0, gt=0)
    reconnect_max_delay: float = Field(120.0, gt=0)
    reconnect_max_attempts: int = Field(3, ge=1)
    reconnect_extended_cooldown: float = Field(600.0, gt=0)
    force_reset_delay: float = Field(2.0, ge=0)

    # Bulk sends
    bulk_send_delay: float = Field(2.0, ge=0)
    bulk_send_max_targets: int = Field(500, ge=1)

    # Webhook delivery
    log_ring_capacity: int = Field(100, ge=1)
    webhook_timeout: float = Field(10.0, gt=0)

    # Instance metadata
    metadata_backend: str = Field("memory", description="memory | mongodb")
    mongodb_url: SecretStr = Field(default=SecretStr("mongodb://localhost:27017"))
    mongodb_database: str = "kesher"

    # Credential store
    credential_backend: str = Field("memory", description="memory | redis")
    redis_url: SecretStr = Field(default=SecretStr("redis://localhost:6379"))
    redis_key_prefix: str = "kesher:credentials"

    # Embedded family: "module:callable" returning a protocol session
    embedded_session_factory: str | None = None

    # Remote gateway
    gateway_base_url: str = "https://api.z-api.io"
    gateway_client_token: SecretStr | None = None
    gateway_country_code: str | None = Field(None, description="Prefix added to bare targets")
    gateway_timeout: float = Field(30.0, gt=0)

    class Config:
        env_prefix = "KESHER_"
        case_sensitive = False
