"""
Dependency wiring for Kesher.

Builds the registry and its collaborators from settings. The registry is
stored on app.state by the lifespan handler and handed to routes through
the get_registry dependency; nothing here is a process-wide singleton
except the settings cache.
"""
from __future__ import annotations

import importlib
import logging
import os
from functools import lru_cache

from fastapi import Request

from kesher.clock import AsyncioScheduler, SystemClock
from kesher.config.schemas import AppSettings
from kesher.config.service import InMemoryMetadataStore, MetadataStore, MongoMetadataStore
from kesher.credentials import CredentialStore, InMemoryCredentialStore, RedisCredentialStore
from kesher.events import EventNormalizer
from kesher.instance import ReconnectPolicy
from kesher.registry import InstanceRegistry
from kesher.transports import (
    ProtocolSessionFactory,
    TransportFamilyRegistry,
    create_embedded_factory,
    create_gateway_factory,
)
from kesher.webhooks import LogRing, WebhookDispatcher

logger = logging.getLogger(__name__)


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


@lru_cache()
def get_settings() -> AppSettings:
    """
    Get application settings from environment.

    Uses lru_cache for singleton pattern.
    """
    return AppSettings(
        # Service
        service_name=os.getenv("KESHER_SERVICE_NAME", "kesher"),
        environment=os.getenv("KESHER_ENVIRONMENT", "development"),
        debug=os.getenv("KESHER_DEBUG", "false").lower() == "true",
        log_level=os.getenv("KESHER_LOG_LEVEL", "INFO").upper(),
        # Reconnect policy
        reconnect_base_delay=_env_float("KESHER_RECONNECT_BASE_DELAY", 30.0),
        reconnect_max_delay=_env_float("KESHER_RECONNECT_MAX_DELAY", 120.0),
        reconnect_max_attempts=int(os.getenv("KESHER_RECONNECT_MAX_ATTEMPTS", "3")),
        reconnect_extended_cooldown=_env_float("KESHER_RECONNECT_EXTENDED_COOLDOWN", 600.0),
        force_reset_delay=_env_float("KESHER_FORCE_RESET_DELAY", 2.0),
        # Bulk sends
        bulk_send_delay=_env_float("KESHER_BULK_SEND_DELAY", 2.0),
        bulk_send_max_targets=int(os.getenv("KESHER_BULK_SEND_MAX_TARGETS", "500")),
        # Webhook delivery
        log_ring_capacity=int(os.getenv("KESHER_LOG_RING_CAPACITY", "100")),
        webhook_timeout=_env_float("KESHER_WEBHOOK_TIMEOUT", 10.0),
        # Instance metadata
        metadata_backend=os.getenv("KESHER_METADATA_BACKEND", "memory").lower(),
        mongodb_url=os.getenv("KESHER_MONGODB_URL", "mongodb://localhost:27017"),
        mongodb_database=os.getenv("KESHER_MONGODB_DATABASE", "kesher"),
        # Credential store
        credential_backend=os.getenv("KESHER_CREDENTIAL_BACKEND", "memory").lower(),
        redis_url=os.getenv("KESHER_REDIS_URL", "redis://localhost:6379"),
        redis_key_prefix=os.getenv("KESHER_REDIS_KEY_PREFIX", "kesher:credentials"),
        # Embedded family
        embedded_session_factory=os.getenv("KESHER_EMBEDDED_SESSION_FACTORY") or None,
        # Remote gateway
        gateway_base_url=os.getenv("KESHER_GATEWAY_BASE_URL", "https://api.z-api.io"),
        gateway_client_token=os.getenv("KESHER_GATEWAY_CLIENT_TOKEN") or None,
        gateway_country_code=os.getenv("KESHER_GATEWAY_COUNTRY_CODE") or None,
        gateway_timeout=_env_float("KESHER_GATEWAY_TIMEOUT", 30.0),
    )


def load_session_factory(path: str) -> ProtocolSessionFactory:
    """
    Resolve a "module:callable" path to a protocol session factory.

    Raises:
        ValueError: If the path is malformed or does not name a callable
    """
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Expected 'module:callable', got {path!r}")
    factory = getattr(importlib.import_module(module_name), attr, None)
    if not callable(factory):
        raise ValueError(f"{path!r} is not callable")
    return factory


def build_credential_store(settings: AppSettings) -> CredentialStore:
    if settings.credential_backend == "redis":
        return RedisCredentialStore(
            redis_url=settings.redis_url.get_secret_value(),
            key_prefix=settings.redis_key_prefix,
        )
    return InMemoryCredentialStore()


def build_metadata_store(settings: AppSettings) -> MetadataStore:
    if settings.metadata_backend == "mongodb":
        return MongoMetadataStore(
            mongodb_url=settings.mongodb_url.get_secret_value(),
            database_name=settings.mongodb_database,
        )
    return InMemoryMetadataStore()


def build_families(
    settings: AppSettings,
    session_factory: ProtocolSessionFactory | None = None,
) -> TransportFamilyRegistry:
    """
    Register the transport families available in this process.

    The embedded family needs a protocol session implementation; without
    one only the gateway family is registered.
    """
    families = TransportFamilyRegistry()

    if session_factory is None and settings.embedded_session_factory:
        session_factory = load_session_factory(settings.embedded_session_factory)
    if session_factory is not None:
        families.register("embedded", create_embedded_factory(session_factory))
    else:
        logger.warning("No protocol session configured; embedded family disabled")

    client_token = settings.gateway_client_token
    families.register(
        "gateway",
        create_gateway_factory(
            base_url=settings.gateway_base_url,
            client_token=client_token.get_secret_value() if client_token else None,
            country_code=settings.gateway_country_code,
            timeout=settings.gateway_timeout,
        ),
    )
    return families


def build_registry(
    settings: AppSettings,
    *,
    session_factory: ProtocolSessionFactory | None = None,
    credential_store: CredentialStore | None = None,
    metadata_store: MetadataStore | None = None,
    families: TransportFamilyRegistry | None = None,
) -> InstanceRegistry:
    """Assemble an InstanceRegistry from settings. Any collaborator can be overridden."""
    clock = SystemClock()
    dispatcher = WebhookDispatcher(
        LogRing(settings.log_ring_capacity),
        timeout=settings.webhook_timeout,
        clock=clock,
    )
    return InstanceRegistry(
        families or build_families(settings, session_factory),
        credential_store=credential_store or build_credential_store(settings),
        metadata_store=metadata_store or build_metadata_store(settings),
        dispatcher=dispatcher,
        normalizer=EventNormalizer(clock),
        policy=ReconnectPolicy(
            base=settings.reconnect_base_delay,
            cap=settings.reconnect_max_delay,
            max_attempts=settings.reconnect_max_attempts,
            extended_cooldown=settings.reconnect_extended_cooldown,
        ),
        clock=clock,
        scheduler=AsyncioScheduler(),
        force_reset_delay=settings.force_reset_delay,
        bulk_send_delay=settings.bulk_send_delay,
        bulk_send_max_targets=settings.bulk_send_max_targets,
    )


def get_registry(request: Request) -> InstanceRegistry:
    """FastAPI dependency returning the registry built at startup."""
    return request.app.state.registry
