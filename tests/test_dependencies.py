"""
Tests for settings loading, dependency wiring and the app lifespan.
"""

import os
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from conftest import SessionFactory
from kesher.app.dependencies import (
    build_credential_store,
    build_families,
    build_metadata_store,
    build_registry,
    get_settings,
    load_session_factory,
)
from kesher.app.main import create_app
from kesher.config import AppSettings, InMemoryMetadataStore, MongoMetadataStore
from kesher.credentials import InMemoryCredentialStore, RedisCredentialStore
from kesher.errors import OperationResult
from kesher.registry import InstanceRegistry


@pytest.fixture
def fresh_settings():
    get_settings.cache_clear()
    yield get_settings
    get_settings.cache_clear()


class TestSettings:
    def test_defaults(self, fresh_settings):
        with patch.dict(os.environ, {}, clear=True):
            settings = fresh_settings()

        assert settings.reconnect_base_delay == 30.0
        assert settings.reconnect_max_attempts == 3
        assert settings.credential_backend == "memory"
        assert settings.embedded_session_factory is None

    def test_environment_overrides(self, fresh_settings):
        env = {
            "KESHER_RECONNECT_BASE_DELAY": "5",
            "KESHER_CREDENTIAL_BACKEND": "Redis",
            "KESHER_GATEWAY_CLIENT_TOKEN": "CT",
            "KESHER_LOG_LEVEL": "debug",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = fresh_settings()

        assert settings.reconnect_base_delay == 5.0
        assert settings.credential_backend == "redis"
        assert settings.gateway_client_token.get_secret_value() == "CT"
        assert settings.log_level == "DEBUG"
        assert "CT" not in repr(settings)

    def test_cached(self, fresh_settings):
        assert fresh_settings() is fresh_settings()


class TestBuilders:
    def test_load_session_factory(self):
        assert load_session_factory("conftest:SessionFactory") is SessionFactory

    @pytest.mark.parametrize("path", ["no-colon", "conftest:", "conftest:missing_attr"])
    def test_load_session_factory_rejects(self, path):
        with pytest.raises(ValueError):
            load_session_factory(path)

    def test_backends(self):
        memory = AppSettings()
        remote = AppSettings(credential_backend="redis", metadata_backend="mongodb")

        assert isinstance(build_credential_store(memory), InMemoryCredentialStore)
        assert isinstance(build_metadata_store(memory), InMemoryMetadataStore)
        assert isinstance(build_credential_store(remote), RedisCredentialStore)
        assert isinstance(build_metadata_store(remote), MongoMetadataStore)

    def test_embedded_family_needs_session_factory(self):
        assert build_families(AppSettings()).families == ["gateway"]
        assert build_families(AppSettings(), SessionFactory()).families == ["embedded", "gateway"]

    def test_embedded_family_from_settings(self):
        settings = AppSettings(embedded_session_factory="conftest:SessionFactory")

        assert "embedded" in build_families(settings).families

    def test_build_registry_uses_settings(self):
        settings = AppSettings(reconnect_base_delay=7.0, log_ring_capacity=3)

        registry = build_registry(settings, session_factory=SessionFactory())

        assert registry._policy.base == 7.0
        assert registry.dispatcher.log_ring.capacity == 3
        assert registry.families.has("embedded")


class TestLifespan:
    def test_loads_and_shuts_down_registry(self):
        registry = MagicMock(spec=InstanceRegistry)
        registry.load_existing.return_value = OperationResult.ok(loaded=2)

        app = create_app(AppSettings(), registry=registry)
        with TestClient(app) as client:
            assert client.get("/").status_code == 200
            assert app.state.registry is registry

        registry.load_existing.assert_awaited_once()
        registry.shutdown.assert_awaited_once()

    def test_health_before_startup(self):
        app = create_app(AppSettings())
        client = TestClient(app)

        assert client.get("/health").json() == {"status": "starting"}
