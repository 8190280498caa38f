"""
Transport Family Registry for Kesher.

Maps a backend family name ("embedded", "gateway") to the factory that
builds one adapter per instance. Families are registered at application
startup; the instance registry looks them up when an instance is created
or restored.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..config.schemas import InstanceRecord
    from ..credentials import NamespacedCredentials
    from .protocol import TransportAdapter

logger = logging.getLogger(__name__)

TransportFactory = Callable[[str, "InstanceRecord", "NamespacedCredentials"], "TransportAdapter"]


class FamilyNotFoundError(Exception):
    """
    Raised when no factory is registered for a backend family.

    This typically indicates a configuration error: an instance record
    names a family the running process was not started with.
    """


class TransportFamilyRegistry:
    """
    Registry of transport family factories.

    Example:
        families = TransportFamilyRegistry()
        families.register("embedded", create_embedded_factory(MySession))
        families.register("gateway", create_gateway_factory(settings))

        adapter = families.create("gateway", "sales", record, credentials)
    """

    def __init__(self) -> None:
        self._factories: dict[str, TransportFactory] = {}

    def register(self, family: str, factory: TransportFactory) -> None:
        """
        Register a family factory.

        Note:
            Registering an existing family replaces its factory
            (useful for testing).
        """
        if family in self._factories:
            logger.warning(f"Replacing existing transport family: {family}")
        self._factories[family] = factory
        logger.info(f"Registered transport family: {family}")

    def create(
        self,
        family: str,
        instance_id: str,
        record: InstanceRecord,
        credentials: NamespacedCredentials,
    ) -> TransportAdapter:
        """
        Build an adapter for one instance.

        Raises:
            FamilyNotFoundError: If the family is not registered
        """
        factory = self._factories.get(family)
        if factory is None:
            available = ", ".join(self._factories.keys()) or "(none)"
            raise FamilyNotFoundError(
                f"No transport family registered: {family}. Available: {available}"
            )
        return factory(instance_id, record, credentials)

    def has(self, family: str) -> bool:
        return family in self._factories

    @property
    def families(self) -> list[str]:
        return list(self._factories.keys())

    def unregister(self, family: str) -> bool:
        if family in self._factories:
            del self._factories[family]
            logger.info(f"Unregistered transport family: {family}")
            return True
        return False
