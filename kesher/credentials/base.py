"""
Credential Store Protocol for Kesher.

Durable key-value storage for protocol session material, namespaced per
instance. Only the embedded transport family uses it.

Guarantees:
    - Each key is written independently; a failed write never touches
      another key.
    - delete_namespace() removes a whole namespace in one step, so a
      half-cleared session is never observable.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol, runtime_checkable

from ..errors import CredentialStoreError

logger = logging.getLogger(__name__)


@runtime_checkable
class CredentialStore(Protocol):
    """
    Protocol for credential storage backends.

    Implementations:
    - InMemoryCredentialStore (tests, single process)
    - RedisCredentialStore (production)
    """

    async def get(self, namespace: str, key: str) -> Any | None:
        """Return the stored blob, or None if absent."""
        ...

    async def set(self, namespace: str, key: str, value: Any) -> None:
        """Store a JSON-serializable blob."""
        ...

    async def keys(self, namespace: str) -> list[str]:
        """List keys present in a namespace."""
        ...

    async def delete_namespace(self, namespace: str) -> int:
        """Remove every key in a namespace. Returns the number removed."""
        ...


class InMemoryCredentialStore:
    """
    In-memory credential store.

    Values are kept JSON-encoded so callers never share mutable state
    with the store.
    """

    def __init__(self) -> None:
        self._namespaces: dict[str, dict[str, str]] = {}

    async def get(self, namespace: str, key: str) -> Any | None:
        raw = self._namespaces.get(namespace, {}).get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, namespace: str, key: str, value: Any) -> None:
        try:
            encoded = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise CredentialStoreError(f"Unserializable value for key {key}: {e}", namespace) from e
        self._namespaces.setdefault(namespace, {})[key] = encoded

    async def keys(self, namespace: str) -> list[str]:
        return list(self._namespaces.get(namespace, {}).keys())

    async def delete_namespace(self, namespace: str) -> int:
        removed = self._namespaces.pop(namespace, {})
        return len(removed)

    @property
    def namespace_count(self) -> int:
        return len(self._namespaces)


class NamespacedCredentials:
    """
    One instance's view of the credential store.

    This is the opaque credential handle an Instance owns. Its repr
    never includes stored material.
    """

    def __init__(self, store: CredentialStore, namespace: str):
        self._store = store
        self._namespace = namespace

    @property
    def namespace(self) -> str:
        return self._namespace

    async def get(self, key: str) -> Any | None:
        return await self._store.get(self._namespace, key)

    async def set(self, key: str, value: Any) -> None:
        await self._store.set(self._namespace, key, value)

    async def keys(self) -> list[str]:
        return await self._store.keys(self._namespace)

    async def wipe(self) -> int:
        removed = await self._store.delete_namespace(self._namespace)
        logger.info(f"[credentials] Wiped namespace {self._namespace} ({removed} keys)")
        return removed

    def __repr__(self) -> str:
        return f"NamespacedCredentials(namespace='{self._namespace}')"


def session_namespace(instance_id: str) -> str:
    """Namespace used for an instance's session material."""
    return f"whatsapp-session-{instance_id}"
