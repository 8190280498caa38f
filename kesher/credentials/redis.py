"""
Redis-backed credential store.

Storage Format:
    - Key: f"{key_prefix}:{namespace}" (one Redis hash per namespace)
    - Field: credential key (e.g. "creds", "pre-key-12")
    - Value: JSON-encoded blob

Per-key writes are single HSET calls, so a crash mid-update leaves other
fields untouched. Wiping a namespace is a single DEL on the hash.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from ..errors import CredentialStoreError

logger = logging.getLogger(__name__)


class RedisCredentialStore:
    """
    Redis credential store.

    Example:
        store = RedisCredentialStore(redis_url="redis://localhost:6379")
        await store.set("whatsapp-session-sales", "creds", {...})
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        key_prefix: str = "kesher:credentials",
        client: Any = None,
    ) -> None:
        """
        Initialize Redis credential store.

        Args:
            redis_url: Redis connection URL
            key_prefix: Prefix for all hash keys
            client: Pre-built redis.asyncio client (optional)
        """
        self._redis_url = redis_url
        self._key_prefix = key_prefix
        self._client: Any = client

    async def _get_client(self) -> Any:
        """Get or create Redis client."""
        if self._client is None:
            try:
                import redis.asyncio as aioredis

                self._client = aioredis.from_url(
                    self._redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                )
            except ImportError:
                raise ImportError(
                    "redis package required for RedisCredentialStore. "
                    "Install with: pip install redis"
                )
        return self._client

    def _key(self, namespace: str) -> str:
        return f"{self._key_prefix}:{namespace}"

    async def get(self, namespace: str, key: str) -> Any | None:
        client = await self._get_client()
        try:
            raw = await client.hget(self._key(namespace), key)
        except Exception as e:
            raise CredentialStoreError(f"Read failed for {key}: {e}", namespace) from e

        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"[credentials:redis] Unreadable blob {namespace}/{key}, ignoring")
            return None

    async def set(self, namespace: str, key: str, value: Any) -> None:
        client = await self._get_client()
        try:
            await client.hset(self._key(namespace), key, json.dumps(value))
        except Exception as e:
            raise CredentialStoreError(f"Write failed for {key}: {e}", namespace) from e

    async def keys(self, namespace: str) -> list[str]:
        client = await self._get_client()
        try:
            return list(await client.hkeys(self._key(namespace)))
        except Exception as e:
            raise CredentialStoreError(f"Key listing failed: {e}", namespace) from e

    async def delete_namespace(self, namespace: str) -> int:
        client = await self._get_client()
        key = self._key(namespace)
        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.hlen(key)
                pipe.delete(key)
                count, _ = await pipe.execute()
        except Exception as e:
            raise CredentialStoreError(f"Namespace wipe failed: {e}", namespace) from e
        return int(count)

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
