"""
Kesher credential storage.

Session material for the embedded transport family, namespaced per
instance.
"""

from .base import (
    CredentialStore,
    InMemoryCredentialStore,
    NamespacedCredentials,
    session_namespace,
)
from .redis import RedisCredentialStore

__all__ = [
    "CredentialStore",
    "InMemoryCredentialStore",
    "NamespacedCredentials",
    "RedisCredentialStore",
    "session_namespace",
]
