"""
Kesher configuration: settings and persisted instance metadata.
"""

from .schemas import AppSettings, GatewaySettings, InstanceRecord
from .service import InMemoryMetadataStore, MetadataStore, MetadataStoreError, MongoMetadataStore

__all__ = [
    "AppSettings",
    "GatewaySettings",
    "InMemoryMetadataStore",
    "InstanceRecord",
    "MetadataStore",
    "MetadataStoreError",
    "MongoMetadataStore",
]
