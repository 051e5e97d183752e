"""
Object store backends, scoped client and informer feed.
"""

from .backend import (
    KindRegistry, ListResult, ObjectStoreBackend, RawEventType, RawWatchEvent, ResourceKind,
    RULES, new_rule_registry
)
from .client import StoreClient
from .informer import EventKind, Informer, WatchEvent
from .memory import InMemoryObjectStore
from .kube import KubeConnection, KubeObjectStore, load_kube_connection

__all__ = [
    "KindRegistry", "ListResult", "ObjectStoreBackend", "RawEventType", "RawWatchEvent",
    "ResourceKind", "RULES", "new_rule_registry", "StoreClient", "EventKind", "Informer",
    "WatchEvent", "InMemoryObjectStore", "KubeConnection", "KubeObjectStore", "load_kube_connection",
]
