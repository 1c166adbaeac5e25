"""
Storage adapters and the contract they share.

The factory, fallback and gateway modules are imported directly
(``meetingscheduler.storage.factory``) since they depend on the services.
"""

from .base import BaseStorageAdapter, OrderBy, QueryOptions, StorageEvent
from .cloud import CloudDocumentStorageAdapter
from .kv import FileKeyValueStore, SessionKeyValueStore
from .local import DurableStorageAdapter
from .memory import MemoryStorageAdapter

__all__ = [
    "BaseStorageAdapter",
    "CloudDocumentStorageAdapter",
    "DurableStorageAdapter",
    "FileKeyValueStore",
    "MemoryStorageAdapter",
    "OrderBy",
    "QueryOptions",
    "SessionKeyValueStore",
    "StorageEvent",
]
