"""
In-memory storage adapter for tests and development.
"""

import json
import logging
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Type

from ..domain.exceptions import RecordConflictError
from .base import BaseStorageAdapter, QueryOptions, RecordT
from .kv import KeyValueStore, SessionKeyValueStore

logger = logging.getLogger(__name__)

SESSION_PREFIX = "memory_storage_"


class MemoryStorageAdapter(BaseStorageAdapter[RecordT]):
    """
    Dict-backed adapter.

    With ``persistent=True`` every write is mirrored into a session store
    and the collection is reloaded from it on construction.
    """

    backend = "memory"

    def __init__(
        self,
        collection: str,
        model: Type[RecordT],
        persistent: bool = False,
        session_store: Optional[KeyValueStore] = None,
    ):
        super().__init__(collection, model)
        self.persistent = persistent
        self.session_store = session_store if session_store is not None else SessionKeyValueStore()
        self.session_key = f"{SESSION_PREFIX}{collection}"
        self._data: Dict[str, RecordT] = {}

        if self.persistent:
            self._load_from_session()

    @classmethod
    def temporary(cls, collection: str, model: Type[RecordT]) -> "MemoryStorageAdapter[RecordT]":
        return cls(collection, model, persistent=False)

    @classmethod
    def persistent_in(
        cls, collection: str, model: Type[RecordT], session_store: KeyValueStore
    ) -> "MemoryStorageAdapter[RecordT]":
        return cls(collection, model, persistent=True, session_store=session_store)

    def _load_from_session(self) -> None:
        raw = self.session_store.get_item(self.session_key)
        if not raw:
            return
        try:
            for document in json.loads(raw):
                record = self.model.model_validate(document)
                self._data[record.id] = record
        except ValueError as exc:
            logger.error("Failed to load %s from session store: %s", self.session_key, exc)

    def _save_to_session(self) -> None:
        if not self.persistent:
            return
        payload = json.dumps([record.to_document() for record in self._data.values()])
        self.session_store.set_item(self.session_key, payload)

    def _copy(self, record: RecordT) -> RecordT:
        return record.model_copy(deep=True)

    async def create(self, data: RecordT | Mapping[str, Any]) -> RecordT:
        with self._timed("create"):
            record = self._coerce(data, "create")
            if record.id in self._data:
                raise RecordConflictError(self.backend, self.collection, record.id)

            self._data[record.id] = self._copy(record)
            self._save_to_session()

        self._emit_event("created", record.id, record)
        return self._copy(record)

    async def get_by_id(self, record_id: str) -> RecordT | None:
        self._validate_id(record_id, "get_by_id")
        record = self._data.get(record_id)
        return self._copy(record) if record is not None else None

    async def get_all(self, query: QueryOptions | None = None) -> List[RecordT]:
        records = [self._copy(record) for record in self._data.values()]
        return self.apply_query(records, query)

    async def update(self, record_id: str, changes: Mapping[str, Any]) -> RecordT | None:
        with self._timed("update"):
            self._validate_id(record_id, "update")
            existing = self._data.get(record_id)
            if existing is None:
                logger.debug("Item %s not found for update", record_id)
                return None

            updated = self._merge(existing, changes, "update")
            self._data[record_id] = updated
            self._save_to_session()

        self._emit_event("updated", record_id, updated)
        return self._copy(updated)

    async def delete(self, record_id: str) -> bool:
        self._validate_id(record_id, "delete")
        if self._data.pop(record_id, None) is None:
            return False

        self._save_to_session()
        self._emit_event("deleted", record_id)
        return True

    async def clear(self) -> None:
        removed = list(self._data)
        self._data.clear()
        self._save_to_session()
        for record_id in removed:
            self._emit_event("deleted", record_id)

    async def exists(self, record_id: str) -> bool:
        self._validate_id(record_id, "exists")
        return record_id in self._data

    async def create_many(self, items: Sequence[RecordT | Mapping[str, Any]]) -> List[RecordT]:
        """Insert all items or none of them."""
        if not items:
            return []

        created: Dict[str, RecordT] = {}
        for item in items:
            record = self._coerce(item, "create_many")
            if record.id in self._data or record.id in created:
                raise RecordConflictError(self.backend, self.collection, record.id)
            created[record.id] = self._copy(record)

        self._data.update(created)
        self._save_to_session()
        for record in created.values():
            self._emit_event("created", record.id, record)
        return [self._copy(record) for record in created.values()]

    # Memory-specific helpers

    def snapshot(self) -> List[RecordT]:
        return [self._copy(record) for record in self._data.values()]

    def load_snapshot(self, items: Sequence[RecordT]) -> None:
        """Replace the collection without emitting events."""
        self._data = {record.id: self._copy(record) for record in items}
        self._save_to_session()
        logger.debug("Loaded snapshot of %d items into %s", len(items), self.collection)

    def size(self) -> int:
        return len(self._data)

    def keys(self) -> Iterator[str]:
        yield from list(self._data)

    def values(self) -> Iterator[RecordT]:
        for record in list(self._data.values()):
            yield self._copy(record)

    def entries(self) -> Iterator[Tuple[str, RecordT]]:
        for record_id, record in list(self._data.items()):
            yield record_id, self._copy(record)

    def memory_usage(self) -> Dict[str, int]:
        """Rough footprint estimate based on the serialized documents."""
        serialized = json.dumps([record.to_document() for record in self._data.values()])
        return {
            "item_count": len(self._data),
            "estimated_size": len(serialized.encode("utf-8")),
        }
