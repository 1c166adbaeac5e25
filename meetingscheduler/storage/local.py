"""
Durable storage adapter persisting each collection as one JSON array.
"""

import json
import logging
from typing import Any, Dict, List, Mapping, Sequence, Type

from ..domain.exceptions import RecordConflictError, StorageError
from .base import BaseStorageAdapter, QueryOptions, RecordT
from .kv import FileKeyValueStore, KeyValueStore

logger = logging.getLogger(__name__)

KEY_PREFIX = "meeting_scheduler_"


class DurableStorageAdapter(BaseStorageAdapter[RecordT]):
    """
    Read-modify-write adapter over a key-value store.

    Every operation loads the full collection and rewrites it, so cost is
    linear in the collection size.
    """

    backend = "durable"

    def __init__(self, collection: str, model: Type[RecordT], store: KeyValueStore):
        super().__init__(collection, model)
        self.store = store
        self.storage_key = f"{KEY_PREFIX}{collection}"

    def _read(self) -> List[RecordT]:
        try:
            raw = self.store.get_item(self.storage_key)
            if not raw:
                return []
            documents = json.loads(raw)
            return [self.model.model_validate(document) for document in documents]
        except (OSError, ValueError) as exc:
            raise StorageError(
                f"Failed to read '{self.storage_key}': {exc}", "READ_FAILED", self.backend, "read"
            ) from exc

    def _write(self, records: Sequence[RecordT]) -> None:
        payload = json.dumps([record.to_document() for record in records], ensure_ascii=False)
        try:
            self.store.set_item(self.storage_key, payload)
        except OSError as exc:
            raise StorageError(
                f"Write to '{self.storage_key}' failed: {exc}", "WRITE_FAILED", self.backend, "write"
            ) from exc

    async def create(self, data: RecordT | Mapping[str, Any]) -> RecordT:
        with self._timed("create"):
            record = self._coerce(data, "create")
            records = self._read()
            if any(existing.id == record.id for existing in records):
                raise RecordConflictError(self.backend, self.collection, record.id)

            records.append(record)
            self._write(records)

        self._emit_event("created", record.id, record)
        logger.debug("Created %s in %s", record.id, self.collection)
        return record

    async def get_by_id(self, record_id: str) -> RecordT | None:
        with self._timed("get_by_id"):
            self._validate_id(record_id, "get_by_id")
            return next((record for record in self._read() if record.id == record_id), None)

    async def get_all(self, query: QueryOptions | None = None) -> List[RecordT]:
        with self._timed("get_all"):
            return self.apply_query(self._read(), query)

    async def update(self, record_id: str, changes: Mapping[str, Any]) -> RecordT | None:
        with self._timed("update"):
            self._validate_id(record_id, "update")
            records = self._read()
            for index, existing in enumerate(records):
                if existing.id == record_id:
                    break
            else:
                logger.debug("Item %s not found for update", record_id)
                return None

            updated = self._merge(existing, changes, "update")
            records[index] = updated
            self._write(records)

        self._emit_event("updated", record_id, updated)
        return updated

    async def delete(self, record_id: str) -> bool:
        with self._timed("delete"):
            self._validate_id(record_id, "delete")
            records = self._read()
            remaining = [record for record in records if record.id != record_id]
            if len(remaining) == len(records):
                return False
            self._write(remaining)

        self._emit_event("deleted", record_id)
        return True

    async def clear(self) -> None:
        """Remove the collection; unreadable data is removed without events."""
        with self._timed("clear"):
            try:
                removed = [record.id for record in self._read()]
            except StorageError as exc:
                logger.warning("Clearing unreadable %s: %s", self.storage_key, exc)
                removed = []
            try:
                self.store.remove_item(self.storage_key)
            except OSError as exc:
                raise StorageError(
                    f"Failed to clear '{self.storage_key}': {exc}", "WRITE_FAILED", self.backend, "clear"
                ) from exc

        for record_id in removed:
            self._emit_event("deleted", record_id)

    async def create_many(self, items: Sequence[RecordT | Mapping[str, Any]]) -> List[RecordT]:
        """Insert all items with a single write; any duplicate aborts the batch."""
        if not items:
            return []

        with self._timed("create_many"):
            records = self._read()
            seen = {record.id for record in records}
            created: List[RecordT] = []
            for item in items:
                record = self._coerce(item, "create_many")
                if record.id in seen:
                    raise RecordConflictError(self.backend, self.collection, record.id)
                seen.add(record.id)
                created.append(record)

            self._write(records + created)

        for record in created:
            self._emit_event("created", record.id, record)
        return created

    async def delete_many(self, ids: Sequence[str]) -> bool:
        if not ids:
            return True

        with self._timed("delete_many"):
            for record_id in ids:
                self._validate_id(record_id, "delete_many")
            wanted = set(ids)
            records = self._read()
            remaining = [record for record in records if record.id not in wanted]
            deleted = [record.id for record in records if record.id in wanted]
            if deleted:
                self._write(remaining)

        for record_id in deleted:
            self._emit_event("deleted", record_id)
        return len(deleted) == len(wanted)

    # Durable-specific helpers

    def storage_size(self) -> int:
        """Size in bytes of the persisted collection."""
        if isinstance(self.store, FileKeyValueStore):
            return self.store.size_of(self.storage_key)
        raw = self.store.get_item(self.storage_key)
        return len(raw.encode("utf-8")) if raw else 0

    def storage_info(self) -> Dict[str, Any]:
        return {
            "key": self.storage_key,
            "size": self.storage_size(),
            "item_count": len(self._read()),
        }

    @staticmethod
    def is_available(store: FileKeyValueStore) -> bool:
        """Check whether the store's directory can be written."""
        try:
            store.probe()
        except OSError as exc:
            logger.warning("Durable storage at %s is not writable: %s", store.directory, exc)
            return False
        return True
