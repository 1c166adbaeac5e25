"""
Generic storage adapter contract shared by every backend.

Concrete adapters implement the primitive CRUD operations; batch, query,
backup and change-notification behaviour is provided here and may be
overridden where a backend can do better.
"""

from __future__ import annotations

import logging
import secrets
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    Iterator,
    List,
    Literal,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Type,
    TypeVar,
)

from pydantic import ValidationError

from ..domain.exceptions import InvalidRecordError, StorageError
from ..domain.models import Record

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=Record)

EventType = Literal["created", "updated", "deleted"]

SLOW_OPERATION_MS = 100.0


@dataclass(frozen=True)
class OrderBy:
    """Single-field sort specification."""
    field: str
    direction: Literal["asc", "desc"] = "asc"


@dataclass
class QueryOptions:
    """
    Filter, sort and paginate a collection.

    ``where`` maps a field to an exact value, or to a list/tuple/set of
    accepted values. Offset and limit apply after filtering and sorting.
    """
    where: Dict[str, Any] = field(default_factory=dict)
    order_by: Optional[OrderBy] = None
    limit: Optional[int] = None
    offset: Optional[int] = None


@dataclass(frozen=True)
class StorageEvent:
    """Notification emitted after every successful mutation."""
    type: EventType
    collection: str
    id: str
    data: Optional[Any] = None
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))


StorageEventListener = Callable[[StorageEvent], None]


class BaseStorageAdapter(ABC, Generic[RecordT]):
    """
    Base storage adapter with common functionality.

    Records are pydantic models; ``model`` is used to validate incoming data
    and to resolve camelCase field aliases in queries and partial updates.
    """

    backend: str = "base"

    def __init__(self, collection: str, model: Type[RecordT]):
        self.collection = collection
        self.model = model
        self._listeners: Dict[str, List[StorageEventListener]] = {}

    # Primitive operations every backend provides

    @abstractmethod
    async def create(self, data: RecordT | Mapping[str, Any]) -> RecordT:
        """Insert a record; a duplicate id raises RecordConflictError."""

    @abstractmethod
    async def get_by_id(self, record_id: str) -> RecordT | None:
        """Return the record or None."""

    @abstractmethod
    async def get_all(self, query: QueryOptions | None = None) -> List[RecordT]:
        """Return all records, optionally filtered through ``find`` semantics."""

    @abstractmethod
    async def update(self, record_id: str, changes: Mapping[str, Any]) -> RecordT | None:
        """Merge changes into a record; returns None when the id is unknown."""

    @abstractmethod
    async def delete(self, record_id: str) -> bool:
        """Remove a record; returns False when the id is unknown."""

    @abstractmethod
    async def clear(self) -> None:
        """Remove every record of the collection."""

    # Batch operations

    async def create_many(self, items: Sequence[RecordT | Mapping[str, Any]]) -> List[RecordT]:
        results: List[RecordT] = []
        for item in items:
            results.append(await self.create(item))
        return results

    async def update_many(
        self, updates: Sequence[Tuple[str, Mapping[str, Any]]]
    ) -> List[RecordT]:
        results: List[RecordT] = []
        for record_id, changes in updates:
            updated = await self.update(record_id, changes)
            if updated is not None:
                results.append(updated)
        return results

    async def delete_many(self, ids: Sequence[str]) -> bool:
        """Delete every id; True only when all of them existed."""
        all_deleted = True
        for record_id in ids:
            if not await self.delete(record_id):
                all_deleted = False
        return all_deleted

    # Query operations

    async def find(self, query: QueryOptions) -> List[RecordT]:
        return self.apply_query(await self.get_all(), query)

    async def count(self, query: QueryOptions | None = None) -> int:
        if query is None:
            return len(await self.get_all())
        return len(await self.find(query))

    async def exists(self, record_id: str) -> bool:
        return await self.get_by_id(record_id) is not None

    async def backup(self) -> List[RecordT]:
        return await self.get_all()

    async def restore(self, items: Sequence[RecordT | Mapping[str, Any]]) -> None:
        await self.clear()
        await self.create_many(items)

    # Change notification

    def subscribe(self, collection: str, listener: StorageEventListener) -> Callable[[], None]:
        """Register a listener; the returned callable unsubscribes it."""
        self._listeners.setdefault(collection, []).append(listener)
        return lambda: self.unsubscribe(collection, listener)

    def unsubscribe(self, collection: str, listener: StorageEventListener) -> None:
        listeners = self._listeners.get(collection)
        if not listeners:
            return
        if listener in listeners:
            listeners.remove(listener)
        if not listeners:
            del self._listeners[collection]

    def emit(self, event: StorageEvent) -> None:
        for listener in list(self._listeners.get(event.collection, [])):
            try:
                listener(event)
            except Exception:
                logger.exception("Error in storage event listener for %s", event.collection)

    def _emit_event(self, event_type: EventType, record_id: str, data: Any = None) -> None:
        self.emit(
            StorageEvent(type=event_type, collection=self.collection, id=record_id, data=data)
        )

    # Helpers for concrete implementations

    def apply_query(self, records: List[RecordT], query: QueryOptions | None) -> List[RecordT]:
        """Filter, sort and paginate already-loaded records."""
        if query is None:
            return list(records)

        results = list(records)

        if query.where:
            conditions = [
                (self._resolve_field(key, "find"), expected)
                for key, expected in query.where.items()
            ]
            results = [
                record for record in results
                if all(_matches(getattr(record, name), expected) for name, expected in conditions)
            ]

        if query.order_by:
            name = self._resolve_field(query.order_by.field, "find")
            results.sort(
                key=lambda record: _sort_key(getattr(record, name)),
                reverse=query.order_by.direction == "desc",
            )

        if query.offset:
            results = results[query.offset:]
        if query.limit is not None:
            results = results[:query.limit]

        return results

    def _generate_id(self) -> str:
        return f"{self.collection}_{int(time.time() * 1000)}_{secrets.token_hex(6)}"

    def _validate_id(self, record_id: str, operation: str) -> None:
        if not isinstance(record_id, str) or not record_id.strip():
            raise InvalidRecordError(
                self.backend, operation, "Invalid ID: must be a non-empty string"
            )

    def _coerce(self, data: RecordT | Mapping[str, Any], operation: str) -> RecordT:
        """Validate input into a record, generating an id when missing."""
        if isinstance(data, self.model):
            record = data
        elif isinstance(data, Mapping):
            try:
                record = self.model.model_validate(dict(data))
            except ValidationError as exc:
                raise InvalidRecordError(self.backend, operation, str(exc)) from exc
        else:
            raise InvalidRecordError(self.backend, operation, "Data must be a valid object")

        if not record.id:
            record = record.model_copy(update={"id": self._generate_id()})
        return record

    def _merge(self, existing: RecordT, changes: Mapping[str, Any], operation: str) -> RecordT:
        """Apply a partial update, revalidating the merged record."""
        if not isinstance(changes, Mapping):
            raise InvalidRecordError(self.backend, operation, "Invalid data: must be a valid object")

        merged = existing.model_dump()
        for key, value in changes.items():
            name = self._resolve_field(key, operation)
            if name == "id":
                raise InvalidRecordError(self.backend, operation, "Cannot update ID field")
            merged[name] = value.model_dump() if isinstance(value, Record) else value

        try:
            return self.model.model_validate(merged)
        except ValidationError as exc:
            raise InvalidRecordError(self.backend, operation, str(exc)) from exc

    def _resolve_field(self, key: str, operation: str) -> str:
        try:
            return self.model.field_name(key)
        except KeyError:
            raise InvalidRecordError(
                self.backend, operation, f"Unknown field '{key}' for {self.collection}"
            ) from None

    @contextmanager
    def _timed(self, operation: str) -> Iterator[None]:
        """Log slow and failed operations with backend and collection."""
        start = time.perf_counter()
        try:
            yield
        except StorageError as exc:
            elapsed = (time.perf_counter() - start) * 1000
            logger.error(
                "Failed %s operation %s on %s after %.2fms: %s",
                self.backend, operation, self.collection, elapsed, exc,
            )
            raise
        elapsed = (time.perf_counter() - start) * 1000
        if elapsed > SLOW_OPERATION_MS:
            logger.warning(
                "Slow %s operation: %s on %s took %.2fms",
                self.backend, operation, self.collection, elapsed,
            )
        else:
            logger.debug("[%s:%s] %s took %.2fms", self.backend, self.collection, operation, elapsed)


def _matches(value: Any, expected: Any) -> bool:
    if isinstance(expected, (list, tuple, set, frozenset)):
        return value in expected
    return value == expected


def _sort_key(value: Any) -> Tuple[bool, Any]:
    # None sorts before any concrete value
    return (value is not None, value if value is not None else 0)
