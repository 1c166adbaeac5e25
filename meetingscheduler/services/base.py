"""
Shared delegation from domain services to a storage adapter.
"""

from typing import Any, Callable, Generic, List, Mapping, Sequence, Tuple, Type

from pydantic import ValidationError

from ..domain.exceptions import ValidationFailedError
from ..storage.base import BaseStorageAdapter, QueryOptions, RecordT, StorageEventListener


def validation_messages(exc: ValidationError) -> List[str]:
    """Flatten pydantic errors into readable messages."""
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        message = error.get("msg", "Invalid value").removeprefix("Value error, ")
        messages.append(f"{location}: {message}" if location else message)
    return messages


class RecordService(Generic[RecordT]):
    """Exposes the generic adapter contract; subclasses add domain queries."""

    model: Type[RecordT]

    def __init__(self, adapter: BaseStorageAdapter[RecordT]) -> None:
        self._adapter = adapter

    @property
    def adapter(self) -> BaseStorageAdapter[RecordT]:
        return self._adapter

    @property
    def backend(self) -> str:
        return self._adapter.backend

    def _to_record(self, data: RecordT | Mapping[str, Any]) -> RecordT:
        if isinstance(data, self.model):
            return data
        try:
            return self.model.model_validate(dict(data))
        except ValidationError as exc:
            raise ValidationFailedError(validation_messages(exc)) from exc

    async def create(self, data: RecordT | Mapping[str, Any]) -> RecordT:
        return await self._adapter.create(self._to_record(data))

    async def get_by_id(self, record_id: str) -> RecordT | None:
        return await self._adapter.get_by_id(record_id)

    async def get_all(self, query: QueryOptions | None = None) -> List[RecordT]:
        return await self._adapter.get_all(query)

    async def update(self, record_id: str, changes: Mapping[str, Any]) -> RecordT | None:
        return await self._adapter.update(record_id, changes)

    async def delete(self, record_id: str) -> bool:
        return await self._adapter.delete(record_id)

    async def create_many(self, items: Sequence[RecordT | Mapping[str, Any]]) -> List[RecordT]:
        return await self._adapter.create_many([self._to_record(item) for item in items])

    async def update_many(
        self, updates: Sequence[Tuple[str, Mapping[str, Any]]]
    ) -> List[RecordT]:
        return await self._adapter.update_many(updates)

    async def delete_many(self, ids: Sequence[str]) -> bool:
        return await self._adapter.delete_many(ids)

    async def find(self, query: QueryOptions) -> List[RecordT]:
        return await self._adapter.find(query)

    async def count(self, query: QueryOptions | None = None) -> int:
        return await self._adapter.count(query)

    async def exists(self, record_id: str) -> bool:
        return await self._adapter.exists(record_id)

    async def clear(self) -> None:
        await self._adapter.clear()

    async def backup(self) -> List[RecordT]:
        return await self._adapter.backup()

    async def restore(self, items: Sequence[RecordT | Mapping[str, Any]]) -> None:
        await self._adapter.restore([self._to_record(item) for item in items])

    def subscribe(self, listener: StorageEventListener) -> Callable[[], None]:
        """Listen to mutations of this service's collection."""
        return self._adapter.subscribe(self._adapter.collection, listener)
