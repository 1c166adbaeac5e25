"""
Cloud document storage adapter backed by the Google Firestore REST API.
"""

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type
from urllib.parse import quote

import requests

from ..config import CloudDocumentOptions
from ..domain.exceptions import (
    InvalidStorageConfigError,
    RecordConflictError,
    StorageConnectionError,
    StorageError,
)
from .base import BaseStorageAdapter, QueryOptions, RecordT, StorageEvent

logger = logging.getLogger(__name__)

PAGE_SIZE = 300


def encode_value(value: Any) -> Dict[str, Any]:
    """Encode a JSON value as a Firestore typed value."""
    if value is None:
        return {"nullValue": None}
    # bool is a subclass of int
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, (list, tuple)):
        values = [encode_value(item) for item in value]
        return {"arrayValue": {"values": values} if values else {}}
    if isinstance(value, Mapping):
        return {"mapValue": {"fields": encode_fields(value)}}
    raise TypeError(f"Cannot encode value of type {type(value).__name__}")


def decode_value(value: Mapping[str, Any]) -> Any:
    """Decode a Firestore typed value back into plain JSON."""
    if "nullValue" in value:
        return None
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "stringValue" in value:
        return value["stringValue"]
    if "timestampValue" in value:
        return value["timestampValue"]
    if "arrayValue" in value:
        return [decode_value(item) for item in value["arrayValue"].get("values", [])]
    if "mapValue" in value:
        return decode_fields(value["mapValue"].get("fields", {}))
    raise ValueError(f"Unsupported Firestore value: {sorted(value)}")


def encode_fields(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: encode_value(item) for key, item in data.items()}


def decode_fields(fields: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: decode_value(item) for key, item in fields.items()}


class CloudDocumentStorageAdapter(BaseStorageAdapter[RecordT]):
    """
    Stores each record as a Firestore document named by the record id.

    The ``id`` attribute is carried in the document name, not in its
    fields. Blocking HTTP calls run in a worker thread.
    """

    backend = "cloud-document"

    def __init__(
        self,
        collection: str,
        model: Type[RecordT],
        options: CloudDocumentOptions,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(collection, model)
        missing = options.missing_settings()
        if missing:
            raise InvalidStorageConfigError(
                self.backend, f"Cloud document storage requires: {', '.join(missing)}"
            )
        self.options = options
        self.session = session or requests.Session()
        self._known: Optional[Dict[str, Dict[str, Any]]] = None

    @property
    def collection_url(self) -> str:
        base = self.options.base_url.rstrip("/")
        return (
            f"{base}/projects/{self.options.project_id}/databases/{self.options.database}"
            f"/documents/{self.collection}"
        )

    def _document_url(self, record_id: str) -> str:
        return f"{self.collection_url}/{quote(record_id, safe='')}"

    def _request(
        self,
        method: str,
        url: str,
        operation: str,
        params: Optional[List[Tuple[str, str]]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> requests.Response:
        query = list(params or [])
        headers = {"Content-Type": "application/json"}
        if self.options.access_token:
            headers["Authorization"] = f"Bearer {self.options.access_token}"
        elif self.options.api_key:
            query.append(("key", self.options.api_key))

        try:
            return self.session.request(
                method,
                url,
                params=query,
                json=json_body,
                headers=headers,
                timeout=self.options.timeout,
            )
        except requests.exceptions.RequestException as exc:
            raise StorageConnectionError(self.backend, str(exc), operation) from exc

    async def _call(self, method: str, url: str, operation: str, **kwargs: Any) -> requests.Response:
        return await asyncio.to_thread(self._request, method, url, operation, **kwargs)

    def _raise_for_status(self, response: requests.Response, operation: str) -> None:
        if response.ok:
            return
        raise StorageError(
            f"Firestore {operation} failed with HTTP {response.status_code}: {response.text[:200]}",
            f"HTTP_{response.status_code}",
            self.backend,
            operation,
        )

    def _to_fields(self, record: RecordT) -> Dict[str, Any]:
        document = record.to_document()
        document.pop("id", None)
        return encode_fields(document)

    def _from_document(self, document: Mapping[str, Any]) -> RecordT:
        data = decode_fields(document.get("fields", {}))
        data["id"] = document["name"].rsplit("/", 1)[-1]
        return self.model.model_validate(data)

    async def create(self, data: RecordT | Mapping[str, Any]) -> RecordT:
        with self._timed("create"):
            record = self._coerce(data, "create")
            response = await self._call(
                "POST",
                self.collection_url,
                "create",
                params=[("documentId", record.id)],
                json_body={"fields": self._to_fields(record)},
            )
            if response.status_code == 409:
                raise RecordConflictError(self.backend, self.collection, record.id)
            self._raise_for_status(response, "create")
            created = self._from_document(response.json())

        self._remember(created)
        self._emit_event("created", created.id, created)
        return created

    async def get_by_id(self, record_id: str) -> RecordT | None:
        with self._timed("get_by_id"):
            self._validate_id(record_id, "get_by_id")
            response = await self._call("GET", self._document_url(record_id), "get_by_id")
            if response.status_code == 404:
                return None
            self._raise_for_status(response, "get_by_id")
            return self._from_document(response.json())

    async def get_all(self, query: QueryOptions | None = None) -> List[RecordT]:
        with self._timed("get_all"):
            documents = await self._list_documents("get_all")
            records = [self._from_document(document) for document in documents]
            return self.apply_query(records, query)

    async def _list_documents(self, operation: str) -> List[Dict[str, Any]]:
        documents: List[Dict[str, Any]] = []
        page_token: Optional[str] = None

        while True:
            params = [("pageSize", str(PAGE_SIZE))]
            if page_token:
                params.append(("pageToken", page_token))
            response = await self._call("GET", self.collection_url, operation, params=params)
            # a collection that was never written lists as 404 on some emulators
            if response.status_code == 404:
                return documents
            self._raise_for_status(response, operation)

            payload = response.json()
            documents.extend(payload.get("documents", []))
            page_token = payload.get("nextPageToken")
            if not page_token:
                return documents

    async def update(self, record_id: str, changes: Mapping[str, Any]) -> RecordT | None:
        with self._timed("update"):
            self._validate_id(record_id, "update")
            existing = await self.get_by_id(record_id)
            if existing is None:
                return None

            merged = self._merge(existing, changes, "update")
            response = await self._call(
                "PATCH",
                self._document_url(record_id),
                "update",
                params=[("currentDocument.exists", "true")],
                json_body={"fields": self._to_fields(merged)},
            )
            # deleted between read and write
            if response.status_code == 404:
                return None
            self._raise_for_status(response, "update")
            updated = self._from_document(response.json())

        self._remember(updated)
        self._emit_event("updated", record_id, updated)
        return updated

    async def delete(self, record_id: str) -> bool:
        with self._timed("delete"):
            self._validate_id(record_id, "delete")
            response = await self._call(
                "DELETE",
                self._document_url(record_id),
                "delete",
                params=[("currentDocument.exists", "true")],
            )
            if response.status_code == 404:
                return False
            self._raise_for_status(response, "delete")

        self._forget(record_id)
        self._emit_event("deleted", record_id)
        return True

    async def clear(self) -> None:
        removed: List[str] = []
        with self._timed("clear"):
            for document in await self._list_documents("clear"):
                record_id = document["name"].rsplit("/", 1)[-1]
                response = await self._call("DELETE", self._document_url(record_id), "clear")
                if response.status_code != 404:
                    self._raise_for_status(response, "clear")
                self._forget(record_id)
                removed.append(record_id)

        for record_id in removed:
            self._emit_event("deleted", record_id)

    # Change feed

    async def poll_changes(self) -> List[StorageEvent]:
        """
        Diff the remote collection against the last poll and emit events.

        The first call only records a baseline and returns no events.
        Writes made through this adapter update the baseline directly.
        """
        documents = await self._list_documents("poll_changes")
        current = {
            document["name"].rsplit("/", 1)[-1]: document.get("fields", {})
            for document in documents
        }

        if self._known is None:
            self._known = current
            return []

        events: List[StorageEvent] = []
        for record_id, fields in current.items():
            previous = self._known.get(record_id)
            if previous == fields:
                continue
            record = self._from_document({"name": record_id, "fields": fields})
            event_type = "created" if previous is None else "updated"
            events.append(
                StorageEvent(type=event_type, collection=self.collection, id=record_id, data=record)
            )
        for record_id in self._known.keys() - current.keys():
            events.append(StorageEvent(type="deleted", collection=self.collection, id=record_id))

        self._known = current
        for event in events:
            self.emit(event)
        return events

    def _remember(self, record: RecordT) -> None:
        if self._known is not None:
            self._known[record.id] = self._to_fields(record)

    def _forget(self, record_id: str) -> None:
        if self._known is not None:
            self._known.pop(record_id, None)

    async def is_connected(self) -> bool:
        """Issue a single-document listing to test connectivity."""
        try:
            response = await self._call(
                "GET", self.collection_url, "is_connected", params=[("pageSize", "1")]
            )
        except StorageConnectionError as exc:
            logger.warning("Firestore not reachable: %s", exc)
            return False
        return response.ok or response.status_code == 404
