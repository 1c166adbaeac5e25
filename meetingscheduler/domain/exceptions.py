"""
Domain-specific exception hierarchy for the meeting scheduler.
"""

from typing import Iterable, List


class SchedulerError(Exception):
    """Base class for all application-level errors."""


class StorageError(SchedulerError):
    """Raised when a storage backend cannot complete an operation."""

    def __init__(self, message: str, code: str, backend: str, operation: str):
        super().__init__(message)
        self.code = code
        self.backend = backend
        self.operation = operation


class StorageConnectionError(StorageError):
    """Raised when a backend cannot be reached or initialized."""

    def __init__(self, backend: str, details: str | None = None, operation: str = "connect"):
        message = f"Failed to connect to {backend}"
        if details:
            message = f"{message}: {details}"
        super().__init__(message, "CONNECTION_ERROR", backend, operation)


class RecordConflictError(StorageError):
    """Raised when creating a record whose id already exists."""

    def __init__(self, backend: str, collection: str, record_id: str):
        super().__init__(
            f"Item with ID '{record_id}' already exists in '{collection}'",
            "CONFLICT",
            backend,
            "create",
        )
        self.collection = collection
        self.record_id = record_id


class InvalidRecordError(StorageError):
    """Raised when record data or an id is malformed."""

    def __init__(self, backend: str, operation: str, details: str):
        super().__init__(details, "VALIDATION_ERROR", backend, operation)


class StorageNotInitializedError(StorageError):
    """Raised when the storage factory is used before initialization."""

    def __init__(self, backend: str):
        super().__init__(
            "Storage factory not initialized. Call initialize() first.",
            "NOT_INITIALIZED",
            backend,
            "initialize",
        )


class InvalidStorageConfigError(StorageError):
    """Raised when a storage configuration misses backend-specific options."""

    def __init__(self, backend: str, details: str):
        super().__init__(details, "INVALID_CONFIG", backend, "validate")


class MigrationError(StorageError):
    """Raised when switching backends fails; the previous backend stays active."""

    def __init__(self, source: str, target: str, details: str):
        super().__init__(
            f"Migration from {source} to {target} failed: {details}",
            "MIGRATION_FAILED",
            target,
            "switch_backend",
        )
        self.source = source
        self.target = target


class ValidationFailedError(SchedulerError):
    """Raised with the full list of validation messages; nothing is applied."""

    def __init__(self, errors: Iterable[str]):
        self.errors: List[str] = list(errors)
        super().__init__("; ".join(self.errors))


class SchedulingConflictError(SchedulerError):
    """Raised when a booking or blocked range overlaps an existing one."""


class InvalidStatusTransitionError(SchedulerError):
    """Raised when a booking status change is not allowed."""

    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot change meeting status from '{current}' to '{requested}'")
        self.current = current
        self.requested = requested


class RecordNotFoundError(SchedulerError):
    """Raised when an operation requires a record that does not exist."""
