"""
String key-value stores backing the durable and in-memory adapters.
"""

import logging
import re
from pathlib import Path
from typing import Dict, Iterator, Optional, Protocol

logger = logging.getLogger(__name__)

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


class KeyValueStore(Protocol):
    """Minimal string store interface (browser-storage shaped)."""

    def get_item(self, key: str) -> Optional[str]:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...

    def remove_item(self, key: str) -> None:
        ...

    def keys(self) -> Iterator[str]:
        ...


class FileKeyValueStore:
    """
    Directory of ``<key>.json`` files.

    Writes replace the whole file in place; a crash mid-write can leave a
    truncated file behind.
    """

    SUFFIX = ".json"

    def __init__(self, directory: Path | str):
        self.directory = Path(directory).expanduser()

    def _path(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.directory / f"{key}{self.SUFFIX}"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set_item(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self._path(key).write_text(value, encoding="utf-8")

    def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def keys(self) -> Iterator[str]:
        if not self.directory.exists():
            return iter(())
        return (path.stem for path in sorted(self.directory.glob(f"*{self.SUFFIX}")))

    def size_of(self, key: str) -> int:
        """Size of the stored value in bytes, 0 when absent."""
        path = self._path(key)
        return path.stat().st_size if path.exists() else 0

    def probe(self) -> None:
        """Write and remove a marker key; raises OSError when not writable."""
        marker = "__storage_test__"
        self.set_item(marker, "test")
        self.remove_item(marker)


class SessionKeyValueStore:
    """Process-scoped store; contents vanish when the process exits."""

    def __init__(self) -> None:
        self._items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> Iterator[str]:
        return iter(list(self._items))

    def clear(self) -> None:
        self._items.clear()
