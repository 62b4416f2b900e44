"""Record store contract and a JSON-file implementation (fcntl.flock + atomic write)."""

import contextlib
import fcntl
import json
import os
import re
import tempfile
import uuid
from collections.abc import Iterator
from pathlib import Path
from typing import Any, Protocol

import structlog

from chemsnap.errors import ConflictError, DataStoreError, RecordNotFound

logger = structlog.get_logger()

_COLLECTION_RE = re.compile(r"^[a-z][a-z0-9_]*$")


class DataStore(Protocol):
    """Record CRUD used for profiles and every resource-scoped query."""

    async def get_record(self, collection: str, record_id: str) -> dict[str, Any]: ...

    async def query_records(
        self, collection: str, filter: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]: ...

    async def insert_record(self, collection: str, record: dict[str, Any]) -> dict[str, Any]: ...

    async def update_record(
        self,
        collection: str,
        record_id: str,
        patch: dict[str, Any],
        expected: dict[str, Any] | None = None,
    ) -> dict[str, Any]: ...

    async def delete_record(self, collection: str, record_id: str) -> None: ...


def _default(value: Any) -> Any:
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def _to_json(value: Any) -> Any:
    """Coerce a value to what it looks like after a trip through the JSON file."""
    return json.loads(json.dumps(value, default=_default))


def _matches(record: dict[str, Any], filter: dict[str, Any]) -> bool:
    return all(record.get(key) == _to_json(value) for key, value in filter.items())


class JsonFileDataStore:
    """Stores each collection as one JSON object keyed by record id.

    Reads take a shared ``flock`` on the collection file. Writes hold an
    exclusive lock on a sidecar ``.lock`` file for the whole
    read-modify-write and replace the collection file atomically.

    Args:
        data_dir: Directory holding ``<collection>.json`` files.
    """

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, collection: str) -> Path:
        if not _COLLECTION_RE.match(collection):
            raise DataStoreError(f"Invalid collection name: {collection!r}")
        return self.data_dir / f"{collection}.json"

    @contextlib.contextmanager
    def _io_errors(self, collection: str, op: str) -> Iterator[None]:
        try:
            yield
        except (OSError, ValueError) as exc:
            logger.error("data_store_io_error", collection=collection, op=op, error=str(exc))
            raise DataStoreError(f"Failed to {op} {collection}: {exc}") from exc

    def _read(self, collection: str) -> dict[str, dict[str, Any]]:
        path = self._path(collection)
        if not path.exists():
            return {}
        with self._io_errors(collection, "read"):
            with open(path, encoding="utf-8") as f:
                fcntl.flock(f, fcntl.LOCK_SH)
                data = json.load(f)
                fcntl.flock(f, fcntl.LOCK_UN)
        return data

    @contextlib.contextmanager
    def _write_lock(self, collection: str) -> Iterator[None]:
        lock_path = self.data_dir / f"{collection}.json.lock"
        with self._io_errors(collection, "lock"):
            lock_file = open(lock_path, "w")
        with lock_file:
            fcntl.flock(lock_file, fcntl.LOCK_EX)
            yield

    def _write(self, collection: str, data: dict[str, dict[str, Any]]) -> None:
        path = self._path(collection)
        with self._io_errors(collection, "write"):
            with tempfile.NamedTemporaryFile(
                "w", dir=self.data_dir, delete=False, suffix=".json", encoding="utf-8"
            ) as tmp:
                json.dump(data, tmp, indent=2, default=_default)
            os.replace(tmp.name, path)

    async def get_record(self, collection: str, record_id: str) -> dict[str, Any]:
        record = self._read(collection).get(record_id)
        if record is None:
            raise RecordNotFound(f"{collection}/{record_id} not found")
        return record

    async def query_records(
        self, collection: str, filter: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        records = list(self._read(collection).values())
        if not filter:
            return records
        return [r for r in records if _matches(r, filter)]

    async def insert_record(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        record = _to_json(record)
        record.setdefault("id", str(uuid.uuid4()))
        with self._write_lock(collection):
            data = self._read(collection)
            if record["id"] in data:
                raise ConflictError(f"{collection}/{record['id']} already exists")
            data[record["id"]] = record
            self._write(collection, data)
        return record

    async def update_record(
        self,
        collection: str,
        record_id: str,
        patch: dict[str, Any],
        expected: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Merge ``patch`` into a record.

        Args:
            expected: Field values the stored record must still hold; the
                update is refused with ``ConflictError`` otherwise.
        """
        with self._write_lock(collection):
            data = self._read(collection)
            record = data.get(record_id)
            if record is None:
                raise RecordNotFound(f"{collection}/{record_id} not found")
            if expected and not _matches(record, expected):
                raise ConflictError(f"{collection}/{record_id} changed concurrently")
            record.update(_to_json(patch))
            self._write(collection, data)
        return record

    async def delete_record(self, collection: str, record_id: str) -> None:
        with self._write_lock(collection):
            data = self._read(collection)
            if data.pop(record_id, None) is None:
                raise RecordNotFound(f"{collection}/{record_id} not found")
            self._write(collection, data)
