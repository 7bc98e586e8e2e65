"""
File-backed store implementations.

Documents and blobs are stored as files under a root directory. Writes go to
a temporary file first and are moved into place, so a crash mid-write never
leaves a truncated file behind.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import re
from pathlib import Path
from typing import Any

from ai_resilience.errors import StoreError
from ai_resilience.stores.base import BlobStore, DocumentStore, merge_fields

_SAFE_SEGMENT = re.compile(r"^[A-Za-z0-9_.@:-]+$")


def _segment(name: str) -> str:
    """Make a path segment safe for the filesystem."""
    if _SAFE_SEGMENT.match(name) and name not in (".", ".."):
        return name
    return "h_" + hashlib.sha256(name.encode()).hexdigest()[:32]


def _atomic_write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(content, encoding="utf-8")
    tmp.replace(path)


class FileDocumentStore(DocumentStore):
    """Document store keeping one JSON file per document.

    Example:
        >>> store = FileDocumentStore("/var/lib/app/documents")
        >>> await store.set("ab_tests/test_1", {"active": True})
    """

    def __init__(self, path: str | Path) -> None:
        self._root = Path(path)
        self._root.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    def _doc_path(self, path: str) -> Path:
        parts = [_segment(p) for p in path.strip("/").split("/") if p]
        if not parts:
            raise StoreError("Empty document path", store="file_document")
        return self._root.joinpath(*parts[:-1], parts[-1] + ".json")

    def _read(self, file: Path) -> dict[str, Any] | None:
        if not file.exists():
            return None
        try:
            data = json.loads(file.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            raise StoreError(
                f"Failed to read document {file.name}", store="file_document", cause=e
            ) from e
        return data.get("data")

    async def get(self, path: str) -> dict[str, Any] | None:
        async with self._lock:
            return self._read(self._doc_path(path))

    async def set(
        self, path: str, data: dict[str, Any], merge: bool = False
    ) -> None:
        file = self._doc_path(path)
        async with self._lock:
            doc = data
            if merge:
                existing = self._read(file)
                if existing is not None:
                    doc = merge_fields(existing, data)
            try:
                _atomic_write(
                    file, json.dumps({"path": path, "data": doc}, default=str)
                )
            except OSError as e:
                raise StoreError(
                    f"Failed to write document {path}", store="file_document", cause=e
                ) from e

    async def delete(self, path: str) -> bool:
        file = self._doc_path(path)
        async with self._lock:
            if file.exists():
                file.unlink(missing_ok=True)
                return True
            return False

    async def list(self, collection: str) -> list[tuple[str, dict[str, Any]]]:
        parts = [_segment(p) for p in collection.strip("/").split("/") if p]
        directory = self._root.joinpath(*parts)
        results: list[tuple[str, dict[str, Any]]] = []
        async with self._lock:
            if not directory.is_dir():
                return results
            for file in sorted(directory.glob("*.json")):
                try:
                    raw = json.loads(file.read_text(encoding="utf-8"))
                except (json.JSONDecodeError, OSError):
                    continue
                results.append((raw.get("path", ""), raw.get("data", {})))
        return results


class FileBlobStore(BlobStore):
    """Blob store writing each key to its own file."""

    def __init__(self, path: str | Path) -> None:
        self._root = Path(path)
        self._root.mkdir(parents=True, exist_ok=True)

    def _key_to_path(self, key: str) -> Path:
        return self._root / f"{_segment(key)}.blob"

    async def get(self, key: str) -> str | None:
        path = self._key_to_path(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise StoreError(f"Failed to read blob {key}", store="file_blob", cause=e) from e

    async def set(self, key: str, value: str) -> None:
        try:
            _atomic_write(self._key_to_path(key), value)
        except OSError as e:
            raise StoreError(f"Failed to write blob {key}", store="file_blob", cause=e) from e

    async def delete(self, key: str) -> None:
        self._key_to_path(key).unlink(missing_ok=True)
