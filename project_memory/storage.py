"""
Storage provider module for Project Memory MCP Server.

Persists one JSON file per document:

    <root>/<collection>/documents/<id>.json
"""

import asyncio
import json
import shutil
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import aiofiles
import aiofiles.os
import structlog

from .utils import PathValidationError, validate_name, validate_path_within_root

logger = structlog.get_logger(__name__)

DOCUMENTS_DIR = "documents"
DOCUMENT_SUFFIX = ".json"


@runtime_checkable
class StorageProvider(Protocol):
    """Byte-level persistence of documents grouped in named collections."""

    async def write(self, collection: str, id: str, data: dict[str, Any]) -> None: ...

    async def read(self, collection: str, id: str) -> dict[str, Any] | None: ...

    async def read_all(self, collection: str) -> list[dict[str, Any]]: ...

    async def delete(self, collection: str, id: str) -> bool: ...

    async def create_collection(self, collection: str) -> None: ...

    async def drop_collection(self, collection: str) -> None: ...


class FileStorageProvider:
    """File-backed StorageProvider rooted at a single directory.

    Writes go to a temporary sibling and are renamed over the target, so a
    reader never sees a half-written document. Missing or unreadable documents
    read as absent instead of raising.
    """

    def __init__(self, root: Path):
        self.root = root

    def _collection_path(self, collection: str) -> Path:
        validate_name(collection)
        return validate_path_within_root(self.root / collection, self.root)

    def _documents_path(self, collection: str) -> Path:
        return self._collection_path(collection) / DOCUMENTS_DIR

    def _document_path(self, collection: str, id: str) -> Path:
        validate_name(id)
        return self._documents_path(collection) / f"{id}{DOCUMENT_SUFFIX}"

    async def _load_document(self, path: Path) -> dict[str, Any] | None:
        """Load one document file and return its dict, or None if it is not a document."""
        try:
            async with aiofiles.open(path, encoding="utf-8") as f:
                content = await f.read()
            data = json.loads(content)
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning("document_read_failed", path=str(path), error=str(e))
            return None

        if not isinstance(data, dict):
            logger.warning("document_not_an_object", path=str(path))
            return None
        return data

    async def write(self, collection: str, id: str, data: dict[str, Any]) -> None:
        """Persist a document, creating the collection directories if needed."""
        file_path = self._document_path(collection, id)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        tmp_path = file_path.with_name(f"{file_path.name}.tmp")
        async with aiofiles.open(tmp_path, mode="w", encoding="utf-8") as f:
            await f.write(json.dumps(data, indent=2, ensure_ascii=False))
        await aiofiles.os.replace(tmp_path, file_path)

        logger.debug("document_written", collection=collection, id=id)

    async def read(self, collection: str, id: str) -> dict[str, Any] | None:
        """Return a document, or None when it does not exist."""
        try:
            file_path = self._document_path(collection, id)
        except PathValidationError:
            return None
        return await self._load_document(file_path)

    async def read_all(self, collection: str) -> list[dict[str, Any]]:
        """Return every readable document of a collection."""
        documents_path = self._documents_path(collection)
        if not documents_path.is_dir():
            return []

        # Collect all files first (iterdir is sync)
        files = sorted(
            p for p in documents_path.iterdir()
            if p.is_file() and p.name.endswith(DOCUMENT_SUFFIX)
        )

        # Load all documents in parallel
        results = await asyncio.gather(*(self._load_document(p) for p in files))
        return [doc for doc in results if doc is not None]

    async def delete(self, collection: str, id: str) -> bool:
        """Remove a document. Returns False when there was nothing to remove."""
        try:
            file_path = self._document_path(collection, id)
        except PathValidationError:
            return False

        try:
            await aiofiles.os.remove(file_path)
        except FileNotFoundError:
            return False

        logger.debug("document_deleted", collection=collection, id=id)
        return True

    async def create_collection(self, collection: str) -> None:
        """Create a collection. No-op if it already exists."""
        self._documents_path(collection).mkdir(parents=True, exist_ok=True)

    async def drop_collection(self, collection: str) -> None:
        """Remove a collection with all its documents. No-op if it does not exist."""
        collection_path = self._collection_path(collection)
        if not collection_path.exists():
            return
        await asyncio.to_thread(shutil.rmtree, collection_path)
        logger.info("collection_dropped", collection=collection)
