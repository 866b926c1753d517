"""
Repository module for Project Memory MCP Server.

BaseRepository provides typed CRUD over one collection of a StorageProvider:
identity, timestamps, filtering, sorting and pagination. The collection
repositories bind it to a model and to the fields their $regex and $in
operators work on.
"""

import asyncio
from typing import Any, Generic

import structlog
from pydantic import ValidationError

from .models import (
    DocumentT,
    Entity,
    FilterQuery,
    Observation,
    PaginatedResult,
    Project,
    QueryOptions,
    Relation,
    SortOptions,
)
from .query import FilterFields, apply_filter, apply_pagination, apply_sort
from .storage import StorageProvider
from .utils import generate_id, utc_now

logger = structlog.get_logger(__name__)

# Fields a caller may never overwrite through update()
IMMUTABLE_FIELDS = frozenset({"_id", "created_at"})


class BaseRepository(Generic[DocumentT]):
    """Typed CRUD over one collection.

    Subclasses set ``collection_name``, ``model`` and ``filter_fields``.
    """

    collection_name: str
    model: type[DocumentT]
    filter_fields: FilterFields = FilterFields()

    def __init__(self, storage: StorageProvider):
        self.storage = storage
        # Serializes read-modify-write sequences on this collection
        self.lock = asyncio.Lock()

    def _to_model(self, document: dict[str, Any]) -> DocumentT | None:
        """Validate a stored document, or log and return None if it is not one."""
        try:
            return self.model.model_validate(document)
        except ValidationError as e:
            logger.warning(
                "document_invalid",
                collection=self.collection_name,
                id=document.get("_id"),
                errors=e.error_count(),
            )
            return None

    async def _load(self, filter: FilterQuery | None, sort: SortOptions | None) -> list[DocumentT]:
        # Invalid entries are dropped before filtering so they never count toward totals
        models: dict[int, DocumentT] = {}
        documents = []
        for document in await self.storage.read_all(self.collection_name):
            model = self._to_model(document)
            if model is not None:
                models[id(document)] = model
                documents.append(document)

        filtered = apply_filter(documents, filter, self.filter_fields)
        return [models[id(doc)] for doc in apply_sort(filtered, sort)]

    async def create(self, data: dict[str, Any]) -> DocumentT:
        """Persist a new document with a fresh id and timestamps.

        Args:
            data: Document fields by their persisted (alias) names
        """
        now = utc_now()
        document = self.model.model_validate({
            **data,
            "_id": generate_id(),
            "created_at": now,
            "updated_at": now,
        })

        await self.storage.write(self.collection_name, document.id, document.to_document())
        logger.debug("document_created", collection=self.collection_name, id=document.id)
        return document

    async def find_by_id(self, id: str) -> DocumentT | None:
        document = await self.storage.read(self.collection_name, id)
        return self._to_model(document) if document is not None else None

    async def find_many(self, filter: FilterQuery | None = None, options: QueryOptions | None = None) -> PaginatedResult[DocumentT]:
        """Filter, sort and paginate the whole collection.

        Args:
            filter: Filter query (empty matches everything)
            options: Sort, skip and limit

        Returns:
            PaginatedResult with one page of models and its pagination info
        """
        options = options or QueryOptions()
        documents = await self._load(filter, options.sort)
        page, pagination = apply_pagination(documents, options.limit, options.skip)

        return PaginatedResult[self.model](
            data=page,
            pagination=pagination,
        )

    async def find_all(self, filter: FilterQuery | None = None, sort: SortOptions | None = None) -> list[DocumentT]:
        """Return every matching document, unpaginated."""
        return await self._load(filter, sort)

    async def find_one(self, filter: FilterQuery) -> DocumentT | None:
        result = await self.find_many(filter, QueryOptions(limit=1))
        return result.data[0] if result.data else None

    async def update(self, id: str, data: dict[str, Any]) -> DocumentT | None:
        """Merge fields onto an existing document and refresh updated_at.

        Returns None when the document does not exist; nothing is created.
        """
        changes = {k: v for k, v in data.items() if k not in IMMUTABLE_FIELDS}

        async with self.lock:
            existing = await self.storage.read(self.collection_name, id)
            if existing is None or self._to_model(existing) is None:
                return None

            document = self.model.model_validate({
                **existing,
                **changes,
                "updated_at": utc_now(),
            })
            await self.storage.write(self.collection_name, id, document.to_document())

        logger.debug("document_updated", collection=self.collection_name, id=id, fields=sorted(changes))
        return document

    async def delete(self, id: str) -> bool:
        return await self.storage.delete(self.collection_name, id)

    async def exists(self, filter: FilterQuery) -> bool:
        result = await self.find_many(filter, QueryOptions(limit=1))
        return len(result.data) > 0

    async def count(self, filter: FilterQuery | None = None) -> int:
        return len(await self._load(filter, None))


class ProjectRepository(BaseRepository[Project]):
    collection_name = "projects"
    model = Project
    filter_fields = FilterFields(regex_field="name", in_fields=("_id",))


class EntityRepository(BaseRepository[Entity]):
    collection_name = "entities"
    model = Entity
    filter_fields = FilterFields(regex_field="name", in_fields=("name",))


class ObservationRepository(BaseRepository[Observation]):
    collection_name = "observations"
    model = Observation
    filter_fields = FilterFields(regex_field="content", in_fields=("entityId",))


class RelationRepository(BaseRepository[Relation]):
    collection_name = "relations"
    model = Relation
    filter_fields = FilterFields(in_fields=("fromEntityId", "toEntityId"))
