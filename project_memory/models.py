"""
Pydantic models for Project Memory MCP Server.

Contains the persisted document models, the DTOs accepted by the services,
query options and the result shapes returned to tool callers.

Attributes are snake_case; the persisted and wire names are the camelCase
aliases (``projectId``, ``entityType``, ``_id``...).
"""

from datetime import datetime
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

FilterQuery = dict[str, Any]
SortOptions = dict[str, int]


class Document(BaseModel):
    """Base model for every persisted document."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id")
    created_at: datetime
    updated_at: datetime

    def to_document(self) -> dict[str, Any]:
        """Return the JSON-ready dict stored on disk."""
        return self.model_dump(mode="json", by_alias=True)


DocumentT = TypeVar("DocumentT", bound=Document)


class Project(Document):
    """Root of a namespace; other documents reference it by projectId."""

    name: str
    description: str | None = None


class Entity(Document):
    """A named, typed node of a project's knowledge graph."""

    project_id: str = Field(alias="projectId")
    name: str
    entity_type: str = Field(alias="entityType")


class Observation(Document):
    """A free-text fact attached to one entity."""

    entity_id: str = Field(alias="entityId")
    content: str


class Relation(Document):
    """A typed, directed edge between two entities of one project."""

    project_id: str = Field(alias="projectId")
    from_entity_id: str = Field(alias="fromEntityId")
    to_entity_id: str = Field(alias="toEntityId")
    relation_type: str = Field(alias="relationType")


# ============== DTOs ==============

class CreateProjectDto(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None


class UpdateProjectDto(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None


class CreateEntityDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1)
    entity_type: str = Field(alias="entityType")
    observations: list[str] = Field(default_factory=list)


class UpdateEntityDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str | None = Field(default=None, min_length=1)
    entity_type: str | None = Field(default=None, alias="entityType")


class CreateRelationDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_entity_name: str = Field(alias="fromEntityName")
    to_entity_name: str = Field(alias="toEntityName")
    relation_type: str = Field(alias="relationType")


# ============== Queries and results ==============

class QueryOptions(BaseModel):
    """Sort and pagination options for find_many.

    ``limit`` falls back to the configured default page size when unset.
    """

    limit: int | None = Field(default=None, gt=0)
    skip: int = Field(default=0, ge=0)
    sort: SortOptions | None = None


class Pagination(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    page: int
    limit: int
    total: int
    total_pages: int = Field(alias="totalPages")


class PaginatedResult(BaseModel, Generic[DocumentT]):
    data: list[DocumentT]
    pagination: Pagination


class KnowledgeGraph(BaseModel):
    entities: list[Entity]
    observations: list[Observation]
    relations: list[Relation]


class ProjectKnowledgeResult(KnowledgeGraph):
    """A page of matching entities with every observation and relation touching them."""

    pagination: Pagination


class ObservationAddResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    entity_id: str = Field(alias="entityId")
    added_observations: list[str] = Field(alias="addedObservations")


class CopyResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    copied_entities: int = Field(alias="copiedEntities")
    added_observations: int = Field(alias="addedObservations")
    copied_relations: int = Field(alias="copiedRelations")
