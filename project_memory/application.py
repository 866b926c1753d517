"""
Application facade for Project Memory MCP Server.

Composes the domain services into the cross-cutting operations used by the
MCP tools, and wires the whole object graph over a storage provider.
"""

import structlog

from .config import COLLECTIONS
from .models import (
    CopyResult,
    CreateEntityDto,
    CreateProjectDto,
    CreateRelationDto,
    Entity,
    KnowledgeGraph,
    Project,
    ProjectKnowledgeResult,
    QueryOptions,
)
from .repositories import EntityRepository, ObservationRepository, ProjectRepository, RelationRepository
from .services import EntityService, ObservationService, ProjectService, RelationService
from .storage import StorageProvider

logger = structlog.get_logger(__name__)


class ProjectMemoryApplication:
    """Entry point for every operation the tools expose."""

    def __init__(
        self,
        project_service: ProjectService,
        entity_service: EntityService,
        observation_service: ObservationService,
        relation_service: RelationService,
    ):
        self.project_service = project_service
        self.entity_service = entity_service
        self.observation_service = observation_service
        self.relation_service = relation_service

    async def create_project_with_entities(
        self, project_data: CreateProjectDto, entities: list[CreateEntityDto]
    ) -> tuple[Project, list[Entity]]:
        """Create a project and its entities.

        Not transactional: if an entity fails, the project and the entities
        created before it are kept.
        """
        project = await self.project_service.create_project(project_data)
        created = await self.entity_service.create_many(project.id, entities)
        return project, created

    async def search_project_knowledge(
        self, project_id: str, query: str, options: QueryOptions | None = None
    ) -> ProjectKnowledgeResult:
        """Search entities and attach every observation and relation touching the page.

        Pagination covers the entities only.
        """
        entities = await self.entity_service.search(project_id, query, options)
        entity_ids = [e.id for e in entities.data]

        observations = await self.observation_service.find_observations_by_entities(entity_ids)
        relations = await self.relation_service.find_relations_by_entities(entity_ids)

        return ProjectKnowledgeResult(
            entities=entities.data,
            observations=observations,
            relations=relations,
            pagination=entities.pagination,
        )

    async def _graph_of(self, entities: list[Entity], internal_only: bool = False) -> KnowledgeGraph:
        entity_ids = [e.id for e in entities]
        relations = await self.relation_service.find_relations_by_entities(entity_ids)
        if internal_only:
            ids = set(entity_ids)
            relations = [r for r in relations if r.from_entity_id in ids and r.to_entity_id in ids]

        return KnowledgeGraph(
            entities=entities,
            observations=await self.observation_service.find_observations_by_entities(entity_ids),
            relations=relations,
        )

    async def read_graph(self, project_id: str) -> KnowledgeGraph:
        """Return every entity of a project with its observations and relations."""
        return await self._graph_of(await self.entity_service.find_all_by_project(project_id))

    async def open_nodes(self, project_id: str, names: list[str]) -> KnowledgeGraph:
        """Return the named entities, their observations and the relations among them.

        Unknown names are ignored. Relations to entities outside the named set
        are left out.
        """
        entities = await self.entity_service.find_by_names(project_id, names)
        return await self._graph_of(entities, internal_only=True)

    async def search_all_projects(self, query: str) -> dict[str, KnowledgeGraph]:
        """Run an unpaginated entity search in every project.

        Returns:
            Mapping of project id to its matching graph, for projects with hits only
        """
        results: dict[str, KnowledgeGraph] = {}
        for project in await self.project_service.find_all_projects():
            entities = await self.entity_service.search_all(project.id, query)
            if entities:
                results[project.id] = await self._graph_of(entities)

        logger.debug("all_projects_searched", query=query, matching_projects=len(results))
        return results

    async def delete_entities(self, project_id: str, entity_names: list[str]) -> int:
        """Cascade-delete entities by name. Returns how many were deleted."""
        deleted_count = 0
        for name in entity_names:
            entity = await self.entity_service.find_by_name(project_id, name)
            if entity and await self.entity_service.delete(entity.id):
                deleted_count += 1
        return deleted_count

    async def copy_memory(self, source_project_id: str, target_project_id: str, entity_names: list[str]) -> CopyResult:
        """Merge named entities of one project into another.

        Entities missing from the target (by name) are created with a fresh
        id; existing ones only gain the observations they lack. Relations
        whose both ends are among the copied entities are recreated unless the
        target already has them. Copying twice changes nothing.
        """
        names = set(entity_names)
        source_entities = [
            e for e in await self.entity_service.find_all_by_project(source_project_id)
            if e.name in names
        ]

        copied_entities = 0
        added_observations = 0
        for source in source_entities:
            contents = [o.content for o in await self.observation_service.find_observations_by_entity(source.id)]

            target = await self.entity_service.find_by_name(target_project_id, source.name)
            if target is None:
                target = await self.entity_service.create(
                    target_project_id,
                    CreateEntityDto(name=source.name, entity_type=source.entity_type),
                )
                copied_entities += 1

            added = await self.observation_service.add_observations(target.id, contents)
            added_observations += len(added)

        names_by_id = {e.id: e.name for e in source_entities}
        copied_relations = 0
        for relation in await self.relation_service.find_relations_by_entities(list(names_by_id)):
            if relation.from_entity_id not in names_by_id or relation.to_entity_id not in names_by_id:
                continue
            _, created = await self.relation_service.ensure_relation(
                target_project_id,
                CreateRelationDto(
                    from_entity_name=names_by_id[relation.from_entity_id],
                    to_entity_name=names_by_id[relation.to_entity_id],
                    relation_type=relation.relation_type,
                ),
            )
            if created:
                copied_relations += 1

        logger.info(
            "memory_copied",
            source_project_id=source_project_id,
            target_project_id=target_project_id,
            copied_entities=copied_entities,
            added_observations=added_observations,
            copied_relations=copied_relations,
        )
        return CopyResult(
            copied_entities=copied_entities,
            added_observations=added_observations,
            copied_relations=copied_relations,
        )

    async def delete_project(self, project_id: str) -> bool:
        """Delete a project together with its whole graph.

        Entities go first (each with its own cascade), then any relation still
        tagged with the project, then the project document.

        Returns:
            Whether the project document existed
        """
        for entity in await self.entity_service.find_all_by_project(project_id):
            await self.entity_service.delete(entity.id)

        for relation in await self.relation_service.find_relations_by_project(project_id):
            await self.relation_service.delete_relation(relation.id)

        deleted = await self.project_service.delete_project(project_id)
        logger.info("project_deleted", project_id=project_id, existed=deleted)
        return deleted


# ============== Wiring ==============

async def initialize_collections(storage: StorageProvider) -> None:
    """Create every collection. Safe to call on an existing store."""
    for collection in COLLECTIONS:
        await storage.create_collection(collection)
    logger.info("collections_initialized", collections=list(COLLECTIONS))


def build_application(storage: StorageProvider) -> ProjectMemoryApplication:
    """Build the application graph over a storage provider."""
    projects = ProjectRepository(storage)
    entities = EntityRepository(storage)
    observations = ObservationRepository(storage)
    relations = RelationRepository(storage)

    observation_service = ObservationService(observations, entities)
    relation_service = RelationService(relations, entities)

    return ProjectMemoryApplication(
        project_service=ProjectService(projects),
        entity_service=EntityService(entities, observation_service, relation_service),
        observation_service=observation_service,
        relation_service=relation_service,
    )
