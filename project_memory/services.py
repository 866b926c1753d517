"""
Domain services for Project Memory MCP Server.

Enforce the graph invariants on top of the repositories: cascading entity
deletion, deduplicated observations and relations, and name-to-id resolution
when creating relations.

Multi-step mutations are not transactional. Each step is safe to repeat, so
retrying an interrupted operation converges to the same end state.
"""

import structlog

from .models import (
    CreateEntityDto,
    CreateProjectDto,
    CreateRelationDto,
    Entity,
    FilterQuery,
    Observation,
    PaginatedResult,
    Project,
    QueryOptions,
    Relation,
    UpdateEntityDto,
    UpdateProjectDto,
)
from .repositories import EntityRepository, ObservationRepository, ProjectRepository, RelationRepository
from .utils import NotFoundError

logger = structlog.get_logger(__name__)


class ProjectService:
    """Plain CRUD over projects. Deleting a project does not touch its graph."""

    def __init__(self, projects: ProjectRepository):
        self.projects = projects

    async def create_project(self, project_data: CreateProjectDto) -> Project:
        project = await self.projects.create(project_data.model_dump())
        logger.info("project_created", project_id=project.id, name=project.name)
        return project

    async def find_project(self, id: str) -> Project | None:
        return await self.projects.find_by_id(id)

    async def list_projects(self, options: QueryOptions | None = None) -> PaginatedResult[Project]:
        return await self.projects.find_many({}, options)

    async def find_all_projects(self) -> list[Project]:
        return await self.projects.find_all({}, {"created_at": 1})

    async def update_project(self, id: str, updates: UpdateProjectDto) -> Project | None:
        return await self.projects.update(id, updates.model_dump(exclude_unset=True))

    async def delete_project(self, id: str) -> bool:
        return await self.projects.delete(id)


class ObservationService:
    """Observations attached to entities, deduplicated by content per entity."""

    def __init__(self, observations: ObservationRepository, entities: EntityRepository):
        self.observations = observations
        self.entities = entities

    async def add_observations(self, entity_id: str, contents: list[str]) -> list[Observation]:
        """Attach observations to an entity, skipping contents it already has.

        Args:
            entity_id: Owning entity id
            contents: Observation strings to add

        Returns:
            Only the observations that were newly created

        Raises:
            NotFoundError: If the entity does not exist
        """
        if await self.entities.find_by_id(entity_id) is None:
            raise NotFoundError(f"Entity with ID {entity_id} not found")

        created: list[Observation] = []
        async with self.observations.lock:
            existing = {o.content for o in await self.observations.find_all({"entityId": entity_id})}

            for content in contents:
                if content in existing:
                    continue
                observation = await self.observations.create({"entityId": entity_id, "content": content})
                existing.add(content)
                created.append(observation)

        if created:
            logger.info("observations_added", entity_id=entity_id, count=len(created))
        return created

    async def find_observations_by_entity(self, entity_id: str) -> list[Observation]:
        return await self.observations.find_all({"entityId": entity_id}, {"created_at": 1})

    async def find_observations_by_entities(self, entity_ids: list[str]) -> list[Observation]:
        if not entity_ids:
            return []
        return await self.observations.find_all({"$in": entity_ids}, {"created_at": 1})

    async def remove_observations(self, entity_id: str, contents: list[str]) -> bool:
        """Delete observations of an entity by exact content.

        Returns:
            True only if every requested content was found and deleted
        """
        success = True
        for content in contents:
            observation = await self.observations.find_one({"entityId": entity_id, "content": content})
            if observation is None or not await self.observations.delete(observation.id):
                success = False

        logger.info("observations_removed", entity_id=entity_id, requested=len(contents), success=success)
        return success

    async def remove_observations_by_entity(self, entity_id: str) -> bool:
        success = True
        for observation in await self.observations.find_all({"entityId": entity_id}):
            if not await self.observations.delete(observation.id):
                success = False
        return success


class RelationService:
    """Directed, typed relations between entities of one project."""

    def __init__(self, relations: RelationRepository, entities: EntityRepository):
        self.relations = relations
        self.entities = entities

    async def _resolve(self, project_id: str, relation_data: CreateRelationDto) -> tuple[Entity, Entity]:
        from_entity = await self.entities.find_one({"projectId": project_id, "name": relation_data.from_entity_name})
        to_entity = await self.entities.find_one({"projectId": project_id, "name": relation_data.to_entity_name})

        if from_entity is None or to_entity is None:
            raise NotFoundError(
                f"Entity not found for relation: {relation_data.from_entity_name} -> "
                f"{relation_data.to_entity_name} in project {project_id}"
            )
        return from_entity, to_entity

    async def ensure_relation(self, project_id: str, relation_data: CreateRelationDto) -> tuple[Relation, bool]:
        """Create a relation unless the same (from, to, relationType) already exists.

        Returns:
            (relation, created) where created is False for an existing relation

        Raises:
            NotFoundError: If either entity name cannot be resolved
        """
        from_entity, to_entity = await self._resolve(project_id, relation_data)
        triple = {
            "projectId": project_id,
            "fromEntityId": from_entity.id,
            "toEntityId": to_entity.id,
            "relationType": relation_data.relation_type,
        }

        async with self.relations.lock:
            existing = await self.relations.find_one(triple)
            if existing is not None:
                return existing, False
            relation = await self.relations.create(triple)

        logger.info(
            "relation_created",
            project_id=project_id,
            relation_id=relation.id,
            relation_type=relation.relation_type,
        )
        return relation, True

    async def create_relation(self, project_id: str, relation_data: CreateRelationDto) -> Relation:
        """Create a relation between two entities named within a project.

        An identical relation is returned as is instead of being stored twice.
        """
        relation, _ = await self.ensure_relation(project_id, relation_data)
        return relation

    async def find_relations_by_project(self, project_id: str) -> list[Relation]:
        return await self.relations.find_all({"projectId": project_id}, {"created_at": 1})

    async def find_relations_by_entity(self, entity_id: str) -> list[Relation]:
        return await self.relations.find_all(
            {"$or": [{"fromEntityId": entity_id}, {"toEntityId": entity_id}]},
            {"created_at": 1},
        )

    async def find_relations_by_entities(self, entity_ids: list[str]) -> list[Relation]:
        if not entity_ids:
            return []
        return await self.relations.find_all({"$in": entity_ids}, {"created_at": 1})

    async def delete_relation(self, id: str) -> bool:
        return await self.relations.delete(id)

    async def delete_relations_by_entity(self, entity_id: str) -> bool:
        success = True
        for relation in await self.find_relations_by_entity(entity_id):
            if not await self.relations.delete(relation.id):
                success = False
        return success

    async def delete_relations(self, project_id: str, relations: list[CreateRelationDto]) -> int:
        """Delete relations addressed by entity names. Unresolvable ones are skipped.

        Returns:
            Number of relations deleted
        """
        deleted = 0
        for relation_data in relations:
            try:
                from_entity, to_entity = await self._resolve(project_id, relation_data)
            except NotFoundError:
                continue

            matches = await self.relations.find_all({
                "projectId": project_id,
                "fromEntityId": from_entity.id,
                "toEntityId": to_entity.id,
                "relationType": relation_data.relation_type,
            })
            for relation in matches:
                if await self.relations.delete(relation.id):
                    deleted += 1

        logger.info("relations_deleted", project_id=project_id, count=deleted)
        return deleted


class EntityService:
    """Entities of a project; deletion cascades to observations and relations."""

    def __init__(self, entities: EntityRepository, observation_service: ObservationService, relation_service: RelationService):
        self.entities = entities
        self.observation_service = observation_service
        self.relation_service = relation_service

    async def find_by_id(self, id: str) -> Entity | None:
        return await self.entities.find_by_id(id)

    async def find_by_project(self, project_id: str, options: QueryOptions | None = None) -> PaginatedResult[Entity]:
        return await self.entities.find_many({"projectId": project_id}, options)

    async def find_all_by_project(self, project_id: str) -> list[Entity]:
        return await self.entities.find_all({"projectId": project_id}, {"created_at": 1})

    @staticmethod
    def _search_filter(project_id: str, query: str) -> FilterQuery:
        pattern = {"$regex": query, "$options": "i"}
        return {
            "projectId": project_id,
            "$or": [{"name": pattern}, {"entityType": pattern}],
        }

    async def search(self, project_id: str, query: str, options: QueryOptions | None = None) -> PaginatedResult[Entity]:
        """Find entities whose name or type matches a case-insensitive pattern."""
        return await self.entities.find_many(self._search_filter(project_id, query), options)

    async def search_all(self, project_id: str, query: str) -> list[Entity]:
        """Unpaginated search, oldest first."""
        return await self.entities.find_all(self._search_filter(project_id, query), {"created_at": 1})

    async def find_by_names(self, project_id: str, names: list[str]) -> list[Entity]:
        if not names:
            return []
        return await self.entities.find_all({"projectId": project_id, "$in": names}, {"created_at": 1})

    async def find_by_name(self, project_id: str, name: str) -> Entity | None:
        return await self.entities.find_one({"projectId": project_id, "name": name})

    async def create(self, project_id: str, entity_data: CreateEntityDto) -> Entity:
        """Create an entity and attach its initial observations."""
        entity = await self.entities.create({
            "projectId": project_id,
            "name": entity_data.name,
            "entityType": entity_data.entity_type,
        })
        logger.info("entity_created", project_id=project_id, entity_id=entity.id, name=entity.name)

        if entity_data.observations:
            await self.observation_service.add_observations(entity.id, entity_data.observations)
        return entity

    async def create_many(self, project_id: str, entities: list[CreateEntityDto]) -> list[Entity]:
        return [await self.create(project_id, entity_data) for entity_data in entities]

    async def update(self, id: str, updates: UpdateEntityDto) -> Entity | None:
        return await self.entities.update(id, updates.model_dump(by_alias=True, exclude_unset=True))

    async def delete(self, id: str) -> bool:
        """Delete an entity after its observations and relations.

        Order: observations, relations, then the entity. Returns whether the
        entity document itself existed.
        """
        await self.observation_service.remove_observations_by_entity(id)
        await self.relation_service.delete_relations_by_entity(id)
        deleted = await self.entities.delete(id)

        logger.info("entity_deleted", entity_id=id, existed=deleted)
        return deleted
