"""
Tests for the generic repository and the collection repositories.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from conftest import read_raw_document, write_raw_document


@pytest.fixture
def entities(storage):
    from project_memory.repositories import EntityRepository
    return EntityRepository(storage)


@pytest.fixture
def observations(storage):
    from project_memory.repositories import ObservationRepository
    return ObservationRepository(storage)


@pytest.fixture
def relations(storage):
    from project_memory.repositories import RelationRepository
    return RelationRepository(storage)


@pytest.fixture
def projects(storage):
    from project_memory.repositories import ProjectRepository
    return ProjectRepository(storage)


class TestCreateAndFind:
    """Tests for create / find_by_id."""

    async def test_create_assigns_identity_and_timestamps(self, entities):
        """Test create stamps a fresh id and equal timestamps."""
        entity = await entities.create({"projectId": "p", "name": "A", "entityType": "T1"})

        assert len(entity.id) == 36
        assert entity.created_at == entity.updated_at
        assert entity.created_at.tzinfo is not None
        assert entity.created_at <= datetime.now(timezone.utc)

    async def test_create_ids_are_unique(self, entities):
        """Test two creates get different ids."""
        first = await entities.create({"projectId": "p", "name": "A", "entityType": "T"})
        second = await entities.create({"projectId": "p", "name": "A", "entityType": "T"})

        assert first.id != second.id

    async def test_round_trip(self, entities):
        """Test a created document reads back equal."""
        entity = await entities.create({"projectId": "p", "name": "A", "entityType": "T1"})

        found = await entities.find_by_id(entity.id)

        assert found == entity
        assert (found.project_id, found.name, found.entity_type) == ("p", "A", "T1")

    async def test_persisted_with_wire_names(self, entities, storage_root):
        """Test the stored document uses _id, camelCase fields and ISO timestamps."""
        entity = await entities.create({"projectId": "p", "name": "A", "entityType": "T1"})

        raw = read_raw_document(storage_root, "entities", entity.id)

        assert raw["_id"] == entity.id
        assert raw["projectId"] == "p"
        assert raw["entityType"] == "T1"
        assert datetime.fromisoformat(raw["created_at"].replace("Z", "+00:00")) == entity.created_at

    async def test_create_ignores_caller_identity(self, entities):
        """Test a caller-supplied _id is replaced."""
        entity = await entities.create({"_id": "mine", "projectId": "p", "name": "A", "entityType": "T"})

        assert entity.id != "mine"

    async def test_find_by_id_missing(self, entities):
        """Test a missing id returns None."""
        assert await entities.find_by_id("does-not-exist") is None


class TestFindMany:
    """Tests for find_many / find_all / exists / count."""

    async def _seed(self, entities, count=7):
        for i in range(count):
            await entities.create({"projectId": "p", "name": f"E{i}", "entityType": "even" if i % 2 == 0 else "odd"})
        await entities.create({"projectId": "other", "name": "X", "entityType": "even"})

    async def test_filter_and_total(self, entities):
        """Test total counts filtered documents before pagination."""
        from project_memory.models import QueryOptions

        await self._seed(entities)

        result = await entities.find_many({"projectId": "p"}, QueryOptions(limit=3))

        assert len(result.data) == 3
        assert result.pagination.total == 7
        assert result.pagination.total_pages == 3
        assert result.pagination.page == 1

    async def test_pages_are_disjoint_and_complete(self, entities):
        """Test walking pages covers all matches exactly once."""
        from project_memory.models import QueryOptions

        await self._seed(entities)

        names = []
        for skip in range(0, 7, 3):
            result = await entities.find_many(
                {"projectId": "p"}, QueryOptions(limit=3, skip=skip, sort={"name": 1})
            )
            names.extend(e.name for e in result.data)

        assert names == [f"E{i}" for i in range(7)]

    async def test_sort_descending(self, entities):
        """Test sort is applied before pagination."""
        from project_memory.models import QueryOptions

        await self._seed(entities)

        result = await entities.find_many({"projectId": "p"}, QueryOptions(limit=2, sort={"name": -1}))

        assert [e.name for e in result.data] == ["E6", "E5"]

    async def test_default_limit_is_fifty(self, entities):
        """Test find_many pages at 50 without options while find_all does not."""
        for i in range(55):
            await entities.create({"projectId": "p", "name": f"E{i}", "entityType": "T"})

        result = await entities.find_many({"projectId": "p"})

        assert len(result.data) == 50
        assert result.pagination.limit == 50
        assert result.pagination.total_pages == 2
        assert len(await entities.find_all({"projectId": "p"})) == 55

    async def test_entity_regex_and_in(self, entities):
        """Test entity $regex targets name and $in targets name."""
        await entities.create({"projectId": "p", "name": "FooService", "entityType": "T"})
        await entities.create({"projectId": "p", "name": "BarFoo", "entityType": "T"})

        assert [e.name for e in await entities.find_all({"$regex": "^Foo"})] == ["FooService"]
        assert [e.name for e in await entities.find_all({"$in": ["BarFoo"]})] == ["BarFoo"]

    async def test_observation_operators(self, observations):
        """Test observation $regex targets content and $in targets entityId."""
        await observations.create({"entityId": "e1", "content": "likes tea"})
        await observations.create({"entityId": "e2", "content": "likes coffee"})

        assert [o.entity_id for o in await observations.find_all({"$regex": "coffee"})] == ["e2"]
        assert [o.content for o in await observations.find_all({"$in": ["e1"]})] == ["likes tea"]

    async def test_relation_in_either_endpoint(self, relations):
        """Test relation $in matches from or to ids."""
        await relations.create({"projectId": "p", "fromEntityId": "a", "toEntityId": "b", "relationType": "uses"})
        await relations.create({"projectId": "p", "fromEntityId": "b", "toEntityId": "c", "relationType": "uses"})

        assert len(await relations.find_all({"$in": ["b"]})) == 2
        assert len(await relations.find_all({"$in": ["a"]})) == 1

    async def test_unknown_operator_raises(self, entities):
        """Test unknown operators are rejected."""
        from project_memory.utils import InvalidFilterError

        await entities.create({"projectId": "p", "name": "A", "entityType": "T"})

        with pytest.raises(InvalidFilterError):
            await entities.find_many({"$where": "true"})

    async def test_exists_and_count(self, entities):
        """Test exists and count reflect the filter."""
        await self._seed(entities)

        assert await entities.exists({"name": "E3"}) is True
        assert await entities.exists({"name": "nope"}) is False
        assert await entities.count({"entityType": "even"}) == 5

    async def test_project_regex(self, projects):
        """Test project $regex targets the name."""
        await projects.create({"name": "alpha"})
        await projects.create({"name": "beta"})

        assert [p.name for p in await projects.find_all({"$regex": "^al"})] == ["alpha"]


class TestInvalidDocuments:
    """Tests for stored JSON objects that are not valid documents."""

    async def test_skipped_by_queries(self, projects, storage_root):
        """Test a stray object is left out of results and totals."""
        project = await projects.create({"name": "alpha"})
        write_raw_document(storage_root, "projects", "stray.json", '{"note": "hello"}')

        result = await projects.find_many()

        assert [p.id for p in result.data] == [project.id]
        assert result.pagination.total == 1
        assert await projects.count() == 1
        assert [p.id for p in await projects.find_all()] == [project.id]

    async def test_find_by_id_and_update_treat_it_as_missing(self, projects, storage_root):
        """Test lookups and updates of a stray object behave as for a missing id."""
        write_raw_document(storage_root, "projects", "stray.json", '{"note": "hello"}')

        assert await projects.find_by_id("stray") is None
        assert await projects.update("stray", {"name": "x"}) is None


class TestUpdateAndDelete:
    """Tests for update / delete."""

    async def test_update_merges_and_refreshes(self, entities):
        """Test update merges fields and refreshes updated_at only."""
        entity = await entities.create({"projectId": "p", "name": "A", "entityType": "T1"})
        await asyncio.sleep(0.01)

        updated = await entities.update(entity.id, {"entityType": "T2"})

        assert updated.entity_type == "T2"
        assert updated.name == "A"
        assert updated.created_at == entity.created_at
        assert updated.updated_at > entity.updated_at
        assert await entities.find_by_id(entity.id) == updated

    async def test_update_keeps_identity(self, entities):
        """Test update cannot change _id or created_at."""
        entity = await entities.create({"projectId": "p", "name": "A", "entityType": "T1"})

        updated = await entities.update(entity.id, {"_id": "other", "created_at": "2000-01-01T00:00:00Z"})

        assert updated.id == entity.id
        assert updated.created_at == entity.created_at

    async def test_update_missing_returns_none(self, entities):
        """Test update on a missing id creates nothing."""
        assert await entities.update("missing", {"name": "X"}) is None
        assert await entities.find_all() == []

    async def test_delete(self, entities):
        """Test delete reports whether the document existed."""
        entity = await entities.create({"projectId": "p", "name": "A", "entityType": "T1"})

        assert await entities.delete(entity.id) is True
        assert await entities.delete(entity.id) is False
        assert await entities.find_by_id(entity.id) is None
