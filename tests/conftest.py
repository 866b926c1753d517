"""
Pytest configuration and fixtures for project-memory tests.
"""

import json

import pytest
from pathlib import Path


@pytest.fixture
def storage_root(tmp_path: Path) -> Path:
    """Return an empty storage root inside the test's temp dir."""
    root = tmp_path / "collections"
    root.mkdir()
    return root


@pytest.fixture
def storage(storage_root):
    """Create a FileStorageProvider over the temp storage root."""
    from project_memory.storage import FileStorageProvider
    return FileStorageProvider(storage_root)


@pytest.fixture
async def app(storage):
    """Create a fully wired application with initialized collections."""
    from project_memory.application import build_application, initialize_collections

    await initialize_collections(storage)
    return build_application(storage)


@pytest.fixture
def tool_handler(app):
    """Create a ToolHandler bound to the test application."""
    from project_memory.tools import ToolHandler
    return ToolHandler(app)


@pytest.fixture
async def project(app):
    """Create project "P" with entities A (T1, observations x/y) and B (T2)."""
    from project_memory.models import CreateEntityDto, CreateProjectDto

    project, _ = await app.create_project_with_entities(
        CreateProjectDto(name="P", description="Test project"),
        [
            CreateEntityDto(name="A", entity_type="T1", observations=["x", "y"]),
            CreateEntityDto(name="B", entity_type="T2"),
        ],
    )
    return project


def write_raw_document(root: Path, collection: str, name: str, content: str) -> Path:
    """Drop a raw file into a collection's documents directory."""
    documents = root / collection / "documents"
    documents.mkdir(parents=True, exist_ok=True)
    path = documents / name
    path.write_text(content, encoding="utf-8")
    return path


def read_raw_document(root: Path, collection: str, id: str) -> dict:
    return json.loads((root / collection / "documents" / f"{id}.json").read_text(encoding="utf-8"))
