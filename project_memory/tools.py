"""
MCP Tools module for Project Memory MCP Server.

Contains the tool definitions, their argument models, the ToolHandler that
maps each tool onto the application, and the server factory.
"""

import json
from typing import Any

import structlog
from mcp.server import Server
from mcp.types import TextContent, Tool
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .application import ProjectMemoryApplication
from .config import settings
from .models import CreateEntityDto, CreateProjectDto, CreateRelationDto, ObservationAddResult, QueryOptions
from .utils import ProjectMemoryError

logger = structlog.get_logger(__name__)

SERVER_NAME = "project-memory"


# ============== Argument models ==============

class ToolArguments(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ListProjectsArgs(ToolArguments):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default_factory=lambda: settings.default_page_size, ge=1)


class CreateProjectArgs(ToolArguments):
    name: str = Field(min_length=1)
    description: str | None = None


class ProjectArgs(ToolArguments):
    project_id: str = Field(alias="projectId")


class CreateEntitiesArgs(ProjectArgs):
    entities: list[CreateEntityDto]


class CreateRelationsArgs(ProjectArgs):
    relations: list[CreateRelationDto]


class SearchNodesArgs(ProjectArgs):
    query: str
    page: int = Field(default=1, ge=1)
    limit: int = Field(default_factory=lambda: settings.default_page_size, ge=1)


class ObservationInput(ToolArguments):
    entity_id: str = Field(alias="entityId")
    contents: list[str]


class AddObservationsArgs(ToolArguments):
    observations: list[ObservationInput]


class DeleteObservationsArgs(ObservationInput):
    pass


class DeleteEntitiesArgs(ProjectArgs):
    entity_names: list[str] = Field(alias="entityNames")


class DeleteRelationsArgs(ProjectArgs):
    relations: list[CreateRelationDto]


class OpenNodesArgs(ProjectArgs):
    names: list[str]


class SearchAllProjectsArgs(ToolArguments):
    query: str


class CopyMemoryArgs(ToolArguments):
    source_project_id: str = Field(alias="sourceProjectId")
    target_project_id: str = Field(alias="targetProjectId")
    entity_names: list[str] = Field(alias="entityNames")


def page_options(page: int, limit: int) -> QueryOptions:
    """Translate a 1-based page number into skip/limit, capping the page size."""
    limit = min(limit, settings.max_page_size)
    return QueryOptions(limit=limit, skip=(page - 1) * limit)


def to_json(value: Any) -> str:
    """Serialize models (or lists/dicts of them) with their wire names."""
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json", by_alias=True)
    elif isinstance(value, list):
        value = [v.model_dump(mode="json", by_alias=True) if isinstance(v, BaseModel) else v for v in value]
    elif isinstance(value, dict):
        value = {k: v.model_dump(mode="json", by_alias=True) if isinstance(v, BaseModel) else v for k, v in value.items()}
    return json.dumps(value, indent=2, ensure_ascii=False)


# ============== Tool definitions ==============

_PROJECT_ID = {"type": "string", "description": "The project identifier"}
_PAGE = {"type": "integer", "description": "Page number (default: 1)", "default": 1}
_LIMIT = {
    "type": "integer",
    "description": f"Results per page (default: {settings.default_page_size}, max: {settings.max_page_size})",
    "default": settings.default_page_size,
}
_RELATION_ITEM = {
    "type": "object",
    "properties": {
        "fromEntityName": {"type": "string", "description": "The name of the entity where the relation starts"},
        "toEntityName": {"type": "string", "description": "The name of the entity where the relation ends"},
        "relationType": {"type": "string", "description": "The type of the relation"},
    },
    "required": ["fromEntityName", "toEntityName", "relationType"],
}

TOOLS = [
    Tool(
        name="list_projects",
        description="List all projects with stored memory.",
        inputSchema={
            "type": "object",
            "properties": {
                "page": _PAGE,
                "limit": _LIMIT,
            },
        },
    ),
    Tool(
        name="create_project",
        description="Create a new project to hold a knowledge graph.",
        inputSchema={
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "The project name"},
                "description": {"type": "string", "description": "Optional project description"},
            },
            "required": ["name"],
        },
    ),
    Tool(
        name="delete_project",
        description="Delete a project together with all its entities, observations and relations.",
        inputSchema={
            "type": "object",
            "properties": {"projectId": _PROJECT_ID},
            "required": ["projectId"],
        },
    ),
    Tool(
        name="create_entities",
        description="Create multiple new entities in the project knowledge graph.",
        inputSchema={
            "type": "object",
            "properties": {
                "projectId": _PROJECT_ID,
                "entities": {
                    "type": "array",
                    "description": "An array of entities to create",
                    "items": {
                        "type": "object",
                        "properties": {
                            "name": {"type": "string", "description": "The name of the entity"},
                            "entityType": {"type": "string", "description": "The type of the entity"},
                            "observations": {
                                "type": "array",
                                "items": {"type": "string"},
                                "description": "An array of observation contents associated with the entity",
                            },
                        },
                        "required": ["name", "entityType"],
                    },
                },
            },
            "required": ["projectId", "entities"],
        },
    ),
    Tool(
        name="create_relations",
        description="Create multiple new relations between entities in the project knowledge graph. "
                    "Relations that already exist are returned unchanged.",
        inputSchema={
            "type": "object",
            "properties": {
                "projectId": _PROJECT_ID,
                "relations": {"type": "array", "description": "An array of relations to create", "items": _RELATION_ITEM},
            },
            "required": ["projectId", "relations"],
        },
    ),
    Tool(
        name="search_nodes",
        description="Search for nodes in a specific project's knowledge graph. The query is a "
                    "case-insensitive regular expression matched against entity names and types.",
        inputSchema={
            "type": "object",
            "properties": {
                "projectId": _PROJECT_ID,
                "query": {"type": "string", "description": "The search pattern"},
                "page": _PAGE,
                "limit": _LIMIT,
            },
            "required": ["projectId", "query"],
        },
    ),
    Tool(
        name="search_all_projects",
        description="Search every project's knowledge graph. Returns, per project with matches, the "
                    "matching entities with their observations and relations.",
        inputSchema={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Case-insensitive pattern matched against entity names and types"},
            },
            "required": ["query"],
        },
    ),
    Tool(
        name="open_nodes",
        description="Open specific nodes of a project's knowledge graph by name, with their "
                    "observations and the relations between them.",
        inputSchema={
            "type": "object",
            "properties": {
                "projectId": _PROJECT_ID,
                "names": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "An array of entity names to retrieve",
                },
            },
            "required": ["projectId", "names"],
        },
    ),
    Tool(
        name="read_graph",
        description="Read the entire knowledge graph for a specific project.",
        inputSchema={
            "type": "object",
            "properties": {"projectId": _PROJECT_ID},
            "required": ["projectId"],
        },
    ),
    Tool(
        name="add_observations",
        description="Add new observations to existing entities. Observations an entity already has are skipped.",
        inputSchema={
            "type": "object",
            "properties": {
                "observations": {
                    "type": "array",
                    "description": "An array of observation objects to add to entities",
                    "items": {
                        "type": "object",
                        "properties": {
                            "entityId": {"type": "string", "description": "The entity ID to add observations to"},
                            "contents": {
                                "type": "array",
                                "items": {"type": "string"},
                                "description": "The array of observation strings",
                            },
                        },
                        "required": ["entityId", "contents"],
                    },
                },
            },
            "required": ["observations"],
        },
    ),
    Tool(
        name="delete_observations",
        description="Delete observations of an entity by exact content.",
        inputSchema={
            "type": "object",
            "properties": {
                "entityId": {"type": "string", "description": "The entity ID owning the observations"},
                "contents": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "The observation strings to delete",
                },
            },
            "required": ["entityId", "contents"],
        },
    ),
    Tool(
        name="delete_entities",
        description="Delete multiple entities and their associated observations and relations.",
        inputSchema={
            "type": "object",
            "properties": {
                "projectId": _PROJECT_ID,
                "entityNames": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "An array of entity names to delete",
                },
            },
            "required": ["projectId", "entityNames"],
        },
    ),
    Tool(
        name="delete_relations",
        description="Delete relations addressed by entity names and relation type.",
        inputSchema={
            "type": "object",
            "properties": {
                "projectId": _PROJECT_ID,
                "relations": {"type": "array", "description": "An array of relations to delete", "items": _RELATION_ITEM},
            },
            "required": ["projectId", "relations"],
        },
    ),
    Tool(
        name="copy_memory",
        description="Copy entities, their observations and the relations between them from one project "
                    "to another. Entities already present in the target are merged, never duplicated.",
        inputSchema={
            "type": "object",
            "properties": {
                "sourceProjectId": {"type": "string", "description": "The source project identifier"},
                "targetProjectId": {"type": "string", "description": "The target project identifier"},
                "entityNames": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "An array of entity names to copy",
                },
            },
            "required": ["sourceProjectId", "targetProjectId", "entityNames"],
        },
    ),
]


# ============== Handlers ==============

class ToolHandler:
    """Runs tool calls against the application and renders JSON text results."""

    def __init__(self, app: ProjectMemoryApplication):
        self.app = app
        self._handlers = {
            "list_projects": (ListProjectsArgs, self.handle_list_projects),
            "create_project": (CreateProjectArgs, self.handle_create_project),
            "delete_project": (ProjectArgs, self.handle_delete_project),
            "create_entities": (CreateEntitiesArgs, self.handle_create_entities),
            "create_relations": (CreateRelationsArgs, self.handle_create_relations),
            "search_nodes": (SearchNodesArgs, self.handle_search_nodes),
            "search_all_projects": (SearchAllProjectsArgs, self.handle_search_all_projects),
            "open_nodes": (OpenNodesArgs, self.handle_open_nodes),
            "read_graph": (ProjectArgs, self.handle_read_graph),
            "add_observations": (AddObservationsArgs, self.handle_add_observations),
            "delete_observations": (DeleteObservationsArgs, self.handle_delete_observations),
            "delete_entities": (DeleteEntitiesArgs, self.handle_delete_entities),
            "delete_relations": (DeleteRelationsArgs, self.handle_delete_relations),
            "copy_memory": (CopyMemoryArgs, self.handle_copy_memory),
        }

    async def call(self, name: str, arguments: dict[str, Any] | None) -> str:
        """Dispatch a tool call. Failures come back as {"error": message}."""
        if name not in self._handlers:
            return to_json({"error": f"Unknown tool: {name}"})

        args_model, handler = self._handlers[name]
        try:
            args = args_model.model_validate(arguments or {})
        except ValidationError as e:
            logger.warning("tool_arguments_invalid", tool=name, error=str(e))
            return to_json({"error": f"Invalid arguments for {name}: {e}"})

        try:
            return await handler(args)
        except (ProjectMemoryError, OSError) as e:
            logger.error("tool_call_failed", tool=name, error=str(e))
            return to_json({"error": str(e)})

    async def handle_list_projects(self, args: ListProjectsArgs) -> str:
        return to_json(await self.app.project_service.list_projects(page_options(args.page, args.limit)))

    async def handle_create_project(self, args: CreateProjectArgs) -> str:
        project = await self.app.project_service.create_project(
            CreateProjectDto(name=args.name, description=args.description)
        )
        return to_json(project)

    async def handle_delete_project(self, args: ProjectArgs) -> str:
        return to_json({"deleted": await self.app.delete_project(args.project_id)})

    async def handle_create_entities(self, args: CreateEntitiesArgs) -> str:
        return to_json(await self.app.entity_service.create_many(args.project_id, args.entities))

    async def handle_create_relations(self, args: CreateRelationsArgs) -> str:
        relations = [
            await self.app.relation_service.create_relation(args.project_id, relation_data)
            for relation_data in args.relations
        ]
        return to_json(relations)

    async def handle_search_nodes(self, args: SearchNodesArgs) -> str:
        result = await self.app.search_project_knowledge(
            args.project_id, args.query, page_options(args.page, args.limit)
        )
        return to_json(result)

    async def handle_search_all_projects(self, args: SearchAllProjectsArgs) -> str:
        return to_json(await self.app.search_all_projects(args.query))

    async def handle_open_nodes(self, args: OpenNodesArgs) -> str:
        return to_json(await self.app.open_nodes(args.project_id, args.names))

    async def handle_read_graph(self, args: ProjectArgs) -> str:
        return to_json(await self.app.read_graph(args.project_id))

    async def handle_add_observations(self, args: AddObservationsArgs) -> str:
        results = []
        for item in args.observations:
            added = await self.app.observation_service.add_observations(item.entity_id, item.contents)
            results.append(ObservationAddResult(
                entity_id=item.entity_id,
                added_observations=[o.content for o in added],
            ))
        return to_json(results)

    async def handle_delete_observations(self, args: DeleteObservationsArgs) -> str:
        success = await self.app.observation_service.remove_observations(args.entity_id, args.contents)
        return to_json({"success": success})

    async def handle_delete_entities(self, args: DeleteEntitiesArgs) -> str:
        deleted_count = await self.app.delete_entities(args.project_id, args.entity_names)
        return to_json({"deletedCount": deleted_count})

    async def handle_delete_relations(self, args: DeleteRelationsArgs) -> str:
        deleted_count = await self.app.relation_service.delete_relations(args.project_id, args.relations)
        return to_json({"deletedCount": deleted_count})

    async def handle_copy_memory(self, args: CopyMemoryArgs) -> str:
        result = await self.app.copy_memory(args.source_project_id, args.target_project_id, args.entity_names)
        return to_json(result)


# ============== Server ==============

def create_server(app: ProjectMemoryApplication) -> Server:
    """Create an MCP server whose tools run against the given application."""
    server = Server(SERVER_NAME)
    handler = ToolHandler(app)

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """List available tools."""
        return TOOLS

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """Handle tool calls."""
        return [TextContent(type="text", text=await handler.call(name, arguments))]

    return server
