# Project Memory MCP Server
#
# Modular package structure:
# - config.py: Settings and collection names
# - logging.py: structlog configuration
# - utils.py: Exceptions, identifiers and path validation
# - models.py: Document models, DTOs and result shapes
# - storage.py: File-backed storage provider (one JSON file per document)
# - query.py: Filter evaluation, sorting and pagination
# - repositories.py: Generic and per-collection repositories
# - services.py: Domain services enforcing the graph invariants
# - application.py: Application facade and wiring
# - tools.py: MCP tool definitions and handlers
# - main.py: Entry point and server initialization
