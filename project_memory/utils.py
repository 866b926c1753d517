"""
Exceptions and validation utilities for Project Memory MCP Server.

Contains the error taxonomy shared by storage, repositories and services,
plus path-safety checks for collection names and document ids.
"""

import re
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

# A collection name or document id is one path component: no separators, no dots-only names
SAFE_NAME_PATTERN = re.compile(r'^[\w\-.]+$')


# ============== Exceptions ==============

class ProjectMemoryError(Exception):
    """Base class for errors reported back to tool callers."""
    pass


class NotFoundError(ProjectMemoryError):
    """Raised when an operation requires a document that does not exist."""
    pass


class InvalidFilterError(ProjectMemoryError):
    """Raised when a filter or sort specification cannot be evaluated."""
    pass


class PathValidationError(ProjectMemoryError):
    """Raised when a collection name or document id is not a safe path component."""
    pass


# ============== Helper Functions ==============

def generate_id() -> str:
    """Return a fresh 128-bit random identifier."""
    return str(uuid4())


def utc_now() -> datetime:
    """Return the current instant as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


# ============== Security Validation ==============

def validate_name(name: str) -> str:
    """Validate a collection name or document id.

    Args:
        name: The name to validate

    Returns:
        The validated name

    Raises:
        PathValidationError: If the name could escape its directory
    """
    if not name or not name.strip():
        raise PathValidationError("Name cannot be empty")

    if name in (".", "..") or ".." in name:
        raise PathValidationError("Path traversal detected: '..' is not allowed")

    if not SAFE_NAME_PATTERN.match(name):
        raise PathValidationError(
            f"Invalid name '{name}'. Only alphanumeric characters, hyphens, "
            "underscores and dots are allowed."
        )

    return name


def validate_path_within_root(path: Path, root: Path) -> Path:
    """Validate that a path is safely within the storage root.

    Args:
        path: The path to validate
        root: The storage root path

    Returns:
        The resolved absolute Path

    Raises:
        PathValidationError: If the path escapes the root directory
    """
    full_path = path.resolve()
    root_resolved = root.resolve()

    try:
        full_path.relative_to(root_resolved)
    except ValueError:
        raise PathValidationError(f"Path escapes storage root: {path}")

    return full_path
