"""Error kinds raised by the StartIn service layer.

Services raise these; the HTTP app and the MCP server translate them at the
boundary (status codes / ``{"error": ...}`` dicts).
"""
from __future__ import annotations


class StartinError(Exception):
    """Base class for domain errors."""

    status_code = 400


class AuthorizationError(StartinError):
    """Actor lacks permission for the requested operation."""

    status_code = 403


class NotFoundError(StartinError):
    """Referenced startup (or other entity) does not exist or is not discoverable."""

    status_code = 404

    def __init__(self, label: str, entity_id: str | None = None):
        message = f"{label} not found" if entity_id is None else f"{label} {entity_id} not found"
        super().__init__(message)
        self.label = label
        self.entity_id = entity_id


class ConfigurationError(StartinError):
    """Unrecognized sort key, direction, or filter shape."""

    status_code = 400


class ConflictError(StartinError):
    """A concurrent write got there first."""

    status_code = 409
