"""Domain error hierarchy.

Services raise these; a single exception handler registered in
``app.main`` turns them into the ``{success: false, message}`` envelope.
Each class carries the HTTP status it maps to so the handler stays a
lookup instead of an if-chain.
"""

from __future__ import annotations

from typing import Any


class TrackerError(Exception):
    """Base class for every anticipated failure in the service."""

    status_code = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(TrackerError):
    """Bad input shape or range. Raised before any mutation."""

    status_code = 400

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message, {"field": field} if field else None)
        self.field = field


class AuthenticationError(TrackerError):
    """Missing, invalid, or expired credentials."""

    status_code = 401


class AuthorizationError(TrackerError):
    """Wrong role, or not the owner of the resource."""

    status_code = 403


class NotFoundError(TrackerError):
    """Resource absent, or outside the caller's organization."""

    status_code = 404


class StateConflictError(TrackerError):
    """A transition guard failed. ``current_status`` is the persisted status."""

    status_code = 409

    def __init__(self, message: str, *, current_status: str) -> None:
        super().__init__(message, {"currentStatus": current_status})
        self.current_status = current_status


class QuotaExceededError(TrackerError):
    """Seat or storage limit reached. Always signals ``upgradeRequired``."""

    status_code = 403
    upgrade_required = True

    def __init__(self, message: str, *, resource: str) -> None:
        super().__init__(message, {"resource": resource})
        self.resource = resource


class StorageBackendError(TrackerError):
    """Upload or download against the storage backend failed."""

    status_code = 502
