"""Domain error taxonomy.

Services raise these; the global exception handlers in
``huntboard.middleware.error_handler`` turn them into JSON responses.
"""

from __future__ import annotations


class DashboardError(Exception):
    """Base class for all domain errors."""

    status_code = 400

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class PreconditionFailed(DashboardError):
    """The operation's precondition does not hold (benign under races)."""

    status_code = 409


class SessionAlreadyOpen(PreconditionFailed):
    """A start was attempted while a session of the same type is open."""

    def __init__(self, session_id: str | None) -> None:
        super().__init__("A session is already open")
        self.session_id = session_id


class Forbidden(DashboardError):
    """Banned user writing, or a non-admin calling an admin operation."""

    status_code = 403


class NotFound(DashboardError):
    status_code = 404


class InvalidInput(DashboardError):
    status_code = 422


class TransientStoreError(DashboardError):
    """The database or pub/sub store is unreachable. Callers should retry."""

    status_code = 503
