"""Exception handling for workflow web endpoints.

This module maps the engine's domain errors onto HTTP responses.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from litestar import MediaType, Response
from litestar.status_codes import HTTP_404_NOT_FOUND, HTTP_409_CONFLICT

from litestar_durable.exceptions import (
    InstanceQuarantinedError,
    WorkflowAlreadyCompletedError,
    WorkflowInstanceNotFoundError,
    WorkflowNotFoundError,
    WorkflowsError,
)

if TYPE_CHECKING:  # pragma: no cover
    from litestar import Request

__all__ = [
    "EXCEPTION_HANDLERS",
    "conflict_handler",
    "not_found_handler",
]


def _error_response(exc: WorkflowsError, status_code: int) -> Response[dict[str, str | int]]:
    return Response(
        content={"status_code": status_code, "detail": str(exc)},
        status_code=status_code,
        media_type=MediaType.JSON,
    )


def not_found_handler(_: Request, exc: WorkflowsError) -> Response[dict[str, str | int]]:
    """Return a 404 for unknown workflows and instances."""
    return _error_response(exc, HTTP_404_NOT_FOUND)


def conflict_handler(_: Request, exc: WorkflowsError) -> Response[dict[str, str | int]]:
    """Return a 409 for operations on finished or quarantined instances."""
    return _error_response(exc, HTTP_409_CONFLICT)


EXCEPTION_HANDLERS = {
    WorkflowNotFoundError: not_found_handler,
    WorkflowInstanceNotFoundError: not_found_handler,
    WorkflowAlreadyCompletedError: conflict_handler,
    InstanceQuarantinedError: conflict_handler,
}
"""Handlers the plugin registers unless the app already maps the exception."""
