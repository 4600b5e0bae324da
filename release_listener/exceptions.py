"""Error taxonomy for webhook deliveries and pipeline runs.

Each error carries the HTTP status and the short reason string returned to
the caller. Diagnostic detail belongs in the logs, never in ``reason``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from release_listener.models import PipelineResult


class ListenerError(Exception):
    """Base class for errors that terminate a single delivery."""

    status: int = 500
    reason: str = "Internal Server Error"


class AuthenticationError(ListenerError):
    """Signature header missing or not matching the body."""

    status = 401
    reason = "Unauthorized"


class MalformedRequestError(ListenerError):
    """Body or headers cannot be decoded into a usable event."""

    status = 400
    reason = "Bad Request"


class PipelineError(ListenerError):
    """A pipeline run failed; the run result is attached for logging."""

    status = 500
    reason = "Internal Server Error"

    def __init__(self, message: str, result: PipelineResult | None = None) -> None:
        super().__init__(message)
        self.result = result


class PipelineBusyError(ListenerError):
    """Too many runs are already waiting for the pipeline lock."""

    status = 503
    reason = "Service Busy"
