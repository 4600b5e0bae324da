"""Decoding and filtering of GitHub webhook deliveries.

Only one kind of delivery is actionable: a ``release`` event with action
``published`` on the configured upstream repository. Everything else is
acknowledged and ignored so GitHub does not mark it as failed.
"""

from __future__ import annotations

import json
from typing import Any

from release_listener.exceptions import MalformedRequestError
from release_listener.logging import get_logger
from release_listener.models import ReleaseEvent

log = get_logger("release_listener.events")

EVENT_HEADER = "X-GitHub-Event"
RELEASE_EVENT = "release"
PUBLISHED_ACTION = "published"


def decode_envelope(body: bytes) -> dict[str, Any]:
    """Decode a webhook body into a JSON object.

    Raises:
        MalformedRequestError: If the body is not UTF-8 JSON or not an object.
    """
    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedRequestError(f"Body is not valid JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise MalformedRequestError("Body must be a JSON object")
    return payload


def parse_release_event(
    body: bytes,
    event_type: str | None,
    target_repo: str,
) -> ReleaseEvent | None:
    """Return the actionable release event in *body*, or None if it is ignored.

    Raises:
        MalformedRequestError: If the body cannot be decoded, or a release
            event lacks the fields needed to decide or act on it.
    """
    payload = decode_envelope(body)

    if event_type != RELEASE_EVENT:
        log.debug("webhook_ignored", reason="event_type", event_type=event_type)
        return None

    repository = payload.get("repository")
    full_name = repository.get("full_name") if isinstance(repository, dict) else None
    action = payload.get("action")
    if not isinstance(full_name, str) or not isinstance(action, str):
        raise MalformedRequestError("Release event without repository.full_name or action")

    if action != PUBLISHED_ACTION or full_name != target_repo:
        log.debug(
            "webhook_ignored",
            reason="not_actionable",
            event_type=event_type,
            repository=full_name,
            action=action,
        )
        return None

    try:
        return ReleaseEvent.from_dict(payload)
    except ValueError as exc:
        raise MalformedRequestError(str(exc)) from exc
