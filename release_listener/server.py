"""HTTP listener: aiohttp app receiving GitHub webhook deliveries.

Endpoints:
    POST /webhook   Verify, filter and act on a delivery
    GET  /health    Liveness probe, no processing

Any other method or path answers 404.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
from aiohttp import web
from aiohttp.typedefs import Handler

from release_listener.auth import SIGNATURE_HEADER, is_well_formed_signature, verify_signature
from release_listener.events import EVENT_HEADER, parse_release_event
from release_listener.exceptions import (
    AuthenticationError,
    ListenerError,
    MalformedRequestError,
    PipelineBusyError,
    PipelineError,
)
from release_listener.executor import PipelineExecutor
from release_listener.logging import get_logger

if TYPE_CHECKING:
    from release_listener.config import Settings

log = get_logger("release_listener.server")

DELIVERY_HEADER = "X-GitHub-Delivery"
RETRY_AFTER_SECONDS = 60

PROCESSED_TEXT = "Webhook processed successfully"
IGNORED_TEXT = "Event ignored"

EXECUTOR_KEY = web.AppKey("executor", PipelineExecutor)
SECRET_KEY = web.AppKey("secret", str)
UPSTREAM_REPO_KEY = web.AppKey("upstream_repo", str)


@web.middleware
async def not_found_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Answer unknown paths and unsupported methods with a plain 404."""
    try:
        return await handler(request)
    except (web.HTTPNotFound, web.HTTPMethodNotAllowed):
        return web.Response(status=404, text="Not Found")


async def handle_health(request: web.Request) -> web.Response:
    return web.Response(text="OK")


async def handle_webhook(request: web.Request) -> web.Response:
    """Run one delivery through verification, filtering and the pipeline."""
    delivery_id = request.headers.get(DELIVERY_HEADER, "unknown")
    with structlog.contextvars.bound_contextvars(delivery_id=delivery_id):
        try:
            text = await _process_delivery(request)
        except ListenerError as exc:
            return _error_response(exc)
        except web.HTTPException:
            # Oversized bodies surface here as 413 from request.read()
            raise
        except Exception:
            log.exception("webhook_unexpected_error")
            return web.Response(status=500, text="Internal Server Error")
        return web.Response(text=text)


async def _process_delivery(request: web.Request) -> str:
    body = await request.read()

    signature = request.headers.get(SIGNATURE_HEADER)
    if not signature:
        raise AuthenticationError("No signature provided")
    if not is_well_formed_signature(signature):
        raise MalformedRequestError("Malformed signature header")
    if not verify_signature(body, request.app[SECRET_KEY], signature):
        raise AuthenticationError("Invalid signature")

    event = parse_release_event(
        body,
        request.headers.get(EVENT_HEADER),
        request.app[UPSTREAM_REPO_KEY],
    )
    if event is None:
        return IGNORED_TEXT

    log.info(
        "release_detected",
        repository=event.repository,
        version=event.version,
        assets=len(event.assets),
    )
    result = await request.app[EXECUTOR_KEY].apply_release(event.version, event.assets)
    if not result.succeeded:
        raise PipelineError(result.error or "Pipeline failed", result)
    return PROCESSED_TEXT


def _error_response(exc: ListenerError) -> web.Response:
    if isinstance(exc, PipelineError):
        log.error(
            "webhook_pipeline_failed",
            error=str(exc),
            result=exc.result.to_dict() if exc.result else None,
        )
    else:
        log.warning("webhook_rejected", status=exc.status, error=str(exc))

    headers: dict[str, str] = {}
    if isinstance(exc, PipelineBusyError):
        headers["Retry-After"] = str(RETRY_AFTER_SECONDS)
    return web.Response(status=exc.status, text=exc.reason, headers=headers)


def create_app(
    executor: PipelineExecutor,
    secret: str,
    upstream_repo: str,
    max_body_bytes: int = 5 * 1024 * 1024,
) -> web.Application:
    """Build the aiohttp application."""
    app = web.Application(
        middlewares=[not_found_middleware],
        client_max_size=max_body_bytes,
    )
    app[EXECUTOR_KEY] = executor
    app[SECRET_KEY] = secret
    app[UPSTREAM_REPO_KEY] = upstream_repo

    app.router.add_post("/webhook", handle_webhook)
    app.router.add_get("/health", handle_health, allow_head=False)
    return app


async def run_server(settings: Settings) -> None:
    """Serve until cancelled."""
    executor = PipelineExecutor.from_settings(settings)
    app = create_app(
        executor=executor,
        secret=settings.github_secret.get_secret_value(),
        upstream_repo=settings.upstream_repo,
        max_body_bytes=settings.max_body_bytes,
    )

    script = Path(settings.project_dir) / settings.update_script
    if not script.exists():
        log.warning("update_script_missing", path=str(script))

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, settings.host, settings.port)
    await site.start()

    log.info(
        "release_listener_started",
        host=settings.host,
        port=settings.port,
        upstream_repo=settings.upstream_repo,
        debug=settings.debug,
    )
    try:
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()
        log.info("release_listener_stopped")
