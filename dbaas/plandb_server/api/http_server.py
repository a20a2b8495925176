"""
HTTP server implementation for PlanDB.

REST API over the plan store:

    POST   /v1/plans          create (201 + Location, ETag, Last-Modified)
    GET    /v1/plans/{id}     read, honoring If-Match / If-None-Match /
                              If-Modified-Since
    PATCH  /v1/plans/{id}     merge patch, If-Match required
    DELETE /v1/plans/{id}     cascaded delete, If-Match required
    GET    /v1/objects/{id}   one stored record of any plan member
    GET    /v1/health         store and publisher status

Invariants:
    - Plan store error kinds map to fixed status codes (STATUS_BY_CODE)
    - Unexpected exceptions are logged and answered with 500
    - JSON request/response format

How to change safely:
    - Keep status mapping in sync with plans.errors
    - Version the API if breaking changes are needed
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime
from functools import partial
from typing import Any
from urllib.parse import quote

from aiohttp import web

from ..config import HttpConfig
from ..plans.errors import (
    E_BAD_REQUEST,
    E_CONFLICT,
    E_NOT_FOUND,
    E_PRECONDITION,
    E_PRECONDITION_REQUIRED,
    DocumentValidationError,
    PlanStoreError,
)
from ..plans.store import PlanResult, PlanStore

logger = logging.getLogger(__name__)

STATUS_BY_CODE = {
    E_BAD_REQUEST: 400,
    E_CONFLICT: 409,
    E_NOT_FOUND: 404,
    E_PRECONDITION: 412,
    E_PRECONDITION_REQUIRED: 428,
}

ERROR_NAME_BY_CODE = {
    E_BAD_REQUEST: "bad_request",
    E_CONFLICT: "resource_exists",
    E_NOT_FOUND: "not_found",
    E_PRECONDITION: "etag_mismatch",
    E_PRECONDITION_REQUIRED: "precondition_required",
}


def create_http_app(store: PlanStore, config: HttpConfig | None = None) -> web.Application:
    """Create the HTTP application.

    Args:
        store: PlanStore serving all requests
        config: HTTP server configuration

    Returns:
        aiohttp Application instance
    """
    config = config or HttpConfig()

    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except PlanStoreError as e:
            return error_response(e)
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return web.json_response({"error": "server_error"}, status=500)

    app = web.Application(client_max_size=config.max_body_bytes, middlewares=[error_middleware])

    app.router.add_post("/v1/plans", partial(handle_create_plan, store=store))
    app.router.add_get("/v1/plans/{plan_id}", partial(handle_get_plan, store=store))
    app.router.add_patch("/v1/plans/{plan_id}", partial(handle_patch_plan, store=store))
    app.router.add_delete("/v1/plans/{plan_id}", partial(handle_delete_plan, store=store))
    app.router.add_get("/v1/objects/{object_id}", partial(handle_get_object, store=store))
    app.router.add_get("/v1/health", partial(handle_health, store=store))

    return app


def error_response(error: PlanStoreError) -> web.Response:
    """Map a plan store error to its JSON response."""
    status = STATUS_BY_CODE.get(error.code, 500)
    body: dict[str, Any] = {"error": ERROR_NAME_BY_CODE.get(error.code, "server_error")}

    if isinstance(error, DocumentValidationError):
        body = {"error": "validation_failed", "details": error.errors}
    elif error.code == E_CONFLICT:
        body["objectId"] = error.details.get("objectId")
    elif error.code == E_PRECONDITION:
        body["message"] = "Resource has been modified"
        body["currentEtag"] = error.details.get("currentEtag")
    elif error.code == E_PRECONDITION_REQUIRED:
        body["message"] = "If-Match header required"
    elif error.code == E_BAD_REQUEST:
        body["message"] = error.message

    return web.json_response(body, status=status)


def http_date(value: datetime) -> str:
    """Format a datetime as an RFC 7231 HTTP-date."""
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)


def version_headers(result: PlanResult) -> dict[str, str]:
    return {"ETag": result.etag, "Last-Modified": http_date(result.last_modified)}


def etag_listed(header: str, etag: str) -> bool:
    """Whether an If-None-Match style header names etag (or is "*")."""
    if header.strip() == "*":
        return True
    return etag in (candidate.strip() for candidate in header.split(","))


async def read_json_body(request: web.Request) -> Any:
    """Parse a JSON request body.

    Raises:
        web.HTTPUnsupportedMediaType: If the body is not declared as JSON
        web.HTTPBadRequest: If the body is not valid UTF-8 JSON
    """
    if request.content_type != "application/json":
        raise web.HTTPUnsupportedMediaType(
            text=json.dumps(
                {"error": "unsupported_media_type", "message": "Expected application/json"}
            ),
            content_type="application/json",
        )
    try:
        return await request.json()
    except ValueError:
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "invalid_json"}),
            content_type="application/json",
        )


async def handle_create_plan(request: web.Request, store: PlanStore) -> web.Response:
    """Handle POST /v1/plans - Create a plan."""
    body = await read_json_body(request)
    if not isinstance(body, dict):
        return web.json_response(
            {"error": "bad_request", "message": "Expected a JSON object"}, status=400
        )

    result = await store.create(body)

    headers = version_headers(result)
    headers["Location"] = f"/v1/plans/{quote(result.id, safe='')}"
    return web.json_response(result.document, status=201, headers=headers)


async def handle_get_plan(request: web.Request, store: PlanStore) -> web.Response:
    """Handle GET /v1/plans/{plan_id} - Conditional read."""
    plan_id = request.match_info["plan_id"]

    result = await store.get(plan_id)
    if result is None:
        return web.json_response({"error": "not_found"}, status=404)

    headers = version_headers(result)

    if_match = request.headers.get("If-Match")
    if if_match and not etag_listed(if_match, result.etag):
        return web.json_response(
            {"error": "etag_mismatch", "currentEtag": result.etag}, status=412
        )

    if_none_match = request.headers.get("If-None-Match")
    if if_none_match:
        if etag_listed(if_none_match, result.etag):
            return web.Response(status=304, headers=headers)
    else:
        if_modified_since = request.headers.get("If-Modified-Since")
        if if_modified_since and _not_modified_since(result.last_modified, if_modified_since):
            return web.Response(status=304, headers=headers)

    return web.json_response(result.document, headers=headers)


def _not_modified_since(last_modified: datetime, header: str) -> bool:
    try:
        since = parsedate_to_datetime(header)
    except (TypeError, ValueError):
        return False
    if since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)
    # HTTP dates have second resolution
    return last_modified.replace(microsecond=0) <= since


async def handle_patch_plan(request: web.Request, store: PlanStore) -> web.Response:
    """Handle PATCH /v1/plans/{plan_id} - Merge patch."""
    plan_id = request.match_info["plan_id"]
    patch = await read_json_body(request)

    if not isinstance(patch, dict) or not patch:
        return web.json_response(
            {"error": "empty_patch", "message": "Patch body cannot be empty"}, status=400
        )
    if "objectId" in patch and patch["objectId"] != plan_id:
        return web.json_response(
            {"error": "objectId_mismatch", "message": "Cannot change objectId via patch"},
            status=400,
        )

    result = await store.patch(plan_id, patch, request.headers.get("If-Match"))
    return web.json_response(result.document, headers=version_headers(result))


async def handle_delete_plan(request: web.Request, store: PlanStore) -> web.Response:
    """Handle DELETE /v1/plans/{plan_id} - Cascaded delete."""
    plan_id = request.match_info["plan_id"]

    await store.delete(plan_id, request.headers.get("If-Match"))
    return web.Response(status=204)


async def handle_get_object(request: web.Request, store: PlanStore) -> web.Response:
    """Handle GET /v1/objects/{object_id} - Read one stored record."""
    record = await store.get_object(request.match_info["object_id"])
    if record is None:
        return web.json_response({"error": "not_found"}, status=404)
    return web.json_response(record)


async def handle_health(request: web.Request, store: PlanStore) -> web.Response:
    """Handle GET /v1/health - Health check."""
    kv_healthy = await store.kv.health_check()

    if store.publisher is None:
        index_status = "disabled"
    else:
        index_status = "connected" if store.publisher.is_connected else "disconnected"

    result = {
        "healthy": kv_healthy,
        "kv": "connected" if kv_healthy else "disconnected",
        "index": index_status,
    }
    return web.json_response(result, status=200 if kv_healthy else 503)


async def start_http_server(store: PlanStore, config: HttpConfig) -> web.AppRunner:
    """Start serving on config.host:config.port.

    Returns:
        The runner; call ``await runner.cleanup()`` to stop serving
    """
    app = create_http_app(store, config)

    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, config.host, config.port)
    await site.start()

    logger.info(f"HTTP server running on http://{config.host}:{config.port}")
    return runner
