"""Session broker endpoints.

GET requests under `documents/` and `content/` are forwarded to the remote
server with the run's credentials injected. Mutating calls are not forwarded
verbatim: each supported POST route builds a fixed remote request shape from
the run's staged payloads and session tokens.
"""

import logging
from typing import Any

import httpx
from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from src.constants import (
    CONTENT_MANAGEMENT_API,
    FORWARDED_PATH_PREFIXES,
    IDC_SERVICE_PATH,
    ITEM_DESCRIPTION_MAX_CHARS,
    REST_SUCCESS_STATUS_CODES,
)
from src.models.session_models import RunContext

logger = logging.getLogger(__name__)
router = APIRouter()

BULK_OPERATIONS = ("addChannels", "removeChannels", "publish", "unpublish")

# Hop-by-hop headers plus the ones httpx already consumed while decoding
_DROPPED_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
        "content-encoding",
        "content-length",
    }
)


def fix_headers(raw_headers: list[tuple[bytes, bytes]]) -> list[tuple[str, str]]:
    """
    Rewrite upstream response headers for the local client.

    `ETag-*` headers get their canonical capitalization back and every
    forwarded header name is listed in `Access-Control-Expose-Headers`.
    """
    headers: list[tuple[str, str]] = []
    names: list[str] = []
    for raw_name, raw_value in raw_headers:
        name = raw_name.decode("latin-1")
        lowered = name.lower()
        if lowered in _DROPPED_HEADERS or lowered == "access-control-expose-headers":
            continue
        if lowered.startswith("etag-"):
            name = "ETag-" + name[5:]
        headers.append((name, raw_value.decode("latin-1")))
        if name not in names:
            names.append(name)
    if names:
        headers.append(("Access-Control-Expose-Headers", ", ".join(names)))
    return headers


def _relay(upstream_response: httpx.Response) -> Response:
    response = Response(
        content=upstream_response.content, status_code=upstream_response.status_code
    )
    for name, value in fix_headers(upstream_response.headers.raw):
        response.headers.append(name, value)
    return response


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _context(request: Request) -> RunContext:
    return request.app.state.run_context


def _upstream(request: Request) -> httpx.AsyncClient:
    return request.app.state.upstream


def _trace_headers(request: Request) -> dict[str, str]:
    correlation_id = getattr(request.state, "correlation_id", None)
    return {"X-Correlation-ID": correlation_id} if correlation_id else {}


def _csrf_headers(request: Request) -> dict[str, str]:
    context = _context(request)
    return {
        **_trace_headers(request),
        "X-CSRF-TOKEN": context.csrf_token or "",
        "X-REQUESTED-WITH": "XMLHttpRequest",
    }


def _data_index(request: Request) -> int | None:
    try:
        return int(request.query_params.get("dataIndex", ""))
    except ValueError:
        return None


async def _send(request: Request, method: str, url: str, **kwargs: Any) -> Response:
    try:
        upstream_response = await _upstream(request).request(method, url, **kwargs)
    except httpx.HTTPError as e:
        logger.error("Upstream %s %s failed: %s", method, url, e)
        return _error(502, f"upstream request failed: {e}")
    return _relay(upstream_response)


def create_item_payload(record_index: int, context: RunContext) -> dict[str, Any] | None:
    """Remote create-item body for the staged record at `record_index`."""
    record = context.staged_record(record_index)
    if record is None:
        return None
    description = f"Page index for {record.item_name}"
    if len(description) > ITEM_DESCRIPTION_MAX_CHARS:
        description = description[: ITEM_DESCRIPTION_MAX_CHARS - 1]
    payload: dict[str, Any] = {
        "name": record.item_name,
        "description": description,
        "type": context.content_type,
        "repositoryId": context.repository_id,
        "fields": record.model_dump(),
    }
    if context.language:
        payload["language"] = context.language
        payload["translatable"] = True
    return payload


def bulk_operation_payload(
    operation: str, channel_id: str, item_ids: list[str]
) -> dict[str, Any]:
    """Remote bulk-operation body acting on `item_ids` for one channel."""
    return {
        "q": " or ".join(f'id eq "{item_id}"' for item_id in item_ids),
        "operations": {operation: {"channels": [{"id": channel_id}]}},
    }


def status_id_from_location(location: str | None) -> str | None:
    if not location:
        return None
    return location.rstrip("/").rsplit("/", 1)[-1] or None


@router.get("/{path:path}")
async def forward_get(path: str, request: Request) -> Response:
    """Forward a read-only request to the remote server."""
    if not path.startswith(FORWARDED_PATH_PREFIXES):
        logger.warning("Rejected GET request: /%s", path)
        return _error(404, f"GET request not supported: /{path}")

    url = "/" + path
    if request.url.query:
        url = f"{url}?{request.url.query}"
    return await _send(request, "GET", url, headers=_trace_headers(request))


@router.post(f"{CONTENT_MANAGEMENT_API}/items")
async def create_item(request: Request) -> Response:
    """Create the staged page index record addressed by `dataIndex`."""
    index = _data_index(request)
    payload = create_item_payload(index, _context(request)) if index is not None else None
    if payload is None:
        return _error(400, f"no staged record at dataIndex {request.query_params.get('dataIndex')}")

    logger.info("Creating item %s", payload["name"])
    return await _send(
        request,
        "POST",
        f"{CONTENT_MANAGEMENT_API}/items",
        json=payload,
        headers=_csrf_headers(request),
    )


@router.post(f"{CONTENT_MANAGEMENT_API}/items/{{item_id}}")
async def update_item(item_id: str, request: Request) -> Response:
    """Replace an existing item with the staged update addressed by `dataIndex`."""
    index = _data_index(request)
    item = _context(request).staged_update(index) if index is not None else None
    if item is None:
        return _error(400, f"no staged update at dataIndex {request.query_params.get('dataIndex')}")
    if item.id != item_id:
        return _error(400, f"staged update {index} is for item {item.id}, not {item_id}")

    logger.info("Updating item %s", item_id)
    return await _send(
        request,
        "PUT",
        f"{CONTENT_MANAGEMENT_API}/items/{item_id}",
        json=item.update_payload(),
        headers=_csrf_headers(request),
    )


@router.post(f"{CONTENT_MANAGEMENT_API}/bulkItemsOperations")
async def bulk_items_operation(request: Request) -> Response:
    """Submit a channel or publish operation; answers with the job status id."""
    operation = request.query_params.get("operation", "")
    channel_id = request.query_params.get("channelId", "")
    if operation not in BULK_OPERATIONS:
        return _error(400, f"operation not supported: {operation}")
    if not channel_id:
        return _error(400, "channelId is required")

    try:
        body = await request.json()
    except ValueError:
        return _error(400, "invalid JSON body")
    item_ids = [str(i) for i in (body or {}).get("itemIds") or []]
    if not item_ids:
        return _error(400, "itemIds is required")

    try:
        upstream_response = await _upstream(request).post(
            f"{CONTENT_MANAGEMENT_API}/bulkItemsOperations",
            json=bulk_operation_payload(operation, channel_id, item_ids),
            headers=_csrf_headers(request),
        )
    except httpx.HTTPError as e:
        logger.error("Bulk %s failed: %s", operation, e)
        return _error(502, f"upstream request failed: {e}")

    if upstream_response.status_code not in REST_SUCCESS_STATUS_CODES:
        return _relay(upstream_response)

    status_id = status_id_from_location(upstream_response.headers.get("location"))
    logger.info("Bulk %s submitted for %d items: %s", operation, len(item_ids), status_id)
    return JSONResponse({"statusId": status_id}, status_code=upstream_response.status_code)


@router.post(IDC_SERVICE_PATH)
async def legacy_service(request: Request) -> Response:
    """Legacy form POST with the session's idcToken injected."""
    service = request.query_params.get("IdcService")
    if service != "SCS_ACTIVATE_COMPONENT":
        return _error(400, f"POST request not supported: {service}")

    item = request.query_params.get("item")
    if not item:
        return _error(400, "item is required")

    context = _context(request)
    return await _send(
        request,
        "POST",
        f"{IDC_SERVICE_PATH}?IdcService={service}",
        data={"idcToken": context.idc_token or "", "item": item, "IsJson": "1"},
        headers=_trace_headers(request),
    )
