"""Client for the remote CMS, reached through the local session broker.

All calls go to the broker address; the broker injects authentication and
the anti-forgery token. Two response conventions are handled here:

- the legacy IDC service surface answers HTTP 200 and reports success with
  `LocalData.StatusCode == "0"`;
- the REST surface reports success with HTTP 200/201/202.
"""

import time
from typing import Any

import httpx
import logfire

from src.constants import (
    CONTENT_DELIVERY_API,
    CONTENT_MANAGEMENT_API,
    EXISTING_ITEMS_PAGE_SIZE,
    IDC_SERVICE_PATH,
    IDC_STATUS_OK,
    REST_SUCCESS_STATUS_CODES,
)
from src.services.errors import RemoteCallError


def idc_status(data: dict[str, Any]) -> str | None:
    """StatusCode of a legacy service response, None when absent."""
    local = data.get("LocalData") if isinstance(data, dict) else None
    if not isinstance(local, dict):
        return None
    status = local.get("StatusCode")
    return str(status) if status is not None else None


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.reason_phrase or str(response.status_code)
    if isinstance(data, dict):
        return str(
            data.get("detail")
            or data.get("title")
            or data.get("errorMessage")
            or data.get("error")
            or response.reason_phrase
        )
    return response.reason_phrase


class CMSClient:
    """Thin async wrapper over the broker's HTTP surface."""

    def __init__(self, http: httpx.AsyncClient):
        """
        Initialize the client.

        Args:
            http: Client whose base_url points at the session broker
        """
        self._http = http

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        **kwargs: Any,
    ) -> httpx.Response:
        start_time = time.time()
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            elapsed = time.time() - start_time
            logfire.error(
                "CMS request error",
                operation=operation,
                path=path,
                error=str(e),
                error_type=type(e).__name__,
                response_time_ms=elapsed * 1000,
            )
            raise RemoteCallError(
                f"failed to {operation}: {e}", operation=operation
            ) from e

        elapsed = time.time() - start_time
        logfire.info(
            "CMS request completed",
            operation=operation,
            method=method,
            path=path,
            status_code=response.status_code,
            response_time_ms=elapsed * 1000,
        )
        return response

    async def _rest(
        self, method: str, path: str, operation: str, **kwargs: Any
    ) -> httpx.Response:
        response = await self._request(method, path, operation, **kwargs)
        if response.status_code not in REST_SUCCESS_STATUS_CODES:
            message = _error_message(response)
            logfire.error(
                "CMS REST call failed",
                operation=operation,
                status_code=response.status_code,
                response_body=response.text[:500],
            )
            raise RemoteCallError(
                f"failed to {operation}: {message}",
                operation=operation,
                status_code=response.status_code,
            )
        return response

    async def _json(
        self, method: str, path: str, operation: str, **kwargs: Any
    ) -> Any:
        response = await self._rest(method, path, operation, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise RemoteCallError(
                f"failed to {operation}: invalid JSON response", operation=operation
            ) from e

    async def idc_get(self, service: str, operation: str, **params: Any) -> dict[str, Any]:
        """Call a legacy IDC service and return its decoded body.

        The StatusCode sentinel is left to the caller, which may need to tell
        specific statuses apart.
        """
        query = {"IdcService": service, "IsJson": "1", **params}
        data = await self._json("GET", IDC_SERVICE_PATH, operation, params=query)
        if not isinstance(data, dict):
            raise RemoteCallError(f"failed to {operation}: empty response", operation=operation)
        return data

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def get_tenant_config(self) -> dict[str, Any]:
        """LocalData of the tenant config (holds dUser and idcToken)."""
        data = await self.idc_get("SCS_GET_TENANT_CONFIG", "get tenant config")
        local = data.get("LocalData")
        return local if isinstance(local, dict) else {}

    async def get_csrf_token(self) -> str | None:
        data = await self._json(
            "GET", f"{CONTENT_MANAGEMENT_API}/token", "get CSRF token"
        )
        return data.get("token") if isinstance(data, dict) else None

    # ------------------------------------------------------------------
    # Site
    # ------------------------------------------------------------------

    async def get_site_info(self, site: str) -> dict[str, Any]:
        return await self.idc_get("SCS_GET_SITE_INFO_FILE", "get site info", siteId=site)

    async def get_structure(self, site: str) -> dict[str, Any]:
        data = await self.idc_get("SCS_GET_STRUCTURE", "get site structure", siteId=site)
        self.check_idc_status(data, "get site structure")
        return data

    async def get_page_data(self, site: str, page_ids: list[str]) -> dict[str, Any]:
        data = await self.idc_get(
            "SCS_GET_PAGE_DATA",
            "get page data",
            siteId=site,
            pageIds=",".join(page_ids),
        )
        self.check_idc_status(data, "get page data")
        return data

    @staticmethod
    def check_idc_status(data: dict[str, Any], operation: str) -> None:
        status = idc_status(data)
        if status is not None and status != IDC_STATUS_OK:
            message = data["LocalData"].get("StatusMessage") or ""
            raise RemoteCallError(
                f"failed to {operation}: {message}".rstrip(": "),
                operation=operation,
                status_code=status,
            )

    # ------------------------------------------------------------------
    # Content metadata
    # ------------------------------------------------------------------

    async def get_content_type(self, name: str) -> dict[str, Any]:
        return await self._json(
            "GET", f"{CONTENT_MANAGEMENT_API}/types/{name}", f"get content type {name}"
        )

    async def get_repository(self, repository_id: str) -> dict[str, Any]:
        return await self._json(
            "GET",
            f"{CONTENT_MANAGEMENT_API}/repositories/{repository_id}",
            f"get repository {repository_id}",
            params={"fields": "contentTypes"},
        )

    # ------------------------------------------------------------------
    # Published content
    # ------------------------------------------------------------------

    async def get_published_item(self, channel_token: str, item_id: str) -> list[dict[str, Any]]:
        data = await self._json(
            "GET",
            f"{CONTENT_DELIVERY_API}/items/{item_id}",
            "get content",
            params={"channelToken": channel_token},
        )
        return _as_item_list(data)

    async def query_published_items(
        self, channel_token: str, params: dict[str, str]
    ) -> list[dict[str, Any]]:
        data = await self._json(
            "GET",
            f"{CONTENT_DELIVERY_API}/items",
            "query content",
            params={**params, "channelToken": channel_token},
        )
        return _as_item_list(data)

    # ------------------------------------------------------------------
    # Managed content
    # ------------------------------------------------------------------

    async def query_management_items(
        self, q: str, channel_token: str | None = None
    ) -> list[dict[str, Any]]:
        """All items matching `q`, following offset paging."""
        items: list[dict[str, Any]] = []
        offset = 0
        while True:
            params: dict[str, Any] = {
                "q": q,
                "fields": "ALL",
                "limit": EXISTING_ITEMS_PAGE_SIZE,
                "offset": offset,
            }
            if channel_token:
                params["channelToken"] = channel_token
            data = await self._json(
                "GET", f"{CONTENT_MANAGEMENT_API}/items", "query items", params=params
            )
            if not isinstance(data, dict):
                return items
            page = data.get("items") or []
            items.extend(page)
            if not data.get("hasMore") or not page:
                return items
            offset += len(page)

    async def get_publish_info(self, item_id: str) -> list[dict[str, Any]]:
        data = await self._json(
            "GET",
            f"{CONTENT_MANAGEMENT_API}/items/{item_id}/publishInfo",
            "get item publish info",
        )
        return data.get("data") or [] if isinstance(data, dict) else []

    async def create_item(self, data_index: int) -> dict[str, Any]:
        """Create the item staged at `data_index` in the broker's run context."""
        return await self._json(
            "POST",
            f"{CONTENT_MANAGEMENT_API}/items",
            "create page index item",
            params={"dataIndex": data_index},
        )

    async def update_item(self, item_id: str, data_index: int) -> dict[str, Any]:
        """Update `item_id` with the payload staged at `data_index`."""
        return await self._json(
            "POST",
            f"{CONTENT_MANAGEMENT_API}/items/{item_id}",
            "update page index item",
            params={"dataIndex": data_index},
        )

    async def bulk_operation(
        self, operation: str, channel_id: str, item_ids: list[str]
    ) -> str:
        """Submit a bulk item operation and return its status id."""
        data = await self._json(
            "POST",
            f"{CONTENT_MANAGEMENT_API}/bulkItemsOperations",
            f"{operation} items",
            params={"operation": operation, "channelId": channel_id},
            json={"itemIds": item_ids},
        )
        status_id = data.get("statusId") if isinstance(data, dict) else None
        if not status_id:
            raise RemoteCallError(
                f"failed to submit {operation} job", operation=operation
            )
        return status_id

    async def get_operation_status(self, status_id: str) -> dict[str, Any]:
        return await self._json(
            "GET",
            f"{CONTENT_MANAGEMENT_API}/bulkItemsOperations/{status_id}",
            "get operation status",
        )


def _as_item_list(data: Any) -> list[dict[str, Any]]:
    """Item queries return {"items": [...]}; a get by id returns the item itself."""
    if not isinstance(data, dict):
        return []
    if "items" in data:
        return list(data.get("items") or [])
    return [data] if data.get("id") else []
