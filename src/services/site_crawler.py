"""Site structure and page data crawling."""

import asyncio
from typing import Any, Iterable, Iterator, Sequence, TypeVar

import logfire

from src.constants import IDC_STATUS_OK, IDC_STATUS_SITE_NOT_FOUND, PAGE_DATA_BATCH_SIZE
from src.models.component_models import (
    ComponentKind,
    ContentListQuery,
    PageContentReference,
)
from src.models.content_models import ContentType, Repository
from src.models.site_models import Page, PageData, SiteInfo
from src.services.cms_client import CMSClient, idc_status
from src.services.errors import NoPagesFoundError, RemoteCallError, SiteNotFoundError

T = TypeVar("T")


def batch_ids(ids: Sequence[T], size: int) -> Iterator[list[T]]:
    """Split `ids` into consecutive batches of at most `size` items."""
    if size < 1:
        raise ValueError("batch size must be positive")
    for start in range(0, len(ids), size):
        yield list(ids[start : start + size])


def get_page_content_types(page_data: Iterable[PageData]) -> list[str]:
    """Distinct content types referenced by content lists and component content."""
    types: list[str] = []
    for data in page_data:
        for instance in data.component_instances:
            for type_name in instance.content_types:
                if type_name not in types:
                    types.append(type_name)
    return types


def get_page_content_ids(page_data: Iterable[PageData]) -> list[PageContentReference]:
    """Per page, the distinct content ids referenced by its components.

    Pages without any reference are left out.
    """
    references = []
    for data in page_data:
        reference = PageContentReference(page_id=data.page_id)
        for instance in data.component_instances:
            for content_id in instance.content_ids:
                reference.add(content_id)
        if reference.content_ids:
            references.append(reference)
    return references


def get_page_content_list_queries(
    page_data: Iterable[PageData], index_content_type: str | None = None
) -> list[ContentListQuery]:
    """Content list queries found on pages.

    Lists of the page index type itself are skipped.
    """
    queries = []
    for data in page_data:
        for instance in data.component_instances:
            if instance.kind is not ComponentKind.CONTENT_LIST:
                continue
            content_type = instance.content_types[0] if instance.content_types else None
            if not content_type or content_type == index_content_type:
                continue
            queries.append(
                ContentListQuery(
                    page_id=data.page_id,
                    content_type=content_type,
                    limit=_as_int(instance.data.get("maxResults")),
                    offset=_as_int(instance.data.get("firstItem")),
                    order_by=instance.data.get("sortOrder") or None,
                    query_string=instance.data.get("queryString") or None,
                )
            )
    return queries


def _as_int(value: Any) -> int | None:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def default_detail_page(pages: Sequence[Page]) -> Page | None:
    """First detail page met in a depth-first walk from the root page."""
    by_id = {page.id: page for page in pages}
    roots = [page for page in pages if page.is_root]
    stack = list(reversed(roots))
    seen: set[str] = set()
    while stack:
        page = stack.pop()
        if page.id in seen:
            continue
        seen.add(page.id)
        if page.is_detail_page:
            return page
        children = [by_id[c] for c in page.children if c in by_id]
        stack.extend(reversed(children))
    return None


def page_depth(page: Page) -> int:
    return page.page_url.count("/")


class SiteCrawler:
    """Reads site metadata, structure and page data through the broker."""

    def __init__(self, client: CMSClient, page_data_batch_size: int = PAGE_DATA_BATCH_SIZE):
        self.client = client
        self.page_data_batch_size = page_data_batch_size

    async def get_site(self, site_name: str) -> SiteInfo:
        """
        Fetch site metadata.

        Raises:
            SiteNotFoundError: The remote reports the site does not exist
            RemoteCallError: Any other failure
        """
        data = await self.client.get_site_info(site_name)
        status = idc_status(data)
        if status == IDC_STATUS_SITE_NOT_FOUND:
            raise SiteNotFoundError(site_name)
        if status is not None and status != IDC_STATUS_OK:
            self.client.check_idc_status(data, f"get site {site_name}")

        properties = (data.get("base") or {}).get("properties")
        if not isinstance(properties, dict):
            raise RemoteCallError(
                f"failed to get site {site_name}: no site properties",
                operation="get site info",
            )
        site = SiteInfo.from_properties(site_name, properties)
        logfire.info(
            "Site loaded",
            site=site_name,
            repository_id=site.repository_id,
            channel_id=site.channel_id,
            default_language=site.default_language,
        )
        return site

    async def get_pages(self, site_name: str) -> list[Page]:
        """Every page of the site structure, in structure order."""
        data = await self.client.get_structure(site_name)
        raw_pages = (data.get("base") or {}).get("pages") or []
        pages = [Page.from_api(p) for p in raw_pages if isinstance(p, dict) and p.get("id") is not None]
        if not pages:
            raise NoPagesFoundError(site_name)
        logfire.info("Site structure loaded", site=site_name, page_count=len(pages))
        return pages

    async def get_page_data(
        self, site_name: str, page_ids: Sequence[str]
    ) -> dict[str, PageData]:
        """
        Fetch component data for `page_ids`.

        Batches are issued concurrently; the result holds exactly one entry
        per requested id, empty when the remote returned nothing for it.
        """
        batches = list(batch_ids(list(dict.fromkeys(page_ids)), self.page_data_batch_size))

        async def fetch(batch_number: int, batch: list[str]) -> dict[str, Any]:
            try:
                return await self.client.get_page_data(site_name, batch)
            except RemoteCallError as e:
                raise RemoteCallError(
                    f"failed to get page data: {e}",
                    operation="get page data",
                    batch=batch_number,
                ) from e

        with logfire.span("get page data", site=site_name, batch_count=len(batches)):
            results = await asyncio.gather(
                *(fetch(number, batch) for number, batch in enumerate(batches, start=1))
            )

        merged: dict[str, PageData] = {}
        for batch, result in zip(batches, results):
            for page_id in batch:
                entry = result.get(page_id) if isinstance(result, dict) else None
                base = entry.get("base") if isinstance(entry, dict) else None
                merged[page_id] = PageData.from_api(page_id, base)
        return merged

    async def get_content_type(self, name: str) -> ContentType:
        return ContentType.from_api(await self.client.get_content_type(name))

    async def get_repository(self, repository_id: str) -> Repository:
        return Repository.from_api(await self.client.get_repository(repository_id))
