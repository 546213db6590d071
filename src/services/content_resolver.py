"""Resolution of content referenced by pages.

Two kinds of reference are resolved against the content delivery API:

- direct references (content ids placed on a page), coalesced into
  OR-predicate queries of at most `content_batch_size` ids per page;
- content list queries, one call each with the list's own filter.

A batch failure either aborts the run (`abort`, the default) or is recorded
in the result and the batch's items are left out (`skip`).
"""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Literal, Sequence

import logfire

from src.constants import CONTENT_BATCH_SIZE
from src.models.component_models import ContentListQuery, PageContentReference
from src.models.content_models import ContentItem
from src.services.cms_client import CMSClient
from src.services.errors import RemoteCallError
from src.services.site_crawler import batch_ids

ResolutionPolicy = Literal["abort", "skip"]


@dataclass
class ResolutionFailure:
    """A content batch that could not be resolved."""

    page_id: str
    batch: int
    content_ids: List[str]
    error: str


@dataclass
class ResolutionResult:
    """Resolved items per page plus the batches that failed."""

    items: Dict[str, List[ContentItem]] = field(default_factory=dict)
    failures: List[ResolutionFailure] = field(default_factory=list)

    @property
    def failed_page_ids(self) -> List[str]:
        return list(dict.fromkeys(f.page_id for f in self.failures))

    def add(self, page_id: str, items: Sequence[ContentItem]) -> None:
        self.items.setdefault(page_id, []).extend(items)


def id_query(content_ids: Sequence[str]) -> str:
    """OR-predicate matching any of `content_ids`."""
    return "(" + " or ".join(f'id eq "{content_id}"' for content_id in content_ids) + ")"


class ContentResolver:
    """Resolves content references through the delivery API."""

    def __init__(
        self,
        client: CMSClient,
        channel_token: str,
        batch_size: int = CONTENT_BATCH_SIZE,
        policy: ResolutionPolicy = "abort",
    ):
        self.client = client
        self.channel_token = channel_token
        self.batch_size = batch_size
        self.policy = policy

    async def _fetch_batch(self, content_ids: list[str]) -> list[ContentItem]:
        if len(content_ids) == 1:
            raw = await self.client.get_published_item(self.channel_token, content_ids[0])
        else:
            raw = await self.client.query_published_items(
                self.channel_token,
                {"q": id_query(content_ids), "fields": "ALL", "limit": str(len(content_ids))},
            )
        return [ContentItem.from_api(item) for item in raw if item.get("id")]

    async def _resolve_batch(
        self, page_id: str, batch: int, content_ids: list[str]
    ) -> tuple[str, list[ContentItem], ResolutionFailure | None]:
        try:
            items = await self._fetch_batch(content_ids)
        except RemoteCallError as e:
            error = RemoteCallError(
                f"failed to query content: {e}",
                operation="resolve content",
                page_id=page_id,
                batch=batch,
            )
            if self.policy == "abort":
                raise error from e
            logfire.warn(
                "Skipping unresolved content batch",
                page_id=page_id,
                batch=batch,
                content_count=len(content_ids),
                error=str(e),
            )
            return page_id, [], ResolutionFailure(page_id, batch, content_ids, str(error))
        return page_id, items, None

    async def resolve_items(
        self, references: Sequence[PageContentReference]
    ) -> ResolutionResult:
        """
        Resolve every content id referenced by each page.

        Args:
            references: Distinct content ids per page

        Returns:
            Items per page id, in reference order within each batch

        Raises:
            RemoteCallError: First failing batch, under the `abort` policy
        """
        tasks = []
        for reference in references:
            for number, batch in enumerate(
                batch_ids(reference.content_ids, self.batch_size), start=1
            ):
                tasks.append(self._resolve_batch(reference.page_id, number, batch))

        result = ResolutionResult()
        with logfire.span("resolve content items", batch_count=len(tasks)):
            for page_id, items, failure in await asyncio.gather(*tasks):
                result.add(page_id, items)
                if failure is not None:
                    result.failures.append(failure)
        return result

    async def resolve_lists(
        self, queries: Sequence[ContentListQuery]
    ) -> ResolutionResult:
        """Run each content list query; results stay with the originating page."""

        async def run(number: int, query: ContentListQuery):
            try:
                raw = await self.client.query_published_items(
                    self.channel_token, query.to_params()
                )
            except RemoteCallError as e:
                error = RemoteCallError(
                    f"failed to query content list: {e}",
                    operation="resolve content list",
                    page_id=query.page_id,
                    batch=number,
                )
                if self.policy == "abort":
                    raise error from e
                logfire.warn(
                    "Skipping failed content list",
                    page_id=query.page_id,
                    content_type=query.content_type,
                    error=str(e),
                )
                return query.page_id, [], ResolutionFailure(query.page_id, number, [], str(error))
            return query.page_id, [ContentItem.from_api(i) for i in raw if i.get("id")], None

        result = ResolutionResult()
        with logfire.span("resolve content lists", query_count=len(queries)):
            outcomes = await asyncio.gather(
                *(run(number, query) for number, query in enumerate(queries, start=1))
            )
        for page_id, items, failure in outcomes:
            result.add(page_id, items)
            if failure is not None:
                result.failures.append(failure)
        return result

    async def resolve(
        self,
        references: Sequence[PageContentReference],
        queries: Sequence[ContentListQuery] = (),
    ) -> ResolutionResult:
        """Resolve direct references and list queries into one per-page result."""
        direct = await self.resolve_items(references)
        lists = await self.resolve_lists(queries)
        for page_id, items in lists.items.items():
            direct.add(page_id, items)
        direct.failures.extend(lists.failures)
        return direct
