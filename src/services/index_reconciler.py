"""Reconciliation of generated page index records with existing remote items."""

import asyncio
from typing import Sequence

import logfire

from src.models.index_models import (
    ExistingIndexItem,
    PageIndexRecord,
    ReconciliationPlan,
    ReconciliationResult,
)
from src.models.session_models import RunContext
from src.models.site_models import SiteInfo
from src.services.cms_client import CMSClient
from src.services.errors import RemoteCallError
from src.services.publish_monitor import PublishMonitor


def plan_reconciliation(
    records: Sequence[PageIndexRecord],
    existing: Sequence[ExistingIndexItem],
    site: str,
) -> ReconciliationPlan:
    """
    Classify every record as a create or an update.

    A record updates the first existing item with the same (site, pageid);
    the update carries the freshly generated fields. Existing items of
    `site` that no record claims are stale.
    """
    by_key: dict[tuple, ExistingIndexItem] = {}
    for item in existing:
        by_key.setdefault(item.key, item)

    plan = ReconciliationPlan()
    claimed: set[str] = set()
    for record in records:
        item = by_key.get(record.key)
        if item is None or item.id in claimed:
            plan.to_create.append(record)
        else:
            claimed.add(item.id)
            plan.to_update.append(item.with_record(record))

    plan.to_remove = [
        item for item in existing if item.key[0] == site and item.id not in claimed
    ]
    return plan


def _published_to(publish_info: list[dict], channel_id: str) -> bool:
    for entry in publish_info:
        channel = entry.get("channel")
        if isinstance(channel, dict):
            channel = channel.get("id")
        if channel == channel_id:
            return True
    return False


class IndexReconciler:
    """Applies a reconciliation plan through the session broker."""

    def __init__(
        self,
        client: CMSClient,
        context: RunContext,
        site: SiteInfo,
        content_type: str,
        monitor: PublishMonitor,
    ):
        self.client = client
        self.context = context
        self.site = site
        self.content_type = content_type
        self.monitor = monitor

    async def fetch_existing(self) -> list[ExistingIndexItem]:
        """All page index items visible through the site's channel."""
        raw = await self.client.query_management_items(
            f'type eq "{self.content_type}"', channel_token=self.site.channel_token
        )
        items = [ExistingIndexItem.from_api(i) for i in raw if i.get("id")]
        logfire.info(
            "Existing page index items loaded",
            content_type=self.content_type,
            item_count=len(items),
        )
        return items

    async def _create(self, index: int, record: PageIndexRecord) -> str:
        try:
            created = await self.client.create_item(index)
        except RemoteCallError as e:
            raise RemoteCallError(
                f"failed to create page index item for page {record.pagename}: {e}",
                operation="create page index item",
                page_id=record.pageid,
            ) from e
        item_id = created.get("id")
        if not item_id:
            raise RemoteCallError(
                f"failed to create page index item for page {record.pagename}: no id returned",
                operation="create page index item",
                page_id=record.pageid,
            )
        # The new item must be in the channel before anything can publish it
        await self.monitor.run("addChannels", self.site.channel_id, [item_id])
        logfire.info("Page index item created", page=record.pagename, item_id=item_id)
        return item_id

    async def _update(self, index: int, item: ExistingIndexItem) -> str:
        try:
            await self.client.update_item(item.id, index)
        except RemoteCallError as e:
            raise RemoteCallError(
                f"failed to update page index item for page {item.pagename}: {e}",
                operation="update page index item",
                page_id=item.fields.get("pageid"),
            ) from e
        logfire.info("Page index item updated", page=item.pagename, item_id=item.id)
        return item.id

    async def remove_stale(self, items: Sequence[ExistingIndexItem]) -> list[str]:
        """Unpublish (where published) and remove stale items from the channel."""
        if not items:
            return []
        item_ids = [item.id for item in items]
        publish_info = await asyncio.gather(
            *(self.client.get_publish_info(item_id) for item_id in item_ids)
        )
        published = [
            item_id
            for item_id, info in zip(item_ids, publish_info)
            if _published_to(info, self.site.channel_id)
        ]
        if published:
            await self.monitor.run("unpublish", self.site.channel_id, published)
        await self.monitor.run("removeChannels", self.site.channel_id, item_ids)
        logfire.info(
            "Stale page index items removed",
            item_count=len(item_ids),
            unpublished_count=len(published),
        )
        return item_ids

    async def apply(self, plan: ReconciliationPlan) -> ReconciliationResult:
        """
        Stage the plan in the run context, then create, update and remove.

        Creates (each followed by its channel association) all complete
        before any update is issued.
        """
        self.context.stage(
            content_type=self.content_type,
            repository_id=self.site.repository_id,
            language=self.site.default_language,
            to_create=plan.to_create,
            to_update=plan.to_update,
        )

        result = ReconciliationResult()
        with logfire.span("create page index items", count=len(plan.to_create)):
            result.created_ids = list(
                await asyncio.gather(
                    *(self._create(i, record) for i, record in enumerate(plan.to_create))
                )
            )
        with logfire.span("update page index items", count=len(plan.to_update)):
            result.updated_ids = list(
                await asyncio.gather(
                    *(self._update(i, item) for i, item in enumerate(plan.to_update))
                )
            )
        with logfire.span("remove stale page index items", count=len(plan.to_remove)):
            result.removed_ids = await self.remove_stale(plan.to_remove)
        return result
