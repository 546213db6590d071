"""Site indexing pipeline.

Stages run strictly in order: site and schema checks, crawl, content
resolution, index generation, reconciliation and, optionally, publish.
Within a stage, remote calls are issued concurrently.
"""

import asyncio
from dataclasses import dataclass, field
from typing import List

import logfire
import typer

from src.config import Settings, get_settings
from src.models.content_models import ContentType
from src.models.session_models import RunContext
from src.models.site_models import ServerConfig, SiteInfo
from src.services.cms_client import CMSClient
from src.services.content_resolver import ContentResolver
from src.services.errors import IndexPipelineError, RemoteCallError, SchemaValidationError
from src.services.index_reconciler import IndexReconciler, plan_reconciliation
from src.services.index_schema import get_type_text_fields, validate_page_index_type
from src.services.page_index import generate_page_index
from src.services.publish_monitor import PublishMonitor
from src.services.session_broker import open_session
from src.services.site_crawler import (
    SiteCrawler,
    get_page_content_ids,
    get_page_content_list_queries,
)


@dataclass
class IndexRunSummary:
    """What an indexing run did."""

    site: str
    record_count: int = 0
    created_ids: List[str] = field(default_factory=list)
    updated_ids: List[str] = field(default_factory=list)
    removed_ids: List[str] = field(default_factory=list)
    unresolved_page_ids: List[str] = field(default_factory=list)
    published: bool = False


def require_channel_token(site: SiteInfo) -> str:
    token = site.channel_token
    if not token:
        raise IndexPipelineError(f"site {site.name} has no channel access token")
    return token


class IndexPipeline:
    """Builds and reconciles the page index of one site."""

    def __init__(self, client: CMSClient, context: RunContext, settings: Settings):
        self.client = client
        self.context = context
        self.settings = settings
        self.crawler = SiteCrawler(client, settings.page_data_batch_size)
        self.monitor = PublishMonitor(client, settings.publish_poll_interval_seconds)

    async def load_index_type(self, site: SiteInfo, content_type: str) -> ContentType:
        """Fetch and validate the page index content type against the site repository."""
        try:
            index_type = await self.crawler.get_content_type(content_type)
        except RemoteCallError as e:
            raise SchemaValidationError(f"content type {content_type} does not exist: {e}") from e
        if not site.repository_id:
            raise SchemaValidationError(f"site {site.name} has no repository")
        repository = await self.crawler.get_repository(site.repository_id)
        validate_page_index_type(index_type, repository)
        return index_type

    async def load_content_types(self, names: List[str]) -> List[ContentType]:
        return list(await asyncio.gather(*(self.crawler.get_content_type(n) for n in names)))

    async def run(self, site_name: str, content_type: str, publish: bool = False) -> IndexRunSummary:
        summary = IndexRunSummary(site=site_name)

        site = await self.crawler.get_site(site_name)
        channel_token = require_channel_token(site)
        typer.echo(" - get site info")

        await self.load_index_type(site, content_type)
        typer.echo(f" - validate type {content_type}")

        pages = await self.crawler.get_pages(site_name)
        typer.echo(f" - query site structure ({len(pages)} pages)")

        page_data = await self.crawler.get_page_data(site_name, [p.id for p in pages])
        typer.echo(" - query page data")

        resolver = ContentResolver(
            self.client,
            channel_token,
            batch_size=self.settings.content_batch_size,
            policy=self.settings.content_resolution_policy,
        )
        resolution = await resolver.resolve(
            get_page_content_ids(page_data.values()),
            get_page_content_list_queries(page_data.values(), content_type),
        )
        item_count = sum(len(items) for items in resolution.items.values())
        typer.echo(f" - query content ({item_count} items)")
        summary.unresolved_page_ids = resolution.failed_page_ids
        for failure in resolution.failures:
            typer.echo(f"WARNING: {failure.error}", err=True)

        item_types = sorted(
            {item.type for items in resolution.items.values() for item in items if item.type}
        )
        type_text_fields = get_type_text_fields(await self.load_content_types(item_types))

        records = generate_page_index(
            site_name, pages, page_data, resolution.items, type_text_fields
        )
        summary.record_count = len(records)
        typer.echo(f" - generate page index ({len(records)} records)")

        reconciler = IndexReconciler(self.client, self.context, site, content_type, self.monitor)
        existing = await reconciler.fetch_existing()
        plan = plan_reconciliation(records, existing, site_name)
        typer.echo(f" - will create {len(plan.to_create)} page index items")
        typer.echo(f" - will update {len(plan.to_update)} page index items")
        if plan.is_empty:
            typer.echo(" - no page for indexing")
        if plan.to_remove:
            typer.echo(f" - will remove {len(plan.to_remove)} page index items")

        result = await reconciler.apply(plan)
        summary.created_ids = result.created_ids
        summary.updated_ids = result.updated_ids
        summary.removed_ids = result.removed_ids

        if publish:
            published = await self.monitor.publish(site.channel_id, result.publishable_ids)
            summary.published = True
            typer.echo(f" - publish {published.item_count} page index items")

        logfire.info(
            "Site indexed",
            site=site_name,
            records=summary.record_count,
            created=len(summary.created_ids),
            updated=len(summary.updated_ids),
            removed=len(summary.removed_ids),
            published=summary.published,
        )
        return summary


async def index_site(
    site_name: str,
    content_type: str,
    publish: bool = False,
    settings: Settings | None = None,
) -> IndexRunSummary:
    """Open a session against the configured server and index one site."""
    settings = settings or get_settings()
    server = ServerConfig.from_settings(settings)
    with logfire.span("index site", site=site_name, content_type=content_type):
        async with open_session(server, settings) as session:
            typer.echo(f" - establish session as {session.user}")
            pipeline = IndexPipeline(session.client, session.context, settings)
            return await pipeline.run(site_name, content_type, publish)
