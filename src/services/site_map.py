"""Site map generation.

Shares the crawl and content resolution stages with the indexing pipeline
and renders a sitemaps.org 0.9 document for the site's pages and the
detail URLs of the content they show.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence
from xml.sax.saxutils import escape

import logfire
import typer

from src.config import Settings, get_settings
from src.constants import (
    DEFAULT_SITE_MAP_CHANGEFREQ,
    DEFAULT_TOP_PAGE_PRIORITY,
    SITE_MAP_NAMESPACE,
)
from src.models.content_models import ContentItem
from src.models.site_models import Page, PageData, ServerConfig
from src.services.cms_client import CMSClient
from src.services.content_resolver import ContentResolver
from src.services.index_pipeline import require_channel_token
from src.services.session_broker import open_session
from src.services.site_crawler import (
    SiteCrawler,
    default_detail_page,
    get_page_content_ids,
    get_page_content_list_queries,
    page_depth,
)

CHANGEFREQ_VALUES = ("always", "hourly", "daily", "weekly", "monthly", "yearly", "never")

_INDENT = "    "


@dataclass
class SiteMapUrl:
    loc: str
    changefreq: str
    priority: float
    lastmod: str | None = None


def page_priority(page: Page, top_page_priority: float = DEFAULT_TOP_PAGE_PRIORITY) -> float:
    """1 for the root page, otherwise halved once per level of the page URL."""
    if page.is_root:
        return 1.0
    return top_page_priority / (2 ** page_depth(page))


def item_lastmod(item: ContentItem) -> str | None:
    return item.updated_date.strftime("%Y-%m-%d") if item.updated_date else None


def detail_url(prefix: str, detail_page: Page, item: ContentItem) -> str:
    detail_prefix = detail_page.page_url.replace(".html", "")
    return f"{prefix}/{detail_prefix}/{item.type}/{item.id}/{item.slug or ''}"


def build_site_map_urls(
    site_url: str,
    pages: Sequence[Page],
    page_data: Mapping[str, PageData],
    page_content: Mapping[str, Sequence[ContentItem]],
    changefreq: str = DEFAULT_SITE_MAP_CHANGEFREQ,
    top_page_priority: float = DEFAULT_TOP_PAGE_PRIORITY,
) -> list[SiteMapUrl]:
    """
    URLs for every listed page followed by the detail URLs of their content.

    Items inherit the priority of the page they were found on. Items are
    only listed when the site has a detail page.
    """
    prefix = site_url.rstrip("/")
    urls: list[SiteMapUrl] = []
    page_priorities: dict[str, float] = {}

    for page in pages:
        data = page_data.get(page.id)
        if page.is_detail_page or (data is not None and data.properties.no_index):
            continue
        priority = page_priority(page, top_page_priority)
        page_priorities[page.id] = priority
        urls.append(SiteMapUrl(loc=f"{prefix}/{page.page_url}", changefreq=changefreq, priority=priority))

    detail_page = default_detail_page(pages)
    if detail_page is None or not detail_page.page_url:
        return urls

    added: set[str] = set()
    for page_id, items in page_content.items():
        if page_id not in page_priorities:
            continue
        for item in items:
            loc = detail_url(prefix, detail_page, item)
            if loc in added:
                continue
            added.add(loc)
            urls.append(
                SiteMapUrl(
                    loc=loc,
                    changefreq=changefreq,
                    priority=page_priorities[page_id],
                    lastmod=item_lastmod(item),
                )
            )
    return urls


def render_site_map(urls: Sequence[SiteMapUrl]) -> str:
    lines = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<urlset xmlns="{SITE_MAP_NAMESPACE}">',
    ]
    inner = _INDENT * 2
    for url in urls:
        lines.append(f"{_INDENT}<url>")
        lines.append(f"{inner}<loc>{escape(url.loc)}</loc>")
        if url.lastmod:
            lines.append(f"{inner}<lastmod>{url.lastmod}</lastmod>")
        lines.append(f"{inner}<changefreq>{url.changefreq}</changefreq>")
        lines.append(f"{inner}<priority>{url.priority:g}</priority>")
        lines.append(f"{_INDENT}</url>")
    lines.append("</urlset>")
    return "\n".join(lines) + "\n"


def site_map_path(site_name: str, file: str | None = None) -> Path:
    name = file or f"{site_name}SiteMap.xml"
    if not name.endswith(".xml"):
        name = f"{name}.xml"
    return Path(name)


class SiteMapGenerator:
    """Crawls a site and writes its site map."""

    def __init__(self, client: CMSClient, settings: Settings):
        self.client = client
        self.settings = settings
        self.crawler = SiteCrawler(client, settings.page_data_batch_size)

    async def run(
        self,
        site_name: str,
        site_url: str,
        changefreq: str = DEFAULT_SITE_MAP_CHANGEFREQ,
        top_page_priority: float = DEFAULT_TOP_PAGE_PRIORITY,
        file: str | None = None,
    ) -> Path:
        site = await self.crawler.get_site(site_name)
        channel_token = require_channel_token(site)
        typer.echo(" - get site info")

        pages = await self.crawler.get_pages(site_name)
        typer.echo(f" - query site structure ({len(pages)} pages)")

        page_data = await self.crawler.get_page_data(site_name, [p.id for p in pages])
        typer.echo(" - query page data")

        page_content: Mapping[str, Sequence[ContentItem]] = {}
        if default_detail_page(pages) is not None:
            resolver = ContentResolver(
                self.client,
                channel_token,
                batch_size=self.settings.content_batch_size,
                policy=self.settings.content_resolution_policy,
            )
            resolution = await resolver.resolve(
                get_page_content_ids(page_data.values()),
                get_page_content_list_queries(page_data.values()),
            )
            page_content = resolution.items
            for failure in resolution.failures:
                typer.echo(f"WARNING: {failure.error}", err=True)

        urls = build_site_map_urls(
            site_url, pages, page_data, page_content, changefreq, top_page_priority
        )
        path = site_map_path(site_name, file)
        path.write_text(render_site_map(urls), encoding="utf-8")
        typer.echo(f" - generate file {path}")
        logfire.info("Site map generated", site=site_name, url_count=len(urls), file=str(path))
        return path


async def create_site_map(
    site_name: str,
    site_url: str,
    changefreq: str = DEFAULT_SITE_MAP_CHANGEFREQ,
    top_page_priority: float = DEFAULT_TOP_PAGE_PRIORITY,
    file: str | None = None,
    settings: Settings | None = None,
) -> Path:
    """Open a session against the configured server and write the site map."""
    settings = settings or get_settings()
    server = ServerConfig.from_settings(settings)
    with logfire.span("create site map", site=site_name):
        async with open_session(server, settings) as session:
            generator = SiteMapGenerator(session.client, settings)
            return await generator.run(site_name, site_url, changefreq, top_page_priority, file)
