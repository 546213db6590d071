"""Typer CLI for site indexing and site map generation."""

import os

os.environ.setdefault("LOGFIRE_IGNORE_NO_CONFIG", "1")

from pathlib import Path

_project_root = Path(__file__).resolve().parent.parent.parent
from dotenv import load_dotenv

load_dotenv(_project_root / ".env")
load_dotenv(_project_root / ".env.local")

import asyncio

import typer
from pydantic import ValidationError

from src.config import Settings, get_settings
from src.constants import DEFAULT_SITE_MAP_CHANGEFREQ, DEFAULT_TOP_PAGE_PRIORITY
from src.logging_config import setup_logfire
from src.services.errors import IndexPipelineError
from src.services.index_pipeline import index_site
from src.services.site_map import CHANGEFREQ_VALUES, create_site_map

app = typer.Typer(help="Site indexing and site map utilities for the remote CMS.")

_TRUE_VALUES = ("true", "yes", "1")
_FALSE_VALUES = ("false", "no", "0")


def _run_async_with_cleanup(coro):
    """
    Run async coroutine on a fresh event loop and always tear the loop down.

    Pending tasks are cancelled and async generators closed before the loop
    is closed, so the broker's sockets never outlive the command.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        if not asyncio.iscoroutine(coro):
            # Mocked commands hand back plain values
            return coro
        return loop.run_until_complete(coro)
    finally:
        try:
            pending = [task for task in asyncio.all_tasks(loop) if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.run_until_complete(loop.shutdown_asyncgens())
        finally:
            loop.close()
            asyncio.set_event_loop(None)


def _fail(message: str) -> None:
    typer.echo(f"ERROR: {message}", err=True)
    raise typer.Exit(1)


def _load_settings() -> Settings:
    try:
        settings = get_settings()
    except ValidationError as e:
        missing = ", ".join(str(err["loc"][0]) for err in e.errors())
        _fail(f"invalid configuration: {missing}")
    setup_logfire(settings)
    return settings


def _parse_bool(value: str, option: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    _fail(f"invalid value for {option}: {value} (expected true or false)")


@app.command("index-site")
def index_site_command(
    site: str = typer.Option(..., "--site", "-s", help="Site to index"),
    contenttype: str = typer.Option(
        ..., "--contenttype", "-c", help="Page index content type"
    ),
    publish: str = typer.Option(
        "false", "--publish", "-p", help="Publish the page index items (true|false)"
    ),
):
    """Create or update the page index of a site."""
    do_publish = _parse_bool(publish, "--publish")
    settings = _load_settings()

    typer.echo(f"Indexing site {site} with type {contenttype}")
    try:
        summary = _run_async_with_cleanup(
            index_site(site, contenttype, publish=do_publish, settings=settings)
        )
    except IndexPipelineError as e:
        _fail(str(e))

    typer.echo(
        f"✓ Page index for site {site}: {len(summary.created_ids)} created, "
        f"{len(summary.updated_ids)} updated"
    )
    if summary.unresolved_page_ids:
        typer.echo(
            f"WARNING: content not fully resolved for pages "
            f"{', '.join(summary.unresolved_page_ids)}",
            err=True,
        )


@app.command("create-site-map")
def create_site_map_command(
    site: str = typer.Option(..., "--site", "-s", help="Site to map"),
    url: str = typer.Option(..., "--url", "-u", help="Public site URL"),
    changefreq: str = typer.Option(
        DEFAULT_SITE_MAP_CHANGEFREQ, "--changefreq", "-c", help="Page change frequency"
    ),
    toppagepriority: float = typer.Option(
        DEFAULT_TOP_PAGE_PRIORITY,
        "--toppagepriority",
        "-t",
        help="Priority of the top level pages",
    ),
    file: str | None = typer.Option(None, "--file", "-f", help="Site map file name"),
):
    """Generate the site map XML of a site."""
    if changefreq not in CHANGEFREQ_VALUES:
        _fail(f"invalid changefreq {changefreq}, expected one of {', '.join(CHANGEFREQ_VALUES)}")
    if not 0 < toppagepriority <= 1:
        _fail("top page priority must be greater than 0 and at most 1")
    settings = _load_settings()

    typer.echo(f"Creating site map for site {site}")
    try:
        path = _run_async_with_cleanup(
            create_site_map(site, url, changefreq, toppagepriority, file, settings=settings)
        )
    except IndexPipelineError as e:
        _fail(str(e))

    typer.echo(f"✓ Site map written to {path}")


if __name__ == "__main__":
    app()
