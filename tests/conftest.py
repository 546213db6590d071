"""Shared pytest fixtures and configuration.

Fixture Categories:
1. Settings: cms_settings, mock_settings
2. Remote CMS: fake_cms (in-memory stand-in for CMSClient), respx_mock
3. Sample data: sample_site_properties, index_type_definition, sample_repository
4. Infrastructure: run_context, logfire_capture, mock_logfire
"""

import os
import re
from contextlib import contextmanager
from unittest.mock import MagicMock, Mock, patch

import pytest
import respx

import logfire

from src.config import Settings
from src.models.session_models import RunContext
from src.services.cms_client import CMSClient
from src.services.errors import RemoteCallError

# Suppress warnings when logfire isn't configured in tests
os.environ.setdefault("LOGFIRE_IGNORE_NO_CONFIG", "1")

CMS_URL = "https://cms.example.com"

_ID_PREDICATE = re.compile(r'id eq "([^"]+)"')
_TYPE_PREDICATE = re.compile(r'type eq "([^"]+)"')


def _index_type_definition(name: str = "PageIndex", **overrides) -> dict:
    """Content type definition holding every page index field."""
    fields = {
        "site": {"name": "site", "datatype": "text", "valuecount": "single"},
        "pageid": {"name": "pageid", "datatype": "text", "valuecount": "single"},
        "pagename": {"name": "pagename", "datatype": "text", "valuecount": "single"},
        "pageurl": {"name": "pageurl", "datatype": "text", "valuecount": "single"},
        "pagetitle": {"name": "pagetitle", "datatype": "text", "valuecount": "single"},
        "pagedescription": {
            "name": "pagedescription",
            "datatype": "largetext",
            "valuecount": "single",
        },
        "keywords": {"name": "keywords", "datatype": "text", "valuecount": "list"},
    }
    for key, value in overrides.items():
        if value is None:
            fields.pop(key, None)
        else:
            fields[key] = value
    return {"name": name, "fields": list(fields.values())}


def _site_page(page_id: str, name: str, url: str, parent=None, children=(), detail=False) -> dict:
    return {
        "id": int(page_id) if page_id.isdigit() else page_id,
        "name": name,
        "pageUrl": url,
        "parentId": parent,
        "isDetailPage": detail,
        "children": list(children),
    }


class FakeCMS:
    """
    In-memory CMS exposing the CMSClient surface.

    Every call is appended to `calls` as (method, args) so tests can assert
    on the order and count of remote operations.
    """

    def __init__(self, context: RunContext | None = None):
        self.context = context or RunContext()
        self.calls: list[tuple[str, tuple]] = []
        self.site_properties: dict = {
            "defaultLanguage": "en-US",
            "repositoryId": "repo-1",
            "channelId": "channel-1",
            "channelAccessTokens": [{"name": "defaultToken", "value": "chan-token"}],
        }
        self.site_status = "0"
        self.pages: list[dict] = []
        self.page_data: dict[str, dict] = {}
        self.items: dict[str, dict] = {}
        self.content_types: dict[str, dict] = {"PageIndex": _index_type_definition()}
        self.repository: dict = {
            "id": "repo-1",
            "name": "CorpRepo",
            "contentTypes": [{"name": "PageIndex"}, {"name": "Article"}],
        }
        self.existing: list[dict] = []
        self.publish_info: dict[str, list] = {}
        self.job_failures: dict[str, dict] = {}
        self.failing_item_ids: set[str] = set()
        self._job_count = 0

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    def methods(self) -> list[str]:
        return [name for name, _ in self.calls]

    async def get_site_info(self, site):
        self.calls.append(("get_site_info", (site,)))
        data = {"LocalData": {"StatusCode": self.site_status}}
        if self.site_status == "0":
            data["base"] = {"properties": self.site_properties}
        return data

    async def get_structure(self, site):
        self.calls.append(("get_structure", (site,)))
        return {"LocalData": {"StatusCode": "0"}, "base": {"pages": self.pages}}

    async def get_page_data(self, site, page_ids):
        self.calls.append(("get_page_data", (site, tuple(page_ids))))
        return {
            page_id: {"base": self.page_data[page_id]}
            for page_id in page_ids
            if page_id in self.page_data
        }

    @staticmethod
    def check_idc_status(data, operation):
        CMSClient.check_idc_status(data, operation)

    async def get_content_type(self, name):
        self.calls.append(("get_content_type", (name,)))
        if name not in self.content_types:
            raise RemoteCallError(f"failed to get content type {name}", status_code=404)
        return self.content_types[name]

    async def get_repository(self, repository_id):
        self.calls.append(("get_repository", (repository_id,)))
        return self.repository

    def _raise_if_failing(self, ids):
        if self.failing_item_ids.intersection(ids):
            raise RemoteCallError("failed to query content", status_code=500)

    async def get_published_item(self, channel_token, item_id):
        self.calls.append(("get_published_item", (channel_token, item_id)))
        self._raise_if_failing([item_id])
        return [self.items[item_id]] if item_id in self.items else []

    async def query_published_items(self, channel_token, params):
        self.calls.append(("query_published_items", (channel_token, dict(params))))
        q = params.get("q", "")
        ids = _ID_PREDICATE.findall(q)
        if ids:
            self._raise_if_failing(ids)
            return [self.items[i] for i in ids if i in self.items]
        types = _TYPE_PREDICATE.findall(q)
        return [item for item in self.items.values() if item.get("type") in types]

    async def query_management_items(self, q, channel_token=None):
        self.calls.append(("query_management_items", (q, channel_token)))
        return list(self.existing)

    async def get_publish_info(self, item_id):
        self.calls.append(("get_publish_info", (item_id,)))
        return self.publish_info.get(item_id, [])

    async def create_item(self, data_index):
        self.calls.append(("create_item", (data_index,)))
        record = self.context.staged_record(data_index)
        return {"id": f"new-{record.pageid}"}

    async def update_item(self, item_id, data_index):
        self.calls.append(("update_item", (item_id, data_index)))
        return {"id": item_id}

    async def bulk_operation(self, operation, channel_id, item_ids):
        self.calls.append(("bulk_operation", (operation, channel_id, tuple(item_ids))))
        self._job_count += 1
        return f"job-{self._job_count}"

    async def get_operation_status(self, status_id):
        self.calls.append(("get_operation_status", (status_id,)))
        if status_id in self.job_failures:
            return self.job_failures[status_id]
        return {"id": status_id, "completed": True, "completedPercentage": 100}


@pytest.fixture
def cms_settings(monkeypatch):
    """Settings pointing at a fake server, with no poll delays."""
    for key in ("CMS_USERNAME", "CMS_PASSWORD", "CMS_OAUTH_TOKEN", "CONTENT_RESOLUTION_POLICY"):
        monkeypatch.delenv(key, raising=False)
    return Settings(
        cms_server_url=CMS_URL,
        cms_username="admin",
        cms_password="secret",
        env="local",
        logfire_token=None,
        session_poll_interval_seconds=0,
        session_poll_max_attempts=3,
        publish_poll_interval_seconds=0,
    )


@pytest.fixture
def mock_settings(monkeypatch, cms_settings):
    """Mock application settings wherever get_settings is looked up."""
    monkeypatch.setattr("src.config.get_settings", lambda: cms_settings)
    monkeypatch.setattr("src.cli.index_cli.get_settings", lambda: cms_settings)
    monkeypatch.setattr("src.main.get_settings", lambda: cms_settings)
    return cms_settings


@pytest.fixture
def run_context():
    return RunContext()


@pytest.fixture
def fake_cms(run_context):
    return FakeCMS(run_context)


@pytest.fixture
def respx_mock():
    """Respx mock fixture for HTTP mocking."""
    with respx.mock:
        yield respx


@pytest.fixture
def sample_site_properties():
    return {
        "defaultLanguage": "en-US",
        "repositoryId": "repo-1",
        "channelId": "channel-1",
        "channelAccessTokens": [
            {"name": "other", "value": "other-token"},
            {"name": "defaultToken", "value": "chan-token"},
        ],
    }


@pytest.fixture
def sample_repository():
    return {
        "id": "repo-1",
        "name": "CorpRepo",
        "contentTypes": [{"name": "PageIndex"}, {"name": "Article"}],
    }


@pytest.fixture
def logfire_capture():
    """
    Capture Logfire logs for testing.

    This fixture patches Logfire to capture log calls for assertion.
    """
    captured_logs = []

    original_info = logfire.info
    original_warn = logfire.warn
    original_error = logfire.error

    def capture_info(*args, **kwargs):
        captured_logs.append(("info", args, kwargs))
        return original_info(*args, **kwargs)

    def capture_warn(*args, **kwargs):
        captured_logs.append(("warn", args, kwargs))
        return original_warn(*args, **kwargs)

    def capture_error(*args, **kwargs):
        captured_logs.append(("error", args, kwargs))
        return original_error(*args, **kwargs)

    with (
        patch("logfire.info", side_effect=capture_info),
        patch("logfire.warn", side_effect=capture_warn),
        patch("logfire.error", side_effect=capture_error),
    ):
        yield captured_logs


@pytest.fixture
def mock_logfire(monkeypatch):
    """
    Mock Logfire for testing without actual logging.

    Useful for tests that don't need to verify logging behavior.
    """

    @contextmanager
    def mock_span(*args, **kwargs):
        yield {}

    mock_logfire_module = MagicMock()
    mock_logfire_module.info = Mock()
    mock_logfire_module.warn = Mock()
    mock_logfire_module.error = Mock()
    mock_logfire_module.span = mock_span
    mock_logfire_module.configure = Mock()
    mock_logfire_module.instrument_fastapi = Mock()
    mock_logfire_module.instrument_httpx = Mock()
    mock_logfire_module.instrument_pydantic = Mock()

    # Patch module-level imports in our code (only modules that use logfire)
    for module in (
        "src.logging_config",
        "src.main",
        "src.middleware.correlation_id",
        "src.services.cms_client",
        "src.services.session_broker",
        "src.services.site_crawler",
        "src.services.content_resolver",
        "src.services.index_reconciler",
        "src.services.publish_monitor",
        "src.services.index_pipeline",
        "src.services.site_map",
    ):
        monkeypatch.setattr(f"{module}.logfire", mock_logfire_module)

    return mock_logfire_module


@pytest.fixture
def index_type_definition():
    """Factory for page index type definitions; pass field=None to drop a field."""
    return _index_type_definition


@pytest.fixture
def site_page():
    """Factory for raw structure entries as the remote returns them."""
    return _site_page


@pytest.fixture
def fake_cms_factory():
    """Fresh in-memory CMS per call, for property tests that need isolation."""
    return FakeCMS
