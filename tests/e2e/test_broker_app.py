"""End-to-end tests for the session broker application."""

import base64
import json
from urllib.parse import parse_qs

import httpx
import pytest
import respx
from fastapi.testclient import TestClient

from src.main import create_broker_app
from src.models.index_models import ExistingIndexItem, PageIndexRecord
from src.models.site_models import ServerConfig

CMS_URL = "https://cms.example.com"
CM = "/content/management/api/v1.1"


@pytest.fixture
def broker_app(cms_settings, run_context, mock_logfire):
    return create_broker_app(ServerConfig.from_settings(cms_settings), run_context, cms_settings)


@pytest.fixture
def test_client(broker_app):
    return TestClient(broker_app)


@pytest.fixture
def staged(run_context):
    run_context.idc_token = "idc-1"
    run_context.csrf_token = "csrf-1"
    run_context.stage(
        content_type="PageIndex",
        repository_id="repo-1",
        language="en-US",
        to_create=[
            PageIndexRecord(
                site="Corp",
                pageid="10",
                pagename="Home",
                pageurl="index.html",
                pagetitle="Welcome",
                pagedescription=" ",
            )
        ],
        to_update=[
            ExistingIndexItem(
                id="item-11",
                name="CorpAbout11",
                type="PageIndex",
                fields={"site": "Corp", "pageid": "11"},
            )
        ],
    )
    return run_context


class TestForwarding:
    """Test GET forwarding."""

    @respx.mock
    def test_forwards_with_credentials(self, test_client):
        """Test documents/ requests reach the remote with auth and query intact."""
        route = respx.get(f"{CMS_URL}/documents/web").mock(
            return_value=httpx.Response(
                200, json={"LocalData": {"StatusCode": "0"}}, headers={"x-remote": "1"}
            )
        )

        response = test_client.get("/documents/web?IdcService=SCS_GET_SITE_INFO_FILE&siteId=Corp")

        assert response.status_code == 200
        assert response.json() == {"LocalData": {"StatusCode": "0"}}
        request = route.calls.last.request
        assert request.url.params["siteId"] == "Corp"
        expected = base64.b64encode(b"admin:secret").decode("ascii")
        assert request.headers["authorization"] == f"Basic {expected}"
        assert "x-remote" in response.headers["access-control-expose-headers"]

    @respx.mock
    def test_remote_errors_relayed(self, test_client):
        respx.get(f"{CMS_URL}{CM}/types/Missing").mock(
            return_value=httpx.Response(404, json={"detail": "not found"})
        )
        response = test_client.get(f"{CM}/types/Missing")
        assert response.status_code == 404
        assert response.json() == {"detail": "not found"}

    def test_other_paths_rejected(self, test_client):
        response = test_client.get("/favicon.ico")
        assert response.status_code == 404
        assert "not supported" in response.json()["error"]

    @respx.mock
    def test_transport_failure(self, test_client):
        respx.get(f"{CMS_URL}/documents/web").mock(side_effect=httpx.ConnectError("refused"))
        response = test_client.get("/documents/web")
        assert response.status_code == 502

    @respx.mock
    def test_correlation_id_echoed_and_forwarded(self, test_client):
        route = respx.get(f"{CMS_URL}/documents/web").mock(return_value=httpx.Response(200, json={}))

        response = test_client.get("/documents/web", headers={"X-Correlation-ID": "trace-1"})

        assert response.headers["x-correlation-id"] == "trace-1"
        assert route.calls.last.request.headers["x-correlation-id"] == "trace-1"


class TestItemRoutes:
    """Test the create and update pseudo-RPC routes."""

    @respx.mock
    def test_create_builds_payload(self, test_client, staged):
        route = respx.post(f"{CMS_URL}{CM}/items").mock(
            return_value=httpx.Response(201, json={"id": "new-10"})
        )

        response = test_client.post(f"{CM}/items?dataIndex=0")

        assert response.status_code == 201
        assert response.json() == {"id": "new-10"}
        request = route.calls.last.request
        body = json.loads(request.content)
        assert body["name"] == "CorpHome10"
        assert body["fields"]["pageid"] == "10"
        assert request.headers["x-csrf-token"] == "csrf-1"
        assert request.headers["x-requested-with"] == "XMLHttpRequest"

    @pytest.mark.parametrize("index", ["5", "-1", "abc", ""])
    def test_create_unknown_index(self, test_client, staged, index):
        response = test_client.post(f"{CM}/items?dataIndex={index}")
        assert response.status_code == 400

    @respx.mock
    def test_update_puts_staged_item(self, test_client, staged):
        route = respx.put(f"{CMS_URL}{CM}/items/item-11").mock(
            return_value=httpx.Response(200, json={"id": "item-11"})
        )

        response = test_client.post(f"{CM}/items/item-11?dataIndex=0")

        assert response.status_code == 200
        assert json.loads(route.calls.last.request.content)["id"] == "item-11"

    def test_update_id_mismatch(self, test_client, staged):
        response = test_client.post(f"{CM}/items/item-99?dataIndex=0")
        assert response.status_code == 400
        assert "item-11" in response.json()["error"]


class TestBulkRoute:
    """Test the bulk operation route."""

    @respx.mock
    def test_status_id_from_location(self, test_client, staged):
        route = respx.post(f"{CMS_URL}{CM}/bulkItemsOperations").mock(
            return_value=httpx.Response(
                202, headers={"Location": f"{CMS_URL}{CM}/bulkItemsOperations/op-7"}
            )
        )

        response = test_client.post(
            f"{CM}/bulkItemsOperations?operation=publish&channelId=channel-1",
            json={"itemIds": ["a", "b"]},
        )

        assert response.status_code == 202
        assert response.json() == {"statusId": "op-7"}
        body = json.loads(route.calls.last.request.content)
        assert body["operations"] == {"publish": {"channels": [{"id": "channel-1"}]}}

    def test_unsupported_operation(self, test_client):
        response = test_client.post(
            f"{CM}/bulkItemsOperations?operation=delete&channelId=channel-1",
            json={"itemIds": ["a"]},
        )
        assert response.status_code == 400

    def test_item_ids_required(self, test_client):
        response = test_client.post(
            f"{CM}/bulkItemsOperations?operation=publish&channelId=channel-1", json={}
        )
        assert response.status_code == 400

    @respx.mock
    def test_remote_rejection_relayed(self, test_client, staged):
        respx.post(f"{CMS_URL}{CM}/bulkItemsOperations").mock(
            return_value=httpx.Response(409, json={"detail": "locked"})
        )
        response = test_client.post(
            f"{CM}/bulkItemsOperations?operation=publish&channelId=channel-1",
            json={"itemIds": ["a"]},
        )
        assert response.status_code == 409


class TestLegacyPost:
    """Test the legacy service POST route."""

    @respx.mock
    def test_activate_component_injects_token(self, test_client, staged):
        route = respx.post(f"{CMS_URL}/documents/web").mock(
            return_value=httpx.Response(200, json={"LocalData": {"StatusCode": "0"}})
        )

        response = test_client.post("/documents/web?IdcService=SCS_ACTIVATE_COMPONENT&item=comp-1")

        assert response.status_code == 200
        request = route.calls.last.request
        assert request.url.params["IdcService"] == "SCS_ACTIVATE_COMPONENT"
        form = parse_qs(request.content.decode())
        assert form["idcToken"] == ["idc-1"]
        assert form["item"] == ["comp-1"]

    def test_other_services_rejected(self, test_client):
        response = test_client.post("/documents/web?IdcService=SCS_DELETE_SITE")
        assert response.status_code == 400
