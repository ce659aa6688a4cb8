"""Tests for the persistence API client (httpx mock transport)."""

import json

import httpx
import pytest

from app.flow_builder.errors import FlowApiError, UsageConflictError
from app.schemas.cta_flow import FlowPayload, StepWire
from app.services.cta_flow_client import CtaFlowApiClient


class Recorder:
    """Mock transport handler that replays canned responses and keeps requests"""

    def __init__(self, status_code=200, body=None, exc=None):
        self.status_code = status_code
        self.body = body
        self.exc = exc
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.exc is not None:
            raise self.exc
        if self.body is None:
            return httpx.Response(self.status_code)
        return httpx.Response(self.status_code, json=self.body)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


def _client(handler, **kwargs) -> CtaFlowApiClient:
    return CtaFlowApiClient(transport=httpx.MockTransport(handler), **kwargs)


@pytest.fixture
def payload():
    return FlowPayload(flow_name="Welcome", nodes=[StepWire(id="s1", template_name="hello")])


class TestRequests:
    @pytest.mark.asyncio
    async def test_create_posts_pascal_case(self, payload):
        handler = Recorder(body={"flowId": 55})

        result = await _client(handler).create_flow(payload)

        assert result.flow_id == "55"
        request = handler.last
        assert request.method == "POST"
        assert request.url.path == "/api/cta-flow/save-visual"
        body = json.loads(request.content)
        assert body["FlowName"] == "Welcome"
        assert body["IsPublished"] is False
        assert body["Nodes"][0]["Id"] == "s1"
        assert body["Nodes"][0]["TemplateName"] == "hello"

    @pytest.mark.asyncio
    async def test_service_token_sent(self, payload):
        handler = Recorder(body={"flowId": "f"})
        await _client(handler).create_flow(payload)
        assert handler.last.headers["Authorization"] == "Bearer service-token"

    @pytest.mark.asyncio
    async def test_caller_token_overrides(self, payload):
        handler = Recorder(body={"flowId": "f"})
        await _client(handler, token="user-token").create_flow(payload)
        assert handler.last.headers["Authorization"] == "Bearer user-token"

    @pytest.mark.asyncio
    async def test_update(self, payload):
        handler = Recorder(body={"message": "Flow updated", "needsRepublish": True})

        result = await _client(handler).update_flow("f-1", payload)

        assert handler.last.method == "PUT"
        assert handler.last.url.path == "/api/cta-flow/f-1"
        assert result.needs_republish is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "call, method, path",
        [
            ("load_flow", "GET", "/api/cta-flow/by-id/f-1"),
            ("publish_flow", "POST", "/api/cta-flow/f-1/publish"),
            ("get_usage", "GET", "/api/cta-flow/f-1/usage"),
            ("delete_flow", "DELETE", "/api/cta-flow/f-1"),
        ],
    )
    async def test_paths(self, call, method, path):
        handler = Recorder(body={"flowName": "x", "nodes": []})
        await getattr(_client(handler), call)("f-1")
        assert (handler.last.method, handler.last.url.path) == (method, path)

    @pytest.mark.asyncio
    async def test_fork(self):
        handler = Recorder(body={"flowId": "f-2"})
        result = await _client(handler).fork_flow("f-1")
        assert result.flow_id == "f-2"
        assert handler.last.url.path == "/api/cta-flow/f-1/fork"

    @pytest.mark.asyncio
    async def test_fork_without_new_id(self):
        with pytest.raises(FlowApiError, match="no flowId"):
            await _client(Recorder(body={})).fork_flow("f-1")

    @pytest.mark.asyncio
    async def test_usage(self):
        handler = Recorder(body={
            "canDelete": False,
            "count": 1,
            "campaigns": [{"id": 7, "name": "Diwali Sale", "status": "active", "createdAt": "2025-10-01"}],
        })

        usage = await _client(handler).get_usage("f-1")

        assert usage.can_delete is False
        assert usage.count == 1
        assert usage.campaigns[0].id == "7"
        assert usage.campaigns[0].created_at == "2025-10-01"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("published, path", [(True, "/api/cta-flow/all-published"), (False, "/api/cta-flow/all-draft")])
    async def test_list(self, published, path):
        handler = Recorder(body={"data": [{"id": 1, "flowName": "One"}]})

        flows = await _client(handler).list_flows(published=published)

        assert handler.last.url.path == path
        assert [(f.id, f.flow_name) for f in flows] == [("1", "One")]

    @pytest.mark.asyncio
    async def test_empty_body(self):
        assert await _client(Recorder(status_code=204)).delete_flow("f-1") is None


class TestErrors:
    @pytest.mark.asyncio
    async def test_missing_id_never_sends(self, payload):
        handler = Recorder(body={})
        client = _client(handler)

        with pytest.raises(ValueError, match="flowId is required"):
            await client.update_flow("", payload)
        with pytest.raises(ValueError):
            await client.get_usage(None)
        assert handler.requests == []

    @pytest.mark.asyncio
    async def test_conflict_carries_campaigns(self, payload):
        handler = Recorder(status_code=409, body={
            "message": "Flow is used by 1 campaign",
            "campaigns": [{"id": "c-1", "name": "Diwali Sale"}],
        })

        with pytest.raises(UsageConflictError) as exc:
            await _client(handler).update_flow("f-1", payload)

        assert exc.value.message == "Flow is used by 1 campaign"
        assert exc.value.campaigns == [{"id": "c-1", "name": "Diwali Sale"}]

    @pytest.mark.asyncio
    async def test_conflict_without_body(self):
        with pytest.raises(UsageConflictError) as exc:
            await _client(Recorder(status_code=409)).publish_flow("f-1")
        assert exc.value.campaigns == []

    @pytest.mark.asyncio
    async def test_not_found(self):
        with pytest.raises(FlowApiError) as exc:
            await _client(Recorder(status_code=404, body={"message": "Flow not found"})).load_flow("f-9")

        assert exc.value.is_not_found
        assert "Flow not found" in exc.value.message

    @pytest.mark.asyncio
    async def test_server_error(self):
        with pytest.raises(FlowApiError) as exc:
            await _client(Recorder(status_code=500, body={"error": "boom"})).publish_flow("f-1")
        assert exc.value.status_code == 500
        assert exc.value.payload == {"error": "boom"}

    @pytest.mark.asyncio
    async def test_unreachable(self):
        handler = Recorder(exc=httpx.ConnectError("connection refused"))

        with pytest.raises(FlowApiError, match="Could not reach") as exc:
            await _client(handler).get_usage("f-1")
        assert exc.value.status_code is None

    @pytest.mark.asyncio
    async def test_load_must_be_an_object(self):
        with pytest.raises(FlowApiError, match="Unexpected load response"):
            await _client(Recorder(body=[1, 2])).load_flow("f-1")
