"""Shared pytest fixtures for testing."""

import os
import random
from typing import Any, Dict, List, Optional

import pytest

# Set test environment before the app modules read their configuration
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET_KEY"] = "test-secret"
os.environ["JWT_ALGORITHM"] = "HS256"
os.environ["CTA_FLOW_API_BASE_URL"] = "http://flow-api.test/api"
os.environ["CTA_FLOW_API_TOKEN"] = "service-token"

from app.flow_builder.codec import decode_flow_list  # noqa: E402
from app.flow_builder.errors import FlowApiError, UsageConflictError  # noqa: E402
from app.flow_builder.graph import GraphModel, TemplateContent  # noqa: E402
from app.schemas.cta_flow import CreateFlowResponse, FlowUsage, UpdateFlowResponse  # noqa: E402


# =============================================================================
# Fake persistence API
# =============================================================================


class FakeFlowApi:
    """
    In-memory stand-in for CtaFlowApiClient.

    `records` maps flow id -> load-shape dict, `usage` maps flow id -> list of
    campaign dicts. Set `fail` to an action name to make that call raise.
    """

    def __init__(self):
        self.records: Dict[str, Dict[str, Any]] = {}
        self.usage: Dict[str, List[Dict[str, Any]]] = {}
        self.calls: List[tuple] = []
        self.fail: Optional[str] = None
        self.conflict: Optional[str] = None
        self.needs_republish = False
        self._next_id = 100

    def _new_id(self) -> str:
        self._next_id += 1
        return f"flow-{self._next_id}"

    def _check(self, action: str, flow_id: Optional[str] = None):
        if self.conflict == action:
            raise UsageConflictError("Flow is used by campaigns", self.usage.get(flow_id, []))
        if self.fail == action:
            raise FlowApiError(f"{action} exploded", status_code=500)

    async def load_flow(self, flow_id: str) -> Dict[str, Any]:
        self.calls.append(("load", flow_id))
        self._check("load", flow_id)
        if flow_id not in self.records:
            raise FlowApiError("Flow not found", status_code=404)
        return self.records[flow_id]

    async def create_flow(self, payload) -> CreateFlowResponse:
        self.calls.append(("create", payload))
        self._check("create")
        flow_id = self._new_id()
        self.records[flow_id] = payload.model_dump(by_alias=True)
        return CreateFlowResponse(flow_id=flow_id)

    async def update_flow(self, flow_id: str, payload) -> UpdateFlowResponse:
        self.calls.append(("update", flow_id, payload))
        self._check("update", flow_id)
        published = self.is_published(self.records.get(flow_id, {}))
        record = payload.model_dump(by_alias=True)
        self.set_published(record, published)
        self.records[flow_id] = record
        return UpdateFlowResponse(message="Flow updated", needs_republish=self.needs_republish)

    async def publish_flow(self, flow_id: str) -> Dict[str, Any]:
        self.calls.append(("publish", flow_id))
        self._check("publish", flow_id)
        self.set_published(self.records.setdefault(flow_id, {}), True)
        return {}

    async def fork_flow(self, flow_id: str) -> CreateFlowResponse:
        self.calls.append(("fork", flow_id))
        self._check("fork", flow_id)
        new_id = self._new_id()
        copy = dict(self.records.get(flow_id, {}))
        self.set_published(copy, False)
        self.records[new_id] = copy
        return CreateFlowResponse(flow_id=new_id)

    async def get_usage(self, flow_id: str) -> FlowUsage:
        self.calls.append(("usage", flow_id))
        self._check("usage", flow_id)
        campaigns = self.usage.get(flow_id, [])
        return FlowUsage.model_validate({
            "canDelete": not campaigns,
            "count": len(campaigns),
            "campaigns": campaigns,
        })

    async def delete_flow(self, flow_id: str) -> None:
        self.calls.append(("delete", flow_id))
        self._check("delete", flow_id)
        self.records.pop(flow_id, None)

    async def list_flows(self, published: bool = True):
        self.calls.append(("list", published))
        return decode_flow_list([
            {"id": fid, "flowName": rec.get("FlowName") or rec.get("flowName"), "isPublished": self.is_published(rec)}
            for fid, rec in self.records.items()
            if self.is_published(rec) == published
        ])

    @staticmethod
    def is_published(record: Dict[str, Any]) -> bool:
        return bool(record.get("IsPublished", record.get("isPublished", False)))

    @staticmethod
    def set_published(record: Dict[str, Any], value: bool) -> None:
        record.pop("isPublished", None)
        record["IsPublished"] = value

    def actions(self) -> List[str]:
        return [c[0] for c in self.calls]


def published_record(name: str = "Diwali Flow") -> Dict[str, Any]:
    """Server load shape of a two-step published flow"""
    return {
        "flowName": name,
        "isPublished": True,
        "nodes": [
            {
                "id": "s1",
                "templateName": "welcome",
                "templateType": "text_template",
                "messageBody": "Hi {{1}}, want the offer?",
                "positionX": 100,
                "positionY": 120,
                "useProfileName": True,
                "profileNameSlot": 1,
                "buttons": [
                    {"text": "Yes", "type": "QUICK_REPLY", "targetNodeId": "s2", "index": 0},
                    {"text": "No", "type": "QUICK_REPLY", "index": 1},
                ],
            },
            {
                "id": "s2",
                "templateName": "offer",
                "templateType": "image_template",
                "messageBody": "Here it is",
                "buttons": [],
            },
        ],
        "edges": [
            {"fromNodeId": "s1", "toNodeId": "s2", "sourceHandle": "Yes"},
        ],
    }


@pytest.fixture
def fake_api() -> FakeFlowApi:
    return FakeFlowApi()


@pytest.fixture
def rng() -> random.Random:
    return random.Random(42)


@pytest.fixture
def yes_no_template() -> TemplateContent:
    return TemplateContent.model_validate({
        "name": "confirm",
        "type": "text_template",
        "body": "Do you want to continue?",
        "buttons": [
            {"text": "Yes", "parameter_value": "yes"},
            {"text": "No", "parameter_value": "no"},
        ],
    })


@pytest.fixture
def plain_template() -> TemplateContent:
    return TemplateContent(name="thanks", body="Thank you!")


@pytest.fixture
def graph(rng) -> GraphModel:
    return GraphModel(rng=rng)
