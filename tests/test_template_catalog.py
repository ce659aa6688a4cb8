"""Tests for the template catalog client."""

import httpx
import pytest

from app.flow_builder.errors import FlowApiError
from app.services.template_catalog import TemplateCatalogClient, template_type_of, to_template_content

CATALOG = {
    "success": True,
    "templates": [
        {
            "name": "diwali_offer",
            "components": [
                {"type": "HEADER", "format": "IMAGE"},
                {"type": "BODY", "text": "Hi {{1}}, 20% off today"},
            ],
            "buttonParams": [
                {"text": "Shop", "type": "QUICK_REPLY", "parameterValue": "shop"},
                {"text": "Later", "subType": "quick_reply"},
            ],
        },
        {"name": "thanks", "body": "Thank you!"},
        {"body": "no name, skipped"},
        "not even a dict",
    ],
}


def _client(status_code=200, body=None, seen=None):
    def handler(request):
        if seen is not None:
            seen.append(request)
        return httpx.Response(status_code, json=body)

    return TemplateCatalogClient(base_url="http://catalog.test/api", transport=httpx.MockTransport(handler))


def test_image_header_makes_image_step():
    assert template_type_of(CATALOG["templates"][0]) == "image_template"
    assert template_type_of({"components": [{"type": "HEADER", "format": "TEXT"}]}) == "text_template"
    assert template_type_of({"components": "garbage"}) == "text_template"


def test_normalize_entry():
    content = to_template_content(CATALOG["templates"][0])

    assert content.name == "diwali_offer"
    assert content.body == "Hi {{1}}, 20% off today"
    assert [(b.text, b.parameter_value) for b in content.buttons] == [("Shop", "shop"), ("Later", "")]
    assert content.buttons[1].type == "QUICK_REPLY"
    assert content.buttons[1].sub_type == "quick_reply"


@pytest.mark.parametrize("raw", [None, "x", {}, {"name": ""}])
def test_unusable_entries(raw):
    assert to_template_content(raw) is None


@pytest.mark.asyncio
async def test_list_templates():
    seen = []

    templates = await _client(body=CATALOG, seen=seen).list_templates()

    assert [t.name for t in templates] == ["diwali_offer", "thanks"]
    assert templates[1].type == "text_template"
    assert seen[0].url.path == "/api/WhatsAppTemplateFetcher/get-template-all"


@pytest.mark.asyncio
async def test_empty_catalog():
    assert await _client(body={"success": True, "templates": []}).list_templates() == []


@pytest.mark.asyncio
async def test_unsuccessful_response():
    with pytest.raises(FlowApiError, match="Failed to load templates"):
        await _client(body={"success": False}).list_templates()


@pytest.mark.asyncio
async def test_http_error():
    with pytest.raises(FlowApiError) as exc:
        await _client(status_code=503, body={"message": "down"}).list_templates()
    assert exc.value.status_code == 503
