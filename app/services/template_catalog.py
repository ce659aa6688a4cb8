# app/services/template_catalog.py
"""
Template catalog client - read-only source of step content.
"""
import logging
from typing import Any, Dict, List, Optional

from app.core import config
from app.flow_builder.graph import IMAGE_TEMPLATE, TEXT_TEMPLATE, TemplateButton, TemplateContent
from app.flow_builder.errors import FlowApiError
from app.services.cta_flow_client import ApiClient

log = logging.getLogger("flowbuilder.template_catalog")


def template_type_of(template: Dict[str, Any]) -> str:
    """Templates with an IMAGE header become image steps"""
    components = template.get("components")
    if isinstance(components, list):
        for component in components:
            if (
                isinstance(component, dict)
                and str(component.get("type", "")).upper() == "HEADER"
                and str(component.get("format", "")).upper() == "IMAGE"
            ):
                return IMAGE_TEMPLATE
    return TEXT_TEMPLATE


def _body_of(template: Dict[str, Any]) -> str:
    if template.get("body"):
        return str(template["body"])
    for component in template.get("components") or []:
        if isinstance(component, dict) and str(component.get("type", "")).upper() == "BODY":
            return str(component.get("text") or "")
    return ""


def to_template_content(template: Dict[str, Any]) -> Optional[TemplateContent]:
    """Normalize one catalog entry; entries without a name are skipped"""
    if not isinstance(template, dict) or not template.get("name"):
        return None

    buttons = []
    for btn in template.get("buttonParams") or template.get("buttons") or []:
        if not isinstance(btn, dict):
            continue
        buttons.append(TemplateButton(
            text=str(btn.get("text") or ""),
            type=str(btn.get("type") or "QUICK_REPLY"),
            sub_type=str(btn.get("subType") or btn.get("sub_type") or ""),
            parameter_value=str(btn.get("parameterValue") or btn.get("value") or ""),
        ))

    return TemplateContent(
        name=str(template["name"]),
        type=template_type_of(template),
        body=_body_of(template),
        buttons=buttons,
    )


class TemplateCatalogClient(ApiClient):
    """Lists the tenant's WhatsApp templates"""

    def __init__(self, base_url: Optional[str] = None, **kwargs):
        super().__init__(base_url=base_url or config.TEMPLATE_CATALOG_BASE_URL, **kwargs)

    async def list_templates(self) -> List[TemplateContent]:
        data = await self._request("GET", "/WhatsAppTemplateFetcher/get-template-all")
        if not isinstance(data, dict) or not data.get("success"):
            raise FlowApiError("Failed to load templates", payload=data)

        templates = []
        for raw in data.get("templates") or []:
            content = to_template_content(raw)
            if content is not None:
                templates.append(content)

        if not templates:
            log.warning("⚠️ No valid templates found")
        else:
            log.info(f"✅ Loaded {len(templates)} template(s) from catalog")
        return templates
