# app/schemas/cta_flow.py
"""
Pydantic schemas for the CTA flow persistence API.

Outgoing payloads use the transport's PascalCase names; incoming records are
accepted in either the server's camelCase load shape or PascalCase.
"""
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


# ────────────────────────────────────────────
# Coercion helpers
# ────────────────────────────────────────────

def to_bool(value: Any) -> bool:
    """Strict boolean: True, "true" and 1 are true, everything else is false"""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    if isinstance(value, (int, float)):
        return value == 1
    return False


def to_pos_int(value: Any, default: int = 1) -> int:
    """Positive integer or `default`"""
    if isinstance(value, bool) or value is None:
        return default
    try:
        number = int(float(value)) if isinstance(value, str) else int(value)
    except (TypeError, ValueError, OverflowError):
        return default
    return number if number > 0 else default


def to_optional_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def to_optional_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ────────────────────────────────────────────
# Flow payload
# ────────────────────────────────────────────

class ButtonWire(WireModel):
    text: str = Field("", alias="Text", validation_alias=AliasChoices("Text", "text"))
    type: str = Field("", alias="Type", validation_alias=AliasChoices("Type", "type"))
    sub_type: str = Field("", alias="SubType", validation_alias=AliasChoices("SubType", "subType"))
    value: str = Field("", alias="Value", validation_alias=AliasChoices("Value", "value"))
    target_node_id: Optional[str] = Field(None, alias="TargetNodeId", validation_alias=AliasChoices("TargetNodeId", "targetNodeId"))
    index: Optional[int] = Field(None, alias="Index", validation_alias=AliasChoices("Index", "index"))

    @field_validator("text", "type", "sub_type", "value", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return "" if v is None else str(v)

    @field_validator("target_node_id", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        return str(v) if v else None

    @field_validator("index", mode="before")
    @classmethod
    def _index(cls, v):
        return to_optional_int(v)


class StepWire(WireModel):
    id: str = Field("", alias="Id", validation_alias=AliasChoices("Id", "id"))
    template_name: str = Field("", alias="TemplateName", validation_alias=AliasChoices("TemplateName", "templateName"))
    template_type: str = Field("", alias="TemplateType", validation_alias=AliasChoices("TemplateType", "templateType"))
    message_body: str = Field("", alias="MessageBody", validation_alias=AliasChoices("MessageBody", "messageBody"))
    position_x: Optional[float] = Field(None, alias="PositionX", validation_alias=AliasChoices("PositionX", "positionX"))
    position_y: Optional[float] = Field(None, alias="PositionY", validation_alias=AliasChoices("PositionY", "positionY"))
    trigger_button_text: str = Field("", alias="TriggerButtonText", validation_alias=AliasChoices("TriggerButtonText", "triggerButtonText"))
    trigger_button_type: str = Field("", alias="TriggerButtonType", validation_alias=AliasChoices("TriggerButtonType", "triggerButtonType"))
    required_tag: str = Field("", alias="RequiredTag", validation_alias=AliasChoices("RequiredTag", "requiredTag"))
    required_source: str = Field("", alias="RequiredSource", validation_alias=AliasChoices("RequiredSource", "requiredSource"))
    use_profile_name: bool = Field(False, alias="UseProfileName", validation_alias=AliasChoices("UseProfileName", "useProfileName"))
    profile_name_slot: int = Field(1, alias="ProfileNameSlot", validation_alias=AliasChoices("ProfileNameSlot", "profileNameSlot"))
    buttons: List[ButtonWire] = Field(default_factory=list, alias="Buttons", validation_alias=AliasChoices("Buttons", "buttons"))

    @field_validator(
        "id", "template_name", "template_type", "message_body",
        "trigger_button_text", "trigger_button_type", "required_tag", "required_source",
        mode="before",
    )
    @classmethod
    def _none_to_empty(cls, v):
        return "" if v is None else str(v)

    @field_validator("position_x", "position_y", mode="before")
    @classmethod
    def _coordinate(cls, v):
        return to_optional_float(v)

    @field_validator("use_profile_name", mode="before")
    @classmethod
    def _bool(cls, v):
        return to_bool(v)

    @field_validator("profile_name_slot", mode="before")
    @classmethod
    def _slot(cls, v):
        return to_pos_int(v, 1)

    @field_validator("buttons", mode="before")
    @classmethod
    def _list(cls, v):
        return v or []


class TransitionWire(WireModel):
    from_node_id: str = Field("", alias="FromNodeId", validation_alias=AliasChoices("FromNodeId", "fromNodeId", "source"))
    to_node_id: str = Field("", alias="ToNodeId", validation_alias=AliasChoices("ToNodeId", "toNodeId", "target"))
    source_handle: str = Field("", alias="SourceHandle", validation_alias=AliasChoices("SourceHandle", "sourceHandle"))

    @field_validator("from_node_id", "to_node_id", "source_handle", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return "" if v is None else str(v)


class FlowPayload(WireModel):
    """Create/update body sent to the persistence API"""
    flow_name: str = Field("Untitled", alias="FlowName", validation_alias=AliasChoices("FlowName", "flowName"))
    is_published: bool = Field(False, alias="IsPublished", validation_alias=AliasChoices("IsPublished", "isPublished"))
    nodes: List[StepWire] = Field(default_factory=list, alias="Nodes", validation_alias=AliasChoices("Nodes", "nodes"))
    edges: List[TransitionWire] = Field(default_factory=list, alias="Edges", validation_alias=AliasChoices("Edges", "edges"))

    @field_validator("flow_name", mode="before")
    @classmethod
    def _name(cls, v):
        return str(v) if v else "Untitled"

    @field_validator("is_published", mode="before")
    @classmethod
    def _bool(cls, v):
        return to_bool(v)

    @field_validator("nodes", "edges", mode="before")
    @classmethod
    def _list(cls, v):
        return v or []


class FlowRecord(FlowPayload):
    """A flow as returned by the load endpoint"""
    id: Optional[str] = Field(None, alias="Id", validation_alias=AliasChoices("Id", "id", "flowId", "FlowId"))

    @field_validator("id", mode="before")
    @classmethod
    def _id(cls, v):
        return str(v) if v else None


# ────────────────────────────────────────────
# Lifecycle responses
# ────────────────────────────────────────────

class CampaignUsage(WireModel):
    id: Optional[str] = None
    name: Optional[str] = None
    status: Optional[str] = None
    created_at: Optional[str] = Field(None, validation_alias=AliasChoices("createdAt", "created_at"))
    created_by: Optional[str] = Field(None, validation_alias=AliasChoices("createdBy", "created_by"))
    scheduled_at: Optional[str] = Field(None, validation_alias=AliasChoices("scheduledAt", "scheduled_at"))
    first_sent_at: Optional[str] = Field(None, validation_alias=AliasChoices("firstSentAt", "first_sent_at"))

    @field_validator("id", "name", "status", "created_at", "created_by", "scheduled_at", "first_sent_at", mode="before")
    @classmethod
    def _str(cls, v):
        return None if v is None else str(v)


class FlowUsage(WireModel):
    can_delete: bool = Field(False, validation_alias=AliasChoices("canDelete", "can_delete"))
    count: int = 0
    campaigns: List[CampaignUsage] = Field(default_factory=list)

    @field_validator("campaigns", mode="before")
    @classmethod
    def _list(cls, v):
        return v if isinstance(v, list) else []

    @field_validator("count", mode="before")
    @classmethod
    def _count(cls, v):
        return to_optional_int(v) or 0


class CreateFlowResponse(WireModel):
    flow_id: Optional[str] = Field(None, validation_alias=AliasChoices("flowId", "flow_id", "id"))

    @field_validator("flow_id", mode="before")
    @classmethod
    def _id(cls, v):
        return str(v) if v else None


class UpdateFlowResponse(WireModel):
    message: Optional[str] = None
    needs_republish: bool = Field(False, validation_alias=AliasChoices("needsRepublish", "needs_republish"))

    @field_validator("needs_republish", mode="before")
    @classmethod
    def _bool(cls, v):
        return to_bool(v)


class FlowSummary(WireModel):
    """Row of the draft/published flow lists"""
    id: str
    flow_name: str = Field("Untitled", validation_alias=AliasChoices("flowName", "flow_name", "FlowName"))
    is_published: bool = Field(False, validation_alias=AliasChoices("isPublished", "is_published"))
    created_at: Optional[str] = Field(None, validation_alias=AliasChoices("createdAt", "created_at"))
    updated_at: Optional[str] = Field(None, validation_alias=AliasChoices("updatedAt", "updated_at"))
    created_by: Optional[str] = Field(None, validation_alias=AliasChoices("createdBy", "created_by"))

    @field_validator("id", mode="before")
    @classmethod
    def _id(cls, v):
        return "" if v is None else str(v)
