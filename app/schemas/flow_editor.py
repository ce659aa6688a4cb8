# app/schemas/flow_editor.py
"""Pydantic schemas for the flow editor API"""
from pydantic import BaseModel, Field
from typing import List, Optional, Dict

from app.flow_builder.graph import Flow, FlowButton, FlowTransition, Position, TemplateContent
from app.flow_builder.session import ActionResult, Notification, ViewState
from app.flow_builder.validator import MAX_BUTTONS_PER_STEP
from app.schemas.cta_flow import CampaignUsage, FlowSummary


# ────────────────────────────────────────────
# Sessions
# ────────────────────────────────────────────

class OpenSessionRequest(BaseModel):
    """Open an editor on an existing flow, or on a new one when flow_id is empty"""
    flow_id: Optional[str] = Field(None, description="Flow to open; empty starts a new flow")
    mode: str = Field("edit", pattern="^(edit|view)$", description="edit runs the usage check, view is read-only")
    restore: bool = Field(True, description="Re-apply the stored view state and unsaved draft")

    class Config:
        json_schema_extra = {
            "example": {"flow_id": "8f1c2d9e", "mode": "edit", "restore": True}
        }


class LifecycleInfo(BaseModel):
    flow_id: Optional[str] = None
    state: str
    is_published: bool = False
    read_only: bool = False
    fork_prompt_open: bool = False
    needs_republish: bool = False
    deleted: bool = False
    campaigns: List[CampaignUsage] = Field(default_factory=list)
    could_not_enumerate: bool = False


class SessionStateResponse(BaseModel):
    """Everything the canvas needs to render a session"""
    session_id: str
    tenant_id: Optional[str] = None
    mode: str
    version: int
    flow: Flow
    lifecycle: LifecycleInfo
    view: ViewState
    dirty: bool
    busy: bool
    closed: bool
    needs_leave_confirmation: bool
    leave_prompt: Optional[str] = None
    notifications: List[Notification] = Field(default_factory=list)


class SessionListResponse(BaseModel):
    total: int
    sessions: List[SessionStateResponse]


class CloseSessionResponse(BaseModel):
    session_id: str
    closed: bool


# ────────────────────────────────────────────
# Edits
# ────────────────────────────────────────────

class AddStepRequest(BaseModel):
    template: TemplateContent = Field(..., description="Catalog entry the step is built from")
    position: Optional[Position] = Field(None, description="Canvas position; random when omitted")


class StepUpdateRequest(BaseModel):
    """Only provided fields are changed"""
    template_name: Optional[str] = None
    template_type: Optional[str] = Field(None, pattern="^(text_template|image_template)$")
    message_body: Optional[str] = None
    required_tag: Optional[str] = None
    required_source: Optional[str] = None
    use_profile_name: Optional[bool] = None
    profile_name_slot: Optional[int] = None
    buttons: Optional[List[FlowButton]] = Field(None, max_length=MAX_BUTTONS_PER_STEP)
    width: Optional[float] = None
    height: Optional[float] = None


class MoveStepRequest(BaseModel):
    x: float
    y: float


class RenameButtonRequest(BaseModel):
    text: str


class RenameFlowRequest(BaseModel):
    name: str = Field(..., max_length=255)


class ConnectRequest(BaseModel):
    source: str
    source_handle: str = Field(..., description="Label of the source button")
    target: str


class LayoutRequest(BaseModel):
    direction: str = Field("LR", pattern="^(LR|TB)$")


class ViewUpdateRequest(BaseModel):
    show_minimap: Optional[bool] = None
    layout_direction: Optional[str] = Field(None, pattern="^(LR|TB)$")
    sidebar_collapsed: Optional[bool] = None
    selected_step_id: Optional[str] = None


class StepResponse(BaseModel):
    step_id: Optional[str] = None
    changed: bool
    session: SessionStateResponse


class ConnectResponse(BaseModel):
    accepted: bool
    transition: Optional[FlowTransition] = None
    session: SessionStateResponse


class ChangeResponse(BaseModel):
    changed: bool
    session: SessionStateResponse


# ────────────────────────────────────────────
# Actions and lookups
# ────────────────────────────────────────────

class ActionResponse(BaseModel):
    result: ActionResult
    forked_session_id: Optional[str] = None
    session: SessionStateResponse


class FlowListResponse(BaseModel):
    total: int
    flows: List[FlowSummary]


class TemplateListResponse(BaseModel):
    total: int
    templates: List[TemplateContent]


class ValidationResponse(BaseModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    incoming: Dict[str, bool] = Field(default_factory=dict, description="step id -> has no incoming trigger")
