# app/api/v1/flow_editor.py
"""CTA flow editor API endpoints"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.deps import (
    get_catalog,
    get_current_user_flexible,
    get_flow_api,
    get_registry,
    get_snapshots,
    get_tenant_id_flexible,
)
from app.core.config import DEFAULT_TENANT_ID
from app.core.jwt_auth import JWTAuth
from app.db.session import get_db
from app.flow_builder.errors import FlowApiError, FlowLoadError, PayloadDecodeError, ValidationRejected
from app.flow_builder.session import LEAVE_PROMPT, ActionResult, EditorSnapshot, FlowEditorSession
from app.schemas.flow_editor import (
    ActionResponse,
    AddStepRequest,
    ChangeResponse,
    CloseSessionResponse,
    ConnectRequest,
    ConnectResponse,
    FlowListResponse,
    LayoutRequest,
    MoveStepRequest,
    OpenSessionRequest,
    RenameButtonRequest,
    RenameFlowRequest,
    SessionListResponse,
    SessionStateResponse,
    StepResponse,
    StepUpdateRequest,
    TemplateListResponse,
    ValidationResponse,
    ViewUpdateRequest,
)
from app.services.cta_flow_client import CtaFlowApiClient
from app.services.session_registry import SessionRegistry
from app.services.snapshot_service import SnapshotService
from app.services.template_catalog import TemplateCatalogClient
from app.ws.manager import ws_manager

router = APIRouter()
log = logging.getLogger("flowbuilder.api.flow_editor")

# ActionResult.error_kind values answered with 409 instead of 502
LIFECYCLE_REFUSALS = {"usage_conflict", "flow_locked", "invalid_transition", "busy"}


# ────────────────────────────────────────────
# Helpers
# ────────────────────────────────────────────

def _state(session: FlowEditorSession) -> SessionStateResponse:
    data = session.describe()
    data["notifications"] = session.drain_notifications()
    return SessionStateResponse.model_validate(data)


def _get_session(registry: SessionRegistry, tenant_id: str, session_id: str) -> FlowEditorSession:
    session = registry.get(tenant_id, session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Editor session not found")
    return session


def _require_editable(session: FlowEditorSession) -> None:
    if session.editable:
        return
    if session.lifecycle.is_locked:
        raise HTTPException(
            status_code=409,
            detail="Flow is used by active campaigns and is read-only. Fork it to make changes."
        )
    raise HTTPException(status_code=409, detail="Flow is open read-only")


def _user_id(user: Dict[str, Any]) -> str:
    return user.get("user_id") or ""


def _persist(
    db: Session,
    snapshots: SnapshotService,
    user: Dict[str, Any],
    session: FlowEditorSession,
    snapshot: Optional[EditorSnapshot] = None,
) -> None:
    """Store the session snapshot; a storage failure never fails the edit"""
    try:
        snapshots.save(db, session.tenant_id, _user_id(user), snapshot or session.snapshot())
    except SQLAlchemyError as e:
        db.rollback()
        log.error(f"❌ Failed to store snapshot for session {session.id}: {e}")


async def _changed(
    db: Session,
    snapshots: SnapshotService,
    user: Dict[str, Any],
    session: FlowEditorSession,
) -> None:
    _persist(db, snapshots, user, session)
    await ws_manager.broadcast_state(session)


def _action_response(
    session: FlowEditorSession,
    result: ActionResult,
    forked_session_id: Optional[str] = None,
) -> JSONResponse:
    if result.ok:
        status_code = 200
    elif result.error_kind in LIFECYCLE_REFUSALS:
        status_code = 409
    else:
        status_code = 502

    body = ActionResponse(result=result, forked_session_id=forked_session_id, session=_state(session))
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


# ────────────────────────────────────────────
# Sessions
# ────────────────────────────────────────────

@router.post("/sessions", response_model=SessionStateResponse, status_code=201)
async def open_session(
    data: OpenSessionRequest,
    db: Session = Depends(get_db),
    user: Dict[str, Any] = Depends(get_current_user_flexible),
    tenant_id: str = Depends(get_tenant_id_flexible),
    api: CtaFlowApiClient = Depends(get_flow_api),
    registry: SessionRegistry = Depends(get_registry),
    snapshots: SnapshotService = Depends(get_snapshots),
):
    """
    Open an editor session

    - **flow_id**: existing flow to load, empty for a new flow
    - **mode**: `edit` (usage-checked) or `view` (read-only)
    - **restore**: re-apply the stored view state and unsaved draft
    """
    try:
        session = await FlowEditorSession.open(api, flow_id=data.flow_id, mode=data.mode)
    except FlowLoadError as e:
        cause = e.__cause__
        if isinstance(cause, FlowApiError) and cause.is_not_found:
            raise HTTPException(status_code=404, detail="Flow not found")
        raise HTTPException(status_code=502, detail=e.message)
    except PayloadDecodeError as e:
        raise HTTPException(status_code=502, detail=f"Flow could not be read: {e.message}")

    registry.add(tenant_id, session)

    if data.restore:
        try:
            session.restore(snapshots.load(db, tenant_id, _user_id(user), data.flow_id))
        except SQLAlchemyError as e:
            db.rollback()
            log.error(f"❌ Failed to restore snapshot for flow {data.flow_id}: {e}")

    return _state(session)


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(
    tenant_id: str = Depends(get_tenant_id_flexible),
    registry: SessionRegistry = Depends(get_registry),
):
    """List the tenant's open editor sessions"""
    sessions = [_state(s) for s in registry.list(tenant_id)]
    return SessionListResponse(total=len(sessions), sessions=sessions)


@router.get("/sessions/{session_id}", response_model=SessionStateResponse)
async def get_session(
    session_id: str,
    tenant_id: str = Depends(get_tenant_id_flexible),
    registry: SessionRegistry = Depends(get_registry),
):
    return _state(_get_session(registry, tenant_id, session_id))


@router.delete("/sessions/{session_id}", response_model=CloseSessionResponse)
async def close_session(
    session_id: str,
    force: bool = Query(False, description="Leave even with unsaved changes"),
    db: Session = Depends(get_db),
    user: Dict[str, Any] = Depends(get_current_user_flexible),
    tenant_id: str = Depends(get_tenant_id_flexible),
    registry: SessionRegistry = Depends(get_registry),
    snapshots: SnapshotService = Depends(get_snapshots),
):
    """
    Close an editor session

    Unsaved changes answer 409 with the leave prompt unless **force** is set;
    leaving anyway drops the unsaved draft and keeps the view state.
    """
    session = _get_session(registry, tenant_id, session_id)
    if session.needs_leave_confirmation and not force:
        raise HTTPException(status_code=409, detail=LEAVE_PROMPT)

    _persist(db, snapshots, user, session, EditorSnapshot(flow_id=session.lifecycle.flow_id, view=session.view))
    registry.close(tenant_id, session_id)
    await ws_manager.broadcast_closed(session_id)
    return CloseSessionResponse(session_id=session_id, closed=True)


# ────────────────────────────────────────────
# Steps
# ────────────────────────────────────────────

@router.post("/sessions/{session_id}/steps", response_model=StepResponse, status_code=201)
async def add_step(
    session_id: str,
    data: AddStepRequest,
    db: Session = Depends(get_db),
    user: Dict[str, Any] = Depends(get_current_user_flexible),
    tenant_id: str = Depends(get_tenant_id_flexible),
    registry: SessionRegistry = Depends(get_registry),
    snapshots: SnapshotService = Depends(get_snapshots),
):
    """Add a step built from a catalog template"""
    session = _get_session(registry, tenant_id, session_id)
    _require_editable(session)

    step_id = session.add_step(data.template, data.position)
    await _changed(db, snapshots, user, session)
    return StepResponse(step_id=step_id, changed=True, session=_state(session))


@router.patch("/sessions/{session_id}/steps/{step_id}", response_model=StepResponse)
async def update_step(
    session_id: str,
    step_id: str,
    data: StepUpdateRequest,
    db: Session = Depends(get_db),
    user: Dict[str, Any] = Depends(get_current_user_flexible),
    tenant_id: str = Depends(get_tenant_id_flexible),
    registry: SessionRegistry = Depends(get_registry),
    snapshots: SnapshotService = Depends(get_snapshots),
):
    """
    Edit a step's content

    - Only provided fields are updated
    - Trigger fields and the profile-name slot are re-derived
    """
    session = _get_session(registry, tenant_id, session_id)
    _require_editable(session)

    changes = data.model_dump(exclude_unset=True)
    try:
        updated = session.update_step(step_id, **changes)
    except ValidationRejected as e:
        raise HTTPException(status_code=422, detail=e.message)
    if not updated:
        raise HTTPException(status_code=404, detail="Step not found")

    await _changed(db, snapshots, user, session)
    return StepResponse(step_id=step_id, changed=True, session=_state(session))


@router.put("/sessions/{session_id}/steps/{step_id}/position", response_model=StepResponse)
async def move_step(
    session_id: str,
    step_id: str,
    data: MoveStepRequest,
    db: Session = Depends(get_db),
    user: Dict[str, Any] = Depends(get_current_user_flexible),
    tenant_id: str = Depends(get_tenant_id_flexible),
    registry: SessionRegistry = Depends(get_registry),
    snapshots: SnapshotService = Depends(get_snapshots),
):
    session = _get_session(registry, tenant_id, session_id)
    _require_editable(session)

    if not session.move_step(step_id, data.x, data.y):
        raise HTTPException(status_code=404, detail="Step not found")

    await _changed(db, snapshots, user, session)
    return StepResponse(step_id=step_id, changed=True, session=_state(session))


@router.delete("/sessions/{session_id}/steps/{step_id}", response_model=StepResponse)
async def remove_step(
    session_id: str,
    step_id: str,
    db: Session = Depends(get_db),
    user: Dict[str, Any] = Depends(get_current_user_flexible),
    tenant_id: str = Depends(get_tenant_id_flexible),
    registry: SessionRegistry = Depends(get_registry),
    snapshots: SnapshotService = Depends(get_snapshots),
):
    """Remove a step and its transitions; removing it again is a no-op"""
    session = _get_session(registry, tenant_id, session_id)
    _require_editable(session)

    removed = session.remove_step(step_id)
    if removed:
        await _changed(db, snapshots, user, session)
    return StepResponse(step_id=step_id, changed=removed, session=_state(session))


@router.put("/sessions/{session_id}/steps/{step_id}/buttons/{index}", response_model=StepResponse)
async def rename_button(
    session_id: str,
    step_id: str,
    index: int,
    data: RenameButtonRequest,
    db: Session = Depends(get_db),
    user: Dict[str, Any] = Depends(get_current_user_flexible),
    tenant_id: str = Depends(get_tenant_id_flexible),
    registry: SessionRegistry = Depends(get_registry),
    snapshots: SnapshotService = Depends(get_snapshots),
):
    """Relabel a button; transitions bound to it follow the new label"""
    session = _get_session(registry, tenant_id, session_id)
    _require_editable(session)

    try:
        renamed = session.rename_button(step_id, index, data.text)
    except ValidationRejected as e:
        raise HTTPException(status_code=409, detail=e.message)
    if not renamed:
        raise HTTPException(status_code=404, detail="Button not found")

    await _changed(db, snapshots, user, session)
    return StepResponse(step_id=step_id, changed=True, session=_state(session))


@router.put("/sessions/{session_id}/name", response_model=ChangeResponse)
async def rename_flow(
    session_id: str,
    data: RenameFlowRequest,
    db: Session = Depends(get_db),
    user: Dict[str, Any] = Depends(get_current_user_flexible),
    tenant_id: str = Depends(get_tenant_id_flexible),
    registry: SessionRegistry = Depends(get_registry),
    snapshots: SnapshotService = Depends(get_snapshots),
):
    session = _get_session(registry, tenant_id, session_id)
    _require_editable(session)

    session.rename_flow(data.name)
    await _changed(db, snapshots, user, session)
    return ChangeResponse(changed=True, session=_state(session))


# ────────────────────────────────────────────
# Transitions and layout
# ────────────────────────────────────────────

@router.post("/sessions/{session_id}/transitions", response_model=ConnectResponse)
async def connect(
    session_id: str,
    data: ConnectRequest,
    db: Session = Depends(get_db),
    user: Dict[str, Any] = Depends(get_current_user_flexible),
    tenant_id: str = Depends(get_tenant_id_flexible),
    registry: SessionRegistry = Depends(get_registry),
    snapshots: SnapshotService = Depends(get_snapshots),
):
    """
    Connect a button to the next step

    A rejected connection (button already wired, unknown step) answers
    `accepted: false` and leaves the flow unchanged.
    """
    session = _get_session(registry, tenant_id, session_id)
    _require_editable(session)

    transition = session.connect(data.source, data.source_handle, data.target)
    if transition is not None:
        await _changed(db, snapshots, user, session)
    return ConnectResponse(accepted=transition is not None, transition=transition, session=_state(session))


@router.delete("/sessions/{session_id}/transitions/{edge_id}", response_model=ChangeResponse)
async def disconnect(
    session_id: str,
    edge_id: str,
    db: Session = Depends(get_db),
    user: Dict[str, Any] = Depends(get_current_user_flexible),
    tenant_id: str = Depends(get_tenant_id_flexible),
    registry: SessionRegistry = Depends(get_registry),
    snapshots: SnapshotService = Depends(get_snapshots),
):
    session = _get_session(registry, tenant_id, session_id)
    _require_editable(session)

    removed = session.disconnect(edge_id)
    if removed:
        await _changed(db, snapshots, user, session)
    return ChangeResponse(changed=removed, session=_state(session))


@router.post("/sessions/{session_id}/layout", response_model=ChangeResponse)
async def apply_layout(
    session_id: str,
    data: LayoutRequest,
    db: Session = Depends(get_db),
    user: Dict[str, Any] = Depends(get_current_user_flexible),
    tenant_id: str = Depends(get_tenant_id_flexible),
    registry: SessionRegistry = Depends(get_registry),
    snapshots: SnapshotService = Depends(get_snapshots),
):
    """Auto-arrange the steps left-to-right (LR) or top-to-bottom (TB)"""
    session = _get_session(registry, tenant_id, session_id)
    _require_editable(session)

    session.apply_layout(data.direction)
    await _changed(db, snapshots, user, session)
    return ChangeResponse(changed=True, session=_state(session))


@router.patch("/sessions/{session_id}/view", response_model=SessionStateResponse)
async def update_view(
    session_id: str,
    data: ViewUpdateRequest,
    db: Session = Depends(get_db),
    user: Dict[str, Any] = Depends(get_current_user_flexible),
    tenant_id: str = Depends(get_tenant_id_flexible),
    registry: SessionRegistry = Depends(get_registry),
    snapshots: SnapshotService = Depends(get_snapshots),
):
    """Canvas preferences; allowed on read-only flows"""
    session = _get_session(registry, tenant_id, session_id)
    session.set_view(**data.model_dump(exclude_unset=True))
    await _changed(db, snapshots, user, session)
    return _state(session)


@router.get("/sessions/{session_id}/validation", response_model=ValidationResponse)
async def validate_session_flow(
    session_id: str,
    tenant_id: str = Depends(get_tenant_id_flexible),
    registry: SessionRegistry = Depends(get_registry),
):
    """
    Validate the flow

    Errors should block publishing; warnings (unreachable steps, orphaned
    transitions) are hints.
    """
    session = _get_session(registry, tenant_id, session_id)
    report = session.validation_report()
    return ValidationResponse(
        is_valid=report.is_valid,
        errors=report.errors,
        warnings=report.warnings,
        incoming=session.graph.derive_incoming_warnings(),
    )


@router.post("/sessions/{session_id}/fork-prompt/dismiss", response_model=SessionStateResponse)
async def dismiss_fork_prompt(
    session_id: str,
    tenant_id: str = Depends(get_tenant_id_flexible),
    registry: SessionRegistry = Depends(get_registry),
):
    """Close the fork-or-close prompt; the flow stays read-only"""
    session = _get_session(registry, tenant_id, session_id)
    session.dismiss_fork_prompt()
    await ws_manager.broadcast_state(session)
    return _state(session)


# ────────────────────────────────────────────
# Lifecycle actions
# ────────────────────────────────────────────

@router.post("/sessions/{session_id}/save", response_model=ActionResponse)
async def save_draft(
    session_id: str,
    db: Session = Depends(get_db),
    user: Dict[str, Any] = Depends(get_current_user_flexible),
    tenant_id: str = Depends(get_tenant_id_flexible),
    registry: SessionRegistry = Depends(get_registry),
    snapshots: SnapshotService = Depends(get_snapshots),
):
    """
    Save the flow as a draft

    Never publishes. A flow attached to campaigns answers 409 and the
    session switches to read-only with the fork prompt.
    """
    session = _get_session(registry, tenant_id, session_id)
    was_new = session.lifecycle.flow_id is None

    result = await session.save_draft()
    if result.ok and was_new:
        snapshots.discard(db, tenant_id, _user_id(user), None)

    await _changed(db, snapshots, user, session)
    return _action_response(session, result)


@router.post("/sessions/{session_id}/publish", response_model=ActionResponse)
async def publish(
    session_id: str,
    db: Session = Depends(get_db),
    user: Dict[str, Any] = Depends(get_current_user_flexible),
    tenant_id: str = Depends(get_tenant_id_flexible),
    registry: SessionRegistry = Depends(get_registry),
    snapshots: SnapshotService = Depends(get_snapshots),
):
    """Save, then publish the flow"""
    session = _get_session(registry, tenant_id, session_id)
    was_new = session.lifecycle.flow_id is None

    result = await session.publish()
    if was_new and session.lifecycle.flow_id:
        snapshots.discard(db, tenant_id, _user_id(user), None)

    await _changed(db, snapshots, user, session)
    return _action_response(session, result)


@router.post("/sessions/{session_id}/fork", response_model=ActionResponse)
async def fork(
    session_id: str,
    open_fork: bool = Query(False, description="Open an editor session on the new draft"),
    tenant_id: str = Depends(get_tenant_id_flexible),
    api: CtaFlowApiClient = Depends(get_flow_api),
    registry: SessionRegistry = Depends(get_registry),
):
    """
    Fork a flow that is used by active campaigns

    The original stays published and locked; the copy is a new draft.
    """
    session = _get_session(registry, tenant_id, session_id)
    result = await session.fork()

    forked_session_id = None
    if result.ok and open_fork:
        try:
            forked = await FlowEditorSession.open(api, flow_id=result.new_flow_id)
            registry.add(tenant_id, forked)
            forked_session_id = forked.id
        except (FlowLoadError, PayloadDecodeError) as e:
            log.warning(f"⚠️ Fork {result.new_flow_id} created but could not be opened: {e.message}")

    await ws_manager.broadcast_state(session)
    return _action_response(session, result, forked_session_id)


@router.delete("/sessions/{session_id}/flow", response_model=ActionResponse)
async def delete_flow(
    session_id: str,
    db: Session = Depends(get_db),
    user: Dict[str, Any] = Depends(get_current_user_flexible),
    tenant_id: str = Depends(get_tenant_id_flexible),
    registry: SessionRegistry = Depends(get_registry),
    snapshots: SnapshotService = Depends(get_snapshots),
):
    """Delete the flow permanently; refused while campaigns use it"""
    session = _get_session(registry, tenant_id, session_id)
    flow_id = session.lifecycle.flow_id

    result = await session.delete()
    if result.ok:
        snapshots.discard(db, tenant_id, _user_id(user), flow_id)

    await ws_manager.broadcast_state(session)
    return _action_response(session, result)


# ────────────────────────────────────────────
# Lookups
# ────────────────────────────────────────────

@router.get("/templates", response_model=TemplateListResponse)
async def list_templates(catalog: TemplateCatalogClient = Depends(get_catalog)):
    """Templates available as step content"""
    try:
        templates = await catalog.list_templates()
    except FlowApiError as e:
        raise HTTPException(status_code=502, detail=e.message)
    return TemplateListResponse(total=len(templates), templates=templates)


@router.get("/flows", response_model=FlowListResponse)
async def list_flows(
    published: bool = Query(True, description="Published flows, or drafts when false"),
    api: CtaFlowApiClient = Depends(get_flow_api),
):
    try:
        flows = await api.list_flows(published=published)
    except FlowApiError as e:
        raise HTTPException(status_code=502, detail=e.message)
    return FlowListResponse(total=len(flows), flows=flows)


# ────────────────────────────────────────────
# WebSocket
# ────────────────────────────────────────────

@router.websocket("/sessions/{session_id}/ws")
async def session_websocket(
    websocket: WebSocket,
    session_id: str,
    token: Optional[str] = Query(None),
    tenant_id: Optional[str] = Query(None),
    registry: SessionRegistry = Depends(get_registry),
):
    """Live session state; the client may send "ping" to keep it open"""
    tenant = tenant_id or websocket.headers.get("x-tenant-id") or DEFAULT_TENANT_ID
    if token:
        try:
            tenant = JWTAuth.get_tenant_id(JWTAuth.decode_token(token)) or tenant
        except HTTPException:
            await websocket.close(code=1008)
            return

    session = registry.get(tenant, session_id)
    if session is None:
        await websocket.close(code=1008)
        return

    await ws_manager.connect(session_id, websocket)
    try:
        await websocket.send_json(jsonable_encoder({"event": "session_state", "data": session.describe()}))
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                registry.get(tenant, session_id)
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        log.info(f"🔌 WebSocket disconnected for session: {session_id}")
    finally:
        ws_manager.disconnect(session_id, websocket)
