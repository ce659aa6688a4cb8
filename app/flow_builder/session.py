# app/flow_builder/session.py
"""
FlowEditorSession - one open editor for one flow.

Holds the graph, the lifecycle controller and the view state the canvas
needs. Edits are synchronous and local; save/publish/fork/delete are async
actions that always come back as an ActionResult.
"""
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.flow_builder.codec import PayloadCodec
from app.flow_builder.errors import (
    FlowApiError,
    FlowBuilderError,
    FlowLoadError,
    SessionBusyError,
    UsageConflictError,
)
from app.flow_builder.graph import Flow, FlowTransition, GraphModel, Position
from app.flow_builder.layout import DIRECTIONS, LEFT_TO_RIGHT, LayeredLayout, LayoutStrategy
from app.flow_builder.lifecycle import LifecycleController
from app.flow_builder.validator import FlowValidationReport, validate_flow
from app.schemas.cta_flow import CampaignUsage

log = logging.getLogger("flowbuilder.session")

LEAVE_PROMPT = "You have unsaved changes. Leave this page?"
MAX_NOTIFICATIONS = 50

EDIT_MODE = "edit"
VIEW_MODE = "view"


class ActionResult(BaseModel):
    """Outcome of an async editor action; failures carry a readable message"""
    ok: bool
    action: str
    message: str = ""
    error_kind: Optional[str] = None
    flow_id: Optional[str] = None
    new_flow_id: Optional[str] = None
    state: Optional[str] = None
    needs_republish: bool = False
    campaigns: List[CampaignUsage] = Field(default_factory=list)
    ignored: bool = False


class Notification(BaseModel):
    level: str = "info"
    message: str
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ViewState(BaseModel):
    """Canvas preferences that used to live in page globals"""
    show_minimap: bool = True
    layout_direction: str = LEFT_TO_RIGHT
    sidebar_collapsed: bool = False
    selected_step_id: Optional[str] = None


class EditorSnapshot(BaseModel):
    """What gets persisted between page loads"""
    flow_id: Optional[str] = None
    flow: Optional[Flow] = None
    view: ViewState = Field(default_factory=ViewState)
    dirty: bool = False


class FlowEditorSession:
    """Editing session for a single flow"""

    def __init__(
        self,
        api: Any,
        flow: Optional[Flow] = None,
        codec: Optional[PayloadCodec] = None,
        layout: Optional[LayoutStrategy] = None,
        session_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        rng=None,
    ):
        flow = flow if flow is not None else Flow()
        self.id = session_id or uuid.uuid4().hex
        self.tenant_id = tenant_id
        self.api = api
        self.codec = codec or PayloadCodec()
        self.layout_strategy = layout or LayeredLayout()
        self.graph = GraphModel(flow, rng=rng)
        self.lifecycle = LifecycleController(api, flow.id, flow.is_published)
        self.view = ViewState()
        self.mode = EDIT_MODE
        self.dirty = False
        self.busy = False
        self.closed = False
        self.version = 0
        self.notifications: List[Notification] = []

    @classmethod
    async def open(
        cls,
        api: Any,
        flow_id: Optional[str] = None,
        mode: str = EDIT_MODE,
        **kwargs,
    ) -> "FlowEditorSession":
        """
        Load a flow (or start a new one) and enter edit or view mode.

        Raises FlowLoadError when the flow cannot be fetched and
        PayloadDecodeError when it cannot be decoded; nothing is built in
        either case.
        """
        codec = kwargs.pop("codec", None) or PayloadCodec()

        if flow_id:
            try:
                data = await api.load_flow(flow_id)
            except FlowApiError as e:
                log.error(f"❌ Failed to load flow {flow_id}: {e.message}")
                raise FlowLoadError(f"Failed to load flow: {e.message}") from e
            flow = codec.decode(data, flow_id=flow_id)
        else:
            flow = Flow()

        session = cls(api, flow=flow, codec=codec, **kwargs)
        if mode == VIEW_MODE:
            session.mode = VIEW_MODE
            session.lifecycle.enter_view()
        else:
            await session.lifecycle.enter_edit()
            if session.lifecycle.is_locked:
                session.notify(
                    "warning",
                    "This flow is used by active campaigns. Fork it to make changes.",
                )

        log.info(
            f"📂 Session {session.id} opened flow {flow_id or '<new>'} "
            f"({session.mode}, {session.lifecycle.state.value})"
        )
        return session

    # ────────────────────────────────────────────
    # State
    # ────────────────────────────────────────────

    @property
    def flow(self) -> Flow:
        return self.graph.flow

    @property
    def editable(self) -> bool:
        return not self.closed and self.lifecycle.can_mutate

    @property
    def needs_leave_confirmation(self) -> bool:
        return self.dirty and self.editable

    def notify(self, level: str, message: str) -> None:
        self.notifications.append(Notification(level=level, message=message))
        del self.notifications[:-MAX_NOTIFICATIONS]

    def drain_notifications(self) -> List[Notification]:
        drained, self.notifications = self.notifications, []
        return drained

    def _touch(self, dirty: bool = True) -> None:
        if dirty:
            self.dirty = True
        self.version += 1

    def _refuse(self, what: str) -> bool:
        if self.editable:
            return False
        log.debug(f"Session {self.id}: {what} refused, flow is read-only")
        return True

    # ────────────────────────────────────────────
    # Edits
    # ────────────────────────────────────────────

    def add_step(self, content: Any, position: Optional[Position] = None) -> Optional[str]:
        if self._refuse("add step"):
            return None
        step_id = self.graph.add_step(content, position)
        self._touch()
        return step_id

    def update_step(self, step_id: str, **changes) -> bool:
        """ValidationRejected from the graph propagates with the flow unchanged"""
        if self._refuse("update step"):
            return False
        changed = self.graph.update_step(step_id, **changes)
        if changed:
            self._touch()
        return changed

    def move_step(self, step_id: str, x: float, y: float) -> bool:
        if self._refuse("move step"):
            return False
        moved = self.graph.move_step(step_id, x, y)
        if moved:
            self._touch()
        return moved

    def rename_button(self, step_id: str, index: int, text: str) -> bool:
        if self._refuse("rename button"):
            return False
        renamed = self.graph.rename_button(step_id, index, text)
        if renamed:
            self._touch()
        return renamed

    def remove_step(self, step_id: str) -> bool:
        if self._refuse("remove step"):
            return False
        removed = self.graph.remove_step(step_id)
        if removed:
            if self.view.selected_step_id == step_id:
                self.view.selected_step_id = None
            self._touch()
        return removed

    def rename_flow(self, name: str) -> bool:
        if self._refuse("rename flow"):
            return False
        self.graph.rename(name)
        self._touch()
        return True

    def connect(self, source: str, source_handle: str, target: str) -> Optional[FlowTransition]:
        """Add a transition; None when the connection is rejected"""
        if self._refuse("connect"):
            return None
        transition = self.graph.add_transition(source, source_handle, target)
        if transition is not None:
            self._touch()
        return transition

    def disconnect(self, edge_id: str) -> bool:
        if self._refuse("disconnect"):
            return False
        removed = self.graph.remove_transition(edge_id)
        if removed:
            self._touch()
        return removed

    def apply_layout(self, direction: Optional[str] = None) -> bool:
        """Re-position every step with the layout strategy"""
        if self._refuse("layout"):
            return False
        direction = direction if direction in DIRECTIONS else self.view.layout_direction
        positioned = self.layout_strategy.layout(self.graph.steps, self.graph.transitions, direction)
        self.graph.replace_steps(positioned)
        self.view.layout_direction = direction
        self._touch()
        log.debug(f"📐 Session {self.id}: laid out {len(positioned)} step(s) {direction}")
        return True

    def set_view(self, **changes) -> ViewState:
        """Update view preferences; allowed in read-only mode, never dirties"""
        data = self.view.model_dump()
        data.update({k: v for k, v in changes.items() if v is not None})
        self.view = ViewState.model_validate(data)
        self._touch(dirty=False)
        return self.view

    def dismiss_fork_prompt(self) -> None:
        self.lifecycle.dismiss_fork_prompt()
        self._touch(dirty=False)

    def validation_report(self) -> FlowValidationReport:
        return validate_flow(self.graph.flow)

    # ────────────────────────────────────────────
    # Async actions
    # ────────────────────────────────────────────

    def _failure(self, action: str, error: Exception) -> ActionResult:
        if isinstance(error, FlowBuilderError):
            message, kind = error.message or str(error), error.kind
        else:
            message, kind = str(error), "error"

        campaigns: List[CampaignUsage] = []
        if isinstance(error, UsageConflictError):
            campaigns = self.lifecycle.campaigns or [
                CampaignUsage.model_validate(c) for c in error.campaigns if isinstance(c, dict)
            ]

        return ActionResult(
            ok=False,
            action=action,
            message=message,
            error_kind=kind,
            flow_id=self.lifecycle.flow_id,
            state=self.lifecycle.state.value,
            campaigns=campaigns,
        )

    async def _run(self, action: str, func, *args):
        """
        Run one lifecycle call under the busy flag.

        Returns (value, None) or (None, ActionResult describing the failure).
        """
        if self.closed:
            return None, ActionResult(ok=False, action=action, message="Session is closed", ignored=True)
        if self.busy:
            return None, self._failure(
                action, SessionBusyError("Another save, publish or fork is still in progress")
            )

        self.busy = True
        try:
            value = await func(*args)
        except (FlowBuilderError, ValueError) as e:
            log.error(f"❌ Session {self.id}: {action} failed: {e}")
            if self.lifecycle.flow_id:
                # a create can succeed before a later step of the same action fails
                self.graph.flow.id = self.lifecycle.flow_id
            error = self._failure(action, e)
            if self.closed:
                error.ignored = True
            else:
                self.notify("error", error.message)
                self._touch(dirty=False)
            return None, error
        finally:
            self.busy = False

        if self.closed:
            log.info(f"Session {self.id} closed while {action} was pending, result ignored")
            return None, ActionResult(
                ok=True, action=action, message="Session closed before completion", ignored=True
            )
        return value, None

    def _after_write(self, flow_id: str) -> None:
        self.graph.flow.id = flow_id
        self.graph.flow.is_published = self.lifecycle.is_published
        self.dirty = False
        self._touch(dirty=False)

    async def save_draft(self) -> ActionResult:
        payload = self.codec.encode(self.graph.flow)
        outcome, error = await self._run("save", self.lifecycle.save, payload)
        if error is not None:
            return error

        self._after_write(outcome.flow_id)
        message = "Flow saved successfully"
        if outcome.needs_republish:
            message = "Flow updated. Publish again to apply the changes"
        self.notify("success", message)
        return ActionResult(
            ok=True,
            action="save",
            message=message,
            flow_id=outcome.flow_id,
            state=self.lifecycle.state.value,
            needs_republish=outcome.needs_republish,
        )

    async def publish(self) -> ActionResult:
        payload = self.codec.encode(self.graph.flow)
        outcome, error = await self._run("publish", self.lifecycle.publish, payload)
        if error is not None:
            return error

        self._after_write(outcome.flow_id)
        self.notify("success", "Flow published successfully")
        return ActionResult(
            ok=True,
            action="publish",
            message="Flow published successfully",
            flow_id=outcome.flow_id,
            state=self.lifecycle.state.value,
        )

    async def fork(self) -> ActionResult:
        """Fork a locked flow; this session keeps showing the original"""
        new_id, error = await self._run("fork", self.lifecycle.fork)
        if error is not None:
            return error

        self._touch(dirty=False)
        self.notify("success", "Flow forked into a new draft")
        return ActionResult(
            ok=True,
            action="fork",
            message="Flow forked into a new draft",
            flow_id=self.lifecycle.flow_id,
            new_flow_id=new_id,
            state=self.lifecycle.state.value,
        )

    async def delete(self) -> ActionResult:
        _, error = await self._run("delete", self.lifecycle.delete)
        if error is not None:
            return error

        self.dirty = False
        self._touch(dirty=False)
        self.notify("success", "Flow deleted")
        return ActionResult(
            ok=True,
            action="delete",
            message="Flow deleted",
            flow_id=self.lifecycle.flow_id,
            state=self.lifecycle.state.value,
        )

    def close(self) -> None:
        """Tear down; results of still-pending actions are dropped"""
        self.closed = True
        log.info(f"📕 Session {self.id} closed")

    # ────────────────────────────────────────────
    # Snapshot / restore
    # ────────────────────────────────────────────

    def snapshot(self) -> EditorSnapshot:
        """Unsaved work is only captured while it could still be saved"""
        keep_flow = self.dirty and self.editable
        return EditorSnapshot(
            flow_id=self.lifecycle.flow_id,
            flow=self.graph.flow.model_copy(deep=True) if keep_flow else None,
            view=self.view.model_copy(),
            dirty=keep_flow,
        )

    def restore(self, snapshot: Optional[EditorSnapshot]) -> bool:
        """
        Re-apply a stored snapshot. View state always comes back; the draft
        graph only for the same flow and only while editable.
        """
        if snapshot is None:
            return False

        self.view = snapshot.view.model_copy()
        restored_flow = False
        if (
            snapshot.flow is not None
            and snapshot.dirty
            and snapshot.flow_id == self.lifecycle.flow_id
            and self.editable
        ):
            flow = snapshot.flow.model_copy(deep=True)
            flow.id = self.lifecycle.flow_id
            flow.is_published = self.lifecycle.is_published
            self.graph = GraphModel(flow, validator=self.graph.validator)
            self.dirty = True
            restored_flow = True
            self.notify("info", "Restored unsaved changes")

        self._touch(dirty=False)
        return restored_flow

    def describe(self) -> Dict[str, Any]:
        lifecycle = self.lifecycle.describe()
        lifecycle["read_only"] = not self.editable
        return {
            "session_id": self.id,
            "tenant_id": self.tenant_id,
            "mode": self.mode,
            "version": self.version,
            "flow": self.graph.flow.model_dump(),
            "lifecycle": lifecycle,
            "view": self.view.model_dump(),
            "dirty": self.dirty,
            "busy": self.busy,
            "closed": self.closed,
            "needs_leave_confirmation": self.needs_leave_confirmation,
            "leave_prompt": LEAVE_PROMPT if self.needs_leave_confirmation else None,
        }
