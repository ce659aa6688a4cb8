# app/flow_builder/lifecycle.py
"""
Lifecycle state machine of a CTA flow.

    new ──save──▶ draft_unpublished ──publish──▶ published_unlocked
                                                   │
                         usage check / 409 ────────▼
                                           published_locked ──fork──▶ (new draft id)

A published flow that drives live campaigns must never be rewritten in
place: the controller refuses save/publish while locked, without touching
the network, and offers a fork instead.
"""
import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from app.flow_builder.errors import (
    FlowApiError,
    FlowBuilderError,
    FlowDeleteError,
    FlowForkError,
    FlowLockedError,
    FlowPublishError,
    FlowSaveError,
    InvalidTransitionError,
    UsageCheckError,
    UsageConflictError,
)
from app.schemas.cta_flow import CampaignUsage, FlowPayload

log = logging.getLogger("flowbuilder.lifecycle")


class LifecycleState(str, Enum):
    NEW = "new"
    DRAFT_UNPUBLISHED = "draft_unpublished"
    PUBLISHED_UNLOCKED = "published_unlocked"
    PUBLISHED_LOCKED = "published_locked"


class FlowApi(Protocol):
    """What the controller needs from the persistence API client"""

    async def create_flow(self, payload: FlowPayload) -> Any: ...

    async def update_flow(self, flow_id: str, payload: FlowPayload) -> Any: ...

    async def publish_flow(self, flow_id: str) -> Any: ...

    async def fork_flow(self, flow_id: str) -> Any: ...

    async def get_usage(self, flow_id: str) -> Any: ...

    async def delete_flow(self, flow_id: str) -> Any: ...


class UsageLock(BaseModel):
    """Why a flow is locked; an empty campaign list means they could not be listed"""
    campaigns: List[CampaignUsage] = Field(default_factory=list)
    could_not_enumerate: bool = False
    reason: str = ""


class SaveOutcome(BaseModel):
    flow_id: str
    created: bool = False
    needs_republish: bool = False


def _campaigns(raw: Optional[List[Any]]) -> List[CampaignUsage]:
    campaigns = []
    for item in raw or []:
        if isinstance(item, CampaignUsage):
            campaigns.append(item)
        elif isinstance(item, dict):
            campaigns.append(CampaignUsage.model_validate(item))
    return campaigns


class LifecycleController:
    """Decides what may happen to one flow and performs the lifecycle calls"""

    def __init__(self, api: FlowApi, flow_id: Optional[str] = None, is_published: bool = False):
        self.api = api
        self.flow_id = flow_id or None
        self.is_published = bool(is_published) if self.flow_id else False
        self.state = self.derive_state(self.flow_id, self.is_published)
        self.read_only = False
        self.lock: Optional[UsageLock] = None
        self.fork_prompt_open = False
        self.needs_republish = False
        self.deleted = False

    @staticmethod
    def derive_state(flow_id: Optional[str], is_published: bool, locked: bool = False) -> LifecycleState:
        if not flow_id:
            return LifecycleState.NEW
        if not is_published:
            return LifecycleState.DRAFT_UNPUBLISHED
        if locked:
            return LifecycleState.PUBLISHED_LOCKED
        return LifecycleState.PUBLISHED_UNLOCKED

    @property
    def is_locked(self) -> bool:
        return self.state == LifecycleState.PUBLISHED_LOCKED

    @property
    def can_mutate(self) -> bool:
        return not self.read_only and not self.is_locked and not self.deleted

    @property
    def campaigns(self) -> List[CampaignUsage]:
        return list(self.lock.campaigns) if self.lock else []

    def _set_state(self, state: LifecycleState) -> None:
        if state != self.state:
            log.info(f"🔁 Flow {self.flow_id or '<new>'}: {self.state.value} -> {state.value}")
        self.state = state

    def lock_for_usage(self, campaigns: Optional[List[Any]] = None, reason: str = "") -> None:
        """Force read-only + fork-or-close"""
        parsed = _campaigns(campaigns)
        self.lock = UsageLock(
            campaigns=parsed,
            could_not_enumerate=not parsed,
            reason=reason or "Flow is attached to active campaigns",
        )
        self.read_only = True
        self.fork_prompt_open = True
        self._set_state(LifecycleState.PUBLISHED_LOCKED)
        log.warning(f"🔒 Flow {self.flow_id} locked ({len(parsed)} campaign(s))")

    # ────────────────────────────────────────────
    # Entering the editor
    # ────────────────────────────────────────────

    async def enter_edit(self) -> LifecycleState:
        """
        Open the flow for editing.

        Published flows get a usage check first. A failing check locks the
        flow, the same as a positive one.
        """
        self.read_only = False
        self.fork_prompt_open = False
        self.lock = None

        if not self.flow_id or not self.is_published:
            self._set_state(self.derive_state(self.flow_id, self.is_published))
            return self.state

        try:
            usage = await self.api.get_usage(self.flow_id)
        except (FlowBuilderError, ValueError) as e:
            log.error(f"❌ Usage check failed for flow {self.flow_id}: {e}")
            self.lock_for_usage([], reason="Could not verify campaign usage")
            return self.state

        campaigns = list(getattr(usage, "campaigns", None) or [])
        count = getattr(usage, "count", 0) or 0
        if campaigns or count > 0:
            self.lock_for_usage(campaigns)
        else:
            self._set_state(LifecycleState.PUBLISHED_UNLOCKED)
        return self.state

    def enter_view(self) -> LifecycleState:
        """Read-only viewing; no usage check is made"""
        self.read_only = True
        self.fork_prompt_open = False
        return self.state

    def dismiss_fork_prompt(self) -> None:
        self.fork_prompt_open = False

    # ────────────────────────────────────────────
    # Actions
    # ────────────────────────────────────────────

    def _ensure_writable(self, action: str) -> None:
        if self.deleted:
            raise InvalidTransitionError(f"Cannot {action} a deleted flow")
        if self.is_locked:
            raise FlowLockedError(
                f"Flow is attached to active campaigns and cannot be {action}d in place. Fork it to make changes."
            )
        if self.read_only:
            raise InvalidTransitionError(f"Flow is open read-only, cannot {action}")

    async def _write(self, payload: FlowPayload, error_cls) -> SaveOutcome:
        payload = payload.model_copy(update={"is_published": False})

        if self.state == LifecycleState.NEW:
            try:
                result = await self.api.create_flow(payload)
            except FlowApiError as e:
                raise error_cls(f"Failed to save flow: {e.message}") from e
            flow_id = getattr(result, "flow_id", None)
            if not flow_id:
                raise error_cls("Failed to save flow: server returned no flow id")

            self.flow_id = str(flow_id)
            self.is_published = False
            self._set_state(LifecycleState.DRAFT_UNPUBLISHED)
            log.info(f"✅ Flow created: {self.flow_id}")
            return SaveOutcome(flow_id=self.flow_id, created=True)

        try:
            result = await self.api.update_flow(self.flow_id, payload)
        except UsageConflictError as e:
            self.lock_for_usage(e.campaigns, reason=e.message)
            raise
        except FlowApiError as e:
            raise error_cls(f"Failed to save flow: {e.message}") from e

        if getattr(result, "needs_republish", False):
            self.needs_republish = True
        log.info(f"✅ Flow updated: {self.flow_id}")
        return SaveOutcome(flow_id=self.flow_id, needs_republish=self.needs_republish)

    async def save(self, payload: FlowPayload) -> SaveOutcome:
        """Create or update in place; never publishes"""
        self._ensure_writable("save")
        return await self._write(payload, FlowSaveError)

    async def publish(self, payload: FlowPayload) -> SaveOutcome:
        """Save the current graph, then flip the published flag"""
        self._ensure_writable("publish")
        outcome = await self._write(payload, FlowPublishError)

        try:
            await self.api.publish_flow(self.flow_id)
        except UsageConflictError as e:
            self.lock_for_usage(e.campaigns, reason=e.message)
            raise
        except FlowApiError as e:
            raise FlowPublishError(f"Failed to publish flow: {e.message}") from e

        self.is_published = True
        self.needs_republish = False
        self._set_state(LifecycleState.PUBLISHED_UNLOCKED)
        log.info(f"🚀 Flow published: {self.flow_id}")
        return SaveOutcome(flow_id=self.flow_id, created=outcome.created)

    async def fork(self) -> str:
        """
        Copy a locked flow into a new draft and return the new id.

        This controller keeps describing the original, which stays locked.
        """
        if not self.is_locked:
            raise InvalidTransitionError("Only a flow attached to active campaigns can be forked")

        try:
            result = await self.api.fork_flow(self.flow_id)
        except FlowApiError as e:
            raise FlowForkError(f"Failed to fork flow: {e.message}") from e

        new_id = getattr(result, "flow_id", None)
        if not new_id or str(new_id) == self.flow_id:
            raise FlowForkError("Failed to fork flow: server returned no new flow id")

        self.fork_prompt_open = False
        log.info(f"🍴 Flow {self.flow_id} forked into {new_id}")
        return str(new_id)

    async def delete(self) -> None:
        """Delete permanently, only when no campaign uses the flow"""
        if not self.flow_id:
            raise InvalidTransitionError("Flow has never been saved")
        if self.deleted:
            return

        try:
            usage = await self.api.get_usage(self.flow_id)
        except FlowApiError as e:
            raise UsageCheckError(f"Could not verify campaign usage: {e.message}") from e

        if not getattr(usage, "can_delete", False):
            campaigns = list(getattr(usage, "campaigns", None) or [])
            if self.is_published:
                self.lock_for_usage(campaigns)
            raise UsageConflictError(
                "This flow is being used by campaigns and cannot be deleted",
                [c.model_dump() if isinstance(c, CampaignUsage) else c for c in campaigns],
            )

        try:
            await self.api.delete_flow(self.flow_id)
        except UsageConflictError as e:
            if self.is_published:
                self.lock_for_usage(e.campaigns, reason=e.message)
            raise
        except FlowApiError as e:
            raise FlowDeleteError(f"Failed to delete flow: {e.message}") from e

        self.deleted = True
        self.read_only = True
        log.info(f"🗑️ Flow deleted: {self.flow_id}")

    def describe(self) -> Dict[str, Any]:
        return {
            "flow_id": self.flow_id,
            "state": self.state.value,
            "is_published": self.is_published,
            "read_only": self.read_only or self.is_locked,
            "fork_prompt_open": self.fork_prompt_open,
            "needs_republish": self.needs_republish,
            "deleted": self.deleted,
            "campaigns": [c.model_dump() for c in self.campaigns],
            "could_not_enumerate": bool(self.lock and self.lock.could_not_enumerate),
        }
