# app/flow_builder/errors.py
"""Error taxonomy for the CTA flow builder."""
from typing import Any, Dict, List, Optional


class FlowBuilderError(Exception):
    """Base class for every flow builder failure"""

    kind = "error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ValidationRejected(FlowBuilderError):
    """A proposed transition violates the connection rules (local only)"""
    kind = "validation_rejected"


class PayloadDecodeError(FlowBuilderError):
    """A wire payload could not be decoded at all"""
    kind = "payload_decode"


class FlowLoadError(FlowBuilderError):
    kind = "load_failed"


class FlowSaveError(FlowBuilderError):
    kind = "save_failed"


class FlowPublishError(FlowBuilderError):
    kind = "publish_failed"


class FlowForkError(FlowBuilderError):
    kind = "fork_failed"


class FlowDeleteError(FlowBuilderError):
    kind = "delete_failed"


class UsageCheckError(FlowBuilderError):
    """The usage query itself failed; callers must treat the flow as locked"""
    kind = "usage_check_failed"


class UsageConflictError(FlowBuilderError):
    """
    The flow is attached to live campaigns.

    `campaigns` is whatever the server reported; an empty list means the
    server could not enumerate them, the flow is still locked.
    """
    kind = "usage_conflict"

    def __init__(self, message: str = "", campaigns: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message or "Flow is attached to active campaigns")
        self.campaigns = list(campaigns or [])


class FlowLockedError(FlowBuilderError):
    """An in-place save or publish was attempted on a locked flow"""
    kind = "flow_locked"


class InvalidTransitionError(FlowBuilderError):
    """The requested lifecycle action is not allowed from the current state"""
    kind = "invalid_transition"


class SessionBusyError(FlowBuilderError):
    kind = "busy"


class FlowApiError(FlowBuilderError):
    """Transport or server failure talking to an external API"""
    kind = "api_error"

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404
