# app/flow_builder/validator.py
"""Connection rules and whole-flow validation for CTA flows"""
from typing import TYPE_CHECKING, Any, Iterable, List, Optional

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from app.flow_builder.graph import Flow

MAX_BUTTONS_PER_STEP = 3


def _field(obj: Any, *names: str) -> Any:
    """Read the first present attribute/key of `obj` among `names`"""
    for name in names:
        if isinstance(obj, dict):
            if name in obj:
                return obj[name]
        elif hasattr(obj, name):
            return getattr(obj, name)
    return None


class ConnectionValidator:
    """
    Decides whether a proposed transition may be added.

    A button can point to exactly one next step, so an edge is rejected when
    another edge with the same (source, source_handle) already exists.
    """

    def is_valid(self, candidate: Any, existing: Optional[Iterable[Any]]) -> bool:
        try:
            source = _field(candidate, "source")
            handle = _field(candidate, "source_handle", "sourceHandle")
            if not source or not handle:
                return False

            for edge in existing or ():
                if (
                    _field(edge, "source") == source
                    and _field(edge, "source_handle", "sourceHandle") == handle
                ):
                    return False
            return True
        except (TypeError, AttributeError):
            return False


class FlowValidationReport(BaseModel):
    """Errors block publishing in the UI, warnings are authoring hints"""
    is_valid: bool = True
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


def validate_flow(flow: "Flow") -> FlowValidationReport:
    """
    Check a whole flow.

    Unreachable steps and orphaned transitions are warnings, never errors:
    the model tolerates them while the author is still wiring the flow.
    """
    errors: List[str] = []
    warnings: List[str] = []

    if not (flow.name or "").strip():
        errors.append("Flow name is required")

    step_ids = [step.id for step in flow.steps]
    known = set(step_ids)
    if len(known) != len(step_ids):
        errors.append("Duplicate step ids")

    if not flow.steps:
        warnings.append("Flow has no steps")

    targets = {t.target for t in flow.transitions}
    single_entry = [s for s in flow.steps if s.id not in targets]

    for step in flow.steps:
        label = step.template_name or step.id
        if len(step.buttons) > MAX_BUTTONS_PER_STEP:
            errors.append(f"Step '{label}' has {len(step.buttons)} buttons (max {MAX_BUTTONS_PER_STEP})")

        if step.id not in targets and len(single_entry) > 1:
            warnings.append(f"Step '{label}' has no incoming trigger. It may never run.")

        for button in step.buttons:
            if button.target_node_id and button.target_node_id not in known:
                warnings.append(f"Button '{button.text}' on step '{label}' points to a missing step")

    seen = set()
    for transition in flow.transitions:
        key = (transition.source, transition.source_handle)
        if key in seen:
            errors.append(f"Button '{transition.source_handle}' has more than one next step")
        seen.add(key)

        if transition.source not in known or transition.target not in known:
            errors.append(f"Transition {transition.id} references a missing step")
            continue

        source = next(s for s in flow.steps if s.id == transition.source)
        wanted = (transition.source_handle or "").strip().lower()
        if not any((b.text or "").strip().lower() == wanted for b in source.buttons):
            warnings.append(
                f"Transition from '{source.template_name or source.id}' uses button "
                f"'{transition.source_handle}' which no longer exists"
            )

    return FlowValidationReport(is_valid=not errors, errors=errors, warnings=warnings)
