# app/flow_builder/graph.py
"""
In-memory graph of a CTA flow.

Steps are nodes (one outbound template each), transitions are edges from a
specific button of a step to the next step. GraphModel keeps the structural
invariants under mutation; it performs no I/O.
"""
import logging
import random
import re
import uuid
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, ValidationError

from app.flow_builder.errors import ValidationRejected
from app.flow_builder.validator import ConnectionValidator, MAX_BUTTONS_PER_STEP

log = logging.getLogger("flowbuilder.graph")

TEXT_TEMPLATE = "text_template"
IMAGE_TEMPLATE = "image_template"
TEMPLATE_TYPES = (TEXT_TEMPLATE, IMAGE_TEMPLATE)

DEFAULT_BUTTON_TYPE = "QUICK_REPLY"
TRIGGER_BUTTON_TYPE = "cta"

PLACEHOLDER_RE = re.compile(r"\{\{\s*\d+\s*\}\}")


# ────────────────────────────────────────────
# Data model
# ────────────────────────────────────────────

class Position(BaseModel):
    x: float = 0.0
    y: float = 0.0


class FlowButton(BaseModel):
    """A button on a step; `index` is the stable ordinal, `id` is derived from it"""
    id: str = ""
    text: str = ""
    type: str = DEFAULT_BUTTON_TYPE
    sub_type: str = ""
    value: str = ""
    target_node_id: Optional[str] = None
    index: int = 0


class FlowStep(BaseModel):
    """One message step of the flow"""
    id: str
    position: Position = Field(default_factory=Position)
    template_name: str = "Untitled"
    template_type: str = TEXT_TEMPLATE
    message_body: str = ""
    trigger_button_text: str = ""
    trigger_button_type: str = TRIGGER_BUTTON_TYPE
    required_tag: str = ""
    required_source: str = ""
    use_profile_name: bool = False
    profile_name_slot: int = 1
    buttons: List[FlowButton] = Field(default_factory=list)

    # Measured footprint, never persisted
    width: Optional[float] = None
    height: Optional[float] = None

    # Derived authoring hint, never persisted
    has_no_incoming: bool = False

    @property
    def placeholder_count(self) -> int:
        return count_placeholders(self.message_body)


class FlowTransition(BaseModel):
    """
    Edge from a step's button to the next step.

    `source_handle` is the human-visible label (the button text); `button_id`
    is the stable reference to the originating button when one matched.
    """
    id: str = ""
    source: str
    target: str
    source_handle: str = ""
    button_id: Optional[str] = None


class Flow(BaseModel):
    id: Optional[str] = None
    name: str = "Untitled Flow"
    is_published: bool = False
    steps: List[FlowStep] = Field(default_factory=list)
    transitions: List[FlowTransition] = Field(default_factory=list)


class TemplateButton(BaseModel):
    text: str = ""
    type: str = DEFAULT_BUTTON_TYPE
    sub_type: str = ""
    parameter_value: str = ""


class TemplateContent(BaseModel):
    """Content picked from the template catalog when a step is created"""
    name: str = ""
    type: str = TEXT_TEMPLATE
    body: str = ""
    buttons: List[TemplateButton] = Field(default_factory=list)


# ────────────────────────────────────────────
# Pure helpers
# ────────────────────────────────────────────

def count_placeholders(body: Optional[str]) -> int:
    """Number of `{{n}}` placeholders in a template body"""
    if not body:
        return 0
    return len(PLACEHOLDER_RE.findall(str(body)))


def apply_profile_name_rules(step: FlowStep) -> FlowStep:
    """
    Keep the profile-name settings consistent with the body.

    The slot is clamped to [1, placeholder_count]; with no placeholders the
    flag is cleared and the slot reset to 1.
    """
    count = count_placeholders(step.message_body)
    if count == 0:
        if step.use_profile_name:
            log.debug(f"Clearing profile name on step {step.id}: body has no placeholders")
        step.use_profile_name = False
        step.profile_name_slot = 1
        return step

    slot = step.profile_name_slot if step.profile_name_slot and step.profile_name_slot > 0 else 1
    step.profile_name_slot = max(1, min(slot, count))
    return step


def derive_trigger(step: FlowStep) -> FlowStep:
    """Mirror the first button into the trigger fields"""
    if step.buttons:
        step.trigger_button_text = step.buttons[0].text or ""
        step.trigger_button_type = TRIGGER_BUTTON_TYPE
    return step


def button_id_for(step_id: str, index: int) -> str:
    return f"{step_id}#{index}"


def normalize_handle(text: Optional[str]) -> str:
    return (text or "").strip().lower()


def find_button_by_handle(step: FlowStep, handle: Optional[str]) -> Optional[FlowButton]:
    """Button whose text matches `handle` (case-insensitive, trimmed)"""
    wanted = normalize_handle(handle)
    for button in step.buttons:
        if normalize_handle(button.text) == wanted:
            return button
    return None


def incoming_warnings(steps: Iterable[FlowStep], transitions: Iterable[FlowTransition]) -> Dict[str, bool]:
    """step id -> True when no transition targets the step"""
    targets = {t.target for t in transitions}
    return {step.id: step.id not in targets for step in steps}


def make_transition_id(source: str, target: str, handle: Optional[str]) -> str:
    return f"e-{source}-{target}-{handle or 'h'}"


# ────────────────────────────────────────────
# GraphModel
# ────────────────────────────────────────────

class GraphModel:
    """Mutable working copy of a flow with its structural invariants"""

    EDITABLE_FIELDS = {
        "template_name",
        "template_type",
        "message_body",
        "required_tag",
        "required_source",
        "use_profile_name",
        "profile_name_slot",
        "buttons",
        "width",
        "height",
    }

    def __init__(
        self,
        flow: Optional[Flow] = None,
        validator: Optional[ConnectionValidator] = None,
        rng: Optional[random.Random] = None,
    ):
        self.flow = flow if flow is not None else Flow()
        self.validator = validator or ConnectionValidator()
        self._rng = rng or random.Random()
        self.refresh_incoming()

    # ────────────────────────────────────────────
    # Accessors
    # ────────────────────────────────────────────

    @property
    def steps(self) -> List[FlowStep]:
        return self.flow.steps

    @property
    def transitions(self) -> List[FlowTransition]:
        return self.flow.transitions

    def get_step(self, step_id: Optional[str]) -> Optional[FlowStep]:
        if not step_id:
            return None
        for step in self.flow.steps:
            if step.id == step_id:
                return step
        return None

    def get_transition(self, edge_id: str) -> Optional[FlowTransition]:
        for transition in self.flow.transitions:
            if transition.id == edge_id:
                return transition
        return None

    # ────────────────────────────────────────────
    # Steps
    # ────────────────────────────────────────────

    def add_step(self, content: Any, position: Optional[Position] = None) -> str:
        """Append a step built from catalog content and return its id"""
        if not isinstance(content, TemplateContent):
            content = TemplateContent.model_validate(content or {})

        step_id = str(uuid.uuid4())
        if position is None:
            position = Position(
                x=self._rng.random() * 400 + 100,
                y=self._rng.random() * 300 + 100,
            )

        catalog_buttons = content.buttons
        if len(catalog_buttons) > MAX_BUTTONS_PER_STEP:
            log.warning(
                f"Template '{content.name}' has {len(catalog_buttons)} buttons, "
                f"keeping the first {MAX_BUTTONS_PER_STEP}"
            )
            catalog_buttons = catalog_buttons[:MAX_BUTTONS_PER_STEP]

        buttons = [
            FlowButton(
                id=button_id_for(step_id, idx),
                text=btn.text or "",
                type=btn.type or DEFAULT_BUTTON_TYPE,
                sub_type=btn.sub_type or "",
                value=btn.parameter_value or "",
                target_node_id=None,
                index=idx,
            )
            for idx, btn in enumerate(catalog_buttons)
        ]

        step = FlowStep(
            id=step_id,
            position=position,
            template_name=content.name or "Untitled",
            template_type=content.type or TEXT_TEMPLATE,
            message_body=content.body or "Message body preview...",
            trigger_button_text=buttons[0].text if buttons else "",
            trigger_button_type=TRIGGER_BUTTON_TYPE,
            use_profile_name=False,
            profile_name_slot=1,
            buttons=buttons,
        )
        self.flow.steps.append(step)
        self.refresh_incoming()

        log.debug(f"➕ Step {step_id} added from template '{step.template_name}'")
        return step_id

    def update_step(self, step_id: str, **changes) -> bool:
        """
        Apply a content edit; returns False when the step does not exist.

        Raises ValidationRejected (leaving the step untouched) when the edit
        has invalid field values, more than MAX_BUTTONS_PER_STEP buttons, or
        would give two transitions of the step the same button label.
        """
        unknown = set(changes) - self.EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown step field(s): {', '.join(sorted(unknown))}")

        position = self._index_of(step_id)
        if position is None:
            return False

        current = self.flow.steps[position]
        data = current.model_dump()
        data.update(changes)
        try:
            updated = FlowStep.model_validate(data)
        except ValidationError as e:
            fields = ", ".join(sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")}))
            raise ValidationRejected(f"Invalid value for step field(s): {fields}") from e

        if "buttons" in changes:
            if len(updated.buttons) > MAX_BUTTONS_PER_STEP:
                raise ValidationRejected(
                    f"A step can have at most {MAX_BUTTONS_PER_STEP} buttons, got {len(updated.buttons)}"
                )
            self._reindex_buttons(updated)
            self._ensure_distinct_handles(updated)

        derive_trigger(updated)
        apply_profile_name_rules(updated)
        self.flow.steps[position] = updated

        if "buttons" in changes:
            self._relabel_transitions(updated)
        return True

    def move_step(self, step_id: str, x: float, y: float) -> bool:
        step = self.get_step(step_id)
        if step is None:
            return False
        step.position = Position(x=x, y=y)
        return True

    def rename_button(self, step_id: str, index: int, text: str) -> bool:
        """
        Change a button label; edges bound to the button follow the new label.

        Raises ValidationRejected when another transition of the step already
        uses the new label.
        """
        step = self.get_step(step_id)
        if step is None:
            return False
        button = next((b for b in step.buttons if b.index == index), None)
        if button is None:
            return False

        renamed = step.model_copy(deep=True)
        next(b for b in renamed.buttons if b.index == index).text = text
        self._ensure_distinct_handles(renamed)

        button.text = text
        derive_trigger(step)
        self._relabel_transitions(step)
        return True

    def remove_step(self, step_id: str) -> bool:
        """Remove a step and every transition touching it; no-op for unknown ids"""
        position = self._index_of(step_id)
        if position is None:
            return False

        del self.flow.steps[position]
        before = len(self.flow.transitions)
        self.flow.transitions = [
            t for t in self.flow.transitions
            if t.source != step_id and t.target != step_id
        ]
        self.refresh_incoming()

        log.debug(f"🗑️ Step {step_id} removed with {before - len(self.flow.transitions)} transition(s)")
        return True

    def rename(self, name: str) -> None:
        self.flow.name = name

    # ────────────────────────────────────────────
    # Transitions
    # ────────────────────────────────────────────

    def add_transition(self, source: str, source_handle: str, target: str) -> Optional[FlowTransition]:
        """
        Connect `source`'s button `source_handle` to `target`.

        Returns None (and adds nothing) when the connection rules reject it
        or either step does not exist.
        """
        candidate = FlowTransition(
            source=source or "",
            target=target or "",
            source_handle=source_handle or "",
        )
        if not self.validator.is_valid(candidate, self.flow.transitions):
            log.debug(f"Connection rejected: {source} [{source_handle}] -> {target}")
            return None

        source_step = self.get_step(source)
        if source_step is None or self.get_step(target) is None:
            log.debug(f"Connection rejected, unknown step: {source} -> {target}")
            return None

        matched = find_button_by_handle(source_step, source_handle)
        if matched is not None:
            matched.target_node_id = target
            candidate.button_id = matched.id
        else:
            free = next((b for b in source_step.buttons if not b.target_node_id), None)
            if free is not None:
                free.target_node_id = target

        candidate.id = self._unique_transition_id(make_transition_id(source, target, source_handle))
        self.flow.transitions.append(candidate)
        self.refresh_incoming()
        return candidate

    def remove_transition(self, edge_id: str) -> bool:
        """
        Remove a transition.

        The source button keeps its `target_node_id` until it is reconnected.
        """
        before = len(self.flow.transitions)
        self.flow.transitions = [t for t in self.flow.transitions if t.id != edge_id]
        if len(self.flow.transitions) == before:
            return False
        self.refresh_incoming()
        return True

    # ────────────────────────────────────────────
    # Derived data
    # ────────────────────────────────────────────

    def derive_incoming_warnings(self) -> Dict[str, bool]:
        return incoming_warnings(self.flow.steps, self.flow.transitions)

    def refresh_incoming(self) -> None:
        warnings = self.derive_incoming_warnings()
        for step in self.flow.steps:
            step.has_no_incoming = warnings[step.id]

    def replace_steps(self, steps: List[FlowStep]) -> None:
        """Swap in repositioned copies of the current steps (e.g. after layout)"""
        by_id = {step.id: step for step in steps}
        self.flow.steps = [by_id.get(step.id, step) for step in self.flow.steps]
        self.refresh_incoming()

    # ────────────────────────────────────────────
    # Internals
    # ────────────────────────────────────────────

    def _index_of(self, step_id: Optional[str]) -> Optional[int]:
        for idx, step in enumerate(self.flow.steps):
            if step.id == step_id:
                return idx
        return None

    def _unique_transition_id(self, base: str) -> str:
        existing = {t.id for t in self.flow.transitions}
        if base not in existing:
            return base
        suffix = 2
        while f"{base}-{suffix}" in existing:
            suffix += 1
        return f"{base}-{suffix}"

    def _ensure_distinct_handles(self, step: FlowStep) -> None:
        """Refuse button labels that would give two edges of `step` the same handle"""
        labels = {b.id: (b.text or "").strip() for b in step.buttons}
        seen = set()
        for transition in self.flow.transitions:
            if transition.source != step.id:
                continue
            handle = labels.get(transition.button_id, transition.source_handle)
            if handle in seen:
                log.debug(f"Button label '{handle}' on step {step.id} refused, already wired")
                raise ValidationRejected(f"Another button of this step is already connected as '{handle}'")
            seen.add(handle)

    @staticmethod
    def _reindex_buttons(updated: FlowStep) -> None:
        used = set()
        for ordinal, button in enumerate(updated.buttons):
            if button.index in used or button.index < 0:
                button.index = ordinal
            used.add(button.index)
            button.id = button_id_for(updated.id, button.index)

    def _relabel_transitions(self, step: FlowStep) -> None:
        labels = {b.id: (b.text or "").strip() for b in step.buttons}
        for transition in self.flow.transitions:
            if transition.source == step.id and transition.button_id in labels:
                transition.source_handle = labels[transition.button_id]
