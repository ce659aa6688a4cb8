# app/flow_builder/codec.py
"""
Conversion between the in-memory Flow and the persistence API payloads.
"""
import logging
from typing import Any, Dict, List, Optional, Set, Tuple

from pydantic import ValidationError

from app.flow_builder.errors import PayloadDecodeError
from app.flow_builder.graph import (
    DEFAULT_BUTTON_TYPE,
    TEXT_TEMPLATE,
    TRIGGER_BUTTON_TYPE,
    Flow,
    FlowButton,
    FlowStep,
    FlowTransition,
    Position,
    apply_profile_name_rules,
    button_id_for,
    find_button_by_handle,
    incoming_warnings,
    make_transition_id,
)
from app.schemas.cta_flow import (
    ButtonWire,
    FlowPayload,
    FlowRecord,
    FlowSummary,
    StepWire,
    TransitionWire,
    to_pos_int,
)

log = logging.getLogger("flowbuilder.codec")


def default_position(index: int) -> Position:
    """Staggered placement for steps saved without coordinates"""
    return Position(x=120 + index * 120, y=150 + (index % 5) * 60)


class PayloadCodec:
    """Flow ⇄ wire payload"""

    # ────────────────────────────────────────────
    # Encode
    # ────────────────────────────────────────────

    def encode(self, flow: Flow) -> FlowPayload:
        """
        Build a create/update payload.

        IsPublished is always False: publishing is a separate explicit call.
        """
        return FlowPayload(
            flow_name=flow.name or "Untitled",
            is_published=False,
            nodes=[self._encode_step(step) for step in flow.steps],
            edges=[
                TransitionWire(
                    from_node_id=t.source,
                    to_node_id=t.target,
                    source_handle=t.source_handle or "",
                )
                for t in flow.transitions
            ],
        )

    def encode_dict(self, flow: Flow) -> Dict[str, Any]:
        return self.encode(flow).model_dump(by_alias=True)

    def _encode_step(self, step: FlowStep) -> StepWire:
        step = apply_profile_name_rules(step.model_copy(deep=True))
        buttons = [b for b in step.buttons if (b.text or "").strip()]
        return StepWire(
            id=step.id,
            template_name=step.template_name or "Untitled",
            template_type=step.template_type or TEXT_TEMPLATE,
            message_body=step.message_body or "",
            position_x=step.position.x or 0,
            position_y=step.position.y or 0,
            trigger_button_text=step.trigger_button_text or "",
            trigger_button_type=step.trigger_button_type or TRIGGER_BUTTON_TYPE,
            required_tag=step.required_tag or "",
            required_source=step.required_source or "",
            use_profile_name=bool(step.use_profile_name),
            profile_name_slot=to_pos_int(step.profile_name_slot, 1),
            buttons=[
                ButtonWire(
                    text=b.text.strip(),
                    type=b.type or DEFAULT_BUTTON_TYPE,
                    sub_type=b.sub_type or "",
                    value=b.value or "",
                    target_node_id=b.target_node_id or None,
                    index=b.index if isinstance(b.index, int) and b.index >= 0 else ordinal,
                )
                for ordinal, b in enumerate(buttons)
            ],
        )

    # ────────────────────────────────────────────
    # Decode
    # ────────────────────────────────────────────

    def decode(self, data: Any, flow_id: Optional[str] = None) -> Flow:
        """
        Build a Flow from a loaded record.

        Raises PayloadDecodeError when the record cannot be decoded at all;
        edges that point at unknown steps or repeat a button are dropped.
        """
        if isinstance(data, FlowRecord):
            record = data
        elif isinstance(data, dict):
            try:
                record = FlowRecord.model_validate(data)
            except ValidationError as e:
                raise PayloadDecodeError(f"Malformed flow payload: {e.error_count()} error(s)") from e
        else:
            raise PayloadDecodeError(f"Flow payload must be an object, got {type(data).__name__}")

        steps = self._decode_steps(record.nodes)
        transitions = self._decode_transitions(record.edges, steps)

        warnings = incoming_warnings(steps, transitions)
        for step in steps:
            step.has_no_incoming = warnings[step.id]

        return Flow(
            id=flow_id or record.id,
            name=record.flow_name,
            is_published=record.is_published,
            steps=steps,
            transitions=transitions,
        )

    def _decode_steps(self, nodes: List[StepWire]) -> List[FlowStep]:
        steps: List[FlowStep] = []
        seen: Set[str] = set()
        for i, node in enumerate(nodes):
            if not node.id:
                raise PayloadDecodeError(f"Step at position {i} has no id")
            if node.id in seen:
                raise PayloadDecodeError(f"Duplicate step id {node.id}")
            seen.add(node.id)

            position = default_position(i)
            if node.position_x is not None:
                position.x = node.position_x
            if node.position_y is not None:
                position.y = node.position_y

            buttons = []
            for ordinal, b in enumerate(node.buttons):
                index = b.index if b.index is not None else ordinal
                buttons.append(FlowButton(
                    id=button_id_for(node.id, index),
                    text=b.text,
                    type=b.type or DEFAULT_BUTTON_TYPE,
                    sub_type=b.sub_type,
                    value=b.value,
                    target_node_id=b.target_node_id,
                    index=index,
                ))

            step = FlowStep(
                id=node.id,
                position=position,
                template_name=node.template_name or "Untitled",
                template_type=node.template_type or TEXT_TEMPLATE,
                message_body=node.message_body,
                trigger_button_text=node.trigger_button_text,
                trigger_button_type=node.trigger_button_type or TRIGGER_BUTTON_TYPE,
                required_tag=node.required_tag,
                required_source=node.required_source,
                use_profile_name=node.use_profile_name,
                profile_name_slot=node.profile_name_slot,
                buttons=buttons,
            )
            steps.append(apply_profile_name_rules(step))
        return steps

    def _decode_transitions(self, edges: List[TransitionWire], steps: List[FlowStep]) -> List[FlowTransition]:
        by_id = {step.id: step for step in steps}
        transitions: List[FlowTransition] = []
        used_keys: Set[Tuple[str, str]] = set()
        used_ids: Set[str] = set()

        for edge in edges:
            source = by_id.get(edge.from_node_id)
            if source is None or edge.to_node_id not in by_id:
                log.warning(f"⚠️ Dropping edge {edge.from_node_id} -> {edge.to_node_id}: unknown step")
                continue

            key = (edge.from_node_id, edge.source_handle)
            if key in used_keys:
                log.warning(f"⚠️ Dropping duplicate edge for button '{edge.source_handle}' on {edge.from_node_id}")
                continue
            used_keys.add(key)

            edge_id = make_transition_id(edge.from_node_id, edge.to_node_id, edge.source_handle)
            suffix = 2
            base = edge_id
            while edge_id in used_ids:
                edge_id = f"{base}-{suffix}"
                suffix += 1
            used_ids.add(edge_id)

            button = find_button_by_handle(source, edge.source_handle)
            transitions.append(FlowTransition(
                id=edge_id,
                source=edge.from_node_id,
                target=edge.to_node_id,
                source_handle=edge.source_handle,
                button_id=button.id if button else None,
            ))
        return transitions


# ────────────────────────────────────────────
# Flow lists
# ────────────────────────────────────────────

LIST_ENVELOPE_KEYS = ("flows", "items", "data")


def decode_flow_list(data: Any) -> List[FlowSummary]:
    """
    Decode the draft/published list endpoints.

    Known shapes are tried in order: a bare list, an envelope holding the
    list, a single record. Anything else yields an empty list.
    """
    rows: List[Any] = []
    if isinstance(data, list):
        rows = data
    elif isinstance(data, dict):
        for key in LIST_ENVELOPE_KEYS:
            if isinstance(data.get(key), list):
                rows = data[key]
                break
        else:
            if data.get("id") is not None:
                rows = [data]

    summaries: List[FlowSummary] = []
    for row in rows:
        try:
            summaries.append(FlowSummary.model_validate(row))
        except ValidationError as e:
            log.warning(f"⚠️ Skipping malformed flow list entry: {e.error_count()} error(s)")
    return summaries
