# app/flow_builder/__init__.py
"""
CTA flow builder core.
Graph model, connection rules, auto-layout, wire codec and lifecycle.
"""
from app.flow_builder.codec import PayloadCodec, decode_flow_list
from app.flow_builder.graph import (
    Flow,
    FlowButton,
    FlowStep,
    FlowTransition,
    GraphModel,
    Position,
    TemplateContent,
)
from app.flow_builder.layout import LayeredLayout, LayoutStrategy
from app.flow_builder.lifecycle import LifecycleController, LifecycleState
from app.flow_builder.session import ActionResult, FlowEditorSession
from app.flow_builder.validator import ConnectionValidator, validate_flow

__all__ = [
    'ActionResult',
    'ConnectionValidator',
    'Flow',
    'FlowButton',
    'FlowEditorSession',
    'FlowStep',
    'FlowTransition',
    'GraphModel',
    'LayeredLayout',
    'LayoutStrategy',
    'LifecycleController',
    'LifecycleState',
    'PayloadCodec',
    'Position',
    'TemplateContent',
    'decode_flow_list',
    'validate_flow',
]
