# app/models/editor_snapshot.py
"""Persisted editor UI state and unsaved drafts"""
from sqlalchemy import Column, String, Boolean, JSON, UniqueConstraint
from app.models.base import BaseModel

NEW_FLOW_KEY = "__new__"


class EditorSnapshotRecord(BaseModel):
    """
    Last known editor state of one flow for one user.

    `draft` holds the unsaved graph (None once it has been saved),
    `view_state` the canvas preferences (minimap, layout direction, ...).
    """
    __tablename__ = "editor_snapshots"
    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", "flow_key", name="uq_editor_snapshots_owner_flow"),
    )

    user_id = Column(String(100), nullable=False, default="", index=True)
    flow_key = Column(String(100), nullable=False, index=True)  # flow id, or NEW_FLOW_KEY for unsaved flows
    flow_id = Column(String(100), nullable=True)

    view_state = Column(JSON, nullable=False, default=dict)
    draft = Column(JSON, nullable=True)
    is_dirty = Column(Boolean, default=False, nullable=False)

    def __repr__(self):
        return f"<EditorSnapshotRecord {self.tenant_id}/{self.flow_key}>"
