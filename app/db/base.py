# app/db/base.py
"""Import all models for Alembic"""
from app.models.base import Base

from app.models.editor_snapshot import EditorSnapshotRecord

__all__ = ["Base", "EditorSnapshotRecord"]
