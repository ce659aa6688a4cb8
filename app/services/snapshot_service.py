# app/services/snapshot_service.py
"""
Snapshot service - stores editor view state and unsaved drafts so a
reopened editor can pick up where the user left off.
"""
import logging
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.flow_builder.graph import Flow
from app.flow_builder.session import EditorSnapshot, ViewState
from app.models.editor_snapshot import NEW_FLOW_KEY, EditorSnapshotRecord

log = logging.getLogger("flowbuilder.snapshot_service")


def flow_key_for(flow_id: Optional[str]) -> str:
    return str(flow_id) if flow_id else NEW_FLOW_KEY


class SnapshotService:
    """Read/write EditorSnapshotRecord rows"""

    def _find(
        self,
        db: Session,
        tenant_id: str,
        user_id: str,
        flow_id: Optional[str],
    ) -> Optional[EditorSnapshotRecord]:
        return db.query(EditorSnapshotRecord).filter(
            EditorSnapshotRecord.tenant_id == tenant_id,
            EditorSnapshotRecord.user_id == (user_id or ""),
            EditorSnapshotRecord.flow_key == flow_key_for(flow_id),
        ).first()

    def save(
        self,
        db: Session,
        tenant_id: str,
        user_id: str,
        snapshot: EditorSnapshot,
        flow_key: Optional[str] = None,
    ) -> EditorSnapshotRecord:
        """
        Upsert the snapshot for (tenant, user, flow).

        `flow_key` overrides the key derived from the snapshot, used when a
        new flow gets its id and the "new" row has to move.
        """
        key = flow_key or flow_key_for(snapshot.flow_id)
        record = db.query(EditorSnapshotRecord).filter(
            EditorSnapshotRecord.tenant_id == tenant_id,
            EditorSnapshotRecord.user_id == (user_id or ""),
            EditorSnapshotRecord.flow_key == key,
        ).first()

        if record is None:
            record = EditorSnapshotRecord(
                tenant_id=tenant_id,
                user_id=user_id or "",
                flow_key=key,
            )
            db.add(record)

        record.flow_id = snapshot.flow_id
        record.view_state = snapshot.view.model_dump()
        record.draft = snapshot.flow.model_dump() if snapshot.flow is not None else None
        record.is_dirty = bool(snapshot.dirty and snapshot.flow is not None)

        db.commit()
        db.refresh(record)

        log.debug(f"💾 Snapshot stored for {tenant_id}/{key} (dirty={record.is_dirty})")
        return record

    def load(
        self,
        db: Session,
        tenant_id: str,
        user_id: str,
        flow_id: Optional[str],
    ) -> Optional[EditorSnapshot]:
        """Stored snapshot, or None; unreadable rows are discarded"""
        record = self._find(db, tenant_id, user_id, flow_id)
        if record is None:
            return None

        try:
            view = ViewState.model_validate(record.view_state or {})
            draft = Flow.model_validate(record.draft) if record.draft else None
        except ValidationError as e:
            log.warning(f"⚠️ Dropping unreadable snapshot {tenant_id}/{record.flow_key}: {e.error_count()} error(s)")
            db.delete(record)
            db.commit()
            return None

        return EditorSnapshot(
            flow_id=record.flow_id,
            flow=draft,
            view=view,
            dirty=bool(record.is_dirty and draft is not None),
        )

    def discard(
        self,
        db: Session,
        tenant_id: str,
        user_id: str,
        flow_id: Optional[str],
    ) -> bool:
        record = self._find(db, tenant_id, user_id, flow_id)
        if record is None:
            return False
        db.delete(record)
        db.commit()
        log.debug(f"🗑️ Snapshot discarded for {tenant_id}/{record.flow_key}")
        return True
