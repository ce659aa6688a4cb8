# app/services/session_registry.py
"""
In-process registry of open editor sessions, scoped by tenant.

Sessions nobody has touched for `idle_ttl` seconds are closed by `sweep_idle`,
which also runs whenever a new session is registered. Unsaved drafts survive
in the snapshot store, so an evicted session can be reopened and restored.
"""
import logging
import time
from typing import Callable, Dict, List, Optional

from app.core.config import SESSION_IDLE_TTL
from app.flow_builder.session import FlowEditorSession

log = logging.getLogger("flowbuilder.sessions")


class SessionRegistry:
    def __init__(
        self,
        idle_ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        # tenant_id -> session_id -> session
        self._sessions: Dict[str, Dict[str, FlowEditorSession]] = {}
        # session_id -> last access (clock time)
        self._last_seen: Dict[str, float] = {}
        self.idle_ttl = SESSION_IDLE_TTL if idle_ttl is None else idle_ttl
        self._clock = clock

    def add(self, tenant_id: str, session: FlowEditorSession) -> FlowEditorSession:
        self.sweep_idle()
        session.tenant_id = tenant_id
        self._sessions.setdefault(tenant_id, {})[session.id] = session
        self._last_seen[session.id] = self._clock()
        log.info(f"🗂️ Session {session.id} registered for tenant {tenant_id} (total: {self.count(tenant_id)})")
        return session

    def get(self, tenant_id: str, session_id: str) -> Optional[FlowEditorSession]:
        """Sessions of other tenants are invisible; a hit counts as activity"""
        session = self._sessions.get(tenant_id, {}).get(session_id)
        if session is not None:
            self._last_seen[session_id] = self._clock()
        return session

    def list(self, tenant_id: str) -> List[FlowEditorSession]:
        return list(self._sessions.get(tenant_id, {}).values())

    def close(self, tenant_id: str, session_id: str) -> bool:
        bucket = self._sessions.get(tenant_id)
        if not bucket or session_id not in bucket:
            return False
        session = bucket.pop(session_id)
        self._last_seen.pop(session_id, None)
        session.close()
        if not bucket:
            self._sessions.pop(tenant_id, None)
        return True

    def sweep_idle(self) -> int:
        """Close sessions idle for longer than `idle_ttl`; busy sessions are kept"""
        if not self.idle_ttl or self.idle_ttl <= 0:
            return 0

        deadline = self._clock() - self.idle_ttl
        expired = [
            (tenant_id, session.id)
            for tenant_id, bucket in self._sessions.items()
            for session in bucket.values()
            if not session.busy and self._last_seen.get(session.id, deadline) < deadline
        ]
        for tenant_id, session_id in expired:
            self.close(tenant_id, session_id)

        if expired:
            log.info(f"🧹 Closed {len(expired)} idle editor session(s)")
        return len(expired)

    def close_all(self) -> int:
        closed = 0
        for bucket in self._sessions.values():
            for session in bucket.values():
                session.close()
                closed += 1
        self._sessions.clear()
        self._last_seen.clear()
        return closed

    def count(self, tenant_id: Optional[str] = None) -> int:
        if tenant_id is None:
            return sum(len(b) for b in self._sessions.values())
        return len(self._sessions.get(tenant_id, {}))
