# app/ws/manager.py
"""
Connection manager for per-session WebSocket broadcasting.

Usage:
- In FastAPI route: await ws_manager.connect(...) / ws_manager.disconnect(...)
- After an editor change: await ws_manager.broadcast_state(session)
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

log = logging.getLogger("flowbuilder.ws")


class WebSocketConnectionManager:
    def __init__(self) -> None:
        # Map session_id -> set of WebSocket connections
        self.active: Dict[str, Set[WebSocket]] = {}

    async def connect(self, session_id: str, websocket: WebSocket) -> None:
        """Accept and register a websocket under an editor session."""
        await websocket.accept()
        self.active.setdefault(session_id, set()).add(websocket)
        log.info("WS connected: session=%s total=%d", session_id, self.connection_count(session_id))

    def disconnect(self, session_id: str, websocket: WebSocket) -> None:
        """Unregister a websocket from a session."""
        conns = self.active.get(session_id)
        if conns is not None:
            conns.discard(websocket)
            if not conns:
                self.active.pop(session_id, None)
        log.info("WS disconnected: session=%s total=%d", session_id, self.connection_count(session_id))

    async def notify_clients(self, session_id: str, message_data: Dict[str, Any]) -> int:
        """Send JSON to every client watching a session; returns the number reached."""
        connections = list(self.active.get(session_id, set()))
        if not connections:
            log.debug(f"No WebSocket connections for session {session_id}")
            return 0

        payload = jsonable_encoder(message_data)
        stale: Set[WebSocket] = set()
        sent_count = 0
        for ws in connections:
            try:
                await ws.send_json(payload)
                sent_count += 1
            except Exception as e:
                # mark stale; we will remove after loop
                log.warning(f"⚠️ WS send failed, marking stale: {e}")
                stale.add(ws)

        log.debug(f"📢 Sent to {sent_count}/{len(connections)} clients for session {session_id}")

        if stale:
            alive = self.active.get(session_id, set())
            for ws in stale:
                alive.discard(ws)
            if not alive:
                self.active.pop(session_id, None)
            log.info(f"🧹 Removed {len(stale)} stale connections")
        return sent_count

    async def broadcast_state(self, session) -> int:
        """Push the full editor state of `session` to its watchers."""
        return await self.notify_clients(session.id, {"event": "session_state", "data": session.describe()})

    async def broadcast_closed(self, session_id: str) -> int:
        return await self.notify_clients(session_id, {"event": "session_closed", "data": {"session_id": session_id}})

    def connection_count(self, session_id: Optional[str] = None) -> int:
        if session_id is None:
            return sum(len(s) for s in self.active.values())
        return len(self.active.get(session_id, set()))


# Singleton manager instance
ws_manager = WebSocketConnectionManager()
