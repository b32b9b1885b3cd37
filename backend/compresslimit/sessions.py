"""One orchestrator per browsing session. All state is in memory and dies with the process.

Sessions that have not been touched for ``SESSION_TTL_MINUTES`` are dropped the
next time any session is looked up, unless they are still compressing.
"""
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Optional

from compresslimit.analytics import get_analytics
from compresslimit.compression.models import Notification, OrchestratorBusyError
from compresslimit.compression.orchestrator import CompressionOrchestrator
from compresslimit.config import NOTIFICATION_BACKLOG, SESSION_TTL_MINUTES

logger = logging.getLogger("compresslimit.sessions")


@dataclass
class SessionState:
    session_id: str
    orchestrator: Optional[CompressionOrchestrator] = None
    notifications: deque = field(default_factory=lambda: deque(maxlen=NOTIFICATION_BACKLOG))
    last_access: float = field(default_factory=time.monotonic)

    def drain_notifications(self) -> list[Notification]:
        items = []
        while self.notifications:
            items.append(self.notifications.popleft())
        return items

    def idle_seconds(self, now: float) -> float:
        return now - self.last_access


_sessions: dict[str, SessionState] = {}
_lock = threading.Lock()


def _evict_idle(now: float, ttl_seconds: float) -> int:
    """Drop sessions idle longer than ttl_seconds. Caller holds _lock."""
    evicted = 0
    for sid, state in list(_sessions.items()):
        if state.idle_seconds(now) <= ttl_seconds or state.orchestrator.is_running:
            continue
        try:
            state.orchestrator.clear()
        except OrchestratorBusyError:
            # a run started since the check; try again on a later lookup
            continue
        del _sessions[sid]
        evicted += 1
        logger.info("Session %s expired after %.0f s idle", sid[:8], state.idle_seconds(now))
    return evicted


def get_session(session_id: str) -> SessionState:
    now = time.monotonic()
    with _lock:
        _evict_idle(now, SESSION_TTL_MINUTES * 60)
        state = _sessions.get(session_id)
        if state is None:
            state = SessionState(session_id=session_id)
            state.orchestrator = CompressionOrchestrator(
                analytics=get_analytics(session_id),
                on_notify=state.notifications.append,
            )
            _sessions[session_id] = state
            logger.info("Session %s created", session_id[:8])
        state.last_access = now
        return state


def drop_session(session_id: str) -> bool:
    """Forget a session, releasing its previews. Raises OrchestratorBusyError while it is compressing."""
    with _lock:
        state = _sessions.get(session_id)
        if state is None:
            return False
        state.orchestrator.clear()
        del _sessions[session_id]
    logger.info("Session %s dropped", session_id[:8])
    return True
