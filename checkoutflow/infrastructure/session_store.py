"""In-memory session snapshot store."""

import copy
from typing import Any

import structlog

from checkoutflow.application.ports import SessionStore

logger = structlog.get_logger()


class InMemorySessionStore(SessionStore):
    """Keeps the latest snapshot per session in process memory."""

    def __init__(self) -> None:
        self._snapshots: dict[str, dict[str, Any]] = {}

    async def persist(self, session_id: str, state: dict[str, Any]) -> None:
        self._snapshots[session_id] = copy.deepcopy(state)
        logger.debug("Session snapshot stored", session_id=session_id)

    async def load(self, session_id: str) -> dict[str, Any] | None:
        snapshot = self._snapshots.get(session_id)
        return copy.deepcopy(snapshot) if snapshot is not None else None

    async def clear(self, session_id: str) -> None:
        self._snapshots.pop(session_id, None)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._snapshots
