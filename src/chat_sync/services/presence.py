from __future__ import annotations

import logging
from typing import Iterable

logger = logging.getLogger(__name__)


class PresenceTracker:
    """Set of online peers, replaced wholesale by every server snapshot."""

    def __init__(self) -> None:
        self._online: frozenset[str] = frozenset()

    @property
    def online_ids(self) -> frozenset[str]:
        return self._online

    def apply_snapshot(self, ids: Iterable[str]) -> None:
        self._online = frozenset(ids)
        logger.debug("Presence snapshot applied (online=%d)", len(self._online))

    def is_online(self, user_id: str) -> bool:
        return user_id in self._online

    def clear(self) -> None:
        self._online = frozenset()
