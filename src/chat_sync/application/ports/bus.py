from __future__ import annotations

from typing import Any, Protocol


class IntentPublisher(Protocol):
    def publish(self, event_type: str, payload: dict[str, Any]) -> bool:
        """Queue an outbound intent; False when it cannot be delivered."""
        ...
