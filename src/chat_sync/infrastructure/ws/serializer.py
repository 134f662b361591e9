from __future__ import annotations

import json
from datetime import datetime
from typing import Any
from uuid import UUID

from chat_sync.application.exceptions import MalformedEvent


class _Encoder(json.JSONEncoder):
    def default(self, o: object) -> Any:
        if isinstance(o, UUID):
            return str(o)
        if isinstance(o, datetime):
            return o.isoformat()
        return super().default(o)


def serialize_event(event_type: str, payload: dict[str, Any]) -> str:
    envelope = {"event": event_type, "data": payload}
    return json.dumps(envelope, cls=_Encoder)


def deserialize_event(raw: str | bytes) -> tuple[str, Any]:
    """Split an envelope into (event, data). ``data`` may be a dict or a list."""
    try:
        envelope = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as exc:
        raise MalformedEvent(f"undecodable frame: {exc}") from exc
    if not isinstance(envelope, dict) or not isinstance(envelope.get("event"), str):
        raise MalformedEvent("frame is not an event envelope")
    return envelope["event"], envelope.get("data", {})
