from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class IncomingMessage:
    """A message record as confirmed by the server."""

    id: str
    sender_id: str
    receiver_id: str
    text: str
    created_at: datetime
