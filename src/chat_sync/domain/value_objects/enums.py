from __future__ import annotations

from enum import StrEnum


class MessageStatus(StrEnum):
    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        """Position in the delivery chain; FAILED sits outside it."""
        return _STATUS_RANK.get(self, -1)

    def can_advance_to(self, new: MessageStatus) -> bool:
        if self is MessageStatus.FAILED:
            return False
        if new is MessageStatus.FAILED:
            return self is MessageStatus.SENDING
        return new.rank > self.rank


_STATUS_RANK = {
    MessageStatus.SENDING: 0,
    MessageStatus.SENT: 1,
    MessageStatus.DELIVERED: 2,
    MessageStatus.READ: 3,
}


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ChangeKind(StrEnum):
    MESSAGES = "messages"
    PRESENCE = "presence"
    TYPING = "typing"
    CONNECTION = "connection"
