from __future__ import annotations

from enum import StrEnum


class InboundEvent(StrEnum):
    """Server → Client."""

    PRESENCE_SNAPSHOT = "users:online"
    MESSAGE_NEW = "message:new"
    TYPING_START = "typing:start"
    TYPING_STOP = "typing:stop"
    MESSAGE_STATUS = "message:status"


class OutboundEvent(StrEnum):
    """Client → Server."""

    SEND_MESSAGE = "message:send"
    TYPING_START = "typing:start"
    TYPING_STOP = "typing:stop"
    MARK_READ = "message:read"
