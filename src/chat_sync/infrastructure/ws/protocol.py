"""Inbound websocket payload models."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from chat_sync.application.dto.message import IncomingMessage
from chat_sync.domain.value_objects.enums import MessageStatus


class WireModel(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        frozen=True,
        coerce_numbers_to_str=True,
    )


_USER_ID_KEYS = ("_id", "id", "userId")


class PresenceSnapshot(WireModel):
    users: list[str]

    @field_validator("users", mode="before")
    @classmethod
    def _user_ids(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        ids: list[Any] = []
        for record in value:
            if isinstance(record, dict):
                found = next((record[k] for k in _USER_ID_KEYS if record.get(k) is not None), None)
                if found is None:
                    raise ValueError(f"user record without id: {record!r}")
                ids.append(found)
            else:
                ids.append(record)
        return ids

    @classmethod
    def from_data(cls, data: Any) -> PresenceSnapshot:
        # users:online may carry the bare list as its data
        if isinstance(data, list):
            data = {"users": data}
        return cls.model_validate(data)


class MessageNew(WireModel):
    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    sender_id: str = Field(validation_alias=AliasChoices("senderId", "sender_id"))
    receiver_id: str = Field(validation_alias=AliasChoices("receiverId", "receiver_id"))
    text: str
    created_at: datetime = Field(validation_alias=AliasChoices("createdAt", "created_at"))

    @field_validator("created_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def to_dto(self) -> IncomingMessage:
        return IncomingMessage(
            id=self.id,
            sender_id=self.sender_id,
            receiver_id=self.receiver_id,
            text=self.text,
            created_at=self.created_at,
        )


class TypingStarted(WireModel):
    user_id: str = Field(validation_alias=AliasChoices("userId", "user_id"))
    username: str = ""


class TypingStopped(WireModel):
    user_id: str = Field(validation_alias=AliasChoices("userId", "user_id"))


class MessageStatusUpdate(WireModel):
    message_id: str = Field(validation_alias=AliasChoices("messageId", "message_id"))
    status: MessageStatus
