from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import datetime

from chat_sync.domain.value_objects.conversation_key import ConversationKey
from chat_sync.domain.value_objects.enums import MessageStatus
from chat_sync.domain.value_objects.ids import CanonicalId, Confirmed, MessageIdentity, Pending


@dataclass(frozen=True, slots=True)
class Message:
    identity: MessageIdentity
    sender_id: str
    receiver_id: str
    text: str
    created_at: datetime
    status: MessageStatus

    @property
    def id(self) -> str:
        return self.identity.value

    @property
    def is_confirmed(self) -> bool:
        return isinstance(self.identity, Confirmed)

    @property
    def is_pending(self) -> bool:
        return isinstance(self.identity, Pending)

    @property
    def conversation_key(self) -> ConversationKey:
        return ConversationKey.of(self.sender_id, self.receiver_id)

    def with_status(self, status: MessageStatus) -> Message | None:
        """Return a copy at ``status``, or None if that would not move forward."""
        if not self.status.can_advance_to(status):
            return None
        return dataclasses.replace(self, status=status)

    def confirm(self, canonical_id: str) -> Message:
        """Promote a pending entry to its server identity, at least SENT."""
        status = self.status
        if status.can_advance_to(MessageStatus.SENT):
            status = MessageStatus.SENT
        return dataclasses.replace(
            self,
            identity=Confirmed(CanonicalId(canonical_id)),
            status=status,
        )
