"""In-memory conversation log with optimistic-send reconciliation."""
from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import timedelta

from chat_sync.application.dto.events import OutboundEvent
from chat_sync.application.dto.message import IncomingMessage
from chat_sync.application.exceptions import ReconciliationMiss, ValidationError
from chat_sync.application.ports.bus import IntentPublisher
from chat_sync.application.ports.clock import Clock, SystemClock
from chat_sync.config import settings
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.conversation_key import ConversationKey
from chat_sync.domain.value_objects.enums import MessageStatus
from chat_sync.domain.value_objects.ids import CanonicalId, Confirmed, Pending, TempIdFactory

logger = logging.getLogger(__name__)


class MessageStore:
    """Single source of truth for the session's messages.

    Entries are kept in insertion order and never removed before ``clear``.
    Chronological order is a read-time projection (``get_conversation``),
    so a late confirmation never has to be moved around.
    """

    def __init__(
        self,
        self_id: str,
        publisher: IntentPublisher,
        *,
        clock: Clock | None = None,
        reconcile_window: float | None = None,
        status_buffer_limit: int | None = None,
        temp_ids: TempIdFactory | None = None,
    ) -> None:
        self._self_id = self_id
        self._publisher = publisher
        self._clock = clock or SystemClock()
        self._window = timedelta(
            seconds=reconcile_window if reconcile_window is not None else settings.RECONCILE_WINDOW_SECONDS
        )
        self._buffer_limit = (
            status_buffer_limit if status_buffer_limit is not None else settings.STATUS_BUFFER_LIMIT
        )
        self._temp_ids = temp_ids or TempIdFactory()
        self._entries: list[Message] = []
        self._positions: dict[str, int] = {}
        self._buffered: OrderedDict[str, MessageStatus] = OrderedDict()

    @property
    def self_id(self) -> str:
        return self._self_id

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, message_id: str) -> Message | None:
        pos = self._positions.get(message_id)
        return self._entries[pos] if pos is not None else None

    def send(self, peer_id: str, text: str) -> Message:
        """Store an optimistic message and queue it for delivery.

        Returns at once; the server's echo later promotes the entry. When
        nothing can be queued the entry is stored as FAILED.
        """
        body = (text or "").strip()
        if not body:
            raise ValidationError("message text must not be empty")

        now = self._clock.now()
        published = self._publisher.publish(
            OutboundEvent.SEND_MESSAGE,
            {"receiverId": peer_id, "text": body, "timestamp": now.isoformat()},
        )
        msg = Message(
            identity=Pending(self._temp_ids()),
            sender_id=self._self_id,
            receiver_id=peer_id,
            text=body,
            created_at=now,
            status=MessageStatus.SENDING if published else MessageStatus.FAILED,
        )
        self._append(msg)
        if not published:
            logger.warning("Send to %s failed: not connected", peer_id)
        return msg

    def receive(self, incoming: IncomingMessage) -> Message | None:
        """Store a server-confirmed message; None for a duplicate delivery."""
        existing = self.get(incoming.id)
        if existing is not None and existing.is_confirmed:
            logger.debug("Duplicate delivery of %s ignored", incoming.id)
            return None

        if incoming.sender_id == self._self_id:
            pos = self._find_pending(incoming)
            if pos is not None:
                pending = self._entries[pos]
                self._entries[pos] = pending.confirm(incoming.id)
                del self._positions[pending.id]
                self._positions[incoming.id] = pos
                logger.debug("Reconciled %s -> %s", pending.id, incoming.id)
                return self._apply_buffered(pos)

        pos = self._append(
            Message(
                identity=Confirmed(CanonicalId(incoming.id)),
                sender_id=incoming.sender_id,
                receiver_id=incoming.receiver_id,
                text=incoming.text,
                created_at=incoming.created_at,
                status=MessageStatus.SENT,
            )
        )
        return self._apply_buffered(pos)

    def apply_status(self, canonical_id: str, status: MessageStatus) -> bool:
        """Advance a confirmed message's status; never moves it backward.

        An unknown id is buffered until the matching message shows up.
        """
        try:
            pos = self._locate(canonical_id)
        except ReconciliationMiss as exc:
            logger.info("%s; buffering status %s", exc.detail, status)
            self._buffer(canonical_id, status)
            return False
        return self._advance(pos, status)

    def fail_pending(self) -> int:
        """Mark every unconfirmed send as FAILED."""
        failed = 0
        for pos, msg in enumerate(self._entries):
            if msg.status is MessageStatus.SENDING and self._advance(pos, MessageStatus.FAILED):
                failed += 1
        return failed

    def get_conversation(self, peer_id: str) -> list[Message]:
        key = ConversationKey.of(self._self_id, peer_id)
        # sorted() is stable: equal timestamps keep insertion order
        return sorted(
            (m for m in self._entries if m.conversation_key == key),
            key=lambda m: m.created_at,
        )

    def last_message(self, peer_id: str) -> Message | None:
        conversation = self.get_conversation(peer_id)
        return conversation[-1] if conversation else None

    def unread_count(self, peer_id: str) -> int:
        if peer_id == self._self_id:
            return 0
        return sum(
            1
            for m in self.get_conversation(peer_id)
            if m.sender_id == peer_id and m.status is not MessageStatus.READ
        )

    def clear(self) -> None:
        self._entries.clear()
        self._positions.clear()
        self._buffered.clear()

    def _append(self, msg: Message) -> int:
        self._entries.append(msg)
        pos = len(self._entries) - 1
        self._positions[msg.id] = pos
        return pos

    def _locate(self, canonical_id: str) -> int:
        pos = self._positions.get(canonical_id)
        if pos is None or not self._entries[pos].is_confirmed:
            raise ReconciliationMiss(f"no confirmed message {canonical_id}")
        return pos

    def _find_pending(self, incoming: IncomingMessage) -> int | None:
        for pos, msg in enumerate(self._entries):
            if (
                msg.is_pending
                and msg.status is MessageStatus.SENDING
                and msg.sender_id == incoming.sender_id
                and msg.receiver_id == incoming.receiver_id
                and msg.text == incoming.text
                and abs(msg.created_at - incoming.created_at) <= self._window
            ):
                return pos
        return None

    def _advance(self, pos: int, status: MessageStatus) -> bool:
        current = self._entries[pos]
        updated = current.with_status(status)
        if updated is None:
            logger.debug("Ignored status %s for %s (currently %s)", status, current.id, current.status)
            return False
        self._entries[pos] = updated
        return True

    def _buffer(self, canonical_id: str, status: MessageStatus) -> None:
        held = self._buffered.get(canonical_id)
        if held is None or held.can_advance_to(status):
            self._buffered[canonical_id] = status
        while len(self._buffered) > self._buffer_limit:
            dropped, _ = self._buffered.popitem(last=False)
            logger.warning("Status buffer full, dropped update for %s", dropped)

    def _apply_buffered(self, pos: int) -> Message:
        status = self._buffered.pop(self._entries[pos].id, None)
        if status is not None:
            self._advance(pos, status)
        return self._entries[pos]
