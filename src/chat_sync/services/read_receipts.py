from __future__ import annotations

import logging

from chat_sync.application.dto.events import OutboundEvent
from chat_sync.application.ports.bus import IntentPublisher
from chat_sync.domain.value_objects.enums import MessageStatus
from chat_sync.services.message_store import MessageStore

logger = logging.getLogger(__name__)


class ReadReceiptReconciler:
    def __init__(self, store: MessageStore, publisher: IntentPublisher) -> None:
        self._store = store
        self._publisher = publisher

    def mark_conversation_read(self, peer_id: str) -> int:
        """Send one receipt per unread peer message; returns how many were sent.

        Local status only moves to READ for receipts that were queued, so a
        call made while offline can simply be repeated later.
        """
        if peer_id == self._store.self_id:
            return 0
        emitted = 0
        for msg in self._store.get_conversation(peer_id):
            if msg.sender_id != peer_id or not msg.is_confirmed:
                continue
            if not msg.status.can_advance_to(MessageStatus.READ):
                continue
            if not self._publisher.publish(OutboundEvent.MARK_READ, {"messageId": msg.id}):
                logger.info("Read receipts for %s deferred: not connected", peer_id)
                break
            self._store.apply_status(msg.id, MessageStatus.READ)
            emitted += 1
        return emitted

    def apply_confirmed(self, message_id: str, status: MessageStatus) -> bool:
        return self._store.apply_status(message_id, status)
