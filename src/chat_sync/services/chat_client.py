"""Session-scoped service object wiring the sync components together."""
from __future__ import annotations

import logging
from typing import Any, Callable

from pydantic import ValidationError as PayloadError

from chat_sync.application.dto.events import InboundEvent
from chat_sync.application.dto.session import Session
from chat_sync.application.exceptions import AppError, SessionClosed
from chat_sync.application.ports.clock import Clock, SystemClock
from chat_sync.application.ports.timers import Scheduler
from chat_sync.application.ports.transport import TransportFactory
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import ChangeKind, ConnectionState
from chat_sync.infrastructure.timers import AsyncioScheduler
from chat_sync.infrastructure.ws.protocol import (
    MessageNew,
    MessageStatusUpdate,
    PresenceSnapshot,
    TypingStarted,
    TypingStopped,
)
from chat_sync.infrastructure.ws.websocket_transport import WebSocketTransport
from chat_sync.services.connection import ConnectionManager
from chat_sync.services.message_store import MessageStore
from chat_sync.services.presence import PresenceTracker
from chat_sync.services.read_receipts import ReadReceiptReconciler
from chat_sync.services.typing_coordinator import TypingCoordinator

logger = logging.getLogger(__name__)

Listener = Callable[[ChangeKind], None]


class ChatClient:
    """Synchronization core for one signed-in session.

    Build one when the session starts and ``close`` it at logout. The UI
    reads through the query methods and acts through the intent methods;
    component state is never handed out for mutation.
    """

    def __init__(
        self,
        session: Session,
        transport_factory: TransportFactory | None = None,
        *,
        clock: Clock | None = None,
        scheduler: Scheduler | None = None,
        **connection_options: Any,
    ) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._listeners: list[Listener] = []
        self._closed = False

        self._connection = ConnectionManager(
            transport_factory or WebSocketTransport,
            self._on_event,
            on_state_change=self._on_state_change,
            clock=self._clock,
            **connection_options,
        )
        self._presence = PresenceTracker()
        self._messages = MessageStore(session.user_id, self._connection, clock=self._clock)
        self._typing = TypingCoordinator(
            self._connection,
            scheduler or AsyncioScheduler(),
            on_change=lambda: self._notify(ChangeKind.TYPING),
        )
        self._receipts = ReadReceiptReconciler(self._messages, self._connection)

        self._handlers: dict[InboundEvent, Callable[[Any], None]] = {
            InboundEvent.PRESENCE_SNAPSHOT: self._on_presence,
            InboundEvent.MESSAGE_NEW: self._on_message,
            InboundEvent.TYPING_START: self._on_typing_start,
            InboundEvent.TYPING_STOP: self._on_typing_stop,
            InboundEvent.MESSAGE_STATUS: self._on_status,
        }

    @property
    def user_id(self) -> str:
        return self._session.user_id

    @property
    def state(self) -> ConnectionState:
        return self._connection.state

    @property
    def last_error(self) -> AppError | None:
        return self._connection.last_error

    async def connect(self) -> None:
        if self._closed:
            raise SessionClosed("client is closed")
        await self._connection.connect(self._session)

    async def close(self) -> None:
        """Tear down the connection and drop all session state."""
        if self._closed:
            return
        await self._connection.disconnect()
        self._typing.reset()
        self._presence.clear()
        self._messages.clear()
        self._closed = True
        self._notify(ChangeKind.MESSAGES)
        self._listeners.clear()

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # --- intents ---

    def send(self, peer_id: str, text: str) -> Message:
        msg = self._messages.send(peer_id, text)
        self._typing.force_stop(peer_id)
        self._notify(ChangeKind.MESSAGES)
        return msg

    def keystroke(self, peer_id: str) -> None:
        self._typing.keystroke(peer_id)

    def leave_conversation(self, peer_id: str) -> None:
        self._typing.force_stop(peer_id)

    def mark_conversation_read(self, peer_id: str) -> int:
        emitted = self._receipts.mark_conversation_read(peer_id)
        if emitted:
            self._notify(ChangeKind.MESSAGES)
        return emitted

    # --- queries ---

    def conversation(self, peer_id: str) -> list[Message]:
        return self._messages.get_conversation(peer_id)

    def last_message(self, peer_id: str) -> Message | None:
        return self._messages.last_message(peer_id)

    def unread_count(self, peer_id: str) -> int:
        return self._messages.unread_count(peer_id)

    def is_online(self, user_id: str) -> bool:
        return self._presence.is_online(user_id)

    @property
    def online_ids(self) -> frozenset[str]:
        return self._presence.online_ids

    def typing_label(self, peer_id: str) -> str | None:
        """Label of a peer currently typing to us, None when they are not."""
        state = self._typing.peer_state(peer_id)
        return state.label if state is not None and state.is_typing else None

    # --- inbound ---

    def _on_event(self, event_type: str, data: Any) -> None:
        try:
            event = InboundEvent(event_type)
        except ValueError:
            logger.debug("Ignoring unknown event %s", event_type)
            return
        try:
            self._handlers[event](data)
        except PayloadError as exc:
            logger.warning("Dropping malformed %s event (%d errors)", event_type, exc.error_count())

    def _on_presence(self, data: Any) -> None:
        snapshot = PresenceSnapshot.from_data(data)
        self._presence.apply_snapshot(snapshot.users)
        self._notify(ChangeKind.PRESENCE)

    def _on_message(self, data: Any) -> None:
        wire = MessageNew.model_validate(data)
        if self._messages.receive(wire.to_dto()) is not None:
            self._notify(ChangeKind.MESSAGES)

    def _on_typing_start(self, data: Any) -> None:
        event = TypingStarted.model_validate(data)
        if event.user_id != self.user_id:
            self._typing.peer_started(event.user_id, event.username)

    def _on_typing_stop(self, data: Any) -> None:
        event = TypingStopped.model_validate(data)
        self._typing.peer_stopped(event.user_id)

    def _on_status(self, data: Any) -> None:
        update = MessageStatusUpdate.model_validate(data)
        if self._receipts.apply_confirmed(update.message_id, update.status):
            self._notify(ChangeKind.MESSAGES)

    def _on_state_change(self, state: ConnectionState, error: AppError | None) -> None:
        if state is ConnectionState.DISCONNECTED:
            self._typing.reset()
            self._presence.clear()
            failed = self._messages.fail_pending()
            if failed:
                logger.warning("%d unconfirmed message(s) marked failed", failed)
                self._notify(ChangeKind.MESSAGES)
        if error is not None:
            logger.info("Connection %s: %s", state, error.detail)
        self._notify(ChangeKind.CONNECTION)

    def _notify(self, kind: ChangeKind) -> None:
        for listener in list(self._listeners):
            try:
                listener(kind)
            except Exception:
                logger.exception("Listener failed for %s change", kind)
