"""Debounced typing signals, outbound and inbound."""
from __future__ import annotations

import logging
from typing import Callable

from chat_sync.application.dto.events import OutboundEvent
from chat_sync.application.ports.bus import IntentPublisher
from chat_sync.application.ports.timers import Scheduler, TimerHandle
from chat_sync.config import settings
from chat_sync.domain.entities.typing_state import TypingState

logger = logging.getLogger(__name__)


class TypingCoordinator:
    """Per-peer typing state machine.

    Outbound: a peer is in the typing state while it has a quiet-period
    timer. The first keystroke publishes ``typing:start``; the timer firing,
    a send, or leaving the conversation publishes ``typing:stop``.

    Inbound: a peer's indicator is cleared by ``typing:stop`` or, if that
    never arrives, by a local expiry timer.
    """

    def __init__(
        self,
        publisher: IntentPublisher,
        scheduler: Scheduler,
        *,
        quiet_seconds: float | None = None,
        expiry_seconds: float | None = None,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self._publisher = publisher
        self._scheduler = scheduler
        self._quiet = quiet_seconds if quiet_seconds is not None else settings.TYPING_QUIET_SECONDS
        self._expiry = expiry_seconds if expiry_seconds is not None else settings.TYPING_EXPIRY_SECONDS
        self._on_change = on_change
        self._outbound: dict[str, TimerHandle] = {}
        self._inbound: dict[str, TypingState] = {}
        self._inbound_timers: dict[str, TimerHandle] = {}
        self._generation = 0

    def keystroke(self, peer_id: str) -> None:
        timer = self._outbound.pop(peer_id, None)
        if timer is not None:
            timer.cancel()
        elif not self._publisher.publish(OutboundEvent.TYPING_START, {"receiverId": peer_id}):
            return
        self._outbound[peer_id] = self._schedule(self._quiet, lambda: self._quiet_elapsed(peer_id))

    def force_stop(self, peer_id: str) -> bool:
        timer = self._outbound.pop(peer_id, None)
        if timer is None:
            return False
        timer.cancel()
        self._publisher.publish(OutboundEvent.TYPING_STOP, {"receiverId": peer_id})
        return True

    def is_typing_to(self, peer_id: str) -> bool:
        return peer_id in self._outbound

    def peer_started(self, peer_id: str, label: str) -> None:
        self._cancel_inbound_timer(peer_id)
        self._inbound[peer_id] = TypingState(is_typing=True, label=label)
        self._inbound_timers[peer_id] = self._schedule(self._expiry, lambda: self._expire(peer_id))
        self._changed()

    def peer_stopped(self, peer_id: str) -> None:
        self._cancel_inbound_timer(peer_id)
        if self._inbound.pop(peer_id, None) is not None:
            self._changed()

    def peer_state(self, peer_id: str) -> TypingState | None:
        return self._inbound.get(peer_id)

    @property
    def typing_peers(self) -> dict[str, TypingState]:
        return dict(self._inbound)

    def reset(self) -> None:
        """Drop all state and timers without publishing anything."""
        self._generation += 1
        for timer in [*self._outbound.values(), *self._inbound_timers.values()]:
            timer.cancel()
        self._outbound.clear()
        self._inbound_timers.clear()
        had_inbound = bool(self._inbound)
        self._inbound.clear()
        if had_inbound:
            self._changed()

    def _schedule(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        generation = self._generation

        def fire() -> None:
            if generation == self._generation:
                callback()

        return self._scheduler.call_later(delay, fire)

    def _quiet_elapsed(self, peer_id: str) -> None:
        if self._outbound.pop(peer_id, None) is not None:
            self._publisher.publish(OutboundEvent.TYPING_STOP, {"receiverId": peer_id})

    def _expire(self, peer_id: str) -> None:
        self._inbound_timers.pop(peer_id, None)
        if self._inbound.pop(peer_id, None) is not None:
            logger.debug("Typing indicator for %s expired", peer_id)
            self._changed()

    def _cancel_inbound_timer(self, peer_id: str) -> None:
        timer = self._inbound_timers.pop(peer_id, None)
        if timer is not None:
            timer.cancel()

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()
