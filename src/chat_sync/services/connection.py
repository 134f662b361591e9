"""Connection lifecycle: dial, dispatch, teardown, reconnect."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine

from chat_sync.application.dto.session import Session
from chat_sync.application.exceptions import (
    AppError,
    AuthError,
    MalformedEvent,
    TransportError,
)
from chat_sync.application.ports.clock import Clock, SystemClock
from chat_sync.application.ports.transport import Transport, TransportFactory
from chat_sync.config import settings
from chat_sync.domain.value_objects.enums import ConnectionState
from chat_sync.infrastructure.auth.token_claims import is_expired
from chat_sync.infrastructure.log_context import connection_id_ctx
from chat_sync.infrastructure.ws.serializer import deserialize_event, serialize_event

logger = logging.getLogger(__name__)

OnEventCallback = Callable[[str, Any], None]
OnStateChange = Callable[[ConnectionState, AppError | None], None]


def calc_backoff(attempt: int, base: float, maximum: float) -> float:
    return min(base * (2 ** attempt), maximum)


class ConnectionManager:
    """Owns the duplex connection for one session.

    Inbound frames are decoded and handed to ``on_event`` one at a time, in
    arrival order, by the reader task. Every task is started under a
    generation number; ``disconnect`` and transport loss bump it, so
    anything still in flight for the old connection becomes a no-op.

    Implements application.ports.bus.IntentPublisher.
    """

    def __init__(
        self,
        transport_factory: TransportFactory,
        on_event: OnEventCallback,
        *,
        on_state_change: OnStateChange | None = None,
        clock: Clock | None = None,
        reconnect: bool | None = None,
        base_delay: float | None = None,
        max_delay: float | None = None,
        max_attempts: int | None = None,
    ) -> None:
        self._transport_factory = transport_factory
        self._on_event = on_event
        self._on_state_change = on_state_change
        self._clock = clock or SystemClock()
        self._reconnect = settings.RECONNECT_ENABLED if reconnect is None else reconnect
        self._base_delay = settings.RECONNECT_BASE_DELAY if base_delay is None else base_delay
        self._max_delay = settings.RECONNECT_MAX_DELAY if max_delay is None else max_delay
        self._max_attempts = settings.RECONNECT_MAX_ATTEMPTS if max_attempts is None else max_attempts

        self._state = ConnectionState.DISCONNECTED
        self._last_error: AppError | None = None
        self._session: Session | None = None
        self._transport: Transport | None = None
        self._outbox: asyncio.Queue[str] | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._reconnect_task: asyncio.Task[None] | None = None
        self._generation = 0
        self._connection_seq = 0
        self._connected_since: float | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def last_error(self) -> AppError | None:
        return self._last_error

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def connected_for(self) -> float | None:
        """Seconds since the current connection opened, None when not connected."""
        if self._connected_since is None:
            return None
        return self._clock.monotonic() - self._connected_since

    async def connect(self, session: Session) -> None:
        """Open the connection; no-op when already connected.

        Raises AuthError or TransportError; the state is DISCONNECTED after
        either.
        """
        if self._state is ConnectionState.CONNECTED:
            return
        await self._cancel_reconnect()
        self._session = session
        await self._open(session)

    async def disconnect(self) -> None:
        if (
            self._state is ConnectionState.DISCONNECTED
            and self._transport is None
            and self._reconnect_task is None
        ):
            return
        self._generation += 1
        self._session = None
        await self._cancel_reconnect()
        await self._teardown()
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("Disconnected")

    def publish(self, event_type: str, payload: dict[str, Any]) -> bool:
        if self._state is not ConnectionState.CONNECTED or self._outbox is None:
            return False
        self._outbox.put_nowait(serialize_event(event_type, payload))
        return True

    async def _open(self, session: Session) -> None:
        if is_expired(session.token, self._clock.now()):
            error = AuthError("session token has expired")
            self._set_state(ConnectionState.DISCONNECTED, error)
            raise error

        self._generation += 1
        generation = self._generation
        self._set_state(ConnectionState.CONNECTING)
        transport = self._transport_factory()
        try:
            await transport.open(session.token)
        except AppError as exc:
            if generation == self._generation:
                self._set_state(ConnectionState.DISCONNECTED, exc)
            raise
        except Exception as exc:
            error = TransportError(str(exc) or type(exc).__name__)
            if generation == self._generation:
                self._set_state(ConnectionState.DISCONNECTED, error)
            raise error from exc

        if generation != self._generation:
            await transport.close()
            raise TransportError("connection closed while opening")

        self._transport = transport
        self._outbox = asyncio.Queue()
        self._connection_seq += 1
        token = connection_id_ctx.set(f"{session.user_id}#{self._connection_seq}")
        try:
            self._spawn(self._read_loop(transport, generation), "chat-sync-reader")
            self._spawn(self._write_loop(transport, self._outbox, generation), "chat-sync-writer")
        finally:
            connection_id_ctx.reset(token)
        self._connected_since = self._clock.monotonic()
        self._set_state(ConnectionState.CONNECTED)
        logger.info("Connected as %s", session.user_id)

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _read_loop(self, transport: Transport, generation: int) -> None:
        while generation == self._generation:
            try:
                raw = await transport.receive()
            except MalformedEvent as exc:
                logger.warning("Dropping undecodable frame: %s", exc.detail)
                continue
            except AppError as exc:
                await self._connection_lost(generation, exc)
                return
            except Exception as exc:
                logger.exception("Unexpected transport failure")
                await self._connection_lost(generation, TransportError(str(exc)))
                return
            if generation != self._generation:
                return
            self._dispatch(raw)

    async def _write_loop(self, transport: Transport, outbox: asyncio.Queue[str], generation: int) -> None:
        while generation == self._generation:
            raw = await outbox.get()
            try:
                await transport.send(raw)
            except AppError as exc:
                await self._connection_lost(generation, exc)
                return

    def _dispatch(self, raw: str) -> None:
        try:
            event_type, data = deserialize_event(raw)
        except MalformedEvent as exc:
            logger.warning("Dropping malformed frame: %s", exc.detail)
            return
        try:
            self._on_event(event_type, data)
        except Exception:
            logger.exception("Error handling inbound event %s", event_type)

    async def _connection_lost(self, generation: int, error: AppError) -> None:
        if generation != self._generation:
            return
        self._generation += 1
        logger.warning("Connection lost after %.1fs: %s", self.connected_for or 0.0, error.detail)
        await self._teardown()
        self._set_state(ConnectionState.DISCONNECTED, error)

        if isinstance(error, AuthError) or not self._reconnect or self._session is None:
            return
        self._reconnect_task = asyncio.create_task(
            self._reconnect_loop(self._session), name="chat-sync-reconnect",
        )

    async def _reconnect_loop(self, session: Session) -> None:
        try:
            for attempt in range(self._max_attempts):
                delay = calc_backoff(attempt, self._base_delay, self._max_delay)
                logger.info(
                    "Reconnecting in %.2fs (attempt %d/%d)", delay, attempt + 1, self._max_attempts,
                )
                await asyncio.sleep(delay)
                try:
                    await self._open(session)
                except AuthError as exc:
                    logger.warning("Reconnect rejected: %s", exc.detail)
                    return
                except TransportError as exc:
                    logger.info("Reconnect attempt %d failed: %s", attempt + 1, exc.detail)
                    continue
                return
            logger.warning("Giving up after %d reconnect attempts", self._max_attempts)
        finally:
            if self._reconnect_task is asyncio.current_task():
                self._reconnect_task = None

    async def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _teardown(self) -> None:
        current = asyncio.current_task()
        tasks = [t for t in self._tasks if t is not current]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        transport, self._transport = self._transport, None
        self._outbox = None
        self._connected_since = None
        if transport is not None:
            try:
                await transport.close()
            except Exception:
                logger.warning("Error closing transport", exc_info=True)

    def _set_state(self, state: ConnectionState, error: AppError | None = None) -> None:
        self._state = state
        if error is not None:
            self._last_error = error
        elif state is ConnectionState.CONNECTED:
            self._last_error = None
        if self._on_state_change is not None:
            try:
                self._on_state_change(state, error)
            except Exception:
                logger.exception("State listener failed for %s", state)
