"""Shared test fixtures."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

import pytest

from chat_sync.application.dto.message import IncomingMessage
from chat_sync.application.dto.session import Session
from chat_sync.application.exceptions import AppError, TransportError
from chat_sync.config import Settings, settings
from chat_sync.infrastructure.ws.serializer import deserialize_event, serialize_event
from chat_sync.services.message_store import MessageStore

SELF_ID = "U1"
PEER_ID = "U2"
T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
ENV_TEST = Path(__file__).resolve().parent.parent / ".env.test"


@pytest.fixture(scope="session", autouse=True)
def env_test_settings() -> Settings:
    """Point the shared settings at .env.test for the whole run."""
    loaded = Settings(_env_file=ENV_TEST)
    for name in Settings.model_fields:
        setattr(settings, name, getattr(loaded, name))
    return settings


@pytest.fixture
def session() -> Session:
    return Session(user_id=SELF_ID, token="opaque-token")


@dataclass
class FakeClock:
    current: datetime = T0
    ticks: float = 0.0

    def now(self) -> datetime:
        return self.current

    def monotonic(self) -> float:
        return self.ticks

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)
        self.ticks += seconds


class _FakeTimer:
    __slots__ = ("due", "callback", "cancelled")

    def __init__(self, due: float, callback: Callable[[], None]) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class FakeScheduler:
    """Manually advanced timer wheel."""

    now: float = 0.0
    _timers: list[_FakeTimer] = field(default_factory=list)

    def call_later(self, delay: float, callback: Callable[[], None]) -> _FakeTimer:
        timer = _FakeTimer(self.now + delay, callback)
        self._timers.append(timer)
        return timer

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [t for t in self._timers if not t.cancelled and t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self._timers.remove(timer)
            self.now = timer.due
            timer.callback()
        self.now = target

    @property
    def pending(self) -> int:
        return sum(1 for t in self._timers if not t.cancelled)


@dataclass
class RecordingPublisher:
    connected: bool = True
    intents: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    def publish(self, event_type: str, payload: dict[str, Any]) -> bool:
        if not self.connected:
            return False
        self.intents.append((str(event_type), payload))
        return True

    def of(self, event_type: str) -> list[dict[str, Any]]:
        return [p for e, p in self.intents if e == event_type]


class FakeTransport:
    """In-memory duplex transport; tests push inbound frames with ``feed``."""

    def __init__(self, open_error: AppError | None = None) -> None:
        self.open_error = open_error
        self.token: str | None = None
        self.sent: list[str] = []
        self.closed = False
        self._inbound: asyncio.Queue[str | Exception] = asyncio.Queue()

    async def open(self, token: str) -> None:
        self.token = token
        if self.open_error is not None:
            raise self.open_error

    async def send(self, raw: str) -> None:
        if self.closed:
            raise TransportError("transport closed")
        self.sent.append(raw)

    async def receive(self) -> str:
        item = await self._inbound.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True

    def feed(self, event_type: str, data: Any) -> None:
        self._inbound.put_nowait(serialize_event(event_type, data))

    def feed_raw(self, raw: str) -> None:
        self._inbound.put_nowait(raw)

    def drop(self, error: Exception | None = None) -> None:
        self._inbound.put_nowait(error or TransportError("connection reset by peer"))

    def sent_events(self) -> list[tuple[str, Any]]:
        return [deserialize_event(raw) for raw in self.sent]


class FakeTransportFactory:
    """Hands out a fresh FakeTransport per dial; open errors are consumed in order."""

    def __init__(self, *open_errors: AppError | None) -> None:
        self._open_errors = list(open_errors)
        self.created: list[FakeTransport] = []

    def __call__(self) -> FakeTransport:
        error = self._open_errors.pop(0) if self._open_errors else None
        transport = FakeTransport(error)
        self.created.append(transport)
        return transport

    @property
    def latest(self) -> FakeTransport:
        return self.created[-1]


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.001)


def make_incoming(
    *,
    message_id: str = "srv-1",
    sender_id: str = SELF_ID,
    receiver_id: str = PEER_ID,
    text: str = "hi",
    created_at: datetime = T0,
) -> IncomingMessage:
    return IncomingMessage(
        id=message_id,
        sender_id=sender_id,
        receiver_id=receiver_id,
        text=text,
        created_at=created_at,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def store(publisher: RecordingPublisher, clock: FakeClock) -> MessageStore:
    return MessageStore(SELF_ID, publisher, clock=clock, reconcile_window=5.0, status_buffer_limit=3)
