"""End-to-end flows through ChatClient over an in-memory transport."""
from __future__ import annotations

import asyncio

import pytest

from chat_sync.application.exceptions import AuthError, SessionClosed, ValidationError
from chat_sync.domain.value_objects.enums import ChangeKind, ConnectionState, MessageStatus
from chat_sync.services.chat_client import ChatClient
from tests.conftest import (
    PEER_ID,
    SELF_ID,
    FakeClock,
    FakeScheduler,
    FakeTransportFactory,
    wait_until,
)


@pytest.fixture
def factory() -> FakeTransportFactory:
    return FakeTransportFactory()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def client(session, factory, clock, scheduler) -> ChatClient:
    return ChatClient(session, factory, clock=clock, scheduler=scheduler, reconnect=False)


def _sent(factory: FakeTransportFactory, event_type: str) -> list[dict]:
    return [data for event, data in factory.latest.sent_events() if event == event_type]


@pytest.mark.asyncio
async def test_send_confirm_deliver_read(client, factory, clock):
    await client.connect()
    assert client.state is ConnectionState.CONNECTED

    pending = client.send(PEER_ID, "hi")
    assert pending.status is MessageStatus.SENDING

    transport = factory.latest
    transport.feed("message:new", {
        "id": "srv-1",
        "senderId": SELF_ID,
        "receiverId": PEER_ID,
        "text": "hi",
        "createdAt": clock.now().isoformat(),
    })
    await wait_until(lambda: client.conversation(PEER_ID)[0].id == "srv-1")
    assert client.conversation(PEER_ID)[0].status is MessageStatus.SENT

    transport.feed("message:status", {"messageId": "srv-1", "status": "delivered"})
    await wait_until(lambda: client.conversation(PEER_ID)[0].status is MessageStatus.DELIVERED)

    transport.feed("message:status", {"messageId": "srv-1", "status": "read"})
    await wait_until(lambda: client.conversation(PEER_ID)[0].status is MessageStatus.READ)

    conversation = client.conversation(PEER_ID)
    assert len(conversation) == 1
    assert conversation[0].text == "hi"
    assert conversation[0].status is MessageStatus.READ
    await wait_until(lambda: len(_sent(factory, "message:send")) == 1)
    assert _sent(factory, "message:send")[0]["receiverId"] == PEER_ID
    await client.close()


@pytest.mark.asyncio
async def test_presence_typing_and_receipts(client, factory, scheduler):
    await client.connect()
    transport = factory.latest

    transport.feed("users:online", [{"_id": SELF_ID}, {"_id": PEER_ID}])
    transport.feed("typing:start", {"userId": PEER_ID, "username": "Jane"})
    transport.feed("message:new", {
        "_id": "p1", "senderId": PEER_ID, "receiverId": SELF_ID,
        "text": "hello", "createdAt": "2024-05-01T12:00:01Z",
    })
    await wait_until(lambda: client.unread_count(PEER_ID) == 1)

    assert client.is_online(PEER_ID)
    assert client.typing_label(PEER_ID) == "Jane"

    scheduler.advance(10)
    assert client.typing_label(PEER_ID) is None

    assert client.mark_conversation_read(PEER_ID) == 1
    assert client.mark_conversation_read(PEER_ID) == 0
    assert client.unread_count(PEER_ID) == 0
    await wait_until(lambda: _sent(factory, "message:read") == [{"messageId": "p1"}])

    transport.feed("users:online", [{"_id": SELF_ID}])
    await wait_until(lambda: not client.is_online(PEER_ID))
    await client.close()


@pytest.mark.asyncio
async def test_typing_debounce_and_send_stops_typing(client, factory, scheduler):
    await client.connect()

    for _ in range(10):
        client.keystroke(PEER_ID)
        scheduler.advance(0.05)
    client.send(PEER_ID, "done")
    scheduler.advance(5)

    await wait_until(lambda: len(factory.latest.sent) == 3)
    assert [event for event, _ in factory.latest.sent_events()] == [
        "typing:start", "message:send", "typing:stop",
    ]
    await client.close()


@pytest.mark.asyncio
async def test_malformed_payloads_are_dropped(client, factory):
    changes: list[ChangeKind] = []
    client.add_listener(changes.append)
    await client.connect()
    transport = factory.latest

    transport.feed("message:new", {"id": "x", "text": "missing fields"})
    transport.feed("message:status", {"messageId": "x", "status": "bogus"})
    transport.feed("users:online", "not a list")
    transport.feed("something:else", {})
    transport.feed("users:online", ["U9"])
    await wait_until(lambda: client.is_online("U9"))

    assert client.conversation("x") == []
    assert client.state is ConnectionState.CONNECTED
    assert changes.count(ChangeKind.PRESENCE) == 1
    await client.close()


@pytest.mark.asyncio
async def test_transport_loss_fails_pending_and_clears_volatile_state(client, factory):
    changes: list[ChangeKind] = []
    client.add_listener(changes.append)
    await client.connect()
    transport = factory.latest
    transport.feed("users:online", [PEER_ID])
    transport.feed("typing:start", {"userId": PEER_ID, "username": "Jane"})
    await wait_until(lambda: client.typing_label(PEER_ID) == "Jane")
    msg = client.send(PEER_ID, "lost")

    transport.drop()
    await wait_until(lambda: client.state is ConnectionState.DISCONNECTED)

    assert client.conversation(PEER_ID)[0].id == msg.id
    assert client.conversation(PEER_ID)[0].status is MessageStatus.FAILED
    assert not client.is_online(PEER_ID)
    assert client.typing_label(PEER_ID) is None
    assert client.last_error is not None
    assert ChangeKind.CONNECTION in changes

    failed = client.send(PEER_ID, "offline")
    assert failed.status is MessageStatus.FAILED


@pytest.mark.asyncio
async def test_rejected_session_surfaces_auth_error(session, clock, scheduler):
    client = ChatClient(session, FakeTransportFactory(AuthError("bad token")),
                        clock=clock, scheduler=scheduler, reconnect=False)

    with pytest.raises(AuthError):
        await client.connect()

    assert client.state is ConnectionState.DISCONNECTED
    assert isinstance(client.last_error, AuthError)


@pytest.mark.asyncio
async def test_close_tears_down_session_state(client, factory):
    await client.connect()
    transport = factory.latest
    client.send(PEER_ID, "bye")

    await client.close()
    transport.feed("users:online", [PEER_ID])

    assert transport.closed
    assert client.conversation(PEER_ID) == []
    assert not client.is_online(PEER_ID)
    with pytest.raises(SessionClosed):
        await client.connect()


@pytest.mark.asyncio
async def test_listener_errors_do_not_break_dispatch(client, factory):
    def broken(kind: ChangeKind) -> None:
        raise ValueError("ui bug")

    client.add_listener(broken)
    await client.connect()

    factory.latest.feed("users:online", ["U5"])
    await wait_until(lambda: client.is_online("U5"))
    await client.close()


@pytest.mark.asyncio
async def test_leaving_conversation_stops_typing_once(client, factory, scheduler):
    await client.connect()

    client.keystroke(PEER_ID)
    client.leave_conversation(PEER_ID)
    scheduler.advance(5)
    client.leave_conversation(PEER_ID)

    await wait_until(lambda: len(factory.latest.sent) == 2)
    await asyncio.sleep(0.01)
    assert _sent(factory, "typing:start") == [{"receiverId": PEER_ID}]
    assert _sent(factory, "typing:stop") == [{"receiverId": PEER_ID}]
    assert scheduler.pending == 0
    await client.close()


@pytest.mark.asyncio
async def test_own_typing_echo_is_ignored(client, factory):
    changes: list[ChangeKind] = []
    client.add_listener(changes.append)
    await client.connect()
    transport = factory.latest

    transport.feed("typing:start", {"userId": SELF_ID, "username": "Me"})
    transport.feed("users:online", [PEER_ID])
    await wait_until(lambda: client.is_online(PEER_ID))

    assert client.typing_label(SELF_ID) is None
    assert ChangeKind.TYPING not in changes
    await client.close()


@pytest.mark.asyncio
async def test_rejected_send_leaves_typing_alone(client, factory):
    await client.connect()
    client.keystroke(PEER_ID)

    with pytest.raises(ValidationError):
        client.send(PEER_ID, "   ")

    await wait_until(lambda: len(factory.latest.sent) == 1)
    await asyncio.sleep(0.01)
    assert [event for event, _ in factory.latest.sent_events()] == ["typing:start"]
    assert client.conversation(PEER_ID) == []
    await client.close()
