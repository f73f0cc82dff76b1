import asyncio
import json

import pytest

from afrobiz_connect.client.events import (
    ChatEvent,
    MessageSentEvent,
    TypingData,
    UserTypingEvent,
    event_from_dict,
    parse_event,
)
from afrobiz_connect.client.realtime import ConnectionState, RealtimeChannel
from afrobiz_connect.client.schemas import Message

from conftest import FakeConnector, FakeSocket, RecordingSleep, eventually, message


def frame(event, data, timestamp="2024-05-01T10:00:00Z"):
    return json.dumps({"event": event, "data": data, "timestamp": timestamp})


def make_channel(connector, sleep=None, **kwargs):
    options = {"base_delay": 1.0, "max_delay": 8.0, "max_attempts": 5}
    options.update(kwargs)
    return RealtimeChannel(
        "wss://realtime.test/ws",
        token_provider=lambda: "t1",
        connect=connector,
        sleep=sleep or RecordingSleep(),
        **options,
    )


async def test_backoff_doubles_up_to_cap_then_fails():
    connector = FakeConnector()
    sleep = RecordingSleep()
    channel = make_channel(connector, sleep)
    states = []
    channel.add_state_listener(states.append)

    await channel.connect()
    await channel.wait_closed()

    assert sleep.delays == [1.0, 2.0, 4.0, 8.0, 8.0]
    assert len(connector.calls) == 6
    assert channel.state is ConnectionState.FAILED
    assert states[-1] is ConnectionState.FAILED


async def test_successful_open_resets_delay_and_attempts():
    connector = FakeConnector(OSError(), OSError(), FakeSocket(), OSError())
    sleep = RecordingSleep()
    channel = make_channel(connector, sleep, max_attempts=3)
    attempts_when_connected = []
    channel.add_state_listener(
        lambda s: attempts_when_connected.append(channel.reconnect_attempts) if s is ConnectionState.CONNECTED else None
    )
    connector.outcomes[2].drop()

    await channel.connect()
    await channel.wait_closed()

    assert sleep.delays == [1.0, 2.0, 1.0, 2.0, 4.0]
    assert attempts_when_connected == [0]
    assert channel.state is ConnectionState.FAILED


async def test_connect_again_after_failure_starts_over():
    connector = FakeConnector()
    sleep = RecordingSleep()
    channel = make_channel(connector, sleep, max_attempts=1)
    await channel.connect()
    await channel.wait_closed()

    socket = FakeSocket()
    connector.outcomes.append(socket)
    await channel.connect()
    await eventually(lambda: channel.is_connected)

    assert channel.reconnect_attempts == 0
    await channel.close()


async def test_open_announces_presence_with_bearer_handshake():
    socket = FakeSocket()
    connector = FakeConnector(socket)
    channel = make_channel(connector)

    await channel.connect()
    await eventually(lambda: socket.sent)

    assert socket.sent_events == ["user_online"]
    assert connector.calls[0]["url"] == "wss://realtime.test/ws"
    assert connector.calls[0]["additional_headers"] == {"Authorization": "Bearer t1"}
    await channel.close()
    assert channel.state is ConnectionState.DISCONNECTED


async def test_failing_handler_does_not_stop_others():
    socket = FakeSocket()
    channel = make_channel(FakeConnector(socket))
    received = []

    def broken(event):
        raise RuntimeError("boom")

    async def collect(event):
        received.append(event)

    channel.add_event_listener("message_sent", broken)
    channel.add_event_listener(ChatEvent.MESSAGE_SENT, collect)
    await channel.connect()
    socket.feed(frame("message_sent", message("m1", 1)))
    await eventually(lambda: received)

    assert isinstance(received[0], MessageSentEvent)
    assert received[0].data.id == "m1"
    await channel.close()


async def test_malformed_frames_are_dropped():
    socket = FakeSocket()
    channel = make_channel(FakeConnector(socket))
    received = []
    channel.add_event_listener(ChatEvent.USER_TYPING, received.append)
    await channel.connect()

    socket.feed("not json at all")
    socket.feed(frame("mystery_event", {}))
    socket.feed(frame("user_typing", {"isTyping": True}))
    socket.feed(frame("user_typing", {"chatRoomId": "room-1", "userId": "u2", "isTyping": True}))
    await eventually(lambda: received)

    assert len(received) == 1
    assert received[0].data.user_id == "u2"
    assert channel.is_connected
    await channel.close()


async def test_removed_listener_is_not_called():
    socket = FakeSocket()
    channel = make_channel(FakeConnector(socket))
    first, second = [], []
    channel.add_event_listener(ChatEvent.USER_TYPING, first.append)
    channel.add_event_listener(ChatEvent.USER_TYPING, second.append)
    channel.remove_event_listener(ChatEvent.USER_TYPING, first.append)
    await channel.connect()

    socket.feed(frame("user_typing", {"chatRoomId": "room-1", "userId": "u2", "isTyping": False}))
    await eventually(lambda: second)

    assert first == []
    await channel.close()


async def test_message_events_sent_offline_flush_after_presence():
    socket = FakeSocket()
    channel = make_channel(FakeConnector(socket))
    sent = MessageSentEvent(data=Message.model_validate(message("m1", 1)))
    typing = UserTypingEvent(data=TypingData(chat_room_id="room-1", is_typing=True))

    assert await channel.send(sent) is False
    assert await channel.send(typing) is False
    assert channel.pending == 1

    await channel.connect()
    await eventually(lambda: len(socket.sent) == 2)

    assert socket.sent_events == ["user_online", "message_sent"]
    assert channel.pending == 0
    assert await channel.send(typing) is True
    await channel.close()


async def test_outbox_drops_oldest_when_full():
    channel = make_channel(FakeConnector(), outbox_limit=2)
    for i in range(3):
        await channel.send(MessageSentEvent(data=Message.model_validate(message(f"m{i}", i))))

    assert channel.pending == 2
    assert [e.data.id for e in channel._outbox] == ["m1", "m2"]


async def test_close_cancels_pending_reconnect():
    connector = FakeConnector()
    channel = make_channel(connector, sleep=asyncio.sleep, base_delay=30.0, max_delay=30.0)

    await channel.connect()
    await eventually(lambda: channel.state is ConnectionState.RECONNECTING)
    await channel.close()

    assert channel.state is ConnectionState.DISCONNECTED
    assert len(connector.calls) == 1


def test_envelopes_are_tagged_variants():
    event = parse_event(frame("message_read", {"messageId": "m1", "chatRoomId": "room-1"}))

    assert event.kind is ChatEvent.MESSAGE_READ
    assert event.data.message_id == "m1"
    assert event_from_dict({"event": "user_offline", "data": {"userId": "u2"}}).data.user_id == "u2"


def test_message_payload_is_validated():
    with pytest.raises(ValueError):
        parse_event(frame("message_sent", {"id": "m1"}))
