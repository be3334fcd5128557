import asyncio
import json

import pytest

from sse_hub import AlreadySubscribed, Broker, Message, SessionState, StreamSession
from sse_hub.streaming import EventStreamResponse


def run(coro):
    return asyncio.run(coro)


def parse_frame(frame):
    event_line, data_line, blank = frame.split("\n", 2)
    assert event_line.startswith("event: ")
    assert data_line.startswith("data: ")
    assert blank == "\n"
    return event_line[len("event: "):], json.loads(data_line[len("data: "):])


def test_init_then_published_then_release():
    async def scenario():
        broker = Broker()
        session = StreamSession(broker, "alice", heartbeat_interval=None)
        events = session.events()

        first = await events.__anext__()
        assert session.state is SessionState.STREAMING
        assert await broker.is_connected("alice")

        await broker.publish(Message(clientId="alice", id="m1", ts=1000, payload="hello"))
        second = await events.__anext__()

        await events.aclose()
        return first, second, session, await broker.is_connected("alice")

    first, second, session, connected = run(scenario())
    assert parse_frame(first) == ("init", {"clientId": "alice", "history": []})
    assert parse_frame(second) == ("published", {"clientId": "alice", "id": "m1", "ts": 1000, "payload": "hello"})
    assert session.state is SessionState.CLOSED
    assert connected is False


def test_late_joiner_sees_history_in_init():
    async def scenario():
        broker = Broker()
        a = StreamSession(broker, "a", heartbeat_interval=None).events()
        await a.__anext__()
        await broker.publish(Message(clientId="a", id="m1", ts=1000, payload="hello"))
        own = await a.__anext__()

        b = StreamSession(broker, "b", heartbeat_interval=None).events()
        init_b = await b.__anext__()
        await a.aclose()
        await b.aclose()
        return own, init_b, await broker.stats()

    own, init_b, stats = run(scenario())
    assert parse_frame(own)[0] == "published"
    event, body = parse_frame(init_b)
    assert event == "init"
    assert body["clientId"] == "b"
    assert body["history"] == [{"clientId": "a", "id": "m1", "ts": 1000, "payload": "hello"}]
    assert stats["subscribers"] == 0


def test_stream_ends_when_broker_closes_channel():
    async def scenario():
        broker = Broker()
        session = StreamSession(broker, "a", heartbeat_interval=None)
        frames = []

        async def consume():
            async for frame in session.events():
                frames.append(frame)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0.01)
        await broker.close_all()
        await asyncio.wait_for(task, timeout=1)
        return frames, session

    frames, session = run(scenario())
    assert len(frames) == 1
    assert session.state is SessionState.CLOSED


def test_cancellation_releases_subscription():
    async def scenario():
        broker = Broker()
        session = StreamSession(broker, "a", heartbeat_interval=None)

        async def consume():
            async for _ in session.events():
                pass

        task = asyncio.create_task(consume())
        await asyncio.sleep(0.01)
        assert await broker.is_connected("a")
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0.01)
        return session, await broker.is_connected("a")

    session, connected = run(scenario())
    assert session.state is SessionState.CLOSED
    assert connected is False


def test_heartbeat_and_disconnect_probe():
    probes = iter([False, True])

    async def is_disconnected():
        return next(probes)

    async def scenario():
        broker = Broker()
        session = StreamSession(broker, "a", is_disconnected=is_disconnected, heartbeat_interval=0.01)
        frames = [frame async for frame in session.events()]
        return frames, await broker.is_connected("a")

    frames, connected = run(scenario())
    assert len(frames) == 2
    assert frames[1] == ": keep-alive\n\n"
    assert connected is False


def test_second_session_for_same_client_is_rejected():
    async def scenario():
        broker = Broker()
        first = await StreamSession(broker, "a", heartbeat_interval=None).open()
        second = StreamSession(broker, "a", heartbeat_interval=None)
        with pytest.raises(AlreadySubscribed):
            await second.open()
        # closing a session that never streamed must not touch the first one
        await second.close()
        connected = await broker.is_connected("a")
        await first.close()
        return connected, await broker.is_connected("a")

    assert run(scenario()) == (True, False)


def test_close_is_idempotent():
    async def scenario():
        broker = Broker()
        session = await StreamSession(broker, "a", heartbeat_interval=None).open()
        await session.close()
        await session.close()
        return await broker.is_connected("a")

    assert run(scenario()) is False


def test_close_after_broker_shutdown_is_quiet():
    async def scenario():
        broker = Broker()
        session = await StreamSession(broker, "a", heartbeat_interval=None).open()
        await broker.close_all()
        await session.close()
        return session.state

    assert run(scenario()) is SessionState.CLOSED


def test_response_releases_session_on_client_disconnect():
    async def scenario():
        broker = Broker()
        session = await StreamSession(broker, "a", heartbeat_interval=None).open()
        sent = []

        async def receive():
            await asyncio.sleep(0.05)
            return {"type": "http.disconnect"}

        async def send(message):
            sent.append(message)

        response = EventStreamResponse(session, headers={"Cache-Control": "no-cache"})
        await asyncio.wait_for(response({"type": "http"}, receive, send), timeout=1)
        await asyncio.sleep(0.01)
        return sent, await broker.is_connected("a")

    sent, connected = run(scenario())
    start = sent[0]
    assert start["type"] == "http.response.start"
    assert start["status"] == 200
    assert (b"content-type", b"text/event-stream; charset=utf-8") in start["headers"]
    assert (b"cache-control", b"no-cache") in start["headers"]
    assert sent[1]["body"].startswith(b"event: init\n")
    assert connected is False


def test_response_releases_session_that_never_streamed():
    async def scenario():
        broker = Broker()
        session = await StreamSession(broker, "a", heartbeat_interval=None).open()

        async def receive():
            return {"type": "http.disconnect"}

        async def send(message):
            pass

        await asyncio.wait_for(EventStreamResponse(session)({"type": "http"}, receive, send), timeout=1)
        await asyncio.sleep(0.01)
        return await broker.is_connected("a")

    assert run(scenario()) is False


def test_message_after_idle_heartbeats_is_delivered():
    async def scenario():
        broker = Broker()
        session = StreamSession(broker, "a", heartbeat_interval=0.01)
        events = session.events()
        await events.__anext__()
        idle = [await events.__anext__(), await events.__anext__()]
        await broker.publish(Message(clientId="a", id="m1", ts=1000, payload="hello"))
        frame = await events.__anext__()
        await events.aclose()
        return idle, frame, session._pending

    idle, frame, pending = run(scenario())
    assert idle == [": keep-alive\n\n", ": keep-alive\n\n"]
    assert parse_frame(frame)[1]["id"] == "m1"
    assert pending is None
