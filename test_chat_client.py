"""
Tests for ChatClient: UI actions, event handling and the full
send-task / receive-events round trip over a fake transport.
"""

import asyncio
import json
import time

import pytest

from client import ChatClient, NoActiveSession
from conftest import FakeConnector, event_frame, until
from sessions import AccessDenied, SessionStore

URL = "ws://backend.test/ws/chat"


@pytest.fixture
def store(tmp_path):
    return SessionStore(str(tmp_path))


def _client(store, connector=None, user_id="alice"):
    return ChatClient(
        store,
        user_id=user_id,
        url=URL,
        connect=connector or FakeConnector(),
        base_delay_ms=1,
    )


def test_round_trip_builds_expected_message_sequence(store):
    async def scenario():
        connector = FakeConnector()
        client = _client(store, connector)
        processing = []
        client.subscribe(lambda state: processing.append(state.processing))
        session = client.create_session()

        client.start()
        await until(lambda: client.state.connected)

        await client.send_message("hello", task_id="t1")
        sock = connector.sockets[0]
        assert [json.loads(f) for f in sock.sent] == [
            {"type": "task", "prompt": "hello", "task_id": "t1"}
        ]

        sock.push(event_frame("task_started", task_id="t1"))
        sock.push(event_frame("status", task_id="t1", message="thinking"))
        sock.push(event_frame("task_completed", task_id="t1", result="hi there"))
        await until(lambda: len(client.state.messages) == 3)

        expected = [("user", "hello"), ("system", "thinking"), ("assistant", "hi there")]
        assert [(m.role, m.content) for m in client.state.messages] == expected
        assert client.state.processing is False
        assert True in processing

        stored = store.get_messages(session.session_id, "alice")
        assert [(m.role, m.content) for m in stored] == expected
        await client.stop()
        assert client.state.connected is False

    asyncio.run(scenario())


def test_send_without_connection_marks_message_failed(store):
    async def scenario():
        client = _client(store)
        session = client.create_session()
        message = await client.send_message("hello")

        assert message.status == "failed"
        assert client.state.messages[-1].status == "failed"
        # The user message is still persisted
        assert [m.content for m in store.get_messages(session.session_id, "alice")] == ["hello"]

    asyncio.run(scenario())


def test_send_requires_active_session(store):
    async def scenario():
        client = _client(store)
        with pytest.raises(NoActiveSession):
            await client.send_message("hello")

    asyncio.run(scenario())


def test_first_message_titles_new_session(store):
    async def scenario():
        client = _client(store)
        session = client.create_session()
        await client.send_message("explain the water cycle to a ten year old please")
        title = store.get_session(session.session_id, "alice").title
        assert title == "explain the water cycle to a..."
        assert client.state.active_session.title == title

        named = client.create_session("Kept")
        await client.send_message("anything")
        assert store.get_session(named.session_id, "alice").title == "Kept"

    asyncio.run(scenario())


def test_status_event_appends_system_message_and_touches_session(store):
    client = _client(store)
    session = client.create_session()
    before = client.state.active_session.updated_at
    time.sleep(0.001)

    client.protocol.feed(event_frame("status", message="working on it"))
    assert [(m.role, m.content) for m in client.state.messages] == [("system", "working on it")]
    assert client.state.active_session.updated_at > before
    assert store.get_session(session.session_id, "alice").updated_at > before

    client.protocol.feed(event_frame("status"))
    assert len(client.state.messages) == 1


@pytest.mark.parametrize("prior", [True, False])
def test_task_completed_clears_processing(store, prior):
    client = _client(store)
    client.create_session()
    client.state.processing = prior
    client.protocol.feed(event_frame("task_completed", result="42"))
    assert client.state.processing is False
    assert [(m.role, m.content) for m in client.state.messages] == [("assistant", "42")]


def test_failure_events_always_append_system_message(store):
    client = _client(store)
    client.create_session()
    client.protocol.feed(event_frame("task_started"))
    assert client.state.processing is True
    client.protocol.feed(event_frame("task_failed", error="model timed out"))
    client.protocol.feed(event_frame("error"))
    assert client.state.processing is False
    assert [m.content for m in client.state.messages] == [
        "Error: model timed out",
        "Error: Unknown error",
    ]


@pytest.mark.parametrize("raw", [
    "garbage",
    '{"type": "status", "message": "no timestamp"}',
    '{"type": "nope", "timestamp": "2025-01-01T00:00:00Z"}',
    "[]",
])
def test_malformed_frames_change_nothing(store, raw):
    client = _client(store)
    session = client.create_session()
    notified = []
    client.subscribe(notified.append)

    client.protocol.feed(raw)
    assert notified == []
    assert client.state.messages == []
    assert client.state.processing is False
    assert store.get_messages(session.session_id, "alice") == []


def test_events_for_inactive_session_are_dropped(store):
    client = _client(store)
    first = client.create_session("First")
    client.protocol.track("t1", first.session_id)
    second = client.create_session("Second")

    client.protocol.feed(event_frame("status", task_id="t1", message="late"))
    client.protocol.feed(event_frame("task_completed", task_id="t1", result="late"))
    assert client.state.messages == []
    assert store.get_messages(first.session_id, "alice") == []
    assert store.get_messages(second.session_id, "alice") == []


def test_events_without_active_session_are_dropped(store):
    client = _client(store)
    client.protocol.feed(event_frame("task_started"))
    client.protocol.feed(event_frame("status", message="x"))
    assert client.state.processing is False
    assert client.state.messages == []


def test_session_actions(store):
    client = _client(store)
    a = client.create_session("A")
    store.add_message(a.session_id, "alice", "user", "in A")
    b = client.create_session("B")
    assert client.state.active_session_id == b.session_id

    client.select_session(a.session_id)
    assert [m.content for m in client.state.messages] == ["in A"]

    client.rename_session(a.session_id, "Renamed")
    assert client.state.active_session.title == "Renamed"

    client.delete_session(a.session_id)
    assert client.state.active_session_id is None
    assert client.state.messages == []
    assert [s.session_id for s in client.refresh_sessions()] == [b.session_id]


def test_session_actions_respect_ownership(store):
    other = store.create_session("bob", "Bob's")
    client = _client(store)
    with pytest.raises(AccessDenied):
        client.select_session(other.session_id)
    with pytest.raises(AccessDenied):
        client.delete_session(other.session_id)
    assert client.state.active_session_id is None


def test_missing_identity_fails_persistence(store):
    client = _client(store, user_id="")
    with pytest.raises(AccessDenied):
        client.create_session()


def test_connectivity_follows_connection(store):
    async def scenario():
        connector = FakeConnector()
        client = _client(store, connector)
        client.start()
        await until(lambda: client.state.connected)
        connector.sockets[0].drop()
        await until(lambda: not client.state.connected)
        await until(lambda: client.state.connected)
        assert connector.calls == 2
        await client.stop()

    asyncio.run(scenario())


def test_disconnect_forgets_in_flight_tasks(store):
    async def scenario():
        connector = FakeConnector()
        client = _client(store, connector)
        first = client.create_session("First")
        client.start()
        await until(lambda: client.state.connected)
        await client.send_message("hello", task_id="t1")

        connector.sockets[0].drop()
        await until(lambda: not client.state.connected)
        second = client.create_session("Second")

        # t1 was forgotten with the connection, so it now targets the active session
        client.protocol.feed(event_frame("status", task_id="t1", message="late"))
        assert [m.content for m in client.state.messages] == ["late"]
        assert [m.content for m in store.get_messages(first.session_id, "alice")] == ["hello"]
        assert [m.content for m in store.get_messages(second.session_id, "alice")] == ["late"]
        await client.stop()

    asyncio.run(scenario())
