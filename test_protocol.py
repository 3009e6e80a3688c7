"""
Tests for the wire vocabulary and the task/event protocol handler.
"""

import json

import pytest

from client.protocol import AppendMessage, ProtocolHandler, SetProcessing, intents_for
from conftest import event_frame
from protocol import (
    Event,
    EventType,
    MalformedFrame,
    TaskRequest,
    decode_event,
    decode_task,
    encode_task,
)


# ------------------------------------------------------------------
# Encoding tasks
# ------------------------------------------------------------------

def test_encode_task_generates_id_and_type():
    frame = json.loads(encode_task(TaskRequest(prompt="hello")))
    assert frame["type"] == "task"
    assert frame["prompt"] == "hello"
    assert isinstance(frame["task_id"], str) and frame["task_id"]


def test_encode_task_injects_type_for_plain_mappings():
    frame = json.loads(encode_task({"prompt": "hello", "task_id": "t1"}))
    assert frame == {"type": "task", "prompt": "hello", "task_id": "t1"}

    frame = json.loads(encode_task({"type": "something-else", "prompt": "x", "task_id": ""}))
    assert frame["type"] == "task"
    assert frame["task_id"]


def test_generated_task_ids_are_unique():
    ids = {json.loads(encode_task({"prompt": "p"}))["task_id"] for _ in range(50)}
    assert len(ids) == 50


def test_decode_task():
    task = decode_task('{"type": "task", "prompt": "hi", "task_id": "t9"}')
    assert task == TaskRequest(prompt="hi", task_id="t9")
    assert decode_task('{"type": "task", "prompt": "hi"}').task_id

    with pytest.raises(MalformedFrame):
        decode_task('{"type": "status", "prompt": "hi"}')
    with pytest.raises(MalformedFrame):
        decode_task('{"type": "task", "prompt": 3}')


# ------------------------------------------------------------------
# Decoding events
# ------------------------------------------------------------------

def test_decode_event_full_frame():
    raw = json.dumps({
        "type": "log",
        "task_id": "t1",
        "message": "step 1",
        "level": "info",
        "timestamp": "2025-01-01T00:00:00Z",
    })
    event = decode_event(raw)
    assert event.type is EventType.LOG
    assert event.task_id == "t1"
    assert event.message == "step 1"
    assert event.level == "info"
    assert event.result is None


@pytest.mark.parametrize("raw", [
    "not json",
    "[1, 2, 3]",
    '"status"',
    '{"type": "bogus", "timestamp": "2025-01-01T00:00:00Z"}',
    '{"message": "no type", "timestamp": "2025-01-01T00:00:00Z"}',
    '{"type": "status", "message": "no timestamp"}',
    '{"type": "status", "message": 42, "timestamp": "2025-01-01T00:00:00Z"}',
])
def test_decode_event_rejects_malformed_frames(raw):
    with pytest.raises(MalformedFrame):
        decode_event(raw)


# ------------------------------------------------------------------
# Dispatch table
# ------------------------------------------------------------------

def _event(event_type, **fields):
    return Event(type=EventType(event_type), timestamp="2025-01-01T00:00:00Z", **fields)


def test_intents_for_each_event_type():
    assert intents_for(_event("task_started"), "s1") == [SetProcessing(True)]
    assert intents_for(_event("status", message="thinking"), "s1") == [
        AppendMessage("s1", "system", "thinking")
    ]
    assert intents_for(_event("log"), "s1") == []
    assert intents_for(_event("task_completed", result="done"), "s1") == [
        SetProcessing(False),
        AppendMessage("s1", "assistant", "done"),
    ]
    assert intents_for(_event("task_completed"), "s1") == [SetProcessing(False)]
    assert intents_for(_event("task_failed", error="boom"), "s1") == [
        SetProcessing(False),
        AppendMessage("s1", "system", "Error: boom"),
    ]
    assert intents_for(_event("error", message="bad frame"), "s1") == [
        SetProcessing(False),
        AppendMessage("s1", "system", "Error: bad frame"),
    ]
    assert intents_for(_event("error"), "s1")[1].content == "Error: Unknown error"


# ------------------------------------------------------------------
# ProtocolHandler
# ------------------------------------------------------------------

class _Recorder:
    def __init__(self, active="s1"):
        self.active = active
        self.intents = []
        self.handler = ProtocolHandler(self.intents.append, lambda: self.active)


def test_handler_emits_in_arrival_order():
    rec = _Recorder()
    rec.handler.feed(event_frame("task_started", task_id="t1"))
    rec.handler.feed(event_frame("status", task_id="t1", message="a"))
    rec.handler.feed(event_frame("log", task_id="t1", message="b"))
    rec.handler.feed(event_frame("task_completed", task_id="t1", result="c"))
    assert rec.intents == [
        SetProcessing(True),
        AppendMessage("s1", "system", "a"),
        AppendMessage("s1", "system", "b"),
        SetProcessing(False),
        AppendMessage("s1", "assistant", "c"),
    ]


def test_handler_swallows_malformed_frames():
    rec = _Recorder()
    assert rec.handler.feed("{oops") == 0
    assert rec.handler.feed(b"\xff\xfe") == 0
    assert rec.intents == []


def test_handler_drops_events_without_active_session():
    rec = _Recorder(active=None)
    assert rec.handler.feed(event_frame("task_started")) == 0
    assert rec.handler.feed(event_frame("status", message="x")) == 0
    assert rec.intents == []


def test_handler_drops_events_for_tasks_of_another_session():
    rec = _Recorder(active="s2")
    rec.handler.track("t1", "s1")
    assert rec.handler.feed(event_frame("status", task_id="t1", message="x")) == 0
    assert rec.handler.feed(event_frame("task_completed", task_id="t1", result="y")) == 0
    assert rec.intents == []

    # Untracked tasks target the active session
    assert rec.handler.feed(event_frame("status", task_id="other", message="z")) == 1
    assert rec.intents == [AppendMessage("s2", "system", "z")]


def test_handler_encode_uses_given_task_id():
    rec = _Recorder()
    frame = json.loads(rec.handler.encode("hello", "t1"))
    assert frame == {"type": "task", "prompt": "hello", "task_id": "t1"}


def test_handler_error_event_ends_task_tracking():
    rec = _Recorder(active="s2")
    rec.handler.track("t1", "s1")
    assert rec.handler.feed(event_frame("error", task_id="t1", error="bad")) == 0

    # t1 is no longer tied to s1, so later frames fall back to the active session
    assert rec.handler.feed(event_frame("status", task_id="t1", message="x")) == 1
    assert rec.intents == [AppendMessage("s2", "system", "x")]


def test_handler_clear_forgets_all_tasks():
    rec = _Recorder(active="s2")
    rec.handler.track("t1", "s1")
    rec.handler.track("t2", "s1")
    rec.handler.clear()
    assert rec.handler.feed(event_frame("status", task_id="t1", message="a")) == 1
    assert rec.handler.feed(event_frame("status", task_id="t2", message="b")) == 1
