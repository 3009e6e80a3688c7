"""
Wire vocabulary shared by the chat client and the task backend.

Outbound frames are tasks:   {"type": "task", "prompt": ..., "task_id": ...}
Inbound frames are events:   {"type": <EventType>, "timestamp": ..., ...}

Both sides encode and decode through this module so the two never drift.
"""

import json
import uuid
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

TASK_TYPE = "task"

_OPTIONAL_EVENT_FIELDS = ("task_id", "message", "level", "result", "error")


class MalformedFrame(ValueError):
    """A frame that could not be decoded into a task or an event."""
    pass


class EventType(str, Enum):
    TASK_STARTED = "task_started"
    STATUS = "status"
    LOG = "log"
    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"
    ERROR = "error"


@dataclass(frozen=True)
class TaskRequest:
    """An outbound unit of work. ``task_id`` is generated on encode when empty."""
    prompt: str
    task_id: Optional[str] = None
    type: str = TASK_TYPE


@dataclass(frozen=True)
class Event:
    """An inbound notification about a task."""
    type: EventType
    timestamp: str
    task_id: Optional[str] = None
    message: Optional[str] = None
    level: Optional[str] = None
    result: Optional[str] = None
    error: Optional[str] = None


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_task_id() -> str:
    return f"task-{uuid.uuid4().hex}"


# ------------------------------------------------------------------
# Tasks
# ------------------------------------------------------------------

def encode_task(request: Union[TaskRequest, Mapping[str, Any]]) -> str:
    """Serialize a task frame.

    Accepts a TaskRequest or a plain mapping with ``prompt`` and an optional
    ``task_id``. The ``type`` discriminator is always written as ``"task"``,
    whatever the caller passed.
    """
    if isinstance(request, TaskRequest):
        prompt, task_id = request.prompt, request.task_id
    else:
        prompt, task_id = request.get("prompt", ""), request.get("task_id")
    return json.dumps({
        "type": TASK_TYPE,
        "prompt": prompt,
        "task_id": task_id or new_task_id(),
    })


def decode_task(raw: Union[str, bytes]) -> TaskRequest:
    """Parse a task frame received by the backend."""
    data = _load_object(raw)
    if data.get("type") != TASK_TYPE:
        raise MalformedFrame(f"Expected a task frame, got type={data.get('type')!r}")
    prompt = data.get("prompt", "")
    task_id = data.get("task_id")
    if not isinstance(prompt, str):
        raise MalformedFrame("Task prompt must be a string")
    if task_id is not None and not isinstance(task_id, str):
        raise MalformedFrame("Task id must be a string")
    return TaskRequest(prompt=prompt, task_id=task_id or new_task_id())


# ------------------------------------------------------------------
# Events
# ------------------------------------------------------------------

def make_event(event_type: Union[EventType, str], **fields: Optional[str]) -> Event:
    """Build an event stamped with the current time."""
    return Event(type=EventType(event_type), timestamp=now_iso(), **fields)


def event_to_dict(event: Event) -> Dict[str, Any]:
    data = {k: v for k, v in asdict(event).items() if v is not None}
    data["type"] = event.type.value
    return data


def encode_event(event: Event) -> str:
    return json.dumps(event_to_dict(event))


def decode_event(raw: Union[str, bytes]) -> Event:
    """Parse an event frame. Raises MalformedFrame on anything off-contract."""
    data = _load_object(raw)
    try:
        event_type = EventType(data.get("type"))
    except ValueError:
        raise MalformedFrame(f"Unknown event type: {data.get('type')!r}")
    timestamp = data.get("timestamp")
    if not isinstance(timestamp, str) or not timestamp:
        raise MalformedFrame("Event frame is missing its timestamp")
    fields = {}
    for name in _OPTIONAL_EVENT_FIELDS:
        value = data.get(name)
        if value is not None and not isinstance(value, str):
            raise MalformedFrame(f"Event field {name!r} must be a string")
        fields[name] = value
    return Event(type=event_type, timestamp=timestamp, **fields)


def _load_object(raw: Union[str, bytes]) -> Dict[str, Any]:
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedFrame(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedFrame("Frame must be a JSON object")
    return data
