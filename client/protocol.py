"""
Task/event protocol handler.

Turns raw inbound frames into state-change intents for the chat state, and
keeps track of which session submitted which task so that events for a
session that is no longer active are dropped.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union

from protocol import Event, EventType, MalformedFrame, TaskRequest, decode_event, encode_task

logger = logging.getLogger(__name__)

# Events after which the backend sends nothing more for a task
TERMINAL_EVENTS = (EventType.TASK_COMPLETED, EventType.TASK_FAILED, EventType.ERROR)


@dataclass(frozen=True)
class SetProcessing:
    value: bool


@dataclass(frozen=True)
class AppendMessage:
    session_id: str
    role: str
    content: str


Intent = Union[SetProcessing, AppendMessage]


def failure_text(event: Event) -> str:
    return f"Error: {event.error or event.message or 'Unknown error'}"


def intents_for(event: Event, session_id: str) -> List[Intent]:
    """Map one decoded event onto the intents it implies for ``session_id``."""
    if event.type is EventType.TASK_STARTED:
        return [SetProcessing(True)]

    if event.type in (EventType.STATUS, EventType.LOG):
        if event.message:
            return [AppendMessage(session_id, "system", event.message)]
        return []

    if event.type is EventType.TASK_COMPLETED:
        intents: List[Intent] = [SetProcessing(False)]
        if event.result:
            intents.append(AppendMessage(session_id, "assistant", event.result))
        return intents

    # task_failed / error
    return [SetProcessing(False), AppendMessage(session_id, "system", failure_text(event))]


class ProtocolHandler:
    """
    Decodes frames in arrival order and emits intents through ``emit``.

    ``active_session`` returns the id of the session currently shown, or None.
    Events for a task submitted from another session, and any event while no
    session is active, are dropped without emitting anything.
    """

    def __init__(
        self,
        emit: Callable[[Intent], None],
        active_session: Callable[[], Optional[str]],
    ):
        self.emit = emit
        self.active_session = active_session
        self._task_sessions: Dict[str, str] = {}

    def encode(self, prompt: str, task_id: Optional[str] = None) -> str:
        return encode_task(TaskRequest(prompt=prompt, task_id=task_id))

    def track(self, task_id: str, session_id: str) -> None:
        self._task_sessions[task_id] = session_id

    def forget(self, task_id: str) -> None:
        self._task_sessions.pop(task_id, None)

    def clear(self) -> None:
        """Forget every tracked task; their events cannot arrive on a new connection."""
        self._task_sessions.clear()

    def feed(self, raw: Union[str, bytes]) -> int:
        """Handle one inbound frame. Returns the number of intents emitted."""
        try:
            event = decode_event(raw)
        except MalformedFrame as e:
            logger.debug(f"Dropping malformed frame: {e}")
            return 0

        active = self.active_session()
        if event.task_id and event.type in TERMINAL_EVENTS:
            target = self._task_sessions.pop(event.task_id, active)
        else:
            target = self._task_sessions.get(event.task_id, active) if event.task_id else active

        if active is None or target != active:
            logger.debug(f"Dropping {event.type.value} event for inactive session {target}")
            return 0

        intents = intents_for(event, active)
        for intent in intents:
            self.emit(intent)
        return len(intents)
