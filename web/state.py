"""
Shared mutable state for the task backend.

All globals that are accessed across multiple route modules live here.
Import from web.state to read/write them.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any, List, Protocol

from fastapi import WebSocket

from protocol import now_iso
from sessions import SessionStore

logger = logging.getLogger(__name__)


class LLMService(Protocol):
    def complete(self, prompt: str, system_prompt: Optional[str] = None) -> str: ...


# ============================================================
# Globals
# ============================================================

_llm: Optional[LLMService] = None  # Created lazily; tests assign a fake
_store: Optional[SessionStore] = None


def get_llm() -> LLMService:
    global _llm
    if _llm is None:
        from bedrock_service import BedrockService
        _llm = BedrockService()
    return _llm


def get_store() -> SessionStore:
    global _store
    if _store is None:
        _store = SessionStore()
    return _store


# ============================================================
# Task registry
# ============================================================

@dataclass
class TaskRecord:
    task_id: str
    prompt: str
    status: str = "pending"  # pending | running | completed | failed
    created_at: str = ""
    completed_at: Optional[str] = None
    result: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


_tasks: Dict[str, TaskRecord] = {}


def register_task(task_id: str, prompt: str) -> TaskRecord:
    record = TaskRecord(task_id=task_id, prompt=prompt, created_at=now_iso())
    _tasks[task_id] = record
    return record


def get_task(task_id: str) -> Optional[TaskRecord]:
    return _tasks.get(task_id)


def list_tasks() -> List[TaskRecord]:
    return sorted(_tasks.values(), key=lambda t: t.created_at, reverse=True)


# ============================================================
# WebSocket reference wrapper (for disconnect-safe sends)
# ============================================================

class _WSRef:
    """Mutable WebSocket reference that silently drops sends when disconnected.

    Background task runners use ``wsr.send_json()`` instead of
    ``ws.send_json()`` directly. When the WebSocket disconnects we set
    ``wsr.ws = None``; all in-flight sends become silent no-ops while the
    tasks themselves run to completion.
    """
    __slots__ = ("ws",)

    def __init__(self, ws: Optional[WebSocket]):
        self.ws: Optional[WebSocket] = ws

    async def send_json(self, data: Dict[str, Any]) -> None:
        _ws = self.ws
        if _ws is None:
            return
        try:
            await _ws.send_json(data)
        except Exception as e:
            logger.debug(f"Dropping send on closed WebSocket: {e}")
            self.ws = None          # mark disconnected on first failure
