"""
Chat WebSocket endpoint: forwards task prompts to the model and streams
task events back to the client.
"""

import asyncio
import logging
from typing import Optional, Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from bedrock_service import BedrockError
from protocol import EventType, MalformedFrame, decode_task, event_to_dict, make_event, now_iso
from web.state import _WSRef
import web.state as _state

logger = logging.getLogger(__name__)

router = APIRouter()

# Strong references to running task coroutines so they are not collected
_running: Set[asyncio.Task] = set()


def spawn_task(task_id: str, prompt: str, wsr: Optional[_WSRef] = None) -> asyncio.Task:
    """Register a task and run it in the background."""
    _state.register_task(task_id, prompt)
    task = asyncio.create_task(run_task(task_id, prompt, wsr))
    _running.add(task)
    task.add_done_callback(_running.discard)
    return task


async def run_task(task_id: str, prompt: str, wsr: Optional[_WSRef] = None) -> None:
    """Run one task to completion, emitting events to ``wsr`` if given."""
    record = _state.get_task(task_id) or _state.register_task(task_id, prompt)

    async def emit(event_type: EventType, **fields) -> None:
        if wsr is not None:
            await wsr.send_json(event_to_dict(make_event(event_type, task_id=task_id, **fields)))

    record.status = "running"
    await emit(EventType.TASK_STARTED, message="Task started")
    await emit(EventType.STATUS, message="Thinking...", level="info")

    try:
        llm = _state.get_llm()
        result = await asyncio.to_thread(llm.complete, prompt)
    except BedrockError as e:
        logger.error(f"Task {task_id} failed: {e}")
        _finish(record, error=str(e))
        await emit(EventType.TASK_FAILED, error=str(e))
        return
    except Exception as e:
        logger.exception(f"Task {task_id} crashed")
        _finish(record, error=f"{type(e).__name__}: {e}")
        await emit(EventType.TASK_FAILED, error=record.error)
        return

    _finish(record, result=result)
    logger.info(f"Task {task_id} completed ({len(result)} chars)")
    await emit(EventType.TASK_COMPLETED, result=result)


def _finish(record: _state.TaskRecord, result: Optional[str] = None, error: Optional[str] = None) -> None:
    record.status = "failed" if error is not None else "completed"
    record.result = result
    record.error = error
    record.completed_at = now_iso()


@router.websocket("/ws/chat")
async def chat_endpoint(ws: WebSocket):
    await ws.accept()
    wsr = _WSRef(ws)
    logger.info("Chat client connected")

    try:
        while True:
            raw = await ws.receive_text()
            try:
                task = decode_task(raw)
            except MalformedFrame as e:
                logger.debug(f"Rejected frame: {e}")
                await wsr.send_json(event_to_dict(make_event(EventType.ERROR, error=str(e))))
                continue

            if not task.prompt.strip():
                await wsr.send_json(event_to_dict(make_event(
                    EventType.TASK_FAILED, task_id=task.task_id, error="Prompt is empty"
                )))
                continue

            logger.info(f"Task received: {task.task_id}")
            spawn_task(task.task_id, task.prompt, wsr)
    except WebSocketDisconnect:
        logger.info("Chat client disconnected")
    finally:
        # Tasks keep running; their remaining events are dropped.
        wsr.ws = None
