"""
Task REST API: submit a task without a WebSocket and poll for its status.
"""

import logging

from fastapi import APIRouter, HTTPException, Request

from protocol import MalformedFrame, decode_task
import web.state as _state
from web.chat import spawn_task

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/api/tasks")
async def create_task(request: Request):
    raw = await request.body()
    try:
        task = decode_task(raw)
    except MalformedFrame as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not task.prompt.strip():
        raise HTTPException(status_code=400, detail="Prompt is empty")

    spawn_task(task.task_id, task.prompt)
    logger.info(f"Task queued via REST: {task.task_id}")
    return {"task_id": task.task_id, "status": "pending", "message": "Task created"}


@router.get("/api/tasks")
async def list_tasks():
    return [t.to_dict() for t in _state.list_tasks()]


@router.get("/api/tasks/{task_id}")
async def get_task(task_id: str):
    record = _state.get_task(task_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return record.to_dict()
