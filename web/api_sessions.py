"""
Session and message REST API endpoints.

Every request is scoped to the caller identity in the ``X-User-Id`` header.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from sessions import DEFAULT_TITLE, AccessDenied
from config import app_config, get_credentials_info, model_config
import web.state as _state

logger = logging.getLogger(__name__)

router = APIRouter()


class CreateSessionBody(BaseModel):
    title: str = DEFAULT_TITLE


class UpdateSessionBody(BaseModel):
    title: str


class AddMessageBody(BaseModel):
    role: str
    content: str


async def access_denied_handler(request: Request, exc: AccessDenied) -> JSONResponse:
    logger.info(f"Access denied on {request.url.path}: {exc}")
    return JSONResponse({"detail": str(exc)}, status_code=403)


def _user(x_user_id: Optional[str]) -> str:
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise AccessDenied("Authentication required")
    return user_id


@router.get("/api/info")
async def info():
    """Return model and endpoint info for clients."""
    return {
        "title": app_config.title,
        "model_id": model_config.model_id,
        "ws_path": "/ws/chat",
        "credentials": get_credentials_info(),
    }


@router.get("/api/sessions")
async def list_sessions(x_user_id: Optional[str] = Header(None)):
    store = _state.get_store()
    return [s.summary() for s in store.list_sessions(_user(x_user_id))]


@router.post("/api/sessions")
async def create_session(body: CreateSessionBody, x_user_id: Optional[str] = Header(None)):
    session = _state.get_store().create_session(_user(x_user_id), body.title)
    return {"session_id": session.session_id}


@router.get("/api/sessions/{session_id}/messages")
async def get_messages(session_id: str, x_user_id: Optional[str] = Header(None)):
    messages = _state.get_store().get_messages(session_id, _user(x_user_id))
    return [
        {"id": m.id, "role": m.role, "content": m.content, "created_at": m.created_at}
        for m in messages
    ]


@router.post("/api/sessions/{session_id}/messages")
async def add_message(session_id: str, body: AddMessageBody, x_user_id: Optional[str] = Header(None)):
    try:
        message = _state.get_store().add_message(session_id, _user(x_user_id), body.role, body.content)
    except ValueError as e:
        return JSONResponse({"detail": str(e)}, status_code=422)
    return {"message_id": message.id}


@router.patch("/api/sessions/{session_id}")
async def update_session(session_id: str, body: UpdateSessionBody, x_user_id: Optional[str] = Header(None)):
    _state.get_store().update_title(session_id, _user(x_user_id), body.title)
    return {"success": True}


@router.delete("/api/sessions/{session_id}")
async def delete_session(session_id: str, x_user_id: Optional[str] = Header(None)):
    _state.get_store().delete_session(session_id, _user(x_user_id))
    return {"success": True}
