"""
Task Chat task backend server.
FastAPI + WebSocket bridge from chat clients to the language model.

Run:  taskchat-server [--port 8000] [--host 127.0.0.1]
"""

import logging

from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI

from sessions import AccessDenied
from web import api_sessions, api_tasks, chat

logger = logging.getLogger(__name__)

# ============================================================
# FastAPI application
# ============================================================

app = FastAPI(title="Task Chat")

app.add_exception_handler(AccessDenied, api_sessions.access_denied_handler)

# ============================================================
# Include routers from submodules
# ============================================================

app.include_router(chat.router)
app.include_router(api_tasks.router)
app.include_router(api_sessions.router)
