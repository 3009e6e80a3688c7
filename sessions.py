"""
Session persistence for Task Chat.
Stores chat sessions and their messages as JSON files, one file per session,
scoped to the identity of the caller.
"""

import json
import logging
import os
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional

from config import app_config

logger = logging.getLogger(__name__)

SESSION_VERSION = 1

DEFAULT_TITLE = "New Chat"

ROLES = ("user", "assistant", "system")


class AccessDenied(PermissionError):
    """The caller has no identity, or does not own the session."""
    pass


@dataclass
class ChatMessage:
    """A single message in a session."""
    id: int = 0
    session_id: str = ""
    role: str = "user"
    content: str = ""
    created_at: str = ""
    # Client-side delivery status of outgoing messages: sent | failed
    status: str = "sent"


@dataclass
class ChatSession:
    """A persisted chat session."""
    session_id: str = ""
    version: int = SESSION_VERSION
    user_id: str = ""
    title: str = DEFAULT_TITLE
    created_at: str = ""
    updated_at: str = ""
    messages: List[ChatMessage] = field(default_factory=list)

    @property
    def message_count(self) -> int:
        return len(self.messages)

    def summary(self) -> Dict[str, Any]:
        """Session fields without the message list."""
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "title": self.title,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "message_count": self.message_count,
        }


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def auto_title(first_message: str) -> str:
    """Generate a session title from the first user message."""
    words = first_message.strip().split()[:6]
    title = " ".join(words)
    if len(first_message.strip().split()) > 6:
        title += "..."
    return title or DEFAULT_TITLE


class SessionStore:
    """
    Manages session files on disk.

    File layout:  {base_dir}/{session_id}.json
    """

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = base_dir or app_config.sessions_dir
        os.makedirs(self.base_dir, exist_ok=True)

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def create_session(self, user_id: str, title: str = DEFAULT_TITLE) -> ChatSession:
        """Create and save a new empty session owned by ``user_id``."""
        self._check_identity(user_id)
        now = _now_iso()
        session = ChatSession(
            session_id=uuid.uuid4().hex[:12],
            user_id=user_id,
            title=title.strip() or DEFAULT_TITLE,
            created_at=now,
            updated_at=now,
        )
        self._save(session)
        return session

    def list_sessions(self, user_id: str) -> List[ChatSession]:
        """List all sessions of a user, most recently updated first."""
        self._check_identity(user_id)
        sessions: List[ChatSession] = []
        for fname in os.listdir(self.base_dir):
            if not fname.endswith(".json"):
                continue
            sess = self._read_file(os.path.join(self.base_dir, fname))
            if sess and sess.user_id == user_id:
                sessions.append(sess)
        sessions.sort(key=lambda s: s.updated_at or "", reverse=True)
        return sessions

    def get_session(self, session_id: str, user_id: str) -> Optional[ChatSession]:
        """Load a session if it exists and belongs to ``user_id``."""
        self._check_identity(user_id)
        path = self._path_for(session_id)
        if not os.path.exists(path):
            return None
        sess = self._read_file(path)
        if sess is None or sess.user_id != user_id:
            return None
        return sess

    def get_messages(self, session_id: str, user_id: str) -> List[ChatMessage]:
        """Messages of a session, oldest first."""
        return list(self._require(session_id, user_id).messages)

    def add_message(self, session_id: str, user_id: str, role: str, content: str) -> ChatMessage:
        """Append a message and bump the session's ``updated_at``."""
        if role not in ROLES:
            raise ValueError(f"Unknown message role: {role!r}")
        session = self._require(session_id, user_id)
        now = _now_iso()
        next_id = session.messages[-1].id + 1 if session.messages else 1
        message = ChatMessage(
            id=next_id,
            session_id=session_id,
            role=role,
            content=content,
            created_at=now,
        )
        session.messages.append(message)
        session.updated_at = now
        self._save(session)
        return message

    def update_title(self, session_id: str, user_id: str, title: str) -> ChatSession:
        session = self._require(session_id, user_id)
        session.title = title.strip() or DEFAULT_TITLE
        session.updated_at = _now_iso()
        self._save(session)
        return session

    def delete_session(self, session_id: str, user_id: str) -> None:
        """Delete a session together with its messages."""
        self._require(session_id, user_id)
        os.remove(self._path_for(session_id))
        logger.info(f"Session deleted: {session_id}")

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _check_identity(self, user_id: str) -> None:
        if not user_id:
            raise AccessDenied("Authentication required")

    def _require(self, session_id: str, user_id: str) -> ChatSession:
        session = self.get_session(session_id, user_id)
        if session is None:
            raise AccessDenied("Session not found or access denied")
        return session

    def _path_for(self, session_id: str) -> str:
        # Ids come from callers; keep them inside base_dir.
        safe = os.path.basename(str(session_id))
        return os.path.join(self.base_dir, f"{safe}.json")

    def _save(self, session: ChatSession) -> str:
        path = self._path_for(session.session_id)
        data = asdict(session)
        for msg in data["messages"]:
            msg.pop("status", None)

        tmp_path = path + ".tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, path)
            logger.debug(f"Session saved: {path}")
        except Exception:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        return path

    def _read_file(self, path: str) -> Optional[ChatSession]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            session_id = data.get("session_id", "")
            return ChatSession(
                session_id=session_id,
                version=data.get("version", 1),
                user_id=data.get("user_id", ""),
                title=data.get("title", DEFAULT_TITLE),
                created_at=data.get("created_at", ""),
                updated_at=data.get("updated_at", ""),
                messages=[
                    ChatMessage(
                        id=m.get("id", 0),
                        session_id=session_id,
                        role=m.get("role", "user"),
                        content=m.get("content", ""),
                        created_at=m.get("created_at", ""),
                    )
                    for m in data.get("messages", [])
                ],
            )
        except Exception as e:
            logger.warning(f"Failed to read session {path}: {e}")
            return None
