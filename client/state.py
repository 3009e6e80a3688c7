"""
Client-side chat state: the session list, the active session, its messages,
the processing flag and the connectivity flag.

Only ChatClient mutates this, always from the event loop thread.
"""

from dataclasses import dataclass, field, replace
from typing import List, Optional

from sessions import ChatMessage, ChatSession


@dataclass
class ChatState:
    sessions: List[ChatSession] = field(default_factory=list)
    active_session_id: Optional[str] = None
    messages: List[ChatMessage] = field(default_factory=list)
    processing: bool = False
    connected: bool = False

    @property
    def active_session(self) -> Optional[ChatSession]:
        if self.active_session_id is None:
            return None
        for sess in self.sessions:
            if sess.session_id == self.active_session_id:
                return sess
        return None

    def set_sessions(self, sessions: List[ChatSession]) -> None:
        self.sessions = list(sessions)

    def activate(self, session_id: Optional[str], messages: List[ChatMessage]) -> None:
        self.active_session_id = session_id
        self.messages = list(messages)

    def upsert_session(self, session: ChatSession) -> None:
        """Insert or replace a session and keep the list newest-first."""
        others = [s for s in self.sessions if s.session_id != session.session_id]
        self.sessions = sorted(others + [session], key=lambda s: s.updated_at or "", reverse=True)

    def remove_session(self, session_id: str) -> None:
        self.sessions = [s for s in self.sessions if s.session_id != session_id]
        if self.active_session_id == session_id:
            self.activate(None, [])

    def append_message(self, message: ChatMessage) -> None:
        """Append to the active session and bump its last-modified time."""
        if message.session_id != self.active_session_id:
            return
        self.messages.append(message)
        session = self.active_session
        if session is not None:
            self.upsert_session(replace(session, updated_at=message.created_at or session.updated_at))

    def mark_failed(self, message_id: int) -> Optional[ChatMessage]:
        for idx, msg in enumerate(self.messages):
            if msg.id == message_id:
                self.messages[idx] = replace(msg, status="failed")
                return self.messages[idx]
        return None
