"""
Chat client: UI actions, session persistence and the live task connection.

UI actions (create/select/delete/rename a session, send a message) call the
session store synchronously and update ChatState. Inbound event frames go
through the ProtocolHandler, which emits intents that are applied here;
appended messages are persisted before they reach the state.
"""

import logging
from typing import Any, Callable, List, Optional

from config import app_config, websocket_url
from sessions import DEFAULT_TITLE, ChatMessage, ChatSession, SessionStore, auto_title
from protocol import new_task_id

from client.connection import ConnectionManager, NotConnected
from client.protocol import AppendMessage, Intent, ProtocolHandler, SetProcessing
from client.state import ChatState

logger = logging.getLogger(__name__)

Listener = Callable[[ChatState], Any]


class NoActiveSession(RuntimeError):
    """A message was sent while no session is selected."""
    pass


class ChatClient:
    def __init__(
        self,
        store: SessionStore,
        user_id: Optional[str] = None,
        url: Optional[str] = None,
        connection: Optional[ConnectionManager] = None,
        **connection_kwargs: Any,
    ):
        self.store = store
        self.user_id = app_config.user_id if user_id is None else user_id
        self.state = ChatState()
        self._listeners: List[Listener] = []
        self.protocol = ProtocolHandler(self.apply, lambda: self.state.active_session_id)
        if connection is None:
            connection = ConnectionManager(
                url or websocket_url(app_config.backend_url, app_config.ws_path),
                on_frame=self.protocol.feed,
                on_status=self._on_status,
                **connection_kwargs,
            )
        else:
            connection.on_frame = self.protocol.feed
            connection.on_status = self._on_status
        self.connection = connection

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(state)`` after every change. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self.state)

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.connection.start()

    def reconnect(self) -> None:
        self.connection.reconnect()

    async def stop(self) -> None:
        await self.connection.stop()

    def _on_status(self, connected: bool) -> None:
        self.state.connected = connected
        if not connected:
            logger.info("Backend disconnected")
            self.protocol.clear()
        self._notify()

    # ------------------------------------------------------------------
    # Intents from the protocol handler
    # ------------------------------------------------------------------

    def apply(self, intent: Intent) -> None:
        if isinstance(intent, SetProcessing):
            self.state.processing = intent.value
        elif isinstance(intent, AppendMessage):
            message = self.store.add_message(
                intent.session_id, self.user_id, intent.role, intent.content
            )
            self.state.append_message(message)
        self._notify()

    # ------------------------------------------------------------------
    # UI actions
    # ------------------------------------------------------------------

    def refresh_sessions(self) -> List[ChatSession]:
        sessions = self.store.list_sessions(self.user_id)
        self.state.set_sessions(sessions)
        self._notify()
        return sessions

    def create_session(self, title: str = DEFAULT_TITLE) -> ChatSession:
        session = self.store.create_session(self.user_id, title)
        self.state.upsert_session(session)
        self.state.activate(session.session_id, [])
        self._notify()
        return session

    def select_session(self, session_id: str) -> None:
        messages = self.store.get_messages(session_id, self.user_id)
        session = self.store.get_session(session_id, self.user_id)
        if session is not None:
            self.state.upsert_session(session)
        self.state.activate(session_id, messages)
        self._notify()

    def delete_session(self, session_id: str) -> None:
        self.store.delete_session(session_id, self.user_id)
        self.state.remove_session(session_id)
        self._notify()

    def rename_session(self, session_id: str, title: str) -> ChatSession:
        session = self.store.update_title(session_id, self.user_id, title)
        self.state.upsert_session(session)
        self._notify()
        return session

    async def send_message(self, content: str, task_id: Optional[str] = None) -> ChatMessage:
        """Persist a user message and submit it as a task.

        Returns the stored message. If the connection is not open the message
        stays in the session but is marked ``failed``.
        """
        session_id = self.state.active_session_id
        if session_id is None:
            raise NoActiveSession("Select or create a session first")

        message = self.store.add_message(session_id, self.user_id, "user", content)
        self.state.append_message(message)
        session = self.state.active_session
        if session is not None and session.title == DEFAULT_TITLE and message.id == 1:
            self.state.upsert_session(
                self.store.update_title(session_id, self.user_id, auto_title(content))
            )
        self._notify()

        task_id = task_id or new_task_id()
        self.protocol.track(task_id, session_id)
        try:
            await self.connection.send(self.protocol.encode(content, task_id))
        except NotConnected as e:
            logger.warning(f"Failed to send message: {e}")
            self.protocol.forget(task_id)
            failed = self.state.mark_failed(message.id)
            self._notify()
            return failed or message
        return message
