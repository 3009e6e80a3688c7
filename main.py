"""
Task Chat - chat with a task backend over a persistent WebSocket.
Terminal UI built with Textual + Rich.
"""

import argparse
import logging
from typing import List, Optional, Tuple

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import VerticalScroll
from textual.widgets import Header, Footer, Input, Static

from rich.text import Text
from rich.markdown import Markdown
from rich.markup import escape as rich_escape

from client import ChatClient, ChatState
from config import app_config, websocket_url
from sessions import AccessDenied, ChatMessage, SessionStore

# Configure logging to file so it doesn't interfere with the TUI
logging.basicConfig(
    filename="taskchat.log",
    level=getattr(logging, app_config.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


ROLE_STYLES = {
    "user": "bold #58a6ff",
    "assistant": "bold #3fb950",
    "system": "#8b949e",
}

HELP_TEXT = """\
/new [title]      start a new session
/sessions         list your sessions
/switch <id>      open a session
/rename <title>   rename the current session
/delete [id]      delete a session (default: current)
/reconnect        reconnect to the backend
/help             show this help"""


# ============================================================
# TUI Application
# ============================================================

class TaskChatApp(App):
    """Task Chat TUI"""

    TITLE = "Task Chat"

    CSS = """
    Screen {
        background: #0d1117;
    }

    #status-bar {
        height: 1;
        padding: 0 2;
        color: #8b949e;
    }

    #output-scroll {
        height: 1fr;
        border: none;
        padding: 1 2;
    }

    #output-scroll > Static {
        width: 100%;
        height: auto;
    }

    #user-input {
        dock: bottom;
        margin: 0 1 1 1;
    }
    """

    BINDINGS = [
        Binding("ctrl+n", "new_session", "New session"),
        Binding("ctrl+r", "reconnect", "Reconnect"),
        Binding("ctrl+q", "quit", "Quit"),
    ]

    def __init__(self, client: ChatClient, **kwargs):
        super().__init__(**kwargs)
        self._client = client
        self._widget_counter = 0
        self._rendered_session: Optional[str] = None
        self._rendered_keys: List[Tuple[int, str]] = []

    def compose(self) -> ComposeResult:
        yield Header()
        yield Static("", id="status-bar")
        yield VerticalScroll(id="output-scroll")
        yield Input(
            placeholder=" ❯ Message  (/help for commands)",
            id="user-input",
        )
        yield Footer()

    # ============================================================
    # Output helpers -- write to the scroll area
    # ============================================================

    def _next_id(self, prefix: str = "out") -> str:
        self._widget_counter += 1
        return f"{prefix}-{self._widget_counter}"

    def _log(self, renderable) -> None:
        """Append a renderable to the output scroll area."""
        scroll = self.query_one("#output-scroll", VerticalScroll)
        scroll.mount(Static(renderable, id=self._next_id()))
        scroll.scroll_end(animate=False)

    def _log_notice(self, text: str, style: str = "#6e7681") -> None:
        self._log(Text(text, style=style))

    def _render_message(self, msg: ChatMessage) -> None:
        label = Text(f"{msg.role}", style=ROLE_STYLES.get(msg.role, ""))
        if msg.status == "failed":
            label.append("  (not sent: backend unavailable)", style="#f85149")
        self._log(label)
        if msg.role == "assistant":
            self._log(Markdown(msg.content))
        else:
            self._log(Text(msg.content))

    # ============================================================
    # State rendering
    # ============================================================

    def _render_state(self, state: ChatState) -> None:
        self._update_status(state)

        keys = [(m.id, m.status) for m in state.messages]
        if state.active_session_id != self._rendered_session or keys[:len(self._rendered_keys)] != self._rendered_keys:
            self.query_one("#output-scroll", VerticalScroll).remove_children()
            self._rendered_keys = []
            self._rendered_session = state.active_session_id

        for msg in state.messages[len(self._rendered_keys):]:
            self._render_message(msg)
        self._rendered_keys = keys

    def _update_status(self, state: ChatState) -> None:
        conn = self._client.connection
        if state.connected:
            link = "[#3fb950]● connected[/#3fb950]"
        elif conn.exhausted:
            link = "[#f85149]○ disconnected, /reconnect to retry[/#f85149]"
        else:
            link = "[#d29922]○ connecting…[/#d29922]"
        session = state.active_session
        title = rich_escape(session.title) if session else "no session"
        busy = "  [#58a6ff]working…[/#58a6ff]" if state.processing else ""
        self.query_one("#status-bar", Static).update(
            Text.from_markup(f"{link}  [#6e7681]{title}[/#6e7681]{busy}")
        )

    # ============================================================
    # Lifecycle
    # ============================================================

    def on_mount(self) -> None:
        self._client.subscribe(self._render_state)
        sessions = self._client.refresh_sessions()
        if sessions:
            self._client.select_session(sessions[0].session_id)
        self._client.start()
        self._render_state(self._client.state)
        self.query_one("#user-input", Input).focus()

    async def on_unmount(self) -> None:
        await self._client.stop()

    # ============================================================
    # Input
    # ============================================================

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        text = event.value.strip()
        event.input.value = ""
        if not text:
            return
        try:
            if text.startswith("/"):
                self._run_command(text)
                return
            if self._client.state.active_session_id is None:
                self._client.create_session()
            await self._client.send_message(text)
        except AccessDenied as e:
            self._log_notice(f"✗ {e}", style="#f85149")

    def _run_command(self, text: str) -> None:
        cmd, _, arg = text.partition(" ")
        arg = arg.strip()
        client = self._client

        if cmd == "/new":
            client.create_session(arg or "New Chat")
        elif cmd == "/sessions":
            for sess in client.refresh_sessions():
                marker = "*" if sess.session_id == client.state.active_session_id else " "
                self._log_notice(f"{marker} {sess.session_id}  {sess.title}  ({sess.message_count} messages)")
        elif cmd == "/switch" and arg:
            client.select_session(arg)
        elif cmd == "/rename" and arg and client.state.active_session_id:
            client.rename_session(client.state.active_session_id, arg)
        elif cmd == "/delete":
            target = arg or client.state.active_session_id
            if target:
                client.delete_session(target)
        elif cmd == "/reconnect":
            client.reconnect()
        elif cmd == "/help":
            self._log_notice(HELP_TEXT)
        else:
            self._log_notice(f"Unknown command: {text}  (/help for commands)")

    def action_new_session(self) -> None:
        self._client.create_session()

    def action_reconnect(self) -> None:
        self._client.reconnect()


def main():
    parser = argparse.ArgumentParser(description="Task Chat - terminal client")
    parser.add_argument(
        "--url",
        default=app_config.backend_url,
        help=f"Backend base URL (default: {app_config.backend_url})",
    )
    parser.add_argument(
        "--user",
        default=app_config.user_id,
        help="Identity used to scope stored sessions",
    )
    parser.add_argument(
        "--sessions-dir",
        default=None,
        help="Session storage directory",
    )
    args = parser.parse_args()

    client = ChatClient(
        SessionStore(args.sessions_dir),
        user_id=args.user,
        url=websocket_url(args.url, app_config.ws_path),
    )
    TaskChatApp(client).run()


if __name__ == "__main__":
    main()
