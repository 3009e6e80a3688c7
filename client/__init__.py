"""
Client package - the chat client core.

- connection: ConnectionManager, one WebSocket with backoff reconnects
- protocol: ProtocolHandler, frames in, state-change intents out
- state: ChatState, the session/message/processing/connectivity tuple
- chat: ChatClient, UI actions over the session store and the connection
"""

from .connection import (
    ConnectionManager,
    ConnectionState,
    MaxRetriesExhausted,
    NotConnected,
    backoff_delay_ms,
)
from .protocol import AppendMessage, Intent, ProtocolHandler, SetProcessing, intents_for
from .state import ChatState
from .chat import ChatClient, NoActiveSession
