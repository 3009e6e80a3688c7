"""
Configuration module for Task Chat.
Handles environment variables for the model backend, the chat client and the
reconnection policy.
"""

import os
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit, urlunsplit
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


@dataclass
class AWSConfig:
    """AWS-specific configuration"""
    region: str = os.getenv("AWS_REGION", "us-east-1")
    access_key_id: str = os.getenv("AWS_ACCESS_KEY_ID", "")
    secret_access_key: str = os.getenv("AWS_SECRET_ACCESS_KEY", "")
    session_token: str = os.getenv("AWS_SESSION_TOKEN", "")
    profile_name: str = os.getenv("AWS_PROFILE", "")

    def has_explicit_credentials(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)

    def has_session_token(self) -> bool:
        return bool(self.session_token)

    def has_profile(self) -> bool:
        return bool(self.profile_name)


@dataclass
class ModelConfig:
    """Model-specific configuration"""
    model_id: str = os.getenv("BEDROCK_MODEL_ID", "us.anthropic.claude-haiku-4-5-20251001-v1:0")
    max_tokens: int = int(os.getenv("MAX_TOKENS", "4096"))
    temperature: Optional[float] = float(os.getenv("TEMPERATURE", "1")) if os.getenv("TEMPERATURE") else None
    system_prompt: str = os.getenv(
        "SYSTEM_PROMPT",
        "You are a helpful assistant. Answer the user's request clearly and concisely.",
    )


@dataclass
class AppConfig:
    """Application-specific configuration"""
    title: str = "Task Chat"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    # Where the chat client finds the task backend
    backend_url: str = os.getenv("CHAT_BACKEND_URL", "http://localhost:8000")
    ws_path: str = os.getenv("CHAT_WS_PATH", "/ws/chat")
    # Identity used to scope session storage on the client side
    user_id: str = os.getenv("CHAT_USER_ID", os.getenv("USER", "local"))
    sessions_dir: str = os.getenv(
        "SESSIONS_DIR", os.path.join(os.path.expanduser("~"), ".taskchat", "sessions")
    )
    # Reconnection policy
    reconnect_max_attempts: int = int(os.getenv("RECONNECT_MAX_ATTEMPTS", "5"))
    reconnect_base_delay_ms: int = int(os.getenv("RECONNECT_BASE_DELAY_MS", "3000"))
    reconnect_max_delay_ms: int = int(os.getenv("RECONNECT_MAX_DELAY_MS", "30000"))


def websocket_url(base_url: str, path: str = "/ws/chat") -> str:
    """Turn an HTTP(S) base URL into the WebSocket URL of the chat channel.

    ``http`` becomes ``ws`` and ``https`` becomes ``wss``; any path already on
    the base URL is kept and ``path`` is appended to it.
    """
    parts = urlsplit(base_url.strip())
    scheme = {"http": "ws", "https": "wss"}.get(parts.scheme.lower(), parts.scheme.lower())
    if scheme not in ("ws", "wss"):
        raise ValueError(f"Unsupported backend URL scheme: {base_url!r}")
    full_path = parts.path.rstrip("/") + "/" + path.lstrip("/")
    return urlunsplit((scheme, parts.netloc, full_path, parts.query, ""))


def get_credentials_info() -> dict:
    """Describe which AWS credential source is in use (no secrets)."""
    if aws_config.has_profile():
        source = f"profile:{aws_config.profile_name}"
    elif aws_config.has_explicit_credentials():
        source = "environment"
    else:
        source = "default-chain"
    return {
        "region": aws_config.region,
        "source": source,
        "session_token": aws_config.has_session_token(),
    }


# Global configuration instances
aws_config = AWSConfig()
model_config = ModelConfig()
app_config = AppConfig()
