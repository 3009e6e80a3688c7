"""
CLI entry point for the Task Chat backend server.

Run:  taskchat-server [--port 8000] [--host 127.0.0.1]
"""

import argparse
import logging

from config import app_config
import web.state as _state
from sessions import SessionStore


def main():
    import uvicorn

    parser = argparse.ArgumentParser(description="Task Chat task backend")
    parser.add_argument("--port", type=int, default=8000, help="Server port (default: 8000)")
    parser.add_argument("--host", default="127.0.0.1", help="Server host (default: 127.0.0.1)")
    parser.add_argument("--sessions-dir", default=None, help="Session storage directory")
    args = parser.parse_args()

    _state._store = SessionStore(args.sessions_dir)

    print(f"\n  Task Chat backend")
    print(f"  http://{args.host}:{args.port}")
    print(f"  ws://{args.host}:{args.port}/ws/chat\n")

    # Ensure our app logs are visible; uvicorn's log_level only affects its own loggers
    web_log = logging.getLogger("web")
    web_log.setLevel(getattr(logging, app_config.log_level.upper(), logging.INFO))
    if not web_log.handlers:
        h = logging.StreamHandler()
        h.setLevel(logging.DEBUG)
        h.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [web] %(message)s"))
        web_log.addHandler(h)

    from web import app
    uvicorn.run(app, host=args.host, port=args.port, log_level="warning")


if __name__ == "__main__":
    main()
