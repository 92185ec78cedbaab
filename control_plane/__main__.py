"""
Entry point for running the live session control plane.

Usage:
    python -m control_plane

Loads .env_local / .env.local, builds the session controller from the
environment and serves the control API on CONTROL_HOST:CONTROL_PORT.
"""
import os
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

from logging_setup import get_logger, Component, setup_logging


def main() -> None:
    # Local dev convenience; never overrides variables already exported.
    root = Path(__file__).parent.parent
    for name in (".env_local", ".env.local"):
        p = root / name
        if p.exists():
            load_dotenv(p, override=False)

    setup_logging(level=os.getenv("LOG_LEVEL", "INFO"), use_json=True)
    logger = get_logger(Component.CONTROL_PLANE)

    from live_session.config import get_config
    from live_session.factory import build_controller
    from live_session.observers import ConversationLog, EventLogObserver
    from live_session.relay_client import RelayClient

    from . import control_api
    from .server import app

    config = get_config()
    relay = RelayClient(config.relay_url, timeout_seconds=config.relay_timeout_seconds)
    controller = build_controller(config, relay=relay)
    controller.subscribe(EventLogObserver())
    conversation = ConversationLog()
    controller.subscribe(conversation)
    control_api.configure(controller, conversation=conversation, relay=relay)

    logger.info("Starting control plane", host=config.control_host, port=config.control_port)
    uvicorn.run(app, host=config.control_host, port=config.control_port, log_level="info")


if __name__ == "__main__":
    main()
