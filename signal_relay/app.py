# app.py
import asyncio
import logging
import os

from signal_relay.config import RelayConfig
from signal_relay.relay import SignalingRelay
from signal_relay.services.logging_utils import setup_logging

logger = logging.getLogger(__name__)


def main():
    """
    Entry point for starting the signaling relay.

    Configures logging, reads RELAY_* settings from the environment (or a
    .env file) and runs the relay until interrupted.

    Returns:
        None
    """
    setup_logging(logs_dir=os.getenv("LOG_DIR", "logs"))
    config = RelayConfig.from_env()
    logger.info("Starting signaling relay...")
    try:
        asyncio.run(SignalingRelay(config).serve_forever())
    except KeyboardInterrupt:
        logger.info("Signaling relay interrupted, shutting down")


if __name__ == "__main__":
    main()
