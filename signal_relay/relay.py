# relay.py
"""
SignalingRelay: one self-contained rendezvous server.

Each instance owns its state, outbox and notifier, so independent relays can
run side by side in one process (tests do exactly that).

Usage:
    relay = SignalingRelay(port=8765, verbose=True)
    relay.subscribe("p2p-upgrade", lambda pair: print(pair))
    await relay.serve_forever()
"""
import asyncio
import dataclasses
import logging
from typing import Callable, List, Tuple

from websockets import serve

from signal_relay.config import RelayConfig
from signal_relay.handlers.connection import ConnectionHandler
from signal_relay.services.events import EventNotifier
from signal_relay.services.messaging import Outbox
from signal_relay.services.state import RelayState

logger = logging.getLogger(__name__)


class SignalingRelay:
    """
    WebSocket signaling relay for offer/answer/candidate exchange between peers.
    """

    def __init__(self, config: RelayConfig = None, **overrides):
        """
        Args:
            config (RelayConfig, optional): Base settings. Defaults to RelayConfig().
            **overrides: RelayConfig fields to replace, e.g. ``port=0, verbose=True``.

        Raises:
            TypeError: If an override is not a RelayConfig field.
        """
        config = config or RelayConfig()
        unknown = set(overrides) - RelayConfig.field_names()
        if unknown:
            raise TypeError(f"Unknown relay settings: {', '.join(sorted(unknown))}")
        self.config = dataclasses.replace(config, **overrides)

        self.state = RelayState()
        self.outbox = Outbox()
        self.notifier = EventNotifier()
        self.connection_handler = ConnectionHandler(self.state, self.outbox, self.notifier, self.config)
        self._server = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    async def start(self):
        """
        Bind the WebSocket server and start accepting peers.

        Raises:
            RuntimeError: If the relay is already running.
            OSError: If the address cannot be bound.
        """
        if self._server is not None:
            raise RuntimeError("Relay already started")
        self._server = await serve(self.handle_connection, self.config.host, self.config.port)
        logger.info(f"Signaling relay started on ws://{self.config.host}:{self.get_port()}")

    async def stop(self):
        """Close the server, drop every connection and flush pending writes."""
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None
        await self.outbox.flush()
        logger.info("Signaling relay stopped")

    async def serve_forever(self):
        await self.start()
        try:
            await asyncio.Future()  # Run forever
        finally:
            await self.stop()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    async def handle_connection(self, websocket):
        await self.connection_handler.handle_connection(websocket)

    # -------------------------------------------------------------------------
    # Query accessors
    # -------------------------------------------------------------------------
    @property
    def host(self) -> str:
        return self.config.host

    @property
    def port(self) -> int:
        return self.get_port()

    def get_port(self) -> int:
        """
        Returns:
            int: The bound port once started, otherwise the configured port.
        """
        if self._server is not None:
            for sock in self._server.sockets:
                return sock.getsockname()[1]
        return self.config.port

    def channel_members(self, channel: str) -> List[str]:
        """Members of ``channel`` in join order; empty for an unknown channel."""
        return self.state.channels.members(channel)

    def channels(self) -> List[str]:
        return self.state.channels.ids()

    def peers(self) -> List[str]:
        return self.state.peers.ids()

    def pending_offers(self) -> List[Tuple[str, str, str]]:
        return list(self.state.pending_offers)

    def connections(self) -> List[Tuple[str, str, str]]:
        return self.state.connections.pairs()

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------
    def subscribe(self, event: str, listener: Callable) -> None:
        """
        Register ``listener`` for ``event`` ("p2p-upgrade" or "p2p-teardown").

        The listener receives a ``(peer_a, peer_b)`` tuple.

        Raises:
            ValueError: If the event name is unknown.
        """
        self.notifier.subscribe(event, listener)

    def unsubscribe(self, event: str, listener: Callable) -> None:
        self.notifier.unsubscribe(event, listener)
