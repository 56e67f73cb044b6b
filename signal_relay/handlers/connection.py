# handlers/connection.py
import asyncio
import logging
import time

import websockets

from signal_relay.config import RelayConfig
from signal_relay.constants import (
    ANSWER, CANDIDATE, CLOSE_KEEPALIVE_TIMEOUT, CLOSE_MALFORMED,
    JOIN_POOL, KEEP_ALIVE, KILL, OFFER, P2P_TEARDOWN, WELCOME
)
from signal_relay.errors import MalformedMessage, RelayError
from signal_relay.handlers.signaling_handler import SignalingHandler
from signal_relay.messages import parse_envelope, parse_payload
from signal_relay.services.events import EventNotifier
from signal_relay.services.messaging import Outbox
from signal_relay.services.state import Peer, RelayState

# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------
logger = logging.getLogger(__name__)


def build_handlers(signaling_handler: SignalingHandler):
    """Map each inbound message type to the operation that serves it."""
    return {
        JOIN_POOL:  signaling_handler.handle_join_pool,
        OFFER:      signaling_handler.handle_offer,
        ANSWER:     signaling_handler.handle_answer,
        CANDIDATE:  signaling_handler.handle_candidate,
        KEEP_ALIVE: signaling_handler.handle_keep_alive,
        KILL:       signaling_handler.handle_kill,
    }


class ConnectionHandler:
    """
    Manages every WebSocket connection of one relay: registration, heartbeat,
    parse/dispatch loop and cleanup on disconnect.
    """

    def __init__(self, state: RelayState, outbox: Outbox, notifier: EventNotifier,
                 config: RelayConfig = None):
        self.state = state
        self.outbox = outbox
        self.notifier = notifier
        self.config = config or RelayConfig()
        self.handlers = build_handlers(SignalingHandler(state, outbox, notifier))

    def _log_connection_event(self, msg):
        if self.config.verbose:
            logger.info(msg)
        else:
            logger.debug(msg)

    async def handle_connection(self, ws):
        """
        Main entry point for a new WebSocket connection.

        Registers the peer, runs the receive loop until the connection ends,
        then evicts the peer and every piece of state that names it.

        Parameters:
            ws: The WebSocket connection instance.

        Returns:
            None
        """
        async with self.state.lock:
            peer = self.state.peers.register(ws)
        self._log_connection_event(f"Incoming connection from {peer.remote_address} as peer {peer.peer_id}")

        if self.config.announce_identity:
            self.outbox.send(ws, WELCOME, {"id": peer.peer_id})

        hb = None
        if self.config.keepalive_timeout > 0:
            hb = asyncio.create_task(self._heartbeat(peer))

        try:
            async for raw in ws:
                if not await self.handle_message(peer, raw):
                    break
        except websockets.exceptions.ConnectionClosed:
            logger.debug(f"Connection of peer {peer.peer_id} closed abruptly")
        except Exception as e:
            logger.error(f"Connection loop error for peer {peer.peer_id}", exc_info=e)
        finally:
            if hb is not None:
                hb.cancel()
            await self._cleanup(peer)

    async def handle_message(self, peer: Peer, raw) -> bool:
        """
        Parse one inbound frame and dispatch it.

        A frame that is not a signaling envelope closes the connection.
        Failures inside an operation are logged and the connection stays open.

        Parameters:
            peer (Peer): The sending peer.
            raw (str | bytes): The frame as received.

        Returns:
            bool: False if the connection was closed because of this frame.
        """
        self.state.peers.touch(peer.peer_id)
        try:
            envelope = parse_envelope(raw)
        except MalformedMessage as e:
            logger.error(
                f"Signaling message incorrectly formatted ({e.message}), aborted connection "
                f"of peer {peer.peer_id} | Received {raw!r}"
            )
            try:
                await peer.websocket.close(code=CLOSE_MALFORMED, reason="Malformed signaling message")
            except Exception as close_err:
                logger.warning(f"Failed to close connection of peer {peer.peer_id}: {close_err}")
            return False

        await self._dispatch(peer, envelope)
        return True

    async def _dispatch(self, peer: Peer, envelope):
        handler = self.handlers.get(envelope.type) if isinstance(envelope.type, str) else None
        if handler is None:
            logger.debug(f"Ignoring unknown message type {envelope.type!r} from peer {peer.peer_id}")
            return

        try:
            message = parse_payload(envelope.type, envelope.payload)
            async with self.state.lock:
                if peer.peer_id not in self.state.peers:
                    logger.debug(f"Dropping {envelope.type} from evicted peer {peer.peer_id}")
                    return
                handler(peer, message)
        except RelayError as e:
            logger.warning(
                f"{envelope.type} from peer {peer.peer_id} failed: {type(e).__name__}: {e.message} "
                f"| Received {envelope.payload!r}"
            )
            if self.config.report_errors:
                self.outbox.send_error(peer.websocket, envelope.type, e)
        except Exception as e:
            logger.error(
                f"Unexpected error handling {envelope.type} from peer {peer.peer_id} "
                f"| Received {envelope.payload!r}",
                exc_info=e,
            )

    async def _heartbeat(self, peer: Peer):
        """
        Close the connection once the peer has been silent longer than the keep-alive timeout.
        """
        while True:
            await asyncio.sleep(self.config.heartbeat_interval)
            if time.monotonic() - peer.last_seen > self.config.keepalive_timeout:
                logger.warning(f"Keep-alive timeout for peer {peer.peer_id}, closing connection")
                try:
                    await peer.websocket.close(code=CLOSE_KEEPALIVE_TIMEOUT, reason="Keep-alive timeout")
                except Exception as close_err:
                    logger.warning(f"Failed to close connection of peer {peer.peer_id}: {close_err}")
                break

    async def _cleanup(self, peer: Peer):
        """
        Remove the peer and every membership, pending offer and link that names it.
        """
        async with self.state.lock:
            links = self.state.evict(peer.peer_id)
        for _, peer_a, peer_b in links:
            self.notifier.emit(P2P_TEARDOWN, (peer_a, peer_b))
        self._log_connection_event(f"Peer {peer.peer_id} disconnected")
