# services/messaging.py
import asyncio
import logging

from signal_relay.constants import ERROR
from signal_relay.messages import encode

logger = logging.getLogger(__name__)


class Outbox:
    """
    Fire-and-forget writer for relay-originated messages.

    Handlers run under the state lock and must not suspend, so each write is
    scheduled as a task and the caller moves on. Delivery failures are logged
    and never surfaced to the peer that triggered the write.
    """

    def __init__(self) -> None:
        self._pending = set()

    def send(self, websocket, msg_type, payload):
        """
        Schedule ``{"type": msg_type, "payload": payload}`` on ``websocket``.

        Args:
            websocket: Destination connection.
            msg_type (str): Outbound message type.
            payload (dict): Message payload, passed through untouched.

        Returns:
            asyncio.Task: The scheduled write.
        """
        task = asyncio.ensure_future(self._deliver(websocket, encode(msg_type, payload)))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def send_error(self, websocket, request_type, error):
        """
        Report an operation-local failure back to the sender.

        Args:
            websocket: Sender's connection.
            request_type (str): Type of the message that failed.
            error (RelayError): The failure.
        """
        return self.send(websocket, ERROR, {
            "request_type": request_type,
            "error_code": error.code,
            "error_message": error.message,
        })

    def close(self, websocket, code, reason=""):
        """Schedule closing ``websocket`` without waiting for the closing handshake."""
        task = asyncio.ensure_future(self._close(websocket, code, reason))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def flush(self):
        """Wait until every scheduled write has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @staticmethod
    async def _deliver(websocket, frame):
        try:
            await websocket.send(frame)
        except Exception as e:
            logger.warning(f"Failed to deliver message: {e}")

    @staticmethod
    async def _close(websocket, code, reason):
        try:
            await websocket.close(code=code, reason=reason)
        except Exception as e:
            logger.warning(f"Failed to close connection: {e}")
