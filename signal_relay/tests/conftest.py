import asyncio
import json
import os
import sys

import pytest

# ──────────────────────────────────────────────────────────────────────────────
# Make sure the project root (two levels above tests/) is on sys.path so that
# `import signal_relay` works without an editable install.
# ──────────────────────────────────────────────────────────────────────────────
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

# fmt: off
from signal_relay.relay import SignalingRelay
from signal_relay.services.state import Peer
# fmt: on

_CLOSED = object()


class FakeWebSocket:
    """In-memory stand-in for a websockets connection."""

    def __init__(self, remote_address=("127.0.0.1", 50000)):
        self.remote_address = remote_address
        self.sent = []
        self.close_code = None
        self.close_reason = None
        self._inbox = asyncio.Queue()

    async def send(self, frame):
        self.sent.append(frame)

    async def close(self, code=1000, reason=""):
        if self.close_code is None:
            self.close_code = code
            self.close_reason = reason
            self._inbox.put_nowait(_CLOSED)

    @property
    def closed(self):
        return self.close_code is not None

    def feed(self, message):
        """Queue an inbound frame; dicts are JSON-encoded."""
        if isinstance(message, dict):
            message = json.dumps(message)
        self._inbox.put_nowait(message)

    def hang_up(self):
        self._inbox.put_nowait(_CLOSED)

    def messages(self):
        return [json.loads(frame) for frame in self.sent]

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


async def settle(relay, rounds=5):
    """Let queued frames be processed and scheduled writes be delivered."""
    for _ in range(rounds):
        await asyncio.sleep(0)
    await relay.outbox.flush()


async def attach(relay, ws=None):
    """Run the relay's connection handler on a fake socket and return (ws, peer_id, task)."""
    ws = ws or FakeWebSocket()
    task = asyncio.ensure_future(relay.handle_connection(ws))
    await settle(relay)
    peer_id = next(pid for pid in relay.peers() if relay.state.peers.get(pid).websocket is ws)
    return ws, peer_id, task


def make_peer(relay, peer_id, ws=None):
    """Insert a peer with a known id straight into the registry."""
    peer = Peer(peer_id, ws or FakeWebSocket())
    return relay.state.peers.add(peer)


@pytest.fixture
def relay():
    return SignalingRelay(port=0)
