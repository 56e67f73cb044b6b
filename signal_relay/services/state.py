# services/state.py
import asyncio
import time
import uuid
from typing import Dict, Iterator, List, Optional, Set, Tuple

from signal_relay.errors import NotFound

# ----------------------------------------------------------------------------
# Relay state: peers, channels, pending offers and established links
# ----------------------------------------------------------------------------

#: (channel id, offering peer id, target peer id)
OfferKey = Tuple[str, str, str]
#: (channel id, peer id, peer id)
LinkKey = Tuple[str, str, str]


class Peer:
    """
    A live connection and the identity the relay assigned to it.

    Attributes:
        peer_id (str): Identity generated at connect time, never the network address.
        websocket: The transport connection owned by this peer.
        remote_address: Address reported by the transport, kept for logging only.
        last_seen (float): Monotonic timestamp of the last inbound frame.
    """
    __slots__ = ("peer_id", "websocket", "remote_address", "last_seen")

    def __init__(self, peer_id: str, websocket, remote_address=None) -> None:
        self.peer_id = peer_id
        self.websocket = websocket
        self.remote_address = remote_address
        self.last_seen = time.monotonic()

    def __repr__(self) -> str:
        return f"Peer({self.peer_id!r}, remote_address={self.remote_address!r})"


class PeerRegistry:
    """Maps peer identities to their live connections."""

    def __init__(self) -> None:
        self._peers: Dict[str, Peer] = {}

    def register(self, websocket) -> Peer:
        """
        Create a peer for a freshly opened connection.

        Args:
            websocket: The transport connection.

        Returns:
            Peer: The new peer, keyed by a random hex identity.
        """
        peer_id = uuid.uuid4().hex
        peer = Peer(peer_id, websocket, getattr(websocket, "remote_address", None))
        return self.add(peer)

    def add(self, peer: Peer) -> Peer:
        self._peers[peer.peer_id] = peer
        return peer

    def get(self, peer_id: str) -> Optional[Peer]:
        return self._peers.get(peer_id)

    def require(self, peer_id: str) -> Peer:
        peer = self._peers.get(peer_id)
        if peer is None:
            raise NotFound(f"Peer {peer_id} is not connected")
        return peer

    def touch(self, peer_id: str) -> None:
        peer = self._peers.get(peer_id)
        if peer is not None:
            peer.last_seen = time.monotonic()

    def remove(self, peer_id: str) -> Optional[Peer]:
        return self._peers.pop(peer_id, None)

    def ids(self) -> List[str]:
        return list(self._peers)

    def __contains__(self, peer_id) -> bool:
        return peer_id in self._peers

    def __len__(self) -> int:
        return len(self._peers)


class ChannelRegistry:
    """
    Maps channel ids to their members in join order.

    A peer appears at most once per channel. Channels are created on first
    join and dropped once the last member leaves.
    """

    def __init__(self) -> None:
        self._channels: Dict[str, List[str]] = {}

    def join(self, channel: str, peer_id: str) -> bool:
        """
        Add ``peer_id`` to ``channel``, creating the channel if needed.

        Returns:
            bool: True if the peer was added, False if it was already a member.
        """
        members = self._channels.setdefault(channel, [])
        if peer_id in members:
            return False
        members.append(peer_id)
        return True

    def get(self, channel: str) -> Optional[List[str]]:
        return self._channels.get(channel)

    def require(self, channel: str) -> List[str]:
        members = self._channels.get(channel)
        if members is None:
            raise NotFound(f"Channel {channel} doesn't exist")
        return members

    def is_member(self, channel: str, peer_id: str) -> bool:
        return peer_id in self._channels.get(channel, ())

    def members(self, channel: str) -> List[str]:
        return list(self._channels.get(channel, ()))

    def ids(self) -> List[str]:
        return list(self._channels)

    def leave(self, channel: str, peer_id: str) -> bool:
        members = self._channels.get(channel)
        if not members or peer_id not in members:
            return False
        members.remove(peer_id)
        if not members:
            del self._channels[channel]
        return True

    def leave_all(self, peer_id: str) -> List[str]:
        """
        Remove ``peer_id`` from every channel.

        Returns:
            List[str]: Ids of the channels the peer was removed from.
        """
        left = [channel for channel, members in self._channels.items() if peer_id in members]
        for channel in left:
            self.leave(channel, peer_id)
        return left

    def __contains__(self, channel) -> bool:
        return channel in self._channels


class PendingOfferStore:
    """Offers relayed but not yet answered, one marker per (channel, offerer, target)."""

    def __init__(self) -> None:
        self._offers: Set[OfferKey] = set()

    def arm(self, channel: str, offerer: str, target: str) -> None:
        self._offers.add((channel, offerer, target))

    def consume(self, channel: str, offerer: str, target: str) -> bool:
        key = (channel, offerer, target)
        if key not in self._offers:
            return False
        self._offers.remove(key)
        return True

    def discard_peer(self, peer_id: str, channel: str = None) -> int:
        """Drop every pending offer naming ``peer_id`` (optionally within one channel)."""
        stale = {
            key for key in self._offers
            if peer_id in key[1:] and (channel is None or key[0] == channel)
        }
        self._offers -= stale
        return len(stale)

    def __contains__(self, key) -> bool:
        return key in self._offers

    def __iter__(self) -> Iterator[OfferKey]:
        return iter(sorted(self._offers))

    def __len__(self) -> int:
        return len(self._offers)


class ConnectionLedger:
    """Directed records of peer pairs that completed signaling; always stored in both directions."""

    def __init__(self) -> None:
        self._links: Set[LinkKey] = set()

    def record(self, channel: str, peer_a: str, peer_b: str) -> None:
        self._links.add((channel, peer_a, peer_b))
        self._links.add((channel, peer_b, peer_a))

    def pairs(self) -> List[LinkKey]:
        return sorted(self._links)

    def remove_peer(self, peer_id: str, channel: str = None) -> List[LinkKey]:
        """
        Remove every record naming ``peer_id``.

        Args:
            peer_id (str): Peer whose links are torn down.
            channel (str, optional): Restrict removal to one channel.

        Returns:
            List[LinkKey]: Each removed pair once, as (channel, peer_id, other).
        """
        removed = []
        for link in sorted(self._links):
            link_channel, peer_a, peer_b = link
            if channel is not None and link_channel != channel:
                continue
            if peer_a == peer_id:
                removed.append(link)
                self._links.discard(link)
                self._links.discard((link_channel, peer_b, peer_a))
        return removed

    def __contains__(self, key) -> bool:
        return key in self._links

    def __len__(self) -> int:
        return len(self._links)


class RelayState:
    """
    All mutable state of one relay instance, guarded by a single lock.

    The four registries are coupled (a departure touches all of them), so one
    asyncio.Lock serializes every routed operation and every eviction.
    """

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.peers = PeerRegistry()
        self.channels = ChannelRegistry()
        self.pending_offers = PendingOfferStore()
        self.connections = ConnectionLedger()

    def leave_channel(self, peer_id: str, channel: str) -> List[LinkKey]:
        """Remove a peer from one channel with its pending offers and links there."""
        self.channels.leave(channel, peer_id)
        self.pending_offers.discard_peer(peer_id, channel)
        return self.connections.remove_peer(peer_id, channel)

    def evict(self, peer_id: str) -> List[LinkKey]:
        """
        Forget a peer entirely: registry entry, memberships, pending offers and links.

        Returns:
            List[LinkKey]: The links that were torn down.
        """
        self.peers.remove(peer_id)
        self.channels.leave_all(peer_id)
        self.pending_offers.discard_peer(peer_id)
        return self.connections.remove_peer(peer_id)
