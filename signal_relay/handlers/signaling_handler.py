# handlers/signaling_handler.py
import logging

from signal_relay.constants import (
    ANSWER, CANDIDATE, CLOSE_NORMAL, OFFER, P2P_TEARDOWN, P2P_UPGRADE
)
from signal_relay.errors import NotAMember, NotFound, ValidationError
from signal_relay.messages import Answer, Candidate, JoinPool, KeepAlive, Kill, Offer
from signal_relay.services.events import EventNotifier
from signal_relay.services.messaging import Outbox
from signal_relay.services.state import Peer, RelayState


logger = logging.getLogger(__name__)


class SignalingHandler:
    """
    Protocol operations of the relay: join, offer, answer, candidate, keep-alive and kill.

    Every method runs to completion without suspending; the caller holds
    ``state.lock``. Outbound writes go through the Outbox and are not awaited.
    Failures raise a RelayError subclass and leave state untouched.
    """

    def __init__(self, state: RelayState, outbox: Outbox, notifier: EventNotifier):
        self.state = state
        self.outbox = outbox
        self.notifier = notifier

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------
    def _require_other_peer(self, sender: Peer, target: str) -> None:
        if target == sender.peer_id:
            raise ValidationError("target", "target must be a peer other than the sender")

    def _require_member(self, channel: str, peer_id: str) -> None:
        if not self.state.channels.is_member(channel, peer_id):
            raise NotAMember(peer_id, channel)

    def _emit_teardown(self, links) -> None:
        for _, peer_a, peer_b in links:
            logger.info(f"P2P link torn down between {peer_a} and {peer_b}")
            self.notifier.emit(P2P_TEARDOWN, (peer_a, peer_b))

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------
    def handle_join_pool(self, sender: Peer, message: JoinPool) -> None:
        """
        Add the sender to a channel. Joining twice is a no-op.

        Args:
            sender (Peer): Peer that sent the message.
            message (JoinPool): Validated payload.
        """
        if self.state.channels.join(message.channel, sender.peer_id):
            logger.info(f"Peer {sender.peer_id} joined channel {message.channel}")
        else:
            logger.debug(f"Peer {sender.peer_id} already in channel {message.channel}")

    def handle_offer(self, sender: Peer, message: Offer) -> None:
        """
        Relay an offer to a peer in the same channel and arm a pending offer for it.

        Args:
            sender (Peer): The offering peer.
            message (Offer): Validated payload; ``offer`` is passed through untouched.

        Raises:
            ValidationError: If the target is the sender itself.
            NotFound: If the channel does not exist or the target is not connected.
            NotAMember: If the target or the sender is not in the channel.
        """
        self._require_other_peer(sender, message.target)
        self.state.channels.require(message.channel)
        self._require_member(message.channel, message.target)
        self._require_member(message.channel, sender.peer_id)
        target = self.state.peers.require(message.target)

        self.state.pending_offers.arm(message.channel, sender.peer_id, message.target)
        self.outbox.send(target.websocket, OFFER, {
            "source": sender.peer_id,
            "offer": message.offer,
        })
        logger.info(f"Offer relayed from {sender.peer_id} to {message.target} in {message.channel}")

    def handle_answer(self, sender: Peer, message: Answer) -> None:
        """
        Relay an answer back to the peer whose offer it answers, and record the link.

        The sender must hold a pending offer from ``message.target`` in the
        channel; that offer is consumed. On success both directions go into the
        connection ledger and ``p2p-upgrade`` fires.

        Args:
            sender (Peer): The answering peer.
            message (Answer): Validated payload; ``answer`` is passed through untouched.

        Raises:
            ValidationError: If the target is the sender itself.
            NotFound: If there is no matching pending offer, the channel does not
                exist, or the target is not connected.
            NotAMember: If the target or the sender is not in the channel.
        """
        self._require_other_peer(sender, message.target)
        offer_key = (message.channel, message.target, sender.peer_id)
        if offer_key not in self.state.pending_offers:
            raise NotFound(f"Offer doesn't exist from {message.target} to {sender.peer_id}")

        self.state.channels.require(message.channel)
        self._require_member(message.channel, message.target)
        self._require_member(message.channel, sender.peer_id)
        target = self.state.peers.require(message.target)

        self.state.pending_offers.consume(*offer_key)
        self.outbox.send(target.websocket, ANSWER, {
            "source": sender.peer_id,
            "answer": message.answer,
        })
        self.state.connections.record(message.channel, sender.peer_id, message.target)
        logger.info(f"Answer relayed from {sender.peer_id} to {message.target}; peers upgraded to P2P")
        self.notifier.emit(P2P_UPGRADE, (sender.peer_id, message.target))

    def handle_candidate(self, sender: Peer, message: Candidate) -> None:
        """
        Forward an ICE candidate to the target verbatim.

        Raises:
            NotFound: If the target is not connected.
        """
        target = self.state.peers.require(message.target)
        self.outbox.send(target.websocket, CANDIDATE, {"candidate": message.candidate})
        logger.debug(f"Candidate relayed from {sender.peer_id} to {message.target}")

    def handle_keep_alive(self, sender: Peer, message: KeepAlive) -> None:
        # last_seen is refreshed for every inbound frame before dispatch
        logger.debug(f"Keep-alive from {sender.peer_id}")

    def handle_kill(self, sender: Peer, message: Kill) -> None:
        """
        Tear down the sender's signaling state.

        With a channel, the sender leaves only that channel. Without one, the
        sender is evicted everywhere and its connection is closed.

        Raises:
            NotFound: If the named channel does not exist.
            NotAMember: If the sender is not in the named channel.
        """
        if message.channel is not None:
            self.state.channels.require(message.channel)
            self._require_member(message.channel, sender.peer_id)
            links = self.state.leave_channel(sender.peer_id, message.channel)
            logger.info(f"Peer {sender.peer_id} left channel {message.channel}")
            self._emit_teardown(links)
            return

        links = self.state.evict(sender.peer_id)
        logger.info(f"Peer {sender.peer_id} killed its session")
        self._emit_teardown(links)
        self.outbox.close(sender.websocket, CLOSE_NORMAL, "Session killed")
