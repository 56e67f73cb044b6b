"""
Error taxonomy for the signaling relay.

``MalformedMessage`` is transport-fatal: the offending connection is closed.
Everything else is operation-local: logged, swallowed, connection kept open.
"""


class RelayError(Exception):
    """Base class for every failure raised while handling a signaling message."""

    code = "RELAY_ERROR"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class MalformedMessage(RelayError):
    """The frame is not a JSON object carrying ``type`` and ``payload``."""

    code = "MALFORMED_MESSAGE"


class ValidationError(RelayError):
    """A required payload field is missing or has the wrong shape."""

    code = "MISSING_FIELDS"

    def __init__(self, field: str, message: str = None):
        super().__init__(message or f"{field} property not found on message payload")
        self.field = field


class NotFound(RelayError):
    """A channel, peer or pending offer the operation depends on does not exist."""

    code = "NOT_FOUND"


class NotAMember(NotFound):
    """A peer named by the operation is not a member of the stated channel."""

    code = "NOT_A_MEMBER"

    def __init__(self, peer_id: str, channel: str):
        super().__init__(f"Peer {peer_id} not in channel {channel}")
        self.peer_id = peer_id
        self.channel = channel
