from signal_relay.config import RelayConfig
from signal_relay.errors import MalformedMessage, NotAMember, NotFound, RelayError, ValidationError
from signal_relay.relay import SignalingRelay

__all__ = [
    "SignalingRelay",
    "RelayConfig",
    "RelayError",
    "MalformedMessage",
    "ValidationError",
    "NotFound",
    "NotAMember",
]
