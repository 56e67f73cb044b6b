# config.py
import os
from dataclasses import dataclass, fields

from dotenv import load_dotenv

from signal_relay.constants import (
    DEFAULT_HOST, DEFAULT_PORT, HEARTBEAT_INTERVAL, KEEPALIVE_TIMEOUT
)

_TRUTHY = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


def _env_number(name: str, default, cast=int):
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return cast(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}") from None


@dataclass(frozen=True)
class RelayConfig:
    """
    Construction-time settings for a SignalingRelay.

    Attributes:
        host (str): Interface to bind.
        port (int): Listen port. 0 lets the OS pick one.
        verbose (bool): Log connection open/close at INFO instead of DEBUG.
        keepalive_timeout (float): Seconds of silence before a peer is evicted. 0 disables.
        heartbeat_interval (float): Seconds between liveness checks.
        report_errors (bool): Send an ``error`` message back on operation-local failures.
        announce_identity (bool): Send a ``welcome`` message carrying the peer id on connect.
    """
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    verbose: bool = False
    keepalive_timeout: float = KEEPALIVE_TIMEOUT
    heartbeat_interval: float = HEARTBEAT_INTERVAL
    report_errors: bool = False
    announce_identity: bool = False

    @classmethod
    def from_env(cls) -> "RelayConfig":
        """
        Build a config from RELAY_* environment variables (a .env file is honoured).

        Returns:
            RelayConfig: Settings with defaults filled in for unset variables.

        Raises:
            ValueError: If a numeric variable cannot be parsed.
        """
        load_dotenv()
        return cls(
            host=os.getenv("RELAY_HOST", DEFAULT_HOST),
            port=_env_number("RELAY_PORT", DEFAULT_PORT),
            verbose=_env_bool("RELAY_VERBOSE", False),
            keepalive_timeout=_env_number("RELAY_KEEPALIVE_TIMEOUT", KEEPALIVE_TIMEOUT, float),
            heartbeat_interval=_env_number("RELAY_HEARTBEAT_INTERVAL", HEARTBEAT_INTERVAL, float),
            report_errors=_env_bool("RELAY_REPORT_ERRORS", False),
            announce_identity=_env_bool("RELAY_ANNOUNCE_IDENTITY", False),
        )

    @classmethod
    def field_names(cls):
        return {f.name for f in fields(cls)}
