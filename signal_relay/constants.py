"""
Relay-wide constants for networking defaults, message types, close codes and heartbeat settings.
"""

# --- Network Defaults ---
#: Host the relay binds to when RELAY_HOST is not set.
DEFAULT_HOST: str = "0.0.0.0"
#: Port the relay listens on when RELAY_PORT is not set.
DEFAULT_PORT: int = 8765

# --- Inbound Message Types ---
JOIN_POOL: str = "join-pool"
OFFER: str = "offer"
ANSWER: str = "answer"
CANDIDATE: str = "candidate"
KEEP_ALIVE: str = "keep-alive"
KILL: str = "kill"

# --- Relay-originated Message Types ---
#: Sent only when RELAY_REPORT_ERRORS is enabled.
ERROR: str = "error"
#: Sent only when RELAY_ANNOUNCE_IDENTITY is enabled.
WELCOME: str = "welcome"

# --- Notification Events ---
#: Fired once an answer has been relayed and both peers are expected to go direct.
P2P_UPGRADE: str = "p2p-upgrade"
#: Fired when a recorded peer link is torn down by kill, disconnect or eviction.
P2P_TEARDOWN: str = "p2p-teardown"

# --- WebSocket Close Codes ---
#: Normal closure, used for an explicit kill.
CLOSE_NORMAL: int = 1000
#: Frame was not a well-formed signaling envelope.
CLOSE_MALFORMED: int = 4400
#: Peer stayed silent for longer than the keep-alive timeout.
CLOSE_KEEPALIVE_TIMEOUT: int = 4408

# --- Heartbeat Configuration ---
#: Interval (in seconds) between liveness checks on a connection.
HEARTBEAT_INTERVAL: int = 10
#: Silence (in seconds) tolerated before eviction. 0 disables eviction.
KEEPALIVE_TIMEOUT: int = 0
