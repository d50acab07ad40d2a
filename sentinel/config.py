import os
from pathlib import Path

VERSION = "0.1.0"

SENTINEL_DIR = Path(os.environ.get("SENTINEL_HOME", Path.home() / ".sentinel"))
STORE_FILE = SENTINEL_DIR / "store.json"

DEFAULT_PORT = 4210

# Relay the client connects to. Anyone can run one with `sentinel relay`.
RELAY_URL = os.environ.get("SENTINEL_RELAY_URL", f"ws://localhost:{DEFAULT_PORT}")

ACK_TIMEOUT = 10.0            # seconds to wait for the relay's ack after register
RECONNECT_BASE_DELAY = 0.5    # first backoff step after an unexpected disconnect
RECONNECT_MAX_DELAY = 30.0    # backoff ceiling

MAX_FRAME_BYTES = 65536       # 64KB per websocket frame
MAX_PEERS = 500
RATE_LIMIT_PER_SEC = 10
RATE_LIMIT_WINDOW = 1.0

USER_ID_LENGTH = 8

# Key-value store layout, shared by every store implementation
KEY_PUBLIC = "pub"
KEY_SECRET = "sec"
KEY_USER_ID = "userId"
KEY_PEER_ID = "peerId"
KEY_PEER_PUBLIC = "peerPub"
