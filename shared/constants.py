"""
Shared constants for the kart checkpoint tracker and race authority.
"""
from enum import Enum


class Defaults(Enum):
    """Default connection and storage settings."""
    AUTHORITY_URL = "ws://localhost:3000/ws"
    AUTHORITY_HOST = "0.0.0.0"
    AUTHORITY_PORT = 3000
    CONNECT_TIMEOUT = 10.0  # Seconds - opening handshake only
    CONFIG_DIR = "config/icekart"
    PROTOCOL_VERSION = 1


class Timing(Enum):
    """Tracker timing rules."""
    CHECKPOINT_COOLDOWN_MS = 500  # Minimum gap between accepted crossings per racer


class RaceRules(Enum):
    """Authority race rules."""
    CHECKPOINTS_PER_LAP = 10
    TOTAL_LAPS = 3


GLOBAL_REGION_FILE = "waypoints_global.json"
REGION_FILE_TEMPLATE = "waypoints_{world}.json"
