"""
Tracker Package - checkpoint detection and race authority sync
"""
from .regions import SpatialRegionStore
from .identities import IdentityRegistry, canonical_name
from .detector import EntryDetector, ParticipantSnapshot, CheckpointEvent
from .session import ProtocolSession, ConnectionState
from .transport import WebSocketTransport
from .persistence import RegionRepository
from .config import TrackerConfig, get_config
from .coordinator import RaceCoordinator, CommandResult

__all__ = [
    'SpatialRegionStore',
    'IdentityRegistry',
    'canonical_name',
    'EntryDetector',
    'ParticipantSnapshot',
    'CheckpointEvent',
    'ProtocolSession',
    'ConnectionState',
    'WebSocketTransport',
    'RegionRepository',
    'TrackerConfig',
    'get_config',
    'RaceCoordinator',
    'CommandResult'
]
