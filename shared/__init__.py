"""
Shared package for the kart checkpoint tracker and race authority.
"""
from .models import (
    RegionKind,
    RaceStatus,
    RaceAction,
    BlockPos,
    Vec3,
    Box,
    Region,
    RacerRecord,
    MessageType,
    OutboundMessage,
    InitMessage,
    UpdateMessage,
    StatusMessage,
    UnknownMessage,
    InboundMessage,
    parse_inbound
)
from .constants import (
    Defaults,
    Timing,
    RaceRules
)

__version__ = "1.0.0"

__all__ = [
    'RegionKind',
    'RaceStatus',
    'RaceAction',
    'BlockPos',
    'Vec3',
    'Box',
    'Region',
    'RacerRecord',
    'MessageType',
    'OutboundMessage',
    'InitMessage',
    'UpdateMessage',
    'StatusMessage',
    'UnknownMessage',
    'InboundMessage',
    'parse_inbound',
    'Defaults',
    'Timing',
    'RaceRules'
]
