"""
Shared data models between the tracker client and the race authority.
"""
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Any, Union
from enum import Enum
import json
import logging

logger = logging.getLogger(__name__)


class RegionKind(Enum):
    """Role of a checkpoint region in the race. Values are the persisted tags."""
    START = "START"
    WAYPOINT = "CHECKPOINT"
    FINISH = "FINISH"

    @classmethod
    def from_string(cls, value: str) -> "RegionKind":
        """Parse a kind tag, case-insensitive. Accepts member names and persisted tags."""
        normalized = value.strip().upper()
        for member in cls:
            if member.value == normalized or member.name == normalized:
                return member
        raise ValueError(f"Unknown region kind: {value}")


class RaceStatus(Enum):
    """Race status as reported by the authority."""
    IDLE = "idle"
    RACING = "racing"
    STOPPED = "stopped"
    FINISHING = "finishing"  # Leader done, others still on their last lap

    @property
    def accepts_checkpoints(self) -> bool:
        """Whether the authority scores checkpoint crossings in this status."""
        return self in (RaceStatus.RACING, RaceStatus.FINISHING)


class RaceAction(Enum):
    """Operator actions relayed to the authority."""
    START = "start"
    STOP = "stop"
    RESET = "reset"


@dataclass(frozen=True)
class BlockPos:
    """Integer cell coordinate, as picked by the operator."""
    x: int
    y: int
    z: int

    def to_dict(self) -> Dict[str, int]:
        return {"x": self.x, "y": self.y, "z": self.z}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BlockPos":
        return cls(int(data["x"]), int(data["y"]), int(data["z"]))

    def short(self) -> str:
        return f"{self.x}, {self.y}, {self.z}"


@dataclass(frozen=True)
class Vec3:
    """Continuous world position."""
    x: float
    y: float
    z: float


@dataclass(frozen=True)
class Box:
    """Axis-aligned box, half-open on every axis: [min, max)."""
    min_x: float
    min_y: float
    min_z: float
    max_x: float
    max_y: float
    max_z: float

    @classmethod
    def enclosing(cls, pos1: BlockPos, pos2: BlockPos) -> "Box":
        """
        Build the box covering both corner cells.

        Corners are normalized per axis and the upper bound is extended by one
        unit so the far corner cell is fully inside.
        """
        return cls(
            min_x=min(pos1.x, pos2.x),
            min_y=min(pos1.y, pos2.y),
            min_z=min(pos1.z, pos2.z),
            max_x=max(pos1.x, pos2.x) + 1,
            max_y=max(pos1.y, pos2.y) + 1,
            max_z=max(pos1.z, pos2.z) + 1,
        )

    def contains(self, point: Vec3) -> bool:
        return (
            self.min_x <= point.x < self.max_x
            and self.min_y <= point.y < self.max_y
            and self.min_z <= point.z < self.max_z
        )

    @property
    def size(self) -> tuple[float, float, float]:
        return (
            self.max_x - self.min_x,
            self.max_y - self.min_y,
            self.max_z - self.min_z,
        )

    @property
    def center(self) -> Vec3:
        return Vec3(
            (self.min_x + self.max_x) / 2,
            (self.min_y + self.max_y) / 2,
            (self.min_z + self.max_z) / 2,
        )


@dataclass(frozen=True)
class Region:
    """A named checkpoint volume with a position in the race order."""
    id: str
    kind: RegionKind
    pos1: BlockPos
    pos2: BlockPos
    ordinal: int
    volume: Box = field(init=False, compare=False, repr=False)

    def __post_init__(self):
        # Frozen dataclass: derived field has to bypass __setattr__
        object.__setattr__(self, "volume", Box.enclosing(self.pos1, self.pos2))

    def contains(self, point: Vec3) -> bool:
        return self.volume.contains(point)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the persisted waypoint document entry."""
        return {
            "id": self.id,
            "type": self.kind.value,
            "order": self.ordinal,
            "pos1": self.pos1.to_dict(),
            "pos2": self.pos2.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Region":
        """Create Region from a persisted waypoint document entry."""
        return cls(
            id=str(data["id"]),
            kind=RegionKind.from_string(data["type"]),
            pos1=BlockPos.from_dict(data["pos1"]),
            pos2=BlockPos.from_dict(data["pos2"]),
            ordinal=int(data["order"]),
        )


@dataclass(frozen=True)
class RacerRecord:
    """Racer identity as announced by the authority."""
    id: str
    name: str


# Message types for WebSocket communication
class MessageType(Enum):
    """WebSocket message types."""
    # Tracker -> Authority
    ACTION = "action"
    CHECKPOINT = "checkpoint"
    LAP = "lap"
    DISQUALIFY = "disqualify"
    REGISTER = "register"
    REMOVE = "remove"

    # Authority -> Tracker
    INIT = "init"
    UPDATE = "update"
    STATUS = "status"


@dataclass
class OutboundMessage:
    """A single command frame sent to the authority."""
    type: MessageType
    fields: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, **self.fields}

    def to_json(self) -> str:
        """Serialize as a compact single-line JSON frame."""
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def action(cls, action: RaceAction) -> "OutboundMessage":
        return cls(MessageType.ACTION, {"payload": action.value})

    @classmethod
    def checkpoint(cls, racer_id: str) -> "OutboundMessage":
        return cls(MessageType.CHECKPOINT, {"racerId": racer_id})

    @classmethod
    def lap(cls, racer_id: str) -> "OutboundMessage":
        return cls(MessageType.LAP, {"racerId": racer_id})

    @classmethod
    def disqualify(cls, racer_id: str) -> "OutboundMessage":
        return cls(MessageType.DISQUALIFY, {"racerId": racer_id})

    @classmethod
    def register(cls, name: str) -> "OutboundMessage":
        return cls(MessageType.REGISTER, {"name": name})

    @classmethod
    def remove(cls, name: str) -> "OutboundMessage":
        return cls(MessageType.REMOVE, {"name": name})


@dataclass
class InitMessage:
    """Full race snapshot."""
    status: Optional[RaceStatus]
    racers: List[RacerRecord]


@dataclass
class UpdateMessage:
    """Incremental race update. Status is optional."""
    status: Optional[RaceStatus]
    racers: List[RacerRecord]


@dataclass
class StatusMessage:
    """Bare race status change."""
    status: RaceStatus


@dataclass
class UnknownMessage:
    """Any frame whose type the tracker does not handle."""
    type: str


InboundMessage = Union[InitMessage, UpdateMessage, StatusMessage, UnknownMessage]


def _parse_status(value: Any) -> RaceStatus:
    if not isinstance(value, str):
        raise ValueError(f"status must be a string, got {value!r}")
    return RaceStatus(value.lower())


def _parse_optional_status(value: Any) -> Optional[RaceStatus]:
    """Status of an init/update frame. Unknown values keep the cached status."""
    if value is None:
        return None
    try:
        return _parse_status(value)
    except ValueError:
        logger.debug(f"[MODELS] Unknown race status {value!r}, keeping cached status")
        return None


def _parse_racers(value: Any) -> List[RacerRecord]:
    """Pick {id, name} pairs out of a racers array, skipping incomplete entries."""
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError("racers must be an array")

    racers = []
    for entry in value:
        if not isinstance(entry, dict):
            continue
        racer_id = entry.get("id")
        name = entry.get("name")
        if racer_id is None or name is None:
            continue
        racers.append(RacerRecord(id=str(racer_id), name=str(name)))
    return racers


def parse_inbound(text: str) -> InboundMessage:
    """
    Parse one complete inbound frame.

    Args:
        text: Assembled JSON text of the frame.

    Returns:
        The matching message variant.

    Raises:
        ValueError: If the frame is not valid JSON, its racers are not an array,
            or a status frame carries an unknown status.
    """
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("frame must be a JSON object")

    msg_type = data.get("type")
    if msg_type == MessageType.INIT.value:
        return InitMessage(
            status=_parse_optional_status(data.get("status")),
            racers=_parse_racers(data.get("racers")),
        )
    if msg_type == MessageType.UPDATE.value:
        return UpdateMessage(
            status=_parse_optional_status(data.get("status")),
            racers=_parse_racers(data.get("racers")),
        )
    if msg_type == MessageType.STATUS.value:
        return StatusMessage(status=_parse_status(data.get("status")))

    return UnknownMessage(type=str(msg_type) if msg_type is not None else "unknown")
