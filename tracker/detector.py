"""
Entry Detector (Tracker)
Watches registered racers once per simulation step and reports each new
checkpoint region they enter to the race authority.
"""
import threading
import time
from dataclasses import dataclass, replace
from typing import Optional, Dict, Iterable, List, Callable, Set
import logging

from shared.constants import Timing
from shared.models import Region, Vec3
from tracker.identities import IdentityRegistry, canonical_name
from tracker.regions import SpatialRegionStore
from tracker.session import ProtocolSession

logger = logging.getLogger(__name__)


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass(frozen=True)
class ParticipantSnapshot:
    """
    One participant as seen by the host this step.

    position is the carrier (vehicle) position while mounted; on foot it is
    ignored.
    """
    name: str
    position: Optional[Vec3]
    mounted: bool

    @property
    def eligible(self) -> bool:
        return self.mounted and self.position is not None


@dataclass
class TrackingState:
    """Per-racer detection bookkeeping."""
    last_region_id: Optional[str] = None
    last_ordinal: Optional[int] = None
    last_accepted_ms: Optional[float] = None


@dataclass(frozen=True)
class CheckpointEvent:
    """An accepted checkpoint crossing that was sent to the authority."""
    region: Region
    name: str
    racer_id: str
    timestamp_ms: float


class EntryDetector:
    """
    Per-step region entry detection.

    A racer fires when it is mounted and the first region containing its
    carrier differs from the region it was in last step. Accepted crossings
    are rate limited per racer and only sent while connected and the race
    status is RACING.
    """

    def __init__(
        self,
        regions: SpatialRegionStore,
        identities: IdentityRegistry,
        session: ProtocolSession,
        cooldown_ms: float = Timing.CHECKPOINT_COOLDOWN_MS.value,
        clock: Callable[[], float] = monotonic_ms
    ):
        """
        Initialize detector.

        Args:
            regions: Checkpoint regions to test against.
            identities: Registered racers and their authority ids.
            session: Session used to report crossings.
            cooldown_ms: Minimum time between accepted crossings per racer.
            clock: Millisecond clock, injectable for tests.
        """
        self.regions = regions
        self.identities = identities
        self.session = session
        self.cooldown_ms = cooldown_ms
        self.clock = clock

        self._lock = threading.Lock()
        self._states: Dict[str, TrackingState] = {}
        self._listeners: List[Callable[[CheckpointEvent], None]] = []

    def add_listener(self, listener: Callable[[CheckpointEvent], None]):
        """Register a callback for accepted crossings."""
        self._listeners.append(listener)

    def tick(
        self,
        participants: Iterable[ParticipantSnapshot],
        now_ms: Optional[float] = None
    ) -> List[CheckpointEvent]:
        """
        Run one detection step.

        Args:
            participants: Everyone the host can see this step.
            now_ms: Step timestamp, defaults to the detector clock.

        Returns:
            Crossings accepted and sent during this step.
        """
        now = self.clock() if now_ms is None else now_ms
        regions = self.regions.list()
        accepted: List[CheckpointEvent] = []
        seen: Set[str] = set()

        for participant in participants:
            key = canonical_name(participant.name)
            if key in seen:
                continue
            seen.add(key)

            if not self.identities.is_registered(key):
                continue

            event = self._check(key, participant, regions, now)
            if event is not None:
                accepted.append(event)

        self._forget_absent(seen)

        for event in accepted:
            self._notify(event)
        return accepted

    def _check(
        self,
        key: str,
        participant: ParticipantSnapshot,
        regions: List[Region],
        now: float
    ) -> Optional[CheckpointEvent]:
        # On foot never triggers and always starts over
        if not participant.eligible:
            with self._lock:
                self._states.pop(key, None)
            return None

        current = None
        for region in regions:
            if region.contains(participant.position):
                current = region
                break
        current_id = current.id if current is not None else None

        with self._lock:
            state = self._states.setdefault(key, TrackingState())
            fired = current_id is not None and current_id != state.last_region_id
            state.last_region_id = current_id

            if not fired:
                return None
            if state.last_accepted_ms is not None and now - state.last_accepted_ms < self.cooldown_ms:
                logger.debug(f"[TRACKER] {participant.name} entered {current_id} during cooldown")
                return None

        return self._accept(key, participant.name, current, now)

    def _accept(self, key: str, name: str, region: Region, now: float) -> Optional[CheckpointEvent]:
        racer_id = self.identities.lookup_id(key)
        if racer_id is None:
            logger.warning(f"[TRACKER] Region {region.id} triggered but no racer ID for: {name}")
            return None

        if not self.session.is_connected():
            logger.debug(f"[TRACKER] Region {region.id} triggered but not connected: {name}")
            return None

        if not self.session.is_racing():
            logger.debug(f"[TRACKER] Region {region.id} triggered but race not running: {name}")
            return None

        with self._lock:
            state = self._states.setdefault(key, TrackingState())
            state.last_accepted_ms = now
            # Order is not validated; skipping regions is allowed
            state.last_ordinal = region.ordinal

        self.session.send_checkpoint(racer_id)
        logger.info(
            f"[TRACKER] Region {region.id} triggered by {name} "
            f"(ID: {racer_id}, type: {region.kind.name}, order: {region.ordinal})"
        )
        return CheckpointEvent(region=region, name=name, racer_id=racer_id, timestamp_ms=now)

    def _forget_absent(self, seen: Set[str]):
        """Racers that left the world are no longer inside any region."""
        with self._lock:
            for key, state in self._states.items():
                if key not in seen:
                    state.last_region_id = None

    def _notify(self, event: CheckpointEvent):
        for listener in self._listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"[TRACKER] Checkpoint listener failed: {e}")

    def tracking_state(self, name: str) -> Optional[TrackingState]:
        """Copy of a racer's tracking state, None if it has none."""
        with self._lock:
            state = self._states.get(canonical_name(name))
            return replace(state) if state is not None else None

    def reset_all(self):
        """Forget tracking for every racer (race reset)."""
        with self._lock:
            self._states.clear()
        logger.info("[TRACKER] Tracking reset")

    def reset_one(self, name: str):
        """Forget tracking for a single racer (racer removed)."""
        with self._lock:
            self._states.pop(canonical_name(name), None)
