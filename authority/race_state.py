"""
Race State (Authority)
Authoritative race bookkeeping: racers, laps, checkpoints, splits and gaps.
"""
import time
from dataclasses import dataclass, field
from typing import Optional, Dict, List, Any, Callable
import logging

from shared.constants import RaceRules
from shared.models import RaceStatus, RaceAction, MessageType

logger = logging.getLogger(__name__)


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class LapRecord:
    """A completed lap."""
    lap_number: int
    lap_time: int
    splits: List[int]

    def to_dict(self) -> Dict[str, Any]:
        return {"lapNumber": self.lap_number, "lapTime": self.lap_time, "splits": list(self.splits)}


@dataclass
class Racer:
    """A racer and its standing. Times are in milliseconds."""
    id: str
    name: str
    avatar: str = ""
    laps: int = 0
    best_lap: Optional[int] = None
    last_lap_timestamp: int = 0
    total_time: int = 0  # Since race start
    disqualified: bool = False
    checkpoints: int = 0  # Within the current lap
    gap: int = 0  # Behind the best time at this lap/checkpoint position
    finished: bool = False
    history: List[LapRecord] = field(default_factory=list)
    current_lap_splits: List[int] = field(default_factory=list)

    def reset_stats(self):
        self.laps = 0
        self.best_lap = None
        self.last_lap_timestamp = 0
        self.total_time = 0
        self.disqualified = False
        self.checkpoints = 0
        self.gap = 0
        self.finished = False
        self.history = []
        self.current_lap_splits = []

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire representation."""
        return {
            "id": self.id,
            "name": self.name,
            "avatar": self.avatar,
            "laps": self.laps,
            "bestLap": self.best_lap,
            "lastLapTimestamp": self.last_lap_timestamp,
            "totalTime": self.total_time,
            "disqualified": self.disqualified,
            "checkpoints": self.checkpoints,
            "gap": self.gap,
            "finished": self.finished,
            "history": [lap.to_dict() for lap in self.history],
            "currentLapSplits": list(self.current_lap_splits)
        }


class RaceState:
    """
    The authority's view of the race.

    Every mutating method returns True when the state changed and should be
    broadcast. Checkpoints and laps only count while racing or finishing.
    """

    def __init__(
        self,
        checkpoints_per_lap: int = RaceRules.CHECKPOINTS_PER_LAP.value,
        total_laps: int = RaceRules.TOTAL_LAPS.value,
        clock: Callable[[], int] = wall_clock_ms
    ):
        """
        Initialize race state.

        Args:
            checkpoints_per_lap: Checkpoints that complete a lap automatically.
            total_laps: Laps needed to finish the race.
            clock: Millisecond wall clock, injectable for tests.
        """
        self.checkpoints_per_lap = checkpoints_per_lap
        self.total_laps = total_laps
        self.clock = clock

        self.status = RaceStatus.IDLE
        self.racers: List[Racer] = []
        self.start_time: Optional[int] = None
        self.end_time: Optional[int] = None

        # Best total time seen per "laps-checkpoints" position
        self._course_records: Dict[str, int] = {}
        self._last_id = 0

    # --- Lookup ---

    def find_by_id(self, racer_id: str) -> Optional[Racer]:
        for racer in self.racers:
            if racer.id == racer_id:
                return racer
        return None

    def find_by_name(self, name: str) -> Optional[Racer]:
        for racer in self.racers:
            if racer.name == name:
                return racer
        return None

    def _new_id(self) -> str:
        # Time-based like "r1712345678901", bumped to stay unique within a millisecond
        candidate = self.clock()
        if candidate <= self._last_id:
            candidate = self._last_id + 1
        self._last_id = candidate
        return f"r{candidate}"

    @property
    def is_scoring(self) -> bool:
        return self.status.accepts_checkpoints

    # --- Actions ---

    def apply_action(self, action: RaceAction) -> bool:
        logger.info(f"[ACTION] {action.value.upper()}")

        if action is RaceAction.START:
            self.status = RaceStatus.RACING
            self.end_time = None
            if not self.start_time:
                self.start_time = self.clock()
                logger.info(f"[RACE] Started at {self.start_time}")

        elif action is RaceAction.STOP:
            self.status = RaceStatus.STOPPED
            self.end_time = self.clock()
            logger.info("[RACE] Stopped")

        elif action is RaceAction.RESET:
            self.status = RaceStatus.IDLE
            self.start_time = None
            self.end_time = None
            # Racers stay registered, only their stats go
            for racer in self.racers:
                racer.reset_stats()
            self._course_records.clear()
            logger.info(f"[RACE] Reset - stats cleared for {len(self.racers)} racers")

        return True

    def register(self, name: str) -> Optional[Racer]:
        """Add a racer. Returns None for empty or duplicate names."""
        if not name:
            return None
        if self.find_by_name(name) is not None:
            logger.info(f"[RACER] Registration failed: {name} already exists")
            return None

        racer = Racer(id=self._new_id(), name=name)
        self.racers.append(racer)
        logger.info(f"[RACER] Added {racer.name}")
        return racer

    def remove(self, name: str) -> bool:
        racer = self.find_by_name(name)
        if racer is None:
            return False
        self.racers.remove(racer)
        logger.info(f"[RACER] Removed {racer.name}")
        return True

    def disqualify(self, racer_id: str) -> bool:
        """Toggle disqualification."""
        racer = self.find_by_id(racer_id)
        if racer is None:
            return False
        racer.disqualified = not racer.disqualified
        logger.info(f"[DQ] {racer.name} {'DISQUALIFIED' if racer.disqualified else 'RESTORED'}")
        return True

    # --- Scoring ---

    def _update_gap(self, racer: Racer):
        key = f"{racer.laps}-{racer.checkpoints}"
        record = self._course_records.get(key)
        if record is None or racer.total_time < record:
            record = racer.total_time
            self._course_records[key] = record
        racer.gap = racer.total_time - record

    def _elapsed(self, now: int) -> int:
        return now - (self.start_time or now)

    def _arm_lap_timing(self, racer: Racer, now: int):
        """The first start crossing only starts the lap clock."""
        racer.last_lap_timestamp = now
        racer.checkpoints = 0
        racer.current_lap_splits = []
        self._update_gap(racer)
        logger.info(f"[LAP] {racer.name} armed lap timing (ignored warmup trigger)")

    def _scorable(self, racer_id: str) -> Optional[Racer]:
        if not self.is_scoring:
            return None
        racer = self.find_by_id(racer_id)
        if racer is None or racer.disqualified or racer.finished:
            return None
        return racer

    def lap(self, racer_id: str) -> bool:
        """Manual lap completion."""
        racer = self._scorable(racer_id)
        if racer is None:
            return False

        now = self.clock()
        if racer.laps == 0 and racer.last_lap_timestamp == 0:
            racer.total_time = self._elapsed(now)
            self._arm_lap_timing(racer, now)
            return True

        racer.total_time = self._elapsed(now)
        if racer.last_lap_timestamp > 0:
            lap_time = now - racer.last_lap_timestamp
            if racer.best_lap is None or lap_time < racer.best_lap:
                racer.best_lap = lap_time
            racer.history.append(LapRecord(racer.laps + 1, lap_time, list(racer.current_lap_splits)))

        self._complete_lap(racer, now)
        logger.info(f"[LAP] {racer.name} completed lap {racer.laps}")
        self._check_finish(racer)
        return True

    def checkpoint(self, racer_id: str) -> bool:
        """Checkpoint crossing; completes the lap when enough were hit."""
        racer = self._scorable(racer_id)
        if racer is None:
            return False

        now = self.clock()
        if racer.last_lap_timestamp > 0:
            racer.current_lap_splits.append(now - racer.last_lap_timestamp)
        elif racer.laps == 0 and self.start_time:
            racer.current_lap_splits.append(now - self.start_time)

        racer.checkpoints += 1
        racer.total_time = self._elapsed(now)
        self._update_gap(racer)
        self._propagate_times(racer)

        # Before the first real lap only the start crossing is expected
        required = 1 if racer.last_lap_timestamp == 0 else self.checkpoints_per_lap
        logger.info(f"[CHECKPOINT] {racer.name} hit checkpoint {racer.checkpoints}/{required}")

        if racer.checkpoints < required:
            return True

        if racer.last_lap_timestamp == 0:
            self._arm_lap_timing(racer, now)
            return True

        lap_time = now - racer.last_lap_timestamp
        racer.history.append(LapRecord(racer.laps + 1, lap_time, list(racer.current_lap_splits)))
        if racer.best_lap is None or lap_time < racer.best_lap:
            racer.best_lap = lap_time

        self._complete_lap(racer, now)
        logger.info(f"[LAP] {racer.name} auto-completed lap {racer.laps} (time: {lap_time / 1000:.2f}s)")
        self._check_finish(racer)
        return True

    def _complete_lap(self, racer: Racer, now: int):
        racer.laps += 1
        racer.checkpoints = 0
        racer.current_lap_splits = []
        racer.last_lap_timestamp = now
        self._update_gap(racer)

    def _propagate_times(self, racer: Racer):
        """Racers behind can never show a lower total time than those ahead."""
        ordered = self.sorted_active()
        index = next(i for i, r in enumerate(ordered) if r.id == racer.id)

        running_max = racer.total_time
        for lower in ordered[index + 1:]:
            if running_max > lower.total_time:
                lower.total_time = running_max
                self._update_gap(lower)
            else:
                running_max = lower.total_time

    def _check_finish(self, racer: Racer):
        if self.status is RaceStatus.RACING:
            if racer.laps >= self.total_laps:
                racer.finished = True
                self.status = RaceStatus.FINISHING
                logger.info(f"[RACE] {racer.name} finished the race! Entering finishing mode.")
        elif self.status is RaceStatus.FINISHING:
            racer.finished = True
            logger.info(f"[RACE] {racer.name} finished their last lap.")

        active = [r for r in self.racers if not r.disqualified]
        if active and all(r.finished for r in active):
            self.status = RaceStatus.STOPPED
            self.end_time = self.clock()
            logger.info("[RACE] All racers finished. Race stopped.")

    # --- Views ---

    def sorted_active(self) -> List[Racer]:
        """Non-disqualified racers: most laps, most checkpoints, lowest time."""
        def sort_key(racer: Racer):
            total = racer.total_time if racer.total_time else float("inf")
            return (-racer.laps, -racer.checkpoints, total)
        return sorted((r for r in self.racers if not r.disqualified), key=sort_key)

    def sorted_results(self) -> List[Racer]:
        """Standings with disqualified racers at the end."""
        return self.sorted_active() + [r for r in self.racers if r.disqualified]

    def snapshot(self, message_type: MessageType = MessageType.UPDATE) -> Dict[str, Any]:
        """Broadcast frame: full state for init, racers and status for update."""
        message = {
            "type": message_type.value,
            "status": self.status.value,
            "racers": [racer.to_dict() for racer in self.racers],
            "endTime": self.end_time
        }
        if message_type is MessageType.INIT:
            message["startTime"] = self.start_time
            message["totalLaps"] = self.total_laps
        return message
