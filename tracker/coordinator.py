"""
Race Coordinator - Main Orchestration Module
Builds the tracker components once, wires them together and exposes the
operator actions and the per-step entry point to the host.
"""
import functools
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Optional, List, Iterable, Callable
import logging

from shared.models import RegionKind, RaceAction, BlockPos
from tracker.config import TrackerConfig
from tracker.detector import EntryDetector, ParticipantSnapshot, CheckpointEvent, monotonic_ms
from tracker.exceptions import (
    TrackerError, NotConnectedError, IdentityNotFoundError, ConfigIOError
)
from tracker.identities import IdentityRegistry
from tracker.persistence import RegionRepository
from tracker.regions import SpatialRegionStore
from tracker.session import ProtocolSession, ConnectionState, Transport
from tracker.transport import WebSocketTransport

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of an operator action, with feedback for the operator."""
    ok: bool
    message: str
    lines: Optional[List[str]] = None


def _operator_action(method):
    """Report tracker failures to the operator instead of raising them."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except TrackerError as e:
            logger.warning(f"[COORDINATOR] {method.__name__} failed: {e}")
            return CommandResult(False, str(e))
    return wrapper


class RaceCoordinator:
    """
    Composition root for the tracker.

    Owns exactly one region store, identity registry, session and detector.
    The host calls tick() once per simulation step; the operator surface calls
    the action methods.
    """

    def __init__(
        self,
        config: Optional[TrackerConfig] = None,
        transport: Optional[Transport] = None,
        repository: Optional[RegionRepository] = None,
        clock: Callable[[], float] = monotonic_ms
    ):
        """
        Initialize coordinator.

        Args:
            config: Configuration object. If None, uses defaults.
            transport: Channel to the authority. Defaults to a WebSocketTransport.
            repository: Region persistence. Defaults to the configured directory.
            clock: Millisecond clock for the detector.
        """
        self.config = config or TrackerConfig()

        self.transport = transport or WebSocketTransport(
            open_timeout=self.config.authority.connect_timeout,
            ping_interval=self.config.authority.ping_interval,
            ping_timeout=self.config.authority.ping_timeout
        )
        self.repository = repository or RegionRepository(self.config.storage.config_dir)

        self.regions = SpatialRegionStore()
        self.identities = IdentityRegistry()
        self.session = ProtocolSession(self.transport, self.identities, url=self.config.authority.url)
        self.detector = EntryDetector(
            self.regions,
            self.identities,
            self.session,
            cooldown_ms=self.config.tracking.cooldown_ms,
            clock=clock
        )

        self.world_name: Optional[str] = None

        self.session.add_state_listener(self._on_connection_state)
        self.detector.add_listener(self._on_checkpoint)

    # --- Host entry points ---

    def tick(self, participants: Iterable[ParticipantSnapshot]) -> List[CheckpointEvent]:
        """Run detection for one simulation step."""
        return self.detector.tick(participants)

    def on_world_changed(self, world_name: Optional[str]):
        """
        Switch region sets when the host enters or leaves a world.

        Leaving every world clears the set; entering a different world loads
        its document.
        """
        if world_name is None:
            self.world_name = None
            self.regions.clear()
            return

        if world_name != self.world_name:
            self.world_name = world_name
            self._load()

    def stop(self):
        """Disconnect and stop the transport."""
        self.session.disconnect()
        stop = getattr(self.transport, "stop", None)
        if stop is not None:
            stop()
        logger.info("[COORDINATOR] Stopped")

    # --- Region actions ---

    @_operator_action
    def create_region(
        self,
        region_id: str,
        kind: RegionKind,
        corner1: BlockPos,
        corner2: BlockPos,
        ordinal: Optional[int] = None
    ) -> CommandResult:
        """Create a region. Without an ordinal it goes to the end of the order."""
        if ordinal is None:
            ordinal = self.regions.next_ordinal()
        region = self.regions.create(region_id, kind, corner1, corner2, ordinal)
        self._autosave()
        size_x, size_y, size_z = region.volume.size
        return CommandResult(
            True,
            f"Region created: {region.id} ({region.kind.name}, #{region.ordinal + 1}, "
            f"{size_x:.0f}x{size_y:.0f}x{size_z:.0f})"
        )

    @_operator_action
    def remove_region(self, region_id: str) -> CommandResult:
        if not self.regions.remove(region_id):
            return CommandResult(False, f"Region not found: {region_id}")
        self._autosave()
        return CommandResult(True, f"Region removed: {region_id}")

    def list_regions(self) -> CommandResult:
        regions = self.regions.list()
        if not regions:
            return CommandResult(True, "No regions defined.", [])
        lines = [
            f"#{region.ordinal + 1} {region.id} {region.kind.name} "
            f"({region.pos1.short()} -> {region.pos2.short()})"
            for region in regions
        ]
        return CommandResult(True, f"Regions ({len(regions)}):", lines)

    @_operator_action
    def region_info(self, region_id: str) -> CommandResult:
        region = self.regions.get(region_id)
        size_x, size_y, size_z = region.volume.size
        lines = [
            f"Type: {region.kind.name}",
            f"Order: #{region.ordinal + 1}",
            f"Pos1: {region.pos1.short()}",
            f"Pos2: {region.pos2.short()}",
            f"Size: {size_x:.0f}x{size_y:.0f}x{size_z:.0f}"
        ]
        return CommandResult(True, f"Region info: {region.id}", lines)

    @_operator_action
    def clear_regions(self) -> CommandResult:
        count = self.regions.clear()
        self._autosave()
        return CommandResult(True, f"Cleared {count} regions.")

    @_operator_action
    def save_regions(self) -> CommandResult:
        path = self.repository.save(self.world_name, self.regions.list())
        return CommandResult(True, f"Regions saved to {path}.")

    def load_regions(self) -> CommandResult:
        if not self._load():
            return CommandResult(False, "Failed to load regions, see log.")
        return CommandResult(True, f"Loaded {self.regions.count()} regions.")

    def reset_tracking(self) -> CommandResult:
        self.detector.reset_all()
        return CommandResult(True, "Region tracking reset.")

    def _load(self) -> bool:
        """Replace the region set with the stored one; a failed load leaves it empty."""
        self.regions.clear()
        try:
            self.regions.replace_all(self.repository.load(self.world_name))
        except TrackerError as e:
            logger.error(f"[COORDINATOR] Failed to load regions: {e}")
            return False
        return True

    def _autosave(self):
        if not self.config.storage.autosave:
            return
        try:
            self.repository.save(self.world_name, self.regions.list())
        except ConfigIOError as e:
            # In-memory state stays as it is
            logger.error(f"[COORDINATOR] Failed to save regions: {e}")

    # --- Connection actions ---

    def connect(self, url: Optional[str] = None) -> Future:
        """
        Connect to the authority without blocking.

        Returns:
            Future resolved with True once connected, False on failure.
        """
        return self.session.connect(url)

    def disconnect(self) -> CommandResult:
        if not self.session.disconnect():
            return CommandResult(False, "Not connected to authority")
        return CommandResult(True, "Disconnected from authority")

    # --- Racer actions ---

    def _require_connected(self):
        if not self.session.is_connected():
            raise NotConnectedError("Not connected! Connect to the authority first")

    def _require_racer_id(self, name: str) -> str:
        racer_id = self.identities.lookup_id(name)
        if racer_id is None:
            raise IdentityNotFoundError(name, "not found or ID not synced")
        return racer_id

    @_operator_action
    def add_racer(self, name: str) -> CommandResult:
        self._require_connected()
        self.identities.register_local(name)
        self.session.send_register(name)
        logger.info(f"[COORDINATOR] Registered racer: {name}")
        return CommandResult(True, f"Registered racer: {name}")

    @_operator_action
    def remove_racer(self, name: str) -> CommandResult:
        self._require_connected()
        if not self.identities.remove(name):
            raise IdentityNotFoundError(name, "not found locally")
        self.detector.reset_one(name)
        self.session.send_remove(name)
        logger.info(f"[COORDINATOR] Removed racer: {name}")
        return CommandResult(True, f"Removed racer: {name}")

    @_operator_action
    def disqualify_racer(self, name: str) -> CommandResult:
        self._require_connected()
        racer_id = self._require_racer_id(name)
        self.session.send_disqualify(racer_id)
        logger.info(f"[COORDINATOR] Toggled disqualification for racer: {name} (ID: {racer_id})")
        return CommandResult(True, f"Toggled disqualification for: {name}")

    @_operator_action
    def force_lap(self, name: str) -> CommandResult:
        """Credit a lap by hand, e.g. when a crossing was missed."""
        self._require_connected()
        racer_id = self._require_racer_id(name)
        self.session.send_lap(racer_id)
        return CommandResult(True, f"Lap sent for: {name}")

    # --- Race actions ---

    @_operator_action
    def start_race(self) -> CommandResult:
        self._require_connected()
        self.session.send_action(RaceAction.START)
        return CommandResult(True, "Race started!")

    @_operator_action
    def stop_race(self) -> CommandResult:
        self._require_connected()
        self.session.send_action(RaceAction.STOP)
        return CommandResult(True, "Race stopped!")

    @_operator_action
    def reset_race(self) -> CommandResult:
        self._require_connected()
        self.session.send_action(RaceAction.RESET)
        self.detector.reset_all()
        return CommandResult(True, "Race reset!")

    # --- Callbacks ---

    def _on_connection_state(self, old_state: ConnectionState, new_state: ConnectionState):
        logger.info(f"[COORDINATOR] Authority connection: {old_state.value} -> {new_state.value}")

    def _on_checkpoint(self, event: CheckpointEvent):
        logger.debug(
            f"[COORDINATOR] {event.region.kind.name} | {event.name} (#{event.region.ordinal + 1})"
        )
