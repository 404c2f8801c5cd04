"""
Spatial Region Store
Owns the named checkpoint regions and their race order.
"""
import threading
from typing import Optional, Dict, List, Iterable, Set
import logging

from shared.models import Region, RegionKind, BlockPos, Vec3
from tracker.exceptions import DuplicateRegionError, RegionNotFoundError

logger = logging.getLogger(__name__)


class SpatialRegionStore:
    """
    In-memory set of checkpoint regions.

    Regions are kept both by id and as a list sorted by ordinal. Equal
    ordinals keep insertion order. Ordinals are not required to be unique.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._by_id: Dict[str, Region] = {}
        self._ordered: List[Region] = []

    def create(
        self,
        region_id: str,
        kind: RegionKind,
        corner1: BlockPos,
        corner2: BlockPos,
        ordinal: int
    ) -> Region:
        """
        Create and add a region.

        Args:
            region_id: Unique region key.
            kind: Start, waypoint or finish.
            corner1: First corner cell.
            corner2: Opposite corner cell.
            ordinal: Position in the race order.

        Returns:
            The new Region.

        Raises:
            DuplicateRegionError: If region_id is already taken.
        """
        region = Region(id=region_id, kind=kind, pos1=corner1, pos2=corner2, ordinal=ordinal)
        self.add(region)
        return region

    def add(self, region: Region) -> None:
        with self._lock:
            if region.id in self._by_id:
                raise DuplicateRegionError(region.id)
            self._by_id[region.id] = region
            self._ordered.append(region)
            # list.sort is stable, so equal ordinals stay in insertion order
            self._ordered.sort(key=lambda r: r.ordinal)

        logger.info(f"[REGIONS] Region added: {region.id} ({region.kind.name}, #{region.ordinal})")

    def remove(self, region_id: str) -> bool:
        with self._lock:
            region = self._by_id.pop(region_id, None)
            if region is None:
                return False
            self._ordered.remove(region)

        logger.info(f"[REGIONS] Region removed: {region_id}")
        return True

    def lookup(self, region_id: str) -> Optional[Region]:
        with self._lock:
            return self._by_id.get(region_id)

    def get(self, region_id: str) -> Region:
        """Like lookup, but raises RegionNotFoundError for unknown ids."""
        region = self.lookup(region_id)
        if region is None:
            raise RegionNotFoundError(region_id)
        return region

    def list(self) -> List[Region]:
        """Snapshot of all regions, ordinal ascending."""
        with self._lock:
            return list(self._ordered)

    def ids(self) -> Set[str]:
        with self._lock:
            return set(self._by_id)

    def count(self) -> int:
        with self._lock:
            return len(self._by_id)

    def __len__(self) -> int:
        return self.count()

    def next_ordinal(self) -> int:
        """Default ordinal for a newly created region: append at the end."""
        return self.count()

    @staticmethod
    def contains(region: Region, point: Vec3) -> bool:
        return region.contains(point)

    def first_containing(self, point: Vec3) -> Optional[Region]:
        """
        Find the region the point is in.

        Overlaps resolve to the earliest region in list order, not the
        closest one.
        """
        for region in self.list():
            if region.contains(point):
                return region
        return None

    def replace_all(self, regions: Iterable[Region]) -> None:
        """
        Swap the whole region set.

        Raises:
            DuplicateRegionError: If the new set repeats an id. The current set
                is left untouched in that case.
        """
        by_id: Dict[str, Region] = {}
        for region in regions:
            if region.id in by_id:
                raise DuplicateRegionError(region.id)
            by_id[region.id] = region

        ordered = sorted(by_id.values(), key=lambda r: r.ordinal)
        with self._lock:
            self._by_id = by_id
            self._ordered = ordered

    def clear(self) -> int:
        """Remove all regions. Returns how many were removed."""
        with self._lock:
            count = len(self._by_id)
            self._by_id.clear()
            self._ordered.clear()

        logger.info("[REGIONS] All regions cleared")
        return count
