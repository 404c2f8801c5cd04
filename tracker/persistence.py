"""
Region Persistence
Reads and writes region sets as JSON documents, one per world plus a
global fallback used when no world is active.
"""
import json
import re
from pathlib import Path
from typing import Optional, List, Dict, Any, Union
import logging

from shared.constants import Defaults, GLOBAL_REGION_FILE, REGION_FILE_TEMPLATE
from shared.models import Region
from tracker.exceptions import ConfigIOError

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


def sanitize_world_name(name: str) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", name)


class RegionRepository:
    """
    JSON document store for region sets.

    Document shape:
        {"worldName": str|null, "version": 1,
         "waypoints": [{"id", "type", "order", "pos1": {x,y,z}, "pos2": {x,y,z}}]}
    """

    def __init__(self, config_dir: Union[str, Path] = Defaults.CONFIG_DIR.value):
        self.config_dir = Path(config_dir)

    def path_for(self, world_name: Optional[str]) -> Path:
        """File holding the region set of a world (or the global set)."""
        if world_name is None:
            return self.config_dir / GLOBAL_REGION_FILE
        return self.config_dir / REGION_FILE_TEMPLATE.format(world=sanitize_world_name(world_name))

    @staticmethod
    def to_document(world_name: Optional[str], regions: List[Region]) -> Dict[str, Any]:
        return {
            "worldName": world_name,
            "version": Defaults.PROTOCOL_VERSION.value,
            "waypoints": [region.to_dict() for region in regions]
        }

    @staticmethod
    def from_document(document: Dict[str, Any]) -> List[Region]:
        """Regions of a document, in stored order. A missing list means none."""
        entries = document.get("waypoints")
        if entries is None:
            return []
        return [Region.from_dict(entry) for entry in entries]

    def save(self, world_name: Optional[str], regions: List[Region]) -> Path:
        """
        Write the whole region set.

        Raises:
            ConfigIOError: If the file cannot be written.
        """
        path = self.path_for(world_name)
        document = self.to_document(world_name, regions)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(document, indent=2), encoding="utf-8")
        except OSError as e:
            raise ConfigIOError(path, e) from e

        logger.info(f"[PERSISTENCE] Saved {len(regions)} regions to {path}")
        return path

    def load(self, world_name: Optional[str]) -> List[Region]:
        """
        Read the region set of a world. A missing file is an empty set.

        Raises:
            ConfigIOError: If the file exists but cannot be read or parsed.
        """
        path = self.path_for(world_name)
        if not path.exists():
            logger.info(f"[PERSISTENCE] No region config found at {path}")
            return []

        try:
            document = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(document, dict):
                raise ValueError("document must be a JSON object")
            regions = self.from_document(document)
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise ConfigIOError(path, e) from e

        logger.info(f"[PERSISTENCE] Loaded {len(regions)} regions from {path}")
        return regions
