"""
Identity Registry
Maps locally known racer names to the ids the authority assigns to them.
"""
import threading
from typing import Optional, Dict, List
import logging

logger = logging.getLogger(__name__)


def canonical_name(name: str) -> str:
    """Names match case-insensitively everywhere."""
    return name.strip().casefold()


class IdentityRegistry:
    """
    Bidirectional name <-> remote id mapping.

    A name can be registered before the authority knows about it; its id stays
    None until the authority reports a racer with that name. The tracker tick
    reads the registry while the transport thread writes to it, so every
    method holds the lock.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._name_to_id: Dict[str, Optional[str]] = {}
        self._id_to_name: Dict[str, str] = {}

    def register_local(self, name: str) -> bool:
        """
        Add a racer locally, awaiting its authority id.

        Returns:
            True if the name was new.
        """
        key = canonical_name(name)
        with self._lock:
            if key in self._name_to_id:
                return False
            self._name_to_id[key] = None

        logger.debug(f"[IDENTITY] Racer added locally (awaiting authority id): {name}")
        return True

    def sync_from_authority(self, remote_id: str, name: str) -> None:
        """
        Bind a name to the id the authority reported for it.

        Rebinding drops the previous id's reverse entry, and an id that was
        bound to a different name is taken away from that name, so no two
        names share a live id.
        """
        key = canonical_name(name)
        with self._lock:
            previous_id = self._name_to_id.get(key)
            if previous_id is not None and previous_id != remote_id:
                self._id_to_name.pop(previous_id, None)

            previous_owner = self._id_to_name.get(remote_id)
            if previous_owner is not None and previous_owner != key:
                self._name_to_id[previous_owner] = None

            self._name_to_id[key] = remote_id
            self._id_to_name[remote_id] = key

        if previous_id != remote_id:
            logger.info(f"[IDENTITY] Racer synced from authority: {name} -> ID: {remote_id}")

    def remove(self, name: str) -> bool:
        key = canonical_name(name)
        with self._lock:
            if key not in self._name_to_id:
                logger.debug(f"[IDENTITY] Racer not found for removal: {name}")
                return False
            remote_id = self._name_to_id.pop(key)
            if remote_id is not None:
                self._id_to_name.pop(remote_id, None)

        logger.debug(f"[IDENTITY] Racer removed: {name} (ID: {remote_id})")
        return True

    def is_registered(self, name: str) -> bool:
        with self._lock:
            return canonical_name(name) in self._name_to_id

    def lookup_id(self, name: str) -> Optional[str]:
        with self._lock:
            return self._name_to_id.get(canonical_name(name))

    def lookup_name(self, remote_id: str) -> Optional[str]:
        with self._lock:
            return self._id_to_name.get(remote_id)

    def names(self) -> List[str]:
        """Registered names in canonical form."""
        with self._lock:
            return sorted(self._name_to_id)

    def clear(self) -> None:
        with self._lock:
            self._name_to_id.clear()
            self._id_to_name.clear()
        logger.debug("[IDENTITY] All racers cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self._name_to_id)
