"""
Tracker exceptions.

All failures are local to the operation that raised them; callers report
them to the operator and carry on.
"""


class TrackerError(Exception):
    """Base class for tracker failures."""
    pass


# ============ Regions ============

class DuplicateRegionError(TrackerError):
    """A region with this id already exists."""
    def __init__(self, region_id):
        self.region_id = region_id
        super().__init__(f"Region '{region_id}' already exists")


class RegionNotFoundError(TrackerError):
    """No region with this id."""
    def __init__(self, region_id):
        self.region_id = region_id
        super().__init__(f"Region '{region_id}' not found")


# ============ Identities ============

class IdentityNotFoundError(TrackerError):
    """Name is not registered, or has no authority id yet."""
    def __init__(self, name, reason="not registered"):
        self.name = name
        super().__init__(f"Racer '{name}' {reason}")


# ============ Session ============

class NotConnectedError(TrackerError):
    """Network operation attempted while the session is not connected."""
    pass


class ProtocolParseError(TrackerError):
    """Inbound frame could not be parsed."""
    def __init__(self, raw, cause):
        self.raw = raw
        self.cause = cause
        super().__init__(f"Malformed frame ({cause}): {raw[:200]!r}")


class TransportError(TrackerError):
    """Connect, send or close failed at the transport layer."""
    pass


# ============ Persistence ============

class ConfigIOError(TrackerError):
    """Region document could not be read or written."""
    def __init__(self, path, cause):
        self.path = path
        self.cause = cause
        super().__init__(f"Region file {path}: {cause}")
