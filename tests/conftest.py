"""Shared test fixtures: an in-memory transport and wired tracker components."""

import json

import pytest

from shared.models import BlockPos, RegionKind
from tracker.detector import EntryDetector
from tracker.identities import IdentityRegistry
from tracker.regions import SpatialRegionStore
from tracker.session import ProtocolSession


class FakeTransport:
    """Transport that records everything and lets the test drive callbacks."""

    def __init__(self):
        self.opened = []
        self.sent = []
        self.closed = []
        self.listener = None
        self.fail_open = None

    def open(self, url, listener):
        if self.fail_open is not None:
            raise self.fail_open
        self.opened.append(url)
        self.listener = listener

    def send_text(self, text):
        self.sent.append(text)

    def close(self, code, reason):
        self.closed.append((code, reason))

    # --- Test helpers ---

    def accept(self):
        self.listener.on_open()

    def deliver(self, message):
        text = message if isinstance(message, str) else json.dumps(message)
        self.listener.on_text(text, True)

    def drop(self, code=1006, reason="connection lost"):
        self.listener.on_close(code, reason)

    def sent_frames(self):
        return [json.loads(text) for text in self.sent]


class StepClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def clock():
    return StepClock(start=10_000.0)


@pytest.fixture
def identities():
    return IdentityRegistry()


@pytest.fixture
def regions():
    return SpatialRegionStore()


@pytest.fixture
def session(transport, identities):
    return ProtocolSession(transport, identities, url="ws://authority.test/ws")


@pytest.fixture
def connected_session(session, transport):
    session.connect()
    transport.accept()
    return session


@pytest.fixture
def detector(regions, identities, session, clock):
    return EntryDetector(regions, identities, session, cooldown_ms=500, clock=clock)


@pytest.fixture
def track(regions):
    """Start cell at the origin and one waypoint along x."""
    regions.create("start", RegionKind.START, BlockPos(0, 0, 0), BlockPos(0, 0, 0), 0)
    regions.create("cp1", RegionKind.WAYPOINT, BlockPos(10, 0, 0), BlockPos(12, 2, 2), 1)
    return regions
