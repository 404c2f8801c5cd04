"""
Protocol Session - Link between the tracker and the race authority
Owns the connection state, serializes outbound commands and dispatches
inbound race updates.
"""
import codecs
import threading
from concurrent.futures import Future
from enum import Enum
from typing import Optional, Callable, List, Protocol, Union
import logging

from shared.constants import Defaults
from shared.models import (
    RaceStatus, RaceAction, OutboundMessage, RacerRecord,
    InitMessage, UpdateMessage, StatusMessage, UnknownMessage, parse_inbound
)
from tracker.identities import IdentityRegistry
from tracker.exceptions import ProtocolParseError, TransportError

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000


class ConnectionState(Enum):
    """Session connection lifecycle."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class TransportListener(Protocol):
    """Callbacks a transport reports into. May run on any thread."""

    def on_open(self) -> None: ...

    def on_text(self, fragment: Union[str, bytes], last: bool) -> None: ...

    def on_close(self, code: int, reason: str) -> None: ...

    def on_error(self, error: BaseException) -> None: ...


class Transport(Protocol):
    """Message channel to the authority. No method may block the caller."""

    def open(self, url: str, listener: TransportListener) -> None: ...

    def send_text(self, text: str) -> None: ...

    def close(self, code: int, reason: str) -> None: ...


class _Link:
    """
    Transport listener for one connection attempt.

    Forwards to the session tagged with its generation so that callbacks from
    a connection the session has already dropped are ignored.
    """

    def __init__(self, session: "ProtocolSession", generation: int):
        self._session = session
        self._generation = generation
        self._fragments: List[str] = []
        # Binary fragments may split a multi-byte character
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def on_open(self) -> None:
        self._session._handle_open(self._generation)

    def on_text(self, fragment, last: bool) -> None:
        if isinstance(fragment, (bytes, bytearray)):
            self._fragments.append(self._decoder.decode(bytes(fragment), final=last))
        else:
            self._fragments.append(self._decoder.decode(b"", final=True))
            self._fragments.append(fragment)
        if not last:
            return
        message = "".join(self._fragments)
        self._reset()
        self._session._handle_message(self._generation, message)

    def _reset(self):
        self._fragments.clear()
        self._decoder.reset()

    def on_close(self, code: int, reason: str) -> None:
        self._reset()
        self._session._handle_close(self._generation, code, reason)

    def on_error(self, error: BaseException) -> None:
        self._reset()
        self._session._handle_error(self._generation, error)


class ProtocolSession:
    """
    Session with the race authority.

    State machine:
        DISCONNECTED --connect()--> CONNECTING --open--> CONNECTED
        CONNECTING/CONNECTED --close/error--> DISCONNECTED

    Outbound commands are fire-and-forget and dropped (never queued) while not
    connected. Inbound frames update the identity registry and the cached race
    status; the tracker tick reads both concurrently, so state is lock-guarded.
    """

    def __init__(
        self,
        transport: Transport,
        identities: IdentityRegistry,
        url: str = Defaults.AUTHORITY_URL.value
    ):
        """
        Initialize session.

        Args:
            transport: Channel used to reach the authority.
            identities: Registry updated from racer lists the authority sends.
            url: Default authority WebSocket URL.
        """
        self.url = url
        self._transport = transport
        self._identities = identities

        self._lock = threading.Lock()
        self._state = ConnectionState.DISCONNECTED
        self._race_status = RaceStatus.IDLE
        self._generation = 0
        self._pending: Optional[Future] = None

        # Notified as listener(old_state, new_state), outside the lock
        self._state_listeners: List[Callable[[ConnectionState, ConnectionState], None]] = []

    # --- State ---

    @property
    def connection_state(self) -> ConnectionState:
        with self._lock:
            return self._state

    @property
    def race_status(self) -> RaceStatus:
        with self._lock:
            return self._race_status

    def is_connected(self) -> bool:
        return self.connection_state is ConnectionState.CONNECTED

    def is_racing(self) -> bool:
        return self.race_status is RaceStatus.RACING

    def add_state_listener(self, listener: Callable[[ConnectionState, ConnectionState], None]):
        self._state_listeners.append(listener)

    def _set_state(self, new_state: ConnectionState) -> Optional[ConnectionState]:
        """Swap state under the lock. Returns the old state if it changed."""
        old_state = self._state
        if old_state is new_state:
            return None
        self._state = new_state
        return old_state

    def _notify(self, old_state: Optional[ConnectionState], new_state: ConnectionState):
        if old_state is None:
            return
        for listener in self._state_listeners:
            try:
                listener(old_state, new_state)
            except Exception as e:
                logger.error(f"[SESSION] State listener failed: {e}")

    # --- Lifecycle ---

    def connect(self, url: Optional[str] = None) -> Future:
        """
        Start connecting to the authority without blocking.

        Args:
            url: Authority URL, defaults to the session URL.

        Returns:
            Future resolved once with True when the connection opens, False if
            the attempt fails. While already connecting, the pending attempt's
            future is returned; while connected, an already-resolved True.
        """
        target = url or self.url
        with self._lock:
            if self._state is ConnectionState.CONNECTED:
                logger.info("[SESSION] Already connected")
                done: Future = Future()
                done.set_result(True)
                return done
            if self._state is ConnectionState.CONNECTING:
                logger.info("[SESSION] Already connecting")
                return self._pending

            self._generation += 1
            generation = self._generation
            future: Future = Future()
            self._pending = future
            old_state = self._set_state(ConnectionState.CONNECTING)

        self._notify(old_state, ConnectionState.CONNECTING)
        logger.info(f"[SESSION] Attempting to connect to {target}")

        try:
            self._transport.open(target, _Link(self, generation))
        except Exception as e:
            self._handle_error(generation, e)

        return future

    def disconnect(self) -> bool:
        """
        Close the connection.

        The local state flips to DISCONNECTED immediately; the close handshake
        is best effort.

        Returns:
            False if there was no open connection.
        """
        with self._lock:
            if self._state is not ConnectionState.CONNECTED:
                logger.info("[SESSION] Not connected")
                return False
            # Any late callback from the dropped connection is now stale
            self._generation += 1
            old_state = self._set_state(ConnectionState.DISCONNECTED)

        try:
            self._transport.close(NORMAL_CLOSURE, "Client disconnecting")
        except Exception as e:
            logger.warning(f"[SESSION] Close handshake failed: {e}")

        logger.info("[SESSION] Disconnected")
        self._notify(old_state, ConnectionState.DISCONNECTED)
        return True

    # --- Outbound ---

    def send_action(self, action: RaceAction) -> bool:
        """Send a race action (start, stop, reset)."""
        return self._send(OutboundMessage.action(action))

    def send_checkpoint(self, racer_id: str) -> bool:
        """Report a checkpoint crossing for a racer."""
        return self._send(OutboundMessage.checkpoint(racer_id))

    def send_lap(self, racer_id: str) -> bool:
        """Report a lap completion for a racer."""
        return self._send(OutboundMessage.lap(racer_id))

    def send_disqualify(self, racer_id: str) -> bool:
        """Toggle disqualification for a racer."""
        return self._send(OutboundMessage.disqualify(racer_id))

    def send_register(self, name: str) -> bool:
        """Register a new racer with the authority."""
        return self._send(OutboundMessage.register(name))

    def send_remove(self, name: str) -> bool:
        """Remove a racer from the authority by name."""
        return self._send(OutboundMessage.remove(name))

    def _send(self, message: OutboundMessage) -> bool:
        if not self.is_connected():
            logger.warning(f"[SESSION] Cannot send {message.type.value} - not connected")
            return False

        text = message.to_json()
        logger.debug(f"[SESSION] Sending: {text}")
        try:
            self._transport.send_text(text)
        except TransportError as e:
            logger.error(f"[SESSION] Send failed: {e}")
            return False
        return True

    # --- Transport callbacks ---

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _resolve_pending(self, result: bool):
        future, self._pending = self._pending, None
        if future is not None and not future.done():
            future.set_result(result)

    def _handle_open(self, generation: int):
        with self._lock:
            if not self._is_current(generation):
                return
            old_state = self._set_state(ConnectionState.CONNECTED)
            self._resolve_pending(True)

        logger.info(f"[SESSION] Connected to {self.url}")
        self._notify(old_state, ConnectionState.CONNECTED)

    def _handle_close(self, generation: int, code: int, reason: str):
        with self._lock:
            if not self._is_current(generation):
                return
            old_state = self._set_state(ConnectionState.DISCONNECTED)
            self._resolve_pending(False)

        logger.info(f"[SESSION] Connection closed: {code} - {reason}")
        self._notify(old_state, ConnectionState.DISCONNECTED)

    def _handle_error(self, generation: int, error: BaseException):
        with self._lock:
            if not self._is_current(generation):
                return
            old_state = self._set_state(ConnectionState.DISCONNECTED)
            self._resolve_pending(False)

        logger.error(f"[SESSION] Transport error: {error}")
        self._notify(old_state, ConnectionState.DISCONNECTED)

    def _handle_message(self, generation: int, raw: str):
        with self._lock:
            if not self._is_current(generation):
                return
        self.dispatch(raw)

    # --- Inbound ---

    def dispatch(self, raw: str) -> None:
        """
        Parse and apply one complete inbound frame.

        Malformed frames are logged and dropped; the connection is unaffected.
        """
        try:
            message = parse_inbound(raw)
        except ValueError as e:
            logger.error(f"[SESSION] {ProtocolParseError(raw, e)}")
            return

        if isinstance(message, InitMessage):
            if message.status is not None:
                self._set_race_status(message.status)
            self._sync_racers(message.racers, "init")

        elif isinstance(message, UpdateMessage):
            # An explicit status wins over the cached one; absent keeps it
            if message.status is not None:
                self._set_race_status(message.status)
            self._sync_racers(message.racers, "update")

        elif isinstance(message, StatusMessage):
            self._set_race_status(message.status)

        elif isinstance(message, UnknownMessage):
            logger.debug(f"[SESSION] Ignoring unknown message type: {message.type}")

    def _set_race_status(self, status: RaceStatus):
        with self._lock:
            changed = self._race_status is not status
            self._race_status = status
        if changed:
            logger.info(f"[SESSION] Race status changed: {status.value}")

    def _sync_racers(self, racers: List[RacerRecord], event: str):
        for racer in racers:
            self._identities.sync_from_authority(racer.id, racer.name)
        if racers:
            logger.info(f"[SESSION] Synced {len(racers)} racers from {event}")
