"""
WebSocket Transport - Connects the tracker to the race authority
Runs the websockets client on its own event loop thread so the simulation
tick never waits on the network.
"""
import asyncio
import threading
from typing import Optional
import logging

import websockets
from websockets.exceptions import ConnectionClosed

from shared.constants import Defaults
from tracker.exceptions import TransportError
from tracker.session import TransportListener

logger = logging.getLogger(__name__)

ABNORMAL_CLOSURE = 1006


class WebSocketTransport:
    """
    Transport backed by a websockets client connection.

    Listener callbacks fire on the transport's loop thread. Fragments of a
    message are passed on as they arrive, followed by an empty final fragment
    when the message is complete.
    """

    def __init__(
        self,
        open_timeout: float = Defaults.CONNECT_TIMEOUT.value,
        ping_interval: Optional[float] = 20,
        ping_timeout: Optional[float] = 60,
        close_timeout: float = 1
    ):
        """
        Initialize transport.

        Args:
            open_timeout: Seconds allowed for the opening handshake.
            ping_interval: Seconds between keepalive pings (None disables).
            ping_timeout: Seconds to wait for a pong before dropping.
            close_timeout: Seconds to wait for the closing handshake.
        """
        self.open_timeout = open_timeout
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout
        self.close_timeout = close_timeout

        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._websocket = None

    def _run_event_loop(self):
        """Run event loop in background thread."""
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._thread is None or not self._thread.is_alive():
                self.loop = asyncio.new_event_loop()
                self._thread = threading.Thread(
                    target=self._run_event_loop,
                    name="authority-transport",
                    daemon=True
                )
                self._thread.start()
                logger.debug("[TRANSPORT] Event loop thread started")
            return self.loop

    def open(self, url: str, listener: TransportListener) -> None:
        """Start a connection attempt; outcome is reported to the listener."""
        loop = self._ensure_loop()
        asyncio.run_coroutine_threadsafe(self._connection(url, listener), loop)

    async def _connection(self, url: str, listener: TransportListener):
        try:
            websocket = await websockets.connect(
                url,
                open_timeout=self.open_timeout,
                ping_interval=self.ping_interval,
                ping_timeout=self.ping_timeout,
                close_timeout=self.close_timeout
            )
        except Exception as e:
            listener.on_error(TransportError(f"Connection to {url} failed: {e}"))
            return

        self._websocket = websocket
        listener.on_open()

        try:
            await self._listen(websocket, listener)
        except ConnectionClosed as e:
            if e.rcvd is not None:
                listener.on_close(e.rcvd.code, e.rcvd.reason)
            else:
                listener.on_close(ABNORMAL_CLOSURE, "connection lost")
        except Exception as e:
            listener.on_error(TransportError(f"Listener error: {e}"))
        finally:
            if self._websocket is websocket:
                self._websocket = None

    async def _listen(self, websocket, listener: TransportListener):
        """Feed fragments to the listener until the connection closes."""
        while True:
            async for fragment in websocket.recv_streaming():
                listener.on_text(fragment, False)
            listener.on_text("", True)

    def send_text(self, text: str) -> None:
        """
        Queue a text frame on the loop thread.

        Raises:
            TransportError: If there is no open connection to send on.
        """
        websocket = self._websocket
        if websocket is None or self.loop is None:
            raise TransportError("No open connection")

        future = asyncio.run_coroutine_threadsafe(websocket.send(text), self.loop)
        future.add_done_callback(self._log_send_failure)

    @staticmethod
    def _log_send_failure(future):
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"[TRANSPORT] Send error: {error}")

    def close(self, code: int, reason: str) -> None:
        """Start the closing handshake and forget the connection."""
        websocket, self._websocket = self._websocket, None
        if websocket is None or self.loop is None:
            return
        future = asyncio.run_coroutine_threadsafe(websocket.close(code, reason), self.loop)
        future.add_done_callback(self._log_close_failure)

    @staticmethod
    def _log_close_failure(future):
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.warning(f"[TRANSPORT] Close error: {error}")

    async def _shutdown(self, websocket):
        """Close the connection and let the loop's remaining tasks finish."""
        if websocket is not None:
            await websocket.close(1001, "Client shutting down")

        current = asyncio.current_task()
        pending = [task for task in asyncio.all_tasks() if task is not current]
        if not pending:
            return
        _, still_pending = await asyncio.wait(pending, timeout=self.close_timeout)
        for task in still_pending:
            task.cancel()
        await asyncio.gather(*still_pending, return_exceptions=True)

    def stop(self, timeout: float = 5.0):
        """Close any open connection, then stop and close the loop thread."""
        websocket, self._websocket = self._websocket, None
        with self._lock:
            loop, thread = self.loop, self._thread
            self._thread = None

        if loop is not None and loop.is_running():
            future = asyncio.run_coroutine_threadsafe(self._shutdown(websocket), loop)
            try:
                future.result(timeout=self.close_timeout * 2 + 1)
            except Exception as e:
                logger.warning(f"[TRANSPORT] Shutdown error: {e}")
            loop.call_soon_threadsafe(loop.stop)

        if thread is not None:
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("[TRANSPORT] Loop thread did not stop in time")
                return
        if loop is not None and not loop.is_closed():
            loop.close()
        logger.debug("[TRANSPORT] Stopped")
