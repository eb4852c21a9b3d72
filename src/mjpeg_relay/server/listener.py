"""
Listener Loop
=============

Accepts TCP connections and runs one ConnectionHandler thread per viewer.

Design Rules:
    - No bound on concurrent connections, no per-connection timeout
    - An accept() failure is logged and skipped, never fatal
    - A bind failure is raised to the caller
"""

import logging
import selectors
import socket
import threading
from typing import Optional, Set, Tuple, Union

from mjpeg_relay.server.handler import ConnectionHandler
from mjpeg_relay.stream.relay import FrameRelay


logger = logging.getLogger(__name__)


Address = Union[str, Tuple[str, int]]


def parse_address(address: Address) -> Tuple[str, int]:
    """
    Normalize a listen address.

    Accepts ``(host, port)``, ``"host:port"`` or ``"[v6addr]:port"``.

    Raises:
        ValueError: If the address cannot be parsed
    """
    if isinstance(address, tuple):
        host, port = address
        return str(host), int(port)

    text = address.strip()
    if text.startswith("["):
        host, sep, port = text[1:].partition("]:")
    else:
        host, sep, port = text.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"Invalid listen address: {address!r}")

    return host, int(port)


class MJpegServer:
    """
    Threaded MJPEG listener bound to a single relay.

    The listening socket is bound at construction, so a bad address fails
    before serve_forever() is called.

    Example:
        server = MJpegServer(relay, "0.0.0.0:8088")
        threading.Thread(target=server.serve_forever, daemon=True).start()
        ...
        server.shutdown()
    """

    def __init__(
        self,
        relay: FrameRelay,
        address: Address,
        backlog: int = 128,
        retry_backoff_ms: int = 500,
        poll_interval: float = 0.5,
    ) -> None:
        """
        Bind the listening socket.

        Args:
            relay: Relay every connection subscribes to
            address: Listen address; port 0 picks an ephemeral port
            backlog: listen() backlog
            retry_backoff_ms: Passed to each ConnectionHandler
            poll_interval: Seconds between stop checks

        Raises:
            OSError: If the address cannot be bound
            ValueError: If the address cannot be parsed
        """
        self.relay = relay
        self.retry_backoff_ms = retry_backoff_ms
        self.poll_interval = poll_interval

        host, port = parse_address(address)
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        try:
            self._socket = socket.create_server((host, port), family=family, backlog=backlog)
        except OSError as e:
            logger.error(f"Failed to bind {host}:{port}: {e}")
            raise

        self._stop_event = threading.Event()
        self._serving_done = threading.Event()
        self._serving_done.set()
        self._handlers: Set[ConnectionHandler] = set()
        self._handlers_lock = threading.Lock()

    @property
    def server_address(self) -> Tuple:
        """Bound address, with the real port when 0 was requested."""
        return self._socket.getsockname()

    @property
    def active_connections(self) -> int:
        with self._handlers_lock:
            return len(self._handlers)

    def serve_forever(self) -> None:
        """Accept connections until shutdown() is called."""
        if self._stop_event.is_set():
            return
        self._serving_done.clear()
        host, port = self.server_address[:2]
        logger.info(f"MJPEG server listening on {host}:{port} (mode={self.relay.mode})")

        try:
            with selectors.DefaultSelector() as selector:
                selector.register(self._socket, selectors.EVENT_READ)

                while not self._stop_event.is_set():
                    if not selector.select(self.poll_interval):
                        continue
                    if self._stop_event.is_set():
                        break

                    try:
                        conn, peer = self._socket.accept()
                    except OSError as e:
                        logger.error(f"Accept failed: {e}")
                        continue

                    self._spawn(conn, peer)
        finally:
            self._serving_done.set()
            logger.info("MJPEG server stopped")

    def shutdown(self, timeout: Optional[float] = 5.0) -> None:
        """
        Stop accepting, close the listener and disconnect every viewer.

        Args:
            timeout: Seconds to wait for the accept loop to exit
        """
        self._stop_event.set()
        self._serving_done.wait(timeout)
        self._socket.close()

        with self._handlers_lock:
            handlers = list(self._handlers)
        for handler in handlers:
            handler.abort()

    def _spawn(self, conn: socket.socket, peer: Tuple) -> None:
        handler = ConnectionHandler(
            conn,
            peer,
            self.relay,
            self._stop_event,
            retry_backoff_ms=self.retry_backoff_ms,
            poll_interval=self.poll_interval,
        )
        with self._handlers_lock:
            self._handlers.add(handler)

        thread = threading.Thread(
            target=self._run_handler,
            args=(handler,),
            name=f"mjpeg-viewer-{handler.peer_name}",
            daemon=True,
        )
        thread.start()

    def _run_handler(self, handler: ConnectionHandler) -> None:
        try:
            handler.run()
        finally:
            with self._handlers_lock:
                self._handlers.discard(handler)

    def __enter__(self) -> "MJpegServer":
        return self

    def __exit__(self, *args) -> None:
        self.shutdown()
