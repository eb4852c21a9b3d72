"""
Connection Handler
==================

Per-viewer loop that turns relay frames into multipart bytes on a socket.

States:
    Handshake  - write the HTTP status line and multipart Content-Type once
    Streaming  - receive the next frame, write header then body, repeat
    Terminated - unsubscribe and release the socket

Design Rules:
    - The request is never read; anything that connects gets the stream
    - Subscribe before the handshake, so a viewer that has seen the
      preamble is already registered with the relay
    - A closed relay is logged and retried, never fatal to the viewer
    - A socket write error is fatal to this viewer only
"""

import logging
import socket
import threading
from typing import Tuple

from mjpeg_relay.stream.codec import RESPONSE_PREAMBLE
from mjpeg_relay.stream.errors import ChannelClosed
from mjpeg_relay.stream.relay import FrameRelay, Subscription


logger = logging.getLogger(__name__)


class ConnectionMetrics:
    """Counters for one viewer connection."""

    __slots__ = (
        "frames_sent",
        "bytes_sent",
        "recv_errors",
    )

    def __init__(self) -> None:
        self.frames_sent: int = 0
        self.bytes_sent: int = 0
        self.recv_errors: int = 0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "frames_sent": self.frames_sent,
            "bytes_sent": self.bytes_sent,
            "recv_errors": self.recv_errors,
        }


class ConnectionHandler:
    """
    Streams the relay to one accepted TCP connection.

    Attributes:
        conn: Accepted client socket (owned, closed on exit)
        peer: Client address, for logging
        metrics: Per-connection counters

    Example:
        handler = ConnectionHandler(conn, peer, relay, stop_event)
        threading.Thread(target=handler.run, daemon=True).start()
    """

    def __init__(
        self,
        conn: socket.socket,
        peer: Tuple,
        relay: FrameRelay,
        stop_event: threading.Event,
        retry_backoff_ms: int = 500,
        poll_interval: float = 0.5,
    ) -> None:
        """
        Initialize connection handler.

        Args:
            conn: Accepted client socket
            peer: Address returned by accept()
            relay: Relay to subscribe to
            stop_event: Server-wide stop signal
            retry_backoff_ms: Wait before retrying a receive on a closed relay
            poll_interval: Seconds between stop checks while idle
        """
        self.conn = conn
        self.peer = peer
        self.relay = relay
        self.retry_backoff_ms = retry_backoff_ms
        self.poll_interval = poll_interval

        self._stop_event = stop_event
        self.metrics = ConnectionMetrics()

    @property
    def peer_name(self) -> str:
        return f"{self.peer[0]}:{self.peer[1]}"

    def run(self) -> None:
        """Serve the viewer until it disconnects or the server stops."""
        subscription = self.relay.subscribe()
        logger.info(f"Viewer connected: {self.peer_name} (viewers={self.relay.viewer_count})")

        try:
            if self._handshake():
                self._stream(subscription)
        finally:
            subscription.close()
            self.conn.close()
            logger.info(
                f"Viewer disconnected: {self.peer_name} "
                f"(frames={self.metrics.frames_sent}, bytes={self.metrics.bytes_sent})"
            )

    def abort(self) -> None:
        """Unblock a pending write and make the loop exit."""
        try:
            self.conn.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Already disconnected
            pass

    def _handshake(self) -> bool:
        try:
            self.conn.sendall(RESPONSE_PREAMBLE)
        except OSError as e:
            logger.info(f"Handshake with {self.peer_name} failed: {e}")
            return False
        return True

    def _stream(self, subscription: Subscription) -> None:
        backoff_sec = self.retry_backoff_ms / 1000.0

        while not self._stop_event.is_set():
            try:
                frame = subscription.recv(timeout=self.poll_interval)
            except ChannelClosed as e:
                self.metrics.recv_errors += 1
                logger.warning(
                    f"Receive failed for {self.peer_name}: {e}, "
                    f"retrying in {backoff_sec:.1f}s"
                )
                self._stop_event.wait(backoff_sec)
                continue

            if frame is None:
                continue

            try:
                self.conn.sendall(frame.header)
                self.conn.sendall(frame.body)
            except OSError as e:
                logger.info(f"Write to {self.peer_name} failed: {e}")
                return

            self.metrics.frames_sent += 1
            self.metrics.bytes_sent += len(frame)
