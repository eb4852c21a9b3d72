"""
Stream Publisher
================

Producer-facing API: push JPEG bytes in, serve them to HTTP viewers.

Example:
    publisher = StreamPublisher()
    threading.Thread(target=publisher.serve, args=("0.0.0.0:8088",), daemon=True).start()

    while True:
        jpeg = camera.take_one()
        try:
            publisher.publish_nonblocking(jpeg)
        except Full:
            pass  # nobody is listening, or the viewer is slow
        except ChannelClosed:
            break
"""

import logging
import threading
from typing import List, Optional

from mjpeg_relay.config import settings
from mjpeg_relay.server.listener import Address, MJpegServer
from mjpeg_relay.stream.codec import BytesLike, encode
from mjpeg_relay.stream.errors import ChannelClosed, Full
from mjpeg_relay.stream.relay import FrameRelay, RelayMode, create_relay


logger = logging.getLogger(__name__)


class StreamPublisher:
    """
    One MJPEG feed: a frame relay plus the servers streaming it.

    Publish failures carry the caller's original JPEG bytes in
    ``payload``, never the internal Frame.

    Attributes:
        relay: The frame relay owned by this publisher
    """

    def __init__(self, mode: Optional[RelayMode] = None) -> None:
        """
        Initialize publisher.

        Args:
            mode: 'broadcast' or 'shared'. None = configured relay.mode.
        """
        self.relay: FrameRelay = create_relay(mode or settings.relay.mode)
        self._servers: List[MJpegServer] = []
        self._servers_lock = threading.Lock()

    @property
    def mode(self) -> str:
        return self.relay.mode

    def publish_blocking(self, jpeg: BytesLike) -> None:
        """
        Publish a JPEG, waiting while the relay is backlogged.

        Raises:
            ChannelClosed: If the relay is closed. payload is jpeg.
        """
        try:
            self.relay.publish_blocking(encode(jpeg))
        except ChannelClosed:
            raise ChannelClosed(jpeg) from None

    def publish_nonblocking(self, jpeg: BytesLike) -> None:
        """
        Publish a JPEG without waiting.

        Raises:
            Full: If no viewer (or holding slot) could take it. payload is jpeg.
            ChannelClosed: If the relay is closed. payload is jpeg.
        """
        try:
            self.relay.publish_nonblocking(encode(jpeg))
        except Full:
            raise Full(jpeg) from None
        except ChannelClosed:
            raise ChannelClosed(jpeg) from None

    def is_backlogged(self) -> bool:
        """True iff the relay cannot take another frame without waiting."""
        return self.relay.is_backlogged()

    def bind(self, address: Optional[Address] = None) -> MJpegServer:
        """
        Bind a server for this feed without starting it.

        Args:
            address: Listen address. None = configured server host/port.

        Raises:
            OSError: If the address cannot be bound
        """
        if address is None:
            address = (settings.server.host, settings.server.port)

        server = MJpegServer(
            self.relay,
            address,
            backlog=settings.server.backlog,
            retry_backoff_ms=settings.relay.retry_backoff_ms,
        )
        with self._servers_lock:
            self._servers.append(server)
        return server

    def serve(self, address: Optional[Address] = None) -> None:
        """
        Bind and run the listener loop on the calling thread.

        Blocks until shutdown() is called.

        Raises:
            OSError: If the address cannot be bound
        """
        self.bind(address).serve_forever()

    def shutdown(self) -> None:
        """Stop every server started from this publisher."""
        with self._servers_lock:
            servers = list(self._servers)
            self._servers.clear()
        for server in servers:
            server.shutdown()

    def close(self) -> None:
        """Drop the sending side of the relay."""
        self.relay.close()

    def metrics(self) -> dict:
        with self._servers_lock:
            connections = sum(server.active_connections for server in self._servers)
        return {**self.relay.metrics(), "connections": connections}
