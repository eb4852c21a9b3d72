"""
mjpeg-relay
===========

Push live JPEG frames to HTTP viewers as a multipart/x-mixed-replace stream.

A single producer publishes encoded JPEG bytes; every connected viewer
receives them as MJPEG parts over a long-lived HTTP response.

Components:
    - stream: Frame codec, hand-off channel and frame relays
    - server: TCP listener and per-viewer connection handlers
    - publisher: Producer-facing StreamPublisher

Configuration:
    Importing the package loads mjpeg_relay.yaml from the working
    directory, if present, and applies MJPEG_RELAY_* environment
    variables (see mjpeg_relay.config). They only supply defaults:
    StreamPublisher(mode=...) and an explicit serve()/bind() address
    take precedence. An invalid value raises pydantic's ValidationError
    at import time.

Example:
    import threading
    from mjpeg_relay import StreamPublisher

    publisher = StreamPublisher()
    threading.Thread(target=publisher.serve, args=("0.0.0.0:8088",), daemon=True).start()

    while True:
        publisher.publish_blocking(camera.take_one())
"""

__version__ = "0.1.0"

from mjpeg_relay.publisher import StreamPublisher
from mjpeg_relay.stream.errors import ChannelClosed, Full, SendError


__all__ = [
    "__version__",
    "StreamPublisher",
    "SendError",
    "ChannelClosed",
    "Full",
]
