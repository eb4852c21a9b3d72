"""
Stream Module
=============

Frame encoding and producer-to-viewer distribution.

This module provides the distribution layer for mjpeg-relay:
    - Frame: Immutable header + JPEG body pair
    - encode / decode_header: Multipart part codec
    - Channel: Closable bounded hand-off queue
    - BroadcastRelay / SharedRelay: Frame relays (per-viewer copy vs. shared receiver)

Example:
    from mjpeg_relay.stream import BroadcastRelay, encode

    relay = BroadcastRelay()
    subscription = relay.subscribe()

    relay.publish_nonblocking(encode(jpeg_bytes))
    frame = subscription.recv(timeout=1.0)
"""

from mjpeg_relay.stream.frame import Frame
from mjpeg_relay.stream.codec import (
    BOUNDARY,
    RESPONSE_PREAMBLE,
    content_length,
    decode_header,
    encode,
)
from mjpeg_relay.stream.errors import ChannelClosed, Full, SendError
from mjpeg_relay.stream.channel import Channel
from mjpeg_relay.stream.relay import (
    BroadcastRelay,
    FrameRelay,
    SharedRelay,
    Subscription,
    create_relay,
)


__all__ = [
    "Frame",
    "BOUNDARY",
    "RESPONSE_PREAMBLE",
    "encode",
    "decode_header",
    "content_length",
    "SendError",
    "ChannelClosed",
    "Full",
    "Channel",
    "FrameRelay",
    "Subscription",
    "BroadcastRelay",
    "SharedRelay",
    "create_relay",
]
