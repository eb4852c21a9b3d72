"""
Relay Errors
============

Exceptions raised by the hand-off channel and the frame relays.

Both publish failures carry the undelivered item back to the caller in
``payload`` so nothing is silently lost. ``Full`` is a backpressure signal,
not a fault: the producer decides whether to drop the frame or block.
"""

from typing import Any


class SendError(Exception):
    """Base class for failures that hand an item back to its sender."""

    def __init__(self, payload: Any = None, message: str = "") -> None:
        super().__init__(message or self.__class__.__name__)
        self.payload = payload


class ChannelClosed(SendError):
    """The relay was closed and will never deliver again."""

    def __init__(self, payload: Any = None) -> None:
        super().__init__(payload, "sending on a closed channel")


class Full(SendError):
    """The slot already holds a frame nobody has picked up."""

    def __init__(self, payload: Any = None) -> None:
        super().__init__(payload, "sending on a full channel")
