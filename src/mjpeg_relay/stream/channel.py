"""
Hand-off Channel
================

Thread-safe bounded FIFO with an explicit closed state.

This is the primitive under the shared relay: a capacity-1 slot that one
producer fills and consumers drain. ``queue.Queue`` has no close, so the
channel keeps its own condition variable.

Design Rules:
    - A full channel never displaces its contents
    - After close(), buffered items can still be received
    - close() wakes every blocked sender and receiver
"""

import threading
import time
from collections import deque
from typing import Any, Deque, Optional

from mjpeg_relay.stream.errors import ChannelClosed, Full


class Channel:
    """
    Bounded, closable hand-off queue.

    Example:
        channel = Channel(capacity=1)

        # Producer
        channel.send(frame)

        # Consumer
        frame = channel.recv()
    """

    def __init__(self, capacity: int = 1) -> None:
        """
        Initialize channel.

        Args:
            capacity: Maximum buffered items. Must be >= 1.
        """
        if capacity < 1:
            raise ValueError("capacity must be >= 1")

        self._capacity = capacity
        self._items: Deque[Any] = deque()
        self._closed: bool = False
        self._cond = threading.Condition()

    @property
    def closed(self) -> bool:
        return self._closed

    def is_full(self) -> bool:
        with self._cond:
            return len(self._items) >= self._capacity

    def send(self, item: Any) -> None:
        """
        Append item, waiting while the channel is full.

        Raises:
            ChannelClosed: If the channel is (or becomes) closed
        """
        with self._cond:
            while not self._closed and len(self._items) >= self._capacity:
                self._cond.wait()
            if self._closed:
                raise ChannelClosed(item)
            self._items.append(item)
            self._cond.notify_all()

    def try_send(self, item: Any) -> None:
        """
        Append item without waiting.

        Raises:
            ChannelClosed: If the channel is closed
            Full: If the channel is at capacity
        """
        with self._cond:
            if self._closed:
                raise ChannelClosed(item)
            if len(self._items) >= self._capacity:
                raise Full(item)
            self._items.append(item)
            self._cond.notify_all()

    def recv(self, timeout: Optional[float] = None) -> Optional[Any]:
        """
        Take the oldest item, waiting until one arrives.

        Args:
            timeout: Maximum seconds to wait. None = wait forever.

        Returns:
            Next item, or None if timeout occurred.

        Raises:
            ChannelClosed: If the channel is closed and drained
        """
        deadline = None if timeout is None else time.monotonic() + timeout

        with self._cond:
            while not self._items:
                if self._closed:
                    raise ChannelClosed()
                if deadline is None:
                    self._cond.wait()
                else:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return None
                    self._cond.wait(remaining)

            item = self._items.popleft()
            self._cond.notify_all()
            return item

    def close(self) -> None:
        """Close the channel and wake all waiters."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()
