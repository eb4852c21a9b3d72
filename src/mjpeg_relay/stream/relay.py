"""
Frame Relay
===========

Hand-off between the single frame producer and every connected viewer.

Two delivery modes are provided:

    - BroadcastRelay (default): every viewer owns a private capacity-1
      slot, so each viewer gets its own copy of the stream.
    - SharedRelay: one capacity-1 channel whose receiving end is shared by
      all viewers behind a lock. A frame goes to exactly one viewer, so
      with several viewers each one sees a subsampled stream.

Design Rules:
    - At most one unconsumed frame per slot
    - A publish never displaces a frame already in a slot
    - A viewer that stops reading never holds up the other viewers
    - Frames are never reordered or duplicated for a given viewer
    - close() is the shutdown signal for publishers and viewers alike
"""

import itertools
import logging
import threading
import time
from typing import Dict, List, Literal, Optional, Protocol

from mjpeg_relay.stream.channel import Channel
from mjpeg_relay.stream.errors import ChannelClosed, Full
from mjpeg_relay.stream.frame import Frame


logger = logging.getLogger(__name__)


RelayMode = Literal["broadcast", "shared"]


class Subscription(Protocol):
    """Receive handle held by one connection."""

    def recv(self, timeout: Optional[float] = None) -> Optional[Frame]: ...

    def close(self) -> None: ...


class FrameRelay(Protocol):
    """Interface shared by both relay modes."""

    mode: str

    @property
    def viewer_count(self) -> int: ...

    def publish_blocking(self, frame: Frame) -> None: ...

    def publish_nonblocking(self, frame: Frame) -> None: ...

    def is_backlogged(self) -> bool: ...

    def subscribe(self) -> Subscription: ...

    def close(self) -> None: ...

    def metrics(self) -> dict: ...


class _BaseSubscription:
    """Context-manager plumbing common to both subscription kinds."""

    def __init__(self, subscription_id: int) -> None:
        self.id = subscription_id
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._release()

    def _release(self) -> None:
        raise NotImplementedError

    def __enter__(self):
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self.id}, closed={self._closed})"


# =============================================================================
# Shared receiver
# =============================================================================

class SharedSubscription(_BaseSubscription):
    """Handle onto the relay's single, lock-protected receiving end."""

    def __init__(self, relay: "SharedRelay", subscription_id: int) -> None:
        super().__init__(subscription_id)
        self._relay = relay

    def recv(self, timeout: Optional[float] = None) -> Optional[Frame]:
        """
        Take the next frame, competing with every other subscription.

        Args:
            timeout: Maximum seconds to wait (lock + frame). None = forever.

        Returns:
            Next frame, or None if timeout occurred.

        Raises:
            ChannelClosed: If the relay is closed and drained
        """
        return self._relay._recv(timeout)

    def _release(self) -> None:
        self._relay._unsubscribe(self.id)


class SharedRelay:
    """
    Single capacity-1 channel with one receiver shared by all viewers.

    Whichever subscription next acquires the receive lock and completes
    the receive gets the frame. It is not broadcast.

    Example:
        relay = SharedRelay()
        subscription = relay.subscribe()

        relay.publish_blocking(frame)   # producer thread
        frame = subscription.recv()     # connection thread
    """

    mode = "shared"

    def __init__(self) -> None:
        self._channel = Channel(capacity=1)
        self._recv_lock = threading.Lock()
        self._registry_lock = threading.Lock()
        self._ids = itertools.count(1)
        self._viewers: set = set()

        self._published: int = 0
        self._dropped_full: int = 0
        self._delivered: int = 0

    @property
    def viewer_count(self) -> int:
        with self._registry_lock:
            return len(self._viewers)

    @property
    def closed(self) -> bool:
        return self._channel.closed

    def publish_blocking(self, frame: Frame) -> None:
        """
        Place frame, waiting while the slot is occupied.

        Raises:
            ChannelClosed: If the relay is closed
        """
        self._channel.send(frame)
        self._published += 1

    def publish_nonblocking(self, frame: Frame) -> None:
        """
        Place frame without waiting.

        Raises:
            ChannelClosed: If the relay is closed
            Full: If the previous frame has not been picked up yet
        """
        try:
            self._channel.try_send(frame)
        except Full:
            self._dropped_full += 1
            raise
        self._published += 1

    def is_backlogged(self) -> bool:
        """True iff the slot holds a frame no viewer has taken."""
        return self._channel.is_full()

    def subscribe(self) -> SharedSubscription:
        with self._registry_lock:
            subscription_id = next(self._ids)
            self._viewers.add(subscription_id)
        return SharedSubscription(self, subscription_id)

    def close(self) -> None:
        """Drop the sending side; waiting receivers get ChannelClosed."""
        self._channel.close()
        logger.info("Shared relay closed")

    def metrics(self) -> dict:
        return {
            "mode": self.mode,
            "viewers": self.viewer_count,
            "backlogged": self.is_backlogged(),
            "published": self._published,
            "dropped_full": self._dropped_full,
            "delivered": self._delivered,
        }

    def _recv(self, timeout: Optional[float]) -> Optional[Frame]:
        deadline = None if timeout is None else time.monotonic() + timeout

        acquired = self._recv_lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            return None
        try:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            frame = self._channel.recv(timeout=remaining)
            if frame is not None:
                self._delivered += 1
            return frame
        finally:
            self._recv_lock.release()

    def _unsubscribe(self, subscription_id: int) -> None:
        with self._registry_lock:
            self._viewers.discard(subscription_id)


# =============================================================================
# Broadcast fan-out
# =============================================================================

class _Slot:
    """Capacity-1 frame holder. Guarded by the owning relay's condition."""

    __slots__ = ("frame",)

    def __init__(self) -> None:
        self.frame: Optional[Frame] = None


class BroadcastSubscription(_BaseSubscription):
    """Handle onto one viewer's private slot."""

    def __init__(self, relay: "BroadcastRelay", subscription_id: int) -> None:
        super().__init__(subscription_id)
        self._relay = relay

    def recv(self, timeout: Optional[float] = None) -> Optional[Frame]:
        """
        Take the next frame from this viewer's slot.

        Args:
            timeout: Maximum seconds to wait. None = wait forever.

        Returns:
            Next frame, or None if timeout occurred.

        Raises:
            ChannelClosed: If the relay is closed and the slot is empty,
                or this subscription was closed
        """
        return self._relay._recv(self.id, timeout)

    def _release(self) -> None:
        self._relay._unsubscribe(self.id)


class BroadcastRelay:
    """
    Per-viewer capacity-1 slots, filled on each publish.

    A publish fills every free slot and skips viewers whose slot is still
    occupied. The producer only waits (or gets Full) when no slot is free,
    so a stalled viewer misses frames instead of freezing the feed.

    While nobody is subscribed, frames go into a holding slot that the
    first subscriber takes over, so backpressure behaves the same with
    zero viewers as with one.

    Example:
        relay = BroadcastRelay()
        a = relay.subscribe()
        b = relay.subscribe()

        relay.publish_blocking(frame)
        assert a.recv() is b.recv()
    """

    mode = "broadcast"

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._slots: Dict[int, _Slot] = {}
        self._holding = _Slot()
        self._ids = itertools.count(1)
        self._closed: bool = False

        self._published: int = 0
        self._dropped_full: int = 0
        self._delivered: int = 0

    @property
    def viewer_count(self) -> int:
        with self._cond:
            return len(self._slots)

    @property
    def closed(self) -> bool:
        return self._closed

    def _targets(self) -> List[_Slot]:
        return list(self._slots.values()) or [self._holding]

    def _backlogged(self) -> bool:
        return all(slot.frame is not None for slot in self._targets())

    def _fill(self, frame: Frame) -> None:
        targets = self._targets()
        skipped = 0
        for slot in targets:
            if slot.frame is None:
                slot.frame = frame
            else:
                skipped += 1

        if skipped:
            logger.debug(f"Frame skipped for {skipped} of {len(targets)} backlogged viewers")
        self._published += 1
        self._cond.notify_all()

    def publish_blocking(self, frame: Frame) -> None:
        """
        Place frame in every free slot, waiting while none is free.

        Viewers whose slot is still occupied skip this frame.

        Raises:
            ChannelClosed: If the relay is (or becomes) closed
        """
        with self._cond:
            while not self._closed and self._backlogged():
                self._cond.wait()
            if self._closed:
                raise ChannelClosed(frame)

            self._fill(frame)

    def publish_nonblocking(self, frame: Frame) -> None:
        """
        Place frame in every free slot; occupied slots keep their frame.

        Raises:
            ChannelClosed: If the relay is closed
            Full: If no slot was free
        """
        with self._cond:
            if self._closed:
                raise ChannelClosed(frame)
            if self._backlogged():
                self._dropped_full += 1
                raise Full(frame)

            self._fill(frame)

    def is_backlogged(self) -> bool:
        """True iff no slot is free, so a publish would wait or be Full."""
        with self._cond:
            return self._backlogged()

    def subscribe(self) -> BroadcastSubscription:
        with self._cond:
            subscription_id = next(self._ids)
            slot = _Slot()
            if not self._slots and self._holding.frame is not None:
                slot.frame = self._holding.frame
                self._holding.frame = None
            self._slots[subscription_id] = slot
            self._cond.notify_all()
        return BroadcastSubscription(self, subscription_id)

    def close(self) -> None:
        """Shut the relay down and wake every waiter."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()
        logger.info("Broadcast relay closed")

    def metrics(self) -> dict:
        with self._cond:
            return {
                "mode": self.mode,
                "viewers": len(self._slots),
                "backlogged": self._backlogged(),
                "published": self._published,
                "dropped_full": self._dropped_full,
                "delivered": self._delivered,
            }

    def _recv(self, subscription_id: int, timeout: Optional[float]) -> Optional[Frame]:
        deadline = None if timeout is None else time.monotonic() + timeout

        with self._cond:
            slot = self._slots.get(subscription_id)
            if slot is None:
                raise ChannelClosed()

            while slot.frame is None:
                if self._closed or self._slots.get(subscription_id) is not slot:
                    raise ChannelClosed()
                if deadline is None:
                    self._cond.wait()
                else:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return None
                    self._cond.wait(remaining)

            frame = slot.frame
            slot.frame = None
            self._delivered += 1
            self._cond.notify_all()
            return frame

    def _unsubscribe(self, subscription_id: int) -> None:
        with self._cond:
            slot = self._slots.pop(subscription_id, None)
            if slot is not None and slot.frame is not None:
                logger.debug(f"Discarding undelivered frame of viewer {subscription_id}")
            self._cond.notify_all()


def create_relay(mode: RelayMode = "broadcast") -> FrameRelay:
    """
    Build a relay for the given delivery mode.

    Raises:
        ValueError: If mode is unknown
    """
    if mode == "broadcast":
        return BroadcastRelay()
    elif mode == "shared":
        return SharedRelay()
    else:
        raise ValueError(f"Unknown relay mode: {mode}")
