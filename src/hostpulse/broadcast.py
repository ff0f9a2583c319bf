"""Keep-latest broadcast channels between the sampler thread and asyncio."""

import asyncio
import logging
import threading
from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Generic, TypeVar

from hostpulse.models import CpuSnapshot, MemorySnapshot, ProcessSnapshot

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ChannelClosed(Exception):
    """The channel was closed and no buffered values remain."""


class Lagged(Exception):
    """The subscriber fell behind and values were dropped."""

    def __init__(self, skipped: int) -> None:
        super().__init__(f"subscriber lagged, {skipped} value(s) skipped")
        self.skipped = skipped


class Subscription(Generic[T]):
    """
    One subscriber's independent view of a channel.

    Values are delivered on the event loop that created the subscription.
    Only the most recent ``capacity`` values are retained; older unread
    values are evicted and reported once through :class:`Lagged`.
    """

    def __init__(
        self,
        channel: "BroadcastChannel[T]",
        loop: asyncio.AbstractEventLoop,
        capacity: int,
    ) -> None:
        self._channel = channel
        self._loop = loop
        self._capacity = capacity
        self._buffer: deque[T] = deque()
        self._skipped = 0
        self._closed = False
        self._ready = asyncio.Event()

    @property
    def channel(self) -> "BroadcastChannel[T]":
        """Get the channel this subscription reads from."""
        return self._channel

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        """Get the event loop values are delivered on."""
        return self._loop

    @property
    def pending(self) -> int:
        """Number of values buffered and not yet received."""
        return len(self._buffer)

    def _deliver(self, value: T) -> None:
        # Runs on the subscriber's event loop
        if len(self._buffer) >= self._capacity:
            self._buffer.popleft()
            self._skipped += 1
        self._buffer.append(value)
        self._ready.set()

    def _close(self) -> None:
        self._closed = True
        self._ready.set()

    async def recv(self) -> T:
        """
        Wait for the next value.

        Raises:
            Lagged: Values were evicted since the previous receive. The next
                call returns the oldest value still retained.
            ChannelClosed: The channel is closed and the buffer is empty.
        """
        while True:
            if self._skipped:
                skipped, self._skipped = self._skipped, 0
                raise Lagged(skipped)
            if self._buffer:
                return self._buffer.popleft()
            if self._closed:
                raise ChannelClosed(self._channel.name)
            self._ready.clear()
            await self._ready.wait()

    def unsubscribe(self) -> None:
        """Stop receiving values from the channel."""
        self._channel._remove(self)

    def __enter__(self) -> "Subscription[T]":
        return self

    def __exit__(self, *exc_info) -> None:
        self.unsubscribe()

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        try:
            return await self.recv()
        except ChannelClosed:
            raise StopAsyncIteration from None


class BroadcastChannel(Generic[T]):
    """
    Single-producer, multi-subscriber channel with minimal retention.

    ``publish`` may be called from any thread and never blocks on
    subscribers. A value published while nobody is subscribed is dropped,
    and a new subscriber only sees values published after it joined.
    """

    def __init__(self, name: str, capacity: int = 1) -> None:
        """
        Initialize the BroadcastChannel.

        Args:
            name: Channel name used in logs.
            capacity: Unread values retained per subscriber. Default 1.
        """
        self.name = name
        self._capacity = max(1, capacity)
        self._lock = threading.Lock()
        self._subscribers: set[Subscription[T]] = set()
        self._closed = False
        self._published = 0

    @property
    def capacity(self) -> int:
        """Get the number of unread values kept per subscriber."""
        return self._capacity

    @property
    def is_closed(self) -> bool:
        """Check if the channel has been closed."""
        return self._closed

    @property
    def published(self) -> int:
        """Total number of values published so far."""
        return self._published

    @property
    def subscriber_count(self) -> int:
        """Get the number of current subscribers."""
        with self._lock:
            return len(self._subscribers)

    def subscribe(self) -> Subscription[T]:
        """
        Subscribe from within a running event loop.

        Raises:
            RuntimeError: If there is no running event loop.
        """
        loop = asyncio.get_running_loop()
        subscription = Subscription(self, loop, self._capacity)
        with self._lock:
            if self._closed:
                subscription._close()
            else:
                self._subscribers.add(subscription)
        logger.debug("New subscriber on %s channel", self.name)
        return subscription

    def publish(self, value: T) -> int:
        """
        Offer a value to every current subscriber.

        Returns:
            The number of subscribers the value was offered to.
        """
        with self._lock:
            if self._closed:
                return 0
            self._published += 1
            subscribers = list(self._subscribers)

        delivered = 0
        for subscription in subscribers:
            try:
                subscription.loop.call_soon_threadsafe(subscription._deliver, value)
                delivered += 1
            except RuntimeError:
                # The subscriber's event loop is gone
                self._remove(subscription)
        return delivered

    def close(self) -> None:
        """Close the channel and wake every subscriber."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            subscribers = list(self._subscribers)
            self._subscribers.clear()

        for subscription in subscribers:
            try:
                subscription.loop.call_soon_threadsafe(subscription._close)
            except RuntimeError:
                pass  # Loop already closed, nothing left to wake
        logger.debug("Closed %s channel", self.name)

    def _remove(self, subscription: Subscription[T]) -> None:
        with self._lock:
            self._subscribers.discard(subscription)


@dataclass(slots=True, frozen=True)
class Channels:
    """The three telemetry channels shared by the sampler and the server."""

    cpus: BroadcastChannel[CpuSnapshot]
    ram: BroadcastChannel[MemorySnapshot]
    processes: BroadcastChannel[ProcessSnapshot]

    @classmethod
    def create(cls, capacity: int = 1) -> "Channels":
        """Create the cpus, ram and processes channels."""
        return cls(
            cpus=BroadcastChannel("cpus", capacity),
            ram=BroadcastChannel("ram", capacity),
            processes=BroadcastChannel("processes", capacity),
        )

    def __iter__(self) -> Iterator[BroadcastChannel]:
        return iter((self.cpus, self.ram, self.processes))

    def close(self) -> None:
        """Close all three channels."""
        for channel in self:
            channel.close()
