"""Tests for the broadcast channel."""

import asyncio
import threading

import pytest

from hostpulse.broadcast import BroadcastChannel, ChannelClosed, Channels, Lagged


def test_publish_without_subscribers_is_dropped():
    """Test publishing with nobody subscribed is a no-op."""
    channel: BroadcastChannel[int] = BroadcastChannel("test")

    assert channel.publish(1) == 0
    assert channel.published == 1
    assert channel.subscriber_count == 0


def test_subscribe_requires_running_loop():
    """Test subscribing outside an event loop fails loudly."""
    channel: BroadcastChannel[int] = BroadcastChannel("test")

    with pytest.raises(RuntimeError):
        channel.subscribe()


def test_capacity_minimum():
    """Test capacity is clamped to at least one value."""
    assert BroadcastChannel("test", capacity=0).capacity == 1


def test_channels_create():
    """Test the three telemetry channels are independent."""
    channels = Channels.create()

    assert [channel.name for channel in channels] == ["cpus", "ram", "processes"]
    assert channels.cpus is not channels.ram

    channels.close()
    assert all(channel.is_closed for channel in channels)


class TestSubscription:
    """Tests for Subscription delivery semantics."""

    @pytest.mark.asyncio
    async def test_receives_published_value(self):
        """Test a subscriber receives a published value."""
        channel: BroadcastChannel[str] = BroadcastChannel("test")

        with channel.subscribe() as subscription:
            assert channel.publish("hello") == 1
            assert await subscription.recv() == "hello"

    @pytest.mark.asyncio
    async def test_late_subscriber_sees_only_next_value(self):
        """Test a subscriber joining after N publications first sees N+1."""
        channel: BroadcastChannel[int] = BroadcastChannel("test")
        for value in range(5):
            channel.publish(value)

        with channel.subscribe() as subscription:
            channel.publish(5)
            assert await subscription.recv() == 5
            assert subscription.pending == 0

    @pytest.mark.asyncio
    async def test_subscribers_are_independent(self):
        """Test each subscriber has its own read position."""
        channel: BroadcastChannel[int] = BroadcastChannel("test", capacity=4)

        with channel.subscribe() as first, channel.subscribe() as second:
            channel.publish(1)
            channel.publish(2)

            assert await first.recv() == 1
            assert await first.recv() == 2
            assert await second.recv() == 1
            assert await second.recv() == 2

    @pytest.mark.asyncio
    async def test_lagging_subscriber_skips_to_latest(self):
        """Test a slow subscriber gets Lagged and then the latest value."""
        channel: BroadcastChannel[int] = BroadcastChannel("test", capacity=1)

        with channel.subscribe() as subscription:
            for value in range(3):
                channel.publish(value)
            await asyncio.sleep(0)  # Let deliveries run

            with pytest.raises(Lagged) as exc_info:
                await subscription.recv()
            assert exc_info.value.skipped == 2
            assert await subscription.recv() == 2

    @pytest.mark.asyncio
    async def test_disconnect_does_not_affect_other_subscriber(self):
        """Test one subscriber leaving leaves the other receiving in order."""
        channel: BroadcastChannel[int] = BroadcastChannel("test")
        leaving = channel.subscribe()
        staying = channel.subscribe()

        channel.publish(0)
        assert await leaving.recv() == 0
        assert await staying.recv() == 0

        leaving.unsubscribe()
        assert channel.subscriber_count == 1

        received = []
        for value in range(1, 6):
            assert channel.publish(value) == 1
            received.append(await staying.recv())
        assert received == [1, 2, 3, 4, 5]
        staying.unsubscribe()

    @pytest.mark.asyncio
    async def test_context_manager_unsubscribes(self):
        """Test leaving the with-block releases the subscription."""
        channel: BroadcastChannel[int] = BroadcastChannel("test")

        with channel.subscribe():
            assert channel.subscriber_count == 1
        assert channel.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_close_drains_then_raises(self):
        """Test buffered values are still received after close."""
        channel: BroadcastChannel[int] = BroadcastChannel("test")

        with channel.subscribe() as subscription:
            channel.publish(7)
            channel.close()

            assert await subscription.recv() == 7
            with pytest.raises(ChannelClosed):
                await subscription.recv()

    @pytest.mark.asyncio
    async def test_close_wakes_waiting_subscriber(self):
        """Test a subscriber blocked in recv() is woken by close."""
        channel: BroadcastChannel[int] = BroadcastChannel("test")

        with channel.subscribe() as subscription:
            waiter = asyncio.ensure_future(subscription.recv())
            await asyncio.sleep(0)
            channel.close()

            with pytest.raises(ChannelClosed):
                await asyncio.wait_for(waiter, timeout=1.0)

    @pytest.mark.asyncio
    async def test_subscribe_after_close(self):
        """Test subscribing to a closed channel ends immediately."""
        channel: BroadcastChannel[int] = BroadcastChannel("test")
        channel.close()

        with channel.subscribe() as subscription:
            assert [value async for value in subscription] == []
        assert channel.publish(1) == 0

    @pytest.mark.asyncio
    async def test_async_iteration(self):
        """Test async iteration stops when the channel closes."""
        channel: BroadcastChannel[int] = BroadcastChannel("test", capacity=3)

        with channel.subscribe() as subscription:
            for value in (1, 2, 3):
                channel.publish(value)
            channel.close()

            assert [value async for value in subscription] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_publish_from_another_thread(self):
        """Test values published from a worker thread reach the event loop."""
        channel: BroadcastChannel[int] = BroadcastChannel("test", capacity=10)

        with channel.subscribe() as subscription:
            worker = threading.Thread(
                target=lambda: [channel.publish(value) for value in range(10)]
            )
            worker.start()
            worker.join()

            received = [await asyncio.wait_for(subscription.recv(), 1.0) for _ in range(10)]
            assert received == list(range(10))

    @pytest.mark.asyncio
    async def test_same_order_for_all_subscribers(self):
        """Test all subscribers observe values in the same relative order."""
        channel: BroadcastChannel[int] = BroadcastChannel("test", capacity=1)

        with channel.subscribe() as fast, channel.subscribe() as slow:
            fast_seen, slow_seen = [], []
            for value in range(6):
                channel.publish(value)
                fast_seen.append(await fast.recv())
                if value % 3 == 2:
                    try:
                        slow_seen.append(await slow.recv())
                    except Lagged:
                        slow_seen.append(await slow.recv())

            assert fast_seen == list(range(6))
            assert slow_seen == [2, 5]
