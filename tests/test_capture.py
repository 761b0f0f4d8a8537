import asyncio
import random
import threading

import pytest

from l4scan.tools.network.capture import (
    EPHEMERAL_PORT_MAX,
    EPHEMERAL_PORT_MIN,
    EphemeralPortPool,
    FrameBroadcaster,
    PacketCapture,
)
from l4scan.utils.exceptions import CaptureUnavailable, ScanError


class TestFrameBroadcaster:
    """Test fan-out of captured frames to probe subscriptions."""

    @pytest.mark.asyncio
    async def test_frames_routed_by_predicate(self):
        broadcaster = FrameBroadcaster()
        evens = broadcaster.subscribe(lambda frame: frame[0] % 2 == 0)
        odds = broadcaster.subscribe(lambda frame: frame[0] % 2 == 1)

        for value in range(4):
            broadcaster.publish(bytes([value]))

        await asyncio.sleep(0)
        assert [evens.queue.get_nowait() for _ in range(2)] == [b"\x00", b"\x02"]
        assert [odds.queue.get_nowait() for _ in range(2)] == [b"\x01", b"\x03"]

    @pytest.mark.asyncio
    async def test_same_frame_to_several_subscribers(self):
        broadcaster = FrameBroadcaster()
        first = broadcaster.subscribe(lambda frame: True)
        second = broadcaster.subscribe(lambda frame: True)

        broadcaster.publish(b"frame")
        await asyncio.sleep(0)

        assert first.queue.get_nowait() == b"frame"
        assert second.queue.get_nowait() == b"frame"

    @pytest.mark.asyncio
    async def test_unsubscribed_probe_gets_nothing(self):
        broadcaster = FrameBroadcaster()
        subscription = broadcaster.subscribe(lambda frame: True)
        broadcaster.unsubscribe(subscription)

        broadcaster.publish(b"late")
        await asyncio.sleep(0)

        assert subscription.queue.empty()
        assert len(broadcaster) == 0

    @pytest.mark.asyncio
    async def test_unsubscribe_twice_is_harmless(self):
        broadcaster = FrameBroadcaster()
        subscription = broadcaster.subscribe(lambda frame: True)
        broadcaster.unsubscribe(subscription)
        broadcaster.unsubscribe(subscription)
        assert len(broadcaster) == 0

    @pytest.mark.asyncio
    async def test_publish_from_sniffer_thread(self):
        """Frames published on another thread reach the loop's queue."""
        broadcaster = FrameBroadcaster()
        subscription = broadcaster.subscribe(lambda frame: True)

        thread = threading.Thread(
            target=lambda: [broadcaster.publish(bytes([i])) for i in range(50)]
        )
        thread.start()
        thread.join()

        frames = []
        for _ in range(50):
            frames.append(await asyncio.wait_for(subscription.queue.get(), 1.0))
        assert frames == [bytes([i]) for i in range(50)]


class TestEphemeralPortPool:
    """Test ephemeral source port allocation."""

    def test_ports_in_dynamic_range(self):
        pool = EphemeralPortPool()
        for _ in range(200):
            port = pool.acquire()
            assert EPHEMERAL_PORT_MIN <= port < EPHEMERAL_PORT_MAX

    def test_no_port_handed_out_twice(self):
        pool = EphemeralPortPool(low=50000, high=50010, rng=random.Random(1))
        ports = [pool.acquire() for _ in range(10)]
        assert sorted(ports) == list(range(50000, 50010))

    def test_exhaustion(self):
        pool = EphemeralPortPool(low=50000, high=50002)
        pool.acquire()
        pool.acquire()
        with pytest.raises(ScanError):
            pool.acquire()

    def test_release_returns_port(self):
        pool = EphemeralPortPool(low=50000, high=50001)
        port = pool.acquire()
        pool.release(port)
        assert pool.in_use == set()
        assert pool.acquire() == port


class TestPacketCapture:
    """Test opening of the scapy capture handle."""

    def test_permission_error_becomes_capture_unavailable(self, monkeypatch):
        from l4scan.tools.network import capture

        def refuse(**kwargs):
            raise PermissionError(1, "Operation not permitted")

        monkeypatch.setattr(capture.conf, "L2listen", refuse)

        with pytest.raises(CaptureUnavailable, match="eth0"):
            PacketCapture("eth0", "tcp", lambda frame: None).open()

    def test_frames_forwarded_as_bytes(self):
        received = []
        handle = PacketCapture("eth0", "tcp", received.append)

        class FakePacket:
            def __bytes__(self):
                return b"\x01\x02"

        handle._handle(FakePacket())
        assert received == [b"\x01\x02"]
