"""
Tests for the segment and metadata caches.
"""

import asyncio

import pytest

from videoreview.cache import MetadataCache, SegmentCache, TTLCache
from videoreview.errors import ProbeError
from videoreview.transcoding.models import SegmentJobKey

from conftest import FakeClock, FakeProbe, fake_sign_url, sample_metadata


class TestTTLCache:
    """Test fixed time-based expiry."""

    def test_entry_expires_after_ttl(self):
        clock = FakeClock()
        cache = TTLCache(60, clock=clock)
        cache.put("a", 1)

        clock.advance(59.9)
        assert cache.get("a") == 1

        clock.advance(0.1)
        assert cache.get("a") is None
        assert "a" not in cache
        assert len(cache) == 0

    def test_reads_do_not_extend_lifetime(self):
        clock = FakeClock()
        cache = TTLCache(60, clock=clock)
        cache.put("a", 1)

        for _ in range(5):
            clock.advance(10)
            assert cache.get("a") == 1

        clock.advance(10)
        assert cache.get("a") is None

    def test_put_restarts_lifetime(self):
        clock = FakeClock()
        cache = TTLCache(60, clock=clock)
        cache.put("a", 1)
        clock.advance(50)
        cache.put("a", 2)
        clock.advance(50)
        assert cache.get("a") == 2

    def test_purge_expired(self):
        clock = FakeClock()
        cache = TTLCache(60, clock=clock)
        cache.put("old", 1)
        clock.advance(30)
        cache.put("new", 2)
        clock.advance(30)

        assert cache.purge_expired() == 1
        assert cache.keys() == ["new"]

    def test_hit_and_miss_counters(self):
        cache = TTLCache(60, clock=FakeClock())
        cache.put("a", 1)
        cache.get("a")
        cache.get("b")
        assert (cache.hits, cache.misses) == (1, 1)


class TestSegmentCache:
    """Test segment byte storage."""

    def test_thirty_minute_default(self):
        assert SegmentCache().ttl_seconds == 1800

    def test_expired_segment_is_not_served(self):
        clock = FakeClock()
        cache = SegmentCache(clock=clock)
        key = SegmentJobKey("demo.mp4", 3, 10)
        cache.put(key, b"segment")

        clock.advance(1799)
        assert cache.get(key) == b"segment"
        clock.advance(1)
        assert cache.get(key) is None

    def test_total_bytes_tracks_adds_and_removals(self):
        clock = FakeClock()
        cache = SegmentCache(clock=clock)
        cache.put(SegmentJobKey("a.mp4", 0, 10), b"x" * 100)
        cache.put(SegmentJobKey("a.mp4", 1, 10), b"x" * 50)
        assert cache.total_bytes == 150

        cache.put(SegmentJobKey("a.mp4", 1, 10), b"x" * 20)
        assert cache.total_bytes == 120

        cache.evict(SegmentJobKey("a.mp4", 0, 10))
        assert cache.total_bytes == 20

        clock.advance(1800)
        cache.purge_expired()
        assert cache.total_bytes == 0
        assert cache.get_stats()["entries"] == 0

    def test_segment_duration_is_part_of_key(self):
        cache = SegmentCache(clock=FakeClock())
        cache.put(SegmentJobKey("a.mp4", 1, 10), b"ten")
        assert cache.get(SegmentJobKey("a.mp4", 1, 6)) is None
        assert cache.get(SegmentJobKey("a.mp4", 1, 10.0)) == b"ten"


class TestMetadataCache:
    """Test probe caching and deduplication."""

    @pytest.mark.asyncio
    async def test_resolve_probes_once(self):
        probe = FakeProbe(sample_metadata())
        cache = MetadataCache(probe, fake_sign_url, clock=FakeClock())

        first = await cache.resolve("demo.mp4")
        second = await cache.resolve("demo.mp4")

        assert first is second
        assert probe.calls == [fake_sign_url("demo.mp4")]

    @pytest.mark.asyncio
    async def test_concurrent_resolves_share_one_probe(self):
        probe = FakeProbe(sample_metadata())
        cache = MetadataCache(probe, fake_sign_url, clock=FakeClock())

        results = await asyncio.gather(*(cache.resolve("demo.mp4") for _ in range(5)))

        assert len(probe.calls) == 1
        assert all(r.duration == 95.0 for r in results)

    @pytest.mark.asyncio
    async def test_expired_metadata_is_probed_again(self):
        clock = FakeClock()
        probe = FakeProbe(sample_metadata())
        cache = MetadataCache(probe, fake_sign_url, ttl_seconds=3600, clock=clock)

        await cache.resolve("demo.mp4")
        clock.advance(3600)
        await cache.resolve("demo.mp4")

        assert len(probe.calls) == 2

    @pytest.mark.asyncio
    async def test_probe_error_propagates_and_is_not_cached(self):
        probe = FakeProbe(error=ProbeError("ffprobe failed"))
        cache = MetadataCache(probe, fake_sign_url, clock=FakeClock())

        with pytest.raises(ProbeError):
            await cache.resolve("broken.mp4")
        assert cache.get("broken.mp4") is None

    @pytest.mark.asyncio
    async def test_has_audio(self):
        cache = MetadataCache(FakeProbe(sample_metadata(audio=False)), fake_sign_url, clock=FakeClock())
        assert await cache.has_audio("silent.mp4") is False

    @pytest.mark.asyncio
    async def test_has_audio_assumes_yes_when_probe_fails(self):
        probe = FakeProbe(error=ProbeError("ffprobe failed"))
        cache = MetadataCache(probe, fake_sign_url, clock=FakeClock())
        assert await cache.has_audio("broken.mp4") is True
