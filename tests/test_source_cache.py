"""
Tests for the local source file cache.

Downloads go through httpx.MockTransport, so nothing leaves the process.
"""

import asyncio
from pathlib import Path

import httpx
import pytest

from videoreview.cache import SourceCache, cache_filename
from videoreview.errors import CacheIOError, DownloadError

from conftest import FakeClock, fake_sign_url


def make_cache(tmp_path: Path, handler, max_bytes: int = 10_000, clock=None, **kwargs) -> SourceCache:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SourceCache(
        str(tmp_path / "sources"),
        max_bytes,
        fake_sign_url,
        http_client=client,
        clock=clock or FakeClock(),
        **kwargs,
    )


def serve(size: int = 400, status: int = 200):
    """Handler returning ``size`` bytes for every request, counting requests."""
    requests = []

    async def handler(request: httpx.Request) -> httpx.Response:
        requests.append(str(request.url))
        await asyncio.sleep(0.01)
        return httpx.Response(status, content=b"v" * size)

    handler.requests = requests
    return handler


class TestCacheFilename:

    def test_hash_plus_extension(self):
        name = cache_filename("projects/Client/Final Cut.MOV")
        stem, ext = name.rsplit(".", 1)
        assert len(stem) == 64
        assert ext == "mov"

    def test_deterministic(self):
        assert cache_filename("a/b.mp4") == cache_filename("a/b.mp4")
        assert cache_filename("a/b.mp4") != cache_filename("a/c.mp4")

    def test_missing_extension(self):
        assert cache_filename("raw-upload").endswith(".video")


class TestDownload:
    """Test downloading into the cache."""

    @pytest.mark.asyncio
    async def test_downloads_once_and_serves_locally(self, tmp_path):
        handler = serve(400)
        cache = make_cache(tmp_path, handler)

        path = await cache.ensure_local("demo.mp4")

        assert path is not None
        assert path.read_bytes() == b"v" * 400
        assert path.name == cache_filename("demo.mp4")
        assert handler.requests == [fake_sign_url("demo.mp4")]

        assert await cache.ensure_local("demo.mp4") == path
        assert len(handler.requests) == 1
        await cache.close()

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_download(self, tmp_path):
        handler = serve(400)
        cache = make_cache(tmp_path, handler)

        paths = await asyncio.gather(*(cache.ensure_local("demo.mp4") for _ in range(5)))

        assert len(handler.requests) == 1
        assert len(set(paths)) == 1
        assert cache.total_bytes == 400
        assert not cache.is_downloading("demo.mp4")
        await cache.close()

    @pytest.mark.asyncio
    async def test_http_error_leaves_no_files(self, tmp_path):
        cache = make_cache(tmp_path, serve(10, status=403))

        with pytest.raises(DownloadError) as exc_info:
            await cache.ensure_local("demo.mp4")

        assert exc_info.value.details["status"] == 403
        assert list((tmp_path / "sources").iterdir()) == []
        assert cache.entries() == []
        await cache.close()

    @pytest.mark.asyncio
    async def test_transport_error_becomes_download_error(self, tmp_path):
        async def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        cache = make_cache(tmp_path, handler)
        with pytest.raises(DownloadError):
            await cache.ensure_local("demo.mp4")
        assert list((tmp_path / "sources").iterdir()) == []
        await cache.close()

    @pytest.mark.asyncio
    async def test_timeout_becomes_download_error(self, tmp_path):
        async def handler(request):
            await asyncio.sleep(1)
            return httpx.Response(200, content=b"late")

        cache = make_cache(tmp_path, handler, download_timeout=0.05)
        with pytest.raises(DownloadError, match="timed out"):
            await cache.ensure_local("demo.mp4")
        await cache.close()

    @pytest.mark.asyncio
    async def test_disabled_cache_never_downloads(self, tmp_path):
        handler = serve(400)
        cache = make_cache(tmp_path, handler, enabled=False)

        assert await cache.ensure_local("demo.mp4") is None
        assert handler.requests == []
        await cache.close()

    @pytest.mark.asyncio
    async def test_unwritable_cache_dir_disables_caching(self, tmp_path, caplog):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        handler = serve(400)
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

        cache = SourceCache(str(blocker / "sources"), 10_000, fake_sign_url, http_client=client)

        assert cache.enabled is False
        assert "local caching disabled" in caplog.text
        assert await cache.ensure_local("demo.mp4") is None
        assert handler.requests == []
        await client.aclose()

    @pytest.mark.asyncio
    async def test_file_larger_than_cache_is_not_kept(self, tmp_path):
        cache = make_cache(tmp_path, serve(400), max_bytes=100)

        assert await cache.ensure_local("huge.mp4") is None
        assert cache.total_bytes == 0
        await cache.close()


class TestEviction:
    """Test LRU eviction down to the target ratio."""

    @pytest.mark.asyncio
    async def test_evicts_least_recently_used_to_target(self, tmp_path):
        clock = FakeClock()
        cache = make_cache(tmp_path, serve(400), max_bytes=1000, clock=clock)

        await cache.ensure_local("a.mp4")
        clock.advance(1)
        await cache.ensure_local("b.mp4")
        clock.advance(1)
        assert cache.lookup("a.mp4") is not None  # a is now more recent than b
        clock.advance(1)
        await cache.ensure_local("c.mp4")

        assert cache.total_bytes == 800
        assert cache.total_bytes <= cache.max_bytes * cache.target_ratio
        assert cache.lookup("b.mp4") is None
        assert cache.lookup("a.mp4") is not None
        assert cache.lookup("c.mp4") is not None
        await cache.close()

    @pytest.mark.asyncio
    async def test_under_limit_evicts_nothing(self, tmp_path):
        cache = make_cache(tmp_path, serve(400), max_bytes=1000)
        await cache.ensure_local("a.mp4")
        await cache.ensure_local("b.mp4")
        assert cache.enforce_limit() == 0
        assert cache.total_bytes == 800
        await cache.close()

    @pytest.mark.asyncio
    async def test_failed_delete_moves_on(self, tmp_path, monkeypatch):
        clock = FakeClock()
        cache = make_cache(tmp_path, serve(400), max_bytes=1000, clock=clock)
        await cache.ensure_local("a.mp4")
        clock.advance(1)
        await cache.ensure_local("b.mp4")
        clock.advance(1)

        remove = cache._remove

        def stuck_on_a(name, entry):
            if entry.storage_key == "a.mp4":
                raise CacheIOError("permission denied")
            remove(name, entry)

        monkeypatch.setattr(cache, "_remove", stuck_on_a)
        await cache.ensure_local("c.mp4")

        assert cache.lookup("a.mp4") is not None
        assert cache.lookup("b.mp4") is None
        assert cache.total_bytes == 800
        await cache.close()


class TestIndex:
    """Test the on-disk index."""

    def test_load_existing_indexes_files_and_drops_partials(self, tmp_path):
        cache_dir = tmp_path / "sources"
        cache_dir.mkdir()
        (cache_dir / cache_filename("a.mp4")).write_bytes(b"x" * 10)
        (cache_dir / cache_filename("b.mov")).write_bytes(b"x" * 20)
        (cache_dir / (cache_filename("c.mp4") + ".part")).write_bytes(b"x" * 5)

        cache = SourceCache(str(cache_dir), 1000, fake_sign_url)

        assert cache.load_existing() == 2
        assert cache.total_bytes == 30
        assert not (cache_dir / (cache_filename("c.mp4") + ".part")).exists()
        assert cache.lookup("a.mp4") == cache_dir / cache_filename("a.mp4")

    def test_lookup_drops_entry_for_vanished_file(self, tmp_path):
        cache_dir = tmp_path / "sources"
        cache_dir.mkdir()
        path = cache_dir / cache_filename("a.mp4")
        path.write_bytes(b"x" * 10)

        cache = SourceCache(str(cache_dir), 1000, fake_sign_url)
        cache.load_existing()
        path.unlink()

        assert cache.lookup("a.mp4") is None
        assert cache.entries() == []
