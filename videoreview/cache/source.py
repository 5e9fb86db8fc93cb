"""
Local disk cache of downloaded source files.

Files are named by the SHA-256 of the storage key plus the key's original
extension. Downloads are single-flighted per key and written to a
``.part`` file that is renamed into place only once complete, so a file
under its final name is always whole.
"""

import asyncio
import hashlib
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import aiofiles
import httpx

from ..errors import CacheIOError, DownloadError
from ..transcoding.constants import DEFAULT_SOURCE_EXTENSION, READ_CHUNK_SIZE
from .singleflight import SingleFlight

logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".part"


@dataclass
class LocalCacheEntry:
    """One cached source file."""
    storage_key: Optional[str]  # None for files found on disk at startup
    local_path: Path
    size_bytes: int
    last_accessed_at: float
    downloaded_at: float


def cache_filename(storage_key: str) -> str:
    """Deterministic, filesystem-safe name for a storage key."""
    digest = hashlib.sha256(storage_key.encode("utf-8")).hexdigest()
    ext = os.path.splitext(storage_key)[1].lower()
    return digest + (ext or DEFAULT_SOURCE_EXTENSION)


class SourceCache:
    """Bounded LRU cache of source files on local disk."""

    def __init__(
        self,
        cache_dir: str,
        max_bytes: int,
        sign_url: Callable[[str], str],
        enabled: bool = True,
        target_ratio: float = 0.8,
        download_timeout: float = 300.0,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time
    ):
        self.cache_dir = Path(cache_dir)
        self.max_bytes = max_bytes
        self.enabled = enabled
        self.target_ratio = target_ratio
        self.download_timeout = download_timeout
        self._sign_url = sign_url
        self._client = http_client
        self._owns_client = http_client is None
        self._clock = clock
        self._entries: Dict[str, LocalCacheEntry] = {}
        self._downloads: SingleFlight[str, Any] = SingleFlight("SourceCache")

        if self.enabled:
            try:
                self.cache_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.warning(
                    f"[SourceCache] Cannot create {self.cache_dir}, local caching disabled "
                    f"(encodes will read signed URLs): {e}"
                )
                self.enabled = False

    # ------------------------------------------------------------------
    # Index
    # ------------------------------------------------------------------

    @property
    def total_bytes(self) -> int:
        return sum(e.size_bytes for e in self._entries.values())

    def entries(self) -> List[LocalCacheEntry]:
        return list(self._entries.values())

    def local_path_for(self, storage_key: str) -> Path:
        return self.cache_dir / cache_filename(storage_key)

    def is_downloading(self, storage_key: str) -> bool:
        return storage_key in self._downloads

    def load_existing(self) -> int:
        """Index files left from a previous run and drop stale partial downloads."""
        if not self.enabled or not self.cache_dir.exists():
            return 0

        found = 0
        for item in self.cache_dir.iterdir():
            if not item.is_file():
                continue
            if item.name.endswith(PARTIAL_SUFFIX):
                self._discard_partial(item)
                continue
            stat = item.stat()
            self._entries[item.name] = LocalCacheEntry(
                storage_key=None,
                local_path=item,
                size_bytes=stat.st_size,
                last_accessed_at=stat.st_mtime,
                downloaded_at=stat.st_mtime,
            )
            found += 1

        if found:
            logger.info(f"[SourceCache] Indexed {found} existing file(s), {self.total_bytes / 1e6:.1f} MB")
        return found

    def lookup(self, storage_key: str) -> Optional[Path]:
        """Return the cached file for a key and mark it as recently used."""
        if not self.enabled:
            return None

        path = self.local_path_for(storage_key)
        entry = self._entries.get(path.name)

        if not path.exists():
            if entry is not None:
                logger.info(f"[SourceCache] File for {storage_key} disappeared, dropping entry")
                del self._entries[path.name]
            return None

        now = self._clock()
        if entry is None:
            entry = LocalCacheEntry(
                storage_key=storage_key,
                local_path=path,
                size_bytes=path.stat().st_size,
                last_accessed_at=now,
                downloaded_at=now,
            )
            self._entries[path.name] = entry
        entry.storage_key = storage_key
        entry.last_accessed_at = now
        return path

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    async def ensure_local(self, storage_key: str) -> Optional[Path]:
        """
        Local path for the key, downloading it if necessary.

        Returns None when local caching is disabled. Raises DownloadError
        or CacheIOError when the download fails; every caller sharing that
        download sees the same error.
        """
        if not self.enabled:
            return None

        path = self.lookup(storage_key)
        if path is not None:
            logger.debug(f"[SourceCache] Hit: {storage_key}")
            return path

        return await self._downloads.run(storage_key, lambda: self._download(storage_key))

    async def _download(self, storage_key: str) -> Optional[Path]:
        path = self.local_path_for(storage_key)
        partial = path.with_name(path.name + PARTIAL_SUFFIX)
        url = self._sign_url(storage_key)

        logger.info(f"[SourceCache] Downloading {storage_key}")
        started = time.monotonic()

        try:
            size = await asyncio.wait_for(self._fetch(url, partial), timeout=self.download_timeout)
            os.replace(partial, path)
        except DownloadError:
            self._discard_partial(partial)
            raise
        except asyncio.TimeoutError as e:
            self._discard_partial(partial)
            raise DownloadError(
                f"Download of {storage_key} timed out after {self.download_timeout:.0f}s"
            ) from e
        except httpx.HTTPError as e:
            self._discard_partial(partial)
            raise DownloadError(f"Download of {storage_key} failed: {e}") from e
        except OSError as e:
            self._discard_partial(partial)
            raise CacheIOError(f"Could not write {path}: {e}") from e
        except asyncio.CancelledError:
            self._discard_partial(partial)
            raise

        now = self._clock()
        self._entries[path.name] = LocalCacheEntry(
            storage_key=storage_key,
            local_path=path,
            size_bytes=size,
            last_accessed_at=now,
            downloaded_at=now,
        )
        elapsed = time.monotonic() - started
        logger.info(f"[SourceCache] Downloaded {storage_key}: {size / 1e6:.1f} MB in {elapsed:.1f}s")

        self.enforce_limit()

        if not path.exists():
            # Larger than the whole cache, evicted by its own maintenance pass
            return None
        return path

    async def _fetch(self, url: str, dest: Path) -> int:
        client = self._get_client()
        size = 0
        async with client.stream("GET", url) as response:
            if not response.is_success:
                raise DownloadError(
                    f"Storage returned HTTP {response.status_code}",
                    details={"status": response.status_code},
                )
            async with aiofiles.open(dest, "wb") as f:
                async for chunk in response.aiter_bytes(READ_CHUNK_SIZE):
                    await f.write(chunk)
                    size += len(chunk)
        return size

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(30.0, read=60.0),
                follow_redirects=True,
            )
        return self._client

    def _discard_partial(self, partial: Path) -> None:
        try:
            partial.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"[SourceCache] Could not remove partial file {partial}: {e}")

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------

    def _remove(self, name: str, entry: LocalCacheEntry) -> None:
        try:
            entry.local_path.unlink(missing_ok=True)
        except OSError as e:
            raise CacheIOError(f"Could not delete {entry.local_path}: {e}") from e
        self._entries.pop(name, None)

    def enforce_limit(self) -> int:
        """
        Evict least recently used files once the cache is over its maximum,
        down to ``target_ratio`` of it. A failed deletion is logged and the
        pass moves on to the next candidate.
        """
        total = self.total_bytes
        if total <= self.max_bytes:
            return 0

        target = int(self.max_bytes * self.target_ratio)
        logger.info(
            f"[SourceCache] {total / 1e6:.1f} MB exceeds {self.max_bytes / 1e6:.1f} MB, "
            f"evicting down to {target / 1e6:.1f} MB"
        )

        evicted = 0
        candidates = sorted(self._entries.items(), key=lambda item: item[1].last_accessed_at)
        for name, entry in candidates:
            if total <= target:
                break
            try:
                self._remove(name, entry)
            except CacheIOError as e:
                logger.warning(f"[SourceCache] {e.message}")
                continue
            total -= entry.size_bytes
            evicted += 1
            logger.debug(f"[SourceCache] Evicted {entry.storage_key or name}")

        logger.info(f"[SourceCache] Evicted {evicted} file(s), {total / 1e6:.1f} MB remaining")
        return evicted

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def get_stats(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "directory": str(self.cache_dir),
            "files": len(self._entries),
            "total_bytes": self.total_bytes,
            "max_bytes": self.max_bytes,
            "downloads_in_flight": len(self._downloads),
        }
