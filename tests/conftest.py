"""
VideoReview Test Configuration and Fixtures

Provides:
- Fake ffmpeg/ffprobe processes (no binaries needed)
- A fake segment encoder that records every encode it runs
- A fully wired job manager and API client built over those fakes
- A stubbed S3 client (botocore Stubber, no network)
"""

import asyncio
import time
from pathlib import Path
from typing import AsyncIterator, Callable, Generator, List, Optional, Set, Tuple

import boto3
import pytest
import pytest_asyncio
from botocore.client import Config as BotoConfig
from botocore.stub import Stubber
from fastapi.testclient import TestClient

# Add project root to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from videoreview.api import create_app
from videoreview.cache import MetadataCache, SegmentCache, SourceCache
from videoreview.config import VideoReviewConfig
from videoreview.errors import EncodeError
from videoreview.hardware import HWAccelType
from videoreview.jobs import SegmentJobManager
from videoreview.storage import StorageClient
from videoreview.transcoding.encoders import build_profile
from videoreview.transcoding.models import AudioStreamInfo, SegmentJobKey, VideoMetadata, VideoStreamInfo
from videoreview.transcoding.performance import PerformanceTracker
from videoreview.transcoding.playlist import PlaylistBuilder


TEST_BUCKET = "reviews"
TEST_KEY = "demo.mp4"


# =============================================================================
# FAKES
# =============================================================================

class FakeClock:
    """Manually advanced clock for TTL and LRU tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProcess:
    """
    Stands in for an asyncio subprocess.

    With ``finished=False`` stdout never reaches EOF, like an ffmpeg that
    is still encoding.
    """

    def __init__(
        self,
        stdout: bytes = b"",
        stderr: bytes = b"",
        returncode: int = 0,
        finished: bool = True
    ):
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.stdout.feed_data(stdout)
        self.stderr.feed_data(stderr)
        if finished:
            self.stdout.feed_eof()
            self.stderr.feed_eof()
        self._exit_code = returncode
        self.returncode: Optional[int] = None
        self.killed = False

    async def wait(self) -> int:
        if self.returncode is None:
            self.returncode = self._exit_code
        return self.returncode

    async def communicate(self) -> Tuple[bytes, bytes]:
        out = await self.stdout.read()
        err = await self.stderr.read()
        await self.wait()
        return out, err

    def kill(self) -> None:
        self.killed = True
        self.returncode = -9


class FakeProcessFactory:
    """Replacement for asyncio.create_subprocess_exec that records commands."""

    def __init__(self, **process_kwargs):
        self.process_kwargs = process_kwargs
        self.calls: List[List[str]] = []
        self.processes: List[FakeProcess] = []

    async def __call__(self, *cmd, **kwargs) -> FakeProcess:
        self.calls.append(list(cmd))
        process = FakeProcess(**self.process_kwargs)
        self.processes.append(process)
        return process


class FakeProbe:
    """MediaProbe replacement returning fixed metadata."""

    def __init__(self, metadata: Optional[VideoMetadata] = None, error: Optional[Exception] = None):
        self.metadata = metadata
        self.error = error
        self.calls: List[str] = []

    async def get_metadata(self, source: str) -> VideoMetadata:
        self.calls.append(source)
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.metadata


def segment_payload(key: SegmentJobKey) -> bytes:
    """Deterministic fake MPEG-TS bytes for a segment."""
    return f"TS|{key.storage_key}|{key.segment_index}|{key.segment_duration:g}|".encode() * 64


class FakeEncoder:
    """
    SegmentEncoder replacement.

    Every encode is recorded. Set ``gate`` to an asyncio.Event to hold
    encodes until the test releases them.
    """

    def __init__(self):
        self.performance = PerformanceTracker()
        self.calls: List[SegmentJobKey] = []
        self.streams: List[Tuple[str, float, Optional[float]]] = []
        self.fail_indices: Set[int] = set()
        self.gate: Optional[asyncio.Event] = None

    def encodes_of(self, index: int) -> int:
        return sum(1 for key in self.calls if key.segment_index == index)

    async def encode_segment(self, key: SegmentJobKey) -> AsyncIterator[bytes]:
        self.calls.append(key)
        if self.gate is not None:
            await self.gate.wait()
        if key.segment_index in self.fail_indices:
            raise EncodeError(f"ffmpeg exited with code 1 for {key}", details={"returncode": 1})

        data = segment_payload(key)
        half = len(data) // 2
        yield data[:half]
        await asyncio.sleep(0)
        yield data[half:]

    async def open_stream(
        self,
        storage_key: str,
        start_time: float = 0,
        duration: Optional[float] = None
    ) -> AsyncIterator[bytes]:
        self.streams.append((storage_key, start_time, duration))

        async def body():
            yield b"MP4-INIT"
            yield b"MP4-FRAGMENT"

        return body()


def fake_sign_url(storage_key: str) -> str:
    return f"https://storage.test/{TEST_BUCKET}/{storage_key}?X-Amz-Signature=test"


def sample_metadata(duration: float = 95.0, audio: bool = True) -> VideoMetadata:
    return VideoMetadata(
        duration=duration,
        bitrate=4_000_000,
        size=47_500_000,
        format="mov,mp4,m4a,3gp,3g2,mj2",
        video=VideoStreamInfo(codec="h264", width=1920, height=1080, fps=25.0, bitrate=3_800_000),
        audio=AudioStreamInfo(codec="aac", sample_rate=48000, channels=2, bitrate=128_000) if audio else None,
    )


async def collect(body: AsyncIterator[bytes]) -> bytes:
    return b"".join([chunk async for chunk in body])


async def settle(rounds: int = 5) -> None:
    """Let done-callbacks and freshly created tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def build_manager(
    config: VideoReviewConfig,
    storage: StorageClient,
    probe: FakeProbe,
    encoder: FakeEncoder,
    clock: Callable[[], float] = time.monotonic
) -> SegmentJobManager:
    cc = config.cache
    return SegmentJobManager(
        config=config,
        storage=storage,
        metadata=MetadataCache(probe, fake_sign_url, ttl_seconds=cc.metadata_ttl_seconds, clock=clock),
        source_cache=SourceCache(
            cc.local_cache_dir,
            cc.max_local_cache_bytes,
            fake_sign_url,
            enabled=cc.local_cache_enabled,
        ),
        encoder=encoder,
        segment_cache=SegmentCache(cc.segment_ttl_seconds, clock=clock),
        playlist_builder=PlaylistBuilder(default_segment_duration=config.transcoding.segment_duration),
        profile=build_profile(HWAccelType.SOFTWARE),
    )


# =============================================================================
# PYTEST FIXTURES
# =============================================================================

@pytest.fixture
def test_config(tmp_path) -> VideoReviewConfig:
    """Configuration with a temp cache directory and no local source caching."""
    return VideoReviewConfig(
        storage={
            "bucket": TEST_BUCKET,
            "region": "us-east-1",
            "access_key_id": "test-access-key",
            "secret_access_key": "test-secret-key",
        },
        cache={
            "local_cache_dir": str(tmp_path / "cache"),
            "local_cache_enabled": False,
        },
        logging={"level": "WARNING"},
    )


@pytest.fixture
def s3_client():
    """Configured like StorageClient.client: SigV4 with path-style addressing."""
    return boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="test-access-key",
        aws_secret_access_key="test-secret-key",
        config=BotoConfig(signature_version="s3v4", s3={"addressing_style": "path"}),
    )


@pytest.fixture
def s3_stubber(s3_client) -> Generator[Stubber, None, None]:
    with Stubber(s3_client) as stubber:
        yield stubber


@pytest.fixture
def storage(test_config, s3_client) -> StorageClient:
    return StorageClient(test_config.storage, client=s3_client)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe(sample_metadata())


@pytest.fixture
def encoder() -> FakeEncoder:
    return FakeEncoder()


@pytest.fixture
def process_factory() -> FakeProcessFactory:
    return FakeProcessFactory(stdout=b"\x47" * 188 * 10)


@pytest_asyncio.fixture
async def manager(test_config, storage, probe, encoder, clock) -> AsyncIterator[SegmentJobManager]:
    """Job manager over fakes; background work is cancelled on teardown."""
    job_manager = build_manager(test_config, storage, probe, encoder, clock=clock)
    yield job_manager
    await job_manager.stop()


@pytest.fixture
def api_client(test_config, storage, probe, encoder) -> Generator[TestClient, None, None]:
    """
    Test client for API endpoints.
    The lifespan starts and stops the injected job manager.
    """
    job_manager = build_manager(test_config, storage, probe, encoder)
    app = create_app(test_config, job_manager=job_manager)
    with TestClient(app) as client:
        yield client


# =============================================================================
# MARKERS
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
