"""
HLS playlist generation for on-demand segments.

Boundaries are computed with Decimal arithmetic so the per-segment
durations always add up to the probed source duration; the final
segment absorbs the remainder.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_CEILING
from typing import List, Optional, Tuple, Union
from urllib.parse import quote

Number = Union[int, float, str, Decimal]

DEFAULT_BASE_PATH = "/api/video"


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def count_segments(total_duration: Number, segment_duration: Number) -> int:
    """Number of segments needed to cover the whole source."""
    total = to_decimal(total_duration)
    seg = to_decimal(segment_duration)
    if total <= 0 or seg <= 0:
        return 0
    return int((total / seg).to_integral_value(rounding=ROUND_CEILING))


def split_segments(total_duration: Number, segment_duration: Number) -> List[Tuple[int, Decimal, Decimal]]:
    """Return (index, start, duration) for every segment of [0, total)."""
    total = to_decimal(total_duration)
    seg = to_decimal(segment_duration)
    if total <= 0:
        raise ValueError(f"total duration must be positive, got {total_duration}")
    if seg <= 0:
        raise ValueError(f"segment duration must be positive, got {segment_duration}")

    count = count_segments(total, seg)
    segments = []
    for index in range(count):
        start = seg * index
        duration = min(seg, total - start)
        segments.append((index, start, duration))
    return segments


@dataclass
class PlaylistSegment:
    index: int
    start: Decimal
    duration: Decimal
    url: str

    @property
    def start_seconds(self) -> float:
        return float(self.start)

    @property
    def duration_seconds(self) -> float:
        return float(self.duration)


@dataclass
class Playlist:
    manifest: str
    target_duration: int
    segments: List[PlaylistSegment] = field(default_factory=list)

    @property
    def total_duration(self) -> Decimal:
        return sum((s.duration for s in self.segments), Decimal(0))


class PlaylistBuilder:
    """Builds VOD media playlists whose segment URLs hit the segment endpoint."""

    def __init__(self, base_path: str = DEFAULT_BASE_PATH, default_segment_duration: Number = 10):
        self.base_path = base_path.rstrip("/")
        self.default_segment_duration = to_decimal(default_segment_duration)

    def segment_url(self, storage_key: str, index: int, segment_duration: Optional[Number] = None) -> str:
        """Stable URL for one segment, addressed by storage key and index."""
        url = f"{self.base_path}/{quote(storage_key, safe='')}/segment/{index}"
        if segment_duration is not None:
            seg = to_decimal(segment_duration)
            if seg != self.default_segment_duration:
                url += f"?segmentDuration={seg.normalize():f}"
        return url

    def build(self, storage_key: str, total_duration: Number, segment_duration: Number) -> Playlist:
        """Split the source into segments and render the m3u8 manifest."""
        parts = split_segments(total_duration, segment_duration)
        segments = [
            PlaylistSegment(
                index=index,
                start=start,
                duration=duration,
                url=self.segment_url(storage_key, index, segment_duration),
            )
            for index, start, duration in parts
        ]

        longest = max(s.duration for s in segments)
        target_duration = int(longest.to_integral_value(rounding=ROUND_CEILING))

        lines = [
            "#EXTM3U",
            "#EXT-X-VERSION:3",
            f"#EXT-X-TARGETDURATION:{target_duration}",
            "#EXT-X-MEDIA-SEQUENCE:0",
            "#EXT-X-PLAYLIST-TYPE:VOD",
        ]
        for segment in segments:
            lines.append(f"#EXTINF:{segment.duration:.3f},")
            lines.append(segment.url)
        lines.append("#EXT-X-ENDLIST")

        return Playlist(
            manifest="\n".join(lines) + "\n",
            target_duration=target_duration,
            segments=segments,
        )
