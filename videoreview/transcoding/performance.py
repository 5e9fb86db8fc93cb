"""
Per-source encode latency tracking.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class PerformanceSample:
    average_seconds: float
    samples: int = 1


class PerformanceTracker:
    """
    Running average of wall-clock encode time per storage key.

    The first sample is taken as-is; each later sample is averaged with
    the previous value, so recent encodes dominate.
    """

    def __init__(self):
        self._samples: Dict[str, PerformanceSample] = {}

    def record(self, storage_key: str, seconds: float) -> float:
        sample = self._samples.get(storage_key)
        if sample is None:
            sample = PerformanceSample(average_seconds=seconds)
            self._samples[storage_key] = sample
        else:
            sample.average_seconds = (sample.average_seconds + seconds) / 2
            sample.samples += 1
        return sample.average_seconds

    def average(self, storage_key: str) -> Optional[float]:
        sample = self._samples.get(storage_key)
        return sample.average_seconds if sample else None

    def forget(self, storage_key: str) -> None:
        self._samples.pop(storage_key, None)

    def get_stats(self) -> Dict[str, Any]:
        return {
            key: {"average_seconds": round(s.average_seconds, 3), "samples": s.samples}
            for key, s in self._samples.items()
        }
