"""
Core data types for frame-level performance monitoring.

Immutable records shared by the frame tracker, memory profiler, issue
detector, context builder and analyzer, plus the millisecond clock every
time-dependent component defaults to.
"""

import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

_CLOCK_ORIGIN = time.perf_counter()

Clock = Callable[[], float]


def performance_now() -> float:
    """Monotonic milliseconds since this module was imported."""
    return (time.perf_counter() - _CLOCK_ORIGIN) * 1000.0


class IssueType(str, Enum):
    """Kinds of performance disruption."""

    STUTTER = "stutter"
    LOW_FPS = "low_fps"
    MEMORY_PRESSURE = "memory_pressure"


class IssueSeverity(str, Enum):
    """Severity of a detected performance issue."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class MemoryTrend(str, Enum):
    """Direction of memory usage over the most recent readings."""

    INCREASING = "increasing"
    STABLE = "stable"
    DECREASING = "decreasing"


@dataclass(frozen=True)
class FrameSample:
    """A single recorded frame."""

    timestamp: float
    frame_time: float
    delta_time: float
    fps: float


@dataclass(frozen=True)
class MemoryReading:
    """A single memory usage sample."""

    usage: float  # 0-1 ratio of the memory ceiling
    timestamp: float


@dataclass(frozen=True)
class PerformanceMetrics:
    """Composite performance snapshot."""

    current_fps: float = 60.0
    average_frame_time: float = 16.67
    memory_usage: float = 0.0
    stutter_count: int = 0
    last_stutter_time: float = 0.0
    performance_score: float = 100.0  # 0-100

    def to_dict(self) -> dict[str, Any]:
        """Convert metrics to dictionary for serialization."""
        return asdict(self)


@dataclass(frozen=True)
class PerformanceIssue:
    """A detected stutter, low-FPS or memory-pressure event."""

    type: IssueType
    severity: IssueSeverity
    timestamp: float
    duration: float = 0.0
    metrics: PerformanceMetrics | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert issue to dictionary for serialization."""
        data = asdict(self)
        data["type"] = self.type.value
        data["severity"] = self.severity.value
        return data


__all__ = [
    "Clock",
    "performance_now",
    "IssueType",
    "IssueSeverity",
    "MemoryTrend",
    "FrameSample",
    "MemoryReading",
    "PerformanceMetrics",
    "PerformanceIssue",
]
