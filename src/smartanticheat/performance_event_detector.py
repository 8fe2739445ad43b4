"""
Performance event detection and classification.

The single place where stutter, low-FPS and memory-pressure signals are turned
into classified PerformanceIssue records. The monitor delegates all issue
creation here so severity rules cannot drift between call sites.
"""

from collections.abc import Mapping
from typing import Any

from .config import PerformanceThresholds, resolve_thresholds
from .performance_types import IssueSeverity, IssueType, PerformanceIssue, PerformanceMetrics


class PerformanceEventDetector:
    """
    Table-driven severity classifier and issue factory.

    | Signal             | High   | Medium | Else |
    |--------------------|--------|--------|------|
    | Stutter frame time | >500ms | >200ms | low  |
    | FPS                | <15    | <25    | low  |
    | Memory ratio       | >0.95  | >0.85  | low  |

    Cut-offs come from PerformanceThresholds and default to the table.
    """

    def __init__(self, thresholds: PerformanceThresholds | Mapping[str, Any] | None = None):
        self.thresholds = resolve_thresholds(thresholds)

    def update_thresholds(self, thresholds: PerformanceThresholds) -> None:
        self.thresholds = thresholds

    def is_stutter(self, frame_time: float) -> bool:
        return frame_time > self.thresholds.stutter_threshold

    def is_low_fps(self, fps: float) -> bool:
        return fps < self.thresholds.min_fps

    def is_memory_pressure(self, usage: float) -> bool:
        return usage > self.thresholds.memory_pressure_threshold

    def classify_stutter_severity(self, frame_time: float) -> IssueSeverity:
        if frame_time > self.thresholds.stutter_high_frame_time:
            return IssueSeverity.HIGH
        if frame_time > self.thresholds.stutter_medium_frame_time:
            return IssueSeverity.MEDIUM
        return IssueSeverity.LOW

    def classify_fps_severity(self, fps: float) -> IssueSeverity:
        if fps < self.thresholds.critical_fps_threshold:
            return IssueSeverity.HIGH
        if fps < self.thresholds.low_fps_threshold:
            return IssueSeverity.MEDIUM
        return IssueSeverity.LOW

    def classify_memory_severity(self, usage: float) -> IssueSeverity:
        if usage > self.thresholds.memory_high_ratio:
            return IssueSeverity.HIGH
        if usage > self.thresholds.memory_medium_ratio:
            return IssueSeverity.MEDIUM
        return IssueSeverity.LOW

    def stutter_issue(
        self, frame_time: float, timestamp: float, metrics: PerformanceMetrics | None = None
    ) -> PerformanceIssue:
        """Build a stutter issue; duration is the offending frame time."""
        return PerformanceIssue(
            type=IssueType.STUTTER,
            severity=self.classify_stutter_severity(frame_time),
            timestamp=timestamp,
            duration=frame_time,
            metrics=metrics,
        )

    def low_fps_issue(
        self, fps: float, timestamp: float, metrics: PerformanceMetrics | None = None
    ) -> PerformanceIssue:
        return PerformanceIssue(
            type=IssueType.LOW_FPS,
            severity=self.classify_fps_severity(fps),
            timestamp=timestamp,
            duration=0.0,
            metrics=metrics,
        )

    def memory_pressure_issue(
        self, usage: float, timestamp: float, metrics: PerformanceMetrics | None = None
    ) -> PerformanceIssue:
        return PerformanceIssue(
            type=IssueType.MEMORY_PRESSURE,
            severity=self.classify_memory_severity(usage),
            timestamp=timestamp,
            duration=0.0,
            metrics=metrics,
        )


__all__ = ["PerformanceEventDetector"]
