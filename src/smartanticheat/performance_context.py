"""
Performance context assembly for anti-cheat validation.

The builder accumulates performance issues reported by the monitor and turns
them into an immutable snapshot restricted to a recent time window. The
snapshot is what the validator correlates movement anomalies against.
"""

from dataclasses import dataclass

import structlog

from .performance_types import (
    Clock,
    IssueType,
    PerformanceIssue,
    PerformanceMetrics,
    performance_now,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PerformanceContext:
    """
    Snapshot of recent performance used to judge movement anomalies.

    stutter_events holds every in-window issue regardless of type.
    """

    stutter_events: tuple[PerformanceIssue, ...] = ()
    average_fps: float = 60.0
    memory_pressure_events: int = 0
    performance_score: float = 100.0
    recent_performance_window: float = 5000.0  # ms
    performance_issue_timestamps: tuple[float, ...] = ()


class PerformanceContextBuilder:
    """Collects issues and metrics and builds windowed PerformanceContext snapshots."""

    DEFAULT_WINDOW_MS = 5000.0

    def __init__(self, window_ms: float = DEFAULT_WINDOW_MS, clock: Clock = performance_now):
        self.window_ms = window_ms
        self._clock = clock
        self._issues: list[PerformanceIssue] = []
        self._metrics: PerformanceMetrics | None = None

    def add_performance_issue(self, issue: PerformanceIssue) -> None:
        """Record an issue and drop anything that has left the window."""
        self._issues.append(issue)
        self._issues = self._recent_issues(self._clock())

    def set_current_metrics(self, metrics: PerformanceMetrics) -> None:
        self._metrics = metrics

    def build(self) -> PerformanceContext:
        """
        Build a context snapshot for the current window.

        Returns:
            PerformanceContext with only issues within window_ms of now
        """
        recent = self._recent_issues(self._clock())
        memory_pressure_events = sum(1 for issue in recent if issue.type == IssueType.MEMORY_PRESSURE)

        if self._metrics is None:
            average_fps, performance_score = 60.0, 100.0
        else:
            average_fps = self._metrics.current_fps
            performance_score = self._metrics.performance_score

        context = PerformanceContext(
            stutter_events=tuple(recent),
            average_fps=average_fps,
            memory_pressure_events=memory_pressure_events,
            performance_score=performance_score,
            recent_performance_window=self.window_ms,
            performance_issue_timestamps=tuple(issue.timestamp for issue in recent),
        )

        logger.debug(
            "Performance context built",
            issue_count=len(recent),
            memory_pressure_events=memory_pressure_events,
            average_fps=average_fps,
            performance_score=performance_score,
        )
        return context

    def clear(self) -> None:
        """Reset accumulated issues and metrics at a session boundary."""
        self._issues = []
        self._metrics = None

    @property
    def issue_count(self) -> int:
        return len(self._issues)

    def _recent_issues(self, now: float) -> list[PerformanceIssue]:
        return [issue for issue in self._issues if now - issue.timestamp <= self.window_ms]


__all__ = ["PerformanceContext", "PerformanceContextBuilder"]
