"""
Performance history aggregation and analysis.

Keeps bounded histories of metric snapshots and issues and summarizes them
over trailing time windows: overall score, FPS stability, issue frequency
and plain-language recommendations.
"""

from collections import deque
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

import numpy as np
import structlog

from .performance_types import (
    Clock,
    FrameSample,
    IssueSeverity,
    IssueType,
    PerformanceIssue,
    PerformanceMetrics,
    performance_now,
)

logger = structlog.get_logger(__name__)

RECOMMEND_REDUCE_EFFECTS = "Consider reducing visual effects to improve frame rate"
RECOMMEND_CHECK_STUTTERS = (
    "Frequent stutters detected - check for background processes or optimize game loop"
)
RECOMMEND_REDUCE_MEMORY = (
    "Memory pressure detected - consider enabling object pooling or reducing memory usage"
)
RECOMMEND_EMERGENCY_MODE = "Critical performance issues detected - consider emergency performance mode"
RECOMMEND_NONE = "Performance is stable - no immediate optimizations needed"


@dataclass(frozen=True)
class PerformanceAnalysis:
    overall_score: float = 100.0
    stability: float = 100.0
    average_performance: float = 100.0
    issue_frequency: float = 0.0  # issues per second
    recommendations: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class PerformanceSummary:
    time_window: float
    total_samples: int = 0
    average_fps: float = 0.0
    min_fps: float = 0.0
    max_fps: float = 0.0
    stutter_events: int = 0
    low_fps_events: int = 0
    memory_pressure_events: int = 0
    performance_score: float = 100.0


@dataclass(frozen=True)
class _MetricsRecord:
    timestamp: float
    metrics: PerformanceMetrics


class PerformanceAnalyzer:
    """
    Trailing-window analysis over recorded metrics and issues.

    Both histories are bounded; the oldest entries are dropped first.
    """

    MAX_HISTORY_SIZE = 1000
    LOW_FPS_RECOMMENDATION = 30.0
    STUTTER_RECOMMENDATION_COUNT = 5
    MAX_STABLE_STD_DEV = 20.0  # ms

    def __init__(self, clock: Clock = performance_now, max_history_size: int = MAX_HISTORY_SIZE):
        self._clock = clock
        self._metrics_history: deque[_MetricsRecord] = deque(maxlen=max_history_size)
        self._issue_history: deque[PerformanceIssue] = deque(maxlen=max_history_size)

    def add_metrics(self, metrics: PerformanceMetrics, timestamp: float | None = None) -> None:
        """Record a metrics snapshot, stamped with the analyzer clock by default."""
        timestamp = self._clock() if timestamp is None else timestamp
        self._metrics_history.append(_MetricsRecord(timestamp=timestamp, metrics=metrics))

    def add_issues(self, issues: Iterable[PerformanceIssue]) -> None:
        self._issue_history.extend(issues)

    def add_issue(self, issue: PerformanceIssue) -> None:
        """Single-issue form, usable directly as a monitor subscriber."""
        self._issue_history.append(issue)

    def calculate_performance_score(self, samples: Sequence[FrameSample], stutter_count: int = 0) -> float:
        """
        Score a window of frames from 0 to 100.

        FPS contributes up to 70 points, frame-time stability up to 30, and
        each stutter costs 5 points (at most 30).

        Args:
            samples: Frame samples in the window
            stutter_count: Stutters observed in the window

        Returns:
            Rounded score, 100 for an empty window
        """
        if not samples:
            return 100.0

        average_fps = float(np.mean([s.fps for s in samples]))
        fps_score = max(0.0, min(70.0, average_fps / 60.0 * 70.0))
        stutter_penalty = min(max(0, stutter_count) * 5, 30)

        return float(max(0, round(fps_score + self._stability_score(samples) - stutter_penalty)))

    def analyze_performance(self, window_ms: float = 30000.0) -> PerformanceAnalysis:
        """Analyze metrics and issues newer than window_ms."""
        records, issues = self._recent(window_ms)
        if not records:
            return PerformanceAnalysis()

        fps = np.array([r.metrics.current_fps for r in records], dtype=float)
        scores = np.array([r.metrics.performance_score for r in records], dtype=float)
        issue_frequency = len(issues) / (window_ms / 1000.0) if window_ms > 0 else 0.0

        analysis = PerformanceAnalysis(
            overall_score=float(round(scores.mean())),
            stability=float(round(self._fps_stability(fps))),
            average_performance=float(round(fps.mean() / 60.0 * 100.0)),
            issue_frequency=round(issue_frequency, 2),
            recommendations=self._generate_recommendations(float(fps.mean()), issues),
        )

        logger.debug(
            "Performance analyzed",
            window_ms=window_ms,
            samples=len(records),
            issues=len(issues),
            overall_score=analysis.overall_score,
        )
        return analysis

    def generate_summary(self, window_ms: float = 60000.0) -> PerformanceSummary:
        """Summarize FPS range, issue counts and score over window_ms."""
        records, issues = self._recent(window_ms)
        if not records:
            return PerformanceSummary(time_window=window_ms)

        fps = np.array([r.metrics.current_fps for r in records], dtype=float)
        scores = np.array([r.metrics.performance_score for r in records], dtype=float)

        return PerformanceSummary(
            time_window=window_ms,
            total_samples=len(records),
            average_fps=round(float(fps.mean()), 2),
            min_fps=round(float(fps.min()), 2),
            max_fps=round(float(fps.max()), 2),
            stutter_events=sum(1 for i in issues if i.type == IssueType.STUTTER),
            low_fps_events=sum(1 for i in issues if i.type == IssueType.LOW_FPS),
            memory_pressure_events=sum(1 for i in issues if i.type == IssueType.MEMORY_PRESSURE),
            performance_score=float(round(scores.mean())),
        )

    def clear_history(self) -> None:
        self._metrics_history.clear()
        self._issue_history.clear()

    @property
    def history_size(self) -> int:
        return len(self._metrics_history)

    @property
    def issue_history_size(self) -> int:
        return len(self._issue_history)

    def _recent(self, window_ms: float) -> tuple[list[_MetricsRecord], list[PerformanceIssue]]:
        cutoff = self._clock() - window_ms
        records = [r for r in self._metrics_history if r.timestamp > cutoff]
        issues = [i for i in self._issue_history if i.timestamp > cutoff]
        return records, issues

    def _stability_score(self, samples: Sequence[FrameSample]) -> float:
        if len(samples) < 2:
            return 30.0

        std_dev = float(np.std([s.frame_time for s in samples]))
        stability_ratio = max(0.0, 1.0 - std_dev / self.MAX_STABLE_STD_DEV)
        return float(round(stability_ratio * 30))

    @staticmethod
    def _fps_stability(fps: np.ndarray) -> float:
        """(1 - coefficient of variation) * 100, clamped to [0, 100]."""
        if fps.size < 2:
            return 100.0

        mean = float(fps.mean())
        if mean <= 0:
            return 0.0

        coefficient_of_variation = float(fps.std()) / mean
        return max(0.0, min(100.0, (1.0 - coefficient_of_variation) * 100.0))

    def _generate_recommendations(self, average_fps: float, issues: list[PerformanceIssue]) -> list[str]:
        recommendations = []

        if average_fps < self.LOW_FPS_RECOMMENDATION:
            recommendations.append(RECOMMEND_REDUCE_EFFECTS)

        if sum(1 for i in issues if i.type == IssueType.STUTTER) > self.STUTTER_RECOMMENDATION_COUNT:
            recommendations.append(RECOMMEND_CHECK_STUTTERS)

        if any(i.type == IssueType.MEMORY_PRESSURE for i in issues):
            recommendations.append(RECOMMEND_REDUCE_MEMORY)

        if any(i.severity == IssueSeverity.HIGH for i in issues):
            recommendations.append(RECOMMEND_EMERGENCY_MODE)

        if not recommendations:
            recommendations.append(RECOMMEND_NONE)

        return recommendations


__all__ = [
    "PerformanceAnalysis",
    "PerformanceAnalyzer",
    "PerformanceSummary",
]
