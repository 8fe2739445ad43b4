"""
Frame-level Performance Monitoring System

Tracks render-loop frame times and process memory usage, detects stutters,
sustained low frame rate and memory pressure, and publishes classified
performance issues to subscribers. Issues feed the performance context that
the anti-cheat validator uses to excuse jank-induced movement anomalies.

Design Principles:
- Minimal per-frame overhead: O(1) amortized ring buffer updates
- Bounded state: frame and memory histories have fixed capacity
- Synchronous observer registry with per-subscriber exception isolation
- Injectable clock and memory probe for deterministic testing
- Explicit instances owned by the caller, no global monitor
"""

import math
from collections import deque
from collections.abc import Callable, Mapping
from typing import Any

import psutil
import structlog

from .config import PerformanceThresholds, resolve_thresholds
from .performance_event_detector import PerformanceEventDetector
from .performance_types import (
    Clock,
    FrameSample,
    IssueSeverity,
    IssueType,
    MemoryReading,
    MemoryTrend,
    PerformanceIssue,
    PerformanceMetrics,
    performance_now,
)

logger = structlog.get_logger(__name__)

IssueCallback = Callable[[PerformanceIssue], None]
MemoryProbe = Callable[[], float]


def psutil_memory_probe(memory_limit_bytes: int | None = None) -> MemoryProbe:
    """
    Build a probe reporting process memory as a fraction of a ceiling.

    Args:
        memory_limit_bytes: Memory ceiling; total physical memory when None

    Returns:
        Callable returning resident set size / ceiling
    """
    process = psutil.Process()

    def probe() -> float:
        limit = memory_limit_bytes or psutil.virtual_memory().total
        if not limit:
            return 0.0
        return process.memory_info().rss / limit

    return probe


class FrameTimeTracker:
    """
    Frame time tracking and stutter detection.

    Keeps the most recent frames in a ring buffer (2 seconds at 60fps by
    default) and raises stutter and low-FPS callbacks as frames arrive.
    """

    DEFAULT_MAX_SAMPLES = 120
    DEFAULT_FPS = 60.0
    DEFAULT_FRAME_TIME = 16.67  # 60fps
    LOW_FPS_CHECK_INTERVAL = 30  # frames

    def __init__(
        self,
        thresholds: PerformanceThresholds | Mapping[str, Any] | None = None,
        max_samples: int = DEFAULT_MAX_SAMPLES,
        detector: PerformanceEventDetector | None = None,
    ):
        """
        Initialize frame time tracker.

        Args:
            thresholds: Stutter and FPS thresholds
            max_samples: Ring buffer capacity
            detector: Shared detector deciding what counts as a stutter or low FPS
        """
        self.thresholds = resolve_thresholds(thresholds)
        self.detector = detector or PerformanceEventDetector(self.thresholds)
        self.max_samples = max_samples
        self._samples: deque[FrameSample] = deque(maxlen=max_samples)
        self._total_frames = 0
        self._stutter_count = 0
        self._last_stutter_time = 0.0
        self._stutter_callbacks: list[Callable[[float, float], None]] = []
        self._low_fps_callbacks: list[Callable[[float, float], None]] = []

    def record_frame(self, frame_time: float, timestamp: float) -> FrameSample | None:
        """
        Record a completed frame.

        Args:
            frame_time: Frame duration in milliseconds
            timestamp: Frame end time in milliseconds

        Returns:
            The stored sample, or None if the input was rejected
        """
        if not (math.isfinite(frame_time) and math.isfinite(timestamp)) or frame_time < 0:
            logger.warning("Dropping invalid frame sample", frame_time=frame_time, timestamp=timestamp)
            return None

        delta_time = timestamp - self._samples[-1].timestamp if self._samples else frame_time
        sample = FrameSample(
            timestamp=timestamp,
            frame_time=frame_time,
            delta_time=delta_time,
            fps=1000.0 / frame_time if frame_time > 0 else 0.0,
        )
        self._samples.append(sample)
        self._total_frames += 1

        if self.detector.is_stutter(frame_time):
            self._stutter_count += 1
            self._last_stutter_time = timestamp
            self._notify(self._stutter_callbacks, frame_time, timestamp)

        if self._total_frames % self.LOW_FPS_CHECK_INTERVAL == 0:
            current_fps = self.get_current_fps()
            if self.detector.is_low_fps(current_fps):
                self._notify(self._low_fps_callbacks, current_fps, timestamp)

        return sample

    def get_current_fps(self) -> float:
        """Rolling FPS over the last fps_sample_window frames (60 on cold start)."""
        if len(self._samples) < 2:
            return self.DEFAULT_FPS

        window = max(1, self.thresholds.fps_sample_window)
        recent = list(self._samples)[-window:]
        average_frame_time = sum(s.frame_time for s in recent) / len(recent)
        if average_frame_time <= 0:
            return self.DEFAULT_FPS
        return 1000.0 / average_frame_time

    def get_average_frame_time(self) -> float:
        if not self._samples:
            return self.DEFAULT_FRAME_TIME
        return sum(s.frame_time for s in self._samples) / len(self._samples)

    @property
    def sample_count(self) -> int:
        return len(self._samples)

    @property
    def total_frames(self) -> int:
        return self._total_frames

    def get_stutter_count(self) -> int:
        return self._stutter_count

    def get_last_stutter_time(self) -> float:
        return self._last_stutter_time

    def get_frame_time_history(self) -> tuple[list[float], list[float]]:
        """Return (frame_times, timestamps) for the retained window."""
        return [s.frame_time for s in self._samples], [s.timestamp for s in self._samples]

    def on_stutter_detected(self, callback: Callable[[float, float], None]) -> None:
        """Register callback(frame_time, timestamp) for stutter frames."""
        self._stutter_callbacks.append(callback)

    def on_low_fps_detected(self, callback: Callable[[float, float], None]) -> None:
        """Register callback(fps, timestamp) for sustained low frame rate."""
        self._low_fps_callbacks.append(callback)

    def update_thresholds(self, thresholds: PerformanceThresholds) -> None:
        self.thresholds = thresholds
        self.detector.update_thresholds(thresholds)

    def reset(self) -> None:
        self._samples.clear()
        self._total_frames = 0
        self._stutter_count = 0
        self._last_stutter_time = 0.0

    @staticmethod
    def _notify(callbacks: list[Callable[[float, float], None]], value: float, timestamp: float) -> None:
        for callback in callbacks:
            try:
                callback(value, timestamp)
            except Exception as e:
                logger.error("Frame tracker callback failed", error=str(e))


class MemoryProfiler:
    """
    Memory usage monitoring and pressure detection.

    Samples at most once per memory_check_interval and keeps one minute of
    readings at the default 1 second interval.
    """

    DEFAULT_MAX_READINGS = 60
    TREND_SAMPLE_COUNT = 5
    TREND_DELTA = 0.05

    def __init__(
        self,
        thresholds: PerformanceThresholds | Mapping[str, Any] | None = None,
        memory_probe: MemoryProbe | None = None,
        clock: Clock = performance_now,
        max_readings: int = DEFAULT_MAX_READINGS,
        detector: PerformanceEventDetector | None = None,
    ):
        """
        Initialize memory profiler.

        Args:
            thresholds: Memory pressure threshold and check interval
            memory_probe: Callable returning memory usage ratio (psutil-backed by default)
            clock: Millisecond clock
            max_readings: Reading history capacity
            detector: Shared detector deciding what counts as memory pressure
        """
        self.thresholds = resolve_thresholds(thresholds)
        self.detector = detector or PerformanceEventDetector(self.thresholds)
        self._probe = memory_probe or psutil_memory_probe()
        self._clock = clock
        self._readings: deque[MemoryReading] = deque(maxlen=max_readings)
        self._last_check = -math.inf
        self._pressure_callbacks: list[Callable[[float, float], None]] = []

    def check_memory_usage(self, now: float | None = None) -> float | None:
        """
        Sample memory usage if the check interval has elapsed.

        Args:
            now: Current time in ms (clock is read when None)

        Returns:
            The sampled usage ratio, or None if no sample was taken
        """
        now = self._clock() if now is None else now
        if now - self._last_check < self.thresholds.memory_check_interval:
            return None

        self._last_check = now
        usage = self._read_probe()
        if usage is None:
            return None

        self._readings.append(MemoryReading(usage=usage, timestamp=now))

        if self.detector.is_memory_pressure(usage):
            for callback in self._pressure_callbacks:
                try:
                    callback(usage, now)
                except Exception as e:
                    logger.error("Memory pressure callback failed", error=str(e))

        return usage

    def get_current_memory_usage(self) -> float:
        usage = self._read_probe()
        if usage is not None:
            return usage
        return self._readings[-1].usage if self._readings else 0.0

    def get_memory_trend(self) -> MemoryTrend:
        """Classify the last five readings as increasing, stable or decreasing."""
        if len(self._readings) < self.TREND_SAMPLE_COUNT:
            return MemoryTrend.STABLE

        recent = list(self._readings)[-self.TREND_SAMPLE_COUNT:]
        diff = recent[-1].usage - recent[0].usage

        if diff > self.TREND_DELTA:
            return MemoryTrend.INCREASING
        if diff < -self.TREND_DELTA:
            return MemoryTrend.DECREASING
        return MemoryTrend.STABLE

    def get_memory_history(self) -> list[MemoryReading]:
        return list(self._readings)

    def on_memory_pressure(self, callback: Callable[[float, float], None]) -> None:
        """Register callback(usage, timestamp) for readings above the pressure threshold."""
        self._pressure_callbacks.append(callback)

    def update_thresholds(self, thresholds: PerformanceThresholds) -> None:
        self.thresholds = thresholds
        self.detector.update_thresholds(thresholds)

    def reset(self) -> None:
        self._readings.clear()
        self._last_check = -math.inf

    def _read_probe(self) -> float | None:
        try:
            usage = float(self._probe())
        except Exception as e:
            logger.warning("Memory probe failed", error=str(e))
            return None

        if not math.isfinite(usage):
            logger.warning("Skipping non-finite memory reading", usage=usage)
            return None

        return min(1.0, max(0.0, usage))


class PerformanceMonitor:
    """
    Central performance monitoring orchestrator.

    Integrates frame tracking, memory profiling and issue classification into
    a single per-session monitor driven by start_frame/end_frame calls from
    the render loop.
    """

    def __init__(
        self,
        thresholds: PerformanceThresholds | Mapping[str, Any] | None = None,
        clock: Clock = performance_now,
        memory_probe: MemoryProbe | None = None,
        detector: PerformanceEventDetector | None = None,
    ):
        """
        Initialize performance monitor.

        Args:
            thresholds: Monitoring thresholds (instance or overrides mapping)
            clock: Millisecond clock shared by all sub-components
            memory_probe: Memory usage ratio source (psutil-backed by default)
            detector: Issue classifier (a default detector is created when None)
        """
        self.thresholds = resolve_thresholds(thresholds)
        self._clock = clock

        self.detector = detector or PerformanceEventDetector(self.thresholds)
        self.detector.update_thresholds(self.thresholds)
        self.frame_tracker = FrameTimeTracker(self.thresholds, detector=self.detector)
        self.memory_profiler = MemoryProfiler(self.thresholds, memory_probe, clock, detector=self.detector)

        self._frame_start: float | None = None
        self._issue_callbacks: list[IssueCallback] = []
        self._active_issues: dict[tuple[IssueType, int], PerformanceIssue] = {}

        self.frame_tracker.on_stutter_detected(self._on_stutter)
        self.frame_tracker.on_low_fps_detected(self._on_low_fps)
        self.memory_profiler.on_memory_pressure(self._on_memory_pressure)

        problems = self.thresholds.validate()
        if problems:
            logger.warning("Inconsistent performance thresholds", problems=problems)

        logger.info(
            "PerformanceMonitor initialized",
            stutter_threshold=self.thresholds.stutter_threshold,
            min_fps=self.thresholds.min_fps,
            issue_window_ms=self.thresholds.performance_issue_window,
        )

    def start_frame(self) -> None:
        """Mark the start of a render tick."""
        if self._frame_start is not None:
            logger.debug("start_frame called with an open frame; restarting it")
        self._frame_start = self._clock()

    def end_frame(self) -> float | None:
        """
        Mark the end of a render tick and record its duration.

        Returns:
            Recorded frame time in ms, or None when no frame was open
        """
        if self._frame_start is None:
            logger.warning("end_frame called without a matching start_frame")
            return None

        now = self._clock()
        frame_time = now - self._frame_start
        self._frame_start = None

        if self.frame_tracker.record_frame(frame_time, now) is None:
            return None

        self.memory_profiler.check_memory_usage(now)
        return frame_time

    def get_current_fps(self) -> float:
        return self.frame_tracker.get_current_fps()

    def get_average_frame_time(self) -> float:
        return self.frame_tracker.get_average_frame_time()

    def is_performance_issue_active(self) -> bool:
        """True if any tracked issue is inside the performance issue window."""
        self._prune_active_issues()
        return bool(self._active_issues)

    def get_active_issues(self) -> list[PerformanceIssue]:
        self._prune_active_issues()
        return sorted(self._active_issues.values(), key=lambda issue: issue.timestamp)

    def get_performance_metrics(self) -> PerformanceMetrics:
        """Composite snapshot of frame rate, frame time, memory and stutter state."""
        fps = self.get_current_fps()
        frame_time = self.get_average_frame_time()
        memory_usage = self.memory_profiler.get_current_memory_usage()

        return PerformanceMetrics(
            current_fps=fps,
            average_frame_time=frame_time,
            memory_usage=memory_usage,
            stutter_count=self.frame_tracker.get_stutter_count(),
            last_stutter_time=self.frame_tracker.get_last_stutter_time(),
            performance_score=self._calculate_performance_score(fps, frame_time, memory_usage),
        )

    def get_memory_trend(self) -> MemoryTrend:
        return self.memory_profiler.get_memory_trend()

    def on_performance_issue(self, callback: IssueCallback) -> None:
        """Subscribe to performance issues; callbacks run synchronously."""
        self._issue_callbacks.append(callback)

    def remove_performance_issue_callback(self, callback: IssueCallback) -> bool:
        """Unsubscribe a callback. Returns False if it was not registered."""
        try:
            self._issue_callbacks.remove(callback)
        except ValueError:
            return False
        return True

    def set_thresholds(self, overrides: Mapping[str, Any] | None = None, **kwargs: Any) -> None:
        """Merge threshold overrides into the current configuration."""
        self.thresholds = self.thresholds.merged({**(overrides or {}), **kwargs})
        self.frame_tracker.update_thresholds(self.thresholds)
        self.memory_profiler.update_thresholds(self.thresholds)
        self.detector.update_thresholds(self.thresholds)

    def get_thresholds(self) -> PerformanceThresholds:
        return self.thresholds.merged()

    def reset(self) -> None:
        """Clear frame, memory and issue state; subscribers are kept."""
        self._frame_start = None
        self._active_issues.clear()
        self.frame_tracker.reset()
        self.memory_profiler.reset()
        logger.info("PerformanceMonitor reset")

    def _on_stutter(self, frame_time: float, timestamp: float) -> None:
        self._handle_performance_issue(
            self.detector.stutter_issue(frame_time, timestamp, self.get_performance_metrics())
        )

    def _on_low_fps(self, fps: float, timestamp: float) -> None:
        self._handle_performance_issue(
            self.detector.low_fps_issue(fps, timestamp, self.get_performance_metrics())
        )

    def _on_memory_pressure(self, usage: float, timestamp: float) -> None:
        self._handle_performance_issue(
            self.detector.memory_pressure_issue(usage, timestamp, self.get_performance_metrics())
        )

    def _handle_performance_issue(self, issue: PerformanceIssue) -> None:
        issue_key = (issue.type, int(issue.timestamp // 1000))
        self._active_issues[issue_key] = issue

        log = logger.warning if issue.severity == IssueSeverity.HIGH else logger.debug
        log(
            "Performance issue detected",
            issue_type=issue.type.value,
            severity=issue.severity.value,
            timestamp=issue.timestamp,
            duration=issue.duration,
        )

        for callback in list(self._issue_callbacks):
            try:
                callback(issue)
            except Exception as e:
                logger.error("Performance issue callback failed", error=str(e))

    def _prune_active_issues(self) -> None:
        now = self._clock()
        window = self.thresholds.performance_issue_window
        stale = [key for key, issue in self._active_issues.items() if now - issue.timestamp > window]
        for key in stale:
            del self._active_issues[key]

    @staticmethod
    def _calculate_performance_score(fps: float, frame_time: float, memory_usage: float) -> float:
        """
        Score from 0-100: FPS (60%), frame time (30%), memory usage (10%).
        """
        fps_score = min(100.0, max(0.0, fps / 60.0 * 100.0))
        frame_time_score = min(100.0, max(0.0, 100.0 - (frame_time - 16.67) * 2))
        memory_score = min(100.0, max(0.0, 100.0 - memory_usage * 100.0))

        return float(round(fps_score * 0.6 + frame_time_score * 0.3 + memory_score * 0.1))


__all__ = [
    "FrameTimeTracker",
    "MemoryProfiler",
    "PerformanceMonitor",
    "psutil_memory_probe",
]
