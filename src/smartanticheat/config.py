"""
Configuration for performance monitoring and performance-aware anti-cheat validation.

This module provides the threshold and option objects shared by the frame
tracker, memory profiler, issue detector and validator.

Design follows Clean Code principles:
- Single Responsibility: Centralized configuration management
- Open/Closed: Extensible for new configuration categories
- Total merge: runtime updates never fail, bad values are dropped and logged
"""

import math
import numbers
from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields, replace
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


def _accepts(field_type: Any, value: Any) -> bool:
    """Check a value against a config field's declared type."""
    if field_type is bool:
        return isinstance(value, bool)
    if isinstance(value, bool):
        return False
    if field_type is int:
        return isinstance(value, numbers.Integral)
    if field_type is float:
        return isinstance(value, numbers.Real)
    return True


def _merge_overrides(current: Any, overrides: Mapping[str, Any] | None) -> Any:
    """Return a copy of a config dataclass with accepted overrides applied."""
    if not overrides:
        return replace(current)

    known = {f.name: f for f in fields(current)}
    accepted: dict[str, Any] = {}

    for key, value in overrides.items():
        if key not in known:
            logger.warning(
                "Ignoring unknown configuration key",
                config=type(current).__name__,
                key=key,
            )
            continue

        if not _accepts(known[key].type, value):
            logger.warning(
                "Ignoring configuration value of wrong type",
                config=type(current).__name__,
                key=key,
                value=repr(value),
            )
            continue

        if isinstance(value, numbers.Real) and not math.isfinite(value):
            logger.warning(
                "Ignoring non-finite configuration value",
                config=type(current).__name__,
                key=key,
                value=value,
            )
            continue

        accepted[key] = value

    return replace(current, **accepted)


@dataclass
class PerformanceThresholds:
    """Thresholds for frame tracking, memory profiling and issue classification."""

    min_fps: float = 30.0
    max_frame_time: float = 33.33  # ~30 FPS; compatibility only, see stutter_threshold
    stutter_threshold: float = 100.0  # ms
    memory_pressure_threshold: float = 0.8
    performance_issue_window: float = 5000.0  # ms

    # Severity classification
    low_fps_threshold: float = 25.0
    critical_fps_threshold: float = 15.0
    stutter_medium_frame_time: float = 200.0  # ms
    stutter_high_frame_time: float = 500.0  # ms
    memory_medium_ratio: float = 0.85
    memory_high_ratio: float = 0.95

    # Sampling
    memory_check_interval: float = 1000.0  # ms
    fps_sample_window: int = 30  # frames averaged for current FPS

    def merged(self, overrides: Mapping[str, Any] | None = None) -> "PerformanceThresholds":
        """Return a new instance with overrides applied (total merge)."""
        return _merge_overrides(self, overrides)

    def to_dict(self) -> dict[str, Any]:
        """Convert thresholds to dictionary for logging and export."""
        return asdict(self)

    def validate(self) -> list[str]:
        """
        Check thresholds for consistency.

        Returns:
            List of human-readable problems, empty when consistent
        """
        problems = []

        if self.critical_fps_threshold > self.low_fps_threshold:
            problems.append("critical_fps_threshold exceeds low_fps_threshold")

        if self.stutter_medium_frame_time > self.stutter_high_frame_time:
            problems.append("stutter_medium_frame_time exceeds stutter_high_frame_time")

        if self.memory_medium_ratio > self.memory_high_ratio:
            problems.append("memory_medium_ratio exceeds memory_high_ratio")

        if not (0 < self.memory_pressure_threshold <= 1):
            problems.append("memory_pressure_threshold must be within (0, 1]")

        if self.fps_sample_window < 1:
            problems.append("fps_sample_window must be at least 1")

        return problems


@dataclass
class AntiCheatOptions:
    """Tolerances and thresholds for performance-aware movement validation."""

    base_speed_tolerance: float = 1.5  # 50% over normal speed
    base_proximity_tolerance: float = 60.0  # pixels
    base_time_window: float = 500.0  # ms; compatibility only, callers own the time window
    performance_adjustment_enabled: bool = True
    confidence_threshold: float = 0.7
    stutter_tolerance_ms: float = 150.0
    low_fps_threshold: float = 30.0
    memory_pressure_threshold: float = 0.8  # compatibility only, the monitor judges pressure
    base_speed_limit: float = 200.0  # px/s

    def merged(self, overrides: Mapping[str, Any] | None = None) -> "AntiCheatOptions":
        """Return a new instance with overrides applied (total merge)."""
        return _merge_overrides(self, overrides)

    def to_dict(self) -> dict[str, Any]:
        """Convert options to dictionary for logging and export."""
        return asdict(self)

    def validate(self) -> list[str]:
        """
        Check options for consistency.

        Returns:
            List of human-readable problems, empty when consistent
        """
        problems = []

        if not (0 < self.confidence_threshold <= 1):
            problems.append("confidence_threshold must be within (0, 1]")

        if self.low_fps_threshold <= 0:
            problems.append("low_fps_threshold must be positive")

        if self.base_speed_tolerance <= 0 or self.base_proximity_tolerance <= 0:
            problems.append("base tolerances must be positive")

        if self.stutter_tolerance_ms < 0:
            problems.append("stutter_tolerance_ms must not be negative")

        return problems


def resolve_thresholds(
    thresholds: "PerformanceThresholds | Mapping[str, Any] | None",
) -> PerformanceThresholds:
    """Accept a thresholds instance, a mapping of overrides, or None."""
    if isinstance(thresholds, PerformanceThresholds):
        return replace(thresholds)
    return PerformanceThresholds().merged(thresholds)


def resolve_options(options: "AntiCheatOptions | Mapping[str, Any] | None") -> AntiCheatOptions:
    """Accept an options instance, a mapping of overrides, or None."""
    if isinstance(options, AntiCheatOptions):
        return replace(options)
    return AntiCheatOptions().merged(options)


__all__ = [
    "PerformanceThresholds",
    "AntiCheatOptions",
    "resolve_thresholds",
    "resolve_options",
]
