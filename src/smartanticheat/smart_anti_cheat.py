"""
Performance-aware movement validation.

SmartAntiCheatService judges batches of movement samples against a
PerformanceContext, loosening speed, proximity and timing tolerances when the
client was demonstrably struggling (stutters, low frame rate, memory
pressure), and scoring how much it trusts each verdict.

Design Principles:
- Pure evaluation: a verdict depends only on the batch, the context and options
- Adjustments only loosen tolerances and are hard-capped
- Non-finite inputs fail closed: they never earn extra tolerance
- Rejections are values (ValidationResult), never exceptions
"""

import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog

from .config import AntiCheatOptions, resolve_options
from .performance_context import PerformanceContext
from .performance_types import Clock, IssueSeverity, IssueType, PerformanceIssue, performance_now

logger = structlog.get_logger(__name__)

MAX_SPEED_MULTIPLIER = 3.0
MAX_PROXIMITY_MULTIPLIER = 2.5
MAX_ADJUSTMENT_EXTENSION_MS = 500.0
MAX_TOTAL_EXTENSION_MS = 1000.0

CONFIDENCE_FLOOR = 0.1
RECENT_STUTTER_WINDOW_MS = 1000.0
NEARBY_ISSUE_WINDOW_MS = 500.0
EXTENSION_PER_ISSUE_MS = 50.0

STUTTER_SEVERITY_MULTIPLIERS = {
    IssueSeverity.HIGH: 3.0,
    IssueSeverity.MEDIUM: 2.0,
    IssueSeverity.LOW: 1.0,
}

EXTENSION_SEVERITY_FACTORS = {
    IssueSeverity.HIGH: 2.0,
    IssueSeverity.MEDIUM: 1.5,
    IssueSeverity.LOW: 1.0,
}


class ValidationReason(str, Enum):
    """Why a movement batch was rejected."""

    SPEED_EXCEEDED_DESPITE_STUTTER = "SpeedExceededDespiteStutter"
    POSITION_DEVIATION_DESPITE_STUTTER = "PositionDeviationDespiteStutter"
    DYNAMIC_SPEED_EXCEEDED = "DynamicSpeedExceeded"
    DYNAMIC_PROXIMITY_EXCEEDED = "DynamicProximityExceeded"


@dataclass(frozen=True)
class Position:
    x: float
    y: float

    def distance_to(self, other: "Position") -> float:
        return math.hypot(self.x - other.x, self.y - other.y)


@dataclass(frozen=True)
class MovementValidation:
    """One movement sample: where the player was versus where they should be."""

    timestamp: float
    player_position: Position
    expected_position: Position
    deviation: float
    performance_adjustment: float = 0.0

    @classmethod
    def from_positions(
        cls, timestamp: float, player_position: Position, expected_position: Position
    ) -> "MovementValidation":
        """Build a sample with the Euclidean deviation between the two positions."""
        return cls(
            timestamp=timestamp,
            player_position=player_position,
            expected_position=expected_position,
            deviation=player_position.distance_to(expected_position),
        )


@dataclass(frozen=True)
class PerformanceAdjustment:
    """Tolerance loosening derived from one PerformanceContext."""

    stutter_tolerance: float = 0.0  # ms
    speed_tolerance_multiplier: float = 1.0
    proximity_tolerance_multiplier: float = 1.0
    time_window_extension: float = 0.0  # ms


@dataclass(frozen=True)
class ValidationResult:
    """Verdict for a movement batch."""

    is_valid: bool
    reason: ValidationReason | None = None
    confidence: float = 1.0
    performance_adjusted: bool = False
    adjustment_details: PerformanceAdjustment | None = None
    time_window_extension: float = 0.0  # ms, advisory


@dataclass(frozen=True)
class _RuleOutcome:
    passed: bool
    confidence: float
    reason: ValidationReason | None = None
    time_extension: float = 0.0


@dataclass(frozen=True)
class _EntryOutcome:
    passed: bool
    confidence: float
    performance_adjusted: bool
    reason: ValidationReason | None = None
    time_extension: float = 0.0


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _event_count(value: Any) -> int:
    try:
        count = int(value)
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(0, count)


class SmartAntiCheatService:
    """
    Validates movement batches with tolerances scaled by client performance.

    Each entry runs through four rules that share one PerformanceAdjustment:
    stutter tolerance, dynamic speed, dynamic proximity and time-window
    extension. The first failing rule rejects the whole batch.
    """

    def __init__(
        self,
        options: AntiCheatOptions | Mapping[str, Any] | None = None,
        clock: Clock = performance_now,
    ):
        self.options = resolve_options(options)
        self._clock = clock

        problems = self.options.validate()
        if problems:
            logger.warning("Inconsistent anti-cheat options", problems=problems)

        logger.info(
            "SmartAntiCheatService initialized",
            performance_adjustment_enabled=self.options.performance_adjustment_enabled,
            confidence_threshold=self.options.confidence_threshold,
        )

    def set_options(self, overrides: Mapping[str, Any] | None = None, **kwargs: Any) -> None:
        """Merge option overrides; unknown keys, wrong types and non-finite values are ignored."""
        self.options = self.options.merged({**(overrides or {}), **kwargs})

    def get_options(self) -> AntiCheatOptions:
        return self.options.merged()

    def validate_with_context(
        self, movement_data: Sequence[MovementValidation], context: PerformanceContext
    ) -> ValidationResult:
        """
        Validate a batch of movement samples against a performance context.

        Args:
            movement_data: Movement samples to judge
            context: Performance snapshot for the same period

        Returns:
            ValidationResult; rejected batches carry the failing rule's reason
        """
        if not movement_data:
            return ValidationResult(is_valid=True, confidence=1.0, performance_adjusted=False)

        adjustment = self.get_performance_adjustment(context)
        total_confidence = 0.0
        any_adjusted = False
        max_extension = 0.0

        for movement in movement_data:
            outcome = self._validate_single_movement(movement, context, adjustment)

            if not outcome.passed:
                logger.debug(
                    "Movement rejected",
                    reason=outcome.reason.value if outcome.reason else None,
                    confidence=outcome.confidence,
                    timestamp=movement.timestamp,
                    deviation=movement.deviation,
                )
                return ValidationResult(
                    is_valid=False,
                    reason=outcome.reason,
                    confidence=outcome.confidence,
                    performance_adjusted=True,
                    adjustment_details=adjustment,
                    time_window_extension=adjustment.time_window_extension,
                )

            total_confidence += outcome.confidence
            any_adjusted = any_adjusted or outcome.performance_adjusted
            max_extension = max(max_extension, outcome.time_extension)

        average_confidence = total_confidence / len(movement_data)

        context_degraded = (
            len(context.stutter_events) > 0
            or context.average_fps < self.options.low_fps_threshold
            or _event_count(context.memory_pressure_events) > 0
        )
        performance_adjusted = any_adjusted or (
            context_degraded and adjustment.speed_tolerance_multiplier > 1.0
        )

        result = ValidationResult(
            is_valid=average_confidence >= self.options.confidence_threshold,
            confidence=average_confidence,
            performance_adjusted=performance_adjusted,
            adjustment_details=adjustment if performance_adjusted else None,
            time_window_extension=max_extension,
        )

        logger.debug(
            "Movement batch validated",
            is_valid=result.is_valid,
            confidence=result.confidence,
            performance_adjusted=result.performance_adjusted,
            entries=len(movement_data),
        )
        return result

    def calculate_confidence(self, validation: MovementValidation, context: PerformanceContext) -> float:
        """
        Base trust in a movement sample given the surrounding performance.

        Returns:
            Confidence in [0.1, 1.0]
        """
        if not math.isfinite(validation.timestamp):
            return CONFIDENCE_FLOOR

        confidence = 1.0

        score = context.performance_score
        score_deficit = _clamp((100.0 - score) / 100.0, 0.0, 1.0) if math.isfinite(score) else 1.0
        confidence -= score_deficit * 0.3

        low_fps = self.options.low_fps_threshold
        fps = context.average_fps
        if not math.isfinite(fps):
            confidence -= 0.2
        elif low_fps > 0 and fps < low_fps:
            confidence -= _clamp((low_fps - fps) / low_fps, 0.0, 1.0) * 0.2

        now = self._clock()
        recent_stutters = sum(
            1
            for issue in context.stutter_events
            if issue.type == IssueType.STUTTER and 0.0 <= now - issue.timestamp <= RECENT_STUTTER_WINDOW_MS
        )
        if recent_stutters:
            confidence -= min(0.4, recent_stutters * 0.1)

        memory_events = _event_count(context.memory_pressure_events)
        if memory_events:
            confidence -= min(0.2, memory_events * 0.05)

        return _clamp(confidence, CONFIDENCE_FLOOR, 1.0)

    def get_performance_adjustment(self, context: PerformanceContext) -> PerformanceAdjustment:
        """
        Derive tolerance loosening from a performance context.

        | Source              | Speed   | Proximity | Extension       |
        |---------------------|---------|-----------|-----------------|
        | Score deficit d     | + 1.2 d | + 0.8 d   |                 |
        | FPS impact f        | + 0.4 f | + 0.2 f   | + 200 f ms      |
        | Stutters s          | + 0.8 s | + 0.6 s   | tolerance+200 s |
        | Memory events k     | + 0.2 k | + 0.1 k   |                 |

        Capped at 3.0 / 2.5 / 500 ms.
        """
        if not self.options.performance_adjustment_enabled:
            return PerformanceAdjustment()

        speed_multiplier = 1.0
        proximity_multiplier = 1.0
        time_extension = 0.0
        stutter_tolerance = self.options.stutter_tolerance_ms

        score_deficit = 1.0 - self._score_ratio_for_tolerance(context)
        speed_multiplier += score_deficit * 1.2
        proximity_multiplier += score_deficit * 0.8

        fps_impact = self._fps_impact_for_tolerance(context)
        if fps_impact > 0:
            speed_multiplier += fps_impact * 0.4
            proximity_multiplier += fps_impact * 0.2
            time_extension += fps_impact * 200.0

        stutter_count = sum(1 for issue in context.stutter_events if issue.type == IssueType.STUTTER)
        if stutter_count:
            stutter_impact = min(1.0, stutter_count / 2)
            speed_multiplier += stutter_impact * 0.8
            proximity_multiplier += stutter_impact * 0.6
            stutter_tolerance += stutter_impact * 200.0

        memory_events = _event_count(context.memory_pressure_events)
        if memory_events:
            memory_impact = min(1.0, memory_events / 3)
            speed_multiplier += memory_impact * 0.2
            proximity_multiplier += memory_impact * 0.1

        return PerformanceAdjustment(
            stutter_tolerance=stutter_tolerance,
            speed_tolerance_multiplier=min(MAX_SPEED_MULTIPLIER, speed_multiplier),
            proximity_tolerance_multiplier=min(MAX_PROXIMITY_MULTIPLIER, proximity_multiplier),
            time_window_extension=min(MAX_ADJUSTMENT_EXTENSION_MS, time_extension),
        )

    def was_movement_during_performance_issue(
        self, timestamp: float, context: PerformanceContext, adjustment: PerformanceAdjustment | None = None
    ) -> bool:
        """True if the timestamp falls inside any issue's (extended) tolerance window."""
        if not math.isfinite(timestamp):
            return False

        adjustment = adjustment or self.get_performance_adjustment(context)
        extended_tolerance = self.options.stutter_tolerance_ms + adjustment.time_window_extension

        for issue in context.stutter_events:
            if abs(timestamp - issue.timestamp) <= extended_tolerance:
                return True
            if issue.duration > 0:
                issue_end = issue.timestamp + issue.duration + adjustment.time_window_extension
                if issue.timestamp <= timestamp <= issue_end:
                    return True

        return False

    def _validate_single_movement(
        self, movement: MovementValidation, context: PerformanceContext, adjustment: PerformanceAdjustment
    ) -> _EntryOutcome:
        confidence = self.calculate_confidence(movement, context)
        adjusted = self.was_movement_during_performance_issue(movement.timestamp, context, adjustment)

        rule_outcomes = []
        for rule in (
            self._validate_stutter_tolerance,
            self._validate_dynamic_speed,
            self._validate_dynamic_proximity,
            self._validate_time_window_extension,
        ):
            outcome = rule(movement, context, adjustment)
            if not outcome.passed:
                return _EntryOutcome(
                    passed=False,
                    confidence=outcome.confidence,
                    performance_adjusted=True,
                    reason=outcome.reason,
                )
            confidence = min(confidence, outcome.confidence)
            rule_outcomes.append(outcome)

        time_extension = rule_outcomes[-1].time_extension
        if time_extension > 0 or any(outcome.confidence < 1.0 for outcome in rule_outcomes):
            adjusted = True

        return _EntryOutcome(
            passed=True,
            confidence=confidence,
            performance_adjusted=adjusted,
            time_extension=time_extension,
        )

    def _validate_stutter_tolerance(
        self, movement: MovementValidation, context: PerformanceContext, adjustment: PerformanceAdjustment
    ) -> _RuleOutcome:
        """Loosen tolerances around stutters, scaled by the worst nearby severity."""
        stutter_window = max(adjustment.stutter_tolerance, self.options.stutter_tolerance_ms)
        recent_stutters = [
            issue
            for issue in self._issues_near(movement.timestamp, context.stutter_events, stutter_window)
            if issue.type == IssueType.STUTTER
        ]

        if not recent_stutters:
            return _RuleOutcome(passed=True, confidence=1.0)

        severity_multiplier = max(
            STUTTER_SEVERITY_MULTIPLIERS.get(issue.severity, 1.0) for issue in recent_stutters
        )
        speed_tolerance = (
            self.options.base_speed_tolerance * adjustment.speed_tolerance_multiplier * severity_multiplier
        )
        proximity_tolerance = (
            self.options.base_proximity_tolerance
            * adjustment.proximity_tolerance_multiplier
            * severity_multiplier
        )

        if self._movement_speed(movement) > self.options.base_speed_limit * speed_tolerance:
            return _RuleOutcome(
                passed=False, confidence=0.3, reason=ValidationReason.SPEED_EXCEEDED_DESPITE_STUTTER
            )

        if self._deviation(movement) > proximity_tolerance:
            return _RuleOutcome(
                passed=False, confidence=0.4, reason=ValidationReason.POSITION_DEVIATION_DESPITE_STUTTER
            )

        return _RuleOutcome(passed=True, confidence=max(0.5, 1.0 - len(recent_stutters) * 0.1))

    def _validate_dynamic_speed(
        self, movement: MovementValidation, context: PerformanceContext, adjustment: PerformanceAdjustment
    ) -> _RuleOutcome:
        multiplier = adjustment.speed_tolerance_multiplier

        low_fps = self.options.low_fps_threshold
        if self._fps_impact_for_tolerance(context) > 0:
            multiplier *= 2.0 - _clamp(context.average_fps / low_fps, 0.0, 1.0)

        multiplier *= 1.5 - self._score_ratio_for_tolerance(context) * 0.5
        multiplier = min(MAX_SPEED_MULTIPLIER, multiplier)

        speed_limit = self.options.base_speed_limit * self.options.base_speed_tolerance * multiplier
        score_ratio = self._score_ratio_for_confidence(context)

        if self._movement_speed(movement) > speed_limit:
            return _RuleOutcome(
                passed=False,
                confidence=max(0.2, score_ratio),
                reason=ValidationReason.DYNAMIC_SPEED_EXCEEDED,
            )

        return _RuleOutcome(passed=True, confidence=min(1.0, 0.7 + score_ratio * 0.3))

    def _validate_dynamic_proximity(
        self, movement: MovementValidation, context: PerformanceContext, adjustment: PerformanceAdjustment
    ) -> _RuleOutcome:
        multiplier = adjustment.proximity_tolerance_multiplier

        memory_events = _event_count(context.memory_pressure_events)
        if memory_events:
            multiplier *= min(2.0, 1.0 + memory_events * 0.2)

        nearby = self._issues_near(movement.timestamp, context.stutter_events, NEARBY_ISSUE_WINDOW_MS)
        if nearby:
            multiplier *= min(1.8, 1.0 + len(nearby) * 0.15)

        multiplier = min(MAX_PROXIMITY_MULTIPLIER, multiplier)
        proximity_tolerance = self.options.base_proximity_tolerance * multiplier
        score_ratio = self._score_ratio_for_confidence(context)

        if self._deviation(movement) > proximity_tolerance:
            return _RuleOutcome(
                passed=False,
                confidence=max(0.3, score_ratio),
                reason=ValidationReason.DYNAMIC_PROXIMITY_EXCEEDED,
            )

        return _RuleOutcome(passed=True, confidence=min(1.0, 0.8 + score_ratio * 0.2))

    def _validate_time_window_extension(
        self, movement: MovementValidation, context: PerformanceContext, adjustment: PerformanceAdjustment
    ) -> _RuleOutcome:
        """Advisory only: reports how far the caller's time window should stretch."""
        tolerance = adjustment.stutter_tolerance
        t = movement.timestamp
        overlapping = [
            issue
            for issue in context.stutter_events
            if issue.timestamp - tolerance <= t <= issue.timestamp + issue.duration + tolerance
        ]

        total_extension = adjustment.time_window_extension
        if not overlapping:
            return _RuleOutcome(passed=True, confidence=1.0, time_extension=total_extension)

        total_extension += sum(
            EXTENSION_PER_ISSUE_MS * EXTENSION_SEVERITY_FACTORS.get(issue.severity, 1.0)
            for issue in overlapping
        )
        return _RuleOutcome(
            passed=True,
            confidence=max(0.4, 1.0 - len(overlapping) * 0.15),
            time_extension=min(MAX_TOTAL_EXTENSION_MS, total_extension),
        )

    def _score_ratio_for_tolerance(self, context: PerformanceContext) -> float:
        # Non-finite scores count as healthy so they never loosen anything
        score = context.performance_score
        if not math.isfinite(score):
            return 1.0
        return _clamp(score / 100.0, 0.0, 1.0)

    def _score_ratio_for_confidence(self, context: PerformanceContext) -> float:
        score = context.performance_score
        if not math.isfinite(score):
            return 0.0
        return _clamp(score / 100.0, 0.0, 1.0)

    def _fps_impact_for_tolerance(self, context: PerformanceContext) -> float:
        low_fps = self.options.low_fps_threshold
        fps = context.average_fps
        if not math.isfinite(fps) or low_fps <= 0 or fps >= low_fps:
            return 0.0
        return _clamp((low_fps - fps) / low_fps, 0.0, 1.0)

    @staticmethod
    def _issues_near(
        timestamp: float, issues: Iterable[PerformanceIssue], window_ms: float
    ) -> list[PerformanceIssue]:
        return [issue for issue in issues if abs(timestamp - issue.timestamp) <= window_ms]

    @staticmethod
    def _deviation(movement: MovementValidation) -> float:
        return movement.deviation if math.isfinite(movement.deviation) else math.inf

    @classmethod
    def _movement_speed(cls, movement: MovementValidation) -> float:
        # Deviation stands in for velocity; samples carry no displacement history
        return cls._deviation(movement) * 2


__all__ = [
    "ValidationReason",
    "Position",
    "MovementValidation",
    "PerformanceAdjustment",
    "ValidationResult",
    "SmartAntiCheatService",
]
