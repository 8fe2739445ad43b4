"""
Per-session wiring of monitoring, context building, validation and analysis.

An AntiCheatSession owns one monitor, builder, validator and analyzer, all on
the same clock, and connects the monitor's issue stream to the builder and
analyzer. Callers create one per play session instead of sharing globals.
"""

from collections.abc import Mapping, Sequence
from typing import Any

import structlog

from .config import AntiCheatOptions, PerformanceThresholds, resolve_thresholds
from .performance_analyzer import PerformanceAnalysis, PerformanceAnalyzer, PerformanceSummary
from .performance_context import PerformanceContext, PerformanceContextBuilder
from .performance_monitor import MemoryProbe, PerformanceMonitor
from .performance_types import Clock, performance_now
from .smart_anti_cheat import MovementValidation, SmartAntiCheatService, ValidationResult

logger = structlog.get_logger(__name__)


class AntiCheatSession:
    """
    Performance-aware anti-cheat for a single play session.

    Usable as a context manager; leaving the block unsubscribes the builder
    and analyzer from the monitor.
    """

    def __init__(
        self,
        thresholds: PerformanceThresholds | Mapping[str, Any] | None = None,
        options: AntiCheatOptions | Mapping[str, Any] | None = None,
        clock: Clock = performance_now,
        memory_probe: MemoryProbe | None = None,
        monitor: PerformanceMonitor | None = None,
        builder: PerformanceContextBuilder | None = None,
        service: SmartAntiCheatService | None = None,
        analyzer: PerformanceAnalyzer | None = None,
    ):
        """
        Initialize session components.

        Args:
            thresholds: Monitor thresholds, used when no monitor is given
            options: Validator options, used when no service is given
            clock: Millisecond clock shared by default-built components
            memory_probe: Memory usage source for the default monitor
            monitor: Pre-built PerformanceMonitor
            builder: Pre-built PerformanceContextBuilder
            service: Pre-built SmartAntiCheatService
            analyzer: Pre-built PerformanceAnalyzer
        """
        resolved = resolve_thresholds(thresholds)

        self.monitor = monitor or PerformanceMonitor(resolved, clock=clock, memory_probe=memory_probe)
        self.builder = builder or PerformanceContextBuilder(
            window_ms=self.monitor.thresholds.performance_issue_window, clock=clock
        )
        self.service = service or SmartAntiCheatService(options, clock=clock)
        self.analyzer = analyzer or PerformanceAnalyzer(clock=clock)
        self._builder_follows_monitor = builder is None

        self.monitor.on_performance_issue(self.builder.add_performance_issue)
        self.monitor.on_performance_issue(self.analyzer.add_issue)
        self._closed = False

    def __enter__(self) -> "AntiCheatSession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def start_frame(self) -> None:
        self.monitor.start_frame()

    def end_frame(self) -> float | None:
        return self.monitor.end_frame()

    def build_context(self) -> PerformanceContext:
        """Snapshot current metrics into the builder and analyzer and build a context."""
        metrics = self.monitor.get_performance_metrics()
        self.builder.set_current_metrics(metrics)
        self.analyzer.add_metrics(metrics)
        if self._builder_follows_monitor:
            self.builder.window_ms = self.monitor.thresholds.performance_issue_window
        return self.builder.build()

    def validate(self, movement_data: Sequence[MovementValidation]) -> ValidationResult:
        """Validate a movement batch against the current performance context."""
        result = self.service.validate_with_context(movement_data, self.build_context())

        if not result.is_valid:
            logger.info(
                "Movement batch rejected",
                reason=result.reason.value if result.reason else None,
                confidence=result.confidence,
                performance_adjusted=result.performance_adjusted,
                entries=len(movement_data),
            )

        return result

    def summary(self, window_ms: float = 60000.0) -> PerformanceSummary:
        return self.analyzer.generate_summary(window_ms)

    def analysis(self, window_ms: float = 30000.0) -> PerformanceAnalysis:
        return self.analyzer.analyze_performance(window_ms)

    def reset(self) -> None:
        """Clear monitor, builder and analyzer state at a session boundary."""
        self.monitor.reset()
        self.builder.clear()
        self.analyzer.clear_history()

    def close(self) -> None:
        if self._closed:
            return
        self.monitor.remove_performance_issue_callback(self.builder.add_performance_issue)
        self.monitor.remove_performance_issue_callback(self.analyzer.add_issue)
        self._closed = True
        logger.debug("AntiCheatSession closed")


__all__ = ["AntiCheatSession"]
