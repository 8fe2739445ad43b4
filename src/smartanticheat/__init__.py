"""Smart anti-cheat - performance-aware movement validation."""

__version__ = "0.1.0"

from .anticheat_session import AntiCheatSession
from .config import AntiCheatOptions, PerformanceThresholds

# Frame-level performance monitoring components
from .performance_analyzer import PerformanceAnalysis, PerformanceAnalyzer, PerformanceSummary
from .performance_context import PerformanceContext, PerformanceContextBuilder
from .performance_event_detector import PerformanceEventDetector
from .performance_monitor import (
    FrameTimeTracker,
    MemoryProfiler,
    PerformanceMonitor,
    psutil_memory_probe,
)
from .performance_types import (
    FrameSample,
    IssueSeverity,
    IssueType,
    MemoryReading,
    MemoryTrend,
    PerformanceIssue,
    PerformanceMetrics,
    performance_now,
)

# Movement validation components
from .smart_anti_cheat import (
    MovementValidation,
    PerformanceAdjustment,
    Position,
    SmartAntiCheatService,
    ValidationReason,
    ValidationResult,
)

__all__ = [
    # Configuration
    "AntiCheatOptions",
    "PerformanceThresholds",
    # Monitoring
    "FrameSample",
    "FrameTimeTracker",
    "IssueSeverity",
    "IssueType",
    "MemoryProfiler",
    "MemoryReading",
    "MemoryTrend",
    "PerformanceEventDetector",
    "PerformanceIssue",
    "PerformanceMetrics",
    "PerformanceMonitor",
    "performance_now",
    "psutil_memory_probe",
    # Context and validation
    "MovementValidation",
    "PerformanceAdjustment",
    "PerformanceContext",
    "PerformanceContextBuilder",
    "Position",
    "SmartAntiCheatService",
    "ValidationReason",
    "ValidationResult",
    # Analysis and session wiring
    "AntiCheatSession",
    "PerformanceAnalysis",
    "PerformanceAnalyzer",
    "PerformanceSummary",
]
