"""
Test suite for the frame-level performance monitoring system.

Test Categories:
- TestFrameTimeTracker: Ring buffer, FPS, stutter and low-FPS callbacks
- TestMemoryProfiler: Rate-limited sampling, pressure callbacks, trends
- TestPsutilMemoryProbe: Default psutil-backed memory source
- TestPerformanceMonitor: Frame bracketing, issue registry, metrics, config
"""

import math

import pytest

from smartanticheat.config import PerformanceThresholds
from smartanticheat.performance_monitor import (
    FrameTimeTracker,
    MemoryProfiler,
    PerformanceMonitor,
    psutil_memory_probe,
)
from smartanticheat.performance_types import (
    IssueSeverity,
    IssueType,
    MemoryTrend,
    PerformanceMetrics,
)


@pytest.mark.fast
class TestFrameTimeTracker:
    """Test FrameTimeTracker sampling and detection."""

    def test_cold_start_defaults(self):
        tracker = FrameTimeTracker()

        assert tracker.get_current_fps() == 60.0
        assert tracker.get_average_frame_time() == 16.67

        tracker.record_frame(20.0, 20.0)
        assert tracker.get_current_fps() == 60.0

    def test_current_fps_from_frame_times(self):
        tracker = FrameTimeTracker()
        for i in range(10):
            tracker.record_frame(16.0, 16.0 * (i + 1))

        assert tracker.get_current_fps() == pytest.approx(62.5)
        assert tracker.get_average_frame_time() == pytest.approx(16.0)

    def test_current_fps_uses_recent_window(self):
        tracker = FrameTimeTracker()
        timestamp = 0.0
        for _ in range(30):
            timestamp += 20.0
            tracker.record_frame(20.0, timestamp)
        for _ in range(30):
            timestamp += 10.0
            tracker.record_frame(10.0, timestamp)

        assert tracker.get_current_fps() == pytest.approx(100.0)
        assert tracker.get_average_frame_time() == pytest.approx(15.0)

    def test_sample_fields(self):
        tracker = FrameTimeTracker()
        first = tracker.record_frame(20.0, 100.0)
        second = tracker.record_frame(25.0, 130.0)

        assert first.delta_time == 20.0
        assert first.fps == pytest.approx(50.0)
        assert second.delta_time == 30.0
        assert second.fps == pytest.approx(40.0)

    def test_zero_length_frame(self):
        tracker = FrameTimeTracker()
        sample = tracker.record_frame(0.0, 0.0)
        tracker.record_frame(0.0, 0.0)

        assert sample.fps == 0.0
        assert tracker.get_current_fps() == 60.0

    def test_ring_buffer_is_bounded(self):
        tracker = FrameTimeTracker()
        for i in range(130):
            tracker.record_frame(16.0, float(i))

        assert tracker.sample_count == FrameTimeTracker.DEFAULT_MAX_SAMPLES
        assert tracker.total_frames == 130
        frame_times, timestamps = tracker.get_frame_time_history()
        assert len(frame_times) == 120
        assert timestamps[0] == 10.0

    @pytest.mark.parametrize("frame_time", [math.nan, math.inf, -5.0])
    def test_invalid_frames_dropped(self, frame_time):
        tracker = FrameTimeTracker()

        assert tracker.record_frame(frame_time, 10.0) is None
        assert tracker.sample_count == 0
        assert tracker.total_frames == 0

    def test_stutter_callback(self):
        tracker = FrameTimeTracker()
        stutters = []
        tracker.on_stutter_detected(lambda ft, ts: stutters.append((ft, ts)))

        tracker.record_frame(16.0, 16.0)
        tracker.record_frame(150.0, 166.0)

        assert stutters == [(150.0, 166.0)]
        assert tracker.get_stutter_count() == 1
        assert tracker.get_last_stutter_time() == 166.0

    def test_stutter_threshold_is_strict(self):
        tracker = FrameTimeTracker()
        tracker.record_frame(100.0, 100.0)
        assert tracker.get_stutter_count() == 0

    def test_low_fps_checked_every_30th_frame(self):
        tracker = FrameTimeTracker()
        low_fps = []
        tracker.on_low_fps_detected(lambda fps, ts: low_fps.append((fps, ts)))

        for i in range(29):
            tracker.record_frame(50.0, 50.0 * (i + 1))
        assert low_fps == []

        tracker.record_frame(50.0, 1500.0)
        assert len(low_fps) == 1
        assert low_fps[0][0] == pytest.approx(20.0)
        assert low_fps[0][1] == 1500.0

    def test_low_fps_counter_survives_buffer_wrap(self):
        tracker = FrameTimeTracker(max_samples=10)
        low_fps = []
        tracker.on_low_fps_detected(lambda fps, ts: low_fps.append(fps))

        for i in range(60):
            tracker.record_frame(50.0, 50.0 * (i + 1))

        assert len(low_fps) == 2

    def test_callback_errors_are_isolated(self):
        tracker = FrameTimeTracker()
        received = []

        def failing(frame_time, timestamp):
            raise RuntimeError("subscriber failure")

        tracker.on_stutter_detected(failing)
        tracker.on_stutter_detected(lambda ft, ts: received.append(ft))

        tracker.record_frame(200.0, 200.0)

        assert received == [200.0]

    def test_reset(self):
        tracker = FrameTimeTracker()
        tracker.record_frame(200.0, 200.0)
        tracker.reset()

        assert tracker.sample_count == 0
        assert tracker.get_stutter_count() == 0
        assert tracker.get_last_stutter_time() == 0.0


@pytest.mark.fast
class TestMemoryProfiler:
    """Test MemoryProfiler sampling and trend classification."""

    def test_check_is_rate_limited(self, fake_clock, memory_probe):
        profiler = MemoryProfiler(memory_probe=memory_probe, clock=fake_clock)

        assert profiler.check_memory_usage() == 0.5
        assert profiler.check_memory_usage() is None

        fake_clock.advance(999)
        assert profiler.check_memory_usage() is None

        fake_clock.advance(1)
        assert profiler.check_memory_usage() == 0.5
        assert len(profiler.get_memory_history()) == 2

    def test_pressure_callback(self, fake_clock, memory_probe):
        profiler = MemoryProfiler(memory_probe=memory_probe, clock=fake_clock)
        pressure = []
        profiler.on_memory_pressure(lambda usage, ts: pressure.append((usage, ts)))

        profiler.check_memory_usage(now=0.0)
        memory_probe.usage = 0.9
        profiler.check_memory_usage(now=1000.0)

        assert pressure == [(0.9, 1000.0)]

    def test_usage_is_clamped(self, fake_clock, memory_probe):
        memory_probe.usage = 1.7
        profiler = MemoryProfiler(memory_probe=memory_probe, clock=fake_clock)

        assert profiler.check_memory_usage() == 1.0

    def test_non_finite_reading_skipped(self, fake_clock, memory_probe):
        memory_probe.usage = math.nan
        profiler = MemoryProfiler(memory_probe=memory_probe, clock=fake_clock)

        assert profiler.check_memory_usage() is None
        assert profiler.get_memory_history() == []

    def test_probe_failure_skipped(self, fake_clock):
        def broken_probe():
            raise OSError("no /proc")

        profiler = MemoryProfiler(memory_probe=broken_probe, clock=fake_clock)

        assert profiler.check_memory_usage() is None
        assert profiler.get_current_memory_usage() == 0.0

    def test_history_is_bounded(self, fake_clock, memory_probe):
        profiler = MemoryProfiler(memory_probe=memory_probe, clock=fake_clock)
        for i in range(70):
            profiler.check_memory_usage(now=i * 1000.0)

        assert len(profiler.get_memory_history()) == MemoryProfiler.DEFAULT_MAX_READINGS

    def test_trend_stable_with_few_readings(self, fake_clock, memory_probe):
        profiler = MemoryProfiler(memory_probe=memory_probe, clock=fake_clock)
        for i in range(4):
            memory_probe.usage = 0.1 * (i + 1)
            profiler.check_memory_usage(now=i * 1000.0)

        assert profiler.get_memory_trend() == MemoryTrend.STABLE

    @pytest.mark.parametrize(
        "readings,expected",
        [
            ([0.50, 0.52, 0.54, 0.56, 0.58], MemoryTrend.INCREASING),
            ([0.58, 0.56, 0.54, 0.52, 0.50], MemoryTrend.DECREASING),
            ([0.50, 0.51, 0.50, 0.52, 0.53], MemoryTrend.STABLE),
        ],
    )
    def test_trend(self, fake_clock, memory_probe, readings, expected):
        profiler = MemoryProfiler(memory_probe=memory_probe, clock=fake_clock)
        for i, usage in enumerate(readings):
            memory_probe.usage = usage
            profiler.check_memory_usage(now=i * 1000.0)

        assert profiler.get_memory_trend() == expected


@pytest.mark.fast
class TestPsutilMemoryProbe:
    """Test the psutil-backed default probe."""

    def test_ratio_against_physical_memory(self, mocker):
        mock_psutil = mocker.patch("smartanticheat.performance_monitor.psutil")
        mock_psutil.Process.return_value.memory_info.return_value.rss = 512
        mock_psutil.virtual_memory.return_value.total = 1024

        assert psutil_memory_probe()() == pytest.approx(0.5)

    def test_ratio_against_explicit_limit(self, mocker):
        mock_psutil = mocker.patch("smartanticheat.performance_monitor.psutil")
        mock_psutil.Process.return_value.memory_info.return_value.rss = 512

        assert psutil_memory_probe(memory_limit_bytes=2048)() == pytest.approx(0.25)
        mock_psutil.virtual_memory.assert_not_called()

    def test_real_process_reading(self):
        usage = psutil_memory_probe()()
        assert 0.0 < usage < 1.0


@pytest.fixture
def monitor(fake_clock, memory_probe):
    return PerformanceMonitor(clock=fake_clock, memory_probe=memory_probe)


def run_frame(monitor, clock, frame_time):
    monitor.start_frame()
    clock.advance(frame_time)
    return monitor.end_frame()


@pytest.mark.fast
class TestPerformanceMonitor:
    """Test PerformanceMonitor orchestration."""

    def test_end_frame_returns_frame_time(self, monitor, fake_clock):
        assert run_frame(monitor, fake_clock, 16.0) == 16.0
        assert monitor.frame_tracker.sample_count == 1

    def test_end_frame_without_start(self, monitor):
        assert monitor.end_frame() is None
        assert monitor.frame_tracker.sample_count == 0

    def test_second_start_restarts_frame(self, monitor, fake_clock):
        monitor.start_frame()
        fake_clock.advance(40)
        monitor.start_frame()
        fake_clock.advance(10)

        assert monitor.end_frame() == 10.0

    def test_end_frame_samples_memory(self, monitor, fake_clock, memory_probe):
        run_frame(monitor, fake_clock, 16.0)

        history = monitor.memory_profiler.get_memory_history()
        assert len(history) == 1
        assert history[0].timestamp == 16.0

    def test_stutter_publishes_issue(self, monitor, fake_clock):
        issues = []
        monitor.on_performance_issue(issues.append)

        run_frame(monitor, fake_clock, 250.0)

        assert len(issues) == 1
        issue = issues[0]
        assert issue.type == IssueType.STUTTER
        assert issue.severity == IssueSeverity.MEDIUM
        assert issue.timestamp == 250.0
        assert issue.duration == 250.0
        assert isinstance(issue.metrics, PerformanceMetrics)

    def test_issue_window_expiry(self, monitor, fake_clock):
        run_frame(monitor, fake_clock, 250.0)
        assert monitor.is_performance_issue_active()

        fake_clock.advance(5000)
        assert monitor.is_performance_issue_active()

        fake_clock.advance(1)
        assert not monitor.is_performance_issue_active()
        assert monitor.get_active_issues() == []

    def test_same_second_issues_tracked_once(self, monitor, fake_clock):
        issues = []
        monitor.on_performance_issue(issues.append)

        run_frame(monitor, fake_clock, 150.0)
        run_frame(monitor, fake_clock, 150.0)

        assert len(issues) == 2
        assert len(monitor.get_active_issues()) == 1

    def test_low_fps_issue(self, monitor, fake_clock):
        issues = []
        monitor.on_performance_issue(issues.append)

        for _ in range(30):
            run_frame(monitor, fake_clock, 50.0)

        assert [i.type for i in issues] == [IssueType.LOW_FPS]
        assert issues[0].severity == IssueSeverity.MEDIUM

    def test_memory_pressure_issue(self, monitor, fake_clock, memory_probe):
        issues = []
        monitor.on_performance_issue(issues.append)
        memory_probe.usage = 0.9

        run_frame(monitor, fake_clock, 16.0)

        assert [i.type for i in issues] == [IssueType.MEMORY_PRESSURE]
        assert issues[0].severity == IssueSeverity.MEDIUM

    def test_failing_subscriber_is_isolated(self, monitor, fake_clock):
        received = []

        def failing(issue):
            raise ValueError("boom")

        monitor.on_performance_issue(failing)
        monitor.on_performance_issue(received.append)

        run_frame(monitor, fake_clock, 250.0)

        assert len(received) == 1

    def test_remove_callback(self, monitor, fake_clock):
        received = []
        monitor.on_performance_issue(received.append)

        assert monitor.remove_performance_issue_callback(received.append)
        assert not monitor.remove_performance_issue_callback(received.append)

        run_frame(monitor, fake_clock, 250.0)
        assert received == []

    def test_metrics_cold_start(self, monitor):
        metrics = monitor.get_performance_metrics()

        assert metrics.current_fps == 60.0
        assert metrics.average_frame_time == 16.67
        assert metrics.memory_usage == 0.5
        assert metrics.stutter_count == 0
        assert metrics.performance_score == 95.0

    def test_metrics_under_load(self, monitor, fake_clock):
        run_frame(monitor, fake_clock, 50.0)
        run_frame(monitor, fake_clock, 50.0)

        metrics = monitor.get_performance_metrics()

        assert metrics.current_fps == pytest.approx(20.0)
        assert metrics.average_frame_time == pytest.approx(50.0)
        assert metrics.performance_score == 35.0

    def test_score_is_bounded(self, monitor, fake_clock, memory_probe):
        memory_probe.usage = 0.0
        for _ in range(5):
            run_frame(monitor, fake_clock, 5.0)
        assert monitor.get_performance_metrics().performance_score == 100.0

    def test_set_thresholds_propagates(self, monitor, fake_clock):
        issues = []
        monitor.on_performance_issue(issues.append)

        monitor.set_thresholds(stutter_threshold=300.0)
        run_frame(monitor, fake_clock, 250.0)

        assert issues == []
        assert monitor.frame_tracker.thresholds.stutter_threshold == 300.0
        assert monitor.memory_profiler.thresholds.stutter_threshold == 300.0
        assert monitor.detector.thresholds.stutter_threshold == 300.0

    def test_set_thresholds_ignores_bad_input(self, monitor):
        monitor.set_thresholds({"bogus": 1, "min_fps": math.nan})

        assert monitor.get_thresholds() == PerformanceThresholds()

    def test_set_thresholds_ignores_wrong_types(self, monitor, fake_clock):
        issues = []
        monitor.on_performance_issue(issues.append)

        monitor.set_thresholds(stutter_threshold=None, fps_sample_window="30")
        run_frame(monitor, fake_clock, 250.0)

        assert monitor.get_thresholds() == PerformanceThresholds()
        assert [i.type for i in issues] == [IssueType.STUTTER]

    def test_max_frame_time_does_not_mark_stutters(self, monitor, fake_clock):
        issues = []
        monitor.on_performance_issue(issues.append)

        monitor.set_thresholds(max_frame_time=10.0)
        run_frame(monitor, fake_clock, 50.0)

        assert issues == []

    def test_sub_trackers_share_detector(self, monitor, fake_clock, memory_probe, mocker):
        assert monitor.frame_tracker.detector is monitor.detector
        assert monitor.memory_profiler.detector is monitor.detector

        is_stutter = mocker.spy(monitor.detector, "is_stutter")
        is_memory_pressure = mocker.spy(monitor.detector, "is_memory_pressure")
        memory_probe.usage = 0.9

        run_frame(monitor, fake_clock, 250.0)

        is_stutter.assert_called_once_with(250.0)
        is_memory_pressure.assert_called_once_with(0.9)

    def test_detector_thresholds_decide_stutters(self, monitor, fake_clock):
        issues = []
        monitor.on_performance_issue(issues.append)

        monitor.detector.update_thresholds(PerformanceThresholds(stutter_threshold=300.0))
        run_frame(monitor, fake_clock, 250.0)

        assert issues == []

    def test_get_thresholds_returns_copy(self, monitor):
        thresholds = monitor.get_thresholds()
        thresholds.stutter_threshold = 1.0

        assert monitor.thresholds.stutter_threshold == 100.0

    def test_reset_keeps_subscribers(self, monitor, fake_clock):
        issues = []
        monitor.on_performance_issue(issues.append)
        run_frame(monitor, fake_clock, 250.0)

        monitor.reset()

        assert not monitor.is_performance_issue_active()
        assert monitor.frame_tracker.get_stutter_count() == 0

        run_frame(monitor, fake_clock, 250.0)
        assert len(issues) == 2

    def test_memory_trend_delegates(self, monitor):
        assert monitor.get_memory_trend() == MemoryTrend.STABLE
