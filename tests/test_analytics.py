"""
Tests for the pure analytics aggregations.
"""
import pytest
from datetime import timedelta
from zoneinfo import ZoneInfo

from conftest import START


# =============================================================================
# PERFORMANCE
# =============================================================================

class TestPerformanceAnalytics:
    """Tests for performance aggregation."""

    def test_empty_series(self):
        from manifest_insights.services.analytics import performance_analytics

        result = performance_analytics([], START)
        assert result.total_operations == 0
        assert result.success_rate == 0.0
        assert result.average_duration == 0.0
        assert result.performance_trends == []

    def test_totals_and_rates(self, make_sample):
        from manifest_insights.services.analytics import performance_analytics

        samples = [
            make_sample(duration=100),
            make_sample(duration=300),
            make_sample(duration=200, success=False, error_type="ValueError"),
            make_sample(duration=400, success=False, error_type="ValueError"),
        ]
        result = performance_analytics(samples, START)

        assert result.total_operations == 4
        assert result.success_rate == 50.0
        assert result.average_duration == 250.0
        assert [m.duration for m in result.slowest_operations] == [400, 300, 200, 100]

    def test_error_patterns_sorted_by_count(self, make_sample):
        from manifest_insights.services.analytics import error_patterns

        samples = [
            make_sample("BULK_IMPORT", success=False, error_type="KeyError"),
            make_sample("ASSIGN_TABLE", success=False, error_type="ValueError"),
            make_sample("ASSIGN_TABLE", success=False, error_type="ValueError"),
            make_sample("ASSIGN_TABLE"),
        ]
        patterns = error_patterns(samples)

        assert patterns[0].pattern == "ASSIGN_TABLE_ValueError"
        assert patterns[0].count == 2
        assert patterns[1].pattern == "BULK_IMPORT_KeyError"

    def test_hourly_trends(self, make_sample):
        """Buckets cover the trailing 24 hours, oldest first, keyed by UTC hour."""
        from manifest_insights.services.analytics import performance_trends

        now = START
        samples = [
            make_sample(duration=100, start=now - timedelta(hours=2, minutes=45)),
            make_sample(duration=300, start=now - timedelta(hours=2, minutes=15)),
            make_sample(duration=50, success=False, error_type="X", start=now - timedelta(minutes=30)),
            make_sample(duration=999, start=now - timedelta(hours=25)),
        ]
        trends = performance_trends(samples, now)

        assert [t.hour for t in trends] == ["2024-05-01T09:00:00Z", "2024-05-01T11:00:00Z"]
        assert trends[0].average_duration == 200.0
        assert trends[0].operation_count == 2
        assert trends[1].error_rate == 100.0

    def test_operation_frequency(self, make_sample):
        from manifest_insights.services.analytics import operation_frequency

        samples = [make_sample("A"), make_sample("B"), make_sample("B")]
        assert [(o.operation, o.count) for o in operation_frequency(samples)] == [("B", 2), ("A", 1)]


# =============================================================================
# BEHAVIOR
# =============================================================================

def _interaction(session="s1", minutes=0, action="open", error=False, clicks=None, agent="Mozilla/5.0"):
    from manifest_insights.core.schemas import DeviceInfo, UserBehaviorMetric

    return UserBehaviorMetric(
        session_id=session,
        timestamp=START + timedelta(minutes=minutes),
        action=action,
        click_path=clicks or [],
        error_encountered=error,
        device_info=DeviceInfo(user_agent=agent),
    )


class TestBehaviorAnalytics:
    """Tests for user behavior aggregation."""

    def test_sessions_and_duration(self):
        from manifest_insights.services.analytics import behavior_analytics

        samples = [
            _interaction("s1", 0),
            _interaction("s1", 1),
            _interaction("s2", 5),
        ]
        result = behavior_analytics(samples)

        assert result.total_sessions == 2
        assert result.average_session_duration == 30000.0

    def test_error_prone_paths_use_last_three_clicks(self):
        from manifest_insights.services.analytics import error_prone_paths

        clicks = ["nav", "tables", "table#4", "assign"]
        samples = [
            _interaction(error=True, clicks=clicks),
            _interaction(error=True, clicks=clicks),
            _interaction(error=False, clicks=clicks),
        ]
        paths = error_prone_paths(samples)

        assert len(paths) == 1
        assert paths[0].path == "tables -> table#4 -> assign"
        assert paths[0].count == 2

    @pytest.mark.parametrize("agent,expected", [
        ("Mozilla/5.0 (iPhone) Mobile Safari", "Mobile"),
        ("Mozilla/5.0 (iPad) Tablet", "Tablet"),
        ("Mobile Tablet hybrid", "Mobile"),
        ("Mozilla/5.0 (X11; Linux x86_64)", "Desktop"),
    ])
    def test_device_categories(self, agent, expected):
        from manifest_insights.services.analytics import categorize_device

        assert categorize_device(agent) == expected

    def test_peak_hours_in_reporting_timezone(self):
        from manifest_insights.services.analytics import peak_usage_times

        samples = [_interaction(minutes=0), _interaction(minutes=1), _interaction(minutes=120)]

        utc_peaks = peak_usage_times(samples)
        assert (utc_peaks[0].hour, utc_peaks[0].count) == (12, 2)

        local_peaks = peak_usage_times(samples, ZoneInfo("America/New_York"))
        assert local_peaks[0].hour == 8

    def test_most_common_actions(self):
        from manifest_insights.services.analytics import behavior_analytics

        samples = [_interaction(action="assign"), _interaction(action="assign"), _interaction(action="open")]
        result = behavior_analytics(samples)

        assert result.most_common_actions[0].action == "assign"
        assert result.most_common_actions[0].count == 2


# =============================================================================
# SYSTEM HEALTH
# =============================================================================

class TestHealthAnalytics:
    """Tests for health aggregation."""

    def test_no_snapshots(self):
        from manifest_insights.services.analytics import health_analytics

        result = health_analytics([])
        assert result.current_health is None
        assert result.alerts == []
        assert result.performance_score == 100.0

    @pytest.mark.parametrize("kwargs,expected", [
        ({"error_rate": 12}, [("critical", "High error rate: 12.0%")]),
        ({"error_rate": 6}, [("warning", "Elevated error rate: 6.0%")]),
        ({"average_response_time": 1200}, [("critical", "Slow response time: 1200ms")]),
        ({"average_response_time": 600}, [("warning", "Elevated response time: 600ms")]),
        ({"memory_usage": 150}, [("warning", "High memory usage: 150.0MB")]),
        ({}, []),
    ])
    def test_alert_thresholds(self, make_snapshot, kwargs, expected):
        from manifest_insights.services.analytics import health_alerts

        alerts = health_alerts(make_snapshot(**kwargs))
        assert [(a.type, a.message) for a in alerts] == expected

    def test_performance_score(self, make_snapshot):
        from manifest_insights.services.analytics import performance_score

        assert performance_score(make_snapshot(memory_usage=50, error_rate=0, average_response_time=500)) == 100.0
        # 100 - 2*10 - (700-500)/10 - (70-50)/2
        assert performance_score(make_snapshot(memory_usage=70, error_rate=10, average_response_time=700)) == 50.0
        assert performance_score(make_snapshot(error_rate=80)) == 0.0

    def test_trailing_window(self, make_snapshot):
        from manifest_insights.services.analytics import health_analytics

        snapshots = [make_snapshot(memory_usage=float(i), timestamp=START + timedelta(seconds=30 * i)) for i in range(30)]
        result = health_analytics(snapshots)

        assert result.current_health.memory_usage == 29.0
        assert len(result.health_trends) == 24
        assert len(result.resource_usage) == 24
        assert result.resource_usage[0].memory_usage == 6.0
        assert result.resource_usage[-1].response_time == 100.0


class TestAnalyticsAggregator:
    """Tests for the collector-bound view."""

    def test_reads_live_collector(self, runtime, make_sample):
        runtime.collector.record_sample(make_sample(duration=800))
        runtime.collector.record_interaction("open")
        runtime.collector.record_system_health()

        assert runtime.aggregator.get_performance_analytics().average_duration == 800
        assert runtime.aggregator.get_user_behavior_analytics().total_sessions == 1
        assert runtime.aggregator.get_system_health_analytics().current_health.memory_usage == 40.0
