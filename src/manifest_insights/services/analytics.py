"""
Telemetry Analytics
Pure aggregations over the performance, interaction and health series.
"""
import logging
from collections import Counter, defaultdict
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo

from ..core.schemas import (
    ActionCount,
    BehaviorAnalytics,
    DeviceCount,
    ErrorPath,
    ErrorPattern,
    HealthAlert,
    HealthAnalytics,
    OperationCount,
    PeakUsage,
    PerformanceAnalytics,
    PerformanceMetric,
    PerformanceTrend,
    ResourceUsage,
    SystemHealthMetric,
    UserBehaviorMetric,
    utc_now,
)
from .metrics import MetricsCollector

logger = logging.getLogger(__name__)

TREND_WINDOW = timedelta(hours=24)
HEALTH_WINDOW = 24


# =============================================================================
# PERFORMANCE
# =============================================================================

def error_patterns(samples: List[PerformanceMetric], limit: int = 10) -> List[ErrorPattern]:
    """Most frequent (operation, error type) pairs among failed samples."""
    counts = Counter(f"{m.operation}_{m.error_type}" for m in samples if not m.success)
    return [ErrorPattern(pattern=p, count=c) for p, c in counts.most_common(limit)]


def operation_frequency(samples: List[PerformanceMetric]) -> List[OperationCount]:
    counts = Counter(m.operation for m in samples)
    return [OperationCount(operation=op, count=c) for op, c in counts.most_common()]


def hour_key(moment: datetime) -> str:
    """ISO UTC hour bucket, e.g. 2024-05-01T13:00:00Z."""
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:00:00Z")


def performance_trends(samples: List[PerformanceMetric], now: datetime) -> List[PerformanceTrend]:
    """Hourly buckets over the trailing 24 hours, oldest first."""
    buckets: Dict[str, List[PerformanceMetric]] = defaultdict(list)
    for m in samples:
        if now - m.start_time < TREND_WINDOW:
            buckets[hour_key(m.start_time)].append(m)

    trends = []
    for hour in sorted(buckets):
        metrics = buckets[hour]
        failed = sum(1 for m in metrics if not m.success)
        trends.append(PerformanceTrend(
            hour=hour,
            average_duration=sum(m.duration for m in metrics) / len(metrics),
            operation_count=len(metrics),
            error_rate=failed / len(metrics) * 100,
        ))
    return trends


def performance_analytics(samples: List[PerformanceMetric], now: Optional[datetime] = None) -> PerformanceAnalytics:
    now = now or utc_now()
    total = len(samples)

    return PerformanceAnalytics(
        total_operations=total,
        success_rate=(sum(1 for m in samples if m.success) / total * 100) if total else 0.0,
        average_duration=(sum(m.duration for m in samples) / total) if total else 0.0,
        slowest_operations=sorted(
            (m for m in samples if m.duration), key=lambda m: m.duration, reverse=True
        )[:10],
        error_patterns=error_patterns(samples),
        operation_frequency=operation_frequency(samples),
        performance_trends=performance_trends(samples, now),
    )


# =============================================================================
# USER BEHAVIOR
# =============================================================================

def categorize_device(user_agent: str) -> str:
    if "Mobile" in user_agent:
        return "Mobile"
    if "Tablet" in user_agent:
        return "Tablet"
    return "Desktop"


def average_session_duration(samples: List[UserBehaviorMetric]) -> float:
    """Mean of (last - first interaction) per session, in ms."""
    spans: Dict[str, List[datetime]] = {}
    for m in samples:
        if m.session_id not in spans:
            spans[m.session_id] = [m.timestamp, m.timestamp]
        else:
            span = spans[m.session_id]
            span[0] = min(span[0], m.timestamp)
            span[1] = max(span[1], m.timestamp)

    if not spans:
        return 0.0
    durations = [(end - start).total_seconds() * 1000 for start, end in spans.values()]
    return sum(durations) / len(durations)


def error_prone_paths(samples: List[UserBehaviorMetric], limit: int = 5) -> List[ErrorPath]:
    """Last three clicks before an error, grouped and counted."""
    counts = Counter(" -> ".join(m.click_path[-3:]) for m in samples if m.error_encountered)
    return [ErrorPath(path=p, count=c) for p, c in counts.most_common(limit)]


def peak_usage_times(samples: List[UserBehaviorMetric], tz: tzinfo = timezone.utc, limit: int = 5) -> List[PeakUsage]:
    counts = Counter(m.timestamp.astimezone(tz).hour for m in samples)
    return [PeakUsage(hour=h, count=c) for h, c in counts.most_common(limit)]


def behavior_analytics(samples: List[UserBehaviorMetric], tz: tzinfo = timezone.utc) -> BehaviorAnalytics:
    actions = Counter(m.action for m in samples)
    devices = Counter(categorize_device(m.device_info.user_agent) for m in samples)

    return BehaviorAnalytics(
        total_sessions=len({m.session_id for m in samples}),
        average_session_duration=average_session_duration(samples),
        most_common_actions=[ActionCount(action=a, count=c) for a, c in actions.most_common(10)],
        error_prone_paths=error_prone_paths(samples),
        device_breakdown=[DeviceCount(device=d, count=c) for d, c in devices.items()],
        peak_usage_times=peak_usage_times(samples, tz),
    )


# =============================================================================
# SYSTEM HEALTH
# =============================================================================

def health_alerts(current: Optional[SystemHealthMetric]) -> List[HealthAlert]:
    alerts: List[HealthAlert] = []
    if current is None:
        return alerts

    if current.error_rate > 10:
        alerts.append(HealthAlert(type="critical", message=f"High error rate: {current.error_rate:.1f}%"))
    elif current.error_rate > 5:
        alerts.append(HealthAlert(type="warning", message=f"Elevated error rate: {current.error_rate:.1f}%"))

    if current.average_response_time > 1000:
        alerts.append(HealthAlert(type="critical", message=f"Slow response time: {current.average_response_time:.0f}ms"))
    elif current.average_response_time > 500:
        alerts.append(HealthAlert(type="warning", message=f"Elevated response time: {current.average_response_time:.0f}ms"))

    if current.memory_usage > 100:
        alerts.append(HealthAlert(type="warning", message=f"High memory usage: {current.memory_usage:.1f}MB"))

    return alerts


def performance_score(current: Optional[SystemHealthMetric]) -> float:
    """100 minus linear penalties for error rate, response time and memory, clamped to [0, 100]."""
    if current is None:
        return 100.0

    score = 100.0
    score -= current.error_rate * 2
    score -= max(0.0, (current.average_response_time - 500) / 10)
    score -= max(0.0, (current.memory_usage - 50) / 2)
    return max(0.0, min(100.0, score))


def health_analytics(snapshots: List[SystemHealthMetric]) -> HealthAnalytics:
    current = snapshots[-1] if snapshots else None
    recent = snapshots[-HEALTH_WINDOW:]

    return HealthAnalytics(
        current_health=current,
        health_trends=recent,
        alerts=health_alerts(current),
        resource_usage=[
            ResourceUsage(
                timestamp=s.timestamp,
                memory_usage=s.memory_usage,
                operations_per_minute=s.operations_per_minute,
                error_rate=s.error_rate,
                response_time=s.average_response_time,
            )
            for s in recent
        ],
        performance_score=performance_score(current),
    )


class AnalyticsAggregator:
    """Read-only view binding the aggregations to a live collector."""

    def __init__(self, collector: MetricsCollector, reporting_tz: str = "UTC"):
        self.collector = collector
        self.tz = ZoneInfo(reporting_tz)

    def get_performance_analytics(self) -> PerformanceAnalytics:
        return performance_analytics(self.collector.get_performance_metrics(), self.collector.now())

    def get_user_behavior_analytics(self) -> BehaviorAnalytics:
        return behavior_analytics(self.collector.get_user_behavior_metrics(), self.tz)

    def get_system_health_analytics(self) -> HealthAnalytics:
        return health_analytics(self.collector.get_system_health_metrics())
