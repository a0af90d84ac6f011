"""
Metrics Service
Tracks operation performance, user interactions and periodic system health.
In-memory series, each bounded to the most recent entries.
"""
import logging
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Iterator, List, Optional, TypeVar

import psutil

from ..core.schemas import (
    ChangeRequest,
    DeviceInfo,
    InteractionContext,
    PerformanceMetric,
    SystemHealthMetric,
    UserBehaviorMetric,
    utc_now,
)
from .change_log import ChangeLog
from .prometheus import PrometheusExporter

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Sessions seen within this window count as active users
ACTIVE_SESSION_WINDOW = timedelta(minutes=5)


def process_memory_mb() -> float:
    """Resident set size of this process in MB."""
    return psutil.Process().memory_info().rss / 1024 / 1024


class MetricsCollector:
    """
    Records three parallel time series:
    - performance samples for wrapped operations
    - user interaction samples
    - system health snapshots (one per scheduler tick of HEALTH_INTERVAL)

    Single writer: all appends happen on the event loop thread.
    """

    def __init__(
        self,
        change_log: ChangeLog,
        max_history: int = 1000,
        click_path_length: int = 10,
        clock: Callable[[], datetime] = utc_now,
        memory_probe: Callable[[], float] = process_memory_mb,
        exporter: Optional[PrometheusExporter] = None,
    ):
        self.change_log = change_log
        self.max_history = max_history
        self.click_path_length = click_path_length
        self._clock = clock
        self._memory_probe = memory_probe
        self._exporter = exporter

        self.session_id = f"session_{uuid.uuid4().hex[:12]}"
        self._click_path: List[str] = []
        self._performance: List[PerformanceMetric] = []
        self._interactions: List[UserBehaviorMetric] = []
        self._health: List[SystemHealthMetric] = []

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def _read_memory(self) -> Optional[float]:
        try:
            return self._memory_probe()
        except Exception as e:
            logger.warning(f"Memory probe failed: {e}")
            return None

    @contextmanager
    def track(self, operation: str, resources_affected: int = 1) -> Iterator[str]:
        """
        Time the enclosed block and append one performance sample.

        Exceptions, cancellation included, are recorded as a failed sample
        and re-raised unchanged. Yields the operation id.
        """
        operation_id = f"op_{uuid.uuid4().hex[:12]}"
        started_at = self._clock()
        start = time.perf_counter()
        start_memory = self._read_memory()
        success = True
        error_type = None

        try:
            yield operation_id
        except BaseException as exc:
            success = False
            error_type = type(exc).__name__
            raise
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            end_memory = self._read_memory()
            metric = PerformanceMetric(
                operation_id=operation_id,
                operation=operation,
                start_time=started_at,
                end_time=self._clock(),
                duration=round(duration_ms, 3),
                success=success,
                error_type=error_type,
                resources_affected=resources_affected,
                memory_usage=end_memory - start_memory if None not in (start_memory, end_memory) else None,
            )
            self._append_performance(metric)

            if self._exporter:
                self._exporter.record_operation(operation, success, duration_ms / 1000)
            if not success:
                logger.warning(f"[{operation_id}] {operation} failed with {error_type} after {duration_ms:.2f}ms")

    def record_operation(self, operation: str, work: Callable[[], T], resources_affected: int = 1) -> T:
        """Run `work` and record how it went."""
        with self.track(operation, resources_affected):
            return work()

    async def record_operation_async(
        self, operation: str, work: Callable[[], Awaitable[T]], resources_affected: int = 1
    ) -> T:
        """Await `work()` and record how it went."""
        with self.track(operation, resources_affected):
            return await work()

    def track_change(self, operation: str, work: Callable[[], T], request: ChangeRequest) -> T:
        """
        Run a mutating action, recording both its performance and its change entry.

        On failure a SYSTEM change carrying the error is logged before the
        exception propagates.
        """
        resources = request.affected_count or len(request.guests) or 1
        with self.track(operation, resources) as operation_id:
            try:
                result = work()
            except Exception as exc:
                failed = request.model_copy(update={
                    "type": "SYSTEM",
                    "error_details": str(exc) or type(exc).__name__,
                })
                self.change_log.append(failed, operation_id=operation_id)
                raise
            self.change_log.append(request, operation_id=operation_id)
            return result

    def record_sample(self, metric: PerformanceMetric) -> None:
        """Append a sample measured elsewhere (e.g. by the browser)."""
        self._append_performance(metric)
        if self._exporter:
            self._exporter.record_operation(metric.operation, metric.success, metric.duration / 1000)

    # ------------------------------------------------------------------
    # Interactions
    # ------------------------------------------------------------------

    def record_click(self, descriptor: str) -> None:
        """Push an element descriptor onto the click path."""
        self._click_path.append(descriptor)
        if len(self._click_path) > self.click_path_length:
            self._click_path = self._click_path[-self.click_path_length:]

    def record_interaction(self, action: str, context: Optional[InteractionContext] = None) -> UserBehaviorMetric:
        """Record a user interaction with the current session and click path."""
        context = context or InteractionContext()

        metric = UserBehaviorMetric(
            session_id=self.session_id,
            user_id=context.user_id,
            timestamp=self._clock(),
            action=action,
            duration=context.duration,
            click_path=list(self._click_path),
            error_encountered=context.error,
            device_info=DeviceInfo(
                user_agent=context.user_agent or "unknown",
                viewport=context.viewport.model_copy(),
                connection=context.connection,
            ),
        )

        self._interactions.append(metric)
        self._trim_history()

        if self._exporter:
            self._exporter.record_interaction(metric.error_encountered)
        return metric

    # ------------------------------------------------------------------
    # System health
    # ------------------------------------------------------------------

    def record_system_health(self) -> SystemHealthMetric:
        """Build one health snapshot from the trailing minute of changes."""
        now = self._clock()
        recent_changes = self.change_log.recent(1)
        recent_errors = [c for c in recent_changes if c.action_type == "SYSTEM"]

        snapshot = SystemHealthMetric(
            timestamp=now,
            memory_usage=self._memory_probe(),
            active_users=self._active_user_count(now),
            operations_per_minute=len(recent_changes),
            error_rate=(len(recent_errors) / len(recent_changes) * 100) if recent_changes else 0.0,
            average_response_time=self._average_response_time(),
            database_connections=1,
        )

        self._health.append(snapshot)
        self._trim_history()

        logger.debug(
            f"Health snapshot: memory={snapshot.memory_usage:.1f}MB ops/min={snapshot.operations_per_minute} "
            f"error_rate={snapshot.error_rate:.1f}%"
        )
        return snapshot

    def record_health_snapshot(self, snapshot: SystemHealthMetric) -> None:
        """Append an externally built snapshot."""
        self._health.append(snapshot)
        self._trim_history()

    def _active_user_count(self, now: datetime) -> int:
        cutoff = now - ACTIVE_SESSION_WINDOW
        return len({m.session_id for m in self._interactions if m.timestamp >= cutoff})

    def _average_response_time(self) -> float:
        recent = self._performance[-10:]
        if not recent:
            return 0.0
        return sum(m.duration for m in recent) / len(recent)

    # ------------------------------------------------------------------
    # Series access
    # ------------------------------------------------------------------

    def _append_performance(self, metric: PerformanceMetric):
        self._performance.append(metric)
        self._trim_history()

    def _trim_history(self):
        """Keep history within limits."""
        if len(self._performance) > self.max_history:
            self._performance = self._performance[-self.max_history:]
        if len(self._interactions) > self.max_history:
            self._interactions = self._interactions[-self.max_history:]
        if len(self._health) > self.max_history:
            self._health = self._health[-self.max_history:]

    def get_performance_metrics(self) -> List[PerformanceMetric]:
        return list(self._performance)

    def get_user_behavior_metrics(self) -> List[UserBehaviorMetric]:
        return list(self._interactions)

    def get_system_health_metrics(self) -> List[SystemHealthMetric]:
        return list(self._health)

    def get_click_path(self) -> List[str]:
        return list(self._click_path)

    def now(self) -> datetime:
        return self._clock()

    def durations_by_operation_id(self) -> Dict[str, float]:
        """operation_id -> duration (ms), for sorting the change history."""
        return {m.operation_id: m.duration for m in self._performance}
