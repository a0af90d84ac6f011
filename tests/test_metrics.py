"""
Tests for the metrics collector.
"""
import pytest
import asyncio


# =============================================================================
# OPERATIONS
# =============================================================================

class TestOperationTracking:
    """Tests for wrapped operations."""

    def test_success_records_sample(self, collector):
        """A successful operation returns its value and appends one sample."""
        result = collector.record_operation("ASSIGN_TABLE", lambda: 42, resources_affected=3)

        assert result == 42
        samples = collector.get_performance_metrics()
        assert len(samples) == 1
        sample = samples[0]
        assert sample.operation == "ASSIGN_TABLE"
        assert sample.operation_id.startswith("op_")
        assert sample.success is True
        assert sample.error_type is None
        assert sample.resources_affected == 3
        assert sample.duration >= 0
        assert sample.memory_usage == 0.0

    def test_failure_is_recorded_and_reraised(self, collector):
        """The original exception propagates unchanged."""
        error = ValueError("table full")

        def work():
            raise error

        with pytest.raises(ValueError) as exc_info:
            collector.record_operation("ASSIGN_TABLE", work)

        assert exc_info.value is error
        sample = collector.get_performance_metrics()[0]
        assert sample.success is False
        assert sample.error_type == "ValueError"

    def test_async_operation(self, collector):
        async def work():
            await asyncio.sleep(0)
            return "done"

        assert asyncio.run(collector.record_operation_async("BULK_IMPORT", work)) == "done"
        assert collector.get_performance_metrics()[0].operation == "BULK_IMPORT"

    def test_cancelled_operation_is_a_failure(self, collector):
        """Cancelled work is recorded as failed and the cancellation still propagates."""
        async def scenario():
            gate = asyncio.Event()

            async def work():
                await gate.wait()

            task = asyncio.create_task(collector.record_operation_async("BULK_IMPORT", work))
            await asyncio.sleep(0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())

        sample = collector.get_performance_metrics()[0]
        assert sample.success is False
        assert sample.error_type == "CancelledError"

    def test_memory_probe_failure_keeps_original_error(self, change_log, clock):
        """A probe that breaks mid-operation never replaces the operation's own exception."""
        from manifest_insights.services.metrics import MetricsCollector

        readings = iter([40.0])

        def probe():
            try:
                return next(readings)
            except StopIteration:
                raise OSError("process gone") from None

        collector = MetricsCollector(change_log, clock=clock, memory_probe=probe)

        def work():
            raise ValueError("table full")

        with pytest.raises(ValueError):
            collector.record_operation("ASSIGN_TABLE", work)

        sample = collector.get_performance_metrics()[0]
        assert sample.error_type == "ValueError"
        assert sample.memory_usage is None

    def test_track_context_manager_yields_operation_id(self, collector):
        with collector.track("AUTO_ASSIGN_TABLES") as operation_id:
            pass

        assert collector.get_performance_metrics()[0].operation_id == operation_id

    def test_history_is_bounded(self, change_log, clock):
        from manifest_insights.services.metrics import MetricsCollector

        collector = MetricsCollector(change_log, max_history=3, clock=clock, memory_probe=lambda: 1.0)
        for i in range(5):
            collector.record_operation(f"OP_{i}", lambda: None)

        assert [m.operation for m in collector.get_performance_metrics()] == ["OP_2", "OP_3", "OP_4"]

    def test_getters_return_copies(self, collector):
        collector.record_operation("ASSIGN_TABLE", lambda: None)

        collector.get_performance_metrics().clear()
        assert len(collector.get_performance_metrics()) == 1

    def test_exporter_counts_operations(self, runtime):
        runtime.collector.record_operation("ASSIGN_TABLE", lambda: None)

        metrics = runtime.exporter.get_metrics()
        assert b'manifest_insights_operations_total{operation="ASSIGN_TABLE",success="True"} 1.0' in metrics


class TestTrackedChanges:
    """Tests for operations that also write to the change log."""

    def test_success_links_change_to_sample(self, collector, change_log):
        from manifest_insights.core.schemas import ChangeRequest, GuestRef

        request = ChangeRequest(
            type="UPDATE", operation="ASSIGN_TABLE", guests=[GuestRef(id="g1", name="Anna", cabin="101")]
        )
        collector.track_change("ASSIGN_TABLE", lambda: True, request)

        entry = change_log.read_all()[0]
        sample = collector.get_performance_metrics()[0]
        assert entry.operation_id == sample.operation_id
        assert entry.action_type == "UPDATE"
        assert entry.error_details is None

    def test_failure_logs_system_change(self, collector, change_log):
        """A failed action leaves a SYSTEM entry carrying the error."""
        from manifest_insights.core.schemas import ChangeRequest

        def work():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            collector.track_change("ASSIGN_TABLE", work, ChangeRequest(type="UPDATE", operation="ASSIGN_TABLE"))

        entry = change_log.read_all()[0]
        assert entry.action_type == "SYSTEM"
        assert entry.error_details == "boom"
        assert collector.get_performance_metrics()[0].success is False


# =============================================================================
# INTERACTIONS
# =============================================================================

class TestInteractions:
    """Tests for user interaction tracking."""

    def test_click_path_keeps_last_ten(self, collector):
        for i in range(12):
            collector.record_click(f"button#c{i}")

        path = collector.get_click_path()
        assert len(path) == 10
        assert path[0] == "button#c2"
        assert path[-1] == "button#c11"

    def test_interaction_captures_session_and_path(self, collector, clock):
        collector.record_click("nav#tables")
        collector.record_click("button#assign")

        from manifest_insights.core.schemas import InteractionContext

        metric = collector.record_interaction("assign_table", InteractionContext(
            duration=350,
            error=True,
            user_agent="Mozilla/5.0 (iPhone) Mobile",
            viewport={"width": 390, "height": 844},
            user_id="purser",
        ))

        assert metric.session_id == collector.session_id
        assert metric.timestamp == clock.now
        assert metric.click_path == ["nav#tables", "button#assign"]
        assert metric.error_encountered is True
        assert metric.duration == 350
        assert metric.user_id == "purser"
        assert metric.device_info.viewport.width == 390

    def test_click_path_is_copied(self, collector):
        collector.record_click("a")
        metric = collector.record_interaction("open")
        collector.record_click("b")

        assert metric.click_path == ["a"]

    def test_defaults_without_context(self, collector):
        metric = collector.record_interaction("open")

        assert metric.error_encountered is False
        assert metric.device_info.user_agent == "unknown"
        assert metric.duration == 0


# =============================================================================
# SYSTEM HEALTH
# =============================================================================

class TestSystemHealth:
    """Tests for health snapshots."""

    def test_snapshot_from_recent_changes(self, collector, change_log, clock):
        from manifest_insights.core.schemas import ChangeRequest

        change_log.append(ChangeRequest(type="UPDATE", operation="ASSIGN_TABLE"))
        change_log.append(ChangeRequest(type="SYSTEM", operation="ASSIGN_TABLE", error_details="failed"))
        collector.record_interaction("open")

        snapshot = collector.record_system_health()

        assert snapshot.timestamp == clock.now
        assert snapshot.operations_per_minute == 2
        assert snapshot.error_rate == 50.0
        assert snapshot.memory_usage == 40.0
        assert snapshot.active_users == 1
        assert snapshot.database_connections == 1
        assert snapshot.cache_hit_rate is None
        assert collector.get_system_health_metrics() == [snapshot]

    def test_old_changes_are_ignored(self, collector, change_log, clock):
        from manifest_insights.core.schemas import ChangeRequest

        change_log.append(ChangeRequest(type="SYSTEM", operation="ASSIGN_TABLE"))
        clock.advance(minutes=5)

        snapshot = collector.record_system_health()
        assert snapshot.operations_per_minute == 0
        assert snapshot.error_rate == 0.0
        assert snapshot.active_users == 0

    def test_average_response_time_uses_last_ten(self, collector, make_sample):
        collector.record_sample(make_sample(duration=5000))
        for _ in range(10):
            collector.record_sample(make_sample(duration=100))

        assert collector.record_system_health().average_response_time == 100.0

    def test_durations_by_operation_id(self, collector, make_sample):
        sample = make_sample(duration=250)
        collector.record_sample(sample)

        assert collector.durations_by_operation_id() == {sample.operation_id: 250}
