"""
Shared test fixtures and configuration.
"""
import pytest
import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Set test environment
os.environ["MANIFEST_ENV"] = "testing"
os.environ["MANIFEST_ENABLE_SCHEDULER"] = "false"
os.environ["MANIFEST_CHANGE_LOG_PATH"] = str(Path(tempfile.mkdtemp()) / "change_history.json")


START = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Mutable time source shared by every component under test."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    """Test configuration with the scheduler disabled."""
    from manifest_insights.config import Config
    return Config(ENV="testing", ENABLE_SCHEDULER=False)


@pytest.fixture
def runtime(tmp_path, clock, settings):
    """Fully wired components on a fake clock and a constant memory reading."""
    from manifest_insights.runtime import build_runtime
    return build_runtime(
        settings,
        clock=clock,
        memory_probe=lambda: 40.0,
        storage_path=tmp_path / "change_history.json",
    )


@pytest.fixture
def change_log(runtime):
    return runtime.change_log


@pytest.fixture
def collector(runtime):
    return runtime.collector


@pytest.fixture
def engine(runtime):
    return runtime.engine


@pytest.fixture
def make_change():
    """Factory for ChangeLogEntry objects with explicit timestamps."""
    from manifest_insights.core.schemas import ChangeLogEntry

    counter = {"n": 0}

    def _make(operation="ASSIGN_TABLE", timestamp=START, batch_id=None, error_details=None,
              action_type="UPDATE", method="MANUAL"):
        counter["n"] += 1
        return ChangeLogEntry(
            id=f"change_{counter['n']:04d}",
            timestamp=timestamp,
            action_type=action_type,
            operation=operation,
            description=f"{operation} #{counter['n']}",
            method=method,
            batch_id=batch_id,
            error_details=error_details,
        )

    return _make


@pytest.fixture
def make_sample():
    """Factory for PerformanceMetric objects."""
    from manifest_insights.core.schemas import PerformanceMetric

    counter = {"n": 0}

    def _make(operation="ASSIGN_TABLE", duration=100.0, success=True, error_type=None, start=START):
        counter["n"] += 1
        return PerformanceMetric(
            operation_id=f"op_{counter['n']:04d}",
            operation=operation,
            start_time=start,
            end_time=start + timedelta(milliseconds=duration),
            duration=duration,
            success=success,
            error_type=error_type,
        )

    return _make


@pytest.fixture
def make_snapshot():
    """Factory for SystemHealthMetric objects."""
    from manifest_insights.core.schemas import SystemHealthMetric

    def _make(memory_usage=40.0, error_rate=0.0, average_response_time=100.0, timestamp=START,
              operations_per_minute=0, active_users=0):
        return SystemHealthMetric(
            timestamp=timestamp,
            memory_usage=memory_usage,
            active_users=active_users,
            operations_per_minute=operations_per_minute,
            error_rate=error_rate,
            average_response_time=average_response_time,
        )

    return _make
