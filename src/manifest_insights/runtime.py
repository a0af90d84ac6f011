"""
Runtime composition
Builds one instance of each component and wires them together.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from .config import Config, config
from .core.schemas import utc_now
from .services.analytics import AnalyticsAggregator
from .services.change_log import ChangeLog
from .services.engine import AIAnalyticsEngine
from .services.metrics import MetricsCollector, process_memory_mb
from .services.prometheus import PrometheusExporter
from .services.scheduler import Scheduler

logger = logging.getLogger(__name__)

HEALTH_TASK = "system_health"


@dataclass
class Runtime:
    """Everything a running service needs, wired by reference."""
    settings: Config
    exporter: PrometheusExporter
    scheduler: Scheduler
    change_log: ChangeLog
    collector: MetricsCollector
    aggregator: AnalyticsAggregator
    engine: AIAnalyticsEngine


def build_runtime(
    settings: Config = config,
    clock: Callable[[], datetime] = utc_now,
    memory_probe: Callable[[], float] = process_memory_mb,
    storage_path: Optional[Path] = None,
) -> Runtime:
    """
    Create the service components.

    Args:
        settings: Configuration to use
        clock: Time source shared by every component
        memory_probe: Memory reading in MB, for health snapshots
        storage_path: Change log file (defaults to settings.CHANGE_LOG_PATH)
    """
    exporter = PrometheusExporter()
    scheduler = Scheduler(clock=clock, tick=settings.SCHEDULER_TICK)

    change_log = ChangeLog(
        storage_path=storage_path or Path(settings.CHANGE_LOG_PATH),
        max_entries=settings.CHANGE_LOG_MAX_ENTRIES,
        clock=clock,
        exporter=exporter,
    )
    collector = MetricsCollector(
        change_log,
        max_history=settings.METRICS_MAX_HISTORY,
        click_path_length=settings.CLICK_PATH_LENGTH,
        clock=clock,
        memory_probe=memory_probe,
        exporter=exporter,
    )
    aggregator = AnalyticsAggregator(collector, reporting_tz=settings.REPORTING_TZ)
    engine = AIAnalyticsEngine(
        aggregator,
        change_log,
        scheduler=scheduler,
        settings=settings,
        clock=clock,
        exporter=exporter,
    )

    scheduler.add_task(HEALTH_TASK, settings.HEALTH_INTERVAL, collector.record_system_health)

    logger.info(f"Runtime built (env={settings.ENV}, change log={change_log.storage_path})")
    return Runtime(
        settings=settings,
        exporter=exporter,
        scheduler=scheduler,
        change_log=change_log,
        collector=collector,
        aggregator=aggregator,
        engine=engine,
    )
