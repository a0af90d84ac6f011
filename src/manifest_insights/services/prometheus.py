"""
Prometheus Metrics Service
Exposes tracked operations, telemetry volume and rule-engine state for scraping.
"""
import logging
from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)

logger = logging.getLogger(__name__)


class PrometheusExporter:
    """
    Collects and exposes Prometheus metrics for the application.

    Each exporter owns its own registry so several runtimes (tests, workers)
    can coexist in one process.
    """

    def __init__(self, app_name: str = "manifest_insights", registry: Optional[CollectorRegistry] = None):
        self.app_name = app_name
        self.registry = registry or CollectorRegistry()
        self._setup_metrics()

    def _setup_metrics(self):
        """Initialize all Prometheus metrics."""
        # Tracked operations
        self.operations_total = Counter(
            f'{self.app_name}_operations_total',
            'Total tracked operations',
            ['operation', 'success'],
            registry=self.registry
        )

        self.operation_latency = Histogram(
            f'{self.app_name}_operation_latency_seconds',
            'Tracked operation latency in seconds',
            ['operation'],
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0],
            registry=self.registry
        )

        # User telemetry
        self.interactions_total = Counter(
            f'{self.app_name}_interactions_total',
            'Recorded user interactions',
            ['error'],
            registry=self.registry
        )

        # Change log
        self.changes_total = Counter(
            f'{self.app_name}_changes_total',
            'Change log appends',
            ['action_type'],
            registry=self.registry
        )

        self.change_log_failures = Counter(
            f'{self.app_name}_change_log_failures_total',
            'Change log storage failures',
            ['stage'],
            registry=self.registry
        )

        # Rule engine
        self.rule_outputs_total = Counter(
            f'{self.app_name}_rule_outputs_total',
            'Insights, anomalies and recommendations added by the rule engine',
            ['kind', 'type'],
            registry=self.registry
        )

        self.open_anomalies = Gauge(
            f'{self.app_name}_open_anomalies',
            'Unresolved anomalies',
            registry=self.registry
        )

        self.live_insights = Gauge(
            f'{self.app_name}_live_insights',
            'Unexpired predictive insights',
            registry=self.registry
        )

        self.pending_recommendations = Gauge(
            f'{self.app_name}_pending_recommendations',
            'Recommendations not yet implemented',
            registry=self.registry
        )

        self.system_score = Gauge(
            f'{self.app_name}_system_score',
            'Heuristic system score (0-100)',
            registry=self.registry
        )

        # Info metric
        self.app_info = Info(
            f'{self.app_name}',
            'Application information',
            registry=self.registry
        )
        self.app_info.info({
            'version': '1.0.0',
            'engine': 'heuristic-rules'
        })

    # Helper methods
    def record_operation(self, operation: str, success: bool, latency: float):
        """Record a tracked operation (latency in seconds)."""
        self.operations_total.labels(operation=operation, success=str(success)).inc()
        self.operation_latency.labels(operation=operation).observe(latency)

    def record_interaction(self, error: bool):
        """Record a user interaction sample."""
        self.interactions_total.labels(error=str(error)).inc()

    def record_change(self, action_type: str):
        """Record a persisted change log entry."""
        self.changes_total.labels(action_type=action_type).inc()

    def record_change_log_failure(self, stage: str):
        """Record a swallowed change log storage failure."""
        self.change_log_failures.labels(stage=stage).inc()

    def record_rule_output(self, kind: str, output_type: str):
        """Record an item added by the rule engine."""
        self.rule_outputs_total.labels(kind=kind, type=output_type).inc()

    def update_engine_state(self, open_anomalies: int, live_insights: int, pending_recommendations: int):
        self.open_anomalies.set(open_anomalies)
        self.live_insights.set(live_insights)
        self.pending_recommendations.set(pending_recommendations)

    def update_system_score(self, score: float):
        self.system_score.set(score)

    def get_metrics(self) -> bytes:
        """Get metrics in Prometheus format."""
        return generate_latest(self.registry)

    def get_content_type(self) -> str:
        """Get content type for metrics endpoint."""
        return CONTENT_TYPE_LATEST
