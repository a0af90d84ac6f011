"""
AI Analytics Engine
Maintains deduplicated insights, anomalies and recommendations produced by the
heuristic rule registries, and assembles the dashboard snapshot.

Nothing here is learned: "model accuracy" values are configuration constants
and every output comes from a fixed threshold rule.
"""
import asyncio
import logging
import time
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar, Union

from ..config import Config, config
from ..core.schemas import (
    AIInsightsDashboard,
    AnomalyDetection,
    AnomalyDraft,
    BehaviorAnalytics,
    HealthAnalytics,
    InsightDraft,
    PerformanceAnalytics,
    PredictedMetrics,
    PredictiveInsight,
    RecommendationDraft,
    SmartRecommendation,
    TrendAnalysis,
    TrendLabel,
    utc_now,
)
from ..observability import log_analysis_event
from .analytics import AnalyticsAggregator
from .change_log import ChangeLog
from .prometheus import PrometheusExporter
from .rules import (
    ANOMALY_RULES,
    INSIGHT_RULES,
    PATTERN_RULES,
    RECOMMENDATION_RULES,
    TABLE_ASSIGNMENT_RULES,
    Rule,
    RuleContext,
    evaluate_rules,
    predict_next_peak_hour,
    system_score,
    trend_direction,
)
from .scheduler import Scheduler

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Scheduler task names
ANOMALY_PASS = "anomaly_detection"
INSIGHT_PASS = "predictive_insights"
RECOMMENDATION_PASS = "recommendations"
PATTERN_PASS = "pattern_analysis"
TABLE_ASSIGNMENT_PASS = "table_assignment"
INITIAL_ANALYSIS = "initial_analysis"

FULL_ANALYSIS_PASSES = (
    ANOMALY_PASS,
    INSIGHT_PASS,
    RECOMMENDATION_PASS,
    PATTERN_PASS,
    TABLE_ASSIGNMENT_PASS,
)

DEFAULT_NEXT_HOUR_LOAD = 50
DEFAULT_CAPACITY_UTILIZATION = 50.0


def dedup_key(item: Union[InsightDraft, AnomalyDraft, RecommendationDraft]) -> Tuple[str, str]:
    """Identity used to suppress repeated rule outputs (exact string match)."""
    if isinstance(item, RecommendationDraft):
        return (item.category, item.title)
    return (item.type, item.title)


def _newest_first(items: List[T], key: Callable[[T], datetime]) -> List[T]:
    """Sort descending by timestamp; among equal timestamps the later insert wins."""
    return sorted(reversed(items), key=key, reverse=True)


# =============================================================================
# DASHBOARD HELPERS
# =============================================================================

def trend_status(values: Sequence[float], higher_is_better: bool) -> TrendLabel:
    """Qualitative label from the trend direction of the last three values."""
    if len(values) < 3:
        return "stable"

    trend = trend_direction(list(values)[-3:])
    if trend > 10:
        return "improving" if higher_is_better else "declining"
    if trend < -10:
        return "declining" if higher_is_better else "improving"
    return "stable"


def predict_next_hour_load(performance: Optional[PerformanceAnalytics]) -> int:
    if performance is None or not performance.performance_trends:
        return DEFAULT_NEXT_HOUR_LOAD
    recent = performance.performance_trends[-3:]
    return round(sum(t.operation_count for t in recent) / len(recent) * 1.1)


def predict_expected_errors(performance: Optional[PerformanceAnalytics]) -> int:
    if performance is None:
        return 0
    return round(sum(p.count for p in performance.error_patterns) * 0.8)


def predict_capacity_utilization(health: Optional[HealthAnalytics]) -> float:
    if health is None or health.current_health is None:
        return DEFAULT_CAPACITY_UTILIZATION
    return min(100.0, health.current_health.memory_usage * 1.15)


def predict_metrics(
    performance: Optional[PerformanceAnalytics],
    behavior: Optional[BehaviorAnalytics],
    health: Optional[HealthAnalytics],
) -> PredictedMetrics:
    peaks = behavior.peak_usage_times if behavior is not None else []
    return PredictedMetrics(
        next_hour_load=predict_next_hour_load(performance),
        peak_usage_time=f"{predict_next_peak_hour(peaks)}:00",
        expected_errors=predict_expected_errors(performance),
        capacity_utilization=predict_capacity_utilization(health),
    )


def trend_analysis(
    performance: Optional[PerformanceAnalytics],
    behavior: Optional[BehaviorAnalytics],
    health: Optional[HealthAnalytics],
) -> TrendAnalysis:
    durations = [t.average_duration for t in performance.performance_trends] if performance else []
    frequencies = [o.count for o in performance.operation_frequency] if performance else []
    error_paths = [p.count for p in behavior.error_prone_paths] if behavior else []

    return TrendAnalysis(
        performance=trend_status(durations, higher_is_better=False),
        efficiency=trend_status(frequencies, higher_is_better=True),
        user_satisfaction=trend_status(error_paths, higher_is_better=False),
        system_health="improving" if health is not None and health.performance_score > 80 else "declining",
    )


class AIAnalyticsEngine:
    """
    Heuristic analytics engine.

    The three collections are only appended to by the rule passes and only
    mutated through `resolve_anomaly` / `mark_recommendation_implemented`.
    Getters hand out deep copies.

    Usage:
        engine = AIAnalyticsEngine(aggregator, change_log)
        dashboard = await engine.run_full_analysis()
    """

    def __init__(
        self,
        aggregator: AnalyticsAggregator,
        change_log: ChangeLog,
        scheduler: Optional[Scheduler] = None,
        settings: Config = config,
        clock: Callable[[], datetime] = utc_now,
        exporter: Optional[PrometheusExporter] = None,
    ):
        self.aggregator = aggregator
        self.change_log = change_log
        self.settings = settings
        self.scheduler = scheduler or Scheduler(clock=clock, tick=settings.SCHEDULER_TICK)
        self._clock = clock
        self._exporter = exporter

        self._insights: List[PredictiveInsight] = []
        self._anomalies: List[AnomalyDetection] = []
        self._recommendations: List[SmartRecommendation] = []

        self._register_passes()

    def _register_passes(self):
        s = self.settings
        self.scheduler.add_task(ANOMALY_PASS, s.ANOMALY_INTERVAL, self.run_anomaly_detection)
        self.scheduler.add_task(INSIGHT_PASS, s.INSIGHT_INTERVAL, self.generate_predictive_insights)
        self.scheduler.add_task(RECOMMENDATION_PASS, s.RECOMMENDATION_INTERVAL, self.update_recommendations)
        # Only run as part of a full analysis
        self.scheduler.add_task(PATTERN_PASS, None, self.analyze_patterns)
        self.scheduler.add_task(TABLE_ASSIGNMENT_PASS, None, self.optimize_table_assignments)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Schedule the initial full analysis and start the periodic passes."""
        self.scheduler.add_task(
            INITIAL_ANALYSIS, 0, self.run_full_analysis,
            initial_delay=self.settings.INITIAL_ANALYSIS_DELAY,
        )
        self.scheduler.start()
        logger.info("Analytics engine started")

    async def shutdown(self) -> None:
        await self.scheduler.stop()
        logger.info("Analytics engine stopped")

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def add_insight(self, draft: InsightDraft) -> Optional[PredictiveInsight]:
        """
        Store a new insight unless a live one with the same key exists.

        Returns:
            The stored insight, or None if it was suppressed
        """
        now = self._clock()
        key = dedup_key(draft)
        if any(dedup_key(i) == key for i in self._insights if i.expires_at > now):
            logger.debug(f"Insight suppressed (duplicate): {draft.title}")
            return None

        insight = PredictiveInsight(
            **draft.model_dump(include=set(InsightDraft.model_fields)),
            id=f"insight_{uuid.uuid4().hex[:12]}",
            created_at=now,
            expires_at=now + timedelta(hours=self.settings.INSIGHT_TTL_HOURS),
        )
        self._insights.append(insight)
        if len(self._insights) > self.settings.MAX_INSIGHTS:
            self._insights = self._insights[-self.settings.MAX_INSIGHTS:]

        logger.info(f"Insight added: {insight.id} [{insight.severity}] {insight.title}")
        if self._exporter:
            self._exporter.record_rule_output("insight", insight.type)
        return insight

    def add_anomaly(self, draft: AnomalyDraft) -> Optional[AnomalyDetection]:
        """
        Store a new anomaly unless an unresolved one with the same key exists.

        Returns:
            The stored anomaly, or None if it was suppressed
        """
        key = dedup_key(draft)
        if any(dedup_key(a) == key for a in self._anomalies if not a.auto_resolved):
            logger.debug(f"Anomaly suppressed (duplicate): {draft.title}")
            return None

        anomaly = AnomalyDetection(
            **draft.model_dump(include=set(AnomalyDraft.model_fields)),
            id=f"anomaly_{uuid.uuid4().hex[:12]}",
            detected_at=self._clock(),
        )
        self._anomalies.append(anomaly)
        if len(self._anomalies) > self.settings.MAX_ANOMALIES:
            self._anomalies = self._anomalies[-self.settings.MAX_ANOMALIES:]

        logger.warning(f"Anomaly detected: {anomaly.id} [{anomaly.severity}] {anomaly.title}")
        if self._exporter:
            self._exporter.record_rule_output("anomaly", anomaly.type)
        return anomaly

    def add_recommendation(self, draft: RecommendationDraft) -> Optional[SmartRecommendation]:
        """
        Store a new recommendation unless a pending one with the same key exists.

        Returns:
            The stored recommendation, or None if it was suppressed
        """
        key = dedup_key(draft)
        if any(dedup_key(r) == key for r in self._recommendations if not r.implemented):
            logger.debug(f"Recommendation suppressed (duplicate): {draft.title}")
            return None

        now = self._clock()
        recommendation = SmartRecommendation(
            **draft.model_dump(include=set(RecommendationDraft.model_fields)),
            id=f"rec_{uuid.uuid4().hex[:12]}",
            created_at=now,
            valid_until=now + timedelta(days=self.settings.RECOMMENDATION_TTL_DAYS),
        )
        self._recommendations.append(recommendation)
        if len(self._recommendations) > self.settings.MAX_RECOMMENDATIONS:
            self._recommendations = self._recommendations[-self.settings.MAX_RECOMMENDATIONS:]

        logger.info(f"Recommendation added: {recommendation.id} [{recommendation.priority}] {recommendation.title}")
        if self._exporter:
            self._exporter.record_rule_output("recommendation", recommendation.category)
        return recommendation

    def cleanup_insights(self) -> int:
        """Drop expired insights. Returns how many were removed."""
        now = self._clock()
        before = len(self._insights)
        self._insights = [i for i in self._insights if i.expires_at > now]
        return before - len(self._insights)

    def cleanup_anomalies(self) -> int:
        """Drop anomalies that are resolved and past the retention window."""
        cutoff = self._clock() - timedelta(hours=self.settings.ANOMALY_RETENTION_HOURS)
        before = len(self._anomalies)
        self._anomalies = [a for a in self._anomalies if not (a.auto_resolved and a.detected_at < cutoff)]
        return before - len(self._anomalies)

    def cleanup_recommendations(self) -> int:
        """Drop recommendations past their validity."""
        now = self._clock()
        before = len(self._recommendations)
        self._recommendations = [r for r in self._recommendations if r.valid_until > now]
        return before - len(self._recommendations)

    def cleanup(self) -> int:
        return self.cleanup_insights() + self.cleanup_anomalies() + self.cleanup_recommendations()

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def _safe(self, getter: Callable[[], T], name: str) -> Optional[T]:
        try:
            return getter()
        except Exception as e:
            logger.error(f"Failed to compute {name} analytics: {e}", exc_info=True)
            return None

    def build_context(self) -> RuleContext:
        """Snapshot of everything the rules look at."""
        return RuleContext(
            now=self._clock(),
            performance=self._safe(self.aggregator.get_performance_analytics, "performance"),
            behavior=self._safe(self.aggregator.get_user_behavior_analytics, "behavior"),
            health=self._safe(self.aggregator.get_system_health_analytics, "health"),
            changes=self.change_log.read_all(),
            reporting_tz=self.aggregator.tz,
        )

    def _run_pass(
        self,
        name: str,
        rules: List[Rule],
        add: Callable[[Any], Optional[T]],
        cleanup: Optional[Callable[[], int]] = None,
    ) -> List[T]:
        start = time.perf_counter()
        drafts, failed = evaluate_rules(rules, self.build_context())
        added = [item for item in (add(d) for d in drafts) if item is not None]
        purged = cleanup() if cleanup else 0
        self._update_gauges()

        log_analysis_event(
            name,
            {"drafts": len(drafts), "added": len(added), "purged": purged},
            duration_ms=(time.perf_counter() - start) * 1000,
            failed_rules=len(failed),
            totals=self.stats(),
        )
        return added

    def run_anomaly_detection(self) -> List[AnomalyDetection]:
        return self._run_pass(ANOMALY_PASS, ANOMALY_RULES, self.add_anomaly, self.cleanup_anomalies)

    def generate_predictive_insights(self) -> List[PredictiveInsight]:
        return self._run_pass(INSIGHT_PASS, INSIGHT_RULES, self.add_insight, self.cleanup_insights)

    def update_recommendations(self) -> List[SmartRecommendation]:
        return self._run_pass(
            RECOMMENDATION_PASS, RECOMMENDATION_RULES, self.add_recommendation, self.cleanup_recommendations
        )

    def analyze_patterns(self) -> List[PredictiveInsight]:
        """Mine the change history for temporal, operation and error patterns."""
        return self._run_pass(PATTERN_PASS, PATTERN_RULES, self.add_insight)

    def optimize_table_assignments(self) -> List[SmartRecommendation]:
        """Compare automatic table assignments to the manual fixes that followed."""
        return self._run_pass(TABLE_ASSIGNMENT_PASS, TABLE_ASSIGNMENT_RULES, self.add_recommendation)

    async def run_full_analysis(self) -> AIInsightsDashboard:
        """
        Run all five passes concurrently and return the resulting dashboard.

        Passes already in flight are skipped rather than run twice.
        """
        start = time.perf_counter()
        results = await asyncio.gather(*(self.scheduler.trigger(name) for name in FULL_ANALYSIS_PASSES))
        skipped = [name for name, ran in zip(FULL_ANALYSIS_PASSES, results) if not ran]
        if skipped:
            logger.info(f"Full analysis skipped passes already running: {skipped}")

        logger.info(f"Full analysis completed in {(time.perf_counter() - start) * 1000:.2f}ms")
        return self.get_dashboard()

    # ------------------------------------------------------------------
    # Queries & state transitions
    # ------------------------------------------------------------------

    def stats(self) -> Dict[str, int]:
        return {
            "insights": len(self._insights),
            "anomalies": len(self._anomalies),
            "open_anomalies": sum(1 for a in self._anomalies if not a.auto_resolved),
            "recommendations": len(self._recommendations),
            "pending_recommendations": sum(1 for r in self._recommendations if not r.implemented),
        }

    def _update_gauges(self):
        if not self._exporter:
            return
        s = self.stats()
        self._exporter.update_engine_state(s["open_anomalies"], s["insights"], s["pending_recommendations"])

    def get_dashboard(self) -> AIInsightsDashboard:
        performance = self._safe(self.aggregator.get_performance_analytics, "performance")
        behavior = self._safe(self.aggregator.get_user_behavior_analytics, "behavior")
        health = self._safe(self.aggregator.get_system_health_analytics, "health")

        score = system_score(performance, behavior, health)
        if self._exporter:
            self._exporter.update_system_score(score)

        return AIInsightsDashboard(
            insights=[i.model_copy(deep=True) for i in _newest_first(self._insights, lambda i: i.created_at)],
            anomalies=[a.model_copy(deep=True) for a in _newest_first(self._anomalies, lambda a: a.detected_at)],
            recommendations=[
                r.model_copy(deep=True) for r in _newest_first(self._recommendations, lambda r: r.created_at)
            ],
            system_score=score,
            trend_analysis=trend_analysis(performance, behavior, health),
            predicted_metrics=predict_metrics(performance, behavior, health),
            ml_model_accuracy=dict(self.settings.MODEL_ACCURACY),
        )

    def export_dashboard(self) -> Dict[str, Any]:
        """JSON-ready dashboard with an export timestamp."""
        payload = self.get_dashboard().model_dump(mode="json")
        payload["exported_at"] = self._clock().isoformat()
        return payload

    def get_insights(self) -> List[PredictiveInsight]:
        return [i.model_copy(deep=True) for i in self._insights]

    def get_anomalies(self, resolved: Optional[bool] = None) -> List[AnomalyDetection]:
        return [
            a.model_copy(deep=True) for a in self._anomalies
            if resolved is None or a.auto_resolved == resolved
        ]

    def get_recommendations(self, implemented: Optional[bool] = None) -> List[SmartRecommendation]:
        return [
            r.model_copy(deep=True) for r in self._recommendations
            if implemented is None or r.implemented == implemented
        ]

    def mark_recommendation_implemented(
        self, recommendation_id: str, actual_impact: Optional[Dict[str, Any]] = None
    ) -> Optional[SmartRecommendation]:
        """
        Mark a recommendation implemented.

        Unknown ids and already-implemented recommendations are left untouched.

        Returns:
            The recommendation after the update, or None if the id is unknown
        """
        recommendation = next((r for r in self._recommendations if r.id == recommendation_id), None)
        if recommendation is None:
            logger.warning(f"Recommendation not found: {recommendation_id}")
            return None

        if not recommendation.implemented:
            recommendation.implemented = True
            recommendation.implemented_at = self._clock()
            if actual_impact is not None:
                recommendation.actual_impact = actual_impact
            logger.info(f"Recommendation implemented: {recommendation_id}")
            self._update_gauges()
        return recommendation.model_copy(deep=True)

    def resolve_anomaly(self, anomaly_id: str) -> Optional[AnomalyDetection]:
        """
        Resolve an anomaly.

        Unknown ids and already-resolved anomalies are left untouched.

        Returns:
            The anomaly after the update, or None if the id is unknown
        """
        anomaly = next((a for a in self._anomalies if a.id == anomaly_id), None)
        if anomaly is None:
            logger.warning(f"Anomaly not found: {anomaly_id}")
            return None

        if not anomaly.auto_resolved:
            anomaly.auto_resolved = True
            anomaly.resolved_at = self._clock()
            logger.info(f"Anomaly resolved: {anomaly_id}")
            self._update_gauges()
        return anomaly.model_copy(deep=True)
