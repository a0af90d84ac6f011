"""
Heuristic Rule Registry
Threshold rules that turn analytics snapshots and the change history into
insights, anomalies and recommendations.

Each rule is a small predicate + factory: `evaluate(context)` returns the
drafts to add (an empty list when the rule does not fire). Rules never raise
on missing input; absent analytics simply yield no drafts.
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Callable, List, Optional, Sequence, Tuple, Union

from ..core.schemas import (
    AnomalyDraft,
    BehaviorAnalytics,
    ChangeLogEntry,
    HealthAnalytics,
    InsightDraft,
    PeakUsage,
    PerformanceAnalytics,
    RecommendationDraft,
)

logger = logging.getLogger(__name__)

Draft = Union[InsightDraft, AnomalyDraft, RecommendationDraft]

# Samples inspected by the trend rules
TREND_SAMPLE_SIZE = 5
SHORT_TREND_SAMPLE_SIZE = 3

TABLE_OPERATIONS = ("ASSIGN_TABLE", "REMOVE_FROM_TABLE", "AUTO_ASSIGN_TABLES")
MANUAL_TABLE_OPERATIONS = ("ASSIGN_TABLE", "REMOVE_FROM_TABLE")
DEFAULT_PEAK_HOUR = 12


@dataclass
class RuleContext:
    """Everything a rule may look at during one pass."""
    now: datetime
    performance: Optional[PerformanceAnalytics] = None
    behavior: Optional[BehaviorAnalytics] = None
    health: Optional[HealthAnalytics] = None
    changes: List[ChangeLogEntry] = field(default_factory=list)
    reporting_tz: tzinfo = timezone.utc

    def changes_since(self, delta: timedelta) -> List[ChangeLogEntry]:
        cutoff = self.now - delta
        return [c for c in self.changes if c.timestamp > cutoff]


@dataclass(frozen=True)
class Rule:
    id: str
    evaluate: Callable[[RuleContext], List[Draft]]


ANOMALY_RULES: List[Rule] = []
INSIGHT_RULES: List[Rule] = []
RECOMMENDATION_RULES: List[Rule] = []
PATTERN_RULES: List[Rule] = []
TABLE_ASSIGNMENT_RULES: List[Rule] = []


def rule(registry: List[Rule], rule_id: str):
    """Register a rule function in evaluation order."""
    def decorator(func: Callable[[RuleContext], List[Draft]]):
        registry.append(Rule(id=rule_id, evaluate=func))
        return func
    return decorator


# =============================================================================
# HELPERS
# =============================================================================

def trend_direction(values: Sequence[float]) -> float:
    """Percentage of consecutive increases; 0 for fewer than two values."""
    if len(values) < 2:
        return 0.0
    increases = sum(1 for prev, cur in zip(values, values[1:]) if cur > prev)
    return increases / (len(values) - 1) * 100


def system_score(
    performance: Optional[PerformanceAnalytics],
    behavior: Optional[BehaviorAnalytics],
    health: Optional[HealthAnalytics],
) -> float:
    """Fixed penalties on performance, behavior and health inputs, floored at 0."""
    score = 100.0

    if performance is not None:
        if performance.average_duration > 1000:
            score -= 20
        if performance.success_rate < 95:
            score -= 15
        if len(performance.error_patterns) > 3:
            score -= 10

    if behavior is not None and len(behavior.error_prone_paths) > 2:
        score -= 15

    if health is not None and health.current_health is not None:
        if health.current_health.error_rate > 5:
            score -= 20
        if health.current_health.memory_usage > 80:
            score -= 10

    return max(0.0, score)


def predict_next_peak_hour(peaks: List[PeakUsage]) -> int:
    """Busiest observed hour; noon when nothing has been observed."""
    if not peaks:
        return DEFAULT_PEAK_HOUR
    return max(peaks, key=lambda p: p.count).hour


# =============================================================================
# ANOMALY RULES
# =============================================================================

@rule(ANOMALY_RULES, "performance_spike")
def performance_spike(ctx: RuleContext) -> List[Draft]:
    if ctx.performance is None:
        return []
    avg = ctx.performance.average_duration
    if avg <= 2000:
        return []
    return [AnomalyDraft(
        type="performance_spike",
        severity="critical" if avg > 5000 else "high",
        confidence=95,
        title="Performance Degradation Detected",
        description=f"Average operation duration has increased to {avg / 1000:.2f}s",
        affected_metrics=["response_time", "user_experience"],
        baseline={"average_duration": 800},
        current={"average_duration": avg},
        deviation=(avg - 800) / 800 * 100,
        suggested_actions=[
            "Check system resources",
            "Analyze slow operations",
            "Consider scaling infrastructure",
            "Review recent changes",
        ],
    )]


@rule(ANOMALY_RULES, "error_burst")
def error_burst(ctx: RuleContext) -> List[Draft]:
    if ctx.performance is None or not ctx.performance.error_patterns:
        return []
    patterns = ctx.performance.error_patterns
    total = sum(p.count for p in patterns)
    if total <= 10:
        return []
    return [AnomalyDraft(
        type="error_burst",
        severity="critical" if total > 50 else "high",
        confidence=90,
        title="Error Rate Spike Detected",
        description=f"Detected {total} errors across {len(patterns)} different patterns",
        affected_metrics=["error_rate", "system_stability"],
        baseline={"error_count": 2},
        current={"error_count": total},
        deviation=(total - 2) / 2 * 100,
        suggested_actions=[
            "Investigate error patterns",
            "Check system logs",
            "Review recent deployments",
            "Monitor affected operations",
        ],
    )]


@rule(ANOMALY_RULES, "performance_trend")
def performance_trend(ctx: RuleContext) -> List[Draft]:
    if ctx.performance is None or len(ctx.performance.performance_trends) < TREND_SAMPLE_SIZE:
        return []
    recent = ctx.performance.performance_trends[-TREND_SAMPLE_SIZE:]
    trend = trend_direction([t.average_duration for t in recent])
    if trend <= 50:
        return []
    return [AnomalyDraft(
        type="unusual_pattern",
        severity="medium",
        confidence=80,
        title="Performance Degradation Trend",
        description="System performance has been consistently degrading over recent periods",
        affected_metrics=["performance_trend"],
        baseline={"trend": 0},
        current={"trend": trend},
        deviation=trend,
        suggested_actions=[
            "Analyze performance bottlenecks",
            "Review system capacity",
            "Check for memory leaks",
            "Monitor resource usage",
        ],
    )]


@rule(ANOMALY_RULES, "error_prone_paths")
def error_prone_paths(ctx: RuleContext) -> List[Draft]:
    if ctx.behavior is None or len(ctx.behavior.error_prone_paths) <= 3:
        return []
    count = len(ctx.behavior.error_prone_paths)
    return [AnomalyDraft(
        type="user_behavior_anomaly",
        severity="medium",
        confidence=85,
        title="Multiple Error-Prone User Paths Detected",
        description=f"Users are encountering errors in {count} different interaction patterns",
        affected_metrics=["user_experience", "error_rate"],
        baseline={"error_paths": 1},
        current={"error_paths": count},
        deviation=(count - 1) * 100,
        suggested_actions=[
            "Review UI/UX design",
            "Analyze user interaction flows",
            "Improve error handling",
            "Add user guidance",
        ],
    )]


@rule(ANOMALY_RULES, "off_hours_peaks")
def off_hours_peaks(ctx: RuleContext) -> List[Draft]:
    if ctx.behavior is None:
        return []
    unusual = [p for p in ctx.behavior.peak_usage_times if p.hour < 6 or p.hour > 22]
    if not unusual:
        return []
    return [AnomalyDraft(
        type="unusual_pattern",
        severity="low",
        confidence=70,
        title="Unusual Peak Usage Times",
        description="Detected significant activity during typically low-usage hours",
        affected_metrics=["usage_pattern"],
        baseline={"off_hours_usage": 5},
        current={"off_hours_usage": sum(p.count for p in unusual)},
        deviation=200,
        suggested_actions=[
            "Investigate off-hours activity",
            "Check for automated processes",
            "Review user access patterns",
            "Consider timezone differences",
        ],
    )]


@rule(ANOMALY_RULES, "high_memory")
def high_memory(ctx: RuleContext) -> List[Draft]:
    if ctx.health is None or ctx.health.current_health is None:
        return []
    memory = ctx.health.current_health.memory_usage
    if memory <= 80:
        return []
    return [AnomalyDraft(
        type="capacity_issue",
        severity="critical" if memory > 95 else "high",
        confidence=95,
        title="High Memory Usage Detected",
        description=f"Memory usage at {memory:.1f}MB",
        affected_metrics=["memory_usage", "system_performance"],
        baseline={"memory_usage": 50},
        current={"memory_usage": memory},
        deviation=(memory - 50) / 50 * 100,
        suggested_actions=[
            "Clear memory caches",
            "Restart services if needed",
            "Check for memory leaks",
            "Scale resources",
        ],
    )]


@rule(ANOMALY_RULES, "elevated_error_rate")
def elevated_error_rate(ctx: RuleContext) -> List[Draft]:
    if ctx.health is None or ctx.health.current_health is None:
        return []
    rate = ctx.health.current_health.error_rate
    if rate <= 5:
        return []
    return [AnomalyDraft(
        type="error_burst",
        severity="critical" if rate > 15 else "high",
        confidence=90,
        title="Elevated System Error Rate",
        description=f"Error rate at {rate:.1f}%",
        affected_metrics=["error_rate", "system_reliability"],
        baseline={"error_rate": 1},
        current={"error_rate": rate},
        deviation=(rate - 1) * 100,
        suggested_actions=[
            "Investigate error sources",
            "Check system logs",
            "Review recent changes",
            "Monitor critical services",
        ],
    )]


@rule(ANOMALY_RULES, "memory_trend")
def memory_trend(ctx: RuleContext) -> List[Draft]:
    if ctx.health is None or len(ctx.health.resource_usage) < TREND_SAMPLE_SIZE:
        return []
    recent = ctx.health.resource_usage[-TREND_SAMPLE_SIZE:]
    trend = trend_direction([r.memory_usage for r in recent])
    if trend <= 30:
        return []
    return [AnomalyDraft(
        type="capacity_issue",
        severity="medium",
        confidence=75,
        title="Memory Usage Trending Upward",
        description="Memory usage has been consistently increasing",
        affected_metrics=["memory_trend"],
        baseline={"memory_trend": 0},
        current={"memory_trend": trend},
        deviation=trend,
        suggested_actions=[
            "Monitor memory usage closely",
            "Check for memory leaks",
            "Plan capacity scaling",
            "Optimize memory usage",
        ],
    )]


# =============================================================================
# INSIGHT RULES
# =============================================================================

@rule(INSIGHT_RULES, "degradation_predicted")
def degradation_predicted(ctx: RuleContext) -> List[Draft]:
    if ctx.performance is None or len(ctx.performance.performance_trends) <= SHORT_TREND_SAMPLE_SIZE:
        return []
    trends = ctx.performance.performance_trends
    trend = trend_direction([t.average_duration for t in trends[-SHORT_TREND_SAMPLE_SIZE:]])
    if trend <= 20:
        return []
    projected = ctx.performance.average_duration * (1 + trend / 100) / 1000
    return [InsightDraft(
        type="performance",
        severity="medium",
        confidence=82,
        title="Performance Degradation Predicted",
        description="Based on current trends, system performance may degrade significantly in the next 2-4 hours",
        prediction=f"Average response time may increase to {projected:.2f}s",
        recommended_actions=[
            "Proactively scale resources",
            "Optimize slow operations",
            "Clear system caches",
            "Monitor critical paths",
        ],
        timeframe="2-4 hours",
        impact={"performance": -25, "user_experience": -20},
        data_points=[t.model_dump() for t in trends[-TREND_SAMPLE_SIZE:]],
    )]


@rule(INSIGHT_RULES, "increased_load")
def increased_load(ctx: RuleContext) -> List[Draft]:
    if ctx.performance is None:
        return []
    total = ctx.performance.total_operations
    recent = len(ctx.changes_since(timedelta(hours=24)))
    if recent <= total * 1.5:
        return []
    return [InsightDraft(
        type="performance",
        severity="high",
        confidence=88,
        title="Increased Load Predicted",
        description="System load is trending upward and may exceed capacity within 6 hours",
        prediction=f"Operation volume may reach {round(recent * 1.3)} ops/hour",
        recommended_actions=[
            "Prepare additional resources",
            "Enable auto-scaling",
            "Optimize database queries",
            "Cache frequently accessed data",
        ],
        timeframe="4-6 hours",
        impact={"performance": -30, "system_stability": -15},
        data_points=[{"current_ops": total, "recent_ops": recent}],
    )]


@rule(INSIGHT_RULES, "peak_usage")
def peak_usage(ctx: RuleContext) -> List[Draft]:
    if ctx.behavior is None or not ctx.behavior.peak_usage_times:
        return []
    peaks = ctx.behavior.peak_usage_times
    next_peak = predict_next_peak_hour(peaks)
    return [InsightDraft(
        type="behavior",
        severity="low",
        confidence=75,
        title="Peak Usage Period Predicted",
        description=f"Based on historical patterns, expect increased user activity around {next_peak}:00",
        prediction="User activity may increase by 40-60% during peak hours",
        recommended_actions=[
            "Prepare for increased load",
            "Pre-warm caches",
            "Monitor system resources",
            "Have support team ready",
        ],
        timeframe="Next 4-8 hours",
        impact={"performance": -10, "user_experience": 5},
        data_points=[p.model_dump() for p in peaks],
    )]


@rule(INSIGHT_RULES, "user_error_patterns")
def user_error_patterns(ctx: RuleContext) -> List[Draft]:
    if ctx.behavior is None or not ctx.behavior.error_prone_paths:
        return []
    return [InsightDraft(
        type="behavior",
        severity="medium",
        confidence=80,
        title="User Error Patterns Identified",
        description="Certain user interaction patterns are consistently leading to errors",
        prediction="Error rate may increase by 15-25% if UI issues are not addressed",
        recommended_actions=[
            "Improve error-prone UI elements",
            "Add user guidance",
            "Implement better validation",
            "Enhance error messages",
        ],
        timeframe="Ongoing",
        impact={"user_experience": -30, "efficiency": -15},
        data_points=[p.model_dump() for p in ctx.behavior.error_prone_paths],
    )]


@rule(INSIGHT_RULES, "health_degradation")
def health_degradation(ctx: RuleContext) -> List[Draft]:
    if ctx.health is None or len(ctx.health.resource_usage) < TREND_SAMPLE_SIZE:
        return []
    recent = ctx.health.resource_usage[-TREND_SAMPLE_SIZE:]
    memory = trend_direction([r.memory_usage for r in recent])
    errors = trend_direction([r.error_rate for r in recent])
    if memory <= 15 and errors <= 10:
        return []
    projected_score = max(50, ctx.health.performance_score - 20)
    return [InsightDraft(
        type="system",
        severity="high" if memory > 30 or errors > 20 else "medium",
        confidence=85,
        title="System Health Degradation Predicted",
        description="System health metrics are trending downward",
        prediction=f"System performance score may drop to {projected_score:.0f} within 2-3 hours",
        recommended_actions=[
            "Monitor system resources closely",
            "Prepare maintenance procedures",
            "Check for resource leaks",
            "Plan system optimization",
        ],
        timeframe="2-3 hours",
        impact={"system_stability": -25, "performance": -20},
        data_points=[r.model_dump(mode="json") for r in recent],
    )]


@rule(INSIGHT_RULES, "optimization_opportunities")
def optimization_opportunities(ctx: RuleContext) -> List[Draft]:
    score = system_score(ctx.performance, ctx.behavior, ctx.health)
    if score >= 80:
        return []
    return [InsightDraft(
        type="optimization",
        severity="high" if score < 60 else "medium",
        confidence=90,
        title="System Optimization Opportunities Identified",
        description=f"Current system efficiency score is {score:.0f}/100",
        prediction="Implementing recommended optimizations could improve efficiency by 20-35%",
        recommended_actions=[
            "Optimize database queries",
            "Implement caching strategies",
            "Improve error handling",
            "Streamline user workflows",
        ],
        timeframe="1-2 weeks",
        impact={"efficiency": 25, "performance": 20, "user_experience": 15},
        data_points=[{"current_score": score, "target_score": 90}],
    )]


# =============================================================================
# RECOMMENDATION RULES
# =============================================================================

@rule(RECOMMENDATION_RULES, "table_reassignments")
def table_reassignments(ctx: RuleContext) -> List[Draft]:
    recent = [c for c in ctx.changes_since(timedelta(hours=24)) if c.operation in TABLE_OPERATIONS]
    if len(recent) <= 20:
        return []
    return [RecommendationDraft(
        category="table_assignment",
        priority="medium",
        title="Optimize Table Assignment Strategy",
        description="High frequency of table assignment changes suggests optimization opportunities",
        rationale=f"{len(recent)} table assignment operations in the last 24 hours indicates inefficient initial assignments",
        expected_benefit="Reduce manual table reassignments by 40-60%",
        implementation_effort="medium",
        estimated_impact={"efficiency": 30, "user_satisfaction": 15},
        action_steps=[
            "Analyze table assignment patterns",
            "Improve automatic assignment algorithm",
            "Consider guest preferences in assignments",
            "Implement assignment validation rules",
        ],
        prerequisites=["Access to guest preference data", "Updated assignment algorithm"],
        risks=["Temporary disruption during algorithm update"],
    )]


@rule(RECOMMENDATION_RULES, "assignment_resets")
def assignment_resets(ctx: RuleContext) -> List[Draft]:
    resets = [c for c in ctx.changes if c.operation == "CLEAR_ALL_ASSIGNMENTS"]
    if len(resets) <= 2:
        return []
    return [RecommendationDraft(
        category="table_assignment",
        priority="high",
        title="Reduce Need for Assignment Resets",
        description="Frequent clearing of all assignments indicates systematic issues",
        rationale=f"{len(resets)} complete assignment resets suggest fundamental assignment problems",
        expected_benefit="Eliminate need for complete assignment resets",
        implementation_effort="high",
        estimated_impact={"efficiency": 50, "user_satisfaction": 25},
        action_steps=[
            "Investigate root causes of assignment failures",
            "Implement incremental assignment corrections",
            "Add assignment validation before execution",
            "Create assignment rollback capabilities",
        ],
        prerequisites=["Detailed analysis of assignment failures", "Enhanced validation system"],
        risks=["Complex implementation", "Potential system instability during transition"],
    )]


@rule(RECOMMENDATION_RULES, "response_times")
def response_times(ctx: RuleContext) -> List[Draft]:
    if ctx.performance is None or ctx.performance.average_duration <= 1000:
        return []
    avg = ctx.performance.average_duration
    return [RecommendationDraft(
        category="performance",
        priority="high",
        title="Optimize System Response Times",
        description=f"Average operation duration of {avg / 1000:.2f}s exceeds optimal range",
        rationale="Response times above 1 second significantly impact user experience",
        expected_benefit="Improve response times by 40-60%",
        implementation_effort="medium",
        estimated_impact={"performance": 45, "user_satisfaction": 30},
        action_steps=[
            "Profile slow operations",
            "Implement database query optimization",
            "Add response caching",
            "Optimize critical code paths",
        ],
        prerequisites=["Performance profiling tools", "Database optimization expertise"],
        risks=["Potential cache invalidation issues", "Complexity in optimization"],
    )]


@rule(RECOMMENDATION_RULES, "error_handling")
def error_handling(ctx: RuleContext) -> List[Draft]:
    if ctx.performance is None or len(ctx.performance.error_patterns) <= 5:
        return []
    return [RecommendationDraft(
        category="system_optimization",
        priority="medium",
        title="Improve Error Handling and Recovery",
        description=f"{len(ctx.performance.error_patterns)} distinct error patterns detected",
        rationale="Multiple error patterns indicate opportunities for better error handling",
        expected_benefit="Reduce error rates by 30-50%",
        implementation_effort="medium",
        estimated_impact={"system_stability": 35, "user_experience": 25},
        action_steps=[
            "Implement comprehensive error logging",
            "Add automatic error recovery",
            "Improve error user messaging",
            "Create error pattern monitoring",
        ],
        prerequisites=["Enhanced logging system", "Error recovery framework"],
        risks=["Increased system complexity", "Potential masking of underlying issues"],
    )]


@rule(RECOMMENDATION_RULES, "ui_design")
def ui_design(ctx: RuleContext) -> List[Draft]:
    if ctx.behavior is None or len(ctx.behavior.error_prone_paths) <= 2:
        return []
    return [RecommendationDraft(
        category="user_experience",
        priority="high",
        title="Improve User Interface Design",
        description=f"{len(ctx.behavior.error_prone_paths)} user interaction patterns consistently lead to errors",
        rationale="Error-prone user paths indicate UI/UX design issues",
        expected_benefit="Reduce user errors by 50-70%",
        implementation_effort="medium",
        estimated_impact={"user_satisfaction": 40, "efficiency": 25},
        action_steps=[
            "Conduct user experience audit",
            "Redesign error-prone interfaces",
            "Add user guidance and tooltips",
            "Implement better form validation",
        ],
        prerequisites=["UX design resources", "User feedback collection"],
        risks=["User adaptation period", "Potential workflow disruption"],
    )]


@rule(RECOMMENDATION_RULES, "common_workflows")
def common_workflows(ctx: RuleContext) -> List[Draft]:
    if ctx.behavior is None or not ctx.behavior.most_common_actions:
        return []
    top = ctx.behavior.most_common_actions[0]
    if top.count <= 100:
        return []
    return [RecommendationDraft(
        category="user_experience",
        priority="medium",
        title="Optimize Most Common User Workflows",
        description=f'"{top.action}" is performed {top.count} times - optimization opportunity',
        rationale="Optimizing the most frequent user actions provides maximum impact",
        expected_benefit="Improve workflow efficiency by 20-30%",
        implementation_effort="low",
        estimated_impact={"efficiency": 25, "user_satisfaction": 20},
        action_steps=[
            "Analyze top user actions",
            "Streamline common workflows",
            "Add keyboard shortcuts",
            "Implement bulk operations",
        ],
        prerequisites=["User workflow analysis", "UI enhancement capabilities"],
        risks=["Learning curve for new shortcuts", "Potential feature complexity"],
    )]


@rule(RECOMMENDATION_RULES, "capacity_planning")
def capacity_planning(ctx: RuleContext) -> List[Draft]:
    if ctx.performance is None or ctx.behavior is None:
        return []
    total_ops = ctx.performance.total_operations
    sessions = ctx.behavior.total_sessions
    if total_ops <= 1000 and sessions <= 50:
        return []
    return [RecommendationDraft(
        category="capacity_planning",
        priority="medium",
        title="Plan for Increased System Capacity",
        description="Current usage patterns suggest need for capacity planning",
        rationale=f"{total_ops} operations and {sessions} sessions indicate growing usage",
        expected_benefit="Prevent performance degradation during peak usage",
        implementation_effort="high",
        estimated_impact={"system_stability": 30, "performance": 25},
        action_steps=[
            "Analyze usage growth trends",
            "Plan infrastructure scaling",
            "Implement auto-scaling policies",
            "Set up capacity monitoring",
        ],
        prerequisites=["Infrastructure scaling capabilities", "Monitoring tools"],
        risks=["Increased operational costs", "Complexity in scaling management"],
    )]


# =============================================================================
# CHANGE HISTORY PATTERNS
# =============================================================================

@rule(PATTERN_RULES, "temporal_patterns")
def temporal_patterns(ctx: RuleContext) -> List[Draft]:
    hourly = Counter(c.timestamp.astimezone(ctx.reporting_tz).hour for c in ctx.changes)
    if not hourly:
        return []
    average = sum(hourly.values()) / 24
    busy_hours = sorted(h for h, count in hourly.items() if count > average * 2)
    if not busy_hours:
        return []
    return [InsightDraft(
        type="behavior",
        severity="low",
        confidence=70,
        title="Unusual Activity Patterns Detected",
        description=f"Detected high activity during hours: {', '.join(str(h) for h in busy_hours)}",
        prediction="Activity patterns may indicate automated processes or unusual user behavior",
        recommended_actions=[
            "Investigate high-activity periods",
            "Check for automated processes",
            "Review user access patterns",
            "Consider load balancing",
        ],
        timeframe="Ongoing",
        impact={"system_stability": -5},
        data_points=[{"hour": h, "count": hourly[h]} for h in sorted(hourly)],
    )]


@rule(PATTERN_RULES, "dominant_operations")
def dominant_operations(ctx: RuleContext) -> List[Draft]:
    counts = Counter(c.operation for c in ctx.changes)
    total = sum(counts.values())
    drafts: List[Draft] = []
    for operation, count in counts.items():
        if count <= total * 0.3:
            continue
        share = count / total * 100
        drafts.append(InsightDraft(
            type="optimization",
            severity="low",
            confidence=75,
            title=f"High Frequency Operation: {operation}",
            description=f'Operation "{operation}" accounts for {share:.1f}% of all activities',
            prediction="Optimizing this operation could significantly improve overall system performance",
            recommended_actions=[
                f"Optimize {operation} operation",
                "Implement caching for frequent operations",
                "Consider bulk processing",
                "Add operation monitoring",
            ],
            timeframe="1-2 weeks",
            impact={"performance": 15, "efficiency": 20},
            data_points=[{"operation": operation, "count": count, "percentage": share}],
        ))
    return drafts


@rule(PATTERN_RULES, "recurring_errors")
def recurring_errors(ctx: RuleContext) -> List[Draft]:
    errors = Counter(c.operation for c in ctx.changes if c.error_details)
    recurring = [(op, count) for op, count in errors.items() if count > 2]
    if not recurring:
        return []
    return [InsightDraft(
        type="system",
        severity="medium",
        confidence=85,
        title="Recurring Error Patterns Identified",
        description=f"Found {len(recurring)} types of recurring errors",
        prediction="Addressing these error patterns could improve system reliability by 25-40%",
        recommended_actions=[
            "Investigate root causes of recurring errors",
            "Implement better error handling",
            "Add error prevention measures",
            "Improve system monitoring",
        ],
        timeframe="1-2 weeks",
        impact={"system_stability": 30, "user_experience": 20},
        data_points=[{"error_type": op, "count": count} for op, count in recurring],
    )]


@rule(PATTERN_RULES, "low_batch_usage")
def low_batch_usage(ctx: RuleContext) -> List[Draft]:
    if not ctx.changes:
        return []
    batch = sum(1 for c in ctx.changes if c.batch_id)
    individual = len(ctx.changes) - batch
    ratio = batch / len(ctx.changes)
    if ratio >= 0.3:
        return []
    return [InsightDraft(
        type="optimization",
        severity="medium",
        confidence=80,
        title="Low Batch Operation Usage Detected",
        description=f"Only {ratio * 100:.1f}% of operations are performed in batches",
        prediction="Increasing batch operation usage could improve efficiency by 30-50%",
        recommended_actions=[
            "Promote batch operation features",
            "Improve batch operation UI",
            "Add bulk selection capabilities",
            "Educate users on batch operations",
        ],
        timeframe="2-4 weeks",
        impact={"efficiency": 35, "user_experience": 15},
        data_points=[{"batch_ops": batch, "individual_ops": individual, "ratio": ratio}],
    )]


# =============================================================================
# TABLE ASSIGNMENT
# =============================================================================

@rule(TABLE_ASSIGNMENT_RULES, "auto_assign_adjustments")
def auto_assign_adjustments(ctx: RuleContext) -> List[Draft]:
    auto = sum(1 for c in ctx.changes if c.operation == "AUTO_ASSIGN_TABLES")
    manual = sum(1 for c in ctx.changes if c.operation in MANUAL_TABLE_OPERATIONS)
    if auto == 0 or manual <= auto * 0.5:
        return []
    return [RecommendationDraft(
        category="table_assignment",
        priority="high",
        title="Improve Automatic Table Assignment Algorithm",
        description="High number of manual adjustments after automatic assignments",
        rationale=f"{manual} manual adjustments vs {auto} auto assignments indicates algorithm inefficiency",
        expected_benefit="Reduce manual table adjustments by 60-80%",
        implementation_effort="high",
        estimated_impact={"efficiency": 50, "user_satisfaction": 30},
        action_steps=[
            "Analyze manual adjustment patterns",
            "Incorporate adjustment patterns into algorithm",
            "Add guest preference considerations",
            "Tune assignment scoring against adjustment history",
        ],
        prerequisites=["Algorithm development resources", "Guest preference data"],
        risks=["Algorithm complexity", "Potential assignment accuracy issues during development"],
    )]


@rule(TABLE_ASSIGNMENT_RULES, "table_utilization")
def table_utilization(ctx: RuleContext) -> List[Draft]:
    if not any(c.operation == "ASSIGN_TABLE" for c in ctx.changes):
        return []
    return [RecommendationDraft(
        category="table_assignment",
        priority="medium",
        title="Optimize Table Utilization Strategy",
        description="Analyze table assignment patterns for optimization opportunities",
        rationale="Systematic analysis of table assignments can reveal optimization patterns",
        expected_benefit="Improve table utilization efficiency by 15-25%",
        implementation_effort="medium",
        estimated_impact={"efficiency": 20, "resource_utilization": 25},
        action_steps=[
            "Analyze table utilization patterns",
            "Identify underutilized tables",
            "Optimize table capacity usage",
            "Implement dynamic table allocation",
        ],
        prerequisites=["Table utilization analytics", "Dynamic allocation system"],
        risks=["Complexity in dynamic allocation", "Potential guest satisfaction impact"],
    )]


def evaluate_rules(rules: List[Rule], ctx: RuleContext) -> Tuple[List[Draft], List[str]]:
    """
    Evaluate rules in registration order.

    A rule that raises is logged and skipped so the rest of the pass still runs.

    Returns:
        (drafts, ids of the rules that failed)
    """
    drafts: List[Draft] = []
    failed: List[str] = []
    for r in rules:
        try:
            drafts.extend(r.evaluate(ctx))
        except Exception as e:
            failed.append(r.id)
            logger.error(f"Rule {r.id} failed: {e}", exc_info=True)
    return drafts, failed
