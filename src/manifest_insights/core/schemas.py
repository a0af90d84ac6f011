from typing import Any, Dict, List, Optional, Literal
from pydantic import BaseModel, Field, field_validator, model_validator
from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# --- Enums (defined as Literals/Constants for Pydantic) ---

ActionType = Literal["CREATE", "UPDATE", "DELETE", "BULK_OPERATION", "IMPORT", "SYSTEM"]
ChangeMethod = Literal["MANUAL", "BULK", "IMPORT", "AUTO_ASSIGN", "API"]

SeverityType = Literal["low", "medium", "high", "critical"]
InsightType = Literal["performance", "behavior", "system", "optimization"]
AnomalyType = Literal[
    "performance_spike", "error_burst", "unusual_pattern", "capacity_issue", "user_behavior_anomaly"
]
RecommendationCategory = Literal[
    "table_assignment", "system_optimization", "user_experience", "performance", "capacity_planning"
]
PriorityType = Literal["low", "medium", "high", "urgent"]
EffortType = Literal["low", "medium", "high"]
TrendLabel = Literal["improving", "stable", "declining"]

# --- Change log ---

class GuestRef(BaseModel):
    id: str
    name: str = "Unknown"
    cabin: str = "Unknown"


class FieldChange(BaseModel):
    field: str
    old_value: Any = None
    new_value: Any = None


class ChangeRequest(BaseModel):
    """A change as reported by a mutating action, before id/timestamp are assigned."""
    type: ActionType
    operation: str = Field(..., min_length=1)
    guests: List[GuestRef] = Field(default_factory=list)
    changes: List[FieldChange] = Field(default_factory=list)
    method: ChangeMethod = "MANUAL"
    user_action: str = ""
    batch_id: Optional[str] = None
    file_name: Optional[str] = None
    error_details: Optional[str] = None
    affected_count: Optional[int] = None
    description: Optional[str] = None
    additional_context: Dict[str, Any] = Field(default_factory=dict)


class ChangeLogEntry(BaseModel):
    id: str
    timestamp: datetime
    action_type: ActionType
    operation: str
    affected_guests: List[GuestRef] = Field(default_factory=list)
    changes: List[FieldChange] = Field(default_factory=list)
    description: str
    method: ChangeMethod
    user_action: str = ""
    batch_id: Optional[str] = None
    file_name: Optional[str] = None
    error_details: Optional[str] = None
    affected_count: Optional[int] = None
    operation_id: Optional[str] = None


class ChangeFilter(BaseModel):
    """Query options for the filtered change history."""
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    operations: List[str] = Field(default_factory=list)
    action_types: List[ActionType] = Field(default_factory=list)
    methods: List[ChangeMethod] = Field(default_factory=list)
    affected_guests: List[str] = Field(default_factory=list)
    error_status: Literal["all", "success", "errors"] = "all"
    batch_operations: Optional[bool] = None
    search_term: Optional[str] = None
    sort_by: Optional[Literal["timestamp", "operation", "affected_count", "duration"]] = None
    sort_order: Literal["asc", "desc"] = "desc"
    limit: int = Field(default=50, ge=1)
    offset: int = Field(default=0, ge=0)

    @field_validator("start", "end")
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @model_validator(mode='after')
    def check_date_range(self) -> 'ChangeFilter':
        if self.start and self.end and self.start > self.end:
            raise ValueError("Filter start must not be after end.")
        return self

# --- Metric series ---

class PerformanceMetric(BaseModel):
    """One finished operation."""
    operation_id: str
    operation: str
    start_time: datetime
    end_time: datetime
    duration: float = Field(..., ge=0.0, description="Wall-clock duration in ms")
    success: bool
    error_type: Optional[str] = None
    resources_affected: int = 1
    memory_usage: Optional[float] = Field(default=None, description="RSS delta in MB")


class Viewport(BaseModel):
    width: int = 0
    height: int = 0


class DeviceInfo(BaseModel):
    user_agent: str = "unknown"
    viewport: Viewport = Field(default_factory=Viewport)
    connection: Optional[str] = None


class InteractionContext(BaseModel):
    """Client-side details reported with an interaction."""
    duration: float = Field(default=0.0, ge=0.0)
    error: bool = False
    user_agent: Optional[str] = None
    viewport: Viewport = Field(default_factory=Viewport)
    connection: Optional[str] = None
    user_id: Optional[str] = None


class UserBehaviorMetric(BaseModel):
    session_id: str
    user_id: Optional[str] = None
    timestamp: datetime
    action: str
    duration: float = 0.0
    click_path: List[str] = Field(default_factory=list)
    error_encountered: bool = False
    device_info: DeviceInfo = Field(default_factory=DeviceInfo)


class SystemHealthMetric(BaseModel):
    timestamp: datetime
    memory_usage: float
    active_users: int
    operations_per_minute: int
    error_rate: float
    average_response_time: float
    database_connections: int = 1
    cache_hit_rate: Optional[float] = None

# --- Aggregated analytics ---

class ErrorPattern(BaseModel):
    pattern: str
    count: int


class OperationCount(BaseModel):
    operation: str
    count: int


class PerformanceTrend(BaseModel):
    hour: str
    average_duration: float
    operation_count: int
    error_rate: float


class PerformanceAnalytics(BaseModel):
    total_operations: int = 0
    success_rate: float = 0.0
    average_duration: float = 0.0
    slowest_operations: List[PerformanceMetric] = Field(default_factory=list)
    error_patterns: List[ErrorPattern] = Field(default_factory=list)
    operation_frequency: List[OperationCount] = Field(default_factory=list)
    performance_trends: List[PerformanceTrend] = Field(default_factory=list)


class ActionCount(BaseModel):
    action: str
    count: int


class ErrorPath(BaseModel):
    path: str
    count: int


class DeviceCount(BaseModel):
    device: str
    count: int


class PeakUsage(BaseModel):
    hour: int = Field(..., ge=0, le=23)
    count: int


class BehaviorAnalytics(BaseModel):
    total_sessions: int = 0
    average_session_duration: float = 0.0
    most_common_actions: List[ActionCount] = Field(default_factory=list)
    error_prone_paths: List[ErrorPath] = Field(default_factory=list)
    device_breakdown: List[DeviceCount] = Field(default_factory=list)
    peak_usage_times: List[PeakUsage] = Field(default_factory=list)


class HealthAlert(BaseModel):
    type: Literal["warning", "critical"]
    message: str


class ResourceUsage(BaseModel):
    timestamp: datetime
    memory_usage: float
    operations_per_minute: int
    error_rate: float
    response_time: float


class HealthAnalytics(BaseModel):
    current_health: Optional[SystemHealthMetric] = None
    health_trends: List[SystemHealthMetric] = Field(default_factory=list)
    alerts: List[HealthAlert] = Field(default_factory=list)
    resource_usage: List[ResourceUsage] = Field(default_factory=list)
    performance_score: float = 100.0

# --- Rule outputs ---

class InsightDraft(BaseModel):
    type: InsightType
    severity: SeverityType
    confidence: float = Field(..., ge=0, le=100)
    title: str
    description: str
    prediction: str
    recommended_actions: List[str] = Field(default_factory=list)
    timeframe: str
    impact: Dict[str, float] = Field(default_factory=dict)
    data_points: List[Any] = Field(default_factory=list)


class PredictiveInsight(InsightDraft):
    id: str
    created_at: datetime
    expires_at: datetime


class AnomalyDraft(BaseModel):
    type: AnomalyType
    severity: SeverityType
    confidence: float = Field(..., ge=0, le=100)
    title: str
    description: str
    affected_metrics: List[str] = Field(default_factory=list)
    baseline: Dict[str, Any] = Field(default_factory=dict)
    current: Dict[str, Any] = Field(default_factory=dict)
    deviation: float
    suggested_actions: List[str] = Field(default_factory=list)


class AnomalyDetection(AnomalyDraft):
    id: str
    detected_at: datetime
    auto_resolved: bool = False
    resolved_at: Optional[datetime] = None


class RecommendationDraft(BaseModel):
    category: RecommendationCategory
    priority: PriorityType
    title: str
    description: str
    rationale: str
    expected_benefit: str
    implementation_effort: EffortType
    estimated_impact: Dict[str, float] = Field(default_factory=dict)
    action_steps: List[str] = Field(default_factory=list)
    prerequisites: List[str] = Field(default_factory=list)
    risks: List[str] = Field(default_factory=list)


class SmartRecommendation(RecommendationDraft):
    id: str
    created_at: datetime
    valid_until: datetime
    implemented: bool = False
    implemented_at: Optional[datetime] = None
    actual_impact: Optional[Dict[str, Any]] = None

# --- Dashboard ---

class TrendAnalysis(BaseModel):
    performance: TrendLabel = "stable"
    efficiency: TrendLabel = "stable"
    user_satisfaction: TrendLabel = "stable"
    system_health: TrendLabel = "stable"


class PredictedMetrics(BaseModel):
    next_hour_load: int
    peak_usage_time: str
    expected_errors: int
    capacity_utilization: float


class AIInsightsDashboard(BaseModel):
    insights: List[PredictiveInsight]
    anomalies: List[AnomalyDetection]
    recommendations: List[SmartRecommendation]
    system_score: float
    trend_analysis: TrendAnalysis
    predicted_metrics: PredictedMetrics
    ml_model_accuracy: Dict[str, float]
