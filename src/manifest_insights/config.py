"""
Configuration module for Manifest Insights
Environment-based settings for the analytics service.
"""
import os
from dataclasses import dataclass, field
from typing import Dict, List, Literal


# Fixed presentation values for the heuristic "models". Nothing trains or
# re-evaluates these; they are reported as-is on the dashboard.
DEFAULT_MODEL_ACCURACY: Dict[str, float] = {
    "performance_prediction": 85,
    "anomaly_detection": 92,
    "user_behavior_prediction": 78,
    "system_health_prediction": 88,
}


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class Config:
    """Application configuration."""

    # Environment
    ENV: Literal["production", "development", "testing"] = "production"

    # Change log storage
    CHANGE_LOG_PATH: str = "data/change_history.json"
    CHANGE_LOG_MAX_ENTRIES: int = 1000

    # Metrics collection
    METRICS_MAX_HISTORY: int = 1000
    CLICK_PATH_LENGTH: int = 10

    # Scheduler periods (seconds)
    HEALTH_INTERVAL: float = 30
    ANOMALY_INTERVAL: float = 60
    INSIGHT_INTERVAL: float = 300
    RECOMMENDATION_INTERVAL: float = 600
    INITIAL_ANALYSIS_DELAY: float = 5
    SCHEDULER_TICK: float = 1.0
    ENABLE_SCHEDULER: bool = True

    # Rule output retention
    INSIGHT_TTL_HOURS: int = 24
    ANOMALY_RETENTION_HOURS: int = 24
    RECOMMENDATION_TTL_DAYS: int = 7
    MAX_INSIGHTS: int = 50
    MAX_ANOMALIES: int = 100
    MAX_RECOMMENDATIONS: int = 30

    # Hour-of-day bucketing for peak usage / temporal patterns
    REPORTING_TZ: str = "UTC"

    MODEL_ACCURACY: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_MODEL_ACCURACY))

    # API Settings
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    CORS_ORIGINS: List[str] = None

    def __post_init__(self):
        if self.CORS_ORIGINS is None:
            self.CORS_ORIGINS = ["*"]

    @classmethod
    def from_env(cls) -> "Config":
        """Create config from environment variables."""
        return cls(
            ENV=os.getenv("MANIFEST_ENV", "production"),
            CHANGE_LOG_PATH=os.getenv("MANIFEST_CHANGE_LOG_PATH", "data/change_history.json"),
            CHANGE_LOG_MAX_ENTRIES=int(os.getenv("MANIFEST_CHANGE_LOG_MAX_ENTRIES", "1000")),
            METRICS_MAX_HISTORY=int(os.getenv("MANIFEST_METRICS_MAX_HISTORY", "1000")),
            HEALTH_INTERVAL=float(os.getenv("MANIFEST_HEALTH_INTERVAL", "30")),
            ANOMALY_INTERVAL=float(os.getenv("MANIFEST_ANOMALY_INTERVAL", "60")),
            INSIGHT_INTERVAL=float(os.getenv("MANIFEST_INSIGHT_INTERVAL", "300")),
            RECOMMENDATION_INTERVAL=float(os.getenv("MANIFEST_RECOMMENDATION_INTERVAL", "600")),
            INITIAL_ANALYSIS_DELAY=float(os.getenv("MANIFEST_INITIAL_ANALYSIS_DELAY", "5")),
            SCHEDULER_TICK=float(os.getenv("MANIFEST_SCHEDULER_TICK", "1.0")),
            ENABLE_SCHEDULER=_env_bool("MANIFEST_ENABLE_SCHEDULER", "true"),
            REPORTING_TZ=os.getenv("MANIFEST_REPORTING_TZ", "UTC"),
            API_HOST=os.getenv("MANIFEST_HOST", "0.0.0.0"),
            API_PORT=int(os.getenv("MANIFEST_PORT", "8000")),
        )


# Global config instance
config = Config.from_env()
