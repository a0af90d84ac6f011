"""
Observability module for Manifest Insights
Structured JSON logging and analysis-pass events.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class JSONFormatter(logging.Formatter):
    """One JSON object per log record."""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if hasattr(record, "request_id"):
            log_entry["request_id"] = record.request_id
        if hasattr(record, "response_time_ms"):
            log_entry["response_time_ms"] = record.response_time_ms
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def configure_logging(level: str = "INFO") -> None:
    """Install the JSON handler on the root logger."""
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    logging.basicConfig(level=level, handlers=[handler], force=True)


def log_analysis_event(
    pass_name: str,
    added: Dict[str, int],
    duration_ms: float = 0.0,
    failed_rules: int = 0,
    totals: Optional[Dict[str, int]] = None,
):
    """Log a structured event for one analysis pass."""
    event = {
        "event_type": "analysis_pass",
        "pass": pass_name,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "added": added,
        "failed_rules": failed_rules,
        "totals": totals or {},
        "duration_ms": round(duration_ms, 2),
    }

    # Log as JSON for easy parsing by log aggregators
    logger.info(f"ANALYSIS_EVENT: {json.dumps(event)}")
