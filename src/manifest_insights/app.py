"""
FastAPI Application for Manifest Insights
REST API over the change log, telemetry collector and analytics engine.
"""
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, Dict, List, Optional
import logging
import time
import uuid

from pydantic import BaseModel, Field, ValidationError
from starlette.responses import Response

from .config import config
from .core.schemas import (
    AIInsightsDashboard,
    AnomalyDetection,
    ChangeFilter,
    ChangeLogEntry,
    ChangeRequest,
    InteractionContext,
    PerformanceMetric,
    PredictiveInsight,
    SmartRecommendation,
    UserBehaviorMetric,
)
from .observability import configure_logging
from .runtime import Runtime, build_runtime


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the runtime and start the periodic analysis."""
    logger.info("=" * 50)
    logger.info("Manifest Insights API Starting...")
    logger.info(f"Environment: {config.ENV}")
    logger.info(f"Scheduler Enabled: {config.ENABLE_SCHEDULER}")
    logger.info("=" * 50)

    runtime = build_runtime(config)
    app.state.runtime = runtime

    if config.ENABLE_SCHEDULER:
        await runtime.engine.init()

    yield
    logger.info("Shutting down...")
    await app.state.runtime.engine.shutdown()


app = FastAPI(
    title="Manifest Insights API",
    description="Change history, telemetry and heuristic analytics for the guest "
                "manifest and table-assignment admin tool.",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request ID middleware for tracing
@app.middleware("http")
async def add_request_id(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    start_time = time.time()

    response = await call_next(request)

    process_time = time.time() - start_time
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = f"{process_time:.3f}s"

    logger.info(f"[{request_id}] {request.method} {request.url.path} - {response.status_code} ({process_time:.3f}s)")

    return response


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def _export_response(payload: Dict[str, Any], name: str, runtime: Runtime) -> JSONResponse:
    """JSON download named <name>_<YYYY-MM-DD>.json."""
    filename = f"{name}_{runtime.collector.now().strftime('%Y-%m-%d')}.json"
    return JSONResponse(
        content=payload,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


@app.get("/health")
async def health_check(request: Request):
    """
    Health check endpoint.
    Returns service status and engine collection sizes.
    """
    runtime = get_runtime(request)
    return {
        "status": "healthy",
        "scheduler_enabled": config.ENABLE_SCHEDULER,
        "engine": runtime.engine.stats(),
        "session_id": runtime.collector.session_id,
    }


@app.get("/")
async def root():
    """Root endpoint - API info."""
    return {
        "name": "Manifest Insights API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "dashboard": "GET /v1/dashboard"
    }


@app.get("/favicon.ico", include_in_schema=False)
async def favicon():
    """Return 204 No Content for favicon requests."""
    return Response(status_code=204)


@app.get("/metrics")
async def metrics(request: Request):
    """
    Prometheus metrics endpoint.
    Scrape this endpoint to collect application metrics.
    """
    exporter = get_runtime(request).exporter
    return Response(
        content=exporter.get_metrics(),
        media_type=exporter.get_content_type()
    )


@app.get("/v1/config")
async def get_config(request: Request):
    """Return current configuration (non-sensitive)."""
    settings = get_runtime(request).settings
    return {
        "environment": settings.ENV,
        "intervals": {
            "health": settings.HEALTH_INTERVAL,
            "anomaly": settings.ANOMALY_INTERVAL,
            "insight": settings.INSIGHT_INTERVAL,
            "recommendation": settings.RECOMMENDATION_INTERVAL,
        },
        "retention": {
            "insight_ttl_hours": settings.INSIGHT_TTL_HOURS,
            "anomaly_retention_hours": settings.ANOMALY_RETENTION_HOURS,
            "recommendation_ttl_days": settings.RECOMMENDATION_TTL_DAYS,
        },
        "limits": {
            "change_log": settings.CHANGE_LOG_MAX_ENTRIES,
            "metrics_history": settings.METRICS_MAX_HISTORY,
            "insights": settings.MAX_INSIGHTS,
            "anomalies": settings.MAX_ANOMALIES,
            "recommendations": settings.MAX_RECOMMENDATIONS,
        },
        "reporting_tz": settings.REPORTING_TZ,
    }


# ===== Change History =====

@app.post("/v1/changes", response_model=ChangeLogEntry)
async def record_change(change: ChangeRequest, request: Request) -> ChangeLogEntry:
    """
    Append a change to the audit trail.

    `description` is generated from the operation when omitted.
    """
    entry = get_runtime(request).change_log.append(change)
    if entry is None:
        raise HTTPException(status_code=500, detail="Failed to record change")
    return entry


@app.get("/v1/changes")
async def list_changes(
    request: Request,
    start: Optional[str] = None,
    end: Optional[str] = None,
    operations: List[str] = Query(default=[]),
    action_types: List[str] = Query(default=[]),
    methods: List[str] = Query(default=[]),
    affected_guests: List[str] = Query(default=[]),
    error_status: str = "all",
    batch_operations: Optional[bool] = None,
    search_term: Optional[str] = None,
    sort_by: Optional[str] = None,
    sort_order: str = "desc",
    limit: int = 50,
    offset: int = 0,
):
    """Filtered, sorted and paginated change history (newest first by default)."""
    try:
        filters = ChangeFilter(
            start=start,
            end=end,
            operations=operations,
            action_types=action_types,
            methods=methods,
            affected_guests=affected_guests,
            error_status=error_status,
            batch_operations=batch_operations,
            search_term=search_term,
            sort_by=sort_by,
            sort_order=sort_order,
            limit=limit,
            offset=offset,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    runtime = get_runtime(request)
    changes = runtime.change_log.filter(filters, runtime.collector.durations_by_operation_id())
    return {
        "changes": [c.model_dump(mode="json") for c in changes],
        "count": len(changes),
    }


@app.delete("/v1/changes")
async def clear_changes(request: Request):
    """Drop the whole change history."""
    get_runtime(request).change_log.clear()
    return {"status": "cleared"}


# ===== Telemetry =====

class InteractionRequest(BaseModel):
    """A user interaction reported by the UI."""
    action: str = Field(..., min_length=1)
    context: InteractionContext = Field(default_factory=InteractionContext)


class ClickRequest(BaseModel):
    descriptor: str = Field(..., min_length=1)


class OperationSample(BaseModel):
    """An operation timed by the client."""
    duration: float = Field(..., ge=0.0, description="Duration in ms")
    success: bool = True
    error_type: Optional[str] = None
    resources_affected: int = 1
    memory_usage: Optional[float] = None


@app.post("/v1/interactions", response_model=UserBehaviorMetric)
async def record_interaction(body: InteractionRequest, request: Request) -> UserBehaviorMetric:
    """Record a user interaction with the current click path."""
    return get_runtime(request).collector.record_interaction(body.action, body.context)


@app.post("/v1/clicks")
async def record_click(body: ClickRequest, request: Request):
    """Push an element descriptor onto the click path."""
    collector = get_runtime(request).collector
    collector.record_click(body.descriptor)
    return {"click_path": collector.get_click_path()}


@app.post("/v1/operations/{operation}", response_model=PerformanceMetric)
async def record_operation(operation: str, body: OperationSample, request: Request) -> PerformanceMetric:
    """Record a client-measured operation as a performance sample."""
    collector = get_runtime(request).collector
    end_time = collector.now()
    metric = PerformanceMetric(
        operation_id=f"op_{uuid.uuid4().hex[:12]}",
        operation=operation,
        start_time=end_time - timedelta(milliseconds=body.duration),
        end_time=end_time,
        duration=body.duration,
        success=body.success,
        error_type=body.error_type,
        resources_affected=body.resources_affected,
        memory_usage=body.memory_usage,
    )
    collector.record_sample(metric)
    return metric


# ===== Analytics =====

ANALYTICS_KINDS = ("performance", "behavior", "health")


def _analytics_payload(kind: str, runtime: Runtime) -> Dict[str, Any]:
    aggregator = runtime.aggregator
    if kind == "performance":
        return aggregator.get_performance_analytics().model_dump(mode="json")
    if kind == "behavior":
        return aggregator.get_user_behavior_analytics().model_dump(mode="json")
    if kind == "health":
        return aggregator.get_system_health_analytics().model_dump(mode="json")
    raise HTTPException(status_code=404, detail=f"Unknown analytics kind: {kind}. Use one of {list(ANALYTICS_KINDS)}")


@app.get("/v1/analytics/{kind}")
async def get_analytics(kind: str, request: Request):
    """
    Aggregated telemetry.

    - `performance`: success rate, durations, error patterns, hourly trends
    - `behavior`: sessions, common actions, error-prone paths, devices, peak hours
    - `health`: latest snapshot, alerts, resource usage, performance score
    """
    return _analytics_payload(kind, get_runtime(request))


@app.get("/v1/analytics/{kind}/export")
async def export_analytics(kind: str, request: Request):
    """Download an analytics payload as JSON."""
    runtime = get_runtime(request)
    return _export_response(_analytics_payload(kind, runtime), f"{kind}_analytics", runtime)


# ===== Analytics Engine =====

class ImplementRequest(BaseModel):
    actual_impact: Optional[Dict[str, Any]] = None


@app.get("/v1/dashboard", response_model=AIInsightsDashboard)
async def get_dashboard(request: Request) -> AIInsightsDashboard:
    """
    Dashboard snapshot:
    - Insights, anomalies and recommendations (newest first)
    - System score and trend labels
    - Predicted metrics and fixed model accuracy figures
    """
    return get_runtime(request).engine.get_dashboard()


@app.get("/v1/dashboard/export")
async def export_dashboard(request: Request):
    """Download the dashboard as JSON."""
    runtime = get_runtime(request)
    return _export_response(runtime.engine.export_dashboard(), "ai_dashboard", runtime)


@app.post("/v1/analysis/run", response_model=AIInsightsDashboard)
async def run_analysis(request: Request) -> AIInsightsDashboard:
    """Run every analysis pass now and return the resulting dashboard."""
    return await get_runtime(request).engine.run_full_analysis()


@app.get("/v1/insights", response_model=List[PredictiveInsight])
async def get_insights(request: Request) -> List[PredictiveInsight]:
    return get_runtime(request).engine.get_insights()


@app.get("/v1/anomalies", response_model=List[AnomalyDetection])
async def get_anomalies(request: Request, resolved: Optional[bool] = None) -> List[AnomalyDetection]:
    return get_runtime(request).engine.get_anomalies(resolved=resolved)


@app.get("/v1/recommendations", response_model=List[SmartRecommendation])
async def get_recommendations(request: Request, implemented: Optional[bool] = None) -> List[SmartRecommendation]:
    return get_runtime(request).engine.get_recommendations(implemented=implemented)


@app.post("/v1/anomalies/{anomaly_id}/resolve", response_model=AnomalyDetection)
async def resolve_anomaly(anomaly_id: str, request: Request) -> AnomalyDetection:
    """Resolve an anomaly. Resolving twice keeps the first resolution time."""
    anomaly = get_runtime(request).engine.resolve_anomaly(anomaly_id)
    if anomaly is None:
        raise HTTPException(status_code=404, detail="Anomaly not found")
    return anomaly


@app.post("/v1/recommendations/{recommendation_id}/implement", response_model=SmartRecommendation)
async def implement_recommendation(
    recommendation_id: str, request: Request, body: Optional[ImplementRequest] = None
) -> SmartRecommendation:
    """Mark a recommendation implemented, optionally recording its actual impact."""
    impact = body.actual_impact if body else None
    recommendation = get_runtime(request).engine.mark_recommendation_implemented(recommendation_id, impact)
    if recommendation is None:
        raise HTTPException(status_code=404, detail="Recommendation not found")
    return recommendation


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "type": type(exc).__name__}
    )


def main():
    import uvicorn
    uvicorn.run(
        "manifest_insights.app:app",
        host=config.API_HOST,
        port=config.API_PORT,
        reload=config.ENV == "development"
    )


if __name__ == "__main__":
    main()
