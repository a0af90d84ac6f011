"""
Tests for API endpoints.
"""
import pytest
from fastapi.testclient import TestClient


@pytest.fixture
def client(tmp_path, clock, settings):
    """Test client with a runtime on a fake clock and temp storage."""
    from manifest_insights.app import app
    from manifest_insights.runtime import build_runtime

    with TestClient(app) as client:
        app.state.runtime = build_runtime(
            settings,
            clock=clock,
            memory_probe=lambda: 40.0,
            storage_path=tmp_path / "change_history.json",
        )
        yield client


def _change(operation="ASSIGN_TABLE", **extra):
    body = {
        "type": "UPDATE",
        "operation": operation,
        "guests": [{"id": "g1", "name": "Anna Berg", "cabin": "5012"}],
        "changes": [{"field": "table_nr", "old_value": None, "new_value": 7}],
    }
    body.update(extra)
    return body


# =============================================================================
# SERVICE ENDPOINTS
# =============================================================================

class TestServiceEndpoints:
    """Tests for health, info, config and metrics."""

    def test_health_endpoint(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["engine"]["anomalies"] == 0

    def test_root_endpoint(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert "Manifest Insights" in response.json()["name"]

    def test_config_endpoint(self, client):
        data = client.get("/v1/config").json()
        assert data["environment"] == "testing"
        assert data["intervals"]["anomaly"] == 60
        assert data["limits"]["recommendations"] == 30

    def test_metrics_endpoint(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "text/plain" in response.headers["content-type"]
        assert "manifest_insights_operations_total" in response.text

    def test_request_id_header(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"
        assert "X-Process-Time" in response.headers


# =============================================================================
# CHANGE HISTORY
# =============================================================================

class TestChangeEndpoints:
    """Tests for the change history endpoints."""

    def test_record_change(self, client):
        response = client.post("/v1/changes", json=_change())
        assert response.status_code == 200
        data = response.json()
        assert data["id"].startswith("change_")
        assert data["description"] == "Guest 'Anna Berg' (Cabin 5012) assigned to Table 7"

    def test_invalid_change_rejected(self, client):
        response = client.post("/v1/changes", json=_change(type="RENAME"))
        assert response.status_code == 422

    def test_list_and_filter(self, client):
        client.post("/v1/changes", json=_change())
        client.post("/v1/changes", json=_change("CREATE_GUEST", type="CREATE"))

        all_changes = client.get("/v1/changes").json()
        assert all_changes["count"] == 2
        assert all_changes["changes"][0]["operation"] == "CREATE_GUEST"

        filtered = client.get("/v1/changes", params={"operations": ["ASSIGN_TABLE"]}).json()
        assert filtered["count"] == 1

        searched = client.get("/v1/changes", params={"search_term": "anna"}).json()
        assert searched["count"] == 2

    def test_bad_date_range(self, client):
        response = client.get("/v1/changes", params={
            "start": "2024-05-02T00:00:00", "end": "2024-05-01T00:00:00"
        })
        assert response.status_code == 400

    def test_clear(self, client):
        client.post("/v1/changes", json=_change())
        assert client.delete("/v1/changes").json()["status"] == "cleared"
        assert client.get("/v1/changes").json()["count"] == 0


# =============================================================================
# TELEMETRY & ANALYTICS
# =============================================================================

class TestTelemetryEndpoints:
    """Tests for interaction, click and operation recording."""

    def test_clicks_and_interactions(self, client):
        client.post("/v1/clicks", json={"descriptor": "nav#tables"})
        path = client.post("/v1/clicks", json={"descriptor": "button#assign"}).json()["click_path"]
        assert path == ["nav#tables", "button#assign"]

        response = client.post("/v1/interactions", json={
            "action": "assign_table",
            "context": {"error": True, "user_agent": "Mozilla/5.0 Mobile"},
        })
        assert response.status_code == 200
        assert response.json()["click_path"] == path

        behavior = client.get("/v1/analytics/behavior").json()
        assert behavior["total_sessions"] == 1
        assert behavior["error_prone_paths"][0]["path"] == "nav#tables -> button#assign"
        assert behavior["device_breakdown"] == [{"device": "Mobile", "count": 1}]

    @pytest.mark.parametrize("context", [
        {"viewport": "800x600"},
        {"duration": "slow"},
        {"error": "sometimes"},
    ])
    def test_malformed_interaction_context(self, client, context):
        response = client.post("/v1/interactions", json={"action": "open", "context": context})
        assert response.status_code == 422
        assert client.get("/v1/analytics/behavior").json()["total_sessions"] == 0

    def test_record_operation(self, client):
        response = client.post("/v1/operations/AUTO_ASSIGN_TABLES", json={"duration": 750, "resources_affected": 40})
        assert response.status_code == 200
        assert response.json()["operation"] == "AUTO_ASSIGN_TABLES"

        performance = client.get("/v1/analytics/performance").json()
        assert performance["total_operations"] == 1
        assert performance["average_duration"] == 750

    def test_health_analytics(self, client):
        data = client.get("/v1/analytics/health").json()
        assert data["current_health"] is None
        assert data["performance_score"] == 100

    def test_unknown_analytics_kind(self, client):
        assert client.get("/v1/analytics/weather").status_code == 404

    def test_analytics_export(self, client):
        response = client.get("/v1/analytics/performance/export")
        assert response.status_code == 200
        assert 'filename="performance_analytics_2024-05-01.json"' in response.headers["content-disposition"]


# =============================================================================
# ANALYTICS ENGINE
# =============================================================================

class TestEngineEndpoints:
    """Tests for dashboard, analysis and state transitions."""

    def test_dashboard(self, client):
        data = client.get("/v1/dashboard").json()
        assert data["insights"] == []
        assert data["predicted_metrics"]["peak_usage_time"] == "12:00"
        assert data["ml_model_accuracy"]["anomaly_detection"] == 92

    def test_dashboard_export(self, client):
        response = client.get("/v1/dashboard/export")
        assert 'filename="ai_dashboard_2024-05-01.json"' in response.headers["content-disposition"]
        assert "exported_at" in response.json()

    def test_analysis_and_resolve(self, client):
        """A slow operation surfaces as an anomaly that can be resolved."""
        client.post("/v1/operations/ASSIGN_TABLE", json={"duration": 2500})

        dashboard = client.post("/v1/analysis/run").json()
        spikes = [a for a in dashboard["anomalies"] if a["type"] == "performance_spike"]
        assert len(spikes) == 1
        anomaly_id = spikes[0]["id"]

        assert len(client.get("/v1/anomalies", params={"resolved": False}).json()) == 1

        resolved = client.post(f"/v1/anomalies/{anomaly_id}/resolve")
        assert resolved.status_code == 200
        assert resolved.json()["auto_resolved"] is True

        assert [a["id"] for a in client.get("/v1/anomalies", params={"resolved": True}).json()] == [anomaly_id]

    def test_implement_recommendation(self, client):
        client.post("/v1/operations/ASSIGN_TABLE", json={"duration": 1500})
        client.post("/v1/analysis/run")

        recommendations = client.get("/v1/recommendations").json()
        target = next(r for r in recommendations if r["title"] == "Optimize System Response Times")

        response = client.post(
            f"/v1/recommendations/{target['id']}/implement",
            json={"actual_impact": {"success": True}},
        )
        assert response.status_code == 200
        assert response.json()["implemented"] is True
        assert response.json()["actual_impact"] == {"success": True}

        pending = client.get("/v1/recommendations", params={"implemented": False}).json()
        assert target["id"] not in [r["id"] for r in pending]

    def test_implement_without_body(self, client):
        client.post("/v1/operations/ASSIGN_TABLE", json={"duration": 1500})
        client.post("/v1/analysis/run")
        rec_id = client.get("/v1/recommendations").json()[0]["id"]

        response = client.post(f"/v1/recommendations/{rec_id}/implement")
        assert response.status_code == 200
        assert response.json()["actual_impact"] is None

    def test_unknown_ids(self, client):
        assert client.post("/v1/anomalies/anomaly_missing/resolve").status_code == 404
        assert client.post("/v1/recommendations/rec_missing/implement").status_code == 404

    def test_insights_listing(self, client):
        for _ in range(3):
            client.post("/v1/changes", json=_change("CLEAR_ALL_ASSIGNMENTS", type="BULK_OPERATION"))
        client.post("/v1/analysis/run")

        titles = [i["title"] for i in client.get("/v1/insights").json()]
        assert "High Frequency Operation: CLEAR_ALL_ASSIGNMENTS" in titles
