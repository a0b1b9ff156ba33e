"""
API tests for /api/rules/*, /audit_trail, /health and /ready
"""

from fastapi.testclient import TestClient

from csos import __version__
from csos.main import app

from conftest import auth_header


class TestRuleCacheEndpoints:

    def test_stats_empty_before_first_use(self, client):
        response = client.get("/api/rules/cache", headers=auth_header("admin-token"))

        assert response.status_code == 200
        assert response.json()["data"] == {"ttlSeconds": 300, "entries": []}

    def test_stats_report_ages(self, client, rule_cache, clock):
        rule_cache.get("routing_rules")
        clock.advance(2)

        response = client.get("/api/rules/cache", headers=auth_header("exec-token"))

        assert response.json()["data"]["entries"] == [{"key": "routing_rules", "age": 2000}]

    def test_clear(self, client, rule_cache, storage):
        rule_cache.get("routing_rules")

        response = client.post("/api/rules/cache/clear", headers=auth_header("admin-token"))

        assert response.status_code == 200
        assert response.json()["message"] == "Rules cache cleared"
        assert rule_cache.stats() == []
        rule_cache.get("routing_rules")
        assert len(storage.calls) == 2

    def test_get_rule_set(self, client):
        response = client.get("/api/rules/approval_thresholds", headers=auth_header("admin-token"))

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["ruleSet"] == "approval_thresholds"
        assert [t["id"] for t in data["document"]["thresholds"]][-1] == "default"

    def test_unknown_rule_set(self, client):
        response = client.get("/api/rules/pricing", headers=auth_header("admin-token"))
        assert response.status_code == 404

    def test_requires_privileged_role(self, client):
        assert client.get("/api/rules/cache", headers=auth_header("alice-token")).status_code == 400
        assert client.post("/api/rules/cache/clear", headers=auth_header("bob-token")).status_code == 400

    def test_requires_authentication(self, client):
        assert client.get("/api/rules/cache").status_code == 401


class TestAuditTrail:

    def test_lists_events_newest_first(self, client, backend):
        backend.tables["audit_log"] = [
            {"id": 1, "table_name": "user_role", "action": "role_assign", "user_id": "admin-1",
             "created_at": "2025-03-01T00:00:00+00:00"},
            {"id": 2, "table_name": "opportunity", "action": "route_opportunity", "user_id": "U1",
             "created_at": "2025-03-02T00:00:00+00:00"},
        ]

        response = client.get("/audit_trail", headers=auth_header("admin-token"))

        data = response.json()["data"]
        assert data["count"] == 2
        assert [e["id"] for e in data["events"]] == [2, 1]

    def test_filters(self, client, backend):
        backend.tables["audit_log"] = [
            {"id": 1, "table_name": "user_role", "user_id": "admin-1", "created_at": "2025-03-01"},
            {"id": 2, "table_name": "opportunity", "user_id": "U1", "created_at": "2025-03-02"},
        ]

        response = client.get("/audit_trail", params={"tableName": "user_role"}, headers=auth_header("exec-token"))

        assert [e["id"] for e in response.json()["data"]["events"]] == [1]

    def test_backend_failure(self, client, backend):
        backend.fail_tables.add("audit_log")

        response = client.get("/audit_trail", headers=auth_header("admin-token"))

        assert response.status_code == 500
        assert response.json()["error"].startswith("Failed to fetch audit trail")

    def test_invalid_limit(self, client):
        response = client.get("/audit_trail", params={"limit": 0}, headers=auth_header("admin-token"))
        assert response.status_code == 400
        assert "error" in response.json()

    def test_requires_privileged_role(self, client):
        assert client.get("/audit_trail", headers=auth_header("alice-token")).status_code == 400


class TestHealth:

    def test_health(self):
        response = TestClient(app).get("/health")

        assert response.status_code == 200
        assert response.json() == {"ok": True, "status": "healthy", "version": __version__}

    def test_ready_without_configuration(self, clean_settings):
        response = TestClient(app).get("/ready")

        assert response.status_code == 503
        assert "CSOS_BACKEND_URL" in response.json()["error"]

    def test_ready(self, clean_settings):
        clean_settings.setenv("CSOS_BACKEND_URL", "https://backend.example")
        clean_settings.setenv("CSOS_SERVICE_ROLE_KEY", "svc")

        response = TestClient(app).get("/ready")

        assert response.status_code == 200
        assert response.json()["rules_storage"] == "backend"

    def test_unconfigured_backend_is_server_error(self, clean_settings):
        response = TestClient(app).get("/role_list", headers=auth_header("admin-token"))

        assert response.status_code == 500
        assert "CSOS_BACKEND_URL" in response.json()["error"]
