"""
Tests for the HTTP API.

The app is built against a per-test SQLite database with the YAML seed
rules loaded through the registered rule store.
"""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

AS_OF = "2025-01-15"


@pytest.fixture
def client(session_factory, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    from config.rule_config_loader import seed_rule_store
    from core.service_registry import services
    from web.app import create_app

    app = create_app(session_factory=session_factory, use_lifespan=False)
    seed_rule_store(services.require("rule_store"))
    with TestClient(app) as test_client:
        yield test_client
    services.require("harness").shutdown(wait=True)


def find_rule(client, program, rule_type, jurisdiction="MD"):
    response = client.get("/api/rules", params={
        "program": program, "rule_type": rule_type,
        "jurisdiction": jurisdiction, "status": "approved",
    })
    assert response.status_code == 200
    rules = response.json()["rules"]
    assert rules, f"no active {rule_type} rule for {program}"
    return rules[0]


class TestHealth:
    """Tests for the health endpoint."""

    def test_health_lists_programs(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert set(body["programs"]) >= {"SNAP", "TANF", "MEDICAID", "EITC"}

    def test_correlation_id_is_echoed(self, client):
        response = client.get("/api/health", headers={"X-Correlation-ID": "abc-123"})

        assert response.headers["X-Correlation-ID"] == "abc-123"


class TestEvaluateEndpoint:
    """Tests for POST /api/rules/evaluate."""

    def test_snap_determination(self, client, snap_household):
        response = client.post("/api/rules/evaluate", json={
            "program": "SNAP", "household": snap_household, "asOfDate": AS_OF,
        })

        assert response.status_code == 200
        body = response.json()
        assert body["eligible"] is True
        assert body["monthlyBenefit"] == 272.0
        assert "annualCredit" not in body
        assert body["appliedRules"]

    def test_snake_case_date_accepted(self, client, eitc_household):
        response = client.post("/api/rules/evaluate", json={
            "program": "EITC", "household": eitc_household, "as_of_date": AS_OF,
        })

        assert response.status_code == 200
        assert response.json()["annualCredit"] == 4080.0

    def test_invalid_household_is_422(self, client):
        response = client.post("/api/rules/evaluate", json={
            "program": "SNAP", "household": {"size": 0}, "asOfDate": AS_OF,
        })

        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "invalid_input"
        assert any(e.startswith("size") for e in body["details"]["errors"])

    def test_unknown_program_is_422(self, client, snap_household):
        response = client.post("/api/rules/evaluate", json={
            "program": "WIC", "household": snap_household, "asOfDate": AS_OF,
        })

        assert response.status_code == 422

    def test_missing_rule_is_404(self, client, snap_household):
        response = client.post("/api/rules/evaluate", json={
            "program": "SNAP", "household": snap_household, "asOfDate": "2020-01-01",
        })

        assert response.status_code == 404
        assert "No effective" in response.json()["message"]

    def test_malformed_body_is_422(self, client):
        response = client.post("/api/rules/evaluate", json={"household": {}})

        assert response.status_code == 422
        assert response.json()["error"] == "invalid_input"

    def test_document_checklist(self, client, snap_household):
        response = client.post("/api/rules/document-checklist", json={
            "program": "SNAP", "household": snap_household, "asOfDate": AS_OF,
        })

        assert response.status_code == 200


class TestRuleAuthoring:
    """Tests for rule listing, approval and supersession."""

    def test_get_rule(self, client):
        rule = find_rule(client, "SNAP", "income_limit")

        response = client.get(f"/api/rules/{rule['id']}")

        assert response.status_code == 200
        assert response.json()["id"] == rule["id"]

    def test_unknown_rule_is_404(self, client):
        response = client.get("/api/rules/does-not-exist")

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_supersede_creates_next_version(self, client):
        rule = find_rule(client, "SNAP", "income_limit")

        response = client.post(f"/api/rules/{rule['id']}/supersede", json={
            "parameters": rule["parameters"],
            "effective_date": "2025-10-01",
            "approved_by": "analyst",
            "description": "FY2026 limits",
        })

        assert response.status_code == 201
        successor = response.json()
        assert successor["version"] == rule["version"] + 1
        assert successor["supersedes_id"] == rule["id"]

    def test_approve_requires_reviewer(self, client):
        rule = find_rule(client, "SNAP", "income_limit")

        response = client.post(f"/api/rules/{rule['id']}/approve", json={"approved_by": ""})

        assert response.status_code == 422


class TestEvaluationEndpoints:
    """Tests for test cases and evaluation runs over HTTP."""

    def create_case(self, client, household, expected_benefit):
        response = client.post("/api/evaluation/test-cases", json={
            "program": "SNAP",
            "name": f"SNAP expects {expected_benefit}",
            "input_data": household,
            "expected_result": {"is_eligible": True, "monthly_benefit": expected_benefit},
            "as_of_date": AS_OF,
        })
        assert response.status_code == 201
        return response.json()

    def test_create_and_fetch_test_case(self, client, snap_household):
        case = self.create_case(client, snap_household, 272)

        response = client.get(f"/api/evaluation/test-cases/{case['id']}")

        assert response.status_code == 200
        assert Decimal(response.json()["tolerance"]) == Decimal("2.00")

    def test_update_and_deactivate(self, client, snap_household):
        case = self.create_case(client, snap_household, 272)

        updated = client.patch(f"/api/evaluation/test-cases/{case['id']}", json={"tags": ["smoke"]})
        deactivated = client.post(f"/api/evaluation/test-cases/{case['id']}/deactivate")

        assert updated.json()["tags"] == ["smoke"]
        assert deactivated.json()["is_active"] is False

    def test_delete_test_case(self, client, snap_household):
        case = self.create_case(client, snap_household, 272)

        assert client.delete(f"/api/evaluation/test-cases/{case['id']}").status_code == 204
        assert client.get(f"/api/evaluation/test-cases/{case['id']}").status_code == 404

    def test_run_lifecycle(self, client, snap_household):
        from core.service_registry import services

        passing = self.create_case(client, snap_household, 272)
        failing = self.create_case(client, snap_household, 250)

        response = client.post("/api/evaluation/runs", json={
            "test_case_ids": [passing["id"], failing["id"]], "triggered_by": "api-test",
        })
        assert response.status_code == 202
        run_id = response.json()["id"]
        assert response.json()["status"] == "running"

        services.require("harness").wait(run_id, timeout=30)

        run = client.get(f"/api/evaluation/runs/{run_id}").json()
        assert run["status"] == "completed"
        assert run["passed_cases"] == 1
        assert run["failed_cases"] == 1

        results = client.get(f"/api/evaluation/runs/{run_id}/results").json()
        assert len(results) == 2

        summary = client.get("/api/evaluation/summary", params={"program": "SNAP"}).json()
        assert summary["last_run_id"] == run_id

    def test_run_without_cases_is_422(self, client):
        response = client.post("/api/evaluation/runs", json={"filters": {"program": "EITC"}})

        assert response.status_code == 422


class TestProvisionEndpoints:
    """Tests for provision ingestion and mapping review over HTTP."""

    def ingest(self, client):
        response = client.post("/api/provisions", json={
            "public_law_id": "PL 118-99",
            "section_number": "4102",
            "provision_text": "Section 5(e)(1) of the Food and Nutrition Act of 2008 is amended.",
            "us_code_citation": "7 U.S.C. 2014(e)",
            "affected_programs": ["snap"],
        })
        assert response.status_code == 201
        return response.json()

    def test_ingest_and_fetch(self, client):
        provision = self.ingest(client)

        response = client.get(f"/api/provisions/{provision['id']}")

        assert response.status_code == 200
        assert response.json()["affected_programs"] == ["SNAP"]

    def test_manual_mapping_then_approve(self, client):
        provision = self.ingest(client)
        rule = find_rule(client, "SNAP", "income_limit")

        proposed = client.post("/api/provisions/mappings", json={
            "provision_id": provision["id"],
            "rule_id": rule["id"],
            "manual": True,
            "mapping_reason": "Amends gross income test",
        })
        assert proposed.status_code == 201
        mapping = proposed.json()
        assert mapping["review_status"] == "pending"

        pending = client.get("/api/provisions/mappings/pending").json()
        assert [m["id"] for m in pending] == [mapping["id"]]

        approved = client.post(
            f"/api/provisions/mappings/{mapping['id']}/approve", json={"reviewer": "lead"}
        )
        assert approved.status_code == 200
        body = approved.json()
        assert body["mapping"]["review_status"] == "approved"
        assert rule["id"] in body["affected_rule_ids"]
        assert body["message"] == f"{body['affected_count']} rules require re-verification"

        obligations = client.get(
            "/api/provisions/obligations", params={"mapping_id": mapping["id"]}
        ).json()
        assert len(obligations) == len(body["obligation_ids"])

        again = client.post(
            f"/api/provisions/mappings/{mapping['id']}/reject",
            json={"reason": "changed mind", "reviewer": "lead"},
        )
        assert again.status_code == 409
        assert again.json()["error"] == "mapping_state_error"

    def test_unknown_mapping_is_404(self, client):
        response = client.get("/api/provisions/mappings/missing")

        assert response.status_code == 404

    def test_stats(self, client):
        response = client.get("/api/provisions/mappings/stats")

        assert response.status_code == 200
