"""
Tests for Composed Proofs API endpoints.

Endpoints covered:
- Templates (GET /templates, GET /templates/{id}, POST /templates)
- Executions (POST /execute, POST /executions, GET /status/{id},
  GET /results/{id}, POST /executions/{id}/cancel)
- Cache (GET /cache/stats, POST /cache/clear)
- Root and health
"""

import asyncio
import time

import pytest

from tests.fixtures.scripted_adapter import FAIL

PREFIX = "/api/v1/composed-proofs"
GLEIF_TOOL = "get-GLEIF-verification-with-sign"
KYC_REQUEST = {
    "template_id": "full-kyc-compliance",
    "global_parameters": {"companyName": "ACME CORP", "cin": "U01234MH2020PTC123456"},
}


def custom_template_payload(template_id: str = "api-template", **overrides):
    payload = {
        "id": template_id,
        "name": "API Template",
        "version": "1.0.0",
        "components": [
            {"id": "a", "tool_name": "tool-a"},
            {"id": "b", "tool_name": "tool-b", "dependencies": ["a"]},
        ],
        "aggregation_logic": {"type": "ALL_REQUIRED"},
    }
    payload.update(overrides)
    return payload


def poll_result(client, execution_id: str, attempts: int = 200):
    for _ in range(attempts):
        response = client.get(f"{PREFIX}/results/{execution_id}")
        if response.status_code == 200:
            return response.json()
        time.sleep(0.01)
    pytest.fail(f"Execution {execution_id} did not finish")


# =============================================================================
# ROOT / HEALTH
# =============================================================================


class TestRootEndpoints:
    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["service"] == "ZK-PRET Composed Proofs"

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["components"]["templates"] == 4

    def test_request_id_echoed(self, client):
        response = client.get("/", headers={"X-Request-ID": "req-abc"})

        assert response.headers["X-Request-ID"] == "req-abc"
        assert "Server-Timing" in response.headers

    def test_unknown_route(self, client):
        response = client.get("/api/v1/nope")

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"


# =============================================================================
# TEMPLATES
# =============================================================================


class TestTemplateEndpoints:
    """Tests for template endpoints."""

    def test_list_templates(self, client):
        response = client.get(f"{PREFIX}/templates")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 4
        assert "kyc-compliance" in data["categories"]

    def test_list_templates_by_category(self, client):
        response = client.get(f"{PREFIX}/templates", params={"category": "business-integrity"})

        data = response.json()
        assert data["total"] == 1
        assert data["templates"][0]["id"] == "business-integrity-check"

    def test_get_template(self, client):
        response = client.get(f"{PREFIX}/templates/full-kyc-compliance")

        assert response.status_code == 200
        data = response.json()
        assert [c["id"] for c in data["components"]] == [
            "gleif-verification",
            "corporate-registration",
            "exim-verification",
        ]

    def test_get_unknown_template(self, client):
        response = client.get(f"{PREFIX}/templates/unknown")

        assert response.status_code == 404
        assert response.json()["code"] == "TEMPLATE_NOT_FOUND"

    def test_create_template(self, client, service):
        response = client.post(f"{PREFIX}/templates", json=custom_template_payload())

        assert response.status_code == 201
        assert "api-template" in service.registry

    def test_create_duplicate_version(self, client):
        client.post(f"{PREFIX}/templates", json=custom_template_payload())
        response = client.post(f"{PREFIX}/templates", json=custom_template_payload())

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["details"]["field"] == "version"

    def test_create_cyclic_template(self, client, service):
        payload = custom_template_payload(
            components=[
                {"id": "a", "tool_name": "tool-a", "dependencies": ["b"]},
                {"id": "b", "tool_name": "tool-b", "dependencies": ["a"]},
            ]
        )
        response = client.post(f"{PREFIX}/templates", json=payload)

        assert response.status_code == 400
        assert response.json()["code"] == "DEPENDENCY_ERROR"
        assert "api-template" not in service.registry


# =============================================================================
# EXECUTIONS
# =============================================================================


class TestExecuteEndpoint:
    """Tests for POST /execute."""

    def test_execute_template(self, client, adapter):
        response = client.post(
            f"{PREFIX}/execute", json=KYC_REQUEST, headers={"X-Request-ID": "req-kyc"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["overall_verdict"] == "PASS"
        assert data["status"] == "COMPLETED"
        assert data["request_id"] == "req-kyc"
        assert len(data["component_results"]) == 3
        assert adapter.call_count(GLEIF_TOOL) == 1

    def test_execute_failure_is_still_200(self, client, adapter):
        adapter.outcomes[GLEIF_TOOL] = FAIL

        data = client.post(f"{PREFIX}/execute", json=KYC_REQUEST).json()

        assert data["success"] is False
        assert data["overall_verdict"] == "FAIL"
        assert data["status"] == "FAILED"

    def test_execute_custom_composition(self, client):
        request = {
            "custom_composition": {
                "components": [{"id": "x", "tool_name": "tool-x"}],
                "aggregation_logic": {"type": "MAJORITY", "threshold": 0.5},
            }
        }
        response = client.post(f"{PREFIX}/execute", json=request)

        assert response.status_code == 200
        assert response.json()["template_id"].startswith("custom-")

    def test_execute_requires_template_or_composition(self, client, service):
        response = client.post(f"{PREFIX}/execute", json={"global_parameters": {}})

        assert response.status_code == 400
        assert response.json()["details"]["field"] == "template_id"
        assert service.store.list_ids() == []

    def test_execute_unknown_template(self, client):
        response = client.post(f"{PREFIX}/execute", json={"template_id": "missing"})

        assert response.status_code == 404

    def test_execute_malformed_body(self, client):
        response = client.post(
            f"{PREFIX}/execute",
            json={"template_id": "full-kyc-compliance", "execution_options": {"max_parallelism": 0}},
        )

        assert response.status_code == 422


class TestBackgroundExecutionEndpoints:
    """Tests for POST /executions, status, results and cancel."""

    def test_start_and_poll(self, client):
        response = client.post(f"{PREFIX}/executions", json=KYC_REQUEST)

        assert response.status_code == 202
        accepted = response.json()
        execution_id = accepted["execution_id"]
        assert accepted["result_url"] == f"{PREFIX}/results/{execution_id}"

        result = poll_result(client, execution_id)
        assert result["success"] is True

        status = client.get(f"{PREFIX}/status/{execution_id}").json()
        assert status["status"] == "COMPLETED"
        assert status["progress"]["percentage"] == 100
        assert len(status["partial_results"]) == 3

    def test_status_nests_progress_details(self, client):
        execution_id = client.post(f"{PREFIX}/executions", json=KYC_REQUEST).json()["execution_id"]
        poll_result(client, execution_id)

        body = client.get(f"{PREFIX}/status/{execution_id}").json()

        assert set(body) == {"execution_id", "status", "progress", "partial_results"}
        progress = body["progress"]
        assert progress["percentage"] == 100
        assert progress["current_phase"] == "Completed"
        assert sorted(progress["completed_components"]) == [
            "corporate-registration",
            "exim-verification",
            "gleif-verification",
        ]
        assert progress["running_components"] == []
        assert progress["failed_components"] == []
        assert progress["skipped_components"] == []

    def test_results_202_while_running_then_cancel(self, client, adapter):
        gate = asyncio.Event()
        adapter.gates[GLEIF_TOOL] = gate
        execution_id = client.post(f"{PREFIX}/executions", json=KYC_REQUEST).json()["execution_id"]

        for _ in range(200):
            status = client.get(
                f"{PREFIX}/status/{execution_id}", params={"include_partial": False}
            ).json()
            if status["progress"]["running_components"]:
                break
            time.sleep(0.01)
        assert status["progress"]["running_components"] == ["gleif-verification"]
        assert status["partial_results"] is None

        pending = client.get(f"{PREFIX}/results/{execution_id}")
        assert pending.status_code == 202
        assert pending.json()["status"] == "RUNNING"

        cancel = client.post(f"{PREFIX}/executions/{execution_id}/cancel").json()
        assert cancel["cancelled"] is True

        client.portal.call(gate.set)
        result = poll_result(client, execution_id)
        assert result["status"] == "CANCELLED"
        skipped = [r for r in result["component_results"] if r["status"] == "SKIPPED"]
        assert len(skipped) == 2

        again = client.post(f"{PREFIX}/executions/{execution_id}/cancel").json()
        assert again["cancelled"] is False
        assert again["status"] == "CANCELLED"

    def test_unknown_execution(self, client):
        for response in (
            client.get(f"{PREFIX}/status/missing"),
            client.get(f"{PREFIX}/results/missing"),
            client.post(f"{PREFIX}/executions/missing/cancel"),
        ):
            assert response.status_code == 404
            assert response.json()["code"] == "EXECUTION_NOT_FOUND"


# =============================================================================
# CACHE
# =============================================================================


class TestCacheEndpoints:
    def test_stats_and_clear(self, client):
        client.post(f"{PREFIX}/execute", json=KYC_REQUEST)

        stats = client.get(f"{PREFIX}/cache/stats").json()
        assert stats["size"] == 3
        assert {e["cache_key"] for e in stats["entries"]} == {
            "gleif-ACME CORP",
            "corp-reg-U01234MH2020PTC123456",
            "exim-ACME CORP",
        }

        cleared = client.post(f"{PREFIX}/cache/clear")
        assert cleared.json()["message"] == "Cache cleared successfully"
        assert client.get(f"{PREFIX}/cache/stats").json()["size"] == 0
