"""
API integration tests.

Exercise the HTTP surface end to end through httpx.AsyncClient: publish a
workflow, trigger it, drive the scheduler, then read runs and audit entries.
"""

import pytest

from conftest import auth_header

pytestmark = pytest.mark.integration

API = "/api/v1"

WORKFLOW = {
    "name": "welcome series",
    "payload_schema": {"required": ["user"], "properties": {"user": {"type": "object"}}},
    "nodes": [
        {"code": "welcome", "type": "email",
         "template_body": {"to": "{{ payload.user.email }}", "subject": "Welcome", "body": "Hi"}},
        {"code": "nudge", "type": "sms",
         "template_body": {"to": "{{ payload.user.phone }}", "body": "Check your inbox"}},
    ],
    "edges": [{"from": "welcome", "to": "nudge"}],
}
PAYLOAD = {"user": {"email": "ada@example.com", "phone": "+15550100199"}}


async def publish_workflow(client, headers, body=WORKFLOW) -> dict:
    response = await client.post(f"{API}/workflows", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


class TestWorkflowEndpoints:
    @pytest.mark.asyncio
    async def test_publish(self, client, manager_headers):
        data = await publish_workflow(client, manager_headers)
        assert data["version"] == 1
        assert data["status"] == "published"
        assert [n["code"] for n in data["nodes"]] == ["welcome", "nudge"]
        assert len(data["edges"]) == 1
        assert data["is_deleted"] is False

    @pytest.mark.asyncio
    async def test_cycle_rejected(self, client, manager_headers):
        body = dict(WORKFLOW, edges=[{"from": "welcome", "to": "nudge"}, {"from": "nudge", "to": "welcome"}])
        response = await client.post(f"{API}/workflows", json=body, headers=manager_headers)

        assert response.status_code == 422
        data = response.json()
        assert data["code"] == "cycle_detected"
        assert sorted(data["details"]["node_ids"]) == data["details"]["node_ids"]

    @pytest.mark.asyncio
    async def test_versions_and_soft_delete(self, client, manager_headers):
        first = await publish_workflow(client, manager_headers)
        wf_id = first["workflow_id"]
        await publish_workflow(client, manager_headers, dict(WORKFLOW, workflow_id=wf_id))

        response = await client.get(f"{API}/workflows/{wf_id}/versions", headers=manager_headers)
        assert [v["version"] for v in response.json()] == [1, 2]

        response = await client.delete(f"{API}/workflows/{wf_id}/versions/2", headers=manager_headers)
        assert response.status_code == 200
        assert response.json()["is_deleted"] is True

        response = await client.get(f"{API}/workflows/{wf_id}/versions", headers=manager_headers)
        assert [v["version"] for v in response.json()] == [1]
        response = await client.get(
            f"{API}/workflows/{wf_id}/versions", params={"include_deleted": True}, headers=manager_headers
        )
        assert [v["version"] for v in response.json()] == [1, 2]

        response = await client.get(f"{API}/workflows/{wf_id}/versions/2", headers=manager_headers)
        assert response.status_code == 404
        assert response.json()["code"] == "not_found"

    @pytest.mark.asyncio
    async def test_operator_cannot_publish(self, client, operator_headers):
        response = await client.post(f"{API}/workflows", json=WORKFLOW, headers=operator_headers)
        assert response.status_code == 403
        assert response.json()["code"] == "forbidden"

    @pytest.mark.asyncio
    async def test_invalid_body(self, client, manager_headers):
        body = dict(WORKFLOW, nodes=[{"code": "x", "type": "email", "max_attempts": 0}], edges=[])
        response = await client.post(f"{API}/workflows", json=body, headers=manager_headers)
        assert response.status_code == 422


class TestTriggerAndRuns:
    @pytest.mark.asyncio
    async def test_trigger_then_read_run(self, client, manager_headers, operator_headers, scheduler,
                                         email_provider, sms_provider):
        wf = await publish_workflow(client, manager_headers)

        response = await client.post(
            f"{API}/triggers",
            json={"workflow_id": wf["workflow_id"], "payload": PAYLOAD, "idempotency_key": "signup-42"},
            headers=operator_headers,
        )
        assert response.status_code == 202
        trigger = response.json()
        assert trigger["status"] == "running"
        assert trigger["duplicate"] is False

        await scheduler.run_until_idle()

        response = await client.get(f"{API}/runs/{trigger['run_id']}", headers=operator_headers)
        assert response.status_code == 200
        run = response.json()
        assert run["status"] == "completed"
        assert run["version"] == 1
        assert run["idempotency_key"] == "signup-42"
        assert sorted(e["status"] for e in run["executions"]) == ["succeeded", "succeeded"]
        assert len(email_provider.sent) == 1
        assert len(sms_provider.sent) == 1

        response = await client.post(
            f"{API}/triggers",
            json={"workflow_id": wf["workflow_id"], "payload": PAYLOAD, "idempotency_key": "signup-42"},
            headers=operator_headers,
        )
        assert response.status_code == 202
        assert response.json() == {"run_id": trigger["run_id"], "status": "completed", "duplicate": True}

    @pytest.mark.asyncio
    async def test_trigger_rejects_bad_payload(self, client, manager_headers, operator_headers):
        wf = await publish_workflow(client, manager_headers)
        response = await client.post(
            f"{API}/triggers",
            json={"workflow_id": wf["workflow_id"], "payload": {"nobody": True}},
            headers=operator_headers,
        )
        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"

    @pytest.mark.asyncio
    async def test_trigger_unknown_workflow(self, client, operator_headers):
        response = await client.post(
            f"{API}/triggers", json={"workflow_id": "missing", "payload": {}}, headers=operator_headers
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_worker_cannot_trigger(self, client, manager_headers, worker_headers):
        wf = await publish_workflow(client, manager_headers)
        response = await client.post(
            f"{API}/triggers", json={"workflow_id": wf["workflow_id"], "payload": PAYLOAD}, headers=worker_headers
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_cancel_run(self, client, manager_headers, operator_headers):
        wf = await publish_workflow(client, manager_headers)
        trigger = (await client.post(
            f"{API}/triggers", json={"workflow_id": wf["workflow_id"], "payload": PAYLOAD}, headers=operator_headers
        )).json()

        # Operators can read runs but not cancel them
        response = await client.post(f"{API}/runs/{trigger['run_id']}/cancel", headers=operator_headers)
        assert response.status_code == 403

        response = await client.post(
            f"{API}/runs/{trigger['run_id']}/cancel", json={"reason": "duplicate signup"}, headers=manager_headers
        )
        assert response.status_code == 200
        run = response.json()
        assert run["status"] == "cancelled"
        assert {e["status"] for e in run["executions"]} == {"skipped"}

        response = await client.post(f"{API}/runs/{trigger['run_id']}/cancel", headers=manager_headers)
        assert response.status_code == 409
        assert response.json()["code"] == "invalid_state_transition"

    @pytest.mark.asyncio
    async def test_unknown_run(self, client, operator_headers):
        response = await client.get(f"{API}/runs/no-such-run", headers=operator_headers)
        assert response.status_code == 404


class TestAuditEndpoint:
    @pytest.mark.asyncio
    async def test_lists_run_events(self, client, manager_headers, operator_headers, scheduler):
        wf = await publish_workflow(client, manager_headers)
        trigger = (await client.post(
            f"{API}/triggers", json={"workflow_id": wf["workflow_id"], "payload": PAYLOAD}, headers=operator_headers
        )).json()
        await scheduler.run_until_idle()

        response = await client.get(f"{API}/audit", params={"run_id": trigger["run_id"]}, headers=manager_headers)
        assert response.status_code == 200
        data = response.json()
        events = [e["event_type"] for e in data["entries"]]
        assert events[0] == "RUN_CREATED"
        assert events[-1] == "RUN_COMPLETED"
        assert data["total"] == len(events)
        sequences = [e["sequence"] for e in data["entries"]]
        assert sequences == sorted(sequences)

        response = await client.get(
            f"{API}/audit", params={"event_type": "RUN_COMPLETED", "limit": 1}, headers=manager_headers
        )
        assert [e["run_id"] for e in response.json()["entries"]] == [trigger["run_id"]]

    @pytest.mark.asyncio
    async def test_unknown_event_type(self, client, manager_headers):
        response = await client.get(f"{API}/audit", params={"event_type": "NOPE"}, headers=manager_headers)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_operator_cannot_read_audit(self, client, operator_headers):
        response = await client.get(f"{API}/audit", headers=operator_headers)
        assert response.status_code == 403


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        response = await client.get(f"{API}/runs/anything")
        assert response.status_code == 401
        assert response.json()["code"] == "unauthorized"

    @pytest.mark.asyncio
    async def test_garbage_token(self, client):
        response = await client.get(f"{API}/runs/anything", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_admin_can_do_everything(self, client):
        admin = auth_header("admin-1", "system_admin")
        data = await publish_workflow(client, admin)
        response = await client.post(
            f"{API}/triggers", json={"workflow_id": data["workflow_id"], "payload": PAYLOAD}, headers=admin
        )
        assert response.status_code == 202


class TestErrorDocumentation:
    @pytest.mark.asyncio
    async def test_error_body_is_documented(self, client):
        response = await client.get("/openapi.json")
        assert response.status_code == 200
        spec = response.json()
        assert set(spec["components"]["schemas"]["ErrorResponse"]["required"]) == {"detail", "code"}

        cancel = spec["paths"][f"{API}/runs/{{run_id}}/cancel"]["post"]["responses"]
        assert cancel["409"]["content"]["application/json"]["schema"] == {
            "$ref": "#/components/schemas/ErrorResponse"
        }
        assert "503" in spec["paths"][f"{API}/triggers"]["post"]["responses"]

    @pytest.mark.asyncio
    async def test_error_body_matches_documented_shape(self, client, manager_headers):
        from api.schemas.common import ErrorResponse

        response = await client.get(f"{API}/runs/no-such-run", headers=manager_headers)
        assert response.status_code == 404
        body = ErrorResponse.model_validate(response.json())
        assert body.code
        assert "no-such-run" in body.detail


class TestHealth:
    @pytest.mark.asyncio
    async def test_liveness(self, client):
        response = await client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    @pytest.mark.asyncio
    async def test_readiness(self, client):
        response = await client.get(f"{API}/health/ready")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "database": "ok", "workers": "stopped"}

    @pytest.mark.asyncio
    async def test_status(self, client):
        response = await client.get(f"{API}/health/status")
        engine = response.json()["engine"]
        assert engine["worker_id"] == "test-worker"
        assert engine["node_types"] == ["delay", "email", "sms"]
        assert engine["inflight"] == 0

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, client):
        response = await client.get("/api/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
