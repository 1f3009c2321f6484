"""Tests for analysis enqueue, queue inspection and the processor trigger endpoint."""

import uuid

import pytest

from gitanalyzer.core.config import get_settings

pytestmark = pytest.mark.integration


async def test_enqueue_runs_job_in_background(client, make_project):
    """202 with the created items; the background task stores the analysis."""
    project = await make_project()

    response = await client.post(
        f"/api/projects/{project.id}/analyses",
        json={"analysis_types": ["prd"], "depth": "critical"},
    )

    assert response.status_code == 202
    body = response.json()
    assert [i["analysis_type"] for i in body["items"]] == ["prd"]
    assert body["skipped"] == []

    queue = await client.get(f"/api/projects/{project.id}/queue")
    assert [i["status"] for i in queue.json()] == ["completed"]

    latest = await client.get(f"/api/projects/{project.id}/analyses/prd")
    assert latest.status_code == 200
    assert latest.json()["content"] == "# Report\n\nAll good."


async def test_quota_exhausted_returns_402_with_suggestion(client, make_project, make_usage):
    project = await make_project()
    await make_usage("user-1", 49_000)

    response = await client.post(
        f"/api/projects/{project.id}/analyses",
        json={"analysis_types": ["prd"], "depth": "critical"},
    )

    assert response.status_code == 402
    body = response.json()
    assert body["code"] == "quota_exceeded"
    assert body["suggested_depth"] == "critical"
    assert body["upgrade_url"] == "/subscription"
    assert "debug_id" in body


async def test_plan_restriction_returns_403(client, make_project):
    project = await make_project()

    response = await client.post(
        f"/api/projects/{project.id}/analyses",
        json={"analysis_types": ["prd"], "depth": "complete"},
    )

    assert response.status_code == 403
    assert response.json()["code"] == "plan_restriction"


async def test_empty_type_list_is_rejected(client, make_project):
    project = await make_project()

    response = await client.post(f"/api/projects/{project.id}/analyses", json={"analysis_types": []})

    assert response.status_code == 422


async def test_other_users_queue_is_forbidden(client, login, make_project):
    project = await make_project(user_id="user-1")
    login("user-2")

    response = await client.get(f"/api/projects/{project.id}/queue")

    assert response.status_code == 403
    assert response.json()["code"] == "access_denied"


async def test_missing_analysis_is_404(client, make_project):
    project = await make_project()

    response = await client.get(f"/api/projects/{project.id}/analyses/seguranca")

    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


async def test_requeue_and_cancel(client, make_project, make_queue_item):
    project = await make_project()
    failed = await make_queue_item(project, "prd", status="error", retry_count=1)
    pending = await make_queue_item(project, "divulgacao")

    requeued = await client.post(f"/api/queue/{failed.id}/requeue")
    assert requeued.status_code == 202
    assert requeued.json()["retry_count"] == 1

    cancelled = await client.delete(f"/api/queue/{pending.id}")
    assert cancelled.status_code == 204

    again = await client.delete(f"/api/queue/{pending.id}")
    assert again.status_code == 404


async def test_cancel_processing_item_conflicts(client, make_project, make_queue_item):
    project = await make_project()
    item = await make_queue_item(project, status="processing")

    response = await client.delete(f"/api/queue/{item.id}")

    assert response.status_code == 409
    assert response.json()["code"] == "invalid_state"


# ============================================================================
# Internal trigger
# ============================================================================


async def test_trigger_processes_item(client, make_project, make_queue_item):
    project = await make_project()
    item = await make_queue_item(project)

    response = await client.post("/api/queue/process", json={"queueItemId": str(item.id)})

    assert response.status_code == 200
    assert response.json() == {"success": True, "status": "completed", "analysisType": "prd"}

    repeat = await client.post("/api/queue/process", json={"queueItemId": str(item.id)})
    assert repeat.status_code == 200
    assert repeat.json()["status"] == "already_completed"


async def test_trigger_unknown_item_is_404_body(client):
    response = await client.post("/api/queue/process", json={"queueItemId": str(uuid.uuid4())})

    assert response.status_code == 404
    assert response.json() == {"success": False, "status": "error", "error": "Queue item not found"}


async def test_trigger_requires_configured_token(client, monkeypatch, make_project, make_queue_item):
    monkeypatch.setenv("INTERNAL_TRIGGER_TOKEN", "s3cret")
    get_settings.cache_clear()
    project = await make_project()
    item = await make_queue_item(project)

    denied = await client.post("/api/queue/process", json={"queueItemId": str(item.id)})
    assert denied.status_code == 401

    allowed = await client.post(
        "/api/queue/process",
        json={"queueItemId": str(item.id)},
        headers={"X-Internal-Token": "s3cret"},
    )
    assert allowed.status_code == 200
