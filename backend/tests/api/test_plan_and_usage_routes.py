"""Tests for plan, usage report and health endpoints."""

from datetime import UTC, datetime, timedelta

import pytest

pytestmark = pytest.mark.integration


async def test_current_plan_for_new_user(client):
    response = await client.get("/api/plan")

    assert response.status_code == 200
    body = response.json()
    assert body["plan_slug"] == "free"
    assert body["tokens_remaining"] == 50_000
    assert body["can_analyze"] is True
    assert body["is_admin"] is False


async def test_admin_claim_makes_plan_unlimited(client, login):
    login("ops", admin=True)

    body = (await client.get("/api/plan")).json()

    assert body["is_admin"] is True
    assert body["tokens_remaining"] is None


async def test_suggest_depth_for_single_analysis(client, make_usage):
    await make_usage("user-1", 44_000)

    response = await client.get("/api/plan/suggest-depth", params={"analysis_count": 1})

    assert response.status_code == 200
    body = response.json()
    assert body["tokens_remaining"] == 6_000
    assert body["suggested_depth"] == "balanced"
    assert body["estimates"] == {"critical": 2000, "balanced": 4000, "complete": 8000}


async def test_suggest_depth_defaults_to_full_run(client):
    body = (await client.get("/api/plan/suggest-depth")).json()

    assert body["analysis_count"] == 8
    assert body["suggested_depth"] == "balanced"


async def test_suggest_depth_rejects_zero_count(client):
    response = await client.get("/api/plan/suggest-depth", params={"analysis_count": 0})
    assert response.status_code == 422


async def test_unauthenticated_request_is_401(anonymous_client):
    response = await anonymous_client.get("/api/plan")

    assert response.status_code == 401
    assert response.json()["detail"] == "Missing authorization header"
    assert "debug_id" in response.json()


# ============================================================================
# Usage reports and token history
# ============================================================================


async def test_usage_reports_require_admin(client):
    response = await client.get("/api/usage/models")

    assert response.status_code == 403


async def test_admin_role_row_grants_usage_reports(client, login, make_admin):
    await make_admin("ops")
    login("ops")

    assert (await client.get("/api/usage/models")).status_code == 200


async def test_usage_by_model_and_depth(client, login, make_usage):
    login("ops", admin=True)
    lite = "google/gemini-2.5-flash-lite"
    await make_usage("u", 10_000, model_used=lite, cost_estimated=0.001, depth_level="critical")
    await make_usage("u", 10_000, model_used=lite, cost_estimated=0.5, depth_level="critical")

    models = (await client.get("/api/usage/models")).json()
    assert [m["model_id"] for m in models] == [lite]
    assert models[0]["count"] == 1
    assert models[0]["mode"] == "economic"

    (depth,) = (await client.get("/api/usage/depths")).json()
    assert depth["depth"] == "critical"
    assert depth["avg_tokens"] == 10_000
    # 5000 in + 5000 out on flash-lite
    assert depth["estimated_cost"] == pytest.approx(5 * 0.000075 + 5 * 0.0003)
    assert depth["estimated_cost_display"] == "$0.0019"
    assert depth["estimated_cost_brl_display"] == "R$ 0.01"


async def test_token_history_is_open_to_the_caller(client, make_usage):
    await make_usage("user-1", 1_200)
    await make_usage("user-1", 800)
    await make_usage("user-1", 5_000, created_at=datetime.now(UTC) - timedelta(days=40))
    await make_usage("user-2", 9_000)

    response = await client.get("/api/usage/history")

    assert response.status_code == 200
    [today] = response.json()
    assert today["tokens"] == 2_000
    assert today["analyses"] == 2
    assert today["date"] == datetime.now(UTC).date().isoformat()


async def test_token_history_rejects_out_of_range_days(client):
    response = await client.get("/api/usage/history", params={"days": 0})

    assert response.status_code == 422


# ============================================================================
# Health and request tracing
# ============================================================================


async def test_health(anonymous_client):
    response = await anonymous_client.get("/api/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


async def test_ready_reports_missing_redis(anonymous_client):
    response = await anonymous_client.get("/api/ready")

    assert response.status_code == 503
    assert response.json()["checks"] == {"database": True, "redis": False}


async def test_request_id_is_echoed(anonymous_client):
    response = await anonymous_client.get("/api/health", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"
