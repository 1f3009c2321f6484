"""Tests for the project chat endpoint."""

import httpx
import pytest

from gitanalyzer.api.routes.chat import get_chat_service
from gitanalyzer.core.config import get_settings
from gitanalyzer.services.chat_service import EMPTY_REPLY, ProjectChatService

pytestmark = pytest.mark.integration


@pytest.fixture(autouse=True)
def chat_service(api_app, gateway):
    service = ProjectChatService(client_factory=gateway.client_factory)
    api_app.dependency_overrides[get_chat_service] = lambda: service
    return service


@pytest.fixture
async def project(make_project):
    return await make_project()


async def test_chat_answers_with_snapshot_and_history(client, gateway, project):
    gateway.queue(gateway.completion("Invoices are created in `create_invoice`."))

    response = await client.post(
        f"/api/projects/{project.id}/chat",
        json={
            "message": "Where are invoices created?",
            "history": [
                {"role": "user", "content": "Hi"},
                {"role": "assistant", "content": "Hello! Ask me about acme-api."},
            ],
        },
    )

    assert response.status_code == 200
    assert response.json() == {"response": "Invoices are created in `create_invoice`."}

    sent = gateway.requests[0]
    assert sent["model"] == "google/gemini-2.5-flash"
    assert sent["max_tokens"] == 2048
    assert [m["role"] for m in sent["messages"]] == ["system", "user", "assistant", "user"]
    assert 'the project "acme-api"' in sent["messages"][0]["content"]
    assert "GitHub: https://github.com/acme/acme-api" in sent["messages"][0]["content"]
    assert sent["messages"][-1]["content"] == "Where are invoices created?"


async def test_only_recent_history_is_sent(client, gateway, project, monkeypatch):
    monkeypatch.setenv("CHAT_MAX_HISTORY", "2")
    get_settings.cache_clear()
    history = [{"role": "user", "content": f"question {i}"} for i in range(5)]

    await client.post(f"/api/projects/{project.id}/chat", json={"message": "latest", "history": history})

    contents = [m["content"] for m in gateway.requests[0]["messages"][1:]]
    assert contents == ["question 3", "question 4", "latest"]


async def test_empty_model_reply_gets_fallback(client, gateway, project):
    gateway.queue(gateway.completion(""))

    response = await client.post(f"/api/projects/{project.id}/chat", json={"message": "?"})

    assert response.json()["response"] == EMPTY_REPLY


async def test_project_without_snapshot_still_chats(client, gateway, make_project):
    project = await make_project(name="bare", github_data=None)

    response = await client.post(f"/api/projects/{project.id}/chat", json={"message": "What is this?"})

    assert response.status_code == 200
    assert "## Project README" not in gateway.requests[0]["messages"][0]["content"]


# ============================================================================
# Errors
# ============================================================================


async def test_missing_message_is_400(client, gateway, project):
    response = await client.post(f"/api/projects/{project.id}/chat", json={"history": []})

    assert response.status_code == 400
    assert response.json()["detail"] == "Missing required fields: message"
    assert gateway.requests == []


@pytest.mark.parametrize(
    ("upstream_status", "status_code", "code"),
    [
        (429, 429, "provider_rate_limited"),
        (402, 402, "insufficient_credits"),
        (400, 500, "ai_request_failed"),
        (500, 500, "ai_request_failed"),
    ],
)
async def test_provider_errors_map_to_http_status(client, gateway, project, upstream_status, status_code, code):
    gateway.queue(httpx.Response(upstream_status, text="upstream error"))

    response = await client.post(f"/api/projects/{project.id}/chat", json={"message": "hello"})

    assert response.status_code == status_code
    assert response.json()["code"] == code


async def test_other_users_project_is_forbidden(client, login, gateway, project):
    login("user-2")

    response = await client.post(f"/api/projects/{project.id}/chat", json={"message": "hello"})

    assert response.status_code == 403
    assert gateway.requests == []


async def test_admin_can_chat_about_any_project(client, login, gateway, project):
    login("ops", admin=True)

    response = await client.post(f"/api/projects/{project.id}/chat", json={"message": "hello"})

    assert response.status_code == 200


async def test_unknown_project_is_404(client, gateway):
    response = await client.post(
        "/api/projects/00000000-0000-0000-0000-000000000000/chat", json={"message": "hello"}
    )

    assert response.status_code == 404
    assert gateway.requests == []
