"""Shared test fixtures: SQLite database, fake Redis and a mock AI gateway."""

import json
from datetime import UTC, datetime

import httpx
import pytest
from fakeredis import FakeAsyncRedis

import gitanalyzer.db.base as db_mod
from gitanalyzer.ai.client import ProviderClient
from gitanalyzer.ai.providers import GatewayProvider
from gitanalyzer.core.config import get_settings
from gitanalyzer.db.base import bind_engine, build_engine, create_tables
from gitanalyzer.db.models import Analysis, AnalysisQueueItem, Project, UsageRecord, UserRole
from gitanalyzer.db.seed import seed_plans

GATEWAY_URL = "https://gateway.test/v1/chat/completions"

SNAPSHOT = {
    "repoData": {"description": "Invoice API", "language": "Python", "stars": 12, "forks": 3},
    "readmeContent": "# acme-api\nIssue and track invoices.",
    "fileStructure": "src/\n  app.py\n  billing.py",
    "packageJsonContent": "",
    "sourceCodeContent": "def create_invoice(): ...",
    "configContent": "",
}


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Drop the cached Settings so monkeypatched env vars take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
async def engine(tmp_path):
    """File-backed SQLite engine installed as the global engine, with plans seeded."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_tables(engine)
    bind_engine(engine)
    await seed_plans()

    yield engine

    db_mod._engine = None
    db_mod._session_factory = None
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return db_mod.get_session_factory()


@pytest.fixture
async def redis():
    """Create a fake Redis instance for testing."""
    fake_redis = FakeAsyncRedis(decode_responses=True)
    yield fake_redis
    await fake_redis.flushall()
    await fake_redis.aclose()


# ============================================================================
# Row factories
# ============================================================================


@pytest.fixture
def make_project(session_factory):
    async def _make(user_id="user-1", name="acme-api", github_data=SNAPSHOT, **fields):
        async with session_factory() as session:
            project = Project(
                user_id=user_id,
                name=name,
                github_url=f"https://github.com/acme/{name}",
                github_data=github_data,
                **fields,
            )
            session.add(project)
            await session.commit()
            return project

    return _make


@pytest.fixture
def make_queue_item(session_factory):
    async def _make(project, analysis_type="prd", depth="critical", status="pending", **fields):
        async with session_factory() as session:
            item = AnalysisQueueItem(
                project_id=project.id,
                user_id=project.user_id,
                analysis_type=analysis_type,
                depth_level=depth,
                status=status,
                **fields,
            )
            session.add(item)
            await session.commit()
            return item

    return _make


@pytest.fixture
def make_analysis(session_factory):
    async def _make(project, analysis_type, content, created_at=None):
        async with session_factory() as session:
            analysis = Analysis(
                project_id=project.id,
                type=analysis_type,
                content=content,
                created_at=created_at or datetime.now(UTC),
            )
            session.add(analysis)
            await session.commit()
            return analysis

    return _make


@pytest.fixture
def make_usage(session_factory):
    async def _make(user_id, tokens, analysis_type="prd", **fields):
        async with session_factory() as session:
            record = UsageRecord(user_id=user_id, analysis_type=analysis_type, tokens_estimated=tokens, **fields)
            session.add(record)
            await session.commit()
            return record

    return _make


@pytest.fixture
def make_admin(session_factory):
    async def _make(user_id):
        async with session_factory() as session:
            session.add(UserRole(user_id=user_id, role="admin"))
            await session.commit()

    return _make


# ============================================================================
# Mock AI gateway
# ============================================================================


def completion_body(content="# Report\n\nAll good.", prompt_tokens=1000, completion_tokens=500, tool_calls=None):
    """OpenAI-shaped chat completion body."""
    message = {"role": "assistant", "content": content}
    if tool_calls is not None:
        message["tool_calls"] = tool_calls
    body = {"choices": [{"message": message}]}
    if prompt_tokens is not None:
        body["usage"] = {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": prompt_tokens + completion_tokens,
        }
    return body


def tool_call_body(arguments, total_tokens=2400):
    """Completion carrying one extract_implementation_items call with raw ``arguments``."""
    if not isinstance(arguments, str):
        arguments = json.dumps(arguments)
    body = completion_body(
        content="",
        prompt_tokens=total_tokens - 400,
        completion_tokens=400,
        tool_calls=[
            {
                "id": "call_1",
                "type": "function",
                "function": {"name": "extract_implementation_items", "arguments": arguments},
            }
        ],
    )
    return body


class GatewayStub:
    """Replays queued responses through httpx.MockTransport and records every request.

    Queue items are response bodies (served with 200) or ``httpx.Response``
    objects. The last item is repeated once the queue runs dry.
    """

    completion = staticmethod(completion_body)
    tool_call = staticmethod(tool_call_body)

    def __init__(self):
        self.responses: list = [completion_body()]
        self.requests: list[dict] = []
        self.sleeps: list[float] = []
        self.http_client = httpx.AsyncClient(transport=httpx.MockTransport(self._handle))

    def queue(self, *responses) -> None:
        self.responses = list(responses)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, httpx.Response):
            # Fresh copy: a repeated item must not reuse a consumed response
            return httpx.Response(item.status_code, headers=item.headers, content=item.content)
        return httpx.Response(200, json=item)

    async def record_sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)

    def client_factory(self, provider=None) -> ProviderClient:
        backend = GatewayProvider("test-gateway-key", GATEWAY_URL, http_client=self.http_client)
        return ProviderClient(backend, sleep=self.record_sleep)


@pytest.fixture
async def gateway():
    stub = GatewayStub()
    yield stub
    await stub.http_client.aclose()
