"""Tests for AnalysisProcessor: one queue item from claim to stored analysis."""

import uuid

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from gitanalyzer.db.models import Analysis, AnalysisPrompt, AnalysisQueueItem, Project, SystemSetting, UsageRecord
from gitanalyzer.queue.processor import AnalysisProcessor, process_queue_item
from gitanalyzer.queue.schemas import ProcessStatus

pytestmark = pytest.mark.unit


@pytest.fixture
def processor(engine, gateway):
    return AnalysisProcessor(client_factory=gateway.client_factory)


@pytest.fixture
async def project(make_project):
    return await make_project()


async def _rows(session_factory, model):
    async with session_factory() as session:
        return (await session.execute(select(model))).scalars().all()


async def _item(session_factory, item_id):
    async with session_factory() as session:
        return await session.get(AnalysisQueueItem, item_id)


# ============================================================================
# Happy path
# ============================================================================


async def test_completed_job_stores_analysis_usage_and_status(processor, gateway, project, make_queue_item, session_factory):
    """Analysis, usage row and completed status land together."""
    item = await make_queue_item(project, "prd", depth="critical")
    gateway.queue(gateway.completion("# PRD\n\nInvoices.", prompt_tokens=1000, completion_tokens=500))

    result = await processor.process(item.id)

    assert result.success is True
    assert result.status == ProcessStatus.COMPLETED
    assert result.body() == {"success": True, "status": "completed", "analysisType": "prd"}

    (analysis,) = await _rows(session_factory, Analysis)
    assert analysis.type == "prd"
    assert analysis.content == "# PRD\n\nInvoices."

    (usage,) = await _rows(session_factory, UsageRecord)
    assert usage.tokens_estimated == 1500
    assert usage.input_tokens == 1000
    assert usage.output_tokens == 500
    assert usage.model_used == "google/gemini-2.5-flash-lite"
    assert usage.depth_level == "critical"
    assert usage.cost_estimated == pytest.approx(0.000225)

    stored = await _item(session_factory, item.id)
    assert stored.status == "completed"
    assert stored.completed_at is not None

    async with session_factory() as session:
        assert (await session.get(Project, project.id)).analysis_status == "generating_prd"


async def test_prompt_uses_depth_model_and_context_limit(processor, gateway, make_project, make_queue_item):
    """Critical depth sends the lite model and at most 8000 context characters."""
    project = await make_project(github_data={"sourceCodeContent": "x" * 50_000})
    item = await make_queue_item(project, "prd", depth="critical")

    await processor.process(item.id)

    sent = gateway.requests[0]
    assert sent["model"] == "google/gemini-2.5-flash-lite"
    assert sent["messages"][1]["content"].count("x") < 8_000


async def test_admin_settings_override_depth_model(processor, gateway, project, make_queue_item, session_factory):
    async with session_factory() as session:
        session.add(SystemSetting(key="depth_critical_model", value="google/gemini-2.5-pro"))
        await session.commit()
    item = await make_queue_item(project, "prd")

    await processor.process(item.id)

    assert gateway.requests[0]["model"] == "google/gemini-2.5-pro"


async def test_stored_prompt_template_is_rendered(processor, gateway, project, make_queue_item, session_factory):
    async with session_factory() as session:
        session.add(
            AnalysisPrompt(
                analysis_type="prd",
                name="PRD v2",
                system_prompt="You write PRDs.",
                user_prompt_template="Write a PRD for {{projectName}} ({{githubUrl}}).",
            )
        )
        await session.commit()
    item = await make_queue_item(project, "prd")

    await processor.process(item.id)

    messages = gateway.requests[0]["messages"]
    assert messages[0]["content"] == "You write PRDs."
    assert messages[1]["content"].startswith("Write a PRD for acme-api (https://github.com/acme/acme-api).")


async def test_stored_template_variables_respect_depth_context(
    processor, gateway, make_project, make_queue_item, session_factory
):
    """{{sourceCode}} in a stored template is cut to the depth's 8000-character budget."""
    project = await make_project(github_data={"sourceCodeContent": "x" * 50_000})
    async with session_factory() as session:
        session.add(
            AnalysisPrompt(
                analysis_type="prd",
                name="PRD raw source",
                system_prompt="You write PRDs.",
                user_prompt_template="Audit this in markdown: {{sourceCode}}",
            )
        )
        await session.commit()
    item = await make_queue_item(project, "prd", depth="critical")

    await processor.process(item.id)

    rendered = gateway.requests[0]["messages"][1]["content"].split("\n\nProject Context:")[0]
    assert rendered.count("x") == 8_000


# ============================================================================
# Idempotency
# ============================================================================


async def test_second_invocation_is_a_no_op(processor, gateway, project, make_queue_item, session_factory):
    """Re-triggering a finished item never produces a second analysis."""
    item = await make_queue_item(project)

    await processor.process(item.id)
    again = await processor.process(item.id)

    assert again.success is True
    assert again.status == ProcessStatus.ALREADY_COMPLETED
    assert len(await _rows(session_factory, Analysis)) == 1
    assert len(await _rows(session_factory, UsageRecord)) == 1
    assert len(gateway.requests) == 1


async def test_claimed_item_reports_already_processing(processor, gateway, project, make_queue_item):
    item = await make_queue_item(project, status="processing")

    result = await processor.process(item.id)

    assert result.status == ProcessStatus.ALREADY_PROCESSING
    assert gateway.requests == []


async def test_failed_item_reports_already_failed(processor, project, make_queue_item):
    item = await make_queue_item(project, status="error")

    result = await processor.process(item.id)

    assert result.success is True
    assert result.status == ProcessStatus.ALREADY_FAILED


async def test_unknown_item_is_404(processor, engine):
    result = await processor.process(uuid.uuid4())

    assert result.success is False
    assert result.http_status == 404
    assert result.body() == {"success": False, "status": "error", "error": "Queue item not found"}


# ============================================================================
# Failures
# ============================================================================


async def test_provider_outage_marks_item_error(processor, gateway, project, make_queue_item, session_factory):
    """Three 503s exhaust the retries; the item fails and nothing is stored."""
    item = await make_queue_item(project)
    gateway.queue(httpx.Response(503, text="unavailable"))

    result = await processor.process(item.id)

    assert result.success is False
    assert result.status == ProcessStatus.ERROR
    assert result.http_status == 500
    assert len(gateway.requests) == 3
    assert gateway.sleeps == [1.0, 2.0]

    stored = await _item(session_factory, item.id)
    assert stored.status == "error"
    assert stored.retry_count == 1
    assert stored.error_message
    assert await _rows(session_factory, Analysis) == []
    assert await _rows(session_factory, UsageRecord) == []


async def test_insufficient_credits_surfaces_402(processor, gateway, project, make_queue_item, session_factory):
    item = await make_queue_item(project)
    gateway.queue(httpx.Response(402, text="payment required"))

    result = await processor.process(item.id)

    assert result.http_status == 402
    assert len(gateway.requests) == 1
    assert (await _item(session_factory, item.id)).status == "error"


async def test_missing_snapshot_fails_with_404(processor, gateway, make_project, make_queue_item, session_factory):
    project = await make_project(github_data=None)
    item = await make_queue_item(project)

    result = await processor.process(item.id)

    assert result.http_status == 404
    assert "Repository data not found" in result.error
    assert gateway.requests == []
    assert (await _item(session_factory, item.id)).status == "error"


class _LostConnection:
    """Session factory whose sessions fail on open, like a dropped database connection."""

    def __call__(self):
        return self

    async def __aenter__(self):
        raise OperationalError("SELECT", {}, ConnectionError("connection lost"))

    async def __aexit__(self, *exc_info):
        return False


async def test_reload_failure_after_claim_marks_item_error(processor, gateway, project, make_queue_item, session_factory):
    """The claim commits processing; a failing reload must still end in error, not a stuck item."""
    item = await make_queue_item(project)
    # The state machine keeps its own session factory, so claim and fail still work
    processor._session_factory = _LostConnection()

    result = await processor.process(item.id)

    assert result.success is False
    assert result.status == ProcessStatus.ERROR
    assert result.http_status == 500
    assert "connection lost" in result.error
    assert gateway.requests == []

    stored = await _item(session_factory, item.id)
    assert stored.status == "error"
    assert stored.retry_count == 1


async def test_claim_failure_is_returned_not_raised(gateway, project, make_queue_item):
    item = await make_queue_item(project)
    processor = AnalysisProcessor(session_factory=_LostConnection(), client_factory=gateway.client_factory)

    result = await processor.process(item.id)

    assert result.success is False
    assert result.http_status == 500
    assert result.body() == {"success": False, "status": "error", "error": result.error}


async def test_process_queue_item_entry_point(gateway, project, make_queue_item):
    item = await make_queue_item(project)

    result = await process_queue_item(item.id, AnalysisProcessor(client_factory=gateway.client_factory))

    assert result.status == ProcessStatus.COMPLETED
