"""AnalysisProcessor: runs one queue item end to end.

Called once per queue item by FastAPI BackgroundTasks or the internal trigger
endpoint; there is no long-running worker loop. Steps:

1. Claim the item (pending → processing, started_at)
2. Set the project's advisory status to generating_<type>
3. Resolve the run configuration (provider, depth context/model, prompt)
4. Build the prompt from the cached repository snapshot
5. Call the provider client (retries inside)
6-8. In one transaction: insert Analysis, insert UsageRecord, mark completed

Any failure after the claim marks the item error with the message and
retry_count + 1. Failures never propagate to the caller.
"""

from collections.abc import Callable
from uuid import UUID

import structlog

from gitanalyzer.ai.client import ProviderClient, build_provider_client
from gitanalyzer.ai.prompts import assemble_prompts, build_project_context, template_variables
from gitanalyzer.core.config import get_settings
from gitanalyzer.core.exceptions import (
    InsufficientCreditsError,
    InvalidStateError,
    MissingSnapshotError,
    NotFoundError,
)
from gitanalyzer.db.base import get_session_factory
from gitanalyzer.db.models.analysis import Analysis
from gitanalyzer.db.models.analysis_queue import AnalysisQueueItem
from gitanalyzer.db.models.project import Project
from gitanalyzer.domain.analysis_types import AnalysisType, DepthLevel, get_spec
from gitanalyzer.domain.pricing import Provider
from gitanalyzer.queue.schemas import ProcessResult, ProcessStatus, QueueStatus
from gitanalyzer.queue.state_machine import QueueStateMachine
from gitanalyzer.services.settings_service import SettingsRepository
from gitanalyzer.services.usage_ledger import record_usage

logger = structlog.get_logger(__name__)

_ALREADY = {
    QueueStatus.PROCESSING: ProcessStatus.ALREADY_PROCESSING,
    QueueStatus.COMPLETED: ProcessStatus.ALREADY_COMPLETED,
    QueueStatus.ERROR: ProcessStatus.ALREADY_FAILED,
}


class AnalysisProcessor:
    def __init__(
        self,
        session_factory=None,
        settings_repository: SettingsRepository | None = None,
        client_factory: Callable[[Provider], ProviderClient] = build_provider_client,
    ):
        self._session_factory = session_factory
        self.state_machine = QueueStateMachine(session_factory)
        self.settings_repository = settings_repository or SettingsRepository(session_factory)
        self.client_factory = client_factory

    @property
    def session_factory(self):
        return self._session_factory or get_session_factory()

    async def process(self, item_id: UUID) -> ProcessResult:
        log = logger.bind(queue_item_id=str(item_id))

        try:
            claim = await self.state_machine.claim(item_id)
        except Exception as exc:
            # Nothing was claimed, so there is no item state to record
            log.error("queue_item_claim_failed", error=str(exc), error_type=type(exc).__name__)
            return ProcessResult(success=False, status=ProcessStatus.ERROR, error=str(exc), http_status=500)

        if not claim.claimed:
            if claim.current_status is None:
                log.warning("queue_item_not_found")
                return ProcessResult(
                    success=False, status=ProcessStatus.ERROR, error="Queue item not found", http_status=404
                )
            log.info("queue_item_already_claimed", status=claim.current_status.value)
            return ProcessResult(success=True, status=_ALREADY[claim.current_status])

        # From here on the item is ours: every failure must end in the error state
        analysis_type_tag = None
        try:
            async with self.session_factory() as session:
                item = await session.get(AnalysisQueueItem, item_id)
            if item is None:
                raise NotFoundError("Queue item disappeared after claim")
            analysis_type_tag = item.analysis_type
            log = log.bind(analysis_type=analysis_type_tag, project_id=str(item.project_id), user_id=item.user_id)

            await self._run(item, log)
        except Exception as exc:
            log.error("analysis_job_failed", error=str(exc), error_type=type(exc).__name__, exc_info=True)
            await self._record_failure(item_id, exc, log)
            return ProcessResult(
                success=False,
                status=ProcessStatus.ERROR,
                analysis_type=analysis_type_tag,
                error=str(exc),
                http_status=_trigger_status(exc),
            )

        log.info("analysis_job_completed")
        return ProcessResult(success=True, status=ProcessStatus.COMPLETED, analysis_type=analysis_type_tag)

    async def _run(self, item: AnalysisQueueItem, log) -> None:
        analysis_type = AnalysisType(item.analysis_type)
        depth = DepthLevel(item.depth_level)
        spec = get_spec(analysis_type)

        async with self.session_factory() as session:
            project = await session.get(Project, item.project_id)
            if project is None:
                raise NotFoundError("Project not found")
            project.analysis_status = spec.status_key
            await session.commit()

        config = await self.settings_repository.resolve_run_config(analysis_type, depth)

        snapshot = project.github_data
        if not snapshot:
            raise MissingSnapshotError("Repository data not found. Run the extraction first.")

        context = build_project_context(project.name, project.github_url, snapshot, config.depth.max_context)
        prompts = assemble_prompts(
            config.prompt.system_prompt,
            config.prompt.user_prompt,
            context,
            template_variables(project.name, project.github_url, snapshot, config.depth.max_context),
            from_template=config.prompt.from_database,
            language=get_settings().report_language,
        )

        client = self.client_factory(config.provider_settings.provider)
        model = config.model_for(client.provider)
        log.info(
            "analysis_job_calling_provider",
            provider=client.provider.value,
            model=model,
            depth=depth.value,
            context_chars=len(context),
        )
        result = await client.execute(prompts.system, prompts.user, model)

        async with self.session_factory() as session:
            session.add(Analysis(project_id=item.project_id, type=analysis_type.value, content=result.content))
            record_usage(
                session,
                user_id=item.user_id,
                project_id=item.project_id,
                analysis_type=analysis_type.value,
                depth=depth.value,
                tokens=result.tokens_used,
                cost_usd=result.cost_usd,
                model=result.model,
                provider=result.provider.value,
                input_tokens=result.input_tokens,
                output_tokens=result.output_tokens,
            )
            if not await self.state_machine.complete(session, item.id):
                await session.rollback()
                raise InvalidStateError("Queue item left processing state before completion")
            await session.commit()

    async def _record_failure(self, item_id: UUID, exc: Exception, log) -> None:
        try:
            marked = await self.state_machine.fail(item_id, str(exc) or type(exc).__name__)
        except Exception as mark_exc:
            log.error(
                "analysis_job_failure_not_recorded",
                error=str(mark_exc),
                error_type=type(mark_exc).__name__,
            )
            return
        if not marked:
            log.warning("analysis_job_failure_state_conflict")


def _trigger_status(exc: Exception) -> int:
    if isinstance(exc, (InsufficientCreditsError, NotFoundError)):
        return exc.status_code
    return 500


async def process_queue_item(item_id: UUID, processor: AnalysisProcessor | None = None) -> ProcessResult:
    """Entry point for BackgroundTasks and the internal trigger."""
    processor = processor or AnalysisProcessor()
    return await processor.process(item_id)
