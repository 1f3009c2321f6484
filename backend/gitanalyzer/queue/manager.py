"""QueueManager: admission, enqueue, re-enqueue and cancellation of analysis jobs."""

from uuid import UUID

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gitanalyzer.core.exceptions import InvalidStateError, MissingSnapshotError, NotFoundError, PlanRestrictionError
from gitanalyzer.db.base import get_session_factory
from gitanalyzer.db.models.analysis_queue import AnalysisQueueItem
from gitanalyzer.domain.analysis_types import AnalysisType, DepthLevel, get_spec
from gitanalyzer.queue.schemas import EnqueueResult, QueueItemRecord, QueueStatus
from gitanalyzer.services.plan_service import PlanResolver
from gitanalyzer.services.project_access import get_accessible_project

logger = structlog.get_logger(__name__)

_ACTIVE_STATUSES = (QueueStatus.PENDING.value, QueueStatus.PROCESSING.value)


class QueueManager:
    """Creates and manages ``analysis_queue`` rows.

    Admission goes through the plan resolver before any row is written. The
    check is not atomic with the insert, so concurrent enqueues may overshoot
    the monthly budget by a few analyses.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        plan_resolver: PlanResolver | None = None,
    ):
        self._session_factory = session_factory
        self.plan_resolver = plan_resolver or PlanResolver(session_factory)

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    async def enqueue(
        self,
        user_id: str,
        project_id: UUID,
        analysis_types: list[AnalysisType],
        depth: DepthLevel,
        admin: bool = False,
    ) -> EnqueueResult:
        """Create one pending item per requested type.

        Types that already have a pending or processing item for the same
        (project, type, depth) are skipped rather than duplicated.

        Raises:
            NotFoundError / AccessDeniedError: project missing or not the caller's
            MissingSnapshotError: repository has not been ingested yet
            PlanRestrictionError / QuotaExceededError: admission rejected
        """
        for analysis_type in analysis_types:
            if get_spec(analysis_type).legacy:
                raise PlanRestrictionError(f"Analysis type '{analysis_type.value}' is no longer available")

        async with self.session_factory() as session:
            project = await get_accessible_project(session, project_id, user_id, admin)
            if not project.github_data:
                raise MissingSnapshotError("Repository data not found. Import the repository first.")

        plan = await self.plan_resolver.ensure_can_analyze(user_id, analysis_types, depth, admin=admin)

        async with self.session_factory() as session:
            result = await session.execute(
                select(AnalysisQueueItem.analysis_type).where(
                    AnalysisQueueItem.project_id == project_id,
                    AnalysisQueueItem.depth_level == depth.value,
                    AnalysisQueueItem.status.in_(_ACTIVE_STATUSES),
                )
            )
            active = set(result.scalars().all())

            created: list[AnalysisQueueItem] = []
            skipped: list[str] = []
            for analysis_type in dict.fromkeys(analysis_types):
                if analysis_type.value in active:
                    skipped.append(analysis_type.value)
                    continue
                item = AnalysisQueueItem(
                    project_id=project_id,
                    user_id=project.user_id,
                    analysis_type=analysis_type.value,
                    depth_level=depth.value,
                    status=QueueStatus.PENDING.value,
                )
                session.add(item)
                created.append(item)

            await session.commit()

        logger.info(
            "analyses_enqueued",
            user_id=user_id,
            project_id=str(project_id),
            depth=depth.value,
            created=[item.analysis_type for item in created],
            skipped=skipped,
        )
        return EnqueueResult(
            items=[QueueItemRecord.model_validate(item) for item in created],
            skipped=skipped,
            tokens_remaining=plan.tokens_remaining,
        )

    async def requeue(self, user_id: str, item_id: UUID, admin: bool = False) -> QueueItemRecord:
        """Create a fresh pending item from a failed one.

        The failed row stays as history; its retry_count carries over.
        """
        async with self.session_factory() as session:
            failed = await self._get_item(session, item_id)
            await get_accessible_project(session, failed.project_id, user_id, admin)
            if failed.status != QueueStatus.ERROR.value:
                raise InvalidStateError(f"Only failed items can be re-enqueued (status is {failed.status})")

            analysis_type = AnalysisType(failed.analysis_type)
            depth = DepthLevel(failed.depth_level)

        await self.plan_resolver.ensure_can_analyze(user_id, [analysis_type], depth, admin=admin)

        async with self.session_factory() as session:
            item = AnalysisQueueItem(
                project_id=failed.project_id,
                user_id=failed.user_id,
                analysis_type=failed.analysis_type,
                depth_level=failed.depth_level,
                status=QueueStatus.PENDING.value,
                retry_count=failed.retry_count,
            )
            session.add(item)
            await session.commit()

        logger.info("analysis_requeued", user_id=user_id, failed_item_id=str(item_id), item_id=str(item.id))
        return QueueItemRecord.model_validate(item)

    async def cancel(self, user_id: str, item_id: UUID, admin: bool = False) -> None:
        """Delete a pending item. Items already claimed run to completion."""
        async with self.session_factory() as session:
            item = await self._get_item(session, item_id)
            await get_accessible_project(session, item.project_id, user_id, admin)

            result = await session.execute(
                delete(AnalysisQueueItem)
                .where(AnalysisQueueItem.id == item_id, AnalysisQueueItem.status == QueueStatus.PENDING.value)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                raise InvalidStateError(f"Only pending items can be cancelled (status is {item.status})")
            await session.commit()

        logger.info("analysis_cancelled", user_id=user_id, item_id=str(item_id))

    async def list_for_project(self, user_id: str, project_id: UUID, admin: bool = False) -> list[QueueItemRecord]:
        async with self.session_factory() as session:
            await get_accessible_project(session, project_id, user_id, admin)
            result = await session.execute(
                select(AnalysisQueueItem)
                .where(AnalysisQueueItem.project_id == project_id)
                .order_by(AnalysisQueueItem.created_at)
            )
            return [QueueItemRecord.model_validate(item) for item in result.scalars().all()]

    @staticmethod
    async def _get_item(session: AsyncSession, item_id: UUID) -> AnalysisQueueItem:
        item = await session.get(AnalysisQueueItem, item_id)
        if item is None:
            raise NotFoundError("Queue item not found")
        return item
