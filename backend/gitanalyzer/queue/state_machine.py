"""Queue item state machine with compare-and-swap transitions.

Every transition is a conditional UPDATE guarded by the expected current
status, so two invocations racing on the same item cannot both claim it and
a finished item can never change state again.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gitanalyzer.db.base import get_session_factory
from gitanalyzer.db.models.analysis_queue import AnalysisQueueItem
from gitanalyzer.queue.schemas import QueueStatus


@dataclass(frozen=True)
class ClaimResult:
    claimed: bool
    # Status observed when the claim failed; None if the item doesn't exist
    current_status: QueueStatus | None


class QueueStateMachine:
    """Manages queue item status transitions with validation."""

    TRANSITIONS = {
        QueueStatus.PENDING: [QueueStatus.PROCESSING],
        QueueStatus.PROCESSING: [QueueStatus.COMPLETED, QueueStatus.ERROR],
        QueueStatus.COMPLETED: [],  # Terminal state
        QueueStatus.ERROR: [],  # Terminal; re-enqueue creates a new item
    }

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    @classmethod
    def can_transition(cls, current: QueueStatus, new: QueueStatus) -> bool:
        return new in cls.TRANSITIONS.get(current, [])

    async def claim(self, item_id: UUID, now: datetime | None = None) -> ClaimResult:
        """Move a pending item to processing. Only one caller can win.

        Args:
            item_id: Queue item identifier
            now: Current time (for deterministic testing)

        Returns:
            ClaimResult; when not claimed, carries the status that blocked it
        """
        now = now or datetime.now(UTC)
        async with self.session_factory() as session:
            claimed = await self._compare_and_set(
                session, item_id, QueueStatus.PENDING, QueueStatus.PROCESSING, started_at=now
            )
            await session.commit()
            if claimed:
                return ClaimResult(claimed=True, current_status=QueueStatus.PROCESSING)
            return ClaimResult(claimed=False, current_status=await self._status(session, item_id))

    async def complete(self, session: AsyncSession, item_id: UUID, now: datetime | None = None) -> bool:
        """Mark processing → completed inside the caller's transaction."""
        now = now or datetime.now(UTC)
        return await self._compare_and_set(
            session, item_id, QueueStatus.PROCESSING, QueueStatus.COMPLETED, completed_at=now
        )

    async def fail(self, item_id: UUID, error_message: str) -> bool:
        """Mark processing → error, store the message and bump retry_count."""
        async with self.session_factory() as session:
            failed = await self._compare_and_set(
                session,
                item_id,
                QueueStatus.PROCESSING,
                QueueStatus.ERROR,
                error_message=error_message,
                retry_count=AnalysisQueueItem.retry_count + 1,
            )
            await session.commit()
            return failed

    async def get_status(self, item_id: UUID) -> QueueStatus | None:
        async with self.session_factory() as session:
            return await self._status(session, item_id)

    async def _compare_and_set(
        self,
        session: AsyncSession,
        item_id: UUID,
        expected: QueueStatus,
        new: QueueStatus,
        **values,
    ) -> bool:
        if not self.can_transition(expected, new):
            raise ValueError(f"Invalid queue transition {expected.value} -> {new.value}")

        result = await session.execute(
            update(AnalysisQueueItem)
            .where(AnalysisQueueItem.id == item_id, AnalysisQueueItem.status == expected.value)
            .values(status=new.value, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    async def _status(session: AsyncSession, item_id: UUID) -> QueueStatus | None:
        result = await session.execute(select(AnalysisQueueItem.status).where(AnalysisQueueItem.id == item_id))
        status = result.scalar_one_or_none()
        return QueueStatus(status) if status else None
