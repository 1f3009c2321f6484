"""Read access to stored analyses. Only the newest row per (project, type) is current."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gitanalyzer.core.exceptions import NotFoundError
from gitanalyzer.db.base import get_session_factory
from gitanalyzer.db.models.analysis import Analysis
from gitanalyzer.services.project_access import get_accessible_project


async def latest_analyses(session: AsyncSession, project_id: UUID, analysis_types: list[str]) -> dict[str, Analysis]:
    """Newest analysis per requested type, keyed by type, in request order.

    Types with no stored analysis are absent from the result.
    """
    result = await session.execute(
        select(Analysis)
        .where(Analysis.project_id == project_id, Analysis.type.in_(analysis_types))
        .order_by(Analysis.created_at.desc())
    )
    newest: dict[str, Analysis] = {}
    for analysis in result.scalars().all():
        newest.setdefault(analysis.type, analysis)
    return {tag: newest[tag] for tag in dict.fromkeys(analysis_types) if tag in newest}


class AnalysisService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    async def get_latest(self, user_id: str, project_id: UUID, analysis_type: str, admin: bool = False) -> Analysis:
        async with self.session_factory() as session:
            await get_accessible_project(session, project_id, user_id, admin)
            found = await latest_analyses(session, project_id, [analysis_type])
            if analysis_type not in found:
                raise NotFoundError(f"No '{analysis_type}' analysis for this project yet")
            return found[analysis_type]
