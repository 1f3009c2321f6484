"""Project lookup with ownership checks shared by the queue and plan services."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gitanalyzer.core.exceptions import AccessDeniedError, NotFoundError
from gitanalyzer.db.models.project import Project
from gitanalyzer.db.models.user_role import UserRole


async def has_admin_role(session: AsyncSession, user_id: str) -> bool:
    result = await session.execute(
        select(UserRole.id).where(UserRole.user_id == user_id, UserRole.role == "admin").limit(1)
    )
    return result.scalar_one_or_none() is not None


async def get_accessible_project(
    session: AsyncSession,
    project_id: UUID,
    user_id: str,
    admin: bool = False,
) -> Project:
    """Return the project if ``user_id`` owns it or holds the admin role.

    Raises:
        NotFoundError: project does not exist
        AccessDeniedError: caller is neither owner nor admin
    """
    project = await session.get(Project, project_id)
    if project is None:
        raise NotFoundError("Project not found")

    if project.user_id != user_id and not admin and not await has_admin_role(session, user_id):
        raise AccessDeniedError("Access denied")

    return project
