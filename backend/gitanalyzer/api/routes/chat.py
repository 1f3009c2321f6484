"""Project chat route: ask questions about a project's repository."""

from uuid import UUID

from fastapi import APIRouter, Depends

from gitanalyzer.api.validation import BadRequestRoute
from gitanalyzer.core.auth import AuthUser, is_admin_user, require_auth
from gitanalyzer.schemas.chat import ChatRequest, ChatResponse
from gitanalyzer.services.chat_service import ProjectChatService

router = APIRouter(route_class=BadRequestRoute)


def get_chat_service() -> ProjectChatService:
    return ProjectChatService()


@router.post("/projects/{project_id}/chat", response_model=ChatResponse)
async def chat(
    project_id: UUID,
    request: ChatRequest,
    user: AuthUser = Depends(require_auth),
    service: ProjectChatService = Depends(get_chat_service),
):
    reply = await service.reply(
        user.user_id, project_id, request.message, request.history, admin=is_admin_user(user)
    )
    return ChatResponse(response=reply)
