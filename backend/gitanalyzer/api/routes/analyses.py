"""Analysis routes: enqueue, queue progress, latest results and the processor trigger."""

from datetime import datetime
from uuid import UUID

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from gitanalyzer.core.auth import AuthUser, is_admin_user, require_auth, require_internal
from gitanalyzer.queue.manager import QueueManager
from gitanalyzer.queue.processor import AnalysisProcessor
from gitanalyzer.queue.schemas import EnqueueRequest, EnqueueResult, ProcessTrigger, QueueItemRecord
from gitanalyzer.services.analysis_service import AnalysisService

logger = structlog.get_logger(__name__)

router = APIRouter()


class AnalysisRecord(BaseModel):
    id: UUID
    project_id: UUID
    type: str
    content: str
    created_at: datetime


def get_queue_manager() -> QueueManager:
    return QueueManager()


def get_processor() -> AnalysisProcessor:
    return AnalysisProcessor()


def get_analysis_service() -> AnalysisService:
    return AnalysisService()


@router.post("/projects/{project_id}/analyses", response_model=EnqueueResult, status_code=202)
async def enqueue_analyses(
    project_id: UUID,
    request: EnqueueRequest,
    background_tasks: BackgroundTasks,
    user: AuthUser = Depends(require_auth),
    manager: QueueManager = Depends(get_queue_manager),
    processor: AnalysisProcessor = Depends(get_processor),
):
    """Queue one analysis per requested type and start processing each in the background."""
    result = await manager.enqueue(
        user.user_id, project_id, request.analysis_types, request.depth, admin=is_admin_user(user)
    )
    for item in result.items:
        background_tasks.add_task(processor.process, item.id)
    return result


@router.get("/projects/{project_id}/queue", response_model=list[QueueItemRecord])
async def list_queue(
    project_id: UUID,
    user: AuthUser = Depends(require_auth),
    manager: QueueManager = Depends(get_queue_manager),
):
    return await manager.list_for_project(user.user_id, project_id, admin=is_admin_user(user))


@router.get("/projects/{project_id}/analyses/{analysis_type}", response_model=AnalysisRecord)
async def get_latest_analysis(
    project_id: UUID,
    analysis_type: str,
    user: AuthUser = Depends(require_auth),
    service: AnalysisService = Depends(get_analysis_service),
):
    analysis = await service.get_latest(user.user_id, project_id, analysis_type, admin=is_admin_user(user))
    return AnalysisRecord(
        id=analysis.id,
        project_id=analysis.project_id,
        type=analysis.type,
        content=analysis.content,
        created_at=analysis.created_at,
    )


@router.post("/queue/{item_id}/requeue", response_model=QueueItemRecord, status_code=202)
async def requeue_item(
    item_id: UUID,
    background_tasks: BackgroundTasks,
    user: AuthUser = Depends(require_auth),
    manager: QueueManager = Depends(get_queue_manager),
    processor: AnalysisProcessor = Depends(get_processor),
):
    item = await manager.requeue(user.user_id, item_id, admin=is_admin_user(user))
    background_tasks.add_task(processor.process, item.id)
    return item


@router.delete("/queue/{item_id}", status_code=204)
async def cancel_item(
    item_id: UUID,
    user: AuthUser = Depends(require_auth),
    manager: QueueManager = Depends(get_queue_manager),
):
    await manager.cancel(user.user_id, item_id, admin=is_admin_user(user))
    return Response(status_code=204)


@router.post("/queue/process", dependencies=[Depends(require_internal)])
async def trigger_processing(
    trigger: ProcessTrigger,
    processor: AnalysisProcessor = Depends(get_processor),
):
    """Process one queue item synchronously; the result is always a well-formed body."""
    result = await processor.process(trigger.queue_item_id)
    return JSONResponse(status_code=result.http_status, content=result.body())
