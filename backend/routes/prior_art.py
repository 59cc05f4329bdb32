"""
现有技术检索路由
"""
from fastapi import APIRouter, Depends

from backend.auth import _get_current_user
from backend.deps import get_orchestrator
from backend.models import (
    CurrentUser,
    ProcessInventionRequest,
    ProcessInventionResponse,
    RetryComparisonRequest,
    RetryComparisonResponse,
)
from priorart.orchestrator import JobOrchestrator


router = APIRouter(prefix="/api/prior-art")


@router.post("/process-invention", status_code=202, response_model=ProcessInventionResponse)
async def process_invention(
    body: ProcessInventionRequest,
    current_user: CurrentUser = Depends(_get_current_user),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """提交检索任务，立即返回任务 ID，结果通过轮询获取"""
    submitted = await orchestrator.submit(current_user.user_id, body.inventionText, body.keyFeatures)
    return ProcessInventionResponse(
        **submitted,
        message="Processing started. Poll the status endpoint for updates.",
    )


@router.get("/process-invention/status/{job_id}")
async def get_job_status(
    job_id: str,
    current_user: CurrentUser = Depends(_get_current_user),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.get_status(job_id, current_user.user_id)


@router.get("/process-invention/result/{job_id}")
def get_job_result(
    job_id: str,
    current_user: CurrentUser = Depends(_get_current_user),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """job_id 也可以是持久化记录 ID (内存任务过期后的回退路径)"""
    return orchestrator.get_result(job_id, current_user.user_id)


@router.post("/retry-patent-comparison", response_model=RetryComparisonResponse)
async def retry_patent_comparison(
    body: RetryComparisonRequest,
    current_user: CurrentUser = Depends(_get_current_user),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.retry_comparison(body.patentId, body.keyFeatures)


@router.get("/recent")
def list_recent_searches(
    current_user: CurrentUser = Depends(_get_current_user),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    searches = orchestrator.list_recent(current_user.user_id)
    return {"searches": searches, "total": len(searches)}


@router.get("/search/{search_id}")
def get_search(
    search_id: str,
    current_user: CurrentUser = Depends(_get_current_user),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.get_search(search_id, current_user.user_id)


@router.delete("/search/{search_id}")
def delete_search(
    search_id: str,
    current_user: CurrentUser = Depends(_get_current_user),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    orchestrator.delete_search(search_id, current_user.user_id)
    return {"message": "Search deleted successfully"}
