"""
健康检查路由
"""
from datetime import datetime

from fastapi import APIRouter, Depends

from backend.deps import get_orchestrator
from priorart.orchestrator import JobOrchestrator


router = APIRouter()


@router.get("/api/prior-art/health")
def health_check(orchestrator: JobOrchestrator = Depends(get_orchestrator)):
    """适配器配置、活跃任务数与存储统计"""
    return {
        **orchestrator.health(),
        "timestamp": datetime.now().isoformat(),
        "version": "1.0.0",
    }
