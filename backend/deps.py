"""
路由共享依赖
"""
import threading
from typing import Optional

from priorart.orchestrator import JobOrchestrator

_orchestrator: Optional[JobOrchestrator] = None
_orchestrator_lock = threading.Lock()


def get_orchestrator() -> JobOrchestrator:
    """进程内唯一的任务调度器 (内存任务表只能有一份)"""
    global _orchestrator
    if _orchestrator is None:
        with _orchestrator_lock:
            if _orchestrator is None:
                _orchestrator = JobOrchestrator()
    return _orchestrator
