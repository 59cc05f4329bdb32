# priorart/orchestrator.py

import asyncio
import uuid
from typing import Any, Dict, List, Optional, Set
from loguru import logger

from config import settings
from priorart.errors import Forbidden, InvalidInput, NotFound, NotReady, ServiceUnavailable
from priorart.llm import LLMService, get_llm_service
from priorart.models import JobStatus, SearchJob, SearchRecord
from priorart.pipeline import SearchPipeline
from priorart.search_clients.base import BaseSearchClient
from priorart.search_clients.factory import SearchClientFactory
from priorart.storage import SearchStorage, get_search_storage


class JobOrchestrator:
    """
    检索任务调度器

    - 内存任务表 (job_id -> SearchJob) 只由本类读写，每个任务只修改自己的条目
    - 提交时写一次持久化记录，终态时再写一次
    - 每次提交启动一个后台协程，提交接口不等待其完成
    - 任务结束后保留 JOB_RETENTION_SECONDS 秒，之后只能从持久化记录读取结果
    """

    def __init__(
        self,
        llm: Optional[LLMService] = None,
        client: Optional[BaseSearchClient] = None,
        storage: Optional[SearchStorage] = None,
        retention_seconds: Optional[float] = None,
    ):
        self.llm = llm or get_llm_service()
        self.client = client or SearchClientFactory.get_client(settings.SEARCH_PROVIDER)
        self.storage = storage or get_search_storage()
        self.retention_seconds = settings.JOB_RETENTION_SECONDS if retention_seconds is None else retention_seconds
        self.pipeline = SearchPipeline(self.llm, self.client)

        self._jobs: Dict[str, SearchJob] = {}
        self._tasks: Set[asyncio.Task] = set()

    # =========================================================================
    # Submission / Status / Result
    # =========================================================================

    async def submit(
        self,
        owner_id: str,
        invention_text: str,
        key_features: Optional[str] = None,
    ) -> Dict[str, str]:
        if not invention_text or not invention_text.strip():
            raise InvalidInput("Invention text is required")
        if not self.llm.configured:
            raise ServiceUnavailable("Text generation service is not configured")
        if not self.client.configured:
            raise ServiceUnavailable("Patent search service is not configured")

        job_id = f"job_{uuid.uuid4().hex[:16]}"
        record = SearchRecord(
            id=uuid.uuid4().hex,
            owner_id=owner_id,
            invention_text=invention_text,
            job_id=job_id,
        )
        await asyncio.to_thread(self.storage.create_record, record)

        job = SearchJob(job_id=job_id, owner_id=owner_id, record_id=record.id)
        self._jobs[job_id] = job

        task = asyncio.create_task(self._run(job, invention_text, key_features))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info(f"[{job_id}] Job submitted (record={record.id}, owner={owner_id})")
        return {"jobId": job_id, "recordId": record.id, "status": JobStatus.PROCESSING.value}

    def get_status(self, job_id: str, owner_id: str) -> Dict[str, Any]:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFound("Job not found")
        if job.owner_id != owner_id:
            raise Forbidden("Access denied")

        status = {
            "status": job.status.value,
            "progress": job.progress,
            "elapsedMs": job.elapsed_ms(),
        }
        if job.status == JobStatus.FAILED:
            status["error"] = job.error
            status["errorDetails"] = job.error_details
        return status

    def get_result(self, job_or_record_id: str, owner_id: str) -> Dict[str, Any]:
        """先查内存任务表，未命中时回退到持久化记录"""
        job = self._jobs.get(job_or_record_id)
        if job is not None:
            if job.owner_id != owner_id:
                raise Forbidden("Access denied")
            if job.status != JobStatus.COMPLETED:
                raise NotReady("Job not completed", {"status": job.status.value})
            return job.result.to_dict()

        record = self.storage.find_record(job_or_record_id)
        if record is None:
            raise NotFound("Job not found")
        if record.owner_id != owner_id:
            raise Forbidden("Access denied")
        if record.status != JobStatus.COMPLETED:
            raise NotReady("Job not completed", {"status": record.status.value})
        return record.result_dict()

    # =========================================================================
    # Background Execution
    # =========================================================================

    async def _run(self, job: SearchJob, invention_text: str, key_features: Optional[str]):
        logger.info(f"[{job.job_id}] Starting invention analysis for owner {job.owner_id}...")
        try:
            result = await self.pipeline.run(
                invention_text,
                provided_key_features=key_features,
                progress=job.advance,
                job_id=job.job_id,
            )
            await asyncio.to_thread(
                self.storage.complete_record,
                job.record_id,
                key_features=result.key_features,
                comparisons=[c.to_dict() for c in result.comparisons],
                patent_results=[p.to_dict() for p in result.patent_results],
                search_queries=[q.to_dict() for q in result.search_queries],
                processing_time_ms=job.elapsed_ms(),
            )
            job.complete(result)
            logger.success(
                f"[{job.job_id}] Completed with {len(result.comparisons)} comparisons in {job.elapsed_ms()} ms"
            )
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.exception(f"[{job.job_id}] Error at progress {job.progress}: {message}")
            job.fail(message, {"step": job.progress, "name": type(e).__name__})
            try:
                await asyncio.to_thread(self.storage.fail_record, job.record_id, message)
            except Exception as storage_error:
                logger.error(f"[{job.job_id}] Could not persist failure: {storage_error}")
        finally:
            self._schedule_eviction(job.job_id)

    def _schedule_eviction(self, job_id: str):
        loop = asyncio.get_running_loop()
        loop.call_later(self.retention_seconds, self._evict, job_id)

    def _evict(self, job_id: str):
        if self._jobs.pop(job_id, None) is not None:
            logger.debug(f"[{job_id}] Evicted from job table")

    async def drain(self):
        """等待所有后台任务结束 (关闭服务或测试时使用)"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def active_jobs(self) -> int:
        return sum(1 for job in self._jobs.values() if job.status == JobStatus.PROCESSING)

    # =========================================================================
    # Records / Retry / Health
    # =========================================================================

    async def retry_comparison(self, patent_id: str, key_features: str) -> Dict[str, str]:
        if not patent_id or not key_features:
            raise InvalidInput("Patent ID and key features are required")
        logger.info(f"[Retry] Regenerating comparison for {patent_id}")
        return await self.pipeline.engine.retry_comparison(self.client, patent_id, key_features)

    def list_recent(self, owner_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        return [r.summary_dict() for r in self.storage.list_recent(owner_id, limit)]

    def _owned_record(self, record_id: str, owner_id: str) -> SearchRecord:
        record = self.storage.get_record(record_id)
        if record is None:
            raise NotFound("Search not found")
        if record.owner_id != owner_id:
            raise Forbidden("Access denied")
        return record

    def get_search(self, record_id: str, owner_id: str) -> Dict[str, Any]:
        return self._owned_record(record_id, owner_id).to_dict()

    def delete_search(self, record_id: str, owner_id: str) -> bool:
        self._owned_record(record_id, owner_id)
        deleted = self.storage.delete_record(record_id, owner_id)
        logger.info(f"Search record deleted: {record_id}")
        return deleted

    def health(self) -> Dict[str, Any]:
        return {
            "status": "ok",
            "llmConfigured": self.llm.configured,
            "searchConfigured": self.client.configured,
            "model": settings.LLM_MODEL,
            "fastModel": settings.LLM_MODEL_FAST,
            "searchProvider": settings.SEARCH_PROVIDER,
            "activeJobs": self.active_jobs,
            "trackedJobs": len(self._jobs),
            "storage": self.storage.get_statistics(),
        }
