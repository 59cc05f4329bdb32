"""
SQLite storage for prior-art search records.
"""

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from loguru import logger

from config import settings
from priorart.models import JobStatus, SearchRecord


class SearchStorage:
    CREATE_TABLES_SQL = """
    CREATE TABLE IF NOT EXISTS prior_art_searches (
        id TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        job_id TEXT,
        invention_text TEXT NOT NULL,
        key_features TEXT,
        comparisons TEXT,
        patent_results TEXT,
        search_queries TEXT,
        status TEXT NOT NULL DEFAULT 'processing',
        error TEXT,
        processing_time_ms INTEGER,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_searches_owner_id ON prior_art_searches(owner_id);
    CREATE INDEX IF NOT EXISTS idx_searches_job_id ON prior_art_searches(job_id);
    CREATE INDEX IF NOT EXISTS idx_searches_created_at ON prior_art_searches(created_at);
    """

    def __init__(self, db_path: Union[str, Path, None] = None):
        if db_path is None:
            db_path = settings.SEARCH_DB_PATH

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self._init_database()
        logger.info(f"SearchStorage initialized: {self.db_path}")

    def _init_database(self):
        with self._get_connection() as conn:
            conn.executescript(self.CREATE_TABLES_SQL)

    @contextmanager
    def _get_connection(self):
        if not hasattr(self._local, "connection") or self._local.connection is None:
            self._local.connection = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                isolation_level=None,
            )
            self._local.connection.row_factory = sqlite3.Row

        try:
            yield self._local.connection
        except Exception:
            self._local.connection.rollback()
            raise

    @staticmethod
    def _parse_list(raw: Any) -> List[Dict[str, Any]]:
        if not raw:
            return []
        try:
            value = json.loads(raw)
        except (TypeError, ValueError):
            return []
        return value if isinstance(value, list) else []

    @staticmethod
    def _encode_list(value: Optional[List[Any]]) -> str:
        return json.dumps(value or [], ensure_ascii=False)

    def _row_to_record(self, row: sqlite3.Row) -> SearchRecord:
        return SearchRecord(
            id=row["id"],
            owner_id=row["owner_id"],
            job_id=row["job_id"],
            invention_text=row["invention_text"],
            key_features=row["key_features"],
            comparisons=self._parse_list(row["comparisons"]),
            patent_results=self._parse_list(row["patent_results"]),
            search_queries=self._parse_list(row["search_queries"]),
            status=JobStatus(row["status"]),
            error=row["error"],
            processing_time_ms=row["processing_time_ms"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def create_record(self, record: SearchRecord) -> SearchRecord:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO prior_art_searches (
                    id, owner_id, job_id, invention_text, key_features,
                    comparisons, patent_results, search_queries,
                    status, error, processing_time_ms, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.owner_id,
                    record.job_id,
                    record.invention_text,
                    record.key_features,
                    self._encode_list(record.comparisons),
                    self._encode_list(record.patent_results),
                    self._encode_list(record.search_queries),
                    record.status.value,
                    record.error,
                    record.processing_time_ms,
                    record.created_at.isoformat(),
                    record.updated_at.isoformat(),
                ),
            )
        logger.debug(f"Search record created: {record.id}")
        return record

    def get_record(self, record_id: str) -> Optional[SearchRecord]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM prior_art_searches WHERE id = ?", (record_id,)).fetchone()
        return self._row_to_record(row) if row else None

    def find_record(self, job_or_record_id: str) -> Optional[SearchRecord]:
        """按任务 ID 或记录 ID 查找"""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM prior_art_searches WHERE job_id = ? OR id = ? LIMIT 1",
                (job_or_record_id, job_or_record_id),
            ).fetchone()
        return self._row_to_record(row) if row else None

    def complete_record(
        self,
        record_id: str,
        key_features: str,
        comparisons: List[Dict[str, Any]],
        patent_results: List[Dict[str, Any]],
        search_queries: List[Dict[str, Any]],
        processing_time_ms: Optional[int] = None,
    ) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE prior_art_searches
                SET status = ?, key_features = ?, comparisons = ?, patent_results = ?,
                    search_queries = ?, processing_time_ms = ?, error = NULL, updated_at = ?
                WHERE id = ?
                """,
                (
                    JobStatus.COMPLETED.value,
                    key_features,
                    self._encode_list(comparisons),
                    self._encode_list(patent_results),
                    self._encode_list(search_queries),
                    processing_time_ms,
                    datetime.now().isoformat(),
                    record_id,
                ),
            )
            return cursor.rowcount > 0

    def fail_record(self, record_id: str, error: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "UPDATE prior_art_searches SET status = ?, error = ?, updated_at = ? WHERE id = ?",
                (JobStatus.FAILED.value, error, datetime.now().isoformat(), record_id),
            )
            return cursor.rowcount > 0

    def list_recent(self, owner_id: str, limit: int = 20) -> List[SearchRecord]:
        """某用户最近完成的检索，按创建时间倒序"""
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM prior_art_searches
                WHERE owner_id = ? AND status = ?
                ORDER BY created_at DESC
                LIMIT ?
                """,
                (owner_id, JobStatus.COMPLETED.value, limit),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def delete_record(self, record_id: str, owner_id: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM prior_art_searches WHERE id = ? AND owner_id = ?",
                (record_id, owner_id),
            )
            return cursor.rowcount > 0

    def get_statistics(self) -> Dict[str, Any]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS count FROM prior_art_searches GROUP BY status"
            ).fetchall()
            status_counts = {row["status"]: row["count"] for row in rows}

            avg_row = conn.execute(
                """
                SELECT AVG(processing_time_ms) FROM prior_art_searches
                WHERE status = 'completed' AND processing_time_ms IS NOT NULL
                """
            ).fetchone()

        avg_ms = avg_row[0] if avg_row and avg_row[0] else None
        return {
            "total": sum(status_counts.values()),
            "by_status": status_counts,
            "avg_processing_seconds": round(avg_ms / 1000, 2) if avg_ms else None,
        }


_storage_instance: Optional[SearchStorage] = None
_storage_lock = threading.Lock()


def get_search_storage(db_path: Optional[Union[str, Path]] = None) -> SearchStorage:
    global _storage_instance
    if _storage_instance is None:
        with _storage_lock:
            if _storage_instance is None:
                _storage_instance = SearchStorage(db_path)
    return _storage_instance


def reset_storage_instance():
    global _storage_instance
    with _storage_lock:
        _storage_instance = None
