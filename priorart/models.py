"""
检索流水线数据模型定义
"""
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set


GOOGLE_PATENTS_URL = "https://patents.google.com/patent/"


def simplify_patent_id(patent_id: str) -> str:
    """'patent/US1234567B2/en' -> 'US1234567B2'"""
    if not patent_id:
        return ""
    value = patent_id.strip()
    if value.startswith("patent/"):
        value = value[len("patent/"):]
    if value.endswith("/en"):
        value = value[: -len("/en")]
    return value


class JobStatus(str, Enum):
    """任务状态枚举 (只允许 processing -> completed / failed)"""
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class PatentCandidate:
    """检索命中的候选专利 (尚未拉取详情)"""
    patent_id: str
    title: str = ""
    assignee: str = ""
    filing_date: str = ""
    snippet: str = ""
    patent_link: str = ""
    family_id: Optional[str] = None
    # 来自引证扩展的补充文献
    from_citation_pool: bool = False
    citation_level: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "patentId": self.patent_id,
            "title": self.title,
            "assignee": self.assignee,
            "filingDate": self.filing_date,
            "snippet": self.snippet,
            "patentLink": self.patent_link,
            "familyId": self.family_id,
        }
        if self.from_citation_pool:
            data["fromCitationPool"] = True
            data["citationLevel"] = self.citation_level
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PatentCandidate":
        return cls(
            patent_id=data["patentId"],
            title=data.get("title", ""),
            assignee=data.get("assignee", ""),
            filing_date=data.get("filingDate", ""),
            snippet=data.get("snippet", ""),
            patent_link=data.get("patentLink", ""),
            family_id=data.get("familyId"),
            from_citation_pool=data.get("fromCitationPool", False),
            citation_level=data.get("citationLevel"),
        )


@dataclass
class Citation:
    """
    引证图中的一个节点。

    sources 记录通过哪些种子专利到达该节点，收敛分即 sources 的数量。
    """
    patent_id: str
    title: str = ""
    family_id: Optional[str] = None
    direction: str = "forward"
    level: int = 1
    source: Optional[str] = None
    sources: Set[str] = field(default_factory=set)

    @property
    def convergence_score(self) -> int:
        return max(1, len(self.sources))

    @property
    def family_key(self) -> str:
        # 未知同族号时退化为以自身 ID 作为同族标识
        return self.family_id or f"unknown_{self.patent_id}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "patentId": self.patent_id,
            "title": self.title,
            "familyId": self.family_id,
            "source": self.source,
            "direction": self.direction,
            "level": self.level,
            "convergenceScore": self.convergence_score,
        }


@dataclass
class PatentDetail:
    """单篇专利详情 (按需拉取)"""
    patent_id: str
    title: str = "N/A"
    assignee: str = "N/A"
    assignees: List[str] = field(default_factory=list)
    inventor: str = "N/A"
    filing_date: str = "N/A"
    publication_number: str = ""
    publication_date: str = ""
    country: str = ""
    snippet: str = ""
    patent_link: str = ""
    pdf: str = ""
    abstract: str = ""
    claims: str = ""
    full_description: str = ""
    description_link: str = ""
    family_id: Optional[str] = None
    forward_citations: List[Citation] = field(default_factory=list)
    backward_citations: List[Citation] = field(default_factory=list)
    is_stub: bool = False

    @classmethod
    def stub(cls, patent_id: str) -> "PatentDetail":
        """拉取失败时的空详情占位"""
        return cls(
            patent_id=patent_id,
            title="Error Processing Patent",
            publication_number=patent_id,
            is_stub=True,
        )

    def partial_description(self, max_chars: int) -> str:
        return (self.full_description or self.abstract or "")[:max_chars]

    def summary_dict(self) -> Dict[str, Any]:
        """比对结果中展示的书目信息"""
        return {
            "title": self.title,
            "abstract": self.abstract,
            "filingDate": self.filing_date,
            "assignee": self.assignee,
            "assignees": list(self.assignees),
            "inventor": self.inventor,
            "publicationNumber": self.publication_number,
            "publicationDate": self.publication_date,
            "country": self.country,
            "pdf": self.pdf,
        }

    def to_candidate(self, citation_level: Optional[int] = None) -> PatentCandidate:
        return PatentCandidate(
            patent_id=self.patent_id,
            title=self.title if self.title != "N/A" else "",
            assignee=self.assignee if self.assignee != "N/A" else "",
            filing_date=self.filing_date if self.filing_date != "N/A" else "",
            snippet=self.abstract,
            patent_link=self.patent_link or f"{GOOGLE_PATENTS_URL}{simplify_patent_id(self.patent_id)}",
            family_id=self.family_id,
            from_citation_pool=citation_level is not None,
            citation_level=citation_level,
        )


@dataclass
class MatchMetrics:
    """对比矩阵中三档重合度的计数"""
    considerable: int = 0
    partial: int = 0
    none: int = 0

    @property
    def score(self) -> int:
        return self.considerable * 2 + self.partial

    def to_dict(self) -> Dict[str, int]:
        return {"considerable": self.considerable, "partial": self.partial, "none": self.none}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "MatchMetrics":
        data = data or {}
        return cls(
            considerable=int(data.get("considerable", 0) or 0),
            partial=int(data.get("partial", 0) or 0),
            none=int(data.get("none", 0) or 0),
        )


@dataclass
class RankedEntry:
    """排序调用解析出的一条记录，position 为其在输出中的次序"""
    patent_id: str
    rank: int = 999
    found_summary: str = ""
    metrics: MatchMetrics = field(default_factory=MatchMetrics)
    position: int = 0


@dataclass
class Comparison:
    """单篇候选专利与发明关键特征的逐项对比"""
    patent_id: str
    matrix: str = ""
    excerpts: str = ""
    rank: Optional[int] = None
    found_summary: Optional[str] = None
    metrics: MatchMetrics = field(default_factory=MatchMetrics)
    details: Dict[str, Any] = field(default_factory=dict)
    citation_level: Optional[int] = None
    from_citation_enhancement: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "patentId": self.patent_id,
            "matrix": self.matrix,
            "excerpts": self.excerpts,
            "rank": self.rank,
            "foundSummary": self.found_summary,
            "metrics": self.metrics.to_dict(),
            "details": self.details,
        }
        if self.from_citation_enhancement:
            data["fromCitationEnhancement"] = True
            data["citationLevel"] = self.citation_level
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Comparison":
        return cls(
            patent_id=data["patentId"],
            matrix=data.get("matrix", ""),
            excerpts=data.get("excerpts", ""),
            rank=data.get("rank"),
            found_summary=data.get("foundSummary"),
            metrics=MatchMetrics.from_dict(data.get("metrics")),
            details=data.get("details") or {},
            citation_level=data.get("citationLevel"),
            from_citation_enhancement=data.get("fromCitationEnhancement", False),
        )


@dataclass
class SearchQueryLog:
    """审计日志条目：检索式或筛选决策"""
    type: str
    query: str
    step: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"type": self.type, "query": self.query}
        if self.step:
            data["step"] = self.step
        return data


@dataclass
class SearchResult:
    key_features: str
    queries: List[str] = field(default_factory=list)
    patent_results: List[PatentCandidate] = field(default_factory=list)
    comparisons: List[Comparison] = field(default_factory=list)
    search_queries: List[SearchQueryLog] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "keyFeatures": self.key_features,
            "queries": list(self.queries),
            "patentResults": [p.to_dict() for p in self.patent_results],
            "comparisons": [c.to_dict() for c in self.comparisons],
            "searchQueries": [q.to_dict() for q in self.search_queries],
        }


@dataclass
class SearchRecord:
    """持久化的检索记录 (提交时创建，终态时更新一次)"""
    id: str
    owner_id: str
    invention_text: str
    job_id: Optional[str] = None
    key_features: Optional[str] = None
    comparisons: List[Dict[str, Any]] = field(default_factory=list)
    patent_results: List[Dict[str, Any]] = field(default_factory=list)
    search_queries: List[Dict[str, Any]] = field(default_factory=list)
    status: JobStatus = JobStatus.PROCESSING
    error: Optional[str] = None
    processing_time_ms: Optional[int] = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def result_dict(self) -> Dict[str, Any]:
        return {
            "keyFeatures": self.key_features,
            "queries": [q.get("query") for q in self.search_queries if q.get("type") == "Initial Search"],
            "patentResults": self.patent_results,
            "comparisons": self.comparisons,
            "searchQueries": self.search_queries,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "jobId": self.job_id,
            "inventionText": self.invention_text,
            "keyFeatures": self.key_features,
            "comparisons": self.comparisons,
            "patentResults": self.patent_results,
            "searchQueries": self.search_queries,
            "status": self.status.value,
            "error": self.error,
            "processingTime": self.processing_time_ms,
            "createdAt": self.created_at.isoformat(),
        }

    def summary_dict(self) -> Dict[str, Any]:
        """最近检索列表使用的摘要"""
        return {
            "id": self.id,
            "query": (self.invention_text or "")[:150],
            "fullQuery": self.invention_text,
            "timestamp": self.created_at.isoformat(),
            "resultsCount": len(self.comparisons),
            "keyFeatures": self.key_features,
            "status": self.status.value,
        }


@dataclass
class SearchJob:
    """进程内的任务条目，仅由执行该任务的协程修改"""
    job_id: str
    owner_id: str
    record_id: str
    status: JobStatus = JobStatus.PROCESSING
    progress: int = 0
    started_at: float = field(default_factory=time.time)
    result: Optional[SearchResult] = None
    error: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None

    def advance(self, progress: int):
        # 进度只增不减
        self.progress = max(self.progress, max(0, min(100, progress)))

    def elapsed_ms(self) -> int:
        return int((time.time() - self.started_at) * 1000)

    def complete(self, result: SearchResult):
        self.result = result
        self.advance(100)
        self.status = JobStatus.COMPLETED

    def fail(self, error_message: str, details: Optional[Dict[str, Any]] = None):
        self.status = JobStatus.FAILED
        self.error = error_message
        self.error_details = details
