import re
import threading
from typing import List, Optional

import pytest

from priorart.errors import UpstreamFailure
from priorart.models import Citation, PatentCandidate, PatentDetail
from priorart.prompts import count_matrix_metrics
from priorart.search_clients.base import BaseSearchClient
from priorart.storage import SearchStorage

FAKE_ID = re.compile(r"patent/XX\d+/en")
LISTED_ID = re.compile(r"Patent ID: (patent/XX\d+/en)")

# 每篇专利都引用这 10 篇 (收敛分 = 种子数)
SHARED_CITATIONS = range(5000, 5010)


def fake_id(n: int) -> str:
    return f"patent/XX{n:04d}/en"


def id_number(patent_id: str) -> int:
    return int(re.search(r"XX(\d+)", patent_id).group(1))


def ids_in(text: str) -> List[str]:
    seen = []
    for pid in FAKE_ID.findall(text):
        if pid not in seen:
            seen.append(pid)
    return seen


def listed_ids(text: str) -> List[str]:
    """只取 "Patent ID: ..." 标签后的 ID (忽略 Source、正文中出现的 ID)"""
    seen = []
    for pid in LISTED_ID.findall(text):
        if pid not in seen:
            seen.append(pid)
    return seen


def make_matrix(n: int) -> str:
    ratings = ["Considerable"] * (n % 3 + 1) + ["Partial"] * (n % 2 + 1) + ["-"]
    rows = [
        f"| {i}. Feature {i} | Prior art describes element {i} | {rating} |"
        for i, rating in enumerate(ratings, start=1)
    ]
    return "\n".join(["| Key Feature | Prior Art | Overlap |", "|---|---|---|", *rows])


class FakeLLM:
    """按提示词中的特征短语路由的假 LLM，输出遵守标记约定"""

    def __init__(self, fail_on: Optional[List[str]] = None):
        self.fail_on = fail_on or []
        self.calls = []
        self.configured = True

    def generate(self, prompt: str, temperature: Optional[float] = None, fast: bool = False) -> str:
        self.calls.append((prompt, temperature, fast))
        for phrase in self.fail_on:
            if phrase in prompt:
                raise UpstreamFailure(f"Text generation error: simulated failure on '{phrase}'")

        if "patentability search projects" in prompt:
            return "<h1>Key Features</h1><p>1. A self-powered wearable sensor, wherein; 1.1 a piezoelectric harvester</p>"
        if "NARROW, SPECIFIC" in prompt:
            return "Analysis first.\n<h1>(piezo* NEAR/5 harvest*) AND wearable</h1>\n<h1>(ZnO NEAR/3 nanowire*) AND PDMS</h1>\n<h1>(MPPT OR \"maximum power point\") AND sensor</h1>"
        if "high-quality Google Patents search queries" in prompt:
            return "Brainstorming...\n<h1>(wearable OR portable) AND (sensor OR monitor)</h1>\n<h1>(self-powered OR autonomous) AND (energy harvest*)</h1>\n<h1>(biomechanical OR motion) AND (generator OR harvester)</h1>"
        if "preliminary screening" in prompt:
            return "\n".join(f"<select>{i}. {pid}</select>" for i, pid in enumerate(listed_ids(prompt)[:30], start=1))
        if "pre-screened patents" in prompt:
            return "\n".join(f"<h1>{pid}</h1>" for pid in listed_ids(prompt)[:5])
        if "3-column matrix" in prompt:
            numbers = ids_in(prompt.split("The prior art is:")[-1])
            n = id_number(numbers[0]) if numbers else 0
            return f"<h1>{make_matrix(n)}</h1>\n<h2>Relevant excerpt from the document.</h2>"
        if "patent relevance analyst" in prompt:
            return self._rank(prompt)
        if "citation relevance" in prompt:
            count = 25 if "direct citation relevance" in prompt else 15
            citations = listed_ids(prompt.split("CITATION PATENTS:")[-1])[:count]
            return "\n".join(f"<cite>{i}. {pid}</cite>" for i, pid in enumerate(citations, start=1))
        if "performing final selection" in prompt:
            return "\n".join(f"<h1>{pid}</h1>" for pid in listed_ids(prompt.split("THE CANDIDATE PATENTS:")[-1])[:10])
        return ""

    @staticmethod
    def _rank(prompt: str) -> str:
        blocks = []
        sections = prompt.split("PATENT ID: ")[1:]
        for rank, section in enumerate(sections, start=1):
            pid = section.split("\n", 1)[0].strip()
            metrics = count_matrix_metrics(section.split("------------------------------")[0])
            blocks.append(
                "<patent>\n"
                f"<id>{pid}</id>\n<rank>{rank}</rank>\n"
                f"<found>This reference covers features 1 and 2.</found>\n"
                f"<considerable>{metrics.considerable}</considerable>\n"
                f"<partial>{metrics.partial}</partial>\n"
                f"<none>{metrics.none}</none>\n"
                "</patent>"
            )
        return "\n".join(blocks)


class FakeSearchClient(BaseSearchClient):
    """确定性的检索假实现：检索结果随检索式变化，引证关系固定"""

    def __init__(self, empty: bool = False, configured: bool = True, failing_ids=(), failing_queries=()):
        self.empty = empty
        self._configured = configured
        self.failing_ids = set(failing_ids)
        self.failing_queries = set(failing_queries)
        self.search_calls = []
        self.detail_calls = []
        self._lock = threading.Lock()

    @property
    def configured(self) -> bool:
        return self._configured

    def search(self, query: str, limit: int = 20) -> List[PatentCandidate]:
        with self._lock:
            self.search_calls.append(query)
        if query in self.failing_queries:
            raise UpstreamFailure(f"Patent search error: query rejected: {query}")
        if self.empty:
            return []
        offset = sum(ord(ch) for ch in query) % 40 + 1
        return [
            PatentCandidate(
                patent_id=fake_id(n),
                title=f"Wearable energy harvester {n}",
                assignee=f"Assignee {n % 7}",
                snippet=f"A sensor powered by motion, variant {n}",
                patent_link=f"https://patents.google.com/{fake_id(n)}",
            )
            for n in range(offset, offset + limit)
        ]

    def get_details(self, patent_id: str) -> PatentDetail:
        with self._lock:
            self.detail_calls.append(patent_id)
        if patent_id in self.failing_ids:
            raise UpstreamFailure(f"Patent search error: {patent_id} unavailable")

        n = id_number(patent_id)
        forward = [
            Citation(patent_id=fake_id(6000 + n * 10 + k), title=f"Unique forward {n}-{k}", family_id=f"FAM{6000 + n * 10 + k}")
            for k in range(5)
        ] + [
            Citation(patent_id=fake_id(m), title=f"Shared citation {m}", family_id=f"FAM{m}")
            for m in SHARED_CITATIONS
        ]
        backward = [
            Citation(patent_id=fake_id(7000 + n * 20 + k), title=f"Citing {n}-{k}", family_id=f"FAM{7000 + n * 20 + k}", direction="backward")
            for k in range(15)
        ]
        return PatentDetail(
            patent_id=patent_id,
            title=f"Title of {patent_id}",
            assignee=f"Assignee {n % 7}",
            filing_date="2019-05-01",
            abstract=f"Abstract of {patent_id}",
            full_description=f"Full description of {patent_id}. " + "A piezoelectric layer harvests energy. " * 20,
            family_id=f"FAM{n}",
            forward_citations=forward,
            backward_citations=backward,
        )


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def fake_client():
    return FakeSearchClient()


@pytest.fixture
def storage(tmp_path):
    return SearchStorage(tmp_path / "searches.db")
