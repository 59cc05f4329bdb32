# priorart/pool.py
"""
候选池管理：按专利 ID 去重，为筛选提示词渲染摘要文本。
"""
from typing import Dict, Iterable, List

from config import settings
from priorart.models import PatentCandidate, PatentDetail


def dedupe(results: Iterable[PatentCandidate]) -> List[PatentCandidate]:
    """
    以 patent_id 为键去重，后出现的覆盖先出现的。
    输出顺序为键首次出现的顺序。
    """
    pool: Dict[str, PatentCandidate] = {}
    for item in results:
        if item and item.patent_id:
            pool[item.patent_id] = item
    return list(pool.values())


def build_summary_text(results: List[PatentCandidate], capacity: int = None) -> str:
    """粗筛提示词中的单行摘要列表，只取前 capacity 条"""
    capacity = settings.SUMMARY_CAPACITY if capacity is None else capacity
    return " || ".join(
        f"Patent ID: {r.patent_id}, Title: {r.title}, Assignee: {r.assignee}, Snippet: {r.snippet}"
        for r in results[:capacity]
    )


def build_partial_descriptions(details: List[PatentDetail], max_chars: int = None) -> str:
    """精选提示词中的说明书节选"""
    max_chars = settings.PARTIAL_DESCRIPTION_CHARS if max_chars is None else max_chars
    blocks = []
    for d in details:
        blocks.append(
            f"Patent ID: {d.patent_id}\n"
            f"Title: {d.title or 'N/A'}\n"
            f"Assignee: {d.assignee or 'N/A'}\n"
            f"Filing Date: {d.filing_date or 'N/A'}\n"
            f"Partial Description: {d.partial_description(max_chars)}"
        )
    return "\n\n---\n\n".join(blocks)
