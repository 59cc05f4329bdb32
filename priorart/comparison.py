# priorart/comparison.py

import asyncio
from typing import Dict, List, Optional, Sequence, Tuple
from loguru import logger

from priorart.errors import InvalidInput
from priorart.llm import LLMService, get_llm_service
from priorart.models import Comparison, PatentDetail, RankedEntry
from priorart.prompts import (
    comparison_prompt,
    count_matrix_metrics,
    parse_comparison,
    parse_ranking,
    ranking_prompt,
)
from priorart.search_clients.base import BaseSearchClient


def relevance_key(comparison: Comparison, entry: Optional[RankedEntry] = None):
    """
    排序键：得分降序 -> Considerable 多者优先 -> "-" 少者优先 -> 模型给出的 rank -> 输出次序

    主键是由评级计数算出的得分。模型给出的 rank 与输出次序排在得分之后，
    只在得分、Considerable 数、"-" 数都相同时才决定先后。
    """
    m = comparison.metrics
    llm_rank = entry.rank if entry else 999
    position = entry.position if entry else 10 ** 6
    return (-m.score, -m.considerable, m.none, llm_rank, position)


def apply_rankings(comparisons: List[Comparison], entries: Sequence[RankedEntry]) -> List[Comparison]:
    """
    将排序结果写回对比记录，按 relevance_key 全序排序，并强制重排为 1..n。
    """
    by_id: Dict[str, RankedEntry] = {}
    for entry in entries:
        by_id.setdefault(entry.patent_id, entry)

    for comp in comparisons:
        entry = by_id.get(comp.patent_id)
        if entry:
            comp.found_summary = entry.found_summary
            comp.metrics = entry.metrics

    ordered = sorted(comparisons, key=lambda c: relevance_key(c, by_id.get(c.patent_id)))
    for index, comp in enumerate(ordered, start=1):
        comp.rank = index
    return ordered


class ComparisonEngine:
    """
    对比与排序引擎

    1. compare: 单篇文献 vs 关键特征，一次 LLM 调用产出矩阵与摘录
    2. compare_many: 多篇并发，任一调用失败即向上抛出
    3. rank: 所有矩阵一次性送入轻量模型排序
    """

    def __init__(self, llm: Optional[LLMService] = None):
        self.llm = llm or get_llm_service()

    async def compare(self, key_features: str, patent_id: str, description: str) -> Tuple[str, str]:
        prompt = comparison_prompt(key_features, description)
        output = await asyncio.to_thread(self.llm.generate, prompt)
        return parse_comparison(output, patent_id)

    async def build_comparison(
        self,
        key_features: str,
        detail: PatentDetail,
        citation_level: Optional[int] = None,
    ) -> Comparison:
        matrix, excerpts = await self.compare(key_features, detail.patent_id, detail.full_description)
        details = detail.summary_dict()
        if citation_level is not None:
            details["snippet"] = detail.abstract
            details["descriptionLink"] = detail.description_link
            details["descriptionWordCount"] = len(detail.full_description.split())
        return Comparison(
            patent_id=detail.patent_id,
            matrix=matrix,
            excerpts=excerpts,
            metrics=count_matrix_metrics(matrix),
            details=details,
            citation_level=citation_level,
            from_citation_enhancement=citation_level is not None,
        )

    async def compare_many(
        self,
        key_features: str,
        details: Sequence[PatentDetail],
        citation_levels: Optional[Dict[str, int]] = None,
    ) -> List[Comparison]:
        citation_levels = citation_levels or {}
        tasks = [
            self.build_comparison(key_features, d, citation_levels.get(d.patent_id))
            for d in details
        ]
        return list(await asyncio.gather(*tasks))

    async def rank(self, comparisons: List[Comparison]) -> List[Comparison]:
        """
        对带矩阵的对比记录发起一次排序调用；上游失败直接抛出。
        没有可排序的矩阵时不调用模型，按已有指标排序。
        """
        valid = [c for c in comparisons if c.matrix]
        if not valid:
            return apply_rankings(comparisons, [])

        logger.info(f"[Ranking] Ranking {len(valid)} comparisons...")
        prompt = ranking_prompt([c.matrix for c in valid], [c.patent_id for c in valid])
        output = await asyncio.to_thread(self.llm.generate, prompt, None, True)
        entries = parse_ranking(output)
        if len(entries) != len(valid):
            logger.warning(f"[Ranking] Expected {len(valid)} ranking blocks, got {len(entries)}")
        return apply_rankings(comparisons, entries)

    async def retry_comparison(
        self,
        client: BaseSearchClient,
        patent_id: str,
        key_features: str,
    ) -> Dict[str, str]:
        """单篇重新对比 (用户手动触发)"""
        detail = await asyncio.to_thread(client.get_details, patent_id)
        if not detail.full_description:
            raise InvalidInput("Could not retrieve patent description", {"patentId": patent_id})
        matrix, excerpts = await self.compare(key_features, patent_id, detail.full_description)
        return {"matrix": matrix, "excerpts": excerpts}
