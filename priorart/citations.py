# priorart/citations.py

import asyncio
import copy
from typing import Dict, Iterable, List, Optional, Set, Tuple
from loguru import logger

from config import settings
from priorart.comparison import ComparisonEngine
from priorart.errors import UpstreamFailure
from priorart.llm import LLMService, get_llm_service
from priorart.models import (
    Citation,
    Comparison,
    PatentCandidate,
    PatentDetail,
    SearchQueryLog,
)
from priorart.prompts import (
    citation_screening_prompt,
    final_selection_prompt,
    parse_citation_screening,
    parse_selection_ids,
)
from priorart.search_clients.base import BaseSearchClient
from priorart.utils.fanout import gather_settled, gather_with_fallback

SEED_COUNT = 3
BACKWARD_LIMIT = 10
FIRST_LEVEL_DIGEST_LIMIT = 100
FIRST_LEVEL_COUNT = 25
SECOND_LEVEL_PARENTS = 5
SECOND_LEVEL_FORWARD_LIMIT = 8
SECOND_LEVEL_DIGEST_LIMIT = 60
SECOND_LEVEL_COUNT = 15
FINAL_COUNT = 10


def select_seeds(comparisons: Iterable[Comparison], count: int = SEED_COUNT) -> List[Comparison]:
    """按 considerable*2 + partial 取最强的几篇作为种子"""
    return sorted(comparisons, key=lambda c: -c.metrics.score)[:count]


def comparison_families(comparisons: Iterable[Comparison], details_by_id: Dict[str, PatentDetail]) -> Set[str]:
    families = set()
    for comp in comparisons:
        detail = details_by_id.get(comp.patent_id)
        if detail and detail.family_id:
            families.add(detail.family_id)
    return families


def extract_citation_pool(
    comparisons: List[Comparison],
    details_by_id: Dict[str, PatentDetail],
    level: int = 1,
) -> List[Citation]:
    """
    一级引证池。

    以种子专利的全部引用 + 前 10 条被引为边，按引证 ID 聚合；
    收敛分 = 指向该引证的不同种子数。已在对比集合中 (同 ID 或同族) 的文献不进入池子。
    结果按收敛分降序 (同分保持发现顺序)。
    """
    excluded_families = comparison_families(comparisons, details_by_id)
    excluded_ids = {c.patent_id for c in comparisons}
    pool: Dict[str, Citation] = {}

    for seed in select_seeds(comparisons):
        detail = details_by_id.get(seed.patent_id)
        if not detail:
            continue
        edges = detail.forward_citations + detail.backward_citations[:BACKWARD_LIMIT]
        for ref in edges:
            if ref.patent_id in excluded_ids or ref.family_key in excluded_families:
                continue
            node = pool.get(ref.patent_id)
            if node is None:
                node = Citation(
                    patent_id=ref.patent_id,
                    title=ref.title,
                    family_id=ref.family_id,
                    direction=ref.direction,
                    level=level,
                    source=seed.patent_id,
                )
                pool[ref.patent_id] = node
            node.sources.add(seed.patent_id)

    return sorted(pool.values(), key=lambda c: -c.convergence_score)


def merge_second_level(
    parents: Iterable[PatentDetail],
    processed_ids: Set[str],
    processed_families: Set[str],
) -> List[Citation]:
    """
    二级引证池：每个父节点取前 8 条引用，按同族去重 (包括已处理过的所有文献)。
    """
    families = set(processed_families)
    pool: Dict[str, Citation] = {}
    for parent in parents:
        for ref in parent.forward_citations[:SECOND_LEVEL_FORWARD_LIMIT]:
            if ref.patent_id in pool or ref.patent_id in processed_ids:
                continue
            if ref.family_key in families:
                continue
            pool[ref.patent_id] = Citation(
                patent_id=ref.patent_id,
                title=ref.title,
                family_id=ref.family_id,
                direction="forward",
                level=2,
                source=parent.patent_id,
                sources={parent.patent_id},
            )
            families.add(ref.family_key)
    return list(pool.values())


def _describe(label: str, detail: Optional[PatentDetail], patent_id: str, title: str, filing_date: str) -> str:
    description = detail.partial_description(settings.PARTIAL_DESCRIPTION_CHARS) if detail else ""
    return (
        f"[{label}]\n"
        f"Patent ID: {patent_id}\n"
        f"Title: {title or 'N/A'}\n"
        f"Filing Date: {filing_date or 'N/A'}\n"
        f"Partial Description: {description}"
    )


class CitationExpander:
    """
    引证扩展组件

    从排名靠前的对比文献出发，沿引证图向外走一跳/两跳，
    经 LLM 两轮筛选后与原有对比文献合并，选出最终 10 篇并重新排序。
    整个组件尽力而为：内部任何异常都退回原始对比结果。
    """

    def __init__(
        self,
        client: BaseSearchClient,
        llm: Optional[LLMService] = None,
        engine: Optional[ComparisonEngine] = None,
    ):
        self.client = client
        self.llm = llm or get_llm_service()
        self.engine = engine or ComparisonEngine(self.llm)

    async def enhance(
        self,
        comparisons: List[Comparison],
        key_features: str,
        invention_text: str,
        details_by_id: Dict[str, PatentDetail],
        audit: List[SearchQueryLog],
        job_id: str = "-",
    ) -> Tuple[List[Comparison], List[PatentCandidate]]:
        """
        Returns:
            (最终对比列表, 未入选的引证文献)；失败时为 (原始对比列表, [])
        """
        logger.info(f"[{job_id}] [Citations] Starting citation enhancement...")
        try:
            return await self._enhance(
                copy.deepcopy(comparisons), key_features, invention_text, details_by_id, audit, job_id
            )
        except Exception as e:
            logger.exception(f"[{job_id}] [Citations] Citation enhancement failed, keeping original results: {e}")
            return comparisons, []

    async def _enhance(self, comparisons, key_features, invention_text, details_by_id, audit, job_id):
        first_level = extract_citation_pool(comparisons, details_by_id, level=1)
        logger.info(f"[{job_id}] [Citations] First-level citation pool: {len(first_level)}")
        if not first_level:
            logger.info(f"[{job_id}] [Citations] No citations found, returning original results")
            return comparisons, []

        audit.append(SearchQueryLog(
            type="Citation Network Analysis",
            query=f"Extracted {len(first_level)} first-level citations from top {SEED_COUNT} patents",
            step="Citation Enhancement - Level 1",
        ))

        # 1. 一级筛选 -> 25
        digest = " || ".join(
            f"Patent ID: {c.patent_id}, Title: {c.title or 'N/A'}, Convergence: {c.convergence_score}"
            for c in first_level[:FIRST_LEVEL_DIGEST_LIMIT]
        )
        output = await asyncio.to_thread(
            self.llm.generate, citation_screening_prompt(key_features, digest, level=1)
        )
        first_ids = parse_citation_screening(output, FIRST_LEVEL_COUNT)
        if len(first_ids) != FIRST_LEVEL_COUNT:
            logger.warning(f"[{job_id}] [Citations] Expected {FIRST_LEVEL_COUNT} citations, got {len(first_ids)}")
        audit.append(SearchQueryLog(
            type="Citation Screening",
            query=f"Selected top {len(first_ids)} from {len(first_level)} candidates",
            step="Citation Enhancement - Level 1 Screening",
        ))

        # 2. 一级详情与二级分支并发
        processed_ids = {c.patent_id for c in comparisons} | {c.patent_id for c in first_level}
        processed_families = comparison_families(comparisons, details_by_id)
        processed_families |= {c.family_key for c in first_level}

        first_details, second_details = await asyncio.gather(
            self._fetch_details(first_ids),
            self._second_level(first_level, key_features, processed_ids, processed_families, audit, job_id),
        )
        first_details = [d for d in first_details if not d.is_stub]
        second_details = [d for d in second_details if not d.is_stub]
        logger.info(
            f"[{job_id}] [Citations] Details fetched: {len(first_details)} first-level, "
            f"{len(second_details)} second-level"
        )

        # 3. 最终 10 篇
        convergence = {c.patent_id: c.convergence_score for c in first_level}
        corpus = self._build_corpus(comparisons, details_by_id, first_details, second_details, convergence)
        output = await asyncio.to_thread(
            self.llm.generate, final_selection_prompt(key_features, invention_text, corpus, FINAL_COUNT)
        )
        final_ids = parse_selection_ids(output, FINAL_COUNT)
        logger.info(f"[{job_id}] [Citations] Final {len(final_ids)} selected: {', '.join(final_ids)}")
        audit.append(SearchQueryLog(
            type="Final Selection",
            query=f"Selected final {len(final_ids)} patents from all candidates",
            step="Citation Enhancement - Final Selection",
        ))

        # 4. 为新入选的引证文献生成矩阵
        existing = {c.patent_id: c for c in comparisons}
        levels: Dict[str, int] = {}
        citation_details: Dict[str, PatentDetail] = {}
        for level, group in ((1, first_details), (2, second_details)):
            for d in group:
                if d.patent_id not in citation_details:
                    citation_details[d.patent_id] = d
                    levels[d.patent_id] = level

        missing = [citation_details[pid] for pid in final_ids if pid not in existing and pid in citation_details]
        logger.info(f"[{job_id}] [Citations] Generating {len(missing)} new matrices in parallel")
        fresh = {c.patent_id: c for c in await self.engine.compare_many(key_features, missing, levels)}

        final = []
        for pid in final_ids:
            comp = existing.get(pid) or fresh.get(pid)
            if comp:
                final.append(comp)
        if not final:
            # 模型没有给出可用的 ID，按失败处理以保留原始对比结果
            raise UpstreamFailure("Final selection returned no usable patent ids")

        # 5. 重新排序并强制 1..n
        logger.info(f"[{job_id}] [Citations] Re-ranking {len(final)} patents")
        final = await self.engine.rank(final)

        chosen = set(final_ids)
        additional = [
            d.to_candidate(citation_level=levels[pid])
            for pid, d in citation_details.items()
            if pid not in chosen
        ]
        logger.info(f"[{job_id}] [Citations] Citation enhancement complete: {len(final)} final patents")
        return final, additional

    async def _fetch_details(self, patent_ids: List[str]) -> List[PatentDetail]:
        return await gather_with_fallback(
            patent_ids,
            lambda pid: asyncio.to_thread(self.client.get_details, pid),
            PatentDetail.stub,
            label="citation details",
        )

    async def _second_level(self, first_level, key_features, processed_ids, processed_families, audit, job_id):
        """二级分支：父节点详情 (尽力) -> 合并 -> 筛选到 15 -> 拉详情"""
        parents = first_level[:SECOND_LEVEL_PARENTS]
        logger.info(f"[{job_id}] [Citations] Fetching second-level citations from {len(parents)} parents...")
        parent_details = await gather_settled(
            [asyncio.to_thread(self.client.get_details, c.patent_id) for c in parents],
            label="second-level parents",
        )
        second_level = merge_second_level(parent_details, processed_ids, processed_families)
        logger.info(f"[{job_id}] [Citations] Found {len(second_level)} second-level citations")
        if not second_level:
            return []

        audit.append(SearchQueryLog(
            type="Citation Network Analysis",
            query=f"Extracted {len(second_level)} second-level citations",
            step="Citation Enhancement - Level 2",
        ))
        digest = " || ".join(
            f"Patent ID: {c.patent_id}, Title: {c.title or 'N/A'}, Source: {c.source}"
            for c in second_level[:SECOND_LEVEL_DIGEST_LIMIT]
        )
        output = await asyncio.to_thread(
            self.llm.generate, citation_screening_prompt(key_features, digest, level=2)
        )
        second_ids = parse_citation_screening(output, SECOND_LEVEL_COUNT)
        audit.append(SearchQueryLog(
            type="Citation Screening",
            query=f"Selected top {len(second_ids)} second-level citations",
            step="Citation Enhancement - Level 2 Screening",
        ))
        return await self._fetch_details(second_ids)

    @staticmethod
    def _build_corpus(comparisons, details_by_id, first_details, second_details, convergence) -> str:
        blocks = []
        for comp in comparisons:
            blocks.append(_describe(
                f"ORIGINAL SELECTION - Rank {comp.rank or 'N/A'}",
                details_by_id.get(comp.patent_id),
                comp.patent_id,
                comp.details.get("title", ""),
                comp.details.get("filingDate", ""),
            ))
        for d in first_details:
            label = "FIRST-LEVEL CITATION"
            if convergence.get(d.patent_id, 1) > 1:
                label += " - CONVERGENCE PATENT"
            blocks.append(_describe(label, d, d.patent_id, d.title, d.filing_date))
        for d in second_details:
            blocks.append(_describe("SECOND-LEVEL CITATION", d, d.patent_id, d.title, d.filing_date))
        return "\n\n---\n\n".join(blocks)
