# priorart/pipeline.py

import asyncio
from itertools import chain
from typing import Callable, List, Optional
from loguru import logger

from config import settings
from priorart.citations import CitationExpander
from priorart.comparison import ComparisonEngine
from priorart.llm import LLMService
from priorart.models import PatentDetail, SearchQueryLog, SearchResult
from priorart.pool import build_partial_descriptions, build_summary_text, dedupe
from priorart.prompts import (
    clean_key_features,
    coarse_selection_prompt,
    fine_selection_prompt,
    key_features_prompt,
    narrow_query_prompt,
    parse_coarse_selection,
    parse_queries,
    parse_selection_ids,
    query_prompt,
    query_variation_prompt,
)
from priorart.search_clients.base import BaseSearchClient
from priorart.utils.fanout import gather_settled, gather_with_fallback

# 进度检查点
PROGRESS_KEY_FEATURES = 10
PROGRESS_QUERIES = 25
PROGRESS_SEARCH = 40
PROGRESS_COARSE_SELECTION = 50
PROGRESS_DETAILS = 55
PROGRESS_FINE_SELECTION = 60
PROGRESS_MATRICES = 75
PROGRESS_RANKING = 80
PROGRESS_CITATIONS = 90
PROGRESS_ASSEMBLY = 95

COARSE_SELECTION_COUNT = 30
COARSE_SELECTION_TEMPERATURE = 0.2
FINE_SELECTION_COUNT = 5


class SearchPipeline:
    """
    现有技术检索流水线

    严格按顺序执行：关键特征 -> 检索式 -> 检索 -> 粗筛 -> 详情 -> 精选
    -> 对比矩阵 -> 排序 -> 引证扩展 -> 汇总。阶段内部并发，阶段之间串行。
    """

    def __init__(
        self,
        llm: LLMService,
        client: BaseSearchClient,
        engine: Optional[ComparisonEngine] = None,
        expander: Optional[CitationExpander] = None,
    ):
        self.llm = llm
        self.client = client
        self.engine = engine or ComparisonEngine(llm)
        self.expander = expander or CitationExpander(client, llm, self.engine)

    async def _generate(self, prompt: str, temperature: Optional[float] = None) -> str:
        return await asyncio.to_thread(self.llm.generate, prompt, temperature)

    async def run(
        self,
        invention_text: str,
        provided_key_features: Optional[str] = None,
        progress: Optional[Callable[[int], None]] = None,
        job_id: str = "-",
    ) -> SearchResult:
        progress = progress or (lambda value: None)
        audit: List[SearchQueryLog] = []

        # --- Step 1: Key Features ---
        logger.info(f"[{job_id}] Step 1: Generating key features...")
        progress(PROGRESS_KEY_FEATURES)
        if provided_key_features and provided_key_features.strip():
            key_features = clean_key_features(provided_key_features)
            logger.info(f"[{job_id}] Using provided key features")
        else:
            key_features = clean_key_features(await self._generate(key_features_prompt(invention_text)))

        # --- Step 2: Queries ---
        logger.info(f"[{job_id}] Step 2: Generating search queries...")
        progress(PROGRESS_QUERIES)
        responses = await asyncio.gather(
            self._generate(query_prompt(invention_text)),
            self._generate(query_variation_prompt(invention_text)),
            self._generate(narrow_query_prompt(invention_text)),
        )
        queries = [q for q in chain.from_iterable(parse_queries(r) for r in responses) if q.strip()]
        audit.extend(SearchQueryLog(type="Initial Search", query=q) for q in queries)
        logger.info(f"[{job_id}] Generated {len(queries)} search queries")

        # --- Step 3: Search ---
        logger.info(f"[{job_id}] Step 3: Searching patents...")
        progress(PROGRESS_SEARCH)
        batches = await gather_settled(
            [asyncio.to_thread(self.client.search, q, settings.SEARCH_RESULTS_PER_QUERY) for q in queries],
            label="patent search",
        )
        unique_results = dedupe(chain.from_iterable(batches))
        logger.info(f"[{job_id}] Found {len(unique_results)} unique patents")

        if not unique_results:
            logger.warning(f"[{job_id}] No search results, skipping selection and comparison")
            progress(PROGRESS_ASSEMBLY)
            return SearchResult(key_features=key_features, queries=queries, search_queries=audit)

        # --- Step 4: Coarse Selection ---
        logger.info(f"[{job_id}] Step 4: Selecting top {COARSE_SELECTION_COUNT} patents...")
        progress(PROGRESS_COARSE_SELECTION)
        output = await self._generate(
            coarse_selection_prompt(invention_text, build_summary_text(unique_results), COARSE_SELECTION_COUNT),
            COARSE_SELECTION_TEMPERATURE,
        )
        top_ids = parse_coarse_selection(output, COARSE_SELECTION_COUNT)
        audit.append(SearchQueryLog(
            type="Coarse Selection",
            query=f"Selected {len(top_ids)} of {len(unique_results)} unique results",
            step="Top 30 Selection",
        ))
        logger.info(f"[{job_id}] Selected {len(top_ids)} patents for detailed analysis")

        # --- Step 5: Details ---
        logger.info(f"[{job_id}] Fetching patent details...")
        progress(PROGRESS_DETAILS)
        top_details = await gather_with_fallback(
            top_ids,
            lambda pid: asyncio.to_thread(self.client.get_details, pid),
            PatentDetail.stub,
            label="top details",
        )
        details_by_id = {d.patent_id: d for d in top_details}

        # --- Step 6: Fine Selection ---
        logger.info(f"[{job_id}] Step 5: Selecting final {FINE_SELECTION_COUNT} patents...")
        progress(PROGRESS_FINE_SELECTION)
        output = await self._generate(
            fine_selection_prompt(invention_text, build_partial_descriptions(top_details), FINE_SELECTION_COUNT)
        )
        final_ids = parse_selection_ids(output, FINE_SELECTION_COUNT)
        audit.append(SearchQueryLog(
            type="Fine Selection",
            query=f"Selected {len(final_ids)} of {len(top_details)} detailed candidates: {', '.join(final_ids)}",
            step="Final 5 Selection",
        ))
        logger.info(f"[{job_id}] Final patents: {', '.join(final_ids)}")

        # --- Step 7: Matrices ---
        logger.info(f"[{job_id}] Step 6: Generating comparison matrices...")
        progress(PROGRESS_MATRICES)
        finalists = [details_by_id.get(pid) or PatentDetail.stub(pid) for pid in final_ids]
        comparisons = await self.engine.compare_many(key_features, finalists)

        # --- Step 8: Ranking ---
        logger.info(f"[{job_id}] Step 7: Ranking patents...")
        progress(PROGRESS_RANKING)
        comparisons = await self.engine.rank(comparisons)

        # --- Step 9: Citation Enhancement ---
        logger.info(f"[{job_id}] Step 8: Citation enhancement...")
        progress(PROGRESS_CITATIONS)
        comparisons, additional = await self.expander.enhance(
            comparisons, key_features, invention_text, details_by_id, audit, job_id
        )

        # --- Final Assembly ---
        progress(PROGRESS_ASSEMBLY)
        seen = {p.patent_id for p in unique_results}
        patent_results = unique_results + [c for c in additional if c.patent_id not in seen]

        return SearchResult(
            key_features=key_features,
            queries=queries,
            patent_results=patent_results,
            comparisons=comparisons,
            search_queries=audit,
        )
