import asyncio

from priorart.citations import (
    CitationExpander,
    extract_citation_pool,
    merge_second_level,
    select_seeds,
)
from priorart.comparison import ComparisonEngine
from priorart.models import Citation, Comparison, MatchMetrics, PatentDetail

from tests.conftest import FakeLLM, FakeSearchClient, fake_id, make_matrix


def comp(n, considerable, partial=0):
    return Comparison(
        patent_id=fake_id(n),
        matrix=make_matrix(n),
        metrics=MatchMetrics(considerable, partial, 0),
        details={"title": f"Title {n}", "filingDate": "2018-01-01"},
    )


def detail(n, forward=(), backward=(), family=None):
    return PatentDetail(
        patent_id=fake_id(n),
        family_id=family or f"FAM{n}",
        full_description=f"Description {n}",
        forward_citations=[Citation(patent_id=fake_id(m), family_id=f"FAM{m}") for m in forward],
        backward_citations=[
            Citation(patent_id=fake_id(m), family_id=f"FAM{m}", direction="backward") for m in backward
        ],
    )


def test_select_seeds_by_score():
    comps = [comp(1, 0, 1), comp(2, 3), comp(3, 1, 1), comp(4, 3, 1)]
    assert [c.patent_id for c in select_seeds(comps)] == [fake_id(4), fake_id(2), fake_id(3)]


def test_convergence_counts_distinct_seeds():
    comps = [comp(1, 3), comp(2, 2), comp(3, 1), comp(4, 0)]
    details = {
        fake_id(1): detail(1, forward=[100, 101], backward=[100]),
        fake_id(2): detail(2, forward=[100]),
        fake_id(3): detail(3, forward=[102]),
        # 第四篇不是种子，它的引证不计入
        fake_id(4): detail(4, forward=[101, 103]),
    }
    pool = {c.patent_id: c for c in extract_citation_pool(comps, details)}
    assert pool[fake_id(100)].convergence_score == 2
    assert pool[fake_id(101)].convergence_score == 1
    assert pool[fake_id(102)].convergence_score == 1
    assert fake_id(103) not in pool
    assert list(pool)[0] == fake_id(100)


def test_backward_citations_limited_to_ten_per_seed():
    comps = [comp(1, 3)]
    details = {fake_id(1): detail(1, backward=range(200, 230))}
    pool = extract_citation_pool(comps, details)
    assert len(pool) == 10
    assert all(c.direction == "backward" for c in pool)


def test_citations_in_comparison_families_are_excluded():
    comps = [comp(1, 3), comp(2, 1)]
    details = {
        fake_id(1): detail(1, forward=[300, 301, 2]),
        fake_id(2): detail(2, family="SHARED"),
    }
    details[fake_id(1)].forward_citations[0].family_id = "SHARED"
    pool = [c.patent_id for c in extract_citation_pool(comps, details)]
    assert pool == [fake_id(301)]


def test_unknown_family_does_not_suppress_different_ids():
    comps = [comp(1, 3)]
    d = detail(1)
    d.forward_citations = [Citation(patent_id=fake_id(400)), Citation(patent_id=fake_id(401))]
    pool = extract_citation_pool(comps, {fake_id(1): d})
    assert [c.patent_id for c in pool] == [fake_id(400), fake_id(401)]


def test_merge_second_level_dedupes_by_family():
    parents = [
        detail(500, forward=[600, 601, 602]),
        detail(501, forward=[601, 603] + list(range(700, 720))),
    ]
    parents[1].forward_citations[1].family_id = "FAM600"
    merged = merge_second_level(parents, processed_ids={fake_id(602)}, processed_families=set())
    ids = [c.patent_id for c in merged]
    assert ids[:2] == [fake_id(600), fake_id(601)]
    assert fake_id(602) not in ids
    assert fake_id(603) not in ids
    # 每个父节点最多 8 条
    assert len([c for c in merged if c.source == fake_id(501)]) == 6
    assert all(c.level == 2 for c in merged)


def ranked_comparisons(client, llm):
    details = {fake_id(n): client.get_details(fake_id(n)) for n in range(1, 6)}
    engine = ComparisonEngine(llm)
    comps = asyncio.run(engine.compare_many("key features", list(details.values())))
    comps = asyncio.run(engine.rank(comps))
    return comps, details


def test_enhance_returns_exactly_ten_ranked():
    llm, client = FakeLLM(), FakeSearchClient()
    comps, details = ranked_comparisons(client, llm)
    audit = []
    expander = CitationExpander(client, llm)
    final, additional = asyncio.run(expander.enhance(comps, "key features", "invention", details, audit, "job"))

    assert len(final) == 10
    assert sorted(c.rank for c in final) == list(range(1, 11))
    assert len({c.patent_id for c in final}) == 10
    new = [c for c in final if c.from_citation_enhancement]
    assert len(new) == 5
    assert all(c.citation_level in (1, 2) for c in new)

    final_ids = {c.patent_id for c in final}
    assert additional
    assert all(a.from_citation_pool and a.patent_id not in final_ids for a in additional)
    assert all(a.patent_link.startswith("https://patents.google.com/patent/XX") for a in additional)

    types = [entry.type for entry in audit]
    assert types.count("Citation Network Analysis") == 2
    assert types.count("Citation Screening") == 2
    assert types[-1] == "Final Selection"


def test_enhance_failure_returns_original_comparisons():
    client = FakeSearchClient()
    comps, details = ranked_comparisons(client, FakeLLM())
    snapshot = [c.to_dict() for c in comps]

    failing = FakeLLM(fail_on=["performing final selection"])
    final, additional = asyncio.run(
        CitationExpander(client, failing).enhance(comps, "key features", "invention", details, [], "job")
    )
    assert final is comps
    assert [c.to_dict() for c in final] == snapshot
    assert additional == []


def test_enhance_unparseable_final_selection_keeps_comparisons():
    class ProseFinalLLM(FakeLLM):
        def generate(self, prompt, temperature=None, fast=False):
            if "performing final selection" in prompt:
                self.calls.append((prompt, temperature, fast))
                return "I would pick patent US1234 and others."
            return super().generate(prompt, temperature, fast)

    client = FakeSearchClient()
    comps, details = ranked_comparisons(client, FakeLLM())
    snapshot = [c.to_dict() for c in comps]

    final, additional = asyncio.run(
        CitationExpander(client, ProseFinalLLM()).enhance(comps, "key features", "invention", details, [], "job")
    )
    assert len(final) == 5
    assert [c.to_dict() for c in final] == snapshot
    assert additional == []


def test_enhance_without_citations_keeps_comparisons():
    llm = FakeLLM()
    comps = [comp(1, 2), comp(2, 1)]
    details = {fake_id(1): detail(1), fake_id(2): detail(2)}
    final, additional = asyncio.run(
        CitationExpander(FakeSearchClient(), llm).enhance(comps, "kf", "inv", details, [], "job")
    )
    assert [c.patent_id for c in final] == [fake_id(1), fake_id(2)]
    assert additional == []
    assert llm.calls == []


def test_second_level_parent_failures_are_tolerated():
    failing_parents = [fake_id(m) for m in range(5000, 5005)]
    client = FakeSearchClient(failing_ids=failing_parents)
    llm = FakeLLM()
    comps, details = ranked_comparisons(client, llm)
    final, _ = asyncio.run(CitationExpander(client, llm).enhance(comps, "kf", "inv", details, [], "job"))
    assert len(final) == 10
    assert not [c for c in final if c.citation_level == 2]
