from priorart.models import PatentCandidate, PatentDetail
from priorart.pool import build_partial_descriptions, build_summary_text, dedupe

from tests.conftest import fake_id


def candidate(n, title=None):
    return PatentCandidate(patent_id=fake_id(n), title=title or f"Title {n}", assignee="Acme", snippet="snippet")


def test_dedupe_last_write_wins_in_first_seen_order():
    results = [candidate(1, "old"), candidate(2), candidate(1, "new"), candidate(3)]
    unique = dedupe(results)
    assert [c.patent_id for c in unique] == [fake_id(1), fake_id(2), fake_id(3)]
    assert unique[0].title == "new"


def test_dedupe_is_idempotent_and_unique():
    results = [candidate(n % 4) for n in range(20)]
    once = dedupe(results)
    assert dedupe(once) == once
    ids = [c.patent_id for c in once]
    assert len(ids) == len(set(ids))


def test_dedupe_skips_entries_without_id():
    assert dedupe([PatentCandidate(patent_id=""), candidate(1)]) == [candidate(1)]


def test_build_summary_text_caps_to_capacity():
    text = build_summary_text([candidate(n) for n in range(1, 80)], capacity=60)
    lines = text.split(" || ")
    assert len(lines) == 60
    assert lines[0] == f"Patent ID: {fake_id(1)}, Title: Title 1, Assignee: Acme, Snippet: snippet"


def test_build_partial_descriptions_truncates_body():
    detail = PatentDetail(patent_id=fake_id(9), title="Harvester", full_description="x" * 500)
    text = build_partial_descriptions([detail, PatentDetail.stub(fake_id(10))], max_chars=100)
    first, second = text.split("\n\n---\n\n")
    assert first.endswith("Partial Description: " + "x" * 100)
    assert "Error Processing Patent" in second
