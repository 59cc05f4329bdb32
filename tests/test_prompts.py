from priorart.prompts import (
    citation_screening_prompt,
    clean_key_features,
    coarse_selection_prompt,
    comparison_prompt,
    count_matrix_metrics,
    narrow_query_prompt,
    parse_citation_screening,
    parse_coarse_selection,
    parse_comparison,
    parse_queries,
    parse_ranking,
    parse_selection_ids,
    query_prompt,
    query_variation_prompt,
    ranking_prompt,
)

from tests.conftest import fake_id, make_matrix


def numbered(tag, ids):
    return "\n".join(f"<{tag}>{i}. {pid}</{tag}>" for i, pid in enumerate(ids, start=1))


def test_parse_queries_ignores_reasoning_and_empty_markers():
    text = (
        "First I brainstorm synonyms: sensor, detector.\n"
        "<h1>(sensor OR detector) AND wearable</h1>\n"
        "Some commentary <h1>  </h1>\n"
        "<h1>(harvest* OR scaveng*) AND piezo*</h1>"
    )
    assert parse_queries(text) == [
        "(sensor OR detector) AND wearable",
        "(harvest* OR scaveng*) AND piezo*",
    ]


def test_parse_queries_handles_empty_output():
    assert parse_queries("") == []
    assert parse_queries(None) == []


def test_coarse_selection_returns_exact_count_when_well_formed():
    ids = [fake_id(n) for n in range(1, 41)]
    result = parse_coarse_selection("Reasoning\n" + numbered("select", ids), 30)
    assert result == ids[:30]


def test_coarse_selection_short_list_is_not_padded():
    ids = [fake_id(n) for n in range(1, 8)]
    assert parse_coarse_selection(numbered("select", ids), 30) == ids


def test_coarse_selection_falls_back_to_loose_pattern():
    text = (
        "<select>1. patent/XX0001/en</select>\n"
        "<select>2. patent/XX0002/en\n"  # unterminated marker
        "3. patent/XX0003/en\n"
        "1. patent/XX0001/en\n"
    )
    assert parse_coarse_selection(text, 30) == [fake_id(1), fake_id(2), fake_id(3)]


def test_coarse_selection_never_throws_on_garbage():
    assert parse_coarse_selection("no ids here at all", 30) == []


def test_parse_selection_ids_dedupes_and_truncates():
    text = "\n".join(f"<h1>{fake_id(n)}</h1>" for n in [1, 2, 2, 3, 4, 5, 6])
    assert parse_selection_ids(text, 5) == [fake_id(n) for n in [1, 2, 3, 4, 5]]
    assert len(parse_selection_ids(text)) == 6


def test_citation_screening_counts():
    ids = [fake_id(n) for n in range(100, 140)]
    assert len(parse_citation_screening(numbered("cite", ids), 25)) == 25
    assert len(parse_citation_screening(numbered("cite", ids), 15)) == 15
    assert parse_citation_screening(numbered("cite", ids[:4]), 25) == ids[:4]


def test_citation_screening_prompt_levels():
    first = citation_screening_prompt("features", "Patent ID: x", level=1)
    second = citation_screening_prompt("features", "Patent ID: x", level=2)
    assert "EXACTLY 25" in first
    assert "EXACTLY 15" in second
    assert "citations of citations" in second
    assert "citations of citations" not in first


def test_parse_comparison_relabels_prior_art_column():
    output = (
        "<h1>| Key Feature | Prior Art | Overlap |\n|---|---|---|\n"
        "| 1. Sensor | The prior art shows a sensor | Considerable |</h1>\n"
        "<h2>A sensor is mounted on the wrist.</h2>"
    )
    matrix, excerpts = parse_comparison(output, "patent/US1234567B2/en")
    assert "| Search Result |" in matrix
    assert "The US1234567B2 shows a sensor" in matrix
    assert "Prior Art" not in matrix
    assert excerpts == "A sensor is mounted on the wrist."


def test_parse_comparison_without_markers_returns_empty_strings():
    assert parse_comparison("the model refused", "patent/XX0001/en") == ("", "")


def test_count_matrix_metrics_reads_last_cell_only():
    matrix = (
        "| Key Feature | Search Result | Overlap |\n"
        "|---|---|---|\n"
        "| 1. Partial housing | Considerable similarity in housing | Partial |\n"
        "| 2. Battery | Same battery | Considerable |\n"
        "| 3. Radio | Not disclosed | - |\n"
    )
    metrics = count_matrix_metrics(matrix)
    assert (metrics.considerable, metrics.partial, metrics.none) == (1, 1, 1)


def test_count_matrix_metrics_on_generated_matrix():
    metrics = count_matrix_metrics(make_matrix(4))
    assert (metrics.considerable, metrics.partial, metrics.none) == (2, 1, 1)


def test_parse_ranking_reads_fields_and_defaults():
    output = (
        "Preface text\n"
        "<patent><id>patent/XX0001/en</id><rank>2</rank>"
        "<found>This reference covers features 1 and 2.</found>"
        "<considerable>2</considerable><partial>1</partial><none>0</none></patent>\n"
        "<patent><id>patent/XX0002/en</id><rank>n/a</rank></patent>"
    )
    first, second = parse_ranking(output)
    assert first.patent_id == "patent/XX0001/en"
    assert first.rank == 2
    assert first.metrics.score == 5
    assert first.position == 0
    assert second.rank == 999
    assert second.found_summary == "No feature summary available"
    assert second.metrics.considerable == 0
    assert second.position == 1


def test_parse_ranking_invalid_output():
    assert parse_ranking("") == []
    assert parse_ranking(None) == []


def test_clean_key_features_strips_markup():
    raw = "<h1>Key Features</h1>\n<p>1. A sensor,\n   wherein</p><h2>Secondary</h2>"
    assert clean_key_features(raw) == "Key Features 1. A sensor, wherein Secondary"


def test_query_prompts_embed_invention_and_output_contract():
    text = "A self-powered wearable sensor"
    for prompt in (query_prompt(text), query_variation_prompt(text), narrow_query_prompt(text)):
        assert text in prompt
        assert "<h1>" in prompt
    assert "ADDITIONAL SEARCH STRATEGY" in query_variation_prompt(text)
    assert "ADDITIONAL SEARCH STRATEGY" not in query_prompt(text)
    assert "NEAR/" in narrow_query_prompt(text)


def test_stage_prompts_carry_their_markers():
    assert "<select>" in coarse_selection_prompt("invention", "results", 30)
    assert "<h2>" in comparison_prompt("features", "description")
    prompt = ranking_prompt(["| a | b | c |"], [fake_id(1)])
    assert f"PATENT ID: {fake_id(1)}" in prompt
    assert "<considerable>" in prompt
