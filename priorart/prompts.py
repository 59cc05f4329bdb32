# priorart/prompts.py
"""
各阶段提示词与对应解析器。

提示词与解析器共用同一套标记约定 (marker grammar)，放在一起维护：
    <h1>...</h1>                     检索式 / 精选 ID / 对比矩阵
    <h2>...</h2>                     对比摘录
    <select>N. patent/../en</select> 粗筛编号列表
    <cite>N. patent/../en</cite>     引证筛选编号列表
    <patent><id>..</id>...</patent>  排序记录

解析器忽略标记之外的任何内容 (模型的推理过程)，数量不足时原样返回，不补齐。
"""
import re
from typing import List, Optional, Sequence

from priorart.models import MatchMetrics, RankedEntry, simplify_patent_id


# =========================================================================
# Marker Grammar
# =========================================================================

PATENT_ID_FALLBACK = re.compile(r"(\d+)\.\s*(patent/[\w\d]+/\w+)")


def _tag_pattern(tag: str, multiline: bool = False) -> re.Pattern:
    flags = re.DOTALL if multiline else 0
    return re.compile(rf"<{tag}>(.*?)</{tag}>", flags)


def extract_tagged(text: str, tag: str, multiline: bool = False) -> List[str]:
    """抽取所有成对标记内的片段 (去除首尾空白)"""
    if not text:
        return []
    return [m.strip() for m in _tag_pattern(tag, multiline).findall(text)]


def extract_first_tagged(text: str, tag: str) -> str:
    """抽取第一个成对标记内的内容 (允许跨行)"""
    if not text:
        return ""
    match = _tag_pattern(tag, multiline=True).search(text)
    return match.group(1).strip() if match else ""


def _unique(items: Sequence[str]) -> List[str]:
    seen = set()
    ordered = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            ordered.append(item)
    return ordered


def _parse_numbered(text: str, tag: str, count: int) -> List[str]:
    """
    解析 <tag>N. patent/xxx/en</tag> 形式的编号列表。

    主标记数量不足 count 时，使用宽松模式补充未出现过的 ID；最终截断到 count。
    """
    if not text:
        return []
    pattern = re.compile(rf"<{tag}>\s*(\d+)\.\s*(patent/[^<]+)</{tag}>")
    ids = _unique([m.group(2).strip() for m in pattern.finditer(text)])

    if len(ids) < count:
        for match in PATENT_ID_FALLBACK.finditer(text):
            patent_id = match.group(2).strip()
            if patent_id not in ids:
                ids.append(patent_id)

    return ids[:count]


def _to_int(value: Optional[str], default: int) -> int:
    if value is None:
        return default
    match = re.search(r"-?\d+", value)
    return int(match.group(0)) if match else default


# =========================================================================
# Key Features
# =========================================================================

def key_features_prompt(invention_text: str) -> str:
    return f"""You are a patent search analyst working on patentability search projects. Understand the invention in detail and then write its key features, focusing mostly on the novel aspects and the solution of the invention. The key features have a preamble followed by sub-features, nested like 1, 1.1, 1.2, 2, 2.1 and so on. Divide the key features into truly atomic units: do not club features together. The key features must describe the invention's solution, not its prior art, application or advantage. The second key feature should refer back to the first one (e.g. "said X" when X was defined in key feature 1) or continue it while staying atomic. Use at most 200 words in total.

Two examples follow. Use them only for writing style; do not let their subject matter influence your work.

Example 1 description: "Fusion proteins between an RNA-guided RNA- or DNA-targeting molecule (such as deactivated CRISPR-Cas proteins) and a pro-domain-truncated initiator caspase. Two guide RNAs position two fusion proteins in close proximity on a target sequence, which lets the truncated caspase submodules dimerize and activate their protease activity, triggering a customizable downstream response only if the target sequence is present in the cell."

Example 1 key features: "Primary Features: 1. Method for activating a protease cascade switch upon detection of a target sequence (DNA or RNA) in living cells, wherein; 1.1 said activation is performed through an engineered system including CRISPR RNA guided fusion proteins between an RNA- or DNA-targeting molecule and a pro-domain-truncated initiator caspase; 1.2 two guide RNAs position two of the fusion proteins in close proximity on the target sequence, wherein; 1.2.1 said guide RNAs provide a signal for the truncated caspase submodules to dimerize and activate their protease activity. 1.3 The triggered downstream response can be customized by 1.3.1 activating executioner caspases triggering apoptosis, or 1.3.2 engineered initiator caspases activating zymogens, transcription factors or other signalling molecules."

Example 2 description: "An electric pump pumps water through a tube system. Instead of a flow sensor, monitor the power consumption of the pump. If a defined threshold of power consumption is exceeded, it indicates a blockage. If a defined threshold is undershot, air is aspirated."

Example 2 key features: "Primary Features: 1. A Power Monitoring Device comprises: 1a. The device monitors the power consumption of the pump (electromotor). 1b. If a defined threshold of power consumption is exceeded, it indicates a blockage or clogging. 1c. If a defined threshold of power consumption is undershot, air is aspirated. Secondary Feature: 2. The pump is an electric pump pumping water (aqueous liquid) through a tube system."

Learn the writing style from these pairs and generate the key features in the same format.

Give the top heading enclosed within a pair of h1 tags. The content below it must be enclosed within p tags (one or several, as required); any other heading or sub-heading must be enclosed within h2 tags. Do not use any other tags in the output.

The invention description you need to work on is:
{invention_text}"""


def clean_key_features(text: str) -> str:
    """去掉模型输出中的 HTML 标记并压缩空白，得到纯文本关键特征"""
    if not text:
        return ""
    text = re.sub(r"<[^>]+>", " ", text)
    return re.sub(r"\s+", " ", text).strip()


# =========================================================================
# Query Generation
# =========================================================================

PROBLEM_ORIENTED_STRATEGY = """ADDITIONAL SEARCH STRATEGY FOR THIS VARIATION:
Consider also prior-art references that tackle the same underlying technical problem or stated drawbacks, even if they employ different architectures, materials, or control strategies. Broaden synonyms accordingly to surface functionally equivalent solutions and legacy terminology.

Focus on finding prior art that solves the SAME UNDERLYING PROBLEM using DIFFERENT APPROACHES:

1. PROBLEM-ORIENTED TERMS: What technical problem, limitation, or drawback does this invention address? Include terms like: improve*, enhance*, overcome*, reduce*, eliminat*, prevent*, optimi*, efficien*

2. FUNCTIONAL EQUIVALENTS: What other technologies or methods achieve the same goal? Consider alternative:
   - Materials (metal vs polymer vs ceramic vs composite)
   - Mechanisms (mechanical vs electronic vs hydraulic vs pneumatic)
   - Sensing methods (optical vs acoustic vs magnetic vs thermal)
   - Processing approaches (analog vs digital vs hybrid)

3. LEGACY/ALTERNATIVE TERMINOLOGY: Include older industry terms, academic terminology, and synonyms from adjacent technical fields that describe the same concepts differently

4. BROADER APPLICATION AREAS: Where else might similar solutions apply? Medical, industrial, automotive, aerospace, consumer electronics often share similar technical challenges

Generate queries that would surface novelty-defeating prior art even if the implementation approach differs from the invention, as long as it addresses the same technical challenge or achieves the same functional outcome."""


def query_prompt(invention_text: str) -> str:
    """基础布尔检索式 (同义词扩展)"""
    return f"""You are an expert patent searcher specialized in generating high-quality Google Patents search queries. Your purpose is to create the 3 best queries to find the most relevant or closely similar prior art to the given invention. We want novelty-defeating prior art.

YOUR TASK:
1. First, brainstorm the invention's key words, find an exhaustive set of synonyms, then keep the relevant synonyms and drop the irrelevant ones. Write out this reasoning.
2. Then output exactly 3 queries, each enclosed within <h1> </h1> tags (single line each, no line breaks inside tags). No other tags should be used.

IMPORTANT: Write your analysis and reasoning BEFORE the queries. Only the final 3 queries go inside <h1> tags.

GOOGLE PATENTS SYNTAX RULES:
- Use OR for alternatives and AND to require all keyword groups
- The default operator is AND with left associativity
- CRITICAL: Always parenthesize OR groups. "safety OR seat belt" is searched as "(safety OR seat) AND belt"
- Correct: (safety OR seat) AND (belt OR strap)
- Use quotes ONLY for essential multi-word phrases like "machine learning" or "fuel cell"
- Wildcards: * replaces zero or more characters (detect* finds detect, detection, detector)
- NEAR may be used for proximity, sparingly, as it only affects ranking
- Do NOT use the minus (-) operator
- Do NOT use field codes like TI=, AB=, CL=
- Do NOT use CPC classification codes, use keywords only

QUERY STRATEGY:
Aim for 4-6 concept groups connected by AND per query. Make all 3 queries meaningfully different:
- Query 1: Core structural terms, the main components and their key interactions
- Query 2: Method/process focus, how things work, control mechanisms, steps
- Query 3: Problem/application focus, the problem solved, use cases, alternative terminology

EXAMPLES OF WELL-FORMED QUERIES (syntax patterns only):
(wearable OR portable OR ambulatory) AND (ECG OR electrocardiogram OR "heart monitor") AND (arrhythmia OR "atrial fibrillation")
(battery OR cell) AND (cool* OR heat*) AND (liquid OR air OR "phase change") AND (vehicle OR EV)
("wake word" OR "hot word" OR activation) AND (voice OR speech) AND (detect* OR recogni*) AND ("low power" OR "always on")

BEFORE FINALIZING, VERIFY EACH QUERY:
- All OR groups are parenthesized
- Quotes only around essential multi-word technical terms
- No field codes or CPC codes
- The query will return actual results on Google Patents

OUTPUT FORMAT:
Write your brainstorming and reasoning first (not in any tags), then exactly 3 queries:
<h1>query 1 here on single line</h1>
<h1>query 2 here on single line</h1>
<h1>query 3 here on single line</h1>

The invention text is:
{invention_text}
"""


def query_variation_prompt(invention_text: str) -> str:
    """问题导向的变体：同一模板，附加功能等价/旧称扩展策略"""
    return query_prompt(invention_text + "\n\n" + PROBLEM_ORIENTED_STRATEGY)


def narrow_query_prompt(invention_text: str) -> str:
    """窄检索式：使用 NEAR/ADJ 邻近算符锁定特征组合"""
    return f"""You are an expert patent prior art searcher. Your goal is to generate NARROW, SPECIFIC queries that find novelty-defeating prior art: documents that disclose the EXACT COMBINATION of features in the invention.

CRITICAL PRINCIPLE: Broad queries find landscape documents; NARROW queries find the killer prior art.

WORKED EXAMPLE: SELF-POWERED PIEZOELECTRIC WEARABLE SENSOR

KEY FEATURES:
1. A self-powered wearable sensor device comprising:
   1.1 a flexible PDMS substrate
   1.2 an array of zinc oxide nanowires grown vertically on the substrate
   1.3 a piezoelectric nanogenerator formed by the nanowire array
2. wherein the nanogenerator harvests biomechanical energy from joint movement
3. a power management circuit with MPPT controller and supercapacitor storage
4. a wireless transmitter powered by harvested energy

NOVELTY ANALYSIS:
- The COMBINATION of ZnO nanowires + PDMS substrate + piezoelectric harvesting
- The SPECIFIC SYSTEM: MPPT + supercapacitor + wireless transmitter powered by piezo harvesting

GENERATED QUERIES:
<h1>("zinc oxide" OR ZnO) NEAR/3 (nanowire* OR nanorod*) AND (PDMS OR silicone) NEAR/5 (substrate OR flexible) AND (piezoelectric NEAR/5 harvest* OR nanogenerator)</h1>
<h1>(biomechanical OR "joint movement" OR "body motion") NEAR/5 harvest* AND ("maximum power point" OR MPPT) AND (wearable OR "body worn") NEAR/10 piezo*</h1>
<h1>(piezoelectric NEAR/5 nanogenerator) AND (supercapacitor OR "energy storage") NEAR/10 (wireless NEAR/5 transmit*) AND ("body area network" OR wearable)</h1>

OPERATOR QUICK REFERENCE:
- NEAR/x: within x words, any order (3-5 for tight technical pairs)
- WITH: within 20 words; SAME: within 200 words
- ADJ/x: within x words, same order as typed
- AND / OR, and ALWAYS parenthesize OR groups
- Wildcards: * zero or more chars, ? zero or one char, # exactly one char

RULES FOR NARROW QUERIES:
1. Include SPECIFIC material names, chemical formulas, technical terms
2. Use NEAR/3-5 for terms that MUST appear together
3. Target feature COMBINATIONS, not individual features
4. Include the specific application/function, not just components
5. Do NOT use field codes (TI=, AB=, CL=) or CPC classification codes

YOUR TASK:
Step 1: identify which feature combinations are likely novel.
Step 2: plan one query for the core component combination, one for the functional mechanism, one for the application or system integration.
Step 3: construct the narrow queries.

Write your novelty analysis and query strategy first, then output exactly 3 queries:
<h1>query 1 - core component combination</h1>
<h1>query 2 - functional mechanism</h1>
<h1>query 3 - application/system integration</h1>

TARGET INVENTION:
{invention_text}
"""


def parse_queries(text: str) -> List[str]:
    """抽取 <h1> 检索式，推理文字一律忽略，空串剔除"""
    return [q for q in extract_tagged(text, "h1") if q]


# =========================================================================
# Selection (Coarse 30 / Fine 5)
# =========================================================================

def coarse_selection_prompt(invention_text: str, results_text: str, count: int = 30) -> str:
    return f"""You are an expert patent searcher specialized in identifying potentially relevant prior art. Perform a preliminary screening of patent search results to identify the {count} most promising candidates for detailed analysis.

Each search result carries a patent ID, title, assignee and snippet.

SCREENING METHODOLOGY:
- Technical concept overlap in title and snippet
- Snippet quality: substantive technical content over generic descriptions
- Title relevance: specific technical solutions over broad categories
- Assignee diversity: include different organizations for broad coverage
- Exclude patents that are obviously in different technical domains despite keyword matches

OUTPUT REQUIREMENTS:
Output EXACTLY {count} patent IDs in a numbered list. Each line must follow this exact pattern:
<select>[NUMBER]. patent/[PUBLICATION_NUMBER]/en</select>

Example format:
<select>1. patent/US1234567B2/en</select>
<select>2. patent/WO2023123456A1/en</select>
... (continuing to exactly {count})

The invention description is: {invention_text}

The patent search results are: {results_text}

Remember: output exactly {count} selections in the specified format, no more, no less."""


def parse_coarse_selection(text: str, count: int = 30) -> List[str]:
    return _parse_numbered(text, "select", count)


def fine_selection_prompt(invention_text: str, partial_descriptions: str, count: int = 5) -> str:
    return f"""You are a patent prior art analyst with deep expertise in technical assessment. You have been given pre-screened patents, each with a substantial partial description, and must select the {count} most relevant prior art references.

ANALYSIS METHODOLOGY:
1. Field alignment with the invention's technical domain
2. Problem-solution match
3. Technical approach similarity: methods, systems, implementation details
4. Component overlap with the invention
5. Embodiment variations that relate to different aspects

SELECTION CRITERIA:
- Highest weight: clear and comprehensive technical similarity
- Medium weight: strong relevance in core aspects but divergent implementation
- Lower weight: transferable concepts or partial overlap
- Avoid: patents whose detailed descriptions reveal fundamental differences

The invention description is: {invention_text}

The patents with their partial descriptions are provided below: {partial_descriptions}

Output EXACTLY {count} patent IDs in this format, each on its own line within h1 tags:
<h1>patent/[PUBLICATION_NUMBER]/en</h1>

Example:
<h1>patent/US1234567B2/en</h1>
<h1>patent/EP1234567B1/en</h1>
(continue for exactly {count} patents)"""


def parse_selection_ids(text: str, count: Optional[int] = None) -> List[str]:
    """<h1> 形式的精选 ID 列表，去重后按需截断"""
    ids = _unique(extract_tagged(text, "h1"))
    return ids[:count] if count is not None else ids


# =========================================================================
# Comparison Matrix
# =========================================================================

def comparison_prompt(key_features: str, patent_description: str) -> str:
    return f"""You are an expert patent analyst. Perform a one-on-one exhaustive comparison between the provided key features of a new invention and the provided prior art description. Brainstorm internally to scrutinize the key features against all the prior art embodiments, but do not output the brainstorming.

Then provide a 3-column matrix comparing the key features and the prior art. The columns are Key Feature, Prior Art and Overlap. In the Key Feature column write the exact key feature; in the Prior Art column write how similar or dissimilar the prior art is to that feature; in the Overlap column write exactly one of: Considerable, - (just the hyphen symbol, no other text), or Partial. Separate all cells with pipe symbols, including at the beginning and end of every row.

Finally, provide relevant excerpts from the prior art (a couple of lines each, the most relevant ones). Use around 300 words for the matrix and around 200 words for the excerpts.

Enclose the entire matrix within a single pair of <h1> tags and the excerpts within a single pair of <h2> tags. Output nothing else.

The key features are: {key_features}

The prior art is: {patent_description}"""


def parse_comparison(output: str, patent_id: Optional[str] = None):
    """
    解析对比矩阵输出。

    Returns:
        (matrix, excerpts)；矩阵中的 "Prior Art" 列名替换为对比文献的公开号
    """
    matrix = extract_first_tagged(output, "h1")
    if patent_id and matrix:
        simplified = simplify_patent_id(patent_id)
        matrix = re.sub(r"\|\s*Prior Art\s*\|", "| Search Result |", matrix, count=1, flags=re.I)
        matrix = re.sub(r"[Pp]rior [Aa]rt", simplified, matrix)
    excerpts = extract_first_tagged(output, "h2")
    return matrix, excerpts


def count_matrix_metrics(matrix: str) -> MatchMetrics:
    """
    按矩阵数据行统计三档评级。

    跳过表头与分隔行，仅读取每行最后一个单元格。
    """
    considerable = partial = none = 0
    for row in _matrix_rows(matrix):
        rating = row[-1].strip().lower()
        if rating.startswith("considerable"):
            considerable += 1
        elif rating.startswith("partial"):
            partial += 1
        elif rating in ("-", "–", "—", ""):
            none += 1
    return MatchMetrics(considerable=considerable, partial=partial, none=none)


def _matrix_rows(matrix: str) -> List[List[str]]:
    rows = []
    for line in (matrix or "").splitlines():
        line = line.strip()
        if "|" not in line:
            continue
        cells = [c.strip() for c in line.strip("|").split("|")]
        # 分隔行 |---|---|---|
        if all(re.fullmatch(r":?-{2,}:?", c) for c in cells if c):
            continue
        rows.append(cells)
    # 首行为表头
    return rows[1:] if rows else []


# =========================================================================
# Ranking
# =========================================================================

def ranking_prompt(matrices: Sequence[str], patent_ids: Sequence[str]) -> str:
    n = len(patent_ids)
    tables = "\n\n".join(
        f"PATENT ID: {pid}\n{table}\n------------------------------"
        for pid, table in zip(patent_ids, matrices)
    )
    return f"""You are a patent relevance analyst with expertise in evaluating invention similarities. Below are comparison tables for {n} different patents, each showing how the patent compares to the key features of a new invention.

STEP 1: TABLE ANALYSIS
- The first column contains key features of the invention
- The second column explains how the patent compares to each feature
- The third column is the overlap rating: "Considerable", "Partial" or "-" (no match)

STEP 2: CALCULATE RELEVANCE SCORES
For each patent count "Considerable", "Partial" and "-" in the Overlap column.
Total score = (Considerable_count x 2) + (Partial_count x 1)

STEP 3: RANK THE PATENTS
Assign ranks 1-{n}, rank 1 being the highest score.
- For tied scores, the patent with more "Considerable" ratings ranks higher
- If still tied, the patent with fewer "-" ratings ranks higher

STEP 4: FEATURE SUMMARY
For each patent write one sentence starting with "This reference covers..." naming the feature numbers found (Considerable first, then Partial) and how they map.

STEP 5: OUTPUT
Use this exact structure for each patent:

<patent>
<id>EXACT_PATENT_ID</id>
<rank>NUMERICAL_RANK</rank>
<found>FOUND_FEATURES_SUMMARY</found>
<considerable>COUNT_OF_CONSIDERABLE_MATCHES</considerable>
<partial>COUNT_OF_PARTIAL_MATCHES</partial>
<none>COUNT_OF_NO_MATCHES</none>
</patent>

INPUT DATA:

{tables}

IMPORTANT NOTES:
1. Return exactly {n} <patent> blocks in order of descending relevance
2. Use the exact patent IDs as provided
3. Keep each summary under 80 words
4. No additional text outside the blocks"""


def parse_ranking(output: str) -> List[RankedEntry]:
    """解析 <patent> 记录，输出顺序即模型给出的排名顺序"""
    entries = []
    if not output or not isinstance(output, str):
        return entries

    for position, block in enumerate(re.findall(r"<patent>(.*?)</patent>", output, re.DOTALL)):
        def field_value(name: str) -> Optional[str]:
            match = re.search(rf"<{name}>(.*?)</{name}>", block, re.DOTALL)
            return match.group(1).strip() if match else None

        entries.append(
            RankedEntry(
                patent_id=field_value("id") or "Unknown",
                rank=_to_int(field_value("rank"), 999),
                found_summary=field_value("found") or "No feature summary available",
                metrics=MatchMetrics(
                    considerable=_to_int(field_value("considerable"), 0),
                    partial=_to_int(field_value("partial"), 0),
                    none=_to_int(field_value("none"), 0),
                ),
                position=position,
            )
        )
    return entries


# =========================================================================
# Citation Screening / Final Selection
# =========================================================================

def citation_screening_prompt(key_features: str, citations_text: str, level: int = 1) -> str:
    count = 25 if level == 1 else 15
    kind = "direct" if level == 1 else "second-level"
    pool = "cited" if level == 1 else "second-degree"
    extra = "\n- Consider that these are second-degree citations (citations of citations)" if level == 2 else ""
    return f"""You are an expert patent examiner evaluating {kind} citation relevance. Given the key features of an invention and a list of {pool} patents, identify the {count} most technically relevant citations.

KEY FEATURES OF THE INVENTION:
{key_features}

EVALUATION CRITERIA:
- Direct technical overlap with key features
- Problem-solution correspondence
- Implementation methodology similarity
- Component and architecture alignment{extra}
- Prioritize convergence patents (cited by multiple sources)
- Avoid redundant patents covering identical concepts

CITATION PATENTS:
{citations_text}

OUTPUT REQUIREMENTS:
Output EXACTLY {count} patent IDs in order of relevance. Each line must follow this exact pattern:
<cite>[NUMBER]. patent/[PUBLICATION_NUMBER]/en</cite>

Example format:
<cite>1. patent/US1234567B2/en</cite>
<cite>2. patent/EP1234567B1/en</cite>
... (continuing to exactly {count})

Remember: output exactly {count} citations in the specified format."""


def parse_citation_screening(text: str, count: int = 25) -> List[str]:
    return _parse_numbered(text, "cite", count)


def final_selection_prompt(key_features: str, invention_text: str, descriptions: str, count: int = 10) -> str:
    return f"""You are a patent prior art analyst performing final selection. You have the original selections plus first-level and second-level citations, and must choose the best {count} prior art references.

INVENTION KEY FEATURES:
{key_features}

INVENTION DESCRIPTION:
{invention_text}

SELECTION METHODOLOGY:
1. Comprehensive feature coverage, patents covering most key features
2. Technical depth, detailed disclosure of implementation
3. Citation importance, prioritize convergence patents (cited by multiple sources)
4. Citation level diversity, a mix of original, first-level and second-level citations
5. Priority date advantage, earlier filing dates are valuable
6. Avoid family duplicates, diversify across patent families

THE CANDIDATE PATENTS:
{descriptions}

CRITICAL REQUIREMENTS:
- Select exactly {count} patents that provide the best prior art coverage
- Keep at least 3 of the original selections if they are still strong
- Include convergence patents when relevant
- Balance direct matches and foundational patents

Output EXACTLY {count} patent IDs in order of relevance, each on its own line within h1 tags:
<h1>patent/[PUBLICATION_NUMBER]/en</h1>

Example:
<h1>patent/US1234567B2/en</h1>
<h1>patent/EP1234567B1/en</h1>
(continue for exactly {count} patents)"""
