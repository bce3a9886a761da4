"""Pass 2: document structure analysis."""

import json
import logging
import re

from pdf2md.core.errors import ConversionCancelled, StructureAnalysisError
from pdf2md.core.services import AIService, RenderService
from pdf2md.models.profiles import (
    CrossReferences,
    CrossReferenceStyle,
    DocumentSections,
    DocumentType,
    HeadingStyle,
    Hierarchy,
    LayoutProfile,
    PageRange,
    StructureProfile,
    TocEntry,
    TocInfo,
)

log = logging.getLogger(__name__)

SAMPLE_ALL_PAGES_LIMIT = 10
SAMPLE_FRACTIONS = (0.05, 0.20, 0.40, 0.60, 0.80, 0.95)
SAMPLE_TEXT_CHARS = 2000
SIMILARITY_THRESHOLD = 0.8
FUZZY_MIN_LENGTH = 5

JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

STRUCTURE_PROMPT = """Analyze this document's structure and organization.

DOCUMENT INFO:
- Total pages: {page_count}
- Footnote style detected: {footnote_style}
- Column layout: {column_layout}

TEXT SAMPLES (from distributed pages, headers/footers already filtered):
{samples}

RESPOND WITH JSON:
{{
  "documentType": "<academic|book|report|marketing|manual|legal|other>",
  "toc": {{
    "explicit": <true if the document has a Table of Contents page>,
    "entries": [{{"level": <1-6>, "title": "<title>", "page": <start page>, "children": [...]}}]
  }},
  "hierarchy": {{
    "maxDepth": <deepest heading level used>,
    "headingStyles": [{{"level": <1-6>, "indicators": ["<larger-font|bold|numbered|all-caps|centered>"]}}]
  }},
  "sections": {{
    "frontMatter": <{{"start": N, "end": M}} or null>,
    "body": {{"start": <first body page>, "end": <last body page>}},
    "backMatter": <{{"start": N, "end": M}} or null>
  }},
  "crossReferences": {{
    "footnoteStyle": "<inline|endnote|chapter-end>",
    "citationStyle": "<APA|MLA|Chicago|IEEE|Harvard or null>"
  }}
}}

Front matter is title page, preface, TOC and abstract; back matter is
appendices, references, index and glossary. maxDepth should reflect the
levels actually used.

RESPOND ONLY WITH VALID JSON, NO MARKDOWN FORMATTING."""


# =============================================================================
# Text Sampling
# =============================================================================


def calculate_sample_pages(page_count: int) -> list[int]:
    """All pages of short documents, otherwise six spread-out pages."""
    if page_count <= SAMPLE_ALL_PAGES_LIMIT:
        return list(range(1, page_count + 1))
    pages: list[int] = []
    for fraction in SAMPLE_FRACTIONS:
        page = max(1, min(page_count, round(fraction * page_count)))
        if page not in pages:
            pages.append(page)
    return pages


def calculate_similarity(a: str, b: str) -> float:
    """Containment ratio, or character overlap over the longer string."""
    longer, shorter = (a, b) if len(a) > len(b) else (b, a)
    if not longer:
        return 1.0
    if shorter in longer:
        return len(shorter) / len(longer)
    longer_chars = set(longer)
    matches = sum(1 for char in shorter if char in longer_chars)
    return matches / len(longer)


def matches_any_pattern(text: str, patterns: list[str]) -> bool:
    normalized = text.lower().strip()
    for pattern in patterns:
        candidate = pattern.lower().strip()
        if normalized == candidate:
            return True
        if (
            len(normalized) > FUZZY_MIN_LENGTH
            and len(candidate) > FUZZY_MIN_LENGTH
            and calculate_similarity(normalized, candidate) > SIMILARITY_THRESHOLD
        ):
            return True
    return False


def _compile_page_number(pattern: str) -> re.Pattern | None:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error:
        log.debug(f"Ignoring invalid page number pattern {pattern!r}")
        return None


def filter_header_footer(text: str, layout: LayoutProfile) -> str:
    """Drop lines that look like running headers, footers or page numbers."""
    elements = layout.repeated_elements
    page_number = _compile_page_number(elements.page_numbers) if elements.page_numbers else None

    kept: list[str] = []
    for line in text.split("\n"):
        stripped = line.strip()
        if stripped and (
            matches_any_pattern(stripped, elements.headers)
            or matches_any_pattern(stripped, elements.footers)
            or (page_number is not None and page_number.search(stripped))
        ):
            continue
        kept.append(line)
    return "\n".join(kept).strip()


async def extract_text_samples(
    render: RenderService, layout: LayoutProfile, page_count: int
) -> dict[int, str]:
    return {
        page: filter_header_footer(await render.page_text(page), layout)
        for page in calculate_sample_pages(page_count)
    }


def build_structure_prompt(
    samples: dict[int, str], layout: LayoutProfile, page_count: int
) -> str:
    samples_text = "\n\n".join(
        f"=== PAGE {page} ===\n{text[:SAMPLE_TEXT_CHARS]}" for page, text in samples.items()
    )
    return STRUCTURE_PROMPT.format(
        page_count=page_count,
        footnote_style=layout.footnote_style.value,
        column_layout=layout.column_layout.value,
        samples=samples_text,
    )


# =============================================================================
# Validation
# =============================================================================


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _clamp_int(value, low: int, high: int) -> int:
    return int(max(low, min(high, value)))


def _string_list(value) -> list[str]:
    return [v for v in value if isinstance(v, str)] if isinstance(value, list) else []


def default_heading_styles(max_depth: int) -> list[HeadingStyle]:
    return [
        HeadingStyle(level=i + 1, indicators=["larger-font", "bold"] if i == 0 else ["bold"])
        for i in range(max_depth)
    ]


def default_structure_profile(page_count: int) -> StructureProfile:
    """One undivided body, two heading levels, inline footnotes."""
    return StructureProfile(
        hierarchy=Hierarchy(max_depth=2, heading_styles=default_heading_styles(2)),
        sections=DocumentSections(body=PageRange(start=1, end=max(1, page_count))),
    )


def validate_document_type(value) -> DocumentType:
    try:
        return DocumentType(value)
    except ValueError:
        return DocumentType.OTHER


def validate_toc_entries(entries, page_count: int, default_level: int = 1) -> list[TocEntry]:
    if not isinstance(entries, list):
        return []

    result: list[TocEntry] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        level = _clamp_int(entry["level"], 1, 6) if _is_number(entry.get("level")) else default_level
        page = _clamp_int(entry["page"], 1, page_count) if _is_number(entry.get("page")) else 1
        title = entry.get("title")
        result.append(
            TocEntry(
                level=level,
                title=title if isinstance(title, str) else "Untitled",
                page=page,
                children=validate_toc_entries(entry.get("children"), page_count, min(6, level + 1)),
            )
        )
    return result


def validate_toc(toc, page_count: int) -> TocInfo:
    if not isinstance(toc, dict):
        return TocInfo()
    return TocInfo(
        explicit=bool(toc.get("explicit")),
        entries=validate_toc_entries(toc.get("entries"), page_count),
    )


def validate_hierarchy(hierarchy) -> Hierarchy:
    if not isinstance(hierarchy, dict):
        return Hierarchy(max_depth=2, heading_styles=default_heading_styles(2))

    max_depth = hierarchy.get("maxDepth")
    max_depth = _clamp_int(max_depth, 1, 6) if _is_number(max_depth) else 2

    styles = hierarchy.get("headingStyles")
    if not isinstance(styles, list) or not styles:
        return Hierarchy(max_depth=max_depth, heading_styles=default_heading_styles(max_depth))

    heading_styles = [
        HeadingStyle(
            level=_clamp_int(style["level"], 1, 6) if _is_number(style.get("level")) else 1,
            indicators=_string_list(style.get("indicators")),
        )
        for style in styles
        if isinstance(style, dict)
    ]
    heading_styles.sort(key=lambda style: style.level)
    return Hierarchy(max_depth=max_depth, heading_styles=heading_styles)


def validate_page_range(value, page_count: int) -> PageRange | None:
    if not isinstance(value, dict):
        return None
    start, end = value.get("start"), value.get("end")
    if not _is_number(start) or not _is_number(end):
        return None
    start = _clamp_int(start, 1, page_count)
    return PageRange(start=start, end=_clamp_int(end, start, page_count))


def validate_sections(sections, page_count: int) -> DocumentSections:
    """Clamp matter ranges; the body always spans at least one page."""
    page_count = max(1, page_count)
    if not isinstance(sections, dict):
        return DocumentSections(body=PageRange(start=1, end=page_count))

    front = validate_page_range(sections.get("frontMatter"), page_count)
    back = validate_page_range(sections.get("backMatter"), page_count)

    default_start = front.end + 1 if front else 1
    default_end = back.start - 1 if back else page_count
    body = sections.get("body") if isinstance(sections.get("body"), dict) else {}
    start = body.get("start")
    end = body.get("end")
    start = _clamp_int(start, 1, page_count) if _is_number(start) else default_start
    end = _clamp_int(end, 1, page_count) if _is_number(end) else default_end

    if end < start:
        start, end = 1, page_count

    if front and front.end >= start:
        log.debug(f"Dropping front matter {front.start}-{front.end} overlapping the body")
        front = None
    if back and back.start <= end:
        log.debug(f"Dropping back matter {back.start}-{back.end} overlapping the body")
        back = None

    return DocumentSections(
        front_matter=front, body=PageRange(start=start, end=end), back_matter=back
    )


def validate_cross_references(refs) -> CrossReferences:
    if not isinstance(refs, dict):
        return CrossReferences()
    try:
        footnote_style = CrossReferenceStyle(refs.get("footnoteStyle"))
    except ValueError:
        footnote_style = CrossReferenceStyle.INLINE
    citation = refs.get("citationStyle")
    return CrossReferences(
        footnote_style=footnote_style,
        citation_style=citation if isinstance(citation, str) and citation else None,
    )


def parse_structure_response(response: str, page_count: int) -> StructureProfile:
    """Validate a structure answer field by field.

    Raises:
        StructureAnalysisError: If the response holds no JSON object.
    """
    match = JSON_OBJECT.search(response)
    if not match:
        raise StructureAnalysisError("No JSON found in structure analysis response")
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise StructureAnalysisError(f"Invalid structure analysis JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise StructureAnalysisError("Structure analysis response is not an object")

    return StructureProfile(
        document_type=validate_document_type(parsed.get("documentType")),
        toc=validate_toc(parsed.get("toc"), page_count),
        hierarchy=validate_hierarchy(parsed.get("hierarchy")),
        sections=validate_sections(parsed.get("sections"), page_count),
        cross_references=validate_cross_references(parsed.get("crossReferences")),
    )


# =============================================================================
# Main Entry Point
# =============================================================================


async def analyze_structure(
    render: RenderService, ai: AIService, layout: LayoutProfile
) -> StructureProfile:
    """Classify the document and recover its TOC, hierarchy and matter ranges.

    Header and footer lines found by the layout pass are removed from the
    text samples first. Any failure yields the default profile.
    """
    page_count = render.page_count()
    try:
        samples = await extract_text_samples(render, layout, page_count)
        response = await ai.chat(build_structure_prompt(samples, layout, page_count))
        profile = parse_structure_response(response, page_count)
    except ConversionCancelled:
        raise
    except Exception as e:
        log.warning(f"Structure analysis failed, using default profile: {e}")
        return default_structure_profile(page_count)

    log.info(
        f"Structure: {profile.document_type.value}, "
        f"{len(profile.toc.entries)} TOC entries, depth {profile.hierarchy.max_depth}"
    )
    return profile
