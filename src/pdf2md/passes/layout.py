"""Pass 1: page layout analysis from a handful of sample pages.

Each sample page is sent to the AI service together with its text. The
per-page answers are then compared across pages to find the zones, running
headers and footers, page-number format and decorative images that the
whole document shares.
"""

import json
import logging
import math
import re
import statistics
from collections import Counter

from pydantic import BaseModel, Field

from pdf2md.core.errors import ConversionCancelled, LayoutAnalysisError
from pdf2md.core.robustness import (
    CancelToken,
    ProgressCallback,
    RetryConfig,
    check_cancelled,
    report,
    with_retry,
)
from pdf2md.core.services import AIService, RenderService
from pdf2md.models.document import RenderOptions
from pdf2md.models.llm import PageContext
from pdf2md.models.profiles import (
    DEFAULT_PAGE_NUMBER_PATTERN,
    ColumnLayout,
    DecorativeImagePosition,
    DecorativeImages,
    FootnoteStyle,
    LayoutProfile,
    MarginZones,
    PageZones,
    RepeatedElements,
    Zone,
    ZoneBoundary,
)

log = logging.getLogger(__name__)

DEFAULT_SAMPLE_POSITIONS = (10, 30, 50, 70, 90)
LAYOUT_SECTION_MARKER = "LAYOUT_ANALYSIS"
PROMPT_TEXT_CHARS = 3000
PATTERN_THRESHOLD = 0.4

LAYOUT_RETRY_CONFIG = RetryConfig(max_attempts=3)

FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

# Page-number regexes, from most to least specific observed format
PAGE_NUMBER_ANY = r"^\s*(?:Page\s+)?\d+(?:\s+of\s+\d+)?\s*$"
PAGE_NUMBER_DASHED = r"^\s*-\s*\d+\s*-\s*$"
PAGE_NUMBER_PAGE_OF = r"^\s*Page\s+\d+\s+of\s+\d+\s*$"
PAGE_NUMBER_PAGE = r"^\s*Page\s+\d+\s*$"


class DecorativeImageNote(BaseModel):
    zone: Zone = Zone.MARGIN
    description: str = ""


class PageLayoutAnalysis(BaseModel):
    """Layout answer for a single sample page."""

    page_number: int
    header_zone: ZoneBoundary = Field(default_factory=lambda: ZoneBoundary(top=0, bottom=10))
    footer_zone: ZoneBoundary = Field(default_factory=lambda: ZoneBoundary(top=90, bottom=100))
    margin_zones: MarginZones = Field(default_factory=MarginZones)
    header_text: str | None = None
    footer_text: str | None = None
    page_number_pattern: str | None = None
    decorative_images: list[DecorativeImageNote] = Field(default_factory=list)
    footnote_style: FootnoteStyle = FootnoteStyle.NONE
    column_layout: ColumnLayout = ColumnLayout.SINGLE


LAYOUT_PROMPT = """Analyze the layout structure of this PDF page (page {page_number} of {total_pages}).

Page text content:
---
{page_text}
---

Using the page image and text, identify:

1. Header zone: top and bottom boundary as a percentage of page height.
2. Footer zone: top and bottom boundary as a percentage of page height.
3. Margin zones: left and right boundary as a percentage of page width.
4. Header text: the exact running header text, or null.
5. Footer text: the exact running footer text, or null.
6. Page number pattern: e.g. "Page N", "N of M", "- N -", "N", or null.
7. Decorative images: logos, borders, watermarks, with zone and description.
8. Footnote style: "numbered", "symbolic" or "none".
9. Column layout: "single", "double" or "mixed".

Respond in JSON format only:
{{
  "headerZone": {{ "top": 0, "bottom": <number 0-100> }},
  "footerZone": {{ "top": <number 0-100>, "bottom": 100 }},
  "marginZones": {{ "left": <number 0-100>, "right": <number 0-100> }},
  "headerText": "<string or null>",
  "footerText": "<string or null>",
  "pageNumberPattern": "<string or null>",
  "decorativeImages": [{{ "zone": "<header|footer|margin>", "description": "<string>" }}],
  "footnoteStyle": "<numbered|symbolic|none>",
  "columnLayout": "<single|double|mixed>"
}}"""


# =============================================================================
# Sampling and Prompt
# =============================================================================


def calculate_sample_pages(page_count: int, positions=DEFAULT_SAMPLE_POSITIONS) -> list[int]:
    """Map percentage positions to sorted, unique 1-based page numbers."""
    if page_count <= 1:
        return [1]
    pages = {
        max(1, min(page_count, math.floor(p / 100 * (page_count - 1)) + 1))
        for p in positions
    }
    return sorted(pages)


def build_layout_prompt(page_text: str, page_number: int, total_pages: int) -> str:
    return LAYOUT_PROMPT.format(
        page_number=page_number,
        total_pages=total_pages,
        page_text=page_text[:PROMPT_TEXT_CHARS],
    )


# =============================================================================
# Response Parsing
# =============================================================================


def _clamp(value, low: float, high: float, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        value = default
    return max(low, min(high, value))


def _enum_or(enum_cls, value, default):
    try:
        return enum_cls(value)
    except ValueError:
        return default


def _mapping(value) -> dict:
    return value if isinstance(value, dict) else {}


def _optional_text(value) -> str | None:
    return None if value is None else str(value)


def parse_layout_response(response: str, page_number: int) -> PageLayoutAnalysis:
    """Parse and clamp a layout answer.

    Raises:
        LayoutAnalysisError: If the response holds no JSON object.
    """
    fenced = FENCED_BLOCK.search(response)
    text = fenced.group(1).strip() if fenced else response.strip()
    match = JSON_OBJECT.search(text)
    try:
        parsed = json.loads(match.group(0) if match else text)
    except json.JSONDecodeError as e:
        raise LayoutAnalysisError(
            f"Failed to parse layout response for page {page_number}: {e}",
            page_number=page_number,
        ) from e
    if not isinstance(parsed, dict):
        raise LayoutAnalysisError(
            f"Layout response for page {page_number} is not an object",
            page_number=page_number,
        )

    header = _mapping(parsed.get("headerZone"))
    footer = _mapping(parsed.get("footerZone"))
    margins = _mapping(parsed.get("marginZones"))
    images = parsed.get("decorativeImages")

    return PageLayoutAnalysis(
        page_number=page_number,
        header_zone=ZoneBoundary(
            top=_clamp(header.get("top"), 0, 100, 0),
            bottom=_clamp(header.get("bottom"), 0, 100, 10),
        ),
        footer_zone=ZoneBoundary(
            top=_clamp(footer.get("top"), 0, 100, 90),
            bottom=_clamp(footer.get("bottom"), 0, 100, 100),
        ),
        margin_zones=MarginZones(
            left=_clamp(margins.get("left"), 0, 50, 5),
            right=_clamp(margins.get("right"), 50, 100, 95),
        ),
        header_text=_optional_text(parsed.get("headerText")),
        footer_text=_optional_text(parsed.get("footerText")),
        page_number_pattern=_optional_text(parsed.get("pageNumberPattern")),
        decorative_images=[
            DecorativeImageNote(
                zone=_enum_or(Zone, img.get("zone"), Zone.MARGIN),
                description=str(img.get("description") or ""),
            )
            for img in (images if isinstance(images, list) else [])
            if isinstance(img, dict)
        ],
        footnote_style=_enum_or(FootnoteStyle, parsed.get("footnoteStyle"), FootnoteStyle.NONE),
        column_layout=_enum_or(ColumnLayout, parsed.get("columnLayout"), ColumnLayout.SINGLE),
    )


def is_default_analysis(analysis: PageLayoutAnalysis) -> bool:
    """True when the analysis carries nothing beyond the defaults."""
    return (
        analysis.header_text is None
        and analysis.footer_text is None
        and analysis.page_number_pattern is None
        and not analysis.decorative_images
        and analysis.header_zone.bottom == 10
        and analysis.footer_zone.top == 90
    )


def _parse_or_default(response: str, page_number: int) -> PageLayoutAnalysis:
    try:
        return parse_layout_response(response, page_number)
    except LayoutAnalysisError as e:
        log.debug(str(e))
        return PageLayoutAnalysis(page_number=page_number)


async def analyze_page_layout(
    render: RenderService,
    ai: AIService,
    page_number: int,
    total_pages: int,
    dpi: int = 150,
) -> PageLayoutAnalysis:
    """Analyze one page, falling back to ``chat`` and then to defaults."""
    try:
        image = await render.render_page(page_number, RenderOptions(dpi=dpi))
        page_text = await render.page_text(page_number)
        prompt = build_layout_prompt(page_text, page_number, total_pages)

        convert = with_retry(ai.convert_page, LAYOUT_RETRY_CONFIG)
        result = await convert(
            image,
            PageContext(
                page_number=page_number,
                total_pages=total_pages,
                previous_summary=prompt,
                current_section=LAYOUT_SECTION_MARKER,
            ),
        )
        analysis = _parse_or_default(result.content, page_number)
        if not is_default_analysis(analysis):
            return analysis

        chat = with_retry(ai.chat, LAYOUT_RETRY_CONFIG)
        return _parse_or_default(await chat(prompt), page_number)
    except ConversionCancelled:
        raise
    except Exception as e:
        log.warning(f"Layout analysis failed for page {page_number}, using defaults: {e}")
        return PageLayoutAnalysis(page_number=page_number)


# =============================================================================
# Aggregation
# =============================================================================


def normalize_text(text: str) -> str:
    """Lowercase, digits to ``N``, whitespace collapsed."""
    text = re.sub(r"\d+", "N", text.lower())
    return re.sub(r"\s+", " ", text).strip()


def _threshold(sample_count: int) -> int:
    return max(1, math.floor(sample_count * PATTERN_THRESHOLD))


def find_similar_patterns(texts: list[str]) -> list[str]:
    """Texts whose normalised form appears on at least 40% of the samples.

    The first original spelling of each normalised form is returned.
    """
    if not texts:
        return []

    originals: dict[str, str] = {}
    counts: Counter[str] = Counter()
    for text in texts:
        key = normalize_text(text)
        originals.setdefault(key, text)
        counts[key] += 1

    threshold = _threshold(len(texts))
    return [originals[key] for key, count in counts.items() if count >= threshold]


def build_page_number_regex(patterns: list[str]) -> str:
    """Pick a page-number regex matching the observed formats."""
    if not patterns:
        return PAGE_NUMBER_ANY

    if any(re.search(r"-\s*\d+\s*-", p) for p in patterns):
        return PAGE_NUMBER_DASHED

    has_page_word = any(re.search("page", p, re.IGNORECASE) for p in patterns)
    has_of_total = any(re.search("of", p, re.IGNORECASE) for p in patterns)
    if has_page_word and has_of_total:
        return PAGE_NUMBER_PAGE_OF
    if has_page_word:
        return PAGE_NUMBER_PAGE

    return DEFAULT_PAGE_NUMBER_PATTERN


def _aggregate_zones(analyses: list[PageLayoutAnalysis]) -> PageZones:
    def med(values) -> float:
        return statistics.median(list(values))

    return PageZones(
        header_zone=ZoneBoundary(
            top=med(a.header_zone.top for a in analyses),
            bottom=med(a.header_zone.bottom for a in analyses),
        ),
        footer_zone=ZoneBoundary(
            top=med(a.footer_zone.top for a in analyses),
            bottom=med(a.footer_zone.bottom for a in analyses),
        ),
        margin_zones=MarginZones(
            left=med(a.margin_zones.left for a in analyses),
            right=med(a.margin_zones.right for a in analyses),
        ),
    )


def _aggregate_decorative_images(analyses: list[PageLayoutAnalysis]) -> DecorativeImages:
    positions: list[DecorativeImagePosition] = []
    counts: Counter[str] = Counter()

    for analysis in analyses:
        for image in analysis.decorative_images:
            positions.append(DecorativeImagePosition(page=analysis.page_number, zone=image.zone))
            counts[f"{image.description} {image.zone.value}"] += 1

    threshold = _threshold(len(analyses))
    return DecorativeImages(
        positions=positions,
        patterns=[pattern for pattern, count in counts.items() if count >= threshold],
    )


def aggregate_layout_analyses(analyses: list[PageLayoutAnalysis]) -> LayoutProfile:
    """Combine per-page answers into one document profile."""
    if not analyses:
        return default_layout_profile()

    columns = {a.column_layout for a in analyses}

    return LayoutProfile(
        page_zones=_aggregate_zones(analyses),
        repeated_elements=RepeatedElements(
            headers=find_similar_patterns([a.header_text for a in analyses if a.header_text is not None]),
            footers=find_similar_patterns([a.footer_text for a in analyses if a.footer_text is not None]),
            page_numbers=build_page_number_regex(
                [a.page_number_pattern for a in analyses if a.page_number_pattern is not None]
            ),
        ),
        decorative_images=_aggregate_decorative_images(analyses),
        # Counter keeps first-seen order, so ties go to the earliest page
        footnote_style=Counter(a.footnote_style for a in analyses).most_common(1)[0][0],
        column_layout=columns.pop() if len(columns) == 1 else ColumnLayout.MIXED,
    )


def default_layout_profile() -> LayoutProfile:
    return LayoutProfile()


# =============================================================================
# Main Entry Point
# =============================================================================


async def analyze_layout(
    render: RenderService,
    ai: AIService,
    on_progress: ProgressCallback | None = None,
    dpi: int = 150,
    sample_positions=DEFAULT_SAMPLE_POSITIONS,
    cancel_token: CancelToken | None = None,
) -> LayoutProfile:
    """Build the document layout profile from distributed sample pages.

    Args:
        render: Open render service for the document.
        ai: AI service answering the per-page layout questions.
        on_progress: Optional ``(status, current, total)`` callback.
        dpi: Render resolution of the sample pages.
        sample_positions: Sample points as percentages of the page range.
        cancel_token: Checked before every sample page.

    Returns:
        The aggregated LayoutProfile. Pages whose analysis fails contribute
        default values; this pass never raises on AI failures.
    """
    page_count = render.page_count()
    pages = calculate_sample_pages(page_count, sample_positions)
    report(on_progress, "Analyzing document layout...", 0, len(pages))

    analyses: list[PageLayoutAnalysis] = []
    for i, page_number in enumerate(pages):
        check_cancelled(cancel_token)
        report(on_progress, f"Analyzing layout of page {page_number}...", i, len(pages))
        analyses.append(await analyze_page_layout(render, ai, page_number, page_count, dpi))

    report(on_progress, "Aggregating layout patterns...", len(pages), len(pages))
    profile = aggregate_layout_analyses(analyses)
    log.info(
        f"Layout: {len(profile.repeated_elements.headers)} header(s), "
        f"{len(profile.repeated_elements.footers)} footer(s), "
        f"{profile.column_layout.value} column layout"
    )
    return profile
