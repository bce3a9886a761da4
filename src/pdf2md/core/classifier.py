"""Document complexity classification and pipeline recommendation."""

import asyncio
import logging
import math
import re
from dataclasses import dataclass

from pdf2md.core.services import RenderService
from pdf2md.models.complexity import (
    ComplexityAssessment,
    ComplexityFactors,
    ComplexityLevel,
    PipelineType,
    TextDensity,
)
from pdf2md.models.document import OutlineItem

log = logging.getLogger(__name__)


@dataclass
class ClassifierOptions:
    """Sampling and threshold configuration."""

    sample_size: int = 3
    moderate_threshold: int = 20
    complex_threshold: int = 60


@dataclass
class PageSample:
    page_num: int
    text: str
    image_count: int

    @property
    def char_count(self) -> int:
        return len(self.text)


# Seconds per page by pipeline
BASE_SECONDS_PER_PAGE = {
    PipelineType.DIRECT: 3,
    PipelineType.LIGHT: 5,
    PipelineType.FULL: 8,
    PipelineType.INTELLIGENT: 10,
}

CODE_PATTERNS = [
    re.compile(r"```[\s\S]*?```"),
    re.compile(r"function\s+\w+\s*\("),
    re.compile(r"def\s+\w+\s*\("),
    re.compile(r"class\s+\w+\s*[:{]"),
    re.compile(r"import\s+.*from"),
    re.compile(r"</?[a-z][a-z0-9]*[^>]*>", re.IGNORECASE),
]

MATH_PATTERNS = [
    re.compile(r"\$.*\$"),
    re.compile(r"\\\[.*\\\]"),
    re.compile(r"\\frac\{"),
    re.compile(r"\\sum|\\int|\\prod"),
    re.compile(r"[∑∫∏∂∇]"),
    re.compile(r"[α-ωΑ-Ω]"),
]

NUMBERED_HEADING = re.compile(r"^(\d+\.)+")
HASH_HEADING = re.compile(r"^(#+)\s")


# =============================================================================
# Sampling
# =============================================================================


def sample_page_numbers(total_pages: int, sample_size: int) -> list[int]:
    """Pick evenly distributed pages: first, middle, last, then stepped extras."""
    if total_pages <= sample_size:
        return list(range(1, total_pages + 1))

    pages = [1]
    if sample_size >= 2 and total_pages > 1:
        pages.append(total_pages)
    if sample_size >= 3 and total_pages > 2:
        pages.insert(1, total_pages // 2)

    if sample_size > 3:
        step = max(1, total_pages // (sample_size - 1))
        for page in range(step, total_pages, step):
            if page not in pages and len(pages) < sample_size:
                pages.append(page)

    return sorted(set(pages))[:sample_size]


async def _sample_page(render: RenderService, page_num: int) -> PageSample:
    text = await render.page_text(page_num)
    try:
        image_count = len(await render.page_images(page_num))
    except Exception as e:
        log.debug(f"Could not list images on page {page_num}: {e}")
        image_count = 0
    return PageSample(page_num=page_num, text=text, image_count=image_count)


# =============================================================================
# Factor Estimation
# =============================================================================


def count_table_runs(text: str) -> int:
    """Count runs of 3+ consecutive table-like lines."""
    tables = 0
    run = 0
    for line in text.split("\n"):
        has_pipes = line.count("|") >= 2
        has_tabs = line.count("\t") >= 2 and len(re.findall(r"\d+", line)) >= 3
        if has_pipes or has_tabs:
            run += 1
            continue
        if run >= 3:
            tables += 1
        run = 0
    if run >= 3:
        tables += 1
    return tables


def classify_text_density(avg_chars_per_page: float) -> TextDensity:
    if avg_chars_per_page < 500:
        return TextDensity.SPARSE
    if avg_chars_per_page > 2500:
        return TextDensity.DENSE
    return TextDensity.NORMAL


def outline_depth(items: list[OutlineItem], depth: int = 1) -> int:
    max_depth = depth
    for item in items:
        if item.children:
            max_depth = max(max_depth, outline_depth(item.children, depth + 1))
    return max_depth


def estimate_structure_depth(samples: list[PageSample]) -> int:
    """Deepest numbered (``1.2.3``) or ``#`` heading seen in the samples."""
    max_depth = 1
    for sample in samples:
        for line in sample.text.split("\n"):
            numbered = NUMBERED_HEADING.match(line)
            if numbered:
                max_depth = max(max_depth, len(re.findall(r"\d+", numbered.group(0))))
            hashed = HASH_HEADING.match(line)
            if hashed:
                max_depth = max(max_depth, len(hashed.group(1)))
    return min(max_depth, 6)


def has_code(text: str) -> bool:
    return any(p.search(text) for p in CODE_PATTERNS)


def has_math(text: str) -> bool:
    return any(p.search(text) for p in MATH_PATTERNS)


def calculate_factors(
    page_count: int,
    outline: list[OutlineItem] | None,
    samples: list[PageSample],
) -> ComplexityFactors:
    """Extrapolate document-wide factors from page samples."""
    sample_count = max(1, len(samples))
    avg_chars = sum(s.char_count for s in samples) / sample_count
    images_per_page = sum(s.image_count for s in samples) / sample_count
    tables_per_page = sum(count_table_runs(s.text) for s in samples) / sample_count

    return ComplexityFactors(
        page_count=page_count,
        has_toc=bool(outline),
        estimated_images=round(images_per_page * page_count),
        estimated_tables=round(tables_per_page * page_count),
        has_vector_graphics=False,
        text_density=classify_text_density(avg_chars),
        structure_depth=outline_depth(outline) if outline else estimate_structure_depth(samples),
        avg_chars_per_page=round(avg_chars),
        has_code=any(has_code(s.text) for s in samples),
        has_math=any(has_math(s.text) for s in samples),
    )


# =============================================================================
# Scoring
# =============================================================================


def calculate_score(factors: ComplexityFactors) -> int:
    score = 0

    # Page count (0-40)
    if factors.page_count > 100:
        score += 40
    elif factors.page_count > 50:
        score += 30
    elif factors.page_count > 20:
        score += 20
    elif factors.page_count > 5:
        score += 10
    else:
        score += 5

    # Structure (0-20)
    if factors.has_toc:
        score += 10
    if factors.structure_depth > 4:
        score += 10
    elif factors.structure_depth > 2:
        score += 5

    # Content (0-30)
    if factors.estimated_images > 50:
        score += 12
    elif factors.estimated_images > 20:
        score += 8
    elif factors.estimated_images > 5:
        score += 4

    if factors.estimated_tables > 10:
        score += 10
    elif factors.estimated_tables > 3:
        score += 6
    elif factors.estimated_tables > 0:
        score += 3

    if factors.has_code:
        score += 4
    if factors.has_math:
        score += 4

    # Text density (0-10)
    if factors.text_density == TextDensity.DENSE:
        score += 10
    elif factors.text_density == TextDensity.NORMAL:
        score += 5

    return max(0, min(100, score))


def select_pipeline(
    score: int, factors: ComplexityFactors, options: ClassifierOptions
) -> tuple[ComplexityLevel, PipelineType, list[str]]:
    """Pick level and pipeline.

    Small TOC-less documents and TOC documents below the moderate threshold
    are decided before the score thresholds are consulted.
    """
    reasoning: list[str] = []

    if factors.page_count <= 3 and factors.estimated_images <= 5 and not factors.has_toc:
        reasoning.append(f"Small document ({factors.page_count} pages)")
        reasoning.append("No complex structure detected")
        return ComplexityLevel.SIMPLE, PipelineType.DIRECT, reasoning

    if factors.has_toc and score < options.moderate_threshold:
        reasoning.append("Document has embedded TOC - using light pipeline for better structure")
        return ComplexityLevel.MODERATE, PipelineType.LIGHT, reasoning

    if score >= options.complex_threshold:
        reasoning.append(f"High complexity score ({score}/100)")
        if factors.page_count > 50:
            reasoning.append(
                f"Large document ({factors.page_count} pages) requires windowed processing"
            )
        if factors.estimated_images > 20:
            reasoning.append(f"Many images ({factors.estimated_images}) require careful extraction")
        if factors.structure_depth > 3:
            reasoning.append(f"Deep heading hierarchy ({factors.structure_depth} levels)")
        return ComplexityLevel.COMPLEX, PipelineType.FULL, reasoning

    if score >= options.moderate_threshold:
        reasoning.append(f"Moderate complexity score ({score}/100)")
        if factors.page_count > 10:
            reasoning.append(f"Medium-sized document ({factors.page_count} pages)")
        if factors.estimated_images > 5:
            reasoning.append(f"Contains images ({factors.estimated_images})")
        return ComplexityLevel.MODERATE, PipelineType.LIGHT, reasoning

    reasoning.append(f"Low complexity score ({score}/100)")
    reasoning.append("Simple direct conversion recommended")
    return ComplexityLevel.SIMPLE, PipelineType.DIRECT, reasoning


def estimate_seconds(factors: ComplexityFactors, pipeline: PipelineType) -> int:
    seconds = factors.page_count * BASE_SECONDS_PER_PAGE[pipeline]
    seconds += factors.estimated_images * 0.5
    seconds += factors.estimated_tables * 2
    if pipeline != PipelineType.DIRECT:
        seconds += 10  # initial structure scan
    if pipeline == PipelineType.FULL:
        seconds += math.ceil(factors.page_count / 50) * 5
    return round(seconds)


# =============================================================================
# Entry Point
# =============================================================================


async def classify(
    render: RenderService, options: ClassifierOptions | None = None
) -> ComplexityAssessment:
    """Sample a document and recommend a processing pipeline.

    Args:
        render: Open document
        options: Sample size and score thresholds

    Returns:
        Immutable complexity assessment
    """
    options = options or ClassifierOptions()
    page_count = render.page_count()
    outline = await render.outline()

    pages = sample_page_numbers(page_count, options.sample_size)
    samples = list(await asyncio.gather(*(_sample_page(render, p) for p in pages)))

    factors = calculate_factors(page_count, outline, samples)
    score = calculate_score(factors)
    level, pipeline, reasoning = select_pipeline(score, factors, options)

    log.info(f"Classified {page_count}-page document as {level.value} (score {score})")

    return ComplexityAssessment(
        level=level,
        score=score,
        factors=factors,
        recommended_pipeline=pipeline,
        estimated_seconds=estimate_seconds(factors, pipeline),
        reasoning=reasoning,
    )
