"""Light strategy: quick structure scan, then context-aware page conversion."""

import logging
import time

from pdf2md.core.robustness import check_cancelled, elapsed_ms, report
from pdf2md.core.services import AIService, RenderService
from pdf2md.models.complexity import PipelineType
from pdf2md.models.document import RenderOptions
from pdf2md.models.llm import PageContext
from pdf2md.models.results import PipelineMetadata, PipelineResult
from pdf2md.pipelines.common import (
    CONTEXT_TAIL_CHARS,
    PipelineOptions,
    RepeatingPatterns,
    detect_repeating_patterns,
    find_current_section,
    join_fragments,
    resolve_image_placeholders,
    strip_repeating,
)

log = logging.getLogger(__name__)

ANALYSIS_PAGES = 5


async def leading_text(render: RenderService, page_count: int, pages: int = ANALYSIS_PAGES) -> str:
    """Text of the first few pages, separated by blank lines."""
    parts = [await render.page_text(i) for i in range(1, min(pages, page_count) + 1)]
    return "".join(f"{text}\n\n" for text in parts)


def post_process_pages(pages: list[str], patterns: RepeatingPatterns) -> str:
    """Strip headers and footers, then re-join pages split mid-sentence."""
    cleaned = [strip_repeating(page, patterns) for page in pages]
    return join_fragments(cleaned)


async def run_light_pipeline(
    render: RenderService, ai: AIService, options: PipelineOptions | None = None
) -> PipelineResult:
    """Convert a moderately complex document with structure guidance."""
    options = options or PipelineOptions()
    start = time.perf_counter()
    page_count = render.page_count()

    # Phase 1: analysis and structure from the first pages
    report(options.on_progress, "Analyzing document structure...", 0, page_count)
    analysis_text = await leading_text(render, page_count)
    analysis = await ai.analyze_document(analysis_text)

    report(options.on_progress, "Extracting document structure...", 0, page_count)
    structure = await ai.extract_structure(analysis_text, analysis)

    # Phase 2: repeated headers and footers
    patterns = RepeatingPatterns()
    if options.detect_repeating_elements and page_count > 3:
        report(options.on_progress, "Detecting headers and footers...", 0, page_count)
        patterns = await detect_repeating_patterns(render, page_count, sample_size=5)

    # Phase 3: pages
    contents: list[str] = []
    previous_content = ""
    previous_summary = ""

    for page_num in range(1, page_count + 1):
        check_cancelled(options.cancel_token)
        report(
            options.on_progress,
            f"Converting page {page_num} of {page_count}...",
            page_num,
            page_count,
        )

        image = await render.render_page(page_num, RenderOptions(dpi=options.dpi))
        result = await ai.convert_page(
            image,
            PageContext(
                page_number=page_num,
                total_pages=page_count,
                previous_content=previous_content[-CONTEXT_TAIL_CHARS:],
                previous_summary=previous_summary,
                expected_headings=structure.headings_by_page.get(page_num, []),
                current_section=find_current_section(structure.headings, page_num),
                header_pattern=patterns.header,
                footer_pattern=patterns.footer,
                language=analysis.language,
            ),
        )
        content = await resolve_image_placeholders(render, image, result)

        previous_summary = result.summary
        previous_content = content
        contents.append(content)

    report(options.on_progress, "Finalizing document...", page_count, page_count)

    return PipelineResult(
        markdown=post_process_pages(contents, patterns),
        contents=contents,
        metadata=PipelineMetadata(
            page_count=page_count,
            language=analysis.language,
            has_toc=analysis.has_toc,
            processing_time_ms=elapsed_ms(start),
            pipeline=PipelineType.LIGHT,
        ),
        structure=structure,
        analysis=analysis,
    )
