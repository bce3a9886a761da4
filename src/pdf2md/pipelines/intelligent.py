"""Intelligent strategy: four passes over the document.

1. Layout analysis finds running headers, footers and decorative images.
2. Structure analysis recovers the document type, TOC and heading styles.
3. Content extraction converts every page guided by both profiles.
4. Organization assembles the final Markdown.
"""

import logging
import time

from pdf2md.core.robustness import check_cancelled, elapsed_ms, report
from pdf2md.core.services import AIService, RenderService
from pdf2md.models.complexity import PipelineType
from pdf2md.models.profiles import Section
from pdf2md.models.results import IntelligentPipelineResult, PipelineMetadata
from pdf2md.passes.extraction import (
    RobustExtractionOptions,
    extract_content,
    extract_content_robust,
)
from pdf2md.passes.layout import analyze_layout
from pdf2md.passes.organizer import OrganizeOptions, organize_content
from pdf2md.passes.structure import analyze_structure
from pdf2md.pipelines.common import PipelineOptions, detect_language

log = logging.getLogger(__name__)

TOTAL_PHASES = 4
LANGUAGE_SAMPLE_SECTIONS = 5
LANGUAGE_SAMPLE_CHARS = 2000

PHASES = {
    1: ("Layout Analysis", "Analyzing document layout..."),
    2: ("Structure Analysis", "Extracting document structure..."),
    3: ("Content Extraction", "Extracting content..."),
    4: ("Organization", "Organizing final output..."),
}


def detect_content_language(sections: list[Section]) -> str:
    sample = " ".join(s.content for s in sections[:LANGUAGE_SAMPLE_SECTIONS])
    return detect_language(sample[:LANGUAGE_SAMPLE_CHARS])


async def run_intelligent_pipeline(
    render: RenderService,
    ai: AIService,
    options: PipelineOptions | None = None,
    include_toc: bool = True,
    extraction_options: RobustExtractionOptions | None = None,
) -> IntelligentPipelineResult:
    """Convert a document with layout- and structure-aware extraction.

    Progress is reported as ``(status, phase, 4)``. With ``options.robust``
    set, page extraction retries, paces and skips failed pages.
    """
    options = options or PipelineOptions()
    start = time.perf_counter()
    page_count = render.page_count()

    def phase(number: int, status: str) -> None:
        report(options.on_progress, status, number, TOTAL_PHASES)

    # Pass 1
    name, status = PHASES[1]
    phase(1, status)

    def on_sample(sample_status: str, current: int, total: int) -> None:
        phase(1, f"{PHASES[1][0]}: {sample_status} ({current}/{total})")

    layout = await analyze_layout(
        render,
        ai,
        on_progress=on_sample,
        dpi=options.dpi,
        cancel_token=options.cancel_token,
    )
    phase(1, f"{name} complete")

    # Pass 2
    check_cancelled(options.cancel_token)
    name, status = PHASES[2]
    phase(2, status)
    structure = await analyze_structure(render, ai, layout)
    phase(2, f"{name} complete - detected: {structure.document_type.value}")

    # Pass 3
    check_cancelled(options.cancel_token)
    name, status = PHASES[3]
    phase(3, status)

    def on_page(_status: str, current: int, total: int) -> None:
        phase(3, f"{PHASES[3][0]}: Processing page {current}/{total}")

    if options.robust:
        extraction_options = extraction_options or RobustExtractionOptions(
            concurrency=options.concurrency
        )
        raw = await extract_content_robust(
            render,
            ai,
            layout,
            structure,
            on_progress=on_page,
            dpi=options.dpi,
            cancel_token=options.cancel_token,
            options=extraction_options,
        )
    else:
        raw = await extract_content(
            render,
            ai,
            layout,
            structure,
            on_progress=on_page,
            dpi=options.dpi,
            cancel_token=options.cancel_token,
        )
    phase(3, f"{name} complete - {len(raw.sections)} sections")

    # Pass 4
    check_cancelled(options.cancel_token)
    name, status = PHASES[4]
    phase(4, status)
    markdown = organize_content(
        raw,
        structure,
        OrganizeOptions(include_toc=include_toc, toc_max_level=3, add_section_spacing=True),
    )
    phase(4, f"{name} complete")

    log.info(f"Intelligent conversion of {page_count} pages finished")

    return IntelligentPipelineResult(
        markdown=markdown,
        metadata=PipelineMetadata(
            page_count=page_count,
            language=detect_content_language(raw.sections),
            has_toc=structure.toc.explicit,
            processing_time_ms=elapsed_ms(start),
            pipeline=PipelineType.INTELLIGENT,
            document_type=structure.document_type,
        ),
        layout=layout,
        structure=structure,
    )
