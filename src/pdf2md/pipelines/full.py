"""Full strategy: windowed processing for large, structured documents."""

import asyncio
import logging
import math
import time

from pdf2md.core.robustness import (
    check_cancelled,
    elapsed_ms,
    process_windows_robust,
    report,
)
from pdf2md.core.services import AIService, RenderService
from pdf2md.models.complexity import PipelineType
from pdf2md.models.document import RenderOptions
from pdf2md.models.llm import (
    DocumentAnalysis,
    DocumentStructure,
    HeadingInfo,
    PageContext,
    SectionInfo,
    WindowContext,
    WindowContinuity,
    WindowExpectations,
    WindowGlobalContext,
    WindowPosition,
    WindowResult,
    WindowStructure,
)
from pdf2md.models.results import FullPipelineResult, PipelineMetadata, WindowSpec
from pdf2md.pipelines.common import (
    DIRECT_TAIL_CHARS,
    WINDOW_SUMMARY_CHARS,
    PipelineOptions,
    RepeatingPatterns,
    detect_repeating_patterns,
    extract_last_paragraph,
    find_current_section,
    join_fragments,
    resolve_image_placeholders,
    strip_repeating,
)

log = logging.getLogger(__name__)

SECTION_BREAK_LOOKBACK = 10


# =============================================================================
# Analysis
# =============================================================================


async def sampled_analysis_text(render: RenderService, page_count: int) -> str:
    """First five pages, plus the middle and last page of longer documents."""
    pages = list(range(1, min(5, page_count) + 1))
    if page_count > 10:
        pages += [page_count // 2, page_count]
    return "".join([f"{await render.page_text(p)}\n\n" for p in pages])


async def analyze(
    render: RenderService, ai: AIService, page_count: int
) -> tuple[DocumentAnalysis, DocumentStructure]:
    """Analyze the whole PDF natively when the service allows, else sampled text."""
    capabilities = ai.capabilities
    if capabilities.supports_native_pdf and page_count <= capabilities.max_pdf_pages:
        data: bytes | str = await render.extract_page_range(1, page_count)
    else:
        data = await sampled_analysis_text(render, page_count)

    analysis = await ai.analyze_document(data)
    structure = await ai.extract_structure(data, analysis)
    return analysis, structure


# =============================================================================
# Windows
# =============================================================================


def _walk(sections: list[SectionInfo]):
    for section in sections:
        yield section
        yield from _walk(section.children)


def find_section_break(sections: list[SectionInfo], min_page: int, max_page: int) -> int | None:
    """Last page before the latest section start in ``[min_page, max_page]``."""
    starts = [s.start_page for s in _walk(sections) if min_page <= s.start_page <= max_page]
    return max(starts) - 1 if starts else None


def sections_in_range(sections: list[SectionInfo], start: int, end: int) -> list[SectionInfo]:
    return [s for s in _walk(sections) if s.start_page <= end and s.end_page >= start]


def headings_in_range(headings: list[HeadingInfo], start: int, end: int) -> list[HeadingInfo]:
    return [h for h in headings if start <= h.page <= end]


def compute_windows(
    page_count: int, structure: DocumentStructure, max_pages_per_window: int = 50
) -> list[WindowSpec]:
    """Split the document into windows that end just before a section starts.

    A window end moves back by at most ``SECTION_BREAK_LOOKBACK`` pages to
    the nearest section boundary, and never to or before its own start.
    """
    windows: list[WindowSpec] = []
    start = 1
    number = 1

    while start <= page_count:
        end = min(start + max_pages_per_window - 1, page_count)

        if end < page_count:
            section_break = find_section_break(
                structure.sections, end - SECTION_BREAK_LOOKBACK, end
            )
            if section_break is not None and section_break > start:
                end = section_break

        windows.append(
            WindowSpec(
                window_number=number,
                start_page=start,
                end_page=end,
                sections_in_window=sections_in_range(structure.sections, start, end),
                expected_headings=headings_in_range(structure.headings, start, end),
            )
        )
        start = end + 1
        number += 1

    return windows


def build_window_context(
    window: WindowSpec,
    total_windows: int,
    page_count: int,
    analysis: DocumentAnalysis,
    structure: DocumentStructure,
    patterns: RepeatingPatterns,
    previous_tail: str = "",
    previous_summary: str = "",
) -> WindowContext:
    continued_section = None
    if window.start_page > 1:
        for heading in structure.headings:
            if heading.page >= window.start_page:
                break
            if heading.level <= 2:
                continued_section = heading.text

    window_pages = window.end_page - window.start_page + 1
    analysed_pages = analysis.page_count or page_count or 1

    return WindowContext(
        global_context=WindowGlobalContext(
            total_pages=page_count,
            language=analysis.language,
            toc=structure.headings,
            header_pattern=patterns.header,
            footer_pattern=patterns.footer,
        ),
        position=WindowPosition(
            window_number=window.window_number,
            total_windows=total_windows,
            start_page=window.start_page,
            end_page=window.end_page,
            percent_complete=round(window.window_number / total_windows * 100),
        ),
        structure=WindowStructure(
            sections_in_window=window.sections_in_window,
            expected_headings=window.expected_headings,
            continued_section=continued_section,
            section_continues_after=any(
                s.end_page > window.end_page for s in window.sections_in_window
            ),
        ),
        continuity=WindowContinuity(
            previous_window_tail=previous_tail,
            previous_window_summary=previous_summary,
        ),
        expectations=WindowExpectations(
            estimated_images=math.ceil(analysis.estimated_images / analysed_pages * window_pages),
            estimated_tables=math.ceil(analysis.estimated_tables / analysed_pages * window_pages),
            has_code_blocks=analysis.estimated_code_blocks > 0,
            has_math_formulas=False,
        ),
    )


async def _process_window_page_by_page(
    render: RenderService,
    ai: AIService,
    window: WindowSpec,
    context: WindowContext,
    options: PipelineOptions,
) -> WindowResult:
    contents: list[str] = []
    previous_content = context.continuity.previous_window_tail
    summary = ""

    for page_num in range(window.start_page, window.end_page + 1):
        check_cancelled(options.cancel_token)
        image = await render.render_page(page_num, RenderOptions(dpi=options.dpi))
        result = await ai.convert_page(
            image,
            PageContext(
                page_number=page_num,
                total_pages=context.global_context.total_pages,
                previous_content=previous_content[-DIRECT_TAIL_CHARS:],
                previous_summary=summary,
                expected_headings=[h for h in window.expected_headings if h.page == page_num],
                current_section=find_current_section(context.global_context.toc, page_num),
                header_pattern=context.global_context.header_pattern,
                footer_pattern=context.global_context.footer_pattern,
                language=context.global_context.language,
            ),
        )
        content = await resolve_image_placeholders(render, image, result)
        contents.append(content)
        previous_content = content
        summary = result.summary

    markdown = "\n\n".join(contents)
    return WindowResult(
        markdown=markdown,
        last_paragraph=extract_last_paragraph(markdown),
        summary=await ai.summarize(markdown, WINDOW_SUMMARY_CHARS),
    )


async def process_window(
    render: RenderService,
    ai: AIService,
    window: WindowSpec,
    context: WindowContext,
    options: PipelineOptions,
) -> WindowResult:
    """Convert one window natively as a PDF, or page by page."""
    if ai.capabilities.supports_native_pdf:
        pdf_data = await render.extract_page_range(window.start_page, window.end_page)
        return await ai.convert_window(pdf_data, context)
    return await _process_window_page_by_page(render, ai, window, context, options)


def merge_window_results(results: list[WindowResult], patterns: RepeatingPatterns) -> str:
    """Strip repeated elements and re-join windows split mid-sentence."""
    contents = [strip_repeating(r.markdown, patterns) for r in results]
    return join_fragments(contents, tails=[r.last_paragraph for r in results])


# =============================================================================
# Window Scheduling
# =============================================================================


async def _run_sequential(
    render, ai, windows, page_count, analysis, structure, patterns, options
) -> list[WindowResult]:
    results: list[WindowResult] = []
    tail = ""
    summary = ""

    for i, window in enumerate(windows):
        check_cancelled(options.cancel_token)
        report(
            options.on_progress,
            f"Processing window {i + 1} of {len(windows)} "
            f"(pages {window.start_page}-{window.end_page})...",
            25 + math.floor(i / len(windows) * 65),
            100,
        )
        context = build_window_context(
            window, len(windows), page_count, analysis, structure, patterns, tail, summary
        )
        result = await process_window(render, ai, window, context, options)
        results.append(result)
        tail = result.last_paragraph
        summary = result.summary

    return results


async def _run_parallel(
    render, ai, windows, page_count, analysis, structure, patterns, options
) -> list[WindowResult]:
    """Run windows concurrently. Each window starts without continuity context."""
    total = len(windows)

    async def convert(window: WindowSpec) -> WindowResult:
        check_cancelled(options.cancel_token)
        context = build_window_context(
            window, total, page_count, analysis, structure, patterns
        )
        return await process_window(render, ai, window, context, options)

    def on_window_done(done: int, _total: int) -> None:
        report(
            options.on_progress,
            f"Processed window {done} of {total}",
            25 + math.floor(done / total * 65),
            100,
        )

    if options.robust:
        outcomes = await process_windows_robust(
            [(w.window_number, w) for w in windows],
            convert,
            concurrency=options.concurrency,
            on_progress=on_window_done,
        )
        return [o.value if o.value is not None else WindowResult() for o in outcomes]

    results: list[WindowResult] = []
    for i in range(0, total, options.concurrency):
        batch = windows[i:i + options.concurrency]
        results.extend(await asyncio.gather(*(convert(w) for w in batch)))
        on_window_done(len(results), total)
    return results


async def run_full_pipeline(
    render: RenderService, ai: AIService, options: PipelineOptions | None = None
) -> FullPipelineResult:
    """Convert a large document in section-aligned windows.

    Progress is reported on a 0-100 scale.
    """
    options = options or PipelineOptions()
    start = time.perf_counter()
    page_count = render.page_count()

    report(options.on_progress, "Analyzing document...", 0, 100)
    analysis, structure = await analyze(render, ai, page_count)
    report(options.on_progress, "Document analysis complete", 10, 100)

    report(options.on_progress, "Detecting headers and footers...", 15, 100)
    patterns = RepeatingPatterns()
    if page_count >= 5:
        patterns = await detect_repeating_patterns(render, page_count, sample_size=7)

    report(options.on_progress, "Planning processing windows...", 20, 100)
    windows = compute_windows(page_count, structure, options.max_pages_per_window)
    report(options.on_progress, f"Processing {len(windows)} windows...", 25, 100)

    args = (render, ai, windows, page_count, analysis, structure, patterns, options)
    if options.parallel and len(windows) > 1:
        window_results = await _run_parallel(*args)
    else:
        window_results = await _run_sequential(*args)

    report(options.on_progress, "Merging results...", 92, 100)
    markdown = merge_window_results(window_results, patterns)
    report(options.on_progress, "Complete!", 100, 100)

    log.info(f"Converted {page_count} pages in {len(windows)} windows")

    return FullPipelineResult(
        markdown=markdown,
        contents=[r.markdown for r in window_results],
        metadata=PipelineMetadata(
            page_count=page_count,
            language=analysis.language,
            has_toc=analysis.has_toc,
            processing_time_ms=elapsed_ms(start),
            pipeline=PipelineType.FULL,
            window_count=len(windows),
        ),
        structure=structure,
        analysis=analysis,
        windows=windows,
        window_results=window_results,
    )
