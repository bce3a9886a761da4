"""Direct strategy: page-by-page conversion with minimal context."""

import logging
import time

from pdf2md.core.robustness import check_cancelled, elapsed_ms, report
from pdf2md.core.services import AIService, RenderService
from pdf2md.models.complexity import PipelineType
from pdf2md.models.document import RenderOptions
from pdf2md.models.llm import PageContext
from pdf2md.models.results import PipelineMetadata, PipelineResult
from pdf2md.pipelines.common import (
    DIRECT_TAIL_CHARS,
    PipelineOptions,
    detect_language,
    resolve_image_placeholders,
)

log = logging.getLogger(__name__)


async def run_direct_pipeline(
    render: RenderService, ai: AIService, options: PipelineOptions | None = None
) -> PipelineResult:
    """Convert a small, unstructured document one page at a time."""
    options = options or PipelineOptions()
    start = time.perf_counter()
    page_count = render.page_count()

    report(options.on_progress, "Starting direct conversion...", 0, page_count)

    contents: list[str] = []
    previous_content = ""
    language = "Unknown"

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
                previous_content=previous_content[-DIRECT_TAIL_CHARS:],
                language=language,
            ),
        )
        content = await resolve_image_placeholders(render, image, result)

        if page_num == 1 and result.content:
            language = detect_language(result.content)

        contents.append(content)
        previous_content = content
        log.debug(f"Page {page_num}/{page_count}: {len(content)} chars")

    return PipelineResult(
        markdown="\n\n".join(contents),
        contents=contents,
        metadata=PipelineMetadata(
            page_count=page_count,
            language=language,
            processing_time_ms=elapsed_ms(start),
            pipeline=PipelineType.DIRECT,
        ),
    )
