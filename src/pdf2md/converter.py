"""Conversion facade: classify a document, run the matching strategy, map the result."""

import logging
import math
from dataclasses import dataclass
from typing import Callable

from pdf2md.core.classifier import ClassifierOptions, classify
from pdf2md.core.errors import ConversionCancelled, PipelineError
from pdf2md.core.robustness import (
    CancelToken,
    ProgressCallback,
    RateLimitConfig,
    RateLimiter,
    RetryConfig,
    classify_error,
    process_pages_batch,
    process_windows_robust,
    report,
    with_robustness,
    with_timeout,
)
from pdf2md.core.services import AIService, RenderService
from pdf2md.models.complexity import (
    ComplexityAssessment,
    ComplexityFactors,
    ComplexityLevel,
    PipelineType,
)
from pdf2md.models.llm import (
    DocumentAnalysis,
    DocumentStructure,
    HeadingInfo,
    PageContext,
    PageConversionResult,
    WindowContext,
    WindowResult,
)
from pdf2md.models.profiles import TocEntry
from pdf2md.models.results import (
    ConversionMetadata,
    ConversionResult,
    ErrorRecord,
    IntelligentPipelineResult,
    PipelineResult,
    RobustConversionResult,
)
from pdf2md.passes.extraction import RobustExtractionOptions
from pdf2md.pipelines.common import PipelineOptions
from pdf2md.pipelines.direct import run_direct_pipeline
from pdf2md.pipelines.full import run_full_pipeline
from pdf2md.pipelines.intelligent import run_intelligent_pipeline
from pdf2md.pipelines.light import run_light_pipeline

__all__ = [
    "ConversionOptions",
    "RobustConversionOptions",
    "RobustAIService",
    "convert_document",
    "convert_document_robust",
    "flatten_toc_to_headings",
    "process_pages_batch",
    "process_windows_robust",
]

log = logging.getLogger(__name__)

CALL_TIMEOUT_SECONDS = 120.0


@dataclass
class ConversionOptions:
    """Options for ``convert_document``."""

    on_progress: ProgressCallback | None = None
    dpi: int = 150
    force_pipeline: PipelineType | None = None
    parallel: bool = False
    concurrency: int = 3
    max_pages_per_window: int = 50
    include_toc: bool = True
    cancel_token: CancelToken | None = None
    classifier_options: ClassifierOptions | None = None


@dataclass
class RobustConversionOptions(ConversionOptions):
    """Adds retry, pacing and failure handling to ``ConversionOptions``."""

    retry_config: RetryConfig | None = None
    rate_limit_config: RateLimitConfig | None = None
    call_timeout: float | None = CALL_TIMEOUT_SECONDS
    conversion_timeout: float | None = None
    continue_on_error: bool = True
    on_error: Callable[[PipelineError, str], None] | None = None


# =============================================================================
# Result Mapping
# =============================================================================


def flatten_toc_to_headings(entries: list[TocEntry]) -> list[HeadingInfo]:
    """Depth-first list of TOC entries as headings."""
    headings: list[HeadingInfo] = []
    for entry in entries:
        headings.append(HeadingInfo(level=entry.level, text=entry.title, page=entry.page))
        headings.extend(flatten_toc_to_headings(entry.children))
    return headings


def _map_pipeline_result(
    result: PipelineResult, complexity: ComplexityAssessment
) -> ConversionResult:
    return ConversionResult(
        markdown=result.markdown,
        contents=result.contents,
        metadata=ConversionMetadata(
            page_count=result.metadata.page_count,
            language=result.metadata.language,
            has_toc=result.metadata.has_toc,
            processing_time_ms=result.metadata.processing_time_ms,
            pipeline=result.metadata.pipeline,
            complexity=complexity.level,
        ),
        structure=result.structure,
        analysis=result.analysis,
        complexity=complexity,
    )


def _map_intelligent_result(
    result: IntelligentPipelineResult, complexity: ComplexityAssessment
) -> ConversionResult:
    return ConversionResult(
        markdown=result.markdown,
        contents=[result.markdown],
        metadata=ConversionMetadata(
            page_count=result.metadata.page_count,
            language=result.metadata.language,
            has_toc=result.structure.toc.explicit,
            processing_time_ms=result.metadata.processing_time_ms,
            pipeline=PipelineType.INTELLIGENT,
            complexity=complexity.level,
        ),
        structure=DocumentStructure(
            headings=flatten_toc_to_headings(result.structure.toc.entries),
            max_depth=result.structure.hierarchy.max_depth,
        ),
        complexity=complexity,
    )


# =============================================================================
# Conversion
# =============================================================================


def _scaled_progress(on_progress: ProgressCallback | None) -> ProgressCallback:
    """Map a strategy's ``(current, total)`` onto 5-95 of a 0-100 scale."""

    def scaled(status: str, current: int, total: int) -> None:
        percent = 5 + math.floor(current / total * 90) if total else 5
        report(on_progress, status, percent, 100)

    return scaled


async def _convert(
    render: RenderService, ai: AIService, options: ConversionOptions, robust: bool
) -> ConversionResult:
    report(options.on_progress, "Analyzing document complexity...", 0, 100)
    complexity = await classify(render, options.classifier_options)

    pipeline = options.force_pipeline or complexity.recommended_pipeline
    report(
        options.on_progress,
        f"Using {pipeline.value} pipeline "
        f"(complexity: {complexity.level.value}, score: {complexity.score})",
        5,
        100,
    )
    log.info(f"Converting {render.page_count()} pages with the {pipeline.value} pipeline")

    pipeline_options = PipelineOptions(
        on_progress=_scaled_progress(options.on_progress),
        dpi=options.dpi,
        cancel_token=options.cancel_token,
        max_pages_per_window=options.max_pages_per_window,
        parallel=options.parallel,
        concurrency=options.concurrency,
        robust=robust,
    )

    if pipeline == PipelineType.DIRECT:
        result = _map_pipeline_result(
            await run_direct_pipeline(render, ai, pipeline_options), complexity
        )
    elif pipeline == PipelineType.LIGHT:
        result = _map_pipeline_result(
            await run_light_pipeline(render, ai, pipeline_options), complexity
        )
    elif pipeline == PipelineType.FULL:
        # Full reports on its own 0-100 scale
        pipeline_options.on_progress = options.on_progress
        result = _map_pipeline_result(
            await run_full_pipeline(render, ai, pipeline_options), complexity
        )
    elif pipeline == PipelineType.INTELLIGENT:
        extraction_options = None
        if robust:
            # AI calls are already retried and time-limited by RobustAIService
            extraction_options = RobustExtractionOptions(
                concurrency=options.concurrency,
                timeout=None,
                retry_config=RetryConfig(max_attempts=1),
            )
        result = _map_intelligent_result(
            await run_intelligent_pipeline(
                render,
                ai,
                pipeline_options,
                include_toc=options.include_toc,
                extraction_options=extraction_options,
            ),
            complexity,
        )
    else:
        raise ValueError(f"Unknown pipeline type: {pipeline}")

    report(options.on_progress, "Conversion complete!", 100, 100)
    return result


async def convert_document(
    render: RenderService, ai: AIService, options: ConversionOptions | None = None
) -> ConversionResult:
    """Convert a document to Markdown with the strategy its complexity calls for.

    Args:
        render: Open document to convert
        ai: AI service doing the page understanding
        options: Progress callback, DPI, forced pipeline and parallelism

    Returns:
        Uniform conversion result for every strategy
    """
    return await _convert(render, ai, options or ConversionOptions(), robust=False)


# =============================================================================
# Robust Conversion
# =============================================================================


class RobustAIService(AIService):
    """AI service wrapper adding retries, timeouts and a shared rate limit.

    Every failed call is recorded in ``errors``. With ``continue_on_error``
    the call then returns an empty result instead of raising.
    """

    def __init__(
        self,
        inner: AIService,
        retry_config: RetryConfig | None = None,
        rate_limiter: RateLimiter | None = None,
        timeout: float | None = CALL_TIMEOUT_SECONDS,
        continue_on_error: bool = True,
        on_error: Callable[[PipelineError, str], None] | None = None,
    ):
        self.inner = inner
        self.name = inner.name
        self.capabilities = inner.capabilities
        self.retry_config = retry_config
        self.rate_limiter = rate_limiter or RateLimiter()
        self.timeout = timeout
        self.continue_on_error = continue_on_error
        self.on_error = on_error
        self.errors: list[ErrorRecord] = []

    async def _call(self, context: str, fallback, fn, *args):
        robust = with_robustness(fn, self.retry_config, self.timeout, self.rate_limiter)
        try:
            return await robust(*args)
        except ConversionCancelled:
            raise
        except Exception as e:
            error = classify_error(e)
            self.errors.append(
                ErrorRecord(context=context, error=error, recovered=self.continue_on_error)
            )
            if self.on_error:
                self.on_error(error, context)
            if not self.continue_on_error:
                raise
            log.warning(f"{context} failed, continuing with empty result: {error}")
            return fallback()

    async def analyze_document(self, data: bytes | str) -> DocumentAnalysis:
        return await self._call(
            "analyze_document", DocumentAnalysis, self.inner.analyze_document, data
        )

    async def extract_structure(
        self, data: bytes | str, analysis: DocumentAnalysis
    ) -> DocumentStructure:
        return await self._call(
            "extract_structure", DocumentStructure, self.inner.extract_structure, data, analysis
        )

    async def convert_page(
        self, image_base64: str, context: PageContext
    ) -> PageConversionResult:
        return await self._call(
            f"convert_page:{context.page_number}",
            PageConversionResult,
            self.inner.convert_page,
            image_base64,
            context,
        )

    async def convert_window(self, pdf_data: bytes, context: WindowContext) -> WindowResult:
        return await self._call(
            f"convert_window:{context.position.window_number}",
            WindowResult,
            self.inner.convert_window,
            pdf_data,
            context,
        )

    async def summarize(self, content: str, max_length: int = 500) -> str:
        return await self._call("summarize", str, self.inner.summarize, content, max_length)

    async def chat(self, prompt: str) -> str:
        return await self._call("chat", str, self.inner.chat, prompt)


def failed_assessment(page_count: int) -> ComplexityAssessment:
    return ComplexityAssessment(
        level=ComplexityLevel.SIMPLE,
        score=0,
        factors=ComplexityFactors(page_count=page_count),
        recommended_pipeline=PipelineType.DIRECT,
        estimated_seconds=0,
        reasoning=["Conversion failed"],
    )


async def convert_document_robust(
    render: RenderService, ai: AIService, options: RobustConversionOptions | None = None
) -> RobustConversionResult:
    """Convert like ``convert_document``, tolerating AI failures.

    AI calls share one rate limiter and are retried with backoff. Failed
    units contribute empty content and are listed in ``errors``. If the
    conversion as a whole fails and ``continue_on_error`` is set, an empty
    result with a failed assessment is returned instead of raising.
    """
    options = options or RobustConversionOptions()
    robust_ai = RobustAIService(
        ai,
        retry_config=options.retry_config,
        rate_limiter=RateLimiter(options.rate_limit_config),
        timeout=options.call_timeout,
        continue_on_error=options.continue_on_error,
        on_error=options.on_error,
    )

    convert = _convert
    if options.conversion_timeout:
        convert = with_timeout(_convert, options.conversion_timeout)

    try:
        result = await convert(render, robust_ai, options, True)
    except ConversionCancelled:
        raise
    except Exception as e:
        if not options.continue_on_error:
            raise
        error = classify_error(e)
        log.error(f"Conversion failed: {error}")
        robust_ai.errors.append(ErrorRecord(context="conversion", error=error, recovered=False))
        page_count = render.page_count()
        return RobustConversionResult(
            markdown="",
            contents=[],
            metadata=ConversionMetadata(
                page_count=page_count,
                pipeline=PipelineType.DIRECT,
                complexity=ComplexityLevel.SIMPLE,
            ),
            complexity=failed_assessment(page_count),
            errors=robust_ai.errors,
            full_success=False,
        )

    return RobustConversionResult(
        **dict(result),
        errors=robust_ai.errors,
        full_success=not robust_ai.errors,
    )
