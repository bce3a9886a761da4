"""Pass 3: page-by-page content extraction into sections, footnotes and images."""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable

from pdf2md.core.errors import ContentExtractionError, ConversionCancelled, PipelineError
from pdf2md.core.robustness import (
    CancelToken,
    ProgressCallback,
    RateLimitConfig,
    RateLimiter,
    RetryConfig,
    check_cancelled,
    classify_error,
    process_pages_batch,
    report,
    with_robustness,
)
from pdf2md.core.services import AIService, RenderService
from pdf2md.models.document import CropOptions, RenderOptions
from pdf2md.models.llm import HeadingInfo, ImageInfo, ImageType, PageContext, PageConversionResult
from pdf2md.models.profiles import (
    Footnote,
    FootnoteStyle,
    ImageRef,
    LayoutProfile,
    RawContent,
    Section,
    StructureProfile,
    TocEntry,
    Zone,
)

log = logging.getLogger(__name__)

CONTEXT_TAIL_CHARS = 800
EXTRACTION_LANGUAGE = "auto"

HEADING_LINE = re.compile(r"^(#{1,6})\s+(.+)$")
NUMBERED_FOOTNOTE = re.compile(r"^(?:\[\^(\d+)\]:|(\d+)\.)\s+(.+)$", re.MULTILINE)
SYMBOLIC_FOOTNOTE = re.compile(r"^([*†‡§])\s+(.+)$", re.MULTILINE)
IMAGE_LINK = re.compile(r"!\[([^\]]*)\]\(\s*([^)\s]+)\s*\)")
TERMINAL_PUNCTUATION = re.compile(r"[.!?:;'\"]$")
EXCESS_BLANK_LINES = re.compile(r"\n{3,}")

DECORATIVE_IMAGE_TYPES = {ImageType.LOGO, ImageType.ICON}


@dataclass
class PageExtraction:
    """Everything parsed out of one page."""

    sections: list[Section] = field(default_factory=list)
    footnotes: list[Footnote] = field(default_factory=list)
    images: list[ImageRef] = field(default_factory=list)
    summary: str = ""
    last_paragraph: str = ""
    ends_incomplete: bool = False


@dataclass
class ExtractionState:
    """Context carried from one page to the next."""

    previous_summary: str = ""
    previous_content: str = ""
    pending_section_id: str | None = None


# =============================================================================
# Page Context
# =============================================================================


def _walk_toc(entries: list[TocEntry]):
    for entry in entries:
        yield entry
        yield from _walk_toc(entry.children)


def find_expected_headings(structure: StructureProfile, page_num: int) -> list[HeadingInfo]:
    return [
        HeadingInfo(level=entry.level, text=entry.title, page=entry.page)
        for entry in _walk_toc(structure.toc.entries)
        if entry.page == page_num
    ]


def find_toc_entry_for_page(entries: list[TocEntry], page_num: int) -> TocEntry | None:
    """Last TOC entry, in reading order, starting at or before the page."""
    current = None
    for entry in _walk_toc(entries):
        if entry.page <= page_num:
            current = entry
    return current


def build_filter_pattern(patterns: list[str]) -> str | None:
    if not patterns:
        return None
    return "|".join(re.escape(p) for p in patterns)


def build_page_context(
    page_num: int,
    page_count: int,
    layout: LayoutProfile,
    structure: StructureProfile,
    state: ExtractionState,
) -> PageContext:
    entry = find_toc_entry_for_page(structure.toc.entries, page_num)
    return PageContext(
        page_number=page_num,
        total_pages=page_count,
        previous_content=state.previous_content[-CONTEXT_TAIL_CHARS:],
        previous_summary=state.previous_summary,
        expected_headings=find_expected_headings(structure, page_num),
        current_section=entry.title if entry else None,
        header_pattern=build_filter_pattern(layout.repeated_elements.headers),
        footer_pattern=build_filter_pattern(layout.repeated_elements.footers),
        language=EXTRACTION_LANGUAGE,
    )


# =============================================================================
# Result Parsing
# =============================================================================


def remove_repeated_elements(content: str, layout: LayoutProfile) -> str:
    """Remove running header, footer and page-number lines."""
    elements = layout.repeated_elements
    for text in [*elements.headers, *elements.footers]:
        content = re.sub(rf"^[ \t]*{re.escape(text)}[ \t]*$", "", content, flags=re.MULTILINE)

    if elements.page_numbers:
        try:
            content = re.sub(elements.page_numbers, "", content, flags=re.MULTILINE)
        except re.error:
            log.debug(f"Ignoring invalid page number pattern {elements.page_numbers!r}")

    return EXCESS_BLANK_LINES.sub("\n\n", content).strip()


def extract_footnotes(
    content: str, page_num: int, style: FootnoteStyle
) -> tuple[str, list[Footnote]]:
    """Pull footnote definition lines out of the text.

    Numbered definitions look like ``1. text`` or ``[^1]: text``; symbolic
    ones start with ``*``, a dagger, a double dagger or a section sign.
    Only the inline markers stay in the returned text.
    """
    if style == FootnoteStyle.NONE:
        return content, []

    pattern = NUMBERED_FOOTNOTE if style == FootnoteStyle.NUMBERED else SYMBOLIC_FOOTNOTE
    footnotes: dict[str, Footnote] = {}
    for match in pattern.finditer(content):
        if style == FootnoteStyle.NUMBERED:
            footnote_id = match.group(1) or match.group(2)
            text = match.group(3)
        else:
            footnote_id, text = match.group(1), match.group(2)
        if footnote_id not in footnotes:
            footnotes[footnote_id] = Footnote(id=footnote_id, content=text.strip(), page=page_num)

    text = EXCESS_BLANK_LINES.sub("\n\n", pattern.sub("", content)).strip()
    return text, list(footnotes.values())


def parse_sections(content: str, page_num: int, max_depth: int) -> list[Section]:
    """Split page text on Markdown headings.

    Text before the first heading becomes an untitled level-0 section.
    Heading levels deeper than ``max_depth`` are capped.
    """
    sections: list[Section] = []
    current: Section | None = None
    lines: list[str] = []

    def flush() -> None:
        if current is not None:
            current.content = "\n".join(lines).strip()
            if current.content or current.title:
                sections.append(current)

    for line in content.split("\n"):
        heading = HEADING_LINE.match(line)
        if heading:
            flush()
            current = Section(
                id=f"section-{page_num}-{len(sections) + 1}",
                level=min(len(heading.group(1)), max_depth),
                title=heading.group(2).strip(),
            )
            lines = []
            continue

        if current is None:
            current = Section(id=f"section-{page_num}-1", level=0)
            lines = []
        lines.append(line)

    flush()
    return sections


def find_footnote_refs(content: str, footnotes: list[Footnote]) -> list[str]:
    return [
        f.id for f in footnotes if re.search(rf"\[\^?{re.escape(f.id)}\]", content)
    ]


def is_image_decorative(image: ImageInfo, layout: LayoutProfile, page_num: int) -> bool:
    """Decorative by description pattern, layout zone, or logo/icon type."""
    description = image.description.lower()
    if any(pattern.lower() in description for pattern in layout.decorative_images.patterns):
        return True

    if len(image.bbox) == 4:
        zones = layout.page_zones
        y_percent = image.bbox[0] / 10
        x_percent = image.bbox[1] / 10
        for position in layout.decorative_images.positions:
            if position.page != page_num:
                continue
            if position.zone == Zone.HEADER and y_percent < zones.header_zone.bottom:
                return True
            if position.zone == Zone.FOOTER and y_percent > zones.footer_zone.top:
                return True
            if position.zone == Zone.MARGIN and (
                x_percent < zones.margin_zones.left or x_percent > zones.margin_zones.right
            ):
                return True

    return image.type in DECORATIVE_IMAGE_TYPES


def page_image_id(page_num: int, placeholder: str) -> str:
    return f"page-{page_num}-{placeholder}"


def replace_image_links(content: str, page_num: int, images: dict[str, ImageRef]) -> str:
    """Turn placeholder image links into ``{{image:id}}`` references.

    Decorative images lose their link entirely.
    """

    def replace(match: re.Match) -> str:
        image = images.get(page_image_id(page_num, match.group(2)))
        if image is None:
            return "" if match.group(2).startswith("img_placeholder") else match.group(0)
        return "" if image.is_decorative else f"{{{{image:{image.id}}}}}"

    return IMAGE_LINK.sub(replace, content)


def ends_incomplete(content: str) -> bool:
    stripped = content.rstrip()
    return bool(stripped) and not TERMINAL_PUNCTUATION.search(stripped)


def parse_page_result(
    result: PageConversionResult,
    page_num: int,
    layout: LayoutProfile,
    structure: StructureProfile,
) -> PageExtraction:
    """Turn one page's Markdown into sections, footnotes and image references."""
    images = {
        page_image_id(page_num, placeholder): ImageRef(
            id=page_image_id(page_num, placeholder),
            description=info.description,
            page=page_num,
            is_decorative=is_image_decorative(info, layout, page_num),
        )
        for placeholder, info in result.images.items()
    }

    content = remove_repeated_elements(result.content, layout)
    content, footnotes = extract_footnotes(content, page_num, layout.footnote_style)
    content = replace_image_links(content, page_num, images)

    sections = parse_sections(content, page_num, structure.hierarchy.max_depth)
    for section in sections:
        section.footnote_refs = find_footnote_refs(section.content, footnotes)
        section.image_refs = re.findall(r"\{\{image:([^}]+)\}\}", section.content)

    return PageExtraction(
        sections=sections,
        footnotes=footnotes,
        images=list(images.values()),
        summary=result.summary,
        last_paragraph=result.last_paragraph or content[-CONTEXT_TAIL_CHARS:],
        ends_incomplete=ends_incomplete(content),
    )


async def crop_meaningful_images(
    render: RenderService,
    image_base64: str,
    result: PageConversionResult,
    extraction: PageExtraction,
    page_num: int,
) -> None:
    """Fill in data URLs for the non-decorative images of a page."""
    for placeholder, info in result.images.items():
        image_id = page_image_id(page_num, placeholder)
        image = next((i for i in extraction.images if i.id == image_id), None)
        if image is None or image.is_decorative or len(info.bbox) != 4:
            continue
        try:
            image.data_url = await render.crop_image(image_base64, CropOptions(bbox=info.bbox))
        except Exception as e:
            log.warning(f"Failed to crop image {image_id}: {e}")


# =============================================================================
# Accumulation
# =============================================================================


def should_continue_section(section: Section) -> bool:
    """A page's first section continues the previous page when it has no heading."""
    return not section.title and bool(section.content)


def accumulate_page(raw: RawContent, state: ExtractionState, extraction: PageExtraction) -> None:
    """Merge one page into the raw content and advance the page context."""
    for i, section in enumerate(extraction.sections):
        if (
            i == 0
            and state.pending_section_id
            and section.continues_from is None
            and should_continue_section(section)
        ):
            section.continues_from = state.pending_section_id
        raw.sections.append(section)

    for footnote in extraction.footnotes:
        existing = raw.footnotes.get(footnote.id)
        if existing is not None and existing.content != footnote.content:
            log.debug(
                f"Footnote {footnote.id} on page {footnote.page} duplicates page {existing.page}"
            )
            continue
        raw.footnotes.setdefault(footnote.id, footnote)

    for image in extraction.images:
        if not image.is_decorative:
            raw.images[image.id] = image

    if extraction.ends_incomplete and extraction.sections:
        state.pending_section_id = extraction.sections[-1].id
        raw.pending_continuations.append(state.pending_section_id)
    else:
        state.pending_section_id = None

    state.previous_summary = extraction.summary
    state.previous_content = extraction.last_paragraph


async def _extract_page(
    render: RenderService,
    image_base64: str,
    result: PageConversionResult,
    page_num: int,
    layout: LayoutProfile,
    structure: StructureProfile,
) -> PageExtraction:
    extraction = parse_page_result(result, page_num, layout, structure)
    await crop_meaningful_images(render, image_base64, result, extraction, page_num)
    return extraction


# =============================================================================
# Main Entry Points
# =============================================================================


async def extract_content(
    render: RenderService,
    ai: AIService,
    layout: LayoutProfile,
    structure: StructureProfile,
    on_progress: ProgressCallback | None = None,
    dpi: int = 150,
    cancel_token: CancelToken | None = None,
) -> RawContent:
    """Extract every page in order, threading context between pages.

    Raises:
        ContentExtractionError: If rendering or converting a page fails.
    """
    page_count = render.page_count()
    raw = RawContent()
    state = ExtractionState()

    for page_num in range(1, page_count + 1):
        check_cancelled(cancel_token)
        report(on_progress, f"Extracting page {page_num} of {page_count}...", page_num, page_count)

        try:
            image = await render.render_page(page_num, RenderOptions(dpi=dpi))
            result = await ai.convert_page(
                image, build_page_context(page_num, page_count, layout, structure, state)
            )
        except ConversionCancelled:
            raise
        except Exception as e:
            raise ContentExtractionError(
                f"Failed to extract page {page_num}: {e}", page_number=page_num
            ) from e

        extraction = await _extract_page(render, image, result, page_num, layout, structure)
        accumulate_page(raw, state, extraction)
        log.debug(f"Page {page_num}: {len(extraction.sections)} section(s)")

    log.info(
        f"Extracted {len(raw.sections)} sections, {len(raw.footnotes)} footnotes, "
        f"{len(raw.images)} images from {page_count} pages"
    )
    return raw


@dataclass
class RobustExtractionOptions:
    """Limits for the robust extraction variant."""

    concurrency: int = 3
    min_delay: float = 0.5
    prefetch: int = 10
    timeout: float | None = 120.0
    retry_config: RetryConfig | None = None
    continue_on_error: bool = True
    on_page_error: Callable[[int, PipelineError], None] | None = None


async def extract_content_robust(
    render: RenderService,
    ai: AIService,
    layout: LayoutProfile,
    structure: StructureProfile,
    on_progress: ProgressCallback | None = None,
    dpi: int = 150,
    cancel_token: CancelToken | None = None,
    options: RobustExtractionOptions | None = None,
) -> RawContent:
    """Extract content with retries, timeouts and request pacing.

    Page renders are prefetched ``prefetch`` pages at a time with bounded
    concurrency. AI requests still run one page after another, so every page
    sees the context of the previous one, and go through a rate limiter that
    keeps at least ``min_delay`` seconds between them. A page whose render or
    conversion fails for good contributes nothing, unless
    ``continue_on_error`` is off.
    """
    options = options or RobustExtractionOptions()
    page_count = render.page_count()
    raw = RawContent()
    state = ExtractionState()

    limiter = RateLimiter(RateLimitConfig(concurrency=1, min_delay=options.min_delay))
    convert = with_robustness(
        ai.convert_page, options.retry_config, options.timeout, limiter
    )

    def fail(page_num: int, error: Exception) -> None:
        error = classify_error(error)
        if options.on_page_error:
            options.on_page_error(page_num, error)
        if not options.continue_on_error:
            raise ContentExtractionError(
                f"Failed to extract page {page_num}: {error}", page_number=page_num
            ) from error
        log.warning(f"Skipping page {page_num}: {error}")

    async def render_page(page_num: int) -> str:
        return await render.render_page(page_num, RenderOptions(dpi=dpi))

    for chunk_start in range(1, page_count + 1, options.prefetch):
        check_cancelled(cancel_token)
        chunk = list(range(chunk_start, min(chunk_start + options.prefetch, page_count + 1)))
        renders = await process_pages_batch(
            chunk,
            render_page,
            concurrency=options.concurrency,
            retry_config=options.retry_config,
        )

        for outcome in renders:
            page_num = outcome.number
            check_cancelled(cancel_token)
            report(on_progress, f"Extracting page {page_num} of {page_count}...", page_num, page_count)

            if outcome.value is None:
                fail(page_num, outcome.error or ContentExtractionError("Render failed", page_num))
                accumulate_page(raw, state, PageExtraction())
                continue

            try:
                result = await convert(
                    outcome.value,
                    build_page_context(page_num, page_count, layout, structure, state),
                )
            except ConversionCancelled:
                raise
            except Exception as e:
                fail(page_num, e)
                accumulate_page(raw, state, PageExtraction())
                continue

            extraction = await _extract_page(
                render, outcome.value, result, page_num, layout, structure
            )
            accumulate_page(raw, state, extraction)

    log.info(f"Extracted {len(raw.sections)} sections from {page_count} pages")
    return raw
