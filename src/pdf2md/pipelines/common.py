"""Helpers shared by the conversion strategies."""

import logging
import math
import re
from dataclasses import dataclass

from pdf2md.core.robustness import CancelToken, ProgressCallback
from pdf2md.core.services import RenderService
from pdf2md.models.document import CropOptions
from pdf2md.models.llm import HeadingInfo, PageConversionResult

log = logging.getLogger(__name__)

DIRECT_TAIL_CHARS = 500
CONTEXT_TAIL_CHARS = 800
WINDOW_SUMMARY_CHARS = 300

PAGE_NUMBER_PATTERN = r"\d+"

LANGUAGE_KEYWORDS = {
    "English": ["the", "and", "of", "to", "in"],
    "German": ["und", "der", "die", "das", "ist"],
    "French": ["le", "la", "de", "et", "est"],
    "Spanish": ["el", "la", "de", "y", "en"],
    "Russian": ["и", "в", "на", "не", "с"],
}

LEFTOVER_PLACEHOLDER = re.compile(r"!\[(.*?)\]\((img_placeholder_[a-zA-Z0-9_]+)\)")
EMPTY_IMAGE_LINK = re.compile(r"!\[(.*?)\]\(\s*\)")
TERMINAL_PUNCTUATION = re.compile(r"[.!?:;'\"]$")


@dataclass
class PipelineOptions:
    """Options accepted by every strategy; each reads the ones it needs."""

    on_progress: ProgressCallback | None = None
    dpi: int = 150
    cancel_token: CancelToken | None = None
    detect_repeating_elements: bool = True
    max_pages_per_window: int = 50
    parallel: bool = False
    concurrency: int = 3
    robust: bool = False


@dataclass
class RepeatingPatterns:
    header: str | None = None
    footer: str | None = None


# =============================================================================
# Language
# =============================================================================


def detect_language(text: str) -> str:
    """Guess the language from common function words.

    A language needs at least 3 of its 5 keywords present, otherwise
    ``"Unknown"`` is returned.
    """
    scores = {
        language: sum(
            1
            for word in words
            if re.search(rf"\b{re.escape(word)}\b", text, re.IGNORECASE)
        )
        for language, words in LANGUAGE_KEYWORDS.items()
    }
    best = max(scores, key=lambda language: scores[language])
    return best if scores[best] >= 3 else "Unknown"


# =============================================================================
# Images
# =============================================================================


async def resolve_image_placeholders(
    render: RenderService, image_base64: str, result: PageConversionResult
) -> str:
    """Replace image placeholders with cropped data URLs.

    Placeholders that cannot be cropped become a quoted image caption.
    """
    content = result.content

    for placeholder, image in result.images.items():
        if len(image.bbox) != 4:
            continue
        try:
            data_url = await render.crop_image(image_base64, CropOptions(bbox=image.bbox))
        except Exception as e:
            log.warning(f"Failed to crop image {placeholder}: {e}")
            continue
        if data_url:
            content = content.replace(placeholder, data_url)

    content = LEFTOVER_PLACEHOLDER.sub(r"> *[Image: \1]*", content)
    return EMPTY_IMAGE_LINK.sub(r"> *[Image: \1]*", content)


# =============================================================================
# Headers and Footers
# =============================================================================


def find_common_pattern(strings: list[str]) -> str | None:
    """Find a line repeated in at least half of the samples.

    Falls back to a page-number regex when every sample is a bare number.
    """
    if len(strings) < 3:
        return None

    counts: dict[str, int] = {}
    for s in strings:
        counts[s] = counts.get(s, 0) + 1

    for s, count in counts.items():
        if count >= len(strings) * 0.5 and len(s) > 2:
            return s

    if all(re.fullmatch(r"\d+", s) for s in strings):
        return PAGE_NUMBER_PATTERN

    return None


def sample_positions(page_count: int, sample_size: int) -> list[int]:
    return [math.ceil(i * page_count / (sample_size + 1)) for i in range(1, sample_size + 1)]


async def detect_repeating_patterns(
    render: RenderService, page_count: int, sample_size: int = 5
) -> RepeatingPatterns:
    """Compare the first and last text line of evenly spaced pages."""
    first_lines: list[str] = []
    last_lines: list[str] = []

    for page_num in sample_positions(page_count, min(sample_size, page_count)):
        text = await render.page_text(page_num)
        lines = [line.strip() for line in text.split("\n") if line.strip()]
        if lines:
            first_lines.append(lines[0])
            if len(lines) > 1:
                last_lines.append(lines[-1])

    patterns = RepeatingPatterns(
        header=find_common_pattern(first_lines),
        footer=find_common_pattern(last_lines),
    )
    log.debug(f"Repeating patterns: header={patterns.header!r} footer={patterns.footer!r}")
    return patterns


def _pattern_regex(pattern: str) -> str:
    return pattern if pattern == PAGE_NUMBER_PATTERN else re.escape(pattern)


def strip_repeating(content: str, patterns: RepeatingPatterns) -> str:
    """Remove lines that consist solely of a repeated header or footer."""
    if patterns.header:
        content = re.sub(
            rf"^[ \t]*(?:{_pattern_regex(patterns.header)})[ \t]*$\n?",
            "",
            content,
            flags=re.MULTILINE,
        )
    if patterns.footer:
        content = re.sub(
            rf"\n?^[ \t]*(?:{_pattern_regex(patterns.footer)})[ \t]*$",
            "",
            content,
            flags=re.MULTILINE,
        )
    return content


# =============================================================================
# Continuity
# =============================================================================


def ends_incomplete(text: str) -> bool:
    """True when text does not end in sentence-final punctuation."""
    stripped = text.rstrip()
    return bool(stripped) and not TERMINAL_PUNCTUATION.search(stripped)


def continues_into(tail: str, next_text: str) -> bool:
    """Whether ``next_text`` reads as the continuation of ``tail``."""
    next_text = next_text.lstrip()
    if not ends_incomplete(tail):
        return False
    return bool(re.match(r"[a-z]", next_text)) or not next_text.startswith("#")


def join_fragments(fragments: list[str], tails: list[str] | None = None) -> str:
    """Join page or window fragments with blank lines.

    A fragment whose tail is grammatically incomplete is joined to the next
    one with a single space instead. ``tails`` defaults to the fragments.
    """
    tails = tails if tails is not None else fragments
    merged = ""
    previous_tail = ""
    for fragment, tail in zip(fragments, tails):
        text = fragment.strip()
        if not text:
            continue
        if not merged:
            merged = text
        elif continues_into(previous_tail, text):
            merged = f"{merged} {text}"
        else:
            merged = f"{merged}\n\n{text}"
        previous_tail = tail
    return merged


def find_current_section(headings: list[HeadingInfo], page_num: int) -> str | None:
    """Title of the last level 1-2 heading at or before the page."""
    current = None
    for heading in headings:
        if heading.page > page_num:
            break
        if heading.level <= 2:
            current = heading.text
    return current


def extract_last_paragraph(markdown: str, limit: int = DIRECT_TAIL_CHARS) -> str:
    paragraphs = [
        p for p in re.split(r"\n\n+", markdown) if p.strip() and not p.strip().startswith("#")
    ]
    return paragraphs[-1][-limit:] if paragraphs else ""
