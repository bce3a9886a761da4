"""AI conversion service backed by the Gemini CLI."""

import asyncio
import base64
import json
import logging
import re
import tempfile
from pathlib import Path

from pydantic import ValidationError

from pdf2md.core.services import AIService
from pdf2md.models.llm import (
    DocumentAnalysis,
    DocumentStructure,
    HeadingInfo,
    ImageInfo,
    PageContext,
    PageConversionResult,
    ProviderCapabilities,
    SectionInfo,
    WindowContext,
    WindowResult,
)

log = logging.getLogger(__name__)


class GeminiError(Exception):
    """Error from Gemini CLI."""

    def __init__(self, error_type: str, message: str, code: int | None = None):
        self.error_type = error_type
        self.message = message
        self.code = code
        super().__init__(f"{error_type}: {message}")


# =============================================================================
# Prompts
# =============================================================================

ANALYSIS_PROMPT = """Analyze the document {source} and extract information. Return ONLY a JSON object.

{text_block}Required fields:
{{
  "language": "The primary language",
  "hasTOC": true/false,
  "pageCount": number (estimate),
  "estimatedImages": number,
  "estimatedTables": number,
  "estimatedCodeBlocks": number,
  "headerPattern": "common header text" or null,
  "footerPattern": "common footer text" or null,
  "contentType": "invoice" | "report" | "manual" | "academic" | "form" | "other",
  "textDensity": "sparse" | "normal" | "dense"
}}"""

STRUCTURE_PROMPT = """Extract the document structure from {source}. I need a heading hierarchy.

Document context:
- Language: {language}
- Has TOC: {has_toc}
- Content type: {content_type}

{text_block}Return ONLY a JSON object:
{{
  "headings": [
    {{ "level": 1, "text": "Heading text", "page": 1 }}
  ],
  "maxDepth": 3
}}

Infer page numbers from position in text if not explicit."""

PAGE_PROMPT = """Convert the document page @{image_file} (Page {page_number} of {total_pages}) to Markdown.

STRUCTURE CONTEXT:
Expected headings:
{expected_headings}

Current section: {current_section}
Language: {language}
{previous_block}{summary_block}
EXCLUDE (headers/footers):
- Header: {header}
- Footer: {footer}

RULES:
1. {heading_rule}
2. Skip header/footer patterns
3. Tables -> markdown tables
4. Images -> ![Description](img_placeholder_N) with bounding box
5. Code -> fenced code blocks
6. Footnotes -> [^N] inline, definition after paragraph

OUTPUT:
[CONTENT]
... markdown ...
[IMAGES]
```json
{{ "img_placeholder_1": {{ "bbox": [ymin, xmin, ymax, xmax], "description": "..." }} }}
```
[SUMMARY]
One-sentence summary.
[LAST_PARAGRAPH]
Last paragraph for continuity."""

WINDOW_PROMPT = """Convert pages {start_page}-{end_page} of a {total_pages}-page document, attached as @{pdf_file}, to Markdown.
This is window {window_number} of {total_windows} ({percent_complete}% of the document precedes it).

Language: {language}
Expected headings in this window:
{expected_headings}
{continued_block}{continues_block}{previous_block}
EXCLUDE (headers/footers):
- Header: {header}
- Footer: {footer}

OUTPUT:
[CONTENT]
... markdown ...
[SUMMARY]
One-sentence summary.
[LAST_PARAGRAPH]
Last paragraph for continuity."""

SUMMARY_PROMPT = """Summarize in {max_length} characters or less. Return ONLY the summary:

{content}"""


# Response keys mapped onto DocumentAnalysis fields
ANALYSIS_KEYS = {
    "language": "language",
    "hasTOC": "has_toc",
    "pageCount": "page_count",
    "estimatedImages": "estimated_images",
    "estimatedTables": "estimated_tables",
    "estimatedCodeBlocks": "estimated_code_blocks",
    "headerPattern": "header_pattern",
    "footerPattern": "footer_pattern",
    "contentType": "content_type",
    "textDensity": "text_density",
}

JSON_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")


def extract_json_object(text: str) -> dict | None:
    """Pull the outermost JSON object out of a free-form response."""
    match = JSON_OBJECT_PATTERN.search(text)
    if not match:
        return None
    try:
        value = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def _tagged_section(text: str, tag: str, next_tags: tuple[str, ...]) -> str | None:
    stop = "|".join(rf"\[{t}\]" for t in next_tags) or "$^"
    match = re.search(
        rf"\[{tag}\]([\s\S]*?)(?:{stop}|$)", text, re.IGNORECASE
    )
    return match.group(1).strip() if match else None


def parse_page_response(text: str, page_number: int) -> PageConversionResult:
    """Split a tagged page response into content, images, summary and tail."""
    content = _tagged_section(text, "CONTENT", ("IMAGES", "SUMMARY", "LAST_PARAGRAPH"))
    if content is None:
        content = text.strip()

    images: dict[str, ImageInfo] = {}
    warnings: list[str] = []
    images_match = re.search(r"\[IMAGES\]\s*```json([\s\S]*?)```", text, re.IGNORECASE)
    if images_match:
        try:
            parsed = json.loads(images_match.group(1))
            for key, value in parsed.items():
                value = value if isinstance(value, dict) else {}
                bbox = value.get("bbox")
                images[key] = ImageInfo(
                    id=key,
                    bbox=bbox if isinstance(bbox, list) and len(bbox) == 4 else [0, 0, 1000, 1000],
                    description=value.get("description") or "Image",
                )
        except (json.JSONDecodeError, AttributeError, ValidationError) as e:
            log.warning(f"Failed to parse images on page {page_number}: {e}")
            warnings.append(f"Unparseable image map: {e}")

    return PageConversionResult(
        content=content,
        images=images,
        summary=_tagged_section(text, "SUMMARY", ("LAST_PARAGRAPH",)) or "",
        last_paragraph=_tagged_section(text, "LAST_PARAGRAPH", ()) or "",
        warnings=warnings,
    )


def build_section_tree(headings: list[HeadingInfo], total_pages: int) -> list[SectionInfo]:
    """Nest a flat heading list into sections.

    A section ends on the page before the next heading, or on the last page,
    and never before its own first page.
    """
    sections: list[SectionInfo] = []
    stack: list[SectionInfo] = []

    for i, heading in enumerate(headings):
        next_heading = headings[i + 1] if i + 1 < len(headings) else None
        section = SectionInfo(
            title=heading.text,
            level=heading.level,
            start_page=heading.page,
            end_page=max(
                heading.page, next_heading.page - 1 if next_heading else total_pages
            ),
        )

        while stack and stack[-1].level >= heading.level:
            stack.pop()

        if stack:
            stack[-1].children.append(section)
        else:
            sections.append(section)
        stack.append(section)

    return sections


def _format_headings(headings: list[HeadingInfo]) -> str:
    if not headings:
        return "None specified - infer from visual formatting"
    return "\n".join(f'- H{h.level}: "{h.text}"' for h in headings)


class GeminiCliService(AIService):
    """Talk to Gemini through its command-line client.

    Page images and PDF windows are written to a temporary directory that is
    used as the CLI working directory and referenced with ``@file``.
    """

    DEFAULT_MODEL = "gemini-2.5-flash"
    TIMEOUT_SECONDS = 300  # 5 minutes

    name = "gemini"
    capabilities = ProviderCapabilities(
        supports_native_pdf=True,
        max_pdf_pages=1000,
        max_image_size=20 * 1024 * 1024,
        max_context_tokens=1_000_000,
        has_recitation_filter=True,
        supported_image_formats=["image/jpeg", "image/png", "image/gif", "image/webp"],
    )

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        cli: str = "gemini",
        timeout: float = TIMEOUT_SECONDS,
    ):
        self.model = model
        self.cli = cli
        self.timeout = timeout

    async def _call_gemini(self, prompt: str, files: dict[str, bytes] | None = None) -> str:
        """Run the CLI once and return its stdout."""
        with tempfile.TemporaryDirectory(prefix="pdf2md-") as workdir:
            for filename, data in (files or {}).items():
                Path(workdir, filename).write_bytes(data)

            try:
                process = await asyncio.create_subprocess_exec(
                    self.cli,
                    "-m",
                    self.model,
                    prompt,
                    cwd=workdir,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except FileNotFoundError:
                raise GeminiError("CLI_NOT_FOUND", f"'{self.cli}' is not installed or not on PATH")

            try:
                stdout, stderr = await asyncio.wait_for(
                    process.communicate(), timeout=self.timeout
                )
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()
                raise GeminiError("TIMEOUT", f"Request timed out after {self.timeout}s")

        if process.returncode != 0:
            error_msg = (stderr or stdout).decode("utf-8", errors="replace").strip()
            raise GeminiError("CLI_ERROR", error_msg or "Unknown error", process.returncode)

        return stdout.decode("utf-8", errors="replace")

    # =========================================================================
    # Document-Level Operations
    # =========================================================================

    async def analyze_document(self, data: bytes | str) -> DocumentAnalysis:
        if isinstance(data, bytes):
            prompt = ANALYSIS_PROMPT.format(source="@document.pdf", text_block="")
            files = {"document.pdf": data}
        else:
            prompt = ANALYSIS_PROMPT.format(
                source="text below",
                text_block=f"Text:\n{data[:8000]}\n\n",
            )
            files = None

        text = await self._call_gemini(prompt, files)
        parsed = extract_json_object(text)
        if parsed is None:
            log.warning("Document analysis returned no JSON, using defaults")
            return DocumentAnalysis()

        fields = {
            field: parsed[key]
            for key, field in ANALYSIS_KEYS.items()
            if parsed.get(key) is not None
        }
        try:
            return DocumentAnalysis(**fields)
        except ValidationError as e:
            log.warning(f"Document analysis response invalid, using defaults: {e}")
            return DocumentAnalysis()

    async def extract_structure(
        self, data: bytes | str, analysis: DocumentAnalysis
    ) -> DocumentStructure:
        context = dict(
            language=analysis.language,
            has_toc=analysis.has_toc,
            content_type=analysis.content_type.value,
        )
        if isinstance(data, bytes):
            prompt = STRUCTURE_PROMPT.format(source="@document.pdf", text_block="", **context)
            files = {"document.pdf": data}
        else:
            prompt = STRUCTURE_PROMPT.format(
                source="this text",
                text_block=f"Text content:\n{data[:15000]}\n\n",
                **context,
            )
            files = None

        text = await self._call_gemini(prompt, files)
        parsed = extract_json_object(text)
        if parsed is None:
            log.warning("Structure extraction returned no JSON, using empty structure")
            return DocumentStructure()

        headings: list[HeadingInfo] = []
        for raw in parsed.get("headings") or []:
            try:
                headings.append(HeadingInfo(**raw))
            except (TypeError, ValidationError) as e:
                log.debug(f"Skipping malformed heading {raw!r}: {e}")

        headings_by_page: dict[int, list[HeadingInfo]] = {}
        for heading in headings:
            headings_by_page.setdefault(heading.page, []).append(heading)

        max_depth = parsed.get("maxDepth")
        if not isinstance(max_depth, int) or max_depth <= 0:
            max_depth = max([h.level for h in headings] + [1])

        return DocumentStructure(
            headings=headings,
            sections=build_section_tree(headings, analysis.page_count),
            headings_by_page=headings_by_page,
            max_depth=max_depth,
        )

    # =========================================================================
    # Page and Window Operations
    # =========================================================================

    async def convert_page(
        self, image_base64: str, context: PageContext
    ) -> PageConversionResult:
        previous_block = ""
        if context.previous_content:
            previous_block = f'\nPrevious content:\n"""\n{context.previous_content[-300:]}\n"""\n'
        summary_block = (
            f"\nPrevious page summary: {context.previous_summary}\n"
            if context.previous_summary
            else ""
        )

        prompt = PAGE_PROMPT.format(
            image_file="page.png",
            page_number=context.page_number,
            total_pages=context.total_pages,
            expected_headings=_format_headings(context.expected_headings),
            current_section=context.current_section or "Unknown",
            language=context.language,
            previous_block=previous_block,
            summary_block=summary_block,
            header=context.header_pattern or "None",
            footer=context.footer_pattern or "None",
            heading_rule=(
                "Use EXACTLY the heading levels specified"
                if context.expected_headings
                else "Infer heading levels from formatting"
            ),
        )

        text = await self._call_gemini(prompt, {"page.png": base64.b64decode(image_base64)})
        return parse_page_response(text, context.page_number)

    async def convert_window(self, pdf_data: bytes, context: WindowContext) -> WindowResult:
        position = context.position
        structure = context.structure
        continuity = context.continuity

        continued_block = (
            f"Continues section: {structure.continued_section}\n"
            if structure.continued_section
            else ""
        )
        continues_block = (
            "The last section continues in the next window.\n"
            if structure.section_continues_after
            else ""
        )
        previous_block = ""
        if continuity.previous_window_tail:
            previous_block = (
                f'\nPrevious window ended with:\n"""\n{continuity.previous_window_tail}\n"""\n'
                f"Previous window summary: {continuity.previous_window_summary or 'None'}\n"
            )

        prompt = WINDOW_PROMPT.format(
            start_page=position.start_page,
            end_page=position.end_page,
            total_pages=context.global_context.total_pages,
            pdf_file="window.pdf",
            window_number=position.window_number,
            total_windows=position.total_windows,
            percent_complete=position.percent_complete,
            language=context.global_context.language,
            expected_headings=_format_headings(structure.expected_headings),
            continued_block=continued_block,
            continues_block=continues_block,
            previous_block=previous_block,
            header=context.global_context.header_pattern or "None",
            footer=context.global_context.footer_pattern or "None",
        )

        text = await self._call_gemini(prompt, {"window.pdf": pdf_data})
        page = parse_page_response(text, position.start_page)
        return WindowResult(
            markdown=page.content,
            last_paragraph=page.last_paragraph,
            summary=page.summary,
        )

    # =========================================================================
    # Utility Operations
    # =========================================================================

    async def summarize(self, content: str, max_length: int = 500) -> str:
        text = await self._call_gemini(
            SUMMARY_PROMPT.format(max_length=max_length, content=content)
        )
        return text.strip()[:max_length]

    async def chat(self, prompt: str) -> str:
        return await self._call_gemini(prompt)

    @staticmethod
    def estimate_cost(page_count: int, complexity: float) -> float:
        """Rough USD cost of converting ``page_count`` pages.

        Uses Gemini Flash pricing: $0.075 per million input tokens and
        $0.30 per million output tokens.
        """
        input_tokens = page_count * (1500 + complexity * 500)
        output_tokens = page_count * (500 + complexity * 300)
        return input_tokens / 1_000_000 * 0.075 + output_tokens / 1_000_000 * 0.30
