"""Tests for the Gemini CLI service."""

import base64

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from pdf2md.core.errors import PipelineTimeoutError
from pdf2md.core.gemini_service import (
    GeminiCliService,
    GeminiError,
    build_section_tree,
    extract_json_object,
    parse_page_response,
)
from pdf2md.core.robustness import classify_error
from pdf2md.models.llm import (
    ContentType,
    DocumentAnalysis,
    HeadingInfo,
    PageContext,
)

TAGGED_RESPONSE = """[CONTENT]
# Title
Body text.
![Fig](img_placeholder_1)
[IMAGES]
```json
{"img_placeholder_1": {"bbox": [10, 20, 300, 400], "description": "A figure"},
 "img_placeholder_2": {"bbox": [1, 2]}}
```
[SUMMARY]
A title page.
[LAST_PARAGRAPH]
Body text."""


def mock_process(returncode: int, stdout: bytes = b"", stderr: bytes = b"") -> MagicMock:
    process = MagicMock()
    process.returncode = returncode
    process.communicate = AsyncMock(return_value=(stdout, stderr))
    return process


class TestResponseParsing:
    """Tests for the response helpers."""

    def test_parse_tagged_page(self):
        """Should split content, images, summary and last paragraph."""
        result = parse_page_response(TAGGED_RESPONSE, 1)

        assert result.content == "# Title\nBody text.\n![Fig](img_placeholder_1)"
        assert result.images["img_placeholder_1"].bbox == [10, 20, 300, 400]
        assert result.images["img_placeholder_1"].description == "A figure"
        assert result.images["img_placeholder_2"].bbox == [0, 0, 1000, 1000]
        assert result.images["img_placeholder_2"].description == "Image"
        assert result.summary == "A title page."
        assert result.last_paragraph == "Body text."

    def test_untagged_response_is_content(self):
        """Should treat an untagged answer as page content."""
        result = parse_page_response("  Just markdown.  ", 1)
        assert result.content == "Just markdown."
        assert result.images == {}

    def test_bad_image_map_is_a_warning(self):
        """Should keep the content and warn when the image map is broken."""
        result = parse_page_response("[CONTENT]\nText\n[IMAGES]\n```json\nnot json\n```", 2)
        assert result.content == "Text"
        assert result.images == {}
        assert len(result.warnings) == 1

    def test_extract_json_object(self):
        """Should find a JSON object inside prose."""
        assert extract_json_object('Sure: {"a": 1} done') == {"a": 1}
        assert extract_json_object("no braces") is None
        assert extract_json_object("{broken") is None

    def test_build_section_tree(self):
        """Should nest deeper headings and end sections before the next heading."""
        headings = [
            HeadingInfo(level=1, text="A", page=1),
            HeadingInfo(level=2, text="B", page=2),
            HeadingInfo(level=2, text="C", page=4),
            HeadingInfo(level=1, text="D", page=6),
        ]

        sections = build_section_tree(headings, 10)

        assert [(s.title, s.start_page, s.end_page) for s in sections] == [
            ("A", 1, 1),
            ("D", 6, 10),
        ]
        assert [(c.title, c.start_page, c.end_page) for c in sections[0].children] == [
            ("B", 2, 3),
            ("C", 4, 5),
        ]

    def test_section_tree_never_ends_before_start(self):
        """Should clamp end pages when the page count is unknown or headings share a page."""
        headings = [
            HeadingInfo(level=1, text="A", page=3),
            HeadingInfo(level=1, text="B", page=3),
            HeadingInfo(level=1, text="C", page=7),
        ]

        sections = build_section_tree(headings, 0)

        assert [(s.start_page, s.end_page) for s in sections] == [(3, 3), (3, 6), (7, 7)]

    def test_timeout_errors_are_retryable(self):
        """Should classify CLI timeouts as retryable timeouts."""
        error = classify_error(GeminiError("TIMEOUT", "Request timed out after 5s"))
        assert isinstance(error, PipelineTimeoutError)


class TestGeminiCliService:
    """Tests for GeminiCliService with the CLI call mocked."""

    @pytest.mark.asyncio
    async def test_analyze_document_from_pdf(self):
        """Should attach the PDF and map the answer onto DocumentAnalysis."""
        service = GeminiCliService()
        response = (
            '{"language": "German", "hasTOC": true, "pageCount": 12, '
            '"contentType": "manual", "headerPattern": null}'
        )

        with patch.object(service, "_call_gemini", AsyncMock(return_value=response)) as call:
            analysis = await service.analyze_document(b"%PDF")

        assert analysis.language == "German"
        assert analysis.has_toc is True
        assert analysis.page_count == 12
        assert analysis.content_type == ContentType.MANUAL
        prompt, files = call.call_args.args
        assert "@document.pdf" in prompt
        assert files == {"document.pdf": b"%PDF"}

    @pytest.mark.asyncio
    async def test_analyze_document_invalid_answer(self):
        """Should fall back to defaults on invalid or missing JSON."""
        service = GeminiCliService()

        with patch.object(service, "_call_gemini", AsyncMock(return_value='{"pageCount": "many"}')):
            assert await service.analyze_document("text") == DocumentAnalysis()
        with patch.object(service, "_call_gemini", AsyncMock(return_value="sorry")):
            assert await service.analyze_document("text") == DocumentAnalysis()

    @pytest.mark.asyncio
    async def test_extract_structure_from_text(self):
        """Should keep valid headings, derive the depth and build sections."""
        service = GeminiCliService()
        response = (
            '{"headings": [{"level": 1, "text": "Intro", "page": 1}, '
            '{"level": 2, "text": "Scope", "page": 3}, {"bad": 1}], "maxDepth": null}'
        )

        with patch.object(service, "_call_gemini", AsyncMock(return_value=response)) as call:
            structure = await service.extract_structure("Intro ...", DocumentAnalysis(page_count=8))

        assert [h.text for h in structure.headings] == ["Intro", "Scope"]
        assert structure.max_depth == 2
        assert structure.sections[0].children[0].end_page == 8
        assert [h.text for h in structure.headings_by_page[3]] == ["Scope"]
        prompt, files = call.call_args.args
        assert "Text content:" in prompt
        assert files is None

    @pytest.mark.asyncio
    async def test_convert_page(self):
        """Should send the decoded page image and parse the tagged answer."""
        service = GeminiCliService()
        context = PageContext(
            page_number=2,
            total_pages=5,
            expected_headings=[HeadingInfo(level=1, text="Title", page=2)],
            previous_summary="Cover page",
        )
        image = base64.b64encode(b"png-bytes").decode()

        with patch.object(service, "_call_gemini", AsyncMock(return_value=TAGGED_RESPONSE)) as call:
            result = await service.convert_page(image, context)

        assert result.summary == "A title page."
        prompt, files = call.call_args.args
        assert "Page 2 of 5" in prompt
        assert '- H1: "Title"' in prompt
        assert "Use EXACTLY the heading levels specified" in prompt
        assert "Previous page summary: Cover page" in prompt
        assert files == {"page.png": b"png-bytes"}

    @pytest.mark.asyncio
    async def test_summarize_truncates(self):
        """Should strip and cut the summary to the requested length."""
        service = GeminiCliService()
        with patch.object(service, "_call_gemini", AsyncMock(return_value="  A long summary \n")):
            assert await service.summarize("content", max_length=6) == "A long"

    def test_estimate_cost(self):
        """Should price input and output tokens."""
        assert GeminiCliService.estimate_cost(100, 0) == pytest.approx(0.02625)


class TestCallGemini:
    """Tests for the subprocess call."""

    @pytest.mark.asyncio
    async def test_success(self):
        """Should run the CLI with the model and return stdout."""
        service = GeminiCliService(model="gemini-test")
        process = mock_process(0, stdout=b"hello")

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)) as exec_:
            assert await service._call_gemini("prompt", {"page.png": b"x"}) == "hello"

        assert exec_.call_args.args == ("gemini", "-m", "gemini-test", "prompt")
        assert "cwd" in exec_.call_args.kwargs

    @pytest.mark.asyncio
    async def test_cli_error(self):
        """Should raise with stderr and the exit code on failure."""
        service = GeminiCliService()
        process = mock_process(1, stderr=b"quota exceeded")

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=process)):
            with pytest.raises(GeminiError) as exc_info:
                await service._call_gemini("prompt")

        assert exc_info.value.error_type == "CLI_ERROR"
        assert exc_info.value.message == "quota exceeded"
        assert exc_info.value.code == 1

    @pytest.mark.asyncio
    async def test_cli_missing(self):
        """Should explain a missing CLI."""
        service = GeminiCliService(cli="no-such-gemini")

        with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=FileNotFoundError)):
            with pytest.raises(GeminiError) as exc_info:
                await service._call_gemini("prompt")

        assert exc_info.value.error_type == "CLI_NOT_FOUND"
