"""Tests for the direct conversion strategy."""

import pytest

from conftest import FakeAIService, FakeRenderService
from pdf2md.core.errors import ConversionCancelled
from pdf2md.core.robustness import CancelToken
from pdf2md.models.complexity import PipelineType
from pdf2md.models.llm import ImageInfo, PageConversionResult
from pdf2md.pipelines.common import PipelineOptions, detect_language, resolve_image_placeholders
from pdf2md.pipelines.direct import run_direct_pipeline


class TestRunDirectPipeline:
    """Tests for run_direct_pipeline."""

    @pytest.mark.asyncio
    async def test_one_content_per_page(self, four_page_render, fake_ai):
        """Should convert four pages into four contents joined by blank lines."""
        result = await run_direct_pipeline(four_page_render, fake_ai)

        assert len(result.contents) == 4
        assert result.contents[0] == "Page 1 content."
        assert result.markdown == "\n\n".join(result.contents)
        assert result.metadata.page_count == 4
        assert result.metadata.pipeline == PipelineType.DIRECT

    @pytest.mark.asyncio
    async def test_passes_previous_page_tail(self, four_page_render, fake_ai):
        """Should give each page the previous page's content as context."""
        await run_direct_pipeline(four_page_render, fake_ai)

        contexts = fake_ai.page_contexts
        assert [c.page_number for c in contexts] == [1, 2, 3, 4]
        assert contexts[0].previous_content == ""
        assert contexts[1].previous_content == "Page 1 content."
        assert all(c.total_pages == 4 for c in contexts)

    @pytest.mark.asyncio
    async def test_language_from_first_page(self, four_page_render):
        """Should detect the language from the first page and pass it on."""
        ai = FakeAIService(
            page_results={
                1: PageConversionResult(content="The history of the city and its people in time.")
            }
        )

        result = await run_direct_pipeline(four_page_render, ai)

        assert result.metadata.language == "English"
        assert ai.page_contexts[1].language == "English"

    @pytest.mark.asyncio
    async def test_reports_progress_per_page(self, four_page_render, fake_ai):
        """Should report progress in page units."""
        progress = []
        await run_direct_pipeline(
            four_page_render,
            fake_ai,
            PipelineOptions(on_progress=lambda s, c, t: progress.append((c, t))),
        )
        assert progress[0] == (0, 4)
        assert progress[-1] == (4, 4)

    @pytest.mark.asyncio
    async def test_cancellation(self, four_page_render, fake_ai):
        """Should stop before the next page once cancelled."""
        token = CancelToken()
        token.cancel()
        with pytest.raises(ConversionCancelled):
            await run_direct_pipeline(
                four_page_render, fake_ai, PipelineOptions(cancel_token=token)
            )
        assert fake_ai.page_contexts == []


class TestImagePlaceholders:
    """Tests for resolve_image_placeholders."""

    @pytest.mark.asyncio
    async def test_crops_known_placeholders(self):
        """Should replace placeholders with cropped data URLs."""
        render = FakeRenderService(["text"])
        result = PageConversionResult(
            content="![Chart](img_placeholder_1)\n![Lost](img_placeholder_2)\n![Empty]()",
            images={"img_placeholder_1": ImageInfo(id="img_placeholder_1", bbox=[0, 0, 500, 500])},
        )

        content = await resolve_image_placeholders(render, "png", result)

        assert "![Chart](data:image/png;base64,png-crop)" in content
        assert "> *[Image: Lost]*" in content
        assert "> *[Image: Empty]*" in content


class TestDetectLanguage:
    """Tests for detect_language."""

    def test_english(self):
        """Should recognise English function words."""
        assert detect_language("The cat and the dog went to the park in May.") == "English"

    def test_german(self):
        """Should recognise German function words."""
        assert detect_language("Der Hund und die Katze, das ist schön.") == "German"

    def test_unknown(self):
        """Should return Unknown below three keyword hits."""
        assert detect_language("12345 67890") == "Unknown"
