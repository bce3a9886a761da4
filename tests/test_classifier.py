"""Tests for document complexity classification."""

import pytest

from conftest import FakeRenderService
from pdf2md.core.classifier import (
    ClassifierOptions,
    PageSample,
    calculate_factors,
    calculate_score,
    classify,
    count_table_runs,
    estimate_structure_depth,
    sample_page_numbers,
    select_pipeline,
)
from pdf2md.models.complexity import (
    ComplexityFactors,
    ComplexityLevel,
    PipelineType,
    TextDensity,
)
from pdf2md.models.document import OutlineItem


class TestSamplePageNumbers:
    """Tests for sample_page_numbers."""

    def test_short_document_uses_every_page(self):
        """Should sample every page when the document is shorter than the sample."""
        assert sample_page_numbers(2, 3) == [1, 2]

    def test_first_middle_last(self):
        """Should pick first, middle and last page for a sample of three."""
        assert sample_page_numbers(100, 3) == [1, 50, 100]

    def test_sample_size_respected(self):
        """Should never return more pages than requested."""
        pages = sample_page_numbers(200, 6)
        assert len(pages) == 6
        assert pages == sorted(set(pages))
        assert pages[0] == 1 and 200 in pages


class TestFactorEstimation:
    """Tests for factor helpers."""

    def test_count_table_runs(self):
        """Should count runs of three or more pipe rows as tables."""
        text = "| a | b |\n| 1 | 2 |\n| 3 | 4 |\nprose\n| x | y |"
        assert count_table_runs(text) == 1

    def test_structure_depth_from_numbered_headings(self):
        """Should read depth from numbered headings like 1.2.3."""
        sample = PageSample(page_num=1, text="1.2.3. Deep heading\nText", image_count=0)
        assert estimate_structure_depth([sample]) == 3

    def test_factors_extrapolate_from_samples(self):
        """Should scale sampled images to the whole document."""
        samples = [
            PageSample(page_num=1, text="x" * 3000, image_count=2),
            PageSample(page_num=10, text="x" * 3000, image_count=0),
        ]
        factors = calculate_factors(10, None, samples)
        assert factors.estimated_images == 10
        assert factors.text_density == TextDensity.DENSE
        assert factors.has_toc is False

    def test_outline_sets_toc_and_depth(self):
        """Should take TOC presence and depth from the outline."""
        outline = [
            OutlineItem(
                title="Part",
                page_number=1,
                children=[OutlineItem(title="Chapter", page_number=2)],
            )
        ]
        factors = calculate_factors(4, outline, [PageSample(1, "text", 0)])
        assert factors.has_toc is True
        assert factors.structure_depth == 2


class TestSelectPipeline:
    """Tests for score thresholds and pipeline selection."""

    def test_small_document_is_direct(self):
        """Should pick the direct pipeline for small documents without TOC."""
        factors = ComplexityFactors(page_count=3, estimated_images=2)
        level, pipeline, reasoning = select_pipeline(
            calculate_score(factors), factors, ClassifierOptions()
        )
        assert level == ComplexityLevel.SIMPLE
        assert pipeline == PipelineType.DIRECT
        assert "Small document (3 pages)" in reasoning

    def test_toc_below_moderate_is_light(self):
        """Should prefer light for a TOC document under the moderate threshold."""
        factors = ComplexityFactors(page_count=4, has_toc=True)
        level, pipeline, _ = select_pipeline(10, factors, ClassifierOptions())
        assert level == ComplexityLevel.MODERATE
        assert pipeline == PipelineType.LIGHT

    def test_high_score_is_full(self):
        """Should pick full for scores at or above the complex threshold."""
        factors = ComplexityFactors(
            page_count=300,
            has_toc=True,
            structure_depth=5,
            estimated_images=60,
            text_density=TextDensity.DENSE,
        )
        score = calculate_score(factors)
        assert score >= 60
        level, pipeline, reasoning = select_pipeline(score, factors, ClassifierOptions())
        assert level == ComplexityLevel.COMPLEX
        assert pipeline == PipelineType.FULL
        assert any("windowed" in r for r in reasoning)

    def test_score_is_bounded(self):
        """Should keep the score within 0..100 even with every factor maxed."""
        factors = ComplexityFactors(
            page_count=1000,
            has_toc=True,
            structure_depth=6,
            estimated_images=500,
            estimated_tables=500,
            has_code=True,
            has_math=True,
            text_density=TextDensity.DENSE,
        )
        assert 0 <= calculate_score(factors) <= 100


class TestClassify:
    """Tests for the classify entry point."""

    @pytest.mark.asyncio
    async def test_classify_short_plain_document(self, four_page_render):
        """Should classify a short plain document and estimate a duration."""
        assessment = await classify(four_page_render)

        assert assessment.factors.page_count == 4
        assert assessment.recommended_pipeline in (PipelineType.DIRECT, PipelineType.LIGHT)
        assert assessment.estimated_seconds > 0
        assert assessment.reasoning

    @pytest.mark.asyncio
    async def test_classify_tiny_document_is_direct(self):
        """Should use direct for a two-page document."""
        render = FakeRenderService(["Hello world.", "Goodbye world."])
        assessment = await classify(render)
        assert assessment.level == ComplexityLevel.SIMPLE
        assert assessment.recommended_pipeline == PipelineType.DIRECT

    @pytest.mark.asyncio
    async def test_assessment_is_immutable(self, four_page_render):
        """Should return a frozen assessment."""
        assessment = await classify(four_page_render)
        with pytest.raises(Exception):
            assessment.score = 99
