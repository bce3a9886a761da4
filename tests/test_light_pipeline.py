"""Tests for the light conversion strategy and header/footer detection."""

import pytest

from conftest import FakeAIService, FakeRenderService
from pdf2md.models.complexity import PipelineType
from pdf2md.models.llm import DocumentAnalysis, DocumentStructure, HeadingInfo, PageConversionResult
from pdf2md.pipelines.common import (
    PAGE_NUMBER_PATTERN,
    RepeatingPatterns,
    continues_into,
    detect_repeating_patterns,
    ends_incomplete,
    find_common_pattern,
    find_current_section,
    join_fragments,
    sample_positions,
    strip_repeating,
)
from pdf2md.pipelines.light import post_process_pages, run_light_pipeline


def running_header_render(page_count: int = 6) -> FakeRenderService:
    return FakeRenderService(
        [f"ACME Report\nBody of page {i}.\n{i}" for i in range(1, page_count + 1)]
    )


class TestFindCommonPattern:
    """Tests for find_common_pattern."""

    def test_needs_three_samples(self):
        """Should not guess from fewer than three samples."""
        assert find_common_pattern(["ACME", "ACME"]) is None

    def test_majority_line(self):
        """Should return a line found in at least half of the samples."""
        assert find_common_pattern(["ACME Report", "ACME Report", "Chapter 2", "ACME Report"]) == (
            "ACME Report"
        )

    def test_page_numbers(self):
        """Should fall back to the page-number pattern for bare numbers."""
        assert find_common_pattern(["1", "2", "3", "4"]) == PAGE_NUMBER_PATTERN

    def test_short_lines_ignored(self):
        """Should ignore repeated lines of two characters or fewer."""
        assert find_common_pattern(["ab", "ab", "ab"]) is None


class TestRepeatingPatterns:
    """Tests for detection and removal of running headers and footers."""

    def test_sample_positions(self):
        """Should spread samples evenly through the document."""
        assert sample_positions(6, 5) == [1, 2, 3, 4, 5]
        assert sample_positions(100, 3) == [25, 50, 75]

    @pytest.mark.asyncio
    async def test_detects_header_and_page_numbers(self):
        """Should find a running header and page-number footers."""
        patterns = await detect_repeating_patterns(running_header_render(), 6)
        assert patterns.header == "ACME Report"
        assert patterns.footer == PAGE_NUMBER_PATTERN

    def test_strip_repeating(self):
        """Should remove header lines and trailing page numbers."""
        patterns = RepeatingPatterns(header="ACME Report", footer=PAGE_NUMBER_PATTERN)
        assert strip_repeating("ACME Report\nBody text.\n12", patterns) == "Body text."

    def test_page_numbers_only_match_whole_lines(self):
        """Should keep numbers that are part of a content line."""
        footer = RepeatingPatterns(footer=PAGE_NUMBER_PATTERN)
        header = RepeatingPatterns(header=PAGE_NUMBER_PATTERN)

        assert (
            strip_repeating("Revenue grew to 500\nNext paragraph.\n12", footer)
            == "Revenue grew to 500\nNext paragraph."
        )
        assert (
            strip_repeating("7\n1. First step\n2024 was a year.", header)
            == "1. First step\n2024 was a year."
        )

    def test_literal_header_must_fill_the_line(self):
        """Should keep lines that merely start or end with the header text."""
        patterns = RepeatingPatterns(header="ACME Report", footer="Confidential")
        content = "ACME Report\nACME Report shows growth.\nThis is Confidential\nConfidential"
        assert strip_repeating(content, patterns) == (
            "ACME Report shows growth.\nThis is Confidential"
        )

    def test_header_is_literal(self):
        """Should escape regex characters in a detected header."""
        patterns = RepeatingPatterns(header="Q1 (2024) Report")
        assert strip_repeating("Q1 (2024) Report\nBody.", patterns) == "Body."


class TestContinuity:
    """Tests for joining fragments split mid-sentence."""

    def test_ends_incomplete(self):
        """Should flag text without sentence-final punctuation."""
        assert ends_incomplete("The sentence goes on")
        assert not ends_incomplete("A full sentence.")
        assert not ends_incomplete("")

    def test_continues_into(self):
        """Should not continue into a heading."""
        assert continues_into("the sentence", "goes on.")
        assert not continues_into("the sentence", "# Heading")
        assert not continues_into("Done.", "next")

    def test_join_fragments(self):
        """Should join incomplete fragments with a space and others with blank lines."""
        joined = join_fragments(["First part of a", "sentence.", "", "# Next"])
        assert joined == "First part of a sentence.\n\n# Next"

    def test_post_process_pages(self):
        """Should strip headers then join pages."""
        patterns = RepeatingPatterns(header="ACME Report")
        joined = post_process_pages(["ACME Report\nIt was a", "ACME Report\ndark night."], patterns)
        assert joined == "It was a dark night."

    def test_find_current_section(self):
        """Should return the last level 1-2 heading at or before the page."""
        headings = [
            HeadingInfo(level=1, text="Intro", page=1),
            HeadingInfo(level=3, text="Detail", page=2),
            HeadingInfo(level=2, text="Part", page=4),
        ]
        assert find_current_section(headings, 3) == "Intro"
        assert find_current_section(headings, 5) == "Part"
        assert find_current_section([], 1) is None


class TestRunLightPipeline:
    """Tests for run_light_pipeline."""

    @pytest.mark.asyncio
    async def test_light_conversion(self):
        """Should convert with headings and patterns in context and strip headers."""
        render = running_header_render()
        ai = FakeAIService(
            page_results={
                i: PageConversionResult(
                    content=f"ACME Report\nText of page {i}.\n{i}", summary=f"S{i}"
                )
                for i in range(1, 7)
            },
            analysis=DocumentAnalysis(language="English", has_toc=True),
            structure=DocumentStructure(
                headings=[HeadingInfo(level=1, text="Intro", page=1)],
                headings_by_page={1: [HeadingInfo(level=1, text="Intro", page=1)]},
            ),
        )

        result = await run_light_pipeline(render, ai)

        assert len(result.contents) == 6
        assert "ACME Report" not in result.markdown
        assert "Text of page 6." in result.markdown
        assert result.metadata.pipeline == PipelineType.LIGHT
        assert result.metadata.language == "English"
        assert result.metadata.has_toc is True

        contexts = ai.page_contexts
        assert contexts[0].expected_headings[0].text == "Intro"
        assert contexts[2].current_section == "Intro"
        assert contexts[1].previous_summary == "S1"
        assert contexts[1].header_pattern == "ACME Report"

    @pytest.mark.asyncio
    async def test_short_document_skips_pattern_detection(self, fake_ai):
        """Should not detect patterns for documents of three pages or fewer."""
        render = FakeRenderService(["A", "B", "C"])
        await run_light_pipeline(render, fake_ai)
        assert all(c.header_pattern is None for c in fake_ai.page_contexts)
