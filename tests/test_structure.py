"""Tests for Pass 2 structure analysis."""

import json

import pytest
from unittest.mock import AsyncMock

from conftest import FakeAIService, FakeRenderService
from pdf2md.core.errors import ConversionCancelled, StructureAnalysisError
from pdf2md.models.profiles import (
    CrossReferenceStyle,
    DocumentType,
    LayoutProfile,
    PageRange,
    RepeatedElements,
)
from pdf2md.passes.structure import (
    analyze_structure,
    calculate_sample_pages,
    calculate_similarity,
    default_structure_profile,
    filter_header_footer,
    matches_any_pattern,
    parse_structure_response,
    validate_cross_references,
    validate_document_type,
    validate_hierarchy,
    validate_sections,
    validate_toc_entries,
)

ACME_LAYOUT = LayoutProfile(
    repeated_elements=RepeatedElements(headers=["ACME Corp"], footers=["Confidential"])
)

STRUCTURE_JSON = json.dumps(
    {
        "documentType": "report",
        "toc": {
            "explicit": True,
            "entries": [{"level": 1, "title": "Intro", "page": 2, "children": []}],
        },
        "hierarchy": {"maxDepth": 3, "headingStyles": [{"level": 1, "indicators": ["bold"]}]},
        "sections": {"frontMatter": None, "body": {"start": 1, "end": 4}, "backMatter": None},
        "crossReferences": {"footnoteStyle": "endnote", "citationStyle": "APA"},
    }
)


class TestSampling:
    """Tests for text sampling and header filtering."""

    def test_short_documents_use_all_pages(self):
        """Should sample every page of short documents."""
        assert calculate_sample_pages(5) == [1, 2, 3, 4, 5]

    def test_long_documents_use_fractions(self):
        """Should sample six spread-out pages."""
        assert calculate_sample_pages(100) == [5, 20, 40, 60, 80, 95]

    def test_similarity(self):
        """Should use containment when one string holds the other."""
        assert calculate_similarity("abc", "abcdef") == 0.5
        assert calculate_similarity("", "") == 1.0

    def test_matches_any_pattern(self):
        """Should match exactly ignoring case and fuzzily for longer text."""
        assert matches_any_pattern("ACME Corp", ["acme corp"])
        assert matches_any_pattern("Annual Report 2024.", ["annual report 2024"])
        assert not matches_any_pattern("Intro", ["Chapter"])

    def test_filter_header_footer(self):
        """Should drop running headers, footers and page numbers."""
        text = "ACME Corp\nBody text stays.\n12\nConfidential"
        assert filter_header_footer(text, ACME_LAYOUT) == "Body text stays."


class TestValidation:
    """Tests for field-by-field validation of the answer."""

    def test_document_type_fallback(self):
        """Should map unknown types to other."""
        assert validate_document_type("novel") == DocumentType.OTHER
        assert validate_document_type("book") == DocumentType.BOOK

    def test_toc_entries(self):
        """Should clamp levels and pages and derive child levels."""
        entries = validate_toc_entries(
            [
                {"level": 1, "title": "Intro", "page": 3, "children": [{"title": "Sub", "page": 4}]},
                {"level": 9, "page": 500},
                "junk",
            ],
            20,
        )

        assert len(entries) == 2
        assert entries[0].children[0].level == 2
        assert entries[0].children[0].page == 4
        assert (entries[1].level, entries[1].page, entries[1].title) == (6, 20, "Untitled")

    def test_hierarchy_defaults(self):
        """Should default the depth and build default heading styles."""
        assert validate_hierarchy(None).max_depth == 2
        hierarchy = validate_hierarchy({"maxDepth": 9})
        assert hierarchy.max_depth == 6
        assert [s.level for s in hierarchy.heading_styles] == [1, 2, 3, 4, 5, 6]

    def test_hierarchy_styles_sorted(self):
        """Should sort heading styles by level."""
        hierarchy = validate_hierarchy(
            {"maxDepth": 2, "headingStyles": [{"level": 2}, {"level": 1, "indicators": ["bold", 3]}]}
        )
        assert [s.level for s in hierarchy.heading_styles] == [1, 2]
        assert hierarchy.heading_styles[0].indicators == ["bold"]

    def test_sections_kept(self):
        """Should keep matter ranges that do not overlap the body."""
        sections = validate_sections(
            {
                "frontMatter": {"start": 1, "end": 2},
                "body": {"start": 3, "end": 10},
                "backMatter": {"start": 11, "end": 12},
            },
            12,
        )
        assert sections.front_matter == PageRange(start=1, end=2)
        assert sections.body == PageRange(start=3, end=10)
        assert sections.back_matter == PageRange(start=11, end=12)

    def test_overlapping_matter_dropped(self):
        """Should drop front or back matter overlapping the body."""
        sections = validate_sections(
            {
                "frontMatter": {"start": 1, "end": 3},
                "body": {"start": 2, "end": 10},
                "backMatter": {"start": 9, "end": 12},
            },
            12,
        )
        assert sections.front_matter is None
        assert sections.back_matter is None
        assert sections.body == PageRange(start=2, end=10)

    def test_body_defaults_between_matter(self):
        """Should place a missing body between front and back matter."""
        sections = validate_sections(
            {"frontMatter": {"start": 1, "end": 2}, "backMatter": {"start": 11, "end": 12}}, 12
        )
        assert sections.body == PageRange(start=3, end=10)

    def test_inverted_body_spans_document(self):
        """Should reset an inverted body range to the whole document."""
        sections = validate_sections({"body": {"start": 8, "end": 3}}, 12)
        assert sections.body == PageRange(start=1, end=12)

    def test_cross_references(self):
        """Should default unknown footnote styles and empty citations."""
        refs = validate_cross_references({"footnoteStyle": "margin", "citationStyle": ""})
        assert refs.footnote_style == CrossReferenceStyle.INLINE
        assert refs.citation_style is None


class TestParseStructureResponse:
    def test_parses_answer(self):
        """Should build a profile from a valid answer."""
        profile = parse_structure_response(f"Sure!\n{STRUCTURE_JSON}", 4)

        assert profile.document_type == DocumentType.REPORT
        assert profile.toc.explicit is True
        assert profile.toc.entries[0].title == "Intro"
        assert profile.hierarchy.max_depth == 3
        assert profile.cross_references.citation_style == "APA"

    def test_no_json(self):
        """Should raise StructureAnalysisError without a JSON object."""
        with pytest.raises(StructureAnalysisError):
            parse_structure_response("I could not read it", 4)


class TestAnalyzeStructure:
    """Tests for analyze_structure."""

    @pytest.mark.asyncio
    async def test_filtered_samples_in_prompt(self):
        """Should send filtered text samples and return the parsed profile."""
        render = FakeRenderService([f"ACME Corp\nChapter {i} text." for i in range(1, 5)])
        ai = FakeAIService(chat_responses=[STRUCTURE_JSON])

        profile = await analyze_structure(render, ai, ACME_LAYOUT)

        assert profile.document_type == DocumentType.REPORT
        prompt = ai.prompts[0]
        assert "=== PAGE 4 ===\nChapter 4 text." in prompt
        assert "ACME Corp" not in prompt

    @pytest.mark.asyncio
    async def test_failure_yields_default_profile(self):
        """Should fall back to the default profile on an unusable answer."""
        render = FakeRenderService(["a", "b", "c"])
        ai = FakeAIService(chat_responses=["not json"])

        profile = await analyze_structure(render, ai, LayoutProfile())

        assert profile == default_structure_profile(3)
        assert profile.sections.body == PageRange(start=1, end=3)

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        """Should not turn cancellation into the default profile."""
        render = FakeRenderService(["a"])
        ai = FakeAIService()
        ai.chat = AsyncMock(side_effect=ConversionCancelled("stop"))

        with pytest.raises(ConversionCancelled):
            await analyze_structure(render, ai, LayoutProfile())
