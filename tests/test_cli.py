"""Tests for the command-line interface."""

from pathlib import Path

import pytest
from rich.console import Console
from typer.testing import CliRunner
from unittest.mock import patch

from pdf2md.cli import app
from pdf2md.commands.convert import display_summary, get_default_output_path
from pdf2md.core.errors import APIError
from pdf2md.models.complexity import (
    ComplexityAssessment,
    ComplexityFactors,
    ComplexityLevel,
    PipelineType,
)
from pdf2md.models.results import ConversionMetadata, ErrorRecord, RobustConversionResult

runner = CliRunner()


@pytest.fixture
def pdf_file(tmp_path) -> Path:
    path = tmp_path / "report.pdf"
    path.write_bytes(b"%PDF-1.4\n")
    return path


def robust_result(errors: list[ErrorRecord]) -> RobustConversionResult:
    return RobustConversionResult(
        markdown="# Report",
        metadata=ConversionMetadata(
            page_count=3, pipeline=PipelineType.LIGHT, complexity=ComplexityLevel.MODERATE
        ),
        complexity=ComplexityAssessment(
            level=ComplexityLevel.MODERATE,
            score=40,
            factors=ComplexityFactors(page_count=3),
            recommended_pipeline=PipelineType.LIGHT,
            estimated_seconds=12,
            reasoning=["Moderate document"],
        ),
        errors=errors,
        full_success=not errors,
    )


class TestConvertCommand:
    """Tests for `pdf2md convert`."""

    def test_passes_options(self, pdf_file):
        """Should hand the parsed options to execute_convert."""
        with patch(
            "pdf2md.commands.convert.execute_convert", return_value=pdf_file.with_suffix(".md")
        ) as execute:
            result = runner.invoke(
                app, ["convert", str(pdf_file), "-p", "light", "--no-robust", "-c", "2"]
            )

        assert result.exit_code == 0
        kwargs = execute.call_args.kwargs
        assert kwargs["pipeline"] == PipelineType.LIGHT
        assert kwargs["robust"] is False
        assert kwargs["concurrency"] == 2
        assert kwargs["output_path"] is None

    def test_error_exits_with_one(self, pdf_file):
        """Should print the error and exit with status 1."""
        with patch(
            "pdf2md.commands.convert.execute_convert", side_effect=RuntimeError("gemini missing")
        ):
            result = runner.invoke(app, ["convert", str(pdf_file)])

        assert result.exit_code == 1
        assert "Error: gemini missing" in result.output

    def test_rejects_other_formats(self, tmp_path):
        """Should refuse files that are not PDFs."""
        path = tmp_path / "notes.txt"
        path.write_text("hello")

        result = runner.invoke(app, ["classify", str(path)])

        assert result.exit_code == 1
        assert "Unsupported file format" in result.output

    def test_missing_file(self, tmp_path):
        """Should fail argument validation for a missing file."""
        result = runner.invoke(app, ["regions", str(tmp_path / "missing.pdf")])
        assert result.exit_code != 0


class TestConvertHelpers:
    def test_default_output_path(self):
        """Should write the Markdown next to the PDF."""
        assert get_default_output_path(Path("/docs/report.pdf")) == Path("/docs/report.md")

    def test_summary_lists_errors(self):
        """Should list recorded errors in the summary panel."""
        console = Console(record=True, width=120)
        result = robust_result(
            [ErrorRecord(context="convert_page:2", error=APIError("bad request"), recovered=True)]
        )

        display_summary(result, Path("report.md"), console)

        text = console.export_text()
        assert "Pipeline: light" in text
        assert "1 error(s) during conversion" in text
        assert "convert_page:2: bad request (recovered)" in text
