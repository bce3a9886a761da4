"""Classify and regions command implementations."""

import asyncio
from pathlib import Path

from rich.console import Console
from rich.table import Table

from pdf2md.core.classifier import classify
from pdf2md.core.pdf_service import PdfRenderService
from pdf2md.models.complexity import ComplexityAssessment
from pdf2md.models.document import VectorRegion


def display_assessment(pdf_path: Path, assessment: ComplexityAssessment, console: Console) -> None:
    table = Table(
        title=f"Complexity: {pdf_path.name}", show_header=True, header_style="bold cyan"
    )
    table.add_column("Factor", style="dim")
    table.add_column("Value", style="white")

    factors = assessment.factors
    table.add_row("Level", f"[bold]{assessment.level.value}[/]")
    table.add_row("Score", f"{assessment.score}/100")
    table.add_row("Recommended pipeline", f"[green]{assessment.recommended_pipeline.value}[/]")
    table.add_row("Estimated time", f"~{assessment.estimated_seconds}s")
    table.add_section()
    table.add_row("Pages", str(factors.page_count))
    table.add_row("Table of contents", "yes" if factors.has_toc else "no")
    table.add_row("Images (est.)", str(factors.estimated_images))
    table.add_row("Tables (est.)", str(factors.estimated_tables))
    table.add_row("Vector graphics", "yes" if factors.has_vector_graphics else "no")
    table.add_row("Text density", factors.text_density.value)
    table.add_row("Avg. chars per page", f"{factors.avg_chars_per_page:,}")
    table.add_row("Structure depth", str(factors.structure_depth))
    table.add_row("Code", "yes" if factors.has_code else "no")
    table.add_row("Math", "yes" if factors.has_math else "no")

    console.print()
    console.print(table)

    if assessment.reasoning:
        console.print()
        for reason in assessment.reasoning:
            console.print(f"  [dim]-[/] {reason}")
    console.print()


def execute_classify(pdf_path: Path, console: Console) -> ComplexityAssessment:
    """Classify a PDF and print the assessment."""
    with PdfRenderService(pdf_path) as render:
        assessment = asyncio.run(classify(render))
    display_assessment(pdf_path, assessment, console)
    return assessment


def display_regions(page: int, regions: list[VectorRegion], console: Console) -> None:
    if not regions:
        console.print(f"[dim]No vector regions on page {page}[/]")
        return

    table = Table(
        title=f"Vector Regions (page {page})", show_header=True, header_style="bold cyan"
    )
    table.add_column("#", style="dim", width=4)
    table.add_column("Type", style="white")
    table.add_column("Position", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Paths", justify="right", style="green")
    table.add_column("Complexity", justify="right", style="dim")

    for i, region in enumerate(regions, 1):
        x, y, width, height = region.bbox
        table.add_row(
            str(i),
            region.type.value,
            f"{x:.0f}, {y:.0f}",
            f"{width:.0f} x {height:.0f}",
            str(region.path_count),
            f"{region.complexity:.2f}",
        )

    console.print(table)


def execute_regions(pdf_path: Path, page: int, console: Console) -> list[VectorRegion]:
    """Detect and list vector drawing clusters on one page."""
    with PdfRenderService(pdf_path) as render:
        regions = asyncio.run(render.detect_vector_regions(page))
    display_regions(page, regions, console)
    return regions
