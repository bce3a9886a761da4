"""Convert command implementation."""

import asyncio
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from pdf2md.config import get_settings
from pdf2md.converter import (
    ConversionOptions,
    RobustConversionOptions,
    convert_document,
    convert_document_robust,
)
from pdf2md.core.gemini_service import GeminiCliService
from pdf2md.core.pdf_service import PdfRenderService
from pdf2md.models.complexity import PipelineType
from pdf2md.models.results import ConversionResult, RobustConversionResult


def get_default_output_path(pdf_path: Path) -> Path:
    """Markdown file next to the PDF with the same stem."""
    return pdf_path.with_suffix(".md")


def display_summary(
    result: ConversionResult, output_path: Path, console: Console
) -> None:
    """Print a panel describing the finished conversion."""
    metadata = result.metadata
    lines = [
        f"[bold]{output_path.name}[/]",
        "",
        f"[dim]Pipeline:[/] {metadata.pipeline.value}",
        f"[dim]Complexity:[/] {metadata.complexity.value} (score {result.complexity.score})",
        f"[dim]Pages:[/] {metadata.page_count}",
        f"[dim]Language:[/] {metadata.language}",
        f"[dim]Table of contents:[/] {'yes' if metadata.has_toc else 'no'}",
        f"[dim]Time:[/] {metadata.processing_time_ms / 1000:.1f}s",
    ]

    if isinstance(result, RobustConversionResult) and result.errors:
        lines.append("")
        lines.append(f"[yellow]{len(result.errors)} error(s) during conversion:[/]")
        for record in result.errors[:10]:
            status = "recovered" if record.recovered else "failed"
            lines.append(f"[yellow]  {record.context}: {record.error} ({status})[/]")
        if len(result.errors) > 10:
            lines.append(f"[dim]  ... and {len(result.errors) - 10} more[/]")

    success = not isinstance(result, RobustConversionResult) or result.full_success
    border = "green" if success else "yellow"
    console.print()
    console.print(Panel("\n".join(lines), title="Conversion Complete", border_style=border))


def execute_convert(
    pdf_path: Path,
    output_path: Path | None,
    pipeline: PipelineType | None,
    dpi: int | None,
    parallel: bool,
    concurrency: int | None,
    robust: bool,
    model: str | None,
    console: Console,
) -> Path:
    """Convert a PDF to Markdown and write it to disk.

    Returns:
        Path of the written Markdown file
    """
    settings = get_settings()
    final_output = output_path or get_default_output_path(pdf_path)

    ai = GeminiCliService(
        model=model or settings.gemini_model,
        cli=settings.gemini_cli,
        timeout=settings.request_timeout,
    )

    option_values = dict(
        dpi=dpi or settings.dpi,
        force_pipeline=pipeline,
        parallel=parallel,
        concurrency=concurrency or settings.concurrency,
        max_pages_per_window=settings.max_pages_per_window,
    )

    with PdfRenderService(pdf_path) as render:
        console.print(f"[dim]Converting {pdf_path.name} ({render.page_count()} pages)[/]")

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Starting...", total=100)

            def on_progress(status: str, current: int, total: int) -> None:
                progress.update(task, description=status[:60], completed=current, total=total)

            if robust:
                options = RobustConversionOptions(on_progress=on_progress, **option_values)
                result = asyncio.run(convert_document_robust(render, ai, options))
            else:
                options = ConversionOptions(on_progress=on_progress, **option_values)
                result = asyncio.run(convert_document(render, ai, options))

    final_output.parent.mkdir(parents=True, exist_ok=True)
    final_output.write_text(result.markdown, encoding="utf-8")

    display_summary(result, final_output, console)
    return final_output
