"""Main CLI application."""

import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from pdf2md.config import get_settings
from pdf2md.models.complexity import PipelineType

app = typer.Typer(
    name="pdf2md",
    help="Convert PDF documents to Markdown with AI page understanding.",
    add_completion=False,
)

console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Route log records through rich. ``--verbose`` forces DEBUG."""
    level = logging.DEBUG if verbose else get_settings().log_level.upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )
    logging.getLogger("pdfminer").setLevel(logging.ERROR)
    logging.getLogger("pypdf").setLevel(logging.ERROR)


PdfArgument = Annotated[
    Path,
    typer.Argument(
        help="Path to the PDF file",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
]


def _check_pdf(pdf_path: Path) -> None:
    if pdf_path.suffix.lower() != ".pdf":
        console.print(f"[red]Unsupported file format: {pdf_path.suffix}[/]")
        console.print("[dim]Supported formats: .pdf[/]")
        raise typer.Exit(1)


@app.command()
def convert(
    pdf_path: PdfArgument,
    output: Annotated[
        Optional[Path],
        typer.Option(
            "--output",
            "-o",
            help="Output Markdown file (default: {pdf_name}.md next to the PDF)",
        ),
    ] = None,
    pipeline: Annotated[
        Optional[PipelineType],
        typer.Option(
            "--pipeline",
            "-p",
            help="Force a pipeline instead of the recommended one",
            case_sensitive=False,
        ),
    ] = None,
    dpi: Annotated[
        Optional[int],
        typer.Option(
            "--dpi",
            help="Render resolution for page images (default: PDF2MD_DPI or 150)",
            min=36,
            max=600,
        ),
    ] = None,
    parallel: Annotated[
        bool,
        typer.Option(
            "--parallel",
            help="Convert windows concurrently (full pipeline only)",
        ),
    ] = False,
    concurrency: Annotated[
        Optional[int],
        typer.Option(
            "--concurrency",
            "-c",
            help="Maximum concurrent AI requests (default: PDF2MD_CONCURRENCY or 3)",
            min=1,
        ),
    ] = None,
    robust: Annotated[
        bool,
        typer.Option(
            "--robust/--no-robust",
            help="Retry failed AI calls and keep going past failed pages",
        ),
    ] = True,
    model: Annotated[
        Optional[str],
        typer.Option(
            "--model",
            "-m",
            help="Gemini model to use (default: PDF2MD_GEMINI_MODEL)",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Show debug logging",
        ),
    ] = False,
) -> None:
    """Convert a PDF document to Markdown."""
    setup_logging(verbose)
    _check_pdf(pdf_path)

    try:
        from pdf2md.commands.convert import execute_convert

        output_path = execute_convert(
            pdf_path=pdf_path,
            output_path=output,
            pipeline=pipeline,
            dpi=dpi,
            parallel=parallel,
            concurrency=concurrency,
            robust=robust,
            model=model,
            console=console,
        )
    except Exception as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1)

    console.print(f"[green]Wrote {output_path}[/]")


@app.command()
def classify(pdf_path: PdfArgument) -> None:
    """Assess document complexity and show the recommended pipeline."""
    setup_logging()
    _check_pdf(pdf_path)

    try:
        from pdf2md.commands.inspect import execute_classify

        execute_classify(pdf_path=pdf_path, console=console)
    except Exception as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1)


@app.command()
def regions(
    pdf_path: PdfArgument,
    page: Annotated[
        int,
        typer.Option(
            "--page",
            "-n",
            help="Page number (1-based)",
            min=1,
        ),
    ] = 1,
) -> None:
    """List vector graphics regions (diagrams, charts, logos) on a page."""
    setup_logging()
    _check_pdf(pdf_path)

    try:
        from pdf2md.commands.inspect import execute_regions

        execute_regions(pdf_path=pdf_path, page=page, console=console)
    except Exception as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
