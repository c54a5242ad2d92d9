"""
CLI Interface
=============
Command-line interface for the question/answer parser.

Usage:
    python -m qaparser.cli parse <pdf_or_txt> [options]
    python -m qaparser.cli batch <directory> [options]
    python -m qaparser.cli validate <json_path>
    python -m qaparser.cli info <pdf_path>
    python -m qaparser.cli lines <pdf_or_txt>
"""

from __future__ import annotations

import json
import os
import sys
from dataclasses import replace
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)
from rich.table import Table

from . import __version__
from .engine import ParserConfig, ParserEngine, make_document_id
from .extractor import ExtractionError, PageExtractor, join_pages
from .normalizer import DEFAULT_NOISE, NoiseConfig, is_noise, split_lines
from .state_machine import FOLLOW_UP_POLICIES, NumberedLine, classify

console = Console()

_noise_config_option = click.option(
    "--noise-config",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="JSON file with header_prefixes / provenance_substrings / page_label_pattern",
)


@click.group()
@click.version_option(version=__version__, prog_name="qaparser")
def cli():
    """OCR Question/Answer Parser: noisy exam text to structured records."""
    pass


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--output", "-o",
    default="output",
    help="Output directory for parsed data",
)
@click.option(
    "--name", "-n",
    default="",
    help="Document name (defaults to filename)",
)
@click.option(
    "--doc-id",
    default=None,
    help="Custom document ID for output file naming",
)
@click.option(
    "--page-start",
    default=None,
    type=int,
    help="Start page (1-indexed, PDF only)",
)
@click.option(
    "--page-end",
    default=None,
    type=int,
    help="End page (1-indexed, inclusive, PDF only)",
)
@_noise_config_option
@click.option(
    "--follow-up",
    default="promote",
    type=click.Choice(sorted(FOLLOW_UP_POLICIES)),
    help="How an unnumbered line after an answer is read",
)
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level",
)
@click.option(
    "--log-file",
    default=None,
    help="Path to log file",
)
@click.option(
    "--no-raw-text",
    is_flag=True,
    default=False,
    help="Skip saving raw text snapshot",
)
@click.option(
    "--json-output",
    is_flag=True,
    default=False,
    help="Output only the question array to stdout (for programmatic use)",
)
def parse(
    path: str,
    output: str,
    name: str,
    doc_id: str,
    page_start: int,
    page_end: int,
    noise_config: str,
    follow_up: str,
    log_level: str,
    log_file: str,
    no_raw_text: bool,
    json_output: bool,
):
    """Parse a PDF (or extracted .txt) into question/answer records."""

    if json_output:
        # Suppress console output for JSON mode
        log_level = "ERROR"

    page_range = None
    if page_start is not None or page_end is not None:
        page_range = (page_start or 1, page_end or 99999)

    config = ParserConfig(
        output_dir=output,
        document_name=name,
        document_id=doc_id,
        page_range=page_range,
        noise_config_path=noise_config,
        follow_up_policy=follow_up,
        log_level=log_level,
        log_file=log_file,
        save_raw_text=not no_raw_text,
    )

    if not json_output:
        console.print()
        console.print(
            Panel.fit(
                f"[bold cyan]QA Parser v{__version__}[/]\n"
                f"[dim]Parsing: {os.path.basename(path)}[/]",
                border_style="cyan",
            )
        )
        console.print()

    try:
        engine = ParserEngine(config)

        if json_output:
            result = engine.parse_file(path)
        else:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                TimeElapsedColumn(),
                console=console,
            ) as progress:
                task = progress.add_task("Extracting pages...", total=None)

                def on_page(current, total):
                    progress.update(task, completed=current, total=total)

                result = engine.parse_file(path, progress_callback=on_page)
                progress.update(task, description="Parsed")
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/] {escape(str(e))}")
        sys.exit(1)
    except ExtractionError as e:
        console.print(f"[red]Extraction failed:[/] {escape(str(e))}")
        sys.exit(1)
    except ValueError as e:
        console.print(f"[red]Error:[/] {escape(str(e))}")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Unexpected error:[/] {escape(str(e))}")
        if log_level == "DEBUG":
            console.print_exception()
        sys.exit(1)

    if json_output:
        # Output clean JSON to stdout
        click.echo(json.dumps(
            result.questions_dump(),
            indent=2,
            ensure_ascii=False,
        ))
        return

    try:
        _display_results(result)
    except UnicodeEncodeError:
        # Windows console may not support special chars
        print(f"Parse complete: {len(result.questions)} questions")
        print(f"Success rate: {result.validation.success_rate}%")


@cli.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.option("--output", "-o", default="output", help="Output directory")
@_noise_config_option
@click.option(
    "--follow-up",
    default="promote",
    type=click.Choice(sorted(FOLLOW_UP_POLICIES)),
    help="How an unnumbered line after an answer is read",
)
@click.option("--log-level", default="WARNING", help="Logging level")
@click.option(
    "--include-txt",
    is_flag=True,
    default=False,
    help="Also parse .txt files holding extracted text",
)
def batch(
    directory: str,
    output: str,
    noise_config: str,
    follow_up: str,
    log_level: str,
    include_txt: bool,
):
    """Batch parse all PDFs in a directory."""

    files = sorted(Path(directory).glob("*.pdf"))
    if include_txt:
        files = sorted(files + list(Path(directory).glob("*.txt")))

    if not files:
        console.print(f"[yellow]No input files found in: {directory}[/]")
        return

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Batch QA Parser[/]\n"
            f"[dim]Found {len(files)} files in: {directory}[/]",
            border_style="cyan",
        )
    )
    console.print()

    config = ParserConfig(
        output_dir=output,
        noise_config_path=noise_config,
        follow_up_policy=follow_up,
        log_level=log_level,
    )
    # Fail once up front on a bad noise config or policy
    try:
        ParserEngine(config)
    except ValueError as e:
        console.print(f"[red]Error:[/] {escape(str(e))}")
        sys.exit(1)

    results = []
    errors = []
    used_ids = set()

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeRemainingColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Processing files...", total=len(files))

        for file in files:
            progress.update(task, description=f"Parsing: {escape(file.name)}")

            # Distinct file names can sanitize to the same id; suffix repeats
            base_id = make_document_id(file.stem)
            doc_id = base_id
            suffix = 2
            while doc_id in used_ids:
                doc_id = f"{base_id}_{suffix}"
                suffix += 1
            used_ids.add(doc_id)

            file_engine = ParserEngine(replace(config, document_id=doc_id))
            try:
                results.append((file.name, file_engine.parse_file(str(file))))
            except (ExtractionError, OSError, ValueError) as e:
                errors.append((file.name, str(e)))

            progress.advance(task)

    _display_batch_summary(results, errors)


@cli.command()
@click.argument("json_path", type=click.Path(exists=True, dir_okay=False))
def validate(json_path: str):
    """Display the validation report of a previously generated parse result."""

    with open(json_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Validation Report[/]\n"
            f"[dim]File: {json_path}[/]",
            border_style="cyan",
        )
    )

    # Accept either a full *_parsed.json or a bare *_validation.json
    validation = data.get("validation", data) if isinstance(data, dict) else {}
    _display_validation_table(validation)


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=True, dir_okay=False))
def info(pdf_path: str):
    """Display PDF file information."""

    import fitz

    table = Table(title="PDF Information", border_style="cyan")
    table.add_column("Property", style="bold")
    table.add_column("Value")

    try:
        with fitz.open(pdf_path) as doc:
            table.add_row("File", escape(os.path.basename(pdf_path)))
            table.add_row("Pages", str(doc.page_count))
            table.add_row(
                "File Size",
                f"{os.path.getsize(pdf_path) / 1024 / 1024:.2f} MB",
            )

            metadata = doc.metadata or {}
            for key in ["title", "author", "subject", "creator", "producer"]:
                val = metadata.get(key, "")
                if val:
                    table.add_row(key.title(), escape(val))

            # Pages without a text layer need OCR before they can be parsed
            empty_pages = sum(1 for page in doc if not page.get_text().strip())
            table.add_row("Pages Without Text", str(empty_pages))
    except Exception as e:
        console.print(f"[red]Cannot open PDF:[/] {escape(str(e))}")
        sys.exit(1)

    console.print()
    console.print(table)
    console.print()


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@_noise_config_option
@click.option(
    "--show-noise",
    is_flag=True,
    default=False,
    help="Also list the lines dropped as noise",
)
def lines(path: str, noise_config: str, show_noise: bool):
    """Show how each line of a document is classified before parsing."""

    try:
        if Path(path).suffix.lower() == ".txt":
            raw_text = Path(path).read_text(encoding="utf-8")
        else:
            raw_text = join_pages(PageExtractor().extract_pages(path))
        noise = NoiseConfig.from_file(noise_config) if noise_config else DEFAULT_NOISE
    except (ExtractionError, OSError, ValueError) as e:
        console.print(f"[red]Error:[/] {escape(str(e))}")
        sys.exit(1)

    table = Table(title=os.path.basename(path), border_style="cyan")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Kind", style="bold")
    table.add_column("Id", justify="right")
    table.add_column("Text")

    kept = dropped = 0
    for idx, line in enumerate(split_lines(raw_text), start=1):
        if is_noise(line, noise):
            dropped += 1
            if show_noise:
                table.add_row(str(idx), "[dim]noise[/]", "", f"[dim]{escape(line)}[/]")
            continue

        kept += 1
        token = classify(line)
        if isinstance(token, NumberedLine):
            table.add_row(str(idx), "[cyan]numbered[/]", str(token.id), escape(token.content))
        else:
            table.add_row(str(idx), "plain", "", escape(token.text))

    console.print(table)
    console.print(f"[bold]Kept:[/] {kept} lines, [bold]noise:[/] {dropped} lines")


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _display_results(result):
    """Display parse results in formatted tables."""
    console.print()

    doc = result.document
    table = Table(title="Document Information", border_style="cyan")
    table.add_column("Property", style="bold")
    table.add_column("Value")
    table.add_row("Name", doc.name or "(auto)")
    table.add_row("Source File", doc.source_file or "(text)")
    table.add_row("Total Pages", str(doc.total_pages))
    if doc.file_hash:
        table.add_row("File Hash", doc.file_hash[:16] + "...")
    console.print(table)
    console.print()

    _display_validation_table(result.validation.model_dump())

    pv = result.parse_version
    console.print(
        f"[dim]Parser v{pv.parser_version} | "
        f"Lines: {pv.filtered_line_count}/{pv.raw_line_count} | "
        f"Questions: {pv.structured_question_count} | "
        f"Timestamp: {pv.parse_timestamp}[/]"
    )
    console.print()


def _display_validation_table(validation: dict):
    """Display validation report as a rich table."""
    table = Table(title="Validation Report", border_style="green")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_column("Status", justify="center")

    total = validation.get("total_questions_detected", 0)
    answered = validation.get("answered_successfully", 0)
    rate = validation.get("success_rate", 0)

    def status_icon(count, threshold=0):
        if count <= threshold:
            return "[green]✓[/]"
        return "[red]✗[/]"

    table.add_row(
        "Total Questions Detected",
        str(total),
        "[green]✓[/]" if total > 0 else "[red]✗[/]",
    )
    table.add_row(
        "Answered Successfully",
        f"{answered} ({rate}%)",
        "[green]✓[/]" if rate >= 90 else "[yellow]⚠[/]",
    )

    for label, key in [
        ("Missing Question Ids", "missing_question_ids"),
        ("Duplicate Question Ids", "duplicate_question_ids"),
        ("Questions Missing Answer", "questions_missing_answer"),
    ]:
        values = validation.get(key, [])
        table.add_row(label, str(len(values)), status_icon(len(values)))

    # Recovery is expected on these documents, so it only warns
    recovered = validation.get("synthesized_question_ids", [])
    table.add_row(
        "Recovered Questions",
        str(len(recovered)),
        "[green]✓[/]" if not recovered else "[yellow]⚠[/]",
    )
    table.add_row(
        "Skipped Lines",
        str(validation.get("skipped_lines", 0)),
        "[dim]-[/]",
    )

    console.print(table)
    console.print()


def _display_batch_summary(results, errors):
    """Display batch processing summary."""
    console.print()

    table = Table(title="Batch Processing Summary", border_style="cyan")
    table.add_column("File", style="bold")
    table.add_column("Questions", justify="right")
    table.add_column("Success Rate", justify="right")
    table.add_column("Recovered", justify="right")
    table.add_column("Status", justify="center")

    total_questions = 0
    total_recovered = 0

    for name, result in results:
        q_count = len(result.questions)
        rate = result.validation.success_rate
        recovered = len(result.validation.synthesized_question_ids)

        total_questions += q_count
        total_recovered += recovered

        status = "[green]✓[/]" if rate >= 90 else "[yellow]⚠[/]"
        table.add_row(escape(name), str(q_count), f"{rate}%", str(recovered), status)

    for name, error in errors:
        table.add_row(escape(name), "-", "-", "-", "[red]✗ FAILED[/]")

    console.print(table)
    console.print()
    console.print(
        f"[bold]Total:[/] {total_questions} questions from "
        f"{len(results)} files, {total_recovered} recovered, "
        f"{len(errors)} failures"
    )
    for name, error in errors:
        console.print(f"  [red]{escape(name)}:[/] {escape(error)}")
    console.print()


# ─── Entry point (for python -m qaparser.cli) ─────────────────────────────────


if __name__ == "__main__":
    cli()
