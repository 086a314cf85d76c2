"""
Command-line interface for the epistemic marker engine.

Usage:
    epistemic init                          # Create the store schema
    epistemic save <path>                   # Assign ids, update store and semantic block
    epistemic check <path>                  # Compare semantic block with the store
    epistemic resync <path>                 # Rebuild the block from the store
    epistemic recover <path>                # Replay identifiers lost by an interrupted save
    epistemic query <path>                  # Answer {{QUERY: ...}} commands
    epistemic link <path> <source> <target> # Relate two annotations
    epistemic markers <path>                # List parsed markers
    epistemic shortcodes                    # List active shortcodes
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from epistemic_markers.errors.types import StoreError
from epistemic_markers.lines import line_of
from epistemic_markers.registry import ShortcodeRegistry
from epistemic_markers.store.repository import AnnotationStore
from epistemic_markers.tokenizer import tokenize, unknown_markers, validate_marker
from sync_pipeline.stages.orchestrator import DocumentSyncOrchestrator

app = typer.Typer(
    name="epistemic",
    help="Inline epistemic markers, identifier injection and semantic block sync",
)
console = Console()


@app.callback()
def main_options(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s %(levelname)s %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)


def _session_factory():
    from epistemic_core.db.session import get_session_factory

    return get_session_factory()


@contextmanager
def _orchestrator() -> Iterator[DocumentSyncOrchestrator]:
    with _session_factory()() as session:
        yield DocumentSyncOrchestrator(AnnotationStore(session), ShortcodeRegistry.from_settings())


def _read(path: Path) -> str:
    if not path.is_file():
        console.print(f"[red]No such file: {path}[/red]")
        raise typer.Exit(1)
    return path.read_text(encoding="utf-8")


def _print_warnings(warnings) -> None:
    for issue in warnings:
        console.print(f"  [yellow]![/yellow] {escape(issue.to_log_message())}")


@app.command()
def init():
    """
    Create the store tables.

    Uses the database configured by EPISTEMIC_DATABASE_URL.
    """
    from epistemic_core.db.session import init_db
    from epistemic_core.settings import settings

    console.print("[yellow]Creating epistemic schema...[/yellow]")
    console.print(f"  Database: {settings.database_url}")
    init_db()
    console.print("[green]✓ Schema ready[/green]")


@app.command()
def save(
    path: Path = typer.Argument(..., help="Markdown note to save"),
    title: Optional[str] = typer.Option(None, "--title", "-t", help="Title for a new semantic block"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would change without writing the file"),
):
    """
    Assign identifiers to new markers and sync the store and semantic block.
    """
    text = _read(path)

    with _orchestrator() as orchestrator:
        if dry_run:
            result = orchestrator.preview(text, str(path), title or path.stem)
        else:
            try:
                result = orchestrator.save_file(path, title)
            except StoreError as exc:
                console.print(f"[red]{escape(str(exc))}[/red]")
                console.print("[yellow]Run 'epistemic recover' on the note to finish the save.[/yellow]")
                raise typer.Exit(1)

    table = Table(title=f"Saved {path.name}", show_header=True, header_style="bold cyan")
    table.add_column("Created", justify="right")
    table.add_column("Updated", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_row(str(result.created), str(result.updated), str(result.failed), str(result.skipped))
    console.print(table)
    _print_warnings(result.warnings)

    if dry_run:
        console.print("[dim]Dry run: file not written[/dim]")
    if not result.success:
        raise typer.Exit(1)


@app.command()
def check(
    path: Path = typer.Argument(..., help="Markdown note to check"),
    strict: bool = typer.Option(False, "--strict", help="Exit with status 1 when drift is found"),
):
    """
    Compare the note's semantic block with the store.
    """
    text = _read(path)

    with _orchestrator() as orchestrator:
        report = orchestrator.check(text, str(path))

    console.print(f"[green]Synced:[/green] {len(report.synced)}")
    if report.block_only:
        console.print(f"[yellow]Only in block:[/yellow] {len(report.block_only)}")
        for annotation in report.block_only:
            console.print(f"  {annotation.id}  [dim]{annotation.kind}[/dim]  {escape(annotation.text[:60])}")
    if report.store_only:
        console.print(f"[yellow]Only in store:[/yellow] {len(report.store_only)}")
        for record in report.store_only:
            console.print(f"  {record.id}  [dim]{record.kind}[/dim]  {escape(record.content[:60])}")
    _print_warnings(report.out_of_range)

    if not report.has_drift:
        console.print("[green]✓ Block and store agree[/green]")
    elif strict:
        raise typer.Exit(1)


@app.command()
def resync(
    path: Path = typer.Argument(..., help="Markdown note to resync"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask before dropping block-only annotations"),
):
    """
    Rebuild the semantic block's annotations from the store.

    The store wins: annotations that exist only in the block are dropped.
    """
    text = _read(path)

    with _orchestrator() as orchestrator:
        report = orchestrator.check(text, str(path))
        if report.block_only and not yes:
            console.print(f"[yellow]{len(report.block_only)} annotation(s) exist only in the block and will be lost.[/yellow]")
            typer.confirm("Continue?", abort=True)
        new_text = orchestrator.resync(text, str(path))

    path.write_text(new_text, encoding="utf-8")
    console.print(f"[green]✓ Block rebuilt from store[/green] ({len(report.synced) + len(report.store_only)} annotations)")


@app.command()
def recover(
    path: Path = typer.Argument(..., help="Markdown note to recover"),
):
    """
    Inject identifiers that the store assigned but the note never received.
    """
    text = _read(path)

    with _orchestrator() as orchestrator:
        result = orchestrator.recover(text, str(path))
        if result.recovered:
            path.write_text(result.text, encoding="utf-8")
        try:
            orchestrator.confirm_written(result.source_file, result.resolved)
        except StoreError as exc:
            console.print(f"[red]{exc}[/red]")
            raise typer.Exit(1)

    console.print(f"Recovered: {len(result.recovered)}")
    console.print(f"Already in note: {len(result.already_applied)}")
    if result.unmatched:
        console.print(f"[yellow]No matching marker: {len(result.unmatched)}[/yellow]")
        for node_id in result.unmatched:
            console.print(f"  {node_id}")


@app.command()
def query(
    path: Path = typer.Argument(..., help="Markdown note containing {{QUERY: ...}} commands"),
):
    """
    Answer query commands and insert the results as callouts.
    """
    text = _read(path)

    with _orchestrator() as orchestrator:
        new_text = orchestrator.run_queries(text, str(path))

    if new_text == text:
        console.print("[dim]No unanswered queries[/dim]")
        return
    path.write_text(new_text, encoding="utf-8")
    console.print("[green]✓ Query results inserted[/green]")


@app.command()
def link(
    path: Path = typer.Argument(..., help="Markdown note holding the semantic block"),
    source: str = typer.Argument(..., help="Source annotation or store id"),
    target: str = typer.Argument(..., help="Target annotation or store id"),
    relation: str = typer.Option("SUPPORTS", "--type", "-r", help="Relation type, e.g. SUPPORTS, REFUTES"),
    weight: float = typer.Option(1.0, "--weight", "-w", help="Edge weight between 0 and 1"),
):
    """
    Relate two annotations in the store and in the semantic block.
    """
    from epistemic_core.db.enums import RelationType

    try:
        relation_type = RelationType(relation.upper())
    except ValueError:
        choices = ", ".join(r.value for r in RelationType)
        console.print(f"[red]Invalid relation type: {relation}. Use one of: {choices}[/red]")
        raise typer.Exit(1)

    text = _read(path)

    with _orchestrator() as orchestrator:
        try:
            new_text = orchestrator.link(text, str(path), source, target, relation_type, weight=weight)
        except StoreError as exc:
            console.print(f"[red]{exc}[/red]")
            raise typer.Exit(1)

    path.write_text(new_text, encoding="utf-8")
    console.print(f"[green]✓ {source} {relation_type.value} {target}[/green]")


@app.command()
def markers(
    path: Path = typer.Argument(..., help="Markdown note to parse"),
):
    """
    List the markers found in a note.
    """
    text = _read(path)
    registry = ShortcodeRegistry.from_settings()
    nodes = tokenize(text, registry)

    table = Table(title=f"Markers in {path.name}", show_header=True, header_style="bold cyan")
    table.add_column("Line", justify="right")
    table.add_column("Code", style="cyan")
    table.add_column("Kind")
    table.add_column("Identifier")
    table.add_column("Content")

    for node in nodes:
        identifier = node.identifier or "[dim]-[/dim]"
        content = node.content if len(node.content) <= 60 else node.content[:57] + "..."
        table.add_row(str(line_of(text, node.start_offset)), node.code, node.kind, identifier, escape(content))

    console.print(table)

    issues = unknown_markers(text, registry, nodes)
    for node in nodes:
        issues.extend(validate_marker(node, registry))
    _print_warnings(issues)


@app.command()
def shortcodes():
    """
    List the active shortcodes (defaults plus EPISTEMIC_CUSTOM_SHORTCODES).
    """
    registry = ShortcodeRegistry.from_settings()

    table = Table(title="Shortcodes", show_header=True, header_style="bold cyan")
    table.add_column("Code", style="cyan")
    table.add_column("Kind")
    table.add_column("Category")
    table.add_column("Description")

    for definition in registry:
        table.add_row(definition.code, definition.kind, definition.category.value, definition.description)

    console.print(table)


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
