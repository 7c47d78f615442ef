"""Command line entry point.

    covenant check src/
    covenant check src/ --class pkg.store.FileStore --json
"""

from __future__ import annotations

import json
import sys

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from covenant import __version__
from covenant.analysis.source import SourceCache
from covenant.analysis.symbols import ClassIndex
from covenant.config import load_config
from covenant.contracts.audit import AuditReport, audit
from covenant.foundation.errors import CovenantError
from covenant.foundation.logging import configure_logging

console = Console()


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """Audit classes against the contracts they implement."""


@main.command()
@click.argument("paths", nargs=-1, required=True, type=click.Path(exists=True))
@click.option("--class", "-c", "class_names", multiple=True, help="Class to check (repeatable)")
@click.option("--json", "as_json", is_flag=True, help="Emit the report as JSON")
@click.option("--config", "config_path", type=click.Path(), help="Config file path")
@click.option("--debug", is_flag=True, help="Enable debug logging")
def check(
    paths: tuple[str, ...],
    class_names: tuple[str, ...],
    as_json: bool,
    config_path: str | None,
    debug: bool,
) -> None:
    """Check classes under PATHS for contract violations.

    Every class defined under PATHS is checked unless --class is given.
    Exits with status 1 when a violation is found or a class cannot be checked.
    """
    try:
        config = load_config(config_path)
        configure_logging(debug=debug, verbose=config.verbose)

        cache = SourceCache()
        index = ClassIndex.build(paths, cache=cache, exclude=config.scan.exclude)
        report = audit(index, class_names or None, config=config)
    except CovenantError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        for hint in e.recovery_hints:
            console.print(f"  [dim]→ {escape(hint)}[/dim]")
        sys.exit(2)

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        _render(report, cache)

    sys.exit(0 if report.ok else 1)


def _render(report: AuditReport, cache: SourceCache) -> None:
    if report.violations:
        table = Table(title="Contract violations", show_lines=False)
        table.add_column("Class", style="cyan")
        table.add_column("Method")
        table.add_column("Contract", style="magenta")
        table.add_column("Reason")
        for violation in report.violations:
            table.add_row(
                violation.class_name,
                f"{violation.method_name}()",
                violation.contract_name,
                violation.reason,
            )
        console.print(table)

    for failure in report.failures:
        console.print(f"[yellow]⚠ could not check {failure.class_name}:[/yellow] {escape(failure.message)}")

    for path, error in cache.failures.items():
        console.print(f"[dim]skipped {path}: {escape(error.message)}[/dim]")

    summary = (
        f"{len(report.checked)} class(es) checked, "
        f"{len(report.violations)} violation(s), {len(report.failures)} not checked"
    )
    style = "green" if report.ok else "red"
    console.print(f"[{style}]{summary}[/{style}]")


if __name__ == "__main__":
    main()
