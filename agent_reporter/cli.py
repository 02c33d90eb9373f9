"""CLI entry point for the agent reporter."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from agent_reporter.models.config import DEFAULT_CONFIG_FILE, DO_NOT_REMOVE_ENV, ReporterConfig, cleanup_disabled
from agent_reporter.reporter.cleanup import clean_output_dir
from agent_reporter.reporter.json_report import JSON_REPORT_FILE, load_json_report
from agent_reporter.text_utils import truncate_text

console = Console()

MAX_ERROR_COLUMN = 80


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _load_config(config: str, output_dir: str | None) -> ReporterConfig:
    path = Path(config)
    cfg = ReporterConfig.load(path) if path.exists() else ReporterConfig()
    if output_dir:
        cfg.output_dir = output_dir
    return cfg


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Agent-friendly failure reports for pytest + Playwright."""
    setup_logging(verbose)


@cli.command()
@click.option("--output-dir", "-o", default="agent-reports", help="Directory for failure reports")
@click.option("--config", "-c", default=DEFAULT_CONFIG_FILE, help="Config file path")
def init(output_dir: str, config: str) -> None:
    """Create a default configuration file."""
    config_path = Path(config)
    if config_path.exists():
        if not click.confirm(f"{config_path} already exists. Overwrite?"):
            return

    cfg = ReporterConfig(output_dir=output_dir)
    cfg.save(config_path)
    console.print(f"[green]Created {config_path}[/green]")
    console.print("\nEnable the reporter when running your tests:")
    console.print("  [blue]pytest --agent-report[/blue]")


@cli.command()
@click.option("--config", "-c", default=DEFAULT_CONFIG_FILE, help="Config file path")
@click.option("--output-dir", "-o", default=None, help="Override the configured report directory")
def clean(config: str, output_dir: str | None) -> None:
    """Remove the previous run's report artifacts."""
    cfg = _load_config(config, output_dir)
    if cleanup_disabled():
        console.print(f"[yellow]{DO_NOT_REMOVE_ENV} is set, nothing removed[/yellow]")
        return

    removed = clean_output_dir(Path(cfg.output_dir), console)
    if not removed:
        console.print(f"Nothing to remove in {escape(cfg.output_dir)}")
        return
    for path in removed:
        console.print(f"  removed {escape(str(path))}")
    console.print(f"[green]Removed {len(removed)} report artifacts[/green]")


@cli.command()
@click.option("--config", "-c", default=DEFAULT_CONFIG_FILE, help="Config file path")
@click.option("--output-dir", "-o", default=None, help="Override the configured report directory")
def show(config: str, output_dir: str | None) -> None:
    """Show the summary and failures of the last run."""
    cfg = _load_config(config, output_dir)
    report_path = Path(cfg.output_dir) / JSON_REPORT_FILE
    try:
        report = load_json_report(report_path)
    except FileNotFoundError:
        console.print(f"[red]No report found at {escape(str(report_path))}[/red]")
        console.print("Run your tests with 'pytest --agent-report' first.")
        sys.exit(1)

    summary = report.get("summary", {})
    table = Table(title="Last Run")
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("Total Tests", str(summary.get("total", 0)))
    table.add_row("Passed", f"[green]{summary.get('passed', 0)}[/green]")
    table.add_row("Failed", f"[red]{summary.get('failed', 0)}[/red]")
    table.add_row("Skipped", f"[yellow]{summary.get('skipped', 0)}[/yellow]")
    table.add_row("Duration", f"{summary.get('duration_seconds', 0):.2f}s")
    console.print(table)

    failures = report.get("failures", [])
    if not failures:
        console.print("[green]No failures[/green]")
        return

    table = Table(title="Failures")
    table.add_column("#", justify="right")
    table.add_column("Test")
    table.add_column("Category")
    table.add_column("Error")
    table.add_column("Report")
    for f in failures:
        message = (f.get("error") or {}).get("message") or ""
        first_line = message.strip().split("\n", 1)[0]
        table.add_row(
            str(f.get("test_index", "")),
            escape(f.get("full_title", f.get("test_title", ""))),
            f.get("category", ""),
            escape(truncate_text(first_line, MAX_ERROR_COLUMN)),
            escape(str(Path(cfg.output_dir) / f.get("report", ""))),
        )
    console.print(table)


if __name__ == "__main__":
    cli()
