"""
Command-line interface for the Candlestream pattern engine.
"""

import asyncio
import csv
import json
import sys
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .config import Config
from .exceptions import CatalogError
from .logger import setup_logger
from .models.patterns import PatternCatalog
from .patterns.catalog import describe_catalog, load_catalog
from .pipeline.service import DetectionService


def _load_catalog_or_exit(path: Optional[str]) -> PatternCatalog:
    """Load the catalog; any catalog error is fatal."""
    try:
        return load_catalog(path)
    except (CatalogError, OSError) as e:
        Console(stderr=True).print(f"[red]Catalog error: {escape(str(e))}[/red]")
        sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="candlestream")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to .env configuration file"
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose logging"
)
@click.pass_context
def main(ctx: click.Context, config: Optional[Path], verbose: bool) -> None:
    """
    Candlestream: Candlestick Pattern Recognition Engine

    Matches rolling per-instrument candle windows against a catalog of
    candlestick patterns and reports confidence-scored detections.
    """
    ctx.ensure_object(dict)

    try:
        if config:
            ctx.obj["config"] = Config.load_from_env(str(config))
        else:
            ctx.obj["config"] = Config.load_from_env()
    except Exception as e:
        click.echo(f"Error loading configuration: {e}", err=True)
        sys.exit(1)

    cfg: Config = ctx.obj["config"]
    if verbose:
        cfg.logging.level = "DEBUG"

    ctx.obj["logger"] = setup_logger(
        name="candlestream",
        level=cfg.logging.level,
        log_file=cfg.logging.file_path,
        max_size=cfg.logging.max_size,
        backup_count=cfg.logging.backup_count,
    )


@main.command()
@click.option("--path", "catalog_path", type=click.Path(dir_okay=False), help="Catalog CSV to validate")
@click.option("--json", "as_json", is_flag=True, help="Print the catalog as JSON")
@click.pass_context
def catalog(ctx: click.Context, catalog_path: Optional[str], as_json: bool) -> None:
    """Validate and list the pattern catalog."""
    config: Config = ctx.obj["config"]
    patterns = _load_catalog_or_exit(catalog_path or config.catalog.path)

    if as_json:
        click.echo(json.dumps({
            "summary": describe_catalog(patterns),
            "patterns": patterns.to_records(),
        }, indent=2))
        return

    console = Console()
    table = Table(title=f"Pattern Catalog ({len(patterns)} patterns)", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Category")
    table.add_column("Direction")
    table.add_column("Window", justify="right")
    table.add_column("Rule")
    table.add_column("Base", justify="right", style="green")
    for definition in patterns:
        table.add_row(
            definition.id,
            definition.name,
            definition.category.value,
            definition.direction.value,
            str(definition.window),
            definition.rule.value,
            str(definition.base_confidence),
        )
    console.print(table)
    console.print(f"Source: {patterns.source}")


def _read_candle_rows(path: Path) -> List[Dict[str, Any]]:
    with open(path, "r", newline="", encoding="utf-8-sig") as f:
        return [
            {k.strip(): v for k, v in row.items() if k is not None}
            for row in csv.DictReader(f)
        ]


async def _replay(
    patterns: PatternCatalog,
    config: Config,
    rows: List[Dict[str, Any]],
    instrument: Optional[str],
) -> Dict[str, Any]:
    service = DetectionService(patterns, config)
    detections: List[Dict[str, Any]] = []
    rejections: List[Dict[str, Any]] = []

    async with service:
        for line, row in enumerate(rows, start=2):
            result = await service.ingest_record(row, instrument=instrument)
            if not result.accepted:
                rejections.append({"line": line, **result.to_record()})
                continue
            detections.extend(d.to_record() for d in result.detections)

    return {
        "candles": len(rows),
        "detections": detections,
        "rejections": rejections,
        "stats": service.get_stats(),
    }


@main.command()
@click.argument("candles_csv", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--catalog", "catalog_path", type=click.Path(dir_okay=False), help="Catalog CSV to match against")
@click.option("--instrument", "-i", help="Instrument for rows without an instrument column")
@click.option("--min-confidence", type=click.FloatRange(0.0, 1.0), help="Drop detections below this confidence")
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON")
@click.pass_context
def scan(
    ctx: click.Context,
    candles_csv: Path,
    catalog_path: Optional[str],
    instrument: Optional[str],
    min_confidence: Optional[float],
    as_json: bool,
) -> None:
    """Replay a candle CSV through the detection pipeline."""
    config: Config = ctx.obj["config"]
    if min_confidence is not None:
        config.matcher.min_confidence = min_confidence

    patterns = _load_catalog_or_exit(catalog_path or config.catalog.path)
    rows = _read_candle_rows(candles_csv)
    report = asyncio.run(_replay(patterns, config, rows, instrument))

    if as_json:
        click.echo(json.dumps(report, indent=2, default=str))
        return

    console = Console()
    table = Table(title=f"Detections in {candles_csv.name}", show_header=True, header_style="bold magenta")
    table.add_column("Instrument", style="cyan")
    table.add_column("End Time")
    table.add_column("Pattern")
    table.add_column("Direction")
    table.add_column("Candles", justify="right")
    table.add_column("Confidence", justify="right", style="green")
    for d in report["detections"]:
        table.add_row(
            d["instrument"],
            d["end_time"],
            d["pattern_id"],
            d["direction"],
            ",".join(str(i) for i in d["candle_indices"]),
            f"{Decimal(d['confidence']):.4f}",
        )
    console.print(table)

    for rejection in report["rejections"]:
        console.print(f"[yellow]Line {rejection['line']} rejected: {escape(str(rejection['reason']))}[/yellow]")

    stats = report["stats"]
    console.print(Panel(
        f"Candles: {report['candles']} "
        f"(accepted {stats['candles_accepted']}, rejected {stats['candles_rejected']}, "
        f"invalid {stats['candles_invalid']})\n"
        f"Detections: {stats['detections_produced']} produced, {stats['detections_published']} published, "
        f"{stats['detections_dropped']} dropped",
        title="Scan Summary",
        style="green",
    ))


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show effective configuration and catalog summary."""
    config: Config = ctx.obj["config"]
    console = Console()

    settings = Table(title="Configuration", show_header=True, header_style="bold magenta")
    settings.add_column("Setting", style="cyan")
    settings.add_column("Value", style="green")
    for key, value in config.summary().items():
        settings.add_row(key, "-" if value is None else str(value))
    console.print(settings)

    try:
        patterns = load_catalog(config.catalog.path)
    except (CatalogError, OSError) as e:
        console.print(f"[red]Catalog error: {escape(str(e))}[/red]")
        sys.exit(1)

    summary = describe_catalog(patterns)
    catalog_table = Table(title="Catalog", show_header=True, header_style="bold magenta")
    catalog_table.add_column("Metric", style="cyan")
    catalog_table.add_column("Value", style="green")
    catalog_table.add_row("Source", str(summary["source"]))
    catalog_table.add_row("Patterns", str(summary["total_patterns"]))
    catalog_table.add_row("Max window", str(summary["max_window"]))
    for category, count in sorted(summary["by_category"].items()):
        catalog_table.add_row(f"Category: {category}", str(count))
    console.print(catalog_table)


if __name__ == "__main__":
    main()
