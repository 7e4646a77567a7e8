"""
Main command-line interface for the HS metrics engine.
"""

import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from ..config.settings import HsMetricsConfig
from ..core.intervals import load_probe_set
from ..core.pipeline import HsMetricsPipeline
from ..exceptions import AlignmentSourceError, ConfigurationError, HsMetricsError, ReportWriteError
from ..models.metrics import AccumulationLevel, HsMetrics
from ..utils import setup_logging
from .. import __version__


console = Console()

EXIT_CODES = {
    ConfigurationError: 2,
    AlignmentSourceError: 3,
    ReportWriteError: 4,
}


def exit_code_for(error: Exception) -> int:
    """Process exit status for a failed run."""
    if isinstance(error, ValidationError):
        return 2
    for error_type, code in EXIT_CODES.items():
        if isinstance(error, error_type):
            return code
    return 1


@click.group()
@click.version_option(version=__version__, prog_name="hs-metrics")
def cli():
    """hs-metrics - Hybrid-selection metrics from aligned reads."""
    pass


def _build_config(**options) -> HsMetricsConfig:
    """Config from CLI options; unset options fall back to HS_METRICS_* settings."""
    values = {}
    for key, value in options.items():
        if value is None or value == ():
            continue
        values[key] = list(value) if isinstance(value, tuple) else value
    return HsMetricsConfig(**values)


@cli.command()
@click.option("--input", "-I", "input_bam", required=True,
              type=click.Path(path_type=Path), help="Coordinate-sorted SAM/BAM/CRAM file")
@click.option("--output", "-O", required=True,
              type=click.Path(path_type=Path), help="Metrics output file")
@click.option("--bait-intervals", "-B", multiple=True, required=True,
              type=click.Path(path_type=Path), help="Bait interval file (repeatable)")
@click.option("--target-intervals", "-T", multiple=True, required=True,
              type=click.Path(path_type=Path), help="Target interval file (repeatable)")
@click.option("--bait-set-name", "-N", type=str, help="Bait set name")
@click.option("--reference", "-R", "reference_fasta",
              type=click.Path(path_type=Path), help="Indexed reference FASTA for GC metrics")
@click.option("--per-target-coverage", type=click.Path(path_type=Path), help="Per-target coverage output")
@click.option("--per-base-coverage", type=click.Path(path_type=Path), help="Per-base coverage output")
@click.option("--minimum-mapping-quality", type=int, help="Minimum mapping quality [20]")
@click.option("--minimum-base-quality", type=int, help="Minimum base quality [20]")
@click.option("--clip-overlapping-reads/--no-clip-overlapping-reads", default=None,
              help="Clip mate overlap before counting [on]")
@click.option("--coverage-cap", type=int, help="Maximum per-base depth [32767]")
@click.option("--sample-size", type=int, help="Stop after this many qualifying reads")
@click.option("--near-distance", type=int, help="Near-bait distance [250]")
@click.option("--metric-accumulation-level", "accumulation_levels", multiple=True,
              type=click.Choice([level.value for level in AccumulationLevel]),
              help="Extra record levels (repeatable)")
@click.option("--coverage-threshold", "coverage_thresholds", multiple=True, type=int,
              help="Depth for a PCT_TARGET_BASES_<n>X column (repeatable)")
@click.option("--gc-bucket-count", type=int, help="Number of GC buckets [101]")
@click.option("--threads", type=int, help="Worker processes for an indexed BAM [1]")
@click.option("--log-level", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]), help="Logging level")
@click.option("--log-file", type=click.Path(path_type=Path), help="Log file path")
def collect(**options):
    """Collect hybrid-selection metrics for one alignment file."""

    try:
        config = _build_config(**options)
    except ValidationError as e:
        console.print(f"[red]Invalid configuration: {escape(str(e))}[/red]")
        sys.exit(exit_code_for(e))

    logger = setup_logging(
        log_level=config.log_level,
        log_file=config.log_file,
        log_format="console"
    )

    try:
        pipeline = HsMetricsPipeline(config, logger)
    except HsMetricsError as e:
        console.print(f"[red]Error initializing pipeline: {escape(str(e))}[/red]")
        logger.error("Pipeline initialization failed", error=str(e))
        sys.exit(exit_code_for(e))

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task("Collecting metrics...", total=None)
            result = pipeline.run()
            progress.update(task, description="Metrics collected")
    except HsMetricsError as e:
        console.print(f"[red]Metrics collection failed: {escape(str(e))}[/red]")
        logger.error("Pipeline execution failed", error=str(e))
        sys.exit(exit_code_for(e))

    display_results(result.records[0])
    console.print(f"[green]✓ Metrics written to {config.output}[/green]")


@cli.command()
@click.option("--input", "-I", "input_bam", required=True,
              type=click.Path(path_type=Path), help="Alignment file")
@click.option("--bait-intervals", "-B", multiple=True, required=True,
              type=click.Path(path_type=Path), help="Bait interval file (repeatable)")
@click.option("--target-intervals", "-T", multiple=True, required=True,
              type=click.Path(path_type=Path), help="Target interval file (repeatable)")
@click.option("--reference", "-R", "reference_fasta", type=click.Path(path_type=Path), help="Reference FASTA")
@click.option("--output", "-O", default=Path("hs_metrics.txt"),
              type=click.Path(path_type=Path), help="Planned metrics output file")
def validate(
    input_bam: Path,
    bait_intervals: Tuple[Path, ...],
    target_intervals: Tuple[Path, ...],
    reference_fasta: Optional[Path],
    output: Path,
):
    """Check inputs and the interval design without reading any alignments."""

    try:
        config = _build_config(
            input_bam=input_bam,
            output=output,
            bait_intervals=bait_intervals,
            target_intervals=target_intervals,
            reference_fasta=reference_fasta,
        )
        console.print("[bold blue]Validating inputs...[/bold blue]")

        errors = config.validate_setup()
        if errors:
            console.print("[red]Input validation failed:[/red]")
            for error in errors:
                console.print(f"  [red]• {escape(error)}[/red]")
            sys.exit(2)

        baits = load_probe_set(config.bait_intervals)
        targets = load_probe_set(config.target_intervals)
        console.print("[green]✓ Input validation passed[/green]")
        display_design_summary(baits, targets)

    except (HsMetricsError, ValidationError) as e:
        console.print(f"[red]Validation failed: {escape(str(e))}[/red]")
        sys.exit(exit_code_for(e))


def _fmt(value, pattern: str = "{:.4f}") -> str:
    return "" if value is None else pattern.format(value)


def display_results(metrics: HsMetrics):
    """Display headline metrics in a formatted table."""

    console.print("\n[bold green]Hybrid-selection Metrics[/bold green]")

    table = Table(title=f"Bait set: {metrics.bait_set}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="magenta")

    table.add_row("Total Reads", str(metrics.total_reads))
    table.add_row("PF Unique Reads Aligned", str(metrics.pf_uq_reads_aligned))
    table.add_row("Target Territory", str(metrics.target_territory))
    table.add_row("Pct Selected Bases", _fmt(metrics.pct_selected_bases))
    table.add_row("Pct Off Bait", _fmt(metrics.pct_off_bait))
    table.add_row("Mean Target Coverage", _fmt(metrics.mean_target_coverage, "{:.1f}x"))
    table.add_row("Median Target Coverage", _fmt(metrics.median_target_coverage, "{:.1f}x"))
    for depth in (20, 30, 100):
        if depth in metrics.pct_target_bases:
            table.add_row(f"Pct Target Bases {depth}x", _fmt(metrics.pct_target_bases[depth]))
    table.add_row("Fold 80 Base Penalty", _fmt(metrics.fold_80_base_penalty))
    table.add_row("AT Dropout", _fmt(metrics.at_dropout, "{:.2f}"))
    table.add_row("GC Dropout", _fmt(metrics.gc_dropout, "{:.2f}"))
    if metrics.malformed_reads:
        table.add_row("Malformed Records Skipped", str(metrics.malformed_reads))

    console.print(table)

    if not metrics.dropout_available:
        console.print("[yellow]⚠ GC dropout unavailable (no reference or no coverage)[/yellow]")


def display_design_summary(baits, targets):
    """Display the interval design."""

    table = Table(title="Design Summary")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="magenta")

    table.add_row("Bait Set", baits.name)
    table.add_row("Bait Intervals", str(len(baits)))
    table.add_row("Bait Territory", str(baits.territory))
    table.add_row("Target Intervals", str(len(targets)))
    table.add_row("Target Territory", str(targets.territory))
    table.add_row("Contigs", ", ".join(dict.fromkeys([*baits.contigs, *targets.contigs])))

    console.print(table)


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
