"""CLI interface for sheetsguard"""

import logging
import math
from pathlib import Path
from typing import List, Optional

import click
import yaml

from sheetsguard.application.batch_optimizer import BatchOptimizer
from sheetsguard.application.chunked_processor import ChunkedProcessor
from sheetsguard.domain.models.range_request import RangeRequest, RequestKind
from sheetsguard.domain.models.retry_policy import PRESETS, RetryPolicy
from sheetsguard.infrastructure.config.config_manager import ConfigManager, ConfigurationError

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration"""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )
    logging.getLogger("sheetsguard").setLevel(level)


def _die(message: str, verbose: bool = False, exc: Optional[Exception] = None) -> None:
    """Exit with a user-friendly error message"""
    if exc is not None:
        logger.error(message, exc_info=verbose)
    else:
        logger.error(message)
    raise click.ClickException(message)


def _load_config_manager(ctx) -> ConfigManager:
    try:
        return ConfigManager(config_path=ctx.obj.get("config_path"))
    except ConfigurationError as e:
        _die(str(e), verbose=ctx.obj.get("verbose", False), exc=e)


def parse_plan_file(file_path: Path) -> List[RangeRequest]:
    """Parse a plan file into read/write requests

    Each non-empty line holds ``resource<TAB>target`` with an optional third
    ``read``/``write`` column. Lines starting with ``#`` are ignored.

    Raises:
        ValueError: If a line is malformed
    """
    requests = []
    with open(file_path, "r", encoding="utf-8") as f:
        for line_number, line in enumerate(f, start=1):
            line = line.rstrip("\n")
            if not line.strip() or line.lstrip().startswith("#"):
                continue
            columns = line.split("\t")
            if len(columns) not in (2, 3) or not columns[0] or not columns[1]:
                raise ValueError(f"{file_path}:{line_number}: expected 'resource<TAB>target[<TAB>read|write]'")
            kind = RequestKind.READ
            if len(columns) == 3:
                try:
                    kind = RequestKind(columns[2].strip().lower())
                except ValueError:
                    raise ValueError(f"{file_path}:{line_number}: unknown request kind {columns[2]!r}") from None
            requests.append(RangeRequest(target=columns[1], kind=kind, resource_id=columns[0]))
    return requests


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option(
    "--config",
    type=click.Path(exists=True, path_type=Path),
    help="Path to .sheetsguard.yml config file",
)
@click.pass_context
def cli(ctx, verbose: bool, config: Path):
    """sheetsguard - resilience toolkit for spreadsheet API clients"""
    ctx.ensure_object(dict)
    setup_logging(verbose)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose


@cli.command()
@click.pass_context
def config(ctx):
    """Print the resolved configuration as YAML."""
    config_manager = _load_config_manager(ctx)
    click.echo(yaml.safe_dump(config_manager.config.model_dump(mode="json"), sort_keys=False).rstrip())


@cli.command()
@click.option(
    "--preset",
    type=click.Choice(sorted(PRESETS), case_sensitive=False),
    help="Show a named preset instead of the configured policy.",
)
@click.pass_context
def delays(ctx, preset: Optional[str]):
    """Print the retry backoff schedule."""
    if preset:
        policy = RetryPolicy.preset(preset)
    else:
        policy = _load_config_manager(ctx).get_retry_config().to_policy()

    click.echo(
        f"max_attempts={policy.max_attempts} base_delay={policy.base_delay}s "
        f"max_delay={policy.max_delay}s multiplier={policy.backoff_multiplier} "
        f"jitter={policy.jitter_fraction}"
    )
    if policy.max_attempts == 0:
        click.echo("Retries disabled")
        return
    for attempt in range(policy.max_attempts):
        delay = policy.backoff_delay(attempt)
        spread = delay * policy.jitter_fraction
        click.echo(f"Retry {attempt + 1}: {delay:.2f}s (±{spread:.2f}s)")


@cli.command()
@click.argument("file_path", type=click.Path(exists=True, path_type=Path))
@click.option("--max-batch-size", type=int, help="Maximum ranges per call. Overrides config.")
@click.pass_context
def plan(ctx, file_path: Path, max_batch_size: Optional[int]):
    """Show how ranges would be batched into remote calls.

    FILE_PATH: File with one 'resource<TAB>target' per line
    """
    verbose = ctx.obj.get("verbose", False)
    batch_config = _load_config_manager(ctx).get_batch_config()
    if max_batch_size is not None:
        batch_config = batch_config.model_copy(
            update={
                "max_batch_size": max_batch_size,
                "min_batch_size": min(batch_config.min_batch_size, max_batch_size),
            }
        )

    try:
        requests = parse_plan_file(file_path)
        batches, stats = BatchOptimizer.from_config(batch_config).plan_with_stats(requests)
    except ValueError as e:
        _die(str(e), verbose=verbose, exc=e)

    for number, batch in enumerate(batches, start=1):
        click.echo(f"Batch {number} [{batch.resource_id} {batch.kind.value}]: {len(batch)} ranges")
        for target in batch.targets:
            click.echo(f"  {target}")
    click.echo(
        f"\n{stats.original_count} requests -> {stats.batch_count} calls "
        f"({stats.estimated_improvement:.0f}% fewer)"
    )


@cli.command()
@click.argument("rows", type=click.IntRange(min=0))
@click.argument("columns", type=click.IntRange(min=0))
@click.pass_context
def chunks(ctx, rows: int, columns: int):
    """Show the chunking decision for a dataset shape.

    ROWS: Number of rows
    COLUMNS: Number of columns
    """
    processor = ChunkedProcessor.from_config(_load_config_manager(ctx).get_chunking_config())
    estimate = processor.estimate_memory_usage(rows, columns)
    click.echo(f"Dataset: {rows} rows x {columns} columns ({rows * columns} cells)")
    click.echo(f"Estimated memory: {estimate / (1024 * 1024):.2f} MiB")
    if processor.should_chunk(rows, columns):
        per_chunk = processor.rows_per_chunk(columns)
        count = math.ceil(rows / per_chunk)
        click.echo(f"Chunked: yes, {count} chunks of up to {per_chunk} rows")
    else:
        click.echo("Chunked: no")


def main():
    """Main entry point"""
    cli(obj={})


if __name__ == "__main__":
    main()
