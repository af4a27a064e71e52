"""listwalk CLI: run crawls and inspect their output.

Usage:
    listwalk run crawl.toml                     # Crawl every partition
    listwalk run crawl.toml --start-at km       # Resume from partition "km"
    listwalk run crawl.toml --renderer http     # Skip the browser
    listwalk partitions crawl.toml --limit 10   # Preview partition keys
    listwalk tally output/                      # Count records per artifact
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import signal
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import click

from listwalk.common.exceptions import ConfigurationError
from listwalk.config import CrawlConfiguration, load_config
from listwalk.data_types import RunReport, RunStatus
from listwalk.driver.render import RenderClient

logger = logging.getLogger(__name__)


def _load(config_path: str) -> CrawlConfiguration:
    try:
        return load_config(config_path)
    except ConfigurationError as e:
        raise click.BadParameter(str(e), param_hint="CONFIG") from e


@click.group()
@click.version_option(package_name="listwalk")
def cli() -> None:
    """listwalk: partitioned, paginated listing crawler."""


@cli.command()
@click.argument(
    "config_path",
    metavar="CONFIG",
    type=click.Path(exists=True, dir_okay=False),
)
@click.option(
    "--start-at",
    default=None,
    help="Partition key to start from (skips the keys before it).",
)
@click.option(
    "--output",
    "output_dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Directory for artifacts (overrides the config).",
)
@click.option(
    "--renderer",
    type=click.Choice(["playwright", "http"]),
    default=None,
    help="Render client to use (overrides the config).",
)
@click.option("--headed", is_flag=True, help="Show the browser window.")
@click.option(
    "--summary",
    "summary_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Append one JSON line per finished partition to this file.",
)
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging.")
def run(
    config_path: str,
    start_at: str | None,
    output_dir: str | None,
    renderer: str | None,
    headed: bool,
    summary_path: str | None,
    verbose: bool,
) -> None:
    """Crawl every partition described by CONFIG.

    CONFIG is a .toml or .json crawl configuration. Each finished partition
    is written as one artifact in the output directory. Ctrl+C stops the
    run after the current page; the partition in progress is still saved.

    \b
    Examples:
        listwalk run configs/canada411-calgary.toml
        listwalk run configs/canada411-calgary.toml --start-at m --headed
    """
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = _apply_overrides(
        _load(config_path), output_dir, renderer, headed
    )

    click.echo(f"Config:   {config_path}")
    click.echo(f"Renderer: {config.renderer}")
    click.echo(f"Output:   {config.output.dir}")

    try:
        report = asyncio.run(_run_crawl(config, start_at, summary_path))
    except ConfigurationError as e:
        raise click.BadParameter(str(e), param_hint="--start-at") from e

    _echo_report(report)
    if report.status is RunStatus.ABORTED:
        sys.exit(1)


def _apply_overrides(
    config: CrawlConfiguration,
    output_dir: str | None,
    renderer: str | None,
    headed: bool,
) -> CrawlConfiguration:
    update: dict[str, Any] = {}
    if output_dir is not None:
        update["output"] = config.output.model_copy(
            update={"dir": Path(output_dir)}
        )
    if renderer is not None:
        update["renderer"] = renderer
    if headed:
        update["headless"] = False
    return config.model_copy(update=update) if update else config


@asynccontextmanager
async def open_render_client(
    config: CrawlConfiguration,
) -> AsyncIterator[RenderClient]:
    """Open the render client selected by ``config.renderer``."""
    if config.renderer == "http":
        from listwalk.driver.http_client import HttpxRenderClient

        async with HttpxRenderClient(
            user_agent=config.user_agent,
            blocked_url_substrings=config.blocked_url_substrings,
        ) as client:
            yield client
    else:
        from listwalk.driver.playwright_client import PlaywrightRenderClient

        async with PlaywrightRenderClient.open(
            headless=config.headless,
            user_agent=config.user_agent,
            blocked_resource_types=config.resource_block_list,
            blocked_url_substrings=config.blocked_url_substrings,
        ) as client:
            yield client


async def _run_crawl(
    config: CrawlConfiguration,
    start_at: str | None,
    summary_path: str | None,
) -> RunReport:
    from listwalk.driver.callbacks import (
        combine_callbacks,
        log_partition_summary,
        log_run_report,
        save_summaries_to_jsonl,
    )
    from listwalk.driver.orchestrator import CrawlOrchestrator
    from listwalk.sink import sink_from_config

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def handle_signal(signum: int, frame: Any) -> None:
        sig_name = signal.Signals(signum).name
        logger.info(f"Received {sig_name}, finishing the current page...")
        loop.call_soon_threadsafe(stop_event.set)

    callbacks = [log_partition_summary()]
    if summary_path is not None:
        callbacks.append(save_summaries_to_jsonl(summary_path))

    previous = {
        signum: signal.signal(signum, handle_signal)
        for signum in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        async with open_render_client(config) as client:
            orchestrator = CrawlOrchestrator(
                config,
                client,
                sink_from_config(config),
                stop_event=stop_event,
                on_partition_complete=combine_callbacks(*callbacks),
                on_run_complete=log_run_report,
            )
            return await orchestrator.run(start_at=start_at)
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


def _echo_report(report: RunReport) -> None:
    click.echo("")
    for summary in report.summaries:
        artifact = summary.artifact.name if summary.artifact else "-"
        click.echo(
            f"{summary.key:<12} {summary.status.value:<16} "
            f"page {summary.cursor:<4} {summary.record_count:>6} records  "
            f"{artifact}"
        )
    click.echo(
        f"Run {report.status.value}: {len(report.summaries)} partitions, "
        f"{report.record_count} records"
    )
    if report.failure is not None:
        click.echo(
            f"Error: {report.failure}. Resume with "
            f"--start-at {report.failure.partition_key}",
            err=True,
        )


@cli.command()
@click.argument(
    "config_path",
    metavar="CONFIG",
    type=click.Path(exists=True, dir_okay=False),
)
@click.option("--start-at", default=None, help="First partition key.")
@click.option(
    "--limit", type=int, default=None, help="Show at most this many keys."
)
@click.option("--count", is_flag=True, help="Only print the number of keys.")
def partitions(
    config_path: str, start_at: str | None, limit: int | None, count: bool
) -> None:
    """List the partition keys CONFIG would crawl, in order."""
    from listwalk.partitions import PartitionIterator

    iterator = PartitionIterator.from_config(_load(config_path).partitions)
    if count:
        click.echo(str(iterator.count()))
        return
    try:
        keys = iterator.keys(start_at)
    except ConfigurationError as e:
        raise click.BadParameter(str(e), param_hint="--start-at") from e
    for key in itertools.islice(keys, limit):
        click.echo(key)


@cli.command()
@click.argument(
    "directory", type=click.Path(exists=True, file_okay=False)
)
def tally(directory: str) -> None:
    """Sum the record counts encoded in artifact names in DIRECTORY."""
    from listwalk.sink import tally_artifacts

    counts = tally_artifacts(directory)
    for name, record_count in counts.items():
        click.echo(f"{record_count:>8}  {name}")
    click.echo(f"{sum(counts.values()):>8}  total ({len(counts)} files)")


def main() -> None:
    """Entry point for the ``listwalk`` console script."""
    cli()
