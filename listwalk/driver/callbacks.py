"""Callback functions for the orchestrator's lifecycle hooks.

These factories build async callbacks for ``on_partition_complete`` and
``on_run_complete`` for side effects such as logging, progress output and
collecting summaries for later inspection.

Example::

    summaries: list[PartitionSummary] = []
    orchestrator = CrawlOrchestrator(
        config,
        client,
        sink,
        on_partition_complete=combine_callbacks(
            log_partition_summary(), collect_summaries(summaries)
        ),
    )
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path

from listwalk.data_types import PartitionSummary, RunReport

logger = logging.getLogger(__name__)

PartitionCallback = Callable[[PartitionSummary], Awaitable[None]]


def summary_to_dict(summary: PartitionSummary) -> dict:
    """Plain-data form of a summary, suitable for JSON."""
    return {
        "partition": summary.key,
        "status": summary.status.value,
        "cursor": summary.cursor,
        "record_count": summary.record_count,
        "artifact": str(summary.artifact) if summary.artifact else None,
        "failed_pages": list(summary.failed_pages),
    }


def log_partition_summary(
    level: int = logging.INFO,
) -> PartitionCallback:
    """Create a callback that logs one line per finished partition."""

    async def callback(summary: PartitionSummary) -> None:
        logger.log(
            level,
            f"Partition {summary.key}: {summary.status.value} at page "
            f"{summary.cursor}, {summary.record_count} records",
            extra=summary_to_dict(summary),
        )

    return callback


def collect_summaries(
    target: list[PartitionSummary],
) -> PartitionCallback:
    """Create a callback that appends every summary to *target*."""

    async def callback(summary: PartitionSummary) -> None:
        target.append(summary)

    return callback


def save_summaries_to_jsonl(file_path: Path | str) -> PartitionCallback:
    """Create a callback that appends each summary to a JSONL file.

    The file is opened for every summary, so a crashed run still leaves the
    summaries of every partition flushed so far. Those keys can be used to
    pick a ``--start-at`` partition for the next run.
    """
    path = Path(file_path)

    async def callback(summary: PartitionSummary) -> None:
        with path.open("a", encoding="utf-8") as f:
            json.dump(summary_to_dict(summary), f)
            f.write("\n")

    return callback


def combine_callbacks(*callbacks: PartitionCallback) -> PartitionCallback:
    """Combine callbacks into one that runs them in order."""

    async def combined(summary: PartitionSummary) -> None:
        for callback in callbacks:
            await callback(summary)

    return combined


async def log_run_report(name: str, report: RunReport) -> None:
    """on_run_complete callback that logs the run outcome."""
    message = (
        f"Run for {name} {report.status.value}: "
        f"{len(report.summaries)} partitions, {report.record_count} records"
    )
    if report.failure is not None:
        logger.error(
            f"{message}; {len(report.failure.records)} records of partition "
            f"'{report.failure.partition_key}' were not persisted"
        )
    else:
        logger.info(message)
