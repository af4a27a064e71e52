"""Core data types for the crawl engine.

This module defines the values that flow between the engine's components:

- PartitionKey / ExtractedRecord: plain aliases for the crawl unit and a
  flat record of string fields.
- FetchAttempt: one try of a page fetch, used by the retry policy.
- Decision / PartitionStatus / RunStatus: the outcomes of classification,
  of a partition and of a whole run.
- PartitionState: the mutable per-partition state owned by the orchestrator.
- PartitionSummary / RunReport: the immutable run-level report.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, TypeAlias

if TYPE_CHECKING:
    from listwalk.common.exceptions import SinkError

PartitionKey: TypeAlias = str
ExtractedRecord: TypeAlias = dict[str, str]


class Decision(Enum):
    """Outcome of classifying one page."""

    CONTINUE = "continue"
    STOP_EMPTY = "stop_empty"
    STOP_BANNER = "stop_banner"


class PartitionStatus(Enum):
    """Status of a partition.

    ACTIVE while pages are being fetched; every other value is terminal.
    """

    ACTIVE = "active"
    DONE_EMPTY = "done_empty"
    DONE_BANNER = "done_banner"
    DONE_PAGE_LIMIT = "done_page_limit"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self is not PartitionStatus.ACTIVE


class RunStatus(Enum):
    """Status of a whole run."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ABORTED = "aborted"


@dataclass(frozen=True)
class FetchAttempt:
    """Record of a single try of a page fetch.

    Attributes:
        attempt: 1-based attempt number.
        delay: Seconds waited before this attempt (0 for the first).
        outcome: "success" or "transient_failure".
        error: Error message for failed attempts.
    """

    attempt: int
    delay: float
    outcome: str
    error: str | None = None


@dataclass
class PartitionState:
    """State of one partition while it is being crawled.

    Owned by the orchestrator for the duration of the partition and handed to
    the result sink once a terminal status has been set.

    Attributes:
        key: The partition key.
        cursor: Current page cursor (1-based).
        records: Records accumulated so far, in page order.
        status: ACTIVE until finish() is called.
        pages_fetched: Number of pages whose records were appended.
        failed_pages: Cursors of pages that failed permanently.
    """

    key: PartitionKey
    cursor: int = 1
    records: list[ExtractedRecord] = field(default_factory=list)
    status: PartitionStatus = PartitionStatus.ACTIVE
    pages_fetched: int = 0
    failed_pages: list[int] = field(default_factory=list)

    def append_page(self, page_records: list[ExtractedRecord]) -> None:
        """Append one page's records to the accumulated sequence."""
        self.records.extend(page_records)
        self.pages_fetched += 1

    def advance(self) -> None:
        self.cursor += 1

    def finish(self, status: PartitionStatus) -> None:
        """Set the terminal status.

        Raises:
            RuntimeError: If the status was already set, or status is ACTIVE.
        """
        if self.status.is_terminal:
            raise RuntimeError(
                f"Partition '{self.key}' already finished with "
                f"{self.status.value}"
            )
        if not status.is_terminal:
            raise RuntimeError("A partition cannot finish as ACTIVE")
        self.status = status


@dataclass(frozen=True)
class PartitionSummary:
    """Summary line of the run report for one partition."""

    key: PartitionKey
    status: PartitionStatus
    cursor: int
    record_count: int
    artifact: Path | None = None
    failed_pages: tuple[int, ...] = ()

    @classmethod
    def from_state(
        cls, state: PartitionState, artifact: Path | None
    ) -> PartitionSummary:
        return cls(
            key=state.key,
            status=state.status,
            cursor=state.cursor,
            record_count=len(state.records),
            artifact=artifact,
            failed_pages=tuple(state.failed_pages),
        )


@dataclass
class RunReport:
    """Report of a whole run.

    Attributes:
        status: Final run status.
        summaries: One summary per partition that reached the sink, in order.
        failure: The SinkError that aborted the run, if any. It carries the
            records that were not persisted.
    """

    status: RunStatus = RunStatus.COMPLETED
    summaries: list[PartitionSummary] = field(default_factory=list)
    failure: SinkError | None = None

    @property
    def record_count(self) -> int:
        return sum(summary.record_count for summary in self.summaries)

    def summary_for(self, key: PartitionKey) -> PartitionSummary | None:
        for summary in self.summaries:
            if summary.key == key:
                return summary
        return None
