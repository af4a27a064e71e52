"""Crawl orchestrator.

The orchestrator walks the partition sequence and, within each partition,
the page sequence. For every page it builds the URL, fetches and extracts
under the retry policy, appends the page's records, and asks the termination
classifier whether to continue. A partition that reaches a terminal status
is flushed to the result sink exactly once, before the next partition
starts.

Each partition moves through::

    FETCH_PAGE -> CHECK_TERMINATION -> (NEXT_PAGE -> FETCH_PAGE | DONE)

Runs are sequential: one partition, one page, one render client at a time.
Politeness comes from the randomized inter-page delay and, optionally, a
pages-per-minute rate limit on navigations.

Graceful shutdown is driven by an optional asyncio.Event. It is checked
before every page and interrupts backoff and inter-page waits. The partition
in progress is flushed with status ABORTED and the run ends as CANCELLED.

Example::

    async with HttpxRenderClient() as client:
        orchestrator = CrawlOrchestrator(config, client, sink_from_config(config))
        report = await orchestrator.run()
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from pathlib import Path
from urllib.parse import urlsplit

from pyrate_limiter import Duration, InMemoryBucket, Limiter, Rate
from typing_extensions import assert_never

from listwalk.common.document import Document
from listwalk.common.exceptions import (
    ExtractionError,
    PermanentFetchError,
    SinkError,
)
from listwalk.common.extraction import ListingExtractor
from listwalk.config import CrawlConfiguration, PageFailurePolicy
from listwalk.data_types import (
    Decision,
    ExtractedRecord,
    PartitionKey,
    PartitionState,
    PartitionStatus,
    PartitionSummary,
    RunReport,
    RunStatus,
)
from listwalk.driver.render import RenderClient
from listwalk.partitions import PartitionIterator
from listwalk.retry import RetryPolicy, Sleeper
from listwalk.sink import ResultSink
from listwalk.termination import BannerMatcher, BannerProbe, classify

logger = logging.getLogger(__name__)


def build_rate_limiter(pages_per_minute: int) -> Limiter:
    """Create an in-memory limiter allowing *pages_per_minute* navigations."""
    return Limiter(InMemoryBucket([Rate(pages_per_minute, Duration.MINUTE)]))


class CrawlOrchestrator:
    """Sequential partition and page crawler.

    Args:
        config: Validated crawl configuration.
        render_client: Client used for every navigation of the run.
        sink: Sink receiving each finished partition.
        extractor: Optional extractor (default: built from the config).
        partitions: Optional partition sequence (default: from the config).
        stop_event: Optional event for graceful shutdown.
        rate_limiter: Optional pyrate_limiter Limiter for navigations.
            When omitted and ``config.pages_per_minute`` is set, one is
            created.
        sleep: Optional awaitable sleeper used for backoff and inter-page
            delays. Returns False when the wait was cancelled. Defaults to
            a wait that the stop event interrupts.
        rng: Random source for inter-page delays.
        on_run_start: Optional async callback invoked when the run starts.
            Receives the run name.
        on_partition_complete: Optional async callback invoked after each
            partition has been flushed. Receives its PartitionSummary.
        on_run_complete: Optional async callback invoked when the run ends,
            on every path. Receives the run name and the RunReport.
    """

    def __init__(
        self,
        config: CrawlConfiguration,
        render_client: RenderClient,
        sink: ResultSink,
        extractor: ListingExtractor | None = None,
        partitions: PartitionIterator | None = None,
        stop_event: asyncio.Event | None = None,
        rate_limiter: Limiter | None = None,
        sleep: Sleeper | None = None,
        rng: random.Random | None = None,
        on_run_start: Callable[[str], Awaitable[None]] | None = None,
        on_partition_complete: Callable[[PartitionSummary], Awaitable[None]]
        | None = None,
        on_run_complete: Callable[[str, RunReport], Awaitable[None]]
        | None = None,
    ) -> None:
        self.config = config
        self.render_client = render_client
        self.sink = sink
        self.extractor = extractor or ListingExtractor(
            config.listing_selector, config.field_specs
        )
        self.partitions = partitions or PartitionIterator.from_config(
            config.partitions
        )
        self.stop_event = stop_event
        if rate_limiter is None and config.pages_per_minute is not None:
            rate_limiter = build_rate_limiter(config.pages_per_minute)
        self.rate_limiter = rate_limiter
        self._sleep = sleep or self._wait
        self._rng = rng or random.Random()
        self.retry_policy = RetryPolicy(
            max_attempts=config.max_retries,
            base_delay=config.backoff_base_seconds,
            max_delay=config.backoff_max_seconds,
            sleep=self._sleep,
        )
        self.banner_matcher = (
            BannerMatcher(config.banner_pattern)
            if config.banner_enabled
            else None
        )
        self.on_run_start = on_run_start
        self.on_partition_complete = on_partition_complete
        self.on_run_complete = on_run_complete

    @property
    def run_name(self) -> str:
        host = urlsplit(self.config.url_template).netloc
        if self.config.region:
            return f"{host} ({self.config.region})"
        return host

    def _stopped(self) -> bool:
        return self.stop_event is not None and self.stop_event.is_set()

    async def _wait(self, seconds: float) -> bool:
        """Sleep for *seconds*; return False if the stop event fired."""
        if self.stop_event is None:
            if seconds > 0:
                await asyncio.sleep(seconds)
            return True
        if seconds <= 0:
            return not self.stop_event.is_set()
        try:
            await asyncio.wait_for(self.stop_event.wait(), timeout=seconds)
        except TimeoutError:
            return True
        return False

    async def run(self, start_at: PartitionKey | None = None) -> RunReport:
        """Crawl every partition, starting at *start_at* if given.

        Returns:
            The RunReport. Its status is COMPLETED when every partition
            finished, CANCELLED when the stop event ended the run, and
            ABORTED when the sink failed (``report.failure`` then holds the
            SinkError and the records it could not persist).

        Raises:
            ConfigurationError: If *start_at* is not part of the sequence.
        """
        # Resolve the start key before anything is crawled
        keys = iter(self.partitions.keys(start_at))
        report = RunReport()
        name = self.run_name

        logger.info(f"Starting run for {name}")
        if self.on_run_start:
            await self.on_run_start(name)

        try:
            for key in keys:
                if self._stopped():
                    logger.info("Stop requested; not starting more partitions")
                    report.status = RunStatus.CANCELLED
                    break

                state = PartitionState(key=key)
                try:
                    await self._crawl(state)
                except (Exception, asyncio.CancelledError):
                    report.status = RunStatus.ABORTED
                    if not state.status.is_terminal:
                        state.finish(PartitionStatus.ABORTED)
                    await self._flush(state, report)
                    raise

                if not await self._flush(state, report):
                    break
                if state.status is PartitionStatus.ABORTED and self._stopped():
                    report.status = RunStatus.CANCELLED
                    break
        finally:
            logger.info(
                f"Run {report.status.value}: {len(report.summaries)} "
                f"partitions, {report.record_count} records",
                extra={
                    "status": report.status.value,
                    "partition_count": len(report.summaries),
                    "record_count": report.record_count,
                },
            )
            if self.on_run_complete:
                await self.on_run_complete(name, report)

        return report

    async def _flush(self, state: PartitionState, report: RunReport) -> bool:
        """Hand a finished partition to the sink and record its summary.

        Returns False (and marks the run ABORTED) if the sink failed.
        """
        artifact: Path | None
        try:
            artifact = self.sink.flush(state.key, state.records)
        except SinkError as e:
            logger.error(
                f"Aborting run: partition '{state.key}' could not be "
                f"persisted ({len(e.records)} records): {e}"
            )
            report.status = RunStatus.ABORTED
            report.failure = e
            return False

        summary = PartitionSummary.from_state(state, artifact)
        report.summaries.append(summary)
        if self.on_partition_complete:
            await self.on_partition_complete(summary)
        return True

    async def crawl_partition(self, key: PartitionKey) -> PartitionState:
        """Crawl a single partition without flushing it.

        Returns:
            The partition state with a terminal status.
        """
        state = PartitionState(key=key)
        await self._crawl(state)
        return state

    async def _crawl(self, state: PartitionState) -> None:
        config = self.config
        consecutive_failures = 0
        logger.info(
            f"Starting partition {state.key}",
            extra={"partition": state.key},
        )

        while True:
            if self._stopped():
                logger.info(
                    f"Stop requested during partition {state.key} "
                    f"at page {state.cursor}"
                )
                state.finish(PartitionStatus.ABORTED)
                return

            url = config.build_url(state.key, state.cursor)
            logger.info(f"Scraping {url}")
            document: Document | None = None
            page_records: list[ExtractedRecord] = []
            try:
                document, page_records = await self.retry_policy.execute(
                    lambda url=url: self._fetch_page(url), description=url
                )
            except (PermanentFetchError, ExtractionError) as e:
                if isinstance(e, PermanentFetchError) and e.cancelled:
                    state.failed_pages.append(state.cursor)
                    state.finish(PartitionStatus.ABORTED)
                    return
                if not self._handle_page_failure(state, e):
                    return
                consecutive_failures += 1
                if self._skip_failed_page(consecutive_failures):
                    if not await self._next_page(state):
                        return
                    continue
            else:
                consecutive_failures = 0
                state.append_page(page_records)

            probe = self._banner_probe(document)
            decision = await classify(
                len(page_records),
                banner_probe=probe,
                probe_timeout=config.banner_timeout_seconds,
            )
            match decision:
                case Decision.CONTINUE:
                    logger.info(
                        f"{len(page_records)} entries added for partition "
                        f"{state.key} page {state.cursor}",
                        extra={
                            "partition": state.key,
                            "page": state.cursor,
                            "record_count": len(page_records),
                        },
                    )
                    if not await self._next_page(state):
                        return
                case Decision.STOP_EMPTY:
                    logger.info(
                        f"No more results for partition {state.key} "
                        f"on page {state.cursor}"
                    )
                    state.finish(PartitionStatus.DONE_EMPTY)
                    return
                case Decision.STOP_BANNER:
                    logger.info(
                        f"Off-topic results for partition {state.key} "
                        f"on page {state.cursor}; moving on"
                    )
                    state.finish(PartitionStatus.DONE_BANNER)
                    return
                case _:
                    assert_never(decision)

    async def _fetch_page(
        self, url: str
    ) -> tuple[Document, list[ExtractedRecord]]:
        if self.rate_limiter is not None:
            await self.rate_limiter.try_acquire_async(
                name="navigation", weight=1
            )
        document = await self.render_client.navigate(
            url, timeout=self.config.navigation_timeout_seconds
        )
        return document, self.extractor.extract(document)

    def _handle_page_failure(
        self, state: PartitionState, error: Exception
    ) -> bool:
        """Record a permanently failed page.

        Returns False when the failure policy ends the partition here.
        """
        state.failed_pages.append(state.cursor)
        logger.error(
            f"Page {state.cursor} of partition {state.key} failed: {error}",
            extra={
                "partition": state.key,
                "page": state.cursor,
                "error_type": type(error).__name__,
            },
        )
        if self.config.page_failure_policy is PageFailurePolicy.ABORT:
            state.finish(PartitionStatus.ABORTED)
            return False
        return True

    def _skip_failed_page(self, consecutive_failures: int) -> bool:
        """Whether a failed page is stepped over rather than treated as empty."""
        return (
            self.config.page_failure_policy is PageFailurePolicy.SKIP
            and consecutive_failures < self.config.max_consecutive_failures
        )

    def _banner_probe(self, document: Document | None) -> BannerProbe | None:
        selector = self.config.banner_selector
        matcher = self.banner_matcher
        if document is None or selector is None or matcher is None:
            return None
        timeout = self.config.banner_timeout_seconds

        def probe() -> Awaitable[bool]:
            return self.render_client.probe_banner(
                document, selector, matcher, timeout
            )

        return probe

    async def _next_page(self, state: PartitionState) -> bool:
        """Wait out the inter-page delay and advance the cursor.

        Returns False when the partition ended instead: the page limit was
        reached, or the wait was cancelled.
        """
        max_pages = self.config.max_pages
        if max_pages is not None and state.cursor >= max_pages:
            logger.info(
                f"Page limit {max_pages} reached for partition {state.key}"
            )
            state.finish(PartitionStatus.DONE_PAGE_LIMIT)
            return False

        low, high = self.config.inter_page_delay_seconds
        if not await self._sleep(self._rng.uniform(low, high)):
            logger.info(f"Stop requested during partition {state.key}")
            state.finish(PartitionStatus.ABORTED)
            return False

        state.advance()
        return True
