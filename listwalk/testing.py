"""Testing utilities for the crawl orchestrator.

This module provides in-memory stand-ins for the orchestrator's
collaborators:

- ScriptedRenderClient: a render client that serves canned pages, raises
  canned errors and tracks every navigation.
- MemorySink: a result sink that keeps flushed partitions in memory and can
  be told to fail for given keys.
- listing_html(): builds a listing page from rows of field values.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Iterable
from html import escape
from pathlib import Path

from listwalk.common.document import Document
from listwalk.common.exceptions import SinkError
from listwalk.data_types import ExtractedRecord, PartitionKey
from listwalk.driver.render import banner_in_snapshot
from listwalk.termination import BannerMatcher

EMPTY_PAGE = "<html><body><p>No listings.</p></body></html>"


def listing_html(
    rows: Iterable[dict[str, str]],
    banner: str | None = None,
    listing_class: str = "listing",
    banner_class: str = "alert",
) -> str:
    """Build a listing page.

    Each row becomes a ``div.listing`` whose children are one ``span`` per
    field, with the field name as its class. An optional banner is rendered
    as ``div.alert`` before the listings.

    Example::

        listing_html([{"name": "Ada", "phone": "555-0100"}])
        # <div class="listing"><span class="name">Ada</span>...
    """
    parts = ["<html><body>"]
    if banner is not None:
        parts.append(f'<div class="{banner_class}">{escape(banner)}</div>')
    for row in rows:
        cells = "".join(
            f'<span class="{escape(name)}">{escape(value)}</span>'
            for name, value in row.items()
        )
        parts.append(f'<div class="{listing_class}">{cells}</div>')
    parts.append("</body></html>")
    return "".join(parts)


class ScriptedRenderClient:
    """Render client that serves scripted pages.

    This client allows tests to:
    - Supply a page for a URL
    - Raise errors for a URL, once each, before its page is served
    - Compute responses with a generator function
    - Track which URLs were navigated and probed, in order

    URLs without a script are served ``default_html`` (an empty page unless
    changed), which ends a partition.

    Example::

        client = ScriptedRenderClient()
        client.add_page(url1, listing_html([{"name": "Ada"}]))
        client.add_errors(url2, [RenderTimeoutException(url2, 30.0)])
    """

    def __init__(self, default_html: str = EMPTY_PAGE) -> None:
        self.default_html = default_html
        self._pages: dict[str, str] = {}
        self._errors: dict[str, deque[Exception]] = {}
        self._generators: dict[str, Callable[[str, int], str]] = {}
        self.requests: list[str] = []
        self.probes: list[str] = []
        self.on_navigate: Callable[[str], None] | None = None
        self.closed = False

    def add_page(self, url: str, html: str) -> None:
        self._pages[url] = html

    def add_errors(self, url: str, errors: Iterable[Exception]) -> None:
        """Raise each of *errors* once, in order, on navigations to *url*."""
        self._errors.setdefault(url, deque()).extend(errors)

    def add_response_generator(
        self, url: str, generator: Callable[[str, int], str]
    ) -> None:
        """Compute the page for *url* from (url, call_count).

        The generator may raise to simulate a failure on a given call.
        """
        self._generators[url] = generator

    def get_request_count(self, url: str) -> int:
        return self.requests.count(url)

    async def navigate(self, url: str, timeout: float) -> Document:
        self.requests.append(url)
        if self.on_navigate is not None:
            self.on_navigate(url)

        pending = self._errors.get(url)
        if pending:
            raise pending.popleft()

        if url in self._generators:
            html = self._generators[url](url, self.get_request_count(url))
        else:
            html = self._pages.get(url, self.default_html)
        return Document(url=url, text=html)

    async def probe_banner(
        self,
        document: Document,
        selector: str,
        matcher: BannerMatcher,
        timeout: float,
    ) -> bool:
        self.probes.append(document.url)
        return banner_in_snapshot(document, selector, matcher)

    async def close(self) -> None:
        self.closed = True


class MemorySink:
    """Result sink that keeps every flushed partition in memory.

    Attributes:
        flushed: Records by partition key, in flush order.
        fail_on: Partition keys whose flush raises SinkError.
    """

    def __init__(self, fail_on: Iterable[PartitionKey] = ()) -> None:
        self.flushed: dict[PartitionKey, list[ExtractedRecord]] = {}
        self.flush_calls: list[PartitionKey] = []
        self.fail_on = set(fail_on)

    def flush(
        self, partition_key: PartitionKey, records: list[ExtractedRecord]
    ) -> Path:
        self.flush_calls.append(partition_key)
        if partition_key in self.fail_on:
            raise SinkError(
                partition_key, list(records), OSError("No space left on device")
            )
        self.flushed[partition_key] = list(records)
        return Path("memory") / f"{partition_key}_entries_{len(records)}"
