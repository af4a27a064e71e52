"""Render client contract.

A render client opens a URL and returns a Document snapshot of the rendered
page, or raises a TransientException (timeout, network failure, 5xx). It also
answers the banner probe for the page it rendered last.

The client (and the browser page or HTTP connection pool behind it) is
reused for every page of every partition in a run and must only be used by
one crawl flow at a time.
"""

from __future__ import annotations

from typing import Protocol

from listwalk.common.document import Document, visible_text
from listwalk.termination import BannerMatcher


class RenderClient(Protocol):
    async def navigate(self, url: str, timeout: float) -> Document:
        """Render *url* and return a snapshot of the page.

        Args:
            url: Absolute URL to open.
            timeout: Navigation bound in seconds.

        Raises:
            TransientException: On timeout, network failure or 5xx.
        """
        ...

    async def probe_banner(
        self,
        document: Document,
        selector: str,
        matcher: BannerMatcher,
        timeout: float,
    ) -> bool:
        """Return True if the banner is present on *document*'s page.

        Waits at most *timeout* seconds. Not finding the banner in time
        returns False.
        """
        ...

    async def close(self) -> None: ...


def banner_in_snapshot(
    document: Document, selector: str, matcher: BannerMatcher
) -> bool:
    """Check a static snapshot for a banner matching *matcher*.

    Used by clients that cannot wait on a live page. Any node matched by
    *selector* whose text matches counts.
    """
    for node in document.select(selector):
        if matcher.matches(visible_text(node)):
            return True
    return False
