"""Termination classifier.

Decides, after every page, whether a partition should keep paginating.

Two signals are combined:

1. Emptiness: a page with no records ends the partition (STOP_EMPTY). This
   dominates; the banner is not even probed.
2. Banner: the target site sometimes serves a populated page together with a
   warning that the results are off-topic (business rather than residential
   listings). When the page has records and the banner probe matches, the
   partition ends with STOP_BANNER. The page's records are still kept.

The banner probe is a bounded wait. Not finding the banner before the
timeout means "no banner", never an error.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable

from listwalk.data_types import Decision

logger = logging.getLogger(__name__)

BannerProbe = Callable[[], Awaitable[bool]]

# Extra time granted on top of the probe's own timeout before it is abandoned
PROBE_GUARD_MARGIN = 1.0


class BannerMatcher:
    """Matches banner text against the configured pattern."""

    def __init__(self, pattern: str) -> None:
        self.pattern = pattern
        self._regex = re.compile(pattern)

    def matches(self, text: str | None) -> bool:
        if not text:
            return False
        return self._regex.search(" ".join(text.split())) is not None


async def classify(
    record_count: int,
    banner_probe: BannerProbe | None = None,
    probe_timeout: float | None = None,
) -> Decision:
    """Classify one page.

    Args:
        record_count: Number of records extracted from the page.
        banner_probe: Optional zero-argument coroutine factory returning True
            when the off-topic banner is present. Only called when the page
            has records.
        probe_timeout: The probe's own bound in seconds. When given, the
            probe is abandoned shortly after it, and treated as no banner.

    Returns:
        The Decision for the page.
    """
    if record_count < 0:
        raise ValueError(f"record_count must not be negative: {record_count}")

    if record_count == 0:
        return Decision.STOP_EMPTY

    if banner_probe is None:
        return Decision.CONTINUE

    try:
        if probe_timeout is None:
            found = await banner_probe()
        else:
            found = await asyncio.wait_for(
                banner_probe(), timeout=probe_timeout + PROBE_GUARD_MARGIN
            )
    except TimeoutError:
        logger.debug("Banner probe timed out; treating as no banner")
        found = False

    if found:
        logger.info("Off-topic banner found; stopping partition")
        return Decision.STOP_BANNER
    return Decision.CONTINUE
