"""Plain HTTP render client.

For listing sites that serve complete HTML without JavaScript, a full browser
is unnecessary. HttpxRenderClient fetches pages with a shared
httpx.AsyncClient and checks the banner against the static snapshot.

Example::

    async with HttpxRenderClient(user_agent="listwalk/0.1") as client:
        document = await client.navigate(url, timeout=30.0)
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from listwalk.common.document import Document
from listwalk.common.exceptions import (
    ExtractionError,
    HTMLResponseAssumptionException,
    NetworkException,
    RenderTimeoutException,
)
from listwalk.driver.render import banner_in_snapshot
from listwalk.termination import BannerMatcher

logger = logging.getLogger(__name__)

# 429 is retried like a server error
TRANSIENT_STATUS_CODES = frozenset({429})


class HttpxRenderClient:
    """Render client backed by httpx.AsyncClient."""

    def __init__(
        self,
        user_agent: str | None = None,
        blocked_url_substrings: tuple[str, ...] = (),
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            user_agent: Optional User-Agent header for every request.
            blocked_url_substrings: URLs containing any of these are refused
                without a request.
            client: Optional pre-built httpx.AsyncClient (not closed by us).
        """
        self.blocked_url_substrings = blocked_url_substrings
        if client is not None:
            self._client = client
            self._owns_client = False
        else:
            headers = {"User-Agent": user_agent} if user_agent else {}
            self._client = httpx.AsyncClient(
                headers=headers, follow_redirects=True
            )
            self._owns_client = True

    async def __aenter__(self) -> HttpxRenderClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def navigate(self, url: str, timeout: float) -> Document:
        if any(part in url for part in self.blocked_url_substrings):
            raise NetworkException(url=url, reason="URL is blocked")

        try:
            response = await self._client.get(url, timeout=timeout)
        except httpx.TimeoutException as e:
            raise RenderTimeoutException(
                url=url, timeout_seconds=timeout
            ) from e
        except httpx.TransportError as e:
            raise NetworkException(
                url=url, reason=str(e) or type(e).__name__
            ) from e

        if (
            response.status_code >= 500
            or response.status_code in TRANSIENT_STATUS_CODES
        ):
            raise HTMLResponseAssumptionException(
                status_code=response.status_code,
                expected_codes=[200],
                url=url,
            )
        if response.status_code >= 400:
            logger.warning(f"HTTP {response.status_code} from {url}")

        return Document(
            url=str(response.url),
            text=response.text,
            status_code=response.status_code,
        )

    async def probe_banner(
        self,
        document: Document,
        selector: str,
        matcher: BannerMatcher,
        timeout: float,
    ) -> bool:
        # A static snapshot cannot change, so there is nothing to wait for
        try:
            return banner_in_snapshot(document, selector, matcher)
        except ExtractionError as e:
            logger.debug(f"Banner probe skipped for {document.url}: {e}")
            return False
