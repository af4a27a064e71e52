"""Playwright render client for JavaScript-heavy listing sites.

The client renders pages in a real browser and hands the rest of the engine a
serialized DOM snapshot, never a live browser reference. One page is created
lazily and reused for every navigation of the run.

Resource blocking (images, stylesheets, fonts and URL substrings such as ad
networks) is applied through request routing on that page; it is purely a
performance concern and invisible to the engine.

Example::

    async with PlaywrightRenderClient.open(headless=True) as client:
        document = await client.navigate(url, timeout=30.0)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Route,
    async_playwright,
)
from playwright.async_api import (
    Error as PlaywrightError,
)
from playwright.async_api import (
    TimeoutError as PlaywrightTimeoutError,
)

from listwalk.common.document import Document
from listwalk.common.exceptions import (
    HTMLResponseAssumptionException,
    NetworkException,
    RenderTimeoutException,
)
from listwalk.driver.render import banner_in_snapshot
from listwalk.termination import BannerMatcher

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

DEFAULT_BLOCKED_RESOURCE_TYPES = frozenset({"image", "stylesheet", "font"})


class PlaywrightRenderClient:
    """Render client backed by a Playwright browser context.

    Args:
        browser_context: Playwright browser context for navigations.
        blocked_resource_types: Resource types aborted before they load.
        blocked_url_substrings: Requests whose URL contains any of these are
            aborted.
    """

    def __init__(
        self,
        browser_context: BrowserContext,
        blocked_resource_types: frozenset[str] = DEFAULT_BLOCKED_RESOURCE_TYPES,
        blocked_url_substrings: tuple[str, ...] = (),
    ) -> None:
        self.browser_context = browser_context
        self.blocked_resource_types = blocked_resource_types
        self.blocked_url_substrings = blocked_url_substrings
        # Page reuse within context for sequential navigations
        self._page: Page | None = None

    @classmethod
    @asynccontextmanager
    async def open(
        cls,
        browser_type: str = "chromium",
        headless: bool = True,
        viewport: dict[str, int] | None = None,
        user_agent: str | None = None,
        locale: str = "en-US",
        **kwargs: Any,
    ) -> AsyncIterator[PlaywrightRenderClient]:
        """Open a browser and yield a client bound to a fresh context.

        Ensures the page, context, browser and Playwright itself are closed
        on exit.

        Args:
            browser_type: "chromium", "firefox" or "webkit".
            headless: Run the browser without a window.
            viewport: Viewport size (default 1280x720).
            user_agent: Custom user agent (default: browser default).
            locale: Browser locale.
            **kwargs: Passed to __init__ (blocked_resource_types, ...).
        """
        if viewport is None:
            viewport = {"width": 1280, "height": 720}

        playwright = await async_playwright().start()
        try:
            browser_launcher = getattr(playwright, browser_type)
            browser: Browser = await browser_launcher.launch(
                headless=headless, args=["--no-sandbox"]
            )
            try:
                context_kwargs: dict[str, Any] = {
                    "viewport": viewport,
                    "locale": locale,
                    "bypass_csp": True,
                }
                if user_agent:
                    context_kwargs["user_agent"] = user_agent

                browser_context = await browser.new_context(**context_kwargs)
                try:
                    client = cls(browser_context=browser_context, **kwargs)
                    try:
                        yield client
                    finally:
                        await client.close()
                finally:
                    await browser_context.close()
            finally:
                await browser.close()
        finally:
            await playwright.stop()

    async def _get_page(self) -> Page:
        if self._page is None:
            self._page = await self.browser_context.new_page()
            if self.blocked_resource_types or self.blocked_url_substrings:
                await self._page.route("**/*", self._route_request)
        return self._page

    async def _route_request(self, route: Route) -> None:
        request = route.request
        if request.resource_type in self.blocked_resource_types or any(
            part in request.url for part in self.blocked_url_substrings
        ):
            await route.abort()
        else:
            await route.continue_()

    async def navigate(self, url: str, timeout: float) -> Document:
        page = await self._get_page()
        try:
            response = await page.goto(
                url, wait_until="domcontentloaded", timeout=timeout * 1000
            )
            html_content = await page.content()
        except PlaywrightTimeoutError as e:
            logger.warning(f"Playwright timeout for {url}: {e}")
            raise RenderTimeoutException(
                url=url, timeout_seconds=timeout
            ) from e
        except PlaywrightError as e:
            raise NetworkException(url=url, reason=e.message) from e

        status_code = response.status if response is not None else 200
        if status_code >= 500:
            raise HTMLResponseAssumptionException(
                status_code=status_code, expected_codes=[200], url=url
            )

        return Document(
            url=page.url, text=html_content, status_code=status_code
        )

    async def probe_banner(
        self,
        document: Document,
        selector: str,
        matcher: BannerMatcher,
        timeout: float,
    ) -> bool:
        if self._page is None:
            return banner_in_snapshot(document, selector, matcher)
        try:
            element = await self._page.wait_for_selector(
                selector, timeout=timeout * 1000
            )
            if element is None:
                return False
            text = await element.inner_text()
        except PlaywrightTimeoutError:
            logger.debug(f"No banner on {document.url}")
            return False
        except PlaywrightError as e:
            logger.debug(f"Banner probe failed on {document.url}: {e.message}")
            return False

        logger.info(f"Warning found: {text.strip()}")
        return matcher.matches(text)

    async def close(self) -> None:
        if self._page is not None:
            await self._page.close()
            self._page = None
