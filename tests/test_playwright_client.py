"""Tests for PlaywrightRenderClient.

Most tests drive the client with small fakes of the Playwright page and
context, so no browser is needed. TestRealBrowser renders the Bug Directory
in Chromium and is skipped when no browser can be launched.
"""

from contextlib import AsyncExitStack

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from listwalk.common.document import Document
from listwalk.common.exceptions import (
    HTMLResponseAssumptionException,
    NetworkException,
    RenderTimeoutException,
)
from listwalk.data_types import PartitionStatus
from listwalk.driver.orchestrator import CrawlOrchestrator
from listwalk.driver.playwright_client import PlaywrightRenderClient
from listwalk.termination import BannerMatcher
from listwalk.testing import MemorySink
from tests.mock_server import generate_page_html
from tests.utils import make_config

BANNER_SELECTOR = ".ypalert.ypalert--warning"
MATCHER = BannerMatcher("didn't find any residential listings")


class FakeResponse:
    def __init__(self, status: int) -> None:
        self.status = status


class FakeRequest:
    def __init__(self, url: str, resource_type: str) -> None:
        self.url = url
        self.resource_type = resource_type


class FakeRoute:
    def __init__(self, request: FakeRequest) -> None:
        self.request = request
        self.outcome: str | None = None

    async def abort(self) -> None:
        self.outcome = "aborted"

    async def continue_(self) -> None:
        self.outcome = "continued"


class FakeElement:
    def __init__(self, text: str) -> None:
        self.text = text

    async def inner_text(self) -> str:
        return self.text


class FakePage:
    """Fake Playwright page serving scripted HTML."""

    def __init__(
        self,
        html: str = "<html><body></body></html>",
        status: int = 200,
        goto_error: Exception | None = None,
        banner: FakeElement | Exception | None = None,
    ) -> None:
        self.html = html
        self.status = status
        self.goto_error = goto_error
        self.banner = banner
        self.url = "about:blank"
        self.gotos: list[tuple[str, str, float]] = []
        self.routes: list[str] = []
        self.route_handler = None
        self.closed = False

    async def goto(self, url: str, wait_until: str, timeout: float):
        self.gotos.append((url, wait_until, timeout))
        if self.goto_error is not None:
            raise self.goto_error
        self.url = url
        return FakeResponse(self.status)

    async def content(self) -> str:
        return self.html

    async def route(self, pattern: str, handler) -> None:
        self.routes.append(pattern)
        self.route_handler = handler

    async def wait_for_selector(self, selector: str, timeout: float):
        if isinstance(self.banner, Exception):
            raise self.banner
        if self.banner is None:
            raise PlaywrightTimeoutError(
                f"Timeout {timeout}ms exceeded waiting for {selector}"
            )
        return self.banner

    async def close(self) -> None:
        self.closed = True


class FakeContext:
    def __init__(self, page: FakePage) -> None:
        self.page = page
        self.pages_created = 0

    async def new_page(self) -> FakePage:
        self.pages_created += 1
        return self.page


def make_client(page: FakePage, **kwargs) -> PlaywrightRenderClient:
    return PlaywrightRenderClient(
        browser_context=FakeContext(page),  # type: ignore[arg-type]
        **kwargs,
    )


class TestNavigate:
    """Tests for PlaywrightRenderClient.navigate()."""

    @pytest.mark.asyncio
    async def test_returns_snapshot(self):
        """A rendered page shall become a Document of its serialized DOM."""
        html = generate_page_html("a", 1)
        page = FakePage(html=html)
        client = make_client(page)

        document = await client.navigate("http://x/1/a/", timeout=2.5)

        assert document.url == "http://x/1/a/"
        assert document.text == html
        assert document.status_code == 200
        assert page.gotos == [("http://x/1/a/", "domcontentloaded", 2500)]

    @pytest.mark.asyncio
    async def test_page_reused(self):
        """One page shall be reused for every navigation."""
        page = FakePage()
        context = FakeContext(page)
        client = PlaywrightRenderClient(
            browser_context=context,  # type: ignore[arg-type]
        )

        await client.navigate("http://x/1/", timeout=1.0)
        await client.navigate("http://x/2/", timeout=1.0)

        assert context.pages_created == 1
        assert len(page.gotos) == 2

    @pytest.mark.asyncio
    async def test_timeout(self):
        """A Playwright timeout shall raise RenderTimeoutException."""
        page = FakePage(goto_error=PlaywrightTimeoutError("Timeout 1000ms"))
        client = make_client(page)

        with pytest.raises(RenderTimeoutException) as exc_info:
            await client.navigate("http://x/slow", timeout=1.0)

        assert exc_info.value.timeout_seconds == 1.0

    @pytest.mark.asyncio
    async def test_network_error(self):
        """Other Playwright errors shall raise NetworkException."""
        page = FakePage(
            goto_error=PlaywrightError("net::ERR_CONNECTION_REFUSED")
        )
        client = make_client(page)

        with pytest.raises(NetworkException) as exc_info:
            await client.navigate("http://x/", timeout=1.0)

        assert "ERR_CONNECTION_REFUSED" in exc_info.value.reason

    @pytest.mark.asyncio
    async def test_server_error(self):
        """A 5xx response shall raise HTMLResponseAssumptionException."""
        client = make_client(FakePage(status=502))

        with pytest.raises(HTMLResponseAssumptionException) as exc_info:
            await client.navigate("http://x/", timeout=1.0)

        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_close(self):
        """close() shall close the page."""
        page = FakePage()
        client = make_client(page)
        await client.navigate("http://x/", timeout=1.0)

        await client.close()

        assert page.closed


class TestResourceBlocking:
    """Tests for request routing."""

    @pytest.mark.parametrize(
        "url, resource_type, outcome",
        [
            ("http://x/logo.png", "image", "aborted"),
            ("http://x/site.css", "stylesheet", "aborted"),
            ("http://x/font.woff2", "font", "aborted"),
            ("https://ads.sharethrough.com/x.js", "script", "aborted"),
            ("http://x/app.js", "script", "continued"),
            ("http://x/1/a/", "document", "continued"),
        ],
    )
    @pytest.mark.asyncio
    async def test_route(self, url, resource_type, outcome):
        """Blocked resource types and URL substrings shall be aborted."""
        page = FakePage()
        client = make_client(
            page, blocked_url_substrings=("sharethrough.com",)
        )
        await client.navigate("http://x/1/a/", timeout=1.0)
        route = FakeRoute(FakeRequest(url, resource_type))

        await page.route_handler(route)

        assert page.routes == ["**/*"]
        assert route.outcome == outcome

    @pytest.mark.asyncio
    async def test_no_routing_without_block_list(self):
        """Nothing shall be routed when nothing is blocked."""
        page = FakePage()
        client = make_client(page, blocked_resource_types=frozenset())

        await client.navigate("http://x/", timeout=1.0)

        assert page.routes == []


class TestProbeBanner:
    """Tests for PlaywrightRenderClient.probe_banner()."""

    @pytest.mark.asyncio
    async def test_banner_matches(self):
        """A banner whose text matches shall be reported."""
        page = FakePage(
            banner=FakeElement(
                "We didn't find any residential listings, but we found "
                "business listings matching your search."
            )
        )
        client = make_client(page)
        document = await client.navigate("http://x/", timeout=1.0)

        assert await client.probe_banner(
            document, BANNER_SELECTOR, MATCHER, timeout=0.1
        )

    @pytest.mark.asyncio
    async def test_other_warning(self):
        """A banner with other text shall not stop the partition."""
        page = FakePage(banner=FakeElement("Scheduled maintenance tonight."))
        client = make_client(page)
        document = await client.navigate("http://x/", timeout=1.0)

        assert not await client.probe_banner(
            document, BANNER_SELECTOR, MATCHER, timeout=0.1
        )

    @pytest.mark.asyncio
    async def test_no_banner_before_timeout(self):
        """A banner that never appears shall count as absent."""
        client = make_client(FakePage())
        document = await client.navigate("http://x/", timeout=1.0)

        assert not await client.probe_banner(
            document, BANNER_SELECTOR, MATCHER, timeout=0.1
        )

    @pytest.mark.asyncio
    async def test_probe_error(self):
        """A Playwright error while probing shall count as absent."""
        page = FakePage(banner=PlaywrightError("Target closed"))
        client = make_client(page)
        document = await client.navigate("http://x/", timeout=1.0)

        assert not await client.probe_banner(
            document, BANNER_SELECTOR, MATCHER, timeout=0.1
        )

    @pytest.mark.asyncio
    async def test_without_page_uses_snapshot(self):
        """Before any navigation, the snapshot shall be checked instead."""
        client = make_client(FakePage())
        document = Document(url="http://x/", text=generate_page_html("z", 1))

        assert await client.probe_banner(
            document, BANNER_SELECTOR, MATCHER, timeout=0.1
        )


class TestRealBrowser:
    """Renders the Bug Directory in a real browser."""

    @pytest.mark.asyncio
    async def test_run_against_server(self, server_url):
        """A Chromium-backed run shall walk partitions like the HTTP client."""
        config = make_config(
            url_template=(
                f"{server_url}/search/{{page}}/{{partition}}/{{region}}/"
            ),
            partitions={"kind": "list", "keys": ["b", "z"]},
        )
        sink = MemorySink()

        async with AsyncExitStack() as stack:
            try:
                client = await stack.enter_async_context(
                    PlaywrightRenderClient.open(headless=True)
                )
            except PlaywrightError as e:
                pytest.skip(f"Browser unavailable: {e.message}")

            report = await CrawlOrchestrator(config, client, sink).run()

        b = report.summary_for("b")
        z = report.summary_for("z")
        assert (b.status, b.record_count) == (PartitionStatus.DONE_EMPTY, 2)
        assert (z.status, z.record_count) == (PartitionStatus.DONE_BANNER, 2)
        assert sink.flushed["b"][0]["address"] == "3 Hive Ave, Meadow Hollow"
