"""Tests for HttpxRenderClient against the Bug Directory mock server.

Key behaviors tested:
- Successful pages become Document snapshots
- 5xx and 429 responses raise a retryable exception
- Timeouts and refused connections map to transient exceptions
- The banner is probed on the static snapshot
- A full run against the server walks every partition to its end
"""

import httpx
import pytest

from listwalk.common.document import Document, visible_text
from listwalk.common.exceptions import (
    HTMLResponseAssumptionException,
    NetworkException,
    RenderTimeoutException,
    TransientException,
)
from listwalk.data_types import PartitionStatus, RunStatus
from listwalk.driver.http_client import HttpxRenderClient
from listwalk.driver.orchestrator import CrawlOrchestrator
from listwalk.termination import BannerMatcher
from listwalk.testing import MemorySink
from tests.mock_server import BANNER_TEXT, REGION
from tests.utils import find_free_port, make_config

BANNER_SELECTOR = ".ypalert.ypalert--warning"


class TestNavigate:
    """Tests for HttpxRenderClient.navigate()."""

    @pytest.mark.asyncio
    async def test_returns_document(self, server_url):
        """A 200 response shall become a Document with the page HTML."""
        url = f"{server_url}/search/1/a/{REGION}/"

        async with HttpxRenderClient() as client:
            document = await client.navigate(url, timeout=5.0)

        assert isinstance(document, Document)
        assert document.status_code == 200
        assert document.url == url
        assert "Ant, Adelaide" in document.text

    @pytest.mark.asyncio
    async def test_client_error_is_returned(self, server_url):
        """A 404 response shall still be returned as a Document."""
        async with HttpxRenderClient() as client:
            document = await client.navigate(
                f"{server_url}/status/404", timeout=5.0
            )

        assert document.status_code == 404

    @pytest.mark.parametrize("code", [500, 503, 429])
    @pytest.mark.asyncio
    async def test_retryable_status(self, server_url, code):
        """5xx and 429 responses shall raise a transient exception."""
        async with HttpxRenderClient() as client:
            with pytest.raises(HTMLResponseAssumptionException) as exc_info:
                await client.navigate(
                    f"{server_url}/status/{code}", timeout=5.0
                )

        assert exc_info.value.status_code == code
        assert isinstance(exc_info.value, TransientException)

    @pytest.mark.asyncio
    async def test_timeout(self, server_url):
        """A response slower than the timeout shall raise RenderTimeoutException."""
        async with HttpxRenderClient() as client:
            with pytest.raises(RenderTimeoutException) as exc_info:
                await client.navigate(f"{server_url}/slow", timeout=0.2)

        assert exc_info.value.timeout_seconds == 0.2

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        """A refused connection shall raise NetworkException."""
        url = f"http://127.0.0.1:{find_free_port()}/search/1/a/"

        async with HttpxRenderClient() as client:
            with pytest.raises(NetworkException) as exc_info:
                await client.navigate(url, timeout=2.0)

        assert exc_info.value.url == url

    @pytest.mark.asyncio
    async def test_blocked_url(self, server_url):
        """A URL containing a blocked substring shall not be requested."""
        async with HttpxRenderClient(
            blocked_url_substrings=("sharethrough.com",)
        ) as client:
            with pytest.raises(NetworkException, match="blocked"):
                await client.navigate(
                    "https://ads.sharethrough.com/x", timeout=1.0
                )

    @pytest.mark.asyncio
    async def test_user_agent(self, server_url):
        """The configured User-Agent shall be sent with each request."""
        seen: list[str] = []

        async def record(request: httpx.Request) -> None:
            seen.append(request.headers["User-Agent"])

        http = httpx.AsyncClient(
            headers={"User-Agent": "listwalk-tests"},
            event_hooks={"request": [record]},
        )
        client = HttpxRenderClient(client=http)
        await client.navigate(
            f"{server_url}/search/1/b/{REGION}/", timeout=5.0
        )
        await client.close()

        # A caller-supplied client is left open
        assert not http.is_closed
        await http.aclose()
        assert seen == ["listwalk-tests"]


class TestProbeBanner:
    """Tests for HttpxRenderClient.probe_banner()."""

    @pytest.mark.asyncio
    async def test_banner_found(self, server_url):
        """The banner on a business-only search shall be found."""
        matcher = BannerMatcher("didn't find any residential listings")

        async with HttpxRenderClient() as client:
            document = await client.navigate(
                f"{server_url}/search/1/z/{REGION}/", timeout=5.0
            )
            found = await client.probe_banner(
                document, BANNER_SELECTOR, matcher, timeout=1.0
            )

        banner = document.select(BANNER_SELECTOR)[0]
        assert visible_text(banner) == BANNER_TEXT
        assert found is True

    @pytest.mark.asyncio
    async def test_banner_absent(self, server_url):
        """A residential results page shall have no banner."""
        matcher = BannerMatcher("didn't find any residential listings")

        async with HttpxRenderClient() as client:
            document = await client.navigate(
                f"{server_url}/search/1/a/{REGION}/", timeout=5.0
            )
            found = await client.probe_banner(
                document, BANNER_SELECTOR, matcher, timeout=1.0
            )

        assert found is False

    @pytest.mark.asyncio
    async def test_unparseable_snapshot(self):
        """An empty snapshot shall count as no banner."""
        matcher = BannerMatcher(".*")

        async with HttpxRenderClient() as client:
            found = await client.probe_banner(
                Document(url="http://x", text=""),
                BANNER_SELECTOR,
                matcher,
                timeout=1.0,
            )

        assert found is False


class TestRunAgainstServer:
    """Full crawls against the Bug Directory."""

    @pytest.mark.asyncio
    async def test_full_run(self, server_url):
        """Every partition shall be walked to its natural end."""
        config = make_config(
            url_template=(
                f"{server_url}/search/{{page}}/{{partition}}/{{region}}/"
            ),
            partitions={"kind": "list", "keys": ["a", "b", "z", "c"]},
        )
        sink = MemorySink()

        async with HttpxRenderClient() as client:
            report = await CrawlOrchestrator(config, client, sink).run()

        assert report.status is RunStatus.COMPLETED
        statuses = {
            s.key: (s.status, s.cursor, s.record_count)
            for s in report.summaries
        }
        assert statuses == {
            "a": (PartitionStatus.DONE_EMPTY, 3, 5),
            "b": (PartitionStatus.DONE_EMPTY, 2, 2),
            "z": (PartitionStatus.DONE_BANNER, 1, 2),
            "c": (PartitionStatus.DONE_EMPTY, 1, 0),
        }
        assert [r["name"] for r in sink.flushed["b"]] == [
            "Bee, Beatrice",
            "Beetle, Boris",
        ]
        assert sink.flushed["a"][0] == {
            "name": "Ant, Adelaide",
            "address": "1 Hill St, Meadow Hollow",
            "phone": "555-0101",
        }

    @pytest.mark.asyncio
    async def test_flaky_server_is_retried(self, server_url):
        """A 503 on the first request of each page shall be retried."""
        config = make_config(
            url_template=(
                f"{server_url}/flaky/{{page}}/{{partition}}/{{region}}/"
            ),
            partitions={"kind": "list", "keys": ["a"]},
        )
        sink = MemorySink()

        async with HttpxRenderClient() as client:
            report = await CrawlOrchestrator(config, client, sink).run()

        summary = report.summary_for("a")
        assert summary.status is PartitionStatus.DONE_EMPTY
        assert summary.record_count == 5
        assert summary.failed_pages == ()
