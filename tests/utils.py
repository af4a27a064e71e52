"""Test utilities for the listwalk tests.

This module provides reusable helpers for building configurations and
reading artifacts back.
"""

import csv
import json
import socket
from contextlib import closing
from pathlib import Path
from typing import Any

from listwalk.config import CrawlConfiguration, parse_config
from tests.mock_server import REGION


def make_config(**overrides: Any) -> CrawlConfiguration:
    """Build a configuration for the Bug Directory with fast timings.

    Keyword arguments override (or add) top-level configuration keys. No
    backoff or inter-page delay is configured, so tests never sleep.

    Example:
        config = make_config(partitions={"kind": "list", "keys": ["z"]})
    """
    data: dict[str, Any] = {
        "url_template": (
            "http://directory.test/search/{page}/{partition}/{region}/"
        ),
        "region": REGION,
        "listing_selector": ".c411Listing",
        "field_schema": [
            {"name": "name", "selector": ".c411ListedName", "title": "Name"},
            {
                "name": "address",
                "selector": ".c411ListingGeo .adr",
                "title": "Address",
            },
            {"name": "phone", "selector": ".c411Phone", "title": "Phone"},
        ],
        "partitions": {"kind": "list", "keys": ["a", "b"]},
        "backoff_base_millis": 0,
        "inter_page_delay_range": [0, 0],
        "navigation_timeout_millis": 1000,
        "banner_selector": ".ypalert.ypalert--warning",
        "banner_pattern": "We didn't find any residential listings",
        "banner_timeout_millis": 100,
    }
    data.update(overrides)
    return parse_config(data)


def find_free_port() -> int:
    """Find a free port on localhost.

    Returns:
        An available port number.
    """
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        s.bind(("", 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


def page_url(partition: str, page: int) -> str:
    """URL of one page under the default make_config() template."""
    return f"http://directory.test/search/{page}/{partition}/{REGION}/"


def read_csv(path: Path) -> list[list[str]]:
    """Read a CSV artifact as rows, header included."""
    with path.open(encoding="utf-8", newline="") as f:
        return list(csv.reader(f))


def read_jsonl(path: Path) -> list[dict[str, str]]:
    """Read a JSONL artifact."""
    with path.open(encoding="utf-8") as f:
        return [json.loads(line) for line in f if line.strip()]
