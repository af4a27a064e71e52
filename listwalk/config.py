"""Crawl configuration.

The configuration is loaded once at startup from a TOML or JSON file and is
immutable for the rest of the run. Keys may be written in snake_case or in
camelCase (``url_template`` or ``urlTemplate``).

Example ``canada411.toml``::

    url_template = "https://www.canada411.ca/search/si-alph/{page}/{partition}/{region}/"
    region = "Calgary+AB"
    listing_selector = ".c411Listing"
    banner_selector = ".ypalert.ypalert--warning"
    banner_pattern = "We didn't find any residential listings"

    [[field_schema]]
    name = "name"
    selector = ".c411ListedName"

    [partitions]
    kind = "generated"
    alphabet = "abcdefghijklmnopqrstuvwxyz"
    min_length = 1
    max_length = 2
"""

from __future__ import annotations

import json
import re
import string
import tomllib
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Literal
from urllib.parse import quote

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from listwalk.common.exceptions import ConfigurationError
from listwalk.common.extraction import FieldSpec

URL_PLACEHOLDERS = frozenset({"page", "partition", "region"})
ARTIFACT_PLACEHOLDERS = frozenset({"partition", "count", "region"})

# Resource types understood by Playwright's request.resource_type
RESOURCE_TYPES = frozenset(
    {
        "document",
        "stylesheet",
        "image",
        "media",
        "font",
        "script",
        "texttrack",
        "xhr",
        "fetch",
        "eventsource",
        "websocket",
        "manifest",
        "other",
    }
)


def _placeholders(template: str) -> set[str]:
    """Return the named placeholders used by a str.format template."""
    try:
        return {
            name
            for _, name, _, _ in string.Formatter().parse(template)
            if name is not None
        }
    except ValueError as e:
        raise ValueError(f"malformed template {template!r}: {e}") from e


class _Model(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


class PageFailurePolicy(str, Enum):
    """What to do with a page whose fetch failed permanently.

    EMPTY treats the page as having no records, which ends the partition.
    SKIP moves on to the next page, up to max_consecutive_failures in a row.
    ABORT ends the partition as ABORTED and moves on to the next partition.
    """

    EMPTY = "empty"
    SKIP = "skip"
    ABORT = "abort"


class FieldConfig(_Model):
    name: str = Field(min_length=1)
    selector: str = Field(min_length=1)
    title: str = ""

    def to_spec(self) -> FieldSpec:
        return FieldSpec(
            name=self.name, selector=self.selector, title=self.title
        )


class ListPartitions(_Model):
    """A literal list of partition keys."""

    kind: Literal["list"] = "list"
    keys: list[str] = Field(min_length=1)

    @field_validator("keys")
    @classmethod
    def _keys_not_blank(cls, keys: list[str]) -> list[str]:
        if any(not key.strip() for key in keys):
            raise ValueError("partition keys must not be blank")
        return keys


class GeneratedPartitions(_Model):
    """Partition keys generated from an alphabet.

    For each prefix, every string of min_length..max_length characters over
    the alphabet is appended to the prefix, shorter strings first.
    """

    kind: Literal["generated"] = "generated"
    alphabet: str = string.ascii_lowercase
    min_length: int = Field(default=1, ge=0)
    max_length: int = Field(default=1, ge=0, le=6)
    prefixes: list[str] = Field(default_factory=lambda: [""])

    @model_validator(mode="after")
    def _check_rule(self) -> GeneratedPartitions:
        if not self.alphabet:
            raise ValueError("alphabet must not be empty")
        if len(set(self.alphabet)) != len(self.alphabet):
            raise ValueError("alphabet must not repeat characters")
        if self.min_length > self.max_length:
            raise ValueError("min_length must not exceed max_length")
        if not self.prefixes:
            raise ValueError("prefixes must not be empty")
        if self.min_length == 0 and "" in self.prefixes:
            raise ValueError(
                "min_length 0 with an empty prefix would yield a blank key"
            )
        return self


PartitionRule = Annotated[
    ListPartitions | GeneratedPartitions, Field(discriminator="kind")
]


class OutputConfig(_Model):
    dir: Path = Path("output")
    format: Literal["csv", "jsonl"] = "csv"
    name_template: str = "{partition}_entries_{count}"

    @field_validator("name_template")
    @classmethod
    def _check_name_template(cls, template: str) -> str:
        names = _placeholders(template)
        missing = {"partition", "count"} - names
        if missing:
            raise ValueError(
                f"name_template must contain {sorted(missing)} placeholders"
            )
        unknown = names - ARTIFACT_PLACEHOLDERS
        if unknown:
            raise ValueError(f"unknown placeholders {sorted(unknown)}")
        if "/" in template or "\\" in template:
            raise ValueError("name_template must not contain path separators")
        return template


class CrawlConfiguration(_Model):
    """Immutable, process-wide configuration of one crawl run."""

    url_template: str
    region: str | None = None
    listing_selector: str = Field(min_length=1)
    field_schema: list[FieldConfig] = Field(min_length=1)
    partitions: PartitionRule

    max_retries: int = Field(default=3, ge=1)
    backoff_base_millis: int = Field(default=2000, ge=0)
    backoff_max_millis: int | None = Field(default=None, ge=0)
    inter_page_delay_range: tuple[int, int] = (1000, 1005)
    navigation_timeout_millis: int = Field(default=30000, gt=0)

    banner_selector: str | None = None
    banner_pattern: str | None = None
    banner_timeout_millis: int = Field(default=5000, gt=0)

    resource_block_list: frozenset[str] = frozenset(
        {"image", "stylesheet", "font"}
    )
    blocked_url_substrings: tuple[str, ...] = ()

    page_failure_policy: PageFailurePolicy = PageFailurePolicy.EMPTY
    max_consecutive_failures: int = Field(default=3, ge=1)
    max_pages: int | None = Field(default=None, ge=1)
    pages_per_minute: int | None = Field(default=None, ge=1)

    renderer: Literal["playwright", "http"] = "playwright"
    headless: bool = True
    user_agent: str | None = None

    output: OutputConfig = Field(default_factory=OutputConfig)

    @field_validator("url_template")
    @classmethod
    def _check_url_template(cls, template: str) -> str:
        names = _placeholders(template)
        missing = {"page", "partition"} - names
        if missing:
            raise ValueError(
                f"url_template must contain {sorted(missing)} placeholders"
            )
        unknown = names - URL_PLACEHOLDERS
        if unknown:
            raise ValueError(f"unknown placeholders {sorted(unknown)}")
        return template

    @field_validator("banner_pattern")
    @classmethod
    def _check_banner_pattern(cls, pattern: str | None) -> str | None:
        if pattern is not None:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"invalid banner_pattern: {e}") from e
        return pattern

    @field_validator("inter_page_delay_range")
    @classmethod
    def _check_delay_range(cls, value: tuple[int, int]) -> tuple[int, int]:
        low, high = value
        if low < 0 or high < low:
            raise ValueError("inter_page_delay_range must be 0 <= min <= max")
        return value

    @field_validator("resource_block_list")
    @classmethod
    def _check_resource_types(cls, value: frozenset[str]) -> frozenset[str]:
        unknown = value - RESOURCE_TYPES
        if unknown:
            raise ValueError(f"unknown resource types {sorted(unknown)}")
        return value

    @model_validator(mode="after")
    def _check_cross_fields(self) -> CrawlConfiguration:
        if "region" in _placeholders(self.url_template) and not self.region:
            raise ValueError("url_template uses {region} but region is unset")
        if (self.banner_selector is None) != (self.banner_pattern is None):
            raise ValueError(
                "banner_selector and banner_pattern must be set together"
            )
        names = [spec.name for spec in self.field_schema]
        if len(set(names)) != len(names):
            raise ValueError("field_schema names must be unique")
        return self

    # -- derived values ---------------------------------------------------

    @property
    def field_specs(self) -> list[FieldSpec]:
        return [field.to_spec() for field in self.field_schema]

    @property
    def banner_enabled(self) -> bool:
        return self.banner_pattern is not None

    @property
    def backoff_base_seconds(self) -> float:
        return self.backoff_base_millis / 1000.0

    @property
    def backoff_max_seconds(self) -> float | None:
        if self.backoff_max_millis is None:
            return None
        return self.backoff_max_millis / 1000.0

    @property
    def navigation_timeout_seconds(self) -> float:
        return self.navigation_timeout_millis / 1000.0

    @property
    def banner_timeout_seconds(self) -> float:
        return self.banner_timeout_millis / 1000.0

    @property
    def inter_page_delay_seconds(self) -> tuple[float, float]:
        low, high = self.inter_page_delay_range
        return low / 1000.0, high / 1000.0

    def build_url(self, partition_key: str, page: int) -> str:
        """Build the listing URL for one page of one partition."""
        if page < 1:
            raise ValueError(f"page cursor must be >= 1, got {page}")
        return self.url_template.format(
            page=page,
            partition=quote(partition_key, safe="+"),
            region=self.region or "",
        )


def load_config(path: Path | str) -> CrawlConfiguration:
    """Load and validate a configuration file.

    Args:
        path: A ``.toml`` or ``.json`` file.

    Returns:
        The validated configuration.

    Raises:
        ConfigurationError: If the file is missing, unreadable, malformed or
            fails validation.
    """
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Cannot read config {path}: {e}") from e

    data: dict[str, Any]
    suffix = path.suffix.lower()
    try:
        if suffix == ".toml":
            data = tomllib.loads(raw)
        elif suffix == ".json":
            data = json.loads(raw)
        else:
            raise ConfigurationError(
                f"Unsupported config format '{suffix}' (use .toml or .json)"
            )
    except (tomllib.TOMLDecodeError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Malformed config {path}: {e}") from e

    return parse_config(data, source=str(path))


def parse_config(
    data: dict[str, Any], source: str = "<config>"
) -> CrawlConfiguration:
    """Validate an already-decoded configuration mapping.

    Raises:
        ConfigurationError: If validation fails.
    """
    if not isinstance(data, dict):
        raise ConfigurationError(f"{source}: top level must be a mapping")
    try:
        return CrawlConfiguration.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid configuration in {source}",
            errors=[
                {"loc": err["loc"], "msg": err["msg"]} for err in e.errors()
            ],
        ) from e
