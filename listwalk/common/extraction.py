"""Extraction adapter: rendered document to structured records.

A listing page holds zero or more listing nodes. For each node and each
configured field, the adapter locates a sub-node with a CSS selector and
takes its trimmed text. A missing node or field yields an empty string; the
adapter only fails when the document itself is unusable.

Example::

    extractor = ListingExtractor(
        listing_selector=".c411Listing",
        fields=[
            FieldSpec(name="name", selector=".c411ListedName"),
            FieldSpec(name="address", selector=".c411ListingGeo .adr"),
            FieldSpec(name="phone", selector=".c411Phone"),
        ],
    )
    records = extractor.extract(document)
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from listwalk.common.document import Document, select, visible_text
from listwalk.data_types import ExtractedRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldSpec:
    """One field of the record schema.

    Attributes:
        name: Key of the field in each record.
        selector: CSS selector relative to the listing node.
        title: Column title used by tabular sinks.
    """

    name: str
    selector: str
    title: str = ""

    @property
    def column_title(self) -> str:
        return self.title or self.name.replace("_", " ").title()


class ListingExtractor:
    """Maps a Document into ExtractedRecords.

    Attributes:
        listing_selector: CSS selector locating each listing node.
        fields: Ordered field schema.
    """

    def __init__(
        self, listing_selector: str, fields: Sequence[FieldSpec]
    ) -> None:
        self.listing_selector = listing_selector
        self.fields = tuple(fields)

    @property
    def field_names(self) -> list[str]:
        return [spec.name for spec in self.fields]

    def extract(self, document: Document) -> list[ExtractedRecord]:
        """Extract every listing on the page.

        Args:
            document: The rendered page.

        Returns:
            One record per listing node, in document order. Every record has
            every field of the schema.

        Raises:
            ExtractionError: If the document cannot be parsed or a selector
                is invalid.
        """
        records: list[ExtractedRecord] = []
        for node in document.select(self.listing_selector):
            record: ExtractedRecord = {}
            for spec in self.fields:
                matches = select(node, spec.selector, url=document.url)
                record[spec.name] = visible_text(matches[0]) if matches else ""
            records.append(record)

        logger.debug(
            f"Extracted {len(records)} record(s) from {document.url}",
            extra={"url": document.url, "record_count": len(records)},
        )
        return records


def extract(
    document: Document,
    field_schema: Sequence[FieldSpec],
    listing_selector: str,
) -> list[ExtractedRecord]:
    """Functional form of ListingExtractor.extract()."""
    return ListingExtractor(listing_selector, field_schema).extract(document)
