"""Rendered document snapshots.

Render clients never hand live browser objects to the rest of the engine.
They serialize the rendered DOM to HTML and wrap it in a Document, which
parses it with lxml on first use.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property

from cssselect import SelectorError
from lxml import etree, html
from lxml.html import HtmlElement

from listwalk.common.exceptions import ExtractionError


@dataclass(frozen=True)
class Document:
    """An immutable DOM snapshot of one rendered page.

    Attributes:
        url: The URL the page was rendered from.
        text: The serialized HTML.
        status_code: HTTP status of the navigation, when known.
    """

    url: str
    text: str
    status_code: int = 200

    @cached_property
    def tree(self) -> HtmlElement:
        """The parsed lxml tree.

        Raises:
            ExtractionError: If the HTML cannot be parsed.
        """
        if not self.text or not self.text.strip():
            raise ExtractionError("Document is empty", url=self.url)
        try:
            return html.fromstring(self.text)
        except (etree.ParserError, ValueError) as e:
            raise ExtractionError(
                f"Document could not be parsed: {e}", url=self.url
            ) from e

    def select(self, selector: str) -> list[HtmlElement]:
        """Run a CSS selector against the whole document.

        Raises:
            ExtractionError: If the document or the selector is unusable.
        """
        return select(self.tree, selector, url=self.url)


def select(
    element: HtmlElement, selector: str, url: str = ""
) -> list[HtmlElement]:
    """Run a CSS selector relative to *element*.

    Raises:
        ExtractionError: If the selector cannot be compiled.
    """
    try:
        return element.cssselect(selector)
    except SelectorError as e:
        raise ExtractionError(
            f"Invalid CSS selector: {e}",
            url=url,
            context={"selector": selector},
        ) from e


def visible_text(element: HtmlElement) -> str:
    """Return the element's text with whitespace runs collapsed and trimmed."""
    return " ".join(element.text_content().split())
