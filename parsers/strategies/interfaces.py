from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Union

from bs4 import BeautifulSoup

from core.types import ExtractionContext, VariantMatrix
from parsers.json_search import extract_next_data


@dataclass
class SourceDocument:
    """A detail page as seen by the extraction strategies.

    ``html`` is None when the source was a JSON API response; parsing of the
    soup and the embedded state is lazy and happens at most once.
    """

    url: str
    html: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    side_channel: Dict[str, Any] = field(default_factory=dict)
    base_url: Optional[str] = None
    currency: Optional[str] = None
    _soup: Optional[BeautifulSoup] = field(default=None, repr=False)
    _next_data_loaded: bool = field(default=False, repr=False)

    @classmethod
    def from_source(
        cls, source: Union[str, Dict[str, Any]], context: ExtractionContext
    ) -> "SourceDocument":
        if isinstance(source, dict):
            return cls(
                url=context.url,
                payload=source,
                _next_data_loaded=True,
                side_channel=dict(context.side_channel),
                base_url=context.base_url,
                currency=context.currency,
            )
        return cls(
            url=context.url,
            html=source or "",
            side_channel=dict(context.side_channel),
            base_url=context.base_url,
            currency=context.currency,
        )

    @property
    def soup(self) -> Optional[BeautifulSoup]:
        if self.html is None:
            return None
        if self._soup is None:
            self._soup = BeautifulSoup(self.html, "html.parser")
        return self._soup

    @property
    def next_data(self) -> Optional[Dict[str, Any]]:
        """Embedded page state, or the JSON payload itself for API sources."""
        if not self._next_data_loaded:
            self._next_data_loaded = True
            self.payload = extract_next_data(self.soup) if self.soup is not None else None
        return self.payload

    def release(self) -> None:
        self.html = None
        self._soup = None


class ExtractionStrategy(Protocol):
    name: str

    def extract_matrix(self, document: SourceDocument) -> VariantMatrix:
        ...
