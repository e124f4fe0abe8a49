"""
Analysis outcome types.

An analysis attempt ends in exactly one of Success, Notice or Failure.
Callers branch with isinstance(); there is no "empty" outcome.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Union


@dataclass(frozen=True)
class WebSource:
    """A web page the model cited through search grounding."""
    uri: str
    title: Optional[str] = None


@dataclass(frozen=True)
class Success:
    product_name: str
    description: str
    average_sale_price: str      # e.g. "$250 - $300 USD"
    resell_price: str            # e.g. "$150 - $200 USD"
    sources: tuple[WebSource, ...] = field(default_factory=tuple)

    @classmethod
    def from_json(cls, analysis: dict, candidates: Any = None) -> "Success":
        """Build from the endpoint's camelCase `analysis` object."""
        def _text(key: str) -> str:
            value = analysis.get(key)
            return value if isinstance(value, str) else ""

        return cls(
            product_name=_text("productName"),
            description=_text("description"),
            average_sale_price=_text("averageSalePrice"),
            resell_price=_text("resellPrice"),
            sources=tuple(extract_web_sources(candidates)),
        )


@dataclass(frozen=True)
class Notice:
    message: str


@dataclass(frozen=True)
class Failure:
    message: str


AnalysisOutcome = Union[Success, Notice, Failure]


def extract_web_sources(candidates: Any) -> list[WebSource]:
    """
    Pull web citations out of the first candidate's grounding metadata.
    Deduplicated by uri, first-seen order; chunks without a uri are skipped.
    """
    if not isinstance(candidates, list) or not candidates:
        return []
    first = candidates[0]
    if not isinstance(first, dict):
        return []
    metadata = first.get("groundingMetadata")
    if not isinstance(metadata, dict):
        return []
    chunks = metadata.get("groundingChunks") or []

    sources: list[WebSource] = []
    seen: set[str] = set()
    for chunk in chunks:
        web = chunk.get("web") if isinstance(chunk, dict) else None
        if not isinstance(web, dict):
            continue
        uri = web.get("uri")
        if not uri or uri in seen:
            continue
        seen.add(uri)
        sources.append(WebSource(uri=uri, title=web.get("title") or None))
    return sources
