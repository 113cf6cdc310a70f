"""Single place that decides what kind of page a fetched document is.

Used by direct manufacturer probing, on-site search and page validation.
Product markers always take precedence over search-listing markers.
"""
from __future__ import annotations

import enum
import re
from typing import Optional
from urllib.parse import urlparse

_PRODUCT_MARKERS = (
    re.compile(r"""property=["']og:type["'][^>]*content=["']product""", re.IGNORECASE),
    re.compile(r"""content=["']product["'][^>]*property=["']og:type""", re.IGNORECASE),
    re.compile(r"""itemtype=["']https?://schema\.org/product["']""", re.IGNORECASE),
    re.compile(r'"@type"\s*:\s*\[?\s*"product"', re.IGNORECASE),
    re.compile(r"add[\s_-]to[\s_-]cart", re.IGNORECASE),
)

_SEARCH_TEXT_MARKERS = (
    re.compile(r"search[\s_-]results", re.IGNORECASE),
    re.compile(r"\bresults\s+for\b", re.IGNORECASE),
)

_SEARCH_PATH = re.compile(r"/(?:search|catalogsearch)\b", re.IGNORECASE)


class PageVerdict(str, enum.Enum):
    PRODUCT = "product"
    SEARCH_RESULTS = "search_results"
    UNKNOWN = "unknown"


def looks_like_search_url(url: Optional[str]) -> bool:
    if not url:
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if _SEARCH_PATH.search(parsed.path or ""):
        return True
    query = parsed.query or ""
    return any(part.split("=", 1)[0] in ("q", "s") for part in query.split("&") if part)


def classify_page(html: str, url: Optional[str] = None) -> PageVerdict:
    if not html:
        return PageVerdict.UNKNOWN
    if any(marker.search(html) for marker in _PRODUCT_MARKERS):
        return PageVerdict.PRODUCT
    if looks_like_search_url(url) or any(marker.search(html) for marker in _SEARCH_TEXT_MARKERS):
        return PageVerdict.SEARCH_RESULTS
    return PageVerdict.UNKNOWN
