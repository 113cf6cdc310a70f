"""Candidate page validation.

A candidate is accepted only when the page looks like the target product on
two independent axes: product-name similarity and brand similarity. Either
gate failing rejects the page, so a near-identical product name on some other
brand's page is still turned away.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Iterator, Optional
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup
from rapidfuzz.distance import Levenshtein

from .config import Config, load_config
from .domains import brand_token, get_domain_from_url
from .models import ValidationResult
from .page_signal import PageVerdict, classify_page, looks_like_search_url

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchedPage:
    url: str
    final_url: str
    status_code: int
    text: str


class PageFetcher:
    """GET a page with a hard timeout. Any failure comes back as None."""

    def __init__(
        self,
        config: Optional[Config] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.config = config or load_config()
        self.timeout = timeout if timeout is not None else self.config.page_timeout
        self.transport = transport

    def fetch(self, url: str) -> Optional[FetchedPage]:
        try:
            with httpx.Client(
                follow_redirects=True,
                timeout=self.timeout,
                verify=self.config.verify_tls,
                headers={
                    "User-Agent": self.config.page_user_agent,
                    "Accept": "text/html,*/*",
                    "Cache-Control": "no-cache",
                },
                transport=self.transport,
            ) as client:
                resp = client.get(url)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
            logger.debug("Fetch failed for %s: %s", url, exc)
            return None

        if not resp.is_success:
            logger.debug("Fetch %s returned %d", url, resp.status_code)
            return None
        return FetchedPage(url=url, final_url=str(resp.url), status_code=resp.status_code, text=resp.text)


def normalize_text(value: Optional[str]) -> str:
    return re.sub(r"\s+", " ", (value or "").lower()).strip()


def text_similarity(a: Optional[str], b: Optional[str]) -> float:
    """1 - normalized character edit distance; 1.0 means identical."""
    a, b = normalize_text(a), normalize_text(b)
    if not a or not b:
        return 0.0
    distance = Levenshtein.distance(a, b)
    return 1 - distance / max(1, max(len(a), len(b)))


@dataclass(frozen=True)
class ValidationThresholds:
    # Hand-tuned; not calibrated against labeled data yet.
    product: float = 0.55
    brand: float = 0.5
    title_fallback_below: float = 0.5
    domain_fallback_below: float = 0.5
    domain_brand_similarity: float = 0.6

    @classmethod
    def from_config(cls, config: Config) -> "ValidationThresholds":
        return cls(product=config.product_similarity_threshold, brand=config.brand_similarity_threshold)


def _iter_jsonld_objects(data: Any) -> Iterator[dict]:
    if isinstance(data, list):
        for item in data:
            yield from _iter_jsonld_objects(item)
    elif isinstance(data, dict):
        yield data
        graph = data.get("@graph")
        if isinstance(graph, list):
            yield from _iter_jsonld_objects(graph)


def _is_product_type(obj: dict) -> bool:
    declared = obj.get("@type")
    if isinstance(declared, list):
        declared = ",".join(str(item) for item in declared)
    return isinstance(declared, str) and "product" in declared.lower()


def _brand_name(obj: dict) -> str:
    brand = obj.get("brand")
    if isinstance(brand, str):
        return brand
    if isinstance(brand, dict):
        return str(brand.get("name") or "")
    if isinstance(brand, list) and brand:
        first = brand[0]
        return first if isinstance(first, str) else str((first or {}).get("name") or "")
    return ""


def extract_products(soup: BeautifulSoup) -> list[tuple[str, str]]:
    """(name, brand) for every Product object in the page's JSON-LD blocks."""
    products: list[tuple[str, str]] = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        raw = script.string or script.get_text() or ""
        try:
            data = json.loads(raw)
        except ValueError:
            continue
        for obj in _iter_jsonld_objects(data):
            if _is_product_type(obj):
                products.append((str(obj.get("name") or ""), _brand_name(obj)))
    return products


def find_review_anchor(soup: BeautifulSoup) -> Optional[str]:
    if soup.find(id="reviews") is not None:
        return "reviews"
    element = soup.find(id=re.compile("review", re.IGNORECASE))
    return element.get("id") if element is not None else None


class PageValidator:
    def __init__(
        self,
        fetcher: Optional[PageFetcher] = None,
        thresholds: Optional[ValidationThresholds] = None,
    ) -> None:
        self.fetcher = fetcher or PageFetcher()
        self.thresholds = thresholds or ValidationThresholds.from_config(self.fetcher.config)

    def validate(
        self,
        brand: Optional[str],
        product_name: Optional[str],
        variant: Optional[str],
        url: str,
    ) -> Optional[ValidationResult]:
        """Fetch ``url`` and decide whether it is the page for this product.

        Returns the canonical URL (plus a review anchor when the page has a
        reviews section) on acceptance, None on any rejection.
        """
        if not normalize_text(product_name):
            return None
        target_name = normalize_text(f"{product_name} {variant or ''}")
        target_brand = normalize_text(brand)

        page = self.fetcher.fetch(url)
        if page is None:
            return None
        if (
            classify_page(page.text, page.final_url) is PageVerdict.SEARCH_RESULTS
            and looks_like_search_url(page.final_url or url)
        ):
            logger.debug("Reject %s: search listing", url)
            return None

        soup = BeautifulSoup(page.text, "html.parser")
        canonical = page.final_url or url
        link = soup.find("link", rel="canonical")
        if link is not None and link.get("href"):
            canonical = urljoin(canonical, link["href"].strip())

        t = self.thresholds
        product_score = 0.0
        brand_score = 0.0
        for name, declared_brand in extract_products(soup):
            product_score = max(product_score, text_similarity(name, target_name))
            brand_score = max(brand_score, text_similarity(declared_brand, target_brand))

        if product_score < t.title_fallback_below and soup.title is not None:
            product_score = max(product_score, text_similarity(soup.title.get_text(), target_name))

        if brand_score < t.domain_fallback_below and target_brand:
            domain = re.sub(r"[^a-z0-9]", "", get_domain_from_url(url))
            token = brand_token(target_brand)
            if token and token in domain:
                brand_score = max(brand_score, t.domain_brand_similarity)

        product_ok = product_score >= t.product
        brand_ok = not target_brand or brand_score >= t.brand
        if not (product_ok and brand_ok):
            logger.debug(
                "Reject %s: product %.2f brand %.2f", url, product_score, brand_score,
            )
            return None

        review_url = None
        anchor = find_review_anchor(soup)
        if anchor:
            review_url = f"{canonical.split('#')[0]}#{anchor}"
        return ValidationResult(canonical_url=canonical, review_url=review_url)
