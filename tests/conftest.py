from __future__ import annotations

import json
from threading import Lock
from typing import Optional, Union
from urllib.parse import quote

import httpx
import pytest

from product_resolver.config import Config, load_config
from product_resolver.validation import PageFetcher

PageSpec = Union[str, tuple[int, str], httpx.Response, Exception]


def product_page(
    name: str,
    brand: Optional[str] = None,
    canonical: Optional[str] = None,
    title: str = "",
    body: str = "",
) -> str:
    markup = {"@context": "https://schema.org", "@type": "Product", "name": name}
    if brand is not None:
        markup["brand"] = {"@type": "Brand", "name": brand}
    head = f"<title>{title}</title>"
    if canonical:
        head += f'<link rel="canonical" href="{canonical}">'
    head += f'<script type="application/ld+json">{json.dumps(markup)}</script>'
    return f"<html><head>{head}</head><body>{body}</body></html>"


def ddg_results(*links: tuple[str, str]) -> str:
    """DuckDuckGo HTML-lite result markup with redirect-wrapped links."""
    items = "".join(
        '<div class="result"><h2><a class="result__a" '
        f'href="//duckduckgo.com/l/?uddg={quote(url, safe="")}&amp;rut=abc">{text}</a></h2></div>'
        for url, text in links
    )
    return f'<html><body><div id="links">{items}</div></body></html>'


class FakeSite:
    """In-memory web for httpx.MockTransport, keyed by scheme://host/path."""

    def __init__(self, pages: Optional[dict[str, PageSpec]] = None) -> None:
        self.pages = dict(pages or {})
        self.requested: list[str] = []
        self._lock = Lock()

    def handler(self, request: httpx.Request) -> httpx.Response:
        key = f"{request.url.scheme}://{request.url.host}{request.url.path}"
        with self._lock:
            self.requested.append(str(request.url))
        spec = self.pages.get(key)
        if spec is None:
            return httpx.Response(404, text="not found")
        if isinstance(spec, Exception):
            raise spec
        if isinstance(spec, httpx.Response):
            return spec
        status, html = spec if isinstance(spec, tuple) else (200, spec)
        return httpx.Response(status, text=html, headers={"Content-Type": "text/html"})

    def fetcher(self, config: Config) -> PageFetcher:
        return PageFetcher(config, transport=httpx.MockTransport(self.handler))


class FakeRetriever:
    def __init__(self, results: Optional[dict[str, list[tuple[str, str]]]] = None, default=None) -> None:
        self.results = results or {}
        self.default = default or []
        self.queries: list[str] = []

    def search(self, query: str) -> list[tuple[str, str]]:
        self.queries.append(query)
        return list(self.results.get(query, self.default))


@pytest.fixture
def config(monkeypatch) -> Config:
    monkeypatch.setenv("BATCH_SEARCH_DELAY", "0")
    monkeypatch.setenv("SEARCH_MAX_ATTEMPTS", "1")
    monkeypatch.delenv("PRODUCT_SIMILARITY_THRESHOLD", raising=False)
    monkeypatch.delenv("BRAND_SIMILARITY_THRESHOLD", raising=False)
    return load_config()


@pytest.fixture
def site() -> FakeSite:
    return FakeSite()
