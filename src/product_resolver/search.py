"""DuckDuckGo HTML search retriever.

Fetches the HTML lite results page and returns (url, anchor text) pairs in
page order. Result links are usually wrapped in a DDG redirect
(//duckduckgo.com/l/?uddg=<encoded-url>); those are unwrapped to the real
destination.
"""
from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import parse_qs, urljoin, urlparse

import requests as http_requests
from bs4 import BeautifulSoup
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import Config, load_config

logger = logging.getLogger(__name__)

SEARCH_BASE = "https://duckduckgo.com"

# Tried in order; the first selector that matches anything wins.
RESULT_SELECTORS = (
    "a.result__a, a.result__url",
    "a[href]",
)


class RateLimited(http_requests.RequestException):
    """Search engine answered 429."""


def unwrap_redirect(href: str, base: str = SEARCH_BASE) -> str:
    """Return the true destination of a search-result href.

    Relative hrefs are resolved against the search host first. If decoding
    fails for any reason the raw href is returned.
    """
    try:
        absolute = href if href.lower().startswith(("http://", "https://")) else urljoin(base + "/", href)
        params = parse_qs(urlparse(absolute).query)
        wrapped = params.get("uddg")
        if wrapped and wrapped[0]:
            return wrapped[0]
        return absolute
    except ValueError:
        return href


def extract_anchors(html: str, base: str = SEARCH_BASE) -> list[tuple[str, str]]:
    soup = BeautifulSoup(html or "", "html.parser")
    anchors = []
    for selector in RESULT_SELECTORS:
        anchors = soup.select(selector)
        if anchors:
            break

    results: list[tuple[str, str]] = []
    for anchor in anchors:
        href = (anchor.get("href") or "").strip()
        if not href or href.startswith("#"):
            continue
        results.append((unwrap_redirect(href, base), anchor.get_text(" ", strip=True)))
    return results


class SearchRetriever:
    """One outbound search request per call; failures come back as []."""

    def __init__(
        self,
        config: Optional[Config] = None,
        max_attempts: Optional[int] = None,
        session: Optional[http_requests.Session] = None,
        wait=None,
    ) -> None:
        self.config = config or load_config()
        self.max_attempts = max_attempts or self.config.search_max_attempts
        self.session = session or http_requests
        self.wait = wait or wait_exponential(multiplier=1, min=1, max=10)

    @property
    def headers(self) -> dict[str, str]:
        return {
            "User-Agent": self.config.search_user_agent,
            "Accept": "text/html,application/xhtml+xml",
            "Accept-Language": "en-US,en;q=0.9",
            "Referer": f"{SEARCH_BASE}/",
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
        }

    def _fetch(self, query: str) -> list[tuple[str, str]]:
        resp = self.session.get(
            self.config.search_endpoint,
            params={"q": query, "kl": "us-en"},
            headers=self.headers,
            timeout=self.config.search_timeout,
        )
        if resp.status_code == 429:
            raise RateLimited(f"search rate limited for '{query}'")
        if resp.status_code != 200:
            logger.warning("Search returned status %d for '%s'", resp.status_code, query)
            return []
        return extract_anchors(resp.text)

    def search(self, query: str) -> list[tuple[str, str]]:
        if not query or not query.strip():
            return []

        def _give_up(retry_state) -> list[tuple[str, str]]:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning("Search failed for '%s': %s", query, exc)
            return []

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.wait,
            retry=retry_if_exception_type(http_requests.RequestException),
            retry_error_callback=_give_up,
        )
        return retrying(self._fetch, query)
