"""Heuristic candidate scoring and ranking.

Scores are additive and unnormalized. Hosts on the blacklist (horizontal
marketplaces, social media, search engines) score exactly the blacklist
penalty and never make it into a ranked list.
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Iterable, Optional
from urllib.parse import urlparse

from .models import Candidate

logger = logging.getLogger(__name__)

BLACKLISTED_HOST_SNIPPETS: tuple[str, ...] = (
    "amazon.", "walmart.", "ebay.", "facebook.", "pinterest.", "reddit.", "youtube.",
    "iherb.", "instacart.", "target.", "shopify.", "shop.app", "bing.", "duckduckgo.",
)

_PRODUCT_PATH = re.compile(r"/(?:products?|shop|item)/")


@dataclass(frozen=True)
class ScoringWeights:
    # Hand-tuned; not calibrated against labeled data yet.
    brand_domain: float = 8.0
    product_path: float = 4.0
    text_token: float = 1.0
    url_token: float = 1.0
    https: float = 1.0
    length_base: float = 3.0
    blacklisted: float = -10.0
    exclusion_cutoff: float = -10.0
    min_token_length: int = 2
    refine_window: int = 12
    blacklist: tuple[str, ...] = BLACKLISTED_HOST_SNIPPETS


def split_url(url: str) -> tuple[str, str]:
    """(domain without www., lowercase path); ("", "") for unparseable URLs."""
    try:
        parsed = urlparse(url)
        host = (parsed.hostname or "").lower()
    except ValueError:
        return "", ""
    if host.startswith("www."):
        host = host[4:]
    return host, parsed.path.lower()


def looks_like_product_path(path: str) -> bool:
    return bool(_PRODUCT_PATH.search(path or ""))


class CandidateScorer:
    def __init__(self, weights: Optional[ScoringWeights] = None) -> None:
        self.weights = weights or ScoringWeights()

    def is_blacklisted(self, domain: str) -> bool:
        return any(snippet in domain for snippet in self.weights.blacklist)

    def score(self, url: str, text: str, brand: str, tokens: Iterable[str]) -> float:
        w = self.weights
        domain, path = split_url(url)
        if self.is_blacklisted(domain):
            return w.blacklisted

        score = 0.0
        if brand and brand in domain:
            score += w.brand_domain
        if looks_like_product_path(path):
            score += w.product_path

        lowered_text = (text or "").lower()
        lowered_url = url.lower()
        for token in tokens:
            if len(token) < w.min_token_length:
                continue
            if token in lowered_text:
                score += w.text_token
            if token in lowered_url:
                score += w.url_token

        if lowered_url.startswith("https://"):
            score += w.https
        score += max(0.0, w.length_base - math.log10(max(10, len(url))))
        return score

    def rank(
        self,
        pairs: Iterable[tuple[str, str]],
        brand: str,
        tokens: list[str],
    ) -> list[Candidate]:
        """Score, deduplicate and sort search results.

        Candidates at or below the exclusion cutoff are dropped outright.
        Ties go to the shorter URL.
        """
        seen: set[str] = set()
        ranked: list[Candidate] = []
        for url, text in pairs:
            if url in seen:
                continue
            domain, path = split_url(url)
            if not domain:
                continue
            seen.add(url)
            score = self.score(url, text, brand, tokens)
            if score <= self.weights.exclusion_cutoff:
                logger.debug("Excluded %s (score %.2f)", url, score)
                continue
            ranked.append(Candidate(url=url, text=text, domain=domain, path=path, score=score))
        ranked.sort(key=lambda c: (-c.score, len(c.url)))
        return ranked

    def pick_best(self, ranked: list[Candidate], brand: str) -> Optional[Candidate]:
        """Top candidate, overridden by a brand-domain hit near the top.

        Within the refine window a brand-domain candidate with a product-like
        path wins; failing that, the brand-domain candidate with the shortest
        path (higher score breaks ties).
        """
        if not ranked:
            return None
        top = ranked[: self.weights.refine_window]
        brand_hits = [c for c in top if brand and brand in c.domain]
        for candidate in brand_hits:
            if looks_like_product_path(candidate.path):
                return candidate
        if brand_hits:
            return min(brand_hits, key=lambda c: (len(c.path), -c.score))
        return ranked[0]

    def shortlist(self, ranked: list[Candidate], brand: str, limit: int) -> list[Candidate]:
        """Validation order: the preferred pick first, then the rest by rank."""
        best = self.pick_best(ranked, brand)
        if best is None:
            return []
        ordered = [best] + [c for c in ranked if c is not best]
        return ordered[:limit]
