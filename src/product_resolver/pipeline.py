"""Product URL resolution state machine.

Two entry points share one pipeline and differ only in their starting state
and transition table:

- interactive: WebSearch → MarketplaceFallback (plain web-search link)
- discovery:   DirectProbe → SiteSearch → MarketplaceFallback (Amazon search)

The first state that produces a URL ends the run.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional
from urllib.parse import quote, urlencode

from .config import Config, load_config
from .domains import brand_to_hosts, brand_token, marketplace_tld
from .models import Candidate, ProductQuery, Resolved, ResolutionOutcome, Source, Unresolved
from .page_signal import PageVerdict, classify_page
from .query import build_keywords, query_attempts, query_tokens, slugify
from .scoring import CandidateScorer
from .search import SearchRetriever
from .validation import PageFetcher, PageValidator

logger = logging.getLogger(__name__)

PRODUCT_PATH_PATTERNS: tuple[str, ...] = (
    "/products/{slug}",
    "/product/{slug}",
    "/collections/{slug}",
    "/collections/{slug}/products/{slug}",
    "/shop/{slug}",
    "/en/products/{slug}",
    "/fr/produits/{slug}",
)

SITE_SEARCH_PATTERNS: tuple[str, ...] = (
    "/search?q={q}",
    "/search?type=product&q={q}",  # Shopify
    "/catalogsearch/result/?q={q}",  # Magento
    "/?s={q}",  # WordPress / WooCommerce
)

DEBUG_TOP_N = 5


class ResolutionState(str, enum.Enum):
    DIRECT_PROBE = "direct_probe"
    SITE_SEARCH = "site_search"
    WEB_SEARCH = "web_search"
    MARKETPLACE_FALLBACK = "marketplace_fallback"


@dataclass(frozen=True)
class PipelineMode:
    name: str
    initial: ResolutionState
    transitions: Mapping[ResolutionState, Optional[ResolutionState]]
    fallback_source: Source


INTERACTIVE = PipelineMode(
    name="interactive",
    initial=ResolutionState.WEB_SEARCH,
    transitions={
        ResolutionState.WEB_SEARCH: ResolutionState.MARKETPLACE_FALLBACK,
        ResolutionState.MARKETPLACE_FALLBACK: None,
    },
    fallback_source=Source.SEARCH_ENGINE,
)

DISCOVERY = PipelineMode(
    name="discovery",
    initial=ResolutionState.DIRECT_PROBE,
    transitions={
        ResolutionState.DIRECT_PROBE: ResolutionState.SITE_SEARCH,
        ResolutionState.SITE_SEARCH: ResolutionState.MARKETPLACE_FALLBACK,
        ResolutionState.MARKETPLACE_FALLBACK: None,
    },
    fallback_source=Source.AMAZON_SEARCH,
)

MODES: dict[str, PipelineMode] = {mode.name: mode for mode in (INTERACTIVE, DISCOVERY)}


@dataclass
class ResolutionContext:
    """Per-request scratch state; never shared between requests."""

    query: ProductQuery
    mode: PipelineMode
    keywords: str
    slug: str
    hosts: list[str]
    reason: str = "no_results"
    top_candidates: tuple[Candidate, ...] = ()
    visited: list[ResolutionState] = field(default_factory=list)


def marketplace_search_url(keywords: str, locale: Optional[str]) -> str:
    params = urlencode({"k": keywords, "i": "hpc"})
    return f"https://www.amazon.{marketplace_tld(locale)}/s?{params}"


def web_search_url(keywords: str) -> str:
    return f"https://duckduckgo.com/?{urlencode({'q': keywords})}"


class ResolutionPipeline:
    def __init__(
        self,
        retriever: SearchRetriever,
        scorer: CandidateScorer,
        validator: PageValidator,
        fetcher: Optional[PageFetcher] = None,
        validate_limit: int = 5,
    ) -> None:
        self.retriever = retriever
        self.scorer = scorer
        self.validator = validator
        self.fetcher = fetcher or validator.fetcher
        self.validate_limit = validate_limit
        self._handlers: dict[ResolutionState, Callable[[ResolutionContext], Optional[Resolved]]] = {
            ResolutionState.DIRECT_PROBE: self._direct_probe,
            ResolutionState.SITE_SEARCH: self._site_search,
            ResolutionState.WEB_SEARCH: self._web_search,
            ResolutionState.MARKETPLACE_FALLBACK: self._marketplace_fallback,
        }

    @classmethod
    def from_config(cls, config: Optional[Config] = None) -> "ResolutionPipeline":
        config = config or load_config()
        fetcher = PageFetcher(config)
        return cls(
            retriever=SearchRetriever(config),
            scorer=CandidateScorer(),
            validator=PageValidator(fetcher),
            fetcher=fetcher,
            validate_limit=config.interactive_validate_limit,
        )

    def resolve(
        self,
        query: ProductQuery,
        mode: PipelineMode = DISCOVERY,
        fallback: bool = True,
    ) -> ResolutionOutcome:
        keywords = build_keywords(query)
        if not keywords or not query.has_subject():
            return Unresolved(reason="no_query")

        ctx = ResolutionContext(
            query=query,
            mode=mode,
            keywords=keywords,
            slug=slugify(query.product or query.ingredient or ""),
            hosts=brand_to_hosts(query.brand, query.locale),
        )

        state: Optional[ResolutionState] = mode.initial
        while state is not None:
            if state is ResolutionState.MARKETPLACE_FALLBACK and not fallback:
                break
            ctx.visited.append(state)
            outcome = self._handlers[state](ctx)
            if outcome is not None:
                logger.info("Resolved '%s' via %s: %s", keywords, state.value, outcome.url)
                return outcome
            state = mode.transitions.get(state)

        logger.info(
            "No URL for '%s' (%s) after %s",
            keywords, ctx.reason, ", ".join(s.value for s in ctx.visited),
        )
        return Unresolved(reason=ctx.reason, query=keywords, top_candidates=ctx.top_candidates)

    # -- states ------------------------------------------------------------

    def _direct_probe(self, ctx: ResolutionContext) -> Optional[Resolved]:
        if not ctx.hosts or not ctx.slug:
            return None
        paths = list(dict.fromkeys(pattern.format(slug=ctx.slug) for pattern in PRODUCT_PATH_PATTERNS))
        for host in ctx.hosts:
            for path in paths:
                url = f"https://{host}{path}"
                page = self.fetcher.fetch(url)
                if page is not None and classify_page(page.text, page.final_url) is PageVerdict.PRODUCT:
                    return Resolved(url=page.final_url or url, source=Source.MANUFACTURER, query=ctx.keywords)
        return None

    def _site_search(self, ctx: ResolutionContext) -> Optional[Resolved]:
        encoded = quote(ctx.keywords, safe="")
        for host in ctx.hosts:
            for pattern in SITE_SEARCH_PATTERNS:
                url = f"https://{host}{pattern.format(q=encoded)}"
                page = self.fetcher.fetch(url)
                if page is None or not page.text:
                    continue
                if classify_page(page.text, page.final_url) is PageVerdict.PRODUCT:
                    return Resolved(url=page.final_url or url, source=Source.MANUFACTURER_SEARCH, query=ctx.keywords)
                # An on-site search listing still beats nothing.
                return Resolved(url=url, source=Source.MANUFACTURER_SEARCH, query=ctx.keywords)
        return None

    def _web_search(self, ctx: ResolutionContext) -> Optional[Resolved]:
        query = ctx.query
        brand = brand_token(query.brand)
        for attempt in query_attempts(query):
            pairs = self.retriever.search(attempt)
            if not pairs:
                # empty or failed retrieval ends the ladder
                break
            ranked = self.scorer.rank(pairs, brand, query_tokens(attempt))
            if not ranked:
                continue
            if not ctx.top_candidates:
                ctx.top_candidates = tuple(ranked[:DEBUG_TOP_N])
            ctx.reason = "no_match"

            for candidate in self.scorer.shortlist(ranked, brand, self.validate_limit):
                result = self.validator.validate(query.brand, query.target_name, query.dose, candidate.url)
                if result is not None:
                    return Resolved(
                        url=result.canonical_url,
                        source=Source.SEARCH_ENGINE,
                        query=attempt,
                        top_candidates=tuple(ranked[:DEBUG_TOP_N]),
                    )
        return None

    def _marketplace_fallback(self, ctx: ResolutionContext) -> Resolved:
        if ctx.mode.fallback_source is Source.AMAZON_SEARCH:
            url = marketplace_search_url(ctx.keywords, ctx.query.locale)
        else:
            url = web_search_url(ctx.keywords)
        return Resolved(
            url=url,
            source=ctx.mode.fallback_source,
            query=ctx.keywords,
            top_candidates=ctx.top_candidates,
            fallback=True,
        )
