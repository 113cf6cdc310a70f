"""Keyword, slug and query-variant builders.

Everything here is pure string work: no network calls, no configuration.
"""
from __future__ import annotations

import re
from typing import Optional

from .models import EnrichmentRow, ProductQuery

_VITAMIN_D_VARIANTS = re.compile(r"\bvit\s*d3?\b")
_NON_SLUG_CHARS = re.compile(r"[^a-z0-9\s-]")


def _collapse(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def build_keywords(query: ProductQuery) -> Optional[str]:
    """Join the non-empty query fields into one search string.

    Amount and unit travel together as a single token ("500 mg"). Returns
    None when nothing usable is present.
    """
    parts = [
        (query.brand or "").strip(),
        (query.product or "").strip(),
        (query.ingredient or "").strip(),
        query.dose,
    ]
    keywords = _collapse(" ".join(part for part in parts if part))
    return keywords or None


def query_tokens(keywords: str) -> list[str]:
    return [token for token in keywords.lower().split() if token]


def slugify(text: Optional[str]) -> str:
    """URL-path-safe form of a product name, e.g. "Vit. D3 1000 IU" → "vitamin-d-1000-iu"."""
    slug = _NON_SLUG_CHARS.sub("", (text or "").lower())
    slug = _VITAMIN_D_VARIANTS.sub("vitamin d", slug)
    slug = re.sub(r"\s+", "-", slug.strip())
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def query_attempts(query: ProductQuery) -> list[str]:
    """Progressively broader keyword strings for interactive lookups."""
    shapes = [
        query,
        ProductQuery(brand=query.brand, product=query.product),
        ProductQuery(brand=query.brand, ingredient=query.ingredient),
        ProductQuery(brand=query.brand),
    ]
    attempts: list[str] = []
    for shape in shapes:
        keywords = build_keywords(shape)
        if keywords and keywords not in attempts:
            attempts.append(keywords)
    return attempts


def build_row_queries(row: EnrichmentRow) -> list[str]:
    """Search variants for one enrichment row, most specific first."""
    base = _collapse(" ".join(
        part for part in (row.brand, row.product_name, row.variant_generic, row.size_label) if part
    ))
    brand_domain = _bare_domain(row.brand_domain)
    variants = [
        f"{base} site:{brand_domain}" if brand_domain and base else base,
        _collapse(f"{row.brand} {row.product_name} {row.variant_generic}"),
        _collapse(f"{row.brand} {row.product_name} reviews") if (row.brand or row.product_name) else "",
    ]
    queries: list[str] = []
    for variant in variants:
        if variant and variant not in queries:
            queries.append(variant)
    return queries


def _bare_domain(value: str) -> str:
    domain = re.sub(r"^https?://", "", (value or "").strip(), flags=re.IGNORECASE)
    domain = domain.split("/")[0].lower()
    if domain.startswith("www."):
        domain = domain[4:]
    return domain
