from __future__ import annotations

import re
from typing import Optional
from urllib.parse import urlparse

from .models import EnrichmentRow

# ---------------------------------------------------------------------------
# Brand → host guessing
# ---------------------------------------------------------------------------

BASE_TLDS: tuple[str, ...] = (".com", ".co.uk", ".ca", ".de", ".fr", ".it", ".es", ".com.au")

# Locale fragment → TLDs promoted ahead of the base list
LOCALE_TLDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("ca",), ".ca"),
    (("gb", "uk"), ".co.uk"),
    (("au",), ".com.au"),
)

# ---------------------------------------------------------------------------
# Retailer preference (batch enrichment)
# ---------------------------------------------------------------------------

RETAILER_DOMAINS: dict[str, tuple[str, ...]] = {
    "amazon": ("amazon.com", "amazon.ca"),
    "iherb": ("iherb.com",),
    "walmart": ("walmart.com", "walmart.ca"),
    "vitaminshoppe": ("vitaminshoppe.com",),
    "costco": ("costco.com", "costco.ca"),
    "gnc": ("gnc.com",),
    "target": ("target.com",),
    "bestbuy": ("bestbuy.com", "bestbuy.ca"),
    "superstore": ("realcanadiansuperstore.ca",),
    "loblaws": ("loblaws.ca",),
    "shoppersdrugmart": ("shoppersdrugmart.ca", "well.ca"),
}
DEFAULT_SOURCE_PRIORITY: tuple[str, ...] = (
    "brand", "amazon", "iherb", "walmart", "vitaminshoppe", "costco",
    "gnc", "target", "bestbuy", "superstore", "loblaws", "shoppersdrugmart",
)


def brand_token(brand: Optional[str]) -> str:
    """Lowercase alphanumeric form of a brand, e.g. "Nature's Way" → "naturesway"."""
    return re.sub(r"[^a-z0-9]+", "", (brand or "").lower())


def get_domain_from_url(url: str) -> str:
    """Host of a URL without a leading www., or "" if it cannot be parsed."""
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""
    if host.startswith("www."):
        host = host[4:]
    return host


def guess_tlds(locale: Optional[str] = None, base: tuple[str, ...] = BASE_TLDS) -> list[str]:
    if not locale:
        return list(base)
    low = locale.lower()
    front = [tld for fragments, tld in LOCALE_TLDS if any(fragment in low for fragment in fragments)]
    return list(dict.fromkeys([*front, *base]))


def brand_to_hosts(
    brand: Optional[str],
    locale: Optional[str] = None,
    base_tlds: tuple[str, ...] = BASE_TLDS,
) -> list[str]:
    """Hostnames worth probing directly for a brand, most preferred first.

    "Jamieson" with a Canadian locale → www.jamieson.ca, jamieson.ca,
    www.jamieson.com, ... Multi-word brands are tried both concatenated
    and hyphenated.
    """
    cleaned = re.sub(r"[^a-z0-9\s]", "", (brand or "").lower()).strip()
    if not cleaned:
        return []
    cores = list(dict.fromkeys([re.sub(r"\s+", "", cleaned), re.sub(r"\s+", "-", cleaned)]))
    tlds = guess_tlds(locale, base_tlds)
    hosts: list[str] = []
    for core in cores:
        for tld in tlds:
            hosts.append(f"www.{core}{tld}")
            hosts.append(f"{core}{tld}")
    return list(dict.fromkeys(hosts))


def marketplace_tld(locale: Optional[str]) -> str:
    low = (locale or "").lower()
    if "ca" in low:
        return "ca"
    if "gb" in low or "uk" in low:
        return "co.uk"
    if "au" in low:
        return "com.au"
    return "com"


def preferred_domains(row: EnrichmentRow) -> list[str]:
    """Retailer/brand domains for a row, ordered by its source_priority."""
    keys = [key.strip().lower() for key in (row.source_priority or "").split(",") if key.strip()]
    brand_domain = re.sub(r"^https?://", "", row.brand_domain.strip(), flags=re.IGNORECASE)
    brand_domain = brand_domain.split("/")[0].lower()
    if brand_domain.startswith("www."):
        brand_domain = brand_domain[4:]

    out: list[str] = []
    for key in keys or DEFAULT_SOURCE_PRIORITY:
        domains = (brand_domain,) if key == "brand" and brand_domain else RETAILER_DOMAINS.get(key, ())
        for domain in domains:
            if domain not in out:
                out.append(domain)
    return out


def domain_weight(domain: str, preferred: list[str]) -> int:
    for index, candidate in enumerate(preferred):
        if domain.endswith(candidate):
            return len(preferred) - index
    return 0
