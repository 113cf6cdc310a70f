from __future__ import annotations

import enum
from dataclasses import dataclass, field, fields, replace
from typing import Optional, Union


class InputError(ValueError):
    """Raised when a request carries no usable query fields."""


class Source(str, enum.Enum):
    MANUFACTURER = "manufacturer"
    MANUFACTURER_SEARCH = "manufacturer-search"
    AMAZON_SEARCH = "amazon-search"
    SEARCH_ENGINE = "search-engine"


@dataclass(frozen=True)
class ProductQuery:
    brand: Optional[str] = None
    product: Optional[str] = None
    ingredient: Optional[str] = None
    amount: Optional[Union[int, float, str]] = None
    unit: Optional[str] = None
    locale: Optional[str] = None

    def has_subject(self) -> bool:
        return any((value or "").strip() for value in (self.brand, self.product, self.ingredient))

    def require_subject(self) -> "ProductQuery":
        if not self.has_subject():
            raise InputError("brand, product or ingredient is required")
        return self

    @property
    def target_name(self) -> str:
        return (self.product or self.ingredient or "").strip()

    @property
    def dose(self) -> str:
        if self.amount in (None, "", 0):
            return ""
        return f"{self.amount} {self.unit or ''}".strip()


@dataclass(frozen=True)
class Candidate:
    url: str
    text: str
    domain: str
    path: str
    score: float


@dataclass(frozen=True)
class ValidationResult:
    canonical_url: str
    review_url: Optional[str] = None


@dataclass(frozen=True)
class Resolved:
    url: str
    source: Source
    query: str = ""
    top_candidates: tuple[Candidate, ...] = ()
    fallback: bool = False


@dataclass(frozen=True)
class Unresolved:
    reason: str
    query: str = ""
    top_candidates: tuple[Candidate, ...] = ()


ResolutionOutcome = Union[Resolved, Unresolved]


ENRICHMENT_COLUMNS = (
    "brand",
    "product_name",
    "category",
    "form",
    "variant_generic",
    "size_label",
    "brand_domain",
    "source_priority",
    "canonical_product_url",
    "review_url_1",
    "review_url_2",
    "last_verified_utc",
    "notes",
)

NOTES_SEPARATOR = " | "


@dataclass(frozen=True)
class EnrichmentRow:
    brand: str = ""
    product_name: str = ""
    category: str = ""
    form: str = ""
    variant_generic: str = ""
    size_label: str = ""
    brand_domain: str = ""
    source_priority: str = ""
    canonical_product_url: str = ""
    review_url_1: str = ""
    review_url_2: str = ""
    last_verified_utc: str = ""
    notes: str = ""
    extra: dict[str, str] = field(default_factory=dict, compare=False)

    @classmethod
    def from_record(cls, record: dict[str, Optional[str]]) -> "EnrichmentRow":
        known = {f.name for f in fields(cls)} - {"extra"}
        values = {key: (record.get(key) or "").strip() for key in known}
        extra = {
            key: value or ""
            for key, value in record.items()
            if key is not None and key not in known
        }
        return cls(**values, extra=extra)

    def to_record(self) -> dict[str, str]:
        record = dict(self.extra)
        for column in ENRICHMENT_COLUMNS:
            record[column] = getattr(self, column)
        return record

    def with_note(self, note: str, **changes: str) -> "EnrichmentRow":
        notes = f"{self.notes}{NOTES_SEPARATOR}{note}" if self.notes else note
        return replace(self, notes=notes, **changes)
