"""Batch product-URL enrichment over a CSV dataset.

For each row: search DuckDuckGo with a few query variants, drop obviously
irrelevant result paths, order candidates by how high their domain sits in
the row's retailer preference list, and validate the top candidates one by
one. The first page that validates becomes the row's canonical product URL.

Rows run concurrently (bounded thread pool); each row's own searches and
validations are strictly sequential. Output preserves input order and every
input row, processed or not.
"""
from __future__ import annotations

import csv
import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from ..config import Config, load_config
from ..domains import domain_weight, get_domain_from_url, preferred_domains
from ..models import ENRICHMENT_COLUMNS, NOTES_SEPARATOR, EnrichmentRow
from ..query import build_row_queries
from ..search import SearchRetriever
from ..validation import PageFetcher, PageValidator

logger = logging.getLogger(__name__)

IRRELEVANT_PATH = re.compile(
    r"/(cart|faq|contact|login|account|polic|blog|article|terms|privacy)", re.IGNORECASE
)

PROGRESS_EVERY = 25


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# CSV I/O
# ---------------------------------------------------------------------------

def read_rows(path: Path) -> tuple[list[str], list[EnrichmentRow]]:
    with Path(path).open("r", newline="", encoding="utf-8-sig") as handle:
        reader = csv.DictReader(handle)
        header = [name.strip() for name in (reader.fieldnames or [])]
        reader.fieldnames = header
        rows = [EnrichmentRow.from_record(record) for record in reader]
    return header, rows


def output_columns(header: list[str]) -> list[str]:
    columns = list(header)
    for column in ENRICHMENT_COLUMNS:
        if column not in columns:
            columns.append(column)
    return columns


def write_rows(path: Path, rows: list[EnrichmentRow], header: Optional[list[str]] = None) -> Path:
    path = Path(path)
    if path.parent and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
    columns = output_columns(header or [])
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=columns, extrasaction="ignore")
        writer.writeheader()
        for row in rows:
            writer.writerow(row.to_record())
    return path


# ---------------------------------------------------------------------------
# Per-row enrichment
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RowCandidate:
    url: str
    weight: int


class RowEnricher:
    """Resolves one row at a time; safe to share between worker threads."""

    def __init__(
        self,
        retriever: SearchRetriever,
        validator: PageValidator,
        search_delay: float = 0.5,
        validate_limit: int = 10,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], str] = _utc_now,
    ) -> None:
        self.retriever = retriever
        self.validator = validator
        self.search_delay = search_delay
        self.validate_limit = validate_limit
        self.sleep = sleep
        self.clock = clock

    @classmethod
    def from_config(cls, config: Optional[Config] = None) -> "RowEnricher":
        config = config or load_config()
        return cls(
            retriever=SearchRetriever(config, max_attempts=config.batch_search_attempts),
            validator=PageValidator(PageFetcher(config)),
            search_delay=config.batch_search_delay,
            validate_limit=config.batch_validate_limit,
        )

    def collect_candidates(self, row: EnrichmentRow) -> list[RowCandidate]:
        preferred = preferred_domains(row)
        seen: set[str] = set()
        candidates: list[RowCandidate] = []
        for index, query in enumerate(build_row_queries(row)):
            if index and self.search_delay:
                self.sleep(self.search_delay)
            for url, _text in self.retriever.search(query):
                domain = get_domain_from_url(url)
                if not domain or IRRELEVANT_PATH.search(url) or url in seen:
                    continue
                seen.add(url)
                candidates.append(RowCandidate(url=url, weight=domain_weight(domain, preferred)))
        # Stable: equal weights keep search order.
        candidates.sort(key=lambda c: c.weight, reverse=True)
        return candidates

    def enrich(self, row: EnrichmentRow) -> EnrichmentRow:
        try:
            candidates = self.collect_candidates(row)
            for candidate in candidates[: self.validate_limit]:
                result = self.validator.validate(
                    row.brand, row.product_name, row.variant_generic, candidate.url,
                )
                if result is None:
                    continue
                logger.debug("Validated %s for '%s %s'", result.canonical_url, row.brand, row.product_name)
                return row.with_note(
                    "enriched",
                    canonical_product_url=result.canonical_url,
                    review_url_1=result.review_url or result.canonical_url,
                    last_verified_utc=self.clock(),
                )
            return row.with_note("no_match")
        except Exception as exc:
            logger.warning("Enrichment error for '%s %s': %s", row.brand, row.product_name, exc)
            return row.with_note(f"error: {str(exc) or type(exc).__name__}")


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------

def select_indices(rows: list[EnrichmentRow], only_missing: bool = False, limit: Optional[int] = None) -> list[int]:
    """Positions of rows that get enrichment; everything else is copied through."""
    window = rows if limit is None or limit <= 0 else rows[:limit]
    return [
        index
        for index, row in enumerate(window)
        if not (only_missing and row.canonical_product_url)
    ]


def run_batch(
    rows: list[EnrichmentRow],
    enricher: RowEnricher,
    concurrency: int = 5,
    only_missing: bool = False,
    limit: Optional[int] = None,
) -> tuple[list[EnrichmentRow], dict]:
    """Enrich ``rows`` and return (output rows in input order, stats)."""
    indices = select_indices(rows, only_missing=only_missing, limit=limit)
    results: list[EnrichmentRow] = list(rows)
    stats = {
        "total": len(rows),
        "processed": 0,
        "enriched": 0,
        "no_match": 0,
        "errors": 0,
        "skipped": len(rows) - len(indices),
    }
    if not indices:
        return results, stats

    start_time = time.time()
    with ThreadPoolExecutor(max_workers=max(1, concurrency)) as pool:
        future_to_index = {pool.submit(enricher.enrich, rows[index]): index for index in indices}
        for future in as_completed(future_to_index):
            index = future_to_index[future]
            try:
                results[index] = future.result()
            except Exception as exc:
                logger.warning("Row %d failed: %s", index, exc)
                results[index] = rows[index].with_note(f"error: {exc}")

            note = results[index].notes.rsplit(NOTES_SEPARATOR, 1)[-1]
            if note == "enriched":
                stats["enriched"] += 1
            elif note == "no_match":
                stats["no_match"] += 1
            else:
                stats["errors"] += 1
            stats["processed"] += 1
            if stats["processed"] % PROGRESS_EVERY == 0:
                logger.info("Processed %d/%d", stats["processed"], len(indices))

    elapsed = time.time() - start_time
    stats["elapsed_seconds"] = round(elapsed, 1)
    logger.info(
        "URL enrichment complete: %d processed, %d enriched, %d no match, %d errors in %.1fs",
        stats["processed"], stats["enriched"], stats["no_match"], stats["errors"], elapsed,
    )
    return results, stats


def enrich_file(
    in_path: Path,
    out_path: Path,
    concurrency: Optional[int] = None,
    only_missing: bool = False,
    limit: Optional[int] = None,
    enricher: Optional[RowEnricher] = None,
) -> dict:
    config = load_config()
    header, rows = read_rows(in_path)
    logger.info("Loaded %d rows from %s", len(rows), in_path)
    output, stats = run_batch(
        rows,
        enricher or RowEnricher.from_config(config),
        concurrency=concurrency or config.batch_concurrency,
        only_missing=only_missing,
        limit=limit,
    )
    write_rows(out_path, output, header)
    logger.info("Wrote %s", out_path)
    return stats
