from __future__ import annotations

import csv
import time
from threading import Lock

import responses

from conftest import FakeRetriever, product_page
from product_resolver.cli import enrich_main
from product_resolver.config import load_config
from product_resolver.models import ENRICHMENT_COLUMNS, EnrichmentRow
from product_resolver.validation import PageValidator
from product_resolver.workers.url_enrichment import (
    RowEnricher,
    enrich_file,
    output_columns,
    read_rows,
    run_batch,
    select_indices,
    write_rows,
)

PRODUCT_URL = "https://www.jamieson.ca/products/vitamin-d3-1000iu"
VERIFIED_AT = "2026-01-01T00:00:00.000Z"


def _row(name: str, **fields) -> EnrichmentRow:
    return EnrichmentRow(brand="Jamieson", product_name=name, **fields)


def _enricher(site, config, retriever, **kwargs) -> RowEnricher:
    kwargs.setdefault("search_delay", 0)
    return RowEnricher(
        retriever=retriever,
        validator=PageValidator(site.fetcher(config)),
        clock=lambda: VERIFIED_AT,
        **kwargs,
    )


class _RecordingEnricher:
    """Marks each row it touches and remembers which ones it saw."""

    def __init__(self, delay=None):
        self.seen = []
        self.delay = delay
        self._lock = Lock()

    def enrich(self, row):
        with self._lock:
            self.seen.append(row.product_name)
        if self.delay:
            time.sleep(self.delay(row))
        return row.with_note("enriched", canonical_product_url=f"https://shop.example/{row.product_name}")


def _write_csv(path, header, records):
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=header)
        writer.writeheader()
        writer.writerows(records)


def test_collect_candidates_filters_and_orders_by_preference(site, config):
    retriever = FakeRetriever(default=[
        ("https://www.jamieson.ca/contact-us", "Contact"),
        ("https://reviews.example/vitamin-d3", "Review"),
        ("https://www.amazon.ca/dp/B000", "Amazon"),
        (PRODUCT_URL, "Jamieson Vitamin D3"),
    ])
    row = _row("Vitamin D3", variant_generic="1000 IU", brand_domain="jamieson.ca", source_priority="brand,amazon")
    candidates = _enricher(site, config, retriever).collect_candidates(row)

    assert [c.url for c in candidates] == [
        PRODUCT_URL,
        "https://www.amazon.ca/dp/B000",
        "https://reviews.example/vitamin-d3",
    ]
    assert [c.weight for c in candidates] == [3, 1, 0]


def test_collect_candidates_pauses_between_queries(site, config):
    pauses = []
    enricher = _enricher(site, config, FakeRetriever(), search_delay=0.5, sleep=pauses.append)
    row = _row("Vitamin D3", variant_generic="1000 IU", brand_domain="jamieson.ca")
    enricher.collect_candidates(row)
    assert pauses == [0.5, 0.5]


def test_enrich_sets_canonical_and_review_urls(site, config):
    site.pages[PRODUCT_URL] = product_page(
        "Vitamin D3 1000 IU", brand="Jamieson", body='<div id="reviews"></div>',
    )
    retriever = FakeRetriever(default=[(PRODUCT_URL, "Jamieson Vitamin D3")])
    row = _row("Vitamin D3", variant_generic="1000 IU", notes="seeded")

    enriched = _enricher(site, config, retriever).enrich(row)
    assert enriched.canonical_product_url == PRODUCT_URL
    assert enriched.review_url_1 == f"{PRODUCT_URL}#reviews"
    assert enriched.last_verified_utc == VERIFIED_AT
    assert enriched.notes == "seeded | enriched"


def test_enrich_review_url_defaults_to_canonical(site, config):
    site.pages[PRODUCT_URL] = product_page("Vitamin D3 1000 IU", brand="Jamieson")
    retriever = FakeRetriever(default=[(PRODUCT_URL, "Jamieson Vitamin D3")])
    enriched = _enricher(site, config, retriever).enrich(_row("Vitamin D3", variant_generic="1000 IU"))
    assert enriched.review_url_1 == PRODUCT_URL
    assert enriched.notes == "enriched"


def test_enrich_without_match_only_appends_note(site, config):
    retriever = FakeRetriever(default=[("https://reviews.example/vitamin-d3", "Review")])
    row = _row("Vitamin D3", notes="seeded", canonical_product_url="")
    enriched = _enricher(site, config, retriever).enrich(row)
    assert enriched.notes == "seeded | no_match"
    assert enriched.canonical_product_url == ""
    assert enriched.last_verified_utc == ""


def test_enrich_row_without_product_name_is_no_match(site, config):
    site.pages["https://www.jamieson.ca/"] = product_page("Jamieson Homepage Omega", brand="Jamieson")
    retriever = FakeRetriever(default=[("https://www.jamieson.ca/", "Jamieson")])
    enriched = _enricher(site, config, retriever).enrich(_row("", brand_domain="jamieson.ca"))
    assert enriched.notes == "no_match"
    assert enriched.canonical_product_url == ""
    assert site.requested == []


@responses.activate
def test_from_config_searches_once_per_query(monkeypatch, config):
    monkeypatch.delenv("BATCH_SEARCH_ATTEMPTS", raising=False)
    responses.add(responses.GET, "https://html.duckduckgo.com/html/", body="slow down", status=429)
    responses.add(responses.GET, "https://html.duckduckgo.com/html/", body="slow down", status=429)
    enricher = RowEnricher.from_config(load_config())
    assert enricher.retriever.search("Jamieson Vitamin D3") == []
    assert len(responses.calls) == 1


def test_enrich_validates_at_most_limit_candidates(site, config):
    retriever = FakeRetriever(default=[(f"https://shop{i}.example/p/d3", "D3") for i in range(15)])
    enriched = _enricher(site, config, retriever, validate_limit=10).enrich(_row("Vitamin D3"))
    assert enriched.notes == "no_match"
    assert len(site.requested) == 10


def test_enrich_records_errors_in_notes(site, config):
    class ExplodingRetriever:
        def search(self, query):
            raise RuntimeError("search exploded")

    enriched = _enricher(site, config, ExplodingRetriever()).enrich(_row("Vitamin D3", notes="seeded"))
    assert enriched.notes == "seeded | error: search exploded"


def test_select_indices_honours_limit_and_only_missing():
    rows = [_row("A"), _row("B", canonical_product_url="https://x.example/b"), _row("C"), _row("D")]
    assert select_indices(rows) == [0, 1, 2, 3]
    assert select_indices(rows, limit=2) == [0, 1]
    assert select_indices(rows, only_missing=True) == [0, 2, 3]
    assert select_indices(rows, only_missing=True, limit=2) == [0]


def test_run_batch_limit_copies_remaining_rows_through():
    rows = [_row(name) for name in "ABCDE"]
    enricher = _RecordingEnricher()
    results, stats = run_batch(rows, enricher, concurrency=2, limit=2)

    assert len(results) == 5
    assert sorted(enricher.seen) == ["A", "B"]
    assert [r.notes for r in results[:2]] == ["enriched", "enriched"]
    assert results[2:] == rows[2:]
    assert stats["processed"] == 2
    assert stats["enriched"] == 2
    assert stats["skipped"] == 3


def test_run_batch_only_missing_skips_filled_rows():
    rows = [_row("A", canonical_product_url="https://x.example/a"), _row("B")]
    enricher = _RecordingEnricher()
    results, stats = run_batch(rows, enricher, only_missing=True)
    assert enricher.seen == ["B"]
    assert results[0] == rows[0]
    assert stats["skipped"] == 1


def test_run_batch_preserves_input_order():
    names = [f"P{i}" for i in range(8)]
    rows = [_row(name) for name in names]
    # later rows finish first
    enricher = _RecordingEnricher(delay=lambda row: (8 - int(row.product_name[1:])) * 0.01)
    results, _ = run_batch(rows, enricher, concurrency=8)
    assert [r.product_name for r in results] == names
    assert all(r.canonical_product_url.endswith(r.product_name) for r in results)


def test_run_batch_bounds_concurrent_fetches(site, config):
    lock = Lock()
    state = {"in_flight": 0, "peak": 0}

    class SlowRetriever:
        def search(self, query):
            with lock:
                state["in_flight"] += 1
                state["peak"] = max(state["peak"], state["in_flight"])
            time.sleep(0.02)
            with lock:
                state["in_flight"] -= 1
            return []

    rows = [_row(f"P{i}") for i in range(12)]
    results, stats = run_batch(rows, _enricher(site, config, SlowRetriever()), concurrency=3)

    assert stats["processed"] == 12
    assert stats["no_match"] == 12
    assert 1 <= state["peak"] <= 3
    assert all(r.notes == "no_match" for r in results)


def test_run_batch_counts_task_failures_as_errors():
    class BrokenEnricher:
        def enrich(self, row):
            raise ValueError("bad row")

    results, stats = run_batch([_row("A")], BrokenEnricher())
    assert results[0].notes == "error: bad row"
    assert stats["errors"] == 1


def test_csv_round_trip_keeps_extra_columns_and_quoting(tmp_path):
    path = tmp_path / "in.csv"
    header = ["sku", "brand", "product_name", "notes"]
    _write_csv(path, header, [
        {"sku": "J-1", "brand": "Jamieson", "product_name": 'Vitamin D3, "Extra" Strength', "notes": "line one\nline two"},
    ])

    read_header, rows = read_rows(path)
    assert read_header == header
    assert rows[0].product_name == 'Vitamin D3, "Extra" Strength'
    assert rows[0].extra == {"sku": "J-1"}

    out = write_rows(tmp_path / "nested" / "out.csv", rows, read_header)
    out_header, out_rows = read_rows(out)
    assert out_header == output_columns(header)
    assert out_header[:4] == header
    assert set(ENRICHMENT_COLUMNS) <= set(out_header)
    assert out_rows == rows
    assert out_rows[0].extra == {"sku": "J-1"}


def test_enrich_file_writes_every_row(tmp_path, monkeypatch):
    monkeypatch.setenv("BATCH_CONCURRENCY", "2")
    in_path = tmp_path / "products.csv"
    _write_csv(in_path, ["brand", "product_name"], [{"brand": "Jamieson", "product_name": f"P{i}"} for i in range(5)])
    out_path = tmp_path / "enriched.csv"

    stats = enrich_file(in_path, out_path, limit=2, enricher=_RecordingEnricher())

    _, rows = read_rows(out_path)
    assert [r.product_name for r in rows] == [f"P{i}" for i in range(5)]
    assert [r.notes for r in rows] == ["enriched", "enriched", "", "", ""]
    assert stats["total"] == 5
    assert stats["skipped"] == 3


def test_enrich_main_missing_input_exits_nonzero(tmp_path):
    assert enrich_main(["--in", str(tmp_path / "missing.csv"), "--out", str(tmp_path / "out.csv")]) == 1
    assert not (tmp_path / "out.csv").exists()
