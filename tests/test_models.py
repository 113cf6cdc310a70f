from __future__ import annotations

import pytest

from product_resolver.config import load_config
from product_resolver.models import EnrichmentRow, InputError, ProductQuery


def test_product_query_subject_and_dose():
    assert not ProductQuery(amount=500, unit="mg").has_subject()
    assert ProductQuery(ingredient="Zinc").has_subject()
    assert ProductQuery(ingredient="Zinc", amount=50, unit="mg").dose == "50 mg"
    assert ProductQuery(amount=0, unit="mg").dose == ""
    assert ProductQuery(product="Alive!", ingredient="Iron").target_name == "Alive!"
    assert ProductQuery(ingredient=" Iron ").target_name == "Iron"


def test_require_subject_raises_input_error():
    query = ProductQuery(brand="Jamieson")
    assert query.require_subject() is query
    with pytest.raises(InputError):
        ProductQuery(amount=500, unit="mg").require_subject()


def test_enrichment_row_from_record_strips_and_keeps_extras():
    row = EnrichmentRow.from_record({"brand": " Jamieson ", "product_name": None, "sku": "J-1", None: ["overflow"]})
    assert row.brand == "Jamieson"
    assert row.product_name == ""
    assert row.extra == {"sku": "J-1"}
    assert row.to_record()["sku"] == "J-1"


def test_with_note_appends_and_applies_changes():
    row = EnrichmentRow(brand="Jamieson")
    first = row.with_note("no_match")
    second = first.with_note("enriched", canonical_product_url="https://www.jamieson.ca/products/d3")
    assert first.notes == "no_match"
    assert second.notes == "no_match | enriched"
    assert second.canonical_product_url == "https://www.jamieson.ca/products/d3"
    assert row.notes == ""


def test_load_config_reads_environment(monkeypatch):
    monkeypatch.setenv("BATCH_CONCURRENCY", "0")
    monkeypatch.setenv("VERIFY_TLS", "no")
    monkeypatch.setenv("FRONTEND_ORIGINS", "https://app.example, ,http://localhost:3000")
    monkeypatch.setenv("PAGE_TIMEOUT", "2.5")
    config = load_config()
    assert config.batch_concurrency == 1
    assert config.verify_tls is False
    assert config.frontend_origins == ("https://app.example", "http://localhost:3000")
    assert config.page_timeout == 2.5
