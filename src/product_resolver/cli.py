from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from .models import ProductQuery, Resolved
from .pipeline import MODES, ResolutionPipeline
from .workers.url_enrichment import enrich_file

logger = logging.getLogger(__name__)


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def enrich_main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Fill canonical product URLs in a CSV dataset")
    parser.add_argument("--in", dest="in_path", required=True, help="Input CSV with a header row")
    parser.add_argument("--out", dest="out_path", required=True, help="Output CSV path")
    parser.add_argument("--concurrency", type=int, default=None, help="Rows processed in parallel (default 5)")
    parser.add_argument("--only-missing", action="store_true", help="Skip rows that already have a canonical URL")
    parser.add_argument("--limit", type=int, default=None, help="Only enrich the first N rows; the rest are copied")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args(argv)

    _setup_logging(args.log_level)
    try:
        stats = enrich_file(
            Path(args.in_path),
            Path(args.out_path),
            concurrency=args.concurrency,
            only_missing=args.only_missing,
            limit=args.limit,
        )
    except Exception:
        logger.exception("URL enrichment failed")
        return 1

    print(
        "Processed {processed} rows: {enriched} enriched, {no_match} no match, "
        "{errors} errors, {skipped} copied through".format(**stats)
    )
    return 0


def resolve_main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Resolve one product to its product page URL")
    parser.add_argument("--brand", default=None)
    parser.add_argument("--product", default=None)
    parser.add_argument("--ingredient", default=None)
    parser.add_argument("--amount", default=None)
    parser.add_argument("--unit", default=None)
    parser.add_argument("--locale", default=None)
    parser.add_argument("--mode", choices=sorted(MODES), default="interactive")
    parser.add_argument("--no-fallback", action="store_true", help="Fail instead of returning a search link")
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args(argv)

    _setup_logging(args.log_level)
    query = ProductQuery(
        brand=args.brand,
        product=args.product,
        ingredient=args.ingredient,
        amount=args.amount,
        unit=args.unit,
        locale=args.locale,
    )
    outcome = ResolutionPipeline.from_config().resolve(query, MODES[args.mode], fallback=not args.no_fallback)

    if isinstance(outcome, Resolved):
        print(json.dumps({
            "url": outcome.url,
            "source": outcome.source.value,
            "query": outcome.query,
            "fallback": outcome.fallback,
        }, indent=2))
        return 0
    print(json.dumps({"url": None, "reason": outcome.reason, "query": outcome.query}, indent=2))
    return 2 if outcome.reason == "no_query" else 1


def main() -> None:
    sys.exit(enrich_main())


def resolve_entry() -> None:
    sys.exit(resolve_main())


if __name__ == "__main__":
    main()
