from __future__ import annotations

import sys

from product_resolver.cli import enrich_main


if __name__ == "__main__":
    sys.exit(enrich_main())
