from __future__ import annotations

import sys

from product_resolver.cli import resolve_main


if __name__ == "__main__":
    sys.exit(resolve_main())
