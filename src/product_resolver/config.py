from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

_TRUTHY = {"1", "true", "yes", "on"}

DEFAULT_SEARCH_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)
DEFAULT_PAGE_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) product-url-resolver/0.1 Chrome/122 Safari/537.36"
)


@dataclass(frozen=True)
class Config:
    search_endpoint: str
    search_user_agent: str
    search_timeout: float
    search_max_attempts: int
    page_user_agent: str
    page_timeout: float
    batch_concurrency: int
    batch_search_delay: float
    batch_search_attempts: int
    batch_validate_limit: int
    interactive_validate_limit: int
    product_similarity_threshold: float
    brand_similarity_threshold: float
    verify_tls: bool
    frontend_origins: tuple[str, ...]


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in _TRUTHY


def load_config() -> Config:
    return Config(
        search_endpoint=os.getenv("SEARCH_ENDPOINT", "https://html.duckduckgo.com/html/"),
        search_user_agent=os.getenv("SEARCH_USER_AGENT", DEFAULT_SEARCH_USER_AGENT),
        search_timeout=float(os.getenv("SEARCH_TIMEOUT", "10")),
        search_max_attempts=max(int(os.getenv("SEARCH_MAX_ATTEMPTS", "1")), 1),
        page_user_agent=os.getenv("PAGE_USER_AGENT", DEFAULT_PAGE_USER_AGENT),
        page_timeout=float(os.getenv("PAGE_TIMEOUT", "3.5")),
        batch_concurrency=max(int(os.getenv("BATCH_CONCURRENCY", "5")), 1),
        batch_search_delay=max(float(os.getenv("BATCH_SEARCH_DELAY", "0.5")), 0.0),
        batch_search_attempts=max(int(os.getenv("BATCH_SEARCH_ATTEMPTS", "1")), 1),
        batch_validate_limit=max(int(os.getenv("BATCH_VALIDATE_LIMIT", "10")), 1),
        interactive_validate_limit=max(int(os.getenv("INTERACTIVE_VALIDATE_LIMIT", "5")), 1),
        product_similarity_threshold=float(os.getenv("PRODUCT_SIMILARITY_THRESHOLD", "0.55")),
        brand_similarity_threshold=float(os.getenv("BRAND_SIMILARITY_THRESHOLD", "0.5")),
        verify_tls=_env_bool("VERIFY_TLS", "true"),
        frontend_origins=tuple(
            entry.strip()
            for entry in os.getenv(
                "FRONTEND_ORIGINS",
                "http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173",
            ).split(",")
            if entry.strip()
        ),
    )
