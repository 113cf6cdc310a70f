from __future__ import annotations

import logging
from typing import Optional, Union

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from .config import load_config
from .models import InputError, ProductQuery, Resolved
from .pipeline import DISCOVERY, INTERACTIVE, ResolutionPipeline, web_search_url

logger = logging.getLogger(__name__)

MAX_PARAM_LENGTH = 200


# Every response is JSON, never a document to render.
RESPONSE_HEADERS = {
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cache-Control": "no-store",
}


class ResponseHeadersMiddleware(BaseHTTPMiddleware):
    """Stamp RESPONSE_HEADERS on every response that has not set its own."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in RESPONSE_HEADERS.items():
            response.headers.setdefault(name, value)
        return response


def _clean_param(value: Optional[str]) -> Optional[str]:
    """Trim a query value; control characters and oversized values count as absent."""
    if value is None:
        return None
    stripped = value.strip()
    if not stripped or len(stripped) > MAX_PARAM_LENGTH:
        return None
    if any(c in "\x00\n\r" for c in stripped):
        return None
    return stripped


class DiscoverRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")
    brand: Optional[str] = Field(None, max_length=MAX_PARAM_LENGTH)
    product: Optional[str] = Field(None, max_length=MAX_PARAM_LENGTH)
    ingredient: Optional[str] = Field(None, max_length=MAX_PARAM_LENGTH)
    amount: Optional[Union[float, str]] = None
    unit: Optional[str] = Field(None, max_length=50)
    locale: Optional[str] = Field(None, max_length=35)

    def to_query(self) -> ProductQuery:
        amount = self.amount
        if isinstance(amount, float) and amount.is_integer():
            amount = int(amount)
        return ProductQuery(
            brand=self.brand,
            product=self.product,
            ingredient=self.ingredient,
            amount=amount,
            unit=self.unit,
            locale=self.locale,
        ).require_subject()


def _bad_request() -> JSONResponse:
    return JSONResponse({"ok": False, "error": "bad_request"}, status_code=400)


def create_app(pipeline: Optional[ResolutionPipeline] = None) -> FastAPI:
    config = load_config()
    resolver = pipeline or ResolutionPipeline.from_config(config)

    app = FastAPI(title="Product URL Resolver API", version="0.1.0")
    app.add_middleware(ResponseHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.frontend_origins),
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    @app.get("/api/link/resolve")
    def api_link_resolve(
        brand: Optional[str] = Query(default=None),
        product: Optional[str] = Query(default=None),
        ingredient: Optional[str] = Query(default=None),
        amount: Optional[str] = Query(default=None),
        unit: Optional[str] = Query(default=None),
    ):
        try:
            query = ProductQuery(
                brand=_clean_param(brand),
                product=_clean_param(product),
                ingredient=_clean_param(ingredient),
                amount=_clean_param(amount),
                unit=_clean_param(unit),
            ).require_subject()
        except InputError:
            return JSONResponse({"url": None, "reason": "no_query"}, status_code=400)

        outcome = resolver.resolve(query, INTERACTIVE, fallback=False)
        debug_top = [{"url": c.url, "score": c.score} for c in outcome.top_candidates]
        if isinstance(outcome, Resolved):
            return {
                "url": outcome.url,
                "source": outcome.source.value,
                "query": outcome.query,
                "debugTop5": debug_top,
            }

        status = 400 if outcome.reason == "no_query" else 404
        return JSONResponse(
            {
                "url": None,
                "reason": outcome.reason,
                "query": outcome.query,
                "fallbackUrl": web_search_url(outcome.query) if outcome.query else None,
                "debugTop5": debug_top,
            },
            status_code=status,
        )

    @app.post("/api/retail/discover")
    async def api_retail_discover(request: Request):
        try:
            body = await request.json()
            query = DiscoverRequest.model_validate(body if isinstance(body, dict) else {}).to_query()
        except (ValueError, ValidationError) as exc:
            logger.debug("Rejected discover request: %s", exc)
            return _bad_request()

        outcome = await run_in_threadpool(resolver.resolve, query, DISCOVERY)
        if not isinstance(outcome, Resolved):
            return _bad_request()
        return {"ok": True, "url": outcome.url, "source": outcome.source.value}

    return app


app = create_app()
