"""HTTP middleware stack for the hunt API."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from thunt.config import Settings
from thunt.middleware.error_handler import setup_error_handlers
from thunt.middleware.logging import setup_logging
from thunt.middleware.rate_limit import RateLimitMiddleware
from thunt.middleware.request_id import REQUEST_ID_HEADER, RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Install logging, error handlers and middleware.

    Starlette runs middleware outermost-last: CORS wraps the request id
    middleware, which wraps the rate limiter, so 429 responses still get
    CORS and request id headers.
    """
    setup_logging(settings, service="thunt-api")
    setup_error_handlers(app)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
        answers_per_window=settings.answer_rate_limit_requests,
    )
    app.add_middleware(RequestIdMiddleware)
    # Storefront origins only; the API is read/submit, no PUT/DELETE.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", REQUEST_ID_HEADER],
        expose_headers=[REQUEST_ID_HEADER, "X-RateLimit-Remaining", "X-RateLimit-Limit", "Retry-After"],
    )
