"""Per-client request limits shared by the lounge services (SlowAPI).

The front desk and the booking kiosk sit behind the venue's reverse proxy, so
clients are told apart by the first ``X-Forwarded-For`` hop when present.
"""
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from .config import get_settings

settings = get_settings()


def forwarded_client(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return None


def client_address(request: Request) -> str:
    return forwarded_client(request) or get_remote_address(request)


limiter = Limiter(
    key_func=client_address,
    default_limits=[settings.default_rate_limit],
    enabled=settings.rate_limiting_enabled,
)


def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    detail = f"Too many requests from {client_address(request)}, wait a moment before booking again ({exc.detail})"
    return JSONResponse(status_code=429, content={"detail": detail})


def apply_rate_limiter(app: FastAPI) -> None:
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
