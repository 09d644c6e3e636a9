"""Per-service HTTP audit log written under ``logs/<service>.log``.

Access codes let anyone holding them read or cancel a booking, so they are
masked before a path reaches the log.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from time import perf_counter

from fastapi import FastAPI, Request

from .rate_limit import client_address

LOG_DIR = Path(__file__).resolve().parent.parent / "logs"

_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_ACCESS_CODE_PATH = re.compile(r"(/bookings/lookup/)[^/]+")


def get_audit_logger(service_name: str) -> logging.Logger:
    logger = logging.getLogger(f"audit.{service_name}")
    if logger.handlers:
        return logger

    LOG_DIR.mkdir(exist_ok=True)
    logger.setLevel(logging.INFO)
    handler = logging.FileHandler(LOG_DIR / f"{service_name}.log")
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT))
    logger.addHandler(handler)
    return logger


def audit_path(request: Request) -> str:
    return _ACCESS_CODE_PATH.sub(r"\1****", request.url.path)


def caller_kind(request: Request) -> str:
    if request.headers.get("x-service-key"):
        return "service"
    if request.headers.get("authorization", "").lower().startswith("bearer "):
        return "staff"
    return "public"


def add_audit_middleware(app: FastAPI, service_name: str) -> None:
    logger = get_audit_logger(service_name)

    @app.middleware("http")
    async def audit_logger(request: Request, call_next):  # type: ignore[override]
        started = perf_counter()
        response = await call_next(request)
        logger.info(
            "%s %s | status=%s | caller=%s | client=%s | duration=%.2fms",
            request.method,
            audit_path(request),
            response.status_code,
            caller_kind(request),
            client_address(request),
            (perf_counter() - started) * 1000,
        )
        return response
