"""Domain errors raised by the booking core and their HTTP mapping."""
from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class LoungeError(Exception):
    """Base class for errors the services translate into HTTP responses."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict:
        return {"detail": self.message}


class BookingValidationError(LoungeError):
    """Malformed input. Raised before any store access."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(LoungeError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(LoungeError):
    """The requested stations are not free for the requested slot."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(
        self,
        message: str,
        unavailable_station_ids: Iterable[int] = (),
        unavailable_stations: Optional[Sequence[dict]] = None,
    ) -> None:
        super().__init__(message)
        self.unavailable_station_ids: List[int] = list(unavailable_station_ids)
        self.unavailable_stations: List[dict] = list(unavailable_stations or [])

    @classmethod
    def for_stations(cls, stations: Sequence[dict]) -> "ConflictError":
        names = ", ".join(station["name"] for station in stations) or "Some stations"
        verb = "is" if len(stations) == 1 else "are"
        return cls(
            f"{names} {verb} no longer available for the selected time. "
            "Please select a different time or station.",
            unavailable_station_ids=[station["id"] for station in stations],
            unavailable_stations=stations,
        )

    def to_payload(self) -> dict:
        return {
            "detail": self.message,
            "unavailable_station_ids": self.unavailable_station_ids,
            "unavailable_stations": self.unavailable_stations,
        }


class TransportError(LoungeError):
    """The store could not be reached. Safe to retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


def lounge_error_handler(_: Request, exc: LoungeError) -> JSONResponse:
    if isinstance(exc, TransportError):
        logger.warning("Store unavailable: %s", exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


def apply_error_handlers(app: FastAPI) -> None:
    """Attach the domain error handler to an app."""

    app.add_exception_handler(LoungeError, lounge_error_handler)
