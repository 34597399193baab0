from __future__ import annotations

from datetime import date
from typing import Any, Iterable


class StayError(Exception):
    """
    Base class for failures raised by the availability / inventory / order core.

    The HTTP layer maps every subclass to a JSON error body through a single
    exception handler, so the core never imports FastAPI.
    """

    status_code = 400

    def __init__(self, message: str | None = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    @property
    def name(self) -> str:
        return self.__class__.__name__

    def extra(self) -> dict[str, Any]:
        return {}

    def as_detail(self) -> dict[str, Any]:
        return {"error": self.name, "message": self.message, **self.extra()}


class _DateListError(StayError):
    status_code = 409

    def __init__(self, dates: Iterable[date], message: str):
        self.dates = sorted(set(dates))
        listed = ", ".join(d.isoformat() for d in self.dates)
        super().__init__(f"{message}: {listed}")

    def extra(self) -> dict[str, Any]:
        return {"dates": [d.isoformat() for d in self.dates]}


class InvalidRange(StayError):
    status_code = 400


class DuplicateDates(_DateListError):
    def __init__(self, dates: Iterable[date]):
        super().__init__(dates, "Inventory already exists for these dates; use update instead")


class MissingDates(_DateListError):
    def __init__(self, dates: Iterable[date]):
        super().__init__(dates, "No inventory exists for these dates; add it first")


class IncompleteInventory(_DateListError):
    def __init__(self, dates: Iterable[date]):
        super().__init__(dates, "Room is not bookable on these nights")


class NoFieldsProvided(StayError):
    status_code = 400

    def __init__(self, message: str = "At least one of price or stock must be provided"):
        super().__init__(message)


class Forbidden(StayError):
    status_code = 403


class NotFound(StayError):
    status_code = 404


class Conflict(StayError):
    status_code = 409


class HotelUnavailable(StayError):
    status_code = 410


class InvalidState(StayError):
    status_code = 409

    def __init__(self, status: str, action: str):
        self.status = status
        super().__init__(f"Cannot {action} an order in status {status}")

    def extra(self) -> dict[str, Any]:
        return {"status": self.status}
