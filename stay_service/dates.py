from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable

from .errors import InvalidRange

_ONE_DAY = timedelta(days=1)
_ISO_DAY = re.compile(r"\d{4}-\d{2}-\d{2}")


def parse_date(value: str | date, field: str = "date") -> date:
    if isinstance(value, date):
        return value
    text = value.strip() if isinstance(value, str) else ""
    # fromisoformat also takes basic and week-date forms (20250601, 2025-W23-1).
    if not _ISO_DAY.fullmatch(text):
        raise InvalidRange(f"{field} must be a YYYY-MM-DD date (got {value!r})")
    try:
        return date.fromisoformat(text)
    except ValueError:
        raise InvalidRange(f"{field} must be a YYYY-MM-DD date (got {value!r})")


def weekday_index(d: date) -> int:
    # 0=Sunday .. 6=Saturday
    return d.isoweekday() % 7


def _normalize_mask(weekdays: Iterable[int] | None) -> frozenset[int]:
    mask = frozenset(int(w) for w in (weekdays or ()))
    bad = sorted(w for w in mask if w < 0 or w > 6)
    if bad:
        raise InvalidRange(f"weekdays must be within 0 (Sunday) .. 6 (Saturday), got {bad}")
    return mask


def expand(start: str | date, end: str | date, weekdays: Iterable[int] | None = None) -> list[date]:
    """
    Concrete calendar dates in [start, end), optionally restricted to a weekday mask.

    Steps one calendar day at a time on `date` objects, so the result is
    independent of timezones and DST transitions.
    """
    start_d = parse_date(start, "start_date")
    end_d = parse_date(end, "end_date")
    if start_d > end_d:
        raise InvalidRange(f"start_date {start_d.isoformat()} is after end_date {end_d.isoformat()}")

    mask = _normalize_mask(weekdays)
    out: list[date] = []
    cursor = start_d
    while cursor < end_d:
        if not mask or weekday_index(cursor) in mask:
            out.append(cursor)
        cursor += _ONE_DAY
    return out


@dataclass(frozen=True)
class StayWindow:
    check_in: date
    check_out: date

    def __post_init__(self) -> None:
        if self.check_in > self.check_out:
            raise InvalidRange(
                f"check_in {self.check_in.isoformat()} is after check_out {self.check_out.isoformat()}"
            )

    @classmethod
    def from_strings(cls, check_in: str | date, check_out: str | date) -> "StayWindow":
        return cls(parse_date(check_in, "check_in"), parse_date(check_out, "check_out"))

    @classmethod
    def optional(cls, check_in: str | date | None, check_out: str | date | None) -> "StayWindow | None":
        # A window needs both ends; a lone check_in or check_out is ignored.
        if not check_in or not check_out:
            return None
        return cls.from_strings(check_in, check_out)

    @property
    def nights(self) -> int:
        # Same-day windows still book one night.
        return max(1, (self.check_out - self.check_in).days)

    @property
    def end(self) -> date:
        """Exclusive upper bound of the nights actually booked."""
        return self.check_in + timedelta(days=self.nights)

    def dates(self) -> list[date]:
        return expand(self.check_in, self.end)
