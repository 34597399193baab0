from __future__ import annotations

import enum
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Callable

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .dates import expand, parse_date
from .db import session
from .errors import Conflict, DuplicateDates, Forbidden, InvalidRange, MissingDates, NoFieldsProvided
from .ledger import InventoryLedger
from .models import Hotel, InventoryDay, Room

logger = logging.getLogger(__name__)


class BatchOperation(str, enum.Enum):
    ADD = "add"
    UPDATE = "update"
    CLEAR = "clear"


@dataclass(frozen=True)
class Owner:
    """Capability of the acting merchant; every mutator call is checked against it."""

    owner_id: str


@dataclass(frozen=True)
class BatchRequest:
    hotel_id: str
    room_id: str
    start_date: str | date
    end_date: str | date
    weekdays: list[int] | None = None
    price: Decimal | None = None
    stock: int | None = None


@dataclass(frozen=True)
class BatchResult:
    operation: BatchOperation
    room_id: str
    dates: list[date] = field(default_factory=list)

    @property
    def affected(self) -> int:
        return len(self.dates)


@dataclass(frozen=True)
class RoomStock:
    room_id: str
    name: str
    room_type: int
    listed_price: Decimal
    total_stock: int


def _owned_hotel(s: Session, owner: Owner, hotel_id: str) -> Hotel:
    hotel = (
        s.query(Hotel)
        .filter(Hotel.id == hotel_id)
        .filter(Hotel.owner_id == owner.owner_id)
        .first()
    )
    if hotel is None:
        raise Forbidden("Hotel not found or not owned by this merchant")
    return hotel


def _owned_room(s: Session, owner: Owner, hotel_id: str, room_id: str) -> Room:
    room = (
        s.query(Room)
        .join(Hotel, Hotel.id == Room.hotel_id)
        .filter(Room.id == room_id)
        .filter(Room.hotel_id == hotel_id)
        .filter(Hotel.owner_id == owner.owner_id)
        .first()
    )
    if room is None:
        raise Forbidden("Room not found or not owned by this merchant")
    return room


def _check_values(price: Decimal | None, stock: int | None) -> None:
    if price is not None and price < 0:
        raise InvalidRange("price must be >= 0")
    if stock is not None and stock < 0:
        raise InvalidRange("stock must be >= 0")


@contextmanager
def _batch(s: Session, req: BatchRequest):
    """Commit everything staged inside the block once, or nothing at all."""
    try:
        yield
        s.commit()
    except IntegrityError:
        # A concurrent writer got to one of the dates first; autoflush may surface it mid-loop.
        s.rollback()
        logger.warning("Inventory batch for room=%s hit a concurrent write; rolled back", req.room_id)
        raise Conflict(f"Inventory for room {req.room_id} changed concurrently; retry the batch")


def add_inventory(engine: Engine, owner: Owner, req: BatchRequest) -> BatchResult:
    if req.price is None or req.stock is None:
        raise NoFieldsProvided("Adding inventory requires both price and stock")
    _check_values(req.price, req.stock)

    with session(engine) as s:
        _owned_room(s, owner, req.hotel_id, req.room_id)
        targets = expand(req.start_date, req.end_date, req.weekdays)
        if not targets:
            return BatchResult(operation=BatchOperation.ADD, room_id=req.room_id)

        ledger = InventoryLedger(s)
        existing = ledger.get(req.room_id, targets)
        if existing:
            logger.warning("Inventory add rejected for room=%s: %d dates already exist", req.room_id, len(existing))
            raise DuplicateDates(existing.keys())

        with _batch(s, req):
            for day in targets:
                ledger.upsert_if_absent(req.room_id, day, req.price, req.stock)

    logger.info("Added inventory for room=%s on %d dates", req.room_id, len(targets))
    return BatchResult(operation=BatchOperation.ADD, room_id=req.room_id, dates=targets)


def update_inventory(engine: Engine, owner: Owner, req: BatchRequest) -> BatchResult:
    if req.price is None and req.stock is None:
        raise NoFieldsProvided()
    _check_values(req.price, req.stock)

    with session(engine) as s:
        _owned_room(s, owner, req.hotel_id, req.room_id)
        targets = expand(req.start_date, req.end_date, req.weekdays)
        if not targets:
            return BatchResult(operation=BatchOperation.UPDATE, room_id=req.room_id)

        ledger = InventoryLedger(s)
        existing = ledger.get(req.room_id, targets)
        missing = [d for d in targets if d not in existing]
        if missing:
            logger.warning("Inventory update rejected for room=%s: %d dates missing", req.room_id, len(missing))
            raise MissingDates(missing)

        with _batch(s, req):
            for day in targets:
                ledger.update_existing(req.room_id, day, price=req.price, stock=req.stock)

    logger.info("Updated inventory for room=%s on %d dates", req.room_id, len(targets))
    return BatchResult(operation=BatchOperation.UPDATE, room_id=req.room_id, dates=targets)


def clear_inventory(engine: Engine, owner: Owner, req: BatchRequest) -> BatchResult:
    with session(engine) as s:
        _owned_room(s, owner, req.hotel_id, req.room_id)
        targets = expand(req.start_date, req.end_date, req.weekdays)

        ledger = InventoryLedger(s)
        existing = ledger.get(req.room_id, targets)
        cleared = [d for d in targets if d in existing]
        with _batch(s, req):
            for day in cleared:
                ledger.update_existing(req.room_id, day, stock=0)

    logger.info("Cleared stock for room=%s on %d of %d dates", req.room_id, len(cleared), len(targets))
    return BatchResult(operation=BatchOperation.CLEAR, room_id=req.room_id, dates=cleared)


_HANDLERS: dict[BatchOperation, Callable[[Engine, Owner, BatchRequest], BatchResult]] = {
    BatchOperation.ADD: add_inventory,
    BatchOperation.UPDATE: update_inventory,
    BatchOperation.CLEAR: clear_inventory,
}


def apply(operation: BatchOperation, engine: Engine, owner: Owner, req: BatchRequest) -> BatchResult:
    return _HANDLERS[BatchOperation(operation)](engine, owner, req)


def calendar(
    engine: Engine,
    owner: Owner,
    hotel_id: str,
    room_id: str,
    start_date: str | date,
    end_date: str | date,
) -> list[InventoryDay]:
    start = parse_date(start_date, "start_date")
    end = parse_date(end_date, "end_date")
    if start > end:
        raise InvalidRange(f"start_date {start.isoformat()} is after end_date {end.isoformat()}")
    with session(engine) as s:
        _owned_room(s, owner, hotel_id, room_id)
        return InventoryLedger(s).between(room_id, start, end)


def room_stock_summary(
    engine: Engine,
    owner: Owner,
    hotel_id: str,
    start_date: str | date | None = None,
    end_date: str | date | None = None,
) -> list[RoomStock]:
    """Rooms of a hotel with their summed stock over [start_date, end_date), or all dates."""
    start = parse_date(start_date, "start_date") if start_date else None
    end = parse_date(end_date, "end_date") if end_date else None
    if start and end and start > end:
        raise InvalidRange(f"start_date {start.isoformat()} is after end_date {end.isoformat()}")

    with session(engine) as s:
        _owned_hotel(s, owner, hotel_id)
        rooms = s.query(Room).filter(Room.hotel_id == hotel_id).order_by(Room.id.asc()).all()
        totals = InventoryLedger(s).aggregate_sum([r.id for r in rooms], start, end)

    return [
        RoomStock(
            room_id=r.id,
            name=r.name,
            room_type=r.room_type,
            listed_price=r.listed_price,
            total_stock=totals.get(r.id, 0),
        )
        for r in rooms
    ]


def delete_room(engine: Engine, owner: Owner, hotel_id: str, room_id: str) -> int:
    """Delete a room together with its inventory; returns the number of day-records removed."""
    with session(engine) as s:
        room = _owned_room(s, owner, hotel_id, room_id)
        removed = s.query(InventoryDay).filter(InventoryDay.room_id == room_id).count()
        s.delete(room)
        s.commit()

    logger.info("Deleted room=%s with %d inventory days", room_id, removed)
    return removed
