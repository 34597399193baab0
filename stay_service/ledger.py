from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Iterable
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy.orm import Session

from .errors import Conflict, NotFound
from .models import InventoryDay


class InventoryLedger:
    """
    Read/write contract over the per-room-per-day inventory table.

    The ledger only stages changes on the session it was given; committing
    (or rolling back) is the caller's job so a whole batch stays atomic.
    """

    def __init__(self, s: Session):
        self.s = s

    def get(self, room_id: str, dates: Iterable[date]) -> dict[date, InventoryDay]:
        wanted = sorted(set(dates))
        if not wanted:
            return {}
        rows = (
            self.s.query(InventoryDay)
            .filter(InventoryDay.room_id == room_id)
            .filter(InventoryDay.date.in_(wanted))
            .all()
        )
        return {r.date: r for r in rows}

    def between(self, room_id: str, start: date, end: date) -> list[InventoryDay]:
        return (
            self.s.query(InventoryDay)
            .filter(InventoryDay.room_id == room_id)
            .filter(InventoryDay.date >= start)
            .filter(InventoryDay.date < end)
            .order_by(InventoryDay.date.asc())
            .all()
        )

    def upsert_if_absent(self, room_id: str, day: date, price: Decimal, stock: int) -> InventoryDay:
        if self.get(room_id, [day]):
            raise Conflict(f"Inventory for room {room_id} on {day.isoformat()} already exists")
        row = InventoryDay(id=str(uuid4()), room_id=room_id, date=day, price=price, stock=stock)
        self.s.add(row)
        return row

    def update_existing(
        self,
        room_id: str,
        day: date,
        price: Decimal | None = None,
        stock: int | None = None,
    ) -> InventoryDay:
        row = self.get(room_id, [day]).get(day)
        if row is None:
            raise NotFound(f"No inventory for room {room_id} on {day.isoformat()}")
        if price is not None:
            row.price = price
        if stock is not None:
            row.stock = stock
        self.s.add(row)
        return row

    def aggregate_sum(
        self,
        room_ids: Iterable[str],
        start: date | None = None,
        end: date | None = None,
    ) -> dict[str, int]:
        ids = list(dict.fromkeys(room_ids))
        if not ids:
            return {}
        q = (
            self.s.query(InventoryDay.room_id, func.coalesce(func.sum(InventoryDay.stock), 0))
            .filter(InventoryDay.room_id.in_(ids))
        )
        if start is not None:
            q = q.filter(InventoryDay.date >= start)
        if end is not None:
            q = q.filter(InventoryDay.date < end)
        totals = {room_id: int(total) for room_id, total in q.group_by(InventoryDay.room_id).all()}
        return {room_id: totals.get(room_id, 0) for room_id in ids}
