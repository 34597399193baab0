from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, selectinload

from .dates import StayWindow
from .db import session
from .errors import Forbidden, IncompleteInventory, InvalidRange, InvalidState, NotFound
from .inventory import Owner
from .ledger import InventoryLedger
from .models import Hotel, Order, OrderDayDetail, Room

logger = logging.getLogger(__name__)

PENDING = "pending"
PAID = "paid"
CHECKED_IN = "checked_in"
COMPLETED = "completed"
CANCELLED = "cancelled"

# action -> (statuses it may start from, status it ends in)
TRANSITIONS: dict[str, tuple[frozenset[str], str]] = {
    "pay": (frozenset({PENDING}), PAID),
    "check_in": (frozenset({PAID}), CHECKED_IN),
    "complete": (frozenset({CHECKED_IN}), COMPLETED),
    "cancel": (frozenset({PENDING, PAID}), CANCELLED),
}


@dataclass(frozen=True)
class OrderDraft:
    """Checkout fields a guest may still change while the order is pending. None means "keep"."""

    room_count: int | None = None
    special_request: str | None = None
    guest_ids: list[str] | None = None
    breakfast_counts: dict[date, int] | None = None
    real_pay: Decimal | None = None


@dataclass(frozen=True)
class ReconcileResult:
    order: Order
    applied: bool


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _load(s: Session, order_id: str) -> Order:
    order = s.query(Order).options(selectinload(Order.days)).filter(Order.id == order_id).first()
    if order is None:
        raise NotFound("Order not found")
    return order


def _reload(s: Session, order_id: str) -> Order:
    # The conditional UPDATE bypassed the identity map; drop cached state before re-reading.
    s.expire_all()
    return _load(s, order_id)


def _may(order: Order, action: str) -> bool:
    allowed, _target = TRANSITIONS[action]
    if order.status not in allowed:
        return False
    if action == "cancel" and order.status == PAID and not order.cancellable:
        return False
    return True


def create_order(
    engine: Engine,
    user_id: str,
    room_id: str,
    window: StayWindow,
    room_count: int = 1,
    cancellable: bool = True,
    special_request: str = "",
) -> Order:
    """
    Open a pending order priced from the ledger as it is right now.

    Reads one day-record per night and copies its price into the order; stock
    is not reserved or decremented.
    """
    if room_count < 1:
        raise InvalidRange("room_count must be >= 1")

    with session(engine) as s:
        room = s.get(Room, room_id)
        if room is None:
            raise NotFound("Room not found")

        nights = window.dates()
        records = InventoryLedger(s).get(room_id, nights)
        gaps = [d for d in nights if d not in records or records[d].stock <= 0]
        if gaps:
            raise IncompleteInventory(gaps)

        now = _now()
        order = Order(
            id=str(uuid4()),
            user_id=user_id,
            hotel_id=room.hotel_id,
            room_id=room_id,
            check_in=window.check_in,
            check_out=window.check_out,
            nights=window.nights,
            room_count=room_count,
            status=PENDING,
            cancellable=1 if cancellable else 0,
            special_request=special_request or "",
            guest_ids=[],
            created_at=now,
            updated_at=now,
            paid_at=None,
        )
        for d in nights:
            unit = records[d].price
            order.days.append(
                OrderDayDetail(
                    id=str(uuid4()),
                    date=d,
                    unit_price=unit,
                    price=unit * room_count,
                    breakfast_count=0,
                )
            )
        order.total_price = sum((day.price for day in order.days), Decimal("0"))
        order.real_pay = order.total_price

        s.add(order)
        s.commit()

    logger.info("Created pending order=%s room=%s nights=%d total=%s", order.id, room_id, order.nights, order.total_price)
    return order


def _draft_values(order: Order, draft: OrderDraft) -> dict:
    """
    Validate a draft against the order and stage day-detail changes on it.

    Returns the column values to write on the order row.
    """
    room_count = order.room_count if draft.room_count is None else draft.room_count
    if room_count < 1:
        raise InvalidRange("room_count must be >= 1")

    breakfast = draft.breakfast_counts or {}
    nights = {day.date for day in order.days}
    unknown = sorted(d for d in breakfast if d not in nights)
    if unknown:
        raise InvalidRange(f"breakfast_counts contains dates outside the stay: {[d.isoformat() for d in unknown]}")
    if any(n < 0 for n in breakfast.values()):
        raise InvalidRange("breakfast counts must be >= 0")

    for day in order.days:
        day.price = day.unit_price * room_count
        if day.date in breakfast:
            day.breakfast_count = breakfast[day.date]

    total = sum((day.price for day in order.days), Decimal("0"))
    real_pay = total
    if draft.real_pay is not None:
        if draft.real_pay < 0:
            raise InvalidRange("real_pay must be >= 0")
        real_pay = min(draft.real_pay, total)

    return {
        "room_count": room_count,
        "special_request": order.special_request if draft.special_request is None else draft.special_request,
        "guest_ids": list(order.guest_ids or []) if draft.guest_ids is None else list(draft.guest_ids),
        "total_price": total,
        "real_pay": real_pay,
    }


def _conditional_write(s: Session, order: Order, expected: str, values: dict) -> bool:
    res = s.execute(
        update(Order)
        .where(Order.id == order.id)
        .where(Order.status == expected)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


def reconcile_order(engine: Engine, order_id: str, draft: OrderDraft) -> ReconcileResult:
    """
    Overwrite the guest-editable fields of a pending order.

    Safe to call from any trigger (explicit save, timer, abandoned checkout):
    once the order has left `pending` this is a no-op and reports applied=False.
    """
    with session(engine) as s:
        order = _load(s, order_id)
        if order.status != PENDING:
            return ReconcileResult(order=order, applied=False)

        values = _draft_values(order, draft)
        values["updated_at"] = _now()
        if not _conditional_write(s, order, PENDING, values):
            # Lost the race against payment.
            s.rollback()
            return ReconcileResult(order=_load(s, order_id), applied=False)
        s.commit()
        order = _reload(s, order_id)

    logger.info("Reconciled pending order=%s total=%s real_pay=%s", order.id, order.total_price, order.real_pay)
    return ReconcileResult(order=order, applied=True)


def pay_order(engine: Engine, order_id: str, draft: OrderDraft | None = None) -> Order:
    with session(engine) as s:
        order = _load(s, order_id)
        if not _may(order, "pay"):
            raise InvalidState(order.status, "pay")

        now = _now()
        values = _draft_values(order, draft or OrderDraft())
        values.update(status=PAID, paid_at=now, updated_at=now)
        if not _conditional_write(s, order, PENDING, values):
            s.rollback()
            raise InvalidState(_load(s, order_id).status, "pay")
        s.commit()
        order = _reload(s, order_id)

    logger.info("Order %s paid real_pay=%s", order.id, order.real_pay)
    return order


def transition(engine: Engine, order_id: str, action: str) -> Order:
    """Single-field status change for cancel / check_in / complete."""
    if action not in TRANSITIONS or action == "pay":
        raise ValueError(f"Unsupported order action: {action}")
    _allowed, target = TRANSITIONS[action]

    with session(engine) as s:
        order = _load(s, order_id)
        if not _may(order, action):
            raise InvalidState(order.status, action.replace("_", "-"))

        current = order.status
        if not _conditional_write(s, order, current, {"status": target, "updated_at": _now()}):
            s.rollback()
            raise InvalidState(_load(s, order_id).status, action.replace("_", "-"))
        s.commit()
        order = _reload(s, order_id)

    logger.info("Order %s %s -> %s", order.id, current, target)
    return order


def cancel_order(engine: Engine, order_id: str) -> Order:
    return transition(engine, order_id, "cancel")


def check_in_order(engine: Engine, order_id: str) -> Order:
    return transition(engine, order_id, "check_in")


def complete_order(engine: Engine, order_id: str) -> Order:
    return transition(engine, order_id, "complete")


def get_order(engine: Engine, order_id: str) -> Order:
    with session(engine) as s:
        return _load(s, order_id)


def list_orders(engine: Engine, user_id: str, status: str | None = None) -> list[Order]:
    with session(engine) as s:
        q = s.query(Order).options(selectinload(Order.days)).filter(Order.user_id == user_id)
        if status:
            q = q.filter(Order.status == status)
        return q.order_by(Order.created_at.desc(), Order.id.asc()).all()


def list_hotel_orders(
    engine: Engine,
    owner: Owner,
    hotel_id: str | None = None,
    status: str | None = None,
) -> list[Order]:
    """Orders placed on the owner's hotels (or one of them), newest first."""
    owned = select(Hotel.id).where(Hotel.owner_id == owner.owner_id)
    with session(engine) as s:
        if hotel_id is not None:
            if s.execute(owned.where(Hotel.id == hotel_id)).first() is None:
                raise Forbidden("Hotel not found or not owned by this merchant")
            owned = owned.where(Hotel.id == hotel_id)

        q = s.query(Order).options(selectinload(Order.days)).filter(Order.hotel_id.in_(owned))
        if status:
            q = q.filter(Order.status == status)
        return q.order_by(Order.created_at.desc(), Order.id.asc()).all()
