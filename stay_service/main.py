from __future__ import annotations

import os
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated, Literal

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, PlainSerializer, model_validator

from . import availability, events, inventory, orders
from .dates import StayWindow, parse_date
from .db import get_engine, session
from .errors import Forbidden, NotFound, StayError
from .inventory import BatchOperation, BatchRequest, Owner
from .models import Hotel, Order
from .security import acting_owner_id, require_roles

SEARCH_MAX_PAGE_SIZE = int(os.getenv("SEARCH_MAX_PAGE_SIZE", "50"))

app = FastAPI(
    title="Stay Availability & Inventory Service",
    version="0.1.0",
    description="Hotel search over nightly room inventory, merchant inventory calendars, and the pending-order checkout lifecycle.",
)


@app.exception_handler(StayError)
async def _stay_error_handler(_request: Request, exc: StayError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.as_detail()})


# Money goes over the wire as a JSON number rounded half-up to cents (300.0, 12.35).
Money = Annotated[
    Decimal,
    PlainSerializer(
        lambda v: float(v.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)), return_type=float, when_used="json"
    ),
]


@app.get("/health")
def health():
    return {"status": "ok"}


#
# Search & hotel detail (public)
#


class SearchRequest(BaseModel):
    keyword: str | None = None
    city: str | None = None
    check_in: str | None = Field(default=None, description="YYYY-MM-DD")
    check_out: str | None = Field(default=None, description="YYYY-MM-DD")
    min_price: Decimal | None = Field(default=None, ge=0)
    max_price: Decimal | None = Field(default=None, ge=0)
    star_rating: list[int] = Field(default_factory=list)
    room_type: int | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=10, ge=1, le=SEARCH_MAX_PAGE_SIZE)

    @model_validator(mode="after")
    def _validate_price_range(self) -> "SearchRequest":
        if self.min_price is not None and self.max_price is not None and self.min_price > self.max_price:
            raise ValueError("min_price must not exceed max_price")
        return self


class HotelHitOut(BaseModel):
    hotel_id: str
    name: str
    address: str | None
    city: str | None
    star_rating: int | None
    tags: list[str]
    score: float
    min_price: Money
    room_id: str
    original_price: Money
    left_stock: int | None
    image_url: str | None
    reviews_count: int


class SearchOut(BaseModel):
    hotels: list[HotelHitOut]
    page: int
    page_size: int
    total: int
    total_pages: int


@app.post("/hotels/search", response_model=SearchOut)
def search_hotels(payload: SearchRequest, engine=Depends(get_engine)):
    criteria = availability.SearchCriteria(
        keyword=payload.keyword,
        city=payload.city,
        star_ratings=tuple(payload.star_rating),
        room_type=payload.room_type,
        min_price=payload.min_price,
        max_price=payload.max_price,
        window=StayWindow.optional(payload.check_in, payload.check_out),
        page=payload.page,
        page_size=payload.page_size,
    )
    result = availability.search(engine, criteria)
    return SearchOut(
        hotels=[
            HotelHitOut(
                hotel_id=h.hotel_id,
                name=h.name,
                address=h.address,
                city=h.city,
                star_rating=h.star_rating,
                tags=h.tags,
                score=float(h.score or 0),
                min_price=h.min_price,
                room_id=h.room_id,
                original_price=h.original_price,
                left_stock=h.left_stock,
                image_url=h.image_url,
                reviews_count=h.reviews_count,
            )
            for h in result.hits
        ],
        page=result.page,
        page_size=result.page_size,
        total=result.total,
        total_pages=result.total_pages,
    )


class HotelDetailRequest(BaseModel):
    hotel_id: str = Field(min_length=1)
    check_in: str | None = None
    check_out: str | None = None


class MediaOut(BaseModel):
    url: str
    media_type: str
    name: str | None = None


class RoomOfferOut(BaseModel):
    room_id: str
    name: str
    room_type: int
    listed_price: Money
    has_breakfast: bool
    max_occupancy: int
    avg_price: Money


class ReviewOut(BaseModel):
    content: str
    score: float
    tags: list[str]
    created_at: datetime


class RankingOut(BaseModel):
    city_rank: int
    total_rank: int


class HotelDetailOut(BaseModel):
    hotel_id: str
    name: str
    address: str | None
    city: str | None
    star_rating: int | None
    tags: list[str]
    description: str | None
    score: float
    ranking: RankingOut
    media: list[MediaOut]
    rooms: list[RoomOfferOut]
    reviews_count: int
    reviews: list[ReviewOut]
    review_keywords: list[str]


@app.post("/hotels/detail", response_model=HotelDetailOut)
def hotel_detail(payload: HotelDetailRequest, engine=Depends(get_engine)):
    d = availability.hotel_detail(engine, payload.hotel_id, StayWindow.optional(payload.check_in, payload.check_out))
    return HotelDetailOut(
        hotel_id=d.hotel_id,
        name=d.name,
        address=d.address,
        city=d.city,
        star_rating=d.star_rating,
        tags=d.tags,
        description=d.description,
        score=float(d.score or 0),
        ranking=RankingOut(city_rank=d.city_rank, total_rank=d.total_rank),
        media=[MediaOut(url=m.url, media_type=m.media_type, name=m.name) for m in d.media],
        rooms=[
            RoomOfferOut(
                room_id=r.room_id,
                name=r.name,
                room_type=r.room_type,
                listed_price=r.listed_price,
                has_breakfast=r.has_breakfast,
                max_occupancy=r.max_occupancy,
                avg_price=r.avg_price,
            )
            for r in d.rooms
        ],
        reviews_count=d.reviews_count,
        reviews=[ReviewOut(content=r.content, score=float(r.score), tags=r.tags, created_at=r.created_at) for r in d.reviews],
        review_keywords=d.review_keywords,
    )


class InventoryDayOut(BaseModel):
    date: date
    price: Money
    stock: int


class RoomNightsOut(BaseModel):
    room_id: str
    check_in: date
    check_out: date
    nights: int
    days: list[InventoryDayOut]
    min_stock: int


@app.get("/rooms/{room_id}/nights", response_model=RoomNightsOut)
def room_nights(room_id: str, check_in: str, check_out: str, engine=Depends(get_engine)):
    window = StayWindow.from_strings(check_in, check_out)
    rn = availability.room_nights(engine, room_id, window)
    return RoomNightsOut(
        room_id=rn.room_id,
        check_in=window.check_in,
        check_out=window.check_out,
        nights=window.nights,
        days=[InventoryDayOut(date=d.date, price=d.price, stock=d.stock) for d in rn.days],
        min_stock=rn.min_stock,
    )


#
# Merchant inventory
#


class InventoryBatchIn(BaseModel):
    owner_id: str | None = Field(default=None, description="Defaults to the authenticated merchant")
    hotel_id: str = Field(min_length=1)
    room_id: str = Field(min_length=1)
    start_date: str = Field(description="YYYY-MM-DD, inclusive")
    end_date: str = Field(description="YYYY-MM-DD, exclusive")
    weekdays: list[int] | None = Field(default=None, description="0=Sunday .. 6=Saturday; empty means every day")
    price: Decimal | None = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    stock: int | None = Field(default=None, ge=0)


class BatchOut(BaseModel):
    operation: BatchOperation
    room_id: str
    affected: int
    dates: list[date]


@app.post("/merchant/inventory/{operation}", response_model=BatchOut)
async def mutate_inventory(
    operation: BatchOperation,
    payload: InventoryBatchIn,
    engine=Depends(get_engine),
    principal=Depends(require_roles("merchant", "admin")),
):
    owner = Owner(owner_id=acting_owner_id(principal, payload.owner_id))
    req = BatchRequest(
        hotel_id=payload.hotel_id,
        room_id=payload.room_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        weekdays=payload.weekdays,
        price=payload.price,
        stock=payload.stock,
    )
    result = inventory.apply(operation, engine, owner, req)

    if result.affected:
        await events.publish(
            events.INVENTORY_CHANGED,
            {
                "operation": result.operation.value,
                "hotel_id": payload.hotel_id,
                "room_id": result.room_id,
                "dates": [d.isoformat() for d in result.dates],
                "price": payload.price,
                "stock": 0 if result.operation == BatchOperation.CLEAR else payload.stock,
            },
        )

    return BatchOut(operation=result.operation, room_id=result.room_id, affected=result.affected, dates=result.dates)


@app.get("/merchant/hotels/{hotel_id}/rooms/{room_id}/inventory", response_model=list[InventoryDayOut])
def get_room_calendar(
    hotel_id: str,
    room_id: str,
    start_date: str,
    end_date: str,
    owner_id: str | None = None,
    engine=Depends(get_engine),
    principal=Depends(require_roles("merchant", "admin")),
):
    owner = Owner(owner_id=acting_owner_id(principal, owner_id))
    rows = inventory.calendar(engine, owner, hotel_id, room_id, start_date, end_date)
    return [InventoryDayOut(date=r.date, price=r.price, stock=r.stock) for r in rows]


class RoomStockOut(BaseModel):
    room_id: str
    name: str
    room_type: int
    listed_price: Money
    total_stock: int


@app.get("/merchant/hotels/{hotel_id}/rooms", response_model=list[RoomStockOut])
def list_room_stock(
    hotel_id: str,
    start_date: str | None = None,
    end_date: str | None = None,
    owner_id: str | None = None,
    engine=Depends(get_engine),
    principal=Depends(require_roles("merchant", "admin")),
):
    owner = Owner(owner_id=acting_owner_id(principal, owner_id))
    rows = inventory.room_stock_summary(engine, owner, hotel_id, start_date, end_date)
    return [
        RoomStockOut(
            room_id=r.room_id,
            name=r.name,
            room_type=r.room_type,
            listed_price=r.listed_price,
            total_stock=r.total_stock,
        )
        for r in rows
    ]


@app.delete("/merchant/hotels/{hotel_id}/rooms/{room_id}")
def delete_room(
    hotel_id: str,
    room_id: str,
    owner_id: str | None = None,
    engine=Depends(get_engine),
    principal=Depends(require_roles("merchant", "admin")),
):
    owner = Owner(owner_id=acting_owner_id(principal, owner_id))
    removed = inventory.delete_room(engine, owner, hotel_id, room_id)
    return {"room_id": room_id, "deleted_inventory_days": removed}


#
# Orders
#


class OrderDayOut(BaseModel):
    date: date
    unit_price: Money
    price: Money
    breakfast_count: int


class OrderOut(BaseModel):
    id: str
    user_id: str
    hotel_id: str
    room_id: str
    check_in: date
    check_out: date
    nights: int
    room_count: int
    total_price: Money
    real_pay: Money
    status: str
    cancellable: bool
    special_request: str
    guest_ids: list[str]
    created_at: datetime
    updated_at: datetime
    paid_at: datetime | None
    days: list[OrderDayOut]


def _order_out(o: Order) -> OrderOut:
    return OrderOut(
        id=o.id,
        user_id=o.user_id,
        hotel_id=o.hotel_id,
        room_id=o.room_id,
        check_in=o.check_in,
        check_out=o.check_out,
        nights=o.nights,
        room_count=o.room_count,
        total_price=o.total_price,
        real_pay=o.real_pay,
        status=o.status,
        cancellable=bool(o.cancellable),
        special_request=o.special_request or "",
        guest_ids=list(o.guest_ids or []),
        created_at=o.created_at,
        updated_at=o.updated_at,
        paid_at=o.paid_at,
        days=[
            OrderDayOut(date=d.date, unit_price=d.unit_price, price=d.price, breakfast_count=d.breakfast_count)
            for d in o.days
        ],
    )


def _event_payload(o: Order) -> dict:
    return {
        "order_id": o.id,
        "user_id": o.user_id,
        "hotel_id": o.hotel_id,
        "room_id": o.room_id,
        "check_in": o.check_in.isoformat(),
        "check_out": o.check_out.isoformat(),
        "room_count": o.room_count,
        "total_price": o.total_price,
        "real_pay": o.real_pay,
        "status": o.status,
    }


def _visible_order(engine, order_id: str, principal: dict) -> Order:
    """Guests only see their own orders; merchants only orders of their hotels."""
    order = orders.get_order(engine, order_id)
    role = principal.get("role")
    sub = str(principal.get("sub"))
    if role == "guest" and order.user_id != sub:
        raise NotFound("Order not found")
    if role == "merchant":
        with session(engine) as s:
            hotel = s.get(Hotel, order.hotel_id)
        if hotel is None or hotel.owner_id != sub:
            raise Forbidden("Order does not belong to this merchant's hotels")
    return order


class OrderCreate(BaseModel):
    room_id: str = Field(min_length=1)
    check_in: str = Field(description="YYYY-MM-DD")
    check_out: str = Field(description="YYYY-MM-DD")
    room_count: int = Field(default=1, ge=1)
    cancellable: bool = True
    special_request: str = ""


class OrderDraftIn(BaseModel):
    room_count: int | None = Field(default=None, ge=1)
    special_request: str | None = None
    guest_ids: list[str] | None = Field(default=None, description="Guest id-card numbers")
    breakfast_counts: dict[str, int] | None = Field(default=None, description="YYYY-MM-DD -> breakfasts that night")
    real_pay: Decimal | None = Field(default=None, ge=0, max_digits=10, decimal_places=2)

    def to_draft(self) -> orders.OrderDraft:
        breakfast = None
        if self.breakfast_counts is not None:
            breakfast = {parse_date(k, "breakfast_counts"): int(v) for k, v in self.breakfast_counts.items()}
        return orders.OrderDraft(
            room_count=self.room_count,
            special_request=self.special_request,
            guest_ids=self.guest_ids,
            breakfast_counts=breakfast,
            real_pay=self.real_pay,
        )


class ReconcileOut(BaseModel):
    applied: bool
    order: OrderOut


@app.post("/orders", response_model=OrderOut)
async def create_order(
    payload: OrderCreate,
    engine=Depends(get_engine),
    principal=Depends(require_roles("guest", "admin")),
):
    order = orders.create_order(
        engine,
        user_id=str(principal["sub"]),
        room_id=payload.room_id,
        window=StayWindow.from_strings(payload.check_in, payload.check_out),
        room_count=payload.room_count,
        cancellable=payload.cancellable,
        special_request=payload.special_request,
    )
    await events.publish("order.created", _event_payload(order))
    return _order_out(order)


@app.get("/orders", response_model=list[OrderOut])
def list_my_orders(
    status: Literal["pending", "paid", "checked_in", "completed", "cancelled"] | None = None,
    engine=Depends(get_engine),
    principal=Depends(require_roles("guest", "admin")),
):
    return [_order_out(o) for o in orders.list_orders(engine, str(principal["sub"]), status)]


@app.get("/merchant/orders", response_model=list[OrderOut])
def list_merchant_orders(
    hotel_id: str | None = None,
    status: Literal["pending", "paid", "checked_in", "completed", "cancelled"] | None = None,
    owner_id: str | None = None,
    engine=Depends(get_engine),
    principal=Depends(require_roles("merchant", "admin")),
):
    owner = Owner(owner_id=acting_owner_id(principal, owner_id))
    return [_order_out(o) for o in orders.list_hotel_orders(engine, owner, hotel_id, status)]


@app.get("/orders/{order_id}", response_model=OrderOut)
def get_order(
    order_id: str,
    engine=Depends(get_engine),
    principal=Depends(require_roles("guest", "merchant", "admin")),
):
    return _order_out(_visible_order(engine, order_id, principal))


@app.post("/orders/{order_id}/reconcile", response_model=ReconcileOut)
def reconcile_order(
    order_id: str,
    payload: OrderDraftIn,
    engine=Depends(get_engine),
    principal=Depends(require_roles("guest", "admin")),
):
    _visible_order(engine, order_id, principal)
    result = orders.reconcile_order(engine, order_id, payload.to_draft())
    return ReconcileOut(applied=result.applied, order=_order_out(result.order))


@app.post("/orders/{order_id}/pay", response_model=OrderOut)
async def pay_order(
    order_id: str,
    payload: OrderDraftIn | None = None,
    engine=Depends(get_engine),
    principal=Depends(require_roles("guest", "admin")),
):
    _visible_order(engine, order_id, principal)
    order = orders.pay_order(engine, order_id, payload.to_draft() if payload else None)
    await events.publish("order.paid", _event_payload(order))
    return _order_out(order)


@app.post("/orders/{order_id}/cancel", response_model=OrderOut)
async def cancel_order(
    order_id: str,
    engine=Depends(get_engine),
    principal=Depends(require_roles("guest", "merchant", "admin")),
):
    _visible_order(engine, order_id, principal)
    order = orders.cancel_order(engine, order_id)
    await events.publish("order.cancelled", _event_payload(order))
    return _order_out(order)


@app.post("/orders/{order_id}/check-in", response_model=OrderOut)
async def check_in_order(
    order_id: str,
    engine=Depends(get_engine),
    principal=Depends(require_roles("merchant", "admin")),
):
    _visible_order(engine, order_id, principal)
    order = orders.check_in_order(engine, order_id)
    await events.publish("order.checked_in", _event_payload(order))
    return _order_out(order)


@app.post("/orders/{order_id}/complete", response_model=OrderOut)
async def complete_order(
    order_id: str,
    engine=Depends(get_engine),
    principal=Depends(require_roles("merchant", "admin")),
):
    _visible_order(engine, order_id, principal)
    order = orders.complete_order(engine, order_id)
    await events.publish("order.completed", _event_payload(order))
    return _order_out(order)
