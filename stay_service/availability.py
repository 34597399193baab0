from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import and_, case, func, or_
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from .dates import StayWindow
from .db import session
from .errors import HotelUnavailable, NotFound
from .ledger import InventoryLedger
from .models import Hotel, HotelMedia, InventoryDay, Review, Room

PUBLISHED = "published"

# Shown as the "what guests mention" facet on the hotel page.
REVIEW_KEYWORDS: tuple[str, ...] = (
    "clean",
    "hygienic",
    "great service",
    "good facilities",
    "beautiful surroundings",
    "quiet",
    "spacious",
    "good value",
    "convenient location",
    "comfortable",
)
TOP_KEYWORDS = 4
TOP_REVIEWS = 2


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class SearchCriteria:
    keyword: str | None = None
    city: str | None = None
    star_ratings: tuple[int, ...] = ()
    room_type: int | None = None
    min_price: Decimal | None = None
    max_price: Decimal | None = None
    window: StayWindow | None = None
    page: int = 1
    page_size: int = 10


@dataclass(frozen=True)
class HotelHit:
    hotel_id: str
    name: str
    address: str | None
    city: str | None
    star_rating: int | None
    tags: list[str]
    score: Decimal
    min_price: Decimal
    room_id: str
    original_price: Decimal
    left_stock: int | None
    image_url: str | None
    reviews_count: int


@dataclass(frozen=True)
class SearchPage:
    hits: list[HotelHit]
    page: int
    page_size: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.page_size else 0


@dataclass(frozen=True)
class MediaItem:
    url: str
    media_type: str
    name: str | None


@dataclass(frozen=True)
class RoomOffer:
    room_id: str
    name: str
    room_type: int
    listed_price: Decimal
    has_breakfast: bool
    max_occupancy: int
    avg_price: Decimal


@dataclass(frozen=True)
class ReviewSnippet:
    content: str
    score: Decimal
    tags: list[str]
    created_at: datetime


@dataclass(frozen=True)
class HotelDetail:
    hotel_id: str
    name: str
    address: str | None
    city: str | None
    star_rating: int | None
    tags: list[str]
    description: str | None
    score: Decimal
    city_rank: int
    total_rank: int
    media: list[MediaItem]
    rooms: list[RoomOffer]
    reviews_count: int
    reviews: list[ReviewSnippet]
    review_keywords: list[str]


@dataclass(frozen=True)
class RoomNights:
    room_id: str
    window: StayWindow
    days: list[InventoryDay] = field(default_factory=list)

    @property
    def min_stock(self) -> int:
        # A missing night makes the whole stay unbookable.
        if len(self.days) < self.window.nights:
            return 0
        return min(d.stock for d in self.days)


def _stay_having(window: StayWindow, min_price: Decimal | None, max_price: Decimal | None):
    """HAVING clauses that keep a room only if every night of the window qualifies."""
    qualifying = [InventoryDay.stock > 0]
    if min_price is not None:
        qualifying.append(InventoryDay.price >= min_price)
    if max_price is not None:
        qualifying.append(InventoryDay.price <= max_price)
    return [
        func.count(InventoryDay.id) == window.nights,
        func.sum(case((and_(*qualifying), 1), else_=0)) == window.nights,
    ]


def _contains(text: str) -> str:
    """LIKE pattern for a literal substring; `\\` is the escape character."""
    escaped = text.strip().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _qualifying_rooms(s: Session, c: SearchCriteria) -> list[tuple[str, str, Decimal]]:
    q = (
        s.query(Hotel.id, Room.id, func.min(InventoryDay.price))
        .select_from(Hotel)
        .join(Room, Room.hotel_id == Hotel.id)
        .join(InventoryDay, InventoryDay.room_id == Room.id)
        .filter(Hotel.status == PUBLISHED)
    )

    if c.room_type is not None:
        q = q.filter(Room.room_type == c.room_type)
    if c.city:
        q = q.filter(Hotel.city.like(_contains(c.city), escape="\\"))
    if c.keyword:
        kw = _contains(c.keyword)
        q = q.filter(
            or_(
                Hotel.name.like(kw, escape="\\"),
                Hotel.address.like(kw, escape="\\"),
                Hotel.tags_text.like(kw, escape="\\"),
            )
        )
    if c.star_ratings:
        q = q.filter(Hotel.star_rating.in_(list(c.star_ratings)))

    if c.window is not None:
        q = q.filter(InventoryDay.date >= c.window.check_in).filter(InventoryDay.date < c.window.end)
        q = q.group_by(Hotel.id, Room.id).having(*_stay_having(c.window, c.min_price, c.max_price))
    else:
        # Without a window a room qualifies on any night priced inside the range.
        if c.min_price is not None:
            q = q.filter(InventoryDay.price >= c.min_price)
        if c.max_price is not None:
            q = q.filter(InventoryDay.price <= c.max_price)
        q = q.group_by(Hotel.id, Room.id)

    return [(hotel_id, room_id, _money(price)) for hotel_id, room_id, price in q.all()]


def _first_images(s: Session, hotel_ids: list[str]) -> dict[str, str]:
    rows = (
        s.query(HotelMedia.hotel_id, HotelMedia.url)
        .filter(HotelMedia.hotel_id.in_(hotel_ids))
        .filter(HotelMedia.media_type == "image")
        .order_by(HotelMedia.hotel_id, HotelMedia.sort_order.asc())
        .all()
    )
    out: dict[str, str] = {}
    for hotel_id, url in rows:
        out.setdefault(hotel_id, url)
    return out


def _review_counts(s: Session, hotel_ids: list[str]) -> dict[str, int]:
    rows = (
        s.query(Review.hotel_id, func.count(Review.id))
        .filter(Review.hotel_id.in_(hotel_ids))
        .group_by(Review.hotel_id)
        .all()
    )
    return {hotel_id: int(n) for hotel_id, n in rows}


def search(engine: Engine, c: SearchCriteria, today: date | None = None) -> SearchPage:
    """
    Hotels with at least one room bookable for the whole stay, best score first.

    With a stay window a room qualifies only when every night in
    [check_in, check_in + nights) has a day-record with stock > 0 (and a price
    inside the requested range). Without a window the room's cheapest nightly
    price is filtered instead.
    """
    page = max(1, c.page)
    page_size = max(1, c.page_size)
    first_night = c.window.check_in if c.window is not None else (today or date.today())

    with session(engine) as s:
        cheapest: dict[str, tuple[Decimal, str]] = {}
        for hotel_id, room_id, price in _qualifying_rooms(s, c):
            best = cheapest.get(hotel_id)
            if best is None or (price, room_id) < best:
                cheapest[hotel_id] = (price, room_id)

        if not cheapest:
            return SearchPage(hits=[], page=page, page_size=page_size, total=0)

        hotels = s.query(Hotel).filter(Hotel.id.in_(list(cheapest))).all()
        hotels.sort(key=lambda h: (-(h.score or 0), h.id))
        total = len(hotels)
        page_hotels = hotels[(page - 1) * page_size : page * page_size]
        if not page_hotels:
            return SearchPage(hits=[], page=page, page_size=page_size, total=total)

        ids = [h.id for h in page_hotels]
        rooms = {r.id: r for r in s.query(Room).filter(Room.id.in_([cheapest[i][1] for i in ids])).all()}
        images = _first_images(s, ids)
        review_counts = _review_counts(s, ids)
        ledger = InventoryLedger(s)

        hits: list[HotelHit] = []
        for h in page_hotels:
            min_price, room_id = cheapest[h.id]
            first = ledger.get(room_id, [first_night]).get(first_night)
            hits.append(
                HotelHit(
                    hotel_id=h.id,
                    name=h.name,
                    address=h.address,
                    city=h.city,
                    star_rating=h.star_rating,
                    tags=list(h.tags or []),
                    score=h.score,
                    min_price=min_price,
                    room_id=room_id,
                    original_price=rooms[room_id].listed_price,
                    left_stock=first.stock if first is not None else None,
                    image_url=images.get(h.id),
                    reviews_count=review_counts.get(h.id, 0),
                )
            )

    return SearchPage(hits=hits, page=page, page_size=page_size, total=total)


def _rank(s: Session, hotel: Hotel, same_city: bool) -> int:
    q = s.query(func.count(Hotel.id)).filter(Hotel.status == PUBLISHED).filter(Hotel.score > hotel.score)
    if same_city:
        q = q.filter(Hotel.city == hotel.city)
    return int(q.scalar() or 0) + 1


def _room_offers(s: Session, hotel_id: str, window: StayWindow | None) -> list[RoomOffer]:
    q = (
        s.query(Room, func.avg(InventoryDay.price))
        .join(InventoryDay, InventoryDay.room_id == Room.id)
        .filter(Room.hotel_id == hotel_id)
    )
    if window is not None:
        q = q.filter(InventoryDay.date >= window.check_in).filter(InventoryDay.date < window.end)
        q = q.group_by(Room.id).having(*_stay_having(window, None, None))
    else:
        q = q.group_by(Room.id)

    offers = [
        RoomOffer(
            room_id=room.id,
            name=room.name,
            room_type=room.room_type,
            listed_price=room.listed_price,
            has_breakfast=bool(room.has_breakfast),
            max_occupancy=room.max_occupancy,
            avg_price=_money(avg),
        )
        for room, avg in q.all()
    ]
    offers.sort(key=lambda o: (o.avg_price, o.room_id))
    return offers


def review_keywords(reviews: list[Review], limit: int = TOP_KEYWORDS) -> list[str]:
    counts: Counter[str] = Counter()
    for r in reviews:
        text = " ".join([r.content or "", *[str(t) for t in (r.tags or [])]]).lower()
        for kw in REVIEW_KEYWORDS:
            if kw in text:
                counts[kw] += 1
    order = {kw: i for i, kw in enumerate(REVIEW_KEYWORDS)}
    ranked = sorted(counts, key=lambda kw: (-counts[kw], order[kw]))
    return ranked[:limit]


def hotel_detail(engine: Engine, hotel_id: str, window: StayWindow | None = None) -> HotelDetail:
    with session(engine) as s:
        hotel = s.get(Hotel, hotel_id)
        if hotel is None:
            raise NotFound("Hotel not found")
        if hotel.status != PUBLISHED:
            raise HotelUnavailable("Hotel is offline")

        media = [MediaItem(url=m.url, media_type=m.media_type, name=m.name) for m in hotel.media]
        reviews = (
            s.query(Review)
            .filter(Review.hotel_id == hotel_id)
            .order_by(Review.created_at.desc())
            .all()
        )

        return HotelDetail(
            hotel_id=hotel.id,
            name=hotel.name,
            address=hotel.address,
            city=hotel.city,
            star_rating=hotel.star_rating,
            tags=list(hotel.tags or []),
            description=hotel.description,
            score=hotel.score,
            city_rank=_rank(s, hotel, same_city=True),
            total_rank=_rank(s, hotel, same_city=False),
            media=media,
            rooms=_room_offers(s, hotel_id, window),
            reviews_count=len(reviews),
            reviews=[
                ReviewSnippet(content=r.content, score=r.score, tags=list(r.tags or []), created_at=r.created_at)
                for r in reviews[:TOP_REVIEWS]
            ],
            review_keywords=review_keywords(reviews),
        )


def room_nights(engine: Engine, room_id: str, window: StayWindow) -> RoomNights:
    with session(engine) as s:
        if s.get(Room, room_id) is None:
            raise NotFound("Room not found")
        days = InventoryLedger(s).between(room_id, window.check_in, window.end)
    return RoomNights(room_id=room_id, window=window, days=days)
