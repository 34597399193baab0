from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from stay_service import events
from stay_service.db import get_engine, session
from stay_service.dates import expand
from stay_service.main import app
from stay_service.models import Base, Hotel, HotelMedia, InventoryDay, Review, Room


def auth_headers(sub: str, role: str) -> dict[str, str]:
    token = jwt.encode({"sub": sub, "role": role}, "dev-secret-change-me", algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(autouse=True)
def _rabbitmq_down(monkeypatch):
    monkeypatch.setattr(events, "EVENTS_STRICT", False)

    async def _boom(*args, **kwargs):
        raise RuntimeError("rabbitmq down")

    monkeypatch.setattr(events.aio_pika, "connect_robust", _boom)


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def client(engine):
    app.dependency_overrides[get_engine] = lambda: engine
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def add_hotel(
    engine,
    owner_id: str = "merchant-1",
    name: str = "Harbour View",
    city: str = "Shanghai",
    star_rating: int = 4,
    score: str = "4.5",
    status: str = "published",
    tags: list[str] | None = None,
    address: str = "1 Bund Road",
) -> str:
    hotel_id = str(uuid4())
    with session(engine) as s:
        s.add(
            Hotel(
                id=hotel_id,
                owner_id=owner_id,
                name=name,
                address=address,
                city=city,
                star_rating=star_rating,
                tags=tags or [],
                description=f"{name} in {city}",
                score=Decimal(score),
                status=status,
                created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            )
        )
        s.commit()
    return hotel_id


def add_room(
    engine,
    hotel_id: str,
    name: str = "Deluxe King",
    listed_price: str = "400.00",
    room_type: int = 1,
    has_breakfast: bool = False,
) -> str:
    room_id = str(uuid4())
    with session(engine) as s:
        s.add(
            Room(
                id=room_id,
                hotel_id=hotel_id,
                name=name,
                room_type=room_type,
                listed_price=Decimal(listed_price),
                has_breakfast=1 if has_breakfast else 0,
                max_occupancy=2,
            )
        )
        s.commit()
    return room_id


def stock_days(engine, room_id: str, start: str, end: str, price: str = "300.00", stock: int = 5) -> list[date]:
    """Insert day-records for [start, end) directly, bypassing the merchant checks."""
    days = expand(start, end)
    with session(engine) as s:
        for d in days:
            s.add(InventoryDay(id=str(uuid4()), room_id=room_id, date=d, price=Decimal(price), stock=stock))
        s.commit()
    return days


def set_day(engine, room_id: str, day: str, price: str | None = None, stock: int | None = None) -> None:
    with session(engine) as s:
        row = (
            s.query(InventoryDay)
            .filter(InventoryDay.room_id == room_id)
            .filter(InventoryDay.date == date.fromisoformat(day))
            .one()
        )
        if price is not None:
            row.price = Decimal(price)
        if stock is not None:
            row.stock = stock
        s.commit()


def add_media(engine, hotel_id: str, url: str, sort_order: int = 0, media_type: str = "image", name: str | None = None):
    with session(engine) as s:
        s.add(
            HotelMedia(
                id=str(uuid4()),
                hotel_id=hotel_id,
                url=url,
                media_type=media_type,
                name=name,
                sort_order=sort_order,
            )
        )
        s.commit()


def add_review(engine, hotel_id: str, content: str, score: str = "5.0", tags: list[str] | None = None, day: int = 1):
    with session(engine) as s:
        s.add(
            Review(
                id=str(uuid4()),
                hotel_id=hotel_id,
                order_id=None,
                user_id="guest-1",
                score=Decimal(score),
                content=content,
                tags=tags or [],
                created_at=datetime(2024, 3, day, tzinfo=timezone.utc),
            )
        )
        s.commit()
