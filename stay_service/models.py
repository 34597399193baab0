from __future__ import annotations

import datetime as dt
from decimal import Decimal

from sqlalchemy import JSON, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, validates


class Base(DeclarativeBase):
    pass


class Hotel(Base):
    __tablename__ = "hotels"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    owner_id: Mapped[str] = mapped_column(String, index=True)  # merchant user id

    name: Mapped[str] = mapped_column(String)
    address: Mapped[str | None] = mapped_column(String)
    city: Mapped[str | None] = mapped_column(String, index=True)
    star_rating: Mapped[int | None] = mapped_column(Integer, index=True)
    tags: Mapped[list] = mapped_column(JSON, default=list)
    # One tag per line, kept in step with `tags` for substring search.
    tags_text: Mapped[str] = mapped_column(Text, default="")
    description: Mapped[str | None] = mapped_column(Text)

    score: Mapped[Decimal] = mapped_column(Numeric(2, 1), default=Decimal("0.0"))
    # pending|published|rejected; moderated outside this service
    status: Mapped[str] = mapped_column(String, index=True, default="pending")

    created_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))

    rooms: Mapped[list["Room"]] = relationship(back_populates="hotel", cascade="all, delete-orphan")
    media: Mapped[list["HotelMedia"]] = relationship(
        order_by="HotelMedia.sort_order", cascade="all, delete-orphan"
    )

    @validates("tags")
    def _sync_tags_text(self, _key, value):
        self.tags_text = "\n".join(str(t) for t in (value or []))
        return value


class HotelMedia(Base):
    __tablename__ = "hotel_media"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    hotel_id: Mapped[str] = mapped_column(String, ForeignKey("hotels.id"), index=True)

    url: Mapped[str] = mapped_column(String)
    media_type: Mapped[str] = mapped_column(String, default="image")  # image|video
    name: Mapped[str | None] = mapped_column(String)  # e.g. "Gym", "Restaurant"
    sort_order: Mapped[int] = mapped_column(Integer, default=0)


class Room(Base):
    __tablename__ = "rooms"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    hotel_id: Mapped[str] = mapped_column(String, ForeignKey("hotels.id"), index=True)

    name: Mapped[str] = mapped_column(String)
    room_type: Mapped[int] = mapped_column(Integer, default=1)  # 1 hotel room, 2 hourly, 3 homestay
    listed_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    has_breakfast: Mapped[int] = mapped_column(Integer, default=0)  # 0/1 (sqlite-friendly)
    max_occupancy: Mapped[int] = mapped_column(Integer, default=2)

    hotel: Mapped[Hotel] = relationship(back_populates="rooms")
    inventory: Mapped[list["InventoryDay"]] = relationship(
        back_populates="room", cascade="all, delete-orphan", order_by="InventoryDay.date"
    )


class InventoryDay(Base):
    """Sellable stock and nightly price for one room on one calendar date."""

    __tablename__ = "inventory_days"
    __table_args__ = (UniqueConstraint("room_id", "date", name="uq_inventory_days_room_date"),)

    id: Mapped[str] = mapped_column(String, primary_key=True)
    room_id: Mapped[str] = mapped_column(String, ForeignKey("rooms.id"), index=True)
    date: Mapped[dt.date] = mapped_column(Date, index=True)

    price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    stock: Mapped[int] = mapped_column(Integer)

    room: Mapped[Room] = relationship(back_populates="inventory")


class Review(Base):
    __tablename__ = "reviews"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    hotel_id: Mapped[str] = mapped_column(String, ForeignKey("hotels.id"), index=True)
    order_id: Mapped[str | None] = mapped_column(String, index=True)
    user_id: Mapped[str | None] = mapped_column(String, index=True)

    score: Mapped[Decimal] = mapped_column(Numeric(2, 1))
    content: Mapped[str] = mapped_column(Text, default="")
    tags: Mapped[list] = mapped_column(JSON, default=list)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), index=True)


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, index=True)

    hotel_id: Mapped[str] = mapped_column(String, index=True)
    room_id: Mapped[str] = mapped_column(String, index=True)

    check_in: Mapped[dt.date] = mapped_column(Date)
    check_out: Mapped[dt.date] = mapped_column(Date)
    nights: Mapped[int] = mapped_column(Integer)
    room_count: Mapped[int] = mapped_column(Integer, default=1)

    total_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    real_pay: Mapped[Decimal] = mapped_column(Numeric(10, 2))

    # pending|paid|checked_in|completed|cancelled
    status: Mapped[str] = mapped_column(String, index=True, default="pending")
    cancellable: Mapped[int] = mapped_column(Integer, default=1)  # fixed at creation

    special_request: Mapped[str] = mapped_column(Text, default="")
    guest_ids: Mapped[list] = mapped_column(JSON, default=list)  # id-card numbers of the guests

    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), index=True)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True))
    paid_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))

    days: Mapped[list["OrderDayDetail"]] = relationship(
        back_populates="order", cascade="all, delete-orphan", order_by="OrderDayDetail.date"
    )


class OrderDayDetail(Base):
    __tablename__ = "order_day_details"
    __table_args__ = (UniqueConstraint("order_id", "date", name="uq_order_day_details_order_date"),)

    id: Mapped[str] = mapped_column(String, primary_key=True)
    order_id: Mapped[str] = mapped_column(String, ForeignKey("orders.id"), index=True)
    date: Mapped[dt.date] = mapped_column(Date)

    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))  # ledger price snapshot, one room
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2))  # unit_price x room_count
    breakfast_count: Mapped[int] = mapped_column(Integer, default=0)

    order: Mapped[Order] = relationship(back_populates="days")
