from decimal import Decimal

from pydantic import TypeAdapter

from conftest import add_hotel, add_review, add_room, auth_headers, set_day, stock_days
from stay_service.main import Money

MERCHANT = auth_headers("merchant-1", "merchant")
GUEST = auth_headers("guest-1", "guest")


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_merchant_inventory_flow(client, engine):
    hotel_id = add_hotel(engine)
    room_id = add_room(engine, hotel_id)

    body = {
        "hotel_id": hotel_id,
        "room_id": room_id,
        "start_date": "2025-06-01",
        "end_date": "2025-06-04",
        "price": 300,
        "stock": 5,
    }
    r = client.post("/merchant/inventory/add", json=body, headers=MERCHANT)
    assert r.status_code == 200, r.text
    assert r.json()["affected"] == 3
    assert r.json()["dates"] == ["2025-06-01", "2025-06-02", "2025-06-03"]

    r = client.post(
        "/merchant/inventory/add",
        json={**body, "start_date": "2025-06-02", "end_date": "2025-06-05"},
        headers=MERCHANT,
    )
    assert r.status_code == 409
    detail = r.json()["detail"]
    assert detail["error"] == "DuplicateDates"
    assert detail["dates"] == ["2025-06-02", "2025-06-03"]

    r = client.post(
        "/merchant/inventory/update",
        json={"hotel_id": hotel_id, "room_id": room_id, "start_date": "2025-06-01", "end_date": "2025-06-02"},
        headers=MERCHANT,
    )
    assert r.status_code == 400
    assert r.json()["detail"]["error"] == "NoFieldsProvided"

    r = client.post(
        "/merchant/inventory/clear",
        json={"hotel_id": hotel_id, "room_id": room_id, "start_date": "2025-06-02", "end_date": "2025-06-03"},
        headers=MERCHANT,
    )
    assert r.status_code == 200, r.text

    r = client.get(
        f"/merchant/hotels/{hotel_id}/rooms/{room_id}/inventory",
        params={"start_date": "2025-06-01", "end_date": "2025-06-04"},
        headers=MERCHANT,
    )
    assert r.status_code == 200, r.text
    assert [(d["date"], d["price"], d["stock"]) for d in r.json()] == [
        ("2025-06-01", 300.0, 5),
        ("2025-06-02", 300.0, 0),
        ("2025-06-03", 300.0, 5),
    ]

    r = client.get(f"/merchant/hotels/{hotel_id}/rooms", headers=MERCHANT)
    assert r.json()[0]["total_stock"] == 10

    r = client.delete(f"/merchant/hotels/{hotel_id}/rooms/{room_id}", headers=MERCHANT)
    assert r.status_code == 200
    assert r.json()["deleted_inventory_days"] == 3


def test_merchant_endpoints_enforce_ownership_and_roles(client, engine):
    hotel_id = add_hotel(engine, owner_id="merchant-1")
    room_id = add_room(engine, hotel_id)
    body = {
        "hotel_id": hotel_id,
        "room_id": room_id,
        "start_date": "2025-06-01",
        "end_date": "2025-06-02",
        "price": 100,
        "stock": 1,
    }

    r = client.post("/merchant/inventory/add", json=body, headers=auth_headers("merchant-2", "merchant"))
    assert r.status_code == 403
    assert r.json()["detail"]["error"] == "Forbidden"

    # A merchant cannot act on behalf of someone else.
    r = client.post(
        "/merchant/inventory/add",
        json={**body, "owner_id": "merchant-1"},
        headers=auth_headers("merchant-2", "merchant"),
    )
    assert r.status_code == 403

    r = client.post("/merchant/inventory/add", json=body, headers=GUEST)
    assert r.status_code == 403
    r = client.post("/merchant/inventory/add", json=body)
    assert r.status_code == 401

    r = client.post(
        "/merchant/inventory/add",
        json={**body, "owner_id": "merchant-1"},
        headers=auth_headers("admin-1", "admin"),
    )
    assert r.status_code == 200, r.text

    r = client.post("/merchant/inventory/restock", json=body, headers=MERCHANT)
    assert r.status_code == 422


def test_search_detail_and_nights_are_public(client, engine):
    hotel_id = add_hotel(engine, name="Bund Grand", city="Shanghai")
    room_id = add_room(engine, hotel_id, listed_price="480.00")
    stock_days(engine, room_id, "2025-06-01", "2025-06-04", price="300.00", stock=5)
    set_day(engine, room_id, "2025-06-02", stock=0)
    add_review(engine, hotel_id, "Clean and comfortable")

    r = client.post("/hotels/search", json={"city": "Shanghai", "check_in": "2025-06-01", "check_out": "2025-06-03"})
    assert r.status_code == 200, r.text
    assert r.json()["total"] == 0

    r = client.post("/hotels/search", json={"city": "Shanghai", "check_in": "2025-06-03", "check_out": "2025-06-04"})
    data = r.json()
    assert data["total"] == 1
    [hit] = data["hotels"]
    assert hit["hotel_id"] == hotel_id
    assert hit["min_price"] == 300.0
    assert hit["original_price"] == 480.0
    assert hit["left_stock"] == 5
    assert hit["reviews_count"] == 1

    r = client.post("/hotels/search", json={"check_in": "2025-06-03", "check_out": "2025-06-01"})
    assert r.status_code == 400
    assert r.json()["detail"]["error"] == "InvalidRange"

    r = client.post("/hotels/search", json={"min_price": 500, "max_price": 100})
    assert r.status_code == 422

    r = client.post("/hotels/search", json={"page_size": 500})
    assert r.status_code == 422

    r = client.post("/hotels/detail", json={"hotel_id": hotel_id})
    assert r.status_code == 200, r.text
    detail = r.json()
    assert detail["rooms"][0]["avg_price"] == 300.0
    assert detail["review_keywords"] == ["clean", "comfortable"]
    assert detail["ranking"] == {"city_rank": 1, "total_rank": 1}

    r = client.post("/hotels/detail", json={"hotel_id": "nope"})
    assert r.status_code == 404

    r = client.get(f"/rooms/{room_id}/nights", params={"check_in": "2025-06-01", "check_out": "2025-06-03"})
    assert r.status_code == 200
    assert r.json()["min_stock"] == 0
    assert r.json()["nights"] == 2


def test_offline_hotel_detail_is_gone(client, engine):
    hotel_id = add_hotel(engine, status="pending")
    r = client.post("/hotels/detail", json={"hotel_id": hotel_id})
    assert r.status_code == 410
    assert r.json()["detail"]["error"] == "HotelUnavailable"


def test_order_checkout_flow(client, engine):
    hotel_id = add_hotel(engine, owner_id="merchant-1")
    room_id = add_room(engine, hotel_id)
    stock_days(engine, room_id, "2025-06-01", "2025-06-04", price="300.00", stock=5)

    r = client.post(
        "/orders",
        json={"room_id": room_id, "check_in": "2025-06-01", "check_out": "2025-06-03"},
        headers=GUEST,
    )
    assert r.status_code == 200, r.text
    order = r.json()
    assert order["status"] == "pending"
    assert order["total_price"] == 600.0
    order_id = order["id"]

    r = client.post(
        f"/orders/{order_id}/reconcile",
        json={"room_count": 2, "breakfast_counts": {"2025-06-02": 1}, "guest_ids": ["A1", "B2"]},
        headers=GUEST,
    )
    assert r.status_code == 200, r.text
    assert r.json()["applied"] is True
    assert r.json()["order"]["total_price"] == 1200.0
    assert r.json()["order"]["days"][1]["breakfast_count"] == 1

    # Other guests cannot see or touch the order.
    other = auth_headers("guest-2", "guest")
    assert client.get(f"/orders/{order_id}", headers=other).status_code == 404
    assert client.post(f"/orders/{order_id}/pay", headers=other).status_code == 404

    r = client.post(f"/orders/{order_id}/pay", headers=GUEST)
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "paid"

    r = client.post(f"/orders/{order_id}/reconcile", json={"room_count": 3}, headers=GUEST)
    assert r.status_code == 200
    assert r.json()["applied"] is False
    assert r.json()["order"]["room_count"] == 2

    r = client.post(f"/orders/{order_id}/pay", headers=GUEST)
    assert r.status_code == 409
    assert r.json()["detail"] == {
        "error": "InvalidState",
        "message": "Cannot pay an order in status paid",
        "status": "paid",
    }

    assert client.post(f"/orders/{order_id}/check-in", headers=GUEST).status_code == 403
    assert client.post(f"/orders/{order_id}/check-in", headers=auth_headers("merchant-2", "merchant")).status_code == 403

    r = client.post(f"/orders/{order_id}/check-in", headers=MERCHANT)
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "checked_in"

    r = client.post(f"/orders/{order_id}/complete", headers=MERCHANT)
    assert r.json()["status"] == "completed"

    r = client.get("/orders", params={"status": "completed"}, headers=GUEST)
    assert [o["id"] for o in r.json()] == [order_id]


def test_order_on_sold_out_night(client, engine):
    hotel_id = add_hotel(engine)
    room_id = add_room(engine, hotel_id)
    stock_days(engine, room_id, "2025-06-01", "2025-06-03", stock=0)

    r = client.post(
        "/orders",
        json={"room_id": room_id, "check_in": "2025-06-01", "check_out": "2025-06-02"},
        headers=GUEST,
    )
    assert r.status_code == 409
    assert r.json()["detail"]["error"] == "IncompleteInventory"
    assert r.json()["detail"]["dates"] == ["2025-06-01"]


def test_cancel_pending_order(client, engine):
    hotel_id = add_hotel(engine)
    room_id = add_room(engine, hotel_id)
    stock_days(engine, room_id, "2025-06-01", "2025-06-03")
    order_id = client.post(
        "/orders",
        json={"room_id": room_id, "check_in": "2025-06-01", "check_out": "2025-06-02", "cancellable": False},
        headers=GUEST,
    ).json()["id"]

    r = client.post(f"/orders/{order_id}/cancel", headers=GUEST)
    assert r.status_code == 200
    assert r.json()["status"] == "cancelled"

    r = client.post(f"/orders/{order_id}/cancel", headers=GUEST)
    assert r.status_code == 409


def test_merchant_lists_orders_of_own_hotels(client, engine):
    hotel_id = add_hotel(engine, owner_id="merchant-1")
    room_id = add_room(engine, hotel_id)
    stock_days(engine, room_id, "2025-06-01", "2025-06-03")
    order_id = client.post(
        "/orders",
        json={"room_id": room_id, "check_in": "2025-06-01", "check_out": "2025-06-02"},
        headers=GUEST,
    ).json()["id"]

    r = client.get("/merchant/orders", params={"hotel_id": hotel_id, "status": "pending"}, headers=MERCHANT)
    assert r.status_code == 200, r.text
    assert [o["id"] for o in r.json()] == [order_id]

    assert client.get("/merchant/orders", params={"status": "paid"}, headers=MERCHANT).json() == []
    assert client.get("/merchant/orders", headers=auth_headers("merchant-2", "merchant")).json() == []
    r = client.get("/merchant/orders", params={"hotel_id": hotel_id}, headers=auth_headers("merchant-2", "merchant"))
    assert r.status_code == 403
    assert client.get("/merchant/orders", headers=GUEST).status_code == 403


def test_money_serializes_as_two_decimal_number():
    adapter = TypeAdapter(Money)
    assert adapter.dump_python(Decimal("12.345"), mode="json") == 12.35
    assert adapter.dump_python(Decimal("300"), mode="json") == 300.0
