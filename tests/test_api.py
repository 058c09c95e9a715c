"""HTTP tests: status codes and payloads of the public routes."""
import pytest

ORDER = {
    "shipping_method_id": 1,
    "shipping_address": "12 Nguyen Hue, District 1",
    "payment_method": "cod",
}


def _order(client, lines, user=7, **extra):
    body = dict(ORDER, lines=[{"item_id": i, "quantity": q} for i, q in lines], **extra)
    return client.post("/api/orders", json=body, headers={"X-User-Id": str(user)})


def test_health(client):
    assert client.get("/").json() == {"message": "Bookstore API running"}


def test_create_order(client):
    r = _order(client, [(1, 2)], promotion_code="PERCENT10")

    assert r.status_code == 201
    body = r.json()
    assert body["status"] == "pending"
    assert body["total_amount"] == 200000
    assert body["discount_amount"] == 20000
    assert body["shipping_fee"] == 30000
    assert body["final_amount"] == 210000

    detail = client.get(f"/api/orders/{body['order_id']}").json()
    assert detail["user_id"] == 7
    assert detail["lines"] == [{"book_id": 1, "quantity": 2, "unit_price": 100000}]


def test_create_order_user_from_body(client):
    body = dict(ORDER, user_id=9, lines=[{"item_id": 2, "quantity": 1}])
    r = client.post("/api/orders", json=body)
    assert r.status_code == 201
    assert client.get(f"/api/orders/{r.json()['order_id']}").json()["user_id"] == 9


def test_create_order_insufficient_stock(client):
    r = _order(client, [(1, 1), (3, 5)])

    assert r.status_code == 409
    body = r.json()
    assert body["kind"] == "conflict"
    assert body["item_id"] == 3
    assert body["available"] == 2
    assert body["requested"] == 5


@pytest.mark.parametrize("lines", [[(1, 0)], [(1, -2)], []])
def test_create_order_bad_lines(client, lines):
    r = _order(client, lines)
    assert r.status_code == 400
    assert r.json()["kind"] == "validation_error"


def test_create_order_malformed_body(client):
    r = client.post("/api/orders", json={"lines": "nope"}, headers={"X-User-Id": "7"})
    assert r.status_code == 400


def test_cancel_is_idempotent(client):
    order_id = _order(client, [(2, 3)]).json()["order_id"]

    first = client.patch(f"/api/orders/{order_id}/cancel")
    second = client.patch(f"/api/orders/{order_id}/cancel")

    assert first.status_code == 200 and first.json()["success"] is True
    assert second.json() == {"success": True, "message": "Order is already cancelled"}
    assert client.get(f"/api/orders/{order_id}").json()["status"] == "cancelled"


def test_order_lifecycle(client):
    order_id = _order(client, [(2, 1)]).json()["order_id"]

    assert client.patch(f"/api/orders/{order_id}/confirm").json()["status"] == "confirmed"

    r = client.post(f"/api/orders/{order_id}/assign-shipper", json={"shipper_id": 30}, headers={"X-User-Id": "1"})
    assert r.status_code == 200
    assert r.json() == {"order_id": order_id, "status": "delivering"}

    shipped = client.get("/api/shippers/30/orders", params={"status": "delivering"}).json()
    assert shipped["total"] == 1
    assert shipped["orders"][0]["assignment"]["assigned_by"] == 1

    done = client.patch(f"/api/orders/{order_id}/complete").json()
    assert done["status"] == "delivered"
    assert done["assignment"]["completion_date"] is not None


def test_assign_shipper_requires_assigner(client):
    order_id = _order(client, [(2, 1)]).json()["order_id"]
    client.patch(f"/api/orders/{order_id}/confirm")

    r = client.post(f"/api/orders/{order_id}/assign-shipper", json={"shipper_id": 30})
    assert r.status_code == 400


def test_invalid_transition_is_conflict(client):
    order_id = _order(client, [(2, 1)]).json()["order_id"]
    r = client.patch(f"/api/orders/{order_id}/complete")
    assert r.status_code == 409


def test_unknown_order(client):
    assert client.get("/api/orders/404").status_code == 404
    assert client.patch("/api/orders/404/cancel").status_code == 404


def test_list_orders_status_alias(client):
    _order(client, [(2, 1)])
    _order(client, [(2, 1)], user=8)

    assert client.get("/api/orders", params={"status": "processing"}).json()["total"] == 2
    assert client.get("/api/orders", params={"user_id": 8}).json()["total"] == 1
    assert client.get("/api/orders", params={"status": "lost"}).status_code == 400


@pytest.mark.parametrize(
    "params, status",
    [
        ({"code": "PERCENT10", "amount": 100000}, 200),
        ({"code": "NOPE", "amount": 100000}, 404),
        ({"code": "EXPIRED", "amount": 100000}, 400),
        ({"code": "FUTURE", "amount": 100000}, 400),
        ({"code": "MINPRICE", "amount": 100000}, 400),
        ({"code": "MAXED", "amount": 100000}, 409),
        ({"amount": 100000}, 400),
    ],
)
def test_check_promotion_status_codes(client, params, status):
    assert client.get("/api/promotions/check", params=params).status_code == status


def test_check_promotion_payload(client):
    body = client.get("/api/promotions/check", params={"code": "PERCENT10", "amount": 100000}).json()
    assert body["discount_amount"] == 10000
    assert body["final_amount"] == 90000
    assert body["type"] == "percent"


def test_promotion_admin_routes(client):
    payload = {
        "name": "Tet sale",
        "type": "fixed",
        "discount": 20000,
        "start_date": "2030-01-20",
        "end_date": "2030-02-10",
        "quantity": 10,
        "item_ids": [1],
    }
    r = client.post("/api/promotions", json=payload)
    assert r.status_code == 201
    created = r.json()
    assert created["promotion_code"] == "KM01"
    assert created["item_ids"] == [1]

    clash = client.post("/api/promotions", json=dict(payload, start_date="2030-02-01", end_date="2030-03-01"))
    assert clash.status_code == 409
    assert clash.json()["conflicting_items"] == [1]

    r = client.put(f"/api/promotions/{created['id']}", json=dict(payload, name="Tet sale 2030"))
    assert r.json()["name"] == "Tet sale 2030"

    assert client.delete(f"/api/promotions/{created['id']}").json() == {"message": "Promotion deleted"}
    assert client.get(f"/api/promotions/{created['id']}").status_code == 404


def test_available_promotions(client):
    codes = [p["promotion_code"] for p in client.get("/api/promotions/available", params={"total_price": 100000}).json()]
    assert codes == ["PERCENT10", "FIXED50K", "LASTONE"]


def test_create_invoice_requires_cashier(client):
    body = {"lines": [{"item_id": 1, "quantity": 1}]}

    assert client.post("/api/invoices", json=body).status_code == 400

    r = client.post("/api/invoices", json=body, headers={"X-User-Id": "3"})
    assert r.status_code == 201
    invoice = r.json()
    assert invoice["created_by"] == 3
    assert invoice["final_amount"] == 100000
    assert [i["id"] for i in client.get("/api/invoices", params={"created_by": 3}).json()] == [invoice["id"]]
