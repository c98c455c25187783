import uuid
from datetime import timedelta

import pytest

import database


@pytest.fixture
def placed(db, user, make_product, address):
    product = make_product(stock=[{"size": "M", "quantity": 3}])
    created = database.now() - timedelta(days=1)
    doc = {
        "order_id": str(uuid.uuid4()),
        "user": user["_id"],
        "phone_number": "01711111111",
        "products": [{"product": product["_id"], "name": "P1", "size": "M", "quantity": 2,
                      "price": 20.0, "offer_price": 15.0}],
        "total_price": 30.0,
        "shipping_address": address,
        "order_status": "Pending",
        "payment_method": "Cash On Delivery",
        "payment_status": "Pending",
        "payment_info": {},
        "stock_reserved": True,
        "created_at": created,
        "updated_at": created,
    }
    db["order"].insert_one(doc)
    return doc, product


class TestOrderStatus:

    def test_admin_ships_order(self, client, db, admin_headers, placed):
        order, _ = placed
        res = client.put(f"/api/orders/{order['order_id']}", json={"order_status": "Shipped"}, headers=admin_headers)

        assert res.status_code == 200
        assert res.json()["order"]["order_status"] == "Shipped"
        stored = db["order"].find_one({"order_id": order["order_id"]})
        assert stored["order_status"] == "Shipped"
        assert stored["updated_at"].replace(tzinfo=None) > order["updated_at"].replace(tzinfo=None)

    def test_unknown_order(self, client, admin_headers):
        res = client.put("/api/orders/does-not-exist", json={"order_status": "Shipped"}, headers=admin_headers)
        assert res.status_code == 404
        assert res.json()["detail"] == "Order not found"

    def test_rejects_unknown_status(self, client, db, admin_headers, placed):
        order, _ = placed
        res = client.put(f"/api/orders/{order['order_id']}", json={"order_status": "Lost"}, headers=admin_headers)
        assert res.status_code == 400
        assert res.json()["detail"] == "Invalid order status"
        assert db["order"].find_one({"order_id": order["order_id"]})["order_status"] == "Pending"

    def test_non_admin_forbidden(self, client, user_headers, placed):
        order, _ = placed
        res = client.put(f"/api/orders/{order['order_id']}", json={"order_status": "Shipped"}, headers=user_headers)
        assert res.status_code == 403
        assert res.json()["detail"] == "Forbidden: Admins only"

    def test_cancel_returns_stock(self, client, db, admin_headers, placed):
        order, product = placed
        res = client.put(f"/api/orders/{order['order_id']}", json={"order_status": "Cancelled"},
                         headers=admin_headers)
        assert res.status_code == 200
        assert db["product"].find_one({"_id": product["_id"]})["stock"][0]["quantity"] == 5


class TestPaymentStatus:

    @pytest.mark.parametrize("status", ["Pending", "Paid", "Failed", "Cancelled", "Refunded"])
    def test_accepts_known_statuses(self, client, admin_headers, placed, status):
        order, _ = placed
        res = client.put(f"/api/orders/{order['order_id']}/payment", json={"payment_status": status},
                         headers=admin_headers)
        assert res.status_code == 200
        assert res.json()["order"]["payment_status"] == status

    def test_rejects_unknown_status(self, client, admin_headers, placed):
        order, _ = placed
        res = client.put(f"/api/orders/{order['order_id']}/payment", json={"payment_status": "Maybe"},
                         headers=admin_headers)
        assert res.status_code == 400
        assert res.json()["detail"] == "Invalid payment status"

    def test_unknown_order(self, client, admin_headers):
        res = client.put("/api/orders/nope/payment", json={"payment_status": "Paid"}, headers=admin_headers)
        assert res.status_code == 404


class TestListOrders:

    def test_newest_first_with_user(self, client, admin_headers, user, placed, make_product, address,
                                    user_headers):
        p = make_product(name="Cap")
        client.post("/api/orders", headers=user_headers, json={
            "phone_number": "01722222222",
            "products": [{"product": str(p["_id"]), "size": "M", "quantity": 1}],
            "shipping_address": address,
            "payment_method": "Cash On Delivery",
        })

        res = client.get("/api/orders", headers=admin_headers)

        assert res.status_code == 200
        orders = res.json()["orders"]
        assert [o["phone_number"] for o in orders] == ["01722222222", "01711111111"]
        assert orders[0]["user"]["email"] == user["email"]
        assert "password" not in orders[0]["user"]

    def test_requires_admin(self, client, user_headers):
        assert client.get("/api/orders", headers=user_headers).status_code == 403


class TestTrackOrder:

    def test_by_phone(self, client, placed):
        order, _ = placed
        res = client.get("/api/orders/track-order", params={"phone_number": "01711111111"})
        assert res.status_code == 200
        assert res.json()["order"]["order_id"] == order["order_id"]

    def test_by_phone_and_order_id(self, client, placed):
        order, _ = placed
        res = client.get("/api/orders/track-order",
                         params={"phone_number": "01711111111", "order_id": order["order_id"]})
        assert res.status_code == 200

        res = client.get("/api/orders/track-order",
                         params={"phone_number": "01711111111", "order_id": "other"})
        assert res.status_code == 404

    def test_phone_required(self, client):
        res = client.get("/api/orders/track-order")
        assert res.status_code == 400
        assert res.json()["detail"] == "Phone number required"

    def test_unknown_phone(self, client, placed):
        res = client.get("/api/orders/track-order", params={"phone_number": "000"})
        assert res.status_code == 404
