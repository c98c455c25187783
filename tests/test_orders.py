import pytest

import config
import orders
import payments


def cart(product, size="M", quantity=2):
    return [{"product": str(product["_id"]), "size": size, "quantity": quantity}]


def order_body(products, address, payment_method="Cash On Delivery", phone="01700000000"):
    return {
        "phone_number": phone,
        "products": products,
        "shipping_address": address,
        "payment_method": payment_method,
    }


def stock_of(db, product, size="M"):
    stored = db["product"].find_one({"_id": product["_id"]})
    return next(s["quantity"] for s in stored["stock"] if s["size"] == size)


class TestPlaceOrderCashOnDelivery:

    def test_total_uses_offer_price(self, client, db, user_headers, make_product, address):
        p1 = make_product()
        res = client.post("/api/orders", json=order_body(cart(p1), address), headers=user_headers)

        assert res.status_code == 201
        data = res.json()
        order = data["order"]
        assert order["total_price"] == 30
        assert order["payment_status"] == "Pending"
        assert order["order_status"] == "Pending"
        assert order["products"][0] == {
            "product": str(p1["_id"]),
            "name": "P1",
            "size": "M",
            "quantity": 2,
            "price": 20.0,
            "offer_price": 15.0,
        }
        assert data["redirect_url"] == f"http://shop.test/order-success?order_id={order['order_id']}"
        assert "stock_reserved" not in order

    def test_total_falls_back_to_list_price(self, client, user_headers, make_product, address):
        p = make_product(offer_price=None, price=12.5)
        res = client.post("/api/orders", json=order_body(cart(p, quantity=3), address), headers=user_headers)
        assert res.status_code == 201
        assert res.json()["order"]["total_price"] == 37.5
        assert res.json()["order"]["products"][0]["offer_price"] is None

    def test_total_is_sum_of_lines(self, client, user_headers, make_product, address):
        a = make_product(name="Tee", price=10.0, offer_price=None, stock=[{"size": "S", "quantity": 4}])
        b = make_product(name="Hoodie", price=50.0, offer_price=45.5, stock=[{"size": "XL", "quantity": 2}])
        c = make_product(name="Cap", price=8.0, offer_price=6.0, stock=[{"size": "One", "quantity": 9}])
        lines = cart(a, "S", 3) + cart(b, "XL", 2) + cart(c, "one", 1)

        res = client.post("/api/orders", json=order_body(lines, address), headers=user_headers)

        assert res.status_code == 201
        assert res.json()["order"]["total_price"] == 10.0 * 3 + 45.5 * 2 + 6.0 * 1

    def test_size_match_ignores_case(self, client, db, user_headers, make_product, address):
        p1 = make_product()
        res = client.post("/api/orders", json=order_body(cart(p1, size="m"), address), headers=user_headers)
        assert res.status_code == 201
        assert stock_of(db, p1) == 3

    def test_reserves_stock(self, client, db, user_headers, make_product, address):
        p1 = make_product()
        client.post("/api/orders", json=order_body(cart(p1), address), headers=user_headers)
        assert stock_of(db, p1) == 3
        assert db["order"].find_one()["stock_reserved"] is True

    def test_no_reservation_when_disabled(self, client, db, user_headers, make_product, address, monkeypatch):
        monkeypatch.setattr(config, "RESERVE_STOCK", False)
        p1 = make_product()
        res = client.post("/api/orders", json=order_body(cart(p1), address), headers=user_headers)
        assert res.status_code == 201
        assert stock_of(db, p1) == 5
        assert db["order"].find_one()["stock_reserved"] is False


class TestPlaceOrderRejections:

    def test_not_enough_stock(self, client, db, user_headers, make_product, address):
        p1 = make_product(stock=[{"size": "M", "quantity": 1}])
        res = client.post("/api/orders", json=order_body(cart(p1), address), headers=user_headers)

        assert res.status_code == 400
        assert res.json()["detail"] == "Not enough stock for 'P1' in size 'M'"
        assert db["order"].count_documents({}) == 0
        assert stock_of(db, p1) == 1

    def test_repeated_lines_share_stock(self, client, db, user_headers, make_product, address, monkeypatch):
        monkeypatch.setattr(config, "RESERVE_STOCK", False)
        p1 = make_product()
        lines = cart(p1, "M", 3) + cart(p1, "m", 3)

        res = client.post("/api/orders", json=order_body(lines, address), headers=user_headers)

        assert res.status_code == 400
        assert res.json()["detail"] == "Not enough stock for 'P1' in size 'm'"
        assert db["order"].count_documents({}) == 0

    def test_repeated_lines_within_stock(self, client, db, user_headers, make_product, address):
        p1 = make_product()
        lines = cart(p1, "M", 2) + cart(p1, "M", 3)

        res = client.post("/api/orders", json=order_body(lines, address), headers=user_headers)

        assert res.status_code == 201
        assert res.json()["order"]["total_price"] == 75
        assert stock_of(db, p1) == 0

    def test_reservation_failure_names_requested_size(self, client, db, user_headers, make_product, address,
                                                      monkeypatch):
        monkeypatch.setattr(orders, "adjust_stock", lambda product_id, size, delta: False)
        p1 = make_product()

        res = client.post("/api/orders", json=order_body(cart(p1, size="m"), address), headers=user_headers)

        assert res.status_code == 400
        assert res.json()["detail"] == "Not enough stock for 'P1' in size 'm'"
        assert db["order"].count_documents({}) == 0

    def test_failing_line_releases_earlier_lines(self, client, db, user_headers, make_product, address):
        a = make_product(name="Tee")
        b = make_product(name="Hoodie", stock=[{"size": "L", "quantity": 1}])
        lines = cart(a, "M", 2) + cart(b, "L", 5)

        res = client.post("/api/orders", json=order_body(lines, address), headers=user_headers)

        assert res.status_code == 400
        assert stock_of(db, a) == 5
        assert db["order"].count_documents({}) == 0

    def test_invalid_payment_method(self, client, db, user_headers, make_product, address):
        p1 = make_product()
        res = client.post("/api/orders", json=order_body(cart(p1), address, payment_method="Bitcoin"),
                          headers=user_headers)
        assert res.status_code == 400
        assert res.json()["detail"] == "Invalid payment method"
        assert db["order"].count_documents({}) == 0
        assert stock_of(db, p1) == 5

    def test_missing_phone(self, client, user_headers, make_product, address):
        p1 = make_product()
        res = client.post("/api/orders", json=order_body(cart(p1), address, phone=""), headers=user_headers)
        assert res.status_code == 400
        assert res.json()["detail"] == "Phone number is required"

    def test_empty_products(self, client, user_headers, address):
        res = client.post("/api/orders", json=order_body([], address), headers=user_headers)
        assert res.status_code == 400
        assert res.json()["detail"] == "Products array is required"

    @pytest.mark.parametrize("missing", ["street", "city", "state", "postal_code", "country"])
    def test_incomplete_address(self, client, user_headers, make_product, address, missing):
        p1 = make_product()
        address.pop(missing)
        res = client.post("/api/orders", json=order_body(cart(p1), address), headers=user_headers)
        assert res.status_code == 400
        assert res.json()["detail"] == "Complete shipping address is required"

    def test_unknown_size(self, client, user_headers, make_product, address):
        p1 = make_product()
        res = client.post("/api/orders", json=order_body(cart(p1, size="XXL"), address), headers=user_headers)
        assert res.status_code == 400
        assert res.json()["detail"] == "Size 'XXL' not available for product 'P1'"

    def test_unknown_product(self, client, user_headers, address):
        lines = [{"product": "64b7f0c2a1b2c3d4e5f60718", "size": "M", "quantity": 1}]
        res = client.post("/api/orders", json=order_body(lines, address), headers=user_headers)
        assert res.status_code == 404
        assert res.json()["detail"] == "Product with ID 64b7f0c2a1b2c3d4e5f60718 not found"

    def test_incomplete_line(self, client, user_headers, make_product, address):
        p1 = make_product()
        lines = [{"product": str(p1["_id"]), "size": "M", "quantity": 0}]
        res = client.post("/api/orders", json=order_body(lines, address), headers=user_headers)
        assert res.status_code == 400
        assert res.json()["detail"] == "Each product must include product ID, size, and quantity"

    def test_requires_token(self, client, make_product, address):
        p1 = make_product()
        res = client.post("/api/orders", json=order_body(cart(p1), address))
        assert res.status_code == 401

    def test_one_order_per_phone(self, client, db, user_headers, make_product, address, monkeypatch):
        monkeypatch.setattr(config, "ONE_ORDER_PER_PHONE", True)
        p1 = make_product()
        first = client.post("/api/orders", json=order_body(cart(p1, quantity=1), address), headers=user_headers)
        second = client.post("/api/orders", json=order_body(cart(p1, quantity=1), address), headers=user_headers)

        assert first.status_code == 201
        assert second.status_code == 400
        assert second.json()["detail"] == "An order has already been placed using this phone number"
        assert db["order"].count_documents({}) == 1

    def test_repeat_phone_allowed_by_default(self, client, db, user_headers, make_product, address):
        p1 = make_product()
        for _ in range(2):
            res = client.post("/api/orders", json=order_body(cart(p1, quantity=1), address), headers=user_headers)
            assert res.status_code == 201
        assert db["order"].count_documents({}) == 2


class TestPlaceOrderOnline:

    def test_returns_gateway_url(self, client, db, user, user_headers, make_product, address, monkeypatch):
        sessions = []

        def fake_init(order, customer):
            sessions.append((order, customer))
            return "https://sandbox.sslcommerz.com/EasyCheckOut/abc"

        monkeypatch.setattr(payments, "init_session", fake_init)
        p1 = make_product()
        res = client.post("/api/orders", json=order_body(cart(p1), address, payment_method="Online"),
                          headers=user_headers)

        assert res.status_code == 200
        data = res.json()
        assert data["gateway_url"] == "https://sandbox.sslcommerz.com/EasyCheckOut/abc"
        stored = db["order"].find_one({"order_id": data["order_id"]})
        assert stored["payment_status"] == "Pending"
        assert stored["payment_method"] == "Online"
        order, customer = sessions[0]
        assert order["total_price"] == 30
        assert customer == {"name": user["name"], "email": user["email"]}

    def test_gateway_failure_rolls_back(self, client, db, user_headers, make_product, address, monkeypatch):
        def failing_init(order, customer):
            raise payments.PaymentGatewayError("down")

        monkeypatch.setattr(payments, "init_session", failing_init)
        p1 = make_product()
        res = client.post("/api/orders", json=order_body(cart(p1), address, payment_method="Online"),
                          headers=user_headers)

        assert res.status_code == 400
        assert res.json()["detail"] == "Payment gateway error"
        assert db["order"].count_documents({}) == 0
        assert stock_of(db, p1) == 5
