"""
Order creation, visibility and cancellation tests.
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from storefront import create_app
from storefront.errors import InsufficientStockError
from storefront.extensions import db
from storefront.models import Order, OrderItem, Product, StockMovement
from storefront.services import order_service, reconciliation_service, stock_service
from storefront.services.auth_service import create_user

from conftest import ADDRESS, TEST_PASSWORD


# =============================================================================
# CREATION
# =============================================================================


class TestCreateOrder:

    def test_example_order(self, client, customer_headers, order_payload, make_product, reload):
        p1 = make_product(price_cents=500, stock=5)
        payload = order_payload((p1, 2), shipping_fee_cents=200)
        assert payload["subtotal_cents"] == 1000
        assert payload["total_cents"] == 1200

        resp = client.post("/api/orders", json=payload, headers=customer_headers)

        assert resp.status_code == 201
        order = resp.get_json()["data"]
        assert order["status"] == "pending"
        assert order["payment"]["status"] == "pending"
        assert order["payment_method"] == "cod"
        assert order["stock_held"] is True
        assert order["total_cents"] == 1200
        assert reload(p1).stock == 3

    def test_every_line_decremented(self, place_order, make_product, reload, db_session):
        p1 = make_product(stock=5)
        p2 = make_product(stock=7, colors=["Brown"])
        order = place_order((p1, 2), (p2, 3))

        assert reload(p1).stock == 3
        assert reload(p2).stock == 4
        movements = db_session.query(StockMovement).filter_by(order_id=order["id"]).all()
        assert sorted(m.quantity_delta for m in movements) == [-3, -2]
        assert {m.movement_type for m in movements} == {stock_service.MOVEMENT_ORDER_PLACED}

    def test_insufficient_stock_changes_nothing(self, client, customer_headers, order_payload, make_product, reload, db_session):
        product = make_product(stock=3)

        resp = client.post("/api/orders", json=order_payload((product, 4)), headers=customer_headers)

        assert resp.status_code == 409
        body = resp.get_json()
        assert body["details"]["available"] == 3
        assert reload(product).stock == 3
        assert db_session.query(Order).count() == 0
        assert db_session.query(StockMovement).count() == 0

    def test_same_product_lines_checked_together(self, client, customer_headers, make_product, reload):
        product = make_product(stock=5, price_cents=100)
        payload = {
            "items": [
                {"product_id": product.id, "quantity": 3, "color": "Brown"},
                {"product_id": product.id, "quantity": 3, "color": "Black"},
            ],
            "shipping_address": dict(ADDRESS),
            "payment_method": "cod",
            "subtotal_cents": 600,
            "shipping_fee_cents": 0,
            "total_cents": 600,
        }

        resp = client.post("/api/orders", json=payload, headers=customer_headers)
        assert resp.status_code == 409
        assert reload(product).stock == 5

    def test_total_must_add_up(self, client, customer_headers, order_payload, make_product, reload):
        product = make_product(stock=5)
        payload = order_payload((product, 1))
        payload["total_cents"] += 1

        resp = client.post("/api/orders", json=payload, headers=customer_headers)
        assert resp.status_code == 400
        assert "expected_total_cents" in resp.get_json()["details"]
        assert reload(product).stock == 5

    def test_subtotal_must_match_prices(self, client, customer_headers, order_payload, make_product):
        product = make_product(stock=5, price_cents=1000)
        payload = order_payload((product, 1))
        payload["subtotal_cents"] = 1
        payload["total_cents"] = 1 + payload["shipping_fee_cents"]

        resp = client.post("/api/orders", json=payload, headers=customer_headers)
        assert resp.status_code == 400
        assert resp.get_json()["details"]["expected_subtotal_cents"] == 1000

    @pytest.mark.parametrize(
        "mutate",
        [
            lambda p: p.update(items=[]),
            lambda p: p.update(payment_method="bitcoin"),
            lambda p: p["shipping_address"].pop("city"),
            lambda p: p["shipping_address"].update(email="not-an-email"),
            lambda p: p["items"][0].update(quantity=0),
            lambda p: p["items"][0].pop("color"),
        ],
    )
    def test_malformed_orders_rejected(self, client, customer_headers, order_payload, make_product, mutate):
        payload = order_payload((make_product(), 1))
        mutate(payload)
        resp = client.post("/api/orders", json=payload, headers=customer_headers)
        assert resp.status_code == 400

    def test_unavailable_color_rejected(self, client, customer_headers, order_payload, make_product):
        product = make_product(colors=["Black"])
        resp = client.post("/api/orders", json=order_payload((product, 1), color="Brown"), headers=customer_headers)
        assert resp.status_code == 400

    def test_unknown_or_archived_product(self, client, customer_headers, order_payload, make_product):
        product = make_product(status="archived")
        resp = client.post("/api/orders", json=order_payload((product, 1)), headers=customer_headers)
        assert resp.status_code == 404

    def test_payment_method_alias_accepted(self, place_order, make_product):
        order = place_order((make_product(), 1), payment_method="cash_on_delivery")
        assert order["payment_method"] == "cod"
        assert order["payment"]["status"] == "pending"

    def test_lines_snapshot_product(self, place_order, make_product, db_session, reload):
        product = make_product(name="Classic Bifold", price_cents=450000)
        order = place_order((product, 1))

        reload(product)
        product.name = "Renamed"
        product.price_cents = 1
        db_session.commit()

        item = db_session.query(OrderItem).filter_by(order_id=order["id"]).one()
        assert item.name == "Classic Bifold"
        assert item.price_cents == 450000
        assert item.image == "/images/wallet.jpg"

    def test_requires_authentication(self, client, db_session, order_payload, make_product):
        resp = client.post("/api/orders", json=order_payload((make_product(), 1)))
        assert resp.status_code == 401


class TestHoldIsAllOrNothing:

    def test_refused_line_rolls_back_earlier_lines(self, db_session, customer, make_product):
        plenty = make_product(stock=10)
        scarce = make_product(stock=0)

        order = Order(
            user_id=customer.id,
            shipping_address=dict(ADDRESS),
            payment_method="cod",
            subtotal_cents=0,
            shipping_fee_cents=0,
            total_cents=0,
        )
        order.items.append(OrderItem(product_id=plenty.id, name="a", price_cents=0, color="Brown", quantity=2))
        order.items.append(OrderItem(product_id=scarce.id, name="b", price_cents=0, color="Brown", quantity=1))
        db_session.add(order)
        db_session.flush()

        with pytest.raises(InsufficientStockError):
            reconciliation_service.hold_order_stock(order)
        db_session.rollback()

        assert stock_service.current_stock(plenty.id) == 10
        assert stock_service.current_stock(scarce.id) == 0


class TestConcurrentCheckout:
    """Several buyers race for the same units; the guarded decrement decides."""

    @pytest.fixture
    def file_app(self, tmp_path):
        app = create_app({
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'race.sqlite3'}",
            'MAIL_BACKEND': 'memory',
            'NOTIFICATION_DISPATCH': 'deferred',
            'BCRYPT_ROUNDS': 4,
        })
        with app.app_context():
            db.create_all()
            yield app
            db.session.remove()
            db.drop_all()

    def test_only_available_units_sell(self, file_app):
        product = Product(
            name="Last Few", slug="last-few", description="x", price_cents=100,
            category="Wallets", images=["/x.jpg"], colors=["Brown"], stock=3,
        )
        db.session.add(product)
        db.session.commit()
        product_id = product.id
        user_ids = [
            create_user("Buyer", str(n), f"buyer{n}@example.com", TEST_PASSWORD).id
            for n in range(6)
        ]

        def _buy(user_id):
            with file_app.app_context():
                try:
                    order_service.create_order(
                        user_id,
                        [{"product_id": product_id, "quantity": 1, "color": "Brown"}],
                        dict(ADDRESS),
                        "cod",
                        100,
                        0,
                        100,
                    )
                    return True
                except InsufficientStockError:
                    return False
                finally:
                    db.session.remove()

        with ThreadPoolExecutor(max_workers=6) as pool:
            results = list(pool.map(_buy, user_ids))

        assert results.count(True) == 3
        assert stock_service.current_stock(product_id) == 0
        assert db.session.query(Order).count() == 3


# =============================================================================
# VISIBILITY
# =============================================================================


class TestOrderVisibility:

    def test_owner_can_read(self, client, customer_headers, place_order, make_product):
        order = place_order((make_product(), 1))
        resp = client.get(f"/api/orders/{order['id']}", headers=customer_headers)
        assert resp.status_code == 200
        assert resp.get_json()["data"]["allowed_transitions"] == []

    def test_other_customer_forbidden(self, client, other_customer_headers, place_order, make_product):
        order = place_order((make_product(), 1))
        resp = client.get(f"/api/orders/{order['id']}", headers=other_customer_headers)
        assert resp.status_code == 403

    def test_staff_can_read_any(self, client, staff_headers, place_order, make_product):
        order = place_order((make_product(), 1))
        resp = client.get(f"/api/orders/{order['id']}", headers=staff_headers)
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["user"]["email"] == "customer@example.com"
        assert data["allowed_transitions"] == ["processing", "cancelled"]

    def test_mine_lists_only_own(self, client, customer_headers, other_customer_headers, place_order, make_product):
        place_order((make_product(), 1))
        place_order((make_product(), 1))

        mine = client.get("/api/orders/mine", headers=customer_headers).get_json()["data"]
        theirs = client.get("/api/orders/mine", headers=other_customer_headers).get_json()["data"]
        assert mine["pagination"]["total"] == 2
        assert mine["status_counts"]["pending"] == 2
        assert theirs["pagination"]["total"] == 0

    def test_staff_list_filters(self, client, staff_headers, admin_headers, place_order, make_product):
        first = place_order((make_product(), 1))
        place_order((make_product(), 1))
        client.put(f"/api/orders/{first['id']}/status", json={"status": "cancelled"}, headers=admin_headers)

        resp = client.get("/api/orders?status=cancelled", headers=staff_headers)
        data = resp.get_json()["data"]
        assert resp.status_code == 200
        assert [o["id"] for o in data["items"]] == [first["id"]]
        assert data["status_counts"]["pending"] == 1

    def test_customer_cannot_list_all(self, client, customer_headers, db_session):
        assert client.get("/api/orders", headers=customer_headers).status_code == 403

    def test_bad_list_filter(self, client, staff_headers):
        assert client.get("/api/orders?status=lost", headers=staff_headers).status_code == 400
        assert client.get("/api/orders?start=yesterday", headers=staff_headers).status_code == 400


# =============================================================================
# CANCELLATION
# =============================================================================


class TestCancelEndpoint:

    def test_owner_cancels_pending(self, client, customer_headers, place_order, make_product, reload):
        product = make_product(stock=5)
        order = place_order((product, 2))

        resp = client.put(f"/api/orders/{order['id']}/cancel", headers=customer_headers)
        assert resp.status_code == 200
        assert resp.get_json()["data"]["order"]["status"] == "cancelled"
        assert reload(product).stock == 5

    def test_second_cancel_rejected_and_stock_untouched(self, client, customer_headers, place_order, make_product, reload):
        product = make_product(stock=5)
        order = place_order((product, 2))

        client.put(f"/api/orders/{order['id']}/cancel", headers=customer_headers)
        resp = client.put(f"/api/orders/{order['id']}/cancel", headers=customer_headers)
        assert resp.status_code == 409
        assert reload(product).stock == 5

    def test_shipped_order_cannot_be_cancelled(self, client, customer_headers, db_session, place_order, make_product):
        order = place_order((make_product(), 1))
        row = db_session.get(Order, order["id"])
        row.status = "shipped"
        db_session.commit()

        resp = client.put(f"/api/orders/{order['id']}/cancel", headers=customer_headers)
        assert resp.status_code == 409

    def test_admin_cancel_follows_lifecycle(self, client, admin_headers, db_session, place_order, make_product):
        order = place_order((make_product(), 1))
        row = db_session.get(Order, order["id"])
        row.status = "delivered"
        db_session.commit()

        resp = client.put(f"/api/orders/{order['id']}/cancel", headers=admin_headers)
        assert resp.status_code == 409

    def test_other_customer_cannot_cancel(self, client, other_customer_headers, place_order, make_product):
        order = place_order((make_product(), 1))
        resp = client.put(f"/api/orders/{order['id']}/cancel", headers=other_customer_headers)
        assert resp.status_code == 403

    def test_staff_can_cancel_processing(self, client, staff_headers, place_order, make_product):
        order = place_order((make_product(), 1))
        client.put(f"/api/orders/{order['id']}/status", json={"status": "processing"}, headers=staff_headers)

        resp = client.put(f"/api/orders/{order['id']}/cancel", headers=staff_headers)
        assert resp.status_code == 200


class TestPaymentStatusEndpoint:

    def test_admin_marks_paid(self, client, admin_headers, place_order, make_product):
        order = place_order((make_product(), 1))
        resp = client.put(f"/api/orders/{order['id']}/payment", json={"payment_status": "completed"}, headers=admin_headers)

        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["payment"]["status"] == "completed"
        assert data["payment"]["paid_at"] is not None
        assert data["status"] == "pending"

    def test_refunded_is_not_a_manual_payment_status(self, client, admin_headers, place_order, make_product):
        order = place_order((make_product(), 1))
        resp = client.put(f"/api/orders/{order['id']}/payment", json={"payment_status": "refunded"}, headers=admin_headers)
        assert resp.status_code == 400

    def test_staff_cannot_update_payment(self, client, staff_headers, place_order, make_product):
        order = place_order((make_product(), 1))
        resp = client.put(f"/api/orders/{order['id']}/payment", json={"payment_status": "completed"}, headers=staff_headers)
        assert resp.status_code == 403
