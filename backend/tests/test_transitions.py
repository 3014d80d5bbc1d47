"""
Order status transition tests.

Verifies:
- The lifecycle table is the only authority for non-privileged actors
- The override capability admits any pair of known statuses
- Status changes through the API release and re-hold stock exactly once
"""

import itertools

import pytest

from storefront.errors import InvalidTransitionError, ValidationError
from storefront.models import Order
from storefront.models.orders import MANUAL_ORDER_STATUSES, ORDER_STATUSES
from storefront.permissions import capabilities_for_role
from storefront.services import stock_service, transition_service


STAFF_CAPS = capabilities_for_role("staff")
ADMIN_CAPS = capabilities_for_role("admin")

VALID_PAIRS = [
    (current, target)
    for current, targets in transition_service.ALLOWED_TRANSITIONS.items()
    for target in sorted(targets)
]
INVALID_PAIRS = [
    (current, target)
    for current, target in itertools.product(ORDER_STATUSES, MANUAL_ORDER_STATUSES)
    if (current, target) not in VALID_PAIRS
]


# =============================================================================
# VALIDATOR
# =============================================================================


class TestValidator:

    @pytest.mark.parametrize("current,target", VALID_PAIRS)
    def test_table_pairs_allowed_for_staff(self, current, target):
        assert transition_service.allows(current, target, STAFF_CAPS)
        transition_service.ensure_allowed(current, target, STAFF_CAPS)

    @pytest.mark.parametrize("current,target", INVALID_PAIRS)
    def test_other_pairs_rejected_for_staff(self, current, target):
        assert not transition_service.allows(current, target, STAFF_CAPS)
        with pytest.raises(InvalidTransitionError) as exc_info:
            transition_service.ensure_allowed(current, target, STAFF_CAPS)
        assert exc_info.value.status_code == 409
        assert exc_info.value.details["current_status"] == current

    @pytest.mark.parametrize(
        "current,target",
        list(itertools.product(ORDER_STATUSES, ORDER_STATUSES)),
    )
    def test_override_allows_every_pair(self, current, target):
        assert transition_service.allows(current, target, ADMIN_CAPS)

    def test_override_rejects_unknown_status(self):
        assert not transition_service.allows("pending", "teleported", ADMIN_CAPS)

    def test_terminal_statuses_have_no_targets(self):
        assert transition_service.allowed_targets("cancelled", STAFF_CAPS) == []
        assert transition_service.allowed_targets("returned", STAFF_CAPS) == []

    def test_allowed_targets_follow_lifecycle_order(self):
        assert transition_service.allowed_targets("pending", STAFF_CAPS) == ["processing", "cancelled"]

    @pytest.mark.parametrize("status", ["payment_failed", "refunded", "", None, "PENDING"])
    def test_side_channel_and_unknown_targets_are_not_manual(self, status):
        with pytest.raises(ValidationError):
            transition_service.ensure_manual_target(status)


# =============================================================================
# API
# =============================================================================


def _set_status(db_session, order_id, status):
    order = db_session.get(Order, order_id)
    order.status = status
    db_session.commit()


class TestStatusEndpoint:

    def test_staff_walks_lifecycle(self, client, staff_headers, make_product, place_order):
        order = place_order((make_product(), 1))

        for status in ("processing", "shipped", "delivered"):
            resp = client.put(f"/api/orders/{order['id']}/status", json={"status": status}, headers=staff_headers)
            assert resp.status_code == 200, resp.get_json()
            assert resp.get_json()["data"]["order"]["status"] == status

    def test_staff_cannot_skip_steps(self, client, staff_headers, make_product, place_order):
        order = place_order((make_product(), 1))

        resp = client.put(f"/api/orders/{order['id']}/status", json={"status": "delivered"}, headers=staff_headers)
        assert resp.status_code == 409
        body = resp.get_json()
        assert body["success"] is False
        assert body["details"]["allowed"] == ["processing", "cancelled"]

    def test_invalid_status_rejected(self, client, staff_headers, make_product, place_order):
        order = place_order((make_product(), 1))
        resp = client.put(f"/api/orders/{order['id']}/status", json={"status": "lost"}, headers=staff_headers)
        assert resp.status_code == 400

    def test_customer_cannot_change_status(self, client, customer_headers, make_product, place_order):
        order = place_order((make_product(), 1))
        resp = client.put(f"/api/orders/{order['id']}/status", json={"status": "processing"}, headers=customer_headers)
        assert resp.status_code == 403

    def test_missing_order(self, client, staff_headers, db_session):
        resp = client.put("/api/orders/999/status", json={"status": "processing"}, headers=staff_headers)
        assert resp.status_code == 404

    def test_tracking_attached_on_ship(self, client, staff_headers, db_session, make_product, place_order):
        order = place_order((make_product(), 1))
        _set_status(db_session, order["id"], "processing")

        resp = client.put(
            f"/api/orders/{order['id']}/status",
            json={
                "status": "shipped",
                "tracking_info": {"carrier": "TCS", "tracking_number": "TCS-123", "tracking_url": "https://t.example/1"},
            },
            headers=staff_headers,
        )
        assert resp.status_code == 200
        assert resp.get_json()["data"]["order"]["tracking_info"] == {
            "carrier": "TCS",
            "tracking_number": "TCS-123",
            "tracking_url": "https://t.example/1",
        }

    def test_admin_override_from_terminal(self, client, admin_headers, db_session, make_product, place_order):
        order = place_order((make_product(), 1))
        _set_status(db_session, order["id"], "delivered")

        resp = client.put(f"/api/orders/{order['id']}/status", json={"status": "pending"}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["data"]["previous_status"] == "delivered"
        assert resp.get_json()["data"]["order"]["status"] == "pending"

    def test_admin_can_move_payment_failed_order_back(self, client, admin_headers, db_session, make_product, place_order):
        order = place_order((make_product(), 1))
        _set_status(db_session, order["id"], "payment_failed")

        resp = client.put(f"/api/orders/{order['id']}/status", json={"status": "processing"}, headers=admin_headers)
        assert resp.status_code == 200

    def test_staff_cannot_leave_payment_failed(self, client, staff_headers, db_session, make_product, place_order):
        order = place_order((make_product(), 1))
        _set_status(db_session, order["id"], "payment_failed")

        resp = client.put(f"/api/orders/{order['id']}/status", json={"status": "processing"}, headers=staff_headers)
        assert resp.status_code == 409


class TestStockReconciliation:

    def test_admin_cancel_restores_stock(self, client, admin_headers, make_product, place_order, reload):
        p1 = make_product(price_cents=500, stock=5)
        order = place_order((p1, 2), shipping_fee_cents=200)
        assert reload(p1).stock == 3

        resp = client.put(f"/api/orders/{order['id']}/status", json={"status": "cancelled"}, headers=admin_headers)
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["order"]["status"] == "cancelled"
        assert data["order"]["stock_held"] is False
        assert data["stock"]["action"] == "released"
        assert reload(p1).stock == 5

    def test_recancel_does_not_restore_twice(self, client, admin_headers, make_product, place_order, reload):
        product = make_product(stock=5)
        order = place_order((product, 2))

        client.put(f"/api/orders/{order['id']}/status", json={"status": "cancelled"}, headers=admin_headers)
        resp = client.put(f"/api/orders/{order['id']}/status", json={"status": "cancelled"}, headers=admin_headers)

        assert resp.status_code == 200
        assert resp.get_json()["data"]["stock"] is None
        assert reload(product).stock == 5

    def test_cancel_then_return_restores_once(self, client, admin_headers, make_product, place_order, reload):
        product = make_product(stock=5)
        order = place_order((product, 2))

        client.put(f"/api/orders/{order['id']}/status", json={"status": "cancelled"}, headers=admin_headers)
        resp = client.put(f"/api/orders/{order['id']}/status", json={"status": "returned"}, headers=admin_headers)

        assert resp.status_code == 200
        assert reload(product).stock == 5

    def test_return_after_delivery_restores_stock(self, client, staff_headers, db_session, make_product, place_order, reload):
        product = make_product(stock=5)
        order = place_order((product, 3))
        _set_status(db_session, order["id"], "delivered")

        resp = client.put(f"/api/orders/{order['id']}/status", json={"status": "returned"}, headers=staff_headers)
        assert resp.status_code == 200
        assert reload(product).stock == 5

    def test_reopening_cancelled_order_reholds_stock(self, client, admin_headers, make_product, place_order, reload):
        product = make_product(stock=5)
        order = place_order((product, 2))
        client.put(f"/api/orders/{order['id']}/status", json={"status": "cancelled"}, headers=admin_headers)

        resp = client.put(f"/api/orders/{order['id']}/status", json={"status": "processing"}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["data"]["stock"]["action"] == "reheld"
        assert reload(product).stock == 3

        # A second cancel gives it back again, once
        client.put(f"/api/orders/{order['id']}/status", json={"status": "cancelled"}, headers=admin_headers)
        assert reload(product).stock == 5

    def test_reopen_refused_without_stock(self, client, admin_headers, db_session, make_product, place_order, reload):
        product = make_product(stock=2)
        order = place_order((product, 2))
        client.put(f"/api/orders/{order['id']}/status", json={"status": "cancelled"}, headers=admin_headers)

        # Stock sold elsewhere in the meantime
        client.put(
            f"/api/products/{product.id}/stock",
            json={"operation": "remove", "quantity": 1},
            headers=admin_headers,
        )

        resp = client.put(f"/api/orders/{order['id']}/status", json={"status": "pending"}, headers=admin_headers)
        assert resp.status_code == 409
        assert reload(product).stock == 1
        assert reload(db_session.get(Order, order["id"])).status == "cancelled"

    def test_non_releasing_moves_leave_stock(self, client, staff_headers, make_product, place_order, reload):
        product = make_product(stock=5)
        order = place_order((product, 2))

        client.put(f"/api/orders/{order['id']}/status", json={"status": "processing"}, headers=staff_headers)
        client.put(f"/api/orders/{order['id']}/status", json={"status": "shipped"}, headers=staff_headers)
        assert reload(product).stock == 3

    def test_failed_line_reported_while_siblings_restore(
        self, client, admin_headers, make_product, place_order, reload, monkeypatch, caplog
    ):
        kept = make_product(stock=5)
        lost = make_product(stock=5)
        order = place_order((kept, 2), (lost, 1))
        kept_id, lost_id = kept.id, lost.id

        adjust_stock = stock_service.adjust_stock

        def _refuse_lost(product_id, delta, **kwargs):
            if product_id == lost_id:
                return False
            return adjust_stock(product_id, delta, **kwargs)

        monkeypatch.setattr(stock_service, "adjust_stock", _refuse_lost)

        resp = client.put(f"/api/orders/{order['id']}/status", json={"status": "cancelled"}, headers=admin_headers)

        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["order"]["stock_held"] is False
        assert data["stock"]["released"] == [{"product_id": kept_id, "quantity": 2}]
        assert data["stock"]["failed"] == [{"product_id": lost_id, "quantity": 1}]
        assert reload(kept).stock == 5
        assert reload(lost).stock == 4
        assert any("could not restore" in record.getMessage() for record in caplog.records)
