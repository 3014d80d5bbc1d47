"""
Notification outbox tests.

Tests run with NOTIFICATION_DISPATCH=deferred and the memory mail backend,
so queued rows stay PENDING until dispatched explicitly.
"""

import smtplib

import pytest

from storefront.errors import ExternalServiceError
from storefront.models import Notification, Order
from storefront.models.notifications import NOTIFICATION_FAILED, NOTIFICATION_PENDING, NOTIFICATION_SENT
from storefront.services import mailer, notification_service


class TestEnqueue:

    def test_order_confirmation_queued_after_create(self, place_order, make_product, db_session, outbox):
        order = place_order((make_product(), 2))

        rows = db_session.query(Notification).filter_by(order_id=order["id"]).all()
        assert [(n.kind, n.status) for n in rows] == [("order_confirmation", NOTIFICATION_PENDING)]
        assert rows[0].recipient == "ayesha@example.com"
        assert "Rs. 9,000.00" in rows[0].body
        assert outbox == []

    def test_same_trigger_queued_once(self, place_order, make_product, db_session):
        order = place_order((make_product(), 1))
        row = db_session.get(Order, order["id"])

        assert notification_service.send_order_confirmation(row) is None
        assert db_session.query(Notification).filter_by(kind="order_confirmation").count() == 1

    def test_status_change_notifies_each_move(self, client, staff_headers, place_order, make_product, db_session):
        order = place_order((make_product(), 1))
        client.put(f"/api/orders/{order['id']}/status", json={"status": "processing"}, headers=staff_headers)
        client.put(f"/api/orders/{order['id']}/status", json={"status": "shipped"}, headers=staff_headers)

        subjects = [
            n.subject for n in db_session.query(Notification)
            .filter_by(kind="order_status_update")
            .order_by(Notification.id)
        ]
        assert subjects == [f"Order Status Update - #{order['id']}"] * 2

    def test_same_status_resave_does_not_notify(self, client, admin_headers, place_order, make_product, db_session):
        order = place_order((make_product(), 1))
        client.put(f"/api/orders/{order['id']}/status", json={"status": "processing"}, headers=admin_headers)
        client.put(f"/api/orders/{order['id']}/status", json={"status": "processing"}, headers=admin_headers)

        assert db_session.query(Notification).filter_by(kind="order_status_update").count() == 1

    def test_customer_cancel_sends_cancellation(self, client, customer_headers, place_order, make_product, db_session):
        order = place_order((make_product(), 1))
        client.put(f"/api/orders/{order['id']}/cancel", headers=customer_headers)

        assert db_session.query(Notification).filter_by(kind="order_cancelled").count() == 1

    def test_missing_recipient_skipped(self, db_session, customer, make_product):
        order = Order(
            user_id=customer.id,
            shipping_address={},
            payment_method="cod",
            subtotal_cents=0,
            shipping_fee_cents=0,
            total_cents=0,
        )
        db_session.add(order)
        db_session.commit()
        customer.email = ""
        db_session.commit()

        assert notification_service.send_order_confirmation(order) is None
        assert db_session.query(Notification).count() == 0


class TestDispatch:

    def test_dispatch_pending_sends(self, place_order, make_product, db_session, outbox):
        order = place_order((make_product(), 1))

        summary = notification_service.dispatch_pending()

        assert summary == {"attempted": 1, "sent": 1, "failed": 0}
        assert len(outbox) == 1
        assert outbox[0]["To"] == "ayesha@example.com"
        assert outbox[0]["Subject"] == f"Order Confirmation - #{order['id']}"
        row = db_session.query(Notification).one()
        assert row.status == NOTIFICATION_SENT
        assert row.attempts == 1
        assert row.sent_at is not None

    def test_sent_rows_not_resent(self, place_order, make_product, outbox):
        place_order((make_product(), 1))
        notification_service.dispatch_pending()
        summary = notification_service.dispatch_pending()

        assert summary["attempted"] == 0
        assert len(outbox) == 1

    def test_transport_failure_retried_then_failed(self, app, monkeypatch, place_order, make_product, db_session):
        place_order((make_product(), 1))
        monkeypatch.setitem(app.config, "NOTIFICATION_MAX_ATTEMPTS", 2)

        def _refuse(message):
            raise ConnectionRefusedError("smtp down")

        monkeypatch.setattr(mailer.get_transport(), "send", _refuse)

        assert notification_service.dispatch_pending() == {"attempted": 1, "sent": 0, "failed": 1}
        row = db_session.query(Notification).one()
        assert row.status == NOTIFICATION_PENDING
        assert "smtp down" in row.last_error

        notification_service.dispatch_pending()
        db_session.refresh(row)
        assert row.status == NOTIFICATION_FAILED
        assert row.attempts == 2

        # Permanently failed rows are left alone
        assert notification_service.dispatch_pending()["attempted"] == 0

    def test_transport_error_surfaces_as_external_service_error(self, app, monkeypatch, db_session):
        def _refuse(message):
            raise smtplib.SMTPServerDisconnected("connection closed")

        monkeypatch.setattr(mailer.get_transport(), "send", _refuse)

        with pytest.raises(ExternalServiceError) as exc_info:
            mailer.send_mail("ayesha@example.com", "Hello", "Body")

        assert exc_info.value.status_code == 502
        assert exc_info.value.message == "Mail transport memory failed: connection closed"
        assert exc_info.value.details == {"transport": "memory", "cause": "SMTPServerDisconnected"}

    def test_failure_message_recorded_on_row(self, monkeypatch, place_order, make_product, db_session):
        place_order((make_product(), 1))

        def _refuse(message):
            raise TimeoutError("timed out")

        monkeypatch.setattr(mailer.get_transport(), "send", _refuse)
        notification_service.dispatch_pending()

        row = db_session.query(Notification).one()
        db_session.refresh(row)
        assert row.last_error == "Mail transport memory failed: timed out"

    def test_failure_does_not_affect_order(self, monkeypatch, client, customer_headers, order_payload, make_product):
        def _refuse(message):
            raise ConnectionRefusedError("smtp down")

        monkeypatch.setattr(mailer.get_transport(), "send", _refuse)
        resp = client.post("/api/orders", json=order_payload((make_product(), 1)), headers=customer_headers)
        assert resp.status_code == 201

    def test_cli_dispatch(self, app, place_order, make_product, outbox):
        place_order((make_product(), 1))

        result = app.test_cli_runner().invoke(args=["notifications", "dispatch", "--limit", "10"])

        assert result.exit_code == 0, result.output
        assert "sent 1" in result.output
        assert len(outbox) == 1


class TestFormatting:

    def test_format_money(self):
        assert notification_service.format_money(450000) == "Rs. 4,500.00"
        assert notification_service.format_money(None) == "Rs. 0.00"
