"""
Registration, login and session tests.
"""

import pytest

from conftest import TEST_PASSWORD
from storefront.models import SessionToken, User
from storefront.services import auth_service


def _register(client, **overrides):
    payload = {
        "firstName": "Bilal",
        "lastName": "Ahmed",
        "email": "Bilal@Example.com",
        "password": TEST_PASSWORD,
    }
    payload.update(overrides)
    return client.post("/api/auth/register", json=payload)


class TestRegistration:

    def test_register_issues_token(self, client, db_session):
        resp = _register(client)

        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert data["user"]["email"] == "bilal@example.com"
        assert data["user"]["role"] == "customer"
        assert "password_hash" not in data["user"]

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {data['token']}"})
        assert me.status_code == 200

    @pytest.mark.parametrize(
        "password",
        ["short1!", "alllowercase1!", "ALLUPPERCASE1!", "NoDigitsHere!", "NoSpecial123"],
    )
    def test_weak_password_rejected(self, client, db_session, password):
        resp = _register(client, password=password)
        assert resp.status_code == 400
        assert db_session.query(User).count() == 0

    def test_duplicate_email_conflicts(self, client, db_session):
        _register(client)
        resp = _register(client, email="bilal@example.com")
        assert resp.status_code == 409

    def test_missing_names(self, client, db_session):
        resp = _register(client, firstName="", lastName=None)
        assert resp.status_code == 400
        assert set(resp.get_json()["details"]) == {"first_name", "last_name"}

    def test_password_is_hashed(self, client, db_session):
        _register(client)
        user = db_session.query(User).one()
        assert user.password_hash != TEST_PASSWORD
        assert auth_service.verify_password(TEST_PASSWORD, user.password_hash)


class TestLogin:

    def test_login(self, client, customer):
        resp = client.post("/api/auth/login", json={"email": "CUSTOMER@example.com", "password": TEST_PASSWORD})

        assert resp.status_code == 200
        assert resp.get_json()["data"]["user"]["id"] == customer.id

    def test_wrong_password(self, client, customer):
        resp = client.post("/api/auth/login", json={"email": customer.email, "password": "Wrong123!"})
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Invalid email or password"

    def test_unknown_email_same_message(self, client, db_session):
        resp = client.post("/api/auth/login", json={"email": "nobody@example.com", "password": TEST_PASSWORD})
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Invalid email or password"

    def test_missing_fields(self, client, db_session):
        assert client.post("/api/auth/login", json={"email": "a@b.co"}).status_code == 400

    def test_inactive_user_cannot_login(self, client, customer, db_session):
        customer.is_active = False
        db_session.commit()
        resp = client.post("/api/auth/login", json={"email": customer.email, "password": TEST_PASSWORD})
        assert resp.status_code == 401


class TestSessions:

    def test_me_lists_permissions(self, client, staff_headers):
        data = client.get("/api/auth/me", headers=staff_headers).get_json()["data"]
        assert data["role"] == "staff"
        assert "UPDATE_ORDER_STATUS" in data["permissions"]
        assert "MANAGE_PRODUCTS" not in data["permissions"]

    def test_logout_revokes_token(self, client, customer_headers, db_session):
        assert client.post("/api/auth/logout", headers=customer_headers).status_code == 200
        assert client.get("/api/auth/me", headers=customer_headers).status_code == 401

        session = db_session.query(SessionToken).one()
        assert session.is_revoked is True
        assert session.revoked_reason == "User logout"

    def test_deactivated_user_token_revoked(self, client, customer, customer_headers, db_session):
        customer.is_active = False
        db_session.commit()

        assert client.get("/api/auth/me", headers=customer_headers).status_code == 401
        session = db_session.query(SessionToken).one()
        db_session.refresh(session)
        assert session.revoked_reason == "User account deactivated"

    @pytest.mark.parametrize("header", ["Bearer nope", "Token abc", "Bearer "])
    def test_bad_tokens(self, client, db_session, header):
        assert client.get("/api/auth/me", headers={"Authorization": header}).status_code == 401
