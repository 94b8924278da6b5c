"""Tests for registration, login and bearer tokens."""

from datetime import timedelta

import pytest
from jose import jwt

from errors import AuthError, ConflictError, ValidationError
from models import User


REGISTRATION = {"username": "grace", "email": "grace@example.com", "password": "hopper42"}


class TestRegister:
    def test_register_returns_user_and_token(self, client):
        resp = client.post("/api/auth/register", json=REGISTRATION)

        assert resp.status_code == 201
        body = resp.json()
        assert body["user"]["username"] == "grace"
        assert body["user"]["isAdmin"] is False
        assert body["token"]
        assert "password" not in str(body)

    def test_password_is_hashed(self, client, db):
        client.post("/api/auth/register", json=REGISTRATION)

        with db.session() as session:
            user = session.query(User).filter_by(username="grace").one()
        assert user.password_hash != REGISTRATION["password"]
        assert user.password_hash.startswith("$2")

    @pytest.mark.parametrize("override", [
        {"username": "grace"},
        {"email": "grace@example.com", "username": "grace2"},
    ])
    def test_duplicate_is_conflict(self, client, override):
        client.post("/api/auth/register", json=REGISTRATION)
        payload = {**REGISTRATION, "email": "other@example.com", **override}

        resp = client.post("/api/auth/register", json=payload)

        assert resp.status_code == 409
        assert resp.json()["error"] == "Username or email already exists"

    @pytest.mark.parametrize("payload", [
        {"username": "grace", "email": "grace@example.com", "password": "short"},
        {"username": "grace", "email": "not-an-email", "password": "hopper42"},
        {"username": "grace", "password": "hopper42"},
    ])
    def test_invalid_registration(self, client, payload):
        resp = client.post("/api/auth/register", json=payload)
        assert resp.status_code == 400
        assert "error" in resp.json()

    def test_service_rejects_missing_fields(self, app):
        with pytest.raises(ValidationError):
            app.state.auth.register("grace", None, "hopper42")

    def test_service_conflict(self, app):
        app.state.auth.register("grace", "grace@example.com", "hopper42")
        with pytest.raises(ConflictError):
            app.state.auth.register("grace", "new@example.com", "hopper42")


class TestLogin:
    def test_register_then_login(self, client):
        client.post("/api/auth/register", json=REGISTRATION)

        resp = client.post("/api/auth/login", json={"username": "grace", "password": "hopper42"})

        assert resp.status_code == 200
        assert resp.json()["user"]["email"] == "grace@example.com"
        assert resp.json()["token"]

    def test_wrong_password_and_unknown_user_look_the_same(self, client):
        client.post("/api/auth/register", json=REGISTRATION)

        wrong_password = client.post("/api/auth/login", json={"username": "grace", "password": "nope-nope"})
        unknown_user = client.post("/api/auth/login", json={"username": "nobody", "password": "nope-nope"})

        assert wrong_password.status_code == unknown_user.status_code == 401
        assert wrong_password.json() == unknown_user.json() == {"error": "Invalid username or password"}

    def test_missing_credentials(self, client):
        resp = client.post("/api/auth/login", json={"username": "grace"})
        assert resp.status_code == 400

    def test_admin_flag_in_login(self, client):
        resp = client.post("/api/auth/login", json={"username": "admin", "password": "admin-password"})
        assert resp.json()["user"]["isAdmin"] is True


class TestTokens:
    def test_verify_and_profile(self, client, user_headers):
        verify = client.get("/api/auth/verify", headers=user_headers)
        profile = client.get("/api/auth/profile", headers=user_headers)

        assert verify.status_code == 200
        assert verify.json()["username"] == "shopper"
        assert profile.status_code == 200
        assert profile.json()["createdAt"]

    def test_token_claims(self, client, settings):
        token = client.post("/api/auth/register", json=REGISTRATION).json()["token"]

        claims = jwt.decode(token, settings.jwt_secret, algorithms=["HS256"])
        assert claims["username"] == "grace"
        assert claims["isAdmin"] is False
        assert claims["exp"] - claims["iat"] == 24 * 60 * 60

    def test_missing_token(self, client):
        resp = client.get("/api/auth/verify")
        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == "Bearer"

    def test_tampered_token(self, client, user_headers):
        token = user_headers["Authorization"].split(" ", 1)[1]
        header, payload, signature = token.split(".")
        tampered = ".".join([header, payload, signature[:-2] + ("AA" if signature[-2:] != "AA" else "BB")])

        resp = client.get("/api/auth/verify", headers={"Authorization": f"Bearer {tampered}"})

        assert resp.status_code == 401

    def test_token_signed_with_other_secret(self, client):
        forged = jwt.encode({"sub": "1", "isAdmin": True}, "not-the-secret", algorithm="HS256")
        resp = client.get("/api/auth/verify", headers={"Authorization": f"Bearer {forged}"})
        assert resp.status_code == 401

    def test_expired_token(self, app):
        auth = app.state.auth
        auth.register("grace", "grace@example.com", "hopper42")
        user = auth.login("grace", "hopper42")["user"]
        expired = auth.create_access_token(
            User(id=user["id"], username="grace", is_admin=False), expires_delta=timedelta(seconds=-5)
        )

        with pytest.raises(AuthError):
            auth.verify_token(expired)

    def test_token_for_deleted_user(self, app, db):
        auth = app.state.auth
        token = auth.register("grace", "grace@example.com", "hopper42")["token"]
        with db.transaction() as session:
            session.delete(session.query(User).filter_by(username="grace").one())

        with pytest.raises(AuthError):
            auth.verify_token(token)
