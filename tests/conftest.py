"""Pytest configuration and fixtures for the Storefront API tests."""

from decimal import Decimal
from typing import Dict

import pytest
from fastapi.testclient import TestClient

from config import Settings
from main import create_app
from models import Product


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings backed by a temporary SQLite file and image directory."""
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'shop.db'}",
        image_dir=str(tmp_path / "images"),
        jwt_secret="test-secret",
        bcrypt_rounds=4,
        max_image_bytes=1024,
        payment_policy="threshold",
        admin_username="admin",
        admin_email="admin@example.com",
        admin_password="admin-password",
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def db(app):
    return app.state.db


@pytest.fixture
def make_product(db):
    """Insert a product directly and return its id."""

    def _make(name="Plain Shirt", price="9.99", stock=5, description="Cotton shirt"):
        with db.transaction() as session:
            product = Product(name=name, description=description, price=Decimal(price), stock_quantity=stock)
            session.add(product)
            session.flush()
            return product.id

    return _make


@pytest.fixture
def stock_of(db):
    def _stock(product_id):
        with db.session() as session:
            return session.get(Product, product_id).stock_quantity

    return _stock


@pytest.fixture
def admin_headers(client) -> Dict[str, str]:
    resp = client.post("/api/auth/login", json={"username": "admin", "password": "admin-password"})
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['token']}"}


@pytest.fixture
def user_headers(client) -> Dict[str, str]:
    resp = client.post(
        "/api/auth/register",
        json={"username": "shopper", "email": "shopper@example.com", "password": "secret123"},
    )
    assert resp.status_code == 201
    return {"Authorization": f"Bearer {resp.json()['token']}"}


@pytest.fixture
def billing() -> Dict[str, str]:
    return {"name": "Ada Lovelace", "email": "ada@example.com", "address": "12 Analytical St"}
