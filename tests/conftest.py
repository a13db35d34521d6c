# ruff: noqa: E402
import os
from typing import Any

# Set testing environment before importing the app or config
os.environ.pop("DATABASE_URL", None)
os.environ.pop("DATABASE_NAME", None)
os.environ["ENVIRONMENT"] = "test"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["PAYMENT_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["API_BASE_URL"] = "http://testserver"
os.environ["PAYMENT_PROVIDER_URL"] = "https://payments.test"
os.environ["MAIL_ENABLED"] = "1"
os.environ["MAIL_SUPPRESS_SEND"] = "1"

import mongomock
import pytest
from fastapi.testclient import TestClient

import config
import database
import notifications
from main import app
from security import issue_token_for

DEFAULT_PASSWORD = "StrongPass123"


class AttrDict(dict):
    """Dict with attribute-style access for fixtures."""

    def __getattr__(self, item: str) -> Any:
        try:
            return self[item]
        except KeyError as exc:
            raise AttributeError(item) from exc


@pytest.fixture
def db(monkeypatch):
    mock_db = mongomock.MongoClient()["marketplace_test"]
    database.ensure_indexes(mock_db)
    monkeypatch.setattr(database, "db", mock_db)
    return mock_db


@pytest.fixture(autouse=True)
def upload_dir(tmp_path, monkeypatch):
    path = tmp_path / "uploads"
    monkeypatch.setattr(config, "UPLOAD_DIR", str(path))
    return path


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    """Messages handed to the mailer during the test."""
    sent = []

    async def record(message, template_name=None):
        sent.append(message)

    monkeypatch.setattr(notifications.fm, "send_message", record)
    return sent


def recipients(message) -> list:
    return [getattr(r, "email", str(r)) for r in message.recipients]


def messages_to(outbox, email: str) -> list:
    return [m for m in outbox if email in recipients(m)]


@pytest.fixture
def client(db):
    return TestClient(app)


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def register(client, email: str, role: str = "buyer", name: str = None, password: str = DEFAULT_PASSWORD) -> AttrDict:
    payload = {"email": email, "password": password, "role": role}
    if name:
        payload["name"] = name
    res = client.post("/api/auth/register", json=payload)
    assert res.status_code == 201, res.text
    body = res.json()
    return AttrDict(
        id=body["user"]["id"],
        email=email,
        password=password,
        token=body["token"],
        user=body["user"],
        headers=auth_headers(body["token"]),
    )


@pytest.fixture
def buyer(client):
    return register(client, "buyer@example.com", name="Bob Buyer")


@pytest.fixture
def other_buyer(client):
    return register(client, "carol@example.com", name="Carol Buyer")


@pytest.fixture
def seller(client):
    return register(client, "seller@example.com", role="seller", name="Sam Seller")


@pytest.fixture
def admin(client, db):
    account = register(client, "admin@example.com", name="Ada Admin")
    db["user"].update_one({"_id": database.to_object_id(account.id)}, {"$set": {"role": "admin"}})
    token = issue_token_for(db["user"].find_one({"_id": database.to_object_id(account.id)}))
    account.update(token=token, headers=auth_headers(token))
    return account


def product_payload(**overrides) -> dict:
    payload = {
        "title": "Ultimate UI Kit",
        "description": "A complete set of interface components for dashboards.",
        "category": "templates",
        "price": 49.99,
        "cover_image": "http://testserver/api/upload/public/images/cover.png",
        "tags": ["ui", " figma ", ""],
    }
    payload.update(overrides)
    return payload


def create_product(client, seller, publish: bool = True, **overrides) -> dict:
    res = client.post("/api/products", json=product_payload(**overrides), headers=seller.headers)
    assert res.status_code == 201, res.text
    product = res.json()["product"]
    if publish:
        res = client.patch(f"/api/products/{product['id']}", json={"status": "published"}, headers=seller.headers)
        assert res.status_code == 200, res.text
        product = res.json()["product"]
    return product


@pytest.fixture
def product(client, seller):
    return create_product(client, seller)
