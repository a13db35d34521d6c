"""Transactional email: welcome on registration, confirmation and sale notice on payment."""

import json
import logging

import pytest

import config
import notifications
from conftest import messages_to, recipients, register
from routers.purchases import sign_webhook_body


def _pay_event(client, session_id, event="payment.succeeded"):
    body = json.dumps({"event": event, "data": {"payment_session_id": session_id}}).encode()
    res = client.post(
        "/api/purchases/webhook",
        content=body,
        headers={"Content-Type": "application/json", "X-Payment-Signature": sign_webhook_body(body)},
    )
    assert res.status_code == 200, res.text


def _checkout(client, buyer, product):
    res = client.post("/api/purchases", json={"product_id": product["id"]}, headers=buyer.headers)
    assert res.status_code == 201, res.text
    return res.json()["payment_session_id"]


@pytest.mark.asyncio
async def test_send_email_hands_html_message_to_mailer(outbox):
    assert await notifications.send_email("someone@example.com", "Hello", "<p>Hi</p>") is True
    assert len(outbox) == 1
    assert outbox[0].subject == "Hello"
    assert recipients(outbox[0]) == ["someone@example.com"]


@pytest.mark.asyncio
async def test_send_email_skips_when_disabled(outbox, monkeypatch):
    monkeypatch.setattr(config, "MAIL_ENABLED", False)
    assert await notifications.send_email("someone@example.com", "Hello", "<p>Hi</p>") is False
    assert outbox == []


def test_welcome_email_escapes_name():
    subject, body = notifications.welcome_email({"name": "<b>Eve</b>", "role": "buyer"})
    assert subject == f"Welcome to {config.APP_NAME}!"
    assert "&lt;b&gt;Eve&lt;/b&gt;" in body
    assert "<b>Eve</b>" not in body


def test_register_sends_welcome_email(client, outbox):
    register(client, "maker@example.com", role="seller", name="Maker")
    register(client, "shopper@example.com", name="Shopper")

    (seller_mail,) = messages_to(outbox, "maker@example.com")
    assert seller_mail.subject == f"Welcome to {config.APP_NAME}!"
    assert "Happy selling!" in seller_mail.body

    (buyer_mail,) = messages_to(outbox, "shopper@example.com")
    assert "Happy shopping!" in buyer_mail.body


def test_registration_succeeds_when_mail_fails(client, db, monkeypatch, caplog):
    async def broken(message, template_name=None):
        raise ConnectionRefusedError("smtp down")

    monkeypatch.setattr(notifications.fm, "send_message", broken)
    with caplog.at_level(logging.ERROR, logger="notifications"):
        register(client, "unlucky@example.com")

    assert db["user"].count_documents({"email": "unlucky@example.com"}) == 1
    assert any("Failed to send" in r.getMessage() for r in caplog.records)


def test_completed_purchase_emails_buyer_and_seller(client, outbox, buyer, seller, product):
    outbox.clear()
    session_id = _checkout(client, buyer, product)
    assert outbox == []

    _pay_event(client, session_id)
    (confirmation,) = messages_to(outbox, buyer.email)
    assert confirmation.subject == "Purchase Confirmation - Ultimate UI Kit"
    assert "49.99 USD" in confirmation.body

    (sale,) = messages_to(outbox, seller.email)
    assert sale.subject == "You made a sale: Ultimate UI Kit"
    assert "44.99 USD" in sale.body

    # replayed event, nothing new
    _pay_event(client, session_id)
    assert len(outbox) == 2


def test_failed_payment_sends_nothing(client, outbox, buyer, product):
    outbox.clear()
    _pay_event(client, _checkout(client, buyer, product), event="payment.failed")
    assert outbox == []
