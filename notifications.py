"""Transactional email.

Messages go out through fastapi-mail and are queued on the request's
``BackgroundTasks`` so the response never waits on SMTP. A failed send is
logged and dropped; it never fails the request that triggered it.
"""

import logging
from html import escape
from typing import List, Union

from fastapi import BackgroundTasks
from fastapi_mail import ConnectionConfig, FastMail, MessageSchema
from pymongo.database import Database

import config
from database import to_object_id

logger = logging.getLogger(__name__)

mail_config = ConnectionConfig(
    MAIL_USERNAME=config.MAIL_USERNAME,
    MAIL_PASSWORD=config.MAIL_PASSWORD,
    MAIL_FROM=config.MAIL_FROM,
    MAIL_FROM_NAME=config.MAIL_FROM_NAME,
    MAIL_PORT=config.MAIL_PORT,
    MAIL_SERVER=config.MAIL_SERVER,
    MAIL_STARTTLS=config.MAIL_STARTTLS,
    MAIL_SSL_TLS=config.MAIL_SSL_TLS,
    USE_CREDENTIALS=bool(config.MAIL_USERNAME and config.MAIL_PASSWORD),
    SUPPRESS_SEND=config.MAIL_SUPPRESS_SEND,
)

fm = FastMail(mail_config)


def _layout(heading: str, paragraphs: List[str], link: str, link_text: str) -> str:
    body = "".join(f"<p>{p}</p>" for p in paragraphs)
    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h2>{heading}</h2>
        {body}
        <a href="{link}" style="display: inline-block; padding: 10px 20px; background-color: #667eea; color: white; text-decoration: none; border-radius: 4px;">
            {link_text}
        </a>
        <p>The {escape(config.APP_NAME)} Team</p>
    </div>
    """


async def send_email(to: Union[str, List[str]], subject: str, body: str) -> bool:
    """Send one HTML message. Returns False when mail is disabled or the send fails."""
    recipients = [to] if isinstance(to, str) else list(to)
    if not config.MAIL_ENABLED:
        logger.info("Mail disabled; skipping %r to %s", subject, recipients)
        return False

    message = MessageSchema(subject=subject, recipients=recipients, body=body, subtype="html")
    try:
        await fm.send_message(message)
    except Exception:
        logger.exception("Failed to send %r to %s", subject, recipients)
        return False
    logger.info("Sent %r to %s", subject, recipients)
    return True


def welcome_email(user: dict):
    name = escape(user.get("name") or "there")
    if user.get("role") == "seller":
        pitch = "You can now list digital products, set your own prices and track your sales and earnings."
        signoff = "Happy selling!"
    else:
        pitch = "You now have access to digital products from creators around the world, with instant download after purchase."
        signoff = "Happy shopping!"
    subject = f"Welcome to {config.APP_NAME}!"
    body = _layout(
        f"Welcome to {escape(config.APP_NAME)}!",
        [f"Hi {name},", f"Thank you for joining {escape(config.APP_NAME)}.", pitch, signoff],
        f"{config.SITE_URL}/dashboard",
        "Go to Dashboard",
    )
    return subject, body


def purchase_confirmation_email(buyer: dict, product: dict, purchase: dict):
    title = escape(product["title"])
    amount = f"{purchase['amount']:.2f} {purchase['currency']}"
    body = _layout(
        "Thank you for your purchase!",
        [
            f"Hi {escape(buyer.get('name') or 'there')},",
            f"Your payment of {amount} for <strong>{title}</strong> went through.",
            f"Order reference: {purchase['_id']}",
        ],
        f"{config.SITE_URL}/dashboard/purchases/{purchase['_id']}",
        "Download Now",
    )
    return f"Purchase Confirmation - {product['title']}", body


def sale_notification_email(seller: dict, product: dict, purchase: dict):
    title = escape(product["title"])
    body = _layout(
        "You made a sale!",
        [
            f"Hi {escape(seller.get('name') or 'there')},",
            f"<strong>{title}</strong> just sold for {purchase['amount']:.2f} {purchase['currency']}.",
            f"Your earnings: {purchase['seller_earnings']:.2f} {purchase['currency']}.",
        ],
        f"{config.SITE_URL}/seller/dashboard",
        "View Sales Dashboard",
    )
    return f"You made a sale: {product['title']}", body


def queue_email(background_tasks: BackgroundTasks, to: Union[str, List[str]], subject: str, body: str) -> None:
    background_tasks.add_task(send_email, to, subject, body)


def queue_welcome_email(background_tasks: BackgroundTasks, user: dict) -> None:
    subject, body = welcome_email(user)
    queue_email(background_tasks, user["email"], subject, body)


def queue_purchase_emails(background_tasks: BackgroundTasks, db: Database, purchase: dict) -> None:
    """Confirmation to the buyer and a sale notice to the seller for a completed purchase."""
    product = db["product"].find_one({"_id": to_object_id(purchase["product_id"])}, {"title": 1})
    if product is None:
        logger.warning("Purchase %s has no product; skipping emails", purchase["_id"])
        return

    buyer = db["user"].find_one({"_id": to_object_id(purchase["buyer_id"])}, {"email": 1, "name": 1})
    if buyer:
        queue_email(background_tasks, buyer["email"], *purchase_confirmation_email(buyer, product, purchase))

    seller = db["user"].find_one({"_id": to_object_id(purchase["seller_id"])}, {"email": 1, "name": 1})
    if seller:
        queue_email(background_tasks, seller["email"], *sale_notification_email(seller, product, purchase))
