"""
Purchases: checkout, payment webhook and verification, history, refunds and file downloads.

A purchase is created ``pending`` with an external payment session id. The payment
provider reports the outcome through the signed webhook, or the buyer asks for a
server-side check against the provider after checkout. Either way the
pending -> completed transition is a compare-and-set on ``status`` so counters are
bumped and emails are sent exactly once.
"""

import hashlib
import hmac
import json
import logging
import secrets
from typing import Optional

import httpx
from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from fastapi.concurrency import run_in_threadpool
from pymongo import ReturnDocument
from pymongo.database import Database

import config
import notifications
import storage
from database import create_document, get_db, get_documents, serialize_doc, to_object_id, utcnow
from errors import (
    AppException,
    AuthenticationException,
    PermissionDeniedException,
    ResourceNotFoundException,
    ValidationException,
)
from schemas import Purchase as PurchaseSchema, PurchaseCreate, PurchaseStatus, RefundPayload
from security import TokenClaims, get_current_claims, require_admin, require_seller

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/purchases", tags=["purchases"])

PRODUCT_SUMMARY_FIELDS = {"title": 1, "slug": 1, "cover_image": 1, "category": 1}

# None uses the network; tests install an httpx.MockTransport
provider_transport: Optional[httpx.AsyncBaseTransport] = None


def split_amount(amount: float, fee_percentage: Optional[float] = None):
    """Return (platform_fee, seller_earnings), rounded to cents."""
    pct = config.PLATFORM_FEE_PERCENTAGE if fee_percentage is None else fee_percentage
    platform_fee = round(amount * pct / 100, 2)
    return platform_fee, round(amount - platform_fee, 2)


def sign_webhook_body(body: bytes, secret: Optional[str] = None) -> str:
    secret = config.PAYMENT_WEBHOOK_SECRET if secret is None else secret
    return hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()


def purchase_out(db: Database, purchase: dict, with_product: bool = True) -> dict:
    out = serialize_doc(purchase)
    if with_product:
        oid = to_object_id(purchase["product_id"])
        product = db["product"].find_one({"_id": oid}, PRODUCT_SUMMARY_FIELDS) if oid else None
        out["product"] = serialize_doc(product) if product else None
    return out


def complete_purchase(
    db: Database,
    payment_session_id: str,
    transaction_id: Optional[str] = None,
    background_tasks: Optional[BackgroundTasks] = None,
) -> Optional[dict]:
    """Move a pending purchase to completed and bump the sales counters.

    Returns None when the purchase is unknown or no longer pending. When
    ``background_tasks`` is given the buyer confirmation and seller sale notice
    are queued on it.
    """
    purchase = db["purchase"].find_one_and_update(
        {"payment_session_id": payment_session_id, "status": "pending"},
        {"$set": {"status": "completed", "transaction_id": transaction_id, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if purchase is None:
        return None

    db["product"].update_one(
        {"_id": to_object_id(purchase["product_id"])},
        {"$inc": {"total_sales": 1, "total_revenue": purchase["amount"]}},
    )
    db["user"].update_one(
        {"_id": to_object_id(purchase["seller_id"])},
        {"$inc": {"total_earnings": purchase["seller_earnings"], "total_sales": 1}},
    )
    logger.info("Purchase %s completed (%s %s)", purchase["_id"], purchase["amount"], purchase["currency"])
    if background_tasks is not None:
        notifications.queue_purchase_emails(background_tasks, db, purchase)
    return purchase


def fail_purchase(db: Database, payment_session_id: str) -> Optional[dict]:
    return db["purchase"].find_one_and_update(
        {"payment_session_id": payment_session_id, "status": "pending"},
        {"$set": {"status": "failed", "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )


def apply_payment_event(
    db: Database, event: dict, background_tasks: Optional[BackgroundTasks] = None
) -> Optional[dict]:
    if not isinstance(event, dict):
        raise ValidationException("Invalid event")
    kind = event.get("event")
    data = event.get("data") or {}
    if not isinstance(data, dict):
        raise ValidationException("Invalid event")
    session_id = data.get("payment_session_id")
    if not session_id or not isinstance(session_id, str):
        raise ValidationException("Missing payment_session_id")
    if kind == "payment.succeeded":
        return complete_purchase(db, session_id, data.get("transaction_id"), background_tasks)
    if kind == "payment.failed":
        return fail_purchase(db, session_id)
    logger.info("Ignoring payment event %s", kind)
    return None


async def fetch_payment_status(payment_session_id: str) -> dict:
    """Ask the payment provider for a session's outcome.

    The provider answers ``{"status": "succeeded" | "failed" | "pending", "transaction_id": ...}``.
    """
    try:
        async with httpx.AsyncClient(
            base_url=config.PAYMENT_PROVIDER_URL,
            transport=provider_transport,
            timeout=config.PAYMENT_PROVIDER_TIMEOUT,
        ) as client:
            res = await client.get(
                f"/sessions/{payment_session_id}",
                headers={"Authorization": f"Bearer {config.PAYMENT_PROVIDER_SECRET_KEY}"},
            )
            res.raise_for_status()
            payment = res.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.error("Payment verification for %s failed: %s", payment_session_id, exc)
        raise AppException(status_code=502, error_code="payment_provider_error", message="Payment verification failed")
    if not isinstance(payment, dict):
        logger.error("Unexpected payment provider response for %s: %r", payment_session_id, payment)
        raise AppException(status_code=502, error_code="payment_provider_error", message="Payment verification failed")
    return payment


@router.post("", status_code=status.HTTP_201_CREATED)
def create_purchase(
    payload: PurchaseCreate,
    claims: TokenClaims = Depends(get_current_claims),
    db: Database = Depends(get_db),
):
    oid = to_object_id(payload.product_id)
    product = db["product"].find_one({"_id": oid}) if oid else None
    if product is None:
        raise ResourceNotFoundException("Product", payload.product_id)
    if product.get("status") != "published":
        raise ValidationException("Product is not available for purchase")
    if product["seller_id"] == claims.user_id:
        raise ValidationException("You cannot buy your own product")

    product_id = str(product["_id"])
    owned = db["purchase"].find_one({"buyer_id": claims.user_id, "product_id": product_id, "status": "completed"})
    if owned:
        raise ValidationException("You already own this product")

    amount = float(product["price"])
    platform_fee, seller_earnings = split_amount(amount)
    purchase = PurchaseSchema(
        buyer_id=claims.user_id,
        product_id=product_id,
        seller_id=product["seller_id"],
        amount=amount,
        currency=product.get("currency", "USD"),
        platform_fee=platform_fee,
        seller_earnings=seller_earnings,
        payment_method=payload.payment_method,
        payment_session_id=f"cs_{secrets.token_hex(16)}",
        download_token=secrets.token_urlsafe(32),
    )
    purchase_id = create_document(db, "purchase", purchase)
    created = db["purchase"].find_one({"_id": to_object_id(purchase_id)})
    logger.info("Purchase %s initialized for product %s by %s", purchase_id, product_id, claims.user_id)
    return {
        "message": "Purchase initialized successfully",
        "purchase": purchase_out(db, created),
        "payment_session_id": purchase.payment_session_id,
    }


@router.post("/webhook")
async def payment_webhook(request: Request, background_tasks: BackgroundTasks, db: Database = Depends(get_db)):
    body = await request.body()
    signature = request.headers.get("X-Payment-Signature", "")
    if not hmac.compare_digest(sign_webhook_body(body), signature):
        logger.warning("Invalid webhook signature")
        raise ValidationException("Invalid signature")
    try:
        event = json.loads(body)
    except ValueError:
        raise ValidationException("Invalid JSON body")

    purchase = await run_in_threadpool(apply_payment_event, db, event, background_tasks)
    return {"received": True, "purchase_id": str(purchase["_id"]) if purchase else None}


@router.get("/verify/{payment_session_id}")
async def verify_purchase(
    payment_session_id: str,
    background_tasks: BackgroundTasks,
    claims: TokenClaims = Depends(get_current_claims),
    db: Database = Depends(get_db),
):
    purchase = await run_in_threadpool(db["purchase"].find_one, {"payment_session_id": payment_session_id})
    if purchase is None:
        raise ResourceNotFoundException("Purchase")
    if purchase["buyer_id"] != claims.user_id:
        raise PermissionDeniedException("Unauthorized")

    if purchase["status"] != "pending":
        message = f"Purchase already {purchase['status']}"
    else:
        payment = await fetch_payment_status(payment_session_id)
        outcome = payment.get("status")
        if outcome == "succeeded":
            await run_in_threadpool(
                complete_purchase, db, payment_session_id, payment.get("transaction_id"), background_tasks
            )
            message = "Purchase completed successfully"
        elif outcome == "failed":
            await run_in_threadpool(fail_purchase, db, payment_session_id)
            message = "Payment failed"
        else:
            message = "Payment is still pending"
        # the webhook may have settled it first; report whatever is stored now
        purchase = await run_in_threadpool(db["purchase"].find_one, {"_id": purchase["_id"]})

    return {"message": message, "purchase": await run_in_threadpool(purchase_out, db, purchase)}


@router.get("")
def my_purchases(
    status_filter: Optional[PurchaseStatus] = None,
    claims: TokenClaims = Depends(get_current_claims),
    db: Database = Depends(get_db),
):
    query = {"buyer_id": claims.user_id}
    if status_filter:
        query["status"] = status_filter
    purchases = get_documents(db, "purchase", query, sort=[("created_at", -1)])
    return {"purchases": [purchase_out(db, p) for p in purchases], "total": len(purchases)}


@router.get("/sales")
def my_sales(claims: TokenClaims = Depends(require_seller), db: Database = Depends(get_db)):
    sales = get_documents(
        db, "purchase", {"seller_id": claims.user_id, "status": "completed"}, sort=[("created_at", -1)]
    )
    stats = {
        "total_sales": len(sales),
        "total_revenue": round(sum(s["amount"] for s in sales), 2),
        "total_earnings": round(sum(s["seller_earnings"] for s in sales), 2),
        "currency": sales[0]["currency"] if sales else "USD",
    }
    return {"sales": [purchase_out(db, s) for s in sales], "stats": stats}


@router.get("/download/{download_token}")
def download_files(
    download_token: str,
    claims: TokenClaims = Depends(get_current_claims),
    db: Database = Depends(get_db),
):
    purchase = db["purchase"].find_one({"download_token": download_token})
    if purchase is None:
        raise ResourceNotFoundException("Purchase")
    if purchase["buyer_id"] != claims.user_id:
        raise AuthenticationException(error_code="not_purchase_owner", message="This download link belongs to another account")
    if purchase["status"] != "completed":
        raise ValidationException("Purchase is not completed")

    product = db["product"].find_one({"_id": to_object_id(purchase["product_id"])})
    if product is None:
        raise ResourceNotFoundException("Product", purchase["product_id"])

    updated = db["purchase"].find_one_and_update(
        {"_id": purchase["_id"]},
        {"$inc": {"download_count": 1}, "$set": {"last_download_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )

    files = []
    for f in product.get("files", []):
        entry = {"name": f["name"], "size": f["size"], "type": f["type"]}
        if f.get("key"):
            entry.update(storage.sign_download(f["key"]))
        else:
            entry["download_url"] = f["url"]
        files.append(entry)

    return {
        "files": files,
        "download_count": updated["download_count"],
        "last_download_at": serialize_doc(updated)["last_download_at"],
    }


@router.get("/{purchase_id}")
def get_purchase(purchase_id: str, claims: TokenClaims = Depends(get_current_claims), db: Database = Depends(get_db)):
    oid = to_object_id(purchase_id)
    purchase = db["purchase"].find_one({"_id": oid}) if oid else None
    if purchase is None:
        raise ResourceNotFoundException("Purchase", purchase_id)
    if purchase["buyer_id"] != claims.user_id and claims.role != "admin":
        raise PermissionDeniedException("Unauthorized")
    return {"purchase": purchase_out(db, purchase)}


@router.post("/{purchase_id}/refund")
def refund_purchase(
    purchase_id: str,
    payload: RefundPayload,
    claims: TokenClaims = Depends(require_admin),
    db: Database = Depends(get_db),
):
    oid = to_object_id(purchase_id)
    if oid is None or db["purchase"].find_one({"_id": oid}, {"_id": 1}) is None:
        raise ResourceNotFoundException("Purchase", purchase_id)

    purchase = db["purchase"].find_one_and_update(
        {"_id": oid, "status": "completed"},
        {"$set": {"status": "refunded", "refunded_at": utcnow(), "refund_reason": payload.reason, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if purchase is None:
        raise AppException(status_code=400, error_code="not_refundable", message="Only completed purchases can be refunded")

    db["product"].update_one(
        {"_id": to_object_id(purchase["product_id"])},
        {"$inc": {"total_sales": -1, "total_revenue": -purchase["amount"]}},
    )
    db["user"].update_one(
        {"_id": to_object_id(purchase["seller_id"])},
        {"$inc": {"total_earnings": -purchase["seller_earnings"], "total_sales": -1}},
    )
    logger.info("Purchase %s refunded by %s", purchase_id, claims.user_id)
    return {"message": "Purchase refunded", "purchase": purchase_out(db, purchase)}
