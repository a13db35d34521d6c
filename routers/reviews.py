"""
Review endpoints.

Every mutation (create, edit, approve, flag, delete) is followed by
``recalculate_product_rating`` so the product's denormalized rating and
review_count always reflect its approved reviews.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from catalog import recalculate_product_rating
from database import create_document, get_db, get_documents, serialize_doc, to_object_id, update_document
from errors import PermissionDeniedException, ResourceNotFoundException, ValidationException
from schemas import Review as ReviewSchema, ReviewCreate, ReviewUpdate
from security import TokenClaims, get_current_claims, get_optional_claims, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(tags=["reviews"])


def _load_product(db: Database, product_id: str) -> dict:
    oid = to_object_id(product_id)
    product = db["product"].find_one({"_id": oid}) if oid else None
    if product is None:
        raise ResourceNotFoundException("Product", product_id)
    return product


def _load_review(db: Database, review_id: str) -> dict:
    oid = to_object_id(review_id)
    review = db["review"].find_one({"_id": oid}) if oid else None
    if review is None:
        raise ResourceNotFoundException("Review", review_id)
    return review


def _review_response(db: Database, review: dict, message: Optional[str] = None) -> dict:
    aggregate = recalculate_product_rating(db, review["product_id"])
    body = {"review": serialize_doc(review), "product_rating": aggregate}
    if message:
        body["message"] = message
    return body


@router.get("/api/products/{product_id}/reviews")
def list_reviews(
    product_id: str,
    include_pending: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    claims: Optional[TokenClaims] = Depends(get_optional_claims),
    db: Database = Depends(get_db),
):
    product = _load_product(db, product_id)
    query = {"product_id": str(product["_id"])}
    if not (include_pending and claims is not None and claims.role == "admin"):
        query["is_approved"] = True

    total = db["review"].count_documents(query)
    reviews = get_documents(db, "review", query, limit=limit, skip=(page - 1) * limit, sort=[("created_at", -1)])
    return {
        "reviews": [serialize_doc(r) for r in reviews],
        "rating": product.get("rating", 0),
        "review_count": product.get("review_count", 0),
        "pagination": {"page": page, "limit": limit, "total": total, "pages": -(-total // limit)},
    }


@router.post("/api/products/{product_id}/reviews", status_code=status.HTTP_201_CREATED)
def create_review(
    product_id: str,
    payload: ReviewCreate,
    claims: TokenClaims = Depends(get_current_claims),
    db: Database = Depends(get_db),
):
    product = _load_product(db, product_id)
    if product["seller_id"] == claims.user_id:
        raise ValidationException("You cannot review your own product")

    review = ReviewSchema(
        user_id=claims.user_id,
        product_id=str(product["_id"]),
        rating=payload.rating,
        comment=payload.comment,
    )
    try:
        review_id = create_document(db, "review", review)
    except DuplicateKeyError:
        raise ValidationException("You have already reviewed this product")

    logger.info("User %s reviewed product %s", claims.user_id, product_id)
    created = db["review"].find_one({"_id": to_object_id(review_id)})
    return _review_response(db, created, "Review submitted successfully")


@router.patch("/api/reviews/{review_id}")
def update_review(
    review_id: str,
    payload: ReviewUpdate,
    claims: TokenClaims = Depends(get_current_claims),
    db: Database = Depends(get_db),
):
    review = _load_review(db, review_id)
    if review["user_id"] != claims.user_id:
        raise PermissionDeniedException("You can only edit your own reviews")
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        return {"review": serialize_doc(review)}
    # edited reviews go back through moderation
    changes["is_approved"] = False
    updated = update_document(db, "review", review["_id"], changes)
    return _review_response(db, updated, "Review updated successfully")


@router.post("/api/reviews/{review_id}/approve")
def approve_review(review_id: str, _: TokenClaims = Depends(require_admin), db: Database = Depends(get_db)):
    review = _load_review(db, review_id)
    updated = update_document(db, "review", review["_id"], {"is_approved": True, "is_flagged": False})
    return _review_response(db, updated, "Review approved")


@router.post("/api/reviews/{review_id}/flag")
def flag_review(review_id: str, _: TokenClaims = Depends(get_current_claims), db: Database = Depends(get_db)):
    review = _load_review(db, review_id)
    updated = update_document(db, "review", review["_id"], {"is_flagged": True})
    return _review_response(db, updated, "Review flagged for moderation")


@router.delete("/api/reviews/{review_id}")
def delete_review(review_id: str, claims: TokenClaims = Depends(get_current_claims), db: Database = Depends(get_db)):
    review = _load_review(db, review_id)
    if review["user_id"] != claims.user_id and claims.role != "admin":
        raise PermissionDeniedException("You can only delete your own reviews")
    db["review"].delete_one({"_id": review["_id"]})
    aggregate = recalculate_product_rating(db, review["product_id"])
    logger.info("Review %s deleted by %s", review_id, claims.user_id)
    return {"message": "Review deleted successfully", "product_rating": aggregate}
