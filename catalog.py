"""
Catalog rules shared by the routers: slug generation and the product rating aggregate.
"""

import logging
import math
import re
from typing import Optional

from bson import ObjectId
from pymongo.database import Database

from database import utcnow

logger = logging.getLogger(__name__)

MAX_RATING_ATTEMPTS = 5


def slugify(text: str) -> str:
    slug = (text or "").lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug


def unique_slug(db: Database, collection: str, field: str, text: str, fallback: str) -> str:
    """Slug of ``text`` unique within ``collection.field``: base, base-1, base-2, ..."""
    base = slugify(text) or fallback
    slug = base
    counter = 1
    while db[collection].find_one({field: slug}, {"_id": 1}) is not None:
        slug = f"{base}-{counter}"
        counter += 1
    return slug


def product_slug(db: Database, title: str) -> str:
    return unique_slug(db, "product", "slug", title, "product")


def seller_slug(db: Database, name: Optional[str], email: str) -> str:
    return unique_slug(db, "user", "seller_slug", name or email.split("@")[0], "seller")


def discount_percentage(price: float, original_price: Optional[float]) -> int:
    if original_price and original_price > price:
        return int(math.floor((original_price - price) / original_price * 100 + 0.5))
    return 0


def round_rating(value: float) -> float:
    # half-up, one decimal
    return math.floor(value * 10 + 0.5) / 10


def approved_rating_stats(db: Database, product_id: str):
    pipeline = [
        {"$match": {"product_id": product_id, "is_approved": True}},
        {"$group": {"_id": "$product_id", "avg_rating": {"$avg": "$rating"}, "count": {"$sum": 1}}},
    ]
    stats = list(db["review"].aggregate(pipeline))
    if not stats:
        return 0.0, 0
    return round_rating(stats[0]["avg_rating"]), int(stats[0]["count"])


def recalculate_product_rating(db: Database, product_id: str) -> Optional[dict]:
    """Recompute a product's rating/review_count from its approved reviews.

    The write is a compare-and-set on ``rating_version``; if another writer bumped
    the version between our read and write, the stats are recomputed and retried.
    Returns the new ``{"rating", "review_count"}`` or None if the product is gone.
    """
    oid = ObjectId(product_id)
    for attempt in range(1, MAX_RATING_ATTEMPTS + 1):
        product = db["product"].find_one({"_id": oid}, {"rating_version": 1})
        if product is None:
            logger.warning("Rating recalculation skipped, product %s missing", product_id)
            return None
        version = product.get("rating_version", 0)
        rating, count = approved_rating_stats(db, product_id)
        version_filter = {"rating_version": version} if "rating_version" in product else {"rating_version": {"$exists": False}}
        result = db["product"].update_one(
            {"_id": oid, **version_filter},
            {
                "$set": {"rating": rating, "review_count": count, "updated_at": utcnow()},
                "$inc": {"rating_version": 1},
            },
        )
        if result.matched_count == 1:
            logger.debug("Product %s rating=%s count=%s", product_id, rating, count)
            return {"rating": rating, "review_count": count}
        logger.info("Rating update conflict on product %s (attempt %s)", product_id, attempt)
    raise RuntimeError(f"Could not update rating for product {product_id}")
