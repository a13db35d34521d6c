import logging
import re
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from catalog import discount_percentage, product_slug
from database import create_document, get_db, get_documents, serialize_doc, to_object_id, update_document
from errors import PermissionDeniedException, ResourceNotFoundException
from schemas import Product as ProductSchema, ProductCategory, ProductCreate, ProductStatus, ProductUpdate
from security import TokenClaims, get_optional_claims, require_seller

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/products", tags=["products"])

SortField = Literal["created_at", "price", "total_sales", "rating"]

SELLER_FIELDS = {"name": 1, "avatar_url": 1, "seller_slug": 1, "is_verified_seller": 1}


def _seller_summaries(db: Database, seller_ids: List[str]) -> dict:
    oids = [oid for oid in (to_object_id(s) for s in set(seller_ids)) if oid]
    sellers = db["user"].find({"_id": {"$in": oids}}, SELLER_FIELDS)
    return {str(s["_id"]): serialize_doc(s) for s in sellers}


def product_out(product: dict, seller: Optional[dict] = None) -> dict:
    out = serialize_doc(product)
    out.pop("rating_version", None)
    out["discount_percentage"] = discount_percentage(product.get("price", 0), product.get("original_price"))
    if seller is not None:
        out["seller"] = seller
    return out


def products_out(db: Database, products: List[dict]) -> List[dict]:
    sellers = _seller_summaries(db, [p["seller_id"] for p in products])
    return [product_out(p, sellers.get(p["seller_id"])) for p in products]


def find_product(db: Database, id_or_slug: str) -> Optional[dict]:
    product = None
    oid = to_object_id(id_or_slug)
    if oid:
        product = db["product"].find_one({"_id": oid})
    if product is None:
        product = db["product"].find_one({"slug": id_or_slug.lower()})
    return product


def load_owned_product(db: Database, product_id: str, claims: TokenClaims) -> dict:
    oid = to_object_id(product_id)
    product = db["product"].find_one({"_id": oid}) if oid else None
    if product is None:
        raise ResourceNotFoundException("Product", product_id)
    if product["seller_id"] != claims.user_id and claims.role != "admin":
        raise PermissionDeniedException("You do not have permission to modify this product")
    return product


def _paginate(db: Database, query: dict, page: int, limit: int, sort_by: str, sort_order: str):
    direction = ASCENDING if sort_order == "asc" else DESCENDING
    total = db["product"].count_documents(query)
    products = get_documents(
        db,
        "product",
        query,
        limit=limit,
        skip=(page - 1) * limit,
        sort=[(sort_by, direction), ("_id", direction)],
    )
    return products, {"page": page, "limit": limit, "total": total, "pages": -(-total // limit)}


@router.get("")
def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    category: Optional[ProductCategory] = None,
    status_filter: Optional[ProductStatus] = Query(None, alias="status"),
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    featured: Optional[bool] = None,
    seller: Optional[str] = None,
    search: Optional[str] = None,
    sort_by: SortField = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    claims: Optional[TokenClaims] = Depends(get_optional_claims),
    db: Database = Depends(get_db),
):
    query = {}
    # Only sellers and admins may browse non-published listings
    if claims is None or claims.role not in ("seller", "admin"):
        query["status"] = "published"
    elif status_filter:
        query["status"] = status_filter

    if category:
        query["category"] = category
    if featured is not None:
        query["featured"] = featured
    if seller:
        query["seller_id"] = seller
    if min_price is not None or max_price is not None:
        query["price"] = {}
        if min_price is not None:
            query["price"]["$gte"] = min_price
        if max_price is not None:
            query["price"]["$lte"] = max_price
    if search:
        pattern = {"$regex": re.escape(search.strip()), "$options": "i"}
        query["$or"] = [{"title": pattern}, {"description": pattern}, {"tags": pattern}]

    products, pagination = _paginate(db, query, page, limit, sort_by, sort_order)
    return {"products": products_out(db, products), "pagination": pagination}


@router.get("/mine")
def list_my_products(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    category: Optional[ProductCategory] = None,
    status_filter: Optional[ProductStatus] = Query(None, alias="status"),
    sort_by: SortField = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    claims: TokenClaims = Depends(require_seller),
    db: Database = Depends(get_db),
):
    query = {"seller_id": claims.user_id}
    if category:
        query["category"] = category
    if status_filter:
        query["status"] = status_filter
    products, pagination = _paginate(db, query, page, limit, sort_by, sort_order)
    return {"products": [product_out(p) for p in products], "pagination": pagination}


@router.get("/{id_or_slug}")
def get_product(
    id_or_slug: str,
    claims: Optional[TokenClaims] = Depends(get_optional_claims),
    db: Database = Depends(get_db),
):
    product = find_product(db, id_or_slug)
    if product is None:
        raise ResourceNotFoundException("Product", id_or_slug)

    if product.get("status") != "published":
        # Unpublished listings are only visible to their seller or an admin
        if claims is None or (claims.user_id != product["seller_id"] and claims.role != "admin"):
            raise ResourceNotFoundException("Product", id_or_slug)

    return {"product": products_out(db, [product])[0]}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_product(
    payload: ProductCreate,
    claims: TokenClaims = Depends(require_seller),
    db: Database = Depends(get_db),
):
    data = payload.model_dump()
    product = ProductSchema(**data, slug=product_slug(db, payload.title), seller_id=claims.user_id, status="draft")
    try:
        product_id = create_document(db, "product", product)
    except DuplicateKeyError:
        # lost a race for the slug; pick the next free one
        product.slug = product_slug(db, payload.title)
        product_id = create_document(db, "product", product)

    logger.info("Seller %s created product %s (%s)", claims.user_id, product_id, product.slug)
    created = db["product"].find_one({"_id": to_object_id(product_id)})
    return {"message": "Product created successfully", "product": products_out(db, [created])[0]}


@router.patch("/{product_id}")
def update_product(
    product_id: str,
    payload: ProductUpdate,
    claims: TokenClaims = Depends(require_seller),
    db: Database = Depends(get_db),
):
    product = load_owned_product(db, product_id, claims)
    changes = payload.model_dump(exclude_unset=True)
    if "featured" in changes and claims.role != "admin":
        raise PermissionDeniedException("Only admins can feature products")
    if not changes:
        return {"message": "Nothing to update", "product": products_out(db, [product])[0]}
    updated = update_document(db, "product", product["_id"], changes)
    return {"message": "Product updated successfully", "product": products_out(db, [updated])[0]}


@router.delete("/{product_id}")
def delete_product(
    product_id: str,
    claims: TokenClaims = Depends(require_seller),
    db: Database = Depends(get_db),
):
    product = load_owned_product(db, product_id, claims)
    if product.get("total_sales", 0) > 0:
        archived = update_document(db, "product", product["_id"], {"status": "archived"})
        return {"message": "Product archived successfully (has existing sales)", "product": product_out(archived)}

    db["product"].delete_one({"_id": product["_id"]})
    db["review"].delete_many({"product_id": str(product["_id"])})
    logger.info("Product %s deleted by %s", product_id, claims.user_id)
    return {"message": "Product deleted successfully"}
