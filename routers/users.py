import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pymongo.database import Database

from catalog import seller_slug
from database import get_db, get_documents, serialize_doc, to_object_id, update_document
from errors import ResourceNotFoundException, ValidationException
from schemas import ProfileUpdate, Role, RoleUpdate
from security import TokenClaims, get_current_user, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])

PUBLIC_PROFILE_FIELDS = (
    "id",
    "name",
    "avatar_url",
    "bio",
    "role",
    "is_verified_seller",
    "seller_slug",
    "website",
    "twitter",
    "instagram",
    "total_sales",
    "created_at",
)


def user_summary(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "email": user["email"],
        "name": user.get("name"),
        "role": user.get("role", "buyer"),
        "avatar_url": user.get("avatar_url"),
        "is_verified_seller": user.get("is_verified_seller", False),
        "is_premium": user.get("is_premium", False),
    }


def user_profile(user: dict) -> dict:
    """Full profile for the account owner or an admin; never includes the hash."""
    profile = serialize_doc(user, exclude=("hashed_password",))
    profile.setdefault("seller_slug", None)
    return profile


def public_profile(user: dict) -> dict:
    profile = user_profile(user)
    return {k: profile.get(k) for k in PUBLIC_PROFILE_FIELDS}


def _load_user(db: Database, user_id: str) -> dict:
    oid = to_object_id(user_id)
    user = db["user"].find_one({"_id": oid}) if oid else None
    if user is None:
        raise ResourceNotFoundException("User", user_id)
    return user


@router.get("/me")
def get_my_profile(current_user: dict = Depends(get_current_user)):
    return {"user": user_profile(current_user)}


@router.patch("/me")
def update_my_profile(
    payload: ProfileUpdate,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        return {"message": "Nothing to update", "user": user_profile(current_user)}
    user = update_document(db, "user", current_user["_id"], changes)
    return {"message": "Profile updated successfully", "user": user_profile(user)}


@router.post("/me/upgrade-to-seller")
def upgrade_to_seller(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    if current_user.get("role") in ("seller", "admin"):
        raise ValidationException("User is already a seller")
    changes = {"role": "seller"}
    if not current_user.get("seller_slug"):
        changes["seller_slug"] = seller_slug(db, current_user.get("name"), current_user["email"])
    user = update_document(db, "user", current_user["_id"], changes)
    logger.info("User %s upgraded to seller", current_user["_id"])
    return {"message": "Successfully upgraded to seller account", "user": user_profile(user)}


@router.get("")
def list_users(
    role: Optional[Role] = None,
    is_premium: Optional[bool] = None,
    is_verified_seller: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    _: TokenClaims = Depends(require_admin),
    db: Database = Depends(get_db),
):
    query = {}
    if role:
        query["role"] = role
    if is_premium is not None:
        query["is_premium"] = is_premium
    if is_verified_seller is not None:
        query["is_verified_seller"] = is_verified_seller

    total = db["user"].count_documents(query)
    users = get_documents(db, "user", query, limit=limit, skip=(page - 1) * limit, sort=[("created_at", -1)])
    return {
        "users": [user_profile(u) for u in users],
        "pagination": {"page": page, "limit": limit, "total": total, "pages": -(-total // limit)},
    }


@router.get("/{id_or_slug}")
def get_user(id_or_slug: str, db: Database = Depends(get_db)):
    user = None
    oid = to_object_id(id_or_slug)
    if oid:
        user = db["user"].find_one({"_id": oid})
    if user is None:
        user = db["user"].find_one({"seller_slug": id_or_slug.lower()})
    if user is None or not user.get("is_active", True):
        raise ResourceNotFoundException("User", id_or_slug)
    return {"user": public_profile(user)}


@router.patch("/{user_id}/role")
def update_user_role(
    user_id: str,
    payload: RoleUpdate,
    _: TokenClaims = Depends(require_admin),
    db: Database = Depends(get_db),
):
    user = _load_user(db, user_id)
    changes = {"role": payload.role}
    if payload.role == "seller" and not user.get("seller_slug"):
        changes["seller_slug"] = seller_slug(db, user.get("name"), user["email"])
    user = update_document(db, "user", user["_id"], changes)
    return {"message": "User role updated successfully", "user": user_profile(user)}


@router.post("/{user_id}/verify-seller")
def verify_seller(user_id: str, _: TokenClaims = Depends(require_admin), db: Database = Depends(get_db)):
    user = _load_user(db, user_id)
    if user.get("role") not in ("seller", "admin"):
        raise ValidationException("User is not a seller")
    user = update_document(db, "user", user["_id"], {"is_verified_seller": True})
    return {"message": "Seller verified successfully", "user": user_profile(user)}


@router.delete("/{user_id}")
def deactivate_user(user_id: str, claims: TokenClaims = Depends(require_admin), db: Database = Depends(get_db)):
    user = _load_user(db, user_id)
    if claims.user_id == str(user["_id"]):
        raise ValidationException("Cannot delete your own account")
    update_document(db, "user", user["_id"], {"is_active": False})
    logger.info("User %s deactivated by %s", user_id, claims.user_id)
    return {"message": "User deactivated successfully"}
