import logging

from fastapi import APIRouter, BackgroundTasks, Depends, status
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import notifications
from catalog import seller_slug
from database import create_document, get_db, to_object_id
from errors import AccountSuspendedException, InvalidCredentialsException, ValidationException
from routers.users import user_profile, user_summary
from schemas import LoginPayload, RegisterPayload, User as UserSchema
from security import get_current_user, hash_password, issue_token_for, validate_password_strength, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def get_user_by_email(db: Database, email: str):
    return db["user"].find_one({"email": email.strip().lower()})


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterPayload, background_tasks: BackgroundTasks, db: Database = Depends(get_db)):
    strength = validate_password_strength(payload.password)
    if not strength.is_valid:
        raise ValidationException("Password is not strong enough", strength.errors)

    email = payload.email.strip().lower()
    if get_user_by_email(db, email):
        raise ValidationException("User already exists with this email")

    user_data = UserSchema(
        email=email,
        name=payload.name,
        hashed_password=hash_password(payload.password),
        role=payload.role,
    ).model_dump()
    if payload.role == "seller":
        user_data["seller_slug"] = seller_slug(db, payload.name, email)
    else:
        # absent rather than null so the sparse unique index ignores it
        user_data.pop("seller_slug")

    try:
        user_id = create_document(db, "user", user_data)
    except DuplicateKeyError:
        raise ValidationException("User already exists with this email")

    created = db["user"].find_one({"_id": to_object_id(user_id)})
    logger.info("Registered user %s as %s", user_id, payload.role)
    notifications.queue_welcome_email(background_tasks, created)
    return {
        "message": "User registered successfully",
        "user": user_summary(created),
        "token": issue_token_for(created),
    }


@router.post("/login")
def login(payload: LoginPayload, db: Database = Depends(get_db)):
    user = get_user_by_email(db, payload.email)
    if not user:
        raise InvalidCredentialsException()
    if not user.get("hashed_password"):
        raise InvalidCredentialsException("This account uses OAuth. Please login with Google or GitHub")
    if not verify_password(payload.password, user["hashed_password"]):
        raise InvalidCredentialsException()
    if not user.get("is_active", True):
        raise AccountSuspendedException()

    logger.info("User %s logged in", user["_id"])
    return {
        "message": "Login successful",
        "user": user_summary(user),
        "token": issue_token_for(user),
    }


@router.get("/me")
def me(current_user: dict = Depends(get_current_user)):
    return {"user": user_profile(current_user)}
