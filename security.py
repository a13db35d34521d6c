"""
Passwords, access tokens and the FastAPI dependencies that enforce them.

Tokens are self-contained HS256 JWTs carrying ``user_id``, ``email`` and ``role``.
There is no server-side session store and no revocation list: a token stays valid
until its ``exp``.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import Depends, Request
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database

import config
from database import get_db, to_object_id
from errors import (
    AccountSuspendedException,
    AuthenticationException,
    InvalidTokenException,
    PermissionDeniedException,
    ResourceNotFoundException,
    TokenExpiredException,
)
from logging_config import bind_request_context

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=config.BCRYPT_ROUNDS)

MIN_PASSWORD_LENGTH = 8


# Passwords


@dataclass
class PasswordStrength:
    is_valid: bool
    errors: List[str] = field(default_factory=list)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not plain_password or not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # unrecognized hash format
        return False


def validate_password_strength(password: str) -> PasswordStrength:
    errors = []
    if len(password or "") < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if not re.search(r"[a-z]", password or ""):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"[A-Z]", password or ""):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"\d", password or ""):
        errors.append("Password must contain at least one number")
    return PasswordStrength(is_valid=not errors, errors=errors)


# Tokens


@dataclass(frozen=True)
class TokenClaims:
    user_id: str
    email: str
    role: str
    expires_at: Optional[datetime] = None


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = {k: data[k] for k in ("user_id", "email", "role")}
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta if expires_delta is not None else timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"iat": now, "exp": expire})
    return jwt.encode(to_encode, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> TokenClaims:
    """Verify signature and expiry; raise a 401 exception on any failure."""
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise TokenExpiredException()
    except JWTError as exc:
        logger.info("Token verification failed: %s", exc)
        raise InvalidTokenException()

    user_id = payload.get("user_id")
    email = payload.get("email")
    role = payload.get("role")
    if not user_id or not email or not role:
        raise InvalidTokenException("Invalid token payload")
    exp = payload.get("exp")
    expires_at = datetime.fromtimestamp(exp, tz=timezone.utc) if exp else None
    return TokenClaims(user_id=str(user_id), email=email, role=role, expires_at=expires_at)


def extract_bearer_token(auth_header: Optional[str]) -> Optional[str]:
    if not auth_header:
        return None
    parts = auth_header.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        return None
    return parts[1]


def issue_token_for(user: dict) -> str:
    return create_access_token({"user_id": str(user["_id"]), "email": user["email"], "role": user["role"]})


# Dependencies


def _bind_user(request: Request, claims: TokenClaims) -> None:
    # callers must be async dependencies so the binding lands in the request task
    request.state.user_id = claims.user_id
    bind_request_context(user_id=claims.user_id)


async def get_current_claims(request: Request) -> TokenClaims:
    token = extract_bearer_token(request.headers.get("Authorization"))
    if not token:
        raise AuthenticationException(error_code="missing_token", message="No token provided")
    claims = decode_access_token(token)
    _bind_user(request, claims)
    return claims


async def get_optional_claims(request: Request) -> Optional[TokenClaims]:
    token = extract_bearer_token(request.headers.get("Authorization"))
    if not token:
        return None
    try:
        claims = decode_access_token(token)
    except AuthenticationException:
        return None
    _bind_user(request, claims)
    return claims


def get_current_user(
    claims: TokenClaims = Depends(get_current_claims),
    db: Database = Depends(get_db),
) -> dict:
    user_oid = to_object_id(claims.user_id)
    user = db["user"].find_one({"_id": user_oid}) if user_oid else None
    if user is None:
        raise ResourceNotFoundException("User")
    if not user.get("is_active", True):
        raise AccountSuspendedException()
    return user


def require_roles(*roles: str):
    """Dependency factory: the token's role must be one of ``roles``."""

    def checker(claims: TokenClaims = Depends(get_current_claims)) -> TokenClaims:
        if claims.role not in roles:
            if roles == ("admin",):
                raise PermissionDeniedException("Admin access required")
            raise PermissionDeniedException(f"{' or '.join(r.capitalize() for r in roles)} access required")
        return claims

    return checker


require_seller = require_roles("seller", "admin")
require_admin = require_roles("admin")
