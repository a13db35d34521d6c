"""Password hashing and access token tests."""

from datetime import timedelta

import pytest
from jose import jwt

import config
from errors import InvalidTokenException, TokenExpiredException
from security import (
    create_access_token,
    decode_access_token,
    extract_bearer_token,
    hash_password,
    validate_password_strength,
    verify_password,
)

CLAIMS = {"user_id": "65f000000000000000000001", "email": "a@example.com", "role": "seller"}


def test_hash_and_verify_password():
    hashed = hash_password("StrongPass123")
    assert hashed != "StrongPass123"
    assert hashed.startswith("$2")
    assert verify_password("StrongPass123", hashed)
    assert not verify_password("WrongPass123", hashed)


def test_hashes_are_salted():
    assert hash_password("StrongPass123") != hash_password("StrongPass123")


@pytest.mark.parametrize("hashed", [None, "", "not-a-bcrypt-hash"])
def test_verify_password_rejects_missing_or_malformed_hash(hashed):
    assert verify_password("StrongPass123", hashed) is False


def test_password_strength_reports_every_missing_rule():
    result = validate_password_strength("short")
    assert not result.is_valid
    assert len(result.errors) == 3  # length, uppercase, digit

    assert validate_password_strength("StrongPass123").is_valid


def test_token_round_trip_keeps_only_identity_claims():
    token = create_access_token({**CLAIMS, "hashed_password": "leak"})
    claims = decode_access_token(token)
    assert claims.user_id == CLAIMS["user_id"]
    assert claims.email == CLAIMS["email"]
    assert claims.role == "seller"
    assert claims.expires_at is not None

    raw = jwt.get_unverified_claims(token)
    assert set(raw) == {"user_id", "email", "role", "iat", "exp"}


def test_expired_token_is_rejected():
    token = create_access_token(CLAIMS, expires_delta=timedelta(seconds=-5))
    with pytest.raises(TokenExpiredException) as exc:
        decode_access_token(token)
    assert exc.value.status_code == 401


def test_token_signed_with_other_secret_is_rejected():
    token = jwt.encode(CLAIMS, "another-secret", algorithm=config.JWT_ALGORITHM)
    with pytest.raises(InvalidTokenException):
        decode_access_token(token)


def test_token_missing_claims_is_rejected():
    token = jwt.encode({"user_id": "x"}, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)
    with pytest.raises(InvalidTokenException):
        decode_access_token(token)


@pytest.mark.parametrize(
    "header, expected",
    [
        ("Bearer abc", "abc"),
        ("bearer abc", None),
        ("Bearer", None),
        ("Token abc", None),
        (None, None),
    ],
)
def test_extract_bearer_token(header, expected):
    assert extract_bearer_token(header) == expected
