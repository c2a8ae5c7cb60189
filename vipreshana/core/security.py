"""Security utilities for password hashing and one-time code digests."""

from __future__ import annotations

import hashlib
import hmac
import secrets

from passlib.context import CryptContext

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    """Hash a plaintext password using bcrypt."""

    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plaintext password against a stored hash."""

    return pwd_context.verify(plain_password, hashed_password)


def generate_numeric_code(length: int) -> str:
    """Return a uniformly random string of ``length`` decimal digits."""

    return "".join(str(secrets.randbelow(10)) for _ in range(length))


def digest_code(secret_key: str, phone: str, code: str) -> str:
    """Digest a one-time code bound to the phone it was issued for."""

    message = f"{phone}:{code}".encode("utf-8")
    return hmac.new(secret_key.encode("utf-8"), message, hashlib.sha256).hexdigest()


def code_matches(secret_key: str, phone: str, code: str, expected_digest: str) -> bool:
    return hmac.compare_digest(digest_code(secret_key, phone, code), expected_digest)
