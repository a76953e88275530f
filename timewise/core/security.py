"""Security utilities: password hashing, secret encryption, and session tokens."""

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

from cryptography.fernet import Fernet, InvalidToken
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from timewise.core.config import get_settings
from timewise.core.errors import InvalidTokenError, TokenExpiredError

settings = get_settings()

# ── Password hashing (Argon2) ────────────────────────────────

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


# ── One-time codes and reset tokens (SHA-256, deterministic for lookup) ──

def generate_otp() -> str:
    """Six random digits, zero padded."""
    return f"{secrets.randbelow(1_000_000):06d}"


def hash_token(value: str) -> str:
    return hashlib.sha256(value.encode()).hexdigest()


def hash_otp(code: str) -> str:
    return hash_token(code)


def generate_reset_token() -> str:
    return secrets.token_hex(32)


def generate_temporary_password() -> str:
    return secrets.token_urlsafe(12)


def otp_matches(code: str, stored_hash: str) -> bool:
    return hmac.compare_digest(hash_otp(code), stored_hash)


# ── Field-level encryption (Fernet) ──────────────────────────

def _get_fernet() -> Fernet:
    if not settings.encryption_key:
        raise RuntimeError("ENCRYPTION_KEY is not configured")
    return Fernet(settings.encryption_key.encode())


def encrypt_value(plaintext: str) -> str:
    """Encrypt a string value. Returns base64 ciphertext."""
    return _get_fernet().encrypt(plaintext.encode()).decode()


def decrypt_value(ciphertext: str) -> str:
    """Decrypt a Fernet-encrypted value."""
    return _get_fernet().decrypt(ciphertext.encode()).decode()


def secret_matches(candidate: str, ciphertext: str | None) -> bool:
    """Constant-time check of ``candidate`` against an encrypted secret."""
    if not ciphertext:
        return False
    try:
        stored = decrypt_value(ciphertext)
    except InvalidToken:
        return False
    return hmac.compare_digest(candidate.encode(), stored.encode())


# ── JWT ───────────────────────────────────────────────────────

def extract_token(authorization: str | None) -> str | None:
    """Accept both ``Bearer <token>`` and a bare token."""
    if not authorization:
        return None
    value = authorization.strip()
    if value[:7].lower() == "bearer ":
        value = value[7:].strip()
    return value or None


def create_access_token(
    user_id: str,
    tenant_id: str | None,
    role: str,
    email: str,
    expires_delta: timedelta | None = None,
) -> str:
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    payload = {
        "userId": user_id,
        "tenantId": tenant_id,
        "role": role,
        "email": email,
        "iat": now,
        "exp": expire,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def verify_access_token(token: str) -> dict[str, Any]:
    """Decode and verify a session token.

    Raises ``TokenExpiredError`` for a well-formed but expired token and
    ``InvalidTokenError`` for everything else, so clients can tell a silent
    re-login apart from a forged or corrupted token.
    """
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError as exc:
        raise TokenExpiredError("Token has expired. Please login again.") from exc
    except JWTError as exc:
        raise InvalidTokenError("Invalid token") from exc

    if not payload.get("userId") or not payload.get("role"):
        raise InvalidTokenError("Invalid token payload")
    if payload["role"] != "super_admin" and not payload.get("tenantId"):
        raise InvalidTokenError("Invalid token payload")
    return payload
