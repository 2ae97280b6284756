"""Security utilities - JWT, password hashing, token fingerprints"""

import hashlib
import re
import secrets
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any, Dict, List, Optional

import bcrypt
from jose import jwt

from app.config import settings
from app.core.exceptions import PasswordHashingError
from app.utils.datetime_utils import utc_now

PASSWORD_MIN_LENGTH = 8
# bcrypt ignores (or, in recent releases, rejects) input beyond 72 bytes
PASSWORD_MAX_BYTES = 72
PASSWORD_SPECIAL_CHARS = "@$!%*?&#"

RESET_SECRET_BYTES = 32


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash

    bcrypt.checkpw compares digests in constant time.

    Args:
        plain_password: Plain text password
        hashed_password: Hashed password

    Returns:
        bool: True if password matches
    """
    try:
        return bcrypt.checkpw(
            plain_password.encode('utf-8'),
            hashed_password.encode('utf-8')
        )
    except ValueError:
        # Malformed stored hash or over-long candidate: treat as a mismatch
        return False


def get_password_hash(password: str, rounds: Optional[int] = None) -> str:
    """
    Hash a password using bcrypt

    Args:
        password: Plain text password
        rounds: bcrypt work factor, defaults to settings.BCRYPT_ROUNDS

    Returns:
        str: Hashed password

    Raises:
        PasswordHashingError: If the hash cannot be computed
    """
    try:
        return bcrypt.hashpw(
            password.encode('utf-8'),
            bcrypt.gensalt(rounds=rounds or settings.BCRYPT_ROUNDS)
        ).decode('utf-8')
    except (ValueError, TypeError) as exc:
        raise PasswordHashingError() from exc


@lru_cache(maxsize=4)
def _dummy_hash(rounds: int) -> str:
    return get_password_hash(secrets.token_urlsafe(16), rounds=rounds)


def burn_password_check(password: str, rounds: Optional[int] = None) -> None:
    """Spend the same bcrypt work as a real check when no account matched."""
    verify_password(password, _dummy_hash(rounds or settings.BCRYPT_ROUNDS))


def validate_password_strength(password: str) -> List[str]:
    """
    Check a candidate password against the password policy

    Returns:
        List[str]: Human-readable problems, empty when the password is acceptable
    """
    problems = []
    if len(password) < PASSWORD_MIN_LENGTH:
        problems.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    if len(password.encode('utf-8')) > PASSWORD_MAX_BYTES:
        problems.append(f"Password must be at most {PASSWORD_MAX_BYTES} bytes long")
    if not re.search(r"[a-z]", password):
        problems.append("Password must contain a lowercase letter")
    if not re.search(r"[A-Z]", password):
        problems.append("Password must contain an uppercase letter")
    if not re.search(r"\d", password):
        problems.append("Password must contain a digit")
    if not any(ch in PASSWORD_SPECIAL_CHARS for ch in password):
        problems.append(f"Password must contain one of {PASSWORD_SPECIAL_CHARS}")
    return problems


def create_access_token(
    data: Dict[str, Any],
    expires_delta: Optional[timedelta] = None,
    issued_at: Optional[datetime] = None
) -> str:
    """
    Create JWT access token

    Args:
        data: Data to encode in token
        expires_delta: Token lifetime
        issued_at: Issuance instant (naive UTC), defaults to now

    Returns:
        str: Encoded JWT token
    """
    to_encode = data.copy()
    issued = issued_at or utc_now()
    lifetime = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({
        "iat": issued,
        "exp": issued + lifetime,
        "jti": secrets.token_urlsafe(32),  # Unique token ID
        "iss": settings.TOKEN_ISSUER,
        "aud": settings.TOKEN_AUDIENCE,
        "typ": "access",
    })

    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str, verify_exp: bool = True) -> Dict[str, Any]:
    """
    Decode and verify JWT token

    Args:
        token: JWT token string
        verify_exp: Reject tokens past their ``exp`` claim

    Returns:
        Dict: Decoded token claims

    Raises:
        jose.ExpiredSignatureError: Token is past its expiry
        jose.JWTError: Token is malformed, tampered or for another audience
    """
    return jwt.decode(
        token,
        settings.SECRET_KEY,
        algorithms=[settings.ALGORITHM],
        audience=settings.TOKEN_AUDIENCE,
        issuer=settings.TOKEN_ISSUER,
        options={"verify_exp": verify_exp},
    )


def hash_token(token: str) -> str:
    """Return the SHA-256 hex digest used as a lookup key for a raw token."""
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def generate_reset_secret() -> str:
    """64 hex characters of cryptographic randomness."""
    return secrets.token_hex(RESET_SECRET_BYTES)
