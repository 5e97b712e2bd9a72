"""
Security utilities for password hashing and JWT access tokens.
Uses bcrypt for secure password hashing.
Uses python-jose for JWT token generation and validation.

The same verifier serves REST requests (Authorization header) and
WebSocket upgrades (token query parameter).
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
import bcrypt
from jose import jwt, JWTError
from core.config import settings
from core.exceptions import Unauthenticated


def hash_password(password: str) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: Plain text password to hash

    Returns:
        Hashed password as a string
    """
    password_bytes = password.encode('utf-8')
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    hashed = bcrypt.hashpw(password_bytes, salt)
    return hashed.decode('utf-8')


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash.

    Args:
        plain_password: Plain text password to verify
        hashed_password: Previously hashed password

    Returns:
        True if password matches, False otherwise
    """
    password_bytes = plain_password.encode('utf-8')
    hashed_bytes = hashed_password.encode('utf-8')
    return bcrypt.checkpw(password_bytes, hashed_bytes)


def create_access_token(user_id: int, expires_delta: Optional[timedelta] = None) -> Dict[str, Any]:
    """
    Create a signed, time-bound JWT access token.

    Args:
        user_id: User ID to encode in the token
        expires_delta: Token lifetime (defaults to settings.access_token_expire_minutes)

    Returns:
        Dictionary with token, expires_at, issued_at
    """
    now = datetime.now(timezone.utc)
    expires_at = now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))

    payload = {
        "user_id": user_id,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
        "type": "access"
    }

    token = jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)

    return {
        "token": token,
        "expires_at": expires_at,
        "issued_at": now
    }


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode and validate a JWT access token.

    Args:
        token: JWT token string

    Returns:
        Decoded payload if valid, None if invalid or expired
    """
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
        return payload
    except JWTError:
        return None


def verify_access_token(token: Optional[str]) -> int:
    """
    Verify a bearer credential and return the embedded user identity.

    Args:
        token: JWT token string (may be None when the caller sent nothing)

    Returns:
        The user ID carried by the token

    Raises:
        Unauthenticated: missing, malformed, forged or expired token
    """
    if not token:
        raise Unauthenticated("Missing token")

    payload = decode_access_token(token)
    if not payload:
        raise Unauthenticated("Invalid or expired token")

    if payload.get("type") != "access":
        raise Unauthenticated("Invalid token type")

    user_id = payload.get("user_id")
    if not isinstance(user_id, int):
        raise Unauthenticated("Invalid token payload")

    return user_id
