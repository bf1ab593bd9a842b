"""
Password hashing and bearer-token verification.

Tokens are issued by the external identity service; this module only needs to
verify them (``verify_jwt_token``). ``create_jwt_token`` exists for local
tooling and tests and signs with the same secret.
"""

from __future__ import annotations

import logging
import os
from datetime import timedelta
from typing import Any, Dict, Optional

import bcrypt
import jwt

from ..utils.clock import utcnow
from ..utils.jwt_secret import get_jwt_secret

logger = logging.getLogger(__name__)

JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
DEFAULT_TOKEN_EXPIRATION = timedelta(days=7)
BCRYPT_ROUNDS = 10


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    if not password or not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


def create_jwt_token(
    user_id: str, role: str, expires_in: timedelta = DEFAULT_TOKEN_EXPIRATION
) -> str:
    secret = get_jwt_secret()
    if not secret:
        raise RuntimeError("JWT secret is not configured")
    now = utcnow()
    payload = {"id": user_id, "role": role, "iat": now, "exp": now + expires_in}
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def verify_jwt_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode and validate a bearer token.

    Returns:
        The token claims, or ``None`` if the token is expired, malformed, or
        signed with another key.
    """
    secret = get_jwt_secret()
    if not secret or not token:
        return None
    try:
        claims = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired token")
        return None
    except jwt.InvalidTokenError as e:
        logger.warning(f"Rejected invalid token: {type(e).__name__}")
        return None
    if not claims.get("id"):
        logger.warning("Rejected token without a user id claim")
        return None
    return claims
