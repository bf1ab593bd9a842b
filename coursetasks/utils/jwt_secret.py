"""
Utility module for retrieving the JWT verification secret.

In development the ``JWT_SECRET`` environment variable is used directly. In
production (``PYTHON_ENV=production``) the secret is read from AWS Secrets
Manager and the service fails fast if it is not available.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError

from ..aws_clients import secrets_client

logger = logging.getLogger(__name__)

# Cache for the JWT secret to avoid repeated Secrets Manager calls
_JWT_SECRET_CACHE: Optional[str] = None


def _is_production() -> bool:
    return os.getenv("PYTHON_ENV", "development").lower() == "production"


def get_jwt_secret() -> Optional[str]:
    """
    Return the JWT secret.

    Returns:
        The secret string, or None if not available (development only)

    Raises:
        RuntimeError: In production if Secrets Manager is not available
    """
    global _JWT_SECRET_CACHE

    if _JWT_SECRET_CACHE is not None:
        return _JWT_SECRET_CACHE

    if not _is_production():
        # Read on every call so tests and local runs can change it
        return os.getenv("JWT_SECRET") or None

    secret_name = os.getenv("JWT_SECRET_NAME", "coursetasks-jwt-secret")
    try:
        response = secrets_client().get_secret_value(SecretId=secret_name)
        secret_string = response.get("SecretString")
        if not secret_string:
            raise ValueError("SecretString is empty")
        jwt_secret = json.loads(secret_string).get("jwt_secret")
        if not jwt_secret:
            raise ValueError("jwt_secret field not found in secret")
    except ClientError as e:
        error_code = e.response.get("Error", {}).get("Code", "")
        error_msg = f"Error retrieving JWT secret '{secret_name}' from Secrets Manager: {error_code}"
        logger.error(error_msg)
        raise RuntimeError(error_msg) from e
    except (BotoCoreError, json.JSONDecodeError, ValueError) as e:
        error_msg = f"Error reading JWT secret '{secret_name}': {e}"
        logger.error(error_msg)
        raise RuntimeError(error_msg) from e

    logger.info(f"Retrieved JWT secret from Secrets Manager: {secret_name}")
    _JWT_SECRET_CACHE = jwt_secret
    return jwt_secret


def clear_jwt_secret_cache() -> None:
    global _JWT_SECRET_CACHE
    _JWT_SECRET_CACHE = None
