# salonbook/auth.py
"""
Bearer token handling.

Tokens are issued by the identity service; this module only decodes them.
``create_access_token`` exists for local tooling and tests.
"""

from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Dict, Optional, cast

import jwt
from pydantic import SecretStr

from .core.config import settings

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TTL = timedelta(minutes=30)


def _secret_value(secret_obj: Any) -> str:
    if isinstance(secret_obj, SecretStr):
        return secret_obj.get_secret_value()
    return str(secret_obj)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Decode and verify a JWT access token; raises ``jwt.PyJWTError`` on failure."""
    payload_raw = jwt.decode(
        token,
        _secret_value(settings.secret_key),
        algorithms=[settings.algorithm],
        options={"verify_aud": False},
    )
    return cast(Dict[str, Any], payload_raw)


def create_access_token(
    subject: str, role: str, expires_delta: Optional[timedelta] = None
) -> str:
    """
    Create a signed access token.

    Args:
        subject: User id placed in ``sub``
        role: Role name placed in ``role``
        expires_delta: Optional lifetime; defaults to 30 minutes
    """
    expire = datetime.now(timezone.utc) + (expires_delta or DEFAULT_TOKEN_TTL)
    to_encode = {"sub": subject, "role": role, "exp": expire}
    encoded_jwt = cast(
        str,
        jwt.encode(to_encode, _secret_value(settings.secret_key), algorithm=settings.algorithm),
    )
    logger.debug(f"Created access token for user: {subject}")
    return encoded_jwt
