# salonbook/api/dependencies/auth.py
"""
Authentication and authorization dependencies.

The caller is identified by an ``Authorization: Bearer <jwt>`` header whose
``sub`` claim is the user id and ``role`` claim one of the platform roles.
"""

import logging
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWTError

from ...auth import decode_access_token
from ...core.enums import RoleName
from ...core.exceptions import forbidden_error, unauthorized_error
from ...principal import SYSTEM_ACTOR_ID, Actor

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Actor:
    """
    Resolve the authenticated actor from the bearer token.

    Raises:
        DomainException: UNAUTHORIZED when the token is missing or invalid
    """
    if credentials is None or not credentials.credentials:
        raise unauthorized_error("Not authenticated")

    try:
        payload = decode_access_token(credentials.credentials)
    except PyJWTError as e:
        logger.warning(f"JWT validation error: {str(e)}")
        raise unauthorized_error("Could not validate credentials") from e

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject or subject == SYSTEM_ACTOR_ID:
        logger.warning("Token payload missing a usable 'sub' field")
        raise unauthorized_error("Could not validate credentials")

    try:
        role = RoleName(payload.get("role"))
    except ValueError as e:
        logger.warning(f"Token carries unknown role: {payload.get('role')!r}")
        raise unauthorized_error("Could not validate credentials") from e

    return Actor(id=subject, role=role)


async def get_current_customer(actor: Actor = Depends(get_current_actor)) -> Actor:
    """Require a customer token."""
    if not actor.is_customer:
        raise forbidden_error("This action is only available to customers")
    return actor
