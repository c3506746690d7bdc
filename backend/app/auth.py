"""
Staff authentication.

Case status changes and admin alert edits are made by staff signed in through
Supabase Auth. Their access token arrives as ``Authorization: Bearer <token>``;
the ``sub`` claim identifies the staff member in status_history entries and
alert notes.

Verification modes:
  local   SUPABASE_JWT_SECRET is set: HS256 check with python-jose
  remote  otherwise: the Supabase Auth API is asked about the token
"""

import logging
import os
from typing import Optional

from fastapi import HTTPException, Header
from jose import ExpiredSignatureError, JWTError, jwt

from app.db import get_supabase_admin

logger = logging.getLogger(__name__)

# Project Settings > API > JWT Secret
SUPABASE_JWT_SECRET: Optional[str] = os.environ.get("SUPABASE_JWT_SECRET") or None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail)


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise _unauthorized("Not authenticated")
    scheme, _, token = authorization.partition(" ")
    if scheme != "Bearer" or not token or " " in token:
        raise _unauthorized("Invalid authentication credentials")
    return token


async def get_current_user(authorization: Optional[str] = Header(None)) -> str:
    """
    FastAPI dependency returning the signed-in staff member's user id.

    Raises:
        HTTPException: 401 if the token is missing, malformed, invalid or expired
    """
    token = _bearer_token(authorization)
    if SUPABASE_JWT_SECRET:
        user_id = _verify_jwt_locally(token)
    else:
        user_id = await _verify_jwt_remotely(token)
    logger.debug("Authenticated staff user %s", user_id)
    return user_id


def _verify_jwt_locally(token: str) -> str:
    try:
        # Supabase tokens carry aud="authenticated"; the audience is not pinned here
        claims = jwt.decode(token, SUPABASE_JWT_SECRET, algorithms=["HS256"], options={"verify_aud": False})
    except ExpiredSignatureError:
        raise _unauthorized("Token expired")
    except (JWTError, ValueError) as e:
        logger.info("Rejected staff token: %s", e)
        raise _unauthorized("Invalid token")

    user_id = claims.get("sub")
    if not user_id:
        raise _unauthorized("Invalid token")
    return user_id


async def _verify_jwt_remotely(token: str) -> str:
    """Ask the Supabase Auth API who the token belongs to."""
    try:
        client = await get_supabase_admin()
        response = await client.auth.get_user(token)
    except Exception as e:
        logger.info("Supabase Auth rejected staff token: %s", e)
        raise _unauthorized("Token expired" if "expired" in str(e).lower() else "Invalid token")

    user = getattr(response, "user", None) if response else None
    if not user:
        raise _unauthorized("Invalid token")
    return user.id
