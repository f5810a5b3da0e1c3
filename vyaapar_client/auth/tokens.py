"""Helpers for reading access token claims."""

import logging
from datetime import datetime
from typing import Optional

from jose import jwt, JWTError

logger = logging.getLogger(__name__)


def token_expiry(token: str) -> Optional[datetime]:
    """
    Read the expiry time from a JWT access token without verifying it.

    Returns None for opaque tokens or tokens without an ``exp`` claim.
    """
    try:
        payload = jwt.get_unverified_claims(token)
    except JWTError as e:
        logger.debug(f"Access token is not a readable JWT: {e}")
        return None

    exp = payload.get('exp')
    if exp is None:
        return None
    try:
        return datetime.fromtimestamp(float(exp))
    except (TypeError, ValueError, OverflowError, OSError):
        logger.warning("Access token carries an invalid exp claim")
        return None
