# backend/auth.py
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional

from fastapi import Cookie, Depends, Header
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from database import get_session
from errors import InvalidToken, MalformedToken, TokenError, Unauthorized
from models import User, UserPublic
from userstore import UserStore

logger = logging.getLogger(__name__)

TokenClass = Literal["access", "refresh"]

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"


def _secret(token_class: TokenClass) -> str:
    settings = get_settings()
    if token_class == "access":
        return settings.access_token_secret
    return settings.refresh_token_secret


def _sign(claims: dict, token_class: TokenClass, lifetime: timedelta) -> str:
    now = datetime.now(timezone.utc)
    to_encode = dict(claims, type=token_class, jti=uuid.uuid4().hex, iat=now, exp=now + lifetime)
    return jwt.encode(to_encode, _secret(token_class), algorithm=get_settings().jwt_algorithm)


def create_access_token(user: User) -> str:
    """Short-lived token carrying the profile fields needed for stateless checks."""
    claims = {
        "sub": str(user.id),
        "username": user.username,
        "email": user.email,
        "full_name": user.full_name,
    }
    return _sign(claims, "access", timedelta(minutes=get_settings().access_token_expire_minutes))


def create_refresh_token(user: User) -> str:
    return _sign({"sub": str(user.id)}, "refresh", timedelta(days=get_settings().refresh_token_expire_days))


def verify_token(token: str, token_class: TokenClass) -> dict:
    """Return the claims of ``token`` or raise a ``TokenError``.

    ``MalformedToken`` means the string is not a signed token at all;
    ``InvalidToken`` covers bad signatures, expiry, a token of the other
    class, and a missing subject.
    """
    try:
        jwt.get_unverified_header(token)
    except JWTError as e:
        raise MalformedToken(str(e)) from e

    try:
        claims = jwt.decode(token, _secret(token_class), algorithms=[get_settings().jwt_algorithm])
    except ExpiredSignatureError as e:
        raise InvalidToken("Token has expired") from e
    except JWTError as e:
        raise InvalidToken(str(e)) from e

    if claims.get("type") != token_class:
        raise InvalidToken(f"Expected a {token_class} token")
    if not claims.get("sub"):
        raise InvalidToken("Token has no subject")
    return claims


def subject_id(claims: dict) -> int:
    try:
        return int(claims["sub"])
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidToken("Token subject is not a user id") from e


def _strip_scheme(value: Optional[str]) -> Optional[str]:
    if value and value[:7].lower() == "bearer ":
        return value[7:].strip() or None
    return value or None


async def get_current_user(
    access_token: Optional[str] = Cookie(None, alias=ACCESS_COOKIE),
    authorization: Optional[str] = Header(None),
    session: AsyncSession = Depends(get_session),
) -> UserPublic:
    """Resolve the request's access token to a user.

    The cookie wins over the ``Authorization`` header, which clients without
    cookie support use to send the raw token (a ``Bearer`` prefix is accepted).
    """
    token = access_token or _strip_scheme(authorization)
    if not token:
        raise Unauthorized("Unauthorized request")

    try:
        user_id = subject_id(verify_token(token, "access"))
    except TokenError as e:
        logger.debug("Rejected access token: %s", e)
        raise Unauthorized("Invalid access token") from e

    user = await UserStore(session).find_by_id(user_id)
    if user is None:
        raise Unauthorized("Invalid access token")
    return UserPublic.model_validate(user)
