# backend/services/session_service.py
"""Registration, login and the refresh-token session lifecycle.

A user has at most one live refresh token, stored on the user row::

    no session --login--> T1 --refresh--> T2 --refresh--> T3 ... --logout--> no session

Presenting anything but the current token to ``refresh_tokens`` is rejected
and leaves the stored token untouched, so a replayed (rotated-out) token
cannot continue the chain.
"""
import logging
from typing import Optional

from fastapi import UploadFile
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auth import create_access_token, create_refresh_token, subject_id, verify_token
from errors import Conflict, InternalError, NotFound, TokenError, Unauthorized, ValidationError
from models import LoginResult, TokenPair, User, UserPublic
from services.media_service import LocalMediaStore, MediaAsset
from userstore import UserStore

logger = logging.getLogger(__name__)

AVATAR_FOLDER = "avatars"
COVER_FOLDER = "coverImages"


def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


async def _rollback_media(media: LocalMediaStore, *assets: Optional[MediaAsset]) -> None:
    for asset in assets:
        if asset is not None and not await media.delete_by_public_id(asset.public_id):
            logger.warning("Could not roll back uploaded media %s", asset.public_id)


async def register_user(
    session: AsyncSession,
    media: LocalMediaStore,
    full_name: Optional[str],
    email: Optional[str],
    password: Optional[str],
    username: Optional[str],
    avatar: Optional[UploadFile],
    cover_image: Optional[UploadFile] = None,
) -> UserPublic:
    if any(_blank(field) for field in (full_name, email, password, username)):
        raise ValidationError("All fields are required")
    assert full_name and email and password and username
    username = username.strip().lower()
    email = email.strip()

    store = UserStore(session)
    if await store.find_one(username=username, email=email):
        raise Conflict("User with this username or email already exists")

    if avatar is None:
        raise ValidationError("Avatar image is required")
    avatar_asset = await media.upload(avatar, folder=AVATAR_FOLDER)
    if avatar_asset is None:
        raise ValidationError("Avatar image is required")

    cover_asset = None
    try:
        if cover_image:
            cover_asset = await media.upload(cover_image, folder=COVER_FOLDER)
        user = await store.create(
            full_name=full_name.strip(),
            email=email,
            password=password,
            username=username,
            avatar=avatar_asset.url,
            cover_image=cover_asset.url if cover_asset else "",
        )
    except IntegrityError as e:
        # lost a race against a concurrent registration with the same identity
        await _rollback_media(media, avatar_asset, cover_asset)
        raise Conflict("User with this username or email already exists") from e
    except Exception:
        await _rollback_media(media, avatar_asset, cover_asset)
        raise

    created = await store.find_by_id(user.id) if user.id is not None else None
    if created is None:
        await _rollback_media(media, avatar_asset, cover_asset)
        raise InternalError("Something went wrong while registering the user; uploaded images were deleted")

    logger.info("Registered user %s (%s)", created.id, created.username)
    return UserPublic.model_validate(created)


async def _issue_tokens(store: UserStore, user: User) -> tuple[TokenPair, User]:
    """Issue a fresh pair and overwrite the stored refresh token."""
    assert user.id is not None
    pair = TokenPair(access_token=create_access_token(user), refresh_token=create_refresh_token(user))
    updated = await store.find_by_id_and_update(user.id, fields={"refresh_token": pair.refresh_token})
    return pair, updated or user


async def login_user(
    session: AsyncSession, username: Optional[str], email: Optional[str], password: Optional[str]
) -> LoginResult:
    if _blank(username) and _blank(email):
        raise ValidationError("username or email is required")

    store = UserStore(session)
    user = await store.find_one(
        username=username.strip().lower() if username else None,
        email=email.strip() if email else None,
    )
    if user is None:
        raise NotFound("User does not exist")
    if not await store.verify_password(user, password):
        logger.info("Failed login for user %s", user.id)
        raise Unauthorized("Invalid user credentials")

    pair, user = await _issue_tokens(store, user)
    logger.info("User %s logged in", user.id)
    return LoginResult(user=UserPublic.model_validate(user), **pair.model_dump())


async def logout_user(session: AsyncSession, user_id: int) -> None:
    """Drop the stored refresh token. Access tokens already issued stay valid until they expire."""
    await UserStore(session).find_by_id_and_update(user_id, unset=["refresh_token"], return_updated=False)
    logger.info("User %s logged out", user_id)


async def refresh_tokens(session: AsyncSession, incoming: Optional[str]) -> TokenPair:
    if not incoming:
        raise Unauthorized("Unauthorized request")

    try:
        user_id = subject_id(verify_token(incoming, "refresh"))
    except TokenError as e:
        raise Unauthorized("Invalid refresh token") from e

    store = UserStore(session)
    user = await store.find_by_id(user_id)
    if user is None:
        raise Unauthorized("Invalid refresh token")
    if user.refresh_token != incoming:
        logger.warning("Refresh token reuse for user %s", user_id)
        raise Unauthorized("Refresh token is expired or used")

    pair = TokenPair(access_token=create_access_token(user), refresh_token=create_refresh_token(user))
    if not await store.swap_refresh_token(user_id, expected=incoming, new=pair.refresh_token):
        logger.warning("Concurrent refresh for user %s lost the swap", user_id)
        raise Unauthorized("Refresh token is expired or used")

    logger.info("Rotated refresh token for user %s", user_id)
    return pair


async def change_password(
    session: AsyncSession, user_id: int, old_password: Optional[str], new_password: Optional[str]
) -> None:
    store = UserStore(session)
    user = await store.find_by_id(user_id)
    if user is None:
        raise NotFound("User does not exist")
    if not await store.verify_password(user, old_password):
        raise Unauthorized("Invalid old password")
    if _blank(new_password):
        raise ValidationError("New password is required")
    assert new_password is not None
    await store.set_password(user_id, new_password)
    logger.info("User %s changed password", user_id)


async def update_account_details(
    session: AsyncSession, user_id: int, full_name: Optional[str], email: Optional[str]
) -> UserPublic:
    if _blank(full_name) or _blank(email):
        raise ValidationError("All fields are required")
    assert full_name and email
    try:
        user = await UserStore(session).find_by_id_and_update(
            user_id, fields={"full_name": full_name.strip(), "email": email.strip()}
        )
    except IntegrityError as e:
        raise Conflict("Email is already in use") from e
    if user is None:
        raise NotFound("User does not exist")
    return UserPublic.model_validate(user)


async def _replace_image(
    session: AsyncSession,
    media: LocalMediaStore,
    user_id: int,
    file: Optional[UploadFile],
    column: str,
    folder: str,
    label: str,
) -> UserPublic:
    if file is None:
        raise ValidationError(f"{label} file is missing")
    asset = await media.upload(file, folder=folder)
    if asset is None:
        raise ValidationError(f"Error while uploading {label.lower()}")
    user = await UserStore(session).find_by_id_and_update(user_id, fields={column: asset.url})
    if user is None:
        await _rollback_media(media, asset)
        raise NotFound("User does not exist")
    return UserPublic.model_validate(user)


async def update_avatar(
    session: AsyncSession, media: LocalMediaStore, user_id: int, avatar: Optional[UploadFile]
) -> UserPublic:
    return await _replace_image(session, media, user_id, avatar, "avatar", AVATAR_FOLDER, "Avatar")


async def update_cover_image(
    session: AsyncSession, media: LocalMediaStore, user_id: int, cover_image: Optional[UploadFile]
) -> UserPublic:
    return await _replace_image(session, media, user_id, cover_image, "cover_image", COVER_FOLDER, "Cover image")
