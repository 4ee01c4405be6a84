# backend/main.py
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import Cookie, Depends, FastAPI, File, Form, UploadFile
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.cors import CORSMiddleware

from auth import ACCESS_COOKIE, REFRESH_COOKIE, get_current_user
from config import get_settings
from database import create_db_and_tables, get_session
from errors import api_response, register_exception_handlers
from logging_config import setup_logging
from models import CamelModel, UserPublic
from services import channel_service, session_service
from services.media_service import LocalMediaStore

logger = logging.getLogger(__name__)
settings = get_settings()

@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings)
    logger.info("Starting up and creating database tables...")
    Path(settings.media_root).mkdir(parents=True, exist_ok=True)
    await create_db_and_tables()
    logger.info("Startup complete.")
    yield

app = FastAPI(lifespan=lifespan)

register_exception_handlers(app)
app.add_middleware(
    CORSMiddleware, allow_origins=[settings.cors_origin], allow_credentials=True,
    allow_methods=["*"], allow_headers=["*"],
)
app.mount(settings.media_base_url, StaticFiles(directory=settings.media_root, check_dir=False), name="media")


def get_media_store() -> LocalMediaStore:
    return LocalMediaStore(settings.media_root, settings.media_base_url)


def set_session_cookies(response: JSONResponse, access_token: str, refresh_token: str) -> JSONResponse:
    response.set_cookie(ACCESS_COOKIE, access_token, httponly=True, secure=True)
    response.set_cookie(REFRESH_COOKIE, refresh_token, httponly=True, secure=True)
    return response


# --- Pydantic Models ---
class LoginRequest(CamelModel): username: Optional[str] = None; email: Optional[str] = None; password: Optional[str] = None
class RefreshRequest(CamelModel): refresh_token: Optional[str] = None
class ChangePasswordRequest(CamelModel): old_password: Optional[str] = None; new_password: Optional[str] = None
class AccountUpdateRequest(CamelModel): full_name: Optional[str] = None; email: Optional[str] = None

# --- API Routes ---
USERS = "/api/v1/users"

@app.post(f"{USERS}/register", status_code=201)
async def register(
    full_name: Optional[str] = Form(None, alias="fullName"),
    email: Optional[str] = Form(None),
    password: Optional[str] = Form(None),
    username: Optional[str] = Form(None),
    avatar: Optional[UploadFile] = File(None),
    cover_image: Optional[UploadFile] = File(None, alias="coverImage"),
    session: AsyncSession = Depends(get_session),
    media: LocalMediaStore = Depends(get_media_store),
):
    user = await session_service.register_user(
        session, media, full_name=full_name, email=email, password=password,
        username=username, avatar=avatar, cover_image=cover_image,
    )
    return api_response(user, "User registered successfully", status_code=201)

@app.post(f"{USERS}/login")
async def login(body: LoginRequest, session: AsyncSession = Depends(get_session)):
    result = await session_service.login_user(session, body.username, body.email, body.password)
    # tokens also go in the body for clients without cookies
    response = api_response(result, "User logged in successfully")
    return set_session_cookies(response, result.access_token, result.refresh_token)

@app.post(f"{USERS}/logout")
async def logout(current_user: UserPublic = Depends(get_current_user), session: AsyncSession = Depends(get_session)):
    await session_service.logout_user(session, current_user.id)
    response = api_response({}, "User logged out")
    secure = settings.is_production
    response.delete_cookie(ACCESS_COOKIE, httponly=True, secure=secure)
    response.delete_cookie(REFRESH_COOKIE, httponly=True, secure=secure)
    return response

@app.post(f"{USERS}/refresh-token")
async def refresh_access_token(
    body: Optional[RefreshRequest] = None,
    refresh_cookie: Optional[str] = Cookie(None, alias=REFRESH_COOKIE),
    session: AsyncSession = Depends(get_session),
):
    incoming = refresh_cookie or (body.refresh_token if body else None)
    pair = await session_service.refresh_tokens(session, incoming)
    response = api_response(pair, "Access token refreshed successfully")
    return set_session_cookies(response, pair.access_token, pair.refresh_token)

@app.post(f"{USERS}/change-password")
async def change_current_password(
    body: ChangePasswordRequest,
    current_user: UserPublic = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    await session_service.change_password(session, current_user.id, body.old_password, body.new_password)
    return api_response({}, "Password changed successfully")

@app.get(f"{USERS}/current-user")
async def get_current_user_profile(current_user: UserPublic = Depends(get_current_user)):
    return api_response(current_user, "User fetched successfully")

@app.patch(f"{USERS}/update-account")
async def update_account_details(
    body: AccountUpdateRequest,
    current_user: UserPublic = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    user = await session_service.update_account_details(session, current_user.id, body.full_name, body.email)
    return api_response(user, "Account details updated successfully")

@app.patch(f"{USERS}/avatar")
async def update_user_avatar(
    avatar: Optional[UploadFile] = File(None),
    current_user: UserPublic = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    media: LocalMediaStore = Depends(get_media_store),
):
    user = await session_service.update_avatar(session, media, current_user.id, avatar)
    return api_response(user, "Avatar image updated successfully")

@app.patch(f"{USERS}/cover-image")
async def update_user_cover_image(
    cover_image: Optional[UploadFile] = File(None, alias="coverImage"),
    current_user: UserPublic = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    media: LocalMediaStore = Depends(get_media_store),
):
    user = await session_service.update_cover_image(session, media, current_user.id, cover_image)
    return api_response(user, "Cover image updated successfully")

@app.get(f"{USERS}/c/{{username}}")
async def get_user_channel_profile(
    username: str,
    current_user: UserPublic = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    channel = await channel_service.get_channel_profile(session, username, viewer_id=current_user.id)
    return api_response(channel, "User channel fetched successfully")

@app.get(f"{USERS}/history")
async def get_watch_history(current_user: UserPublic = Depends(get_current_user), session: AsyncSession = Depends(get_session)):
    history = await channel_service.get_watch_history(session, current_user.id)
    return api_response(history, "Watch history fetched successfully")

@app.get("/")
async def read_root():
    return api_response({}, "Accounts backend is running!")
