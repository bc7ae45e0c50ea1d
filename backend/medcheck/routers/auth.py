import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from medcheck.auth import (
    INVALID_CREDENTIALS,
    authenticate,
    end_session,
    get_optional_user,
    get_settings_dep,
    get_storage,
    hash_password,
    start_session,
)
from medcheck.config import Settings
from medcheck.exceptions import DuplicateLoginError
from medcheck.schemas.user import UserCreate, UserCredentials, UserEnvelope, UserRecord, UserRegistration, UserResponse
from medcheck.services.storage import Storage

router = APIRouter()
logger = logging.getLogger(__name__)


def _envelope(user: Optional[UserRecord]) -> UserEnvelope:
    """Wrap an account for the client; the password hash never leaves the server."""
    return UserEnvelope(user=UserResponse.model_validate(user) if user else None)


@router.post("/register", response_model=UserEnvelope, status_code=201)
async def register(
    body: UserRegistration,
    response: Response,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings_dep),
):
    logger.info("Registration attempt for username: %s", body.username)
    if await storage.get_account_by_login(body.username):
        raise HTTPException(status_code=400, detail="Username already exists")

    hashed = await asyncio.to_thread(hash_password, body.password, settings.bcrypt_rounds)
    try:
        user = await storage.create_account(UserCreate(username=body.username, password=hashed))
    except DuplicateLoginError:
        # lost a race with a concurrent registration
        raise HTTPException(status_code=400, detail="Username already exists")

    start_session(response, storage, settings, user)
    logger.info("User registered successfully: %s", user.id)
    return _envelope(user)


@router.post("/login", response_model=UserEnvelope)
async def login(
    body: UserCredentials,
    response: Response,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings_dep),
):
    user = await authenticate(storage, body.username, body.password, settings.bcrypt_rounds)
    if user is None:
        raise HTTPException(status_code=401, detail=INVALID_CREDENTIALS)
    start_session(response, storage, settings, user)
    return _envelope(user)


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings_dep),
):
    end_session(request, response, storage, settings)
    return {"ok": True}


@router.get("/user", response_model=UserEnvelope)
async def current_user(user: Optional[UserRecord] = Depends(get_optional_user)):
    if user is None:
        return JSONResponse(status_code=401, content={"user": None})
    return _envelope(user)


@router.get("/session", response_model=UserEnvelope)
async def session_user(user: Optional[UserRecord] = Depends(get_optional_user)):
    return _envelope(user)
