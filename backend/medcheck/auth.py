"""
Auth module: bcrypt password hashing, signed session tokens and the
get_current_user FastAPI dependency.

A session is a record in `storage.session_store` mapping a random session id
to an account id, the account's username and the storage backend that
issued it. The client holds that id inside a short HS256 JWT, sent back
either as the session cookie or as an `Authorization: Bearer` header.
"""

import asyncio
import logging
import time
from functools import lru_cache
from typing import Optional

import bcrypt
from fastapi import Depends, HTTPException, Request, Response
from jose import JWTError, jwt

from medcheck.config import Settings
from medcheck.schemas.user import UserRecord
from medcheck.services.analyzer import ClinicalTextAnalyzer
from medcheck.services.storage import Storage

ALGORITHM = "HS256"
INVALID_CREDENTIALS = "Invalid username or password"

logger = logging.getLogger(__name__)


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def get_analyzer(request: Request) -> ClinicalTextAnalyzer:
    return request.app.state.analyzer


def hash_password(password: str, rounds: int = 12) -> str:
    """bcrypt with a fresh salt; `rounds` is the log2 cost factor."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # over-long secret or malformed hash
        return False


@lru_cache()
def _dummy_hash(rounds: int) -> str:
    return hash_password("not-a-real-password", rounds)


async def authenticate(storage: Storage, username: str, password: str, rounds: int) -> Optional[UserRecord]:
    """Return the account when the credentials match, otherwise None.

    Unknown usernames still pay for one bcrypt comparison so both failure
    cases take about the same time.
    """
    user = await storage.get_account_by_login(username)
    if user is None:
        await asyncio.to_thread(verify_password, password, _dummy_hash(rounds))
        logger.info("Login failed for %s: unknown username", username)
        return None
    if not await asyncio.to_thread(verify_password, password, user.password):
        logger.info("Login failed for %s: wrong password", username)
        return None
    logger.info("Login successful for user %s", user.id)
    return user


def create_token(session_id: str, settings: Settings) -> str:
    payload = {
        "sid": session_id,
        "exp": int(time.time()) + settings.session_ttl_seconds,
    }
    return jwt.encode(payload, settings.session_secret, algorithm=ALGORITHM)


def decode_token(token: str, settings: Settings) -> Optional[str]:
    """Return the session id of a valid token, None if invalid/expired."""
    try:
        payload = jwt.decode(token, settings.session_secret, algorithms=[ALGORITHM])
    except JWTError:
        return None
    sid = payload.get("sid")
    return sid if isinstance(sid, str) else None


def _request_session_id(request: Request, settings: Settings) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:]
    else:
        token = request.cookies.get(settings.session_cookie_name)
    if not token:
        return None
    return decode_token(token, settings)


def start_session(response: Response, storage: Storage, settings: Settings, user: UserRecord) -> str:
    session_id = storage.session_store.create(user.id, username=user.username, backend=user.backend)
    response.set_cookie(
        settings.session_cookie_name,
        create_token(session_id, settings),
        max_age=settings.session_ttl_seconds,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )
    return session_id


def end_session(request: Request, response: Response, storage: Storage, settings: Settings) -> None:
    session_id = _request_session_id(request, settings)
    if session_id:
        storage.session_store.destroy(session_id)
    response.delete_cookie(settings.session_cookie_name)


async def get_optional_user(
    request: Request,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings_dep),
) -> Optional[UserRecord]:
    session_id = _request_session_id(request, settings)
    if not session_id:
        return None
    record = storage.session_store.lookup(session_id)
    if record is None:
        return None
    user = await storage.get_account_for_session(record.account_id, record.backend)
    if user is None or user.username != record.username:
        return None
    return user


async def get_current_user(user: Optional[UserRecord] = Depends(get_optional_user)) -> UserRecord:
    """FastAPI dependency. 401 unless the request carries a live session."""
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user
