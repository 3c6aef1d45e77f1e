"""Authentication utilities: API keys identifying the owning clinician."""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vetscribe.db.models import ApiKey
from vetscribe.db.session import get_db

KEY_PREFIX = "vsk_"
KEY_LENGTH = len(KEY_PREFIX) + 32
LOOKUP_PREFIX_LENGTH = len(KEY_PREFIX) + 8

# Keys are high-entropy random tokens; a fast KDF is enough.
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def generate_api_key() -> tuple[str, str]:
    """
    Generate a new API key.
    Returns: (full_key, prefix)
    Format: vsk_XXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXX (32 hex chars after prefix)
    """
    full_key = f"{KEY_PREFIX}{secrets.token_hex(16)}"
    return full_key, full_key[:LOOKUP_PREFIX_LENGTH]


def hash_api_key(api_key: str) -> str:
    """Hash an API key for storage."""
    return pwd_context.hash(api_key)


def verify_api_key(plain_key: str, hashed_key: str) -> bool:
    """Verify an API key against its hash."""
    return pwd_context.verify(plain_key, hashed_key)


def _is_expired(expires_at: Optional[datetime]) -> bool:
    if expires_at is None:
        return False
    if expires_at.tzinfo is None:
        # SQLite drops the offset; stored values are UTC.
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at < datetime.now(timezone.utc)


async def get_api_key_from_db(
    db: AsyncSession, key_prefix: str, full_key: str
) -> Optional[ApiKey]:
    """Look up an active API key by prefix and verify the full key."""
    result = await db.execute(
        select(ApiKey).where(
            ApiKey.key_prefix == key_prefix,
            ApiKey.is_active == True,  # noqa: E712
        )
    )
    for api_key in result.scalars().all():
        if _is_expired(api_key.expires_at):
            continue
        if verify_api_key(full_key, api_key.key_hash):
            return api_key
    return None


async def require_api_key(
    request: Request,
    authorization: Optional[str] = Header(None),
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
    db: AsyncSession = Depends(get_db),
) -> ApiKey:
    """Extract and validate the API key from the request."""
    api_key_str = None

    if authorization:
        if not authorization.startswith("Bearer "):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authorization scheme. Use 'Bearer <api_key>'",
            )
        api_key_str = authorization[7:]
    elif x_api_key:
        api_key_str = x_api_key

    if not api_key_str:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key. Provide via 'Authorization: Bearer <key>' or 'X-API-Key' header",
        )

    if not api_key_str.startswith(KEY_PREFIX) or len(api_key_str) != KEY_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key format",
        )

    api_key = await get_api_key_from_db(db, api_key_str[:LOOKUP_PREFIX_LENGTH], api_key_str)
    if api_key is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or expired API key",
        )

    request.state.api_key = api_key
    return api_key


async def create_api_key(
    db: AsyncSession,
    name: str,
    owner: str,
    expires_in_days: Optional[int] = None,
) -> tuple[ApiKey, str]:
    """
    Create a new API key.
    Returns: (ApiKey model, full_key_string)
    """
    full_key, prefix = generate_api_key()

    expires_at = None
    if expires_in_days:
        expires_at = datetime.now(timezone.utc) + timedelta(days=expires_in_days)

    api_key = ApiKey(
        key_hash=hash_api_key(full_key),
        key_prefix=prefix,
        name=name,
        owner=owner,
        expires_at=expires_at,
    )

    db.add(api_key)
    await db.flush()
    await db.refresh(api_key)

    return api_key, full_key
