"""API key management routes (admin)."""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vetscribe.auth.security import create_api_key
from vetscribe.config import get_settings
from vetscribe.db.models import ApiKey
from vetscribe.db.session import get_db
from vetscribe.schemas.schemas import ApiKeyCreate, ApiKeyInfo, ApiKeyResponse

router = APIRouter(prefix="/v1/admin/api-keys", tags=["Admin - API Keys"])

settings = get_settings()


def verify_admin_key(x_admin_key: Optional[str] = Header(None)):
    """Verify admin access using the configured secret key."""
    if not x_admin_key or x_admin_key != settings.secret_key:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin key",
        )
    return True


async def _get_key_or_404(db: AsyncSession, key_id: str) -> ApiKey:
    result = await db.execute(select(ApiKey).where(ApiKey.id == key_id))
    api_key = result.scalar_one_or_none()
    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"API key {key_id} not found",
        )
    return api_key


@router.post(
    "",
    response_model=ApiKeyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new API key",
    description="Create an API key for a clinician. Admin only.",
)
async def create_new_api_key(
    request: ApiKeyCreate,
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(verify_admin_key),
):
    """
    Create a new API key. Consultations uploaded with it belong to `owner`.

    **Important**: The full API key is only shown once in this response.
    """
    api_key_model, full_key = await create_api_key(
        db,
        name=request.name,
        owner=request.owner,
        expires_in_days=request.expires_in_days,
    )
    await db.commit()

    return ApiKeyResponse(
        id=api_key_model.id,
        api_key=full_key,
        key_prefix=api_key_model.key_prefix,
        name=api_key_model.name,
        owner=api_key_model.owner,
        created_at=api_key_model.created_at,
        expires_at=api_key_model.expires_at,
    )


@router.get(
    "",
    response_model=list[ApiKeyInfo],
    summary="List all API keys",
)
async def list_api_keys(
    include_inactive: bool = Query(False, description="Include inactive keys"),
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(verify_admin_key),
):
    """List API keys without their secret values."""
    query = select(ApiKey)
    if not include_inactive:
        query = query.where(ApiKey.is_active == True)  # noqa: E712

    result = await db.execute(query.order_by(ApiKey.created_at.desc()))
    return [ApiKeyInfo.model_validate(k) for k in result.scalars().all()]


@router.delete(
    "/{key_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Revoke an API key",
    description="Deactivate an API key (soft delete). Admin only.",
)
async def revoke_api_key(
    key_id: str,
    db: AsyncSession = Depends(get_db),
    _: bool = Depends(verify_admin_key),
):
    """Revoke/deactivate an API key."""
    api_key = await _get_key_or_404(db, key_id)
    api_key.is_active = False
    await db.commit()
