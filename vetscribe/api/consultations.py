"""Consultation routes: upload, poll, edit, delete."""

import logging
from typing import Optional

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    UploadFile,
    status,
)
from sqlalchemy.ext.asyncio import AsyncSession

from vetscribe.auth.security import require_api_key
from vetscribe.config import get_settings
from vetscribe.db.models import ApiKey, ConsultationStatus
from vetscribe.db.session import get_db
from vetscribe.schemas.schemas import (
    ConsultationListResponse,
    ConsultationResponse,
    ConsultationUpdateRequest,
)
from vetscribe.services.consultation_service import consultation_service
from vetscribe.services.errors import (
    ConsultationValidationError,
    PatientNotFoundError,
    StorageWriteError,
)
from vetscribe.services.pipeline import mark_failed
from vetscribe.worker import enqueue_consultation

router = APIRouter(prefix="/v1/consultations", tags=["Consultations"])

settings = get_settings()
logger = logging.getLogger(__name__)


async def _get_or_404(db: AsyncSession, consultation_id: str, owner_id: str):
    consultation = await consultation_service.get_consultation(db, consultation_id, owner_id)
    if not consultation:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Consultation {consultation_id} not found",
        )
    return consultation


@router.post(
    "",
    response_model=ConsultationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a consultation recording",
    description="Store the audio, create the consultation and queue it for processing.",
)
async def create_consultation(
    audio: Optional[UploadFile] = File(None, description="Recorded audio"),
    patient_id: Optional[str] = Form(None, description="Associated patient ID"),
    client_name: Optional[str] = Form(None, description="Client name when no patient is selected"),
    duration_seconds: Optional[int] = Form(None, ge=0, description="Recorded duration"),
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_api_key),
):
    """
    Upload a recording.

    The response returns immediately with `status=processing`; poll
    `GET /v1/consultations/{id}` until it becomes `completed` or `failed`.
    """
    content = await audio.read(settings.max_upload_bytes + 1) if audio else b""
    if len(content) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Audio exceeds {settings.max_upload_bytes} bytes",
        )

    try:
        consultation = await consultation_service.create_consultation(
            db,
            owner_id=api_key.owner,
            audio=content,
            content_type=audio.content_type if audio else None,
            original_filename=audio.filename if audio else None,
            patient_id=patient_id,
            client_name=client_name,
            duration_seconds=duration_seconds,
        )
    except ConsultationValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PatientNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except StorageWriteError:
        logger.exception("Failed to store consultation audio")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to store audio",
        )

    try:
        await db.commit()
    except Exception:
        consultation_service.remove_audio(consultation.audio_path)
        raise
    response = consultation_service.to_response(consultation)

    try:
        enqueue_consultation(consultation.id)
    except Exception:
        # Nothing will ever pick it up; don't leave it processing.
        logger.exception(f"Failed to enqueue consultation {consultation.id}")
        if await mark_failed(consultation.id):
            response.status = ConsultationStatus.FAILED

    return response


@router.get(
    "",
    response_model=ConsultationListResponse,
    summary="List consultations",
)
async def list_consultations(
    status_filter: Optional[ConsultationStatus] = Query(
        None, alias="status", description="Filter by status (processing, completed, failed)"
    ),
    patient_id: Optional[str] = Query(None, description="Filter by patient"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_api_key),
):
    """List the caller's consultations, newest first."""
    consultations, total = await consultation_service.list_consultations(
        db, api_key.owner, status_filter, patient_id, page, page_size
    )

    return ConsultationListResponse(
        consultations=[consultation_service.to_response(c) for c in consultations],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=(total + page_size - 1) // page_size,
    )


@router.get(
    "/{consultation_id}",
    response_model=ConsultationResponse,
    summary="Get a consultation",
    description="Poll this endpoint for the processing status and results.",
)
async def get_consultation(
    consultation_id: str,
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_api_key),
):
    consultation = await _get_or_404(db, consultation_id, api_key.owner)
    return consultation_service.to_response(consultation)


@router.patch(
    "/{consultation_id}",
    response_model=ConsultationResponse,
    summary="Edit the final SOAP note",
)
async def update_consultation(
    consultation_id: str,
    request: ConsultationUpdateRequest,
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_api_key),
):
    """Edit `final_soap_note` and/or `is_finalized`. The status is never touched."""
    await _get_or_404(db, consultation_id, api_key.owner)

    consultation = await consultation_service.update_note(
        db,
        consultation_id,
        final_soap_note=request.final_soap_note,
        is_finalized=request.is_finalized,
    )
    await db.commit()
    return consultation_service.to_response(consultation)


@router.delete(
    "/{consultation_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a consultation",
    description="Delete the consultation and its stored audio.",
)
async def delete_consultation(
    consultation_id: str,
    db: AsyncSession = Depends(get_db),
    api_key: ApiKey = Depends(require_api_key),
):
    consultation = await _get_or_404(db, consultation_id, api_key.owner)
    audio_path = await consultation_service.delete_consultation(db, consultation)
    await db.commit()
    consultation_service.remove_audio(audio_path)
