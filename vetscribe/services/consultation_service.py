"""Consultation management: the upload gateway and the record accessors."""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from vetscribe.db.models import Consultation, ConsultationStatus
from vetscribe.schemas.schemas import ConsultationResponse
from vetscribe.services.errors import (
    ConsultationValidationError,
    PatientNotFoundError,
)
from vetscribe.services.patient_service import patient_service
from vetscribe.services.storage import BlobStorage, blob_storage, extension_for

logger = logging.getLogger(__name__)

UNKNOWN_PATIENT_NUMBER = "unknown"
UNKNOWN_PET_NAME = "patient"

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9_]")


def build_file_name(patient_number: str, pet_name: str, now: datetime) -> str:
    """Base file name for a recording, restricted to [A-Za-z0-9_]."""
    stamp = now.strftime("%Y%m%d_%H%M%S")
    return _UNSAFE_CHARS.sub("_", f"{patient_number}_{pet_name}_{stamp}")


@dataclass(frozen=True)
class DisplayFields:
    client_name: str
    patient_number: str
    pet_name: str


class ConsultationService:
    """Service for creating, reading and editing consultations."""

    def __init__(self, storage: BlobStorage = blob_storage):
        self.storage = storage

    async def _resolve_display_fields(
        self,
        db: AsyncSession,
        owner_id: str,
        patient_id: Optional[str],
        client_name: Optional[str],
    ) -> DisplayFields:
        if patient_id:
            try:
                UUID(patient_id)
            except ValueError:
                raise PatientNotFoundError(f"Patient {patient_id} not found")

            patient = await patient_service.get_patient(db, patient_id, owner_id)
            if patient is None:
                raise PatientNotFoundError(f"Patient {patient_id} not found")
            return DisplayFields(
                client_name=patient.client_name or client_name or "",
                patient_number=patient.patient_number or UNKNOWN_PATIENT_NUMBER,
                pet_name=patient.pet_name or UNKNOWN_PET_NAME,
            )

        return DisplayFields(
            client_name=client_name,
            patient_number=UNKNOWN_PATIENT_NUMBER,
            pet_name=UNKNOWN_PET_NAME,
        )

    async def create_consultation(
        self,
        db: AsyncSession,
        owner_id: str,
        audio: bytes,
        content_type: Optional[str] = None,
        original_filename: Optional[str] = None,
        patient_id: Optional[str] = None,
        client_name: Optional[str] = None,
        duration_seconds: Optional[int] = None,
    ) -> Consultation:
        """
        Persist an uploaded recording and create its consultation.

        Validation happens before anything is written. The audio is stored
        first; if the record cannot be inserted the stored file is removed
        again, so a rejected upload leaves nothing behind.

        Returns:
            The new Consultation in the processing state.
        """
        if not audio:
            raise ConsultationValidationError("Audio file is required")

        patient_id = (patient_id or "").strip() or None
        client_name = (client_name or "").strip() or None
        if not patient_id and not client_name:
            raise ConsultationValidationError("Patient ID or client name is required")

        fields = await self._resolve_display_fields(db, owner_id, patient_id, client_name)

        consultation_id = str(uuid4())
        file_name = build_file_name(fields.patient_number, fields.pet_name, datetime.now())
        ext = extension_for(content_type, original_filename)
        key = f"{_UNSAFE_CHARS.sub('_', owner_id)}/{file_name}_{consultation_id[:8]}{ext}"

        audio_path = self.storage.write_file(audio, key, content_type)

        consultation = Consultation(
            id=consultation_id,
            owner_id=owner_id,
            patient_id=patient_id,
            client_name=fields.client_name,
            patient_number=fields.patient_number,
            pet_name=fields.pet_name,
            file_name=file_name,
            audio_path=audio_path,
            content_type=content_type,
            duration_seconds=duration_seconds,
            status=ConsultationStatus.PROCESSING,
        )
        try:
            db.add(consultation)
            await db.flush()
            await db.refresh(consultation)
        except Exception:
            self.remove_audio(audio_path)
            raise

        logger.info(f"Created consultation {consultation.id} ({len(audio)} bytes at {audio_path})")
        return consultation

    async def get_consultation(
        self,
        db: AsyncSession,
        consultation_id: str,
        owner_id: Optional[str] = None,
    ) -> Optional[Consultation]:
        """Get a consultation by ID, always reading the current row."""
        try:
            UUID(consultation_id)
        except ValueError:
            return None

        query = select(Consultation).where(Consultation.id == consultation_id)
        if owner_id:
            query = query.where(Consultation.owner_id == owner_id)

        result = await db.execute(query.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def list_consultations(
        self,
        db: AsyncSession,
        owner_id: str,
        status: Optional[ConsultationStatus] = None,
        patient_id: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Consultation], int]:
        """
        List consultations for an owner, newest recording first.

        Returns:
            Tuple of (consultations, total_count)
        """
        query = select(Consultation).where(Consultation.owner_id == owner_id)

        if status:
            query = query.where(Consultation.status == status)
        if patient_id:
            query = query.where(Consultation.patient_id == patient_id)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await db.execute(count_query)).scalar() or 0

        query = (
            query.order_by(Consultation.recorded_at.desc(), Consultation.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )

        result = await db.execute(query.execution_options(populate_existing=True))
        return list(result.scalars().all()), total

    async def update_note(
        self,
        db: AsyncSession,
        consultation_id: str,
        final_soap_note: Optional[str] = None,
        is_finalized: Optional[bool] = None,
    ) -> Optional[Consultation]:
        """Apply a user edit. Only the user-owned fields are writable here."""
        update_data = {}

        if final_soap_note is not None:
            update_data["final_soap_note"] = final_soap_note
        if is_finalized is not None:
            update_data["is_finalized"] = is_finalized

        if update_data:
            await db.execute(
                update(Consultation)
                .where(Consultation.id == consultation_id)
                .values(**update_data)
            )

        return await self.get_consultation(db, consultation_id)

    async def delete_consultation(self, db: AsyncSession, consultation: Consultation) -> Optional[str]:
        """
        Delete a consultation record.

        The stored audio is left alone: the caller removes it with
        `remove_audio` once the deletion is committed.

        Returns:
            The audio storage reference of the deleted consultation.
        """
        audio_path = consultation.audio_path
        await db.delete(consultation)
        await db.flush()
        return audio_path

    def remove_audio(self, audio_path: Optional[str]) -> None:
        """Delete stored audio, logging instead of raising on failure."""
        if not audio_path:
            return
        try:
            self.storage.delete_file(audio_path)
        except Exception as e:
            logger.warning(f"Could not delete audio file {audio_path}: {e}")

    def to_response(self, consultation: Consultation) -> ConsultationResponse:
        """Convert Consultation model to response schema."""
        return ConsultationResponse.model_validate(consultation)


# Singleton instance
consultation_service = ConsultationService()
