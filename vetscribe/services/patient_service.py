"""Patient lookup used by the upload gateway."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vetscribe.db.models import Patient


class PatientService:
    """Read access to patient records. Consultations never modify them."""

    async def get_patient(
        self,
        db: AsyncSession,
        patient_id: str,
        owner_id: str,
    ) -> Optional[Patient]:
        """Get a patient by ID, scoped to its owner."""
        result = await db.execute(
            select(Patient).where(Patient.id == patient_id, Patient.owner_id == owner_id)
        )
        return result.scalar_one_or_none()

    async def create_patient(
        self,
        db: AsyncSession,
        owner_id: str,
        patient_number: str,
        client_name: str,
        pet_name: Optional[str] = None,
        pet_breed: Optional[str] = None,
        pet_age: Optional[str] = None,
    ) -> Patient:
        patient = Patient(
            owner_id=owner_id,
            patient_number=patient_number,
            client_name=client_name,
            pet_name=pet_name,
            pet_breed=pet_breed,
            pet_age=pet_age,
        )
        db.add(patient)
        await db.flush()
        await db.refresh(patient)
        return patient


# Singleton instance
patient_service = PatientService()
