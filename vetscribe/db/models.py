"""Database models for the consultation service."""

import enum
from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vetscribe.db.session import Base


class ConsultationStatus(str, enum.Enum):
    """Processing status of a consultation. Owned by the pipeline."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ConsultationStatus.PROCESSING


class ApiKey(Base):
    """API keys for authentication. `owner` identifies the clinician."""

    __tablename__ = "api_keys"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    key_hash: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    key_prefix: Mapped[str] = mapped_column(String(12), index=True)  # "vsk_" + 8 chars
    name: Mapped[str] = mapped_column(String(100))
    owner: Mapped[str] = mapped_column(String(100), index=True)
    is_active: Mapped[bool] = mapped_column(default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class Patient(Base):
    """A client and their pet. Referenced by consultations, never mutated by them."""

    __tablename__ = "patients"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    owner_id: Mapped[str] = mapped_column(String(100), index=True)
    patient_number: Mapped[str] = mapped_column(String(50))  # Clinic-facing identifier
    client_name: Mapped[str] = mapped_column(String(200))
    pet_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    pet_breed: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    pet_age: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    consultations: Mapped[list["Consultation"]] = relationship(
        "Consultation", back_populates="patient"
    )


class Consultation(Base):
    """A recorded consultation and the content derived from its audio."""

    __tablename__ = "consultations"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    owner_id: Mapped[str] = mapped_column(String(100), index=True)
    patient_id: Mapped[Optional[str]] = mapped_column(
        UUID(as_uuid=False), ForeignKey("patients.id", ondelete="SET NULL"), nullable=True, index=True
    )

    # Display fields copied at creation time
    client_name: Mapped[str] = mapped_column(String(200))
    patient_number: Mapped[str] = mapped_column(String(50))
    pet_name: Mapped[str] = mapped_column(String(100))

    # Media
    file_name: Mapped[str] = mapped_column(String(255))
    audio_path: Mapped[str] = mapped_column(Text)  # Blob storage reference
    content_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    duration_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Derived content
    full_transcription: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ai_soap_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    final_soap_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_finalized: Mapped[bool] = mapped_column(default=False)

    status: Mapped[ConsultationStatus] = mapped_column(
        Enum(ConsultationStatus, values_callable=lambda e: [m.value for m in e]),
        default=ConsultationStatus.PROCESSING,
        index=True,
    )

    # Timestamps
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    patient: Mapped[Optional["Patient"]] = relationship("Patient", back_populates="consultations")
