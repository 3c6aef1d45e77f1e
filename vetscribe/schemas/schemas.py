"""Pydantic schemas for request/response validation."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from vetscribe.db.models import ConsultationStatus


# ============== Consultation Schemas ==============


class ConsultationResponse(BaseModel):
    """A consultation as seen by polling clients."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    owner_id: str
    patient_id: Optional[str] = None
    client_name: str
    patient_number: str
    pet_name: str
    file_name: str
    content_type: Optional[str] = None
    duration_seconds: Optional[int] = None
    full_transcription: Optional[str] = None
    ai_soap_note: Optional[str] = None
    final_soap_note: Optional[str] = None
    is_finalized: bool = False
    status: ConsultationStatus
    recorded_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ConsultationUpdateRequest(BaseModel):
    """User edits. Status is not writable."""

    model_config = ConfigDict(extra="forbid")

    final_soap_note: Optional[str] = Field(None, description="Edited SOAP note text")
    is_finalized: Optional[bool] = Field(None, description="Mark the note as final")


class ConsultationListResponse(BaseModel):
    """Paginated list of consultations."""

    consultations: list[ConsultationResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


# ============== API Key Schemas ==============


class ApiKeyCreate(BaseModel):
    """Request to create a new API key."""

    name: str = Field(..., min_length=1, max_length=100)
    owner: str = Field(..., min_length=1, max_length=100)
    expires_in_days: Optional[int] = Field(None, ge=1, le=365)


class ApiKeyResponse(BaseModel):
    """Response after creating an API key (only time full key is shown)."""

    id: str
    api_key: str  # Full key, shown only once
    key_prefix: str
    name: str
    owner: str
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class ApiKeyInfo(BaseModel):
    """API key info (without full key)."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    key_prefix: str
    name: str
    owner: str
    is_active: bool
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


# ============== Health & Misc Schemas ==============


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    redis: str
    storage: str
    ffmpeg: str


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    detail: Optional[str] = None
