"""HTTP client that sends finished recordings to the consultation API."""

import logging
from typing import Optional

import httpx

from vetscribe.recorder.state_machine import PatientAssociation, RecordedAudio

logger = logging.getLogger(__name__)


def recording_filename(mime_type: str) -> str:
    """File name whose extension matches the recorder's encoding."""
    if "wav" in mime_type:
        return "recording.wav"
    if "ogg" in mime_type:
        return "recording.ogg"
    if "mp4" in mime_type:
        return "recording.mp4"
    return "recording.webm"


class ConsultationUploader:
    """
    Posts recordings to `POST /v1/consultations`.

    Usable directly as the `upload` callable of RecordingStateMachine.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 120.0,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = {"Authorization": f"Bearer {api_key}"}

    async def upload(self, recording: RecordedAudio, patient: PatientAssociation) -> dict:
        """Upload a recording and return the created consultation."""
        data = {"duration_seconds": str(recording.duration_seconds)}
        if patient.patient_id:
            data["patient_id"] = patient.patient_id
        if patient.client_name:
            data["client_name"] = patient.client_name

        response = await self._client.post(
            "/v1/consultations",
            headers=self._headers,
            data=data,
            files={
                "audio": (
                    recording_filename(recording.mime_type),
                    recording.data,
                    recording.mime_type,
                )
            },
        )
        response.raise_for_status()

        consultation = response.json()
        logger.info(f"Uploaded recording as consultation {consultation.get('id')}")
        return consultation

    async def __call__(self, recording: RecordedAudio, patient: PatientAssociation) -> dict:
        return await self.upload(recording, patient)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "ConsultationUploader":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
