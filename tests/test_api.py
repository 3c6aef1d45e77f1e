"""Tests for the consultation endpoints and the upload gateway."""

from pathlib import Path

import pytest
from httpx import AsyncClient

from vetscribe.services.consultation_service import build_file_name, consultation_service
from vetscribe.services.errors import StorageWriteError
from vetscribe.services.storage import LocalBlobStorage, extension_for

AUDIO = b"\x1aE\xdf\xa3" + b"\x00" * 2048  # webm magic + filler


def _upload(audio: bytes = AUDIO, content_type: str = "audio/webm;codecs=opus"):
    return {"audio": ("recording.webm", audio, content_type)}


def _stored_files(storage: LocalBlobStorage) -> list[Path]:
    if not storage.base_dir.exists():
        return []
    return [p for p in storage.base_dir.rglob("*") if p.is_file()]


@pytest.mark.asyncio
async def test_root_endpoint(client: AsyncClient):
    """Test root endpoint."""
    response = await client.get("/")
    assert response.status_code == 200
    assert response.json()["service"] == "VetScribe"


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    """Test health check endpoint."""
    response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert "status" in data
    assert data["storage"] in ("ok", "error")


@pytest.mark.asyncio
async def test_create_consultation_without_auth(client: AsyncClient):
    """Test upload without authentication."""
    response = await client.post(
        "/v1/consultations", files=_upload(), data={"client_name": "Jane Doe"}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_create_consultation_starts_processing(
    client: AsyncClient, auth_headers: dict, patient, storage, enqueued
):
    response = await client.post(
        "/v1/consultations",
        headers=auth_headers,
        files=_upload(),
        data={"patient_id": patient.id, "duration_seconds": "10"},
    )
    assert response.status_code == 201
    created = response.json()

    assert created["status"] == "processing"
    assert created["full_transcription"] is None
    assert created["ai_soap_note"] is None
    assert created["final_soap_note"] is None
    assert created["is_finalized"] is False
    assert created["client_name"] == "Jane Doe"
    assert created["patient_number"] == "P1"
    assert created["pet_name"] == "Rex"
    assert created["duration_seconds"] == 10
    assert created["file_name"].startswith("P1_Rex_")
    assert enqueued == [created["id"]]

    polled = await client.get(f"/v1/consultations/{created['id']}", headers=auth_headers)
    assert polled.status_code == 200
    data = polled.json()
    assert data["status"] == "processing"
    assert data["full_transcription"] is None
    assert data["ai_soap_note"] is None

    files = _stored_files(storage)
    assert len(files) == 1
    assert files[0].suffix == ".webm"
    assert files[0].read_bytes() == AUDIO


@pytest.mark.asyncio
async def test_create_consultation_with_client_name_only(
    client: AsyncClient, auth_headers: dict
):
    response = await client.post(
        "/v1/consultations",
        headers=auth_headers,
        files=_upload(content_type="audio/ogg"),
        data={"client_name": "Walk-in O'Brien"},
    )
    assert response.status_code == 201
    data = response.json()
    assert data["patient_id"] is None
    assert data["client_name"] == "Walk-in O'Brien"
    assert data["patient_number"] == "unknown"
    assert data["pet_name"] == "patient"


@pytest.mark.asyncio
async def test_missing_audio_is_rejected_before_any_write(
    client: AsyncClient, auth_headers: dict, storage, enqueued
):
    response = await client.post(
        "/v1/consultations",
        headers=auth_headers,
        files=_upload(audio=b""),
        data={"client_name": "Jane Doe"},
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Audio file is required"

    listing = await client.get("/v1/consultations", headers=auth_headers)
    assert listing.json()["total"] == 0
    assert _stored_files(storage) == []
    assert enqueued == []


@pytest.mark.asyncio
async def test_missing_patient_association_is_rejected(
    client: AsyncClient, auth_headers: dict, storage, enqueued
):
    response = await client.post(
        "/v1/consultations",
        headers=auth_headers,
        files=_upload(),
        data={"client_name": "   "},
    )
    assert response.status_code == 400

    listing = await client.get("/v1/consultations", headers=auth_headers)
    assert listing.json()["total"] == 0
    assert _stored_files(storage) == []
    assert enqueued == []


@pytest.mark.asyncio
async def test_unknown_patient_is_rejected(
    client: AsyncClient, auth_headers: dict, storage
):
    response = await client.post(
        "/v1/consultations",
        headers=auth_headers,
        files=_upload(),
        data={"patient_id": "00000000-0000-0000-0000-000000000000"},
    )
    assert response.status_code == 404
    assert _stored_files(storage) == []


@pytest.mark.asyncio
async def test_storage_failure_creates_no_record(
    client: AsyncClient, auth_headers: dict, monkeypatch, enqueued
):
    class BrokenStorage(LocalBlobStorage):
        def write_file(self, content, key, content_type=None):
            raise StorageWriteError("disk full")

    monkeypatch.setattr(consultation_service, "storage", BrokenStorage())

    response = await client.post(
        "/v1/consultations",
        headers=auth_headers,
        files=_upload(),
        data={"client_name": "Jane Doe"},
    )
    assert response.status_code == 500

    listing = await client.get("/v1/consultations", headers=auth_headers)
    assert listing.json()["total"] == 0
    assert enqueued == []


@pytest.mark.asyncio
async def test_enqueue_failure_marks_consultation_failed(
    client: AsyncClient, auth_headers: dict, monkeypatch, session_factory
):
    from vetscribe.services import pipeline

    def broken_enqueue(consultation_id):
        raise ConnectionError("broker unavailable")

    async def mark_failed(consultation_id):
        return await pipeline.mark_failed(consultation_id, session_factory)

    monkeypatch.setattr("vetscribe.api.consultations.enqueue_consultation", broken_enqueue)
    monkeypatch.setattr("vetscribe.api.consultations.mark_failed", mark_failed)

    response = await client.post(
        "/v1/consultations",
        headers=auth_headers,
        files=_upload(),
        data={"client_name": "Jane Doe"},
    )
    assert response.status_code == 201

    assert response.json()["status"] == "failed"

    polled = await client.get(f"/v1/consultations/{response.json()['id']}", headers=auth_headers)
    assert polled.json()["status"] == "failed"


@pytest.mark.asyncio
async def test_get_nonexistent_consultation(client: AsyncClient, auth_headers: dict):
    response = await client.get(
        "/v1/consultations/00000000-0000-0000-0000-000000000000",
        headers=auth_headers,
    )
    assert response.status_code == 404

    response = await client.get("/v1/consultations/not-a-uuid", headers=auth_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_consultations_are_scoped_to_owner(
    client: AsyncClient, auth_headers: dict, db_session
):
    from vetscribe.auth.security import create_api_key

    created = await client.post(
        "/v1/consultations",
        headers=auth_headers,
        files=_upload(),
        data={"client_name": "Jane Doe"},
    )
    _, other_key = await create_api_key(db_session, name="Other", owner="dr-other")
    await db_session.commit()
    other_headers = {"Authorization": f"Bearer {other_key}"}

    response = await client.get(f"/v1/consultations/{created.json()['id']}", headers=other_headers)
    assert response.status_code == 404

    listing = await client.get("/v1/consultations", headers=other_headers)
    assert listing.json()["total"] == 0


@pytest.mark.asyncio
async def test_list_consultations_filters_by_status(client: AsyncClient, auth_headers: dict):
    for name in ("A", "B"):
        await client.post(
            "/v1/consultations",
            headers=auth_headers,
            files=_upload(),
            data={"client_name": name},
        )

    response = await client.get("/v1/consultations?status=processing", headers=auth_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert data["total_pages"] == 1
    assert {c["client_name"] for c in data["consultations"]} == {"A", "B"}

    response = await client.get("/v1/consultations?status=completed", headers=auth_headers)
    assert response.json()["total"] == 0

    response = await client.get("/v1/consultations?status=bogus", headers=auth_headers)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_edit_and_finalize_never_touches_status(client: AsyncClient, auth_headers: dict):
    created = await client.post(
        "/v1/consultations",
        headers=auth_headers,
        files=_upload(),
        data={"client_name": "Jane Doe"},
    )
    consultation_id = created.json()["id"]

    response = await client.patch(
        f"/v1/consultations/{consultation_id}",
        headers=auth_headers,
        json={"final_soap_note": "Edited note", "is_finalized": True},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["final_soap_note"] == "Edited note"
    assert data["is_finalized"] is True
    assert data["status"] == "processing"

    response = await client.patch(
        f"/v1/consultations/{consultation_id}",
        headers=auth_headers,
        json={"status": "completed"},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_delete_removes_record_and_audio(
    client: AsyncClient, auth_headers: dict, storage
):
    created = await client.post(
        "/v1/consultations",
        headers=auth_headers,
        files=_upload(),
        data={"client_name": "Jane Doe"},
    )
    consultation_id = created.json()["id"]
    assert len(_stored_files(storage)) == 1

    response = await client.delete(f"/v1/consultations/{consultation_id}", headers=auth_headers)
    assert response.status_code == 204

    response = await client.get(f"/v1/consultations/{consultation_id}", headers=auth_headers)
    assert response.status_code == 404
    assert _stored_files(storage) == []


@pytest.mark.asyncio
async def test_admin_creates_api_key(client: AsyncClient):
    from vetscribe.config import get_settings

    response = await client.post(
        "/v1/admin/api-keys",
        headers={"X-Admin-Key": get_settings().secret_key},
        json={"name": "Front desk", "owner": "dr-new"},
    )
    assert response.status_code == 201
    data = response.json()
    assert data["api_key"].startswith("vsk_")
    assert data["owner"] == "dr-new"

    response = await client.post(
        "/v1/admin/api-keys",
        headers={"X-Admin-Key": "wrong"},
        json={"name": "Front desk", "owner": "dr-new"},
    )
    assert response.status_code == 403


def test_build_file_name_is_sanitized():
    from datetime import datetime

    name = build_file_name("P-1/x", "Mr. Whiskers", datetime(2026, 3, 4, 5, 6, 7))
    assert name == "P_1_x_Mr__Whiskers_20260304_050607"


@pytest.mark.parametrize(
    "content_type,filename,expected",
    [
        ("audio/webm;codecs=opus", "recording.webm", ".webm"),
        ("audio/ogg; codecs=opus", None, ".ogg"),
        ("audio/wav", "x.bin", ".wav"),
        ("application/octet-stream", "visit.mp3", ".mp3"),
        (None, None, ".webm"),
    ],
)
def test_extension_for(content_type, filename, expected):
    assert extension_for(content_type, filename) == expected


async def _failing_commit():
    raise RuntimeError("database went away")


@pytest.mark.asyncio
async def test_failed_commit_on_upload_removes_audio(
    lenient_client: AsyncClient, auth_headers: dict, db_session, storage, enqueued, monkeypatch
):
    monkeypatch.setattr(db_session, "commit", _failing_commit)

    response = await lenient_client.post(
        "/v1/consultations",
        headers=auth_headers,
        files=_upload(),
        data={"client_name": "Jane Doe"},
    )
    assert response.status_code == 500
    assert _stored_files(storage) == []
    assert enqueued == []


@pytest.mark.asyncio
async def test_failed_commit_on_delete_keeps_audio(
    lenient_client: AsyncClient, auth_headers: dict, db_session, storage, monkeypatch
):
    created = await lenient_client.post(
        "/v1/consultations",
        headers=auth_headers,
        files=_upload(),
        data={"client_name": "Jane Doe"},
    )
    assert created.status_code == 201
    assert len(_stored_files(storage)) == 1

    monkeypatch.setattr(db_session, "commit", _failing_commit)
    response = await lenient_client.delete(
        f"/v1/consultations/{created.json()['id']}", headers=auth_headers
    )
    assert response.status_code == 500
    assert len(_stored_files(storage)) == 1
