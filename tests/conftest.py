"""Pytest configuration and fixtures."""

import os
import tempfile
from pathlib import Path
from typing import AsyncGenerator

# Keep file side effects of module-level singletons out of the working tree.
_scratch = Path(tempfile.mkdtemp(prefix="vetscribe-tests-"))
os.environ.setdefault("UPLOAD_DIR", str(_scratch / "uploads"))
os.environ.setdefault("CONVERSION_DIR", str(_scratch / "tmp"))

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from vetscribe.db.models import Base
from vetscribe.db.session import get_db
from vetscribe.main import app
from vetscribe.services.ai import ParsedNote
from vetscribe.services.audio import AudioNormalizer, ConversionStrategy
from vetscribe.services.consultation_service import consultation_service
from vetscribe.services.patient_service import patient_service
from vetscribe.services.storage import LocalBlobStorage

OWNER = "dr-test"


class FakeTranscriber:
    """Returns a fixed transcript or raises."""

    def __init__(self, text: str = "", error: Exception | None = None):
        self.text = text
        self.error = error
        self.calls: list[Path] = []

    def transcribe(self, audio_path: Path) -> str:
        self.calls.append(Path(audio_path))
        if self.error:
            raise self.error
        return self.text


class FakeNoteGenerator:
    """Returns a fixed NoteResult or raises."""

    def __init__(self, result=None, error: Exception | None = None):
        self.result = result
        self.error = error
        self.calls: list[str] = []

    def summarize(self, transcription: str):
        self.calls.append(transcription)
        if self.error:
            raise self.error
        return self.result


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Create a fresh SQLite database per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage(tmp_path, monkeypatch) -> LocalBlobStorage:
    """Blob storage rooted in the test's temp directory."""
    storage = LocalBlobStorage(tmp_path / "uploads")
    monkeypatch.setattr(consultation_service, "storage", storage)
    return storage


@pytest.fixture
def enqueued(monkeypatch) -> list[str]:
    """Consultation IDs handed to the worker queue."""
    ids: list[str] = []
    monkeypatch.setattr("vetscribe.api.consultations.enqueue_consultation", ids.append)
    return ids


@pytest.fixture
def passthrough_normalizer(tmp_path) -> AudioNormalizer:
    """Normalizer that never shells out: the original file is used as-is."""
    return AudioNormalizer(strategies=(ConversionStrategy("original"),), work_dir=tmp_path / "tmp")


@pytest.fixture
def parsed_note() -> ParsedNote:
    return ParsedNote(
        subjective="Vomiting for two days, eating less.",
        objective="Temp 39.4C, mild abdominal discomfort on palpation.",
        assessment="Suspected dietary indiscretion.",
        plan="Bland diet for 3 days, maropitant, recheck if no improvement.",
    )


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, storage, enqueued) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def lenient_client(client: AsyncClient) -> AsyncGenerator[AsyncClient, None]:
    """Same app and overrides, but unhandled errors come back as 500 responses."""
    async with AsyncClient(
        transport=ASGITransport(app=app, raise_app_exceptions=False),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def api_key(db_session: AsyncSession) -> tuple[str, str]:
    """Create a test API key."""
    from vetscribe.auth.security import create_api_key

    api_key_model, full_key = await create_api_key(db_session, name="Test Key", owner=OWNER)
    await db_session.commit()

    return api_key_model.id, full_key


@pytest_asyncio.fixture
async def auth_headers(api_key: tuple[str, str]) -> dict:
    """Get auth headers with test API key."""
    _, full_key = api_key
    return {"Authorization": f"Bearer {full_key}"}


@pytest_asyncio.fixture
async def patient(db_session: AsyncSession):
    """A patient belonging to the test owner."""
    patient = await patient_service.create_patient(
        db_session,
        owner_id=OWNER,
        patient_number="P1",
        client_name="Jane Doe",
        pet_name="Rex",
        pet_breed="Beagle",
    )
    await db_session.commit()
    return patient
