"""Consultation processing pipeline: normalize -> transcribe -> summarize -> persist."""

import asyncio
import logging
import time
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vetscribe.db.models import Consultation, ConsultationStatus
from vetscribe.services.ai import (
    NoteGenerator,
    Transcriber,
    format_soap_note,
    note_generator as default_note_generator,
    transcriber as default_transcriber,
)
from vetscribe.services.audio import AudioNormalizer, audio_normalizer
from vetscribe.services.errors import TranscriptionError
from vetscribe.services.storage import BlobStorage, blob_storage

logger = logging.getLogger(__name__)


async def _finish(
    db: AsyncSession,
    consultation_id: str,
    status: ConsultationStatus,
    **values,
) -> bool:
    """
    Move a consultation out of processing.

    The update only matches rows still in processing, so a consultation
    reaches a terminal status at most once. Returns whether a row changed.
    """
    result = await db.execute(
        update(Consultation)
        .where(
            Consultation.id == consultation_id,
            Consultation.status == ConsultationStatus.PROCESSING,
        )
        .values(status=status, **values)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount == 1


async def mark_failed(
    consultation_id: str,
    session_factory: Optional[async_sessionmaker] = None,
) -> bool:
    """Set status=failed and nothing else."""
    if session_factory is None:
        from vetscribe.db.session import async_session_maker as session_factory

    async with session_factory() as db:
        return await _finish(db, consultation_id, ConsultationStatus.FAILED)


async def _transcribe_and_summarize(
    consultation_id: str,
    audio_path: str,
    storage: BlobStorage,
    normalizer: AudioNormalizer,
    transcriber: Transcriber,
    note_generator: NoteGenerator,
) -> tuple[str, str]:
    with storage.local_copy(audio_path) as source:
        normalized = await asyncio.to_thread(normalizer.normalize, source)
        with normalized:
            logger.info(
                f"Transcribing consultation {consultation_id} "
                f"(strategy={normalized.strategy})"
            )
            text = await asyncio.to_thread(transcriber.transcribe, normalized.path)

    if not text or not text.strip():
        raise TranscriptionError("Transcription service returned no text")

    note = await asyncio.to_thread(note_generator.summarize, text)
    return text, format_soap_note(note)


async def process_consultation(
    consultation_id: str,
    *,
    session_factory: Optional[async_sessionmaker] = None,
    storage: BlobStorage = blob_storage,
    normalizer: AudioNormalizer = audio_normalizer,
    transcriber: Transcriber = default_transcriber,
    note_generator: NoteGenerator = default_note_generator,
    timeout_seconds: Optional[float] = None,
) -> Optional[ConsultationStatus]:
    """
    Run the pipeline once for a consultation.

    Returns the terminal status, the current status if the consultation had
    already left processing, or None if it does not exist (or was finished
    by someone else mid-run). Never raises for a step failure: the
    consultation is marked failed instead. Running longer than
    `timeout_seconds` is a step failure too.
    """
    if session_factory is None:
        from vetscribe.db.session import async_session_maker as session_factory

    start_time = time.time()

    try:
        async with session_factory() as db:
            result = await db.execute(
                select(Consultation.audio_path, Consultation.status).where(
                    Consultation.id == consultation_id
                )
            )
            row = result.one_or_none()

        if row is None:
            logger.error(f"Consultation {consultation_id} not found, nothing to process")
            return None

        audio_path, status = row
        if status.is_terminal:
            logger.warning(
                f"Consultation {consultation_id} is already {status.value}, skipping"
            )
            return status

        text, soap_note = await asyncio.wait_for(
            _transcribe_and_summarize(
                consultation_id, audio_path, storage, normalizer, transcriber, note_generator
            ),
            timeout=timeout_seconds,
        )

        async with session_factory() as db:
            changed = await _finish(
                db,
                consultation_id,
                ConsultationStatus.COMPLETED,
                full_transcription=text,
                ai_soap_note=soap_note,
                # Keep a user edit made while processing.
                final_soap_note=func.coalesce(Consultation.final_soap_note, soap_note),
            )

        if not changed:
            logger.warning(f"Consultation {consultation_id} left processing during the run")
            return None

        processing_time_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Transcription completed for consultation {consultation_id} in {processing_time_ms}ms"
        )
        return ConsultationStatus.COMPLETED

    except asyncio.TimeoutError:
        logger.error(
            f"Processing consultation {consultation_id} exceeded {timeout_seconds}s"
        )
        await mark_failed(consultation_id, session_factory)
        return ConsultationStatus.FAILED

    except Exception:
        logger.exception(f"Error processing transcription for consultation {consultation_id}")
        await mark_failed(consultation_id, session_factory)
        return ConsultationStatus.FAILED
