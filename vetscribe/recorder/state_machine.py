"""Recording state machine driving an audio capture device.

idle -> recording <-> paused -> stopped -> idle

All methods are meant to be called from one asyncio event loop; device
callbacks must be delivered on that loop as well.
"""

import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol

from vetscribe.recorder.errors import (
    CaptureError,
    ConsentRequiredError,
    EmptyRecordingError,
    InvalidTransitionError,
)

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "audio/webm"
DEFAULT_TIMESLICE_MS = 1000
DEFAULT_SETTLE_DELAY = 0.1


class RecordingState(str, enum.Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PAUSED = "paused"
    STOPPED = "stopped"


@dataclass(frozen=True)
class PatientAssociation:
    """The patient a recording belongs to: a patient ID, a display name, or both."""

    patient_id: Optional[str] = None
    client_name: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.patient_id or "").strip() and not (self.client_name or "").strip()


@dataclass(frozen=True)
class RecordedAudio:
    data: bytes
    mime_type: str
    duration_seconds: int

    @property
    def size(self) -> int:
        return len(self.data)


class CaptureDevice(Protocol):
    """A started-once audio source, e.g. a microphone stream with an encoder."""

    mime_type: Optional[str]

    def start(self, timeslice_ms: int, on_data: Callable[[bytes], None]) -> None:
        """Begin capture, calling on_data with an encoded fragment every timeslice."""

    def pause(self) -> None: ...

    def resume(self) -> None: ...

    def stop(self) -> None:
        """Stop capture. A final fragment may still be delivered shortly after."""


UploadFn = Callable[[RecordedAudio, PatientAssociation], Awaitable[Any]]


def format_duration(seconds: int) -> str:
    """Format seconds as HH:MM:SS."""
    hours, rest = divmod(int(seconds), 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


class RecordingStateMachine:
    """
    Records one consultation at a time and hands the result to an uploader.

    Elapsed time is derived from the clock readings taken at each
    start/pause/resume, so nothing has to tick in the background.

    Args:
        open_device: Returns a fresh capture device for each recording.
        upload: Coroutine function receiving the finished recording.
        on_upload_complete: Called with the upload result.
        on_upload_error: Called with the exception if the upload fails.
        clock: Monotonic clock in seconds.
    """

    def __init__(
        self,
        open_device: Callable[[], CaptureDevice],
        upload: UploadFn,
        *,
        on_upload_complete: Optional[Callable[[Any], None]] = None,
        on_upload_error: Optional[Callable[[BaseException], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        timeslice_ms: int = DEFAULT_TIMESLICE_MS,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
    ):
        self._open_device = open_device
        self._upload = upload
        self._on_upload_complete = on_upload_complete
        self._on_upload_error = on_upload_error
        self._clock = clock
        self.timeslice_ms = timeslice_ms
        self.settle_delay = settle_delay

        self._state = RecordingState.IDLE
        self._device: Optional[CaptureDevice] = None
        self._patient: Optional[PatientAssociation] = None
        self._chunks: list[bytes] = []
        self._session = 0
        self._elapsed_before_span = 0.0
        self._span_started_at: Optional[float] = None
        self._uploads: set[asyncio.Task] = set()

    @property
    def state(self) -> RecordingState:
        return self._state

    @property
    def fragment_count(self) -> int:
        return len(self._chunks)

    @property
    def elapsed_seconds(self) -> int:
        """Whole seconds spent in the recording state."""
        total = self._elapsed_before_span
        if self._span_started_at is not None:
            total += self._clock() - self._span_started_at
        return int(total)

    @property
    def pending_uploads(self) -> set[asyncio.Task]:
        return set(self._uploads)

    def _require(self, *states: RecordingState) -> None:
        if self._state not in states:
            raise InvalidTransitionError(f"Cannot do that while {self._state.value}")

    def _open_span(self) -> None:
        self._span_started_at = self._clock()

    def _close_span(self) -> None:
        if self._span_started_at is not None:
            self._elapsed_before_span += self._clock() - self._span_started_at
            self._span_started_at = None

    def _reset(self) -> None:
        self._state = RecordingState.IDLE
        self._device = None
        self._patient = None
        self._chunks = []
        self._elapsed_before_span = 0.0
        self._span_started_at = None

    def _on_data(self, session: int, fragment: bytes) -> None:
        # Late fragments from a previous recording are not ours.
        if session != self._session or self._state is RecordingState.IDLE:
            return
        if fragment:
            self._chunks.append(bytes(fragment))

    def start(self, patient: PatientAssociation, consent_confirmed: bool) -> None:
        """idle -> recording. Refused without consent, then without a patient."""
        self._require(RecordingState.IDLE)

        if not consent_confirmed:
            raise ConsentRequiredError()
        if patient is None or patient.is_empty:
            raise CaptureError("Please select a patient before recording")

        self._session += 1
        session = self._session
        try:
            device = self._open_device()
            device.start(self.timeslice_ms, lambda data: self._on_data(session, data))
        except Exception as e:
            logger.warning(f"Could not start capture: {e}")
            raise CaptureError(
                "Failed to start recording. Please check microphone permissions."
            ) from e

        self._device = device
        self._patient = patient
        self._chunks = []
        self._elapsed_before_span = 0.0
        self._state = RecordingState.RECORDING
        self._open_span()

    def pause(self) -> None:
        """recording -> paused."""
        self._require(RecordingState.RECORDING)
        self._device.pause()
        self._close_span()
        self._state = RecordingState.PAUSED

    def resume(self) -> None:
        """paused -> recording."""
        self._require(RecordingState.PAUSED)
        self._device.resume()
        self._state = RecordingState.RECORDING
        self._open_span()

    async def stop(self) -> asyncio.Task:
        """
        recording|paused -> stopped -> idle.

        Waits `settle_delay` for the trailing fragment, then assembles the
        recording and schedules its upload. The machine is back in idle when
        this returns, whatever happens to the upload.

        Returns:
            The upload task.

        Raises:
            EmptyRecordingError: nothing was captured; no upload happens.
        """
        self._require(RecordingState.RECORDING, RecordingState.PAUSED)

        self._close_span()
        self._state = RecordingState.STOPPED
        device = self._device
        try:
            device.stop()
        except Exception as e:
            logger.warning(f"Capture device failed to stop cleanly: {e}")

        try:
            await asyncio.sleep(self.settle_delay)
            chunks = list(self._chunks)
            mime_type = getattr(device, "mime_type", None) or DEFAULT_MIME_TYPE
            duration = self.elapsed_seconds
            patient = self._patient
        finally:
            self._reset()

        if not chunks:
            raise EmptyRecordingError("No audio data was recorded. Please try again.")

        recording = RecordedAudio(data=b"".join(chunks), mime_type=mime_type, duration_seconds=duration)
        if recording.size == 0:
            raise EmptyRecordingError("Recording is empty. Please try again.")

        logger.info(f"Created recording: {recording.size} bytes, type: {mime_type}")
        task = asyncio.create_task(self._run_upload(recording, patient))
        self._uploads.add(task)
        task.add_done_callback(self._uploads.discard)
        return task

    async def _run_upload(self, recording: RecordedAudio, patient: PatientAssociation) -> Any:
        try:
            result = await self._upload(recording, patient)
        except Exception as e:
            logger.warning(f"Failed to upload recording: {e}")
            if self._on_upload_error:
                self._on_upload_error(e)
            return None

        if self._on_upload_complete:
            self._on_upload_complete(result)
        return result
