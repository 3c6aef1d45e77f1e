"""Speech-to-text and SOAP note generation using the OpenAI API."""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Union

from openai import OpenAI, OpenAIError

from vetscribe.config import get_settings
from vetscribe.services.errors import NoteGenerationError, TranscriptionError

settings = get_settings()
logger = logging.getLogger(__name__)

NOT_MENTIONED = "Not mentioned"

SOAP_SECTIONS = (
    ("subjective", "Subjective"),
    ("objective", "Objective"),
    ("assessment", "Assessment"),
    ("plan", "Plan"),
)

SYSTEM_PROMPT = (
    "You are a veterinary clinical assistant that extracts structured clinical "
    "information from consultation transcriptions."
)

NOTE_PROMPT = """
You are a veterinary clinical assistant. Analyze the following consultation transcription and extract only clinically relevant information. Exclude chit-chat and non-medical conversation.

Please provide a SOAP note in JSON format with the following fields:
- subjective: History, owner-reported concerns, symptoms, timeline
- objective: Physical exam findings, vitals, diagnostics, measurable observations
- assessment: Differential diagnoses or assessment
- plan: Treatment plan, medications, follow-up, client instructions

If a section is not mentioned in the transcript, use "{placeholder}".

Transcription:
{transcription}

Respond with only the JSON object."""


@dataclass(frozen=True)
class ParsedNote:
    """A note service response that parsed into the four sections."""

    subjective: str
    objective: str
    assessment: str
    plan: str


@dataclass(frozen=True)
class UnparseableNote:
    """A note service response that was not a JSON object."""

    raw: str


NoteResult = Union[ParsedNote, UnparseableNote]


class Transcriber(Protocol):
    def transcribe(self, audio_path: Path) -> str:  # pragma: no cover - interface
        ...


class NoteGenerator(Protocol):
    def summarize(self, transcription: str) -> NoteResult:  # pragma: no cover - interface
        ...


def parse_note_response(content: Optional[str]) -> NoteResult:
    """
    Turn the raw model output into a NoteResult.

    Missing or blank sections become the placeholder; anything that is not a
    JSON object is Unparseable.
    """
    try:
        data = json.loads(content or "")
    except (TypeError, ValueError):
        return UnparseableNote(raw=content or "")

    if not isinstance(data, dict):
        return UnparseableNote(raw=content or "")

    sections = {}
    for key, _ in SOAP_SECTIONS:
        value = data.get(key)
        if isinstance(value, (list, dict)):
            value = json.dumps(value, ensure_ascii=False)
        elif value is not None:
            value = str(value).strip()
        sections[key] = value or NOT_MENTIONED

    return ParsedNote(**sections)


def format_soap_note(result: NoteResult) -> str:
    """Render the display text: fixed headers, fixed order."""
    if isinstance(result, UnparseableNote):
        values = {key: NOT_MENTIONED for key, _ in SOAP_SECTIONS}
    else:
        values = {key: getattr(result, key) for key, _ in SOAP_SECTIONS}

    return "\n\n".join(f"{header}:\n{values[key]}" for key, header in SOAP_SECTIONS)


def _build_client(api_key: str | None, timeout: float | None) -> OpenAI:
    # Retries are the service's concern, not ours.
    return OpenAI(
        api_key=api_key or settings.openai_api_key or None,
        timeout=timeout or settings.openai_timeout_seconds,
        max_retries=0,
    )


class OpenAITranscriber:
    """Whisper transcription through the OpenAI API."""

    def __init__(
        self,
        model: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
    ):
        self._model = model or settings.transcription_model
        self._api_key = api_key
        self._timeout = timeout
        self._client: OpenAI | None = None

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = _build_client(self._api_key, self._timeout)
        return self._client

    def transcribe(self, audio_path: Path) -> str:
        try:
            with open(audio_path, "rb") as f:
                transcription = self.client.audio.transcriptions.create(
                    file=f,
                    model=self._model,
                )
        except (OpenAIError, OSError) as e:
            raise TranscriptionError(f"Failed to transcribe audio: {e}") from e

        return transcription.text


class OpenAINoteGenerator:
    """SOAP note extraction with a JSON-mode chat completion."""

    def __init__(
        self,
        model: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
    ):
        self._model = model or settings.note_model
        self._api_key = api_key
        self._timeout = timeout
        self._client: OpenAI | None = None

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = _build_client(self._api_key, self._timeout)
        return self._client

    def summarize(self, transcription: str) -> NoteResult:
        prompt = NOTE_PROMPT.format(placeholder=NOT_MENTIONED, transcription=transcription)
        try:
            response = self.client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                response_format={"type": "json_object"},
            )
        except OpenAIError as e:
            raise NoteGenerationError(f"Failed to generate SOAP note: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        result = parse_note_response(content)
        if isinstance(result, UnparseableNote):
            logger.warning(f"Note service returned an unparseable body ({len(result.raw)} chars)")
        return result


# Singleton instances
transcriber = OpenAITranscriber()
note_generator = OpenAINoteGenerator()
