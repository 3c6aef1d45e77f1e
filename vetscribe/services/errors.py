"""Domain exceptions raised by the consultation services."""


class VetScribeError(Exception):
    """Base class for service errors."""


class ConsultationValidationError(VetScribeError):
    """Upload rejected before anything was written."""


class PatientNotFoundError(VetScribeError):
    """The referenced patient does not exist for this owner."""


class StorageWriteError(VetScribeError):
    """The audio payload could not be persisted."""


class AudioNormalizationError(VetScribeError):
    """No usable audio file could be produced, not even the original."""


class TranscriptionError(VetScribeError):
    """The speech-to-text call failed."""


class NoteGenerationError(VetScribeError):
    """The note generation call failed (transport or service error)."""
