"""Errors raised to the user by the recorder."""


class RecorderError(Exception):
    """Base class for recorder errors. The message is shown to the user."""


class ConsentRequiredError(RecorderError):
    def __init__(self, message: str = "Please confirm client consent before recording."):
        super().__init__(message)


class CaptureError(RecorderError):
    """No patient selected, or the capture device could not be used."""


class EmptyRecordingError(RecorderError):
    """The recording produced no audio; nothing was uploaded."""


class InvalidTransitionError(RecorderError):
    """The requested action is not valid in the current state."""
