from __future__ import annotations


class MedAssistError(Exception):
    code = "medassist_error"

    def __init__(self, message: str = "", *, code: str | None = None) -> None:
        super().__init__(message)
        if code:
            self.code = code


class EmptyInputError(MedAssistError):
    code = "empty_input"


class InvalidMediaError(MedAssistError, ValueError):
    code = "invalid_media"


class StreamError(MedAssistError):
    code = "stream_error"


class GenerationError(MedAssistError):
    code = "generation_error"

    def __init__(self, message: str = "", *, status_code: int | None = None, code: str | None = None) -> None:
        super().__init__(message, code=code)
        self.status_code = status_code


class PersistenceError(MedAssistError):
    code = "persistence_error"


class IdentityError(MedAssistError):
    code = "identity_error"


class MediaAccessError(MedAssistError):
    code = "media_access_error"


class SynthesisError(MedAssistError):
    code = "synthesis_error"


class RequestInFlightError(MedAssistError):
    code = "request_in_flight"


class TranscriptionError(MedAssistError):
    code = "transcription_error"

    def __init__(self, message: str = "", *, status_code: int = 502, code: str | None = None) -> None:
        super().__init__(message, code=code)
        self.status_code = status_code
