from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, AsyncIterable, AsyncIterator, Awaitable, Callable

from medassist_core.errors import MediaAccessError
from medassist_core.notices import Notifier

logger = logging.getLogger(__name__)

IDLE = "idle"
LISTENING = "listening"
ENDED = "ended"
ERRORED = "errored"

NO_SPEECH = "no-speech"

SubmitCallback = Callable[[str], Awaitable[Any]]


@dataclass(frozen=True)
class RecognitionEvent:
    """Raw recognizer output: ``start``, ``result``, ``error`` or ``end``."""

    kind: str
    transcript: str = ""
    error: str | None = None


@dataclass(frozen=True)
class SpeechEvent:
    kind: str
    state: str
    transcript: str = ""
    error_code: str | None = None
    message: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class SpeechRecognitionSession:
    """Single-utterance recognition as one async event stream.

    When ``auto_submit`` is on, a non-empty transcript is handed to ``submit``
    as soon as the recognizer ends; otherwise it is left for manual sending.
    """

    _TRANSITIONS = {
        IDLE: {LISTENING, ENDED, ERRORED},
        LISTENING: {LISTENING, ENDED, ERRORED},
        ENDED: {LISTENING},
        ERRORED: {LISTENING, ENDED},
    }

    def __init__(
        self,
        *,
        language: str = "ar-SA",
        auto_submit: bool = True,
        submit: SubmitCallback | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self.language = language
        self.auto_submit = auto_submit
        self._submit = submit
        self._notifier = notifier
        self.state = IDLE
        self.transcript = ""
        self.submitted: Any = None

    def _transition(self, next_state: str) -> None:
        if next_state not in self._TRANSITIONS.get(self.state, set()):
            raise MediaAccessError(f"Invalid recognition transition: {self.state} -> {next_state}")
        self.state = next_state

    def _event(self, kind: str, **fields: Any) -> SpeechEvent:
        return SpeechEvent(kind=kind, state=self.state, transcript=self.transcript, **fields)

    async def run(self, source: AsyncIterable[RecognitionEvent]) -> AsyncIterator[SpeechEvent]:
        if self.state == LISTENING:
            if self._notifier is not None:
                self._notifier.notify(
                    "speech_busy.title",
                    self._notifier.text("speech_busy.body"),
                    code="already_listening",
                )
            raise MediaAccessError("Speech recognition is already listening.", code="already_listening")

        self.transcript = ""
        self.submitted = None
        ended = False
        async for raw in source:
            if raw.kind == "start":
                self._transition(LISTENING)
                yield self._event("listening")
            elif raw.kind == "result":
                self.transcript = raw.transcript.strip()
                yield self._event("transcript")
            elif raw.kind == "error":
                if raw.error == NO_SPEECH:
                    logger.debug("no speech detected (%s)", self.language)
                    continue
                self._transition(ERRORED)
                error = MediaAccessError(raw.error or "unknown", code="speech_error")
                if self._notifier is not None:
                    self._notifier.error("speech_error.title", error)
                yield self._event("error", error_code=raw.error or "unknown", message=str(error))
            elif raw.kind == "end":
                ended = True
                break
            else:
                logger.debug("ignoring recognizer event %s", raw.kind)

        if not ended:
            logger.debug("recognizer source closed without an end event")
        if self.state != ERRORED:
            self._transition(ENDED)
        yield self._event("ended")

        if self.state != ERRORED and self.auto_submit and self.transcript and self._submit is not None:
            self.submitted = await self._submit(self.transcript)
            yield self._event("submitted")


async def transcript_events(transcript_text: str) -> AsyncIterator[RecognitionEvent]:
    """Recognizer events for one transcribed recording."""
    yield RecognitionEvent("start")
    text = (transcript_text or "").strip()
    if text:
        yield RecognitionEvent("result", transcript=text)
    else:
        yield RecognitionEvent("error", error=NO_SPEECH)
    yield RecognitionEvent("end")
