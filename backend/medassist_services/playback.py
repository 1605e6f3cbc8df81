from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from medassist_core.errors import SynthesisError
from medassist_core.notices import Notifier

logger = logging.getLogger(__name__)

AudioSink = Callable[[str], None]


class SpeechPlayback:
    """Fire-and-forget speech for finalized assistant text.

    Starting a new playback stops the previous one. Failures become notices and
    never reach the chat turn that triggered them.
    """

    def __init__(self, tts: Any, notifier: Notifier, sink: AudioSink | None = None) -> None:
        self._tts = tts
        self._notifier = notifier
        self._sink = sink
        self._task: asyncio.Task | None = None

    @property
    def playing(self) -> bool:
        return self._task is not None and not self._task.done()

    def speak(self, text: str) -> asyncio.Task | None:
        if not (text or "").strip():
            return None
        self.stop()
        self._task = asyncio.create_task(self._run(text))
        return self._task

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def wait(self) -> str | None:
        task = self._task
        if task is None:
            return None
        try:
            return await task
        except asyncio.CancelledError:
            return None

    async def _run(self, text: str) -> str | None:
        try:
            audio = await self._tts.synthesize(text)
        except SynthesisError as exc:
            self._notifier.error("tts_failed.title", exc)
            return None
        except Exception as exc:
            logger.exception("unexpected text-to-speech failure")
            self._notifier.error("tts_failed.title", SynthesisError(f"Failed to synthesize speech: {exc}"))
            return None

        audio_uri = f"data:audio/mp3;base64,{audio}"
        if self._sink is not None:
            try:
                self._sink(audio_uri)
            except Exception as exc:
                self._notifier.error("playback_failed.title", exc)
                return None
        return audio_uri
