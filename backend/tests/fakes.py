from __future__ import annotations

import asyncio
from typing import Any

from medassist_core.errors import SynthesisError
from medassist_services.genai_client import GenerationResponse


class ScriptedStream:
    """Token source replaying fixed chunks, optionally failing part-way."""

    def __init__(self, tokens: list[Any], *, error: Exception | None = None, gate: asyncio.Event | None = None) -> None:
        self.tokens = list(tokens)
        self.error = error
        self.gate = gate

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for index, token in enumerate(self.tokens):
            if index == 1 and self.gate is not None:
                await self.gate.wait()
            await asyncio.sleep(0)
            yield token
        if self.error is not None:
            raise self.error

    async def response(self) -> GenerationResponse:
        if self.error is not None:
            raise self.error
        text = "".join(token if isinstance(token, str) else "" for token in self.tokens)
        return GenerationResponse(text=text, finish_reason="STOP")


class FakeGenAI:
    configured = True

    def __init__(self) -> None:
        self.tokens: list[Any] = ["Hello", " there."]
        self.error: Exception | None = None
        self.raise_on_call: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.json_reply = "{}"
        self.prompts: list[Any] = []
        self.generate_calls: list[dict[str, Any]] = []

    def generate_stream(self, prompt: Any, *, system_instruction: str | None = None) -> ScriptedStream:
        self.prompts.append(prompt)
        if self.raise_on_call is not None:
            raise self.raise_on_call
        return ScriptedStream(self.tokens, error=self.error, gate=self.gate)

    async def generate(self, prompt: Any, *, json_output: bool = False, system_instruction: str | None = None):
        self.generate_calls.append({"prompt": prompt, "json_output": json_output})
        if self.raise_on_call is not None:
            raise self.raise_on_call
        return GenerationResponse(text=self.json_reply, finish_reason="STOP")

    async def aclose(self) -> None:
        return None


class FakeTTS:
    def __init__(self, audio: str = "QUJD") -> None:
        self.audio = audio
        self.error: Exception | None = None
        self.spoken: list[str] = []

    async def synthesize(self, text: str, language_code: str | None = None, voice_name: str | None = None) -> str:
        self.spoken.append(text)
        if self.error is not None:
            raise self.error
        return self.audio

    async def aclose(self) -> None:
        return None


class FailingTTS(FakeTTS):
    def __init__(self) -> None:
        super().__init__()
        self.error = SynthesisError("Failed to synthesize speech: quota exceeded")


class FakeTranscriber:
    def __init__(self, transcript: str = "I have a severe headache for 3 days") -> None:
        self.transcript = transcript
        self.error: Exception | None = None
        self.calls: list[dict[str, Any]] = []

    async def transcribe(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return {
            "transcript_text": self.transcript,
            "confidence": 0.91,
            "segments": [{"id": 0, "text": self.transcript}] if self.transcript else [],
        }

    async def aclose(self) -> None:
        return None
