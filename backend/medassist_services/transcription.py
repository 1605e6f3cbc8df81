from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from medassist_core.errors import TranscriptionError

from .http_utils import provider_error_message

logger = logging.getLogger(__name__)

DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"


def estimate_transcription_confidence(segments: list[dict[str, Any]]) -> float:
    if not segments:
        return 0.8
    scores: list[float] = []
    for segment in segments:
        if not isinstance(segment, dict):
            continue
        local_scores: list[float] = []
        avg_logprob = segment.get("avg_logprob")
        if isinstance(avg_logprob, (int, float)):
            local_scores.append(max(0.0, min(1.0, 1.0 + (float(avg_logprob) / 2.5))))
        no_speech_prob = segment.get("no_speech_prob")
        if isinstance(no_speech_prob, (int, float)):
            local_scores.append(max(0.0, min(1.0, 1.0 - float(no_speech_prob))))
        if local_scores:
            scores.append(sum(local_scores) / len(local_scores))
    if not scores:
        return 0.8
    return round(max(0.0, min(1.0, sum(scores) / len(scores))), 3)


class WhisperTranscriber:
    """Server-side speech-to-text for recorded utterances."""

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str = DEFAULT_OPENAI_BASE_URL,
        model: str = "whisper-1",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.base_url = base_url.rstrip("/")
        self.model = model
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(60.0, connect=10.0), transport=transport)

    async def transcribe(
        self,
        *,
        file_name: str,
        mime_type: str,
        audio_bytes: bytes,
        language_hint: str | None = None,
        prompt: str | None = None,
    ) -> dict[str, Any]:
        if not self.api_key:
            raise TranscriptionError("Transcription API key is not configured.", status_code=503)
        payload: dict[str, Any] = {"model": self.model, "response_format": "verbose_json"}
        if language_hint:
            # Whisper takes ISO-639-1 codes; browser tags like ar-SA are trimmed.
            payload["language"] = language_hint.strip().split("-")[0].lower()
        if prompt:
            payload["prompt"] = prompt.strip()

        files = {"file": (file_name, audio_bytes, mime_type or "application/octet-stream")}
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            response = await self._client.post(
                f"{self.base_url}/audio/transcriptions",
                headers=headers,
                data=payload,
                files=files,
            )
        except httpx.TimeoutException as exc:
            raise TranscriptionError("Transcription provider timed out.", status_code=504) from exc
        except httpx.HTTPError as exc:
            raise TranscriptionError("Failed to reach transcription provider.", status_code=502) from exc

        if response.status_code >= 400:
            provider_error = provider_error_message(response)
            if response.status_code == 401:
                raise TranscriptionError("Transcription API key was rejected by provider.", status_code=503)
            if response.status_code == 429:
                raise TranscriptionError("Transcription provider is rate-limited. Retry shortly.", status_code=429)
            raise TranscriptionError(f"Transcription failed: {provider_error}", status_code=502)

        try:
            payload_json = response.json()
        except json.JSONDecodeError as exc:
            raise TranscriptionError("Transcription provider returned invalid JSON.", status_code=502) from exc

        raw_segments = payload_json.get("segments")
        segments = [item for item in raw_segments if isinstance(item, dict)] if isinstance(raw_segments, list) else []
        return {
            "transcript_text": str(payload_json.get("text") or "").strip(),
            "confidence": estimate_transcription_confidence(segments),
            "segments": segments,
        }

    async def aclose(self) -> None:
        await self._client.aclose()
