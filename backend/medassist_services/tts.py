from __future__ import annotations

import json
import logging

import httpx

from medassist_core.errors import SynthesisError

from .http_utils import provider_error_message

logger = logging.getLogger(__name__)

DEFAULT_TTS_BASE_URL = "https://texttospeech.googleapis.com/v1"
DEFAULT_LANGUAGE_CODE = "ar-XA"
DEFAULT_VOICE_NAME = "ar-XA-Wavenet-D"


class TextToSpeechClient:
    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str = DEFAULT_TTS_BASE_URL,
        language_code: str = DEFAULT_LANGUAGE_CODE,
        voice_name: str = DEFAULT_VOICE_NAME,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.base_url = base_url.rstrip("/")
        self.language_code = language_code
        self.voice_name = voice_name
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=8.0), transport=transport)

    async def synthesize(
        self,
        text: str,
        language_code: str | None = None,
        voice_name: str | None = None,
    ) -> str:
        """Return base64-encoded MP3 audio for ``text``."""
        if not self.api_key:
            raise SynthesisError(
                "Failed to synthesize speech: Text-to-Speech API key is not configured.",
                code="tts_unavailable",
            )
        body = {
            "input": {"text": text},
            "voice": {
                "languageCode": language_code or self.language_code,
                "name": voice_name or self.voice_name,
            },
            "audioConfig": {"audioEncoding": "MP3"},
        }
        headers = {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}
        try:
            response = await self._client.post(f"{self.base_url}/text:synthesize", headers=headers, json=body)
        except httpx.HTTPError as exc:
            raise SynthesisError(f"Failed to synthesize speech: {exc}") from exc
        if response.status_code >= 400:
            raise SynthesisError(f"Failed to synthesize speech: {provider_error_message(response)}")
        try:
            payload = response.json()
        except json.JSONDecodeError as exc:
            raise SynthesisError("Failed to synthesize speech: invalid JSON from Text-to-Speech API.") from exc
        audio = payload.get("audioContent") if isinstance(payload, dict) else None
        if not isinstance(audio, str) or not audio:
            raise SynthesisError("Failed to synthesize speech: No audio content received from Text-to-Speech API.")
        return audio

    async def aclose(self) -> None:
        await self._client.aclose()
