from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator

import httpx

from medassist_core.data_uri import parse_data_uri
from medassist_core.errors import GenerationError
from medassist_core.models import Prompt
from medassist_core.prompt import prompt_parts

from .http_utils import provider_error_message

logger = logging.getLogger(__name__)

DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_GEMINI_MODEL = "gemini-2.0-flash"


@dataclass(frozen=True)
class StreamChunk:
    text: str
    finish_reason: str | None = None


@dataclass(frozen=True)
class GenerationResponse:
    text: str
    finish_reason: str | None = None


def to_gemini_parts(prompt: Prompt) -> list[dict[str, Any]]:
    parts: list[dict[str, Any]] = []
    for part in prompt_parts(prompt):
        if "text" in part:
            parts.append({"text": str(part["text"])})
        elif "media" in part:
            media = parse_data_uri(str((part.get("media") or {}).get("url") or ""))
            parts.append({"inline_data": {"mime_type": media.mime_type, "data": media.payload}})
        else:
            raise ValueError(f"Unsupported prompt part: {sorted(part)}")
    return parts


def _candidate_text(payload: dict[str, Any]) -> tuple[str, str | None]:
    candidates = payload.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        feedback = payload.get("promptFeedback")
        if isinstance(feedback, dict) and feedback.get("blockReason"):
            raise GenerationError(f"Prompt blocked by provider: {feedback['blockReason']}", code="prompt_blocked")
        return "", None
    first = candidates[0] if isinstance(candidates[0], dict) else {}
    content = first.get("content") if isinstance(first.get("content"), dict) else {}
    texts = [
        item["text"]
        for item in content.get("parts", [])
        if isinstance(item, dict) and isinstance(item.get("text"), str)
    ]
    return "".join(texts), first.get("finishReason")


class GenerationStream:
    """One streamed generation: iterate for chunks, then await ``response()``."""

    def __init__(self, client: httpx.AsyncClient, url: str, headers: dict[str, str], body: dict[str, Any]) -> None:
        self._client = client
        self._url = url
        self._headers = headers
        self._body = body
        self._texts: list[str] = []
        self._finish_reason: str | None = None
        self._error: GenerationError | None = None
        self._started = False
        self._done = False

    def __aiter__(self) -> AsyncIterator[StreamChunk]:
        if self._started:
            raise RuntimeError("A generation stream can only be iterated once.")
        self._started = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[StreamChunk]:
        try:
            async with self._client.stream("POST", self._url, headers=self._headers, json=self._body) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise GenerationError(provider_error_message(response), status_code=response.status_code)
                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line.startswith("data:"):
                        continue
                    raw = line[5:].strip()
                    if not raw or raw == "[DONE]":
                        continue
                    try:
                        payload = json.loads(raw)
                    except json.JSONDecodeError as exc:
                        raise GenerationError("Generative AI backend sent a malformed stream chunk.") from exc
                    if isinstance(payload.get("error"), dict):
                        raise GenerationError(str(payload["error"].get("message") or "Stream failed."))
                    text, finish_reason = _candidate_text(payload)
                    if finish_reason:
                        self._finish_reason = finish_reason
                    self._texts.append(text)
                    yield StreamChunk(text=text, finish_reason=finish_reason)
        except GenerationError as exc:
            self._error = exc
            raise
        except httpx.HTTPError as exc:
            self._error = GenerationError(f"Failed to reach generative AI backend: {exc}")
            raise self._error from exc
        finally:
            self._done = True

    async def response(self) -> GenerationResponse:
        if not self._started:
            async for _ in self:
                pass
        if self._error is not None:
            raise self._error
        if not self._done:
            raise GenerationError("Generation stream was not fully consumed.")
        return GenerationResponse(text="".join(self._texts), finish_reason=self._finish_reason)


class GeminiClient:
    def __init__(
        self,
        *,
        api_key: str | None,
        model: str = DEFAULT_GEMINI_MODEL,
        base_url: str = DEFAULT_GEMINI_BASE_URL,
        connect_timeout: float = 8.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.model = model
        self.base_url = base_url.rstrip("/")
        # No read timeout: a hung backend keeps the turn loading until the client gives up.
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(None, connect=connect_timeout), transport=transport)

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            raise GenerationError("Generative AI API key is not configured.", status_code=503, code="backend_unavailable")
        return {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}

    def _body(
        self,
        prompt: Prompt,
        *,
        json_output: bool = False,
        system_instruction: str | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"contents": [{"role": "user", "parts": to_gemini_parts(prompt)}]}
        if system_instruction:
            body["systemInstruction"] = {"parts": [{"text": system_instruction}]}
        if json_output:
            body["generationConfig"] = {"responseMimeType": "application/json"}
        return body

    def generate_stream(self, prompt: Prompt, *, system_instruction: str | None = None) -> GenerationStream:
        headers = self._headers()
        url = f"{self.base_url}/models/{self.model}:streamGenerateContent?alt=sse"
        logger.debug("streaming generation with %s", self.model)
        return GenerationStream(self._client, url, headers, self._body(prompt, system_instruction=system_instruction))

    async def generate(
        self,
        prompt: Prompt,
        *,
        json_output: bool = False,
        system_instruction: str | None = None,
    ) -> GenerationResponse:
        headers = self._headers()
        url = f"{self.base_url}/models/{self.model}:generateContent"
        body = self._body(prompt, json_output=json_output, system_instruction=system_instruction)
        try:
            response = await self._client.post(url, headers=headers, json=body)
        except httpx.HTTPError as exc:
            raise GenerationError(f"Failed to reach generative AI backend: {exc}") from exc
        if response.status_code >= 400:
            raise GenerationError(provider_error_message(response), status_code=response.status_code)
        try:
            payload = response.json()
        except json.JSONDecodeError as exc:
            raise GenerationError("Generative AI backend returned invalid JSON.") from exc
        text, finish_reason = _candidate_text(payload)
        return GenerationResponse(text=text, finish_reason=finish_reason)

    async def aclose(self) -> None:
        await self._client.aclose()
