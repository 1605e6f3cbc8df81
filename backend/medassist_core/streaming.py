from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Callable, Protocol

from .errors import StreamError
from .message_table import MessageTable
from .models import ChatMessage

logger = logging.getLogger(__name__)

IDLE = "idle"
AWAITING_FIRST_TOKEN = "awaiting_first_token"
STREAMING = "streaming"
FINALIZED = "finalized"
ERRORED = "errored"

TERMINAL_STATES = {FINALIZED, ERRORED}

TokenListener = Callable[[str], None]


class TokenSource(Protocol):
    def __aiter__(self) -> AsyncIterator[Any]: ...

    async def response(self) -> Any: ...


class StreamStateError(Exception):
    pass


def chunk_text(chunk: Any) -> str:
    if chunk is None:
        return ""
    if isinstance(chunk, str):
        return chunk
    if isinstance(chunk, dict):
        value = chunk.get("text")
    else:
        value = getattr(chunk, "text", None)
    return value if isinstance(value, str) else ""


class StreamingResponseConsumer:
    _TRANSITIONS = {
        IDLE: {AWAITING_FIRST_TOKEN},
        AWAITING_FIRST_TOKEN: {STREAMING, FINALIZED, ERRORED},
        STREAMING: {STREAMING, FINALIZED, ERRORED},
        FINALIZED: set(),
        ERRORED: set(),
    }

    def __init__(
        self,
        table: MessageTable,
        client_id: str,
        *,
        error_text: Callable[[Exception], str],
    ) -> None:
        self._table = table
        self._client_id = client_id
        self._error_text = error_text
        self._listeners: list[TokenListener] = []
        self.state = IDLE
        self.lifecycle: list[str] = [IDLE]
        self.error: StreamError | None = None
        self.cancelled = False

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def message(self) -> ChatMessage:
        message = self._table.get(self._client_id)
        if message is None:
            raise StreamStateError(f"Message vanished from table: {self._client_id}")
        return message

    def add_token_listener(self, listener: TokenListener) -> None:
        self._listeners.append(listener)

    def _transition(self, next_state: str) -> None:
        allowed = self._TRANSITIONS.get(self.state, set())
        if next_state not in allowed:
            raise StreamStateError(f"Invalid transition: {self.state} -> {next_state}")
        if next_state != self.state:
            self.lifecycle.append(next_state)
        self.state = next_state

    def begin(self) -> None:
        self._transition(AWAITING_FIRST_TOKEN)

    def cancel(self) -> None:
        """Stop appending; tokens still in flight are discarded."""
        if self.cancelled or self.state in TERMINAL_STATES:
            return
        self.cancelled = True
        if self.state == IDLE:
            self._transition(AWAITING_FIRST_TOKEN)
        self._transition(FINALIZED)
        self._table.finish_streaming(self._client_id)

    async def consume(self, source: TokenSource) -> ChatMessage:
        if self.state == IDLE:
            self.begin()
        try:
            async for chunk in source:
                if self.cancelled:
                    continue
                text = chunk_text(chunk)
                if not text:
                    continue
                self._transition(STREAMING)
                self._table.append_text(self._client_id, text)
                for listener in list(self._listeners):
                    listener(text)
            await source.response()
        except Exception as exc:
            if self.cancelled:
                logger.debug("discarding stream failure after cancel: %s", exc)
                return self.message
            return self._fail(exc)

        if self.cancelled:
            return self.message
        self._transition(FINALIZED)
        return self._table.finish_streaming(self._client_id)

    def _fail(self, exc: Exception) -> ChatMessage:
        logger.error("token stream failed: %s", exc)
        self._transition(ERRORED)
        self.error = exc if isinstance(exc, StreamError) else StreamError(str(exc) or exc.__class__.__name__)
        partial = self.message.text
        error_reply = self._error_text(self.error)
        text = f"{partial}\n\n{error_reply}" if partial else error_reply
        self._table.replace_text(self._client_id, text)
        return self._table.finish_streaming(self._client_id)
