from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Callable

from .context import ClientContext
from .errors import PersistenceError, RequestInFlightError
from .i18n import translate
from .message_table import MessageTable
from .models import ChatMessage, ConversationScope, TurnResult
from .notices import Notifier
from .prompt import assemble_prompt
from .streaming import ERRORED, StreamingResponseConsumer

logger = logging.getLogger(__name__)

TurnEventListener = Callable[[str, dict[str, Any]], None]


class _FailedSource:
    """Token source standing in for a backend call that failed before streaming."""

    def __init__(self, exc: Exception) -> None:
        self._exc = exc

    def __aiter__(self) -> AsyncIterator[Any]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Any]:
        raise self._exc
        yield  # pragma: no cover

    async def response(self) -> Any:
        raise self._exc


class ChatSession:
    """One conversation: optimistic entries, one in-flight turn, best-effort persistence."""

    def __init__(self, context: ClientContext, scope: ConversationScope | None) -> None:
        self._context = context
        self.scope = scope
        self.table = MessageTable()
        self._in_flight = False
        self._active: StreamingResponseConsumer | None = None

    @property
    def busy(self) -> bool:
        return self._in_flight

    @property
    def persistent(self) -> bool:
        return self.scope is not None and self._context.store is not None

    def cancel(self) -> None:
        if self._active is not None:
            self._active.cancel()

    def sync(self, snapshot: list[ChatMessage]) -> list[ChatMessage]:
        return self.table.apply_snapshot(snapshot)

    def _persist(self, message: ChatMessage, notifier: Notifier) -> bool:
        if not self.persistent:
            return False
        try:
            doc_id = self._context.store.persist(self.scope.app_id, self.scope.identity_id, message)
        except PersistenceError as exc:
            notifier.error("persist_failed.title", exc)
            return False
        self.table.mark_persisted(message.client_id, doc_id)
        return True

    def reserve(self, notifier: Notifier) -> None:
        """Claim the single in-flight slot before any awaiting happens."""
        if self._in_flight:
            raise RequestInFlightError(notifier.text("in_flight.body"))
        self._in_flight = True

    def release(self) -> None:
        self._in_flight = False
        self._active = None

    async def submit(
        self,
        text: str | None,
        image: str | None = None,
        *,
        notifier: Notifier,
        on_event: TurnEventListener | None = None,
        playback: Any = None,
        reserved: bool = False,
    ) -> TurnResult:
        if not reserved:
            self.reserve(notifier)

        def emit(event: str, payload: dict[str, Any]) -> None:
            if on_event is not None:
                on_event(event, payload)

        try:
            prompt = assemble_prompt(
                text,
                image,
                default_instruction=translate("default_image_instruction", self._context.language),
            )
            user_message = self.table.add_optimistic("user", (text or "").strip(), image)
            emit("user_message", user_message.to_public())
            self._persist(user_message, notifier)

            assistant = self.table.add_optimistic("assistant", "", None, is_streaming=True)
            consumer = StreamingResponseConsumer(
                self.table,
                assistant.client_id,
                error_text=lambda exc: notifier.text("stream_error.reply", error=str(exc)),
            )
            consumer.add_token_listener(
                lambda delta: emit("token", {"delta": delta, "clientId": assistant.client_id})
            )
            self._active = consumer
            consumer.begin()
            try:
                source = self._context.genai.generate_stream(prompt)
            except Exception as exc:
                source = _FailedSource(exc)
            final = await consumer.consume(source)

            errors: list[dict[str, Any]] = []
            if consumer.error is not None:
                notifier.error("stream_error.title", consumer.error)
                errors.append({"code": consumer.error.code, "message": str(consumer.error)})

            if consumer.cancelled:
                # The source has drained; keep what was shown before the cancel.
                persisted = False
                if final.text:
                    persisted = self._persist(final, notifier)
                else:
                    self.table.discard(assistant.client_id)
                logger.info("chat turn cancelled before completion (%s)", assistant.client_id)
                return TurnResult(
                    user_message=user_message,
                    assistant_message=final,
                    state="cancelled",
                    persisted=persisted,
                    errors=errors,
                )

            persisted = self._persist(final, notifier)
            emit("message", final.to_public())
            if playback is not None and consumer.state != ERRORED:
                playback.speak(final.text)
            return TurnResult(
                user_message=user_message,
                assistant_message=final,
                state=consumer.state,
                persisted=persisted,
                errors=errors,
            )
        finally:
            self.release()
