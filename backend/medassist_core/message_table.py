from __future__ import annotations

import threading
import time
from typing import Iterable

from .models import ChatMessage, new_client_id


class MessageTable:
    """Authoritative in-memory view of one conversation.

    The streaming consumer writes ``text``/``is_streaming`` of its own optimistic
    entry; a persist acknowledgement moves that entry into the persisted view,
    which the store adapter replaces through ``apply_snapshot``.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._persisted: dict[str, ChatMessage] = {}
        self._optimistic: dict[str, ChatMessage] = {}
        self._last_timestamp = 0.0

    def next_timestamp(self) -> float:
        with self._lock:
            stamp = max(time.time(), self._last_timestamp + 1e-6)
            self._last_timestamp = stamp
            return stamp

    def add_optimistic(
        self,
        role: str,
        text: str,
        image_url: str | None = None,
        *,
        is_streaming: bool = False,
    ) -> ChatMessage:
        message = ChatMessage(
            role=role,
            text=text,
            image_url=image_url or None,
            timestamp=self.next_timestamp(),
            client_id=new_client_id(),
            is_streaming=is_streaming,
        )
        with self._lock:
            self._optimistic[message.client_id] = message
        return message

    def get(self, key: str) -> ChatMessage | None:
        with self._lock:
            return self._optimistic.get(key) or self._persisted.get(key)

    def _require_optimistic(self, client_id: str) -> ChatMessage:
        message = self._optimistic.get(client_id)
        if message is None:
            raise KeyError(f"Unknown optimistic message: {client_id}")
        return message

    def append_text(self, client_id: str, chunk: str) -> ChatMessage:
        with self._lock:
            message = self._require_optimistic(client_id)
            if not message.is_streaming:
                raise ValueError("Message is finalized and can no longer change.")
            message.text += chunk
            return message

    def replace_text(self, client_id: str, text: str) -> ChatMessage:
        with self._lock:
            message = self._require_optimistic(client_id)
            if not message.is_streaming:
                raise ValueError("Message is finalized and can no longer change.")
            message.text = text
            return message

    def finish_streaming(self, client_id: str) -> ChatMessage:
        with self._lock:
            message = self._require_optimistic(client_id)
            message.is_streaming = False
            return message

    def mark_persisted(self, client_id: str, doc_id: str) -> ChatMessage:
        with self._lock:
            message = self._require_optimistic(client_id)
            message.id = doc_id
            del self._optimistic[client_id]
            if doc_id in self._persisted:
                # The live snapshot already delivered the stored copy.
                return self._persisted[doc_id]
            self._persisted[doc_id] = message
            return message

    def discard(self, client_id: str) -> None:
        with self._lock:
            self._optimistic.pop(client_id, None)

    def apply_snapshot(self, messages: Iterable[ChatMessage]) -> list[ChatMessage]:
        with self._lock:
            incoming = {message.id: message for message in messages if message.id}
            for doc_id, message in self._persisted.items():
                # Acknowledged locally after this snapshot was read.
                if message.client_id and doc_id not in incoming:
                    incoming[doc_id] = message
            self._persisted = incoming
            if self._persisted:
                newest = max(message.timestamp for message in self._persisted.values())
                self._last_timestamp = max(self._last_timestamp, newest)
        return self.view()

    def view(self) -> list[ChatMessage]:
        with self._lock:
            rows = list(self._persisted.values()) + list(self._optimistic.values())
        return sorted(rows, key=lambda message: message.timestamp)

    def __len__(self) -> int:
        with self._lock:
            return len(self._persisted) + len(self._optimistic)
