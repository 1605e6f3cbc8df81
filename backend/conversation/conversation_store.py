from __future__ import annotations

import logging
import sqlite3
import uuid

from medassist_core.errors import PersistenceError
from medassist_core.models import ChatMessage

from .change_feed import ChangeFeed, FeedListener
from .database import SQLiteChatDB
from .scope_guard import CHAT_COLLECTION, ConversationScopeGuard
from .time_utils import to_iso, utc_now

logger = logging.getLogger(__name__)


class ConversationStore:
    def __init__(self, db: SQLiteChatDB, feed: ChangeFeed | None = None) -> None:
        self._db = db
        self.feed = feed or ChangeFeed()
        self.guard = ConversationScopeGuard()

    def persist(self, app_id: str, identity_id: str, message: ChatMessage) -> str:
        """Write one finalized message and wake live subscribers for its scope."""
        self.guard.ensure_scope(app_id, identity_id)
        if message.is_streaming:
            raise PersistenceError("Refusing to persist a message that is still streaming.")
        document = message.to_document()
        doc_id = uuid.uuid4().hex[:20]
        try:
            with self._db.connection() as conn:
                seq = conn.execute(
                    """
                    SELECT COALESCE(MAX(seq), 0) + 1
                    FROM chat_messages
                    WHERE app_id = ? AND identity_id = ? AND collection = ?
                    """,
                    (app_id, identity_id, CHAT_COLLECTION),
                ).fetchone()[0]
                conn.execute(
                    """
                    INSERT INTO chat_messages (
                      id, app_id, identity_id, collection, role, text, image_url, timestamp, seq, created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        doc_id,
                        app_id,
                        identity_id,
                        CHAT_COLLECTION,
                        document["role"],
                        document["text"],
                        document["imageUrl"],
                        document["timestamp"],
                        seq,
                        to_iso(utc_now()),
                    ),
                )
        except sqlite3.Error as exc:
            logger.error("failed to persist chat message for %s: %s", identity_id, exc)
            raise PersistenceError(f"Failed to save chat message: {exc}") from exc
        self.feed.publish((app_id, identity_id))
        return doc_id

    def history(self, app_id: str, identity_id: str) -> list[ChatMessage]:
        self.guard.ensure_scope(app_id, identity_id)
        try:
            with self._db.connection() as conn:
                rows = conn.execute(
                    """
                    SELECT id, role, text, image_url, timestamp
                    FROM chat_messages
                    WHERE app_id = ? AND identity_id = ? AND collection = ?
                    ORDER BY timestamp ASC, seq ASC
                    """,
                    (app_id, identity_id, CHAT_COLLECTION),
                ).fetchall()
        except sqlite3.Error as exc:
            logger.error("failed to load chat history for %s: %s", identity_id, exc)
            raise PersistenceError(f"Failed to load chat history: {exc}") from exc
        return [
            ChatMessage.from_document(
                row["id"],
                {
                    "role": row["role"],
                    "text": row["text"],
                    "imageUrl": row["image_url"],
                    "timestamp": row["timestamp"],
                },
            )
            for row in rows
        ]

    def subscribe(self, app_id: str, identity_id: str) -> "Subscription":
        self.guard.ensure_scope(app_id, identity_id)
        return Subscription(self, app_id, identity_id)


class Subscription:
    """Live ordered history: the current snapshot first, then one per change."""

    def __init__(self, store: ConversationStore, app_id: str, identity_id: str) -> None:
        self._store = store
        self._scope = (app_id, identity_id)
        self._listener: FeedListener | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> list[ChatMessage]:
        if self._closed:
            raise StopAsyncIteration
        if self._listener is None:
            self._listener = self._store.feed.register(self._scope)
            return self._store.history(*self._scope)
        closing = await self._listener.queue.get()
        while not self._listener.queue.empty():
            closing = self._listener.queue.get_nowait() or closing
        if closing or self._closed:
            raise StopAsyncIteration
        return self._store.history(*self._scope)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._listener is not None:
            self._store.feed.unregister(self._scope, self._listener)
            self._listener.wake(closing=True)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()
