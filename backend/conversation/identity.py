from __future__ import annotations

import logging
import secrets
import sqlite3
import uuid
from dataclasses import dataclass

from medassist_core.errors import IdentityError

from .database import SQLiteChatDB
from .time_utils import to_iso, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnonymousIdentity:
    identity_id: str
    session_token: str
    created_at: str

    def as_public(self) -> dict[str, str]:
        return {
            "identity_id": self.identity_id,
            "session_token": self.session_token,
            "created_at": self.created_at,
        }


class AnonymousIdentityProvider:
    """Anonymous sign-in: one opaque identity per browser session, never rotated."""

    def __init__(self, db: SQLiteChatDB) -> None:
        self._db = db

    def resolve(self, session_token: str | None) -> AnonymousIdentity | None:
        token = (session_token or "").strip()
        if not token:
            return None
        try:
            with self._db.connection() as conn:
                row = conn.execute(
                    "SELECT id, session_token, created_at FROM anonymous_identities WHERE session_token = ?",
                    (token,),
                ).fetchone()
                if row:
                    conn.execute(
                        "UPDATE anonymous_identities SET last_seen_at = ? WHERE id = ?",
                        (to_iso(utc_now()), row["id"]),
                    )
        except sqlite3.Error as exc:
            raise IdentityError(f"Failed to resolve session identity: {exc}") from exc
        if not row:
            return None
        return AnonymousIdentity(
            identity_id=row["id"],
            session_token=row["session_token"],
            created_at=row["created_at"],
        )

    def establish(self, session_token: str | None = None) -> AnonymousIdentity:
        existing = self.resolve(session_token)
        if existing:
            return existing

        now = to_iso(utc_now())
        identity = AnonymousIdentity(
            identity_id=uuid.uuid4().hex,
            session_token=f"anon_{secrets.token_urlsafe(32)}",
            created_at=now,
        )
        try:
            with self._db.connection() as conn:
                conn.execute(
                    """
                    INSERT INTO anonymous_identities (id, session_token, created_at, last_seen_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (identity.identity_id, identity.session_token, now, now),
                )
        except sqlite3.Error as exc:
            logger.error("anonymous sign-in failed: %s", exc)
            raise IdentityError(f"Anonymous sign-in failed: {exc}") from exc
        logger.info("established anonymous identity %s", identity.identity_id)
        return identity
