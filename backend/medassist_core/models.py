from __future__ import annotations

import random
import string
import time
from dataclasses import dataclass, field
from typing import Any, Union

_ROLE_ALIASES = {"model": "assistant", "assistant": "assistant", "user": "user"}

PromptPart = dict[str, Any]
Prompt = Union[str, list[PromptPart]]


def normalize_role(role: str) -> str:
    canonical = _ROLE_ALIASES.get((role or "").strip().lower())
    if not canonical:
        raise ValueError(f"Unsupported chat role: {role!r}")
    return canonical


def new_client_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=7))
    return f"client-{int(time.time() * 1000)}-{suffix}"


@dataclass
class ChatMessage:
    role: str
    text: str
    timestamp: float
    image_url: str | None = None
    id: str | None = None
    client_id: str | None = None
    is_streaming: bool = False

    def __post_init__(self) -> None:
        self.role = normalize_role(self.role)

    @property
    def key(self) -> str:
        return self.id or self.client_id or ""

    def to_document(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "text": self.text,
            "imageUrl": self.image_url or None,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> "ChatMessage":
        return cls(
            id=doc_id,
            role=data["role"],
            text=data.get("text") or "",
            image_url=data.get("imageUrl"),
            timestamp=float(data["timestamp"]),
        )

    def to_public(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "clientId": self.client_id,
            "role": self.role,
            "text": self.text,
            "imageUrl": self.image_url,
            "timestamp": self.timestamp,
            "isStreaming": self.is_streaming,
        }


@dataclass
class PromptRequest:
    text: str | None = None
    image: str | None = None


@dataclass(frozen=True)
class ConversationScope:
    app_id: str
    identity_id: str


@dataclass
class TurnResult:
    user_message: ChatMessage
    assistant_message: ChatMessage
    state: str
    persisted: bool = False
    errors: list[dict[str, Any]] = field(default_factory=list)

    def as_envelope(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "persisted": self.persisted,
            "user_message": self.user_message.to_public(),
            "assistant_message": self.assistant_message.to_public(),
            "errors": self.errors,
        }
