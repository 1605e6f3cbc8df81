from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class ClientContext:
    """Process-wide handles shared by every chat component.

    Built once at startup and passed by reference; ``aclose`` releases the
    HTTP clients at shutdown.
    """

    app_id: str
    language: str
    store: Any
    identity: Any
    genai: Any
    tts: Any
    transcriber: Any = None
    flows: Any = None
    auto_speak: bool = True
    stt_language: str = "ar-SA"
    stt_auto_submit: bool = True

    async def aclose(self) -> None:
        for name in ("genai", "tts", "transcriber"):
            component = getattr(self, name, None)
            closer = getattr(component, "aclose", None)
            if closer is None:
                continue
            try:
                await closer()
            except Exception as exc:
                logger.warning("failed to close %s: %s", name, exc)
