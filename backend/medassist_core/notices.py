from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable

from .errors import MedAssistError
from .i18n import translate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notice:
    title: str
    description: str
    variant: str = "default"
    code: str = "info"

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


NoticeListener = Callable[[Notice], None]


class Notifier:
    """Collects user-facing notices (toasts) in the display language."""

    def __init__(self, language: str) -> None:
        self.language = language
        self._listeners: list[NoticeListener] = []
        self.history: list[Notice] = []

    def add_listener(self, listener: NoticeListener) -> None:
        self._listeners.append(listener)

    def text(self, key: str, **values: object) -> str:
        return translate(key, self.language, **values)

    def notify(self, title_key: str, description: str, *, variant: str = "default", code: str = "info") -> Notice:
        notice = Notice(title=self.text(title_key), description=description, variant=variant, code=code)
        self.history.append(notice)
        for listener in list(self._listeners):
            listener(notice)
        return notice

    def error(self, title_key: str, exc: BaseException) -> Notice:
        code = exc.code if isinstance(exc, MedAssistError) else "unexpected_error"
        logger.warning("%s: %s", title_key, exc)
        return self.notify(title_key, str(exc), variant="destructive", code=code)
