from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass

from .errors import InvalidMediaError

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<payload>[A-Za-z0-9+/=\s]*)$", re.DOTALL)


@dataclass(frozen=True)
class DataURI:
    mime_type: str
    payload: str

    @property
    def data(self) -> bytes:
        return base64.b64decode(self.payload)

    def __str__(self) -> str:
        return f"data:{self.mime_type};base64,{self.payload}"


def parse_data_uri(value: str, *, expected_prefix: str | None = None) -> DataURI:
    match = _DATA_URI_RE.match((value or "").strip())
    if not match:
        raise InvalidMediaError("Expected a data URI of the form 'data:<mimetype>;base64,<encoded_data>'.")
    mime_type = match.group("mime").lower()
    if expected_prefix and not mime_type.startswith(expected_prefix):
        raise InvalidMediaError(f"Unsupported media type: {mime_type}")
    payload = re.sub(r"\s+", "", match.group("payload"))
    if not payload:
        raise InvalidMediaError("Data URI payload is empty.")
    try:
        base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidMediaError("Data URI payload is not valid base64.") from exc
    return DataURI(mime_type=mime_type, payload=payload)


def build_data_uri(mime_type: str, data: bytes) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"
