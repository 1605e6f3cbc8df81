from __future__ import annotations

import io
import logging
from typing import Protocol

from PIL import Image, ImageOps, UnidentifiedImageError

from medassist_core.data_uri import build_data_uri
from medassist_core.errors import InvalidMediaError, MediaAccessError

logger = logging.getLogger(__name__)

FRONT = "user"
BACK = "environment"
FACING_MODES = {FRONT, BACK}


class VideoStream(Protocol):
    facing_mode: str

    def read_frame(self) -> Image.Image: ...

    def stop(self) -> None: ...


class MediaDevices(Protocol):
    def get_user_media(self, facing_mode: str) -> VideoStream: ...


def encode_still(frame: Image.Image, facing_mode: str) -> str:
    """Encode one video frame as a PNG data URI, mirrored for the front camera."""
    image = frame if frame.mode in {"RGB", "RGBA", "L"} else frame.convert("RGBA")
    if facing_mode == FRONT:
        image = ImageOps.mirror(image)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return build_data_uri("image/png", buffer.getvalue())


def decode_frame(data: bytes) -> Image.Image:
    try:
        frame = Image.open(io.BytesIO(data))
        frame.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise InvalidMediaError("Uploaded frame is not a readable image.") from exc
    return frame


class CameraController:
    """Owns at most one active video stream."""

    def __init__(self, devices: MediaDevices) -> None:
        self._devices = devices
        self._stream: VideoStream | None = None
        self.facing_mode = FRONT

    @property
    def active(self) -> bool:
        return self._stream is not None

    def start(self, facing_mode: str = FRONT) -> VideoStream:
        if facing_mode not in FACING_MODES:
            raise MediaAccessError(f"Unsupported facing mode: {facing_mode}", code="invalid_facing_mode")
        self.stop()
        try:
            stream = self._devices.get_user_media(facing_mode)
        except MediaAccessError:
            raise
        except Exception as exc:
            logger.warning("camera acquisition failed (%s): %s", facing_mode, exc)
            raise MediaAccessError(f"Unable to access camera: {exc}", code="camera_unavailable") from exc
        self._stream = stream
        self.facing_mode = facing_mode
        return stream

    def switch_facing_mode(self) -> VideoStream:
        return self.start(BACK if self.facing_mode == FRONT else FRONT)

    def capture_still(self) -> str:
        if self._stream is None:
            raise MediaAccessError("The camera is not active.", code="camera_inactive")
        try:
            frame = self._stream.read_frame()
        except Exception as exc:
            raise MediaAccessError(f"Unable to read camera frame: {exc}", code="camera_unavailable") from exc
        return encode_still(frame, self.facing_mode)

    def stop(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.stop()


class StillFrameStream:
    def __init__(self, frame: Image.Image, facing_mode: str) -> None:
        self.frame = frame
        self.facing_mode = facing_mode
        self.stopped = False

    def read_frame(self) -> Image.Image:
        if self.stopped:
            raise MediaAccessError("Stream already stopped.", code="camera_inactive")
        return self.frame

    def stop(self) -> None:
        self.stopped = True


class StillFrameDevices:
    """Device adapter serving a frame uploaded by the browser."""

    def __init__(self, frame: Image.Image) -> None:
        self._frame = frame

    def get_user_media(self, facing_mode: str) -> StillFrameStream:
        return StillFrameStream(self._frame, facing_mode)
