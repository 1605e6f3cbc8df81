from __future__ import annotations

import asyncio
import io

import pytest
from PIL import Image

from medassist_core import InvalidMediaError, MediaAccessError, Notifier
from medassist_core.data_uri import parse_data_uri
from medassist_services import CameraController, SpeechRecognitionSession, decode_frame, transcript_events
from medassist_services.camera import BACK, FRONT
from medassist_services.speech import ENDED, ERRORED, RecognitionEvent


async def _events(*items: RecognitionEvent):
    for item in items:
        yield item


async def _collect(session: SpeechRecognitionSession, source) -> list:
    return [event async for event in session.run(source)]


def test_recognized_utterance_is_auto_submitted():
    submitted: list[str] = []

    async def submit(text: str) -> str:
        submitted.append(text)
        return "turn-1"

    session = SpeechRecognitionSession(submit=submit)
    events = asyncio.run(_collect(session, transcript_events("  أعاني من صداع شديد  ")))
    assert [event.kind for event in events] == ["listening", "transcript", "ended", "submitted"]
    assert submitted == ["أعاني من صداع شديد"]
    assert session.submitted == "turn-1"
    assert session.state == ENDED


def test_auto_submit_can_be_disabled():
    submitted: list[str] = []

    async def submit(text: str) -> None:
        submitted.append(text)

    session = SpeechRecognitionSession(auto_submit=False, submit=submit)
    events = asyncio.run(_collect(session, transcript_events("hello")))
    assert [event.kind for event in events] == ["listening", "transcript", "ended"]
    assert submitted == []
    assert session.transcript == "hello"


def test_no_speech_ends_quietly():
    notifier = Notifier("en")
    session = SpeechRecognitionSession(submit=None, notifier=notifier)
    events = asyncio.run(_collect(session, transcript_events("")))
    assert [event.kind for event in events] == ["listening", "ended"]
    assert notifier.history == []


def test_recognizer_error_is_reported():
    notifier = Notifier("en")
    session = SpeechRecognitionSession(notifier=notifier)
    events = asyncio.run(
        _collect(
            session,
            _events(RecognitionEvent("start"), RecognitionEvent("error", error="not-allowed"), RecognitionEvent("end")),
        )
    )
    assert [event.kind for event in events] == ["listening", "error", "ended"]
    assert events[1].error_code == "not-allowed"
    assert session.state == ERRORED
    assert notifier.history[0].title == "Speech recognition error"


def test_transcript_is_not_submitted_after_recognizer_error():
    submitted: list[str] = []

    async def submit(text: str) -> str:
        submitted.append(text)
        return "turn-1"

    session = SpeechRecognitionSession(submit=submit, notifier=Notifier("en"))
    events = asyncio.run(
        _collect(
            session,
            _events(
                RecognitionEvent("start"),
                RecognitionEvent("result", transcript="I have a headache"),
                RecognitionEvent("error", error="network"),
                RecognitionEvent("end"),
            ),
        )
    )
    assert [event.kind for event in events] == ["listening", "transcript", "error", "ended"]
    assert submitted == []
    assert session.submitted is None
    assert session.state == ERRORED


def test_second_start_while_listening_is_rejected():
    notifier = Notifier("en")
    session = SpeechRecognitionSession(notifier=notifier)

    async def scenario():
        first = session.run(_events(RecognitionEvent("start")))
        await first.__anext__()
        with pytest.raises(MediaAccessError):
            await session.run(_events()).__anext__()
        await first.aclose()

    asyncio.run(scenario())
    assert [notice.code for notice in notifier.history] == ["already_listening"]


class RecordingStream:
    def __init__(self, frame: Image.Image, facing_mode: str) -> None:
        self.frame = frame
        self.facing_mode = facing_mode
        self.stopped = False

    def read_frame(self) -> Image.Image:
        return self.frame

    def stop(self) -> None:
        self.stopped = True


class RecordingDevices:
    def __init__(self, frame: Image.Image) -> None:
        self.frame = frame
        self.streams: list[RecordingStream] = []

    def get_user_media(self, facing_mode: str) -> RecordingStream:
        stream = RecordingStream(self.frame, facing_mode)
        self.streams.append(stream)
        return stream


class DeniedDevices:
    def get_user_media(self, facing_mode: str):
        raise PermissionError("Permission denied")


def _asymmetric_frame() -> Image.Image:
    frame = Image.new("RGB", (2, 1), (0, 0, 0))
    frame.putpixel((0, 0), (255, 0, 0))
    return frame


def _decode(data_uri: str) -> Image.Image:
    return Image.open(io.BytesIO(parse_data_uri(data_uri, expected_prefix="image/png").data))


def test_switching_camera_stops_previous_stream():
    devices = RecordingDevices(_asymmetric_frame())
    camera = CameraController(devices)
    camera.start(FRONT)
    camera.switch_facing_mode()
    assert [stream.facing_mode for stream in devices.streams] == [FRONT, BACK]
    assert devices.streams[0].stopped is True
    assert devices.streams[1].stopped is False
    assert camera.facing_mode == BACK
    camera.stop()
    assert devices.streams[1].stopped is True
    assert camera.active is False


def test_front_camera_capture_is_mirrored():
    devices = RecordingDevices(_asymmetric_frame())
    camera = CameraController(devices)

    camera.start(FRONT)
    front = _decode(camera.capture_still())
    camera.start(BACK)
    back = _decode(camera.capture_still())

    assert front.getpixel((1, 0))[:3] == (255, 0, 0)
    assert back.getpixel((0, 0))[:3] == (255, 0, 0)


def test_capture_requires_active_camera_and_permission():
    camera = CameraController(RecordingDevices(_asymmetric_frame()))
    with pytest.raises(MediaAccessError) as excinfo:
        camera.capture_still()
    assert excinfo.value.code == "camera_inactive"

    denied = CameraController(DeniedDevices())
    with pytest.raises(MediaAccessError) as excinfo:
        denied.start(BACK)
    assert excinfo.value.code == "camera_unavailable"
    assert denied.active is False

    with pytest.raises(MediaAccessError):
        camera.start("sideways")


def test_decode_frame_rejects_garbage():
    with pytest.raises(InvalidMediaError):
        decode_frame(b"definitely not an image")


def _png_bytes() -> bytes:
    buffer = io.BytesIO()
    _asymmetric_frame().save(buffer, format="PNG")
    return buffer.getvalue()


def test_camera_capture_endpoint(client):
    response = client.post(
        "/camera/capture",
        data={"facing_mode": "user"},
        files={"frame": ("frame.png", _png_bytes(), "image/png")},
    )
    assert response.status_code == 200
    payload = response.json()
    assert payload["mirrored"] is True
    assert payload["image_data_uri"].startswith("data:image/png;base64,")
    assert _decode(payload["image_data_uri"]).getpixel((1, 0))[:3] == (255, 0, 0)


def test_camera_capture_endpoint_validation(client):
    bad_mode = client.post(
        "/camera/capture",
        data={"facing_mode": "sideways"},
        files={"frame": ("frame.png", _png_bytes(), "image/png")},
    )
    assert bad_mode.status_code == 400

    not_image = client.post("/camera/capture", files={"frame": ("frame.png", b"garbage", "image/png")})
    assert not_image.status_code == 415
