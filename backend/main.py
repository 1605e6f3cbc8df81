from __future__ import annotations

import asyncio
import json
import logging
from collections import OrderedDict
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, File, Form, Header, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from config import Settings, load_settings
from conversation import (
    AnonymousIdentity,
    AnonymousIdentityProvider,
    ConversationScopeError,
    ConversationStore,
    SQLiteChatDB,
)
from medassist_core import (
    ChatSession,
    ClientContext,
    ConversationScope,
    EmptyInputError,
    GenerationError,
    IdentityError,
    InvalidMediaError,
    MediaAccessError,
    Notifier,
    PersistenceError,
    PromptRequest,
    RequestInFlightError,
    SynthesisError,
    assemble_request,
)
from medassist_core.errors import TranscriptionError
from medassist_core.i18n import supported_languages, translate
from medassist_services import (
    AnalysisFlows,
    CameraController,
    GeminiClient,
    SpeechPlayback,
    SpeechRecognitionSession,
    StillFrameDevices,
    TextToSpeechClient,
    WhisperTranscriber,
    decode_frame,
    transcript_events,
)

settings = load_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("medassist")


class ChatRequest(BaseModel):
    message: str = ""
    image_data_uri: str | None = None
    speak: bool | None = None


class AnonymousSignInRequest(BaseModel):
    session_token: str | None = None


class HealthAnalysisRequest(BaseModel):
    health_input: str = Field(min_length=1)
    photo_data_uri: str | None = None


class ImageAnalysisRequest(BaseModel):
    photo_data_uri: str


class ReportRequest(BaseModel):
    report_data_uri: str


class SpeakRequest(BaseModel):
    text: str
    languageCode: str | None = None
    voiceName: str | None = None


class MedAssistApp:
    def __init__(self, config: Settings) -> None:
        self.settings = config
        self.db = SQLiteChatDB(config.db_path)
        self.store = ConversationStore(self.db)
        self.identity = AnonymousIdentityProvider(self.db)
        genai = GeminiClient(
            api_key=config.gemini_api_key,
            model=config.gemini_model,
            base_url=config.gemini_base_url,
        )
        self.context = ClientContext(
            app_id=config.app_id,
            language=config.display_language,
            store=self.store,
            identity=self.identity,
            genai=genai,
            tts=TextToSpeechClient(
                api_key=config.tts_api_key,
                base_url=config.tts_base_url,
                language_code=config.tts_language,
                voice_name=config.tts_voice,
            ),
            transcriber=WhisperTranscriber(
                api_key=config.openai_api_key,
                base_url=config.openai_base_url,
                model=config.whisper_model,
            ),
            flows=AnalysisFlows(genai),
            auto_speak=config.auto_speak,
            stt_language=config.stt_language,
            stt_auto_submit=config.stt_auto_submit,
        )
        self.max_sessions = max(1, config.max_sessions)
        self._sessions: OrderedDict[str, ChatSession] = OrderedDict()
        self._background: set[asyncio.Task] = set()

    def session_for(self, identity: AnonymousIdentity | None) -> ChatSession:
        if identity is None:
            return ChatSession(self.context, None)
        session = self._sessions.get(identity.identity_id)
        if session is None:
            scope = ConversationScope(app_id=self.context.app_id, identity_id=identity.identity_id)
            session = ChatSession(self.context, scope)
            self._sessions[identity.identity_id] = session
        self._sessions.move_to_end(identity.identity_id)
        self._evict_idle_sessions()
        return session

    def _evict_idle_sessions(self) -> None:
        # Least recently used first; a session with a turn in flight is kept.
        for identity_id in list(self._sessions):
            if len(self._sessions) <= self.max_sessions:
                break
            if not self._sessions[identity_id].busy:
                del self._sessions[identity_id]
                logger.debug("evicted idle chat session for %s", identity_id)

    def has_session(self, identity_id: str) -> bool:
        return identity_id in self._sessions

    def notifier(self) -> Notifier:
        return Notifier(self.context.language)

    def track(self, task: asyncio.Task) -> None:
        self._background.add(task)
        task.add_done_callback(self._background.discard)


container = MedAssistApp(settings)


@asynccontextmanager
async def lifespan(_: FastAPI):
    logger.info(
        "medassist backend ready (app_id=%s, db=%s, genai=%s)",
        container.context.app_id,
        container.db.path,
        "configured" if container.context.genai.configured else "missing key",
    )
    yield
    await container.context.aclose()


app = FastAPI(title="MedAssist Backend", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _emit_sse(event: str, data: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


_ALLOWED_AUDIO_MIME_TYPES = {
    "audio/mpeg",
    "audio/mp3",
    "audio/mp4",
    "audio/m4a",
    "audio/wav",
    "audio/x-wav",
    "audio/webm",
    "audio/ogg",
}
_ALLOWED_AUDIO_EXTENSIONS = {".mp3", ".mp4", ".m4a", ".wav", ".webm", ".ogg", ".flac"}
_ALLOWED_FRAME_MIME_TYPES = {"image/png", "image/jpeg", "image/jpg", "image/webp"}
_ALLOWED_FRAME_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp"}


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    token = authorization.strip()
    if token.lower().startswith("bearer "):
        token = token[7:]
    return token.strip() or None


def _chat_identity(authorization: str | None) -> tuple[AnonymousIdentity | None, IdentityError | None]:
    """Identity for a chat turn; a failed lookup degrades to an unsaved chat."""
    token = _bearer_token(authorization)
    if token is None:
        return None, None
    try:
        identity = container.identity.resolve(token)
    except IdentityError as exc:
        logger.error("identity lookup failed: %s", exc)
        return None, exc
    if identity is None:
        raise HTTPException(status_code=401, detail="Unknown session token.")
    return identity, None


def _require_identity(authorization: str | None) -> AnonymousIdentity:
    token = _bearer_token(authorization)
    if token is None:
        raise HTTPException(status_code=401, detail="Missing session token.")
    try:
        identity = container.identity.resolve(token)
    except IdentityError as exc:
        raise HTTPException(status_code=503, detail=f"{translate('identity_failed.title', 'en')}: {exc}") from exc
    if identity is None:
        raise HTTPException(status_code=401, detail="Unknown session token.")
    return identity


def _normalize_upload_filename(upload: UploadFile | None, fallback_name: str) -> str:
    file_name = (upload.filename or "").strip() if upload else ""
    return file_name or fallback_name


def _extension_from_filename(file_name: str) -> str:
    return Path(file_name).suffix.lower().strip()


async def _read_upload_bytes(upload: UploadFile, *, max_bytes: int, too_large_detail: str) -> bytes:
    raw = await upload.read(max_bytes + 1)
    if len(raw) > max_bytes:
        raise HTTPException(status_code=413, detail=too_large_detail)
    if not raw:
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")
    return raw


def _select_upload(primary: UploadFile | None, fallback: UploadFile | None, *, field_hint: str) -> UploadFile:
    upload = primary or fallback
    if upload is None:
        raise HTTPException(status_code=400, detail=f"Missing multipart file field '{field_hint}'.")
    return upload


def _validate_audio_upload(file_name: str, mime_type: str) -> None:
    ext = _extension_from_filename(file_name)
    if mime_type not in _ALLOWED_AUDIO_MIME_TYPES and ext not in _ALLOWED_AUDIO_EXTENSIONS:
        raise HTTPException(status_code=415, detail="Unsupported audio format.")


def _validate_frame_upload(file_name: str, mime_type: str) -> None:
    ext = _extension_from_filename(file_name)
    if mime_type not in _ALLOWED_FRAME_MIME_TYPES and ext not in _ALLOWED_FRAME_EXTENSIONS:
        raise HTTPException(status_code=415, detail="Unsupported image format.")


def _check_data_uri_size(value: str | None) -> None:
    if not value:
        return
    _, _, payload = value.partition(",")
    # base64 inflates by 4/3
    if len(payload) * 3 // 4 > settings.max_image_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"Image exceeds {settings.max_image_bytes // (1024 * 1024)}MB limit.",
        )


def _generation_http_error(exc: GenerationError) -> HTTPException:
    if exc.code == "backend_unavailable":
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=exc.status_code or 502, detail=str(exc))


@app.get("/health")
def health():
    return {
        "status": "healthy",
        "app_id": container.context.app_id,
        "language": container.context.language,
        "genai_configured": container.context.genai.configured,
        "languages": supported_languages(),
    }


@app.post("/auth/anonymous")
def anonymous_sign_in(
    payload: AnonymousSignInRequest | None = None,
    authorization: str | None = Header(default=None),
):
    token = (payload.session_token if payload else None) or _bearer_token(authorization)
    try:
        identity = container.identity.establish(token)
    except IdentityError as exc:
        raise HTTPException(status_code=503, detail=f"{translate('identity_failed.title', 'en')}: {exc}") from exc
    return {**identity.as_public(), "app_id": container.context.app_id}


@app.get("/chat/history")
def chat_history(
    identity_id: str | None = Query(default=None),
    authorization: str | None = Header(default=None),
):
    identity = _require_identity(authorization)
    app_id = container.context.app_id
    try:
        if identity_id:
            container.store.guard.ensure_owner(identity_id, identity.identity_id)
        messages = container.store.history(app_id, identity.identity_id)
    except ConversationScopeError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except PersistenceError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return {
        "collection": container.store.guard.collection_path(app_id, identity.identity_id),
        "messages": [message.to_public() for message in messages],
    }


@app.get("/chat/subscribe")
async def chat_subscribe(
    limit: int | None = Query(default=None, ge=1),
    authorization: str | None = Header(default=None),
):
    identity = _require_identity(authorization)
    session = container.session_for(identity)
    subscription = container.store.subscribe(container.context.app_id, identity.identity_id)

    async def event_stream():
        delivered = 0
        try:
            async for snapshot in subscription:
                view = session.sync(snapshot)
                yield _emit_sse("snapshot", {"messages": [message.to_public() for message in view]})
                delivered += 1
                if limit is not None and delivered >= limit:
                    break
        except PersistenceError as exc:
            notice = container.notifier().error("history_failed.title", exc)
            yield _emit_sse("notice", notice.as_dict())
        finally:
            subscription.close()

    return StreamingResponse(event_stream(), media_type="text/event-stream")


@app.post("/chat/stream")
async def chat_stream(
    payload: ChatRequest,
    authorization: str | None = Header(default=None),
):
    identity, identity_error = _chat_identity(authorization)
    session = container.session_for(identity)
    notifier = container.notifier()
    if session.busy:
        raise HTTPException(status_code=409, detail=notifier.text("in_flight.body"))

    image = (payload.image_data_uri or "").strip() or None
    _check_data_uri_size(image)
    try:
        assemble_request(
            PromptRequest(text=payload.message, image=image),
            default_instruction=notifier.text("default_image_instruction"),
        )
    except EmptyInputError as exc:
        raise HTTPException(
            status_code=400,
            detail=f"{notifier.text('empty_input.title')}: {notifier.text('empty_input.body')}",
        ) from exc
    except InvalidMediaError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    try:
        session.reserve(notifier)
    except RequestInFlightError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    queue: asyncio.Queue[tuple[str, dict[str, Any]] | None] = asyncio.Queue()

    def push(event: str, data: dict[str, Any]) -> None:
        queue.put_nowait((event, data))

    notifier.add_listener(lambda notice: push("notice", notice.as_dict()))
    if identity is None:
        if identity_error is not None:
            notifier.error("identity_failed.title", identity_error)
        notifier.notify("ephemeral.title", notifier.text("ephemeral.body"), code="ephemeral_chat")

    speak = container.context.auto_speak if payload.speak is None else payload.speak
    playback = None
    if speak:
        playback = SpeechPlayback(
            container.context.tts,
            notifier,
            sink=lambda audio_uri: push("audio", {"audioDataUri": audio_uri}),
        )

    async def run_turn() -> None:
        try:
            result = await session.submit(
                payload.message,
                image,
                notifier=notifier,
                on_event=push,
                playback=playback,
                reserved=True,
            )
            if playback is not None:
                await playback.wait()
            push("done", {"state": result.state, "persisted": result.persisted})
        except Exception as exc:
            logger.exception("chat_stream error: %s", exc)
            push("error", {"message": "Chat pipeline error."})
        finally:
            queue.put_nowait(None)

    # submit releases the reservation.
    task = asyncio.create_task(run_turn())
    container.track(task)

    async def event_stream():
        try:
            while True:
                item = await queue.get()
                if item is None:
                    break
                event, data = item
                yield _emit_sse(event, data)
        finally:
            if not task.done():
                session.cancel()

    return StreamingResponse(event_stream(), media_type="text/event-stream")


@app.post("/analyze/health")
async def analyze_health(payload: HealthAnalysisRequest):
    _check_data_uri_size(payload.photo_data_uri)
    try:
        result = await container.context.flows.analyze_health_input(payload.health_input, payload.photo_data_uri)
    except InvalidMediaError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except GenerationError as exc:
        raise _generation_http_error(exc) from exc
    return result.model_dump()


@app.post("/analyze/image")
async def analyze_image(payload: ImageAnalysisRequest):
    _check_data_uri_size(payload.photo_data_uri)
    try:
        result = await container.context.flows.analyze_uploaded_image(payload.photo_data_uri)
    except InvalidMediaError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except GenerationError as exc:
        raise _generation_http_error(exc) from exc
    return result.model_dump()


@app.post("/analyze/report")
async def analyze_report(payload: ReportRequest):
    _check_data_uri_size(payload.report_data_uri)
    try:
        result = await container.context.flows.summarize_medical_report(payload.report_data_uri)
    except InvalidMediaError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except GenerationError as exc:
        raise _generation_http_error(exc) from exc
    return result.model_dump()


@app.post("/tts/speak")
async def tts_speak(payload: SpeakRequest):
    if not payload.text.strip():
        raise HTTPException(status_code=400, detail="Text is required.")
    try:
        audio = await container.context.tts.synthesize(
            payload.text,
            language_code=payload.languageCode,
            voice_name=payload.voiceName,
        )
    except SynthesisError as exc:
        status_code = 503 if exc.code == "tts_unavailable" else 502
        raise HTTPException(status_code=status_code, detail=str(exc)) from exc
    return {"audioContent": audio, "audioDataUri": f"data:audio/mp3;base64,{audio}"}


@app.post("/voice/transcribe")
async def voice_transcribe(
    audio: UploadFile | None = File(default=None),
    file: UploadFile | None = File(default=None),
    language_hint: str | None = Form(default=None),
    prompt: str | None = Form(default=None),
    auto_submit: bool | None = Form(default=None),
    authorization: str | None = Header(default=None),
):
    identity, identity_error = _chat_identity(authorization)
    notifier = container.notifier()
    upload = _select_upload(audio, file, field_hint="audio")
    file_name = _normalize_upload_filename(upload, "audio-upload")
    mime_type = (upload.content_type or "").lower().strip()
    _validate_audio_upload(file_name, mime_type)

    audio_bytes = await _read_upload_bytes(
        upload,
        max_bytes=settings.max_audio_bytes,
        too_large_detail=f"Audio file exceeds {settings.max_audio_bytes // (1024 * 1024)}MB limit.",
    )
    language = (language_hint or container.context.stt_language).strip()
    try:
        transcription = await container.context.transcriber.transcribe(
            file_name=file_name,
            mime_type=mime_type,
            audio_bytes=audio_bytes,
            language_hint=language,
            prompt=prompt,
        )
    except TranscriptionError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc

    if identity is None and identity_error is not None:
        notifier.error("identity_failed.title", identity_error)
    session = container.session_for(identity)

    async def submit(transcript: str):
        return await session.submit(transcript, notifier=notifier)

    recognition = SpeechRecognitionSession(
        language=language,
        auto_submit=container.context.stt_auto_submit if auto_submit is None else auto_submit,
        submit=submit,
        notifier=notifier,
    )
    events: list[dict[str, Any]] = []
    try:
        async for event in recognition.run(transcript_events(transcription["transcript_text"])):
            events.append(event.as_dict())
    except RequestInFlightError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    transcript_text = recognition.transcript
    return {
        "transcript_text": transcript_text,
        "confidence": transcription["confidence"],
        "segments": transcription["segments"],
        "language": language,
        "no_speech": not transcript_text,
        "events": events,
        "auto_submit": recognition.auto_submit,
        "turn": recognition.submitted.as_envelope() if recognition.submitted is not None else None,
        "notices": [notice.as_dict() for notice in notifier.history],
        "next_step": (
            "transcript_submitted"
            if recognition.submitted is not None
            else "review_or_edit_transcript_before_chat_send"
        ),
    }


@app.post("/camera/capture")
async def camera_capture(
    frame: UploadFile | None = File(default=None),
    file: UploadFile | None = File(default=None),
    facing_mode: str = Form(default="user"),
):
    upload = _select_upload(frame, file, field_hint="frame")
    file_name = _normalize_upload_filename(upload, "camera-frame")
    mime_type = (upload.content_type or "").lower().strip()
    _validate_frame_upload(file_name, mime_type)
    raw = await _read_upload_bytes(
        upload,
        max_bytes=settings.max_image_bytes,
        too_large_detail=f"Image exceeds {settings.max_image_bytes // (1024 * 1024)}MB limit.",
    )
    try:
        still = decode_frame(raw)
    except InvalidMediaError as exc:
        raise HTTPException(status_code=415, detail=str(exc)) from exc

    notifier = container.notifier()
    camera = CameraController(StillFrameDevices(still))
    try:
        camera.start(facing_mode.strip())
        image_data_uri = camera.capture_still()
    except MediaAccessError as exc:
        status_code = 400 if exc.code == "invalid_facing_mode" else 503
        notifier.error("camera_failed.title", exc)
        raise HTTPException(status_code=status_code, detail=str(exc)) from exc
    finally:
        camera.stop()

    notice = notifier.notify("image_captured.title", notifier.text("image_captured.body"), code="image_captured")
    return {
        "image_data_uri": image_data_uri,
        "facing_mode": camera.facing_mode,
        "mirrored": camera.facing_mode == "user",
        "notice": notice.as_dict(),
    }
