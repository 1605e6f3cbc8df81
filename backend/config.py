from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

BACKEND_DIR = Path(__file__).resolve().parent
REPO_ROOT = BACKEND_DIR.parent


def bootstrap_env() -> None:
    # Real environment variables always win over .env files.
    for candidate in (REPO_ROOT / ".env", BACKEND_DIR / ".env"):
        if candidate.exists():
            load_dotenv(candidate, override=False)


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    db_path: str
    app_id: str
    display_language: str
    gemini_api_key: str
    gemini_base_url: str
    gemini_model: str
    tts_api_key: str
    tts_base_url: str
    tts_language: str
    tts_voice: str
    auto_speak: bool
    stt_language: str
    stt_auto_submit: bool
    openai_api_key: str
    openai_base_url: str
    whisper_model: str
    max_image_bytes: int
    max_audio_bytes: int
    max_sessions: int
    allowed_origins: list[str]
    log_level: str


def load_settings() -> Settings:
    bootstrap_env()
    return Settings(
        db_path=os.getenv("MEDASSIST_DB_PATH", str(BACKEND_DIR / "medassist.sqlite")),
        app_id=(os.getenv("MEDASSIST_APP_ID") or "doctor-assistant").strip(),
        display_language=(os.getenv("MEDASSIST_DISPLAY_LANGUAGE") or "ar").strip().lower(),
        gemini_api_key=(os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY") or "").strip(),
        gemini_base_url=os.getenv("GEMINI_API_BASE_URL", "https://generativelanguage.googleapis.com/v1beta").rstrip("/"),
        gemini_model=(os.getenv("GEMINI_MODEL") or "gemini-2.0-flash").strip(),
        tts_api_key=(os.getenv("GOOGLE_TTS_API_KEY") or "").strip(),
        tts_base_url=os.getenv("GOOGLE_TTS_BASE_URL", "https://texttospeech.googleapis.com/v1").rstrip("/"),
        tts_language=(os.getenv("MEDASSIST_TTS_LANGUAGE") or "ar-XA").strip(),
        tts_voice=(os.getenv("MEDASSIST_TTS_VOICE") or "ar-XA-Wavenet-D").strip(),
        auto_speak=_env_flag("MEDASSIST_AUTO_SPEAK", True),
        stt_language=(os.getenv("MEDASSIST_STT_LANGUAGE") or "ar-SA").strip(),
        stt_auto_submit=_env_flag("MEDASSIST_STT_AUTO_SUBMIT", True),
        openai_api_key=(os.getenv("OPENAI_API_KEY") or "").strip(),
        openai_base_url=os.getenv("OPENAI_API_BASE_URL", "https://api.openai.com/v1").rstrip("/"),
        whisper_model=(os.getenv("MEDASSIST_WHISPER_MODEL") or "whisper-1").strip(),
        max_image_bytes=_env_int("MEDASSIST_MAX_IMAGE_BYTES", 10 * 1024 * 1024),
        max_audio_bytes=_env_int("MEDASSIST_MAX_AUDIO_BYTES", 20 * 1024 * 1024),
        max_sessions=_env_int("MEDASSIST_MAX_SESSIONS", 512),
        allowed_origins=[
            origin.strip()
            for origin in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
            if origin.strip()
        ],
        log_level=(os.getenv("LOG_LEVEL") or "INFO").strip().upper(),
    )
