from __future__ import annotations

import importlib
import sys
from pathlib import Path
from typing import Callable

import pytest
from fastapi.testclient import TestClient

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from fakes import FakeGenAI, FakeTranscriber, FakeTTS  # noqa: E402


@pytest.fixture
def backend_module(tmp_path, monkeypatch):
    db_path = tmp_path / "medassist-test.sqlite"
    monkeypatch.setenv("MEDASSIST_DB_PATH", str(db_path))
    monkeypatch.setenv("MEDASSIST_DISPLAY_LANGUAGE", "en")
    # No real provider keys in CI; tests swap in fakes on the context.
    monkeypatch.setenv("GEMINI_API_KEY", "")
    monkeypatch.setenv("GOOGLE_API_KEY", "")
    monkeypatch.setenv("GOOGLE_TTS_API_KEY", "")
    monkeypatch.setenv("OPENAI_API_KEY", "")
    monkeypatch.setenv("MEDASSIST_AUTO_SPEAK", "false")

    if "main" in sys.modules:
        module = importlib.reload(sys.modules["main"])
    else:
        module = importlib.import_module("main")
    return module


@pytest.fixture
def fake_genai(backend_module) -> FakeGenAI:
    genai = FakeGenAI()
    backend_module.container.context.genai = genai
    backend_module.container.context.flows.genai = genai
    return genai


@pytest.fixture
def fake_tts(backend_module) -> FakeTTS:
    tts = FakeTTS()
    backend_module.container.context.tts = tts
    return tts


@pytest.fixture
def fake_transcriber(backend_module) -> FakeTranscriber:
    transcriber = FakeTranscriber()
    backend_module.container.context.transcriber = transcriber
    return transcriber


@pytest.fixture
def client(backend_module):
    with TestClient(backend_module.app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers() -> Callable[[str], dict[str, str]]:
    def _make(session_token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {session_token}"}

    return _make


@pytest.fixture
def signed_in(client, auth_headers) -> Callable[[], tuple[dict, dict[str, str]]]:
    def _sign_in() -> tuple[dict, dict[str, str]]:
        response = client.post("/auth/anonymous")
        assert response.status_code == 200
        identity = response.json()
        return identity, auth_headers(identity["session_token"])

    return _sign_in
