from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from config import settings
from middleware.rate_limit import limiter
from services import ai_service, voice_service, weather_service


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "")
    monkeypatch.setattr(settings, "DEEPSEEK_API_KEY", "")
    monkeypatch.setattr(settings, "SEARCH_API_KEY", "")
    monkeypatch.setattr(settings, "SEARCH_ENABLED", False)
    monkeypatch.setattr(settings, "SMTP_USER", "")
    monkeypatch.setattr(settings, "SMTP_PASS", "")
    monkeypatch.setattr(settings, "JWT_SECRET", "test-secret-0123456789")
    monkeypatch.setattr(settings, "AI_RETRY_DELAY", 0)
    monkeypatch.setattr(ai_service, "client", None)
    monkeypatch.setattr(ai_service, "reasoning_client", None)
    monkeypatch.setattr(voice_service, "client", None)
    monkeypatch.setattr(limiter, "enabled", False)
    weather_service.clear_cache()
    yield
    weather_service.clear_cache()


@pytest.fixture
def enable_search(monkeypatch):
    """Turn search on and route its HTTP call to a canned payload (or exception)."""
    from services import search_service

    def _enable(payload):
        monkeypatch.setattr(settings, "SEARCH_ENABLED", True)
        monkeypatch.setattr(settings, "SEARCH_API_KEY", "sk-search-test-key")
        calls = []

        async def fake_post(body):
            calls.append(body)
            if isinstance(payload, Exception):
                raise payload
            return payload

        monkeypatch.setattr(search_service, "_post_search", fake_post)
        return calls

    return _enable


def search_payload(*pages):
    return {
        "data": {
            "queryContext": {"originalQuery": "test"},
            "webPages": {"totalEstimatedMatches": len(pages), "value": list(pages)},
        }
    }


def page(name, snippet, summary=None, site="example.com"):
    return {
        "name": name,
        "url": f"https://{site}/{len(name)}",
        "snippet": snippet,
        "summary": summary,
        "siteName": site,
        "datePublished": "2024-06-01T08:00:00+08:00",
    }


# ── Fake OpenAI-compatible client ────────────────────────

class FakeCompletions:
    """
    Scripted chat.completions. Each script entry is consumed per call
    (the last one repeats):
      - str: reply content
      - (content, reasoning) tuple
      - list of (reasoning, content) deltas, for stream=True
      - Exception instance: raised
    """

    def __init__(self, script):
        self.script = list(script)
        self.calls = []

    def _next(self):
        return self.script.pop(0) if len(self.script) > 1 else self.script[0]

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        entry = self._next()
        if isinstance(entry, Exception):
            raise entry
        if kwargs.get("stream"):
            return _stream(entry)
        content, reasoning = entry if isinstance(entry, tuple) else (entry, None)
        message = SimpleNamespace(content=content, reasoning_content=reasoning)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


async def _stream(deltas):
    yield SimpleNamespace(choices=[])
    for reasoning, content in deltas:
        if isinstance(content, Exception):
            raise content
        delta = SimpleNamespace(reasoning_content=reasoning, content=content)
        yield SimpleNamespace(choices=[SimpleNamespace(delta=delta)])


class FakeTranscriptions:
    def __init__(self, text):
        self.text = text
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if isinstance(self.text, Exception):
            raise self.text
        return SimpleNamespace(text=self.text)


def fake_client(script=("好的",), transcript=""):
    return SimpleNamespace(
        chat=SimpleNamespace(completions=FakeCompletions(script)),
        audio=SimpleNamespace(transcriptions=FakeTranscriptions(transcript)),
    )


@pytest.fixture
def app_client():
    from main import app

    with TestClient(app) as client:
        yield client
