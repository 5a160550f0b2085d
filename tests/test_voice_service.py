import openai
import pytest

from conftest import fake_client
from services import voice_service


@pytest.mark.parametrize(
    "text, expected",
    [("你好世界", True), ("hello world", False), ("Hello 明", False), ("我爱 Py", True), ("", False)],
)
def test_is_chinese(text, expected):
    assert voice_service.is_chinese(text) is expected


def test_validate_audio_file(monkeypatch):
    from config import settings

    assert voice_service.validate_audio_file("a.mp3", None, 10) == (True, None)
    assert voice_service.validate_audio_file("blob", "audio/ogg", 10) == (True, None)
    assert voice_service.validate_audio_file("a.txt", "text/plain", 10)[0] is False
    assert voice_service.validate_audio_file("a.mp3", "audio/mpeg", 0)[0] is False

    monkeypatch.setattr(settings, "MAX_VOICE_MB", 0)
    ok, error = voice_service.validate_audio_file("a.mp3", "audio/mpeg", 10)
    assert not ok and "太大" in error


async def test_speech_to_text(monkeypatch):
    client = fake_client(transcript=" 你好呀 ")
    monkeypatch.setattr(voice_service, "client", client)

    result = await voice_service.speech_to_text(b"audio", "clip.webm")

    assert result == {"success": True, "text": "你好呀", "language": "zh"}
    assert client.audio.transcriptions.calls[0]["file"].name == "clip.webm"


async def test_speech_to_text_empty_transcript(monkeypatch):
    monkeypatch.setattr(voice_service, "client", fake_client(transcript=""))
    result = await voice_service.speech_to_text(b"audio")
    assert result["success"] is False


async def test_speech_to_text_api_error(monkeypatch):
    monkeypatch.setattr(voice_service, "client", fake_client(transcript=openai.OpenAIError("down")))
    result = await voice_service.speech_to_text(b"audio")
    assert result == {"success": False, "error": "语音识别失败，请稍后重试"}


async def test_translate_to_chinese(monkeypatch):
    client = fake_client(script=["你好，世界"])
    monkeypatch.setattr(voice_service, "client", client)

    result = await voice_service.translate_to_chinese("hello world")

    assert result["translated_text"] == "你好，世界"
    assert result["is_already_chinese"] is False
    assert client.chat.completions.calls[0]["temperature"] == 0.3


async def test_process_voice_translates_foreign_speech(monkeypatch):
    monkeypatch.setattr(voice_service, "client", fake_client(script=["早上好"], transcript="good morning"))

    result = await voice_service.process_voice(b"audio", "clip.mp3")

    assert result["success"] is True
    assert result["original_text"] == "good morning"
    assert result["translated_text"] == "早上好"
    assert result["language"] == "other"
