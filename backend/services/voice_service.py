"""
Speech-to-text via the OpenAI-compatible transcription endpoint, plus translation to Chinese.
Falls back to a failure result if OPENAI_API_KEY is not configured.
"""

import io
import re
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple

import openai
from loguru import logger

from config import is_configured_key, settings

client = None

ALLOWED_AUDIO_EXTENSIONS = {".mp3", ".wav", ".m4a", ".ogg", ".webm", ".flac", ".aac", ".mp4"}

_CJK_RE = re.compile(r"[一-鿿]")

TRANSLATE_PROMPT = "你是一个专业的翻译助手。请将用户输入的任何语言的文本翻译成简体中文。只返回翻译结果，不要添加额外的解释。"


def _get_client():
    global client
    if client is None:
        if not is_configured_key(settings.OPENAI_API_KEY):
            return None
        client = openai.AsyncOpenAI(api_key=settings.OPENAI_API_KEY, base_url=settings.OPENAI_BASE_URL)
    return client


def is_enabled() -> bool:
    return is_configured_key(settings.OPENAI_API_KEY)


def max_voice_bytes() -> int:
    return settings.MAX_VOICE_MB * 1024 * 1024


def validate_audio_file(filename: str, content_type: Optional[str], size: int) -> Tuple[bool, Optional[str]]:
    ext = Path(filename or "").suffix.lower()
    if ext not in ALLOWED_AUDIO_EXTENSIONS and not (content_type or "").startswith("audio/"):
        return False, f"不支持的音频格式，请上传 {', '.join(sorted(ALLOWED_AUDIO_EXTENSIONS))} 文件"
    if size == 0:
        return False, "音频文件是空的"
    if size > max_voice_bytes():
        return False, f"音频文件太大了（最大{settings.MAX_VOICE_MB}MB）"
    return True, None


def is_chinese(text: str) -> bool:
    """True when CJK characters make up more than 30% of the non-whitespace text."""
    total = len(re.sub(r"\s", "", text or ""))
    if total == 0:
        return False
    return len(_CJK_RE.findall(text)) / total > 0.3


async def speech_to_text(audio_bytes: bytes, filename: str = "audio.webm") -> dict:
    ai_client = _get_client()
    if ai_client is None:
        logger.warning("STT requested but no API key configured")
        return {"success": False, "error": "语音识别服务未配置"}

    try:
        audio_file = io.BytesIO(audio_bytes)
        audio_file.name = filename
        transcript = await ai_client.audio.transcriptions.create(model=settings.STT_MODEL, file=audio_file)
        text = (transcript.text or "").strip()
        logger.info(f"STT transcription: '{text[:80]}'")
        if not text:
            return {"success": False, "error": "没有听清楚，请再说一遍吧"}
        return {
            "success": True,
            "text": text,
            "language": "zh" if is_chinese(text) else "other",
        }
    except openai.OpenAIError as e:
        logger.error(f"STT error: {e}")
        return {"success": False, "error": "语音识别失败，请稍后重试"}


async def translate_to_chinese(text: str) -> dict:
    if is_chinese(text):
        return {"success": True, "original_text": text, "translated_text": text, "is_already_chinese": True}

    ai_client = _get_client()
    if ai_client is None:
        return {"success": False, "error": "翻译服务未配置", "original_text": text}

    try:
        response = await ai_client.chat.completions.create(
            model=settings.OPENAI_MODEL,
            messages=[
                {"role": "system", "content": TRANSLATE_PROMPT},
                {"role": "user", "content": f"请将以下文本翻译成中文：{text}"},
            ],
            temperature=0.3,
            max_tokens=500,
        )
        translated = (response.choices[0].message.content or "").strip()
        logger.info(f"Translated '{text[:40]}' -> '{translated[:40]}'")
        return {"success": True, "original_text": text, "translated_text": translated, "is_already_chinese": False}
    except openai.OpenAIError as e:
        logger.error(f"Translation error: {e}")
        return {"success": False, "error": "翻译失败，请稍后重试", "original_text": text}


async def process_voice(audio_bytes: bytes, filename: str = "audio.webm") -> dict:
    stt = await speech_to_text(audio_bytes, filename)
    if not stt["success"]:
        return stt

    translation = await translate_to_chinese(stt["text"])
    if not translation["success"]:
        return translation

    return {
        "success": True,
        "original_text": stt["text"],
        "translated_text": translation["translated_text"],
        "is_already_chinese": translation["is_already_chinese"],
        "language": stt["language"],
        "timestamp": datetime.now().isoformat(),
    }
