"""
Voice input endpoints: speech-to-text with optional translation into Chinese.
Audio is processed in memory and never written to disk.
"""

from fastapi import APIRouter, File, HTTPException, UploadFile
from loguru import logger

from config import settings
from models.entities import utcnow_iso
from models.schemas import TranslateRequest
from services.voice_service import (
    ALLOWED_AUDIO_EXTENSIONS,
    is_enabled,
    process_voice,
    speech_to_text,
    translate_to_chinese,
    validate_audio_file,
)

router = APIRouter(prefix="/api/voice", tags=["voice"])


async def _read_audio(audio: UploadFile) -> bytes:
    data = await audio.read()
    ok, error = validate_audio_file(audio.filename, audio.content_type, len(data))
    if not ok:
        raise HTTPException(status_code=400, detail=error)
    logger.info(f"Audio received: {audio.filename} ({len(data)} bytes, {audio.content_type})")
    return data


@router.post("/transcribe")
async def transcribe(audio: UploadFile = File(...)):
    data = await _read_audio(audio)

    result = await process_voice(data, audio.filename or "audio.webm")
    if not result["success"]:
        raise HTTPException(status_code=500, detail=result["error"])

    return {
        "success": True,
        "data": {
            "original_text": result["original_text"],
            "translated_text": result["translated_text"],
            "is_already_chinese": result["is_already_chinese"],
            "language": result["language"],
            "timestamp": result["timestamp"],
        },
    }


@router.post("/speech-to-text")
async def speech_to_text_only(audio: UploadFile = File(...)):
    data = await _read_audio(audio)

    result = await speech_to_text(data, audio.filename or "audio.webm")
    if not result["success"]:
        raise HTTPException(status_code=500, detail=result["error"])

    return {
        "success": True,
        "data": {"text": result["text"], "language": result["language"], "timestamp": utcnow_iso()},
    }


@router.post("/translate")
async def translate(req: TranslateRequest):
    text = req.text.strip()
    if not text:
        raise HTTPException(status_code=400, detail="请提供要翻译的文本")

    result = await translate_to_chinese(text)
    if not result["success"]:
        raise HTTPException(status_code=500, detail=result["error"])

    return {
        "success": True,
        "data": {
            "original_text": result["original_text"],
            "translated_text": result["translated_text"],
            "is_already_chinese": result["is_already_chinese"],
            "timestamp": utcnow_iso(),
        },
    }


@router.get("/status")
async def voice_status():
    return {
        "success": True,
        "data": {
            "enabled": is_enabled(),
            "max_file_size": settings.MAX_VOICE_MB * 1024 * 1024,
            "allowed_formats": sorted(ALLOWED_AUDIO_EXTENSIONS),
            "model": settings.STT_MODEL,
        },
    }
