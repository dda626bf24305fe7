from typing import Optional

import httpx

from commerce_channel.config import settings
from commerce_channel.logging_config import get_logger
from commerce_channel.services.errors import SpeechSynthesisFailed, TranscriptionFailed

logger = get_logger("speech_service")

TRANSCRIPTION_PROMPT = (
    "Por favor, transcribe el audio y asegúrate de escribir los números exactamente como se pronuncian, "
    "sin espacios, comas, ni puntos. Por ejemplo, un número de documento debe ser transcrito como 123456789."
)


async def transcribe_audio(
    audio_bytes: bytes,
    *,
    filename: str,
    mime_type: Optional[str] = None,
    model: Optional[str] = None,
    prompt: str = TRANSCRIPTION_PROMPT,
    timeout_seconds: Optional[float] = None,
) -> str:
    """Transcribe audio using OpenAI speech-to-text. Returns "" when nothing was recognised."""
    if not settings.openai_api_key:
        raise TranscriptionFailed("OPENAI_API_KEY not configured", "missing_openai_key")
    if not audio_bytes:
        raise TranscriptionFailed("audio_bytes is empty")

    files = {"file": (filename or "audio", audio_bytes, mime_type or "application/octet-stream")}
    data = {"model": model or settings.transcription_model, "response_format": "text"}
    if prompt:
        data["prompt"] = prompt

    timeout = timeout_seconds if timeout_seconds is not None else settings.speech_timeout_seconds
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(
                settings.openai_audio_url,
                headers={"Authorization": f"Bearer {settings.openai_api_key}"},
                files=files,
                data=data,
            )
    except httpx.HTTPError as exc:
        raise TranscriptionFailed(f"OpenAI transcription request failed: {exc}") from exc

    logger.debug(f"OpenAI transcription status: {response.status_code}")
    if response.status_code != 200:
        logger.error(f"OpenAI transcription error: {response.text[:200]}")
        raise TranscriptionFailed(f"OpenAI transcription error: {response.status_code}")

    transcript = (response.text or "").strip()
    if not transcript:
        logger.warning("OpenAI transcription returned empty text")
    return transcript


async def synthesize_speech(
    text: str,
    *,
    voice_id: Optional[str] = None,
    model_id: Optional[str] = None,
    timeout_seconds: Optional[float] = None,
) -> bytes:
    """Render `text` as MP3 audio with ElevenLabs."""
    if not settings.elevenlabs_api_key:
        raise SpeechSynthesisFailed("ELEVENLABS_API_KEY not configured", "missing_elevenlabs_key")

    voice = voice_id or settings.elevenlabs_voice_id
    url = f"{settings.elevenlabs_tts_url.rstrip('/')}/{voice}"
    payload = {"text": text, "model_id": model_id or settings.elevenlabs_model_id}
    timeout = timeout_seconds if timeout_seconds is not None else settings.speech_timeout_seconds

    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(
                url,
                headers={"xi-api-key": settings.elevenlabs_api_key, "Accept": "audio/mpeg"},
                json=payload,
            )
    except httpx.HTTPError as exc:
        raise SpeechSynthesisFailed(f"ElevenLabs request failed: {exc}") from exc

    if response.status_code != 200:
        logger.warning(f"ElevenLabs synthesis error: {response.status_code} - {response.text[:200]}")
        raise SpeechSynthesisFailed(f"ElevenLabs synthesis error: {response.status_code}")

    audio = response.content
    if not audio:
        raise SpeechSynthesisFailed("ElevenLabs returned empty audio")
    return audio
