import asyncio
from typing import Optional

import httpx

from commerce_channel.config import settings
from commerce_channel.logging_config import get_logger
from commerce_channel.services.errors import AudioConversionFailed

logger = get_logger("audio_conversion")


async def download_audio(url: str, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> bytes:
    try:
        async with httpx.AsyncClient(timeout=settings.media_fetch_timeout_seconds, transport=transport) as client:
            response = await client.get(url)
            response.raise_for_status()
    except httpx.HTTPError as exc:
        raise AudioConversionFailed(f"Failed to download operator audio: {exc}") from exc
    if not response.content:
        raise AudioConversionFailed("Operator audio is empty")
    return response.content


async def convert_webm_to_mp3(data: bytes, *, ffmpeg_binary: Optional[str] = None) -> bytes:
    """Transcode browser-recorded webm/opus audio to MP3 through ffmpeg pipes."""
    binary = ffmpeg_binary or settings.ffmpeg_binary
    try:
        process = await asyncio.create_subprocess_exec(
            binary,
            "-hide_banner",
            "-loglevel",
            "error",
            "-i",
            "pipe:0",
            "-vn",
            "-acodec",
            "libmp3lame",
            "-b:a",
            "128k",
            "-f",
            "mp3",
            "pipe:1",
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise AudioConversionFailed(f"Could not start {binary}: {exc}") from exc

    stdout, stderr = await process.communicate(data)
    if process.returncode != 0 or not stdout:
        logger.error(
            "ffmpeg conversion failed",
            extra={"context": {"returncode": process.returncode, "stderr": stderr.decode("utf-8", "replace")[:500]}},
        )
        raise AudioConversionFailed(f"ffmpeg exited with code {process.returncode}")

    logger.info(f"Converted operator audio: {len(data)} -> {len(stdout)} bytes")
    return stdout
