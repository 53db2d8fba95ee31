"""Media-specific pre-processing ahead of prompt assembly."""

import asyncio
import contextlib

from loguru import logger

from relaybot.providers.transcription import TranscriptionError, TranscriptionProvider

MAX_TRANSCRIPT_DISPLAY = 4000


async def transcribe_audio(
    transcriber: TranscriptionProvider,
    path,
    semaphore: asyncio.Semaphore | None = None,
) -> str | None:
    """Transcribe a scratch file. Returns None when transcription failed."""
    try:
        async with semaphore or contextlib.nullcontext():
            text = await transcriber.transcribe(path)
    except TranscriptionError as e:
        logger.error(f"Transcription failed: {e.detail or e.short_message}")
        return None
    if not text:
        return None
    logger.info(f"Transcribed audio: {text[:50]}...")
    return text


def transcript_preview(transcript: str, limit: int = MAX_TRANSCRIPT_DISPLAY) -> str:
    """Status-message rendering of a transcript, capped at ``limit`` characters."""
    display = transcript[:limit] + "…" if len(transcript) > limit else transcript
    return f'🎤 "{display}"'
