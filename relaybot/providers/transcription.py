"""Speech-to-text providers (Groq Whisper, ElevenLabs Scribe)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import httpx
from loguru import logger

from relaybot.config.schema import TranscriptionConfig


class TranscriptionError(Exception):
    """Transcription failure with a user-facing short message."""

    def __init__(self, short_message: str, detail: str = ""):
        self.short_message = short_message
        self.detail = detail
        super().__init__(detail or short_message)


class TranscriptionProvider(ABC):
    """Abstract base for transcription providers."""

    @abstractmethod
    async def transcribe(self, file_path: str | Path) -> str:
        """Transcribe an audio file. Raises TranscriptionError on failure."""


class HTTPTranscriptionProvider(TranscriptionProvider):
    """Multipart-upload speech-to-text API returning ``{"text": ...}``."""

    name = "http"
    api_url = ""
    timeout = 60.0

    def __init__(self, api_key: str):
        self.api_key = api_key

    @abstractmethod
    def _headers(self) -> dict[str, str]: ...

    @abstractmethod
    def _form(self, path: Path, f) -> tuple[dict[str, Any], dict[str, str]]:
        """Return ``(files, data)`` for the multipart request."""

    async def transcribe(self, file_path: str | Path) -> str:
        path = Path(file_path)
        if not path.exists():
            raise TranscriptionError("file not found", f"Audio file not found: {path}")

        try:
            async with httpx.AsyncClient() as client:
                with open(path, "rb") as f:
                    files, data = self._form(path, f)
                    response = await client.post(
                        self.api_url,
                        headers=self._headers(),
                        files=files,
                        data=data,
                        timeout=self.timeout,
                    )
                response.raise_for_status()
                text = response.json().get("text", "").strip()
                if not text:
                    raise TranscriptionError("empty response", f"{self.name} returned empty text")
                return text
        except TranscriptionError:
            raise
        except httpx.HTTPStatusError as e:
            detail = f"{self.name} API {e.response.status_code}: {e.response.text[:200]}"
            logger.error(detail)
            raise TranscriptionError("API error", detail) from e
        except Exception as e:
            logger.error(f"{self.name} transcription error: {e}")
            raise TranscriptionError("transcription failed", str(e)) from e


class GroqTranscriptionProvider(HTTPTranscriptionProvider):
    """Groq Whisper v3 Turbo."""

    name = "Groq"
    api_url = "https://api.groq.com/openai/v1/audio/transcriptions"

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _form(self, path, f):
        return (
            {"file": (path.name, f), "model": (None, "whisper-large-v3-turbo")},
            {"response_format": "json"},
        )


class ElevenLabsTranscriptionProvider(HTTPTranscriptionProvider):
    """ElevenLabs Scribe v2."""

    name = "ElevenLabs"
    api_url = "https://api.elevenlabs.io/v1/speech-to-text"

    def _headers(self) -> dict[str, str]:
        return {"xi-api-key": self.api_key}

    def _form(self, path, f):
        return (
            {"file": (path.name, f)},
            {"model_id": "scribe_v2", "tag_audio_events": "false"},
        )


_PROVIDERS: dict[str, type[HTTPTranscriptionProvider]] = {
    "groq": GroqTranscriptionProvider,
    "elevenlabs": ElevenLabsTranscriptionProvider,
}


def create_transcription_provider(config: TranscriptionConfig) -> TranscriptionProvider | None:
    """Factory: create the configured provider, or None if transcription is unavailable."""
    provider_cls = _PROVIDERS.get(config.provider)
    if provider_cls is None:
        return None
    if not config.api_key:
        logger.warning(f"{provider_cls.name} transcription selected but no API key configured")
        return None
    return provider_cls(config.api_key)
