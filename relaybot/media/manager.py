"""Scratch storage for downloaded media."""

import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from loguru import logger

from relaybot.bus.events import IncomingMediaEvent, MediaKind
from relaybot.channels.transport import Transport

AUDIO_EXTENSIONS = [".mp3", ".m4a", ".ogg", ".wav", ".aac", ".flac", ".opus", ".wma"]

DEFAULT_AUDIO_EXTENSION = "mp3"
VIDEO_EXTENSION = "mp4"


def is_audio_file(file_name: str | None = None, mime_type: str | None = None) -> bool:
    """Check if a file is an audio file by mime type or extension."""
    if mime_type and mime_type.startswith("audio/"):
        return True
    if file_name:
        return Path(file_name).suffix.lower() in AUDIO_EXTENSIONS
    return False


class DownloadError(Exception):
    """Fetching or storing a media file failed."""


class Ownership(str, Enum):
    """Who is responsible for deleting a scratch file."""

    OWNED = "owned"  # The pipeline deletes it during cleanup
    DEFERRED = "deferred"  # Handed to the backend, which owns its lifecycle


@dataclass
class ScratchFile:
    """A downloaded media blob on local disk."""

    path: Path
    event: IncomingMediaEvent
    ownership: Ownership = Ownership.OWNED

    def hand_off(self) -> None:
        """Transfer deletion responsibility to whoever now reads the path."""
        self.ownership = Ownership.DEFERRED

    def release(self) -> bool:
        """Delete the file if this pipeline owns it.

        Returns True if the file was removed.
        """
        if self.ownership is Ownership.DEFERRED:
            logger.debug(f"Leaving {self.path} for the backend to clean up")
            return False
        try:
            self.path.unlink()
            return True
        except OSError as e:
            logger.debug(f"Failed to delete scratch file {self.path}: {e}")
            return False


class FileAcquirer:
    """Downloads inbound media into a flat scratch directory.

    Files are named ``{kind}_{unix_millis}.{ext}``::

        temp_dir/
        ├── audio_1738934400123.m4a
        └── video_1738934411456.mp4
    """

    def __init__(self, temp_dir: Path):
        self.temp_dir = temp_dir

    @staticmethod
    def extension_for(event: IncomingMediaEvent) -> str:
        """Pick the scratch file extension for an event."""
        if event.kind is MediaKind.VIDEO:
            return VIDEO_EXTENSION
        if event.file_name:
            suffix = Path(event.file_name).suffix.lower().lstrip(".")
            if suffix:
                return suffix
        return DEFAULT_AUDIO_EXTENSION

    def scratch_path(self, event: IncomingMediaEvent) -> Path:
        timestamp = int(time.time() * 1000)
        return self.temp_dir / f"{event.kind.value}_{timestamp}.{self.extension_for(event)}"

    async def acquire(self, event: IncomingMediaEvent, transport: Transport) -> ScratchFile:
        """Download the event's file into scratch storage.

        Raises:
            DownloadError: The transport or the local disk failed.
        """
        path = self.scratch_path(event)
        try:
            data = await transport.download_file(event.file_ref)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except Exception as e:
            raise DownloadError(f"Failed to download {event.kind.value}: {e}") from e

        logger.debug(f"Downloaded {event.kind.value} to {path} ({len(data)} bytes)")
        return ScratchFile(path=path, event=event)
