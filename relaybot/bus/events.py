"""Event types for inbound media."""

from dataclasses import dataclass
from enum import Enum


class MediaKind(str, Enum):
    """Kind of media an inbound event carries."""

    AUDIO = "audio"
    VIDEO = "video"


@dataclass(frozen=True)
class IncomingMediaEvent:
    """A media message received from a chat channel."""

    user_id: int
    username: str
    chat_id: int
    kind: MediaKind
    file_ref: str  # Platform file identifier (e.g. Telegram file_id)
    file_size: int | None = None  # Declared size in bytes, if the platform reports it
    file_name: str | None = None  # Original filename, used for the extension
    mime_type: str | None = None
    caption: str | None = None
    message_id: int | None = None
