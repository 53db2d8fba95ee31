"""Configuration schema using Pydantic."""

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TelegramConfig(BaseModel):
    """Telegram channel configuration."""
    token: str = ""  # Bot token from @BotFather
    allow_from: list[str] = Field(default_factory=list)  # Allowed user IDs or usernames


class MediaConfig(BaseModel):
    """Scratch storage for downloaded media."""
    temp_dir: str = "~/.relaybot/tmp"
    max_video_size: int = 50 * 1024 * 1024  # 50MB, reasonable for short clips and voice memos


class RateLimitConfig(BaseModel):
    """Per-user token bucket."""
    max_requests: int = 20
    window_seconds: float = 60.0


class TranscriptionConfig(BaseModel):
    """Voice transcription configuration."""
    provider: str = "groq"  # "groq" | "elevenlabs" | "none"
    api_key: str = ""


class BackendConfig(BaseModel):
    """Conversational backend (Anthropic Messages API)."""
    model: str = "claude-sonnet-4-5"
    max_tokens: int = 4096
    api_key: str = ""  # Falls back to ANTHROPIC_API_KEY when empty
    system_prompt: str = (
        "You are a helpful assistant reachable over Telegram. "
        "Users send you voice notes, audio files and videos. Be concise."
    )


class AuditConfig(BaseModel):
    """Audit log location."""
    path: str = "~/.relaybot/audit.jsonl"


class StreamingConfig(BaseModel):
    """Status message behaviour while a response streams in."""
    edit_interval: float = 1.0  # Minimum seconds between response edits


class Config(BaseSettings):
    """Root configuration for relaybot."""
    model_config = SettingsConfigDict(
        env_prefix="RELAYBOT_",
        env_nested_delimiter="__",
    )

    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    media: MediaConfig = Field(default_factory=MediaConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    transcription: TranscriptionConfig = Field(default_factory=TranscriptionConfig)
    backend: BackendConfig = Field(default_factory=BackendConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    streaming: StreamingConfig = Field(default_factory=StreamingConfig)

    @property
    def temp_path(self) -> Path:
        """Get expanded scratch directory."""
        return Path(self.media.temp_dir).expanduser()

    @property
    def audit_path(self) -> Path:
        """Get expanded audit log path."""
        return Path(self.audit.path).expanduser()
