"""Prompt and conversation-title assembly."""

CAPTION_SEPARATOR = "\n\n---\n\n"
MAX_TITLE_LENGTH = 50
VIDEO_TITLE_PLACEHOLDER = "[Video]"


def build_audio_prompt(transcript: str, caption: str | None = None) -> str:
    """Transcript, followed by the caption when there is one."""
    if caption:
        return f"{transcript}{CAPTION_SEPARATOR}{caption}"
    return transcript


def build_video_prompt(video_path: str, caption: str | None = None) -> str:
    """Point the backend at the video file; it does its own processing."""
    if caption:
        return f"Here's a video file at path: {video_path}\n\nUser says: {caption}"
    return f"I've received a video file at path: {video_path}\n\nPlease transcribe it for me."


def derive_title(text: str, limit: int = MAX_TITLE_LENGTH) -> str:
    if len(text) > limit:
        return text[:limit - 3] + "..."
    return text
