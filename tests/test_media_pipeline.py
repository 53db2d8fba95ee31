"""End-to-end tests for the audio and video media pipelines."""

import asyncio
import json
from unittest.mock import MagicMock

import pytest

from relaybot.audit.logger import AuditLogger
from relaybot.bus.events import IncomingMediaEvent, MediaKind
from relaybot.handlers.errors import STOPPED_NOTICE
from relaybot.handlers.media import (
    BUSY_MESSAGE,
    TRANSCRIPTION_UNAVAILABLE_MESSAGE,
    UNAUTHORIZED_MESSAGE,
    MediaPipeline,
)
from relaybot.media.manager import FileAcquirer
from relaybot.providers.backend import StreamingError
from relaybot.security.rate_limiter import RateLimitDecision, RateLimiter
from relaybot.session.manager import SessionManager

ALLOWED_USER = 42
CHAT_ID = 100
MIB = 1024 * 1024


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _event(kind=MediaKind.AUDIO, user_id=ALLOWED_USER, **kwargs):
    return IncomingMediaEvent(
        user_id=user_id,
        username="alice",
        chat_id=CHAT_ID,
        kind=kind,
        file_ref="file-abc",
        **kwargs,
    )


def _make_pipeline(tmp_path, backend, transcriber=None, rate_limiter=None):
    limiter = rate_limiter or MagicMock(wraps=RateLimiter(max_requests=20, window_seconds=60))
    return MediaPipeline(
        sessions=SessionManager(backend),
        rate_limiter=limiter,
        acquirer=FileAcquirer(tmp_path / "scratch"),
        audit=AuditLogger(tmp_path / "audit.jsonl"),
        allow_from=[str(ALLOWED_USER)],
        transcriber=transcriber,
    )


def _audit_records(tmp_path) -> list[dict]:
    path = tmp_path / "audit.jsonl"
    if not path.exists():
        return []
    return [json.loads(line) for line in path.read_text().splitlines()]


def _scratch_files(tmp_path) -> list:
    scratch = tmp_path / "scratch"
    return list(scratch.iterdir()) if scratch.exists() else []


def _spy_releases(session) -> list:
    """Count how often the release callback handed out by start_processing runs."""
    original = session.start_processing
    releases = []

    def start_processing():
        release = original()

        def counted_release():
            releases.append(1)
            release()

        return counted_release

    session.start_processing = start_processing
    return releases


# ---------------------------------------------------------------------------
# Gates
# ---------------------------------------------------------------------------

class TestGates:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", [MediaKind.AUDIO, MediaKind.VIDEO])
    async def test_unauthorized_user(self, tmp_path, transport, backend, fake_transcriber_cls, kind):
        pipeline = _make_pipeline(tmp_path, backend, fake_transcriber_cls())

        await pipeline.handle(_event(kind=kind, user_id=7), transport)

        assert transport.replies == [UNAUTHORIZED_MESSAGE]
        assert transport.downloads == []
        pipeline.rate_limiter.check.assert_not_called()
        assert _audit_records(tmp_path) == []
        assert backend.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", [MediaKind.AUDIO, MediaKind.VIDEO])
    async def test_rate_limited_user(self, tmp_path, transport, backend, fake_transcriber_cls, kind):
        limiter = MagicMock()
        limiter.check.return_value = RateLimitDecision(allowed=False, retry_after=12.34)
        pipeline = _make_pipeline(tmp_path, backend, fake_transcriber_cls(), rate_limiter=limiter)

        await pipeline.handle(_event(kind=kind), transport)

        assert transport.replies == ["⏳ Rate limited. Please wait 12.3 seconds."]
        records = _audit_records(tmp_path)
        assert len(records) == 1
        assert records[0]["event"] == "rate_limit"
        assert records[0]["user_id"] == ALLOWED_USER
        assert transport.downloads == []
        assert _scratch_files(tmp_path) == []

    @pytest.mark.asyncio
    async def test_transcription_unavailable(self, tmp_path, transport, backend):
        pipeline = _make_pipeline(tmp_path, backend, transcriber=None)

        await pipeline.handle(_event(), transport)

        assert transport.replies == [TRANSCRIPTION_UNAVAILABLE_MESSAGE]
        assert transport.downloads == []
        pipeline.rate_limiter.check.assert_not_called()
        assert not pipeline.sessions.get_or_create(CHAT_ID).is_processing

    @pytest.mark.asyncio
    async def test_video_too_large(self, tmp_path, transport, backend):
        pipeline = _make_pipeline(tmp_path, backend)

        await pipeline.handle(_event(kind=MediaKind.VIDEO, file_size=60 * MIB), transport)

        assert transport.replies == ["❌ Video too large. Maximum size is 50MB."]
        assert transport.downloads == []
        pipeline.rate_limiter.check.assert_not_called()

    @pytest.mark.asyncio
    async def test_audio_download_failure(self, tmp_path, transport, backend, fake_transcriber_cls):
        transport.fail_download = True
        transcriber = fake_transcriber_cls()
        pipeline = _make_pipeline(tmp_path, backend, transcriber)

        await pipeline.handle(_event(), transport)

        assert transport.replies == ["❌ Failed to download audio file."]
        assert transcriber.calls == []
        assert backend.calls == []
        assert not pipeline.sessions.get_or_create(CHAT_ID).is_processing

    @pytest.mark.asyncio
    async def test_video_download_failure(self, tmp_path, transport, backend):
        transport.fail_download = True
        pipeline = _make_pipeline(tmp_path, backend)

        await pipeline.handle(_event(kind=MediaKind.VIDEO), transport)

        assert transport.replies == ["📹 Downloading video..."]
        assert transport.edit_texts == ["❌ Failed to download video."]
        assert backend.calls == []


# ---------------------------------------------------------------------------
# Audio
# ---------------------------------------------------------------------------

class TestAudio:
    @pytest.mark.asyncio
    async def test_transcript_becomes_prompt_and_title(self, tmp_path, transport, backend,
                                                       fake_transcriber_cls):
        pipeline = _make_pipeline(tmp_path, backend, fake_transcriber_cls("hello world"))

        await pipeline.handle(_event(), transport)

        session = pipeline.sessions.get_or_create(CHAT_ID)
        assert backend.last_prompt == "hello world"
        assert session.conversation_title == "hello world"
        assert transport.replies[0] == "🎤 Transcribing audio..."
        assert '🎤 "hello world"' in transport.edit_texts
        assert "backend reply" in transport.replies

    @pytest.mark.asyncio
    async def test_long_transcript_with_caption(self, tmp_path, transport, backend,
                                                fake_transcriber_cls):
        transcript = "a" * 6000
        pipeline = _make_pipeline(tmp_path, backend, fake_transcriber_cls(transcript))

        await pipeline.handle(_event(caption="summarize"), transport)

        assert '🎤 "' + "a" * 4000 + '…"' in transport.edit_texts
        assert backend.last_prompt == transcript + "\n\n---\n\nsummarize"
        assert pipeline.sessions.get_or_create(CHAT_ID).conversation_title == "a" * 47 + "..."

    @pytest.mark.asyncio
    async def test_audit_and_cleanup_on_success(self, tmp_path, transport, backend,
                                                fake_transcriber_cls):
        pipeline = _make_pipeline(tmp_path, backend, fake_transcriber_cls("hello world"))
        session = pipeline.sessions.get_or_create(CHAT_ID)
        releases = _spy_releases(session)

        await pipeline.handle(_event(file_name="memo.M4A"), transport)

        records = _audit_records(tmp_path)
        assert len(records) == 1
        assert records[0]["message_type"] == "AUDIO"
        assert records[0]["content"] == "hello world"
        assert records[0]["response"] == "backend reply"
        assert releases == [1]
        assert not session.is_processing
        assert _scratch_files(tmp_path) == []

    @pytest.mark.asyncio
    async def test_transcription_failure(self, tmp_path, transport, backend, fake_transcriber_cls):
        transcriber = fake_transcriber_cls(fail=True)
        pipeline = _make_pipeline(tmp_path, backend, transcriber)
        session = pipeline.sessions.get_or_create(CHAT_ID)
        releases = _spy_releases(session)

        await pipeline.handle(_event(), transport)

        assert len(transcriber.calls) == 1
        assert transport.edit_texts == ["❌ Transcription failed."]
        assert backend.calls == []
        assert releases == []
        assert _scratch_files(tmp_path) == []
        assert _audit_records(tmp_path) == []

    @pytest.mark.asyncio
    async def test_title_written_once_per_conversation(self, tmp_path, transport, backend,
                                                       fake_transcriber_cls):
        transcriber = fake_transcriber_cls("first turn")
        pipeline = _make_pipeline(tmp_path, backend, transcriber)

        await pipeline.handle(_event(), transport)
        transcriber.text = "second turn"
        await pipeline.handle(_event(), transport)

        session = pipeline.sessions.get_or_create(CHAT_ID)
        assert session.conversation_title == "first turn"
        assert backend.last_prompt == "second turn"

    @pytest.mark.asyncio
    async def test_busy_session(self, tmp_path, transport, backend, fake_transcriber_cls):
        pipeline = _make_pipeline(tmp_path, backend, fake_transcriber_cls())
        session = pipeline.sessions.get_or_create(CHAT_ID)
        release = session.start_processing()

        await pipeline.handle(_event(), transport)

        assert transport.replies[-1] == BUSY_MESSAGE
        assert backend.calls == []
        # The other holder keeps the lock
        assert session.is_processing
        assert _scratch_files(tmp_path) == []
        release()


# ---------------------------------------------------------------------------
# Streaming failures
# ---------------------------------------------------------------------------

class TestStreamingFailures:
    @pytest.mark.asyncio
    async def test_cancellation_replies_stopped_notice(self, tmp_path, transport,
                                                        fake_backend_cls, fake_transcriber_cls):
        backend = fake_backend_cls(error=RuntimeError("Query cancelled by user"))
        pipeline = _make_pipeline(tmp_path, backend, fake_transcriber_cls())

        await pipeline.handle(_event(), transport)

        assert transport.replies[-1] == STOPPED_NOTICE
        assert transport.replies.count(STOPPED_NOTICE) == 1
        assert not any(reply.startswith("❌") for reply in transport.replies)

    @pytest.mark.asyncio
    async def test_acknowledged_cancellation_is_silent(self, tmp_path, transport,
                                                       fake_backend_cls, fake_transcriber_cls):
        backend = fake_backend_cls(error=RuntimeError("request aborted"))
        pipeline = _make_pipeline(tmp_path, backend, fake_transcriber_cls())
        session = pipeline.sessions.get_or_create(CHAT_ID)
        session._interrupt_flag = True

        await pipeline.handle(_event(), transport)

        assert STOPPED_NOTICE not in transport.replies
        assert not any(reply.startswith("❌") for reply in transport.replies)
        assert session.consume_interrupt_flag() is False

    @pytest.mark.asyncio
    async def test_error_deletes_thinking_message(self, tmp_path, transport,
                                                  fake_backend_cls, fake_transcriber_cls):
        backend = fake_backend_cls(error=StreamingError("connection reset"), thinking=True)
        pipeline = _make_pipeline(tmp_path, backend, fake_transcriber_cls())

        await pipeline.handle(_event(), transport)

        thinking_id = transport.replies.index("🧠 Thinking…") + 1
        assert (CHAT_ID, thinking_id) in transport.deletes
        assert transport.replies[-1] == "❌ Error: connection reset"

    @pytest.mark.asyncio
    async def test_stop_deletes_thinking_message(self, tmp_path, transport,
                                                 fake_backend_cls, fake_transcriber_cls):
        backend = fake_backend_cls(block=True, thinking=True)
        pipeline = _make_pipeline(tmp_path, backend, fake_transcriber_cls())
        session = pipeline.sessions.get_or_create(CHAT_ID)

        task = asyncio.create_task(pipeline.handle(_event(), transport))
        while "🧠 Thinking…" not in transport.replies:
            await asyncio.sleep(0)
        assert session.stop()
        await task

        thinking_id = transport.replies.index("🧠 Thinking…") + 1
        assert (CHAT_ID, thinking_id) in transport.deletes
        assert STOPPED_NOTICE not in transport.replies
        assert not session.is_processing

    @pytest.mark.asyncio
    async def test_genuine_error_releases_lock(self, tmp_path, transport,
                                               fake_backend_cls, fake_transcriber_cls):
        backend = fake_backend_cls(error=RuntimeError("connection reset"))
        pipeline = _make_pipeline(tmp_path, backend, fake_transcriber_cls())
        session = pipeline.sessions.get_or_create(CHAT_ID)
        releases = _spy_releases(session)

        await pipeline.handle(_event(), transport)

        assert transport.replies[-1] == "❌ Error: connection reset"
        assert releases == [1]
        assert not session.is_processing
        assert _scratch_files(tmp_path) == []
        assert _audit_records(tmp_path) == []

    @pytest.mark.asyncio
    async def test_video_error_deletes_status_and_releases(self, tmp_path, transport,
                                                           fake_backend_cls):
        backend = fake_backend_cls(error=RuntimeError("connection reset"))
        pipeline = _make_pipeline(tmp_path, backend)
        session = pipeline.sessions.get_or_create(CHAT_ID)
        releases = _spy_releases(session)

        await pipeline.handle(_event(kind=MediaKind.VIDEO), transport)

        assert transport.deletes == [(CHAT_ID, 1)]
        assert transport.replies[-1] == "❌ Error: connection reset"
        assert releases == [1]


# ---------------------------------------------------------------------------
# Video
# ---------------------------------------------------------------------------

class TestVideo:
    @pytest.mark.asyncio
    async def test_success_keeps_file_for_backend(self, tmp_path, transport, backend):
        pipeline = _make_pipeline(tmp_path, backend)

        await pipeline.handle(_event(kind=MediaKind.VIDEO, file_size=10 * MIB), transport)

        files = _scratch_files(tmp_path)
        assert len(files) == 1
        assert files[0].name.startswith("video_") and files[0].suffix == ".mp4"
        assert backend.last_prompt == (
            f"I've received a video file at path: {files[0]}\n\n"
            "Please transcribe it for me."
        )
        assert transport.edit_texts[0] == "📹 Processing video..."
        assert (CHAT_ID, 1) in transport.deletes

        session = pipeline.sessions.get_or_create(CHAT_ID)
        assert session.conversation_title == "[Video]"
        assert not session.is_processing

        records = _audit_records(tmp_path)
        assert records[-1]["message_type"] == "VIDEO"
        assert records[-1]["content"] == "[video]"

    @pytest.mark.asyncio
    async def test_caption_prompt_and_title(self, tmp_path, transport, backend):
        pipeline = _make_pipeline(tmp_path, backend)

        await pipeline.handle(_event(kind=MediaKind.VIDEO, caption="what is this?"), transport)

        assert backend.last_prompt.endswith("\n\nUser says: what is this?")
        assert backend.last_prompt.startswith("Here's a video file at path: ")
        assert pipeline.sessions.get_or_create(CHAT_ID).conversation_title == "what is this?"

    @pytest.mark.asyncio
    async def test_busy_session_deletes_unhanded_file(self, tmp_path, transport, backend):
        pipeline = _make_pipeline(tmp_path, backend)
        session = pipeline.sessions.get_or_create(CHAT_ID)
        session.start_processing()

        await pipeline.handle(_event(kind=MediaKind.VIDEO), transport)

        assert transport.replies[-1] == BUSY_MESSAGE
        assert _scratch_files(tmp_path) == []
        assert backend.calls == []
