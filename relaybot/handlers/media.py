"""Audio and video handlers: gate, download, preprocess, prompt, stream."""

import asyncio

from loguru import logger

from relaybot.audit.logger import AuditLogger
from relaybot.bus.events import IncomingMediaEvent, MediaKind
from relaybot.channels.transport import Transport
from relaybot.channels.typing import TypingIndicator
from relaybot.handlers.cleanup import CleanupCoordinator
from relaybot.handlers.errors import handle_processing_error
from relaybot.handlers.prompt import (
    VIDEO_TITLE_PLACEHOLDER,
    build_audio_prompt,
    build_video_prompt,
    derive_title,
)
from relaybot.handlers.streaming import StreamingState, create_status_callback, discard_progress
from relaybot.media.manager import DownloadError, FileAcquirer
from relaybot.media.preprocess import transcribe_audio, transcript_preview
from relaybot.providers.backend import StreamingError
from relaybot.providers.transcription import TranscriptionProvider
from relaybot.security.auth import is_authorized
from relaybot.security.rate_limiter import RateLimiter
from relaybot.session.manager import Session, SessionBusyError, SessionManager

MAX_VIDEO_SIZE = 50 * 1024 * 1024

UNAUTHORIZED_MESSAGE = "Unauthorized. Contact the bot owner for access."
TRANSCRIPTION_UNAVAILABLE_MESSAGE = (
    "Voice transcription is not configured. "
    "Set a transcription API key in the relaybot config."
)
BUSY_MESSAGE = "⏳ Still working on the previous request. Send /stop to cancel it."


class MediaPipeline:
    """Turns inbound audio/video into a backend exchange.

    Gate failures (authorization, size, configuration, rate limit, download,
    transcription) are reported where they happen and never reach the
    processing lock. Everything acquired along the way is released by a
    CleanupCoordinator on every exit path.
    """

    def __init__(
        self,
        sessions: SessionManager,
        rate_limiter: RateLimiter,
        acquirer: FileAcquirer,
        audit: AuditLogger,
        allow_from: list[str],
        transcriber: TranscriptionProvider | None = None,
        max_video_size: int = MAX_VIDEO_SIZE,
        edit_interval: float = 1.0,
        typing_interval: float = 4.0,
    ):
        self.sessions = sessions
        self.rate_limiter = rate_limiter
        self.acquirer = acquirer
        self.audit = audit
        self.allow_from = allow_from
        self.transcriber = transcriber
        self.max_video_size = max_video_size
        self.edit_interval = edit_interval
        self.typing_interval = typing_interval
        self._transcription_semaphore = asyncio.Semaphore(2)

    async def handle(self, event: IncomingMediaEvent, transport: Transport) -> None:
        if event.kind is MediaKind.AUDIO:
            await self.handle_audio(event, transport)
        else:
            await self.handle_video(event, transport)

    # -- gates --------------------------------------------------------------

    async def _authorize(self, event: IncomingMediaEvent, transport: Transport) -> bool:
        if is_authorized(event.user_id, self.allow_from, event.username):
            return True
        logger.warning(f"Unauthorized {event.kind.value} from {event.user_id} (@{event.username})")
        await transport.reply(UNAUTHORIZED_MESSAGE)
        return False

    async def _check_rate_limit(self, event: IncomingMediaEvent, transport: Transport) -> bool:
        decision = self.rate_limiter.check(event.user_id)
        if decision.allowed:
            return True
        retry_after = decision.retry_after or 0.0
        self.audit.log_rate_limit(event.user_id, event.username, retry_after)
        await transport.reply(f"⏳ Rate limited. Please wait {retry_after:.1f} seconds.")
        return False

    # -- locked region ------------------------------------------------------

    async def _start(
        self,
        session: Session,
        event: IncomingMediaEvent,
        transport: Transport,
        cleanup: CleanupCoordinator,
    ) -> bool:
        """Take the session's processing lock and start the typing indicator."""
        try:
            cleanup.track_lock(session.start_processing())
        except SessionBusyError:
            logger.info(f"Session {session.key} busy, rejecting {event.kind.value}")
            await transport.reply(BUSY_MESSAGE)
            return False
        typing = TypingIndicator(transport, event.chat_id, self.typing_interval)
        cleanup.track_typing(typing.start())
        return True

    async def _stream(
        self,
        session: Session,
        event: IncomingMediaEvent,
        transport: Transport,
        prompt: str,
        cleanup: CleanupCoordinator,
    ) -> tuple[str | None, StreamingError | None]:
        """Run the streaming exchange. Returns ``(response, error)``."""
        state = StreamingState()
        status_callback = create_status_callback(
            transport, event.chat_id, state, self.edit_interval,
        )
        try:
            response = await session.send_message_streaming(
                prompt,
                event.username,
                event.user_id,
                status_callback,
                event.chat_id,
                transport,
            )
        except StreamingError as e:
            logger.error(f"Error processing {event.kind.value}: {e}")
            await discard_progress(transport, event.chat_id, state)
            # Release everything before the user hears about it
            await cleanup.run()
            return None, e
        return response, None

    # -- audio --------------------------------------------------------------

    async def handle_audio(self, event: IncomingMediaEvent, transport: Transport) -> None:
        """Transcribe an audio message and send the transcript to the backend."""
        if not await self._authorize(event, transport):
            return
        if self.transcriber is None:
            await transport.reply(TRANSCRIPTION_UNAVAILABLE_MESSAGE)
            return
        if not await self._check_rate_limit(event, transport):
            return

        logger.info(f"Received audio from @{event.username}")

        try:
            scratch = await self.acquirer.acquire(event, transport)
        except DownloadError as e:
            logger.error(str(e))
            await transport.reply("❌ Failed to download audio file.")
            return

        session = self.sessions.get_or_create(event.chat_id)
        cleanup = CleanupCoordinator()
        cleanup.track_scratch(scratch)
        try:
            status = await transport.reply("🎤 Transcribing audio...")
            transcript = await transcribe_audio(
                self.transcriber, scratch.path, self._transcription_semaphore,
            )
            if transcript is None:
                await transport.edit_message_text(
                    event.chat_id, status.message_id, "❌ Transcription failed.",
                )
                return

            try:
                await transport.edit_message_text(
                    event.chat_id, status.message_id, transcript_preview(transcript),
                )
            except Exception as e:
                logger.debug(f"Failed to show transcript preview: {e}")

            prompt = build_audio_prompt(transcript, event.caption)
            if not session.is_active:
                session.conversation_title = derive_title(transcript)

            if not await self._start(session, event, transport, cleanup):
                return
            response, error = await self._stream(session, event, transport, prompt, cleanup)
            if error is not None:
                await handle_processing_error(transport, session, error)
                return

            self.audit.log(event.user_id, event.username, "AUDIO", transcript, response)
        finally:
            await cleanup.run()

    # -- video --------------------------------------------------------------

    async def handle_video(self, event: IncomingMediaEvent, transport: Transport) -> None:
        """Download a video and hand its path to the backend."""
        if not await self._authorize(event, transport):
            return
        if event.file_size and event.file_size > self.max_video_size:
            max_mb = self.max_video_size // (1024 * 1024)
            await transport.reply(f"❌ Video too large. Maximum size is {max_mb}MB.")
            return
        if not await self._check_rate_limit(event, transport):
            return

        logger.info(f"Received video from @{event.username}")

        status = await transport.reply("📹 Downloading video...")
        try:
            scratch = await self.acquirer.acquire(event, transport)
        except DownloadError as e:
            logger.error(str(e))
            await transport.edit_message_text(
                event.chat_id, status.message_id, "❌ Failed to download video.",
            )
            return

        session = self.sessions.get_or_create(event.chat_id)
        cleanup = CleanupCoordinator()
        cleanup.track_scratch(scratch)
        try:
            if not await self._start(session, event, transport, cleanup):
                await transport.delete_message(status.chat_id, status.message_id)
                return

            try:
                await transport.edit_message_text(
                    event.chat_id, status.message_id, "📹 Processing video...",
                )
            except Exception as e:
                logger.debug(f"Failed to update video status: {e}")

            prompt = build_video_prompt(str(scratch.path), event.caption)
            if not session.is_active:
                session.conversation_title = derive_title(event.caption or VIDEO_TITLE_PLACEHOLDER)

            # The backend reads the file from here on and owns its deletion
            scratch.hand_off()
            response, error = await self._stream(session, event, transport, prompt, cleanup)
            await transport.delete_message(status.chat_id, status.message_id)
            if error is not None:
                await handle_processing_error(transport, session, error)
                return

            self.audit.log(
                event.user_id, event.username, "VIDEO", event.caption or "[video]", response,
            )
        finally:
            await cleanup.run()
