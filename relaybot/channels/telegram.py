"""Telegram channel implementation using python-telegram-bot."""

import asyncio

from loguru import logger
from telegram import BotCommand, Message, Update
from telegram.ext import Application, CommandHandler, ContextTypes, MessageHandler, filters

from relaybot.bus.events import IncomingMediaEvent, MediaKind
from relaybot.channels.transport import TelegramTransport
from relaybot.config.schema import TelegramConfig
from relaybot.handlers.media import UNAUTHORIZED_MESSAGE, MediaPipeline
from relaybot.media.manager import is_audio_file
from relaybot.security.auth import is_authorized
from relaybot.session.manager import SessionManager

BOT_COMMANDS = [
    ("new", "Start a new conversation"),
    ("stop", "Stop the current response"),
]


async def set_bot_commands(bot) -> None:
    """Update the bot command menu if it is stale."""
    target = [BotCommand(cmd, desc) for cmd, desc in BOT_COMMANDS]
    current = await bot.get_my_commands()
    if [(c.command, c.description) for c in current] == BOT_COMMANDS:
        logger.debug("Bot commands already up to date")
        return
    await bot.set_my_commands(target)
    logger.info(f"Bot commands updated: {[c[0] for c in BOT_COMMANDS]}")


def build_media_event(message: Message) -> IncomingMediaEvent | None:
    """Extract the media payload of a Telegram message, or None if it has none."""
    user = message.from_user
    if user is None:
        return None

    caption = message.caption or None
    common = {
        "user_id": user.id,
        "username": user.username or "unknown",
        "chat_id": message.chat_id,
        "caption": caption,
        "message_id": message.message_id,
    }

    if message.audio:
        audio = message.audio
        return IncomingMediaEvent(
            kind=MediaKind.AUDIO,
            file_ref=audio.file_id,
            file_size=audio.file_size,
            file_name=audio.file_name,
            mime_type=audio.mime_type,
            **common,
        )
    if message.voice:
        voice = message.voice
        return IncomingMediaEvent(
            kind=MediaKind.AUDIO,
            file_ref=voice.file_id,
            file_size=voice.file_size,
            file_name="voice.ogg",  # Voice notes are always OGG/Opus
            mime_type=voice.mime_type,
            **common,
        )
    if message.document and is_audio_file(message.document.file_name, message.document.mime_type):
        doc = message.document
        return IncomingMediaEvent(
            kind=MediaKind.AUDIO,
            file_ref=doc.file_id,
            file_size=doc.file_size,
            file_name=doc.file_name,
            mime_type=doc.mime_type,
            **common,
        )
    video = message.video or message.video_note
    if video:
        return IncomingMediaEvent(
            kind=MediaKind.VIDEO,
            file_ref=video.file_id,
            file_size=video.file_size,
            mime_type=getattr(video, "mime_type", None),
            **common,
        )
    return None


class TelegramChannel:
    """
    Telegram channel using long polling.

    Every update runs in its own task, so one user's slow transcription
    never holds up another user's messages.
    """

    name = "telegram"

    def __init__(
        self,
        config: TelegramConfig,
        pipeline: MediaPipeline,
        sessions: SessionManager,
    ):
        self.config = config
        self.pipeline = pipeline
        self.sessions = sessions
        self._app: Application | None = None
        self._running = False

    async def start(self) -> None:
        """Start the Telegram bot with long polling."""
        if not self.config.token:
            logger.error("Telegram bot token not configured")
            return

        self._running = True

        self._app = (
            Application.builder()
            .token(self.config.token)
            .concurrent_updates(True)
            .build()
        )

        self._app.add_handler(
            MessageHandler(
                (filters.AUDIO | filters.VOICE | filters.VIDEO
                 | filters.VIDEO_NOTE | filters.Document.ALL)
                & ~filters.COMMAND,
                self._on_media,
            )
        )
        self._app.add_handler(CommandHandler("start", self._on_start))
        self._app.add_handler(CommandHandler("new", self._on_new))
        self._app.add_handler(CommandHandler("stop", self._on_stop))

        logger.info("Starting Telegram bot (polling mode)...")

        await self._app.initialize()
        await self._app.start()

        bot_info = await self._app.bot.get_me()
        logger.info(f"Telegram bot @{bot_info.username} connected")
        try:
            await set_bot_commands(self._app.bot)
        except Exception as e:
            logger.warning(f"Failed to set bot commands: {e}")

        await self._app.updater.start_polling(
            allowed_updates=["message"],
            drop_pending_updates=True,  # Ignore old messages on startup
        )

        while self._running:
            await asyncio.sleep(1)

    async def stop(self) -> None:
        """Stop the Telegram bot."""
        self._running = False

        if self._app:
            logger.info("Stopping Telegram bot...")
            await self._app.updater.stop()
            await self._app.stop()
            await self._app.shutdown()
            self._app = None

    def _is_allowed(self, update: Update) -> bool:
        user = update.effective_user
        return user is not None and is_authorized(user.id, self.config.allow_from, user.username)

    async def _on_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle /start command."""
        if not update.message or not update.effective_user:
            return
        if not self._is_allowed(update):
            await update.message.reply_text(UNAUTHORIZED_MESSAGE)
            return
        await update.message.reply_text(
            f"Hi {update.effective_user.first_name}! Send me a voice note, "
            "an audio file or a video and I'll take it from there."
        )

    async def _on_new(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle /new command: start a fresh conversation."""
        if not update.message or not update.effective_user:
            return
        if not self._is_allowed(update):
            await update.message.reply_text(UNAUTHORIZED_MESSAGE)
            return
        session = self.sessions.get_or_create(update.message.chat_id)
        if session.is_processing:
            await update.message.reply_text("⏳ Still working. Send /stop first.")
            return
        session.new_conversation()
        await update.message.reply_text("🆕 Started a new conversation.")

    async def _on_stop(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle /stop command: cancel the in-flight response."""
        if not update.message or not update.effective_user:
            return
        if not self._is_allowed(update):
            await update.message.reply_text(UNAUTHORIZED_MESSAGE)
            return
        session = self.sessions.get_or_create(update.message.chat_id)
        if session.stop():
            await update.message.reply_text("🛑 Stopped.")
        else:
            await update.message.reply_text("Nothing to stop.")

    async def _on_media(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle incoming audio, voice, video and document messages."""
        message = update.message
        if not message or not update.effective_user:
            return

        event = build_media_event(message)
        if event is None:
            logger.debug(f"Ignoring non-media message in chat {message.chat_id}")
            return

        transport = TelegramTransport(context.bot, message)
        try:
            await self.pipeline.handle(event, transport)
        except Exception as e:
            logger.exception(f"Unhandled error processing {event.kind.value}: {e}")
