"""Chat transport abstraction and its python-telegram-bot implementation."""

from abc import ABC, abstractmethod
from dataclasses import dataclass

import telegram
from loguru import logger
from telegram import Bot, Message


@dataclass(frozen=True)
class SentMessage:
    """Handle to a message the bot has sent."""

    chat_id: int
    message_id: int


class Transport(ABC):
    """The operations the media pipeline needs from a chat platform."""

    @abstractmethod
    async def reply(self, text: str) -> SentMessage:
        """Reply to the message being handled."""

    @abstractmethod
    async def edit_message_text(self, chat_id: int, message_id: int, text: str) -> None:
        """Replace the text of a previously sent message."""

    @abstractmethod
    async def delete_message(self, chat_id: int, message_id: int) -> None:
        """Delete a message. Best-effort: failures are logged, never raised."""

    @abstractmethod
    async def send_typing(self, chat_id: int) -> None:
        """Show the "typing" chat action."""

    @abstractmethod
    async def download_file(self, file_ref: str) -> bytes:
        """Fetch the raw bytes of a platform file."""


class TelegramTransport(Transport):
    """Transport bound to one incoming Telegram message."""

    def __init__(self, bot: Bot, message: Message):
        self.bot = bot
        self.message = message

    async def reply(self, text: str) -> SentMessage:
        sent = await self.message.reply_text(text)
        return SentMessage(chat_id=sent.chat_id, message_id=sent.message_id)

    async def edit_message_text(self, chat_id: int, message_id: int, text: str) -> None:
        await self.bot.edit_message_text(chat_id=chat_id, message_id=message_id, text=text)

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        try:
            await self.bot.delete_message(chat_id=chat_id, message_id=message_id)
        except Exception as e:
            logger.debug(f"Failed to delete message {message_id}: {e}")

    async def send_typing(self, chat_id: int) -> None:
        await self.bot.send_chat_action(
            chat_id=chat_id,
            action=telegram.constants.ChatAction.TYPING,
        )

    async def download_file(self, file_ref: str) -> bytes:
        file = await self.bot.get_file(file_ref)
        data = await file.download_as_bytearray()
        return bytes(data)
