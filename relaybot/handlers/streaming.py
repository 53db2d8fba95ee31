"""Bridges backend progress events to Telegram status messages."""

import time
from dataclasses import dataclass

from loguru import logger

from relaybot.channels.transport import SentMessage, Transport
from relaybot.providers.backend import StatusCallback

MAX_DISPLAY_LENGTH = 4000


@dataclass
class StreamingState:
    """Per-exchange accumulator. Never reuse across turns."""

    progress_message: SentMessage | None = None
    progress_text: str = ""
    response_message: SentMessage | None = None
    response_text: str = ""  # Last text rendered into response_message
    last_edit: float = 0.0


def split_plain_text(text: str, max_length: int = MAX_DISPLAY_LENGTH) -> list[str]:
    """Split plain text into chunks that fit a single message."""
    if len(text) <= max_length:
        return [text]

    chunks: list[str] = []
    remaining = text
    min_pos = max_length // 4

    while remaining:
        if len(remaining) <= max_length:
            chunks.append(remaining)
            break

        pos = remaining.rfind('\n\n', 0, max_length)
        if pos <= min_pos:
            pos = remaining.rfind('\n', 0, max_length)
        if pos <= min_pos:
            pos = remaining.rfind(' ', 0, max_length)
        if pos <= min_pos:
            pos = max_length

        chunks.append(remaining[:pos])
        remaining = remaining[pos:].lstrip('\n')

    return chunks


def _render_progress(status_type: str, content: str) -> str:
    if status_type == "tool":
        return f"🔧 {content}"[:MAX_DISPLAY_LENGTH]
    snippet = content.strip()
    if len(snippet) > 200:
        snippet = snippet[:200] + "…"
    return f"🧠 Thinking…\n{snippet}" if snippet else "🧠 Thinking…"


async def discard_progress(transport: Transport, chat_id: int, state: StreamingState) -> None:
    """Delete the progress message of an exchange, if one is still showing."""
    if state.progress_message is None:
        return
    message, state.progress_message = state.progress_message, None
    await transport.delete_message(chat_id, message.message_id)


def create_status_callback(
    transport: Transport,
    chat_id: int,
    state: StreamingState,
    edit_interval: float = 1.0,
) -> StatusCallback:
    """Build the status callback handed to ``Session.send_message_streaming``."""

    async def _show_progress(text: str) -> None:
        if text == state.progress_text:
            return
        state.progress_text = text
        if state.progress_message is None:
            state.progress_message = await transport.reply(text)
        else:
            await transport.edit_message_text(
                chat_id, state.progress_message.message_id, text,
            )

    async def _show_response(text: str, force: bool = False) -> None:
        display = text[:MAX_DISPLAY_LENGTH]
        if not display.strip() or display == state.response_text:
            return
        now = time.monotonic()
        if state.response_message is None:
            state.response_message = await transport.reply(display)
        elif force or now - state.last_edit >= edit_interval:
            await transport.edit_message_text(
                chat_id, state.response_message.message_id, display,
            )
        else:
            return
        state.response_text = display
        state.last_edit = now

    async def _finish(text: str) -> None:
        chunks = split_plain_text(text) if text.strip() else []
        if chunks:
            await _show_response(chunks[0], force=True)
            for chunk in chunks[1:]:
                await transport.reply(chunk)
        await discard_progress(transport, chat_id, state)

    async def callback(status_type: str, content: str) -> None:
        try:
            if status_type in ("thinking", "tool"):
                await _show_progress(_render_progress(status_type, content))
            elif status_type == "text":
                await _show_response(content)
            elif status_type == "done":
                await _finish(content)
            else:
                logger.debug(f"Ignoring unknown status type: {status_type}")
        except Exception as e:
            logger.warning(f"Status update ({status_type}) failed: {e}")

    return callback
