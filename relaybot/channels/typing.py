"""Background "typing…" chat action."""

import asyncio

from loguru import logger

from relaybot.channels.transport import Transport


class TypingIndicator:
    """Sends the typing action every few seconds until stopped.

    Purely cosmetic: transport errors are swallowed, and ``stop()`` may be
    called any number of times, before or after the loop has died.
    """

    def __init__(self, transport: Transport, chat_id: int, interval: float = 4.0):
        self.transport = transport
        self.chat_id = chat_id
        self.interval = interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> "TypingIndicator":
        if self._task is None:
            self._task = asyncio.create_task(self._loop())
        return self

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _loop(self) -> None:
        """Send typing action every ``interval`` seconds until cancelled."""
        while True:
            try:
                await self.transport.send_typing(self.chat_id)
            except Exception as e:
                logger.debug(f"Typing indicator failed for chat {self.chat_id}: {e}")
            await asyncio.sleep(self.interval)
