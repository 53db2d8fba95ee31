"""Guaranteed teardown for a pipeline invocation."""

from typing import Callable

from loguru import logger

from relaybot.channels.typing import TypingIndicator
from relaybot.media.manager import ScratchFile


class CleanupCoordinator:
    """Collects what a pipeline run acquired and releases it in fixed order.

    Order: processing lock, typing indicator, scratch file. Anything never
    tracked is skipped, and ``run()`` may be called more than once.
    """

    def __init__(self):
        self._release: Callable[[], None] | None = None
        self._typing: TypingIndicator | None = None
        self._scratch: ScratchFile | None = None

    def track_lock(self, release: Callable[[], None]) -> None:
        self._release = release

    def track_typing(self, typing: TypingIndicator) -> None:
        self._typing = typing

    def track_scratch(self, scratch: ScratchFile) -> None:
        self._scratch = scratch

    async def run(self) -> None:
        release, self._release = self._release, None
        if release is not None:
            try:
                release()
            except Exception as e:
                logger.error(f"Failed to release processing lock: {e}")

        typing, self._typing = self._typing, None
        if typing is not None:
            try:
                await typing.stop()
            except Exception as e:
                logger.debug(f"Failed to stop typing indicator: {e}")

        scratch, self._scratch = self._scratch, None
        if scratch is not None:
            scratch.release()
