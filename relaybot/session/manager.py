"""Conversation sessions with a single-flight processing guard."""

import asyncio
from datetime import datetime
from typing import Any, Callable

from loguru import logger

from relaybot.channels.transport import Transport
from relaybot.providers.backend import (
    ConversationBackend,
    ErrorKind,
    StatusCallback,
    StreamingError,
)


class SessionBusyError(Exception):
    """The session is already processing another request."""


class Session:
    """
    A single conversation with the backend.

    Holds the in-memory message history, the conversation title and the
    processing token. Only one holder of the token may exist at a time, and
    only one streaming exchange may be in flight.
    """

    def __init__(self, key: str, backend: ConversationBackend):
        self.key = key
        self.backend = backend
        self.messages: list[dict[str, Any]] = []
        self.is_active = False
        self.created_at = datetime.now()
        self._title: str | None = None
        self._token: object | None = None
        self._stream_task: asyncio.Task | None = None
        self._interrupt_flag = False

    # -- conversation -------------------------------------------------------

    @property
    def conversation_title(self) -> str | None:
        return self._title

    @conversation_title.setter
    def conversation_title(self, value: str) -> None:
        # Written once per conversation; later writes are ignored
        if self._title is not None:
            logger.debug(f"Session {self.key} already titled {self._title!r}")
            return
        self._title = value

    def new_conversation(self) -> None:
        """Forget history and title so the next turn starts fresh."""
        self.messages = []
        self.is_active = False
        self._title = None
        self.created_at = datetime.now()

    # -- single flight ------------------------------------------------------

    @property
    def is_processing(self) -> bool:
        return self._token is not None

    def start_processing(self) -> Callable[[], None]:
        """Take the processing token.

        Returns an idempotent release callback.

        Raises:
            SessionBusyError: Another request already holds the token.
        """
        if self._token is not None:
            raise SessionBusyError(f"Session {self.key} is already processing")
        token = object()
        self._token = token

        def release() -> None:
            if self._token is token:
                self._token = None

        return release

    # -- interrupt ----------------------------------------------------------

    def stop(self) -> bool:
        """Cancel the in-flight streaming exchange, if any.

        Sets the interrupt flag so the cancelled handler knows the stop was
        already acknowledged. Returns True if something was stopped.
        """
        task = self._stream_task
        if task is None or task.done():
            return False
        self._interrupt_flag = True
        task.cancel()
        logger.info(f"Session {self.key}: stop requested")
        return True

    def consume_interrupt_flag(self) -> bool:
        """Read and clear the interrupt flag."""
        flag, self._interrupt_flag = self._interrupt_flag, False
        return flag

    # -- streaming ----------------------------------------------------------

    async def send_message_streaming(
        self,
        prompt: str,
        username: str,
        user_id: int,
        status_callback: StatusCallback,
        chat_id: int,
        transport: Transport | None = None,
    ) -> str:
        """Send ``prompt`` to the backend and return its final response.

        Raises:
            SessionBusyError: A streaming exchange is already in flight.
            StreamingError: The backend failed or the exchange was stopped.
        """
        if self._stream_task is not None and not self._stream_task.done():
            raise SessionBusyError(f"Session {self.key} is already streaming")

        user_message = {"role": "user", "content": prompt}
        task = asyncio.create_task(
            self.backend.stream(
                [*self.messages, user_message],
                status_callback,
                username=username,
                user_id=user_id,
                chat_id=chat_id,
            )
        )
        self._stream_task = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise
        finally:
            self._stream_task = None

        if task.cancelled():
            raise StreamingError("Query cancelled by user", ErrorKind.CANCELLED)
        error = task.exception()
        if isinstance(error, StreamingError):
            raise error
        if error is not None:
            raise StreamingError(str(error)) from error

        response = task.result()
        self.messages.extend([user_message, {"role": "assistant", "content": response}])
        self.is_active = True
        return response


class SessionManager:
    """Keeps one Session per chat."""

    def __init__(self, backend: ConversationBackend):
        self.backend = backend
        self._sessions: dict[str, Session] = {}

    def get_or_create(self, chat_id: int | str) -> Session:
        key = f"telegram:{chat_id}"
        session = self._sessions.get(key)
        if session is None:
            session = Session(key, self.backend)
            self._sessions[key] = session
            logger.debug(f"Created session {key}")
        return session
