"""Conversational backend with streaming progress."""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Callable

import anthropic
from anthropic import AsyncAnthropic
from loguru import logger

StatusCallback = Callable[[str, str], Awaitable[None]]
# Takes (status_type, content); status_type is "thinking" | "tool" | "text" | "done"


class ErrorKind(str, Enum):
    """Why a streaming exchange ended without a response."""

    CANCELLED = "cancelled"
    ERROR = "error"


class StreamingError(Exception):
    """A streaming exchange failed or was cancelled."""

    def __init__(self, description: str, kind: ErrorKind | None = None):
        self.description = description
        self.kind = kind  # None: unclassified, callers fall back to the description
        super().__init__(description)


class ConversationBackend(ABC):
    """Abstract conversational backend."""

    @abstractmethod
    async def stream(
        self,
        messages: list[dict[str, Any]],
        on_status: StatusCallback,
        *,
        username: str,
        user_id: int,
        chat_id: int,
    ) -> str:
        """Send the conversation and return the final response text.

        Progress is pushed through ``on_status`` while the response streams.
        Raises StreamingError on failure.
        """


class AnthropicBackend(ConversationBackend):
    """Backend using the Anthropic Messages streaming API."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "claude-sonnet-4-5",
        max_tokens: int = 4096,
        system_prompt: str = "",
    ):
        self.client = AsyncAnthropic(api_key=api_key) if api_key else AsyncAnthropic()
        self.model = model
        self.max_tokens = max_tokens
        self.system_prompt = system_prompt

    async def stream(
        self,
        messages: list[dict[str, Any]],
        on_status: StatusCallback,
        *,
        username: str,
        user_id: int,
        chat_id: int,
    ) -> str:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": messages,
            "metadata": {"user_id": str(user_id)},
        }
        if self.system_prompt:
            kwargs["system"] = self.system_prompt

        await on_status("thinking", "")
        text = ""
        try:
            async with self.client.messages.stream(**kwargs) as stream:
                async for delta in stream.text_stream:
                    text += delta
                    await on_status("text", text)
                final = await stream.get_final_message()
        except anthropic.APIError as e:
            logger.error(f"Anthropic API error for @{username}: {e}")
            raise StreamingError(str(e), ErrorKind.ERROR) from e

        if final.stop_reason == "max_tokens":
            logger.warning(f"Response for chat {chat_id} hit max_tokens ({self.max_tokens})")
        await on_status("done", text)
        return text
