"""Shared fakes for the chat transport, backend and transcriber."""

import asyncio

import pytest

from relaybot.channels.transport import SentMessage, Transport
from relaybot.providers.backend import ConversationBackend
from relaybot.providers.transcription import TranscriptionError, TranscriptionProvider


class FakeTransport(Transport):
    """Records every call instead of talking to Telegram."""

    def __init__(self, chat_id: int = 100, data: bytes = b"media-bytes"):
        self.chat_id = chat_id
        self.data = data
        self.fail_download = False
        self.fail_typing = False
        self.replies: list[str] = []
        self.edits: list[tuple[int, int, str]] = []
        self.deletes: list[tuple[int, int]] = []
        self.downloads: list[str] = []
        self.typing_count = 0
        self._next_id = 1

    async def reply(self, text: str) -> SentMessage:
        self.replies.append(text)
        msg = SentMessage(chat_id=self.chat_id, message_id=self._next_id)
        self._next_id += 1
        return msg

    async def edit_message_text(self, chat_id: int, message_id: int, text: str) -> None:
        self.edits.append((chat_id, message_id, text))

    async def delete_message(self, chat_id: int, message_id: int) -> None:
        self.deletes.append((chat_id, message_id))

    async def send_typing(self, chat_id: int) -> None:
        self.typing_count += 1
        if self.fail_typing:
            raise RuntimeError("transport closed")

    async def download_file(self, file_ref: str) -> bytes:
        self.downloads.append(file_ref)
        if self.fail_download:
            raise ConnectionError("network unreachable")
        return self.data

    @property
    def edit_texts(self) -> list[str]:
        return [text for _, _, text in self.edits]


class FakeBackend(ConversationBackend):
    """Echoes a canned response, raises a canned error, or blocks forever."""

    def __init__(self, response: str = "backend reply", error: Exception | None = None,
                 block: bool = False, thinking: bool = False):
        self.response = response
        self.error = error
        self.block = block
        self.thinking = thinking
        self.calls: list[list[dict]] = []

    @property
    def last_prompt(self) -> str:
        return self.calls[-1][-1]["content"]

    async def stream(self, messages, on_status, *, username, user_id, chat_id):
        self.calls.append(list(messages))
        if self.thinking:
            await on_status("thinking", "")
        if self.block:
            await asyncio.Event().wait()
        if self.error is not None:
            raise self.error
        await on_status("text", self.response)
        await on_status("done", self.response)
        return self.response


class FakeTranscriber(TranscriptionProvider):
    def __init__(self, text: str = "hello world", fail: bool = False):
        self.text = text
        self.fail = fail
        self.calls: list[str] = []

    async def transcribe(self, file_path) -> str:
        self.calls.append(str(file_path))
        if self.fail:
            raise TranscriptionError("API error", "status 500")
        return self.text


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def fake_backend_cls():
    return FakeBackend


@pytest.fixture
def fake_transcriber_cls():
    return FakeTranscriber


@pytest.fixture
def fake_transport_cls():
    return FakeTransport
