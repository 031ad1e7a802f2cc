"""Test doubles for the model provider."""

import asyncio
import re
from contextlib import asynccontextmanager

import httpx

from shared.exceptions import ProviderFailure

# every known word gets its own dimension; unknown words embed to nothing
VOCABULARY = [
    "apple", "banana", "cherry", "invoice", "contract", "payment",
    "python", "database", "vector", "search", "weather", "holiday",
]


def embed_words(text: str) -> list[float]:
    """Deterministic bag-of-words embedding over VOCABULARY."""
    vector = [0.0] * len(VOCABULARY)
    for word in re.findall(r"[a-z]+", text.lower()):
        if word in VOCABULARY:
            vector[VOCABULARY.index(word)] += 1.0
    return vector


class FakeLLMClient:
    """Stands in for an LLMClientInterface implementation.

    Streams `tokens`, optionally raising `failure` after `fail_after` tokens or
    failing when the stream is opened; records every call for assertions.
    """

    def __init__(self, tokens: list[str] | None = None) -> None:
        self.tokens = tokens if tokens is not None else ["Hello", " ", "world"]
        self.fail_on_open = False
        self.fail_after: int | None = None
        self.failure: Exception = ProviderFailure("connection reset")
        self.fail_embed = False
        self.gate: asyncio.Event | None = None
        self.chat_reply = "- point one\n- point two"

        self.embed_calls: list[list[str]] = []
        self.stream_calls: list[tuple[list[dict], bool]] = []
        self.chat_calls: list[list[dict]] = []
        self.stream_closed = False
        self.booted = False

    def get_engine_name(self) -> str:
        return "fake"

    def is_local(self) -> bool:
        return True

    async def boot(self, transport=None) -> None:
        self.booted = True

    async def close(self) -> None:
        self.booted = False

    async def do_healthcheck(self) -> httpx.Response:
        return httpx.Response(200)

    async def do_embed(self, texts: list[str] | str) -> list[list[float]]:
        texts = [texts] if isinstance(texts, str) else texts
        self.embed_calls.append(list(texts))
        if self.fail_embed:
            raise ProviderFailure("embedding backend down")
        return [embed_words(text) for text in texts]

    async def do_embed_text(self, text: str) -> list[float]:
        return (await self.do_embed([text]))[0]

    async def do_chat(self, messages: list[dict]) -> str:
        self.chat_calls.append(messages)
        return self.chat_reply

    @asynccontextmanager
    async def do_open_chat_stream(self, messages: list[dict], use_web_search: bool = False):
        self.stream_calls.append((messages, use_web_search))
        if self.fail_on_open:
            raise ProviderFailure("provider rejected the request")

        async def _tokens():
            for i, token in enumerate(self.tokens):
                if self.fail_after is not None and i == self.fail_after:
                    raise self.failure
                if self.gate is not None and i > 0:
                    await self.gate.wait()
                yield token

        tokens = _tokens()
        try:
            yield tokens
        finally:
            self.stream_closed = True
            await tokens.aclose()


class FakeLLMClientManager:
    """Replaces LLMClientManager in the API tests."""

    client = FakeLLMClient()

    def __init__(self, helper_config) -> None:
        pass

    def get_client(self) -> FakeLLMClient:
        return FakeLLMClientManager.client
