"""Streaming answer generation.

Turns an AnswerPrompt into provider messages, streams the reply token by token
into a TokenChannel and reports the final text together with the terminal
state of the stream.
"""

import asyncio
from enum import Enum

from pydantic import BaseModel

from services.rag.TokenChannel import ChannelClosed, TokenChannel
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.exceptions import ProviderFailure
from shared.helper.HelperConfig import HelperConfig
from shared.models.prompt import AnswerPrompt, GroundingPolicy
from shared.models.session import MessageRole

ERROR_MARKER = "\n[Error generating response]"
NO_CONTEXT_NOTE = "No document context is available for this question."

_BASE_RULES = (
    "You are a helpful assistant that answers questions about the user's documents.\n"
    "RULES:\n"
    "1. Always answer in the same language as the QUESTION, even if the CONTEXT is in another language.\n"
)
_DOCUMENTS_ONLY_RULES = (
    "2. Use ONLY the information from the CONTEXT to answer the question.\n"
    "3. If the answer is not clearly found in the CONTEXT, or no CONTEXT is given, say "
    "\"I don't know based on the provided documents.\" in the language of the question.\n"
)
_GENERAL_KNOWLEDGE_RULES = (
    "2. Prefer the information from the CONTEXT and answer only from it when it is sufficient.\n"
    "3. If the CONTEXT is missing or does not contain the answer, you may use your general "
    "knowledge or a web search, and say that the answer does not come from the documents.\n"
)


class StreamState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


_TRANSITIONS = {
    StreamState.IDLE: {StreamState.REQUESTING, StreamState.CANCELLED},
    StreamState.REQUESTING: {StreamState.STREAMING, StreamState.FAILED, StreamState.CANCELLED},
    StreamState.STREAMING: {StreamState.COMPLETED, StreamState.FAILED, StreamState.CANCELLED},
    StreamState.COMPLETED: set(),
    StreamState.FAILED: set(),
    StreamState.CANCELLED: set(),
}


class AnswerResult(BaseModel):
    """Outcome of one streamed answer.

    Attributes:
        text:  Concatenated tokens received from the provider (the partial answer
               when the stream failed or was cancelled; never includes the error marker).
        state: Terminal stream state (COMPLETED, FAILED or CANCELLED).
        error: Provider error message when the stream failed.
    """

    text: str
    state: StreamState
    error: str | None = None


def build_system_instruction(policy: GroundingPolicy) -> str:
    rules = _GENERAL_KNOWLEDGE_RULES if policy == GroundingPolicy.ALLOW_GENERAL_KNOWLEDGE else _DOCUMENTS_ONLY_RULES
    return _BASE_RULES + rules


def build_user_turn(prompt: AnswerPrompt) -> str:
    context = prompt.context if prompt.has_context else NO_CONTEXT_NOTE
    return f"CONTEXT:\n{context}\n\nQUESTION:\n{prompt.question}"


def build_messages(prompt: AnswerPrompt) -> list[dict]:
    """Interpolate instruction, history, context and question into provider messages.

    Returns:
        list[dict]: Backend-neutral messages, system instruction first and the
            current question (with its image, if any) last.
    """
    messages: list[dict] = [{"role": "system", "content": build_system_instruction(prompt.policy), "image": None}]
    for message in prompt.history:
        role = "model" if message.role == MessageRole.MODEL else "user"
        messages.append({"role": role, "content": message.content, "image": None})
    messages.append({"role": "user", "content": build_user_turn(prompt), "image": prompt.image})
    return messages


class AnswerStreamer:
    """Drives one answer stream through IDLE -> REQUESTING -> STREAMING -> COMPLETED | FAILED.

    CANCELLED is entered when the consumer closes the channel or the
    producing task is cancelled. Errors from the provider never escape `do_stream`:
    the error marker is sent as the last token and the partial text returned.
    One instance serves one answer.
    """

    def __init__(self, helper_config: HelperConfig, llm_client: LLMClientInterface) -> None:
        self.logging = helper_config.get_logger()
        self._llm_client = llm_client
        self.state = StreamState.IDLE

    def _transition(self, state: StreamState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid stream transition {self.state.value} -> {state.value}.")
        self.logging.debug("Answer stream %s -> %s", self.state.value, state.value)
        self.state = state

    async def do_stream(self, prompt: AnswerPrompt, channel: TokenChannel) -> AnswerResult:
        """Stream the answer to `prompt` into `channel`.

        The channel is always finished (or already closed) when this returns.

        Args:
            prompt (AnswerPrompt): Question, context, history, image and policy.
            channel (TokenChannel): Sink for the tokens, in arrival order.

        Returns:
            AnswerResult: Final text and terminal state.

        Raises:
            asyncio.CancelledError: If the producing task is cancelled (state CANCELLED).
        """
        messages = build_messages(prompt)
        use_web_search = prompt.policy == GroundingPolicy.ALLOW_GENERAL_KNOWLEDGE
        parts: list[str] = []

        self._transition(StreamState.REQUESTING)
        try:
            async with self._llm_client.do_open_chat_stream(messages, use_web_search=use_web_search) as tokens:
                self._transition(StreamState.STREAMING)
                async for token in tokens:
                    parts.append(token)
                    await channel.send(token)
            self._transition(StreamState.COMPLETED)
        except ChannelClosed:
            self._transition(StreamState.CANCELLED)
            self.logging.info("Answer stream cancelled by the consumer after %d token(s).", len(parts))
            return AnswerResult(text="".join(parts), state=self.state)
        except asyncio.CancelledError:
            self._transition(StreamState.CANCELLED)
            channel.close()
            raise
        except ProviderFailure as e:
            self.logging.error("Answer stream failed after %d token(s): %s", len(parts), e)
            return await self._fail(channel, parts, e)
        except Exception as e:
            self.logging.exception("Unexpected error in answer stream after %d token(s): %s", len(parts), e)
            return await self._fail(channel, parts, e)

        await channel.finish()
        return AnswerResult(text="".join(parts), state=self.state)

    async def _fail(self, channel: TokenChannel, parts: list[str], error: Exception) -> AnswerResult:
        self._transition(StreamState.FAILED)
        try:
            await channel.send(ERROR_MARKER)
        except ChannelClosed:
            self.logging.debug("Consumer gone before the error marker could be delivered.")
        await channel.finish()
        return AnswerResult(text="".join(parts), state=self.state, error=str(error))
