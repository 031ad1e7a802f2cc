from abc import abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx

from shared.clients.ClientInterface import ClientInterface
from shared.exceptions import ProviderFailure
from shared.helper.HelperConfig import HelperConfig


class LLMClientInterface(ClientInterface):
    """Embedding + completion provider capability.

    Every backend (local model server, cloud API) implements the same
    embed / chat / streaming-chat contract; pipeline code depends only on
    this interface.

    Chat messages passed to the provider are backend-neutral dicts:
    {"role": "system" | "user" | "model", "content": str, "image": ImageAttachment | None}.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

        # embedding config
        self.embed_model = helper_config.get_string_val(f"{self.get_client_type().upper()}_MODEL", default=self._get_default_embed_model())

        # chat / completion config
        self.chat_model = helper_config.get_string_val(f"{self.get_client_type().upper()}_CHAT_MODEL", default=self._get_default_chat_model())

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "llm"

    @abstractmethod
    def is_local(self) -> bool:
        """Returns True for providers running on a local model server, False for cloud APIs."""
        pass

    @abstractmethod
    def _get_default_embed_model(self) -> str:
        """Returns the embedding model used when LLM_MODEL is not set."""
        pass

    @abstractmethod
    def _get_default_chat_model(self) -> str:
        """Returns the chat model used when LLM_CHAT_MODEL is not set."""
        pass

    ################ ENDPOINTS ##################
    @abstractmethod
    def get_endpoint_embedding(self) -> str:
        """Returns the endpoint path for embedding requests (e.g. "/api/embed")."""
        pass

    @abstractmethod
    def _get_endpoint_chat(self, stream: bool) -> str:
        """Returns the endpoint path for chat/completion requests (e.g. "/api/chat")."""
        pass

    def _get_stream_params(self) -> dict | None:
        """Returns extra query parameters for streaming chat requests."""
        return None

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_embed_payload(self, texts: list[str]) -> dict:
        """Build the backend-specific request body for an embedding request.

        Args:
            texts (list[str]): The texts to embed.

        Returns:
            dict: JSON-serialisable request body (e.g. {"model": "...", "input": [...]}).
        """
        pass

    @abstractmethod
    def get_chat_payload(self, messages: list[dict], stream: bool = False, use_web_search: bool = False) -> dict:
        """Build the backend-specific request body for a chat/completion request.

        Args:
            messages (list[dict]): Backend-neutral messages (see class docstring).
            stream (bool): Whether the reply is streamed.
            use_web_search (bool): Whether the backend may ground the reply on web search,
                if it supports it.

        Returns:
            dict: JSON-serialisable request body.
        """
        pass

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    @abstractmethod
    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Extract embedding vectors from a raw embedding API response.

        Args:
            response_data (dict): The parsed JSON response body.

        Returns:
            list[list[float]]: Embedding vectors in the same order as the input texts.

        Raises:
            ValueError: If the response does not contain valid embeddings.
        """
        pass

    @abstractmethod
    def extract_chat_response(self, response_data: dict) -> str:
        """Extract the assistant reply text from a raw chat API response.

        Raises:
            ValueError: If the response does not contain a valid reply.
        """
        pass

    @abstractmethod
    def extract_stream_tokens(self, line: str) -> tuple[list[str], bool]:
        """Parse one line of a streaming chat response.

        Args:
            line (str): A non-empty line of the response body.

        Returns:
            tuple[list[str], bool]: The text tokens carried by the line (possibly none)
                and whether the backend signalled end-of-stream.

        Raises:
            ProviderFailure: If the line carries a backend error.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_embed(self, texts: list[str] | str) -> list[list[float]]:
        """Send an embedding request and return the extracted vectors.

        Args:
            texts (list[str] | str): One or more texts to embed.

        Returns:
            list[list[float]]: Embedding vectors in the same order as the inputs.

        Raises:
            ProviderFailure: If the request fails or the response is malformed.
        """
        texts = [texts] if isinstance(texts, str) else texts
        body = self.get_embed_payload(texts)
        response = await self.do_request(method="POST", endpoint=self.get_endpoint_embedding(), json=body)
        if response.status_code != 200:
            self.logging.error(
                "Embedding request failed: status %d, body: %s",
                response.status_code,
                response.text[:200],
            )
            raise ProviderFailure("Embedding request failed with status %d." % response.status_code)
        try:
            vectors = self.extract_embeddings_from_response(response.json())
        except ValueError as e:
            raise ProviderFailure(str(e)) from e
        if len(vectors) != len(texts):
            raise ProviderFailure(
                "Embedding backend returned %d vectors for %d texts." % (len(vectors), len(texts))
            )
        return vectors

    async def do_embed_text(self, text: str) -> list[float]:
        """Embed a single text and return its vector."""
        return (await self.do_embed([text]))[0]

    async def do_chat(self, messages: list[dict]) -> str:
        """Send a non-streaming chat/completion request and return the reply text.

        Raises:
            ProviderFailure: If the request fails or the response carries no reply.
        """
        body = self.get_chat_payload(messages, stream=False)
        response = await self.do_request(
            method="POST",
            endpoint=self._get_endpoint_chat(stream=False),
            json=body,
            raise_on_error=True,
        )
        try:
            return self.extract_chat_response(response.json())
        except ValueError as e:
            raise ProviderFailure(str(e)) from e

    @asynccontextmanager
    async def do_open_chat_stream(self, messages: list[dict], use_web_search: bool = False) -> AsyncIterator[AsyncIterator[str]]:
        """Open a streaming chat request.

        Entering the context sends the request and returns once the backend
        accepted it; the yielded async iterator produces text tokens in arrival
        order until end-of-stream. Leaving the context early aborts the request.

        Raises:
            ProviderFailure: If the request is rejected or the transport fails.
        """
        body = self.get_chat_payload(messages, stream=True, use_web_search=use_web_search)
        async with self.do_stream_request(
            method="POST",
            endpoint=self._get_endpoint_chat(stream=True),
            params=self._get_stream_params(),
            json=body,
        ) as response:
            tokens = self._iter_stream_tokens(response)
            try:
                yield tokens
            finally:
                await tokens.aclose()

    async def _iter_stream_tokens(self, response: httpx.Response) -> AsyncIterator[str]:
        async for line in response.aiter_lines():
            if not line.strip():
                continue
            tokens, done = self.extract_stream_tokens(line)
            for token in tokens:
                yield token
            if done:
                return
