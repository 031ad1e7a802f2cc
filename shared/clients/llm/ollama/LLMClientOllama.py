import json

from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.exceptions import ProviderFailure
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class LLMClientOllama(LLMClientInterface):
    """Local provider: an Ollama model server."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default="http://localhost:11434", val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Ollama"

    def is_local(self) -> bool:
        return True

    def _get_default_embed_model(self) -> str:
        return "nomic-embed-text"

    def _get_default_chat_model(self) -> str:
        return "llama3"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default="http://localhost:11434"),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._api_key:
            return {"Authorization": f"Bearer {self._api_key}"}
        return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/api/tags"

    def get_endpoint_embedding(self) -> str:
        return "/api/embed"

    def _get_endpoint_chat(self, stream: bool) -> str:
        # ollama streams NDJSON from the same endpoint, controlled by the "stream" flag
        return "/api/chat"

    ################ PAYLOAD BUILDER ##################
    def get_embed_payload(self, texts: list[str]) -> dict:
        """Build the Ollama embedding request body.

        Returns:
            dict: {"model": "...", "input": [...]}
        """
        return {"model": self.embed_model, "input": texts}

    def get_chat_payload(self, messages: list[dict], stream: bool = False, use_web_search: bool = False) -> dict:
        """Build the Ollama chat request body.

        Ollama has no web search tool, so use_web_search only takes effect through
        the prompt. "model" turns become "assistant" turns and images are sent as
        raw base64 in the "images" list of their message.

        Returns:
            dict: {"model": "...", "messages": [...], "stream": bool}
        """
        ollama_messages = []
        for message in messages:
            role = "assistant" if message["role"] == "model" else message["role"]
            entry = {"role": role, "content": message["content"]}
            image = message.get("image")
            if image is not None:
                entry["images"] = [image.data]
            ollama_messages.append(entry)
        return {"model": self.chat_model, "messages": ollama_messages, "stream": stream}

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Extract embedding vectors from an Ollama /api/embed response.

        Raises:
            ValueError: If the response does not contain valid embeddings.
        """
        embeddings = response_data.get("embeddings")
        if not embeddings or not embeddings[0]:
            raise ValueError(
                "Ollama response does not contain valid embeddings. "
                "Response keys: %s" % list(response_data.keys())
            )
        return embeddings

    def extract_chat_response(self, response_data: dict) -> str:
        """Extract the assistant reply text from an Ollama /api/chat response.

        Raises:
            ValueError: If the response does not contain a valid message.
        """
        content = (response_data.get("message") or {}).get("content")
        if content is None:
            raise ValueError(
                "Ollama chat response does not contain a valid message. "
                "Response keys: %s" % list(response_data.keys())
            )
        return content

    def extract_stream_tokens(self, line: str) -> tuple[list[str], bool]:
        """Parse one NDJSON line of a streaming /api/chat response.

        Lines that are not valid JSON are skipped.
        """
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            self.logging.debug("Skipping malformed Ollama stream line: %r", line[:80])
            return [], False
        if not isinstance(data, dict):
            raise ProviderFailure("Unexpected Ollama stream payload: %r" % line[:80])
        if data.get("error"):
            raise ProviderFailure("Ollama stream error: %s" % data["error"])
        content = (data.get("message") or {}).get("content")
        return ([content] if content else []), bool(data.get("done"))
