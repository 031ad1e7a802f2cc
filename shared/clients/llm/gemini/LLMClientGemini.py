import json

from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.exceptions import ProviderFailure
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class LLMClientGemini(LLMClientInterface):
    """Cloud provider: the Google Gemini generative language API."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default="https://generativelanguage.googleapis.com/v1beta", val_type="string")
        self._api_key = self.get_config_val("API_KEY", default=None, val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Gemini"

    def is_local(self) -> bool:
        return False

    def _get_default_embed_model(self) -> str:
        return "text-embedding-004"

    def _get_default_chat_model(self) -> str:
        return "gemini-2.5-flash"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default="https://generativelanguage.googleapis.com/v1beta"),
            EnvConfig(env_key="API_KEY", val_type="string", default=None),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        return {"x-goog-api-key": self._api_key}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/models"

    def get_endpoint_embedding(self) -> str:
        return f"/models/{self.embed_model}:batchEmbedContents"

    def _get_endpoint_chat(self, stream: bool) -> str:
        action = "streamGenerateContent" if stream else "generateContent"
        return f"/models/{self.chat_model}:{action}"

    def _get_stream_params(self) -> dict | None:
        # server-sent events instead of one JSON array
        return {"alt": "sse"}

    ################ PAYLOAD BUILDER ##################
    def get_embed_payload(self, texts: list[str]) -> dict:
        """Build the Gemini batch embedding request body.

        Returns:
            dict: {"requests": [{"model": "models/...", "content": {"parts": [{"text": "..."}]}}, ...]}
        """
        return {
            "requests": [
                {"model": f"models/{self.embed_model}", "content": {"parts": [{"text": text}]}}
                for text in texts
            ]
        }

    def get_chat_payload(self, messages: list[dict], stream: bool = False, use_web_search: bool = False) -> dict:
        """Build the Gemini generateContent request body.

        System messages become the systemInstruction, "model" turns keep their
        role, images are sent as inlineData parts and web search enables the
        google_search tool.
        """
        system_parts: list[dict] = []
        contents: list[dict] = []
        for message in messages:
            if message["role"] == "system":
                system_parts.append({"text": message["content"]})
                continue
            parts: list[dict] = [{"text": message["content"]}]
            image = message.get("image")
            if image is not None:
                parts.append({"inlineData": {"mimeType": image.mime_type, "data": image.data}})
            contents.append({"role": "model" if message["role"] == "model" else "user", "parts": parts})

        payload: dict = {"contents": contents}
        if system_parts:
            payload["systemInstruction"] = {"parts": system_parts}
        if use_web_search:
            payload["tools"] = [{"google_search": {}}]
        return payload

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Extract embedding vectors from a batchEmbedContents response.

        Raises:
            ValueError: If the response does not contain valid embeddings.
        """
        embeddings = response_data.get("embeddings") or []
        vectors = [entry.get("values") for entry in embeddings]
        if not vectors or not all(vectors):
            raise ValueError(
                "Gemini response does not contain valid embeddings. "
                "Response keys: %s" % list(response_data.keys())
            )
        return vectors

    def _extract_candidate_text(self, response_data: dict) -> tuple[str | None, bool]:
        candidates = response_data.get("candidates") or []
        if not candidates:
            return None, False
        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts)
        return text, bool(candidate.get("finishReason"))

    def extract_chat_response(self, response_data: dict) -> str:
        """Extract the reply text from a generateContent response.

        Raises:
            ValueError: If the response has no candidate.
        """
        text, _ = self._extract_candidate_text(response_data)
        if text is None:
            raise ValueError(
                "Gemini response does not contain a candidate. "
                "Response keys: %s" % list(response_data.keys())
            )
        return text

    def extract_stream_tokens(self, line: str) -> tuple[list[str], bool]:
        """Parse one server-sent event line of a streamGenerateContent response."""
        if not line.startswith("data:"):
            return [], False
        try:
            data = json.loads(line[len("data:"):].strip())
        except json.JSONDecodeError:
            self.logging.debug("Skipping malformed Gemini stream line: %r", line[:80])
            return [], False
        if not isinstance(data, dict):
            raise ProviderFailure("Unexpected Gemini stream payload: %r" % line[:80])
        error = data.get("error")
        if error:
            raise ProviderFailure("Gemini stream error: %s" % (error.get("message", error) if isinstance(error, dict) else error))
        text, done = self._extract_candidate_text(data)
        return ([text] if text else []), done
