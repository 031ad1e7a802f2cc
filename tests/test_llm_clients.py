import asyncio
import json

import httpx
import pytest

from services.rag.AnswerStreamer import ERROR_MARKER, AnswerStreamer, StreamState
from services.rag.TokenChannel import TokenChannel
from shared.clients.llm.LLMClientManager import LLMClientManager
from shared.clients.llm.gemini.LLMClientGemini import LLMClientGemini
from shared.clients.llm.ollama.LLMClientOllama import LLMClientOllama
from shared.exceptions import ProviderFailure
from shared.models.prompt import AnswerPrompt, ImageAttachment


async def _booted(client, handler):
    await client.boot(transport=httpx.MockTransport(handler))
    return client


def _ndjson(*objects) -> bytes:
    return "\n".join(o if isinstance(o, str) else json.dumps(o) for o in objects).encode()


##########################################
################ OLLAMA ##################
##########################################

async def test_ollama_embed(helper_config):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/embed"
        body = json.loads(request.content)
        assert body == {"model": "nomic-embed-text", "input": ["a", "b"]}
        return httpx.Response(200, json={"embeddings": [[1.0, 0.0], [0.0, 1.0]]})

    client = await _booted(LLMClientOllama(helper_config), handler)
    assert await client.do_embed(["a", "b"]) == [[1.0, 0.0], [0.0, 1.0]]
    await client.close()


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="boom"),
        httpx.Response(200, json={"embeddings": [[1.0]]}),
        httpx.Response(200, json={"unexpected": True}),
    ],
)
async def test_ollama_embed_failures(helper_config, response):
    client = await _booted(LLMClientOllama(helper_config), lambda request: response)
    with pytest.raises(ProviderFailure):
        await client.do_embed(["a", "b"])
    await client.close()


async def test_transport_error_becomes_provider_failure(helper_config):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = await _booted(LLMClientOllama(helper_config), handler)
    with pytest.raises(ProviderFailure):
        await client.do_embed_text("a")
    await client.close()


async def test_request_before_boot_fails(helper_config):
    with pytest.raises(ProviderFailure):
        await LLMClientOllama(helper_config).do_embed_text("a")


async def test_ollama_stream_parses_ndjson_until_done(helper_config):
    body = _ndjson(
        {"message": {"role": "assistant", "content": "Hel"}, "done": False},
        "not json",
        {"message": {"role": "assistant", "content": "lo"}, "done": False},
        {"message": {"role": "assistant", "content": ""}, "done": True},
        {"message": {"role": "assistant", "content": "ignored"}, "done": False},
    )

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/chat"
        assert json.loads(request.content)["stream"] is True
        return httpx.Response(200, content=body)

    client = await _booted(LLMClientOllama(helper_config), handler)
    async with client.do_open_chat_stream([{"role": "user", "content": "hi", "image": None}]) as tokens:
        received = [token async for token in tokens]
    assert received == ["Hel", "lo"]
    await client.close()


async def test_ollama_stream_error_line(helper_config):
    body = _ndjson({"message": {"content": "a"}, "done": False}, {"error": "model crashed"})
    client = await _booted(LLMClientOllama(helper_config), lambda request: httpx.Response(200, content=body))
    with pytest.raises(ProviderFailure):
        async with client.do_open_chat_stream([{"role": "user", "content": "hi", "image": None}]) as tokens:
            async for _ in tokens:
                pass
    await client.close()


async def test_ollama_stream_rejects_non_object_line(helper_config):
    body = _ndjson({"message": {"content": "Hi"}}, '"oops"')
    client = await _booted(LLMClientOllama(helper_config), lambda request: httpx.Response(200, content=body))
    with pytest.raises(ProviderFailure):
        async with client.do_open_chat_stream([{"role": "user", "content": "hi", "image": None}]) as tokens:
            async for _ in tokens:
                pass
    await client.close()


async def test_garbled_ollama_stream_still_terminates_the_answer(helper_config):
    body = _ndjson({"message": {"content": "Hi"}}, '"oops"')
    client = await _booted(LLMClientOllama(helper_config), lambda request: httpx.Response(200, content=body))
    channel = TokenChannel(maxsize=4)
    task = asyncio.create_task(AnswerStreamer(helper_config, client).do_stream(AnswerPrompt(question="q"), channel))

    async def _consume():
        return [token async for token in channel]

    received = await asyncio.wait_for(_consume(), timeout=3)
    result = await task

    assert received == ["Hi", ERROR_MARKER]
    assert result.state == StreamState.FAILED
    await client.close()


@pytest.mark.parametrize("error", [httpx.InvalidURL("bad url"), httpx.StreamClosed()])
async def test_non_http_transport_errors_become_provider_failure(helper_config, error):
    def handler(request: httpx.Request) -> httpx.Response:
        raise error

    client = await _booted(LLMClientOllama(helper_config), handler)
    with pytest.raises(ProviderFailure):
        async with client.do_open_chat_stream([{"role": "user", "content": "hi", "image": None}]):
            pass
    with pytest.raises(ProviderFailure):
        await client.do_embed_text("a")
    await client.close()


async def test_rejected_stream_fails_on_open(helper_config):
    client = await _booted(LLMClientOllama(helper_config), lambda request: httpx.Response(404, text="no model"))
    with pytest.raises(ProviderFailure):
        async with client.do_open_chat_stream([{"role": "user", "content": "hi", "image": None}]):
            pass
    await client.close()


def test_ollama_chat_payload(helper_config):
    image = ImageAttachment(mime_type="image/png", data="AAAA")
    payload = LLMClientOllama(helper_config).get_chat_payload(
        [
            {"role": "system", "content": "rules", "image": None},
            {"role": "model", "content": "earlier", "image": None},
            {"role": "user", "content": "look", "image": image},
        ],
        stream=True,
    )
    assert [m["role"] for m in payload["messages"]] == ["system", "assistant", "user"]
    assert payload["messages"][2]["images"] == ["AAAA"]
    assert payload["model"] == "llama3"


def test_ollama_models_from_env(helper_config, monkeypatch):
    monkeypatch.setenv("LLM_MODEL", "mxbai-embed-large")
    monkeypatch.setenv("LLM_CHAT_MODEL", "mistral")
    client = LLMClientOllama(helper_config)
    assert client.get_embed_payload(["x"])["model"] == "mxbai-embed-large"
    assert client.get_chat_payload([], stream=False)["model"] == "mistral"


##########################################
################ GEMINI ##################
##########################################

def test_gemini_requires_api_key(helper_config, monkeypatch):
    monkeypatch.delenv("LLM_GEMINI_API_KEY", raising=False)
    with pytest.raises(ValueError):
        LLMClientGemini(helper_config)


async def test_gemini_embed(helper_config, monkeypatch):
    monkeypatch.setenv("LLM_GEMINI_API_KEY", "secret")

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["x-goog-api-key"] == "secret"
        assert request.url.path.endswith("/models/text-embedding-004:batchEmbedContents")
        requests = json.loads(request.content)["requests"]
        assert requests[0]["content"]["parts"][0]["text"] == "hello"
        return httpx.Response(200, json={"embeddings": [{"values": [0.5, 0.5]}]})

    client = await _booted(LLMClientGemini(helper_config), handler)
    assert await client.do_embed_text("hello") == [0.5, 0.5]
    await client.close()


async def test_gemini_stream_parses_server_sent_events(helper_config, monkeypatch):
    monkeypatch.setenv("LLM_GEMINI_API_KEY", "secret")

    def event(text: str, finish: str | None = None) -> str:
        candidate = {"content": {"role": "model", "parts": [{"text": text}]}}
        if finish:
            candidate["finishReason"] = finish
        return "data: " + json.dumps({"candidates": [candidate]})

    body = "\n\n".join([event("Bon"), event("jour"), event(" !", finish="STOP")]).encode()

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith(":streamGenerateContent")
        assert request.url.params["alt"] == "sse"
        payload = json.loads(request.content)
        assert payload["tools"] == [{"google_search": {}}]
        assert payload["systemInstruction"]["parts"][0]["text"] == "rules"
        assert [c["role"] for c in payload["contents"]] == ["user"]
        return httpx.Response(200, content=body)

    client = await _booted(LLMClientGemini(helper_config), handler)
    messages = [{"role": "system", "content": "rules", "image": None}, {"role": "user", "content": "salut", "image": None}]
    async with client.do_open_chat_stream(messages, use_web_search=True) as tokens:
        received = [token async for token in tokens]
    assert received == ["Bon", "jour", " !"]
    await client.close()


def test_gemini_stream_error_event(helper_config, monkeypatch):
    monkeypatch.setenv("LLM_GEMINI_API_KEY", "secret")
    client = LLMClientGemini(helper_config)
    with pytest.raises(ProviderFailure):
        client.extract_stream_tokens('data: {"error": {"message": "quota exceeded"}}')
    assert client.extract_stream_tokens(": keep-alive") == ([], False)
    with pytest.raises(ProviderFailure):
        client.extract_stream_tokens("data: [1, 2]")


def test_gemini_image_becomes_inline_data(helper_config, monkeypatch):
    monkeypatch.setenv("LLM_GEMINI_API_KEY", "secret")
    image = ImageAttachment(mime_type="image/jpeg", data="BBBB")
    payload = LLMClientGemini(helper_config).get_chat_payload([{"role": "user", "content": "what is this", "image": image}])
    assert payload["contents"][0]["parts"][1] == {"inlineData": {"mimeType": "image/jpeg", "data": "BBBB"}}
    assert "tools" not in payload


##########################################
################ MANAGER #################
##########################################

def test_manager_selects_provider(helper_config, monkeypatch):
    monkeypatch.setenv("LLM_ENGINE", "ollama")
    client = LLMClientManager(helper_config).get_client()
    assert isinstance(client, LLMClientOllama)
    assert client.is_local()

    monkeypatch.setenv("LLM_ENGINE", "gemini")
    monkeypatch.setenv("LLM_GEMINI_API_KEY", "secret")
    client = LLMClientManager(helper_config).get_client()
    assert isinstance(client, LLMClientGemini)
    assert not client.is_local()

    monkeypatch.setenv("LLM_ENGINE", "nope")
    with pytest.raises(ValueError):
        LLMClientManager(helper_config)
