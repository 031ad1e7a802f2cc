import asyncio

import pytest

from services.rag.AnswerStreamer import ERROR_MARKER, NO_CONTEXT_NOTE
from shared.exceptions import EmptyInput, NotFound
from shared.models.chat import ChatRequest
from shared.models.document import DocumentMetadata
from shared.models.prompt import GroundingPolicy, ImageAttachment
from shared.models.session import MessageRole

CONTRACT = "The contract sets the payment date. The invoice lists every payment. Apple banana cherry."


async def _ingest(ingestion_service, text: str = CONTRACT, title: str = "Contract") -> str:
    return (await ingestion_service.do_ingest(text, DocumentMetadata(title=title))).document_id


async def _collect(stream) -> list[str]:
    try:
        return [token async for token in stream]
    finally:
        await stream.aclose()


async def test_answer_is_streamed_and_persisted_in_one_append(query_service, ingestion_service, conversation_store, llm_client):
    doc_id = await _ingest(ingestion_service)

    stream = await query_service.do_query(ChatRequest(question="When is the payment due?", document_id=doc_id))
    tokens = await _collect(stream)
    result = await stream.result()

    assert tokens == ["Hello", " ", "world"]
    assert result.answer_text == "Hello world"
    assert result.state == "completed"
    assert result.session_id == stream.session_id
    assert result.session_id.startswith("sess_")

    messages, _ = llm_client.stream_calls[0]
    assert "payment" in messages[-1]["content"].split("QUESTION:")[0]

    session = await conversation_store.do_get(result.session_id)
    assert [(m.role, m.content) for m in session.messages] == [
        (MessageRole.USER, "When is the payment due?"),
        (MessageRole.MODEL, "Hello world"),
    ]
    assert session.title == "When is the payment due?"


async def test_unrelated_question_gets_empty_context_and_documents_only_policy(query_service, ingestion_service, llm_client):
    doc_id = await _ingest(ingestion_service)

    stream = await query_service.do_query(ChatRequest(question="unknown term", document_id=doc_id))
    await _collect(stream)
    result = await stream.result()

    assert result.state == "completed"
    messages, use_web_search = llm_client.stream_calls[0]
    assert use_web_search is False
    assert f"CONTEXT:\n{NO_CONTEXT_NOTE}\n" in messages[-1]["content"]
    assert "I don't know based on the provided documents." in messages[0]["content"]


async def test_no_scope_means_no_retrieval(query_service, ingestion_service, llm_client):
    await _ingest(ingestion_service)
    embeds_after_ingest = len(llm_client.embed_calls)

    stream = await query_service.do_query(
        ChatRequest(question="payment?", policy=GroundingPolicy.ALLOW_GENERAL_KNOWLEDGE)
    )
    await _collect(stream)

    assert len(llm_client.embed_calls) == embeds_after_ingest
    messages, use_web_search = llm_client.stream_calls[0]
    assert use_web_search is True
    assert NO_CONTEXT_NOTE in messages[-1]["content"]


async def test_all_scope_searches_every_document(query_service, ingestion_service, llm_client):
    await _ingest(ingestion_service, "Python and the vector database.", "Tech")
    await _ingest(ingestion_service, "Holiday weather report.", "Travel")

    stream = await query_service.do_query(ChatRequest(question="holiday weather", document_id="ALL"))
    await _collect(stream)

    messages, _ = llm_client.stream_calls[0]
    context = messages[-1]["content"].split("QUESTION:")[0]
    assert "Holiday weather report." in context
    assert "Python" not in context


async def test_history_window_is_replayed(query_service, conversation_store, llm_client, settings):
    first = await query_service.do_query(ChatRequest(question="first question"))
    await _collect(first)
    session_id = (await first.result()).session_id

    second = await query_service.do_query(ChatRequest(question="second question", session_id=session_id))
    await _collect(second)

    messages, _ = llm_client.stream_calls[1]
    assert [m["content"] for m in messages[1:-1]] == ["first question", "Hello world"]
    assert [m["role"] for m in messages[1:-1]] == ["user", "model"]
    assert len((await conversation_store.do_get(session_id)).messages) == 4

    third = await query_service.do_query(ChatRequest(question="third", session_id=session_id, use_history=False))
    await _collect(third)
    messages, _ = llm_client.stream_calls[2]
    assert len(messages) == 2


async def test_provider_failure_persists_partial_answer(query_service, conversation_store, llm_client):
    llm_client.tokens = ["Par", "tial", "lost"]
    llm_client.fail_after = 2

    stream = await query_service.do_query(ChatRequest(question="Explain"))
    tokens = await _collect(stream)
    result = await stream.result()

    assert tokens == ["Par", "tial", ERROR_MARKER]
    assert result.state == "failed"
    assert result.answer_text == "Partial"
    session = await conversation_store.do_get(result.session_id)
    assert [m.content for m in session.messages] == ["Explain", "Partial"]


async def test_unexpected_provider_error_ends_the_stream(query_service, conversation_store, llm_client):
    llm_client.tokens = ["Hi", "lost"]
    llm_client.fail_after = 1
    llm_client.failure = RuntimeError("Attempted to read or stream content, but the stream has been closed.")

    stream = await query_service.do_query(ChatRequest(question="Explain"))
    tokens = await asyncio.wait_for(_collect(stream), timeout=3)
    result = await stream.result()

    assert tokens == ["Hi", ERROR_MARKER]
    assert result.state == "failed"
    session = await conversation_store.do_get(result.session_id)
    assert [m.content for m in session.messages] == ["Explain", "Hi"]


async def test_provider_failure_without_tokens_persists_error_marker(query_service, conversation_store, llm_client):
    llm_client.fail_on_open = True

    stream = await query_service.do_query(ChatRequest(question="Explain"))
    assert await _collect(stream) == [ERROR_MARKER]
    result = await stream.result()

    session = await conversation_store.do_get(result.session_id)
    assert session.messages[-1].content == ERROR_MARKER.strip()


async def test_failed_question_embedding_degrades_to_error_token(query_service, ingestion_service, llm_client):
    doc_id = await _ingest(ingestion_service)
    llm_client.fail_embed = True

    stream = await query_service.do_query(ChatRequest(question="payment?", document_id=doc_id))
    assert await _collect(stream) == [ERROR_MARKER]
    assert (await stream.result()).state == "failed"
    assert llm_client.stream_calls == []


async def test_cancelled_stream_persists_nothing(query_service, conversation_store, llm_client):
    llm_client.tokens = ["first", "second", "third"]
    llm_client.gate = asyncio.Event()

    stream = await query_service.do_query(ChatRequest(question="Long answer please"))
    iterator = stream.__aiter__()
    assert await iterator.__anext__() == "first"
    await stream.aclose()
    result = await stream.result()

    assert result.state == "cancelled"
    assert llm_client.stream_closed is True
    with pytest.raises(NotFound):
        await conversation_store.do_get(result.session_id)


async def test_image_only_question(query_service, conversation_store, llm_client):
    image = ImageAttachment.from_data_url("data:image/png;base64,iVBORw0KGgo=")

    stream = await query_service.do_query(ChatRequest(image=image))
    await _collect(stream)
    result = await stream.result()

    messages, _ = llm_client.stream_calls[0]
    assert messages[-1]["content"].endswith("QUESTION:\nDescribe this image")
    assert messages[-1]["image"] == image
    session = await conversation_store.do_get(result.session_id)
    assert session.messages[0].content == "[Image Upload]"
    assert session.messages[0].attachments[0].url == "data:image/png;base64,iVBORw0KGgo="
    assert session.title == "New Chat"


async def test_query_validation(query_service):
    with pytest.raises(EmptyInput):
        await query_service.do_query(ChatRequest(question="   "))
    with pytest.raises(NotFound):
        await query_service.do_query(ChatRequest(question="hi", document_id="missing"))


##########################################
######### SUMMARY / SIMILARITY ###########
##########################################

async def test_summarize_uses_first_chunks_joined_by_newline(query_service, ingestion_service, rag_client, llm_client, settings):
    doc_id = await _ingest(ingestion_service, "x" * 500)
    settings.summary_max_chunks = 3

    summary = await query_service.do_summarize(doc_id)

    assert summary == llm_client.chat_reply
    prompt = llm_client.chat_calls[0][0]["content"]
    expected = "\n".join(c.text for c in rag_client.get_chunks(doc_id)[:3])
    assert prompt.startswith("Summarize the following document into 8-12 concise bullet points:")
    assert prompt.endswith(expected)


async def test_summarize_errors(query_service):
    with pytest.raises(NotFound):
        await query_service.do_summarize("missing")
    with pytest.raises(EmptyInput):
        await query_service.do_summarize(None)


async def test_similarity_returns_ranked_scores(query_service, ingestion_service):
    await _ingest(ingestion_service, "apple apple apple", "Apples")
    await _ingest(ingestion_service, "apple banana cherry", "Mixed")

    hits = await query_service.do_similarity("apple", k=2)

    assert [hit.text for hit in hits] == ["apple apple apple", "apple banana cherry"]
    assert hits[0].score == pytest.approx(1.0)
    assert hits[0].score > hits[1].score


##########################################
############### SESSIONS #################
##########################################

async def test_session_facade(query_service):
    created = await query_service.do_new_session()
    assert [s.session_id for s in await query_service.do_list_sessions()] == [created.session_id]
    assert (await query_service.do_get_session(created.session_id)).messages == []

    await query_service.do_delete_session(created.session_id)
    with pytest.raises(NotFound):
        await query_service.do_delete_session(created.session_id)
    with pytest.raises(NotFound):
        await query_service.do_get_session(created.session_id)
