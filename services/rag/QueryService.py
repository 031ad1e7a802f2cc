"""Query pipeline.

Retrieves grounding context for a question, streams the answer through a
bounded TokenChannel and persists the finished exchange to the session.
Also hosts document summaries, the similarity check and the session facade.
"""

import asyncio

from services.rag.AnswerStreamer import ERROR_MARKER, AnswerStreamer, StreamState
from services.rag.ContextAssembler import ContextAssembler
from services.rag.TokenChannel import ChannelClosed, TokenChannel
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.clients.rag.RAGClientInterface import ALL_DOCUMENTS, RAGClientInterface
from shared.clients.rag.models.IndexedChunk import ScoredChunk
from shared.exceptions import EmptyInput, NotFound, PersistenceFailure, ProviderFailure
from shared.helper.HelperConfig import HelperConfig
from shared.models.chat import ChatRequest, QueryResult
from shared.models.config import RAGSettings
from shared.models.prompt import AnswerPrompt
from shared.models.session import Attachment, Message, MessageRole, Session, SessionSummary
from shared.persistence.ConversationStore import ConversationStore, new_session_id
from shared.persistence.DocumentStore import DocumentStore

IMAGE_ONLY_QUESTION = "Describe this image"
IMAGE_ONLY_PLACEHOLDER = "[Image Upload]"
SUMMARY_PROMPT = "Summarize the following document into 8-12 concise bullet points:\n\n{text}"


class QueryStream:
    """Handle on one streaming answer.

    Async-iterate it to receive the tokens in arrival order. `aclose()`
    stops the stream; an unfinished answer is then cancelled and not
    persisted. `result()` waits for the producer and returns the final answer.
    """

    def __init__(self, session_id: str, channel: TokenChannel) -> None:
        self.session_id = session_id
        self._channel = channel
        self._task: asyncio.Task | None = None
        self._result: QueryResult | None = None

    def start(self, producer) -> None:
        self._task = asyncio.create_task(producer)

    def set_result(self, text: str, state: StreamState) -> None:
        self._result = QueryResult(answer_text=text, session_id=self.session_id, state=state.value)

    def __aiter__(self):
        return self._channel.__aiter__()

    async def aclose(self) -> None:
        """Release the stream. Cancels the producer unless the answer was fully read."""
        if self._task is None:
            return
        if not self._channel.ended:
            self._channel.close()
            if not self._task.done():
                self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise

    async def result(self) -> QueryResult:
        """Wait for the producer to finish and return the final answer."""
        if self._task is not None:
            try:
                await asyncio.shield(self._task)
            except asyncio.CancelledError:
                if not self._task.cancelled():
                    raise
        if self._result is None:
            self.set_result("", StreamState.CANCELLED)
        return self._result


class QueryService:
    """Answers questions about the corpus and manages chat sessions."""

    def __init__(
        self,
        helper_config: HelperConfig,
        settings: RAGSettings,
        rag_client: RAGClientInterface,
        llm_client: LLMClientInterface,
        conversation_store: ConversationStore,
        document_store: DocumentStore,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config
        self._settings = settings
        self._rag_client = rag_client
        self._llm_client = llm_client
        self._conversations = conversation_store
        self._documents = document_store
        self._assembler = ContextAssembler(max_chars=settings.context_max_chars)

    ##########################################
    ############### RETRIEVAL ################
    ##########################################

    async def _check_scope(self, document_id: str | None) -> None:
        if document_id and document_id != ALL_DOCUMENTS:
            await self._documents.do_get(document_id)

    async def _retrieve(self, question: str, document_id: str | None, k: int | None = None) -> list[ScoredChunk]:
        """Rank the chunks of the scope against the question; [] when the scope is empty."""
        if not document_id or not question or self._rag_client.count(document_id) == 0:
            return []
        query_vector = await self._llm_client.do_embed_text(question)
        return await self._rag_client.do_search(query_vector, document_id=document_id, k=k or self._settings.top_k)

    async def do_similarity(self, text: str, document_id: str | None = ALL_DOCUMENTS, k: int | None = None) -> list[ScoredChunk]:
        """Return the chunks most similar to `text` with their scores.

        Raises:
            EmptyInput: If the text is blank.
            NotFound: If the document scope does not exist.
            ProviderFailure: If the text cannot be embedded.
        """
        if not text or not text.strip():
            raise EmptyInput("Similarity check needs a text.")
        document_id = document_id or ALL_DOCUMENTS
        await self._check_scope(document_id)
        return await self._retrieve(text, document_id, k=k)

    ##########################################
    ################ QUERY ###################
    ##########################################

    async def do_query(self, request: ChatRequest) -> QueryStream:
        """Start answering a question; tokens are produced in a background task.

        Retrieval only happens when a document scope and a question are
        given and the scope holds chunks. A failing question embedding does not
        raise: the stream then carries only the error marker.

        Args:
            request (ChatRequest): Question, scope, session, history flag, image, policy.

        Returns:
            QueryStream: The running stream, its session id is already known.

        Raises:
            EmptyInput: If neither a question nor an image is given.
            NotFound: If the document scope does not exist.
        """
        question = (request.question or "").strip()
        if not question and request.image is None:
            raise EmptyInput("Enter a question or attach an image.")
        await self._check_scope(request.document_id)

        session_id = request.session_id or new_session_id()
        retrieval_error: ProviderFailure | None = None
        try:
            hits = await self._retrieve(question, request.document_id)
            hits = [hit for hit in hits if hit.score > self._settings.min_score]
        except ProviderFailure as e:
            self.logging.error("Retrieval for session %s failed: %s", session_id, e)
            retrieval_error = e
            hits = []
        context = self._assembler.assemble(hits)

        history: list[Message] = []
        if request.use_history and request.session_id:
            history = await self._conversations.do_get_history(session_id, self._settings.history_window)

        prompt = AnswerPrompt(
            question=question or IMAGE_ONLY_QUESTION,
            context=context,
            history=history,
            image=request.image,
            policy=request.policy,
        )
        self.logging.info(
            "Query in session %s: scope=%s, %d hit(s), %d context chars, %d history message(s), policy=%s.",
            session_id, request.document_id or "-", len(hits), len(context), len(history), request.policy.value,
        )

        user_message = Message(
            role=MessageRole.USER,
            content=question or IMAGE_ONLY_PLACEHOLDER,
            attachments=[Attachment(type="image", url=request.image.to_data_url())] if request.image else [],
        )
        channel = TokenChannel(maxsize=self._settings.stream_queue_size)
        stream = QueryStream(session_id=session_id, channel=channel)
        stream.start(self._produce(stream, channel, prompt, user_message, question, retrieval_error))
        return stream

    async def _produce(
        self,
        stream: QueryStream,
        channel: TokenChannel,
        prompt: AnswerPrompt,
        user_message: Message,
        question: str,
        retrieval_error: ProviderFailure | None,
    ) -> None:
        try:
            if retrieval_error is not None:
                text, state = "", StreamState.FAILED
                try:
                    await channel.send(ERROR_MARKER)
                except ChannelClosed:
                    state = StreamState.CANCELLED
            else:
                streamer = AnswerStreamer(helper_config=self._helper_config, llm_client=self._llm_client)
                try:
                    answer = await streamer.do_stream(prompt, channel)
                except asyncio.CancelledError:
                    stream.set_result("", StreamState.CANCELLED)
                    self.logging.info("Answer in session %s cancelled, nothing persisted.", stream.session_id)
                    raise
                text, state = answer.text, answer.state
        finally:
            # the consumer must never wait on a producer that is gone
            await channel.finish()

        stream.set_result(text, state)
        if state == StreamState.CANCELLED:
            self.logging.info("Answer in session %s cancelled, nothing persisted.", stream.session_id)
            return

        model_message = Message(role=MessageRole.MODEL, content=text if text else ERROR_MARKER.strip())
        try:
            await self._conversations.do_append(stream.session_id, [user_message, model_message], title_hint=question)
        except PersistenceFailure as e:
            self.logging.error("Could not store the answer of session %s: %s", stream.session_id, e)

    ##########################################
    ############### SUMMARY ##################
    ##########################################

    async def do_summarize(self, document_id: str | None = None) -> str:
        """Summarize the first SUMMARY_MAX_CHUNKS chunks of a document (or of all documents).

        Raises:
            NotFound: If the document does not exist.
            EmptyInput: If nothing is indexed in the scope.
            ProviderFailure: If the provider call fails.
        """
        await self._check_scope(document_id)
        chunks = self._rag_client.get_chunks(document_id)[: self._settings.summary_max_chunks]
        if not chunks:
            raise EmptyInput("Nothing indexed to summarize.")
        text = "\n".join(chunk.text for chunk in chunks)
        self.logging.info("Summarizing %d chunk(s) of scope %s.", len(chunks), document_id or ALL_DOCUMENTS)
        messages = [{"role": "user", "content": SUMMARY_PROMPT.format(text=text), "image": None}]
        return await self._llm_client.do_chat(messages)

    ##########################################
    ############### SESSIONS #################
    ##########################################

    async def do_list_sessions(self) -> list[SessionSummary]:
        return await self._conversations.do_list_recent()

    async def do_get_session(self, session_id: str) -> Session:
        return await self._conversations.do_get(session_id)

    async def do_new_session(self) -> Session:
        return await self._conversations.do_create()

    async def do_delete_session(self, session_id: str) -> None:
        """Delete a session.

        Raises:
            NotFound: If the session does not exist.
        """
        if not await self._conversations.do_delete(session_id):
            raise NotFound("Session", session_id)
        self.logging.info("Deleted session %s.", session_id)
