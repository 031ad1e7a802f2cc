"""Ingestion pipeline.

Validates a document text, creates its Document record, splits the text into
overlapping chunks, embeds them in batches and stores them in the vector
index. A failed embedding or index write removes the Document record again,
so no half-indexed document is left behind.
"""

from urllib.parse import urlparse

from services.rag.TextChunker import TextChunks
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.IndexedChunk import ChunkInput
from shared.clients.source.TextExtractor import TextExtractor
from shared.clients.source.WebScraper import WebScraper
from shared.exceptions import EmptyInput, NotFound, RAGError
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import RAGSettings
from shared.models.document import Document, DocumentMetadata, IngestResult, SourceCategory
from shared.persistence.DocumentStore import DocumentStore


class IngestionService:
    """Owns the document lifecycle: ingest, rename, retag, delete."""

    def __init__(
        self,
        helper_config: HelperConfig,
        settings: RAGSettings,
        document_store: DocumentStore,
        rag_client: RAGClientInterface,
        llm_client: LLMClientInterface,
        text_extractor: TextExtractor | None = None,
        web_scraper: WebScraper | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._settings = settings
        self._documents = document_store
        self._rag_client = rag_client
        self._llm_client = llm_client
        self._text_extractor = text_extractor
        self._web_scraper = web_scraper

    ##########################################
    ############### INGESTION ################
    ##########################################

    async def do_ingest(self, text: str, metadata: DocumentMetadata) -> IngestResult:
        """Chunk, embed and index a plain text as a new document.

        Args:
            text (str): The full document text.
            metadata (DocumentMetadata): Title, original name, category and tags.

        Returns:
            IngestResult: The new document id and its number of chunks.

        Raises:
            EmptyInput: If the text is blank.
            InvalidConfig: If the configured chunk size / overlap are unusable.
            ProviderFailure: If embedding fails (the document record is removed again).
            PersistenceFailure: If the document or its chunks cannot be stored.
        """
        if not text or not text.strip():
            raise EmptyInput("Document text is empty.")
        # validates the chunking parameters before anything is written
        chunks = TextChunks(text, self._settings.chunk_size, self._settings.chunk_overlap)

        document = await self._documents.do_create(metadata)
        self.logging.info("Ingesting document %s ('%s'), %d chunk(s)...", document.id, document.title, len(chunks))

        try:
            chunk_count = await self._embed_and_index(document.id, chunks)
        except RAGError as e:
            self.logging.error("Ingestion of document %s failed, removing it again: %s", document.id, e)
            await self._cleanup(document.id)
            raise

        self.logging.info("Document %s indexed with %d chunk(s).", document.id, chunk_count)
        return IngestResult(document_id=document.id, chunk_count=chunk_count)

    async def _embed_and_index(self, document_id: str, chunks: TextChunks) -> int:
        """Embed the chunks batch-wise and insert them as one snapshot swap."""
        batch_size = max(1, self._settings.embed_batch_size)
        spans = list(chunks.spans())
        inputs: list[ChunkInput] = []
        for start in range(0, len(spans), batch_size):
            batch = spans[start:start + batch_size]
            vectors = await self._llm_client.do_embed([text for _, text in batch])
            inputs.extend(
                ChunkInput(text=text, vector=vector, offset=offset)
                for (offset, text), vector in zip(batch, vectors)
            )
        stored = await self._rag_client.do_insert_many(document_id, inputs)
        return len(stored)

    async def _cleanup(self, document_id: str) -> None:
        try:
            await self._rag_client.do_delete(document_id)
            await self._documents.do_delete(document_id)
        except RAGError as e:
            self.logging.error("Cleanup of document %s failed: %s", document_id, e)

    async def do_ingest_pdf(self, data: bytes, filename: str, tags: list[str] | None = None) -> IngestResult:
        """Extract the text of an uploaded PDF and ingest it under its file name."""
        if self._text_extractor is None:
            raise EmptyInput("PDF ingestion is not available.")
        text = await self._text_extractor.extract(data, filename=filename)
        metadata = DocumentMetadata(
            title=filename,
            original_name=filename,
            category=SourceCategory.UPLOAD,
            tags=tags or [],
        )
        return await self.do_ingest(text, metadata)

    async def do_ingest_url(self, url: str, tags: list[str] | None = None) -> IngestResult:
        """Fetch a web page and ingest its visible text as "Web: <host>"."""
        if self._web_scraper is None:
            raise EmptyInput("Web ingestion is not available.")
        text = await self._web_scraper.fetch(url)
        metadata = DocumentMetadata(
            title=f"Web: {urlparse(url).hostname}",
            original_name=url,
            category=SourceCategory.WEB,
            tags=["web", *(tags or [])],
        )
        return await self.do_ingest(text, metadata)

    ##########################################
    ############### MANAGEMENT ###############
    ##########################################

    async def do_list(self) -> list[Document]:
        return await self._documents.do_list()

    async def do_rename(self, document_id: str, title: str) -> Document:
        title = title.strip()
        if not title:
            raise EmptyInput("Document title must not be empty.")
        document = await self._documents.do_update(document_id, title=title)
        self.logging.info("Renamed document %s to '%s'.", document_id, title)
        return document

    async def do_set_tags(self, document_id: str, tags: list[str]) -> Document:
        document = await self._documents.do_update(document_id, tags=tags)
        self.logging.info("Set tags of document %s to %s.", document_id, document.tags)
        return document

    async def do_delete(self, document_id: str) -> int:
        """Delete a document and all of its chunks.

        The chunks leave the index first so no search can return chunks of a
        document that no longer exists.

        Returns:
            int: Number of chunks removed.

        Raises:
            NotFound: If the document does not exist.
        """
        await self._documents.do_get(document_id)
        removed = await self._rag_client.do_delete(document_id)
        if not await self._documents.do_delete(document_id):
            raise NotFound("Document", document_id)
        self.logging.info("Deleted document %s (%d chunk(s)).", document_id, removed)
        return removed
