from abc import ABC, abstractmethod
import asyncio
import math
from typing import Sequence

from shared.clients.rag.models.IndexedChunk import ChunkInput, IndexedChunk, ScoredChunk
from shared.exceptions import DimensionMismatch
from shared.helper.HelperConfig import HelperConfig
from shared.persistence.database import Database

# document scope meaning "search every document"
ALL_DOCUMENTS = "ALL"


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """dot(a, b) / (|a| * |b|), or 0.0 when either vector has zero norm.

    Raises:
        DimensionMismatch: If the vectors differ in length.
    """
    if len(a) != len(b):
        raise DimensionMismatch(f"Cannot compare vectors of dimension {len(a)} and {len(b)}.")
    dot = norm_a = norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


class RAGClientInterface(ABC):
    """Vector index over document chunks with cosine similarity ranking.

    The searchable state is an immutable snapshot
    (document_id -> tuple of chunks). Writers build a new snapshot under a lock,
    persist through the engine hooks and then swap the reference; readers take
    the reference once. A search therefore sees a document either completely
    before or completely after a concurrent insert/delete.
    """

    def __init__(self, helper_config: HelperConfig, database: Database | None = None):
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config
        self._database = database
        self.default_k = int(helper_config.get_number_val("RETRIEVAL_TOP_K", default=5))

        self._snapshot: dict[str, tuple[IndexedChunk, ...]] = {}
        self._dimension: int | None = None
        self._next_seq = 1
        self._write_lock = asyncio.Lock()

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def get_client_type(self) -> str:
        return "rag"

    def get_engine_name(self) -> str:
        """
        Returns the name of the engine used by the client. E.g. "sql"
        """
        return self._get_engine_name().lower()

    @abstractmethod
    def _get_engine_name(self) -> str:
        pass

    @property
    def dimension(self) -> int | None:
        """Embedding dimensionality fixed by the first stored chunk, None until then. Deletes keep it."""
        return self._dimension

    def get_chunks(self, document_id: str | None = None) -> list[IndexedChunk]:
        """Return the chunks of one document, or of all documents ("ALL"), in insertion order."""
        snapshot = self._snapshot
        if document_id is None or document_id == ALL_DOCUMENTS:
            return sorted((chunk for chunks in snapshot.values() for chunk in chunks), key=lambda c: c.seq)
        return list(snapshot.get(document_id, ()))

    def count(self, document_id: str | None = None) -> int:
        """Number of chunks for one document, or in the whole index."""
        snapshot = self._snapshot
        if document_id is None or document_id == ALL_DOCUMENTS:
            return sum(len(chunks) for chunks in snapshot.values())
        return len(snapshot.get(document_id, ()))

    ##########################################
    ############ ENGINE HOOKS ################
    ##########################################

    @abstractmethod
    async def _load_chunks(self) -> list[IndexedChunk]:
        """Return all stored chunks (any order) to seed the snapshot on boot."""
        pass

    @abstractmethod
    async def _persist_chunks(self, chunks: list[IndexedChunk]) -> None:
        """Durably store new chunks. Raising aborts the insert."""
        pass

    @abstractmethod
    async def _remove_chunks(self, document_id: str) -> None:
        """Durably remove all chunks of a document. Raising aborts the delete."""
        pass

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    async def boot(self) -> None:
        """Load stored chunks into the in-memory snapshot."""
        chunks = sorted(await self._load_chunks(), key=lambda c: c.seq)
        snapshot: dict[str, list[IndexedChunk]] = {}
        for chunk in chunks:
            snapshot.setdefault(chunk.document_id, []).append(chunk)
        self._snapshot = {doc_id: tuple(items) for doc_id, items in snapshot.items()}
        self._dimension = len(chunks[0].vector) if chunks else None
        self._next_seq = chunks[-1].seq + 1 if chunks else 1
        self.logging.info(
            "Vector index '%s' loaded: %d chunks across %d documents.",
            self.get_engine_name(), len(chunks), len(self._snapshot),
        )

    async def close(self) -> None:
        """Drop the in-memory snapshot."""
        self._snapshot = {}

    ##########################################
    ################ WRITE ###################
    ##########################################

    async def do_insert(self, document_id: str, chunk_text: str, vector: Sequence[float], offset: int = 0) -> IndexedChunk:
        """Store a single chunk for a document."""
        inserted = await self.do_insert_many(document_id, [ChunkInput(text=chunk_text, vector=list(vector), offset=offset)])
        return inserted[0]

    async def do_insert_many(self, document_id: str, chunks: list[ChunkInput]) -> list[IndexedChunk]:
        """Store several chunks of one document as a single snapshot swap.

        Args:
            document_id (str): Owning document.
            chunks (list[ChunkInput]): Chunk text, vector and offset, in document order.

        Returns:
            list[IndexedChunk]: The stored chunks with chunk_index and seq assigned.

        Raises:
            DimensionMismatch: If a vector is empty or differs from the index dimensionality.
            PersistenceFailure: If the engine cannot store the chunks.
        """
        if not chunks:
            return []
        async with self._write_lock:
            dimension = self._dimension
            for chunk in chunks:
                if not chunk.vector:
                    raise DimensionMismatch("Cannot index an empty vector.")
                if dimension is None:
                    dimension = len(chunk.vector)
                elif len(chunk.vector) != dimension:
                    raise DimensionMismatch(
                        f"Vector of dimension {len(chunk.vector)} rejected, index dimension is {dimension}."
                    )

            existing = self._snapshot.get(document_id, ())
            new_chunks = [
                IndexedChunk(
                    document_id=document_id,
                    chunk_index=len(existing) + i,
                    text=chunk.text,
                    offset=chunk.offset,
                    vector=tuple(chunk.vector),
                    seq=self._next_seq + i,
                )
                for i, chunk in enumerate(chunks)
            ]
            await self._persist_chunks(new_chunks)

            snapshot = dict(self._snapshot)
            snapshot[document_id] = existing + tuple(new_chunks)
            self._snapshot = snapshot
            self._dimension = dimension
            self._next_seq += len(new_chunks)

        self.logging.debug("Indexed %d chunk(s) for document %s.", len(new_chunks), document_id)
        return new_chunks

    async def do_delete(self, document_id: str) -> int:
        """Remove every chunk of a document.

        Returns:
            int: The number of chunks removed.
        """
        async with self._write_lock:
            removed = len(self._snapshot.get(document_id, ()))
            await self._remove_chunks(document_id)
            if document_id in self._snapshot:
                snapshot = dict(self._snapshot)
                del snapshot[document_id]
                self._snapshot = snapshot

        self.logging.debug("Removed %d chunk(s) of document %s from the index.", removed, document_id)
        return removed

    ##########################################
    ################ SEARCH ##################
    ##########################################

    async def do_search(self, query_vector: Sequence[float], document_id: str | None = None, k: int | None = None) -> list[ScoredChunk]:
        """Return the k chunks most similar to the query vector.

        Args:
            query_vector (Sequence[float]): Embedding of the query.
            document_id (str | None): Restrict to one document; None or "ALL" searches everything.
            k (int | None): Number of results, defaults to RETRIEVAL_TOP_K (5).

        Returns:
            list[ScoredChunk]: Hits ordered by descending score, ties in insertion order.
                Empty when nothing is indexed in the scope.

        Raises:
            DimensionMismatch: If the query vector does not match the index dimensionality.
        """
        snapshot = self._snapshot
        k = self.default_k if k is None else k
        if k <= 0:
            return []

        if document_id is None or document_id == ALL_DOCUMENTS:
            candidates = [chunk for chunks in snapshot.values() for chunk in chunks]
        else:
            candidates = list(snapshot.get(document_id, ()))
        if not candidates:
            return []

        scored = [ScoredChunk(chunk=chunk, score=cosine_similarity(query_vector, chunk.vector)) for chunk in candidates]
        scored.sort(key=lambda hit: (-hit.score, hit.chunk.seq))
        return scored[:k]
