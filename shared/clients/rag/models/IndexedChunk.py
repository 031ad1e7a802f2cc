"""IndexedChunk model: one retrievable text span of a document together with its embedding."""

from pydantic import BaseModel, ConfigDict


class IndexedChunk(BaseModel):
    """A chunk stored in a vector index.

    Instances are frozen: the index shares them between snapshots.

    Attributes:
        document_id: Id of the owning document.
        chunk_index: Zero-based position of this chunk within the document.
        text:        Raw text content of this chunk.
        offset:      Start character offset of the chunk in the document text.
        vector:      Embedding of `text`; same dimensionality for every chunk of one index.
        seq:         Global insertion sequence number, used to break score ties.
    """

    model_config = ConfigDict(frozen=True)

    document_id: str
    chunk_index: int
    text: str
    offset: int = 0
    vector: tuple[float, ...]
    seq: int


class ScoredChunk(BaseModel):
    """A search hit: a chunk plus its cosine similarity to the query."""

    chunk: IndexedChunk
    score: float

    @property
    def text(self) -> str:
        return self.chunk.text

    @property
    def document_id(self) -> str:
        return self.chunk.document_id


class ChunkInput(BaseModel):
    """A chunk about to be inserted (before it gets its sequence number)."""

    text: str
    vector: list[float]
    offset: int = 0
