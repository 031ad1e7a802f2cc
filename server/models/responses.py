from datetime import datetime

from pydantic import BaseModel

from shared.models.document import Document


class IngestResponse(BaseModel):
    document_id: str
    chunk_count: int


class DocumentListResponse(BaseModel):
    documents: list[Document]
    total: int


class DeleteDocumentResponse(BaseModel):
    document_id: str
    removed_chunks: int


class SummaryResponse(BaseModel):
    summary: str


class SimilarityResultItem(BaseModel):
    document_id: str
    chunk_index: int
    chunk_text: str
    score: float


class SimilarityResponse(BaseModel):
    text: str
    results: list[SimilarityResultItem]
    total: int


class SessionSummaryItem(BaseModel):
    session_id: str
    title: str
    updated_at: datetime
