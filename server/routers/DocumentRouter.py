from fastapi import APIRouter, Depends, File, Form, Request, UploadFile

from server.dependencies.auth import verify_api_key
from server.models.requests import (
    IngestTextRequest,
    IngestUrlRequest,
    SimilarityRequest,
    SummarizeRequest,
    UpdateDocumentRequest,
)
from server.models.responses import (
    DeleteDocumentResponse,
    DocumentListResponse,
    IngestResponse,
    SimilarityResponse,
    SimilarityResultItem,
    SummaryResponse,
)
from shared.models.document import Document, DocumentMetadata, SourceCategory

router = APIRouter(prefix="/documents", tags=["documents"], dependencies=[Depends(verify_api_key)])


@router.post("/text")
async def ingest_text(request: Request, body: IngestTextRequest) -> IngestResponse:
    """Index a plain text as a new document."""
    ingestion_service = request.app.state.ingestion_service
    metadata = DocumentMetadata(
        title=body.title,
        original_name=body.original_name,
        category=SourceCategory.TEXT,
        tags=body.tags,
    )
    result = await ingestion_service.do_ingest(body.text, metadata)
    return IngestResponse(document_id=result.document_id, chunk_count=result.chunk_count)


@router.post("/upload")
async def ingest_upload(
    request: Request,
    file: UploadFile = File(...),
    tags: str = Form(default=""),
) -> IngestResponse:
    """Index an uploaded PDF.

    Args:
        request (Request): FastAPI request (provides app.state.ingestion_service).
        file (UploadFile): The PDF file.
        tags (str): Comma separated tags.

    Returns:
        IngestResponse: Id and chunk count of the new document.
    """
    ingestion_service = request.app.state.ingestion_service
    data = await file.read()
    result = await ingestion_service.do_ingest_pdf(
        data,
        filename=file.filename or "upload.pdf",
        tags=[tag for tag in tags.split(",") if tag.strip()],
    )
    return IngestResponse(document_id=result.document_id, chunk_count=result.chunk_count)


@router.post("/url")
async def ingest_url(request: Request, body: IngestUrlRequest) -> IngestResponse:
    """Fetch a web page and index its text."""
    ingestion_service = request.app.state.ingestion_service
    result = await ingestion_service.do_ingest_url(body.url, tags=body.tags)
    return IngestResponse(document_id=result.document_id, chunk_count=result.chunk_count)


@router.get("")
async def list_documents(request: Request) -> DocumentListResponse:
    documents = await request.app.state.ingestion_service.do_list()
    return DocumentListResponse(documents=documents, total=len(documents))


@router.patch("/{document_id}")
async def update_document(request: Request, document_id: str, body: UpdateDocumentRequest) -> Document:
    """Rename a document and/or replace its tags."""
    ingestion_service = request.app.state.ingestion_service
    document = None
    if body.title is not None:
        document = await ingestion_service.do_rename(document_id, body.title)
    if body.tags is not None:
        document = await ingestion_service.do_set_tags(document_id, body.tags)
    if document is None:
        document = await request.app.state.document_store.do_get(document_id)
    return document


@router.delete("/{document_id}")
async def delete_document(request: Request, document_id: str) -> DeleteDocumentResponse:
    removed = await request.app.state.ingestion_service.do_delete(document_id)
    return DeleteDocumentResponse(document_id=document_id, removed_chunks=removed)


@router.post("/summarize")
async def summarize(request: Request, body: SummarizeRequest) -> SummaryResponse:
    """Summarize one document, or all documents when no id is given."""
    summary = await request.app.state.query_service.do_summarize(body.document_id)
    return SummaryResponse(summary=summary)


@router.post("/similarity")
async def similarity(request: Request, body: SimilarityRequest) -> SimilarityResponse:
    """Return the indexed chunks most similar to a text, with their cosine scores."""
    hits = await request.app.state.query_service.do_similarity(body.text, document_id=body.document_id, k=body.limit)
    items = [
        SimilarityResultItem(
            document_id=hit.document_id,
            chunk_index=hit.chunk.chunk_index,
            chunk_text=hit.text,
            score=hit.score,
        )
        for hit in hits
    ]
    return SimilarityResponse(text=body.text, results=items, total=len(items))
