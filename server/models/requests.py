from pydantic import BaseModel, Field

from shared.models.prompt import GroundingPolicy


class IngestTextRequest(BaseModel):
    text: str
    title: str
    original_name: str | None = None
    tags: list[str] = []


class IngestUrlRequest(BaseModel):
    url: str
    tags: list[str] = []


class UpdateDocumentRequest(BaseModel):
    title: str | None = None
    tags: list[str] | None = None


class SummarizeRequest(BaseModel):
    document_id: str | None = None


class SimilarityRequest(BaseModel):
    text: str
    document_id: str | None = None
    limit: int = Field(default=5, ge=1, le=100)


class ChatRequestBody(BaseModel):
    """Body of POST /chat. `image` is a base64 data URL ("data:image/png;base64,...")."""

    question: str | None = None
    document_id: str | None = None
    session_id: str | None = None
    use_history: bool = True
    use_web_search: bool = False
    image: str | None = None

    def get_policy(self) -> GroundingPolicy:
        return GroundingPolicy.ALLOW_GENERAL_KNOWLEDGE if self.use_web_search else GroundingPolicy.DOCUMENTS_ONLY
