"""Pydantic models for one chat turn as seen by the query pipeline."""

from pydantic import BaseModel

from shared.models.prompt import GroundingPolicy, ImageAttachment


class ChatRequest(BaseModel):
    """A question about the corpus.

    Attributes:
        question:    The user question, may be empty when an image is attached.
        document_id: Scope of the retrieval: one document id, "ALL", or None for no retrieval.
        session_id:  Existing session to continue; a new id is generated when None.
        use_history: Replay the recent messages of the session to the model.
        image:       Optional inline image.
        policy:      What the model may do when the documents do not answer the question.
    """

    question: str | None = None
    document_id: str | None = None
    session_id: str | None = None
    use_history: bool = True
    image: ImageAttachment | None = None
    policy: GroundingPolicy = GroundingPolicy.DOCUMENTS_ONLY


class QueryResult(BaseModel):
    answer_text: str
    session_id: str
    state: str
