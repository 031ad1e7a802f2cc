"""Pydantic models describing one answer request to a completion provider."""

from enum import Enum

from pydantic import BaseModel

from shared.models.session import Message


class GroundingPolicy(str, Enum):
    """How the model may answer when the document context is insufficient.

    DOCUMENTS_ONLY:          say the answer cannot be determined from the documents.
    ALLOW_GENERAL_KNOWLEDGE: fall back to general knowledge / web search.
    """

    DOCUMENTS_ONLY = "documents_only"
    ALLOW_GENERAL_KNOWLEDGE = "allow_general_knowledge"


class ImageAttachment(BaseModel):
    """An inline image sent along with a question (base64 payload without data URL prefix)."""

    mime_type: str
    data: str

    @classmethod
    def from_data_url(cls, data_url: str) -> "ImageAttachment":
        """Parse a "data:image/png;base64,...." URL.

        Raises:
            ValueError: If the string is not a base64 data URL.
        """
        header, sep, data = data_url.partition(",")
        if not sep or not header.startswith("data:") or ";base64" not in header or not data:
            raise ValueError("Image must be a base64 data URL (data:<mime>;base64,<data>).")
        mime_type = header[len("data:"):].split(";")[0] or "application/octet-stream"
        return cls(mime_type=mime_type, data=data)

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


class AnswerPrompt(BaseModel):
    """Everything a provider needs to produce one grounded answer.

    Attributes:
        question: The user question (never empty, image-only requests carry a default question).
        context:  Assembled document context, "" when no grounding is available.
        history:  The windowed conversation history, oldest first.
        image:    Optional inline image.
        policy:   Grounding policy selected for this request.
    """

    question: str
    context: str = ""
    history: list[Message] = []
    image: ImageAttachment | None = None
    policy: GroundingPolicy = GroundingPolicy.DOCUMENTS_ONLY

    @property
    def has_context(self) -> bool:
        return bool(self.context.strip())
