"""Pydantic models for chat sessions and their messages."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class MessageRole(str, Enum):
    USER = "user"
    MODEL = "model"


class TitleState(str, Enum):
    """Whether a session title is still the placeholder or was derived from a question.

    Only a DEFAULT title may be replaced by a later message.
    """

    DEFAULT = "default"
    USER_DERIVED = "user_derived"


DEFAULT_SESSION_TITLE = "New Chat"


class Attachment(BaseModel):
    """A message attachment, e.g. an inlined image as a data URL."""

    type: str
    url: str


class Message(BaseModel):
    role: MessageRole
    content: str
    attachments: list[Attachment] = []
    timestamp: datetime | None = None


class Session(BaseModel):
    session_id: str
    title: str = DEFAULT_SESSION_TITLE
    title_state: TitleState = TitleState.DEFAULT
    messages: list[Message] = []
    created_at: datetime
    updated_at: datetime


class SessionSummary(BaseModel):
    session_id: str
    title: str
    updated_at: datetime
