"""Pydantic models for ingested documents.

Hierarchy:
  DocumentMetadata: caller-supplied descriptive fields of a new document.
  Document:         a persisted document record (metadata + identity + creation time).
  IngestResult:     outcome of a successful ingestion.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, field_validator


class SourceCategory(str, Enum):
    """Where the document text came from."""

    UPLOAD = "upload"
    WEB = "web"
    TEXT = "text"


def unique_tags(tags: list[str]) -> list[str]:
    """Strip, drop empty and de-duplicate tags while keeping their order."""
    seen: list[str] = []
    for tag in tags:
        tag = tag.strip()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


class DocumentMetadata(BaseModel):
    title: str
    original_name: str | None = None
    category: SourceCategory = SourceCategory.TEXT
    tags: list[str] = []

    @field_validator("tags")
    @classmethod
    def _normalise_tags(cls, tags: list[str]) -> list[str]:
        return unique_tags(tags)


class Document(DocumentMetadata):
    """A document known to the system. Owns its chunks in the vector index."""

    id: str
    created_at: datetime


class IngestResult(BaseModel):
    document_id: str
    chunk_count: int
