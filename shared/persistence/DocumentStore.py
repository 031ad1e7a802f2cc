"""Durable storage of document records (metadata only; chunks live in the vector index)."""

import uuid

from sqlalchemy.orm import Session

from shared.exceptions import NotFound
from shared.helper.HelperConfig import HelperConfig
from shared.models.document import Document, DocumentMetadata, unique_tags
from shared.persistence.database import Database, DocumentRecord, utcnow


def _to_document(record: DocumentRecord) -> Document:
    return Document(
        id=record.id,
        title=record.title,
        original_name=record.original_name,
        category=record.category,
        tags=list(record.tags or []),
        created_at=record.created_at,
    )


class DocumentStore:
    """CRUD for document records. Ids are uuid4 strings assigned on create, tags are kept unique."""

    def __init__(self, helper_config: HelperConfig, database: Database) -> None:
        self.logging = helper_config.get_logger()
        self._db = database

    async def do_create(self, metadata: DocumentMetadata) -> Document:
        """Persist a new document record with a fresh id."""
        def _work(session: Session) -> Document:
            record = DocumentRecord(
                id=str(uuid.uuid4()),
                title=metadata.title,
                original_name=metadata.original_name,
                category=metadata.category.value,
                tags=list(metadata.tags),
                created_at=utcnow(),
            )
            session.add(record)
            session.flush()
            return _to_document(record)

        document = await self._db.run(_work)
        self.logging.debug("Created document record id=%s ('%s').", document.id, document.title)
        return document

    async def do_get(self, document_id: str) -> Document:
        """Return a document.

        Raises:
            NotFound: If no document with this id exists.
        """
        def _work(session: Session) -> Document | None:
            record = session.get(DocumentRecord, document_id)
            return _to_document(record) if record else None

        document = await self._db.run(_work)
        if document is None:
            raise NotFound("Document", document_id)
        return document

    async def do_list(self) -> list[Document]:
        """Return all documents, newest first."""
        def _work(session: Session) -> list[Document]:
            records = session.query(DocumentRecord).order_by(DocumentRecord.created_at.desc()).all()
            return [_to_document(record) for record in records]

        return await self._db.run(_work)

    async def do_update(self, document_id: str, title: str | None = None, tags: list[str] | None = None) -> Document:
        """Rename a document and/or replace its tag set.

        Raises:
            NotFound: If no document with this id exists.
        """
        def _work(session: Session) -> Document | None:
            record = session.get(DocumentRecord, document_id)
            if record is None:
                return None
            if title is not None:
                record.title = title
            if tags is not None:
                record.tags = unique_tags(tags)
            session.flush()
            return _to_document(record)

        document = await self._db.run(_work)
        if document is None:
            raise NotFound("Document", document_id)
        return document

    async def do_delete(self, document_id: str) -> bool:
        """Delete a document record (its chunk rows cascade).

        Returns:
            bool: True if the document existed.
        """
        def _work(session: Session) -> bool:
            record = session.get(DocumentRecord, document_id)
            if record is None:
                return False
            session.delete(record)
            return True

        return await self._db.run(_work)
