"""SQLAlchemy persistence for documents, chunks and chat sessions.

Blocking ORM work runs in a worker thread via asyncio.to_thread so the
event loop keeps serving other requests while the database is busy.
"""

import asyncio
import datetime
import os
from typing import Callable, TypeVar

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from shared.exceptions import PersistenceFailure
from shared.helper.HelperConfig import HelperConfig

T = TypeVar("T")

Base = declarative_base()


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


# --- Models ---
class DocumentRecord(Base):
    __tablename__ = "documents"
    id = Column(String, primary_key=True, index=True)
    title = Column(String, nullable=False)
    original_name = Column(String, nullable=True)
    category = Column(String, nullable=False, default="text")
    tags = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    # chunks are removed by the database (ON DELETE CASCADE)
    chunks = relationship("ChunkRecord", back_populates="document", cascade="all, delete-orphan", passive_deletes=True)


class ChunkRecord(Base):
    __tablename__ = "chunks"
    # autoincrement id doubles as the global insertion order
    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(String, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    chunk_index = Column(Integer, nullable=False)
    text = Column(Text, nullable=False)
    char_offset = Column(Integer, nullable=False, default=0)
    embedding = Column(JSON, nullable=False)
    document = relationship("DocumentRecord", back_populates="chunks")


class SessionRecord(Base):
    __tablename__ = "chat_sessions"
    session_id = Column(String, primary_key=True, index=True)
    title = Column(String, nullable=False)
    title_state = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    messages = relationship(
        "MessageRecord",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="MessageRecord.position",
        passive_deletes=True,
    )


class MessageRecord(Base):
    __tablename__ = "chat_messages"
    __table_args__ = (UniqueConstraint("session_id", "position", name="uq_chat_messages_position"),)
    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String, ForeignKey("chat_sessions.session_id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    role = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    attachments = Column(JSON, nullable=False, default=list)
    timestamp = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    session = relationship("SessionRecord", back_populates="messages")


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Owns the SQLAlchemy engine. Created and booted by the process entry point."""

    def __init__(self, helper_config: HelperConfig, url: str | None = None) -> None:
        self.logging = helper_config.get_logger()
        self._url = url or helper_config.get_string_val("DB_URL", default="sqlite:///./data/docchat.db")
        self._engine: Engine | None = None
        self._session_factory: sessionmaker | None = None

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    async def boot(self) -> None:
        """Create the engine and all tables."""
        try:
            await asyncio.to_thread(self._boot_sync)
        except SQLAlchemyError as e:
            self.logging.error("Could not open database %s: %s", self._url, e)
            raise PersistenceFailure(f"Could not open database: {e}") from e
        self.logging.info("Database ready (%s).", self._url.split("///")[0])

    def _boot_sync(self) -> None:
        connect_args: dict = {}
        engine_kwargs: dict = {}
        is_sqlite = self._url.startswith("sqlite")
        if is_sqlite:
            connect_args["check_same_thread"] = False  # Required for SQLite across worker threads
            path = self._url.split("///", 1)[1] if "///" in self._url else ""
            if path and path != ":memory:":
                os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
            else:
                # one shared connection, otherwise every thread sees its own empty database
                engine_kwargs["poolclass"] = StaticPool

        self._engine = create_engine(self._url, connect_args=connect_args, **engine_kwargs)
        if is_sqlite:
            event.listen(self._engine, "connect", _enable_sqlite_foreign_keys)
        Base.metadata.create_all(bind=self._engine)
        self._session_factory = sessionmaker(bind=self._engine, autoflush=False, expire_on_commit=False)

    async def close(self) -> None:
        """Dispose of the engine and its connection pool."""
        if self._engine is not None:
            engine = self._engine
            self._engine = None
            self._session_factory = None
            await asyncio.to_thread(engine.dispose)

    ##########################################
    ################ WORK ####################
    ##########################################

    async def run(self, work: Callable[[Session], T], conflict_retries: int = 0) -> T:
        """Run a unit of work inside one transaction in a worker thread.

        The transaction commits when work returns and rolls back when it raises.
        work must convert ORM rows to plain models before returning.

        Args:
            work (Callable[[Session], T]): The unit of work.
            conflict_retries (int): How often work is rerun in a fresh transaction
                after a unique constraint was violated by a concurrent writer.

        Raises:
            PersistenceFailure: If the database is not booted or the work fails in SQLAlchemy.
        """
        if self._session_factory is None:
            raise PersistenceFailure("Database not initialised. Call boot() before using it.")
        factory = self._session_factory

        def _call() -> T:
            with factory.begin() as session:
                return work(session)

        attempt = 0
        while True:
            try:
                return await asyncio.to_thread(_call)
            except IntegrityError as e:
                if attempt >= conflict_retries:
                    self.logging.error("Database operation failed: %s", e)
                    raise PersistenceFailure(f"Database operation failed: {e}") from e
                attempt += 1
                self.logging.debug("Write conflict, retrying (%d/%d): %s", attempt, conflict_retries, e.orig)
            except SQLAlchemyError as e:
                self.logging.error("Database operation failed: %s", e)
                raise PersistenceFailure(f"Database operation failed: {e}") from e
