"""Durable chat sessions: ordered, append-only message history per session."""

import uuid

from sqlalchemy import func
from sqlalchemy.orm import Session as OrmSession

from shared.exceptions import NotFound
from shared.helper.HelperConfig import HelperConfig
from shared.models.session import (
    DEFAULT_SESSION_TITLE,
    Attachment,
    Message,
    MessageRole,
    Session,
    SessionSummary,
    TitleState,
)
from shared.persistence.database import Database, MessageRecord, SessionRecord, utcnow

# concurrent writers to one session resolve through the unique keys, the loser reruns
WRITE_CONFLICT_RETRIES = 5


def new_session_id() -> str:
    return f"sess_{uuid.uuid4().hex}"


def _to_message(record: MessageRecord) -> Message:
    return Message(
        role=MessageRole(record.role),
        content=record.content,
        attachments=[Attachment(**a) for a in (record.attachments or [])],
        timestamp=record.timestamp,
    )


def _to_session(record: SessionRecord) -> Session:
    return Session(
        session_id=record.session_id,
        title=record.title,
        title_state=TitleState(record.title_state),
        messages=[_to_message(m) for m in record.messages],
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


class ConversationStore:
    """Sessions are created lazily on the first append and only ever grow.

    Titles are a two-state field: a DEFAULT placeholder until a usable user
    question is seen, then USER_DERIVED and never overwritten.
    """

    def __init__(self, helper_config: HelperConfig, database: Database, title_max_chars: int = 30) -> None:
        self.logging = helper_config.get_logger()
        self._db = database
        self._title_max_chars = title_max_chars

    ##########################################
    ############### HELPERS ##################
    ##########################################

    def derive_title(self, text: str | None) -> tuple[str, TitleState]:
        """Turn a question into a display title, or the placeholder if there is no usable text."""
        text = " ".join((text or "").split())
        if not text:
            return DEFAULT_SESSION_TITLE, TitleState.DEFAULT
        return text[: self._title_max_chars], TitleState.USER_DERIVED

    ##########################################
    ################# READ ###################
    ##########################################

    async def do_get(self, session_id: str) -> Session:
        """Return a session with its full message history.

        Raises:
            NotFound: If the session does not exist.
        """
        def _work(session: OrmSession) -> Session | None:
            record = session.get(SessionRecord, session_id)
            return _to_session(record) if record else None

        result = await self._db.run(_work)
        if result is None:
            raise NotFound("Session", session_id)
        return result

    async def do_get_history(self, session_id: str, window: int) -> list[Message]:
        """Return only the last `window` messages (oldest first); [] for unknown sessions."""
        if window <= 0:
            return []

        def _work(session: OrmSession) -> list[Message]:
            records = (
                session.query(MessageRecord)
                .filter(MessageRecord.session_id == session_id)
                .order_by(MessageRecord.position.desc())
                .limit(window)
                .all()
            )
            return [_to_message(record) for record in reversed(records)]

        return await self._db.run(_work)

    async def do_list_recent(self, limit: int | None = None) -> list[SessionSummary]:
        """Return session summaries ordered newest-first by last update."""
        def _work(session: OrmSession) -> list[SessionSummary]:
            query = session.query(SessionRecord.session_id, SessionRecord.title, SessionRecord.updated_at).order_by(
                SessionRecord.updated_at.desc()
            )
            if limit:
                query = query.limit(limit)
            return [SessionSummary(session_id=sid, title=title, updated_at=updated) for sid, title, updated in query.all()]

        return await self._db.run(_work)

    ##########################################
    ################ WRITE ###################
    ##########################################

    async def do_create(self, session_id: str | None = None) -> Session:
        """Explicitly start a new, empty chat ("new chat"). Existing sessions are returned unchanged."""
        session_id = session_id or new_session_id()

        def _work(session: OrmSession) -> Session:
            record = session.get(SessionRecord, session_id)
            if record is None:
                now = utcnow()
                record = SessionRecord(
                    session_id=session_id,
                    title=DEFAULT_SESSION_TITLE,
                    title_state=TitleState.DEFAULT.value,
                    created_at=now,
                    updated_at=now,
                )
                session.add(record)
                session.flush()
            return _to_session(record)

        return await self._db.run(_work, conflict_retries=WRITE_CONFLICT_RETRIES)

    async def do_append(self, session_id: str, messages: list[Message], title_hint: str | None = None) -> Session:
        """Append messages to a session in one transaction, creating the session if absent.

        Args:
            session_id (str): The session to append to.
            messages (list[Message]): Messages in the order they are appended.
            title_hint (str | None): Text to derive the title from; defaults to the
                first user message among `messages`.

        Returns:
            Session: The session after the append.
        """
        if title_hint is None:
            title_hint = next((m.content for m in messages if m.role == MessageRole.USER), None)
        title, title_state = self.derive_title(title_hint)

        def _work(session: OrmSession) -> Session:
            now = utcnow()
            record = session.get(SessionRecord, session_id)
            if record is None:
                record = SessionRecord(
                    session_id=session_id,
                    title=title,
                    title_state=title_state.value,
                    created_at=now,
                    updated_at=now,
                )
                session.add(record)
                session.flush()
                next_position = 0
            else:
                if record.title_state == TitleState.DEFAULT.value and title_state == TitleState.USER_DERIVED:
                    record.title = title
                    record.title_state = title_state.value
                max_position = (
                    session.query(func.max(MessageRecord.position))
                    .filter(MessageRecord.session_id == session_id)
                    .scalar()
                )
                next_position = 0 if max_position is None else max_position + 1

            for offset, message in enumerate(messages):
                record.messages.append(
                    MessageRecord(
                        position=next_position + offset,
                        role=message.role.value,
                        content=message.content,
                        attachments=[a.model_dump() for a in message.attachments],
                        timestamp=message.timestamp or now,
                    )
                )
            record.updated_at = now
            session.flush()
            return _to_session(record)

        result = await self._db.run(_work, conflict_retries=WRITE_CONFLICT_RETRIES)
        self.logging.debug("Appended %d message(s) to session %s.", len(messages), session_id)
        return result

    async def do_delete(self, session_id: str) -> bool:
        """Delete a session and its messages. Idempotent.

        Returns:
            bool: True if the session existed.
        """
        def _work(session: OrmSession) -> bool:
            record = session.get(SessionRecord, session_id)
            if record is None:
                return False
            session.delete(record)
            return True

        return await self._db.run(_work)
