from sqlalchemy.orm import Session

from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.IndexedChunk import IndexedChunk
from shared.helper.HelperConfig import HelperConfig
from shared.persistence.database import ChunkRecord, Database


class RAGClientSql(RAGClientInterface):
    """Durable index: chunks are written through to the `chunks` table and
    reloaded into the in-memory snapshot on boot."""

    def __init__(self, helper_config: HelperConfig, database: Database | None = None):
        if database is None:
            raise ValueError("The SQL vector index needs a Database.")
        super().__init__(helper_config=helper_config, database=database)

    ##########################################
    ################ GETTER ##################
    ##########################################

    def _get_engine_name(self) -> str:
        return "Sql"

    ##########################################
    ############ ENGINE HOOKS ################
    ##########################################

    async def _load_chunks(self) -> list[IndexedChunk]:
        def _work(session: Session) -> list[IndexedChunk]:
            records = session.query(ChunkRecord).order_by(ChunkRecord.id).all()
            return [
                IndexedChunk(
                    document_id=record.document_id,
                    chunk_index=record.chunk_index,
                    text=record.text,
                    offset=record.char_offset,
                    vector=tuple(record.embedding),
                    seq=record.id,
                )
                for record in records
            ]

        return await self._database.run(_work)

    async def _persist_chunks(self, chunks: list[IndexedChunk]) -> None:
        def _work(session: Session) -> None:
            # the sequence number is stored as primary key so insertion order survives a restart
            session.add_all(
                [
                    ChunkRecord(
                        id=chunk.seq,
                        document_id=chunk.document_id,
                        chunk_index=chunk.chunk_index,
                        text=chunk.text,
                        char_offset=chunk.offset,
                        embedding=list(chunk.vector),
                    )
                    for chunk in chunks
                ]
            )

        await self._database.run(_work)

    async def _remove_chunks(self, document_id: str) -> None:
        def _work(session: Session) -> None:
            session.query(ChunkRecord).filter(ChunkRecord.document_id == document_id).delete(synchronize_session=False)

        await self._database.run(_work)
