from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.IndexedChunk import IndexedChunk


class RAGClientMemory(RAGClientInterface):
    """Volatile index: the snapshot is the only copy and is lost on restart."""

    ##########################################
    ################ GETTER ##################
    ##########################################

    def _get_engine_name(self) -> str:
        return "Memory"

    ##########################################
    ############ ENGINE HOOKS ################
    ##########################################

    async def _load_chunks(self) -> list[IndexedChunk]:
        return []

    async def _persist_chunks(self, chunks: list[IndexedChunk]) -> None:
        return None

    async def _remove_chunks(self, document_id: str) -> None:
        return None
