import logging

import pytest

from services.rag.IngestionService import IngestionService
from services.rag.QueryService import QueryService
from shared.clients.rag.memory.RAGClientMemory import RAGClientMemory
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import RAGSettings
from shared.persistence.ConversationStore import ConversationStore
from shared.persistence.database import Database
from shared.persistence.DocumentStore import DocumentStore
from tests.fakes import FakeLLMClient


@pytest.fixture
def helper_config() -> HelperConfig:
    return HelperConfig(logger=logging.getLogger("docchat.tests"))


@pytest.fixture
def settings() -> RAGSettings:
    return RAGSettings(chunk_size=40, chunk_overlap=10, embed_batch_size=2, stream_queue_size=4)


@pytest.fixture
async def database(helper_config, tmp_path):
    db = Database(helper_config=helper_config, url=f"sqlite:///{tmp_path / 'docchat.db'}")
    await db.boot()
    yield db
    await db.close()


@pytest.fixture
async def rag_client(helper_config):
    client = RAGClientMemory(helper_config=helper_config)
    await client.boot()
    yield client
    await client.close()


@pytest.fixture
def llm_client() -> FakeLLMClient:
    return FakeLLMClient()


@pytest.fixture
def document_store(helper_config, database) -> DocumentStore:
    return DocumentStore(helper_config=helper_config, database=database)


@pytest.fixture
def conversation_store(helper_config, database) -> ConversationStore:
    return ConversationStore(helper_config=helper_config, database=database, title_max_chars=30)


@pytest.fixture
def ingestion_service(helper_config, settings, document_store, rag_client, llm_client) -> IngestionService:
    return IngestionService(
        helper_config=helper_config,
        settings=settings,
        document_store=document_store,
        rag_client=rag_client,
        llm_client=llm_client,
    )


@pytest.fixture
def query_service(helper_config, settings, rag_client, llm_client, conversation_store, document_store) -> QueryService:
    return QueryService(
        helper_config=helper_config,
        settings=settings,
        rag_client=rag_client,
        llm_client=llm_client,
        conversation_store=conversation_store,
        document_store=document_store,
    )
