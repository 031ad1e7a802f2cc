"""FastAPI application entry point for the document chat service."""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shared.logging.logging_setup import setup_logging
from shared.helper.HelperConfig import HelperConfig
from shared.exceptions import DimensionMismatch, EmptyInput, InvalidConfig, NotFound, PersistenceFailure, ProviderFailure
from shared.models.config import RAGSettings
from shared.persistence.database import Database
from shared.persistence.DocumentStore import DocumentStore
from shared.persistence.ConversationStore import ConversationStore
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.clients.llm.LLMClientManager import LLMClientManager
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.clients.source.TextExtractor import TextExtractor
from shared.clients.source.WebScraper import WebScraper
from services.rag.IngestionService import IngestionService
from services.rag.QueryService import QueryService
from services.rag.TextChunker import validate_chunk_config
from server.routers.DocumentRouter import router as document_router
from server.routers.ChatRouter import router as chat_router
from server.routers.HistoryRouter import router as history_router

logging = setup_logging()
app_version = os.getenv("APP_VERSION", "unknown")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # when the app starts
    app.state.logging = logging
    app.state.helper_config = HelperConfig(logger=logging)
    helper_config = app.state.helper_config

    settings = RAGSettings.from_config(helper_config)
    # refuse to start with chunking parameters that cannot make progress
    validate_chunk_config(settings.chunk_size, settings.chunk_overlap)

    database = Database(helper_config=helper_config)
    await database.boot()

    rag_client = RAGClientManager(helper_config=helper_config, database=database).get_client()
    llm_client = LLMClientManager(helper_config=helper_config).get_client()
    web_scraper = WebScraper(helper_config=helper_config)

    logging.info("Booting all clients...")
    await rag_client.boot()
    for client in [llm_client, web_scraper]:
        await client.boot()
    logging.info("All clients booted successfully.")

    document_store = DocumentStore(helper_config=helper_config, database=database)
    conversation_store = ConversationStore(
        helper_config=helper_config,
        database=database,
        title_max_chars=settings.session_title_max_chars,
    )

    app.state.database = database
    app.state.rag_client = rag_client
    app.state.llm_client = llm_client
    app.state.document_store = document_store
    app.state.conversation_store = conversation_store
    app.state.ingestion_service = IngestionService(
        helper_config=helper_config,
        settings=settings,
        document_store=document_store,
        rag_client=rag_client,
        llm_client=llm_client,
        text_extractor=TextExtractor(helper_config=helper_config),
        web_scraper=web_scraper,
    )
    app.state.query_service = QueryService(
        helper_config=helper_config,
        settings=settings,
        rag_client=rag_client,
        llm_client=llm_client,
        conversation_store=conversation_store,
        document_store=document_store,
    )

    await check_connections(llm_client)

    # while the app is running...
    yield

    # when the app shuts down, close all client connections
    logging.info("Shutting down, closing all clients...")
    for client in [web_scraper, llm_client, rag_client, database]:
        await client.close()
    logging.info("All clients closed.")


app = FastAPI(
    title="docchat",
    description=(
        "Chat with your documents. Texts, PDFs and web pages are chunked, embedded and indexed "
        "(POST /documents/*); questions are answered from the most similar chunks and streamed "
        "back token by token (POST /chat); conversations are kept per session (/history)."
    ),
    version=app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Session-Id"],
)

app.include_router(document_router)
app.include_router(chat_router)
app.include_router(history_router)


##########################################
############ ERROR HANDLERS ##############
##########################################

_STATUS_BY_ERROR: list[tuple[type[Exception], int]] = [
    (NotFound, 404),
    (EmptyInput, 400),
    (InvalidConfig, 400),
    (DimensionMismatch, 400),
    (ProviderFailure, 502),
    (PersistenceFailure, 503),
]


def _register_error_handler(error_class: type[Exception], status_code: int) -> None:
    async def _handler(request: Request, exc: Exception) -> JSONResponse:
        log = logging.warning if status_code < 500 else logging.error
        log("%s %s failed with %d: %s", request.method, request.url.path, status_code, exc)
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    app.add_exception_handler(error_class, _handler)


for _error_class, _status_code in _STATUS_BY_ERROR:
    _register_error_handler(_error_class, _status_code)


@app.get("/health")
async def health(request: Request) -> dict:
    """Liveness probe with the size of the index."""
    rag_client = request.app.state.rag_client
    return {
        "status": "ok",
        "version": app_version,
        "llm_engine": request.app.state.llm_client.get_engine_name(),
        "rag_engine": rag_client.get_engine_name(),
        "chunks": rag_client.count(),
    }


async def check_connections(llm_client: LLMClientInterface) -> None:
    """Check connectivity to the model provider on startup.

    An unreachable provider is not fatal: the server stays up so documents
    and sessions can still be managed, embedding and chat fail until it is back.
    """
    try:
        result = await llm_client.do_healthcheck()
    except ProviderFailure as e:
        logging.warning("LLM provider '%s' is not reachable: %s", llm_client.get_engine_name(), e)
        return
    if not result.is_success:
        logging.warning(
            "LLM provider '%s' is not reachable (status %d). Embedding and chat will not work.",
            llm_client.get_engine_name(),
            result.status_code,
        )
    else:
        logging.info("LLM provider '%s' is reachable.", llm_client.get_engine_name())


if __name__ == "__main__":
    import uvicorn

    logging.info(
        "Starting docchat API Server v%s from root dir: %s on port 8000...",
        app_version,
        os.environ.get("ROOT_DIR", "unknown"),
    )
    uvicorn.run(app, host="0.0.0.0", port=8000)
