"""FastAPI application exposing search, chat and document indexing."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass

from fastapi import BackgroundTasks, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, StreamingResponse

from kb_copilot import __version__
from kb_copilot.config import Settings, settings
from kb_copilot.copilot.facts import FactSheet
from kb_copilot.copilot.llm import get_llm
from kb_copilot.copilot.orchestrator import SessionOrchestrator
from kb_copilot.errors import EmbeddingUnavailable, IndexStoreError
from kb_copilot.ingestion.documents import Document, DocumentRegistry, InMemoryDocumentRegistry
from kb_copilot.ingestion.embedder import Embedder, build_embedding_model
from kb_copilot.ingestion.pipeline import IngestionPipeline
from kb_copilot.logging_config import configure_logging
from kb_copilot.retrieval import InMemoryIndexStore, SemanticRetriever
from kb_copilot.serving.schemas import (
    ChatRequest,
    DeleteResponse,
    IngestAccepted,
    IngestTextRequest,
    SearchHit,
    SearchRequest,
)

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@dataclass
class CopilotServices:
    """Long-lived collaborators shared by every request."""

    documents: DocumentRegistry
    pipeline: IngestionPipeline
    retriever: SemanticRetriever
    orchestrator: SessionOrchestrator


def build_services(config: Settings = settings) -> CopilotServices:
    """Create the capability handles and wire the components once per process."""
    embedder = Embedder(
        build_embedding_model(config),
        batch_size=config.embedding_batch_size,
        dimension=config.embedding_dimension,
    )
    if config.index_backend == "chroma":
        from kb_copilot.retrieval.chroma_store import ChromaIndexStore

        store = ChromaIndexStore(
            config.chroma_collection,
            host=config.chroma_host,
            port=config.chroma_port,
            max_top_k=config.max_top_k,
        )
    else:
        store = InMemoryIndexStore(max_top_k=config.max_top_k)
    logger.info("Index backend: %s", config.index_backend)

    documents = InMemoryDocumentRegistry()
    retriever = SemanticRetriever(
        store,
        embedder,
        default_k=config.default_top_k,
        score_threshold=config.similarity_floor,
        max_k=config.max_top_k,
    )
    orchestrator = SessionOrchestrator(
        retriever,
        get_llm(config),
        FactSheet.from_file(config.facts_path),
        organization=config.organization_name,
        default_top_k=config.default_top_k,
        command_top_k=config.command_top_k,
        max_tokens=config.llm_max_tokens,
        command_max_tokens=config.llm_command_max_tokens,
    )
    pipeline = IngestionPipeline(
        store,
        embedder,
        documents,
        chunk_size=config.chunk_target_size,
        chunk_overlap=config.chunk_overlap,
    )
    return CopilotServices(
        documents=documents,
        pipeline=pipeline,
        retriever=retriever,
        orchestrator=orchestrator,
    )


def create_app(services: CopilotServices | None = None) -> FastAPI:
    """Build the FastAPI app.

    Parameters
    ----------
    services:
        Pre-built collaborators (tests inject fakes here).  When ``None``
        they are built from :data:`settings` during application startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings.log_level)
        if app.state.services is None:
            app.state.services = build_services(settings)
        yield

    app = FastAPI(
        title="Knowledge Base Copilot API",
        version=__version__,
        description="Semantic search, tier-aware streaming chat and document indexing.",
        lifespan=lifespan,
    )
    app.state.services = services

    @app.exception_handler(EmbeddingUnavailable)
    async def _embedding_unavailable(request: Request, exc: EmbeddingUnavailable) -> JSONResponse:
        logger.warning("Embedding unavailable for %s: %s", request.url.path, exc)
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": str(exc)})

    @app.exception_handler(IndexStoreError)
    async def _index_store_error(request: Request, exc: IndexStoreError) -> JSONResponse:
        logger.error("Index store failure for %s: %s", request.url.path, exc)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": str(exc)})

    @app.exception_handler(ValueError)
    async def _value_error(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    # ── Routes ────────────────────────────────────────────────────────

    @app.get("/health")
    def health(request: Request) -> dict[str, str]:
        """Readiness probe; 503 while the index store is unreachable."""
        services = request.app.state.services
        if services is not None and not services.retriever.store.health_check():
            raise HTTPException(status_code=503, detail="Index store unavailable")
        return {"status": "ok"}

    @app.post("/search", response_model=list[SearchHit])
    def search(body: SearchRequest, request: Request) -> list[SearchHit]:
        """Top passages for a query, strongest first."""
        result = _services(request).retriever.retrieve(body.query, top_k=body.top_k)
        return [
            SearchHit(text=hit.content, score=hit.score, source_document=hit.citation.source)
            for hit in result.hits
        ]

    @app.post("/chat")
    async def chat(body: ChatRequest, request: Request) -> StreamingResponse:
        """Stream one copilot answer as server-sent events."""
        session = body.to_session()
        orchestrator = _services(request).orchestrator

        async def event_stream() -> AsyncIterator[str]:
            async with aclosing(orchestrator.stream(session)) as events:
                async for event in events:
                    if await request.is_disconnected():
                        logger.info("Client disconnected from session %s", session.session_id)
                        break
                    yield event.to_sse()

        return StreamingResponse(event_stream(), media_type="text/event-stream", headers=SSE_HEADERS)

    @app.post("/documents/{document_id}/ingest", status_code=status.HTTP_202_ACCEPTED)
    def ingest_text(
        document_id: str,
        body: IngestTextRequest,
        request: Request,
        background_tasks: BackgroundTasks,
    ) -> IngestAccepted:
        """Queue already-extracted text for indexing."""
        services = _services(request)
        document = services.documents.register(document_id, body.name, body.content_type)
        background_tasks.add_task(
            services.pipeline.dispatch_ingestion,
            document_id,
            body.raw_text,
            body.name,
            body.content_type,
        )
        return IngestAccepted(document_id=document_id, status=document.status.value)

    @app.post("/documents/{document_id}/file", status_code=status.HTTP_202_ACCEPTED)
    async def ingest_file(
        document_id: str,
        request: Request,
        background_tasks: BackgroundTasks,
        name: str = Query(min_length=1),
    ) -> IngestAccepted:
        """Queue an uploaded file (raw request body) for extraction and indexing."""
        services = _services(request)
        data = await request.body()
        content_type = request.headers.get("content-type", "application/octet-stream")
        document = services.documents.register(document_id, name, content_type)
        background_tasks.add_task(
            services.pipeline.dispatch_ingestion_bytes,
            document_id,
            data,
            name,
            content_type,
        )
        return IngestAccepted(document_id=document_id, status=document.status.value)

    @app.get("/documents", response_model=list[Document])
    def list_documents(request: Request) -> list[Document]:
        """All document records, newest first."""
        return _services(request).documents.all()

    @app.get("/documents/{document_id}", response_model=Document)
    def get_document(document_id: str, request: Request) -> Document:
        document = _services(request).documents.get(document_id)
        if document is None:
            raise HTTPException(status_code=404, detail=f"Unknown document {document_id!r}")
        return document

    @app.delete("/documents/{document_id}")
    def delete_document(document_id: str, request: Request) -> DeleteResponse:
        removed = _services(request).pipeline.delete(document_id)
        return DeleteResponse(document_id=document_id, chunks_deleted=removed)

    return app


def _services(request: Request) -> CopilotServices:
    services = request.app.state.services
    if services is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return services


app = create_app()
