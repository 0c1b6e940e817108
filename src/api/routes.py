"""FastAPI routes for the ragstack API.

Every route is prefixed with ``/api/v1``.  Services are built once in
``main._build_all``, stored on ``app.state`` and resolved per request via
``Depends`` using the ``Annotated`` pattern.  Routes never translate
errors themselves: ``RagStackError`` subclasses propagate to
:class:`~src.api.middleware.ErrorHandlingMiddleware`, which maps each error
kind to its HTTP status.

# Endpoint                                   Method        Description
# /api/v1/health                             GET           Health check
# /api/v1/vector-stores                      GET, POST     List / create (connection-tested)
# /api/v1/vector-stores/test                 POST          Probe a config without saving it
# /api/v1/vector-stores/{id}                 PUT, DELETE   Update / delete
# /api/v1/collections                        GET, POST     List / create
# /api/v1/collections/copy                   POST          Copy settings, documents, vectors
# /api/v1/collections/sync                   GET, POST     Check / apply namespace reconciliation
# /api/v1/collections/{id}                   GET, DELETE   Get / delete (must be empty)
# /api/v1/collections/{id}/stats             GET           Document, chunk and vector counts
# /api/v1/collections/{id}/documents         GET, POST     List / multipart upload
# /api/v1/documents/{id}                     GET, DELETE   Get / delete
# /api/v1/documents/{id}/process             POST          Run the processing pipeline
# /api/v1/documents/{id}/reprocess           POST          Reset a failed document
# /api/v1/documents/{id}/content             POST          Resupply raw content
# /api/v1/documents/{id}/regenerate          POST          Rebuild into a collection
# /api/v1/documents/{id}/chunks              GET           List chunk rows
# /api/v1/search                             POST          Semantic search
# /api/v1/chunking-strategies[/{id}]         CRUD
# /api/v1/cleansing-configs[/{id}]           CRUD
"""

from __future__ import annotations

import json
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Form, Request, Response, UploadFile

from src.api.schemas import (
    ChunkingStrategyRequest,
    ChunkListResponse,
    CleansingConfigRequest,
    ConnectionTestResponse,
    CopyCollectionRequest,
    CreateCollectionRequest,
    DocumentResponse,
    ErrorResponse,
    HealthResponse,
    ProcessRequest,
    RegenerateRequest,
    ReprocessResponse,
    SearchRequest,
    SearchResponse,
    SyncCollectionsRequest,
    UploadResponse,
    VectorStoreRequest,
    VectorStoreResponse,
)
from src.interfaces.rag_store import IRagStore
from src.models.rag import (
    ChunkingStrategy,
    CleansingConfig,
    Collection,
    CollectionCopyResult,
    CollectionStats,
    CollectionSyncReport,
    ProcessingOutcome,
)
from src.services.collection_service import CollectionService
from src.services.config_service import ConfigService
from src.services.ingestion.document_processor import DocumentProcessingPipeline
from src.services.search_service import SearchService
from src.services.vector_store_service import VectorStoreService
from src.utils.errors import ConfigError
from src.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

router = APIRouter(prefix="/api/v1")

_VERSION = "0.1.0"

_ERRORS: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
}
_BACKEND_ERRORS: dict[int | str, dict[str, Any]] = {
    **_ERRORS,
    500: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
    504: {"model": ErrorResponse},
}


# ---------------------------------------------------------------------------
# Dependency helpers
# ---------------------------------------------------------------------------


def _get_store(request: Request) -> IRagStore:
    return request.app.state.rag_store


def _get_vector_store_service(request: Request) -> VectorStoreService:
    return request.app.state.vector_store_service


def _get_collection_service(request: Request) -> CollectionService:
    return request.app.state.collection_service


def _get_config_service(request: Request) -> ConfigService:
    return request.app.state.config_service


def _get_pipeline(request: Request) -> DocumentProcessingPipeline:
    return request.app.state.document_pipeline


def _get_search_service(request: Request) -> SearchService:
    return request.app.state.search_service


StoreDep = Annotated[IRagStore, Depends(_get_store)]
VectorStoresDep = Annotated[VectorStoreService, Depends(_get_vector_store_service)]
CollectionsDep = Annotated[CollectionService, Depends(_get_collection_service)]
ConfigDep = Annotated[ConfigService, Depends(_get_config_service)]
PipelineDep = Annotated[DocumentProcessingPipeline, Depends(_get_pipeline)]
SearchDep = Annotated[SearchService, Depends(_get_search_service)]


def _parse_metadata(raw: str | None) -> dict[str, Any] | None:
    """Decode the JSON ``metadata`` form field of an upload."""
    if raw is None or not raw.strip():
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"metadata is not valid JSON: {exc.msg}") from exc
    if not isinstance(value, dict):
        raise ConfigError("metadata must be a JSON object")
    return value


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get("/health", response_model=HealthResponse, summary="Application health check")
async def health_check(store: StoreDep) -> HealthResponse:
    """Report whether the relational store answers and how many vector stores exist."""
    try:
        stores = await store.list_vector_stores()
    except Exception as exc:
        _logger.error("health_check_failed", error=str(exc))
        return HealthResponse(status="unhealthy", version=_VERSION, database="unavailable", vector_stores=0)
    return HealthResponse(status="healthy", version=_VERSION, database="ok", vector_stores=len(stores))


# ---------------------------------------------------------------------------
# Vector stores
# ---------------------------------------------------------------------------


@router.get("/vector-stores", response_model=list[VectorStoreResponse], summary="List vector stores")
async def list_vector_stores(service: VectorStoresDep) -> list[VectorStoreResponse]:
    return [VectorStoreResponse.from_config(c) for c in await service.list_stores()]


@router.post(
    "/vector-stores",
    response_model=VectorStoreResponse,
    status_code=201,
    responses=_BACKEND_ERRORS,
    summary="Create a vector store after a successful connection test",
)
async def create_vector_store(body: VectorStoreRequest, service: VectorStoresDep) -> VectorStoreResponse:
    stored = await service.create(body.to_config())
    return VectorStoreResponse.from_config(stored)


@router.post(
    "/vector-stores/test",
    response_model=ConnectionTestResponse,
    summary="Test a vector-store configuration without saving it",
)
async def test_vector_store(body: VectorStoreRequest, service: VectorStoresDep) -> ConnectionTestResponse:
    result = await service.test(body.to_config())
    return ConnectionTestResponse(**result.model_dump())


@router.put(
    "/vector-stores/{store_id}",
    response_model=VectorStoreResponse,
    responses=_BACKEND_ERRORS,
    summary="Update a vector store",
)
async def update_vector_store(
    store_id: int, body: VectorStoreRequest, service: VectorStoresDep
) -> VectorStoreResponse:
    stored = await service.update(store_id, body.to_config())
    return VectorStoreResponse.from_config(stored)


@router.delete("/vector-stores/{store_id}", status_code=204, responses=_ERRORS, summary="Delete a vector store")
async def delete_vector_store(store_id: int, service: VectorStoresDep) -> Response:
    await service.delete(store_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------


@router.get("/collections", response_model=list[Collection], summary="List collections")
async def list_collections(service: CollectionsDep) -> list[Collection]:
    return await service.list_collections()


@router.post(
    "/collections", response_model=Collection, status_code=201, responses=_ERRORS, summary="Create a collection"
)
async def create_collection(body: CreateCollectionRequest, service: CollectionsDep) -> Collection:
    return await service.create_collection(**body.model_dump())


@router.post(
    "/collections/copy",
    response_model=CollectionCopyResult,
    status_code=201,
    responses=_BACKEND_ERRORS,
    summary="Copy a collection, optionally with its documents and vectors",
)
async def copy_collection(body: CopyCollectionRequest, pipeline: PipelineDep) -> CollectionCopyResult:
    return await pipeline.copy_collection(
        body.source_collection_id,
        body.new_name,
        copy_documents=body.copy_documents,
        copy_vectors=body.copy_vectors,
    )


@router.get(
    "/collections/sync",
    response_model=CollectionSyncReport,
    responses=_BACKEND_ERRORS,
    summary="Compare a vector store's namespaces with its collections",
)
async def check_collection_sync(vector_store_id: int, service: CollectionsDep) -> CollectionSyncReport:
    return await service.sync_collections(vector_store_id, apply=False)


@router.post(
    "/collections/sync",
    response_model=CollectionSyncReport,
    responses=_BACKEND_ERRORS,
    summary="Add rows for unknown namespaces and deactivate collections whose namespace is gone",
)
async def sync_collections(body: SyncCollectionsRequest, service: CollectionsDep) -> CollectionSyncReport:
    return await service.sync_collections(body.vector_store_id)


@router.get("/collections/{collection_id}", response_model=Collection, responses=_ERRORS)
async def get_collection(collection_id: int, service: CollectionsDep) -> Collection:
    return await service.get_collection(collection_id)


@router.delete(
    "/collections/{collection_id}",
    status_code=204,
    responses=_ERRORS,
    summary="Delete an empty collection and its vector namespace",
)
async def delete_collection(collection_id: int, pipeline: PipelineDep) -> Response:
    await pipeline.delete_collection(collection_id)
    return Response(status_code=204)


@router.get(
    "/collections/{collection_id}/stats",
    response_model=CollectionStats,
    responses=_ERRORS,
    summary="Document, chunk and vector counts for a collection",
)
async def collection_stats(collection_id: int, service: CollectionsDep) -> CollectionStats:
    return await service.collection_stats(collection_id)


@router.get(
    "/collections/{collection_id}/documents", response_model=list[DocumentResponse], responses=_ERRORS
)
async def list_documents(collection_id: int, service: CollectionsDep) -> list[DocumentResponse]:
    return [DocumentResponse.from_document(d) for d in await service.list_documents(collection_id)]


@router.post(
    "/collections/{collection_id}/documents",
    response_model=UploadResponse,
    status_code=201,
    responses=_ERRORS,
    summary="Upload a document, optionally processing it immediately",
)
async def upload_document(
    collection_id: int,
    file: UploadFile,
    pipeline: PipelineDep,
    title: Annotated[str | None, Form()] = None,
    metadata: Annotated[str | None, Form()] = None,
    process: Annotated[bool, Form()] = False,
    chunking_strategy_id: Annotated[int | None, Form()] = None,
    cleansing_config_id: Annotated[int | None, Form()] = None,
) -> UploadResponse:
    """Store the uploaded file as a ``pending`` document.

    With ``process=true`` the pipeline runs before the response is sent; a
    processing failure is reported in ``outcome`` rather than as an error.
    """
    data = await file.read()
    document, outcome = await pipeline.ingest(
        collection_id=collection_id,
        filename=file.filename or "upload",
        data=data,
        content_type=file.content_type,
        title=title,
        metadata=_parse_metadata(metadata),
        process=process,
        strategy_id=chunking_strategy_id,
        cleansing_config_id=cleansing_config_id,
    )
    return UploadResponse(document=DocumentResponse.from_document(document), outcome=outcome)


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


@router.get("/documents/{document_id}", response_model=DocumentResponse, responses=_ERRORS)
async def get_document(document_id: int, service: CollectionsDep) -> DocumentResponse:
    return DocumentResponse.from_document(await service.get_document(document_id))


@router.delete("/documents/{document_id}", status_code=204, responses=_ERRORS, summary="Delete a document")
async def delete_document(document_id: int, pipeline: PipelineDep) -> Response:
    await pipeline.delete_document(document_id)
    return Response(status_code=204)


@router.post(
    "/documents/{document_id}/process",
    response_model=ProcessingOutcome,
    responses=_BACKEND_ERRORS,
    summary="Run the processing pipeline for a pending document",
)
async def process_document(
    document_id: int, pipeline: PipelineDep, body: ProcessRequest | None = None
) -> ProcessingOutcome:
    overrides = body or ProcessRequest()
    return await pipeline.process(
        document_id,
        strategy_id=overrides.chunking_strategy_id,
        cleansing_config_id=overrides.cleansing_config_id,
    )


@router.post(
    "/documents/{document_id}/reprocess",
    response_model=ReprocessResponse,
    responses=_ERRORS,
    summary="Reset a failed document to pending",
)
async def reprocess_document(document_id: int, pipeline: PipelineDep) -> ReprocessResponse:
    message = await pipeline.reprocess(document_id)
    return ReprocessResponse(document_id=document_id, message=message)


@router.post(
    "/documents/{document_id}/content",
    response_model=DocumentResponse,
    responses=_ERRORS,
    summary="Supply new raw content for a pending document",
)
async def resupply_content(document_id: int, file: UploadFile, pipeline: PipelineDep) -> DocumentResponse:
    data = await file.read()
    document = await pipeline.resupply(document_id, data, file.filename, file.content_type)
    return DocumentResponse.from_document(document)


@router.post(
    "/documents/{document_id}/regenerate",
    response_model=UploadResponse,
    status_code=201,
    responses=_ERRORS,
    summary="Rebuild a document into a collection with a chosen strategy and cleansing config",
)
async def regenerate_document(document_id: int, body: RegenerateRequest, pipeline: PipelineDep) -> UploadResponse:
    """A processing failure is reported in ``outcome`` rather than as an error."""
    document, outcome = await pipeline.regenerate(
        document_id,
        body.collection_id,
        strategy_id=body.chunking_strategy_id,
        cleansing_config_id=body.cleansing_config_id,
        delete_original=body.delete_original,
        process=body.process,
    )
    return UploadResponse(document=DocumentResponse.from_document(document), outcome=outcome)


@router.get("/documents/{document_id}/chunks", response_model=ChunkListResponse, responses=_ERRORS)
async def list_chunks(document_id: int, service: CollectionsDep) -> ChunkListResponse:
    chunks = await service.list_chunks(document_id)
    return ChunkListResponse(document_id=document_id, chunks=chunks, total=len(chunks))


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


@router.post("/search", response_model=SearchResponse, responses=_BACKEND_ERRORS, summary="Semantic search")
async def search(body: SearchRequest, service: SearchDep) -> SearchResponse:
    result = await service.search(body.collection_id, body.query, body.top_k, body.filter)
    return SearchResponse(**result, total=len(result["results"]))


# ---------------------------------------------------------------------------
# Chunking strategies
# ---------------------------------------------------------------------------


@router.get("/chunking-strategies", response_model=list[ChunkingStrategy])
async def list_strategies(service: ConfigDep) -> list[ChunkingStrategy]:
    return await service.list_strategies()


@router.post("/chunking-strategies", response_model=ChunkingStrategy, status_code=201, responses=_ERRORS)
async def create_strategy(body: ChunkingStrategyRequest, service: ConfigDep) -> ChunkingStrategy:
    return await service.create_strategy(body.to_model())


@router.put("/chunking-strategies/{strategy_id}", response_model=ChunkingStrategy, responses=_ERRORS)
async def update_strategy(strategy_id: int, body: ChunkingStrategyRequest, service: ConfigDep) -> ChunkingStrategy:
    return await service.update_strategy(strategy_id, body.to_model())


@router.delete("/chunking-strategies/{strategy_id}", status_code=204, responses=_ERRORS)
async def delete_strategy(strategy_id: int, service: ConfigDep) -> Response:
    await service.delete_strategy(strategy_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Cleansing configs
# ---------------------------------------------------------------------------


@router.get("/cleansing-configs", response_model=list[CleansingConfig])
async def list_cleansing_configs(service: ConfigDep) -> list[CleansingConfig]:
    return await service.list_cleansing_configs()


@router.post("/cleansing-configs", response_model=CleansingConfig, status_code=201, responses=_ERRORS)
async def create_cleansing_config(body: CleansingConfigRequest, service: ConfigDep) -> CleansingConfig:
    return await service.create_cleansing_config(body.to_model())


@router.put("/cleansing-configs/{config_id}", response_model=CleansingConfig, responses=_ERRORS)
async def update_cleansing_config(
    config_id: int, body: CleansingConfigRequest, service: ConfigDep
) -> CleansingConfig:
    return await service.update_cleansing_config(config_id, body.to_model())


@router.delete("/cleansing-configs/{config_id}", status_code=204, responses=_ERRORS)
async def delete_cleansing_config(config_id: int, service: ConfigDep) -> Response:
    await service.delete_cleansing_config(config_id)
    return Response(status_code=204)
