# =============================================================================
# Ingestion & Search API: Plain-Text Documents
# =============================================================================
#
# ENDPOINTS:
#   POST /ingest  - chunk, embed, persist, then index one document (201)
#   POST /search  - top-k chunks for a query
#
# DESIGN DECISION: Synchronous ingestion (no task queue).
# Input is plain text, so the only slow step is the embedding call. The
# document is searchable as soon as the response returns.
# =============================================================================

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from consensus_engine.api.deps import get_retriever
from consensus_engine.db.engine import get_async_session
from consensus_engine.errors import EmbeddingFailed, EmptyCorpus, InvalidArgument
from consensus_engine.models.requests import IngestRequest, SearchRequest
from consensus_engine.models.responses import IngestResponse, SearchHit, SearchResponse
from consensus_engine.services.retrieval import Retriever

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Retrieval"])


@router.post(
    "/ingest",
    response_model=IngestResponse,
    status_code=201,
    summary="Ingest a plain-text document for retrieval",
)
async def ingest_endpoint(
    request: IngestRequest,
    retriever: Retriever = Depends(get_retriever),
    session: AsyncSession = Depends(get_async_session),
) -> IngestResponse:
    try:
        ingested = await retriever.ingest(
            request.document_name, request.text, session=session,
        )
    except InvalidArgument as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except EmbeddingFailed as e:
        logger.error("Ingestion of '%s' failed: %s", request.document_name, e)
        raise HTTPException(status_code=502, detail=str(e)) from e

    return IngestResponse(
        document_id=ingested.document_id,
        document_name=ingested.document_name,
        chunk_count=ingested.chunk_count,
    )


@router.post(
    "/search",
    response_model=SearchResponse,
    summary="Find the chunks most similar to a query",
)
async def search_endpoint(
    request: SearchRequest,
    retriever: Retriever = Depends(get_retriever),
) -> SearchResponse:
    try:
        result = await retriever.search(request.query, request.k)
    except EmptyCorpus:
        return SearchResponse(query=request.query, results=[])
    except InvalidArgument as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except EmbeddingFailed as e:
        raise HTTPException(status_code=502, detail=str(e)) from e

    return SearchResponse(
        query=request.query,
        results=[
            SearchHit(
                chunk_id=hit.chunk.chunk_id,
                document_id=hit.chunk.document_id,
                document_name=hit.chunk.document_name,
                ordinal=hit.chunk.ordinal,
                content=hit.chunk.text,
                similarity_score=hit.score,
            )
            for hit in result.hits
        ],
    )
