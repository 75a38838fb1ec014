"""GET /api/stream - generated page as Server-Sent Events"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from pagestream_api.core.catalog_store import catalog_store
from pagestream_api.core.config import settings
from pagestream_api.core.openai_client import openai_client
from pagestream_api.core.state_machine import GenerationSession
from pagestream_api.core.vector_index import vector_index
from pagestream_api.core.visitor_sessions import visitor_sessions
from pagestream_api.models.errors import ApplicationError, ErrorCode
from pagestream_api.pipeline.generator import ContentGenerator
from pagestream_api.pipeline.layout import LayoutSelector
from pagestream_api.pipeline.orchestrator import PipelineOrchestrator
from pagestream_api.pipeline.retriever import ContextRetriever

logger = logging.getLogger(__name__)

router = APIRouter()

# In-memory generation sessions keyed by visitor session id, one per query (in production, use Redis or similar)
session_store = {}

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def get_orchestrator() -> PipelineOrchestrator:
    """Pipeline wired to the process-wide clients"""
    return PipelineOrchestrator(
        generator=ContentGenerator(openai_client),
        layout_selector=LayoutSelector(openai_client),
        retriever=ContextRetriever(catalog_store, vector_index, openai_client),
        store=catalog_store,
        image_service=openai_client,
        visitor_store=visitor_sessions,
    )


@router.get("/stream")
async def stream_page(
    request: Request,
    query: Optional[str] = Query(default=None),
    session_id: Optional[str] = Query(default=None, alias="sessionId"),
    resume_from: int = Query(default=0, alias="resumeFrom", ge=0),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    """
    Stream one generated page.

    Events: progress, classification, retrieval, block, generation, validation,
    layout, block-errors, images-started, image-ready, images-complete,
    complete, error. Every event's data carries eventIndex.

    Query params:
        query: the visitor's question (required; may be empty)
        sessionId: visitor session id, created when absent
        resumeFrom: last eventIndex the client received
    """
    if query is None:
        raise ApplicationError(
            code=ErrorCode.INVALID_QUERY,
            message="Missing query parameter",
            hint="Pass the visitor's question as ?query=...",
        )

    visitor = visitor_sessions.get_or_create(
        session_id,
        user_agent=request.headers.get("user-agent"),
        referrer=request.headers.get("referer"),
    )
    generation = session_store.get(visitor.id)
    # Only a resume of the same query continues the previous generation
    if generation is None or resume_from == 0 or generation.query != query:
        generation = GenerationSession(visitor.id, query)
        session_store[visitor.id] = generation

    logger.info(
        f"[SSE] Stream requested session={visitor.id} resumeFrom={resume_from} "
        f"previousLastEvent={generation.last_event_index}"
    )

    async def generate():
        try:
            async for event in orchestrator.run(query, visitor, generation, resume_from):
                yield event.encode()
        except asyncio.CancelledError:
            logger.info(
                f"[SSE] Client disconnected session={visitor.id} lastEvent={generation.last_event_index}"
            )
            raise

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={**SSE_HEADERS, "X-Session-Id": visitor.id},
    )


@router.get("/stream/sessions/{session_id}")
async def stream_status(session_id: str):
    """Last delivered event index and phase for a generation session"""
    generation = session_store.get(session_id)
    if generation is None:
        raise ApplicationError(code=ErrorCode.NOT_FOUND, message="Session not found", session_id=session_id)
    latest = generation.get_latest_event()
    return {
        "sessionId": session_id,
        "phase": generation.phase.value if generation.phase else None,
        "lastEventIndex": generation.last_event_index,
        "attempts": generation.attempts,
        "finished": generation.is_terminal(),
        "latestEvent": latest,
    }


async def cleanup_old_sessions() -> None:
    """Periodically clean up generation sessions idle past their TTL"""
    while True:
        try:
            await asyncio.sleep(300)

            cutoff_time = datetime.utcnow() - timedelta(minutes=settings.generation_session_ttl_minutes)
            sessions_to_remove = [
                sid for sid, state in session_store.items()
                if state.last_updated and state.last_updated < cutoff_time
            ]
            for sid in sessions_to_remove:
                del session_store[sid]

            if sessions_to_remove:
                logger.info(f"[SSE] Cleaned up {len(sessions_to_remove)} old generation sessions")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in cleanup_old_sessions: {e}", exc_info=True)
