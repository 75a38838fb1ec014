"""Visitor session endpoints"""

import logging

from fastapi import APIRouter

from pagestream_api.core.visitor_sessions import visitor_sessions
from pagestream_api.models.errors import ApplicationError, ErrorCode

logger = logging.getLogger(__name__)

router = APIRouter()


def _require_session(session_id: str):
    session = visitor_sessions.get(session_id)
    if session is None:
        raise ApplicationError(
            code=ErrorCode.NOT_FOUND,
            message="Visitor session not found or expired",
            session_id=session_id,
        )
    return session


@router.get("/sessions/{session_id}")
async def get_session(session_id: str):
    """Query history, inferred profile and journey stage"""
    return _require_session(session_id).model_dump(mode="json")


@router.post("/sessions/{session_id}/conversion")
async def record_conversion(session_id: str):
    """Mark a purchase or sign-up; moves the visitor to the deciding stage"""
    session = visitor_sessions.record_conversion(_require_session(session_id))
    logger.info(f"[SESSION] Conversion recorded for {session_id} (total={session.metadata.conversions})")
    return {
        "sessionId": session.id,
        "conversions": session.metadata.conversions,
        "journeyStage": session.journey_stage.value,
    }
