"""Visitor session store - query history, inferred profile and journey stage"""

import asyncio
import logging
import re
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from pagestream_api.core.config import settings
from pagestream_api.models.sessions import (
    JourneyStage,
    PriceRange,
    QueryHistoryItem,
    VisitorSession,
)

logger = logging.getLogger(__name__)

MAX_QUERIES_PER_SESSION = 20
MAX_PROFILE_ITEMS = 10
RECENT_QUERY_WINDOW = 5
COMPARING_QUERY_COUNT = 3

COMPARISON_PATTERN = re.compile(r"compare|vs|versus|difference|better", re.I)
SPECIFIC_PRODUCT_PATTERN = re.compile(r"ascent\s*x\d|e\d{3}|a\d{4}|propel|venturist", re.I)
BUYING_INTENT_PATTERN = re.compile(r"buy|purchase|order|price|cost|where to get", re.I)

INTEREST_PATTERNS = [
    (re.compile(r"smoothie|juice|blend"), "smoothies"),
    (re.compile(r"soup|hot|warm"), "soups"),
    (re.compile(r"nut butter|almond|peanut"), "nut-butters"),
    (re.compile(r"frozen|ice cream|sorbet"), "frozen-desserts"),
]
SERIES_PATTERNS = [
    (re.compile(r"ascent\s*x"), "Ascent X"),
    (re.compile(r"explorian|e\d{3}"), "Explorian"),
    (re.compile(r"propel"), "Propel"),
]
DIETARY_PATTERNS = [
    (re.compile(r"vegan|plant.?based"), "vegan"),
    (re.compile(r"keto|low.?carb"), "keto"),
    (re.compile(r"gluten.?free"), "gluten-free"),
]


def _add_to_set(values: List[str], item: str):
    """Append if absent; drop the oldest entry past MAX_PROFILE_ITEMS"""
    if item in values:
        return
    values.append(item)
    if len(values) > MAX_PROFILE_ITEMS:
        values.pop(0)


def infer_journey_stage(session: VisitorSession) -> JourneyStage:
    recent = [q.query for q in session.queries[:RECENT_QUERY_WINDOW]]

    if any(BUYING_INTENT_PATTERN.search(q) for q in recent) or session.metadata.conversions > 0:
        return JourneyStage.DECIDING
    if (
        any(COMPARISON_PATTERN.search(q) for q in recent)
        or any(SPECIFIC_PRODUCT_PATTERN.search(q) for q in recent)
        or len(session.queries) >= COMPARING_QUERY_COUNT
    ):
        return JourneyStage.COMPARING
    return JourneyStage.EXPLORING


def update_profile(session: VisitorSession, query: str, budget: Optional[float] = None):
    lower = query.lower()
    profile = session.profile
    for pattern, interest in INTEREST_PATTERNS:
        if pattern.search(lower):
            _add_to_set(profile.interests, interest)
    for pattern, series in SERIES_PATTERNS:
        if pattern.search(lower):
            _add_to_set(profile.preferred_series, series)
    for pattern, diet in DIETARY_PATTERNS:
        if pattern.search(lower):
            _add_to_set(profile.dietary_preferences, diet)
    if budget:
        profile.price_range = PriceRange(min=0, max=budget)


def build_session_context(session: VisitorSession) -> str:
    """Visitor summary appended to the content prompt"""
    profile = session.profile
    lines = [
        f"**Journey Stage:** {session.journey_stage.value}",
        f"**Interests:** {', '.join(profile.interests) or 'general'}",
        f"**Preferred Series:** {', '.join(profile.preferred_series) or 'any'}",
        f"**Dietary Preferences:** {', '.join(profile.dietary_preferences) or 'none specified'}",
        f"**Total Queries This Session:** {session.metadata.total_queries}",
    ]
    recent = session.queries[:RECENT_QUERY_WINDOW]
    if recent:
        lines.append("")
        lines.append("**Recent Queries:**")
        lines.extend(f'- "{q.query}" ({q.query_type})' for q in recent)
    return "\n".join(lines)


class VisitorSessionStore:
    """
    In-memory visitor sessions with a sliding TTL.

    Every read or write refreshes last_activity; sessions idle past the TTL
    are treated as missing and removed by cleanup().
    """

    def __init__(self, ttl_days: Optional[int] = None):
        self.sessions: Dict[str, VisitorSession] = {}
        self.ttl = timedelta(days=ttl_days if ttl_days is not None else settings.visitor_session_ttl_days)

    def _expired(self, session: VisitorSession) -> bool:
        return session.last_activity + self.ttl < datetime.utcnow()

    def get(self, session_id: str) -> Optional[VisitorSession]:
        session = self.sessions.get(session_id)
        if session is None:
            return None
        if self._expired(session):
            del self.sessions[session_id]
            return None
        return session

    def get_or_create(
        self,
        session_id: Optional[str] = None,
        user_agent: Optional[str] = None,
        referrer: Optional[str] = None,
    ) -> VisitorSession:
        if session_id:
            existing = self.get(session_id)
            if existing is not None:
                existing.last_activity = datetime.utcnow()
                return existing

        session = VisitorSession(id=session_id or uuid.uuid4().hex[:16])
        session.metadata.user_agent = user_agent
        session.metadata.referrer = referrer
        self.sessions[session.id] = session
        logger.info(f"[SESSION] Created visitor session {session.id}")
        return session

    def add_query(
        self,
        session: VisitorSession,
        query: str,
        query_type: str,
        page_path: Optional[str] = None,
        budget: Optional[float] = None,
    ) -> VisitorSession:
        """Record a query (newest first), then refresh journey stage and profile"""
        session.queries.insert(0, QueryHistoryItem(
            query=query,
            timestamp=datetime.utcnow().isoformat() + "Z",
            query_type=query_type,
            generated_page_path=page_path,
        ))
        del session.queries[MAX_QUERIES_PER_SESSION:]
        session.metadata.total_queries += 1
        session.journey_stage = infer_journey_stage(session)
        update_profile(session, query, budget)
        session.last_activity = datetime.utcnow()
        self.sessions[session.id] = session
        return session

    def record_conversion(self, session: VisitorSession) -> VisitorSession:
        session.metadata.conversions += 1
        session.journey_stage = JourneyStage.DECIDING
        session.last_activity = datetime.utcnow()
        return session

    def cleanup(self) -> int:
        expired = [sid for sid, session in self.sessions.items() if self._expired(session)]
        for sid in expired:
            del self.sessions[sid]
        return len(expired)


# Global store instance
visitor_sessions = VisitorSessionStore()


async def cleanup_visitor_sessions() -> None:
    """Periodically drop visitor sessions idle past their TTL"""
    while True:
        try:
            await asyncio.sleep(3600)
            removed = visitor_sessions.cleanup()
            if removed:
                logger.info(f"[SESSION] Cleaned up {removed} expired visitor sessions")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in cleanup_visitor_sessions: {e}", exc_info=True)
