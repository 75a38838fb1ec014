"""Generation state machine

CLASSIFICATION → RETRIEVAL → HERO → CONTENT → VALIDATION → LAYOUT → RENDERING → [IMAGES] → COMPLETE
                 ↘──────────────────────────ERROR───────────────────────────↗
"""

import logging
from enum import Enum
from typing import Dict, Any, Optional
from datetime import datetime

logger = logging.getLogger(__name__)

MAX_EVENT_LOG = 50


class GenerationPhase(str, Enum):
    """Pipeline phases, in stream order"""
    CLASSIFICATION = "classification"
    RETRIEVAL = "retrieval"
    HERO = "hero"
    CONTENT = "content"
    VALIDATION = "validation"
    LAYOUT = "layout"
    RENDERING = "rendering"
    IMAGES = "images"
    COMPLETE = "complete"
    ERROR = "error"


class GenerationSession:
    """
    Server-side record of one generation stream.

    Only the phase log and the last delivered event index are kept; a resumed
    stream re-runs the pipeline and uses last_event_index to skip what the
    client already has.
    """

    def __init__(self, session_id: str, query: str):
        self.session_id = session_id
        self.query = query
        self.phase: Optional[GenerationPhase] = None
        self.started_at: Optional[datetime] = None
        self.last_updated: Optional[datetime] = None
        self.last_event_index = 0
        self.event_count = 0
        self.attempts = 0
        self.metadata: Dict[str, Any] = {}
        self.event_log: list = []
        self.query_recorded = False

    def start_attempt(self, query: str):
        """A new (or resumed) stream for this session"""
        self.query = query
        self.attempts += 1
        self.event_count = 0
        self.last_updated = datetime.utcnow()
        if not self.started_at:
            self.started_at = self.last_updated

    def log_event(self, phase: GenerationPhase, detail: str):
        """Record a phase transition"""
        now = datetime.utcnow()
        self.event_log.append({
            "ts": now.isoformat() + "Z",
            "phase": phase.value,
            "detail": detail,
        })
        if len(self.event_log) > MAX_EVENT_LOG:
            del self.event_log[:-MAX_EVENT_LOG]
        self.phase = phase
        self.last_updated = now
        logger.debug(f"[GenerationSession] {self.session_id}: {detail} (phase: {phase.value})")

    def mark_delivered(self, event_index: int):
        """Remember the highest event index written to the client"""
        self.event_count += 1
        if event_index > self.last_event_index:
            self.last_event_index = event_index
        self.last_updated = datetime.utcnow()

    def get_latest_event(self):
        if not self.event_log:
            return None
        return self.event_log[-1]

    def is_terminal(self) -> bool:
        return self.phase in (GenerationPhase.COMPLETE, GenerationPhase.ERROR)
