"""
Request-scoped telemetry for the generation pipeline.

Provides:
1. Request ID tracking across pipeline stages
2. Per-stage timing
3. Error context enrichment for logs
"""

import time
import uuid
import logging
from typing import Dict, Any, Optional, List
from contextlib import contextmanager
from dataclasses import dataclass, field, asdict
from datetime import datetime

logger = logging.getLogger(__name__)


def new_request_id() -> str:
    """Short request identifier, e.g. req_3f9a1c2b7d4e"""
    return f"req_{uuid.uuid4().hex[:12]}"


@dataclass
class RequestContext:
    """
    Context that flows through every stage of one generation request.
    Carries the correlation data used in log prefixes.
    """
    request_id: str = field(default_factory=new_request_id)
    session_id: Optional[str] = None
    query: str = ""
    phase: str = "init"
    stage_timings: Dict[str, float] = field(default_factory=dict)
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def with_phase(self, phase: str) -> 'RequestContext':
        """Move the context into a new phase (mutates and returns self)"""
        self.phase = phase
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for logging"""
        data = asdict(self)
        data.pop("errors", None)
        return {k: v for k, v in data.items() if v is not None}

    def log_prefix(self) -> str:
        """Generate consistent log prefix"""
        parts = [
            f"[{self.phase.upper()}]",
            f"req={self.request_id}",
            f"session={self.session_id[:8] if self.session_id else 'none'}",
        ]
        return " ".join(parts)


@dataclass
class PerformanceMetrics:
    """Track performance timing for operations"""
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None
    duration_ms: Optional[float] = None

    def complete(self):
        """Mark operation as complete"""
        self.end_time = time.time()
        self.duration_ms = (self.end_time - self.start_time) * 1000


@contextmanager
def track_stage(context: RequestContext, stage: str):
    """
    Time one pipeline stage and record it on the request context.

    Usage:
        with track_stage(ctx, "retrieval"):
            context = await retrieve(...)
    """
    context.with_phase(stage)
    metrics = PerformanceMetrics()
    success = False
    try:
        yield metrics
        success = True
    finally:
        metrics.complete()
        context.stage_timings[stage] = round(metrics.duration_ms, 2)
        logger.info(
            f"{context.log_prefix()} STAGE_COMPLETE | "
            f"success={success} | "
            f"duration={metrics.duration_ms:.0f}ms"
        )


def enrich_error_context(
    error: Exception,
    context: RequestContext,
    additional_context: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Enrich error with full context for debugging.

    Returns a structured error dict and records it on the context.
    """
    error_data = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "timestamp": datetime.utcnow().isoformat(),
        **context.to_dict()
    }

    if additional_context:
        error_data["additional_context"] = additional_context

    context.errors.append(error_data)
    logger.error(
        f"{context.log_prefix()} ERROR | "
        f"type={error_data['error_type']} | "
        f"message={error_data['error_message'][:200]}",
        exc_info=error
    )

    return error_data
