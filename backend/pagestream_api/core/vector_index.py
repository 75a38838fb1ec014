"""Vector similarity index for catalog items

Identifiers are prefixed by collection: p:<sku>, r:<slug>, f:<faq id>, v:<video id>.
"""

import math
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

PREFIX_PRODUCT = "p:"
PREFIX_RECIPE = "r:"
PREFIX_FAQ = "f:"
PREFIX_VIDEO = "v:"


@dataclass
class VectorMatch:
    """A scored identifier returned by a similarity query"""
    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class VectorItem:
    id: str
    values: List[float]
    metadata: Dict[str, Any] = field(default_factory=dict)


def _cosine_similarity(vec_a: Optional[List[float]], vec_b: Optional[List[float]]) -> float:
    if not vec_a or not vec_b or len(vec_a) != len(vec_b):
        return -1.0

    dot = sum(a * b for a, b in zip(vec_a, vec_b))
    norm_a = math.sqrt(sum(a * a for a in vec_a))
    norm_b = math.sqrt(sum(b * b for b in vec_b))

    if norm_a == 0.0 or norm_b == 0.0:
        return -1.0
    return dot / (norm_a * norm_b)


class InMemoryVectorIndex:
    """
    Process-local vector index with exact cosine search.

    Sized for a product catalog of a few thousand items; a hosted index can
    replace it as long as it exposes the same upsert/query pair.
    """

    def __init__(self):
        self._items: Dict[str, VectorItem] = {}

    def __len__(self) -> int:
        return len(self._items)

    async def upsert(self, items: List[VectorItem]) -> int:
        for item in items:
            self._items[item.id] = item
        logger.info(f"[VECTOR] Upserted {len(items)} vectors (total={len(self._items)})")
        return len(items)

    async def query(self, vector: List[float], top_k: int) -> List[VectorMatch]:
        scored = [
            VectorMatch(id=item.id, score=_cosine_similarity(vector, item.values), metadata=item.metadata)
            for item in self._items.values()
        ]
        scored.sort(key=lambda match: match.score, reverse=True)
        return scored[:top_k]


# Global index instance
vector_index = InMemoryVectorIndex()
