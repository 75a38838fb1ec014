"""Hybrid context retrieval

Semantic search first (embed the query, search the vector index, map ids back
to catalog rows). Keyword search over the relational store is the fallback
when the semantic path returns nothing or fails. Every collection is fetched
independently and a failed collection degrades to an empty list.
"""

import asyncio
import logging
from typing import Awaitable, Dict, List, Optional

from pagestream_api.core.config import settings
from pagestream_api.core.vector_index import PREFIX_FAQ, PREFIX_PRODUCT, PREFIX_RECIPE, PREFIX_VIDEO
from pagestream_api.models.schemas import (
    ClassificationResult,
    Collection,
    ProductRecord,
    RecipeRecord,
    RetrievedContext,
)
from pagestream_api.models.sessions import UserProfile
from pagestream_api.pipeline.classifier import augment_query

logger = logging.getLogger(__name__)

MAX_SEARCH_TERMS = 5
MAX_SECONDARY_TERMS = 3
MAX_VIDEOS = 5

# Tags that count as a partial match for a dietary preference
RELATED_DIETARY_TAGS: Dict[str, List[str]] = {
    "keto": ["low-carb", "low carb"],
    "vegan": ["plant-based", "dairy-free"],
    "gluten-free": ["celiac", "gf"],
}


class ContextRetriever:
    """
    Fetches products, recipes, FAQs and videos for a classified query.

    Args:
        store: CatalogStore-like object (keyword search and id lookups)
        index: vector index exposing async query(vector, top_k)
        embedder: object exposing async embed(text)
    """

    def __init__(self, store, index=None, embedder=None):
        self.store = store
        self.index = index
        self.embedder = embedder

    async def retrieve(
        self,
        query: str,
        classification: ClassificationResult,
        profile: Optional[UserProfile] = None,
    ) -> RetrievedContext:
        """Never raises; unavailable backends yield empty collections"""
        context: Optional[RetrievedContext] = None

        if self.index is not None and self.embedder is not None and query.strip():
            try:
                context = await self._semantic_search(query, classification)
            except Exception as e:
                logger.warning(f"[RETRIEVE] Semantic search failed, using keyword fallback: {e}")
                context = None

        if context is None or not any(context.counts().values()):
            context = await self._keyword_search(classification)

        context = self._personalize(context, classification, profile)
        logger.info(f"[RETRIEVE] type={classification.type.value} counts={context.counts()}")
        return context

    # ------------------------------------------------------------------
    # Semantic path
    # ------------------------------------------------------------------

    async def _semantic_search(self, query: str, classification: ClassificationResult) -> Optional[RetrievedContext]:
        policy = classification.retrieval_policy
        wanted = set(policy.collections)

        vector = await self.embedder.embed(augment_query(query, classification))
        matches = await asyncio.wait_for(
            self.index.query(vector, policy.top_k * 3),
            timeout=settings.store_timeout,
        )
        matches = [m for m in matches if m.score >= policy.min_score]
        if not matches:
            logger.info("[RETRIEVE] Semantic search returned no matches above min_score")
            return None

        skus: List[str] = []
        slugs: List[str] = []
        faq_ids: List[int] = []
        video_ids: List[str] = []
        for match in matches:
            if match.id.startswith(PREFIX_PRODUCT) and Collection.PRODUCTS in wanted:
                skus.append(match.metadata.get("sku") or match.id[len(PREFIX_PRODUCT):])
            elif match.id.startswith(PREFIX_RECIPE) and Collection.RECIPES in wanted:
                slugs.append(match.metadata.get("slug") or match.id[len(PREFIX_RECIPE):])
            elif match.id.startswith(PREFIX_FAQ) and Collection.FAQS in wanted:
                try:
                    faq_ids.append(int(match.id[len(PREFIX_FAQ):]))
                except ValueError:
                    continue
            elif match.id.startswith(PREFIX_VIDEO) and Collection.VIDEOS in wanted:
                video_ids.append(match.id[len(PREFIX_VIDEO):])

        top_k = policy.top_k
        products, recipes, faqs, videos = await asyncio.gather(
            self._safe("products", self.store.get_products_by_skus(skus[:top_k])) if skus else _empty(),
            self._safe("recipes", self.store.get_recipes_by_slugs(slugs[:top_k])) if slugs else _empty(),
            self._safe("faqs", self.store.get_faqs_by_ids(faq_ids[:top_k])) if faq_ids else _empty(),
            self._safe("videos", self.store.get_videos_by_ids(video_ids[:MAX_VIDEOS])) if video_ids else _empty(),
        )

        # FAQs and videos are sparsely embedded; top them up by keyword
        terms = classification.keywords[:MAX_SECONDARY_TERMS]
        if not faqs and Collection.FAQS in wanted:
            faqs = await self._safe("faqs", self.store.search_faqs(terms, top_k))
        if not videos and Collection.VIDEOS in wanted:
            videos = await self._safe("videos", self.store.search_videos(terms, min(top_k, MAX_VIDEOS)))

        return RetrievedContext(products=products, recipes=recipes, faqs=faqs, videos=videos)

    # ------------------------------------------------------------------
    # Keyword path
    # ------------------------------------------------------------------

    async def _keyword_search(self, classification: ClassificationResult) -> RetrievedContext:
        policy = classification.retrieval_policy
        wanted = set(policy.collections)
        terms = classification.keywords[:MAX_SEARCH_TERMS]
        secondary_terms = classification.keywords[:MAX_SECONDARY_TERMS]
        top_k = policy.top_k

        def search(collection: Collection, make_call) -> Awaitable[list]:
            if collection not in wanted:
                return _empty()
            return self._safe(collection.value, make_call())

        products, recipes, faqs, videos = await asyncio.gather(
            search(Collection.PRODUCTS, lambda: self.store.search_products(terms, top_k * 2)),
            search(Collection.RECIPES, lambda: self.store.search_recipes(terms, top_k * 2)),
            search(Collection.FAQS, lambda: self.store.search_faqs(secondary_terms, top_k)),
            search(Collection.VIDEOS, lambda: self.store.search_videos(secondary_terms, min(top_k, MAX_VIDEOS))),
        )
        return RetrievedContext(products=products, recipes=recipes, faqs=faqs, videos=videos)

    async def _safe(self, label: str, call: Awaitable[list]) -> list:
        """Await one collection query; any failure becomes an empty list"""
        try:
            return list(await asyncio.wait_for(call, timeout=settings.store_timeout))
        except Exception as e:
            logger.warning(f"[RETRIEVE] {label} query failed: {type(e).__name__}: {e}")
            return []

    # ------------------------------------------------------------------
    # Personalization
    # ------------------------------------------------------------------

    def _personalize(
        self,
        context: RetrievedContext,
        classification: ClassificationResult,
        profile: Optional[UserProfile],
    ) -> RetrievedContext:
        """Profile re-ranking, then products and recipes cut to the policy's top_k"""
        top_k = classification.retrieval_policy.top_k
        if profile is not None and profile.dietary_preferences and context.recipes:
            context.recipes = score_recipes_by_diet(context.recipes, profile.dietary_preferences, top_k)
        if profile is not None and profile.preferred_series and context.products:
            context.products = boost_preferred_series(context.products, profile.preferred_series)
        context.products = context.products[:top_k]
        context.recipes = context.recipes[:top_k]
        return context


async def _empty() -> list:
    return []


def score_recipes_by_diet(recipes: List[RecipeRecord], preferences: List[str], top_k: int) -> List[RecipeRecord]:
    """
    Re-rank recipes by dietary fit and keep the top K.

    A direct tag match scores 2 per preference and a related tag adds 1.
    Ties keep their retrieval order.
    """
    def score(recipe: RecipeRecord) -> int:
        tags = [tag.lower() for tag in recipe.dietary]
        total = 0
        for pref in preferences:
            pref = pref.lower()
            if any(pref in tag or tag in pref for tag in tags if tag):
                total += 2
            if any(related in tag for related in RELATED_DIETARY_TAGS.get(pref, []) for tag in tags):
                total += 1
        return total

    ranked = sorted(recipes, key=score, reverse=True)
    return ranked[:top_k]


def boost_preferred_series(products: List[ProductRecord], preferred: List[str]) -> List[ProductRecord]:
    """Stable partition: products in a preferred series first, order otherwise unchanged"""
    wanted = [series.lower() for series in preferred if series]

    def matches(product: ProductRecord) -> bool:
        series = product.series.lower()
        return bool(series) and any(pref in series or series in pref for pref in wanted)

    return [p for p in products if matches(p)] + [p for p in products if not matches(p)]
