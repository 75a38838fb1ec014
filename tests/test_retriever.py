"""
Tests for hybrid context retrieval

Semantic path, keyword fallback, per-collection failure isolation and
personalization.
"""
import asyncio

import pytest
from unittest.mock import AsyncMock, Mock

from pagestream_api.core.vector_index import VectorMatch
from pagestream_api.models.schemas import ProductRecord, RecipeRecord
from pagestream_api.models.sessions import UserProfile
from pagestream_api.pipeline.classifier import classify
from pagestream_api.pipeline.retriever import (
    ContextRetriever,
    boost_preferred_series,
    score_recipes_by_diet,
)


def failing_store():
    """Store whose every query raises"""
    store = Mock()
    for name in (
        "search_products", "search_recipes", "search_faqs", "search_videos",
        "get_products_by_skus", "get_recipes_by_slugs", "get_faqs_by_ids", "get_videos_by_ids",
    ):
        setattr(store, name, AsyncMock(side_effect=RuntimeError("database unavailable")))
    return store


class TestKeywordRetrieval:
    """Keyword search against the seeded catalog"""

    @pytest.mark.asyncio
    async def test_model_comparison_finds_both_series(self, catalog):
        """Each compared series contributes at least one product"""
        classification = classify("Ascent X5 vs Explorian E310")
        context = await ContextRetriever(catalog).retrieve("Ascent X5 vs Explorian E310", classification)

        series = {p.series for p in context.products}
        assert any(s.startswith("Ascent") for s in series)
        assert "Explorian" in series

    @pytest.mark.asyncio
    async def test_only_policy_collections_are_queried(self):
        """A recipe query never touches the product table"""
        store = Mock()
        store.search_products = AsyncMock(return_value=[])
        store.search_recipes = AsyncMock(return_value=[])
        store.search_faqs = AsyncMock(return_value=[])
        store.search_videos = AsyncMock(return_value=[])

        await ContextRetriever(store).retrieve("how to make soup", classify("how to make soup"))

        store.search_products.assert_not_called()
        store.search_recipes.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_support_query_gets_faqs(self, catalog):
        query = "how do I clean my blender, it has a smell"
        context = await ContextRetriever(catalog).retrieve(query, classify(query))
        assert any("clean" in f.question.lower() for f in context.faqs)


class TestFailureIsolation:
    """Backend failures degrade to empty lists"""

    @pytest.mark.asyncio
    async def test_all_backends_down(self):
        """Vector index, embedder and store all failing still yields a context"""
        index = Mock()
        index.query = AsyncMock(side_effect=ConnectionError("index down"))
        embedder = Mock()
        embedder.embed = AsyncMock(side_effect=TimeoutError("embed timeout"))

        retriever = ContextRetriever(failing_store(), index=index, embedder=embedder)
        context = await retriever.retrieve("best blender", classify("best blender"))

        assert context.counts() == {"products": 0, "recipes": 0, "faqs": 0, "videos": 0}

    @pytest.mark.asyncio
    async def test_one_collection_failure_does_not_block_others(self, catalog):
        catalog.search_faqs = AsyncMock(side_effect=RuntimeError("faq table locked"))
        query = "Ascent warranty"
        context = await ContextRetriever(catalog).retrieve(query, classify(query))

        assert context.faqs == []
        assert context.products

    @pytest.mark.asyncio
    async def test_slow_collection_times_out(self, catalog, monkeypatch):
        from pagestream_api.core.config import settings
        monkeypatch.setattr(settings, "store_timeout", 0.5)

        async def hang(*args, **kwargs):
            await asyncio.sleep(10)

        catalog.search_videos = hang
        query = "Ascent blender"
        context = await ContextRetriever(catalog).retrieve(query, classify(query))
        assert context.videos == []
        assert context.products


class TestSemanticRetrieval:
    """Vector search mapped back to catalog rows"""

    @pytest.mark.asyncio
    async def test_matches_map_to_records(self, catalog):
        index = Mock()
        index.query = AsyncMock(return_value=[
            VectorMatch(id="p:E310", score=0.92, metadata={"sku": "E310"}),
            VectorMatch(id="p:A3500", score=0.88, metadata={"sku": "A3500"}),
            VectorMatch(id="p:P750", score=0.2, metadata={"sku": "P750"}),
        ])
        embedder = Mock()
        embedder.embed = AsyncMock(return_value=[0.1, 0.2, 0.3])

        query = "Ascent X5 vs Explorian E310"
        context = await ContextRetriever(catalog, index=index, embedder=embedder).retrieve(query, classify(query))

        # ranked order preserved, low scores dropped
        assert [p.sku for p in context.products] == ["E310", "A3500"]
        embedder.embed.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_matches_falls_back_to_keywords(self, catalog):
        index = Mock()
        index.query = AsyncMock(return_value=[])
        embedder = Mock()
        embedder.embed = AsyncMock(return_value=[0.1, 0.2])

        query = "Explorian blender"
        context = await ContextRetriever(catalog, index=index, embedder=embedder).retrieve(query, classify(query))
        assert any(p.sku == "E310" for p in context.products)


class TestPersonalization:
    """Dietary re-scoring and preferred-series partitioning"""

    def test_diet_scoring_prefers_direct_then_related(self):
        recipes = [
            RecipeRecord(slug="plain", title="Plain", dietary=[]),
            RecipeRecord(slug="low-carb", title="Low Carb", dietary=["low-carb"]),
            RecipeRecord(slug="keto", title="Keto", dietary=["keto"]),
        ]
        ranked = score_recipes_by_diet(recipes, ["keto"], top_k=2)
        assert [r.slug for r in ranked] == ["keto", "low-carb"]

    def test_series_boost_is_stable_partition(self):
        products = [
            ProductRecord(sku="E310", name="Explorian E310", series="Explorian"),
            ProductRecord(sku="A3500", name="Ascent X5", series="Ascent X"),
            ProductRecord(sku="P750", name="Propel 750", series="Propel"),
            ProductRecord(sku="A2500", name="Ascent A2500", series="Ascent"),
        ]
        boosted = boost_preferred_series(products, ["Ascent"])
        assert [p.sku for p in boosted] == ["A3500", "A2500", "E310", "P750"]

    @pytest.mark.asyncio
    async def test_profile_applied_to_retrieval(self, catalog):
        profile = UserProfile(dietary_preferences=["keto"])
        query = "smoothie recipes for breakfast"
        context = await ContextRetriever(catalog).retrieve(query, classify(query), profile)
        assert context.recipes
        assert context.recipes[0].slug == "keto-chocolate-shake/"

    def test_direct_and_related_scores_add_up(self):
        """A recipe tagged both keto and low-carb outranks a keto-only one"""
        recipes = [
            RecipeRecord(slug="keto-only", title="Keto Only", dietary=["keto"]),
            RecipeRecord(slug="keto-low-carb", title="Keto Low Carb", dietary=["keto", "low-carb"]),
        ]
        ranked = score_recipes_by_diet(recipes, ["keto"], top_k=2)
        assert [r.slug for r in ranked] == ["keto-low-carb", "keto-only"]


class TestResultLimits:
    """Keyword results are cut back to the policy's top_k"""

    @staticmethod
    def filling_store():
        """Store that returns as many rows as the limit allows"""
        store = Mock()
        store.search_products = AsyncMock(side_effect=lambda terms, limit: [
            ProductRecord(sku=f"P{i}", name=f"Blender {i}", series="Ascent") for i in range(limit)
        ])
        store.search_recipes = AsyncMock(side_effect=lambda terms, limit: [
            RecipeRecord(slug=f"recipe-{i}", title=f"Smoothie {i}") for i in range(limit)
        ])
        store.search_faqs = AsyncMock(return_value=[])
        store.search_videos = AsyncMock(return_value=[])
        return store

    @pytest.mark.asyncio
    async def test_keyword_results_capped(self):
        query = "best blender for smoothies"
        classification = classify(query)
        top_k = classification.retrieval_policy.top_k

        context = await ContextRetriever(self.filling_store()).retrieve(query, classification)

        assert len(context.products) <= top_k
        assert len(context.recipes) <= top_k

    @pytest.mark.asyncio
    async def test_capped_after_series_boost(self):
        query = "best blender for smoothies"
        classification = classify(query)
        store = self.filling_store()
        store.search_products = AsyncMock(side_effect=lambda terms, limit: [
            ProductRecord(sku=f"E{i}", name=f"Explorian {i}", series="Explorian") for i in range(limit - 1)
        ] + [ProductRecord(sku="A3500", name="Ascent X5", series="Ascent X")])

        context = await ContextRetriever(store).retrieve(query, classification, UserProfile(preferred_series=["Ascent"]))

        assert context.products[0].sku == "A3500"
        assert len(context.products) == classification.retrieval_policy.top_k
