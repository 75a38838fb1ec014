"""
Tests for hero and content-atom generation

The completion client is an AsyncMock; no network calls are made.
"""
import json

import pytest
from unittest.mock import AsyncMock

from pagestream_api.models.errors import ApplicationError, ErrorCode
from pagestream_api.models.schemas import ProductRecord, RetrievedContext
from pagestream_api.pipeline.classifier import classify
from pagestream_api.pipeline.generator import (
    FALLBACK_TITLE,
    HERO_FALLBACK,
    ContentGenerator,
    build_special_context,
    build_user_prompt,
    select_recommended_product,
)


PRODUCTS = [
    ProductRecord(sku="A3500", name="Ascent X5", series="Ascent X", price=749.95,
                  features=["Touchscreen controls"], specs={"noise_db": 88}),
    ProductRecord(sku="A2500", name="Ascent A2500", series="Ascent", price=549.95,
                  features=["Variable speed"], specs={"Noise Level": "86 dB"}),
    ProductRecord(sku="E310", name="Explorian E310", series="Explorian", price=349.95,
                  features=["Pulse"], specs={"noise_db": 94}),
]


class TestHeroGeneration:
    """Fast hero call and its fixed fallback"""

    @pytest.mark.asyncio
    async def test_parses_hero(self, completion_client):
        completion_client.complete.return_value = json.dumps({
            "title": "Find Your Perfect Blender",
            "subtitle": "Compare Ascent and Explorian side by side.",
            "imageHint": "two blenders on a counter",
        })
        hero = await ContentGenerator(completion_client).generate_hero("compare blenders", classify("compare blenders"))

        assert hero.title == "Find Your Perfect Blender"
        assert hero.image_hint == "two blenders on a counter"

    @pytest.mark.asyncio
    async def test_empty_query_returns_fallback_without_calling(self, completion_client):
        hero = await ContentGenerator(completion_client).generate_hero("", classify(""))

        assert hero == HERO_FALLBACK
        completion_client.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_unparseable_hero_returns_fallback(self, completion_client):
        completion_client.complete.return_value = "Here is a great hero for you!"
        hero = await ContentGenerator(completion_client).generate_hero("soup", classify("soup"))
        assert hero == HERO_FALLBACK

    @pytest.mark.asyncio
    async def test_service_error_returns_fallback(self, completion_client):
        completion_client.complete.side_effect = ApplicationError(
            code=ErrorCode.COMPLETION_TIMEOUT, message="timed out", retryable=True
        )
        hero = await ContentGenerator(completion_client).generate_hero("soup", classify("soup"))
        assert hero == HERO_FALLBACK

    @pytest.mark.asyncio
    async def test_missing_fields_use_fallback_values(self, completion_client):
        completion_client.complete.return_value = '{"title": "Soup Season"}'
        hero = await ContentGenerator(completion_client).generate_hero("soup", classify("soup"))
        assert hero.title == "Soup Season"
        assert hero.subtitle == HERO_FALLBACK.subtitle


class TestAtomGeneration:
    """Content atoms and the four-tier parse fallback"""

    @pytest.mark.asyncio
    async def test_fenced_response(self, completion_client):
        payload = {
            "title": "Ascent vs Explorian",
            "description": "Side by side",
            "atoms": [
                {"type": "heading", "content": {"text": "Ascent vs Explorian", "level": 1}},
                {"type": "comparison", "content": {"products": []}},
            ],
            "suggestedBlocks": ["hero", "comparison-cards"],
        }
        completion_client.complete.return_value = f"```json\n{json.dumps(payload)}\n```"

        result = await ContentGenerator(completion_client).generate_atoms(
            "Ascent X5 vs Explorian E310", classify("Ascent X5 vs Explorian E310"), RetrievedContext()
        )

        assert result.title == "Ascent vs Explorian"
        assert len(result.atoms) == 2
        assert result.suggested_blocks == ["hero", "comparison-cards"]
        assert result.metadata.used_fallback is False

    @pytest.mark.asyncio
    async def test_garbage_returns_fixed_fallback(self, completion_client):
        """Unparseable text yields the apology payload, never an exception"""
        completion_client.complete.return_value = "I'm sorry, as an AI I can't produce JSON today."

        result = await ContentGenerator(completion_client).generate_atoms(
            "anything", classify("anything"), RetrievedContext()
        )

        assert result.title == FALLBACK_TITLE == "Vitamix Information"
        assert len(result.atoms) == 2
        assert result.atoms[0]["type"] == "heading"
        assert result.atoms[1]["type"] == "paragraph"
        assert result.metadata.used_fallback is True

    @pytest.mark.asyncio
    async def test_service_failure_returns_fallback(self, completion_client):
        completion_client.complete.side_effect = RuntimeError("connection reset")
        result = await ContentGenerator(completion_client).generate_atoms(
            "anything", classify("anything"), RetrievedContext()
        )
        assert result.title == FALLBACK_TITLE

    @pytest.mark.asyncio
    async def test_missing_heading_is_added(self, completion_client):
        completion_client.complete.return_value = json.dumps({
            "title": "Soup Guide",
            "atoms": [{"type": "paragraph", "content": {"text": "Hot soup in minutes."}}],
        })
        result = await ContentGenerator(completion_client).generate_atoms(
            "soup", classify("soup"), RetrievedContext()
        )
        assert result.atoms[0] == {"type": "heading", "content": {"text": "Soup Guide", "level": 1}, "priority": 1}

    @pytest.mark.asyncio
    async def test_empty_atoms_use_fallback(self, completion_client):
        completion_client.complete.return_value = '{"title": "Empty", "atoms": []}'
        result = await ContentGenerator(completion_client).generate_atoms(
            "soup", classify("soup"), RetrievedContext()
        )
        assert result.title == FALLBACK_TITLE
        assert any(a["type"] == "heading" for a in result.atoms)

    @pytest.mark.asyncio
    async def test_session_context_reaches_prompt(self, completion_client):
        completion_client.complete.return_value = "{}"
        await ContentGenerator(completion_client).generate_atoms(
            "soup", classify("soup"), RetrievedContext(), "**Journey Stage:** comparing"
        )
        user_prompt = completion_client.complete.call_args.kwargs["user_prompt"]
        assert "**Journey Stage:** comparing" in user_prompt


class TestRecommendation:
    """Deterministic recommended-product rules"""

    def test_accessibility_picks_simple_controls(self):
        classification = classify("easy to use blender for arthritis")
        product, reason = select_recommended_product(PRODUCTS, classification)
        assert product.sku == "A3500"
        assert "controls" in reason.lower()

    def test_noise_picks_lowest_rating(self):
        classification = classify("quietest blender")
        product, _ = select_recommended_product(PRODUCTS, classification)
        assert product.sku == "A2500"

    def test_budget_picks_highest_within_budget(self):
        classification = classify("blender under $600")
        product, _ = select_recommended_product(PRODUCTS, classification)
        assert product.sku == "A2500"

    def test_budget_below_everything_picks_cheapest(self):
        classification = classify("blender under $100")
        product, reason = select_recommended_product(PRODUCTS, classification)
        assert product.sku == "E310"
        assert "most affordable" in reason

    def test_no_special_situation(self):
        assert select_recommended_product(PRODUCTS, classify("blender")) is None

    def test_no_products(self):
        assert select_recommended_product([], classify("blender under $600")) is None


class TestPrompt:
    """User prompt assembly"""

    def test_context_capped_at_five_items(self):
        products = [ProductRecord(sku=f"S{i}", name=f"Model {i}") for i in range(8)]
        prompt = build_user_prompt("blender", classify("blender"), RetrievedContext(products=products))
        assert "Products (8 found)" in prompt
        assert "Model 4" in prompt
        assert "Model 5" not in prompt

    def test_special_context(self):
        text = build_special_context(classify("quiet blender under $400 for dysphagia"))
        assert "NOISE" in text
        assert "MEDICAL" in text
        assert "$400" in text

    def test_recommended_product_in_prompt(self):
        prompt = build_user_prompt(
            "blender under $600", classify("blender under $600"), RetrievedContext(products=PRODUCTS)
        )
        assert "## Recommended Product" in prompt
        assert "(SKU: A2500)" in prompt
