"""
Tests for the image pipeline
"""
import asyncio

import pytest
from unittest.mock import AsyncMock, Mock

from pagestream_api.models.schemas import ImageRequest, ImageSize
from pagestream_api.pipeline.images import (
    FALLBACK_IMAGES,
    LIFESTYLE_STYLE,
    build_image_prompt,
    extract_image_requests,
    fallback_image,
    generate_images,
)


def request(id, size=ImageSize.CARD, prompt="green smoothie"):
    return ImageRequest(id=id, prompt=prompt, size=size, block_id="page")


class TestExtraction:
    """Placeholders found in rendered HTML"""

    def test_hints_in_document_order(self):
        html = (
            '<div class="hero"><img src="/images/placeholder-hero.jpg" alt="Soup" data-image-hint="hot soup"></div>'
            '<div class="cards"><img src="/images/placeholder-card.jpg" alt="A" data-image-hint="blender base">'
            '<img src="/images/static.jpg" alt="no hint"></div>'
        )
        requests = extract_image_requests(html, "soup-page")

        assert [r.id for r in requests] == ["img-0", "img-1"]
        assert requests[0].size == ImageSize.HERO
        assert requests[1].size == ImageSize.CARD
        assert requests[1].prompt == "blender base"
        assert requests[0].block_id == "soup-page"

    def test_no_images(self):
        assert extract_image_requests("<p>text only</p>", "x") == []
        assert extract_image_requests("", "x") == []


class TestPrompt:
    """Prompt assembly from the hint and size"""

    def test_smoothie_style(self):
        prompt = build_image_prompt("Berry smoothie", ImageSize.HERO)
        assert prompt.startswith("Berry smoothie")
        assert "Wide cinematic shot" in prompt
        assert "Vibrant smoothie" in prompt
        assert "Avoid: Text, logos" in prompt

    def test_first_matching_style_wins(self):
        # "blend" matches the smoothie style before the product style
        assert "Vibrant smoothie" in build_image_prompt("blender blending", ImageSize.CARD)

    def test_lifestyle_default(self):
        assert LIFESTYLE_STYLE in build_image_prompt("sunny morning", ImageSize.THUMBNAIL)


class TestGeneration:
    """Bounded concurrency and fallbacks"""

    @pytest.mark.asyncio
    async def test_one_result_per_request_in_order(self):
        service = Mock()
        service.generate_image = AsyncMock(side_effect=lambda prompt, size: f"https://img/{size}/{prompt[:5]}")
        requests = [request("img-0", ImageSize.HERO, "alpha"), request("img-1", prompt="bravo")]

        results = await generate_images(requests, service)

        assert [r.id for r in results] == ["img-0", "img-1"]
        assert all(r.success for r in results)
        assert results[0].url == "https://img/hero/alpha"

    @pytest.mark.asyncio
    async def test_concurrency_bound(self):
        running = 0
        peak = 0

        async def slow(prompt, size):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return "https://img/ok"

        service = Mock()
        service.generate_image = slow
        results = await generate_images([request(f"img-{i}") for i in range(7)], service, concurrency=3)

        assert len(results) == 7
        assert peak <= 3

    @pytest.mark.asyncio
    async def test_failure_uses_successful_sibling(self):
        async def flaky(prompt, size):
            if "broken" in prompt:
                raise RuntimeError("content policy")
            return "https://img/generated-card"

        service = Mock()
        service.generate_image = flaky
        results = await generate_images(
            [request("img-0"), request("img-1", prompt="broken hint")], service
        )

        failed = results[1]
        assert failed.success is False
        assert failed.error == "content policy"
        assert failed.url == "https://img/generated-card"

    @pytest.mark.asyncio
    async def test_all_failed_use_stock_images(self):
        service = Mock()
        service.generate_image = AsyncMock(side_effect=TimeoutError("image timeout"))
        results = await generate_images([request("img-0", ImageSize.HERO)], service)

        assert results[0].success is False
        assert results[0].url in FALLBACK_IMAGES[ImageSize.HERO]

    @pytest.mark.asyncio
    async def test_empty_requests(self):
        service = Mock()
        service.generate_image = AsyncMock()
        assert await generate_images([], service) == []
        service.generate_image.assert_not_called()

    def test_fallback_is_deterministic(self):
        first = fallback_image(request("img-4"), "x")
        second = fallback_image(request("img-4"), "y")
        assert first.url == second.url
        assert first.url in FALLBACK_IMAGES[ImageSize.CARD]
