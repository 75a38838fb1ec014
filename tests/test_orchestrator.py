"""
Tests for the streaming pipeline orchestrator

Stages are wired with stubbed collaborators; event order, eventIndex
numbering, resume suppression and the terminal events are checked.
"""
import pytest
from unittest.mock import AsyncMock, Mock

from pagestream_api.core.config import settings
from pagestream_api.core.state_machine import GenerationPhase, GenerationSession
from pagestream_api.core.visitor_sessions import VisitorSessionStore
from pagestream_api.models.schemas import (
    GenerationResult,
    HeroContent,
    LayoutBlock,
    LayoutResult,
    PageStructure,
    RetrievedContext,
)
from pagestream_api.pipeline.generator import FALLBACK_TITLE, HERO_FALLBACK, ContentGenerator
from pagestream_api.pipeline.layout import LayoutSelector
from pagestream_api.pipeline.orchestrator import PipelineOrchestrator, generate_slug

QUERY = "compare Ascent X5 vs Explorian"

ATOMS = [
    {"type": "heading", "content": {"text": "Ascent vs Explorian", "level": 1}, "priority": 1},
    {"type": "paragraph", "content": {"text": "Two great blenders."}, "priority": 1},
    {"type": "comparison", "content": {"products": [
        {"sku": "A3500", "name": "Ascent X5", "price": 749.95},
        {"sku": "E310", "name": "Explorian E310", "price": 349.95},
    ]}, "priority": 2},
    {"type": "feature_set", "content": {"features": [{"title": "Touchscreen", "description": "Simple"}]}},
    {"type": "cta", "content": {"text": "Ready?", "url": "/products/ascent-x5"}},
]

EXPECTED_SEQUENCE = [
    "progress", "classification", "progress", "retrieval", "progress", "block",
    "progress", "generation", "progress", "validation", "progress", "layout",
    "progress", "block", "block", "block", "complete",
]


def stub_store():
    store = Mock()
    store.list_product_keys = AsyncMock(return_value=[("A3500", "Vitamix Ascent X5"), ("E310", "Explorian E310")])
    store.list_recipe_keys = AsyncMock(return_value=[])
    return store


def stub_retriever():
    retriever = Mock()
    retriever.retrieve = AsyncMock(return_value=RetrievedContext())
    return retriever


def stub_generator():
    generator = Mock()
    generator.generate_hero = AsyncMock(return_value=HeroContent(
        title="Find Your Blender", subtitle="Ascent or Explorian?", image_hint="two blenders"
    ))
    generator.generate_atoms = AsyncMock(return_value=GenerationResult(
        title="Ascent vs Explorian", description="Side by side", atoms=ATOMS,
    ))
    return generator


def layout_fallback_client():
    client = Mock()
    client.complete = AsyncMock(side_effect=TimeoutError("layout timeout"))
    return client


@pytest.fixture
def orchestrator():
    return PipelineOrchestrator(
        generator=stub_generator(),
        layout_selector=LayoutSelector(layout_fallback_client()),
        retriever=stub_retriever(),
        store=stub_store(),
        pacing_ms=0,
    )


async def collect(orchestrator, query=QUERY, **kwargs):
    return [event async for event in orchestrator.run(query, **kwargs)]


class TestEventSequence:
    """Order and payloads of a full stream"""

    @pytest.mark.asyncio
    async def test_full_sequence(self, orchestrator):
        events = await collect(orchestrator)

        assert [e.event for e in events] == EXPECTED_SEQUENCE
        assert [e.data["eventIndex"] for e in events] == list(range(1, len(EXPECTED_SEQUENCE) + 1))

    @pytest.mark.asyncio
    async def test_hero_streams_before_content(self, orchestrator):
        events = await collect(orchestrator)
        names = [e.event for e in events]

        hero = events[names.index("block")]
        assert hero.data["name"] == "hero"
        assert hero.data["index"] == 0
        assert "Find Your Blender" in hero.data["html"]
        assert names.index("block") < names.index("generation")

    @pytest.mark.asyncio
    async def test_blocks_follow_layout(self, orchestrator):
        events = await collect(orchestrator)
        blocks = [e.data for e in events if e.event == "block"]

        assert [(b["name"], b["index"]) for b in blocks] == [
            ("hero", 0), ("comparison-cards", 1), ("cards", 2), ("banner", 3),
        ]
        assert all(b["error"] is False for b in blocks[1:])

    @pytest.mark.asyncio
    async def test_layout_without_hero_numbered_after_hero(self, orchestrator):
        """The generated hero keeps index 0 even when the layout has no hero block"""
        selector = Mock()
        selector.select_layout = AsyncMock(return_value=LayoutResult(
            blocks=[LayoutBlock(block_name="cards", atom_indices=[3]), LayoutBlock(block_name="banner", atom_indices=[4])],
            page_structure=PageStructure(has_hero=False, main_content_type="cards", estimated_length="short"),
        ))
        orchestrator.layout_selector = selector

        events = await collect(orchestrator)
        blocks = [(e.data["name"], e.data["index"]) for e in events if e.event == "block"]

        assert blocks == [("hero", 0), ("cards", 1), ("banner", 2)]

    @pytest.mark.asyncio
    async def test_links_corrected(self, orchestrator):
        events = await collect(orchestrator)
        banner = next(e.data for e in events if e.event == "block" and e.data["name"] == "banner")
        assert 'href="/products/A3500"' in banner["html"]

    @pytest.mark.asyncio
    async def test_complete_payload(self, orchestrator):
        complete = (await collect(orchestrator))[-1]

        assert complete.event == "complete"
        assert complete.data["success"] is True
        assert complete.data["title"] == "Ascent vs Explorian"
        assert complete.data["slug"] == "ascent-vs-explorian"
        assert complete.data["pagePath"] == "/ascent-vs-explorian"
        assert complete.data["blockCount"] == 4
        assert complete.data["queryType"] == "product"
        assert complete.data["imagesGenerated"] is False

    @pytest.mark.asyncio
    async def test_classification_payload(self, orchestrator):
        events = await collect(orchestrator, "quiet blender under $400")
        classification = next(e.data for e in events if e.event == "classification")
        assert classification["budget"] == 400
        assert classification["specialFlags"]["noise"] is True
        assert classification["journeyStage"] == "exploring"


class TestDegradedInputs:
    """Empty queries and unusable completions still reach complete"""

    @pytest.mark.asyncio
    async def test_empty_query(self, completion_client):
        orchestrator = PipelineOrchestrator(
            generator=ContentGenerator(completion_client),
            layout_selector=LayoutSelector(completion_client),
            retriever=stub_retriever(),
            store=stub_store(),
            pacing_ms=0,
        )
        events = await collect(orchestrator, "")

        assert events[-1].event == "complete"
        hero = next(e.data for e in events if e.event == "block")
        assert HERO_FALLBACK.title in hero["html"]

    @pytest.mark.asyncio
    async def test_garbage_completion(self, completion_client):
        completion_client.complete.return_value = "I cannot produce JSON, sorry!"
        orchestrator = PipelineOrchestrator(
            generator=ContentGenerator(completion_client),
            layout_selector=LayoutSelector(completion_client),
            retriever=stub_retriever(),
            store=stub_store(),
            pacing_ms=0,
        )
        events = await collect(orchestrator, "best smoothie")

        complete = events[-1]
        assert complete.event == "complete"
        assert complete.data["title"] == FALLBACK_TITLE
        layout = next(e.data for e in events if e.event == "layout")
        assert layout["source"] == "fallback"

    @pytest.mark.asyncio
    async def test_url_catalog_failure_keeps_links(self, orchestrator):
        orchestrator.store.list_product_keys = AsyncMock(side_effect=RuntimeError("db down"))
        events = await collect(orchestrator)
        banner = next(e.data for e in events if e.event == "block" and e.data["name"] == "banner")
        assert 'href="/products/ascent-x5"' in banner["html"]
        assert events[-1].event == "complete"


class TestErrors:
    """Unexpected failures end the stream with an error event"""

    @pytest.mark.asyncio
    async def test_error_event(self, orchestrator):
        orchestrator.generator.generate_atoms = AsyncMock(side_effect=RuntimeError("generator exploded"))
        generation = GenerationSession("sess-err", QUERY)

        events = await collect(orchestrator, generation=generation)

        error = events[-1]
        assert error.event == "error"
        assert error.data["details"] == "generator exploded"
        assert error.data["eventIndex"] == len(events)
        assert "complete" not in [e.event for e in events]
        assert generation.phase == GenerationPhase.ERROR
        assert generation.last_event_index == len(events)

    @pytest.mark.asyncio
    async def test_render_failure_reported(self, orchestrator, monkeypatch):
        from pagestream_api.pipeline import renderer

        def boom(atoms, variant=None):
            raise ValueError("bad cards")

        monkeypatch.setitem(renderer.RENDERERS, "cards", boom)
        events = await collect(orchestrator)

        block_errors = next(e.data for e in events if e.event == "block-errors")
        assert block_errors["failedBlocks"] == ["cards"]
        cards = next(e.data for e in events if e.event == "block" and e.data["name"] == "cards")
        assert cards["error"] is True
        assert cards["errorMessage"] == "bad cards"
        assert events[-1].data["blocksWithErrors"] == 1


class TestResume:
    """Re-run with suppression of already delivered events"""

    @pytest.mark.asyncio
    async def test_resume_suppresses_seen_events(self, orchestrator):
        events = await collect(orchestrator, resume_from=12)
        indices = [e.data["eventIndex"] for e in events]

        # hero block (6) is redelivered, everything else at or below 12 is not
        assert indices == [6, 13, 14, 15, 16, 17]
        assert events[0].event == "block"
        assert events[-1].event == "complete"

    @pytest.mark.asyncio
    async def test_resume_past_end_still_completes(self, orchestrator):
        events = await collect(orchestrator, resume_from=100)
        assert events[-1].event == "complete"
        assert all(e.event in ("block", "complete") for e in events)

    @pytest.mark.asyncio
    async def test_generation_session_tracks_delivery(self, orchestrator):
        generation = GenerationSession("sess-1", QUERY)
        await collect(orchestrator, generation=generation)
        assert generation.last_event_index == len(EXPECTED_SEQUENCE)
        assert generation.phase == GenerationPhase.COMPLETE
        assert generation.attempts == 1

        await collect(orchestrator, generation=generation, resume_from=5)
        assert generation.attempts == 2


class TestVisitorUpdates:
    """Completed pages are recorded on the visitor session"""

    @pytest.mark.asyncio
    async def test_query_recorded(self, orchestrator):
        store = VisitorSessionStore()
        visitor = store.get_or_create("visitor-1")
        orchestrator.visitor_store = store

        events = await collect(orchestrator, visitor=visitor)

        assert visitor.queries[0].query == QUERY
        assert visitor.queries[0].generated_page_path == "/ascent-vs-explorian"
        complete = events[-1].data
        assert complete["sessionId"] == "visitor-1"
        assert complete["journeyStage"] == "comparing"

    @pytest.mark.asyncio
    async def test_resumed_stream_records_query_once(self, orchestrator):
        store = VisitorSessionStore()
        visitor = store.get_or_create("visitor-3")
        orchestrator.visitor_store = store

        await collect(orchestrator, visitor=visitor)
        resumed = await collect(orchestrator, visitor=visitor, resume_from=10)

        assert resumed[-1].event == "complete"
        assert visitor.metadata.total_queries == 1
        assert [q.query for q in visitor.queries] == [QUERY]

    @pytest.mark.asyncio
    async def test_generation_records_query_once_across_attempts(self, orchestrator):
        store = VisitorSessionStore()
        visitor = store.get_or_create("visitor-4")
        orchestrator.visitor_store = store
        generation = GenerationSession("visitor-4", QUERY)

        await collect(orchestrator, visitor=visitor, generation=generation)
        await collect(orchestrator, visitor=visitor, generation=generation, resume_from=3)

        assert generation.query_recorded is True
        assert visitor.metadata.total_queries == 1

    @pytest.mark.asyncio
    async def test_session_context_passed_to_generator(self, orchestrator):
        store = VisitorSessionStore()
        visitor = store.get_or_create("visitor-2")
        store.add_query(visitor, "keto smoothie", "recipe")

        await collect(orchestrator, visitor=visitor)

        args = orchestrator.generator.generate_atoms.call_args.args
        assert "**Dietary Preferences:** keto" in args[3]
        retrieve_args = orchestrator.retriever.retrieve.call_args.args
        assert retrieve_args[2] is visitor.profile


class TestImages:
    """Image events when generation is enabled"""

    @pytest.mark.asyncio
    async def test_image_events(self, orchestrator, monkeypatch):
        monkeypatch.setattr(settings, "enable_image_generation", True)
        service = Mock()
        service.generate_image = AsyncMock(return_value="https://img/generated.png")
        orchestrator.image_service = service

        events = await collect(orchestrator)
        names = [e.event for e in events]

        start = names.index("images-started")
        assert names[start - 1] == "progress"
        assert names[-2] == "images-complete"
        ready = [e.data for e in events if e.event == "image-ready"]
        assert events[start].data["count"] == len(ready)
        assert ready[0]["id"] == "img-0"
        assert ready[0]["size"] == "hero"
        assert events[-1].data["imagesGenerated"] is True

    @pytest.mark.asyncio
    async def test_query_without_image_needs_skips_images(self, orchestrator, monkeypatch):
        monkeypatch.setattr(settings, "enable_image_generation", True)
        service = Mock()
        service.generate_image = AsyncMock(return_value="https://img/generated.png")
        orchestrator.image_service = service

        events = await collect(orchestrator, "hello there")

        assert "images-started" not in [e.event for e in events]
        assert events[-1].data["imagesGenerated"] is False
        service.generate_image.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_image_service_no_events(self, orchestrator, monkeypatch):
        monkeypatch.setattr(settings, "enable_image_generation", True)
        names = [e.event for e in await collect(orchestrator)]
        assert "images-started" not in names


class TestSlug:
    """Page slugs"""

    @pytest.mark.parametrize("title,expected", [
        ("Ascent vs Explorian", "ascent-vs-explorian"),
        ("  Soup & Smoothies!  ", "soup-smoothies"),
        ("", "page"),
        ("!!!", "page"),
        ("a" * 80, "a" * 50),
    ])
    def test_generate_slug(self, title, expected):
        assert generate_slug(title) == expected
