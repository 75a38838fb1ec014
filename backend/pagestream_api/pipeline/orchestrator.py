"""Streaming pipeline orchestrator

Runs classify → retrieve (with hero generation and URL catalog loading in
parallel) → generate → validate → layout → render → URL correction → images,
yielding ordered StreamEvents. Every event carries a 1-based eventIndex. A
resumed stream re-runs the pipeline and suppresses events the client has
already seen, except blocks and images (deduplicated client-side) and the
terminal events.
"""

import asyncio
import logging
import re
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from pagestream_api.core.config import settings
from pagestream_api.core.state_machine import GenerationPhase, GenerationSession
from pagestream_api.core.telemetry import RequestContext, enrich_error_context, track_stage
from pagestream_api.core.visitor_sessions import VisitorSessionStore, build_session_context
from pagestream_api.models.schemas import ClassificationResult, StreamEvent
from pagestream_api.models.sessions import JourneyStage, VisitorSession
from pagestream_api.pipeline.classifier import classify
from pagestream_api.pipeline.images import extract_image_requests, generate_images
from pagestream_api.pipeline.renderer import render_hero_content, render_with_stats
from pagestream_api.pipeline.url_mapper import correct_urls, load_url_catalog
from pagestream_api.pipeline.validator import validate_atoms

logger = logging.getLogger(__name__)

# Always delivered on resume, even when eventIndex <= resumeFrom
REDELIVERED_EVENTS = frozenset(["block", "image-ready", "complete", "error"])

PROGRESS_MESSAGES = {
    GenerationPhase.CLASSIFICATION: "Analyzing your query...",
    GenerationPhase.RETRIEVAL: "Gathering relevant information...",
    GenerationPhase.HERO: "Creating page header...",
    GenerationPhase.CONTENT: "Generating content...",
    GenerationPhase.VALIDATION: "Checking content...",
    GenerationPhase.LAYOUT: "Optimizing layout...",
    GenerationPhase.RENDERING: "Building page blocks...",
    GenerationPhase.IMAGES: "Generating images...",
}

SLUG_SEPARATORS = re.compile(r"[^a-z0-9]+")
MAX_SLUG_LENGTH = 50


def generate_slug(title: str) -> str:
    """URL-safe slug from a page title; 'page' when nothing survives"""
    slug = SLUG_SEPARATORS.sub("-", (title or "").lower()).strip("-")
    return slug[:MAX_SLUG_LENGTH] or "page"


def _enter(generation: Optional[GenerationSession], phase: GenerationPhase) -> Tuple[str, Dict[str, Any]]:
    """Record the phase on the generation session and build its progress event"""
    message = PROGRESS_MESSAGES[phase]
    if generation is not None:
        generation.log_event(phase, message)
    return "progress", {"step": phase.value, "message": message}


class PipelineOrchestrator:
    """
    Wires the pipeline stages together for one stream.

    Args:
        generator: ContentGenerator
        layout_selector: LayoutSelector
        retriever: ContextRetriever
        store: CatalogStore used to build the URL catalog
        image_service: object exposing async generate_image(prompt, size); None disables images
        visitor_store: VisitorSessionStore updated when a page completes
        pacing_ms: delay between streamed blocks
    """

    def __init__(
        self,
        generator,
        layout_selector,
        retriever,
        store,
        image_service=None,
        visitor_store: Optional[VisitorSessionStore] = None,
        pacing_ms: Optional[int] = None,
    ):
        self.generator = generator
        self.layout_selector = layout_selector
        self.retriever = retriever
        self.store = store
        self.image_service = image_service
        self.visitor_store = visitor_store
        self.pacing_ms = settings.block_pacing_ms if pacing_ms is None else pacing_ms

    async def run(
        self,
        query: str,
        visitor: Optional[VisitorSession] = None,
        generation: Optional[GenerationSession] = None,
        resume_from: int = 0,
    ) -> AsyncIterator[StreamEvent]:
        """
        Yield the stream for one query.

        Never raises for pipeline failures: an unexpected exception ends the
        stream with an `error` event.
        """
        ctx = RequestContext(
            session_id=visitor.id if visitor else (generation.session_id if generation else None),
            query=query,
        )
        if generation is not None:
            generation.start_attempt(query)
        if resume_from:
            logger.info(f"{ctx.log_prefix()} Resuming stream after eventIndex={resume_from}")

        event_index = 0
        try:
            async for name, data in self._pipeline(query, ctx, visitor, generation, resume_from):
                event_index += 1
                if event_index <= resume_from and name not in REDELIVERED_EVENTS:
                    continue
                if generation is not None:
                    generation.mark_delivered(event_index)
                yield StreamEvent(event=name, data={**data, "eventIndex": event_index})
        except Exception as e:
            enrich_error_context(e, ctx, {"last_event_index": event_index})
            event_index += 1
            if generation is not None:
                generation.log_event(GenerationPhase.ERROR, str(e))
                generation.mark_delivered(event_index)
            yield StreamEvent(event="error", data={
                "message": "An error occurred during generation",
                "details": str(e),
                "eventIndex": event_index,
            })

    async def _pipeline(
        self,
        query: str,
        ctx: RequestContext,
        visitor: Optional[VisitorSession],
        generation: Optional[GenerationSession],
        resume_from: int = 0,
    ) -> AsyncIterator[Tuple[str, Dict[str, Any]]]:
        journey_stage = visitor.journey_stage if visitor else JourneyStage.EXPLORING

        # Classification
        yield _enter(generation, GenerationPhase.CLASSIFICATION)
        with track_stage(ctx, GenerationPhase.CLASSIFICATION.value):
            classification = classify(query)
        yield "classification", {
            "type": classification.type.value,
            "confidence": classification.confidence,
            "keywords": classification.keywords,
            "specialFlags": classification.special_flags.model_dump(),
            "budget": classification.budget,
            "journeyStage": journey_stage.value,
        }

        # Retrieval, with hero and URL catalog running alongside
        yield _enter(generation, GenerationPhase.RETRIEVAL)
        hero_task = asyncio.create_task(self.generator.generate_hero(query, classification))
        catalog_task = asyncio.create_task(load_url_catalog(self.store))
        try:
            with track_stage(ctx, GenerationPhase.RETRIEVAL.value):
                context = await self.retriever.retrieve(
                    query, classification, visitor.profile if visitor else None
                )
            yield "retrieval", context.counts()

            yield _enter(generation, GenerationPhase.HERO)
            with track_stage(ctx, GenerationPhase.HERO.value):
                hero = await hero_task
            hero_html = render_hero_content(hero)
            yield "block", {"name": "hero", "html": hero_html, "index": 0}

            # Content generation
            yield _enter(generation, GenerationPhase.CONTENT)
            session_context = build_session_context(visitor) if visitor else ""
            with track_stage(ctx, GenerationPhase.CONTENT.value):
                result = await self.generator.generate_atoms(query, classification, context, session_context)
            yield "generation", {
                "title": result.title,
                "atomCount": len(result.atoms),
                "suggestedBlocks": result.suggested_blocks,
            }

            yield _enter(generation, GenerationPhase.VALIDATION)
            with track_stage(ctx, GenerationPhase.VALIDATION.value):
                validation = validate_atoms(result.atoms)
            yield "validation", {
                "valid": validation.valid,
                "atomCount": len(validation.atoms),
                "errorCount": len(validation.errors),
                "warningCount": len(validation.warnings),
            }

            yield _enter(generation, GenerationPhase.LAYOUT)
            with track_stage(ctx, GenerationPhase.LAYOUT.value):
                layout = await self.layout_selector.select_layout(validation.atoms, classification)
            yield "layout", {
                "blockCount": len(layout.blocks),
                "hasHero": layout.page_structure.has_hero,
                "source": layout.source,
            }

            # Rendering and URL correction
            yield _enter(generation, GenerationPhase.RENDERING)
            with track_stage(ctx, GenerationPhase.RENDERING.value):
                rendered = render_with_stats(layout.blocks, validation.atoms)
                catalog = await catalog_task
                blocks = [
                    b.model_copy(update={"html": correct_urls(b.html, catalog)}) for b in rendered.blocks
                ]
        finally:
            for task in (hero_task, catalog_task):
                if not task.done():
                    task.cancel()

        if rendered.failed_count:
            failed = [b.name for b in blocks if b.error]
            logger.warning(
                f"{ctx.log_prefix()} {rendered.failed_count}/{rendered.total_count} blocks failed: {failed}"
            )
            yield "block-errors", {
                "failedCount": rendered.failed_count,
                "totalCount": rendered.total_count,
                "failedBlocks": failed,
            }

        # The generated hero is index 0; layout blocks follow from 1
        streamed_html = [hero_html]
        next_index = 1
        for position, block in enumerate(blocks):
            if position == 0 and block.name == "hero":
                continue
            data = {"name": block.name, "html": block.html, "index": next_index, "error": block.error}
            next_index += 1
            if block.error:
                data["errorMessage"] = block.error_message
            streamed_html.append(block.html)
            yield "block", data
            if self.pacing_ms:
                await asyncio.sleep(self.pacing_ms / 1000)

        slug = generate_slug(result.title)
        images_generated = False
        async for item in self._image_events(slug, streamed_html, classification, ctx, generation):
            images_generated = images_generated or item[0] == "images-complete"
            yield item

        page_path = f"/{slug}"
        # A resumed stream re-runs the pipeline; the query is recorded once per generation
        already_recorded = generation.query_recorded if generation is not None else resume_from > 0
        if visitor is not None and self.visitor_store is not None and not already_recorded:
            self.visitor_store.add_query(
                visitor, query, classification.type.value, page_path, classification.budget
            )
            if generation is not None:
                generation.query_recorded = True

        if generation is not None:
            generation.log_event(GenerationPhase.COMPLETE, f"Generated '{result.title}'")
        logger.info(f"{ctx.log_prefix()} Pipeline complete | blocks={len(blocks)} timings={ctx.stage_timings}")
        yield "complete", {
            "success": True,
            "title": result.title,
            "description": result.description,
            "blockCount": len(blocks),
            "blocksWithErrors": rendered.failed_count,
            "queryType": classification.type.value,
            "slug": slug,
            "pagePath": page_path,
            "pageUrl": f"{settings.page_base_url}{page_path}",
            "imagesGenerated": images_generated,
            "sessionId": visitor.id if visitor else None,
            "journeyStage": visitor.journey_stage.value if visitor else None,
        }

    def _images_enabled(self) -> bool:
        return settings.enable_image_generation and self.image_service is not None

    async def _image_events(
        self,
        slug: str,
        streamed_html: List[str],
        classification: ClassificationResult,
        ctx: RequestContext,
        generation: Optional[GenerationSession],
    ) -> AsyncIterator[Tuple[str, Dict[str, Any]]]:
        """Image events for the streamed page; nothing when images are disabled or not wanted"""
        if not self._images_enabled():
            return
        if not (classification.needs_product_images or classification.needs_recipe_images):
            logger.info(f"{ctx.log_prefix()} No images needed for type={classification.type.value}")
            return
        requests = extract_image_requests("\n".join(streamed_html), slug)
        if not requests:
            return
        yield _enter(generation, GenerationPhase.IMAGES)
        yield "images-started", {"count": len(requests)}
        with track_stage(ctx, GenerationPhase.IMAGES.value):
            images = await generate_images(requests, self.image_service, settings.image_concurrency)
        for image in images:
            yield "image-ready", {
                "id": image.id,
                "url": image.url,
                "size": image.size.value,
                "success": image.success,
            }
        yield "images-complete", {
            "total": len(images),
            "successful": sum(1 for i in images if i.success),
        }
