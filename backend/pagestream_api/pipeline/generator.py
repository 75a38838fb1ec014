"""Two-phase content generation

Phase one is a small, fast hero call that can stream before retrieval has
finished. Phase two produces the full list of content atoms from the query,
the classification and the retrieved context.
"""

import re
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pagestream_api.core.config import settings
from pagestream_api.models.schemas import (
    ClassificationResult,
    GenerationMetadata,
    GenerationResult,
    HeroContent,
    ProductRecord,
    RetrievedContext,
)
from pagestream_api.utils.json_parsing import parse_json_object

logger = logging.getLogger(__name__)

HERO_FALLBACK = HeroContent(
    title="Vitamix - Professional Grade Blenders",
    subtitle="Discover the power and versatility of Vitamix blenders for your kitchen.",
    image_hint="vitamix blender on kitchen counter with fresh ingredients",
)

FALLBACK_TITLE = "Vitamix Information"
FALLBACK_DESCRIPTION = "Information about Vitamix products and recipes"
FALLBACK_MESSAGE = "We encountered an issue generating this content. Please try refining your query."

MAX_CONTEXT_ITEMS = 5
MAX_CONTEXT_VIDEOS = 3
MAX_PRODUCT_FEATURES = 5

SIMPLE_CONTROL_PATTERN = re.compile(
    r"touch\s*screen|touchscreen|presets?|program(med)?\s+settings|simple\s+controls?|easy\s+controls?|one.?touch",
    re.I,
)
QUIET_FEATURE_PATTERN = re.compile(r"quiet|low\s+noise|noise\s+reduc|sound\s+dampen", re.I)
NOISE_SPEC_KEYS = ("noise_db", "noise", "noise_level", "decibels", "db")

HERO_PROMPT = """Generate a hero section for a Vitamix page about: "{query}"
Query type: {query_type}

Return JSON only:
{{
  "title": "Compelling headline (5-10 words)",
  "subtitle": "Supporting text (15-25 words)",
  "imageHint": "Image description for generation (e.g., 'vitamix blender with fresh smoothie ingredients')"
}}"""

CONTENT_ATOMS_PROMPT = """You are a content generation expert for Vitamix, a premium blender company.
Generate structured content atoms based on the user query and provided context.

## Available Atom Types

1. heading - { "type": "heading", "content": { "text": "...", "level": 1|2|3 }, "priority": 1 }
2. paragraph - { "type": "paragraph", "content": { "text": "..." }, "priority": 2 }
3. list - { "type": "list", "content": { "items": ["..."], "ordered": false }, "priority": 3 }
4. feature_set - { "type": "feature_set", "content": { "features": [{ "title": "...", "description": "...", "icon": "..." }] }, "priority": 2 }
5. faq_set - { "type": "faq_set", "content": { "faqs": [{ "question": "...", "answer": "..." }] }, "priority": 3 }
6. steps - { "type": "steps", "content": { "steps": [{ "number": 1, "title": "...", "description": "..." }] }, "priority": 2 }
7. table - { "type": "table", "content": { "headers": ["..."], "rows": [["..."]] }, "priority": 3 }
8. comparison - { "type": "comparison", "content": { "products": [{ "sku": "...", "name": "...", "price": 0, "features": ["..."], "pros": ["..."], "cons": ["..."] }] }, "priority": 1 }
9. cta - { "type": "cta", "content": { "text": "...", "buttonText": "...", "url": "..." }, "priority": 4 }
10. related - { "type": "related", "content": { "items": [{ "title": "...", "description": "...", "url": "..." }] }, "priority": 5 }
11. product_detail - { "type": "product_detail", "content": { "sku": "...", "name": "...", "series": "...", "price": 0, "description": "...", "features": ["..."], "specs": {}, "warranty": "..." }, "priority": 1 }
12. recipe_detail - { "type": "recipe_detail", "content": { "title": "...", "description": "...", "prepTime": 0, "cookTime": 0, "servings": "...", "ingredients": ["..."], "instructions": ["..."], "tips": ["..."], "nutrition": {} }, "priority": 1 }
13. interactive_guide - { "type": "interactive_guide", "content": { "title": "...", "tabs": [{ "label": "...", "content": "..." }], "recommendation": "..." }, "priority": 1 }
14. nutrition_facts - { "type": "nutrition_facts", "content": { "calories": 0, "protein": "...", "carbs": "...", "fat": "...", "fiber": "..." }, "priority": 3 }
15. ingredient_list - { "type": "ingredient_list", "content": { "ingredients": [{ "item": "...", "amount": "...", "unit": "..." }] }, "priority": 2 }
16. tips - { "type": "tips", "content": { "tips": ["..."] }, "priority": 4 }
17. testimonials - { "type": "testimonials", "content": { "testimonials": [{ "quote": "...", "author": "..." }] }, "priority": 4 }
18. video - { "type": "video", "content": { "id": "...", "title": "...", "description": "..." }, "priority": 3 }

## Rules

1. Generate 3-8 atoms per response
2. Always start with a heading atom
3. End with a cta or related atom
4. Use ONLY information from the provided context - do not make up product details, prices, or specs
5. For product queries, prioritize comparison or product_detail atoms
6. For recipe queries, prioritize recipe_detail or steps atoms
7. For support queries, prioritize faq_set or steps atoms
8. Link products as /products/<sku> and recipes as /recipes/<slug>
9. Include imageHint for atoms that should have images

## Output Format

Return ONLY valid JSON with this structure:
{
  "title": "Page title",
  "description": "Meta description",
  "atoms": [...],
  "suggestedBlocks": ["hero", "cards", "accordion"]
}"""


def fallback_generation() -> Dict[str, Any]:
    """Fixed payload used when the completion cannot be parsed"""
    return {
        "title": FALLBACK_TITLE,
        "description": FALLBACK_DESCRIPTION,
        "atoms": [
            {"type": "heading", "content": {"text": FALLBACK_TITLE, "level": 1}, "priority": 1},
            {"type": "paragraph", "content": {"text": FALLBACK_MESSAGE}, "priority": 2},
        ],
        "suggestedBlocks": ["hero", "columns"],
    }


# ============================================================================
# Recommendation rules
# ============================================================================

def _noise_rating(product: ProductRecord) -> Optional[float]:
    for key, value in product.specs.items():
        if key.lower().replace(" ", "_") in NOISE_SPEC_KEYS:
            match = re.search(r"\d+(\.\d+)?", str(value))
            if match:
                return float(match.group(0))
    return None


def select_recommended_product(
    products: List[ProductRecord],
    classification: ClassificationResult,
) -> Optional[Tuple[ProductRecord, str]]:
    """
    Deterministic recommendation for special situations.

    accessibility: first product with simplified controls
    noise: lowest noise rating (quiet feature as a fallback signal)
    budget: highest price at or under budget, else the cheapest with an explanation
    """
    if not products:
        return None
    flags = classification.special_flags

    if flags.accessibility:
        for product in products:
            if any(SIMPLE_CONTROL_PATTERN.search(feature) for feature in product.features):
                return product, "Simplified controls make it easier to operate."

    if flags.noise:
        rated = []
        for i, product in enumerate(products):
            rating = _noise_rating(product)
            if rating is not None:
                rated.append((rating, i, product))
        if rated:
            rating, _, product = min(rated, key=lambda item: (item[0], item[1]))
            return product, f"Lowest noise rating among the options ({rating:g} dB)."
        for product in products:
            if any(QUIET_FEATURE_PATTERN.search(feature) for feature in product.features):
                return product, "Designed for quieter operation."

    if classification.budget is not None:
        priced = [p for p in products if p.price is not None]
        if priced:
            affordable = [p for p in priced if p.price <= classification.budget]
            if affordable:
                product = max(affordable, key=lambda p: p.price)
                return product, f"Best model within your ${classification.budget:g} budget."
            product = min(priced, key=lambda p: p.price)
            return product, (
                f"No model is available at or under ${classification.budget:g}; "
                f"this is the most affordable option at ${product.price:g}."
            )

    return None


def build_special_context(classification: ClassificationResult) -> str:
    """Prompt guidance for accessibility, noise, medical and budget situations"""
    flags = classification.special_flags
    lines = []
    if flags.accessibility:
        lines.append(
            "- ACCESSIBILITY: The user may have limited grip, mobility or vision. Favor models with "
            "touchscreen or preset programs, lighter containers and simple controls. Explain why."
        )
    if flags.noise:
        lines.append(
            "- NOISE: The user cares about noise. Favor quieter models and mention noise-reduction "
            "features and lower-speed techniques. Do not claim silent operation."
        )
    if flags.medical:
        lines.append(
            "- MEDICAL: The user has a health-related need (e.g. texture-modified diets). Give practical "
            "blending guidance, avoid medical claims and recommend consulting a healthcare provider."
        )
    if classification.budget is not None:
        lines.append(
            f"- BUDGET: The user's budget is ${classification.budget:g}. Only recommend models at or "
            "under budget where possible and state prices from the context."
        )
    if not lines:
        return ""
    return "## Special Context\n" + "\n".join(lines) + "\n\n"


# ============================================================================
# Generator
# ============================================================================

class ContentGenerator:
    """Hero and content-atom generation against the completion service"""

    def __init__(self, client):
        self.client = client

    async def generate_hero(self, query: str, classification: ClassificationResult) -> HeroContent:
        """Fast hero call; any failure returns the fixed fallback hero"""
        if not query or not query.strip():
            return HERO_FALLBACK.model_copy()

        try:
            text = await self.client.complete(
                system_prompt="",
                user_prompt=HERO_PROMPT.format(query=query.replace('"', "'"), query_type=classification.type.value),
                model=settings.hero_model,
                max_tokens=256,
                timeout=settings.hero_timeout,
            )
        except Exception as e:
            logger.warning(f"[HERO] Completion failed, using fallback hero: {e}")
            return HERO_FALLBACK.model_copy()

        parsed = parse_json_object(text)
        if not parsed.ok:
            logger.warning(f"[HERO] Unparseable hero response ({parsed.error}), using fallback hero")
            return HERO_FALLBACK.model_copy()

        data = parsed.value
        return HeroContent(
            title=_text_or(data.get("title"), HERO_FALLBACK.title),
            subtitle=_text_or(data.get("subtitle"), HERO_FALLBACK.subtitle),
            image_hint=_text_or(data.get("imageHint") or data.get("image_hint"), HERO_FALLBACK.image_hint),
        )

    async def generate_atoms(
        self,
        query: str,
        classification: ClassificationResult,
        context: RetrievedContext,
        session_context: str = "",
    ) -> GenerationResult:
        """
        Full content generation.

        Always returns at least one heading atom: unparseable or failed
        completions produce the fixed fallback payload.
        """
        user_prompt = build_user_prompt(query, classification, context, session_context)
        used_fallback = False
        try:
            text = await self.client.complete(
                system_prompt=CONTENT_ATOMS_PROMPT,
                user_prompt=user_prompt,
                model=settings.content_model,
                max_tokens=4096,
                timeout=settings.content_timeout,
            )
            parsed = parse_json_object(text)
            if parsed.ok:
                logger.info(f"[GENERATE] Parsed content via '{parsed.strategy}' strategy")
                payload = parsed.value
            else:
                logger.error(f"[GENERATE] Failed to parse content response ({parsed.error}): {(text or '')[:500]}")
                payload, used_fallback = fallback_generation(), True
        except Exception as e:
            logger.error(f"[GENERATE] Content completion failed: {e}")
            payload, used_fallback = fallback_generation(), True

        atoms = payload.get("atoms")
        if not isinstance(atoms, list) or not any(isinstance(a, dict) for a in atoms):
            logger.warning("[GENERATE] Response had no atoms, using fallback payload")
            payload, used_fallback = fallback_generation(), True
            atoms = payload["atoms"]
        atoms = [a for a in atoms if isinstance(a, dict)]

        title = _text_or(payload.get("title"), FALLBACK_TITLE)
        if not any(a.get("type") == "heading" for a in atoms):
            atoms.insert(0, {"type": "heading", "content": {"text": title, "level": 1}, "priority": 1})

        suggested = payload.get("suggestedBlocks") or payload.get("suggested_blocks") or []
        return GenerationResult(
            title=title,
            description=_text_or(payload.get("description"), ""),
            atoms=atoms,
            suggested_blocks=[s for s in suggested if isinstance(s, str)],
            metadata=GenerationMetadata(
                query_type=classification.type,
                confidence=classification.confidence,
                generated_at=datetime.utcnow().isoformat() + "Z",
                used_fallback=used_fallback,
            ),
        )


def _text_or(value, default: str) -> str:
    return value.strip() if isinstance(value, str) and value.strip() else default


def build_user_prompt(
    query: str,
    classification: ClassificationResult,
    context: RetrievedContext,
    session_context: str = "",
) -> str:
    """User prompt with classification, capped context, special context and recommendation"""
    prompt = (
        f"## User Query\n\"{query}\"\n\n"
        f"## Query Classification\n"
        f"- Type: {classification.type.value}\n"
        f"- Confidence: {classification.confidence}\n"
        f"- Keywords: {', '.join(classification.keywords)}\n\n"
    )
    if session_context:
        prompt += f"## Visitor Context\n{session_context}\n\n"

    prompt += build_special_context(classification)

    recommendation = select_recommended_product(context.products, classification)
    if recommendation:
        product, reason = recommendation
        price = f" - ${product.price:g}" if product.price is not None else ""
        prompt += (
            "## Recommended Product\n"
            f"**{product.name}** (SKU: {product.sku}){price}\n"
            f"Reason: {reason}\n"
            "Feature this product prominently.\n\n"
        )

    prompt += "## Available Context\n\n"

    if context.products:
        prompt += f"### Products ({len(context.products)} found)\n"
        for product in context.products[:MAX_CONTEXT_ITEMS]:
            price = f"${product.price:g}" if product.price is not None else "n/a"
            prompt += (
                f"\n**{product.name}** (SKU: {product.sku})\n"
                f"- Series: {product.series}\n"
                f"- Price: {price}\n"
                f"- Description: {product.description}\n"
                f"- Features: {', '.join(product.features[:MAX_PRODUCT_FEATURES])}\n"
                f"- Specs: {json.dumps(product.specs, default=str)}\n"
            )
        prompt += "\n"

    if context.recipes:
        prompt += f"### Recipes ({len(context.recipes)} found)\n"
        for recipe in context.recipes[:MAX_CONTEXT_ITEMS]:
            prompt += (
                f"\n**{recipe.title}** ({recipe.slug})\n"
                f"- Description: {recipe.description}\n"
                f"- Prep Time: {recipe.prep_time or 'n/a'} minutes\n"
                f"- Servings: {recipe.servings or 'n/a'}\n"
                f"- Dietary: {', '.join(recipe.dietary)}\n"
                f"- Ingredients: {', '.join(recipe.ingredients[:5])}...\n"
            )
        prompt += "\n"

    if context.faqs:
        prompt += f"### FAQs ({len(context.faqs)} found)\n"
        for faq in context.faqs[:MAX_CONTEXT_ITEMS]:
            prompt += f"\n**Q: {faq.question}**\nA: {faq.answer}\nCategory: {faq.category}\n"
        prompt += "\n"

    if context.videos:
        prompt += f"### Videos ({len(context.videos)} found)\n"
        for video in context.videos[:MAX_CONTEXT_VIDEOS]:
            prompt += f"\n- **{video.title}** (ID: {video.id})\n  {video.description}\n"
        prompt += "\n"

    prompt += (
        "\n## Instructions\n"
        "Generate content atoms for this query. Use ONLY the information provided above.\n"
        "If specific product details are not available, use general Vitamix information but do not invent prices or specs.\n"
        "Return valid JSON only."
    )
    return prompt
