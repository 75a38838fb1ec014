"""Layout selection

Assigns validated atoms to a bounded sequence of named blocks. The completion
service proposes a layout; the proposal is validated against the block library
and the page rules. Any service failure or unusable proposal falls back to a
rule-based layout.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Tuple

from pagestream_api.core.config import settings
from pagestream_api.models.atoms import AtomType, ContentAtom
from pagestream_api.models.schemas import (
    ClassificationResult,
    LayoutBlock,
    LayoutResult,
    PageStructure,
    QueryType,
)
from pagestream_api.utils.json_parsing import parse_json_object

logger = logging.getLogger(__name__)

MAX_BLOCKS = 8
HERO_BLOCK = "hero"
SPEED_CONTROL_BLOCK = "speed-control"


@dataclass(frozen=True)
class BlockDefinition:
    name: str
    description: str
    atom_types: Tuple[AtomType, ...]
    priority: int
    max_per_page: int


# Declaration order matters: leftover atoms go to the first block accepting their type
BLOCK_LIBRARY: List[BlockDefinition] = [
    BlockDefinition("hero", "Large hero banner with title, subtitle, and background image",
                    (AtomType.HEADING, AtomType.PARAGRAPH), 1, 1),
    BlockDefinition("pdp", "Product detail page with full product information",
                    (AtomType.PRODUCT_DETAIL,), 2, 1),
    BlockDefinition("plp", "Product listing page with grid of products",
                    (AtomType.COMPARISON,), 2, 1),
    BlockDefinition("comparison-cards", "Side-by-side product comparison cards",
                    (AtomType.COMPARISON,), 2, 1),
    BlockDefinition("recommended-products", "Recommended products based on user needs",
                    (AtomType.COMPARISON, AtomType.PRODUCT_DETAIL), 3, 1),
    BlockDefinition("recipe-detail", "Full recipe with ingredients, steps, and nutrition",
                    (AtomType.RECIPE_DETAIL, AtomType.INGREDIENT_LIST, AtomType.STEPS, AtomType.NUTRITION_FACTS), 2, 1),
    BlockDefinition("cards", "Grid of feature cards or content cards",
                    (AtomType.FEATURE_SET, AtomType.RELATED), 3, 2),
    BlockDefinition("columns", "Multi-column layout for features or content",
                    (AtomType.FEATURE_SET, AtomType.LIST, AtomType.PARAGRAPH), 3, 2),
    BlockDefinition("accordion", "Collapsible FAQ or content sections",
                    (AtomType.FAQ_SET,), 3, 1),
    BlockDefinition("speed-control", "Interactive speed/setting selector",
                    (AtomType.INTERACTIVE_GUIDE, AtomType.STEPS), 2, 1),
    BlockDefinition("carousel", "Image or content carousel",
                    (AtomType.FEATURE_SET, AtomType.TESTIMONIALS), 4, 1),
    BlockDefinition("video", "Embedded video player",
                    (AtomType.VIDEO,), 3, 2),
    BlockDefinition("collage", "Image collage or gallery",
                    (AtomType.FEATURE_SET,), 4, 1),
    BlockDefinition("toc", "Table of contents for long pages",
                    (AtomType.HEADING, AtomType.LIST), 5, 1),
    BlockDefinition("banner", "Promotional or alert banner",
                    (AtomType.PARAGRAPH, AtomType.CTA), 4, 1),
    BlockDefinition("form", "Contact or lead capture form",
                    (AtomType.CTA,), 5, 1),
]

BLOCKS_BY_NAME: Dict[str, BlockDefinition] = {block.name: block for block in BLOCK_LIBRARY}

LAYOUT_PROMPT = """You are a layout expert for Vitamix, a premium blender company.
Select the optimal sequence of blocks to display the given content atoms.

## Available Blocks
{blocks}

## Rules
1. Maximum 8 blocks per page
2. Always start with a "hero" block if there's a heading atom
3. Always end with a CTA-related block if available
4. Match atom types to appropriate blocks
5. For product queries: prioritize pdp, comparison-cards, or plp
6. For recipe queries: prioritize recipe-detail
7. For support queries: prioritize accordion (FAQ)
8. Maintain visual variety - don't repeat the same block type consecutively
9. If there's an interactive_guide atom, ALWAYS include speed-control block

## Output Format
Return ONLY valid JSON:
{{
  "blocks": [
    {{ "blockName": "hero", "atomIndices": [0, 1] }},
    {{ "blockName": "cards", "atomIndices": [2] }}
  ]
}}

The atomIndices array should reference the indices of atoms that should be rendered in each block."""


def _library_description() -> str:
    return "\n".join(
        f"- **{b.name}**: {b.description} (atoms: {', '.join(t.value for t in b.atom_types)})"
        for b in BLOCK_LIBRARY
    )


def build_layout_prompt(atoms: List[ContentAtom], classification: ClassificationResult) -> str:
    """Describe the atoms (index, type, priority, short summary) for the layout call"""
    lines = [
        "## Query Classification",
        f"- Type: {classification.type.value}",
        f"- Confidence: {classification.confidence}",
        "",
        f"## Content Atoms ({len(atoms)} total)",
    ]
    for index, atom in enumerate(atoms):
        line = f"{index}. **{atom.type.value}** (priority: {atom.priority})"
        content = atom.content
        if atom.type == AtomType.HEADING:
            line += f' - "{content.text}"'
        elif atom.type == AtomType.FEATURE_SET:
            line += f" - {len(content.features)} features"
        elif atom.type == AtomType.FAQ_SET:
            line += f" - {len(content.faqs)} FAQs"
        elif atom.type == AtomType.COMPARISON:
            line += f" - {len(content.products)} products"
        lines.append(line)
    lines.append("")
    lines.append("Select blocks for these atoms. Return JSON only.")
    return "\n".join(lines)


class LayoutSelector:
    """Model-proposed layout with rule-based fallback"""

    def __init__(self, client):
        self.client = client

    async def select_layout(self, atoms: List[ContentAtom], classification: ClassificationResult) -> LayoutResult:
        if not atoms:
            return fallback_layout(atoms, classification)

        try:
            text = await self.client.complete(
                system_prompt=LAYOUT_PROMPT.format(blocks=_library_description()),
                user_prompt=build_layout_prompt(atoms, classification),
                model=settings.layout_model,
                max_tokens=1024,
                timeout=settings.layout_timeout,
                temperature=0.3,
            )
        except Exception as e:
            logger.warning(f"[LAYOUT] Layout call failed, using rule-based layout: {e}")
            return fallback_layout(atoms, classification)

        parsed = parse_json_object(text)
        proposed = parsed.value.get("blocks") if parsed.ok else None
        if not isinstance(proposed, list) or not proposed:
            logger.warning(f"[LAYOUT] Unusable layout proposal ({parsed.error or 'no blocks'}), using rule-based layout")
            return fallback_layout(atoms, classification)

        result = validate_layout(proposed, atoms)
        logger.info(f"[LAYOUT] blocks={[b.block_name for b in result.blocks]} source={result.source}")
        return result


# ============================================================================
# Proposal validation
# ============================================================================

def _first_index(atoms: List[ContentAtom], atom_type: AtomType, used: Optional[Set[int]] = None) -> int:
    for i, atom in enumerate(atoms):
        if atom.type == atom_type and (used is None or i not in used):
            return i
    return -1


def _hero_block(atoms: List[ContentAtom], used: Set[int]) -> Optional[LayoutBlock]:
    """Hero from the first heading and first paragraph, or None without a heading"""
    heading = _first_index(atoms, AtomType.HEADING)
    if heading < 0:
        return None
    paragraph = _first_index(atoms, AtomType.PARAGRAPH)
    indices = [i for i in (heading, paragraph) if i >= 0]
    used.update(indices)
    return LayoutBlock(block_name=HERO_BLOCK, atom_indices=indices)


def _coerce_indices(raw: Any) -> List[int]:
    if not isinstance(raw, list):
        return []
    return [i for i in raw if isinstance(i, int) and not isinstance(i, bool)]


def _count(blocks: List[LayoutBlock], name: str) -> int:
    return sum(1 for b in blocks if b.block_name == name)


def validate_layout(proposed: List[Any], atoms: List[ContentAtom]) -> LayoutResult:
    """
    Repair a proposed layout.

    Drops unknown blocks, out-of-range or already consumed indices and blocks
    over their max_per_page. Then places the hero first, ensures a speed-control
    block for an interactive guide, assigns leftovers greedily in library order
    and caps the page at MAX_BLOCKS.
    """
    used: Set[int] = set()
    blocks: List[LayoutBlock] = []

    hero = _hero_block(atoms, used)
    if hero is not None:
        blocks.append(hero)

    for entry in proposed:
        if not isinstance(entry, dict):
            continue
        name = entry.get("blockName") or entry.get("block_name")
        definition = BLOCKS_BY_NAME.get(name)
        # The hero is always derived from the first heading above
        if definition is None or name == HERO_BLOCK:
            continue
        if _count(blocks, name) >= definition.max_per_page:
            continue
        indices = []
        for i in _coerce_indices(entry.get("atomIndices", entry.get("atom_indices"))):
            if 0 <= i < len(atoms) and i not in used and i not in indices:
                indices.append(i)
        if not indices:
            continue
        variant = entry.get("variant")
        blocks.append(LayoutBlock(
            block_name=name,
            atom_indices=indices,
            variant=variant if isinstance(variant, str) else None,
        ))
        used.update(indices)

    guide = _first_index(atoms, AtomType.INTERACTIVE_GUIDE, used)
    if guide >= 0 and _count(blocks, SPEED_CONTROL_BLOCK) == 0:
        blocks.append(LayoutBlock(block_name=SPEED_CONTROL_BLOCK, atom_indices=[guide]))
        used.add(guide)

    _assign_leftovers(blocks, atoms, used)
    return _result(blocks[:MAX_BLOCKS], "model")


def _assign_leftovers(blocks: List[LayoutBlock], atoms: List[ContentAtom], used: Set[int]):
    """Each unused atom joins the first library block accepting its type"""
    for index, atom in enumerate(atoms):
        if index in used:
            continue
        definition = next((b for b in BLOCK_LIBRARY if atom.type in b.atom_types), None)
        if definition is None:
            continue
        existing = next((b for b in blocks if b.block_name == definition.name), None)
        if existing is not None:
            existing.atom_indices.append(index)
        elif definition.name == HERO_BLOCK:
            blocks.insert(0, LayoutBlock(block_name=HERO_BLOCK, atom_indices=[index]))
        else:
            blocks.append(LayoutBlock(block_name=definition.name, atom_indices=[index]))
        used.add(index)


# ============================================================================
# Rule-based fallback
# ============================================================================

def fallback_layout(atoms: List[ContentAtom], classification: ClassificationResult) -> LayoutResult:
    """Hero, one type-specific main block, then cards, accordion and banner"""
    used: Set[int] = set()
    blocks: List[LayoutBlock] = []

    def add(name: str, index: int):
        if index >= 0 and index not in used:
            blocks.append(LayoutBlock(block_name=name, atom_indices=[index]))
            used.add(index)

    hero = _hero_block(atoms, used)
    if hero is not None:
        blocks.append(hero)

    if classification.type == QueryType.PRODUCT:
        comparison = _first_index(atoms, AtomType.COMPARISON)
        if comparison >= 0:
            add("comparison-cards", comparison)
        else:
            add("pdp", _first_index(atoms, AtomType.PRODUCT_DETAIL))
    elif classification.type == QueryType.RECIPE:
        add("recipe-detail", _first_index(atoms, AtomType.RECIPE_DETAIL))
    elif classification.type == QueryType.SUPPORT:
        add("accordion", _first_index(atoms, AtomType.FAQ_SET))

    add("cards", _first_index(atoms, AtomType.FEATURE_SET, used))
    add("accordion", _first_index(atoms, AtomType.FAQ_SET, used))
    add("banner", _first_index(atoms, AtomType.CTA, used))

    return _result(blocks[:MAX_BLOCKS], "fallback")


def _result(blocks: List[LayoutBlock], source: str) -> LayoutResult:
    main = next((b.block_name for b in blocks if b.block_name != HERO_BLOCK), "general")
    if len(blocks) <= 3:
        length = "short"
    elif len(blocks) <= 5:
        length = "medium"
    else:
        length = "long"
    return LayoutResult(
        blocks=blocks,
        page_structure=PageStructure(
            has_hero=any(b.block_name == HERO_BLOCK for b in blocks),
            main_content_type=main,
            estimated_length=length,
        ),
        source=source,
    )
