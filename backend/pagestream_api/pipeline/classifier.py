"""Query intent classifier

Pattern-based scoring of six intent types plus cross-cutting situation
detectors and budget extraction. Pure and deterministic: no I/O, never raises.
"""

import re
import logging
from typing import Dict, List, Optional, Tuple

from pagestream_api.models.schemas import (
    ClassificationResult,
    Collection,
    QueryType,
    RetrievalPolicy,
    SpecialFlags,
)

logger = logging.getLogger(__name__)

STRONG_WEIGHT = 2.0

# (strong patterns, supporting patterns, supporting weight) per type
QUERY_PATTERNS: Dict[QueryType, Tuple[List[re.Pattern], List[re.Pattern], float]] = {
    QueryType.PRODUCT: (
        [
            re.compile(r"\b(vitamix|ascent|explorian|propel|venturist|legacy)\s*(x\d|e\d{3}|\d{3,4})", re.I),
            re.compile(r"\bsku\s*[:\-]?\s*\w+", re.I),
            re.compile(r"\b(compare|comparison|vs|versus)\b.*\b(blender|vitamix|model)", re.I),
            re.compile(r"\bwhich\s+(vitamix|blender|model)\b", re.I),
        ],
        [
            re.compile(r"\b(blender|container|blade|motor|base|attachment|accessory)", re.I),
            re.compile(r"\b(price|cost|warranty|features?|specs?|specifications?)", re.I),
            re.compile(r"\b(buy|purchase|order|shop)", re.I),
            re.compile(r"\b(64\s*oz|48\s*oz|20\s*oz|low.?profile)", re.I),
            re.compile(r"\bself.?detect", re.I),
        ],
        1.0,
    ),
    QueryType.RECIPE: (
        [
            re.compile(r"\b(recipe|recipes)\s+(for|with|using)\b", re.I),
            re.compile(r"\bhow\s+to\s+(make|prepare|cook|blend)\b", re.I),
            re.compile(r"\bwhat\s+can\s+i\s+(make|blend|create)\b", re.I),
        ],
        [
            re.compile(r"\b(smoothie|soup|sauce|dip|butter|milk|juice|puree|frozen\s+dessert)", re.I),
            re.compile(r"\b(ingredients?|instructions?|servings?|prep\s+time)", re.I),
            re.compile(r"\b(vegan|vegetarian|keto|paleo|gluten.?free|dairy.?free)", re.I),
            re.compile(r"\b(breakfast|lunch|dinner|snack|dessert|appetizer)", re.I),
            re.compile(r"\b(healthy|nutritious|low.?calorie|high.?protein)", re.I),
        ],
        1.0,
    ),
    QueryType.BLOG: (
        [
            re.compile(r"\b(tips?|tricks?|hacks?)\s+(for|on|about)\b", re.I),
            re.compile(r"\b(guide|tutorial)\s+(to|for|on)\b", re.I),
            re.compile(r"\bbest\s+(way|practice|method)\s+to\b", re.I),
        ],
        [
            re.compile(r"\b(learn|discover|explore|understand)\b", re.I),
            re.compile(r"\bwhy\s+(should|do|is)\b", re.I),
            re.compile(r"\bbenefits?\s+(of|from)\b", re.I),
            re.compile(r"\b(lifestyle|wellness|nutrition|health)\b", re.I),
        ],
        0.8,
    ),
    QueryType.SUPPORT: (
        [
            re.compile(r"\b(troubleshoot|problem|issue|error|broken|not\s+working)", re.I),
            re.compile(r"\b(fix|repair|replace|return|warranty\s+claim)", re.I),
            re.compile(r"\bwhy\s+(does|is|won't|doesn't)\s+my\b", re.I),
        ],
        [
            re.compile(r"\b(help|support|contact|service)", re.I),
            re.compile(r"\b(clean|cleaning|maintenance|care)", re.I),
            re.compile(r"\b(overheat|leak|noise|loud|smoke|smell)", re.I),
            re.compile(r"\b(manual|instructions|setup)", re.I),
            re.compile(r"\b(register|registration|serial\s+number)", re.I),
        ],
        1.0,
    ),
    QueryType.COMMERCIAL: (
        [
            re.compile(r"\b(commercial|professional|restaurant|business|foodservice)", re.I),
            re.compile(r"\b(bar|café|cafe|coffee\s+shop|juice\s+bar)", re.I),
            re.compile(r"\bhigh.?volume", re.I),
        ],
        [
            re.compile(r"\b(bulk|wholesale|dealer|distributor)", re.I),
            re.compile(r"\b(quiet\s+one|the\s+quiet\s+one|drink\s+machine)", re.I),
            re.compile(r"\b(nsf|certified)", re.I),
        ],
        0.9,
    ),
    QueryType.GENERAL: (
        [],
        [
            re.compile(r"\bwhat\s+is\b", re.I),
            re.compile(r"\btell\s+me\s+about\b", re.I),
            re.compile(r"\b(hello|hi|hey|help)\b", re.I),
        ],
        0.6,
    ),
}

# Situation detectors and the bonus weight each adds per type
SPECIAL_DETECTORS: Dict[str, Tuple[re.Pattern, Dict[QueryType, float]]] = {
    "accessibility": (
        re.compile(
            r"\b(arthritis|disabilit\w*|disabled|elderly|seniors?|limited\s+mobility|grip|"
            r"dexterity|low\s+vision|visually\s+impaired|blind|wheelchair|easy\s+to\s+use|"
            r"simple\s+controls?|one.?handed|accessib\w*)",
            re.I,
        ),
        {QueryType.PRODUCT: 1.0, QueryType.SUPPORT: 0.5},
    ),
    "noise": (
        re.compile(r"\b(quiet|quietest|noise|noisy|loud|decibels?|db\b|sleeping|wake\s+(the\s+)?(baby|kids|family))", re.I),
        {QueryType.PRODUCT: 1.0, QueryType.SUPPORT: 0.5},
    ),
    "medical": (
        re.compile(
            r"\b(dysphagia|medical|doctor|diabet\w*|kidney|renal|heart\s+health|puree\s+diet|"
            r"feeding\s+tube|surgery|recovery|chemo\w*|swallow\w*|texture.?modified)",
            re.I,
        ),
        {QueryType.PRODUCT: 0.5, QueryType.SUPPORT: 1.0},
    ),
}

# Bare numbers only count after the word budget; "under 5 minutes" is not a price
BUDGET_PATTERNS = [
    re.compile(r"\bbudget\s*(?:of|is|:)?\s*\$?\s*(\d[\d,]*(?:\.\d+)?)", re.I),
    re.compile(r"\$\s*(\d[\d,]*(?:\.\d+)?)"),
    re.compile(r"\b(\d[\d,]*(?:\.\d+)?)\s*(?:dollars|bucks|usd)\b", re.I),
]

STOP_WORDS = frozenset([
    "a", "an", "the", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "as", "is", "was", "are", "were", "been",
    "be", "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "must", "can", "this", "that", "these", "those",
    "i", "you", "he", "she", "it", "we", "they", "what", "which", "who",
    "when", "where", "why", "how", "all", "each", "every", "both", "few",
    "more", "most", "other", "some", "such", "no", "nor", "not", "only",
    "own", "same", "so", "than", "too", "very", "just", "also", "now",
    "about", "after", "again", "any", "because", "before", "between",
    "into", "through", "during", "above", "below", "up", "down", "out",
    "off", "over", "under", "further", "then", "once", "here", "there",
    "me", "my", "myself", "your", "yourself", "his", "her", "its", "our",
    "their", "tell", "show", "give", "want", "need", "like", "please",
])

# Multi-word domain terms kept as joined keywords
DOMAIN_BIGRAMS = [
    re.compile(r"(vitamix|ascent|explorian|propel|venturist)\s+\w+"),
    re.compile(r"(smoothie\s+bowl|nut\s+butter|frozen\s+dessert|hot\s+soup)"),
    re.compile(r"(self\s+detect|low\s+profile|quick\s+quiet)"),
]

MAX_KEYWORDS = 10

RETRIEVAL_POLICIES: Dict[QueryType, RetrievalPolicy] = {
    QueryType.PRODUCT: RetrievalPolicy(
        collections=[Collection.PRODUCTS, Collection.FAQS, Collection.VIDEOS],
        min_score=0.7, top_k=8, diversity_penalty=0.1,
    ),
    QueryType.RECIPE: RetrievalPolicy(
        collections=[Collection.RECIPES, Collection.VIDEOS, Collection.FAQS],
        min_score=0.65, top_k=10, diversity_penalty=0.15,
    ),
    QueryType.BLOG: RetrievalPolicy(
        collections=[Collection.FAQS, Collection.RECIPES, Collection.VIDEOS],
        min_score=0.6, top_k=8, diversity_penalty=0.2,
    ),
    QueryType.SUPPORT: RetrievalPolicy(
        collections=[Collection.FAQS, Collection.PRODUCTS, Collection.VIDEOS],
        min_score=0.7, top_k=6, diversity_penalty=0.05,
    ),
    QueryType.COMMERCIAL: RetrievalPolicy(
        collections=[Collection.PRODUCTS, Collection.FAQS],
        min_score=0.7, top_k=6, diversity_penalty=0.1,
    ),
    QueryType.GENERAL: RetrievalPolicy(
        collections=[Collection.FAQS, Collection.PRODUCTS, Collection.RECIPES, Collection.VIDEOS],
        min_score=0.55, top_k=10, diversity_penalty=0.2,
    ),
}

# Context appended to the query before embedding it
QUERY_AUGMENTATION: Dict[QueryType, str] = {
    QueryType.PRODUCT: "Vitamix blender product features specifications",
    QueryType.RECIPE: "Vitamix recipe ingredients instructions",
    QueryType.BLOG: "Vitamix tips guide lifestyle",
    QueryType.SUPPORT: "Vitamix help troubleshooting support",
    QueryType.COMMERCIAL: "Vitamix commercial professional foodservice",
    QueryType.GENERAL: "Vitamix",
}

PRODUCT_IMAGE_PATTERN = re.compile(r"\b(blender|vitamix|ascent|explorian|propel|container|model)\b", re.I)
RECIPE_IMAGE_PATTERN = re.compile(r"\b(smoothie|soup|recipe|sauce|dessert|juice|bowl)\b", re.I)


def classify(query: str) -> ClassificationResult:
    """
    Classify a free-text query.

    Ties for the top score, or no matches at all, resolve to GENERAL.
    The empty string yields GENERAL with confidence 0.5.
    """
    normalized = (query or "").lower().strip()

    scores: Dict[QueryType, float] = {query_type: 0.0 for query_type in QueryType}
    for query_type, (strong, supporting, weight) in QUERY_PATTERNS.items():
        for pattern in strong:
            if pattern.search(normalized):
                scores[query_type] += STRONG_WEIGHT
        for pattern in supporting:
            if pattern.search(normalized):
                scores[query_type] += weight

    flags = _detect_special_flags(normalized)
    for flag_name, (_, bonuses) in SPECIAL_DETECTORS.items():
        if getattr(flags, flag_name):
            for query_type, bonus in bonuses.items():
                scores[query_type] += bonus

    query_type, confidence = _pick_winner(scores)
    keywords = extract_keywords(normalized)
    budget = extract_budget(normalized)

    result = ClassificationResult(
        type=query_type,
        confidence=confidence,
        keywords=keywords,
        special_flags=flags,
        budget=budget,
        retrieval_policy=RETRIEVAL_POLICIES[query_type],
        needs_product_images=query_type in (QueryType.PRODUCT, QueryType.COMMERCIAL, QueryType.SUPPORT)
            or bool(PRODUCT_IMAGE_PATTERN.search(normalized)),
        needs_recipe_images=query_type in (QueryType.RECIPE, QueryType.BLOG)
            or bool(RECIPE_IMAGE_PATTERN.search(normalized)),
    )
    logger.debug(
        f"[CLASSIFY] type={result.type.value} confidence={result.confidence} "
        f"flags={flags.model_dump()} budget={budget} keywords={keywords}"
    )
    return result


# Picks the highest-scoring type; any tie for first place goes to GENERAL.
def _pick_winner(scores: Dict[QueryType, float]) -> Tuple[QueryType, float]:
    total = sum(scores.values())
    if total <= 0:
        return QueryType.GENERAL, 0.5

    best = max(scores.values())
    leaders = [query_type for query_type, score in scores.items() if score == best]
    winner = leaders[0] if len(leaders) == 1 else QueryType.GENERAL

    confidence = min(max(best / total, 0.0), 1.0)
    return winner, round(confidence, 2)


def _detect_special_flags(normalized: str) -> SpecialFlags:
    return SpecialFlags(**{
        name: bool(pattern.search(normalized))
        for name, (pattern, _) in SPECIAL_DETECTORS.items()
    })


def extract_budget(normalized: str) -> Optional[float]:
    """Pull a budget amount from the query ("under $500", "budget of 300")"""
    for pattern in BUDGET_PATTERNS:
        match = pattern.search(normalized)
        if not match:
            continue
        try:
            amount = float(match.group(1).replace(",", ""))
        except ValueError:
            continue
        if amount > 0:
            return amount
    return None


def extract_keywords(normalized: str) -> List[str]:
    """Lowercased, punctuation-free, stop-word-free keywords plus domain bigrams"""
    cleaned = re.sub(r"[^\w\s-]", " ", normalized.lower())
    keywords: List[str] = []
    for word in cleaned.split():
        if len(word) > 2 and word not in STOP_WORDS and word not in keywords:
            keywords.append(word)

    for pattern in DOMAIN_BIGRAMS:
        for match in pattern.finditer(cleaned):
            bigram = re.sub(r"\s+", "-", match.group(0))
            if bigram not in keywords:
                keywords.append(bigram)

    return keywords[:MAX_KEYWORDS]


def augment_query(query: str, classification: ClassificationResult) -> str:
    """Query text enriched with type context, used for embeddings"""
    return f"{query} {QUERY_AUGMENTATION[classification.type]}".strip()
