"""URL correction

Generated pages link to products and recipes by whatever slug the model
invented. The mapper rewrites those hrefs to the canonical SKU or recipe slug
using a catalog built from the relational store. Unknown links are left as-is.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from pagestream_api.core.config import settings

logger = logging.getLogger(__name__)

PRODUCT_HREF = re.compile(r'href="/products/([^"]+)"')
RECIPE_HREF = re.compile(r'href="/recipes/([^"]+)"')
NON_ALNUM = re.compile(r"[^a-z0-9]")
BRAND_PREFIX = re.compile(r"vitamix\s*", re.I)
BRAND_SLUG_PREFIX = re.compile(r"vitamix-?", re.I)
SIMPLE_NAME_STRIP = re.compile(r"[^a-z0-9-]")
WHITESPACE = re.compile(r"\s+")

PRODUCT_THRESHOLD = 0.6
RECIPE_THRESHOLD = 0.5
CONTAINMENT_SCORE = 0.8
MIN_TITLE_KEYWORD_LENGTH = 5
TITLE_STOP_WORDS = frozenset(["a", "an", "the", "with", "and", "or", "for", "in", "on", "of", "to"])


@dataclass
class CatalogProduct:
    sku: str
    name: str


@dataclass
class CatalogRecipe:
    slug: str
    title: str


@dataclass
class UrlCatalog:
    """Lookup key -> canonical entry; built once per request"""
    products: Dict[str, CatalogProduct] = field(default_factory=dict)
    recipes: Dict[str, CatalogRecipe] = field(default_factory=dict)


@dataclass
class UrlCorrectionStats:
    products_checked: int = 0
    products_corrected: int = 0
    products_not_found: int = 0
    recipes_checked: int = 0
    recipes_corrected: int = 0
    recipes_not_found: int = 0


def normalize(text: str) -> str:
    return NON_ALNUM.sub("", text.lower())


def _clean_slug(slug: str) -> str:
    return slug.rstrip("/")


def _title_keywords(title: str) -> List[str]:
    words = [NON_ALNUM.sub("", w) for w in title.lower().split() if w not in TITLE_STOP_WORDS]
    return [w for w in words if len(w) >= MIN_TITLE_KEYWORD_LENGTH]


def build_url_catalog(products: List[Tuple[str, str]], recipes: List[Tuple[str, str]]) -> UrlCatalog:
    """
    Index products and recipes under every key a model-written slug might use.

    Args:
        products: (sku, name) pairs
        recipes: (slug, title) pairs; stored slugs may carry a trailing slash
    """
    catalog = UrlCatalog()
    product_entries = [CatalogProduct(sku=sku, name=name) for sku, name in products]
    recipe_entries = [CatalogRecipe(slug=slug, title=title) for slug, title in recipes]

    # Identifier keys go in first so a name or title never shadows them
    for entry in product_entries:
        catalog.products.setdefault(normalize(entry.sku), entry)
    for entry in recipe_entries:
        clean = _clean_slug(entry.slug)
        catalog.recipes.setdefault(normalize(clean), entry)
        catalog.recipes.setdefault(clean, entry)

    for entry in product_entries:
        catalog.products.setdefault(normalize(entry.name), entry)
        simple = SIMPLE_NAME_STRIP.sub("", WHITESPACE.sub("-", BRAND_PREFIX.sub("", entry.name.lower())))
        if simple:
            catalog.products.setdefault(simple, entry)

    for entry in recipe_entries:
        catalog.recipes.setdefault(normalize(entry.title), entry)
        for keyword in _title_keywords(entry.title):
            catalog.recipes.setdefault(keyword, entry)

    return catalog


def _bigrams(text: str) -> set:
    return {text[i:i + 2] for i in range(len(text) - 1)}


def similarity(a: str, b: str) -> float:
    """Character-bigram Jaccard score; containment of one in the other scores 0.8"""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    if a in b or b in a:
        return CONTAINMENT_SCORE
    grams_a, grams_b = _bigrams(a), _bigrams(b)
    union = grams_a | grams_b
    return len(grams_a & grams_b) / len(union) if union else 0.0


def _fuzzy(normalized: str, entries: Dict, threshold: float):
    best, best_score = None, 0.0
    for key, entry in entries.items():
        score = similarity(normalized, key)
        if score > best_score and score > threshold:
            best, best_score = entry, score
    return best


def find_product(url_slug: str, catalog: UrlCatalog) -> Optional[CatalogProduct]:
    normalized = normalize(url_slug)
    if normalized in catalog.products:
        return catalog.products[normalized]

    variants = [
        url_slug.lower(),
        url_slug.replace("-", ""),
        url_slug.replace("_", ""),
        BRAND_SLUG_PREFIX.sub("", url_slug),
    ]
    for variant in variants:
        key = normalize(variant)
        if key in catalog.products:
            return catalog.products[key]

    return _fuzzy(normalized, catalog.products, PRODUCT_THRESHOLD)


def find_recipe(url_slug: str, catalog: UrlCatalog) -> Optional[CatalogRecipe]:
    normalized = normalize(url_slug)
    if normalized in catalog.recipes:
        return catalog.recipes[normalized]

    variants = [
        url_slug.lower().replace("-", ""),
        re.sub(r"recipe$", "", url_slug, flags=re.I),
        re.sub(r"-recipe$", "", url_slug, flags=re.I),
    ]
    for variant in variants:
        key = normalize(variant)
        if key in catalog.recipes:
            return catalog.recipes[key]

    return _fuzzy(normalized, catalog.recipes, RECIPE_THRESHOLD)


def correct_urls_with_stats(html: str, catalog: UrlCatalog) -> Tuple[str, UrlCorrectionStats]:
    """Rewrite /products/<x> to /products/<sku> and /recipes/<x> to /recipes/<slug>/"""
    stats = UrlCorrectionStats()

    def fix_product(match: re.Match) -> str:
        slug = match.group(1)
        stats.products_checked += 1
        product = find_product(slug, catalog)
        if product is None:
            stats.products_not_found += 1
            return match.group(0)
        if product.sku == slug:
            return match.group(0)
        stats.products_corrected += 1
        return f'href="/products/{product.sku}"'

    def fix_recipe(match: re.Match) -> str:
        clean = _clean_slug(match.group(1))
        stats.recipes_checked += 1
        recipe = find_recipe(clean, catalog)
        if recipe is None:
            stats.recipes_not_found += 1
            return match.group(0)
        canonical = _clean_slug(recipe.slug)
        if canonical != clean:
            stats.recipes_corrected += 1
        return f'href="/recipes/{canonical}/"'

    html = PRODUCT_HREF.sub(fix_product, html)
    html = RECIPE_HREF.sub(fix_recipe, html)

    if stats.products_corrected or stats.recipes_corrected:
        logger.info(
            f"[URLS] Corrections applied: products {stats.products_corrected}/{stats.products_checked}, "
            f"recipes {stats.recipes_corrected}/{stats.recipes_checked}"
        )
    return html, stats


def correct_urls(html: str, catalog: UrlCatalog) -> str:
    return correct_urls_with_stats(html, catalog)[0]


async def load_url_catalog(store) -> UrlCatalog:
    """Catalog from the relational store; an unavailable store yields an empty catalog"""
    try:
        products, recipes = await asyncio.wait_for(
            asyncio.gather(store.list_product_keys(), store.list_recipe_keys()),
            timeout=settings.store_timeout,
        )
    except Exception as e:
        logger.warning(f"[URLS] Could not load URL catalog, links will not be corrected: {e}")
        return UrlCatalog()
    return build_url_catalog(products, recipes)
