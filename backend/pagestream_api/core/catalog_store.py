"""Relational catalog queries for products, recipes, FAQs and videos"""

import logging
from typing import List, Tuple

from sqlalchemy import case, or_, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from pagestream_api.core.database import AsyncSessionLocal, Faq, Product, Recipe, Video
from pagestream_api.models.schemas import FaqRecord, ProductRecord, RecipeRecord, VideoRecord

logger = logging.getLogger(__name__)


# Normalizes a JSON-ish column value to a list of strings.
# Seeded rows may hold a comma separated string instead of a JSON array.
def _as_list(value) -> List[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v) for v in value]
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return []


def _product_record(row: Product) -> ProductRecord:
    return ProductRecord(
        sku=row.sku,
        name=row.name,
        series=row.series or "",
        price=row.price,
        description=row.description or "",
        features=_as_list(row.features),
        specs=row.specs if isinstance(row.specs, dict) else {},
        image_url=row.image_url,
    )


def _recipe_record(row: Recipe) -> RecipeRecord:
    return RecipeRecord(
        slug=row.slug,
        title=row.title,
        description=row.description or "",
        ingredients=_as_list(row.ingredients),
        instructions=_as_list(row.instructions),
        prep_time=row.prep_time_minutes,
        servings=row.servings,
        dietary=_as_list(row.dietary_tags),
        image_url=row.image_url,
    )


def _faq_record(row: Faq) -> FaqRecord:
    return FaqRecord(id=row.id, question=row.question, answer=row.answer, category=row.category or "")


def _video_record(row: Video) -> VideoRecord:
    return VideoRecord(id=row.id, title=row.title, description=row.description or "", thumbnail=row.thumbnail_url)


def _like_any(columns, terms: List[str]):
    """OR of case-insensitive LIKE matches of every term against every column"""
    return or_(*[column.ilike(f"%{term}%") for term in terms for column in columns])


class CatalogStore:
    """
    Read access to the relational catalog.

    Every method opens its own session so the four collections can be
    queried concurrently.
    """

    def __init__(self, session_factory: async_sessionmaker = AsyncSessionLocal):
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # Lookups by identifier
    # ------------------------------------------------------------------

    async def get_products_by_skus(self, skus: List[str]) -> List[ProductRecord]:
        if not skus:
            return []
        async with self.session_factory() as session:
            rows = (await session.execute(select(Product).where(Product.sku.in_(skus)))).scalars().all()
        by_sku = {row.sku: row for row in rows}
        # Preserve the order the identifiers were ranked in
        return [_product_record(by_sku[sku]) for sku in skus if sku in by_sku]

    async def get_recipes_by_slugs(self, slugs: List[str]) -> List[RecipeRecord]:
        if not slugs:
            return []
        async with self.session_factory() as session:
            rows = (await session.execute(select(Recipe).where(Recipe.slug.in_(slugs)))).scalars().all()
        by_slug = {row.slug: row for row in rows}
        return [_recipe_record(by_slug[slug]) for slug in slugs if slug in by_slug]

    async def get_faqs_by_ids(self, ids: List[int]) -> List[FaqRecord]:
        if not ids:
            return []
        async with self.session_factory() as session:
            rows = (await session.execute(select(Faq).where(Faq.id.in_(ids)))).scalars().all()
        by_id = {row.id: row for row in rows}
        return [_faq_record(by_id[i]) for i in ids if i in by_id]

    async def get_videos_by_ids(self, ids: List[str]) -> List[VideoRecord]:
        if not ids:
            return []
        async with self.session_factory() as session:
            rows = (await session.execute(select(Video).where(Video.id.in_(ids)))).scalars().all()
        by_id = {row.id: row for row in rows}
        return [_video_record(by_id[i]) for i in ids if i in by_id]

    # ------------------------------------------------------------------
    # Keyword search
    # ------------------------------------------------------------------

    async def search_products(self, terms: List[str], limit: int) -> List[ProductRecord]:
        """LIKE search ordered by series (Ascent X, Ascent, Explorian, other) then price"""
        series_rank = case(
            (Product.series.ilike("%ascent x%"), 0),
            (Product.series.ilike("%ascent%"), 1),
            (Product.series.ilike("%explorian%"), 2),
            else_=3,
        )
        stmt = select(Product)
        if terms:
            stmt = stmt.where(_like_any([Product.name, Product.description, Product.series], terms))
        stmt = stmt.order_by(series_rank, Product.price.desc()).limit(limit)
        async with self.session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_product_record(row) for row in rows]

    async def search_recipes(self, terms: List[str], limit: int) -> List[RecipeRecord]:
        """LIKE search ordered by title match first, then shortest prep time"""
        stmt = select(Recipe)
        if terms:
            title_rank = case((_like_any([Recipe.title], terms), 0), else_=1)
            stmt = stmt.where(
                _like_any([Recipe.title, Recipe.description, Recipe.categories], terms)
            ).order_by(title_rank, Recipe.prep_time_minutes)
        stmt = stmt.limit(limit)
        async with self.session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_recipe_record(row) for row in rows]

    async def search_faqs(self, terms: List[str], limit: int) -> List[FaqRecord]:
        stmt = select(Faq)
        if terms:
            stmt = stmt.where(_like_any([Faq.question, Faq.answer, Faq.tags], terms))
        stmt = stmt.limit(limit)
        async with self.session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_faq_record(row) for row in rows]

    async def search_videos(self, terms: List[str], limit: int) -> List[VideoRecord]:
        """LIKE search ordered by popularity"""
        stmt = select(Video)
        if terms:
            stmt = stmt.where(_like_any([Video.title, Video.description, Video.tags], terms))
        stmt = stmt.order_by(Video.view_count.desc()).limit(limit)
        async with self.session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_video_record(row) for row in rows]

    # ------------------------------------------------------------------
    # Full listings (URL catalog and vector indexing)
    # ------------------------------------------------------------------

    async def list_product_keys(self) -> List[Tuple[str, str]]:
        async with self.session_factory() as session:
            result = await session.execute(select(Product.sku, Product.name))
            return [(sku, name) for sku, name in result.all()]

    async def list_recipe_keys(self) -> List[Tuple[str, str]]:
        async with self.session_factory() as session:
            result = await session.execute(select(Recipe.slug, Recipe.title))
            return [(slug, title) for slug, title in result.all()]

    async def all_products(self) -> List[ProductRecord]:
        async with self.session_factory() as session:
            rows = (await session.execute(select(Product))).scalars().all()
        return [_product_record(row) for row in rows]

    async def all_recipes(self) -> List[RecipeRecord]:
        async with self.session_factory() as session:
            rows = (await session.execute(select(Recipe))).scalars().all()
        return [_recipe_record(row) for row in rows]


# Global store instance
catalog_store = CatalogStore()
