"""Catalog endpoints - classification preview, search and vector indexing"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from pagestream_api.core.catalog_store import catalog_store
from pagestream_api.core.openai_client import openai_client
from pagestream_api.core.vector_index import PREFIX_PRODUCT, PREFIX_RECIPE, VectorItem, vector_index
from pagestream_api.models.errors import ApplicationError, ErrorCode
from pagestream_api.models.schemas import Collection, IndexResponse, ProductRecord, RecipeRecord
from pagestream_api.pipeline.classifier import classify
from pagestream_api.pipeline.retriever import ContextRetriever

logger = logging.getLogger(__name__)

router = APIRouter()

INDEX_BATCH_SIZE = 100


def get_retriever() -> ContextRetriever:
    return ContextRetriever(catalog_store, vector_index, openai_client)


def get_store():
    return catalog_store


def get_embedder():
    return openai_client


def get_vector_index():
    return vector_index


def _require_query(query: Optional[str]) -> str:
    if not query or not query.strip():
        raise ApplicationError(code=ErrorCode.INVALID_QUERY, message="Missing query parameter")
    return query


@router.get("/classify")
async def classify_query(query: Optional[str] = Query(default=None)):
    """Classification result for a query, without generating a page"""
    result = classify(_require_query(query))
    return result.model_dump(mode="json")


@router.get("/search")
async def search(
    query: Optional[str] = Query(default=None),
    collection: Optional[str] = Query(default=None),
    retriever: ContextRetriever = Depends(get_retriever),
):
    """Retrieved context for a query, optionally limited to one collection"""
    query = _require_query(query)
    if collection is not None and collection not in {c.value for c in Collection}:
        raise ApplicationError(
            code=ErrorCode.INVALID_QUERY,
            message=f"Unknown collection '{collection}'",
            hint=f"Use one of: {', '.join(c.value for c in Collection)}",
        )

    classification = classify(query)
    context = await retriever.retrieve(query, classification)
    results = context.model_dump(mode="json")
    if collection is not None:
        results = {collection: results[collection]}
    return {"query": query, "type": classification.type.value, "results": results}


# ============================================================================
# Vector indexing
# ============================================================================

def product_text(product: ProductRecord) -> str:
    parts = [product.name, product.series, product.description, ", ".join(product.features)]
    return ". ".join(p for p in parts if p)


def recipe_text(recipe: RecipeRecord) -> str:
    parts = [recipe.title, recipe.description, ", ".join(recipe.ingredients), ", ".join(recipe.dietary)]
    return ". ".join(p for p in parts if p)


async def index_items(items: List[Dict[str, Any]], embedder, index) -> int:
    """Embed and upsert {id, text, metadata} dicts in batches"""
    indexed = 0
    for start in range(0, len(items), INDEX_BATCH_SIZE):
        batch = items[start:start + INDEX_BATCH_SIZE]
        vectors = await embedder.embed_many([item["text"] for item in batch])
        indexed += await index.upsert([
            VectorItem(id=item["id"], values=vector, metadata=item["metadata"])
            for item, vector in zip(batch, vectors)
        ])
        logger.info(f"[INDEX] Batch {start // INDEX_BATCH_SIZE + 1}: {len(batch)} items")
    return indexed


@router.post("/index", response_model=IndexResponse)
async def build_index(
    store=Depends(get_store),
    embedder=Depends(get_embedder),
    index=Depends(get_vector_index),
):
    """Embed every product and recipe into the vector index"""
    products = await store.all_products()
    recipes = await store.all_recipes()

    products_indexed = await index_items([
        {"id": f"{PREFIX_PRODUCT}{p.sku}", "text": product_text(p), "metadata": {"sku": p.sku, "name": p.name}}
        for p in products
    ], embedder, index)
    recipes_indexed = await index_items([
        {"id": f"{PREFIX_RECIPE}{r.slug}", "text": recipe_text(r), "metadata": {"slug": r.slug, "title": r.title}}
        for r in recipes
    ], embedder, index)

    logger.info(f"[INDEX] Indexed {products_indexed} products and {recipes_indexed} recipes")
    return IndexResponse(success=True, products_indexed=products_indexed, recipes_indexed=recipes_indexed)
