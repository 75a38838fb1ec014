"""Pipeline data model and API schemas"""

import json
from enum import Enum
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict, Field

from pagestream_api.models.atoms import ContentAtom


# ============================================================================
# Classification
# ============================================================================

class QueryType(str, Enum):
    """Mutually exclusive intent labels"""
    PRODUCT = "product"
    RECIPE = "recipe"
    BLOG = "blog"
    SUPPORT = "support"
    COMMERCIAL = "commercial"
    GENERAL = "general"


class Collection(str, Enum):
    """Retrievable content collections"""
    PRODUCTS = "products"
    RECIPES = "recipes"
    FAQS = "faqs"
    VIDEOS = "videos"


class SpecialFlags(BaseModel):
    """Cross-cutting situations detected in the query"""
    model_config = ConfigDict(frozen=True)

    accessibility: bool = False
    noise: bool = False
    medical: bool = False

    def any_active(self) -> bool:
        return self.accessibility or self.noise or self.medical


class RetrievalPolicy(BaseModel):
    """Which collections to query and how much to fetch"""
    model_config = ConfigDict(frozen=True)

    collections: List[Collection]
    top_k: int
    min_score: float
    diversity_penalty: float


class ClassificationResult(BaseModel):
    """Classifier output, consumed read-only by every later stage"""
    model_config = ConfigDict(frozen=True)

    type: QueryType
    confidence: float = Field(ge=0.0, le=1.0)
    keywords: List[str] = Field(default_factory=list)
    special_flags: SpecialFlags = Field(default_factory=SpecialFlags)
    budget: Optional[float] = None
    retrieval_policy: RetrievalPolicy
    needs_product_images: bool = False
    needs_recipe_images: bool = False


# ============================================================================
# Retrieval
# ============================================================================

class ProductRecord(BaseModel):
    sku: str
    name: str
    series: str = ""
    price: Optional[float] = None
    description: str = ""
    features: List[str] = Field(default_factory=list)
    specs: Dict[str, Any] = Field(default_factory=dict)
    image_url: Optional[str] = None


class RecipeRecord(BaseModel):
    slug: str
    title: str
    description: str = ""
    ingredients: List[str] = Field(default_factory=list)
    instructions: List[str] = Field(default_factory=list)
    prep_time: Optional[int] = None
    servings: Optional[str] = None
    dietary: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None


class FaqRecord(BaseModel):
    id: Optional[int] = None
    question: str
    answer: str
    category: str = ""


class VideoRecord(BaseModel):
    id: str
    title: str
    description: str = ""
    thumbnail: Optional[str] = None


class RetrievedContext(BaseModel):
    """Four independent collections; a failed collection is an empty list"""
    products: List[ProductRecord] = Field(default_factory=list)
    recipes: List[RecipeRecord] = Field(default_factory=list)
    faqs: List[FaqRecord] = Field(default_factory=list)
    videos: List[VideoRecord] = Field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        return {
            "products": len(self.products),
            "recipes": len(self.recipes),
            "faqs": len(self.faqs),
            "videos": len(self.videos),
        }


# ============================================================================
# Generation and validation
# ============================================================================

class HeroContent(BaseModel):
    title: str
    subtitle: str
    image_hint: str


class GenerationMetadata(BaseModel):
    query_type: QueryType
    confidence: float
    generated_at: str
    used_fallback: bool = False


class GenerationResult(BaseModel):
    """Parsed content generation output; atoms are still raw dicts here"""
    title: str
    description: str = ""
    atoms: List[Dict[str, Any]] = Field(default_factory=list)
    suggested_blocks: List[str] = Field(default_factory=list)
    metadata: Optional[GenerationMetadata] = None


class ValidationIssue(BaseModel):
    atom_index: int
    atom_type: str
    field: str
    message: str
    auto_fixed: bool = False


class ValidationResult(BaseModel):
    valid: bool
    atoms: List[ContentAtom] = Field(default_factory=list)
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)


# ============================================================================
# Layout and rendering
# ============================================================================

class LayoutBlock(BaseModel):
    block_name: str
    atom_indices: List[int] = Field(default_factory=list)
    variant: Optional[str] = None


class PageStructure(BaseModel):
    has_hero: bool
    main_content_type: str
    estimated_length: str


class LayoutResult(BaseModel):
    blocks: List[LayoutBlock] = Field(default_factory=list)
    page_structure: PageStructure
    source: str = "model"


class RenderedBlock(BaseModel):
    """Always safe to concatenate into the page, even when error is True"""
    name: str
    html: str
    atoms: List[ContentAtom] = Field(default_factory=list)
    error: bool = False
    error_message: Optional[str] = None


class RenderResult(BaseModel):
    blocks: List[RenderedBlock] = Field(default_factory=list)
    failed_count: int = 0
    total_count: int = 0
    skipped_count: int = 0


# ============================================================================
# Images
# ============================================================================

class ImageSize(str, Enum):
    HERO = "hero"
    CARD = "card"
    COLUMN = "column"
    THUMBNAIL = "thumbnail"


class ImageRequest(BaseModel):
    id: str
    prompt: str
    size: ImageSize
    block_id: str


class GeneratedImage(BaseModel):
    id: str
    url: str
    size: ImageSize
    success: bool
    error: Optional[str] = None


# ============================================================================
# Streaming and API
# ============================================================================

class StreamEvent(BaseModel):
    """One server-sent event; data carries eventIndex once emitted"""
    event: str
    data: Dict[str, Any] = Field(default_factory=dict)

    def encode(self) -> str:
        """Serialize in event-stream wire format"""
        return f"event: {self.event}\ndata: {json.dumps(self.data, default=str)}\n\n"


class IndexResponse(BaseModel):
    """POST /api/index response"""
    success: bool
    products_indexed: int
    recipes_indexed: int


class ErrorResponse(BaseModel):
    """Error response"""
    error_id: str
    code: str
    message: str
    hint: Optional[str] = None
    retryable: bool = False
    session_id: Optional[str] = None
