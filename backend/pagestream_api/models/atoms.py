"""Content atoms - the typed unit of generated page content

Each atom type has its own payload model. The validator is the only place that
turns raw completion output into these models; layout and rendering read them.
"""

from enum import Enum
from typing import Optional, List, Dict, Any, Union, Type
from pydantic import BaseModel, ConfigDict, Field


class AtomType(str, Enum):
    """Atom tags"""
    HEADING = "heading"
    PARAGRAPH = "paragraph"
    LIST = "list"
    FEATURE_SET = "feature_set"
    FAQ_SET = "faq_set"
    STEPS = "steps"
    TABLE = "table"
    COMPARISON = "comparison"
    CTA = "cta"
    RELATED = "related"
    PRODUCT_DETAIL = "product_detail"
    RECIPE_DETAIL = "recipe_detail"
    INTERACTIVE_GUIDE = "interactive_guide"
    NUTRITION_FACTS = "nutrition_facts"
    INGREDIENT_LIST = "ingredient_list"
    TIPS = "tips"
    TESTIMONIALS = "testimonials"
    VIDEO = "video"


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class HeadingContent(_Payload):
    text: str
    level: int = 2


class ParagraphContent(_Payload):
    text: str


class ListContent(_Payload):
    items: List[str] = Field(default_factory=list)
    ordered: bool = False


class Feature(_Payload):
    title: str
    description: str = ""
    icon: Optional[str] = None


class FeatureSetContent(_Payload):
    features: List[Feature] = Field(default_factory=list)


class FaqItem(_Payload):
    question: str
    answer: str


class FaqSetContent(_Payload):
    faqs: List[FaqItem] = Field(default_factory=list)


class Step(_Payload):
    number: int = 0
    title: str = ""
    description: str = ""


class StepsContent(_Payload):
    steps: List[Step] = Field(default_factory=list)


class TableContent(_Payload):
    headers: List[str] = Field(default_factory=list)
    rows: List[List[str]] = Field(default_factory=list)


class ComparedProduct(_Payload):
    sku: str = ""
    name: str
    price: Optional[float] = None
    features: List[str] = Field(default_factory=list)
    pros: List[str] = Field(default_factory=list)
    cons: List[str] = Field(default_factory=list)


class ComparisonContent(_Payload):
    products: List[ComparedProduct] = Field(default_factory=list)


class CtaContent(_Payload):
    text: str = "Discover more"
    button_text: str = Field(default="Learn More", alias="buttonText")
    url: str = "/products"


class RelatedItem(_Payload):
    title: str
    description: str = ""
    url: Optional[str] = None


class RelatedContent(_Payload):
    items: List[RelatedItem] = Field(default_factory=list)


class ProductDetailContent(_Payload):
    sku: str = ""
    name: str
    series: Optional[str] = None
    price: Optional[float] = None
    description: Optional[str] = None
    features: List[str] = Field(default_factory=list)
    specs: Dict[str, Any] = Field(default_factory=dict)
    warranty: Optional[str] = None


class RecipeDetailContent(_Payload):
    title: str
    description: Optional[str] = None
    prep_time: Optional[int] = Field(default=None, alias="prepTime")
    cook_time: Optional[int] = Field(default=None, alias="cookTime")
    servings: Optional[str] = None
    ingredients: List[str] = Field(default_factory=list)
    instructions: List[str] = Field(default_factory=list)
    tips: List[str] = Field(default_factory=list)
    nutrition: Dict[str, Any] = Field(default_factory=dict)


class GuideTab(_Payload):
    label: str
    content: str = ""


class InteractiveGuideContent(_Payload):
    title: str = "Product Guide"
    tabs: List[GuideTab] = Field(default_factory=list)
    recommendation: Optional[str] = None


class NutritionFactsContent(_Payload):
    calories: Optional[float] = None
    protein: Optional[str] = None
    carbs: Optional[str] = None
    fat: Optional[str] = None
    fiber: Optional[str] = None
    sugar: Optional[str] = None
    sodium: Optional[str] = None


class Ingredient(_Payload):
    item: str
    amount: str = ""
    unit: str = ""


class IngredientListContent(_Payload):
    ingredients: List[Ingredient] = Field(default_factory=list)


class TipsContent(_Payload):
    tips: List[str] = Field(default_factory=list)


class Testimonial(_Payload):
    quote: str
    author: str = ""
    rating: Optional[float] = None


class TestimonialsContent(_Payload):
    testimonials: List[Testimonial] = Field(default_factory=list)


class VideoContent(_Payload):
    id: str
    title: str = "Vitamix Video"
    description: Optional[str] = None


AtomContent = Union[
    HeadingContent, ParagraphContent, ListContent, FeatureSetContent, FaqSetContent,
    StepsContent, TableContent, ComparisonContent, CtaContent, RelatedContent,
    ProductDetailContent, RecipeDetailContent, InteractiveGuideContent,
    NutritionFactsContent, IngredientListContent, TipsContent, TestimonialsContent,
    VideoContent,
]

# Payload model for each tag
CONTENT_MODELS: Dict[AtomType, Type[_Payload]] = {
    AtomType.HEADING: HeadingContent,
    AtomType.PARAGRAPH: ParagraphContent,
    AtomType.LIST: ListContent,
    AtomType.FEATURE_SET: FeatureSetContent,
    AtomType.FAQ_SET: FaqSetContent,
    AtomType.STEPS: StepsContent,
    AtomType.TABLE: TableContent,
    AtomType.COMPARISON: ComparisonContent,
    AtomType.CTA: CtaContent,
    AtomType.RELATED: RelatedContent,
    AtomType.PRODUCT_DETAIL: ProductDetailContent,
    AtomType.RECIPE_DETAIL: RecipeDetailContent,
    AtomType.INTERACTIVE_GUIDE: InteractiveGuideContent,
    AtomType.NUTRITION_FACTS: NutritionFactsContent,
    AtomType.INGREDIENT_LIST: IngredientListContent,
    AtomType.TIPS: TipsContent,
    AtomType.TESTIMONIALS: TestimonialsContent,
    AtomType.VIDEO: VideoContent,
}


class ContentAtom(BaseModel):
    """A validated atom: tag, typed payload, priority and optional image hint"""
    type: AtomType
    content: AtomContent
    priority: int = Field(default=5, ge=1, le=10)
    image_hint: Optional[str] = None

    @classmethod
    def build(cls, atom_type, content: Dict[str, Any], priority: int = 5, image_hint: Optional[str] = None) -> 'ContentAtom':
        """Build an atom from a plain content dict (raises on invalid payload)"""
        atom_type = AtomType(atom_type)
        payload = CONTENT_MODELS[atom_type].model_validate(content)
        return cls(type=atom_type, content=payload, priority=priority, image_hint=image_hint)
