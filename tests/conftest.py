"""Shared fixtures: classification and atom builders, a mocked completion client
and a seeded in-memory catalog."""

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from pagestream_api.core.catalog_store import CatalogStore
from pagestream_api.core.database import Base, Faq, Product, Recipe, Video
from pagestream_api.models.atoms import ContentAtom
from pagestream_api.pipeline.classifier import classify


def _products():
    return [
        Product(
            sku="A3500", name="Vitamix Ascent X5", series="Ascent X", price=749.95,
            description="Flagship smart blender with touchscreen controls",
            features=["Touchscreen controls", "Self-Detect containers", "Five program settings"],
            specs={"noise_db": 88, "motor": "2.2 HP"},
        ),
        Product(
            sku="A2500", name="Ascent A2500", series="Ascent", price=549.95,
            description="Ascent series blender with three program settings",
            features=["Variable speed", "Program settings"],
            specs={"noise_db": 90},
        ),
        Product(
            sku="E310", name="Explorian E310", series="Explorian", price=349.95,
            description="Entry level Explorian blender",
            features=["Variable speed", "Pulse"],
            specs={"noise_db": 94},
        ),
        Product(
            sku="P750", name="Propel 750", series="Propel", price=449.95,
            description="Propel series with preset programs",
            features=["Preset programs"],
            specs={},
        ),
    ]


def _recipes():
    return [
        Recipe(
            slug="green-detox-smoothie/", title="Green Detox Smoothie",
            description="A bright green smoothie", ingredients=["spinach", "banana", "almond milk"],
            instructions=["Add ingredients", "Blend on high"], prep_time_minutes=5, servings="2",
            dietary_tags=["vegan", "gluten-free"], categories="smoothies",
        ),
        Recipe(
            slug="classic-tomato-soup/", title="Classic Tomato Soup",
            description="Hot soup made in the blender", ingredients=["tomatoes", "basil"],
            instructions=["Blend for six minutes"], prep_time_minutes=10, servings="4",
            dietary_tags=["gluten-free"], categories="soups",
        ),
        Recipe(
            slug="keto-chocolate-shake/", title="Keto Chocolate Shake",
            description="Rich low carb shake", ingredients=["cocoa", "cream"],
            instructions=["Blend until smooth"], prep_time_minutes=5, servings="1",
            dietary_tags=["low-carb"], categories="smoothies",
        ),
    ]


def _faqs():
    return [
        Faq(question="How do I clean my Vitamix?", answer="Blend warm water with a drop of dish soap.",
            category="cleaning", tags="clean,care"),
        Faq(question="What is the warranty on Ascent blenders?", answer="Ascent blenders carry a 10-year warranty.",
            category="warranty", tags="warranty,ascent"),
    ]


def _videos():
    return [
        Video(id="vid-clean", title="Cleaning Your Vitamix", description="Self-cleaning in 60 seconds",
              tags="clean", view_count=1200),
        Video(id="vid-ascent", title="Meet the Ascent Series", description="Ascent overview",
              tags="ascent", view_count=900),
    ]


@pytest.fixture
def make_classification():
    """classify() shortcut"""
    return classify


@pytest.fixture
def make_atom():
    """Build a validated ContentAtom from a tag and content dict"""
    def _make(atom_type, content, priority=5, image_hint=None):
        return ContentAtom.build(atom_type, content, priority=priority, image_hint=image_hint)
    return _make


@pytest.fixture
def completion_client():
    """Completion client whose complete() is an AsyncMock"""
    client = AsyncMock()
    client.complete = AsyncMock(return_value="{}")
    return client


@pytest_asyncio.fixture
async def session_factory():
    """In-memory SQLite catalog seeded with a handful of rows"""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        session.add_all(_products() + _recipes() + _faqs() + _videos())
        await session.commit()

    yield factory
    await engine.dispose()


@pytest_asyncio.fixture
async def catalog(session_factory):
    """CatalogStore over the seeded in-memory database"""
    return CatalogStore(session_factory=session_factory)
