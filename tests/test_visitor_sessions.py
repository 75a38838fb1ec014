"""
Tests for visitor sessions: history, profile inference and journey stage
"""
from datetime import datetime, timedelta

from pagestream_api.core.visitor_sessions import (
    MAX_PROFILE_ITEMS,
    MAX_QUERIES_PER_SESSION,
    VisitorSessionStore,
    build_session_context,
)
from pagestream_api.models.sessions import JourneyStage


class TestSessionLifecycle:
    """Creation, lookup and expiry"""

    def test_get_or_create_reuses_id(self):
        store = VisitorSessionStore(ttl_days=30)
        first = store.get_or_create("visitor-1", user_agent="pytest")
        second = store.get_or_create("visitor-1")
        assert first is second
        assert first.metadata.user_agent == "pytest"

    def test_generated_id(self):
        session = VisitorSessionStore().get_or_create()
        assert len(session.id) == 16

    def test_expired_session_is_missing(self):
        store = VisitorSessionStore(ttl_days=1)
        session = store.get_or_create("old")
        session.last_activity = datetime.utcnow() - timedelta(days=2)
        assert store.get("old") is None
        assert "old" not in store.sessions

    def test_cleanup_counts_removed(self):
        store = VisitorSessionStore(ttl_days=1)
        store.get_or_create("fresh")
        store.get_or_create("stale").last_activity = datetime.utcnow() - timedelta(days=3)
        assert store.cleanup() == 1
        assert list(store.sessions) == ["fresh"]


class TestQueryHistory:
    """Newest-first history with a cap"""

    def test_newest_first(self):
        store = VisitorSessionStore()
        session = store.get_or_create("v")
        store.add_query(session, "green smoothie", "recipe")
        store.add_query(session, "tomato soup", "recipe")
        assert [q.query for q in session.queries] == ["tomato soup", "green smoothie"]
        assert session.metadata.total_queries == 2

    def test_history_capped(self):
        store = VisitorSessionStore()
        session = store.get_or_create("v")
        for i in range(MAX_QUERIES_PER_SESSION + 5):
            store.add_query(session, f"query {i}", "general")
        assert len(session.queries) == MAX_QUERIES_PER_SESSION
        assert session.metadata.total_queries == MAX_QUERIES_PER_SESSION + 5


class TestProfileInference:
    """Interests, series and diets read from query text"""

    def test_profile_from_queries(self):
        store = VisitorSessionStore()
        session = store.get_or_create("v")
        store.add_query(session, "vegan smoothie for my Explorian", "recipe")
        store.add_query(session, "keto soup", "recipe")

        profile = session.profile
        assert profile.interests == ["smoothies", "soups"]
        assert profile.preferred_series == ["Explorian"]
        assert profile.dietary_preferences == ["vegan", "keto"]

    def test_budget_sets_price_range(self):
        store = VisitorSessionStore()
        session = store.get_or_create("v")
        store.add_query(session, "blender under $500", "product", budget=500)
        assert session.profile.price_range.max == 500
        assert session.profile.price_range.min == 0

    def test_profile_lists_bounded(self):
        store = VisitorSessionStore()
        session = store.get_or_create("v")
        session.profile.interests = [f"interest-{i}" for i in range(MAX_PROFILE_ITEMS)]
        store.add_query(session, "frozen dessert", "recipe")
        assert len(session.profile.interests) == MAX_PROFILE_ITEMS
        assert session.profile.interests[-1] == "frozen-desserts"
        assert "interest-0" not in session.profile.interests


class TestJourneyStage:
    """exploring -> comparing -> deciding"""

    def test_first_query_exploring(self):
        store = VisitorSessionStore()
        session = store.add_query(store.get_or_create("v"), "smoothie ideas", "recipe")
        assert session.journey_stage == JourneyStage.EXPLORING

    def test_comparison_query(self):
        store = VisitorSessionStore()
        session = store.add_query(store.get_or_create("v"), "Ascent vs Explorian", "product")
        assert session.journey_stage == JourneyStage.COMPARING

    def test_three_queries_comparing(self):
        store = VisitorSessionStore()
        session = store.get_or_create("v")
        for query in ("smoothies", "soups", "nut butter"):
            store.add_query(session, query, "recipe")
        assert session.journey_stage == JourneyStage.COMPARING

    def test_buying_intent_deciding(self):
        store = VisitorSessionStore()
        session = store.add_query(store.get_or_create("v"), "where to buy an Ascent", "product")
        assert session.journey_stage == JourneyStage.DECIDING

    def test_conversion_deciding(self):
        store = VisitorSessionStore()
        session = store.record_conversion(store.get_or_create("v"))
        assert session.metadata.conversions == 1
        assert session.journey_stage == JourneyStage.DECIDING


class TestSessionContext:
    """Prompt summary"""

    def test_context_lines(self):
        store = VisitorSessionStore()
        session = store.get_or_create("v")
        store.add_query(session, "keto smoothie", "recipe")
        context = build_session_context(session)

        assert "**Journey Stage:** exploring" in context
        assert "**Dietary Preferences:** keto" in context
        assert "**Preferred Series:** any" in context
        assert '- "keto smoothie" (recipe)' in context

    def test_empty_session(self):
        context = build_session_context(VisitorSessionStore().get_or_create("v"))
        assert "**Interests:** general" in context
        assert "Recent Queries" not in context
