"""Visitor session models"""

from enum import Enum
from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel, Field


class JourneyStage(str, Enum):
    """Where the visitor is in the buying journey"""
    EXPLORING = "exploring"
    COMPARING = "comparing"
    DECIDING = "deciding"


class PriceRange(BaseModel):
    min: float
    max: float


class UserProfile(BaseModel):
    """Preferences inferred from the visitor's queries"""
    interests: List[str] = Field(default_factory=list)
    preferred_series: List[str] = Field(default_factory=list)
    dietary_preferences: List[str] = Field(default_factory=list)
    price_range: Optional[PriceRange] = None


class QueryHistoryItem(BaseModel):
    query: str
    timestamp: str
    query_type: str
    generated_page_path: Optional[str] = None


class SessionMetadata(BaseModel):
    user_agent: Optional[str] = None
    referrer: Optional[str] = None
    total_queries: int = 0
    conversions: int = 0


class VisitorSession(BaseModel):
    """A returning visitor: query history, profile and journey stage"""
    id: str
    created_at: datetime = Field(default_factory=datetime.utcnow)
    last_activity: datetime = Field(default_factory=datetime.utcnow)
    queries: List[QueryHistoryItem] = Field(default_factory=list)
    profile: UserProfile = Field(default_factory=UserProfile)
    journey_stage: JourneyStage = JourneyStage.EXPLORING
    metadata: SessionMetadata = Field(default_factory=SessionMetadata)
