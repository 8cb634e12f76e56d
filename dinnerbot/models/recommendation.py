# dinnerbot/models/recommendation.py
"""
Domain values passed between the recommendation components.

Rows coming back from Supabase are plain dicts; these models give them a fixed
shape (`from_row` / `to_row`) so services do not pass loosely-keyed dicts around.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

# Sentinel stored when genre / ingredient / method cannot be resolved.
UNKNOWN = "unknown"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RequestType(str, Enum):
    DIVERSE = "diverse"
    LIGHT = "light"
    HEARTY = "hearty"
    DIFFERENT = "different"
    GENERAL = "general"

    @classmethod
    def parse(cls, value: Any) -> "RequestType":
        """Unknown or missing values map to GENERAL."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.GENERAL


class UserRequest(BaseModel):
    type: RequestType = RequestType.GENERAL
    original_message: str = ""
    timestamp: datetime = Field(default_factory=utcnow)


class StrategyDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    strategy: str
    description: str
    priority_factors: Tuple[str, ...]


class AvoidanceStrategy(BaseModel):
    avoid_ingredients: List[str] = Field(default_factory=list)
    avoid_genres: List[str] = Field(default_factory=list)
    avoid_cooking_methods: List[str] = Field(default_factory=list)
    reason: str = ""

    @classmethod
    def empty(cls, reason: str) -> "AvoidanceStrategy":
        return cls(reason=reason)

    def is_empty(self) -> bool:
        """True when nothing but blank or `unknown` metadata remains to avoid."""
        values = self.avoid_ingredients + self.avoid_genres + self.avoid_cooking_methods
        return not any(v and v != UNKNOWN for v in values)


class RecommendedDish(BaseModel):
    id: Optional[int] = None
    session_id: str = ""
    dish_name: str
    genre: str = UNKNOWN
    main_ingredient: str = UNKNOWN
    cooking_method: str = UNKNOWN
    recommendation_order: Optional[int] = None
    recommended_at: datetime = Field(default_factory=utcnow)
    selected: bool = False
    user_feedback: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "RecommendedDish":
        return cls(
            id=row.get("id"),
            session_id=row.get("session_id") or "",
            dish_name=row.get("dish_name") or "",
            genre=row.get("genre") or UNKNOWN,
            main_ingredient=row.get("main_ingredient") or UNKNOWN,
            cooking_method=row.get("cooking_method") or UNKNOWN,
            recommendation_order=row.get("recommendation_order"),
            recommended_at=row.get("recommended_at") or utcnow(),
            selected=bool(row.get("selected")),
            user_feedback=row.get("user_feedback"),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "dish_name": self.dish_name,
            "genre": self.genre,
            "main_ingredient": self.main_ingredient,
            "cooking_method": self.cooking_method,
            "recommendation_order": self.recommendation_order,
            "user_feedback": self.user_feedback,
            "recommended_at": self.recommended_at.isoformat(),
            "selected": self.selected,
        }


class UserProfile(BaseModel):
    id: str
    invited: bool = False
    allergies: Optional[str] = None
    dislikes: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "UserProfile":
        return cls(
            id=str(row.get("id")),
            invited=bool(row.get("invited")),
            allergies=row.get("allergies"),
            dislikes=row.get("dislikes"),
        )


class MealSummary(BaseModel):
    dish: str
    rating: Optional[int] = None
    mood: Optional[str] = None
    ate_date: str = ""


class MealInput(BaseModel):
    """A parsed "what I ate" message; one meal row is written per dish."""

    dishes: List[str]
    rating: int = Field(default=3, ge=1, le=5)
    mood: str = "満足"
    tags: List[str] = Field(default_factory=lambda: ["その他"])


class WeatherReport(BaseModel):
    temp: float
    feels_like: float
    humidity: int
    description: str
    wind_speed: float = 0.0


class WeatherContext(WeatherReport):
    season: str
    cooking_context: str


class RecommendationContext(BaseModel):
    user: UserProfile
    recent_meals: List[MealSummary] = Field(default_factory=list)
    preferred_dishes: List[str] = Field(default_factory=list)
    previous_recommendations: List[RecommendedDish] = Field(default_factory=list)
    user_request: UserRequest = Field(default_factory=UserRequest)
    weather: Optional[WeatherContext] = None
    avoidance_strategy: AvoidanceStrategy = Field(
        default_factory=lambda: AvoidanceStrategy.empty("")
    )


class QuickReply(BaseModel):
    label: str
    value: str


class OutboundMessage(BaseModel):
    """Plain text plus up to four quick-action buttons."""

    text: str
    quick_replies: List[QuickReply] = Field(default_factory=list, max_length=4)


class RecommendationResult(BaseModel):
    session_id: str
    user_request: UserRequest
    dishes: List[RecommendedDish]
    used_fallback: bool = False
    message: OutboundMessage
