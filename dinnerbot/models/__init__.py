"""Domain values and table declarations for the dinner recommendation bot."""
from dinnerbot.models.tables import (
    Base,
    Meal,
    RecommendationSession,
    RecommendedDishRow,
    User,
    init_schema,
)

__all__ = [
    "Base",
    "User",
    "Meal",
    "RecommendationSession",
    "RecommendedDishRow",
    "init_schema",
]
