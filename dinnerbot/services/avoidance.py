# dinnerbot/services/avoidance.py
"""
Avoidance strategy derived from the latest recommendation batch of a session.

Only the three most recent `recommended_dishes` rows are read, so the strategy
always reflects the immediately previous batch. The builder never raises: a
failed or timed-out read yields an empty strategy with a distinct reason.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from dinnerbot.models.recommendation import AvoidanceStrategy, RecommendedDish
from dinnerbot.services.store import SupabaseStore

logger = logging.getLogger(__name__)

BATCH_SIZE = 3

REASON_FIRST = "初回提案のため回避対象なし"
REASON_ERROR = "エラーにより回避対象設定失敗"


def _unique(values) -> List[str]:
    seen: List[str] = []
    for v in values:
        v = (v or "").strip()
        if v and v not in seen:
            seen.append(v)
    return seen


def strategy_from_dishes(dishes: List[RecommendedDish]) -> AvoidanceStrategy:
    if not dishes:
        return AvoidanceStrategy.empty(REASON_FIRST)
    names = ", ".join(d.dish_name for d in dishes)
    return AvoidanceStrategy(
        avoid_ingredients=_unique(d.main_ingredient for d in dishes),
        avoid_genres=_unique(d.genre for d in dishes),
        avoid_cooking_methods=_unique(d.cooking_method for d in dishes),
        reason=f"前回提案した{len(dishes)}品の特徴を回避: {names}",
    )


class AvoidanceStrategyBuilder:

    def __init__(self, store: Optional[SupabaseStore] = None):
        self.store = store or SupabaseStore()

    async def analyze(
        self, session_id: str
    ) -> Tuple[List[RecommendedDish], AvoidanceStrategy]:
        """
        One bounded read returning (latest batch, strategy). The batch is empty
        on the first recommendation of a session and on read failure.
        """
        res = await self.store.call(
            "recommended_dishes.latest_batch",
            lambda: self.store.table("recommended_dishes")
            .select(
                "dish_name, genre, main_ingredient, cooking_method, "
                "recommendation_order, recommended_at"
            )
            .eq("session_id", session_id)
            .order("recommended_at", desc=True)
            .limit(BATCH_SIZE)
            .execute(),
        )
        if not res.get("ok"):
            logger.warning(
                "Previous recommendations analysis failed for %s: %s",
                session_id,
                res.get("error"),
            )
            return [], AvoidanceStrategy.empty(REASON_ERROR)

        try:
            dishes = [
                RecommendedDish.from_row(r)
                for r in SupabaseStore.rows(res)[:BATCH_SIZE]
            ]
        except (TypeError, ValueError) as exc:
            logger.warning("Malformed recommended_dishes rows for %s: %s", session_id, exc)
            return [], AvoidanceStrategy.empty(REASON_ERROR)

        strategy = strategy_from_dishes(dishes)
        if dishes:
            logger.info(
                "Avoidance strategy: ingredients=%d genres=%d methods=%d (previous: %s)",
                len(strategy.avoid_ingredients),
                len(strategy.avoid_genres),
                len(strategy.avoid_cooking_methods),
                ", ".join(f"{d.dish_name}({d.genre})" for d in dishes),
            )
        return dishes, strategy

    async def build_avoidance_strategy(self, session_id: str) -> AvoidanceStrategy:
        _, strategy = await self.analyze(session_id)
        return strategy
