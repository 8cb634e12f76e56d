# dinnerbot/services/meal_service.py
"""
Meal records: parsing "what I ate" messages, writing rows, reading history.

- `parse_meal_input` asks the completion service for JSON first and falls back to
  deterministic star/digit parsing; the second element of the returned tuple says
  which path was used ("ai" or "simple").
- History reads are bounded (last N days, newest first); a failed read is an
  empty history, never an error.
"""
from __future__ import annotations

import json
import logging
import re
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from dinnerbot.config.prompts import DEFAULT_PROMPTS, PromptCatalog, render_prompt
from dinnerbot.config.settings import settings
from dinnerbot.models.recommendation import MealInput, MealSummary
from dinnerbot.services.completion_service import CompletionError, CompletionService
from dinnerbot.services.store import SupabaseStore, _make_result

logger = logging.getLogger(__name__)

MEAL_MARKERS = ("⭐", "★")
PREFERRED_RATING = 4
HISTORY_LIMIT = 20


def is_meal_input(text: str) -> bool:
    return any(m in (text or "") for m in MEAL_MARKERS)


def fallback_parse_meal(text: str) -> MealInput:
    """
    Rating from the number of ⭐ (or ★) marks, else the first digit 1-5, else 3;
    clamped to 1..5. The dish is the message without stars and digits.
    """
    msg = text or ""
    stars = msg.count("⭐")
    black = msg.count("★")
    digits = re.findall(r"[1-5]", msg)
    if stars:
        rating = stars
    elif black:
        rating = black
    elif digits:
        rating = int(digits[0])
    else:
        rating = 3
    rating = min(max(rating, 1), 5)

    dish = re.sub(r"[0-9]", "", re.sub(r"[⭐★]", "", msg)).strip()
    return MealInput(dishes=[dish or "料理"], rating=rating)


def _tags_to_list(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, list):
        return [str(v) for v in value]
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return [p.strip() for p in value.split(",") if p.strip()]
        return [str(v) for v in parsed] if isinstance(parsed, list) else [str(parsed)]
    return [str(value)]


class MealService:

    def __init__(
        self,
        store: Optional[SupabaseStore] = None,
        completion: Optional[CompletionService] = None,
        prompts: PromptCatalog = DEFAULT_PROMPTS,
    ):
        self.store = store or SupabaseStore()
        self.completion = completion
        self.prompts = prompts

    async def extract_meal_data(self, text: str) -> Optional[MealInput]:
        if self.completion is None:
            return None
        try:
            reply = await self.completion.complete_json(
                render_prompt(self.prompts.meal_extraction, {"text": text}),
                max_tokens=200,
                temperature=0.0,
                system=self.prompts.meal_extraction_system,
                timeout=settings.extraction_timeout_seconds,
            )
        except (CompletionError, KeyError, ValueError) as exc:
            logger.warning("meal extraction via completion failed: %s", exc)
            return None
        if not isinstance(reply, dict):
            return None
        try:
            meal = MealInput(
                dishes=[str(d).strip() for d in reply.get("dishes") or [] if str(d).strip()],
                rating=min(max(int(reply.get("rating") or 3), 1), 5),
                mood=str(reply.get("mood") or "満足"),
                tags=_tags_to_list(reply.get("tags")) or ["その他"],
            )
        except (TypeError, ValueError, ValidationError) as exc:
            logger.warning("meal extraction returned unusable JSON: %s", exc)
            return None
        return meal if meal.dishes else None

    async def parse_meal_input(self, text: str) -> Tuple[MealInput, str]:
        meal = await self.extract_meal_data(text)
        if meal is not None:
            return meal, "ai"
        logger.info("Using simple meal parsing")
        return fallback_parse_meal(text), "simple"

    async def record_meal(
        self,
        user_id: str,
        meal: MealInput,
        decided: bool = True,
        ate_date: Optional[date] = None,
    ) -> Dict[str, Any]:
        """Insert one row per dish. Returns a summary result; partial writes are logged."""
        day = (ate_date or date.today()).isoformat()
        written = 0
        errors: List[str] = []
        for dish in meal.dishes:
            row = {
                "user_id": user_id,
                "ate_date": day,
                "dish": dish,
                "tags": json.dumps(meal.tags, ensure_ascii=False),
                "rating": meal.rating,
                "mood": meal.mood,
                "decided": decided,
            }
            res = await self.store.call(
                "meals.insert",
                lambda row=row: self.store.table("meals").insert(row).execute(),
            )
            if res.get("ok"):
                written += 1
            else:
                logger.error("meal insert failed (%s, %s): %s", user_id, dish, res.get("error"))
                errors.append(str(res.get("error")))
        return _make_result(
            not errors,
            data={"written": written},
            error=", ".join(errors),
            diagnostics={"dishes": len(meal.dishes), "written": written},
        )

    async def record_decided_dish(self, user_id: str, dish_name: str) -> Dict[str, Any]:
        """A dish chosen from recommendations, logged as decided for today."""
        return await self.record_meal(
            user_id, MealInput(dishes=[dish_name], mood="決定", tags=["レコメンド"])
        )

    async def get_recent_meals(
        self, user_id: str, days: Optional[int] = None
    ) -> List[MealSummary]:
        window = days if days is not None else settings.meal_history_days
        since = (date.today() - timedelta(days=window)).isoformat()
        res = await self.store.call(
            "meals.recent",
            lambda: self.store.table("meals")
            .select("dish, rating, mood, ate_date")
            .eq("user_id", user_id)
            .gte("ate_date", since)
            .order("ate_date", desc=True)
            .limit(HISTORY_LIMIT)
            .execute(),
        )
        if not res.get("ok"):
            logger.warning("recent meals read failed for %s: %s", user_id, res.get("error"))
            return []
        meals: List[MealSummary] = []
        for row in SupabaseStore.rows(res):
            if not row.get("dish"):
                continue
            meals.append(
                MealSummary(
                    dish=str(row["dish"]),
                    rating=row.get("rating"),
                    mood=row.get("mood"),
                    ate_date=str(row.get("ate_date") or ""),
                )
            )
        return meals

    @staticmethod
    def preferred_dishes(meals: List[MealSummary]) -> List[str]:
        out: List[str] = []
        for m in meals:
            if (m.rating or 0) >= PREFERRED_RATING and m.dish not in out:
                out.append(m.dish)
        return out
