# dinnerbot/services/session_manager.py
"""
Recommendation session lifecycle.

A session is reusable while `now - last_activity` is inside the configured window
(24h by default). Expiry is computed on read and never stored. Storage failures
never block the flow: lookup failure creates a new session, insert failure still
returns the generated id, and dish inserts are independent of each other.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional

from pydantic import TypeAdapter, ValidationError

from dinnerbot.config.settings import settings
from dinnerbot.models.recommendation import (
    RecommendationContext,
    RecommendedDish,
    utcnow,
)
from dinnerbot.services.store import SupabaseStore

logger = logging.getLogger(__name__)

# PostgREST trims trailing zeros from fractional seconds (e.g. ".12345+00:00").
_TIMESTAMP = TypeAdapter(datetime)


def _parse_ts(value: Any) -> Optional[datetime]:
    if not isinstance(value, (datetime, str)) or value == "":
        return None
    try:
        ts = _TIMESTAMP.validate_python(value)
    except ValidationError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def make_session_id(user_id: str, now: datetime) -> str:
    return f"session_{user_id}_{int(now.timestamp() * 1000)}"


class SessionManager:

    def __init__(
        self,
        store: Optional[SupabaseStore] = None,
        window_hours: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store or SupabaseStore()
        self.window = timedelta(
            hours=window_hours if window_hours is not None else settings.session_window_hours
        )
        self.clock = clock

    def is_session_active(self, last_activity: Any) -> bool:
        ts = _parse_ts(last_activity)
        if ts is None:
            return False
        return self.clock() - ts <= self.window

    async def active_session(self, user_id: str) -> Optional[str]:
        """Id of the user's most recent active session, or None (also on read failure)."""
        cutoff = (self.clock() - self.window).isoformat()
        res = await self.store.call(
            "recommendation_sessions.current",
            lambda: self.store.table("recommendation_sessions")
            .select("id, last_activity")
            .eq("user_id", user_id)
            .gte("last_activity", cutoff)
            .order("last_activity", desc=True)
            .limit(1)
            .execute(),
        )
        if not res.get("ok"):
            logger.warning(
                "Get current session failed for %s: %s", user_id, res.get("error")
            )
            return None
        for row in SupabaseStore.rows(res):
            if row.get("id") and self.is_session_active(row.get("last_activity")):
                logger.info(
                    "Reusing existing session: %s (last_activity: %s)",
                    row["id"],
                    row.get("last_activity"),
                )
                return row["id"]
        return None

    async def resolve_or_create_session(self, user_id: str) -> str:
        session_id = await self.active_session(user_id)
        if session_id:
            return session_id
        logger.info("No valid session found for user %s, creating new session", user_id)
        return await self.create_session(user_id)

    async def create_session(self, user_id: str) -> str:
        now = self.clock()
        session_id = make_session_id(user_id, now)
        row = {
            "id": session_id,
            "user_id": user_id,
            "created_at": now.isoformat(),
            "last_activity": now.isoformat(),
        }
        res = await self.store.call(
            "recommendation_sessions.insert",
            lambda: self.store.table("recommendation_sessions").insert(row).execute(),
        )
        if not res.get("ok"):
            logger.error(
                "New session creation failed for %s (continuing with %s): %s",
                user_id,
                session_id,
                res.get("error"),
            )
        return session_id

    async def touch(self, session_id: str) -> bool:
        now_iso = self.clock().isoformat()
        res = await self.store.call(
            "recommendation_sessions.touch",
            lambda: self.store.table("recommendation_sessions")
            .update({"last_activity": now_iso})
            .eq("id", session_id)
            .execute(),
        )
        if not res.get("ok"):
            logger.error("Session touch failed for %s: %s", session_id, res.get("error"))
        return bool(res.get("ok"))

    async def record_recommendations(
        self,
        session_id: str,
        dishes: List[RecommendedDish],
        context: Optional[RecommendationContext] = None,
    ) -> None:
        """
        Bump last_activity, then insert each dish with order 1..n. A failed insert
        is logged and the remaining dishes are still written.
        """
        await self.touch(session_id)

        now = self.clock()
        written = 0
        for order, dish in enumerate(dishes, 1):
            dish.session_id = session_id
            dish.recommendation_order = order
            dish.recommended_at = now
            row = dish.to_row()
            res = await self.store.call(
                "recommended_dishes.insert",
                lambda row=row: self.store.table("recommended_dishes").insert(row).execute(),
            )
            if res.get("ok"):
                written += 1
            else:
                logger.error(
                    "Recommended dish insert failed (session=%s order=%d dish=%s): %s",
                    session_id,
                    order,
                    dish.dish_name,
                    res.get("error"),
                )
        logger.info(
            "Recorded %d/%d recommendations for %s (request=%s)",
            written,
            len(dishes),
            session_id,
            context.user_request.type.value if context else "-",
        )

    async def find_recommended_dish(
        self, session_id: str, order: int
    ) -> Optional[RecommendedDish]:
        """Latest dish with the given order index in the session."""
        res = await self.store.call(
            "recommended_dishes.by_order",
            lambda: self.store.table("recommended_dishes")
            .select("*")
            .eq("session_id", session_id)
            .eq("recommendation_order", order)
            .order("recommended_at", desc=True)
            .limit(1)
            .execute(),
        )
        rows = SupabaseStore.rows(res)
        if not rows:
            if not res.get("ok"):
                logger.warning(
                    "Dish lookup failed (session=%s order=%d): %s",
                    session_id,
                    order,
                    res.get("error"),
                )
            return None
        return RecommendedDish.from_row(rows[0])

    async def current_dish_for_choice(
        self, user_id: str, order: int
    ) -> Optional[RecommendedDish]:
        """Resolve a 1/2/3 reply against the user's active session, without creating one."""
        session_id = await self.active_session(user_id)
        if not session_id:
            return None
        return await self.find_recommended_dish(session_id, order)

    async def mark_selected(self, dish: RecommendedDish) -> bool:
        if dish.id is not None:
            build = (
                lambda: self.store.table("recommended_dishes")
                .update({"selected": True})
                .eq("id", dish.id)
                .execute()
            )
        else:
            build = (
                lambda: self.store.table("recommended_dishes")
                .update({"selected": True})
                .eq("session_id", dish.session_id)
                .eq("dish_name", dish.dish_name)
                .execute()
            )
        res = await self.store.call("recommended_dishes.mark_selected", build)
        if not res.get("ok"):
            logger.warning(
                "Failed to mark %s selected in %s: %s",
                dish.dish_name,
                dish.session_id,
                res.get("error"),
            )
            return False
        dish.selected = True
        return True
