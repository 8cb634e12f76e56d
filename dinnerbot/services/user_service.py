# dinnerbot/services/user_service.py
"""
User service for database operations using Supabase.

- Standardized return shape for every public method:
    {"ok": bool, "data": ..., "error": "...", "diagnostics": {...}}
  A missing user is `ok=False, error="user_not_found"`; any other error means
  the lookup itself failed.
- Allergy / dislike updates are parsed from labelled lines such as
  "アレルギー: 卵、乳製品".
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from dinnerbot.config.settings import settings
from dinnerbot.models.recommendation import UserProfile
from dinnerbot.services.store import SupabaseStore, _make_result, _now_iso

logger = logging.getLogger(__name__)

USER_NOT_FOUND = "user_not_found"

_PREFERENCE_LINE = re.compile(
    r"^\s*(アレルギー|嫌いな食材|苦手)\s*[:：]\s*(.*?)\s*$", re.MULTILINE
)
_PREFERENCE_FIELDS = {"アレルギー": "allergies", "嫌いな食材": "dislikes", "苦手": "dislikes"}
_NONE_WORDS = {"なし", "無し", "ない", "none", "-"}


def parse_preferences(text: str) -> Dict[str, str]:
    """
    Map labelled lines to user columns. "なし" clears a field (stored as "").
    Later lines for the same field are appended.
    """
    updates: Dict[str, str] = {}
    for label, value in _PREFERENCE_LINE.findall(text or ""):
        field = _PREFERENCE_FIELDS[label]
        value = "" if value.strip().lower() in _NONE_WORDS else value.strip()
        if updates.get(field) and value:
            updates[field] = f"{updates[field]}、{value}"
        else:
            updates[field] = value
    return updates


def is_invite_code(text: str) -> bool:
    msg = (text or "").strip()
    if settings.invite_prefix and msg.startswith(settings.invite_prefix):
        return True
    return msg in settings.invite_code_list


class UserService:

    def __init__(self, store: Optional[SupabaseStore] = None):
        self.store = store or SupabaseStore()

    async def get_user(self, user_id: str) -> Dict[str, Any]:
        """data is a UserProfile when found."""
        logger.info("get_user: %s", user_id)
        res = await self.store.call(
            "users.get",
            lambda: self.store.table("users")
            .select("*")
            .eq("id", user_id)
            .limit(1)
            .execute(),
        )
        if not res.get("ok"):
            return res
        rows = SupabaseStore.rows(res)
        if not rows:
            return _make_result(False, error=USER_NOT_FOUND, diagnostics=res["diagnostics"])
        return _make_result(
            True, data=UserProfile.from_row(rows[0]), diagnostics=res["diagnostics"]
        )

    async def create_user(self, user_id: str) -> Dict[str, Any]:
        row = {"id": user_id, "invited": False, "created_at": _now_iso()}
        res = await self.store.call(
            "users.insert",
            lambda: self.store.table("users").insert(row).execute(),
        )
        if not res.get("ok"):
            logger.error("create_user failed for %s: %s", user_id, res.get("error"))
            return res
        return _make_result(True, data=UserProfile.from_row(row), diagnostics=res["diagnostics"])

    async def _update(self, user_id: str, label: str, values: Dict[str, Any]) -> Dict[str, Any]:
        res = await self.store.call(
            label,
            lambda: self.store.table("users").update(values).eq("id", user_id).execute(),
        )
        if not res.get("ok"):
            logger.error("%s failed for %s: %s", label, user_id, res.get("error"))
        return res

    async def mark_invited(self, user_id: str) -> Dict[str, Any]:
        logger.info("mark_invited: %s", user_id)
        return await self._update(user_id, "users.invite", {"invited": True})

    async def update_preferences(
        self, user_id: str, allergies: Optional[str] = None, dislikes: Optional[str] = None
    ) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        if allergies is not None:
            values["allergies"] = allergies
        if dislikes is not None:
            values["dislikes"] = dislikes
        if not values:
            return _make_result(False, error="nothing_to_update")
        return await self._update(user_id, "users.preferences", values)

    async def list_invited_users(self) -> List[UserProfile]:
        res = await self.store.call(
            "users.invited",
            lambda: self.store.table("users").select("*").eq("invited", True).execute(),
        )
        if not res.get("ok"):
            logger.error("list_invited_users failed: %s", res.get("error"))
            return []
        return [UserProfile.from_row(r) for r in SupabaseStore.rows(res)]
