# dinnerbot/services/message_handler.py
"""
Message handler service for processing WhatsApp text messages.

Routing order for a text from `user_id`:
  unknown user -> welcome / not invited -> invite code gate / "/setup" help
  -> allergy & dislike lines -> meal log (⭐/★) -> recipe choice (1-3, 選ぶ, これ)
  -> recommendation request -> help

Replies go out through TwilioMessageHandler. Recommendation requests are acked
immediately and the full cycle runs via the `schedule` callable (a FastAPI
background task in the webhook); without one it runs inline.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, Optional, Union

from dinnerbot.models.recommendation import OutboundMessage, UserProfile
from dinnerbot.services.intent_classifier import IntentClassifier
from dinnerbot.services.meal_service import MealService, is_meal_input
from dinnerbot.services.recipe_service import RecipeService
from dinnerbot.services.recommendation_service import RecommendationService
from dinnerbot.services.session_manager import SessionManager
from dinnerbot.services.store import SupabaseStore
from dinnerbot.services.twilio_message_handler import TwilioMessageHandler
from dinnerbot.services.user_service import (
    USER_NOT_FOUND,
    UserService,
    is_invite_code,
    parse_preferences,
)

logger = logging.getLogger(__name__)

RECIPE_CHOICE = re.compile(r"^[1-3]$")
RECIPE_WORDS = ("選ぶ", "これ")
DAILY_MESSAGE = "今日の夕食のおすすめ"

WELCOME_TEXT = (
    "🎉 夕食レコメンドBotへようこそ！\n\n"
    "招待コードを入力するか、/setupコマンドで設定を開始してください。"
)
INVITED_TEXT = "✅ 招待コードが確認されました！\n/setupコマンドで設定を開始してください。"
INVITE_PROMPT = "招待コードを入力してください。"
SETUP_TEXT = """設定を開始します。以下の情報を教えてください：

1. アレルギー（ある場合）
2. 嫌いな食材

例: "アレルギー: 卵、乳製品
嫌いな食材: セロリ、パクチー"

食べた料理は ⭐ の数で評価して送ってください（例: 肉じゃが ⭐⭐⭐⭐）。
「おすすめ」と送ると今日の夕食を提案します。"""
HELP_TEXT = (
    "メッセージを受け取りました。食事の記録は ⭐ を含めて投稿してください。\n"
    "夕食の提案は「おすすめ」と送ってください。"
)
ACK_TEXT = "🤖 AIが食事履歴を分析中...\n30秒以内にパーソナライズされたレコメンドをお送りします！"
ERROR_TEXT = "申し訳ございません。エラーが発生しました。しばらくしてからもう一度お試しください。"
MEAL_ERROR_TEXT = "申し訳ございません。食事記録でエラーが発生しました。"
RECOMMEND_ERROR_TEXT = "申し訳ございません。レコメンド生成でエラーが発生しました。"
NO_SESSION_TEXT = "最近の提案が見つかりませんでした。「おすすめ」と送って新しい提案を受け取ってください。"
NO_DISH_TEXT = "料理名がわかりませんでした。レシピを知りたい料理名を送ってください。"


class MessageHandler:

    def __init__(
        self,
        store: Optional[SupabaseStore] = None,
        users: Optional[UserService] = None,
        meals: Optional[MealService] = None,
        sessions: Optional[SessionManager] = None,
        recommender: Optional[RecommendationService] = None,
        recipes: Optional[RecipeService] = None,
        sender: Optional[TwilioMessageHandler] = None,
        classifier: Optional[IntentClassifier] = None,
    ):
        logger.info("Initializing MessageHandler...")
        self.store = store or SupabaseStore()
        self.users = users or UserService(self.store)
        self.sessions = sessions or SessionManager(self.store)
        self.recommender = recommender or RecommendationService(
            store=self.store, users=self.users, sessions=self.sessions
        )
        self.meals = meals or MealService(self.store, self.recommender.completion)
        self.recipes = recipes or RecipeService(self.recommender.completion)
        self.sender = sender or TwilioMessageHandler()
        self.classifier = classifier or self.recommender.classifier

    async def _reply(
        self, user_id: str, path: str, message: Union[str, OutboundMessage]
    ) -> Dict[str, Any]:
        outbound = message if isinstance(message, OutboundMessage) else OutboundMessage(text=message)
        sent = await self.sender.send(user_id, outbound)
        return {"ok": True, "path": path, "reply": outbound.text, "sent": bool(sent.get("ok"))}

    async def handle_text(
        self,
        user_id: str,
        text: str,
        schedule: Optional[Callable[..., Any]] = None,
    ) -> Dict[str, Any]:
        text = (text or "").strip()
        logger.info("Text message from %s: '%s'", user_id, text[:200])
        try:
            return await self._route(user_id, text, schedule)
        except Exception as exc:
            logger.exception("Error processing message from %s: %s", user_id, exc)
            result = await self._reply(user_id, "error", ERROR_TEXT)
            result.update({"ok": False, "error": str(exc)})
            return result

    async def _route(
        self, user_id: str, text: str, schedule: Optional[Callable[..., Any]]
    ) -> Dict[str, Any]:
        res = await self.users.get_user(user_id)
        if not res.get("ok"):
            if res.get("error") != USER_NOT_FOUND:
                logger.error("User lookup failed for %s: %s", user_id, res.get("error"))
                return await self._reply(user_id, "user_lookup_failed", ERROR_TEXT)
            await self.users.create_user(user_id)
            return await self._reply(user_id, "welcome", WELCOME_TEXT)

        user: UserProfile = res["data"]
        if not user.invited:
            if is_invite_code(text):
                await self.users.mark_invited(user_id)
                return await self._reply(user_id, "invited", INVITED_TEXT)
            return await self._reply(user_id, "invite_required", INVITE_PROMPT)

        if text.startswith("/setup"):
            return await self._reply(user_id, "setup", SETUP_TEXT)

        prefs = parse_preferences(text)
        if prefs:
            return await self.handle_preferences(user_id, prefs)

        if is_meal_input(text):
            return await self.handle_meal_input(user_id, text)

        if RECIPE_CHOICE.match(text) or any(w in text for w in RECIPE_WORDS):
            return await self.handle_recipe_request(user_id, text)

        if self.classifier.is_recommendation_request(text):
            return await self.handle_recommendation_request(user_id, text, user, schedule)

        return await self._reply(user_id, "help", HELP_TEXT)

    async def handle_preferences(self, user_id: str, prefs: Dict[str, str]) -> Dict[str, Any]:
        res = await self.users.update_preferences(
            user_id, allergies=prefs.get("allergies"), dislikes=prefs.get("dislikes")
        )
        if not res.get("ok"):
            return await self._reply(user_id, "preferences_failed", ERROR_TEXT)
        lines = ["✅ 設定を更新しました！"]
        if "allergies" in prefs:
            lines.append(f"アレルギー: {prefs['allergies'] or 'なし'}")
        if "dislikes" in prefs:
            lines.append(f"嫌いな食材: {prefs['dislikes'] or 'なし'}")
        return await self._reply(user_id, "preferences", "\n".join(lines))

    async def handle_meal_input(self, user_id: str, text: str) -> Dict[str, Any]:
        meal, method = await self.meals.parse_meal_input(text)
        saved = await self.meals.record_meal(user_id, meal, decided=True)
        if not saved.get("ok"):
            return await self._reply(user_id, "meal_failed", MEAL_ERROR_TEXT)
        status = "🤖 AI解析済み" if method == "ai" else "📝 簡易解析"
        body = (
            f"🍽️ 食事を記録しました！ {status}\n\n"
            f"料理: {', '.join(meal.dishes)}\n"
            f"評価: {'⭐' * meal.rating}\n"
            f"気分: {meal.mood}\n"
            f"ジャンル: {', '.join(meal.tags)}"
        )
        result = await self._reply(user_id, "meal", body)
        result["parse_method"] = method
        return result

    async def handle_recipe_request(self, user_id: str, text: str) -> Dict[str, Any]:
        dish = None
        if RECIPE_CHOICE.match(text):
            dish = await self.sessions.current_dish_for_choice(user_id, int(text))
            if dish is None:
                return await self._reply(user_id, "recipe_no_session", NO_SESSION_TEXT)
            dish_name = dish.dish_name
        else:
            dish_name = await self.recipes.extract_dish_name(text)
            if not dish_name:
                return await self._reply(user_id, "recipe_no_dish", NO_DISH_TEXT)

        recipe = await self.recipes.generate_recipe(dish_name)
        result = await self._reply(user_id, "recipe", recipe.format())
        if dish is not None:
            await self.sessions.mark_selected(dish)
        await self.meals.record_decided_dish(user_id, dish_name)
        result["dish"] = dish_name
        return result

    async def deliver_recommendation(
        self, user_id: str, text: str, user: Optional[UserProfile] = None
    ) -> Dict[str, Any]:
        """Full recommendation cycle followed by a push of the reply."""
        try:
            result = await self.recommender.recommend_for_user(user_id, text, user)
        except Exception as exc:
            logger.exception("Recommendation cycle failed for %s: %s", user_id, exc)
            return await self._reply(user_id, "recommendation_failed", RECOMMEND_ERROR_TEXT)
        sent = await self.sender.send(user_id, result.message)
        logger.info(
            "Recommendations for %s sent=%s fallback=%s session=%s",
            user_id,
            sent.get("ok"),
            result.used_fallback,
            result.session_id,
        )
        return {
            "ok": True,
            "path": "recommendation",
            "session_id": result.session_id,
            "dishes": [d.dish_name for d in result.dishes],
            "used_fallback": result.used_fallback,
            "sent": bool(sent.get("ok")),
        }

    async def handle_recommendation_request(
        self,
        user_id: str,
        text: str,
        user: UserProfile,
        schedule: Optional[Callable[..., Any]] = None,
    ) -> Dict[str, Any]:
        ack = await self._reply(user_id, "recommendation_ack", ACK_TEXT)
        if schedule is not None:
            schedule(self.deliver_recommendation, user_id, text, user)
            ack["scheduled"] = True
            return ack
        ack["recommendation"] = await self.deliver_recommendation(user_id, text, user)
        return ack

    async def send_daily_recommendations(self) -> Dict[str, Any]:
        """Push a recommendation to every invited user; one failure does not stop the loop."""
        users = await self.users.list_invited_users()
        sent, failed = 0, []
        for user in users:
            try:
                res = await self.deliver_recommendation(user.id, DAILY_MESSAGE, user)
            except Exception as exc:
                logger.exception("Failed to send recommendations to %s: %s", user.id, exc)
                failed.append(user.id)
                continue
            if res.get("sent"):
                sent += 1
            else:
                failed.append(user.id)
        logger.info("Daily recommendations: users=%d sent=%d failed=%d", len(users), sent, len(failed))
        return {"ok": True, "users": len(users), "sent": sent, "failed": failed}
