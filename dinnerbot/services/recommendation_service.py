# dinnerbot/services/recommendation_service.py
"""
Session-aware dinner recommendation.

One cycle (`recommend_for_user`):
  classify -> resolve session -> avoidance (previous batch) -> recent meals
  -> weather -> generate -> persist -> format reply

Generation renders the re-recommendation prompt, calls the completion service and
extracts three dish names from the reply. Any failure while rendering, calling or
parsing switches to the fixed intent-specific fallback set; nothing raised by an
external dependency escapes this module.
"""
from __future__ import annotations

import asyncio
import logging
import warnings
from typing import Any, Dict, List, Mapping, Optional, Tuple

from dinnerbot.config.fallbacks import FALLBACK_SETS, fallback_dishes
from dinnerbot.config.prompts import DEFAULT_PROMPTS, PromptCatalog, render_prompt
from dinnerbot.config.settings import settings
from dinnerbot.models.recommendation import (
    UNKNOWN,
    AvoidanceStrategy,
    OutboundMessage,
    QuickReply,
    RecommendationContext,
    RecommendationResult,
    RecommendedDish,
    UserProfile,
)
from dinnerbot.services.avoidance import AvoidanceStrategyBuilder
from dinnerbot.services.completion_service import CompletionError, CompletionService
from dinnerbot.services.dish_extraction import DishExtractor
from dinnerbot.services.intent_classifier import IntentClassifier
from dinnerbot.services.meal_service import MealService
from dinnerbot.services.session_manager import SessionManager
from dinnerbot.services.store import SupabaseStore
from dinnerbot.services.user_service import UserService
from dinnerbot.services.weather_service import WeatherService

logger = logging.getLogger(__name__)

NONE_TEXT = "なし"
NO_INFO = "情報なし"
NO_HISTORY = "履歴なし（新規ユーザーまたはデータなし）"
NO_PREVIOUS = "初回提案のため前回履歴なし"
DEFAULT_TEMPERATURE = "20"
DEFAULT_MESSAGE = "今日の夕食のおすすめ"
MORE_REQUEST = "他のおすすめ"


def _known(values) -> List[str]:
    return [v for v in values if v and v != UNKNOWN]


def _join(values, empty: str = NONE_TEXT) -> str:
    return ", ".join(_known(values)) or empty


def _describe_dish(d: RecommendedDish) -> str:
    attrs = _known([d.genre, d.main_ingredient, d.cooking_method])
    return f"{d.dish_name} ({'・'.join(attrs)})" if attrs else d.dish_name


def prompt_variables(
    context: RecommendationContext, prompts: PromptCatalog = DEFAULT_PROMPTS
) -> Dict[str, str]:
    """Every template variable, with sentinels for missing data."""
    strategy = prompts.strategy_for(context.user_request.type)
    avoid = context.avoidance_strategy
    weather = context.weather
    return {
        "original_message": context.user_request.original_message.strip()
        or DEFAULT_MESSAGE,
        "strategy": strategy.strategy,
        "strategy_description": strategy.description,
        "priority_factors": ", ".join(strategy.priority_factors),
        "request_type": context.user_request.type.value,
        "previous_recommendations": ", ".join(
            _describe_dish(d) for d in context.previous_recommendations
        )
        or NO_PREVIOUS,
        "avoid_ingredients": _join(avoid.avoid_ingredients),
        "avoid_genres": _join(avoid.avoid_genres),
        "avoid_cooking_methods": _join(avoid.avoid_cooking_methods),
        "recent_meals": "\n".join(
            f"- {m.dish} (評価: {m.rating if m.rating is not None else '-'}/5, "
            f"気分: {m.mood or '-'}, 日付: {m.ate_date or '-'})"
            for m in context.recent_meals
        )
        or NO_HISTORY,
        "preferred_dishes": ", ".join(context.preferred_dishes[:3]) or NO_INFO,
        "allergies": (context.user.allergies or "").strip() or NONE_TEXT,
        "dislikes": (context.user.dislikes or "").strip() or NONE_TEXT,
        "temperature": f"{weather.temp:g}" if weather else DEFAULT_TEMPERATURE,
        "weather": (
            f"{weather.description}（体感気温{weather.feels_like:g}°C、湿度{weather.humidity}%、"
            f"{weather.season}、{weather.cooking_context}）"
            if weather
            else NO_INFO
        ),
    }


def format_reply(
    dishes: List[RecommendedDish],
    used_fallback: bool,
    avoidance: Optional[AvoidanceStrategy] = None,
) -> OutboundMessage:
    """Reply text plus 1/2/3 quick replies and a "more" button."""
    lines = ["🍽️ 今日の夕食のおすすめです！"]
    if avoidance is not None and not avoidance.is_empty():
        lines.append("（前回の提案と重ならないように選びました）")
    if used_fallback:
        lines.append("📝 本日の簡易提案：")
    lines.append("")
    for i, d in enumerate(dishes, 1):
        note = f" - {d.user_feedback}" if used_fallback and d.user_feedback else ""
        lines.append(f"{i}. {d.dish_name}{note}")
    lines.append("")
    lines.append("詳しいレシピが必要でしたら「1」などの番号を送信してください！")

    replies = [
        QuickReply(label=d.dish_name[:20], value=str(i))
        for i, d in enumerate(dishes[:3], 1)
    ]
    replies.append(QuickReply(label="他の提案", value=MORE_REQUEST))
    return OutboundMessage(text="\n".join(lines), quick_replies=replies)


class RecommendationService:

    def __init__(
        self,
        store: Optional[SupabaseStore] = None,
        completion: Optional[CompletionService] = None,
        prompts: PromptCatalog = DEFAULT_PROMPTS,
        fallback_sets: Optional[Mapping] = None,
        classifier: Optional[IntentClassifier] = None,
        sessions: Optional[SessionManager] = None,
        avoidance: Optional[AvoidanceStrategyBuilder] = None,
        extractor: Optional[DishExtractor] = None,
        meals: Optional[MealService] = None,
        users: Optional[UserService] = None,
        weather: Optional[WeatherService] = None,
        enrichment_enabled: Optional[bool] = None,
        completion_timeout: Optional[float] = None,
    ):
        self.store = store or SupabaseStore()
        self.completion = completion if completion is not None else CompletionService()
        self.prompts = prompts
        self.fallback_sets = fallback_sets if fallback_sets is not None else FALLBACK_SETS
        self.classifier = classifier or IntentClassifier()
        self.sessions = sessions or SessionManager(self.store)
        self.avoidance = avoidance or AvoidanceStrategyBuilder(self.store)
        self.extractor = extractor or DishExtractor(self.completion, prompts)
        self.meals = meals or MealService(self.store, self.completion, prompts)
        self.users = users or UserService(self.store)
        self.weather = weather or WeatherService()
        self.enrichment_enabled = (
            settings.dish_enrichment_enabled
            if enrichment_enabled is None
            else enrichment_enabled
        )
        self.completion_timeout = (
            completion_timeout
            if completion_timeout is not None
            else settings.completion_timeout_seconds
        )

    # -----------------------
    # Generation
    # -----------------------
    def fallback(self, request_type) -> List[RecommendedDish]:
        return fallback_dishes(request_type, self.fallback_sets)

    async def _generate(
        self, context: RecommendationContext
    ) -> Tuple[List[RecommendedDish], bool]:
        """Returns (dishes, used_fallback)."""
        strategy = self.prompts.strategy_for(context.user_request.type)
        logger.info(
            "Re-recommendation strategy: %s - %s", strategy.strategy, strategy.description
        )
        try:
            prompt = render_prompt(
                self.prompts.recommendation, prompt_variables(context, self.prompts)
            )
            text = await asyncio.wait_for(
                self.completion.complete(
                    prompt,
                    max_tokens=settings.recommendation_max_tokens,
                    temperature=settings.recommendation_temperature,
                    system=self.prompts.recommendation_system,
                ),
                timeout=self.completion_timeout,
            )
            names = await self.extractor.extract_dish_names(text)
        except asyncio.TimeoutError:
            logger.warning(
                "Recommendation generation timed out after %.1fs; using fallback set",
                self.completion_timeout,
            )
            return self.fallback(context.user_request.type), True
        except (CompletionError, KeyError, ValueError) as exc:
            logger.warning("Diverse recommendations generation failed: %s", exc)
            return self.fallback(context.user_request.type), True

        dishes = [
            RecommendedDish(dish_name=name, recommendation_order=i, user_feedback=text)
            for i, name in enumerate(names[:3], 1)
        ]
        if self.enrichment_enabled:
            await self.enrich(dishes)
        return dishes, False

    async def generate_recommendations(
        self, context: RecommendationContext
    ) -> List[RecommendedDish]:
        dishes, _ = await self._generate(context)
        return dishes

    async def enrich(self, dishes: List[RecommendedDish]) -> None:
        """Fill genre / main ingredient / method in place; unknown stays on any failure."""
        try:
            reply = await self.completion.complete_json(
                render_prompt(
                    self.prompts.dish_enrichment,
                    {"dishes": ", ".join(d.dish_name for d in dishes)},
                ),
                max_tokens=300,
                temperature=0.0,
                system=self.prompts.dish_enrichment_system,
                timeout=settings.extraction_timeout_seconds,
            )
        except (CompletionError, KeyError, ValueError) as exc:
            logger.warning("Dish enrichment failed: %s", exc)
            return

        items = reply.get("dishes") if isinstance(reply, dict) else reply
        if not isinstance(items, list):
            return
        by_name: Dict[str, Dict[str, Any]] = {
            str(i.get("dish", "")).strip(): i for i in items if isinstance(i, dict)
        }
        for d in dishes:
            info = by_name.get(d.dish_name)
            if not info:
                continue
            d.genre = str(info.get("genre") or UNKNOWN)
            d.main_ingredient = str(info.get("mainIngredient") or UNKNOWN)
            d.cooking_method = str(info.get("cookingMethod") or UNKNOWN)

    # -----------------------
    # Full cycle
    # -----------------------
    async def _load_user(self, user_id: str) -> UserProfile:
        res = await self.users.get_user(user_id)
        if res.get("ok"):
            return res["data"]
        logger.info("User %s not loaded (%s); using empty profile", user_id, res.get("error"))
        return UserProfile(id=user_id)

    async def recommend_for_user(
        self, user_id: str, message: str, user: Optional[UserProfile] = None
    ) -> RecommendationResult:
        request = self.classifier.classify(message)
        logger.info(
            "recommend_for_user user=%s type=%s", user_id, request.type.value
        )
        try:
            profile = user or await self._load_user(user_id)
            session_id = await self.sessions.resolve_or_create_session(user_id)
            previous, avoidance = await self.avoidance.analyze(session_id)
            recent_meals, weather = await asyncio.gather(
                self.meals.get_recent_meals(user_id),
                self.weather.get_weather_context(),
            )
            context = RecommendationContext(
                user=profile,
                recent_meals=recent_meals,
                preferred_dishes=MealService.preferred_dishes(recent_meals),
                previous_recommendations=previous,
                user_request=request,
                weather=weather,
                avoidance_strategy=avoidance,
            )
            dishes, used_fallback = await self._generate(context)
            await self.sessions.record_recommendations(session_id, dishes, context)
        except Exception as exc:
            logger.exception("Unhandled error in recommend_for_user: %s", exc)
            dishes = self.fallback(request.type)
            return RecommendationResult(
                session_id="",
                user_request=request,
                dishes=dishes,
                used_fallback=True,
                message=format_reply(dishes, True),
            )

        return RecommendationResult(
            session_id=session_id,
            user_request=request,
            dishes=dishes,
            used_fallback=used_fallback,
            message=format_reply(dishes, used_fallback, avoidance),
        )

    async def get_meal_recommendations(
        self, user_id: str, user_message: str, **_ignored: Any
    ) -> RecommendationResult:
        """Deprecated single-shot entry point; runs the session-aware cycle."""
        warnings.warn(
            "get_meal_recommendations is deprecated; use recommend_for_user",
            DeprecationWarning,
            stacklevel=2,
        )
        logger.info("Legacy recommendation path redirected for %s", user_id)
        return await self.recommend_for_user(user_id, user_message)
