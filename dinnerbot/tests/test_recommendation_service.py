import json
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from dinnerbot.models.recommendation import (
    RecommendationContext,
    RecommendedDish,
    RequestType,
    UserProfile,
    UserRequest,
)
from dinnerbot.services.avoidance import strategy_from_dishes
from dinnerbot.services.completion_service import CompletionError, CompletionService
from dinnerbot.services.recommendation_service import (
    MORE_REQUEST,
    NO_HISTORY,
    NO_PREVIOUS,
    RecommendationService,
    format_reply,
    prompt_variables,
)
from dinnerbot.services.session_manager import SessionManager

SECOND_BATCH = """1. **冷やし中華** - さっぱり
2. **タコライス** - 彩り豊か
3. **ぶり大根** - 旬の味"""

ENRICHMENT = json.dumps(
    {
        "dishes": [
            {"dish": "鶏の照り焼き", "genre": "和食", "mainIngredient": "鶏肉", "cookingMethod": "焼く"},
            {"dish": "ミネストローネ", "genre": "洋食", "mainIngredient": "野菜", "cookingMethod": "煮る"},
            {"dish": "麻婆茄子", "genre": "中華", "mainIngredient": "茄子", "cookingMethod": "炒める"},
        ]
    },
    ensure_ascii=False,
)


class Clock:
    def __init__(self):
        self.now = datetime(2026, 10, 19, 18, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def build_service(store, offline_weather, clock):
    def _build(completion, **kwargs):
        return RecommendationService(
            store=store,
            completion=completion,
            weather=offline_weather,
            sessions=SessionManager(store, clock=clock),
            **kwargs,
        )

    return _build


@pytest.mark.asyncio
async def test_first_recommendation_creates_session(
    build_service, make_completion, recommendation_text, fake_db
):
    completion = make_completion(replies=[recommendation_text])
    result = await build_service(completion).recommend_for_user("u1", "おすすめ")

    assert not result.used_fallback
    assert result.user_request.type is RequestType.GENERAL
    assert [d.dish_name for d in result.dishes] == ["鶏の照り焼き", "ミネストローネ", "麻婆茄子"]
    assert result.session_id.startswith("session_u1_")

    sessions = fake_db.rows("recommendation_sessions")
    assert [s["id"] for s in sessions] == [result.session_id]
    rows = fake_db.rows("recommended_dishes")
    assert [r["recommendation_order"] for r in rows] == [1, 2, 3]

    prompt = completion.calls[0]["prompt"]
    assert NO_PREVIOUS in prompt
    assert NO_HISTORY in prompt
    assert "balanced_variety" in prompt
    assert "${" not in prompt


@pytest.mark.asyncio
async def test_follow_up_reuses_session_and_avoids_previous(
    build_service, make_completion, recommendation_text, fake_db, clock
):
    completion = make_completion(replies=[recommendation_text, ENRICHMENT, SECOND_BATCH])
    service = build_service(completion, enrichment_enabled=True)

    first = await service.recommend_for_user("u1", "おすすめ")
    assert [d.genre for d in first.dishes] == ["和食", "洋食", "中華"]

    clock.advance(minutes=10)
    second = await service.recommend_for_user("u1", "他のおすすめ")

    assert second.session_id == first.session_id
    assert second.user_request.type is RequestType.DIVERSE
    assert [d.dish_name for d in second.dishes] == ["冷やし中華", "タコライス", "ぶり大根"]

    prompt = completion.calls[2]["prompt"]
    assert "maximum_variety" in prompt
    assert "鶏の照り焼き (和食・鶏肉・焼く)" in prompt
    assert "ジャンル: 和食, 洋食, 中華" in prompt
    assert "主材料: 鶏肉, 野菜, 茄子" in prompt
    assert "（前回の提案と重ならないように選びました）" in second.message.text

    assert len(fake_db.rows("recommendation_sessions")) == 1
    assert len(fake_db.rows("recommended_dishes")) == 6


@pytest.mark.asyncio
async def test_third_request_only_avoids_latest_batch(
    build_service, make_completion, recommendation_text, clock
):
    completion = make_completion(replies=[recommendation_text, SECOND_BATCH, recommendation_text])
    service = build_service(completion)

    await service.recommend_for_user("u1", "おすすめ")
    clock.advance(minutes=5)
    await service.recommend_for_user("u1", "他の")
    clock.advance(minutes=5)
    await service.recommend_for_user("u1", "前回と違うもの")

    prompt = completion.calls[-1]["prompt"]
    assert "冷やし中華" in prompt
    assert "鶏の照り焼き" not in prompt.split("【前回の提案】")[1].split("【")[0]


@pytest.mark.asyncio
async def test_new_session_after_window(
    build_service, make_completion, recommendation_text, fake_db, clock
):
    service = build_service(make_completion(default=recommendation_text))
    first = await service.recommend_for_user("u1", "おすすめ")
    clock.advance(hours=25)
    second = await service.recommend_for_user("u1", "おすすめ")
    assert second.session_id != first.session_id
    assert len(fake_db.rows("recommendation_sessions")) == 2


@pytest.mark.asyncio
async def test_completion_failure_uses_intent_fallback(build_service, make_completion, fake_db):
    completion = make_completion(replies=[CompletionError("rate limited")])
    result = await build_service(completion).recommend_for_user("u1", "あっさりしたものがいい")

    assert result.used_fallback
    assert [d.dish_name for d in result.dishes] == ["サラダ", "茶碗蒸し", "おかゆ"]
    assert "📝" in result.message.text
    rows = fake_db.rows("recommended_dishes")
    assert [r["genre"] for r in rows] == ["洋食", "和食", "和食"]


@pytest.mark.asyncio
async def test_no_completion_client_uses_fallback(build_service):
    result = await build_service(CompletionService(client=None)).recommend_for_user(
        "u1", "がっつり"
    )
    assert result.used_fallback
    assert result.dishes[0].dish_name == "カツ丼"


@pytest.mark.asyncio
async def test_slow_completion_times_out_to_fallback(build_service, make_completion):
    completion = make_completion(default="1. **A料理** - x", delay=0.5)
    service = build_service(completion, completion_timeout=0.05)

    started = time.monotonic()
    result = await service.recommend_for_user("u1", "おすすめ")
    elapsed = time.monotonic() - started

    assert elapsed < 0.4
    assert result.used_fallback
    assert [d.dish_name for d in result.dishes] == ["カレーライス", "焼き鳥", "みそ汁"]


@pytest.mark.asyncio
async def test_storage_outage_does_not_block(
    build_service, make_completion, recommendation_text, fake_db
):
    fake_db.fail_all = True
    result = await build_service(make_completion(replies=[recommendation_text])).recommend_for_user(
        "u1", "おすすめ"
    )
    assert not result.used_fallback
    assert result.session_id.startswith("session_u1_")
    assert len(result.dishes) == 3


@pytest.mark.asyncio
async def test_unexpected_error_returns_fallback_without_session(
    build_service, make_completion, recommendation_text
):
    service = build_service(make_completion(replies=[recommendation_text]))
    service.sessions.resolve_or_create_session = AsyncMock(side_effect=RuntimeError("bug"))

    result = await service.recommend_for_user("u1", "ヘルシーに")
    assert result.session_id == ""
    assert result.used_fallback
    assert result.dishes[0].dish_name == "サラダ"


@pytest.mark.asyncio
async def test_user_preferences_reach_prompt(
    build_service, make_completion, recommendation_text, fake_db
):
    fake_db.rows("users").append(
        {"id": "u1", "invited": True, "allergies": "えび", "dislikes": "セロリ"}
    )
    fake_db.rows("meals").append(
        {
            "user_id": "u1",
            "ate_date": datetime.now().date().isoformat(),
            "dish": "肉じゃが",
            "rating": 5,
            "mood": "満足",
        }
    )
    completion = make_completion(replies=[recommendation_text])
    await build_service(completion).recommend_for_user("u1", "おすすめ")

    prompt = completion.calls[0]["prompt"]
    assert "アレルギー: えび" in prompt
    assert "苦手な食材: セロリ" in prompt
    assert "- 肉じゃが (評価: 5/5" in prompt
    assert "お気に入りの料理: 肉じゃが" in prompt


@pytest.mark.asyncio
async def test_legacy_entry_point_warns_and_delegates(
    build_service, make_completion, recommendation_text
):
    service = build_service(make_completion(replies=[recommendation_text]))
    with pytest.warns(DeprecationWarning):
        result = await service.get_meal_recommendations("u1", "おすすめ", user_preferences={})
    assert result.session_id.startswith("session_u1_")


def test_prompt_variables_sentinels():
    ctx = RecommendationContext(
        user=UserProfile(id="u1"),
        user_request=UserRequest(type=RequestType.HEARTY, original_message="  "),
    )
    variables = prompt_variables(ctx)
    assert len(variables) == 15
    assert variables["original_message"] == "今日の夕食のおすすめ"
    assert variables["allergies"] == "なし"
    assert variables["avoid_genres"] == "なし"
    assert variables["temperature"] == "20"
    assert variables["strategy"] == "hearty_focused"
    assert all(v.strip() for v in variables.values())


def test_format_reply_quick_replies():
    dishes = [RecommendedDish(dish_name=n) for n in ("親子丼", "ペペロンチーノ", "麻婆豆腐")]
    message = format_reply(dishes, used_fallback=False)
    assert "1. 親子丼" in message.text
    assert [q.value for q in message.quick_replies] == ["1", "2", "3", MORE_REQUEST]
    assert message.quick_replies[1].label == "ペペロンチーノ"


def test_format_reply_skips_avoidance_note_for_unknown_metadata():
    previous = [RecommendedDish(dish_name=n) for n in ("親子丼", "ペペロンチーノ", "麻婆豆腐")]
    avoidance = strategy_from_dishes(previous)
    message = format_reply(previous, used_fallback=False, avoidance=avoidance)
    assert "前回の提案と重ならないように選びました" not in message.text

    known = strategy_from_dishes([RecommendedDish(dish_name="親子丼", genre="和食")])
    assert "前回の提案と重ならないように選びました" in format_reply(
        previous, used_fallback=False, avoidance=known
    ).text


@pytest.mark.asyncio
async def test_follow_up_without_enrichment_has_no_avoidance_note(
    build_service, make_completion, recommendation_text, clock
):
    completion = make_completion(replies=[recommendation_text, SECOND_BATCH])
    service = build_service(completion)

    first = await service.recommend_for_user("u1", "おすすめ")
    clock.advance(minutes=10)
    second = await service.recommend_for_user("u1", "他のおすすめ")

    assert second.session_id == first.session_id
    assert "前回の提案と重ならないように選びました" not in second.message.text
