import pytest

from dinnerbot.config.fallbacks import FALLBACK_SETS, fallback_dishes
from dinnerbot.config.prompts import DEFAULT_PROMPTS, render_prompt
from dinnerbot.models.recommendation import RequestType


def test_every_intent_has_strategy_and_three_fallbacks():
    for request_type in RequestType:
        assert DEFAULT_PROMPTS.strategy_for(request_type).priority_factors
        assert len(FALLBACK_SETS[request_type]) == 3


def test_unknown_request_type_maps_to_general():
    assert DEFAULT_PROMPTS.strategy_for("spicy").strategy == "balanced_variety"
    assert [d.dish_name for d in fallback_dishes("spicy")] == ["カレーライス", "焼き鳥", "みそ汁"]


def test_fallback_dishes_are_fresh_copies():
    first = fallback_dishes(RequestType.DIVERSE)
    first[0].dish_name = "changed"
    assert fallback_dishes(RequestType.DIVERSE)[0].dish_name == "親子丼"
    assert [d.recommendation_order for d in first] == [1, 2, 3]


def test_render_prompt_rejects_missing_and_blank_variables():
    with pytest.raises(KeyError):
        render_prompt("${a} ${b}", {"a": "x"})
    with pytest.raises(ValueError):
        render_prompt("${a}", {"a": "  "})
    assert render_prompt("${dish}のレシピ", {"dish": "親子丼"}) == "親子丼のレシピ"
