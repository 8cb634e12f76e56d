import pytest

from dinnerbot.services.completion_service import CompletionError
from dinnerbot.services.dish_extraction import (
    PLACEHOLDERS,
    STRATEGIES,
    DishExtractor,
    apply_pattern,
)


def _strategy(name):
    return next(s for s in STRATEGIES if s.name == name)


def test_structured_markdown(recommendation_text):
    names = DishExtractor().extract_with_patterns(recommendation_text)
    assert names == ["鶏の照り焼き", "ミネストローネ", "麻婆茄子"]


def test_structured_markdown_drops_echoed_square_brackets():
    text = "1. **[鶏の照り焼き]** - 甘辛\n2. **[ミネストローネ]** - 温まる\n3. **［麻婆茄子］** - ピリ辛"
    names = apply_pattern(_strategy("structured-markdown"), text)
    assert names == ["鶏の照り焼き", "ミネストローネ", "麻婆茄子"]
    assert DishExtractor().extract_with_patterns(text) == names


def test_long_vowel_mark_inside_name_is_kept():
    text = "1. ハンバーグ - 肉汁たっぷり\n2. ラーメン - 温まる\n3. グラタン - チーズ"
    names = apply_pattern(_strategy("loose-numbered-dash"), text)
    assert names == ["ハンバーグ", "ラーメン", "グラタン"]


def test_loose_numbered_dash_with_en_dash():
    text = "1. 親子丼 – 定番\n2. 焼きそば – 手軽\n3. 豚汁 – 具沢山"
    assert DishExtractor().extract_with_patterns(text) == ["親子丼", "焼きそば", "豚汁"]


def test_bold_span_without_numbering():
    text = "今日は **筑前煮** と **鮭のムニエル**、それに **春雨サラダ** はいかが？"
    assert DishExtractor().extract_with_patterns(text) == ["筑前煮", "鮭のムニエル", "春雨サラダ"]


def test_loose_numbered_line_strips_brackets():
    text = "1. 肉じゃが（和食）\n2. 「ガパオライス」\n3. 餃子【中華】"
    assert DishExtractor().extract_with_patterns(text) == ["肉じゃが", "ガパオライス", "餃子"]


def test_first_three_matches_must_all_be_usable():
    text = "1. **A** - x\n2. **親子丼** - y\n3. **豚汁** - z\n4. **焼きそば** - w"
    assert apply_pattern(_strategy("structured-markdown"), text) is None


def test_fewer_than_three_matches():
    assert DishExtractor().extract_with_patterns("1. **親子丼** - 定番") is None


@pytest.mark.asyncio
async def test_delegates_to_completion_when_patterns_fail(make_completion):
    completion = make_completion(replies=['```json\n["カレー", "サラダ", "スープ"]\n```'])
    names = await DishExtractor(completion).extract_dish_names("今日はカレーとサラダとスープで")
    assert names == ["カレー", "サラダ", "スープ"]
    assert len(completion.calls) == 1
    assert completion.calls[0]["temperature"] == 0.0


@pytest.mark.asyncio
async def test_patterns_do_not_call_completion(make_completion, recommendation_text):
    completion = make_completion(replies=['["x", "y", "z"]'])
    names = await DishExtractor(completion).extract_dish_names(recommendation_text)
    assert names[0] == "鶏の照り焼き"
    assert completion.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "reply",
    [
        CompletionError("boom"),
        "not json",
        '["only", "two"]',
        '{"dishes": ["a", "b", "c"]}',
    ],
)
async def test_placeholders_when_everything_fails(make_completion, reply):
    names = await DishExtractor(make_completion(replies=[reply])).extract_dish_names("意味のない文章")
    assert names == list(PLACEHOLDERS)


@pytest.mark.asyncio
async def test_placeholders_without_completion():
    assert await DishExtractor(None).extract_dish_names("") == list(PLACEHOLDERS)
