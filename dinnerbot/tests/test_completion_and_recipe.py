import time
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from dinnerbot.services.completion_service import (
    CompletionError,
    CompletionService,
    parse_json_reply,
)
from dinnerbot.services.recipe_service import Recipe, RecipeService


def _sdk_response(content):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))]
    )


def _client_returning(value=None, side_effect=None):
    client = MagicMock()
    client.chat.completions.create.return_value = value
    if side_effect is not None:
        client.chat.completions.create.side_effect = side_effect
    return client


@pytest.mark.asyncio
async def test_complete_passes_system_and_user_messages():
    client = _client_returning(_sdk_response("親子丼"))
    service = CompletionService(client=client, model="gpt-test", timeout=1.0)

    text = await service.complete("prompt", max_tokens=50, temperature=0.2, system="sys")

    assert text == "親子丼"
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-test"
    assert kwargs["messages"] == [
        {"role": "system", "content": "sys"},
        {"role": "user", "content": "prompt"},
    ]
    assert kwargs["max_tokens"] == 50


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "client",
    [
        None,
        _client_returning(_sdk_response("   ")),
        _client_returning(SimpleNamespace(choices=[])),
        _client_returning(side_effect=RuntimeError("api down")),
    ],
)
async def test_complete_failures_raise_completion_error(client):
    with pytest.raises(CompletionError):
        await CompletionService(client=client, timeout=1.0).complete("p", 10, 0.0)


@pytest.mark.asyncio
async def test_complete_timeout_raises_completion_error():
    client = _client_returning(side_effect=lambda **kw: time.sleep(0.3))
    with pytest.raises(CompletionError):
        await CompletionService(client=client).complete("p", 10, 0.0, timeout=0.05)


@pytest.mark.asyncio
async def test_complete_json_rejects_malformed_reply():
    client = _client_returning(_sdk_response("{not json"))
    with pytest.raises(CompletionError):
        await CompletionService(client=client, timeout=1.0).complete_json("p", 10)


def test_parse_json_reply_strips_fences():
    assert parse_json_reply('```json\n{"a": 1}\n```') == {"a": 1}
    assert parse_json_reply("[1, 2]") == [1, 2]
    with pytest.raises(ValueError):
        parse_json_reply("nope")


@pytest.mark.asyncio
async def test_generate_recipe_with_shopping_list(make_completion):
    completion = make_completion(replies=["材料: 鶏肉\n手順: 焼く", "- 鶏肉 300g"])
    recipe = await RecipeService(completion).generate_recipe("鶏の照り焼き")

    assert recipe.ok
    text = recipe.format()
    assert text.startswith("📝 鶏の照り焼きのレシピ")
    assert "🛒 買い物リスト\n- 鶏肉 300g" in text
    assert "鶏の照り焼き" in completion.calls[0]["prompt"]


@pytest.mark.asyncio
async def test_generate_recipe_failure_message(make_completion):
    recipe = await RecipeService(make_completion()).generate_recipe("カレー")
    assert not recipe.ok
    assert recipe.format() == "申し訳ございません。カレーのレシピ生成に失敗しました。"


@pytest.mark.asyncio
async def test_recipe_without_shopping_list(make_completion):
    recipe = await RecipeService(make_completion(replies=["手順のみ"])).generate_recipe("うどん")
    assert recipe == Recipe("うどん", "手順のみ", None)
    assert "🛒" not in recipe.format()


@pytest.mark.asyncio
async def test_extract_dish_name(make_completion):
    service = RecipeService(make_completion(replies=["「親子丼」\n"]))
    assert await service.extract_dish_name("これにする 親子丼") == "親子丼"
    assert await RecipeService(make_completion()).extract_dish_name("これ") is None
