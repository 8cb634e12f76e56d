# dinnerbot/config/prompts.py
"""
Prompt templates and per-intent strategy descriptors.

Everything here is built once at import time and is read-only: services receive
`DEFAULT_PROMPTS` (or a replacement catalog in tests) through their constructors.
Templates use `string.Template` placeholders (`${name}`); `render_prompt` refuses
to leave any placeholder unbound.
"""
from __future__ import annotations

from string import Template
from types import MappingProxyType
from typing import Mapping, NamedTuple

from dinnerbot.models.recommendation import RequestType, StrategyDescriptor

STRATEGIES: Mapping[RequestType, StrategyDescriptor] = MappingProxyType(
    {
        RequestType.DIVERSE: StrategyDescriptor(
            strategy="maximum_variety",
            description="前回と完全に異なるジャンル・調理法・食材での多様性確保",
            priority_factors=("ジャンル差別化", "調理法変更", "主材料変更", "味付け変更"),
        ),
        RequestType.LIGHT: StrategyDescriptor(
            strategy="light_focused",
            description="あっさり系料理に特化した選択（蒸し物・茹で物・サラダ等）",
            priority_factors=("脂質控えめ", "蒸し・茹で調理", "野菜中心", "消化良好"),
        ),
        RequestType.HEARTY: StrategyDescriptor(
            strategy="hearty_focused",
            description="ボリューム重視の満足感ある料理選択",
            priority_factors=("高カロリー", "肉類中心", "炭水化物併用", "満腹感重視"),
        ),
        RequestType.DIFFERENT: StrategyDescriptor(
            strategy="contrast_maximization",
            description="前回提案との対比を最大化する完全対照的選択",
            priority_factors=("前回逆特性", "季節感変更", "調理時間差別化", "食感変更"),
        ),
        RequestType.GENERAL: StrategyDescriptor(
            strategy="balanced_variety",
            description="バランス重視の標準的多様性確保",
            priority_factors=("栄養バランス", "季節適応", "調理難易度", "材料入手性"),
        ),
    }
)


RECOMMENDATION_SYSTEM = (
    "あなたは多様な料理ジャンルに精通した夕食レコメンドAIです。"
    "前回の提案を分析し、主材料・調理法・ジャンルが重複しない料理を提案します。"
    "アレルギーや苦手な食材は絶対に使いません。"
)

RECOMMENDATION_TEMPLATE = """\
「${original_message}」というご要望にお応えして、夕食を3つ提案します。

【提案戦略】
- 戦略: ${strategy}（${strategy_description}）
- 重視する要素: ${priority_factors}
- 要望タイプ: ${request_type}

【前回の提案】
${previous_recommendations}

【回避すべき要素】
- 主材料: ${avoid_ingredients}
- ジャンル: ${avoid_genres}
- 調理法: ${avoid_cooking_methods}

【あなたの情報】
- 最近食べた料理:
${recent_meals}
- お気に入りの料理: ${preferred_dishes}
- アレルギー: ${allergies}
- 苦手な食材: ${dislikes}

【今日の環境】
- 気温: ${temperature}°C
- 天気: ${weather}

【提案ルール】
1. 前回と異なる主材料・調理法・ジャンルから選ぶ
2. 3品は互いに主材料・ジャンル・調理法が重複しないようにする
3. 要望タイプに合った特性を持たせる
4. 季節・天気に合った、30分以内で作れる料理を優先する

フォーマット:
1. **[料理名]** - [選んだ理由]
2. **[料理名]** - [選んだ理由]
3. **[料理名]** - [選んだ理由]

気になる料理の番号を送ってくれれば、詳しいレシピをお教えします！"""

DISH_EXTRACTION_SYSTEM = (
    "You extract dish names from recommendation text. "
    "Return only a JSON array of strings, nothing else."
)

DISH_EXTRACTION_TEMPLATE = """\
次の文章から提案されている料理名をちょうど3つ抽出し、JSON配列で返してください。
例: ["親子丼", "ペペロンチーノ", "麻婆豆腐"]

文章:
${text}"""

DISH_ENRICHMENT_SYSTEM = "Classify dishes. Return pure JSON only."

DISH_ENRICHMENT_TEMPLATE = """\
次の料理それぞれについて、ジャンル（和食/洋食/中華/エスニック等）、主材料、調理法を答えてください。
料理: ${dishes}

JSON形式で回答してください:
{"dishes": [{"dish": "料理名", "genre": "和食", "mainIngredient": "鶏肉", "cookingMethod": "煮る"}]}"""

MEAL_EXTRACTION_SYSTEM = "Extract dishes, rating (★1-5), mood keyword. Return pure JSON."

MEAL_EXTRACTION_TEMPLATE = """\
Extract meal information from this text: "${text}"

Return a JSON object with:
- dishes: array of dish names
- rating: number 1-5 (from stars)
- mood: mood keyword
- tags: array of cuisine tags

Example: {"dishes": ["豚バラ大根", "味噌汁"], "rating": 3, "mood": "満足", "tags": ["和食"]}"""

DISH_NAME_SYSTEM = "Extract the dish name from user message. Return only the dish name."

DISH_NAME_TEMPLATE = 'Extract dish name from: "${text}"'

RECIPE_SYSTEM = (
    "Return ingredients list (name, qty) & numbered steps for requested dish, "
    "for 4 people."
)

RECIPE_TEMPLATE = "${dish}の4人分のレシピを教えて。材料と手順を分けて書いてください。"

SHOPPING_LIST_SYSTEM = (
    "Extract shopping list from recipe. Return as bullet points with quantities."
)

SHOPPING_LIST_TEMPLATE = "このレシピから買い物リストを作成してください：\n${recipe}"


class PromptCatalog(NamedTuple):
    strategies: Mapping[RequestType, StrategyDescriptor]
    recommendation_system: str
    recommendation: str
    dish_extraction_system: str
    dish_extraction: str
    dish_enrichment_system: str
    dish_enrichment: str
    meal_extraction_system: str
    meal_extraction: str
    dish_name_system: str
    dish_name: str
    recipe_system: str
    recipe: str
    shopping_list_system: str
    shopping_list: str

    def strategy_for(self, request_type) -> StrategyDescriptor:
        return self.strategies.get(
            RequestType.parse(request_type), self.strategies[RequestType.GENERAL]
        )


DEFAULT_PROMPTS = PromptCatalog(
    strategies=STRATEGIES,
    recommendation_system=RECOMMENDATION_SYSTEM,
    recommendation=RECOMMENDATION_TEMPLATE,
    dish_extraction_system=DISH_EXTRACTION_SYSTEM,
    dish_extraction=DISH_EXTRACTION_TEMPLATE,
    dish_enrichment_system=DISH_ENRICHMENT_SYSTEM,
    dish_enrichment=DISH_ENRICHMENT_TEMPLATE,
    meal_extraction_system=MEAL_EXTRACTION_SYSTEM,
    meal_extraction=MEAL_EXTRACTION_TEMPLATE,
    dish_name_system=DISH_NAME_SYSTEM,
    dish_name=DISH_NAME_TEMPLATE,
    recipe_system=RECIPE_SYSTEM,
    recipe=RECIPE_TEMPLATE,
    shopping_list_system=SHOPPING_LIST_SYSTEM,
    shopping_list=SHOPPING_LIST_TEMPLATE,
)


def render_prompt(template: str, variables: Mapping[str, object]) -> str:
    """
    Substitute every `${name}` placeholder.

    Raises KeyError if the template names a variable that was not supplied and
    ValueError if a supplied value renders as an empty string.
    """
    values = {k: str(v) for k, v in variables.items()}
    blank = sorted(k for k, v in values.items() if not v.strip())
    if blank:
        raise ValueError(f"empty prompt variables: {', '.join(blank)}")
    return Template(template).substitute(values)
