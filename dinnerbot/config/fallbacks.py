# dinnerbot/config/fallbacks.py
"""
Fixed recommendation sets used when the generative path fails.

One read-only batch of exactly three dishes per intent. `fallback_dishes` turns a
batch into fresh `RecommendedDish` values so callers never share mutable state.
"""
from __future__ import annotations

from types import MappingProxyType
from typing import List, Mapping, NamedTuple, Tuple

from dinnerbot.models.recommendation import RecommendedDish, RequestType


class FallbackDish(NamedTuple):
    dish_name: str
    genre: str
    main_ingredient: str
    cooking_method: str
    note: str


FALLBACK_SETS: Mapping[RequestType, Tuple[FallbackDish, ...]] = MappingProxyType(
    {
        RequestType.DIVERSE: (
            FallbackDish("親子丼", "和食", "鶏肉", "煮る", "定番の和食料理"),
            FallbackDish("ペペロンチーノ", "洋食", "パスタ", "炒める", "シンプルなイタリアン"),
            FallbackDish("麻婆豆腐", "中華", "豆腐", "炒める", "ピリ辛中華料理"),
        ),
        RequestType.LIGHT: (
            FallbackDish("サラダ", "洋食", "野菜", "生", "さっぱり野菜料理"),
            FallbackDish("茶碗蒸し", "和食", "卵", "蒸す", "やさしい和食"),
            FallbackDish("おかゆ", "和食", "米", "煮る", "胃にやさしい"),
        ),
        RequestType.HEARTY: (
            FallbackDish("カツ丼", "和食", "豚肉", "揚げる", "ボリューム満点"),
            FallbackDish("ハンバーグ", "洋食", "牛肉", "焼く", "がっつり洋食"),
            FallbackDish("ラーメン", "中華", "麺", "茹でる", "満腹感のある一品"),
        ),
        RequestType.DIFFERENT: (
            FallbackDish("オムライス", "洋食", "卵", "炒める", "見た目も楽しい"),
            FallbackDish("焼き魚", "和食", "魚", "焼く", "ヘルシーな和食"),
            FallbackDish("パスタ", "洋食", "パスタ", "茹でる", "アレンジ豊富"),
        ),
        RequestType.GENERAL: (
            FallbackDish("カレーライス", "洋食", "野菜", "煮る", "定番の人気料理"),
            FallbackDish("焼き鳥", "和食", "鶏肉", "焼く", "手軽で美味しい"),
            FallbackDish("みそ汁", "和食", "味噌", "煮る", "ほっとする味"),
        ),
    }
)


def fallback_dishes(
    request_type, sets: Mapping[RequestType, Tuple[FallbackDish, ...]] = FALLBACK_SETS
) -> List[RecommendedDish]:
    batch = sets.get(RequestType.parse(request_type)) or sets[RequestType.GENERAL]
    return [
        RecommendedDish(
            dish_name=d.dish_name,
            genre=d.genre,
            main_ingredient=d.main_ingredient,
            cooking_method=d.cooking_method,
            recommendation_order=i,
            user_feedback=d.note,
        )
        for i, d in enumerate(batch, 1)
    ]
