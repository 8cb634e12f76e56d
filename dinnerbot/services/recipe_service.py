# dinnerbot/services/recipe_service.py
"""Recipe and shopping list generation for a chosen dish."""
from __future__ import annotations

import logging
from typing import NamedTuple, Optional

from dinnerbot.config.prompts import DEFAULT_PROMPTS, PromptCatalog, render_prompt
from dinnerbot.config.settings import settings
from dinnerbot.services.completion_service import CompletionError, CompletionService

logger = logging.getLogger(__name__)

RECIPE_MAX_TOKENS = 900
SHOPPING_MAX_TOKENS = 400


class Recipe(NamedTuple):
    dish: str
    text: Optional[str]
    shopping_list: Optional[str]

    @property
    def ok(self) -> bool:
        return bool(self.text)

    def format(self) -> str:
        if not self.text:
            return f"申し訳ございません。{self.dish}のレシピ生成に失敗しました。"
        out = f"📝 {self.dish}のレシピ\n\n{self.text}"
        if self.shopping_list:
            out += f"\n\n🛒 買い物リスト\n{self.shopping_list}"
        return out


class RecipeService:

    def __init__(
        self,
        completion: Optional[CompletionService] = None,
        prompts: PromptCatalog = DEFAULT_PROMPTS,
    ):
        self.completion = completion if completion is not None else CompletionService()
        self.prompts = prompts

    async def extract_dish_name(self, text: str) -> Optional[str]:
        try:
            name = await self.completion.complete(
                render_prompt(self.prompts.dish_name, {"text": text}),
                max_tokens=50,
                temperature=0.1,
                system=self.prompts.dish_name_system,
                timeout=settings.extraction_timeout_seconds,
            )
        except (CompletionError, KeyError, ValueError) as exc:
            logger.warning("Dish name extraction failed: %s", exc)
            return None
        name = name.strip().strip("「」\"'")
        return name or None

    async def shopping_list(self, recipe_text: str) -> Optional[str]:
        try:
            return (
                await self.completion.complete(
                    render_prompt(self.prompts.shopping_list, {"recipe": recipe_text}),
                    max_tokens=SHOPPING_MAX_TOKENS,
                    temperature=0.1,
                    system=self.prompts.shopping_list_system,
                )
            ).strip()
        except (CompletionError, KeyError, ValueError) as exc:
            logger.warning("Shopping list generation failed: %s", exc)
            return None

    async def generate_recipe(self, dish: str) -> Recipe:
        try:
            text = await self.completion.complete(
                render_prompt(self.prompts.recipe, {"dish": dish}),
                max_tokens=RECIPE_MAX_TOKENS,
                temperature=0.3,
                system=self.prompts.recipe_system,
            )
        except (CompletionError, KeyError, ValueError) as exc:
            logger.warning("Recipe generation failed for %s: %s", dish, exc)
            return Recipe(dish, None, None)
        return Recipe(dish, text.strip(), await self.shopping_list(text))
