# dinnerbot/services/dish_extraction.py
"""
Turn free-form recommendation text into exactly three dish names.

Strategies run in order; the first one yielding three usable names wins:

  structured-markdown   "1. **親子丼** - 理由"
  loose-numbered-dash   "1. 親子丼 - 理由"
  bold-span             "**親子丼**" anywhere
  loose-numbered-line   "1. 親子丼（和食）" whole line, brackets stripped
  delegate-to-service   ask the completion service for a JSON list
  placeholders          推薦料理1..3

`extract_dish_names` never raises.
"""
from __future__ import annotations

import logging
import re
from typing import Callable, List, NamedTuple, Optional, Pattern

from dinnerbot.config.prompts import DEFAULT_PROMPTS, PromptCatalog, render_prompt
from dinnerbot.config.settings import settings
from dinnerbot.services.completion_service import CompletionError, CompletionService

logger = logging.getLogger(__name__)

COUNT = 3
PLACEHOLDERS = ("推薦料理1", "推薦料理2", "推薦料理3")

# ASCII hyphen, en dash, em dash anywhere; the long-vowel mark only after whitespace
_DASH_TAIL = re.compile(r"(?:\s*[-–—]|\s+ー).*$", re.DOTALL)
_NUMBERING = re.compile(r"^\s*\d+\s*[.．)）]\s*")
_BRACKETS = re.compile(r"[（(【\[][^）)】\]]*[）)】\]]")
_WRAPPED = re.compile(r"^[\[［](.+)[\]］]$")


class Strategy(NamedTuple):
    name: str
    pattern: Pattern
    clean: Callable[[str], str]


def _clean_basic(raw: str) -> str:
    name = raw.replace("**", "")
    name = _NUMBERING.sub("", name)
    name = _DASH_TAIL.sub("", name)
    return _WRAPPED.sub(r"\1", name.strip()).strip()


def _clean_aggressive(raw: str) -> str:
    name = _clean_basic(raw)
    name = _BRACKETS.sub("", name)
    name = re.sub(r"[「」『』:：*]", "", name)
    return name.strip()


def _usable(name: str) -> bool:
    return 1 < len(name) < 30


STRATEGIES = (
    Strategy(
        "structured-markdown",
        re.compile(r"\d+[.．]\s*\*\*([^*\n]+)\*\*"),
        _clean_basic,
    ),
    Strategy(
        "loose-numbered-dash",
        re.compile(r"^\s*\d+[.．]\s*([^\n]+?)\s*(?:[-–—]|\sー)", re.MULTILINE),
        _clean_basic,
    ),
    Strategy(
        "bold-span",
        re.compile(r"\*\*([^*\n]+)\*\*"),
        _clean_basic,
    ),
    Strategy(
        "loose-numbered-line",
        re.compile(r"^\s*\d+[.．)）]\s*([^\n]+)$", re.MULTILINE),
        _clean_aggressive,
    ),
)


def apply_pattern(strategy: Strategy, text: str) -> Optional[List[str]]:
    """
    First three raw matches, cleaned; None unless all three stay usable.
    """
    matches = strategy.pattern.findall(text or "")
    if len(matches) < COUNT:
        return None
    names = [strategy.clean(m) for m in matches[:COUNT]]
    names = [n for n in names if _usable(n)]
    return names if len(names) >= COUNT else None


class DishExtractor:

    def __init__(
        self,
        completion: Optional[CompletionService] = None,
        prompts: PromptCatalog = DEFAULT_PROMPTS,
        timeout: Optional[float] = None,
    ):
        self.completion = completion
        self.prompts = prompts
        self.timeout = (
            timeout if timeout is not None else settings.extraction_timeout_seconds
        )

    def extract_with_patterns(self, text: str) -> Optional[List[str]]:
        for strategy in STRATEGIES:
            names = apply_pattern(strategy, text)
            if names:
                logger.debug("dish extraction via %s: %s", strategy.name, names)
                return names
        return None

    async def _delegate(self, text: str) -> Optional[List[str]]:
        if self.completion is None or not (text or "").strip():
            return None
        try:
            prompt = render_prompt(self.prompts.dish_extraction, {"text": text})
            reply = await self.completion.complete_json(
                prompt,
                max_tokens=200,
                temperature=0.0,
                system=self.prompts.dish_extraction_system,
                timeout=self.timeout,
            )
        except (CompletionError, KeyError, ValueError) as exc:
            logger.warning("delegate dish extraction failed: %s", exc)
            return None

        if not isinstance(reply, list):
            return None
        names = [n.strip() for n in reply if isinstance(n, str) and n.strip()]
        if len(names) < COUNT:
            return None
        return names[:COUNT]

    async def extract_dish_names(self, text: str) -> List[str]:
        names = self.extract_with_patterns(text)
        if names:
            return names

        names = await self._delegate(text)
        if names:
            logger.info("dish extraction delegated to completion service: %s", names)
            return names

        logger.warning("dish extraction fell back to placeholders")
        return list(PLACEHOLDERS)
