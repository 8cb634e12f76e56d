# dinnerbot/services/intent_classifier.py
"""
Request intent classification using deterministic keyword rules.

- Pure and synchronous: no I/O, never raises.
- Intents are checked in a fixed priority order (light, hearty, different, diverse);
  the first intent with a keyword hit wins, otherwise GENERAL.
- Matching is a case-insensitive substring check over the whole message.
"""
from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from dinnerbot.models.recommendation import RequestType, UserRequest

logger = logging.getLogger(__name__)

# Order of this mapping is the match priority.
INTENT_KEYWORDS: Mapping[RequestType, Tuple[str, ...]] = MappingProxyType(
    {
        RequestType.LIGHT: (
            "あっさり",
            "さっぱり",
            "軽い",
            "軽め",
            "ヘルシー",
            "胃にやさしい",
            "light",
            "healthy",
        ),
        RequestType.HEARTY: (
            "がっつり",
            "こってり",
            "しっかり",
            "ボリューム",
            "満腹",
            "腹ペコ",
            "hearty",
            "filling",
        ),
        RequestType.DIFFERENT: (
            "前回と違う",
            "似てない",
            "似ていない",
            "変化",
            "気分を変え",
            "different",
            "change",
        ),
        RequestType.DIVERSE: (
            "他の",
            "ほかの",
            "別の",
            "違うの",
            "違うもの",
            "他に",
            "other",
            "another",
            "something else",
        ),
    }
)

RECOMMENDATION_TRIGGERS: Tuple[str, ...] = (
    "おすすめ",
    "オススメ",
    "レコメンド",
    "提案",
    "recommend",
    "suggest",
)


class IntentClassifier:
    """
    Keyword table classifier. The table is injectable so tests can exercise the
    priority rule with a custom table.
    """

    def __init__(
        self,
        keywords: Mapping[RequestType, Tuple[str, ...]] = INTENT_KEYWORDS,
        triggers: Tuple[str, ...] = RECOMMENDATION_TRIGGERS,
    ):
        self.keywords = keywords
        self.triggers = tuple(t.lower() for t in triggers)

    def match(self, message: Optional[str]) -> Tuple[RequestType, Optional[str]]:
        """Returns (intent, matched keyword or None)."""
        text = (message or "").lower()
        if not text:
            return RequestType.GENERAL, None
        for intent, words in self.keywords.items():
            for word in words:
                if word.lower() in text:
                    return intent, word
        return RequestType.GENERAL, None

    def classify(self, message: Optional[str]) -> UserRequest:
        intent, keyword = self.match(message)
        logger.debug("classify: intent=%s keyword=%r", intent.value, keyword)
        return UserRequest(type=intent, original_message=message or "")

    def is_recommendation_request(self, message: Optional[str]) -> bool:
        text = (message or "").lower()
        if any(t in text for t in self.triggers):
            return True
        return self.match(message)[0] is not RequestType.GENERAL

    def explain(self, message: Optional[str]) -> Dict[str, object]:
        """Diagnostics for the debug webhook."""
        intent, keyword = self.match(message)
        return {
            "intent": intent.value,
            "keyword": keyword,
            "recommendation_request": self.is_recommendation_request(message),
        }


_default = IntentClassifier()


def classify(message: Optional[str]) -> UserRequest:
    return _default.classify(message)


def is_recommendation_request(message: Optional[str]) -> bool:
    return _default.is_recommendation_request(message)
