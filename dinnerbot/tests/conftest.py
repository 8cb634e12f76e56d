# dinnerbot/tests/conftest.py
import asyncio
import re
import time
from datetime import date, datetime, timezone
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

from dinnerbot.config.settings import settings
from dinnerbot.services.completion_service import CompletionError, CompletionService
from dinnerbot.services.store import SupabaseStore
from dinnerbot.services.weather_service import WeatherService


@pytest.fixture(autouse=True)
def patch_settings(monkeypatch):
    """
    Keep tests offline: no OpenAI / Twilio / weather credentials.
    Tests can override individual attributes with monkeypatch as needed.
    """
    monkeypatch.setattr(settings, "openai_api_key", None)
    monkeypatch.setattr(settings, "openweather_api_key", None)
    monkeypatch.setattr(settings, "twilio_account_sid", None)
    monkeypatch.setattr(settings, "twilio_auth_token", None)
    monkeypatch.setattr(settings, "dish_enrichment_enabled", False)
    monkeypatch.setattr(settings, "invite_codes", "family2024")
    monkeypatch.setattr(settings, "invite_prefix", "INVITE-")
    return monkeypatch


# --- Fake Supabase client ---
_FRACTION = re.compile(r"\.(\d{1,6})(?=[+-]\d\d:\d\d$|Z$|$)")


def _comparable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value
    if isinstance(value, str):
        try:
            normalized = _FRACTION.sub(lambda m: "." + m.group(1).ljust(6, "0"), value)
            parsed = datetime.fromisoformat(normalized.replace("Z", "+00:00"))
        except ValueError:
            return value
        if parsed.tzinfo is None and "T" in value:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return value


class FakeQuery:
    """Chainable PostgREST-style builder over an in-memory table."""

    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table = table
        self.op = "select"
        self.payload: Any = None
        self.filters: List[tuple] = []
        self._order: Optional[tuple] = None
        self._limit: Optional[int] = None

    def select(self, *args, **kwargs):
        self.op = "select"
        return self

    def insert(self, rows):
        self.op = "insert"
        self.payload = rows
        return self

    def update(self, values):
        self.op = "update"
        self.payload = values
        return self

    def eq(self, col, val):
        self.filters.append(("eq", col, val))
        return self

    def gte(self, col, val):
        self.filters.append(("gte", col, val))
        return self

    def order(self, col, desc=False):
        self._order = (col, desc)
        return self

    def limit(self, n):
        self._limit = n
        return self

    def _match(self, row: Dict[str, Any]) -> bool:
        for op, col, val in self.filters:
            cur = row.get(col)
            if op == "eq" and cur != val:
                return False
            if op == "gte":
                if cur is None:
                    return False
                a, b = _comparable(cur), _comparable(val)
                try:
                    if a < b:
                        return False
                except TypeError:
                    if str(cur) < str(val):
                        return False
        return True

    def execute(self):
        self.db.calls.append((self.table, self.op))
        if self.db.delay:
            time.sleep(self.db.delay)
        if self.db.fail_all or (self.table, self.op) in self.db.fail_on:
            raise RuntimeError(f"injected failure: {self.table}.{self.op}")

        rows = self.db.tables.setdefault(self.table, [])
        if self.op == "insert":
            new = self.payload if isinstance(self.payload, list) else [self.payload]
            stored = []
            for r in new:
                r = dict(r)
                if "id" not in r:
                    self.db.next_id += 1
                    r["id"] = self.db.next_id
                rows.append(r)
                stored.append(dict(r))
            return SimpleNamespace(data=stored, status_code=201)

        matched = [r for r in rows if self._match(r)]
        if self.op == "update":
            for r in matched:
                r.update(self.payload)
            return SimpleNamespace(data=[dict(r) for r in matched], status_code=200)

        if self._order:
            col, desc = self._order
            matched = sorted(
                matched, key=lambda r: _comparable(r.get(col)) or "", reverse=desc
            )
        if self._limit is not None:
            matched = matched[: self._limit]
        return SimpleNamespace(data=[dict(r) for r in matched], status_code=200)


class FakeSupabase:

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.calls: List[tuple] = []
        self.fail_on = set()
        self.fail_all = False
        self.delay = 0.0
        self.next_id = 0

    def table(self, name):
        return FakeQuery(self, name)

    def rows(self, name) -> List[Dict[str, Any]]:
        return self.tables.setdefault(name, [])


@pytest.fixture
def fake_db():
    return FakeSupabase()


@pytest.fixture
def store(fake_db):
    return SupabaseStore(client=fake_db, timeout=1.0)


# --- Fake completion service ---
class FakeCompletion(CompletionService):
    """
    Replies are consumed in order; an Exception instance in the list is raised.
    When the list runs out, `default` is returned.
    """

    def __init__(self, replies=None, default="", delay: float = 0.0):
        super().__init__(client=SimpleNamespace(), model="fake", timeout=5.0)
        self.replies = list(replies or [])
        self.default = default
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []

    async def complete(self, prompt, max_tokens, temperature, system=None, timeout=None):
        self.calls.append(
            {
                "prompt": prompt,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "system": system,
            }
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        if not reply:
            raise CompletionError("empty completion content")
        return reply


@pytest.fixture
def fake_completion():
    return FakeCompletion()


# --- Fake outbound sender ---
class FakeSender:

    def __init__(self):
        self.sent: List[tuple] = []
        self.configured = True

    async def send(self, to_phone, message):
        text = getattr(message, "text", message)
        self.sent.append((to_phone, text, message))
        return {"ok": True, "provider": "fake"}

    async def test_connection(self):
        return {"ok": True, "provider": "fake"}

    def texts(self, to_phone=None) -> List[str]:
        return [t for (p, t, _) in self.sent if to_phone is None or p == to_phone]


@pytest.fixture
def fake_sender():
    return FakeSender()


@pytest.fixture
def offline_weather():
    return WeatherService(api_key="")


RECOMMENDATION_TEXT = """「おすすめ」というご要望にお応えして、夕食を3つ提案します。

1. **鶏の照り焼き** - 甘辛いタレでご飯が進みます
2. **ミネストローネ** - 野菜たっぷりで体が温まります
3. **麻婆茄子** - ピリ辛で食欲をそそります

気になる料理の番号を送ってくれれば、詳しいレシピをお教えします！"""


@pytest.fixture
def recommendation_text():
    return RECOMMENDATION_TEXT


@pytest.fixture
def make_completion():
    """Factory: make_completion(replies=[...], default="...", delay=0.0)."""
    return FakeCompletion
