# dinnerbot/services/store.py
"""
Thin async access layer over the Supabase (PostgREST) client.

- Every public call returns the standard result shape:
    {"ok": bool, "data": ..., "error": "...", "diagnostics": {...}}
  so callers branch on `ok` instead of catching SDK exceptions.
- Blocking supabase-py calls run in a worker thread and are bounded by a timeout;
  a timeout is reported exactly like any other failure.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from dinnerbot.config.settings import settings
from dinnerbot.config.supabase import supabase_client

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_supabase_response(resp: Any) -> Dict[str, Any]:
    """
    Turn Supabase SDK responses (object with .data or dict) into a predictable dict.
    Returns {ok, data, status_code, raw}
    """
    if resp is None:
        return {"ok": False, "data": None, "status_code": None, "raw": None}

    if hasattr(resp, "data"):
        data = getattr(resp, "data")
        status_code = getattr(resp, "status_code", None)
        ok = data is not None and not (
            isinstance(status_code, int) and status_code >= 400
        )
        return {"ok": ok, "data": data, "status_code": status_code, "raw": resp}

    if isinstance(resp, dict):
        data = resp.get("data", resp.get("result", resp.get("records", None)))
        status_code = resp.get("status_code", resp.get("status", None))
        return {
            "ok": data is not None,
            "data": data,
            "status_code": status_code,
            "raw": resp,
        }

    return {"ok": False, "data": None, "status_code": None, "raw": str(resp)}


async def _run_blocking(fn: Callable, *args, **kwargs) -> Any:
    return await asyncio.to_thread(lambda: fn(*args, **kwargs))


def _make_result(
    ok: bool,
    data: Any = None,
    error: Optional[str] = None,
    diagnostics: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    res: Dict[str, Any] = {"ok": ok}
    if ok:
        res["data"] = data
    else:
        res["error"] = error or "unknown_error"
    res["diagnostics"] = diagnostics or {}
    return res


class SupabaseStore:
    """
    `client` defaults to the process-wide supabase client; tests pass a fake.
    `timeout` bounds each call (seconds).
    """

    def __init__(self, client: Optional[Any] = None, timeout: Optional[float] = None):
        self.client = (
            client if client is not None else getattr(supabase_client, "client", None)
        )
        self.timeout = timeout if timeout is not None else settings.store_timeout_seconds
        if self.client is None:
            logger.warning("SupabaseStore: client not available. DB operations will fail.")

    @property
    def available(self) -> bool:
        return self.client is not None

    def table(self, name: str):
        return self.client.table(name)

    async def call(
        self, label: str, fn: Callable[[], Any], timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        Run `fn` (a zero-arg callable that builds and executes one query) in a
        thread, bounded by the timeout, and normalize its response.
        """
        if self.client is None:
            return _make_result(False, error="no_supabase_client", diagnostics={"op": label})

        bound = timeout if timeout is not None else self.timeout
        try:
            logger.debug("DB call: %s (timeout=%.1fs)", label, bound)
            raw = await asyncio.wait_for(_run_blocking(fn), timeout=bound)
        except asyncio.TimeoutError:
            logger.warning("DB call %s timed out after %.1fs", label, bound)
            return _make_result(False, error="timeout", diagnostics={"op": label})
        except Exception as exc:
            logger.exception("DB call %s raised exception: %s", label, exc)
            return _make_result(False, error=str(exc), diagnostics={"op": label})

        parsed = _parse_supabase_response(raw)
        diagnostics = {"op": label, "raw_preview": str(parsed.get("raw"))[:500]}
        if not parsed.get("ok"):
            return _make_result(False, error="db_no_data", diagnostics=diagnostics)
        return _make_result(True, data=parsed.get("data"), diagnostics=diagnostics)

    @staticmethod
    def rows(res: Dict[str, Any]) -> list:
        """Data of a successful result as a list of rows."""
        data = res.get("data") if res.get("ok") else None
        if data is None:
            return []
        if isinstance(data, list):
            return data
        return [data]
