# dinnerbot/api/twilio_webhook.py
"""
Twilio webhook endpoints for receiving WhatsApp messages.

- Returns empty TwiML to Twilio; replies are pushed through the REST API.
- Twilio retries are dropped by an in-memory MessageSid deduper.
- The recommendation cycle runs as a FastAPI background task after the ack.
- If ?debug=1 is added, returns verbose JSON diagnostics for local testing.
"""
from __future__ import annotations

import asyncio
import collections
import datetime
import logging
import time
from functools import lru_cache
from typing import Any, Deque, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Form, Request
from fastapi.responses import JSONResponse, Response

from dinnerbot.config.settings import settings
from dinnerbot.config.supabase import supabase_client
from dinnerbot.services.message_handler import MessageHandler

logger = logging.getLogger(__name__)
router = APIRouter()

EMPTY_TWIML = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'


@lru_cache(maxsize=1)
def get_message_handler() -> MessageHandler:
    return MessageHandler()


# Deduper for Twilio retries (MessageSid)
class InMemoryDeduper:

    def __init__(self, max_entries: int = 4096) -> None:
        self._max_entries = int(max_entries)
        self._queue: Deque[str] = collections.deque()
        self._set = set()

    def add(self, key: str) -> bool:
        if key in self._set:
            return False
        self._queue.append(key)
        self._set.add(key)
        if len(self._queue) > self._max_entries:
            old = self._queue.popleft()
            self._set.discard(old)
        return True

    def contains(self, key: str) -> bool:
        return key in self._set

    def count(self) -> int:
        return len(self._set)


deduper = InMemoryDeduper()


# -------------------------
# Helpers
# -------------------------
def _clean_phone(phone: Optional[str]) -> str:
    if not phone:
        return ""
    s = str(phone).strip()
    s = s.replace("whatsapp:", "").replace(" ", "")
    if s and not s.startswith("+") and s.isdigit():
        s = f"+{s}"
    return s


def _make_json_serializable(obj: Any) -> Any:
    """Convert objects (including Supabase APIResponse) to JSON-safe primitives."""
    if obj is None or isinstance(obj, (str, bool, int, float)):
        return obj
    if isinstance(obj, (datetime.date, datetime.datetime)):
        return obj.isoformat()
    if isinstance(obj, dict):
        return {str(k): _make_json_serializable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [_make_json_serializable(v) for v in obj]
    if hasattr(obj, "model_dump"):
        return _make_json_serializable(obj.model_dump())
    return str(obj)


def _twiml() -> Response:
    return Response(content=EMPTY_TWIML, media_type="application/xml")


# -------------------------
# Webhook
# -------------------------
@router.post("/whatsapp")
async def handle_whatsapp_webhook(
    background_tasks: BackgroundTasks,
    From: str = Form(...),
    Body: Optional[str] = Form(None),
    MessageSid: Optional[str] = Form(None),
    NumMedia: Optional[str] = Form("0"),
    debug: Optional[bool] = False,
    handler: MessageHandler = Depends(get_message_handler),
) -> Response:
    """Twilio webhook for WhatsApp. Use ?debug=1 for verbose JSON diagnostics."""
    start_ts = time.time()
    diagnostics: Dict[str, Any] = {"steps": [], "errors": []}

    message_sid = MessageSid or f"tw-{int(time.time() * 1000)}"
    diagnostics["message_sid"] = message_sid

    if not deduper.add(message_sid):
        logger.info("Duplicate webhook detected via in-memory deduper: %s", message_sid)
        diagnostics["steps"].append("deduplicated_in_memory")
        if debug:
            return JSONResponse(
                {"status": "ignored", "reason": "duplicate", "diagnostics": diagnostics}
            )
        return _twiml()

    user_id = _clean_phone(From)
    body = (Body or "").strip()
    diagnostics["from"] = user_id
    logger.info(
        "Received Twilio webhook sid=%s from=%s num_media=%s", message_sid, user_id, NumMedia
    )

    if not body:
        diagnostics["steps"].append("no_text_body")
        result: Dict[str, Any] = {"ok": True, "path": "ignored_non_text"}
    else:
        result = await handler.handle_text(
            user_id, body, schedule=background_tasks.add_task
        )
        diagnostics["steps"].append("processed")
    diagnostics["result"] = _make_json_serializable(result)
    if not result.get("ok"):
        diagnostics["errors"].append(result.get("error"))

    if debug:
        diagnostics["elapsed_seconds"] = round(time.time() - start_ts, 3)
        return JSONResponse(
            _make_json_serializable(
                {"status": "ok", "message_sid": message_sid, "diagnostics": diagnostics}
            )
        )
    return _twiml()


# -------------------------
# Test endpoint
# -------------------------
@router.get("/test")
async def test_twilio_webhook(
    request: Request, handler: MessageHandler = Depends(get_message_handler)
):
    """Diagnostics for Supabase + Twilio + environment flags."""
    diagnostics: Dict[str, Any] = {
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat()
    }

    try:
        loop = asyncio.get_running_loop()
        db_ok = await asyncio.wait_for(
            loop.run_in_executor(None, supabase_client.health_check),
            timeout=settings.store_timeout_seconds,
        )
        diagnostics["supabase"] = {"healthy": bool(db_ok), **supabase_client.diagnostics()}
    except Exception as exc:
        diagnostics["supabase"] = {"healthy": False, "error": str(exc)}
        logger.exception("Supabase health check failed: %s", exc)

    diagnostics["twilio"] = _make_json_serializable(await handler.sender.test_connection())

    diagnostics["env"] = {
        "supabase_url_set": bool(settings.supabase_url),
        "supabase_key_set": bool(settings.supabase_service_role_key),
        "twilio_sid_set": bool(settings.twilio_account_sid),
        "twilio_token_set": bool(settings.twilio_auth_token),
        "twilio_number_set": bool(settings.twilio_phone_number),
        "openai_key_set": bool(settings.openai_api_key),
        "openweather_key_set": bool(settings.openweather_api_key),
    }
    diagnostics["deduper_entries"] = deduper.count()
    diagnostics["service"] = {"name": "dinnerbot", "version": "1.0.0"}

    logger.info("/webhook/test requested; returning diagnostics")
    return JSONResponse(content=_make_json_serializable(diagnostics))
