# dinnerbot/services/twilio_client.py
"""
Twilio client wrapper - Twilio (sync) client but returns structured primitives.

Outbound messages are plain text; quick replies are rendered as a trailing
choice line since WhatsApp over Twilio has no free-form buttons. Bodies longer
than WhatsApp's limit are split into several messages.
"""
import logging
import time
from typing import Any, Dict, List, Optional

from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.rest import Client

from dinnerbot.config.settings import settings
from dinnerbot.models.recommendation import OutboundMessage

logger = logging.getLogger(__name__)

MAX_BODY = 1600
NON_TRANSIENT_CODES = {21211, 21614, 63007}


def render_outbound(message: OutboundMessage) -> str:
    """Text followed by a choice line, e.g. ▶ 「1」親子丼 ｜ 「他のおすすめ」他の提案"""
    if not message.quick_replies:
        return message.text
    choices = " ｜ ".join(f"「{qr.value}」{qr.label}" for qr in message.quick_replies)
    return f"{message.text}\n\n▶ {choices}"


def split_body(body: str, limit: int = MAX_BODY) -> List[str]:
    """Split on line boundaries where possible; no chunk exceeds `limit`."""
    if len(body) <= limit:
        return [body]
    chunks: List[str] = []
    current = ""
    for line in body.split("\n"):
        while len(line) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:limit])
            line = line[limit:]
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) > limit:
            chunks.append(current)
            current = line
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks


class TwilioClient:

    def __init__(
        self,
        client: Optional[Any] = None,
        from_number: Optional[str] = None,
        max_retries: int = 2,
        retry_backoff: float = 0.3,
    ):
        self._client = client
        self.from_number = from_number or settings.twilio_phone_number
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        if self._client is None:
            self._initialize_client()

    @property
    def client(self):
        return self._client

    @property
    def configured(self) -> bool:
        return bool(self._client and self.from_number)

    def _initialize_client(self) -> None:
        sid = settings.twilio_account_sid
        token = settings.twilio_auth_token
        if not sid or not token:
            logger.warning("Twilio credentials not provided - client disabled")
            self._client = None
            return
        try:
            self._client = Client(sid, token)
            logger.info("Twilio client initialized")
        except TwilioException as exc:
            logger.exception("Failed to initialize Twilio client: %s", exc)
            self._client = None

    @staticmethod
    def _format_whatsapp_number(phone: str) -> str:
        phone_clean = phone.strip()
        return (
            phone_clean
            if phone_clean.startswith("whatsapp:")
            else f"whatsapp:{phone_clean}"
        )

    def test_connection(self) -> Dict[str, Any]:
        if not self._client:
            logger.debug("test_connection: no twilio client configured")
            return {"ok": False, "error": "no_client"}
        try:
            acc = self._client.api.accounts(settings.twilio_account_sid).fetch()
            return {
                "ok": True,
                "account": {
                    "friendly_name": getattr(acc, "friendly_name", None),
                    "sid": getattr(acc, "sid", None),
                },
            }
        except Exception as exc:
            logger.exception("Twilio test_connection failed: %s", exc)
            return {"ok": False, "error": str(exc)}

    def _send_one(self, from_: str, to_: str, body: str) -> Dict[str, Any]:
        meta: Dict[str, Any] = {"ok": False, "to": to_, "attempts": 0}
        last_exc: Optional[Exception] = None
        for attempt in range(1, self.max_retries + 2):
            meta["attempts"] = attempt
            try:
                msg = self._client.messages.create(body=body, from_=from_, to=to_)
                sid = getattr(msg, "sid", None)
                status = getattr(msg, "status", None)
                meta.update({"ok": True, "twilio_sid": sid, "twilio_status": status})
                logger.info(
                    "Twilio send succeeded attempt=%s sid=%s status=%s",
                    attempt,
                    sid,
                    status,
                )
                return meta
            except TwilioRestException as exc:
                code = getattr(exc, "code", None)
                meta.update(
                    {
                        "error": str(exc),
                        "twilio_code": code,
                        "http_status": getattr(exc, "status", None),
                    }
                )
                logger.warning("TwilioRestException sending WhatsApp message: %s", meta)
                if code in NON_TRANSIENT_CODES:
                    return meta
                last_exc = exc
            except TwilioException as exc:
                last_exc = exc
                logger.warning(
                    "TwilioException (transient) sending message attempt=%s err=%s",
                    attempt,
                    exc,
                )

            if attempt <= self.max_retries:
                sleep_for = self.retry_backoff * (2 ** (attempt - 1))
                logger.debug("Backing off for %.3fs before next attempt", sleep_for)
                time.sleep(sleep_for)

        meta.update(
            {
                "ok": False,
                "error": "exhausted_retries",
                "last_error": str(last_exc) if last_exc else None,
            }
        )
        logger.error(
            "send_whatsapp_message exhausted retries to=%s last_error=%s",
            to_,
            meta.get("last_error"),
        )
        return meta

    def send_whatsapp_message(self, to_phone: str, message: str) -> Dict[str, Any]:
        """
        Send a text message to WhatsApp via Twilio, split into chunks if needed.
        Returns: dict with `ok` bool and per-chunk results
        """
        logger.info("send_whatsapp_message: to=%s chars=%d", to_phone, len(message))
        if not self.configured:
            logger.warning(
                "Twilio not configured when trying to send message to %s", to_phone
            )
            return {"ok": False, "error": "twilio_not_configured", "to": to_phone}

        from_ = self._format_whatsapp_number(self.from_number)
        to_ = self._format_whatsapp_number(to_phone)
        parts = [self._send_one(from_, to_, chunk) for chunk in split_body(message)]
        failed = [p for p in parts if not p.get("ok")]
        return {
            "ok": not failed,
            "to": to_phone,
            "parts": parts,
            "error": failed[0].get("error") if failed else None,
        }

    def send_outbound(self, to_phone: str, message: OutboundMessage) -> Dict[str, Any]:
        return self.send_whatsapp_message(to_phone, render_outbound(message))
