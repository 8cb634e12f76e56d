import asyncio
import logging
from typing import Any, Dict, Optional, Union

from dinnerbot.models.recommendation import OutboundMessage
from dinnerbot.services.twilio_client import TwilioClient

logger = logging.getLogger(__name__)


class TwilioMessageHandler:
    """Async face of TwilioClient; the sync SDK runs in a worker thread."""

    def __init__(self, twilio_client: Optional[TwilioClient] = None):
        self.twilio_client = twilio_client or TwilioClient()
        self.provider = "twilio_whatsapp"
        logger.info(
            "TwilioMessageHandler initialized configured=%s", self.configured
        )

    @property
    def configured(self) -> bool:
        return self.twilio_client.configured

    async def _run_sync(self, fn, *args, **kwargs):
        logger.debug("Running sync function %s in thread", fn.__name__)
        return await asyncio.to_thread(fn, *args, **kwargs)

    async def send(
        self, to_phone: str, message: Union[str, OutboundMessage]
    ) -> Dict[str, Any]:
        action = "send"
        outbound = (
            message
            if isinstance(message, OutboundMessage)
            else OutboundMessage(text=message)
        )
        logger.info("Preparing to send to=%s body=%s", to_phone, outbound.text[:80])
        if not self.configured:
            logger.error("Twilio not configured, cannot send to %s", to_phone)
            return {
                "ok": False,
                "provider": self.provider,
                "action": action,
                "error": "twilio_not_configured",
            }
        try:
            resp = await self._run_sync(
                self.twilio_client.send_outbound, to_phone, outbound
            )
        except Exception as exc:
            logger.exception("send failed to %s: %s", to_phone, exc)
            return {
                "ok": False,
                "provider": self.provider,
                "action": action,
                "error": str(exc),
            }
        return {
            "ok": bool(resp.get("ok")),
            "provider": self.provider,
            "action": action,
            "error": resp.get("error"),
            "diagnostics": resp,
        }

    async def test_connection(self) -> Dict[str, Any]:
        try:
            resp = await self._run_sync(self.twilio_client.test_connection)
        except Exception as exc:
            logger.exception("test_connection failed: %s", exc)
            return {"ok": False, "provider": self.provider, "error": str(exc)}
        return {
            "ok": bool(resp.get("ok")),
            "provider": self.provider,
            "error": None if resp.get("ok") else resp.get("error"),
            "diagnostics": resp,
        }
