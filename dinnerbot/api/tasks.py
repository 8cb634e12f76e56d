# dinnerbot/api/tasks.py
"""
Scheduled task endpoints (called by an external cron).

POST /tasks/daily-recommendations pushes a recommendation to every invited user.
Requires `Authorization: Bearer <TASKS_TOKEN>`; with no TASKS_TOKEN configured
the endpoint is disabled.
"""
from __future__ import annotations

import logging
import secrets
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException
from fastapi.responses import JSONResponse

from dinnerbot.api.twilio_webhook import get_message_handler
from dinnerbot.config.settings import settings
from dinnerbot.services.message_handler import MessageHandler

logger = logging.getLogger(__name__)
router = APIRouter()


def require_tasks_token(authorization: Optional[str] = Header(None)) -> None:
    expected = settings.tasks_token
    if not expected:
        raise HTTPException(status_code=503, detail="tasks endpoint disabled")
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not secrets.compare_digest(token, expected):
        logger.warning("Rejected task call with invalid token")
        raise HTTPException(status_code=401, detail="invalid token")


@router.post("/daily-recommendations", dependencies=[Depends(require_tasks_token)])
async def daily_recommendations(
    background_tasks: BackgroundTasks,
    wait: bool = False,
    handler: MessageHandler = Depends(get_message_handler),
):
    """Runs in the background by default; ?wait=1 returns the push summary."""
    if wait:
        return JSONResponse(await handler.send_daily_recommendations())
    background_tasks.add_task(handler.send_daily_recommendations)
    logger.info("Daily recommendations scheduled")
    return JSONResponse({"ok": True, "scheduled": True}, status_code=202)
