# main.py
"""
FastAPI entry point for the WhatsApp dinner recommendation bot (Twilio).
Startup/readiness checks against Supabase, request-id middleware, optional
schema bootstrap (AUTO_CREATE_SCHEMA) and the scheduled-task router.
"""
import asyncio
import logging
import os
import uuid
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dinnerbot.api.tasks import router as tasks_router
from dinnerbot.api.twilio_webhook import router as twilio_webhook_router
from dinnerbot.config.settings import settings
from dinnerbot.config.supabase import supabase_client
from dinnerbot.models.tables import init_schema

logger = logging.getLogger("uvicorn.error")

# config
HEALTH_CHECK_TIMEOUT = float(os.getenv("HEALTH_CHECK_TIMEOUT", "5.0"))
FAIL_ON_DB_STARTUP = os.getenv("FAIL_ON_DB_STARTUP", "false").lower() in ("1", "true", "yes")


async def _run_sync_in_executor(fn, *args, timeout: float = HEALTH_CHECK_TIMEOUT):
    """
    Run a blocking sync function in the default threadpool with a timeout.
    Returns the function's result or raises TimeoutError.
    """
    loop = asyncio.get_running_loop()
    return await asyncio.wait_for(loop.run_in_executor(None, fn, *args), timeout=timeout)


async def _check_supabase() -> bool:
    try:
        return bool(await _run_sync_in_executor(supabase_client.health_check))
    except asyncio.TimeoutError:
        logger.warning("⚠️ Supabase health_check timed out after %.1fs", HEALTH_CHECK_TIMEOUT)
    except Exception as exc:
        logger.exception("❌ Unexpected error calling supabase_client.health_check: %s", exc)
    return False


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Starting dinner recommendation bot...")

    if settings.auto_create_schema:
        if not settings.database_url:
            logger.warning("AUTO_CREATE_SCHEMA set but DATABASE_URL is missing; skipping")
        else:
            try:
                await asyncio.to_thread(init_schema, settings.database_url)
            except Exception:
                logger.exception("Schema bootstrap failed")
                if FAIL_ON_DB_STARTUP:
                    raise

    app.state.supabase_healthy = await _check_supabase()
    logger.info("Supabase health: %s", app.state.supabase_healthy)

    if not app.state.supabase_healthy and FAIL_ON_DB_STARTUP:
        logger.error("FAIL_ON_DB_STARTUP enabled and Supabase unhealthy. Aborting startup.")
        raise RuntimeError("Supabase unhealthy on startup")

    yield
    logger.info("Shutting down dinner recommendation bot...")


app = FastAPI(
    title="Dinner Recommendation Bot",
    description="Session-aware dinner suggestions over Twilio WhatsApp",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_id_and_log(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
    request.state.request_id = request_id
    logger.info(
        "→ Incoming request %s %s id=%s from=%s",
        request.method,
        request.url.path,
        request_id,
        request.client,
    )
    try:
        response: Response = await call_next(request)
    except Exception as exc:
        logger.exception("Handler error for request id=%s: %s", request_id, exc)
        return JSONResponse(
            {
                "ok": False,
                "status": 500,
                "message": "Internal server error",
                "diagnostics": {"error": str(exc)},
            },
            status_code=500,
        )
    logger.info(
        "← Completed request id=%s status=%s",
        request_id,
        getattr(response, "status_code", None),
    )
    response.headers["X-Request-Id"] = request_id
    return response


app.include_router(twilio_webhook_router, prefix="/webhook", tags=["webhook"])
app.include_router(tasks_router, prefix="/tasks", tags=["tasks"])


@app.get("/")
async def root() -> Dict[str, str]:
    return {"message": "Dinner recommendation bot is running!", "status": "healthy"}


@app.get("/health")
async def health_check():
    """Liveness with a bounded DB probe; degraded (503) when the DB is down."""
    db_ok = await _check_supabase()
    return JSONResponse(
        {
            "status": "healthy" if db_ok else "degraded",
            "service": "dinnerbot",
            "database": "connected" if db_ok else "disconnected",
        },
        status_code=200 if db_ok else 503,
    )


@app.get("/ready")
async def readiness_check():
    """Readiness from the cached startup state, else one bounded check."""
    supabase_state: Optional[bool] = getattr(app.state, "supabase_healthy", None)
    if supabase_state is None:
        supabase_state = await _check_supabase()

    if supabase_state:
        return JSONResponse({"ready": True, "database": "connected"}, status_code=200)
    return JSONResponse({"ready": False, "database": "disconnected"}, status_code=503)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", 5000)),
        reload=True,
    )
