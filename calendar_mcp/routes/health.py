# calendar_mcp/routes/health.py
"""
Liveness and readiness endpoints.
"""

import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "calendar-mcp-server"}


@router.get("/readyz")
async def readyz(request: Request):
    """
    Readiness check: assistant started, queues running and Redis reachable (when configured).
    """
    checks = {}
    overall_ok = True

    assistant = getattr(request.app.state, "assistant", None)
    queues_ok = assistant is not None and assistant.queue_manager.is_running
    checks["queues"] = {"ok": queues_ok}
    overall_ok = overall_ok and queues_ok

    redis_client = getattr(request.app.state, "redis", None)
    if redis_client is not None:
        t0 = time.time()
        try:
            redis_ok = await redis_client.ping()
            checks["redis"] = {
                "ok": bool(redis_ok),
                "latency_ms": round((time.time() - t0) * 1000, 1),
            }
            overall_ok = overall_ok and bool(redis_ok)
        except Exception as e:
            checks["redis"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
            overall_ok = False

    return JSONResponse(
        status_code=200 if overall_ok else 503,
        content={"status": "ready" if overall_ok else "degraded", "checks": checks},
    )
