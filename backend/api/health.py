"""
Health endpoints. Public, no secrets in responses.
"""

import logging
import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from backend.core.logging import get_request_id, latency_bucket_ms

logger = logging.getLogger("socialstory")

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz")
def readyz(request: Request):
    """Readiness check: backing store reachable."""
    store = request.app.state.store
    start = time.perf_counter()
    try:
        ready = store.ping()
    except Exception:
        logger.error("[readyz] readiness check raised", exc_info=True)
        ready = False
    latency_ms = (time.perf_counter() - start) * 1000

    logger.info(
        "health.ready",
        extra={
            "request_id": get_request_id(),
            "ok": ready,
            "store": store.name,
            "latency_bucket": latency_bucket_ms(latency_ms),
        },
    )
    if not ready:
        return JSONResponse(status_code=503, content={"status": "error", "detail": "storage unreachable"})
    return {"status": "ok", "store": store.name}
