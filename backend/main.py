import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Callable, Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

# Load env from backend/.env
backend_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(backend_dir, ".env"))

from backend.api import admin, auth, health, stories
from backend.core.config import settings, validate_config
from backend.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
    validation_error_handler,
)
from backend.core.logging import configure_logging
from backend.core.middleware.ratelimit import RateLimitMiddleware
from backend.core.middleware.request_id import RequestIdMiddleware
from backend.core.ratelimit import RateLimiter, build_rate_limit_policies
from backend.core.security import CredentialStore, build_credential_store
from backend.core.validation import validate_env
from backend.features.admin.service import AdminService
from backend.features.audit.service import ActivityLedger
from backend.features.stories.service import StoryService
from backend.features.users.service import UserService
from backend.storage.factory import build_store

logger = logging.getLogger("socialstory")


def _bootstrap_admin(app: FastAPI, cfg) -> None:
    email = getattr(cfg, "BOOTSTRAP_ADMIN_EMAIL", None)
    password = getattr(cfg, "BOOTSTRAP_ADMIN_PASSWORD", None)
    if not (email and password):
        return
    user = app.state.user_service.ensure_admin(email, password)
    logger.info("bootstrap admin ensured", extra={"user_id": user.id})


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Social Story backend...", extra={"store": app.state.store.name})
    app.state.startup_time = time.time()
    _bootstrap_admin(app, app.state.settings)
    try:
        yield
    finally:
        logger.info("Stopping Social Story backend...")


def create_app(
    store=None,
    *,
    settings_obj=None,
    credentials: Optional[CredentialStore] = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """Build the API around an injected store.

    `clock` returns epoch seconds and drives rate-limit windows and every
    timestamp the services write; tests pass a fake one.
    """
    cfg = settings_obj or settings
    store = store if store is not None else build_store(env=cfg.ENV)
    credentials = credentials or build_credential_store(cfg)

    def now_fn() -> datetime:
        return datetime.fromtimestamp(clock(), tz=timezone.utc)

    rate_limiter = RateLimiter(store, build_rate_limit_policies(cfg), time_fn=clock)
    ledger = ActivityLedger(retention=cfg.ACTIVITY_LOG_RETENTION, now_fn=now_fn)

    app = FastAPI(title="Social Story AI - Backend", lifespan=lifespan)
    app.state.settings = cfg
    app.state.store = store
    app.state.credentials = credentials
    app.state.rate_limiter = rate_limiter
    app.state.ledger = ledger
    app.state.user_service = UserService(store, credentials, rate_limiter, now_fn=now_fn, settings_obj=cfg)
    app.state.story_service = StoryService(store, now_fn=now_fn, video_base_url=cfg.VIDEO_BASE_URL, settings_obj=cfg)
    app.state.admin_service = AdminService(store, credentials, ledger, now_fn=now_fn, settings_obj=cfg)

    # Middlewares (last added runs first)
    app.add_middleware(
        RateLimitMiddleware,
        limiter=rate_limiter,
        enabled=cfg.RATE_LIMIT_API_ENABLED,
        trusted_proxies=cfg.trusted_proxies(),
    )
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.allowed_origins(),
        allow_credentials=cfg.ALLOWED_ORIGINS is not None,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
    app.include_router(stories.router, prefix="/api/stories", tags=["stories"])
    app.include_router(admin.router, prefix="/api/admin", tags=["admin"])
    app.include_router(health.router)

    return app


configure_logging(settings.ENV)
validate_env()
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))

app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("backend.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
