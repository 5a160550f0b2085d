"""
AI Xiaozi: FastAPI entry point.
"""

import sys
import os

# Ensure backend dir is on path for imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException
from loguru import logger

from config import is_configured_key, settings
from models.database import init_storage
from middleware.error_handler import global_exception_handler, http_exception_handler
from middleware.logging_middleware import logging_middleware
from middleware.rate_limit import limiter
from services import email_service, search_service
from services.user_service import cleanup_expired_codes

# ── Routes ───────────────────────────────────────────────
from routes.auth import router as auth_router
from routes.chat import router as chat_router
from routes.search import router as search_router
from routes.upload import router as upload_router
from routes.voice import router as voice_router
from routes.weather import router as weather_router


def configure_logging():
    logger.remove()
    logger.add(sys.stderr, level=settings.LOG_LEVEL)
    if settings.LOG_FILE:
        logger.add(settings.LOG_FILE, level=settings.LOG_LEVEL, rotation="10 MB", retention=5, encoding="utf-8")


def service_status() -> dict:
    return {
        "ai": is_configured_key(settings.OPENAI_API_KEY),
        "deep_thinking": is_configured_key(settings.DEEPSEEK_API_KEY),
        "search": search_service.is_enabled(),
        "email": email_service.is_configured(),
    }


# ── Lifespan ─────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    await init_storage()
    removed = cleanup_expired_codes()
    logger.info(f"Storage initialized, {removed} expired verification codes removed")
    for name, enabled in service_status().items():
        if not enabled:
            logger.warning(f"Service '{name}' is not configured and will use its fallback")
    yield
    logger.info("Shutting down")


# ── App ──────────────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="AI companion chat backend for children",
    lifespan=lifespan,
)

# ── Rate Limiter ─────────────────────────────────────────
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)

# ── CORS ─────────────────────────────────────────────────
origins = settings.CORS_ORIGINS.split(",") if settings.CORS_ORIGINS != "*" else ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=origins != ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Custom Middleware ────────────────────────────────────
app.middleware("http")(global_exception_handler)
app.middleware("http")(logging_middleware)

# ── Register Routers ────────────────────────────────────
app.include_router(auth_router)
app.include_router(chat_router)
app.include_router(upload_router)
app.include_router(weather_router)
app.include_router(search_router)
app.include_router(voice_router)


# ── Health Check ─────────────────────────────────────────
@app.get("/api/health", tags=["health"])
async def health():
    return {
        "status": "ok",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "services": service_status(),
    }


# ── Run ──────────────────────────────────────────────────
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
