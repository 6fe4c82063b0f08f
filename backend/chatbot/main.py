"""Chatbot API application entry point."""

import asyncio
from contextlib import asynccontextmanager, suppress

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from chatbot.config import settings
from chatbot.core.database import async_session_factory, engine
from chatbot.core.exceptions import register_exception_handlers
from chatbot.core.logging import configure_logging
from chatbot.core.middleware import RequestLoggingMiddleware
from chatbot.core.rate_limit import limiter

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown events."""
    # Startup
    configure_logging()
    logger.info("Starting Chatbot API", env=settings.app_env, completion_provider=settings.completion_provider)
    sweeper = asyncio.create_task(limiter.run_sweeper(settings.rate_limit_sweep_interval))
    yield
    # Shutdown
    logger.info("Shutting down Chatbot API")
    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper
    await engine.dispose()


app = FastAPI(
    title="Chatbot API",
    description="Conversations with an AI assistant: auth-scoped history, paginated messages, completions",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    redirect_slashes=False,
)

# ── Middleware ─────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)
register_exception_handlers(app)


# ── Health Check ──────────────────────────────────
@app.get("/health", tags=["system"])
async def health_check():
    """Liveness probe: the process is up."""
    return {"status": "healthy", "version": "0.1.0", "completion_provider": settings.completion_provider}


@app.get("/ready", tags=["system"])
async def readiness_check():
    """Readiness probe: database reachable and rate-limit store answering."""
    checks = {"database": "unknown", "rate_limiter": "ok"}
    try:
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
            checks["database"] = "ok"
    except SQLAlchemyError as e:
        logger.warning("readiness_database_failed", error=str(e))
        checks["database"] = f"error: {e}"
        return {"status": "degraded", "checks": checks}

    checks["rate_limit_keys"] = len(limiter.store.keys())
    return {"status": "ready", "checks": checks}


# ── API Routes ────────────────────────────────────
from chatbot.api.routes import auth, chat, conversations, messages  # noqa: E402

app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(conversations.router, prefix="/api/conversations", tags=["conversations"])
app.include_router(messages.router, prefix="/api/messages", tags=["messages"])
app.include_router(chat.router, prefix="/api/chat", tags=["chat"])
