"""
FastAPI application factory.
"""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import get_settings
from .core.database import close_db, get_engine, init_db
from .core.dependencies import get_fact_store, reset_fact_store
from .core.errors import EmbeddingProviderError, StorageError, ValidationError
from .core.migrations import ensure_history_session_column, migrate_legacy_facts
from .api.router import router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting Aurion proxy (env=%s)", settings.env)

    # Schema: legacy column fix-up, then create missing tables
    await ensure_history_session_column(get_engine())
    await init_db()
    if settings.migrate_legacy_facts:
        await migrate_legacy_facts(get_engine(), get_fact_store())

    logger.info(
        "Models: primary=%s secondary=%s | ctx=%d predict=%d",
        settings.model_primary, settings.model_secondary,
        settings.llm_num_ctx, settings.llm_num_predict,
    )
    logger.info(
        "Embeddings: %s (threshold=%.2f) | Tavily: %s",
        settings.embed_model, settings.fact_similarity_threshold,
        "on" if settings.tavily_api_key else "off",
    )
    logger.info("Aurion proxy is ready")

    yield

    from .services.ollama import close_client
    await close_client()
    reset_fact_store()
    await close_db()
    logger.info("Aurion proxy shut down")


def register_error_handlers(app: FastAPI) -> None:
    """Map fact memory and upstream failures to HTTP responses."""

    @app.exception_handler(ValidationError)
    async def on_validation_error(_request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"ok": False, "error": str(exc)})

    @app.exception_handler(EmbeddingProviderError)
    @app.exception_handler(StorageError)
    async def on_memory_unavailable(_request: Request, exc: Exception):
        logger.warning("Memory unavailable: %s", exc)
        return JSONResponse(
            status_code=503,
            content={"ok": False, "error": "memory_unavailable", "detail": str(exc)},
        )

    @app.exception_handler(httpx.HTTPError)
    async def on_upstream_error(_request: Request, exc: httpx.HTTPError):
        logger.error("LLM upstream failed: %s", exc)
        return JSONResponse(status_code=502, content={"ok": False, "error": "llm_unavailable"})


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Aurion",
        description="Personal assistant proxy with fact memory",
        version="1.0.0",
        docs_url="/docs" if settings.env == "development" else None,
        redoc_url="/redoc" if settings.env == "development" else None,
        lifespan=lifespan,
    )

    # ── CORS ─────────────────────────────────────────────────────
    origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials=origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Request log ──────────────────────────────────────────────
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info("%s %s", request.method, request.url.path)
        return await call_next(request)

    register_error_handlers(app)

    # ── Routes ───────────────────────────────────────────────────
    app.include_router(router)

    return app
