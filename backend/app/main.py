"""
Study Q&A core - FastAPI Application Entry Point.

Feature-based modular architecture:
  knowledge/  chunk store, vector index, retrieval, chunking
  tutor/      query classification, model routing, answering
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.background.scheduler import shutdown_lifecycle, start_lifecycle
from app.config import get_settings
from app.core.database import get_supabase_client
from app.core.services import build_services

# ── Feature Routers ──────────────────────────────────────
from app.features.knowledge.router import router as knowledge_router
from app.features.tutor.router import router as tutor_router

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup & shutdown."""
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    logger.info(f"🚀 {settings.APP_NAME} v{settings.APP_VERSION} starting...")
    logger.info(f"🤖 Fast model: {settings.FAST_LLM_PROVIDER} ({settings.FAST_LLM_MODEL})")
    logger.info(f"🧠 Deep model: {settings.DEEP_LLM_PROVIDER} ({settings.DEEP_LLM_MODEL})")
    logger.info(f"🔮 Embeddings: {settings.EMBEDDING_PROVIDER} ({settings.EMBEDDING_MODEL}, {settings.EMBEDDING_DIMENSIONS} dims)")
    logger.info(f"🔗 Supabase: {settings.SUPABASE_URL[:40]}...")

    services = build_services(settings, get_supabase_client())
    app.state.services = services
    start_lifecycle(services, settings)
    yield
    logger.info("👋 Shutting down...")
    shutdown_lifecycle(services)


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Hỏi đáp học tập có truy xuất tài liệu",
        lifespan=lifespan,
    )

    # ── CORS ─────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Register Feature Routers ─────────────────────────
    app.include_router(knowledge_router, prefix="/api/knowledge", tags=["Knowledge"])
    app.include_router(tutor_router, prefix="/api/tutor", tags=["Tutor"])

    # ── Health Check ─────────────────────────────────────
    @app.get("/health", tags=["System"])
    async def health_check():
        services = getattr(app.state, "services", None)
        return {
            "status": "healthy",
            "app": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "index": {
                "state": services.index.state.value if services else "unavailable",
                "vectors": services.index.size if services else 0,
            },
        }

    return app


app = create_app()
