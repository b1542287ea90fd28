"""
Service container: every long-lived collaborator, built once at startup.

Stored on `app.state.services` during the FastAPI lifespan and handed to
routes through the `get_services` dependency.
"""

from dataclasses import dataclass
from typing import Any

from supabase import Client

from app.background.document_tasks import IngestionService
from app.background.temp_cleanup import LifecycleManager
from app.config import Settings
from app.features.knowledge.chunk_store import ChunkStore
from app.features.knowledge.embedding import EmbeddingProvider
from app.features.knowledge.retrieval import RetrievalEngine
from app.features.knowledge.vector_index import VectorIndex
from app.features.tutor.model_router import ModelRouter
from app.features.tutor.service import TutorService


@dataclass
class ServiceContainer:
    settings: Settings
    embedder: EmbeddingProvider
    store: Any
    index: VectorIndex
    retrieval: RetrievalEngine
    ingestion: IngestionService
    lifecycle: LifecycleManager
    router: ModelRouter
    tutor: TutorService
    scheduler: Any = None


def assemble_services(
    settings: Settings,
    store,
    embedder: EmbeddingProvider,
    router: ModelRouter,
) -> ServiceContainer:
    """Wire the collaborators around an already-built store, embedder and router."""
    index = VectorIndex(store, dimensions=embedder.dimensions)
    retrieval = RetrievalEngine(
        embedder=embedder,
        index=index,
        store=store,
        top_n=settings.RETRIEVAL_TOP_N,
        timeout=settings.RETRIEVAL_TIMEOUT_SECONDS,
    )
    return ServiceContainer(
        settings=settings,
        embedder=embedder,
        store=store,
        index=index,
        retrieval=retrieval,
        ingestion=IngestionService(store, embedder, index),
        lifecycle=LifecycleManager.from_settings(settings, store, index),
        router=router,
        tutor=TutorService(retrieval, router),
    )


def build_services(settings: Settings, db: Client) -> ServiceContainer:
    return assemble_services(
        settings,
        store=ChunkStore(db),
        embedder=EmbeddingProvider.from_settings(settings),
        router=ModelRouter.from_settings(settings),
    )
