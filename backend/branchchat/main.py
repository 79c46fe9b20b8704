"""
BranchChat - Main FastAPI Application
Chat backend with branching conversations and cancellable streaming generations.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from typing import Optional
import logging
import sys

from .config import settings
from .database import create_engine, create_session_factory, init_db, close_db
from .routers import (
    chat_router,
    conversations_router,
    messages_router
)
from .services.generation_service import GenerationService
from .services.llm_service import LLMService
from .services.message_store import MessageStore
from .services.stream_registry import StreamRegistry
from .services.visualization_service import VisualizationPipeline


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger(__name__)


def create_app(
    database_url: Optional[str] = None,
    llm_service: Optional[LLMService] = None,
    registry: Optional[StreamRegistry] = None,
    enable_visualization: Optional[bool] = None
) -> FastAPI:
    """Build the application with its own engine, registry and services."""
    engine = create_engine(database_url or settings.DATABASE_URL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events."""
        # Startup
        await init_db(engine)
        logger.info("%s %s ready", settings.APP_NAME, settings.APP_VERSION)

        yield

        # Shutdown
        await close_db(engine)

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Chat backend with branching conversations and streaming generations",
        lifespan=lifespan
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # In production, specify exact origins
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    llm_service = llm_service or LLMService()
    store = MessageStore(create_session_factory(engine))
    if enable_visualization is None:
        enable_visualization = settings.ENABLE_VISUALIZATION

    app.state.store = store
    app.state.registry = registry or StreamRegistry()
    app.state.generation_service = GenerationService(
        store=store,
        registry=app.state.registry,
        llm_service=llm_service,
        visualization=VisualizationPipeline(llm_service, store) if enable_visualization else None
    )

    # Include routers
    app.include_router(chat_router)
    app.include_router(conversations_router)
    app.include_router(messages_router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "app": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "upstream_configured": llm_service.is_configured
        }

    return app


app = create_app()
