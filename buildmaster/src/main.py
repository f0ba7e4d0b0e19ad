"""
BuildMaster - Application Entry Point
======================================
FastAPI application factory.  Mounts the ``/api/ai`` router, registers
the core-error handlers, and owns the orchestrator for the life of the
process (created on startup unless one is injected, Mongo client closed
on shutdown).

Usage:
    uvicorn buildmaster.src.main:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from buildmaster.src.api.routes import register_error_handlers, router
from buildmaster.src.core.chat_orchestrator import ChatOrchestrator
from buildmaster.src.utils.logger import get_logger

logger = get_logger(__name__)


def create_app(orchestrator: ChatOrchestrator | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = orchestrator is None
        if owned:
            from buildmaster.src.core.factory import build_orchestrator
            from buildmaster.src.database.conversation_store import ConversationStore
            from buildmaster.src.database.knowledge_store import KnowledgeStore

            app.state.orchestrator = build_orchestrator()
            await ConversationStore().ensure_indexes()
            await KnowledgeStore().ensure_indexes()
        else:
            app.state.orchestrator = orchestrator
        logger.info("[API] BuildMaster AI service started.")
        try:
            yield
        finally:
            if owned:
                from buildmaster.src.database.mongo import close_mongo_client

                close_mongo_client()
            logger.info("[API] BuildMaster AI service stopped.")

    app = FastAPI(title="BuildMaster AI", version="0.1.0", lifespan=lifespan)
    app.include_router(router)
    register_error_handlers(app)
    return app


app = create_app()
