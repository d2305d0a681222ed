from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from realty_agent.config import Settings, load_settings
from realty_agent.logging.flight_recorder import register_log_middleware
from realty_agent.routes import health, leads, messages
from realty_agent.services.reasoning import ReasoningPort, build_reasoning_port
from realty_agent.services.sql_store import build_store
from realty_agent.services.store import ConversationStore
from realty_agent.utils.fixture_loader import seed_properties

logger = logging.getLogger(__name__)


def create_app(
    store: Optional[ConversationStore] = None,
    reasoning: Optional[ReasoningPort] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    settings = settings or load_settings()
    store = store or build_store(settings.database_url)
    reasoning = reasoning or build_reasoning_port(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await store.open()
        if settings.seed_fixtures:
            await seed_properties(store)
        logger.info("app.started store=%s model=%s", type(store).__name__, settings.llm_model)
        try:
            yield
        finally:
            await store.close()
            logger.info("app.stopped")

    app = FastAPI(title="Realty Agent", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.reasoning = reasoning

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_log_middleware(app)

    app.include_router(health.router, prefix="/health", tags=["health"])
    app.include_router(messages.router, prefix="/messages", tags=["messages"])
    app.include_router(leads.router, prefix="/leads", tags=["leads"])

    return app


app = create_app()
