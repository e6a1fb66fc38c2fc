from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from unified_categorizer.api.routes import admin, categorize
from unified_categorizer.core import settings
from unified_categorizer.events import EventBus
from unified_categorizer.logger import get_logger, setup_logging
from unified_categorizer.orchestrator import CategorizationOrchestrator
from unified_categorizer.storage import JsonFileStore

logger = get_logger(__name__)


def create_app() -> FastAPI:
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Initializing services...")
        settings.log_environment()

        events = EventBus()
        orchestrator = CategorizationOrchestrator(
            store=JsonFileStore(settings.DATA_DIR),
            events=events,
            defaults=settings.build_default_config(),
        )
        await orchestrator.initialize()

        app.state.events = events
        app.state.orchestrator = orchestrator

        logger.info("Services initialized.")
        yield
        logger.info("Service shutting down.")
        await orchestrator.dispose()

    app = FastAPI(title="Unified Categorizer", lifespan=lifespan)

    app.include_router(categorize.router)
    app.include_router(admin.router)

    return app


app = create_app()
