"""FastAPI application for the action agent HTTP API.

Creates the FastAPI app with:
- Lifespan context manager for dependency initialization and scheduler
- The /api router

LLM request log pruning runs as a background job via APScheduler's
BackgroundScheduler in the same process as uvicorn. The scheduler thread
bridges to the async event loop via run_coroutine_threadsafe.

Usage:
    from action_agent.web.app import create_app

    app = create_app()
    # Run with: uvicorn.run(app, host="127.0.0.1", port=8000)
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from action_agent.core.logging import get_logger

logger = get_logger(__name__)

APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize dependencies on startup, clean up on shutdown.

    On startup:
    1. Load config
    2. Initialize database
    3. Initialize Anthropic client, extractor and ingest service
    4. Start APScheduler (LLM log pruning)

    On shutdown:
    - Stop APScheduler
    """
    import anthropic
    from apscheduler.schedulers.background import BackgroundScheduler

    from action_agent.agent.extractor import ActionExtractor
    from action_agent.config import get_config
    from action_agent.core.errors import ConfigLoadError, ConfigValidationError
    from action_agent.db.store import DatabaseStore
    from action_agent.engine.ingest import IngestService

    # 1. Load config
    try:
        config = get_config()
    except (ConfigLoadError, ConfigValidationError) as e:
        logger.error("config_load_failed", error=str(e))
        # Store None values so /api/health can still report the problem
        app.state.config = None
        app.state.store = None
        app.state.anthropic_client = None
        app.state.extractor = None
        app.state.ingest_service = None
        app.state.scheduler = None
        yield
        return

    app.state.config = config

    # 2. Initialize database
    store = DatabaseStore(Path(config.database.path))
    await store.initialize()
    app.state.store = store

    # 3. Initialize extraction
    anthropic_client = anthropic.Anthropic(
        max_retries=config.anthropic.max_retries,
        timeout=config.anthropic.timeout_seconds,
    )
    extractor = ActionExtractor(anthropic_client=anthropic_client, config=config, store=store)
    app.state.anthropic_client = anthropic_client
    app.state.extractor = extractor
    app.state.ingest_service = IngestService(extractor=extractor, store=store)

    # 4. Start APScheduler
    loop = asyncio.get_running_loop()
    retention_days = config.llm_logging.retention_days

    def _prune_logs_sync():
        """Bridge async log pruning into sync scheduler thread."""
        try:
            future = asyncio.run_coroutine_threadsafe(store.prune_llm_logs(retention_days), loop)
            future.result(timeout=60)
            asyncio.run_coroutine_threadsafe(store.checkpoint_wal(), loop).result(timeout=60)
        except Exception as e:
            logger.error("scheduled_prune_failed", error=str(e))

    scheduler = BackgroundScheduler()
    scheduler.add_job(
        _prune_logs_sync,
        "interval",
        hours=config.llm_logging.prune_interval_hours,
        id="prune_llm_logs",
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info(
        "scheduler_started",
        prune_interval_hours=config.llm_logging.prune_interval_hours,
    )
    app.state.scheduler = scheduler

    yield

    # Shutdown
    scheduler.shutdown(wait=False)
    logger.info("scheduler_stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI instance
    """
    from action_agent.web.routes import api_router, register_exception_handlers

    app = FastAPI(
        title="Action Agent",
        description="Turns inbound messages into prioritized actions",
        version=APP_VERSION,
        lifespan=lifespan,
    )

    app.include_router(api_router)
    register_exception_handlers(app)

    return app
