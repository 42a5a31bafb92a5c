"""
Main application entry point for the examcore assessment engine.

Builds the FastAPI application around a SessionService, registers the error
handlers and routes, and ties the session store's lifecycle to the app:
sessions are restored on startup, swept while running, and persisted on
shutdown.

Usage:
    - ASGI server: uvicorn --factory examcore.main:create_app
    - Console script: examcore-server
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from examcore import __version__
from examcore.api import router
from examcore.common.error_handling import register_exception_handlers
from examcore.common.logger import app_logger, configure_logger
from examcore.config import Settings, get_settings
from examcore.assessments.document.catalog import DirectoryDocumentCatalog
from examcore.assessments.session.records import AllowAllEligibility
from examcore.assessments.session.service import SessionService
from examcore.assessments.store import SessionStore, StoreSweeper
from examcore.database import SqlRecordsService, create_db_engine, create_session_factory, init_schema

# Setup module logger
logger = app_logger.getChild("main")


def build_default_service(settings: Settings) -> SessionService:
    """Wire a service to the document directory and the records database."""
    engine = create_db_engine(settings.database_url, settings.sql_echo)
    init_schema(engine)
    return SessionService(
        store=SessionStore(settings),
        catalog=DirectoryDocumentCatalog(settings.document_dir),
        records=SqlRecordsService(create_session_factory(engine)),
        eligibility=AllowAllEligibility(),
        settings=settings,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Restore persisted sessions and start the sweeper on startup; stop the
    sweeper and persist live sessions on shutdown.
    """
    settings: Settings = app.state.settings
    service: SessionService = app.state.session_service

    configure_logger(level=settings.log_level, use_json=settings.log_json, log_file=settings.log_file)
    logger.info("Application startup sequence initiated.")

    restored = service.restore()
    logger.info(f"Restored {restored} persisted sessions")

    sweeper = StoreSweeper(service.store, settings.sweep_interval_seconds)
    sweeper.start()
    app.state.sweeper = sweeper

    yield

    logger.info("Application shutdown sequence initiated.")
    sweeper.stop()
    try:
        saved = service.persist()
        logger.info(f"Persisted {saved} live sessions")
    except Exception as e:
        logger.error(f"Failed to persist sessions on shutdown: {e}", exc_info=True)
        raise


def create_app(service: Optional[SessionService] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        service: Session service to expose; a default one backed by the
            configured document directory and records database is built
            when omitted
        settings: Application settings

    Returns:
        Configured FastAPI application
    """
    settings = settings or (service.settings if service is not None else get_settings())
    service = service or build_default_service(settings)

    app = FastAPI(
        title="examcore Assessment Engine",
        description="Assessment session engine: delivery, timing, scoring and recording",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.session_service = service

    register_exception_handlers(app)
    app.include_router(router)

    @app.get("/health")
    def health():
        return {"status": "ok", "sessions": len(service.store)}

    return app
