"""
Builds the FormDesk FastAPI app: CORS, routes, startup warm-up and shutdown.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.router import router
from .core.config import Settings, get_settings
from .core.database import close_db, init_db
from .core.flags import get_flags
from .core.redis import close_redis
from .forms.catalog import get_catalog
from .orchestrator.registry import get_registry
from .services import knowledge
from .services.llm import close_client
from .tools.registry import init_tools

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _configure_logging(settings: Settings):
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO), format=LOG_FORMAT)


def _allowed_origins(settings: Settings) -> list[str]:
    return [o.strip() for o in settings.cors_origins.split(",") if o.strip()] or ["*"]


def create_app() -> FastAPI:
    settings = get_settings()
    dev = settings.env == "development"

    app = FastAPI(
        title="FormDesk",
        description="Conversational form-filling assistant",
        version="1.0.0",
        docs_url="/docs" if dev else None,
        redoc_url="/redoc" if dev else None,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(settings),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)

    @app.on_event("startup")
    async def warm_up():
        _configure_logging(settings)
        await init_db()
        flags = get_flags()
        catalog = get_catalog()
        init_tools()
        if flags.use_retrieval:
            await knowledge.index_directory()
        handlers = get_registry().list_handlers()

        logger.info(
            "FormDesk up (env=%s): %d forms, %d handlers | redis=%s s3=%s retrieval=%s pdf=%s llm_routing=%s llm=%s",
            settings.env, len(catalog.list_forms()), len(handlers),
            flags.use_redis, flags.use_s3, flags.use_retrieval,
            flags.use_pdf_render, flags.llm_intent_routing, flags.llm_provider,
        )

    @app.on_event("shutdown")
    async def release():
        await close_client()
        await close_db()
        await close_redis()
        logger.info("FormDesk stopped")

    return app
