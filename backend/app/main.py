import logging.config

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker

from app.api.metrics import router as metrics_router
from app.api.routes import router as api_router
from app.api.ws import router as ws_router
from app.config import Settings, get_settings
from app.database import build_engine, build_session_factory
from app.models import Base
from app.repository import SqlAlchemyRepository
from masq.domain.errors import DomainError
from masq.runtime import RealtimeServices
from masq.voice.sfu import SFU


LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
        }
    },
    "handlers": {
        "default": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        }
    },
    "root": {
        "handlers": ["default"],
        "level": "INFO",
    },
    "loggers": {
        "masq.realtime": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        }
    },
}


logging.config.dictConfig(LOGGING_CONFIG)

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    session_factory: sessionmaker[Session] | None = None,
    sfu: SFU | None = None,
) -> FastAPI:
    """Build the application with its own repository and realtime services."""

    settings = settings or get_settings()
    if session_factory is None:
        session_factory = build_session_factory(build_engine(settings.database_url, echo=settings.debug))

    services = RealtimeServices.build(SqlAlchemyRepository(session_factory), settings, sfu=sfu)

    app = FastAPI(title=settings.app_name, debug=settings.debug)
    app.state.settings = settings
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin) for origin in settings.cors_origins],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        allow_origin_regex=settings.cors_allow_origin_regex,
    )

    @app.exception_handler(DomainError)
    async def _domain_error(_: Request, exc: DomainError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    @app.get("/health", tags=["system"])
    def health_check() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok", "environment": settings.environment}

    @app.on_event("startup")
    async def _startup() -> None:
        Base.metadata.create_all(bind=session_factory.kw["bind"])
        await services.startup()
        logger.info("%s started (%s)", settings.app_name, settings.environment)

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await services.shutdown()

    app.include_router(api_router, prefix="/api")
    app.include_router(ws_router)
    app.include_router(metrics_router)
    return app


app = create_app()
