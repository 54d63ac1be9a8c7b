import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from mcpscan.config import CoordinatorSettings, configure_logging
from mcpscan.errors import InvalidStatusError, InvalidTransitionError, NotFoundError

from . import models  # noqa: F401 ensure models are loaded for metadata
from .db import Base, create_db_engine, create_session_factory
from .routes import agents_router, communication_router, rules_router, scans_router
from .store import CoordinatorStore


log = logging.getLogger("mcpscan.coordinator")


def create_app(settings: Optional[CoordinatorSettings] = None) -> FastAPI:
    settings = settings or CoordinatorSettings.from_env()
    engine = create_db_engine(settings.database_url)
    Base.metadata.create_all(bind=engine)
    log.info("DB tables checked/created (%s)", engine.url.render_as_string(hide_password=True))

    app = FastAPI(title="mcp-scan - Coordinator API")
    app.state.settings = settings
    app.state.store = CoordinatorStore(create_session_factory(engine), settings)

    app.include_router(agents_router)
    app.include_router(scans_router)
    app.include_router(communication_router)
    app.include_router(rules_router)

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": f"{exc.entity} not found"})

    @app.exception_handler(InvalidTransitionError)
    async def invalid_transition(request: Request, exc: InvalidTransitionError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(InvalidStatusError)
    async def invalid_status(request: Request, exc: InvalidStatusError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(SQLAlchemyError)
    async def storage_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        log.exception("Storage error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        log.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    return app


def run() -> None:
    import uvicorn

    configure_logging()
    settings = CoordinatorSettings.from_env()
    uvicorn.run(
        "mcpscan.app.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
    )


if __name__ == "__main__":
    run()
