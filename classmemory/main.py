import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .background import spawn
from .errors import DomainError, UpstreamError
from .forum_client import ForumClient, ForumError
from .llm_client import build_generator
from .routers import content, sandbox, schools, search
from .settings.config import Settings, settings
from .utils import Services, build_services

logger = logging.getLogger(__name__)


def create_app(cfg: Settings = settings, services: Optional[Services] = None) -> FastAPI:
    logging.basicConfig(level=getattr(logging, cfg.LOG_LEVEL.upper(), logging.INFO))

    app = FastAPI(title="Class Memory Rooms")
    if services is None:
        forum = ForumClient(cfg.FORUM_API_URL, cfg.FORUM_API_KEY, timeout=cfg.FORUM_TIMEOUT_SECONDS)
        services = build_services(cfg, forum, build_generator(cfg))
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.allowed_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ----------------------
    # Route Includes
    # ----------------------
    app.include_router(schools.router)
    app.include_router(content.router)
    app.include_router(search.router)
    app.include_router(sandbox.router)

    # ----------------------
    # Error mapping
    # ----------------------
    @app.exception_handler(DomainError)
    async def _domain_error(request: Request, exc: DomainError):
        if exc.status_code >= 500:
            logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.payload())

    @app.exception_handler(ForumError)
    async def _forum_error(request: Request, exc: ForumError):
        logger.warning("forum store failure on %s %s: %s", request.method, request.url.path, exc)
        err = UpstreamError()
        return JSONResponse(status_code=err.status_code, content=err.payload())

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    @app.on_event("startup")
    async def _startup():
        if cfg.SANDBOX_PROVISION_ON_STARTUP:
            spawn(app.state.services.sandbox.ensure_provisioned(), name="sandbox-provision")

    @app.get("/api/health")
    async def health():
        return {"ok": True}

    return app


app = create_app()
