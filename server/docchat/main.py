import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from docchat.api import auth, conversations, documents, workspaces
from docchat.config import settings
from docchat.core.errors import (
    AuthenticationError,
    AuthServiceError,
    InferenceError,
    InvalidInputError,
    NotFoundError,
    StorageError,
)
from docchat.db.session import Base, build_engine, build_session_factory

logger = logging.getLogger(__name__)


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AuthenticationError)
    async def _unauthenticated(_: Request, exc: AuthenticationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": str(exc)},
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(AuthServiceError)
    async def _auth_unavailable(_: Request, exc: AuthServiceError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": str(exc)})

    @app.exception_handler(NotFoundError)
    async def _not_found(_: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})

    @app.exception_handler(InvalidInputError)
    async def _invalid_input(_: Request, exc: InvalidInputError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})

    @app.exception_handler(StorageError)
    async def _storage_failed(_: Request, exc: StorageError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"detail": f"File storage failed: {exc}"})

    @app.exception_handler(InferenceError)
    async def _inference_failed(_: Request, exc: InferenceError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"detail": str(exc)})


def create_app(session_factory: sessionmaker | None = None) -> FastAPI:
    logging.basicConfig(level=settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        engine = None
        if getattr(app.state, "session_factory", None) is None:
            engine = build_engine(settings.DATABASE_URL)
            if settings.AUTO_CREATE_TABLES:
                Base.metadata.create_all(engine)
            app.state.session_factory = build_session_factory(engine)
        try:
            yield
        finally:
            if engine is not None:
                engine.dispose()

    app = FastAPI(title="Workspace Document Chat API", version="1.0.0", lifespan=lifespan)
    app.state.session_factory = session_factory

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _register_error_handlers(app)

    app.include_router(auth.router, prefix="/auth", tags=["auth"])
    app.include_router(workspaces.router, prefix="/workspaces", tags=["workspaces"])
    app.include_router(documents.router, prefix="/documents", tags=["documents"])
    app.include_router(conversations.router, prefix="/conversations", tags=["conversations"])

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
