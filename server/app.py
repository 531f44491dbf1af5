"""FastAPI application factory."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from orchestrator.errors import RateLimited, ResearchError
from server.middleware import RequestIDMiddleware
from server.routes import admin, digests, health, queries
from server.runtime import ResearchRuntime
from utils.logger import get_logger

logger = get_logger(__name__)


def _error_response(
    status_code: int,
    code: str,
    message: str,
    details: dict | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body: dict = {"code": code, "message": message}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content={"error": body}, headers=headers)


def _is_development(request: Request) -> bool:
    runtime = getattr(request.app.state, "runtime", None)
    return bool(runtime and runtime.config.is_development)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ResearchError)
    async def handle_research_error(request: Request, exc: ResearchError):
        headers = None
        if isinstance(exc, RateLimited):
            headers = {"Retry-After": str(exc.retry_after_s)}

        if exc.status_code >= 500:
            logger.error(
                f"Request failed: {exc}",
                extra={
                    "extra_fields": {
                        "request_id": getattr(request.state, "request_id", "unknown"),
                        "code": exc.code,
                    }
                },
                exc_info=exc,
            )
            details = exc.details if _is_development(request) else None
        else:
            details = exc.details
        return _error_response(exc.status_code, exc.code, exc.message, details, headers)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": [str(p) for p in err.get("loc", ())], "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        return _error_response(400, "validation_failed", "Invalid request", {"errors": errors})

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error(
            f"Unhandled error: {exc}",
            extra={
                "extra_fields": {"request_id": getattr(request.state, "request_id", "unknown")}
            },
            exc_info=exc,
        )
        details = {"exception": type(exc).__name__} if _is_development(request) else None
        return _error_response(500, "internal_error", "Internal server error", details)


def create_app(runtime: ResearchRuntime | None = None) -> FastAPI:
    """
    Factory function to create FastAPI application.

    Args:
        runtime: Pre-built runtime (tests inject one wired with fakes). When omitted the
            lifespan builds one from environment configuration.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan event handler for startup/shutdown logic."""
        logger.info("FastAPI server starting up")
        active = runtime or ResearchRuntime.from_config()
        app.state.runtime = active
        await active.start()

        yield

        logger.info("FastAPI server shutting down")
        await active.close()

    app = FastAPI(
        title="Research Intelligence API",
        description="Multi-source, multi-model research query orchestration",
        version="1.0.0",
        lifespan=lifespan,
    )
    if runtime is not None:
        app.state.runtime = runtime

    app.add_middleware(RequestIDMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(queries.router)
    app.include_router(admin.router)
    app.include_router(digests.router)

    return app
